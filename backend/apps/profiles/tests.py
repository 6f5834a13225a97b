"""
Tests for the profiles app
"""
from datetime import timedelta
from unittest import mock

from django.contrib.auth.models import User
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from apps.common.exceptions import UnknownElicitationQuestion
from apps.profiles import elicitation, reflection
from apps.profiles.confidence import clamp_priority, decay, merge
from apps.profiles.extraction import (
    ExtractedSignal,
    RegexSignalClassifier,
    SignalExtractor,
    detect_topics,
    extract_signals,
    mode_selection_signal,
    retry_signal,
)
from apps.profiles.inference import DOMAIN_INFERRERS, CognitiveStyleInferrer, infer_all_dimensions
from apps.profiles.models import (
    BeliefDomain,
    DimensionScore,
    ElicitationResponse,
    EvidenceSource,
    PrivacyTier,
    ProfileFact,
    ProfileSignal,
    SignalCategory,
    SignalType,
)
from apps.profiles.reflection import ReflectionResult, ReflectionState
from apps.profiles.services import (
    ProfileService,
    assemble_profile,
    get_context_summary,
    process_message,
)


def _signals_of(signals, signal_type):
    return [s for s in signals if s.signal_type == signal_type]


def _batch(*texts):
    signals = []
    for text in texts:
        signals.extend(extract_signals(text))
    return signals


class DecayTest(SimpleTestCase):
    """Test time decay of confidence"""

    def setUp(self):
        self.now = timezone.now()

    def test_no_elapsed_time_is_identity(self):
        """No time elapsed means no decay, whatever the rate"""
        for rate in (0.0, 0.1, 0.4, 1.0):
            self.assertEqual(decay(0.7, rate, self.now, self.now), 0.7)

    def test_faster_rate_decays_more(self):
        """Higher decay rate gives strictly lower confidence for the same elapsed time"""
        later = self.now + timedelta(days=10)
        values = [decay(0.9, rate, self.now, later) for rate in (0.1, 0.2, 0.3, 0.4)]
        for higher, lower in zip(values, values[1:]):
            self.assertGreater(higher, lower)

    def test_bounded_for_huge_elapsed_time(self):
        """Decay stays within [0, c] even after decades"""
        much_later = self.now + timedelta(days=365 * 50)
        value = decay(0.8, 0.4, self.now, much_later)
        self.assertGreaterEqual(value, 0.0)
        self.assertLessEqual(value, 0.8)
        self.assertEqual(decay(0.8, 1.0, self.now, much_later), 0.0)

    def test_thirty_days_applies_one_period(self):
        later = self.now + timedelta(days=30)
        self.assertAlmostEqual(decay(1.0, 0.2, self.now, later), 0.8)

    def test_future_timestamp_counts_as_no_elapsed_time(self):
        self.assertEqual(decay(0.6, 0.3, self.now + timedelta(days=3), self.now), 0.6)

    def test_out_of_range_inputs_are_clamped(self):
        self.assertEqual(decay(1.7, 0.2, self.now, self.now), 1.0)
        self.assertEqual(decay(-0.5, 0.2, self.now, self.now), 0.0)


class MergeTest(SimpleTestCase):
    """Test evidence merge"""

    def test_empty_is_zero(self):
        self.assertEqual(merge([]), 0)

    def test_single_source_is_normalized(self):
        self.assertEqual(merge([0.8]), 0.5333)
        self.assertEqual(merge([1.0]), 0.6667)

    def test_never_reaches_ceiling(self):
        """Inference alone never reaches 0.95"""
        self.assertLess(merge([1.0]), 0.95)
        self.assertLess(merge([1.0] * 20), 0.95)
        self.assertLess(merge([0.95, 0.95, 0.95]), 0.95)

    def test_adding_evidence_never_lowers_result(self):
        """merge is non-decreasing as more confidences are added"""
        evidence = [0.5, 0.8, 0.3, 0.5, 0.95, 0.1, 0.6, 0.6, 1.0, 0.2]
        previous = 0.0
        for count in range(1, len(evidence) + 1):
            current = merge(evidence[:count])
            self.assertGreaterEqual(current, previous)
            previous = current

    def test_clamp_priority(self):
        self.assertEqual(clamp_priority(14.2), 10)
        self.assertEqual(clamp_priority(-3), 1)
        self.assertEqual(clamp_priority('nonsense'), 1)
        self.assertEqual(clamp_priority(6.4), 6)


class SignalExtractionTest(SimpleTestCase):
    """Test the signal extractor"""

    def test_every_message_yields_style_signal(self):
        """Even empty input yields exactly the minimal style signal"""
        for message in ('', None, '   '):
            signals = extract_signals(message)
            self.assertEqual(len(signals), 1)
            self.assertEqual(signals[0].signal_type, SignalType.MESSAGE_STYLE)
            self.assertEqual(signals[0].strength, 0.5)
            self.assertEqual(signals[0].data['word_count'], 0)

    def test_casual_greeting(self):
        signals = extract_signals('hi')
        self.assertEqual(len(signals), 1)
        self.assertEqual(signals[0].data['tone'], 'casual')

    def test_explicit_preference(self):
        signals = extract_signals('I prefer detailed responses')
        preferences = _signals_of(signals, SignalType.PREFERENCE_STATEMENT)
        self.assertEqual(len(preferences), 1)
        self.assertEqual(preferences[0].strength, 0.9)
        self.assertEqual(preferences[0].data['domain'], 'COMMUNICATION_PREFS')
        self.assertEqual(preferences[0].data['preference'], 'verbosity:detailed')

    def test_expertise_statement_strips_punctuation(self):
        signals = extract_signals("I'm an expert in distributed systems.")
        preference = _signals_of(signals, SignalType.PREFERENCE_STATEMENT)[0]
        self.assertEqual(preference.data['preference'], 'expert:distributed systems')

    def test_correction_feedback(self):
        signals = extract_signals("That's wrong, I was asking about the other file")
        feedback = _signals_of(signals, SignalType.FEEDBACK)
        self.assertEqual(len(feedback), 1)
        self.assertEqual(feedback[0].data['feedback_type'], 'correction')
        self.assertEqual(feedback[0].strength, 0.8)

    def test_question_sophistication_only_for_questions(self):
        statement = extract_signals('The architecture is better than before')
        self.assertEqual(_signals_of(statement, SignalType.QUESTION_SOPHISTICATION), [])

        signals = extract_signals('Why is the architecture of this API better than the alternative?')
        question = _signals_of(signals, SignalType.QUESTION_SOPHISTICATION)[0]
        self.assertAlmostEqual(question.data['complexity'], 0.6)
        self.assertAlmostEqual(question.strength, 0.68)
        self.assertEqual(question.data['domain'], 'programming')
        self.assertFalse(question.data['requires_expertise'])

    def test_goal_reference(self):
        signals = extract_signals("I'm building a budgeting app for freelancers")
        goal = _signals_of(signals, SignalType.GOAL_REFERENCE)[0]
        self.assertEqual(goal.strength, 0.7)
        self.assertEqual(goal.data['goal_text'], 'a budgeting app for freelancers')
        self.assertEqual(goal.data['timeframe'], 'medium')
        self.assertFalse(goal.data['is_progress'])

    def test_decision_mentions(self):
        made = _signals_of(extract_signals('I decided to go with Postgres.'), SignalType.DECISION_MENTION)[0]
        self.assertTrue(made.data['is_made'])
        self.assertEqual(made.strength, 0.8)

        pending = _signals_of(extract_signals('Should I raise prices this quarter?'), SignalType.DECISION_MENTION)[0]
        self.assertFalse(pending.data['is_made'])
        self.assertEqual(pending.strength, 0.7)

    def test_multiple_signal_types_from_one_message(self):
        signals = extract_signals("Thanks, that's exactly right. I want to launch the beta next month")
        kinds = {s.signal_type for s in signals}
        self.assertIn(SignalType.MESSAGE_STYLE, kinds)
        self.assertIn(SignalType.FEEDBACK, kinds)
        self.assertIn(SignalType.GOAL_REFERENCE, kinds)

    def test_failing_classifier_hook_never_raises(self):
        """A broken detector drops its own signal and nothing else"""

        class BrokenFeedback(RegexSignalClassifier):
            def feedback(self, text):
                raise RuntimeError('boom')

        extractor = SignalExtractor(BrokenFeedback())
        with self.assertLogs('apps.profiles.extraction', level='ERROR'):
            signals = extractor.extract("That's wrong. I prefer detailed responses")
        self.assertEqual(_signals_of(signals, SignalType.FEEDBACK), [])
        self.assertEqual(len(_signals_of(signals, SignalType.PREFERENCE_STATEMENT)), 1)

    def test_metadata_is_carried(self):
        signals = extract_signals('hello there', session_id='s-1', message_id='m-1')
        self.assertEqual(signals[0].session_id, 's-1')
        self.assertEqual(signals[0].message_id, 'm-1')

    def test_topics(self):
        self.assertIn('technical', detect_topics('Fix the database bug before the deploy'))
        self.assertEqual(detect_topics('lovely weather today'), ['general'])

    def test_behavioral_constructors(self):
        self.assertEqual(mode_selection_signal('quick').strength, 0.6)
        self.assertEqual(retry_signal('accept', 1).strength, 0.5)
        self.assertEqual(retry_signal('refine', 2).strength, 0.7)
        with self.assertRaises(ValueError):
            mode_selection_signal('turbo')


class DimensionInferenceTest(SimpleTestCase):
    """Test the dimension inference engine"""

    def test_all_domains_present_for_empty_batch(self):
        """Every domain is returned, with low confidence, for no signals"""
        for session_count in (0, 5):
            inferred = infer_all_dimensions([], session_count)
            self.assertEqual(set(inferred), set(BeliefDomain.values))
            for inference in inferred.values():
                self.assertLess(inference.confidence, 0.5)

    def test_registry_covers_every_domain(self):
        self.assertEqual(set(DOMAIN_INFERRERS), set(BeliefDomain.values))
        self.assertFalse(CognitiveStyleInferrer.has_signal_source)

    def test_cognitive_style_is_fixed_placeholder(self):
        inferred = infer_all_dimensions(_batch('hi', 'ok', 'yes', 'no', 'fine'), 10)
        cognitive = inferred[BeliefDomain.COGNITIVE_STYLE]
        self.assertEqual(cognitive.confidence, 0.3)
        self.assertEqual(cognitive.sources, [])
        self.assertEqual(cognitive.value['abstract_vs_concrete'], 0.0)

    def test_short_casual_messages_infer_concise(self):
        inferred = infer_all_dimensions(_batch('hi', 'ok thanks', 'sounds good'), 1)
        comm = inferred[BeliefDomain.COMMUNICATION_PREFS]
        self.assertEqual(comm.value['verbosity'], 'concise')
        self.assertEqual(comm.value['tone_preference'], 'supportive')
        self.assertEqual(comm.sources, [EvidenceSource.BEHAVIORAL_REPEATED])
        self.assertGreater(comm.confidence, 0)

    def test_too_few_style_signals_infer_nothing(self):
        comm = infer_all_dimensions(_batch('hi', 'ok'), 1)[BeliefDomain.COMMUNICATION_PREFS]
        self.assertEqual(comm.sources, [])
        self.assertEqual(comm.confidence, 0)

    def test_explicit_preference_wins(self):
        comm = infer_all_dimensions(_batch('I prefer detailed responses'), 1)[BeliefDomain.COMMUNICATION_PREFS]
        self.assertEqual(comm.value['verbosity'], 'detailed')
        self.assertEqual(comm.sources, [EvidenceSource.EXPLICIT_PKV])
        self.assertLess(comm.confidence, 0.95)

    def test_explicit_expertise(self):
        expertise = infer_all_dimensions(
            _batch("I'm an expert in distributed systems"), 1,
        )[BeliefDomain.EXPERTISE_CALIBRATION]
        self.assertIn('distributed systems', expertise.value['expert_domains'])
        self.assertEqual(expertise.value['domain_scores']['distributed systems'], 0.9)

    def test_explicit_expertise_skips_behavioral_inference(self):
        """Simple questions in the same batch don't undo a stated expertise"""
        questions = [
            ExtractedSignal(
                signal_type=SignalType.QUESTION_SOPHISTICATION,
                category=SignalCategory.QUESTION_SOPHISTICATION,
                strength=0.5,
                data={'complexity': 0.2, 'requires_expertise': False, 'domain': 'distributed systems'},
            )
            for _ in range(3)
        ]
        signals = _batch("I'm an expert in distributed systems") + questions

        expertise = infer_all_dimensions(signals, 1)[BeliefDomain.EXPERTISE_CALIBRATION]

        self.assertEqual(expertise.value['expert_domains'], ['distributed systems'])
        self.assertEqual(expertise.value['learning_domains'], [])
        self.assertEqual(expertise.value['domain_scores']['distributed systems'], 0.9)
        self.assertEqual(expertise.sources, [EvidenceSource.EXPLICIT_PKV])

    def test_mode_distribution(self):
        signals = [mode_selection_signal(m) for m in ('quick', 'quick', 'thoughtful')]
        behavioral = infer_all_dimensions(signals, 1)[BeliefDomain.BEHAVIORAL_PATTERNS]
        self.assertAlmostEqual(behavioral.value['mode_distribution']['quick'], 2 / 3)
        self.assertEqual(behavioral.value['mode_distribution']['council'], 0)
        self.assertEqual(behavioral.sources, [EvidenceSource.BEHAVIORAL_REPEATED])

    def test_relationship_trust_and_autonomy(self):
        signals = _batch('thanks, perfect', 'great, thank you', 'awesome')
        relationship = infer_all_dimensions(signals, 4)[BeliefDomain.RELATIONSHIP_STATE]
        self.assertAlmostEqual(relationship.value['trust_maturity'], 0.3)
        self.assertEqual(relationship.value['acceptance_rate'], 1.0)
        self.assertAlmostEqual(relationship.value['autonomy_tolerance'], 0.5)
        self.assertEqual(relationship.confidence, 0.6)

    def test_trust_is_capped(self):
        relationship = infer_all_dimensions(_batch('hi'), 100)[BeliefDomain.RELATIONSHIP_STATE]
        self.assertEqual(relationship.value['trust_maturity'], 0.9)

    def test_goals_are_deduplicated(self):
        signals = _batch("I'm building a budgeting app for teams", "I'm building a budgeting app")
        goals = infer_all_dimensions(signals, 1)[BeliefDomain.GOALS_VALUES]
        self.assertEqual(len(goals.value['active_goals']), 1)
        self.assertEqual(goals.sources, [EvidenceSource.BEHAVIORAL_SINGLE])

    def test_existing_values_are_not_mutated(self):
        existing = {BeliefDomain.GOALS_VALUES: {'active_goals': [{'id': 'g1', 'goal': 'ship v2'}]}}
        infer_all_dimensions(_batch('I want to hire a designer'), 1, existing)
        self.assertEqual(len(existing[BeliefDomain.GOALS_VALUES]['active_goals']), 1)

    def test_pending_decisions_become_hesitation_points(self):
        signals = _batch('Should I raise prices?', 'Should I hire?', 'I decided to wait.')
        friction = infer_all_dimensions(signals, 1)[BeliefDomain.DECISION_FRICTION]
        self.assertEqual(len(friction.value['hesitation_points']), 2)
        self.assertAlmostEqual(friction.value['over_analysis_rate'], 2 / 3)


class ProfileTestMixin:
    def setUp(self):
        self.user = User.objects.create_user(username='testuser', password='testpass')
        self.profile = ProfileService.get_or_create_profile(self.user)
        self.now = timezone.now()

    def store(self, *texts, profile=None):
        return ProfileService.store_signals(profile or self.profile, _batch(*texts))

    def score(self, domain, value, confidence, sources=(EvidenceSource.BEHAVIORAL_REPEATED,), profile=None):
        return ProfileService.upsert_dimension_score(
            profile or self.profile, domain, value, confidence, list(sources), now=self.now,
        )


class ProfileServiceTest(ProfileTestMixin, TestCase):
    """Test profile storage"""

    def test_tier_a_stores_nothing(self):
        ProfileService.set_privacy_tier(self.profile, PrivacyTier.A)
        self.assertEqual(self.store('hi', 'hello'), [])
        self.assertEqual(ProfileSignal.objects.count(), 0)

    def test_store_signals_counts(self):
        self.store('hi', 'I prefer detailed responses')
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.signal_count, 3)
        self.assertEqual(ProfileService.count_unprocessed_signals(self.profile), 3)

    def test_signals_are_immutable(self):
        signal = self.store('hi')[0]
        signal = ProfileSignal.objects.get(pk=signal.pk)
        signal.strength = 0.9
        with self.assertRaises(ValueError):
            signal.save()
        with self.assertRaises(ValueError):
            signal.delete()

    def test_mark_processed_is_the_only_update(self):
        ids = [s.id for s in self.store('hi', 'hello')]
        self.assertEqual(ProfileService.mark_signals_processed(ids), 2)
        self.assertEqual(ProfileService.mark_signals_processed(ids), 0)

    def test_apply_decay_never_deletes(self):
        old = self.now - timedelta(days=400)
        score = self.score(BeliefDomain.BEHAVIORAL_PATTERNS, {}, 0.31)
        DimensionScore.objects.filter(pk=score.pk).update(last_decayed_at=old)

        ProfileService.apply_decay(self.profile, self.now)

        score.refresh_from_db()
        self.assertLess(score.confidence, 0.31)
        self.assertEqual(score.last_decayed_at, self.now)

    def test_explicit_fact_never_downgraded(self):
        ProfileService.upsert_fact(
            self.profile, BeliefDomain.IDENTITY_CONTEXT, 'identity', 'role', 'CTO',
            EvidenceSource.ELICITATION, is_explicit=True,
        )
        fact = ProfileService.upsert_fact(
            self.profile, BeliefDomain.IDENTITY_CONTEXT, 'identity', 'role', 'engineer',
            EvidenceSource.BEHAVIORAL_SINGLE, is_explicit=False,
        )
        self.assertTrue(fact.is_explicit)
        self.assertEqual(fact.confidence, 1.0)
        self.assertEqual(fact.value, 'engineer')

    def test_reset_profile(self):
        self.store('hi')
        self.score(BeliefDomain.COMMUNICATION_PREFS, {'verbosity': 'concise'}, 0.8)
        ProfileService.reset_profile(self.profile)
        self.assertEqual(ProfileSignal.objects.count(), 0)
        self.assertEqual(DimensionScore.objects.count(), 0)
        self.assertEqual(self.profile.signal_count, 0)


class ContextSummaryTest(ProfileTestMixin, TestCase):
    """Test profile assembly and prompt formatting"""

    def test_unknown_user_gets_neutral_summary(self):
        stranger = User.objects.create_user(username='stranger', password='x')
        summary = get_context_summary(stranger)
        self.assertFalse(summary.should_personalize)
        self.assertEqual(summary.adapters['verbosity_multiplier'], 1.0)
        self.assertEqual(summary.adapters['autonomy_level'], 0.5)

    def test_low_confidence_does_not_personalize(self):
        self.score(BeliefDomain.COMMUNICATION_PREFS, {'verbosity': 'concise'}, 0.2)
        self.assertFalse(get_context_summary(self.user).should_personalize)

    def test_personalized_summary(self):
        self.score(BeliefDomain.COMMUNICATION_PREFS, {'verbosity': 'concise', 'tone_preference': 'directive'}, 0.9)
        self.score(BeliefDomain.RELATIONSHIP_STATE, {'trust_maturity': 0.8, 'autonomy_tolerance': 0.8}, 0.8)

        summary = get_context_summary(self.user)

        self.assertTrue(summary.should_personalize)
        self.assertTrue(summary.summary.startswith('User Profile:\n'))
        self.assertIn('prefers brief responses', summary.summary)
        self.assertEqual(summary.adapters['verbosity_multiplier'], 0.6)
        self.assertEqual(summary.adapters['suggested_mode'], 'quick')
        self.assertEqual(summary.adapters['autonomy_level'], 0.8)

    def test_facts_take_precedence(self):
        self.score(BeliefDomain.COMMUNICATION_PREFS, {'verbosity': 'concise'}, 0.9)
        ProfileService.upsert_fact(
            self.profile, BeliefDomain.COMMUNICATION_PREFS, 'preference', 'verbosity', 'detailed',
            EvidenceSource.ELICITATION, is_explicit=True,
        )
        assembled = assemble_profile(self.user)
        self.assertEqual(assembled.verbosity, 'detailed')
        self.assertEqual(assembled.detail_level, 'detailed')

    def test_process_message_never_raises(self):
        with mock.patch('apps.profiles.services.extract_signals', side_effect=RuntimeError('boom')):
            with self.assertLogs('apps.profiles.services', level='ERROR'):
                self.assertEqual(process_message(self.user, 'hello'), [])

    def test_process_message_stores_and_checks_reflection(self):
        with mock.patch('apps.profiles.reflection.maybe_trigger_reflection') as trigger:
            signals = process_message(self.user, 'I prefer detailed responses', response_mode='thoughtful')
        kinds = {s.signal_type for s in signals}
        self.assertIn(SignalType.MODE_SELECTION, kinds)
        self.assertEqual(ProfileSignal.objects.filter(profile=self.profile).count(), len(signals))
        trigger.assert_called_once()


class ReflectionEligibilityTest(ProfileTestMixin, TestCase):
    """Test reflection trigger rules"""

    def test_tier_a_never_eligible(self):
        self.store('a', 'b', 'c')
        ProfileService.set_privacy_tier(self.profile, PrivacyTier.A)
        eligibility = reflection.check_eligibility(self.profile, self.now)
        self.assertFalse(eligibility.should_run)
        self.assertEqual(eligibility.reason, 'privacy_tier_a')

    def test_no_trigger(self):
        self.store('a', 'b')
        eligibility = reflection.check_eligibility(self.profile, self.now)
        self.assertEqual(eligibility.state, ReflectionState.IDLE)
        self.assertEqual(eligibility.reason, 'no_trigger')

    def test_initial_bootstrap(self):
        self.store('a', 'b', 'c')
        eligibility = reflection.check_eligibility(self.profile, self.now)
        self.assertEqual(eligibility.state, ReflectionState.ELIGIBLE)
        self.assertEqual(eligibility.reason, 'initial')

    def test_signal_threshold(self):
        self.store(*['hi'] * 10)
        self.assertEqual(reflection.check_eligibility(self.profile, self.now).reason, 'signal_threshold')

    def test_scheduled(self):
        self.profile.last_reflection_at = self.now - timedelta(hours=2)
        self.profile.next_reflection_at = self.now - timedelta(minutes=1)
        self.assertEqual(reflection.check_eligibility(self.profile, self.now).reason, 'scheduled')

    def test_stale_after_a_day(self):
        self.store('hi')
        self.profile.last_reflection_at = self.now - timedelta(hours=25)
        self.assertEqual(reflection.check_eligibility(self.profile, self.now).reason, 'stale_24h')

    def test_recent_reflection_with_few_signals(self):
        self.store('hi')
        self.profile.last_reflection_at = self.now - timedelta(hours=2)
        self.assertFalse(reflection.check_eligibility(self.profile, self.now).should_run)


class ReflectionRunTest(ProfileTestMixin, TestCase):
    """Test reflection passes"""

    def test_reflection_updates_beliefs(self):
        self.store('hi', 'ok thanks', 'sounds good')

        result = reflection.run_reflection(self.profile.id, self.now)

        self.assertTrue(result.success)
        self.assertEqual(result.signals_processed, 4)
        comm = DimensionScore.objects.get(profile=self.profile, domain=BeliefDomain.COMMUNICATION_PREFS)
        self.assertEqual(comm.value['verbosity'], 'concise')
        self.assertEqual(comm.sources, ['BEHAVIORAL_REPEATED'])
        self.assertEqual(ProfileService.count_unprocessed_signals(self.profile), 0)

        self.profile.refresh_from_db()
        self.assertEqual(self.profile.last_reflection_at, self.now)
        self.assertEqual(self.profile.next_reflection_at, self.now + timedelta(hours=24))

    def test_gap_candidates(self):
        self.store('hi', 'ok thanks', 'sounds good')
        result = reflection.run_reflection(self.profile.id, self.now)

        identity = next(c for c in result.elicitation_candidates if c.domain == BeliefDomain.IDENTITY_CONTEXT)
        self.assertEqual(identity.priority, 13)

    def test_reflection_is_idempotent(self):
        """A second pass with no new signals changes nothing"""
        self.store('hi', 'ok thanks', 'sounds good')
        reflection.run_reflection(self.profile.id, self.now)
        comm = DimensionScore.objects.get(profile=self.profile, domain=BeliefDomain.COMMUNICATION_PREFS)

        second = reflection.run_reflection(self.profile.id, self.now + timedelta(minutes=5))

        self.assertTrue(second.success)
        self.assertEqual(second.signals_processed, 0)
        self.assertEqual(second.dimensions_updated, 0)
        comm_after = DimensionScore.objects.get(pk=comm.pk)
        self.assertEqual(comm_after.value, comm.value)
        self.assertEqual(comm_after.last_updated_at, comm.last_updated_at)

    def test_explicit_statement_overrides_behavioral_belief(self):
        self.store('hi', 'ok thanks', 'sounds good')
        reflection.run_reflection(self.profile.id, self.now)

        self.store('I prefer detailed responses')
        reflection.run_reflection(self.profile.id, self.now + timedelta(minutes=1))

        comm = DimensionScore.objects.get(profile=self.profile, domain=BeliefDomain.COMMUNICATION_PREFS)
        self.assertEqual(comm.value['verbosity'], 'detailed')
        self.assertEqual(comm.sources, ['EXPLICIT_PKV'])

    def test_weaker_inference_does_not_replace_stronger_belief(self):
        self.score(BeliefDomain.COMMUNICATION_PREFS, {'verbosity': 'detailed'}, 0.9)
        self.store('hi', 'ok thanks', 'sounds good')

        reflection.run_reflection(self.profile.id, self.now)

        comm = DimensionScore.objects.get(profile=self.profile, domain=BeliefDomain.COMMUNICATION_PREFS)
        self.assertEqual(comm.value['verbosity'], 'detailed')

    def test_lost_race_rolls_back(self):
        """A pass that loses the last_reflection_at guard commits nothing"""
        self.store('hi', 'ok thanks', 'sounds good')

        def competing_pass(signal_ids, now):
            from apps.profiles.models import UserProfile
            UserProfile.objects.filter(pk=self.profile.pk).update(last_reflection_at=now)
            return 0

        with mock.patch.object(ProfileService, 'mark_signals_processed', side_effect=competing_pass):
            result = reflection.run_reflection(self.profile.id, self.now)

        self.assertFalse(result.success)
        self.assertIn('concurrently', result.errors[0])
        self.assertEqual(DimensionScore.objects.filter(profile=self.profile).count(), 0)
        self.assertEqual(ProfileService.count_unprocessed_signals(self.profile), 4)

    def test_persistence_failure_is_reported_not_raised(self):
        self.store('hi', 'ok thanks', 'sounds good')
        with mock.patch.object(ProfileService, 'apply_decay', side_effect=DatabaseError('disk full')):
            with self.assertLogs('apps.profiles.reflection', level='ERROR'):
                result = reflection.run_reflection(self.profile.id, self.now)
        self.assertFalse(result.success)
        self.assertEqual(result.errors, ['disk full'])
        self.assertEqual(ProfileService.count_unprocessed_signals(self.profile), 4)

    def test_missing_profile(self):
        result = reflection.run_reflection('00000000-0000-0000-0000-000000000000')
        self.assertFalse(result.success)
        self.assertEqual(result.errors, ['Profile not found'])


class BatchReflectionTest(ProfileTestMixin, TestCase):
    """Test the fleet sweep"""

    def _profile(self, username, tier=PrivacyTier.B):
        user = User.objects.create_user(username=username, password='x')
        profile = ProfileService.get_or_create_profile(user)
        profile.privacy_tier = tier
        profile.save()
        return profile

    def test_sweep_counts(self):
        self.store('hi', 'ok thanks', 'sounds good')
        other = self._profile('other')
        self.store('one', 'two', 'three', profile=other)
        idle = self._profile('idle')
        self.store('just one', profile=idle)

        stats = reflection.run_batch_reflection(limit=10)

        self.assertEqual(stats, {'processed': 2, 'succeeded': 2, 'failed': 0, 'skipped': 0})
        idle.refresh_from_db()
        self.assertIsNone(idle.last_reflection_at)

    def test_ineligible_profiles_do_not_take_batch_slots(self):
        """Profiles below every threshold never crowd out an eligible one"""
        self.store('just one')
        quiet = self._profile('quiet')
        self.store('just one', profile=quiet)
        ready = self._profile('ready')
        self.store('one', 'two', 'three', profile=ready)

        stats = reflection.run_batch_reflection(limit=2)

        self.assertEqual(stats, {'processed': 1, 'succeeded': 1, 'failed': 0, 'skipped': 0})
        ready.refresh_from_db()
        self.assertIsNotNone(ready.last_reflection_at)
        self.profile.refresh_from_db()
        self.assertIsNone(self.profile.last_reflection_at)

    def test_eligible_profiles_match_eligibility_rules(self):
        self.store('just one')
        stale = self._profile('stale')
        stale.last_reflection_at = self.now - timedelta(hours=25)
        stale.save()
        self.store('just one', profile=stale)
        scheduled = self._profile('scheduled')
        scheduled.next_reflection_at = self.now - timedelta(minutes=1)
        scheduled.save()

        selected = set(reflection.eligible_profiles(self.now).values_list('id', flat=True))

        self.assertEqual(selected, {stale.id, scheduled.id})
        for profile in (self.profile, stale, scheduled):
            self.assertEqual(
                reflection.check_eligibility(profile, self.now).should_run,
                profile.id in selected,
            )

    def test_one_failure_does_not_stop_the_sweep(self):
        self.store('hi', 'ok thanks', 'sounds good')
        other = self._profile('other')
        self.store('one', 'two', 'three', profile=other)

        outcomes = [RuntimeError('boom'), ReflectionResult(success=True)]
        with mock.patch('apps.profiles.reflection.run_reflection', side_effect=outcomes):
            with self.assertLogs('apps.profiles.reflection', level='ERROR'):
                stats = reflection.run_batch_reflection(limit=10)

        self.assertEqual(stats['processed'], 2)
        self.assertEqual(stats['succeeded'], 1)
        self.assertEqual(stats['failed'], 1)

    def test_tier_a_profiles_are_not_swept(self):
        hidden = self._profile('hidden', tier=PrivacyTier.A)
        hidden.next_reflection_at = self.now - timedelta(hours=1)
        hidden.save()
        self.assertEqual(reflection.run_batch_reflection(limit=10)['processed'], 0)

    def test_status(self):
        self.store('hi')
        status = reflection.reflection_status()
        self.assertEqual(status['total_profiles'], 1)
        self.assertEqual(status['with_unprocessed_signals'], 1)
        self.assertEqual(status['pending_reflection'], 0)


class ReflectionTriggerTest(ProfileTestMixin, TestCase):
    """Test event-triggered reflection"""

    def test_short_session_does_not_trigger(self):
        self.store('hi', 'ok', 'fine')
        self.assertIsNone(reflection.on_session_close(self.profile, 5, self.now))

    def test_session_close_respects_cooldown(self):
        self.store('hi', 'ok', 'fine')
        self.profile.last_reflection_at = self.now - timedelta(hours=2)
        self.profile.save()
        self.assertIsNone(reflection.on_session_close(self.profile, 30, self.now))

    def test_long_session_triggers(self):
        self.store('hi', 'ok', 'fine')
        result = reflection.on_session_close(self.profile, 30, self.now)
        self.assertTrue(result.success)

    def test_decision_cluster_needs_three(self):
        self.assertIsNone(reflection.on_decision_cluster(self.profile, 2))

    def test_manual_trigger_without_profile(self):
        result = reflection.on_manual_trigger(None)
        self.assertFalse(result.success)

    def test_lazy_trigger_enqueues_when_eligible(self):
        self.store('hi', 'ok', 'fine')
        with mock.patch('apps.profiles.tasks.trigger_reflection_if_eligible.delay') as delay:
            trigger = reflection.maybe_trigger_reflection(self.profile, now=self.now)
        self.assertEqual(trigger, 'message')
        delay.assert_called_once_with(str(self.profile.pk), 'message')

    def test_lazy_trigger_idle(self):
        self.store('hi')
        with mock.patch('apps.profiles.tasks.trigger_reflection_if_eligible.delay') as delay:
            self.assertIsNone(reflection.maybe_trigger_reflection(self.profile, now=self.now))
        delay.assert_not_called()

    def test_trigger_task_runs_reflection(self):
        from apps.profiles.tasks import trigger_reflection_if_eligible
        self.store('hi', 'ok', 'fine')
        outcome = trigger_reflection_if_eligible(str(self.profile.pk), 'message')
        self.assertEqual(outcome['status'], 'completed')
        self.assertEqual(outcome['signals_processed'], 3)


class ElicitationTest(ProfileTestMixin, TestCase):
    """Test elicitation pacing and selection"""

    def _set(self, **fields):
        for name, value in fields.items():
            setattr(self.profile, name, value)
        self.profile.save()

    def test_no_profile(self):
        self.assertFalse(elicitation.should_ask(None).ask)

    def test_first_session_never_asks(self):
        self._set(session_count=1)
        decision = elicitation.should_ask(self.profile)
        self.assertFalse(decision.ask)
        self.assertEqual(decision.reason, 'first_session')

    def test_second_session_asks_highest_priority_gap(self):
        self._set(session_count=2)
        decision = elicitation.should_ask(self.profile)
        self.assertTrue(decision.ask)
        self.assertEqual(decision.question.id, 'identity_role')

    def test_never_repeats_a_question(self):
        self._set(session_count=2)
        elicitation.process_response(self.profile, 'identity_role', 'Product manager')
        self._set(session_count=3)

        decision = elicitation.should_ask(self.profile)

        asked = set(ElicitationResponse.objects.filter(profile=self.profile).values_list('question_id', flat=True))
        self.assertTrue(decision.ask)
        self.assertNotIn(decision.question.id, asked)
        self.assertEqual(decision.question.id, 'identity_name')

    def test_one_question_per_session(self):
        self._set(session_count=2)
        elicitation.mark_question_asked(self.profile)
        decision = elicitation.should_ask(self.profile)
        self.assertFalse(decision.ask)
        self.assertEqual(decision.reason, 'already_asked_this_session')

    def test_onboarding_cap(self):
        self._set(session_count=5, questions_asked=4)
        self.assertEqual(elicitation.should_ask(self.profile).reason, 'onboarding_complete')

    def test_confident_domain_is_not_a_gap(self):
        self._set(session_count=2)
        self.score(BeliefDomain.IDENTITY_CONTEXT, {'role': 'CTO'}, 0.9)
        self.assertEqual(elicitation.should_ask(self.profile).reason, 'no_relevant_question')

    def test_skip_condition(self):
        """The name question is skipped once a name is on file"""
        self._set(session_count=2)
        ProfileService.upsert_fact(
            self.profile, BeliefDomain.IDENTITY_CONTEXT, 'name', 'preferredName', 'Sam',
            EvidenceSource.EXPLICIT_PKV, is_explicit=True,
        )
        elicitation.process_response(self.profile, 'identity_role', 'Designer')
        self._set(session_count=2, last_question_session=None)
        self.assertEqual(elicitation.should_ask(self.profile).reason, 'no_relevant_question')

    def test_unknown_question(self):
        with self.assertRaises(UnknownElicitationQuestion):
            elicitation.process_response(self.profile, 'favorite_color', 'blue')

    def test_skipped_response(self):
        elicitation.process_response(self.profile, 'identity_role', '   ')
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.questions_asked, 1)
        self.assertEqual(self.profile.questions_skipped, 1)
        self.assertEqual(ProfileFact.objects.count(), 0)

    def test_answer_is_counted_once(self):
        elicitation.process_response(self.profile, 'identity_role', 'Designer')
        elicitation.process_response(self.profile, 'identity_role', 'Design lead')
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.questions_asked, 1)
        self.assertEqual(ProfileFact.objects.get(key='role').value, 'Design lead')

    def test_verbosity_answer_becomes_fact(self):
        elicitation.process_response(self.profile, 'comm_verbosity', 'Keep it short please')
        fact = ProfileFact.objects.get(fact_type='preference', key='verbosity')
        self.assertEqual(fact.value, 'concise')
        self.assertTrue(fact.is_explicit)
        self.assertEqual(fact.confidence, 1.0)
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.elicitation_phase, 3)

    def test_expertise_areas_are_split(self):
        elicitation.process_response(self.profile, 'expertise_areas', 'Python, data engineering and product strategy')
        values = list(ProfileFact.objects.filter(fact_type='expert').order_by('key').values_list('value', flat=True))
        self.assertEqual(values, ['Python', 'data engineering', 'product strategy'])

    def test_format_question(self):
        question = elicitation.get_question('identity_name')
        self.assertEqual(
            elicitation.format_question(question),
            "Quick question to help me help you better: What should I call you? (Skip if you'd rather not say)",
        )


class GapElicitationTest(ProfileTestMixin, TestCase):
    """Test the post-onboarding gap path"""

    def setUp(self):
        super().setUp()
        self.profile.session_count = 6
        self.profile.questions_asked = 4
        self.profile.elicitation_phase = 4
        self.profile.save()
        old = self.now - timedelta(days=10)
        for question_id in ('identity_role', 'identity_name', 'goals_current', 'comm_verbosity'):
            question = elicitation.get_question(question_id)
            ElicitationResponse.objects.create(
                profile=self.profile,
                question_id=question_id,
                question=question.question,
                domain=question.domain,
                response='x',
                session_number=2,
                phase=question.phase,
                created_at=old,
            )
        self.score(BeliefDomain.IDENTITY_CONTEXT, {}, 0.9)
        self.score(BeliefDomain.GOALS_VALUES, {}, 0.9)
        self.score(BeliefDomain.COMMUNICATION_PREFS, {}, 0.9)

    def test_still_onboarding(self):
        self.profile.questions_asked = 2
        self.profile.elicitation_phase = 2
        self.assertEqual(elicitation.should_ask_gap_question(self.profile, self.now).reason, 'still_onboarding')

    def test_lowest_confidence_domain_is_asked(self):
        decision = elicitation.should_ask_gap_question(self.profile, self.now)
        self.assertTrue(decision.ask)
        self.assertEqual(decision.question.id, 'expertise_areas')

    def test_once_per_week(self):
        elicitation.process_response(self.profile, 'expertise_areas', 'SQL', now=self.now - timedelta(days=2))
        decision = elicitation.should_ask_gap_question(self.profile, self.now)
        self.assertFalse(decision.ask)
        self.assertEqual(decision.reason, 'asked_recently')

    def test_unanswered_question_counts_toward_weekly_limit(self):
        """A gap question shown but never answered still blocks the next one"""
        elicitation.mark_question_asked(self.profile, now=self.now - timedelta(days=3))
        self.profile.session_count = 7

        decision = elicitation.should_ask_gap_question(self.profile, self.now)

        self.assertFalse(decision.ask)
        self.assertEqual(decision.reason, 'asked_recently')

    def test_question_shown_over_a_week_ago_does_not_block(self):
        elicitation.mark_question_asked(self.profile, now=self.now - timedelta(days=8))
        self.profile.session_count = 7

        self.assertTrue(elicitation.should_ask_gap_question(self.profile, self.now).ask)

    def test_moderate_confidence_is_not_significant(self):
        self.score(BeliefDomain.EXPERTISE_CALIBRATION, {}, 0.5)
        self.assertEqual(elicitation.should_ask_gap_question(self.profile, self.now).reason, 'no_significant_gap')

    def test_select_question_falls_back_to_gap_path(self):
        decision = elicitation.select_question(self.profile, self.now)
        self.assertTrue(decision.ask)
        self.assertEqual(decision.question.id, 'expertise_areas')


class ProfileApiTest(TestCase):
    """Test the profile REST endpoints"""

    def setUp(self):
        self.user = User.objects.create_user(username='apiuser', password='testpass')
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)

    def test_requires_authentication(self):
        response = APIClient().get('/api/profile/context/')
        self.assertEqual(response.status_code, 401)

    def test_context_without_profile(self):
        response = self.client.get('/api/profile/context/')
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data['should_personalize'])

    def test_ingest_message(self):
        response = self.client.post('/api/profile/messages/', {'text': 'I prefer detailed responses'}, format='json')
        self.assertEqual(response.status_code, 202)
        self.assertIn('preference_statement', response.data['signals'])

    def test_change_privacy_tier(self):
        response = self.client.patch('/api/profile/privacy/', {'privacy_tier': 'A'}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['privacy_tier'], 'A')

    def test_unknown_question_is_bad_request(self):
        response = self.client.post(
            '/api/profile/elicitation/respond/',
            {'question_id': 'nope', 'response': 'x'},
            format='json',
        )
        self.assertEqual(response.status_code, 400)

    def test_question_flow(self):
        self.client.post('/api/profile/sessions/', {}, format='json')
        self.client.post('/api/profile/sessions/', {}, format='json')

        first = self.client.get('/api/profile/elicitation/')
        self.assertTrue(first.data['ask'])
        self.assertEqual(first.data['question']['id'], 'identity_role')

        second = self.client.get('/api/profile/elicitation/')
        self.assertFalse(second.data['ask'])

    def test_endpoints_without_profile_are_no_ops(self):
        """A user with no profile gets neutral answers, never an error"""
        response = self.client.post('/api/profile/sessions/close/', {'duration_minutes': 25}, format='json')
        self.assertEqual(response.status_code, 202)
        self.assertIsNone(response.data['task_id'])

        response = self.client.post('/api/profile/reflect/')
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['signals_processed'], 0)

        response = self.client.post('/api/profile/reset/')
        self.assertEqual(response.status_code, 204)

        self.assertIsNone(ProfileService.get_profile(self.user))

    def test_status_is_staff_only(self):
        response = self.client.get('/api/profile/reflection/status/')
        self.assertEqual(response.status_code, 403)
