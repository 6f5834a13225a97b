"""
Tests for the insights app
"""
from datetime import timedelta

from django.contrib.auth.models import User
from django.core.cache import caches
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from apps.common.exceptions import InsightNotFound, InvalidInsightTransition
from apps.insights.budget import InterruptBudget
from apps.insights.detectors import (
    QUESTION_COMPLEXITY,
    RESPONSE_MODE,
    SESSION_DURATION,
    TOPIC_CATEGORY,
    PatternBreakDetector,
    insight_from_pattern_break,
)
from apps.insights.engagement import EngagementEstimator, EngagementLevel
from apps.insights.insight_queue import (
    CategoryStats,
    DeliveryContext,
    InsightSession,
    InsightState,
    QueuedInsight,
)
from apps.insights.models import BehaviorBaseline
from apps.insights.priority import calculate_priority
from apps.insights.services import InsightService
from apps.insights.store import InsightSessionStore

# Eight words, matches no topic pattern
PLAIN_QUESTION = 'what should we do about the weekly numbers'
LONG_QUESTION = ' '.join(['numbers'] * 40)


class InterruptBudgetTest(SimpleTestCase):
    """Test the hourly interrupt allowance"""

    def test_exhausts_then_resets_after_an_hour(self):
        """Budget runs out at the limit and comes back once the hour has passed"""
        start = timezone.now()
        budget = InterruptBudget(hourly_limit=3, hour_started_at=start)
        for _ in range(3):
            self.assertTrue(budget.has_remaining(start))
            budget.consume(start)

        self.assertFalse(budget.has_remaining(start))
        self.assertFalse(budget.has_remaining(start + timedelta(minutes=59)))
        self.assertTrue(budget.has_remaining(start + timedelta(minutes=60)))
        self.assertEqual(budget.remaining(start + timedelta(minutes=60)), 3)


class EngagementEstimatorTest(SimpleTestCase):
    """Test engagement levels from input cadence"""

    def setUp(self):
        self.now = timezone.now()
        self.estimator = EngagementEstimator(last_activity_at=self.now)

    def _type(self, chars, count=4):
        for i in range(count):
            self.estimator.record_keystroke(chars, at=self.now + timedelta(seconds=i))
        return self.now + timedelta(seconds=count - 1)

    def test_fast_typing_is_deep_focus(self):
        last = self._type(5)
        self.assertEqual(self.estimator.current_level(last), EngagementLevel.DEEP)

    def test_slow_typing_is_active(self):
        last = self._type(1)
        self.assertEqual(self.estimator.current_level(last), EngagementLevel.ACTIVE)

    def test_velocity_leaks_then_idle_then_away(self):
        """Deep focus fades once typing stops, then idle, then away"""
        last = self._type(5)
        self.assertEqual(self.estimator.current_level(last + timedelta(seconds=11)), EngagementLevel.ACTIVE)
        self.assertEqual(self.estimator.current_level(last + timedelta(seconds=40)), EngagementLevel.IDLE)
        self.assertEqual(self.estimator.current_level(last + timedelta(seconds=301)), EngagementLevel.AWAY)

    def test_checking_level_is_not_activity(self):
        """Polling the level must not reset the idle clock"""
        later = self.now + timedelta(seconds=45)
        self.estimator.current_level(later)
        self.estimator.current_level(later)
        self.assertEqual(self.estimator.last_activity_at, self.now)
        self.assertEqual(self.estimator.idle_seconds(later), 45)

    def test_message_sent_resets_velocity(self):
        last = self._type(5)
        level = self.estimator.record_message_sent(at=last)
        self.assertEqual(self.estimator.typing_velocity, 0.0)
        self.assertEqual(level, EngagementLevel.ACTIVE)


class PriorityTest(SimpleTestCase):
    """Test insight priority scoring"""

    def test_category_magnitude(self):
        self.assertEqual(calculate_priority('contradiction'), 7)
        self.assertEqual(calculate_priority('recall'), 6)

    def test_goal_alignment_raises_priority(self):
        self.assertEqual(calculate_priority('clarify', context_tags=['pricing']), 6)
        self.assertEqual(
            calculate_priority('clarify', context_tags=['pricing'], active_goals=['Fix the pricing page']),
            7,
        )

    def test_rating_history_for_category(self):
        """Only ratings of the same category move the score"""
        self.assertEqual(calculate_priority('contradiction', rating_history=[('contradiction', -1.0)]), 5)
        self.assertEqual(calculate_priority('contradiction', rating_history=[('recall', -1.0)]), 7)

    def test_bounded(self):
        high = calculate_priority(
            'contradiction',
            context_tags=['pricing'],
            expanded_content='more',
            active_goals=['pricing'],
            rating_history=[('contradiction', 1.0)],
            confidence=1.0,
        )
        low = calculate_priority(
            'recall',
            recent_categories=['recall'],
            rating_history=[('recall', -1.0)],
            confidence=0.0,
        )
        self.assertEqual(high, 10)
        self.assertGreaterEqual(low, 1)
        self.assertLess(low, 5)


class InsightLifecycleTest(SimpleTestCase):
    """Test insight state transitions"""

    def _insight(self):
        now = timezone.now()
        return QueuedInsight(
            id='insight_test', user_key='1', type='clarify', title='T', message='M',
            priority=5, trigger='idle', created_at=now, expires_at=now + timedelta(hours=24),
        )

    def test_delivered_then_engaged(self):
        insight = self._insight()
        insight.transition(InsightState.DELIVERED)
        insight.transition(InsightState.ENGAGED)
        self.assertEqual(insight.state, InsightState.ENGAGED)
        self.assertIsNotNone(insight.delivered_at)
        self.assertIsNotNone(insight.engaged_at)

    def test_invalid_transitions_raise(self):
        insight = self._insight()
        with self.assertRaises(InvalidInsightTransition):
            insight.transition(InsightState.ENGAGED)

        insight.transition(InsightState.DELIVERED)
        insight.transition(InsightState.DISMISSED)
        with self.assertRaises(InvalidInsightTransition):
            insight.transition(InsightState.ENGAGED)

    def test_expired_is_final(self):
        insight = self._insight()
        insight.transition(InsightState.EXPIRED)
        with self.assertRaises(InvalidInsightTransition):
            insight.transition(InsightState.DELIVERED)


class InsightSessionTest(SimpleTestCase):
    """Test queueing, gating and delivery"""

    def setUp(self):
        self.now = timezone.now()
        self.session = InsightSession('user-1', now=self.now)

    def queue(self, **kwargs):
        params = {
            'category': 'clarify',
            'title': 'Worth a look',
            'message': 'Something changed.',
            'priority': 5,
            'trigger': 'idle',
            'now': self.now,
        }
        params.update(kwargs)
        return self.session.queue_insight(**params)

    def next(self, trigger='idle', context=None, at=None):
        return self.session.select_next(trigger, context or DeliveryContext(), at or self.now)

    def test_trigger_mismatch_returns_none(self):
        self.queue(trigger='session_start')
        insight, reason = self.next('idle', DeliveryContext(idle_seconds=60))
        self.assertIsNone(insight)
        self.assertEqual(reason, 'no_eligible_insight')

    def test_idle_threshold(self):
        """Unmet idle threshold returns nothing; met threshold delivers exactly once"""
        queued = self.queue(min_idle_seconds=30)
        self.assertIsNone(self.session.get_next_insight('idle', DeliveryContext(idle_seconds=10), self.now))

        delivered = self.session.get_next_insight('idle', DeliveryContext(idle_seconds=45), self.now)
        self.assertEqual(delivered.id, queued.id)
        self.assertEqual(delivered.state, InsightState.DELIVERED)

        self.session.preferences.min_interval_minutes = 0
        self.assertIsNone(self.session.get_next_insight('idle', DeliveryContext(idle_seconds=45), self.now))
        self.assertEqual(self.session.pending_count(self.now), 0)

    def test_delivery_consumes_budget_and_counts(self):
        insight = self.queue()
        self.next()
        self.assertEqual(self.session.active_insight.id, insight.id)
        self.assertEqual(self.session.delivered_count, 1)
        self.assertEqual(self.session.last_delivery_at, self.now)
        self.assertEqual(self.session.budget.used_this_hour, 1)
        self.assertEqual(self.session.preferences.category_engagement['clarify'].shown, 1)

    def test_budget_exhausted_then_reset(self):
        self.session.preferences.min_interval_minutes = 0
        for _ in range(4):
            self.queue()
        for _ in range(3):
            self.assertIsNotNone(self.next()[0])

        insight, reason = self.next()
        self.assertIsNone(insight)
        self.assertEqual(reason, 'budget_exhausted')

        insight, _ = self.next(at=self.now + timedelta(minutes=61))
        self.assertIsNotNone(insight)

    def test_deep_focus_blocks_delivery(self):
        self.queue()
        for i in range(4):
            self.session.record_keystroke(5, at=self.now + timedelta(seconds=i))
        at = self.now + timedelta(seconds=3)

        self.assertFalse(self.session.can_surface_insight(at).can_surface)
        insight, reason = self.next(at=at)
        self.assertIsNone(insight)
        self.assertEqual(reason, 'deep_focus')

    def test_context_and_preference_gates(self):
        self.queue()
        self.assertEqual(self.next(context=DeliveryContext(is_conversation_active=True))[1], 'conversation_active')
        self.assertEqual(self.next(context=DeliveryContext(is_focus_mode=True))[1], 'focus_mode')

        self.session.update_preferences(preferred_triggers=['session_start'])
        self.assertEqual(self.next()[1], 'trigger_disabled')

        self.session.update_preferences(bubble_mode='off')
        self.assertEqual(self.next()[1], 'bubble_off')

        self.session.update_preferences(enabled=False)
        self.assertEqual(self.next()[1], 'disabled')

    def test_min_interval_between_deliveries(self):
        self.queue()
        self.queue()
        self.assertIsNotNone(self.next()[0])
        self.assertEqual(self.next(at=self.now + timedelta(minutes=5))[1], 'min_interval')
        self.assertIsNotNone(self.next(at=self.now + timedelta(minutes=11))[0])

    def test_session_cap_and_reset(self):
        self.session.update_preferences(max_per_session=1, min_interval_minutes=0)
        self.queue()
        self.queue()
        self.assertIsNotNone(self.next()[0])
        self.assertEqual(self.next()[1], 'session_cap')

        self.session.reset_session()
        self.assertIsNotNone(self.next()[0])

    def test_quiet_mode_only_high_priority(self):
        self.session.update_preferences(bubble_mode='quiet')
        self.queue(priority=5)
        self.assertIsNone(self.next()[0])

        high = self.queue(priority=8)
        self.assertEqual(self.next()[0].id, high.id)

    def test_muted_category_is_skipped(self):
        self.session.mute_category('recall')
        self.queue(category='recall')
        self.assertIsNone(self.next()[0])

        self.session.unmute_category('recall')
        self.assertIsNotNone(self.next()[0])

    def test_highest_priority_wins(self):
        self.queue(priority=4)
        high = self.queue(priority=9)
        self.queue(priority=6)
        self.assertEqual(self.next()[0].id, high.id)

    def test_ties_broken_by_engagement_rate(self):
        engagement = self.session.preferences.category_engagement
        engagement['clarify'] = CategoryStats(shown=4, engaged=1)
        engagement['recall'] = CategoryStats(shown=4, engaged=3)
        self.queue(category='clarify')
        recall = self.queue(category='recall')
        self.assertEqual(self.next()[0].id, recall.id)

    def test_full_tie_goes_to_earliest(self):
        first = self.queue()
        self.queue()
        self.assertEqual(self.next()[0].id, first.id)

    def test_contextual_needs_matching_topic(self):
        self.queue(trigger='contextual', context_tags=['pricing'])
        self.assertIsNone(self.next('contextual', DeliveryContext(current_topic='hiring plan'))[0])
        insight = self.next('contextual', DeliveryContext(current_topic='Pricing strategy'))[0]
        self.assertIsNotNone(insight)

    def test_expired_insights_are_not_delivered(self):
        insight = self.queue()
        later = self.now + timedelta(hours=25)
        self.assertEqual(self.next(at=later)[1], 'no_eligible_insight')
        self.assertEqual(self.session.prune_expired(later), 1)
        self.assertEqual(insight.state, InsightState.EXPIRED)

    def test_expiry_depends_on_category(self):
        self.assertEqual(self.queue(category='contradiction').expires_at, self.now + timedelta(hours=24))
        self.assertEqual(self.queue(category='next_step').expires_at, self.now + timedelta(hours=48))
        self.assertEqual(self.queue(category='recall').expires_at, self.now + timedelta(hours=72))

    def test_priority_is_clamped(self):
        self.assertEqual(self.queue(priority=42).priority, 10)
        self.assertEqual(self.queue(priority=-3).priority, 1)

    def test_capacity_evicts_lowest_priority(self):
        for _ in range(5):
            self.queue(priority=1)
        for _ in range(20):
            self.queue(priority=5)
        self.assertEqual(len(self.session.insights), 20)
        self.assertTrue(all(i.priority == 5 for i in self.session.insights))

    def test_record_engagement(self):
        self.queue()
        delivered = self.next()[0]
        engaged = self.session.record_engagement(delivered.id, 'expand', rating=0.5, now=self.now)

        self.assertEqual(engaged.state, InsightState.ENGAGED)
        self.assertEqual(engaged.engagement_type, 'expanded')
        self.assertEqual(engaged.feedback_rating, 0.5)
        self.assertIsNone(self.session.active_insight)
        self.assertEqual(self.session.rating_history, [('clarify', 0.5)])
        stats = self.session.preferences.category_engagement['clarify']
        self.assertEqual((stats.shown, stats.engaged), (1, 1))

        with self.assertRaises(InvalidInsightTransition):
            self.session.record_engagement(delivered.id, 'dismiss')

    def test_engagement_requires_delivery(self):
        pending = self.queue()
        with self.assertRaises(InvalidInsightTransition):
            self.session.record_engagement(pending.id, 'act')
        with self.assertRaises(InsightNotFound):
            self.session.record_engagement('insight_missing', 'act')

    def test_dismiss_active(self):
        self.assertIsNone(self.session.dismiss_active())
        self.queue()
        delivered = self.next()[0]
        dismissed = self.session.dismiss_active(now=self.now)
        self.assertEqual(dismissed.id, delivered.id)
        self.assertEqual(dismissed.state, InsightState.DISMISSED)
        self.assertEqual(self.session.preferences.category_engagement['clarify'].engaged, 0)

    def test_update_preferences_validates(self):
        self.session.update_preferences(max_per_hour=1)
        self.assertEqual(self.session.budget.hourly_limit, 1)
        with self.assertRaises(ValueError):
            self.session.update_preferences(colour='blue')
        with self.assertRaises(ValueError):
            self.session.update_preferences(bubble_mode='loud')


class InsightSessionStoreTest(SimpleTestCase):
    """Test the cache-backed session store"""

    def setUp(self):
        caches['insights'].clear()
        self.store = InsightSessionStore(cache_alias='insights', ttl_seconds=60)

    def test_round_trip(self):
        session = self.store.get_or_create('user-1', 'abc')
        session.queue_insight('recall', 'Remember this', 'You decided X last week.')
        session.mute_category('clarify')
        self.store.save(session)

        loaded = self.store.get('user-1', 'abc')
        self.assertEqual(loaded.pending_count(), 1)
        self.assertEqual(loaded.preferences.muted_categories, ['clarify'])
        self.assertIsNone(self.store.get('user-1', 'other'))

        self.store.delete('user-1', 'abc')
        self.assertIsNone(self.store.get('user-1', 'abc'))


class PatternBreakDetectorTest(SimpleTestCase):
    """Test pattern-break detection against the behavior baseline"""

    def setUp(self):
        self.detector = PatternBreakDetector()

    def _warm(self, questions=10, mode='quick'):
        baseline = BehaviorBaseline()
        for _ in range(questions):
            self.assertEqual(self.detector.observe_question(baseline, PLAIN_QUESTION, mode=mode), [])
        return baseline

    def test_silent_until_enough_data(self):
        baseline = self._warm(questions=9)
        self.assertEqual(self.detector.observe_question(baseline, LONG_QUESTION), [])

    def test_baseline_folding(self):
        baseline = self._warm()
        self.assertEqual(baseline.data_points, 10)
        self.assertEqual(baseline.avg_word_count, 8)
        self.assertEqual(baseline.mode_counts, {'quick': 10})
        self.assertEqual(baseline.mode_preference, 'quick')
        self.assertEqual(baseline.top_topics, [])

    def test_long_question_is_complexity_break(self):
        baseline = self._warm()
        breaks = self.detector.observe_question(baseline, LONG_QUESTION)
        self.assertEqual([b.dimension for b in breaks], [QUESTION_COMPLEXITY])
        self.assertEqual(breaks[0].significance, 'high')
        self.assertEqual(breaks[0].actual, 40)

    def test_rare_mode_is_mode_break(self):
        baseline = self._warm()
        breaks = self.detector.observe_question(baseline, PLAIN_QUESTION, mode='council')
        self.assertEqual(len(breaks), 1)
        self.assertEqual(breaks[0].dimension, RESPONSE_MODE)
        self.assertEqual((breaks[0].expected, breaks[0].actual), ('quick', 'council'))
        self.assertEqual(breaks[0].significance, 'high')

    def test_new_topic_break(self):
        baseline = BehaviorBaseline(data_points=10, avg_word_count=8, top_topics=['technical', 'business', 'personal'])
        breaks = self.detector.observe_question(baseline, 'we need a new brand look for spring')
        self.assertEqual([b.dimension for b in breaks], [TOPIC_CATEGORY])
        self.assertEqual(breaks[0].actual, 'creative')
        self.assertEqual(baseline.top_topics, ['technical', 'business', 'personal', 'creative'])

    def test_top_topics_capped(self):
        baseline = BehaviorBaseline(top_topics=['a', 'b', 'c', 'd', 'e'])
        self.detector.observe_question(baseline, PLAIN_QUESTION, topic='f')
        self.assertEqual(baseline.top_topics, ['b', 'c', 'd', 'e', 'f'])

    def test_session_duration(self):
        def baseline():
            return BehaviorBaseline(data_points=10, session_samples=4, avg_session_minutes=20)

        long_session = baseline()
        breaks = self.detector.observe_session(long_session, 75)
        self.assertEqual([b.dimension for b in breaks], [SESSION_DURATION])
        self.assertEqual(breaks[0].significance, 'high')
        self.assertEqual(long_session.session_samples, 5)
        self.assertEqual(long_session.avg_session_minutes, 31)

        self.assertEqual(self.detector.observe_session(baseline(), 45)[0].significance, 'medium')
        self.assertEqual(self.detector.observe_session(baseline(), 30), [])

    def test_insight_draft(self):
        baseline = self._warm()
        brk = self.detector.observe_question(baseline, LONG_QUESTION)[0]
        draft = insight_from_pattern_break(brk)
        self.assertEqual(draft['category'], 'clarify')
        self.assertEqual(draft['title'], 'Diving deeper')
        self.assertEqual(draft['priority'], 8)
        self.assertEqual(draft['trigger'], 'idle')
        self.assertEqual(draft['min_idle_seconds'], 30)
        self.assertEqual(draft['context_tags'], [QUESTION_COMPLEXITY])


class InsightServiceTest(TestCase):
    """Test baseline updates and insight queueing"""

    def setUp(self):
        self.user = User.objects.create_user(username='testuser', password='testpass')
        self.session = InsightSession(self.user.pk)

    def test_first_question_creates_baseline(self):
        queued = InsightService.observe_question(self.user, self.session, PLAIN_QUESTION, mode='quick')
        self.assertEqual(queued, [])
        baseline = BehaviorBaseline.objects.get(user=self.user)
        self.assertEqual(baseline.data_points, 1)
        self.assertEqual(baseline.mode_preference, 'quick')

    def test_mode_break_queues_scored_insight(self):
        BehaviorBaseline.objects.create(
            user=self.user,
            data_points=10,
            avg_word_count=8,
            mode_counts={'quick': 10},
            mode_preference='quick',
        )
        queued = InsightService.observe_question(self.user, self.session, PLAIN_QUESTION, mode='council')

        self.assertEqual(len(queued), 1)
        insight = queued[0]
        self.assertEqual(insight.type, 'contradiction')
        self.assertEqual(insight.state, InsightState.PENDING)
        self.assertEqual(insight.priority, 8)
        self.assertEqual(self.session.pending_count(), 1)

        baseline = BehaviorBaseline.objects.get(user=self.user)
        self.assertEqual(baseline.data_points, 11)
        self.assertEqual(baseline.mode_counts['council'], 1)

    def test_session_observation(self):
        BehaviorBaseline.objects.create(user=self.user, data_points=10, session_samples=4, avg_session_minutes=20)
        queued = InsightService.observe_session(self.user, self.session, 75)
        self.assertEqual([i.type for i in queued], ['next_step'])
        self.assertEqual(queued[0].title, 'Deep work session')


class InsightApiTest(TestCase):
    """Test the insight endpoints"""

    def setUp(self):
        caches['insights'].clear()
        self.user = User.objects.create_user(username='testuser', password='testpass')
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)

    def _queue(self, **kwargs):
        store = InsightSessionStore()
        session = store.get_or_create(self.user.pk)
        insight = session.queue_insight(
            kwargs.pop('category', 'next_step'),
            'Next step',
            'Ready to draft the plan?',
            trigger=kwargs.pop('trigger', 'session_start'),
            **kwargs
        )
        store.save(session)
        return insight

    def test_requires_authentication(self):
        response = APIClient().get(reverse('insights:next'), {'trigger': 'idle'})
        self.assertEqual(response.status_code, 401)

    def test_next_requires_valid_trigger(self):
        self.assertEqual(self.client.get(reverse('insights:next')).status_code, 400)
        self.assertEqual(self.client.get(reverse('insights:next'), {'trigger': 'whenever'}).status_code, 400)

    def test_next_with_empty_queue(self):
        response = self.client.get(reverse('insights:next'), {'trigger': 'session_start'})
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.data['insight'])
        self.assertEqual(response.data['reason'], 'no_eligible_insight')

    def test_deliver_then_engage(self):
        queued = self._queue()

        response = self.client.get(reverse('insights:next'), {'trigger': 'session_start'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['insight']['id'], queued.id)
        self.assertEqual(response.data['insight']['state'], 'delivered')
        self.assertEqual(response.data['budget_remaining'], 2)

        url = reverse('insights:engagement', args=[queued.id])
        response = self.client.post(url, {'action': 'act', 'rating': 1}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['state'], 'engaged')
        self.assertEqual(response.data['engagement_type'], 'acted')

        response = self.client.post(url, {'action': 'dismiss'}, format='json')
        self.assertEqual(response.status_code, 409)

    def test_engagement_unknown_insight(self):
        url = reverse('insights:engagement', args=['insight_missing'])
        response = self.client.post(url, {'action': 'expand'}, format='json')
        self.assertEqual(response.status_code, 404)

    def test_engagement_rejects_bad_rating(self):
        queued = self._queue()
        url = reverse('insights:engagement', args=[queued.id])
        response = self.client.post(url, {'action': 'expand', 'rating': 3}, format='json')
        self.assertEqual(response.status_code, 400)

    def test_dismiss_without_active(self):
        response = self.client.post(reverse('insights:dismiss'), {}, format='json')
        self.assertEqual(response.status_code, 204)

    def test_activity(self):
        response = self.client.post(reverse('insights:activity'), {'type': 'keystroke', 'chars_typed': 3}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertIn(response.data['engagement_level'], [level.value for level in EngagementLevel])

        response = self.client.post(reverse('insights:activity'), {'type': 'session_end'}, format='json')
        self.assertEqual(response.status_code, 400)

    def test_message_activity_queues_pattern_break(self):
        BehaviorBaseline.objects.create(
            user=self.user,
            data_points=10,
            avg_word_count=8,
            mode_counts={'quick': 10},
            mode_preference='quick',
        )
        response = self.client.post(
            reverse('insights:activity'),
            {'type': 'message_sent', 'text': PLAIN_QUESTION, 'response_mode': 'council'},
            format='json',
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data['queued']), 1)
        self.assertEqual(response.data['pending_count'], 1)

    def test_preferences(self):
        response = self.client.get(reverse('insights:preferences'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['bubble_mode'], 'on')
        self.assertEqual(response.data['category_engagement']['recall']['rate'], 0.5)

        response = self.client.patch(
            reverse('insights:preferences'),
            {'bubble_mode': 'quiet', 'muted_categories': ['recall']},
            format='json',
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['bubble_mode'], 'quiet')

        response = self.client.get(reverse('insights:preferences'))
        self.assertEqual(response.data['muted_categories'], ['recall'])

        response = self.client.patch(reverse('insights:preferences'), {'bubble_mode': 'loud'}, format='json')
        self.assertEqual(response.status_code, 400)
