"""
End-to-end tests across the profile and insight apps

Covers the two flows the chat pipeline drives:
1. User messages → signals stored → reflection task → beliefs → context summary
2. Message activity → behavior baseline → pattern break → idle delivery → engagement
"""
from unittest import mock

import pytest
from django.contrib.auth.models import User
from django.core.cache import caches
from django.urls import reverse
from rest_framework.test import APIClient

from apps.profiles.models import BeliefDomain, DimensionScore
from apps.profiles.services import ProfileService, assemble_profile, get_context_summary, process_message
from apps.profiles.tasks import run_reflection_task

PLAIN_QUESTION = 'what should we do about the weekly numbers'


@pytest.fixture(autouse=True)
def clear_insight_sessions():
    caches['insights'].clear()


@pytest.fixture
def user(db):
    return User.objects.create_user(username='pipeline', password='test123')


@pytest.fixture
def api_client(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


def _chat(user, *texts, session_id='s-1'):
    """Feed messages through the chat hook without letting triggers fire."""
    with mock.patch('apps.profiles.tasks.trigger_reflection_if_eligible.delay'):
        for text in texts:
            process_message(user, text, session_id=session_id)
    return ProfileService.get_profile(user)


@pytest.mark.django_db
class TestProfileLearning:
    """Messages in, beliefs out"""

    def test_casual_messages_learn_concise(self, user):
        profile = _chat(user, 'hi', 'ok thanks', 'sounds good')

        outcome = run_reflection_task.delay(str(profile.pk)).get()

        assert outcome['status'] == 'completed'
        assert outcome['signals_processed'] == 4
        comm = DimensionScore.objects.get(profile=profile, domain=BeliefDomain.COMMUNICATION_PREFS)
        assert comm.value['verbosity'] == 'concise'
        assert comm.sources == ['BEHAVIORAL_REPEATED']
        assert comm.confidence > 0
        assert assemble_profile(user).verbosity == 'concise'

    def test_explicit_preference_overrides_behavior(self, user):
        profile = _chat(user, 'hi', 'ok thanks', 'sounds good')
        run_reflection_task.delay(str(profile.pk)).get()

        _chat(user, 'I prefer detailed responses')
        outcome = run_reflection_task.delay(str(profile.pk)).get()

        assert outcome['signals_processed'] == 2
        comm = DimensionScore.objects.get(profile=profile, domain=BeliefDomain.COMMUNICATION_PREFS)
        assert comm.value['verbosity'] == 'detailed'
        assert comm.sources == ['EXPLICIT_PKV']
        assert assemble_profile(user).verbosity == 'detailed'

    def test_message_trigger_runs_reflection_inline(self, user):
        """With eager Celery, crossing the initial threshold reflects immediately"""
        for text in ('hi', 'ok thanks', 'sounds good'):
            process_message(user, text, session_id='s-1')

        profile = ProfileService.get_profile(user)
        assert profile.last_reflection_at is not None
        assert profile.next_reflection_at is not None

    def test_unknown_user_gets_neutral_summary(self, user):
        summary = get_context_summary(user)
        assert summary.should_personalize is False
        assert summary.summary == ''
        assert summary.adapters['verbosity_multiplier'] == 1.0


@pytest.mark.django_db
class TestInsightDelivery:
    """Activity in, insights out"""

    def _send(self, client, text, mode, session_id='default'):
        response = client.post(
            reverse('insights:activity'),
            {'type': 'message_sent', 'text': text, 'response_mode': mode, 'session_id': session_id},
            format='json',
        )
        assert response.status_code == 200
        return response.data

    def test_pattern_break_is_delivered_when_idle(self, api_client):
        for _ in range(10):
            assert self._send(api_client, PLAIN_QUESTION, 'quick')['queued'] == []

        queued = self._send(api_client, PLAIN_QUESTION, 'council')['queued']
        assert len(queued) == 1

        # Not idle long enough yet
        response = api_client.get(reverse('insights:next'), {'trigger': 'idle', 'idle_seconds': 5})
        assert response.data['insight'] is None

        response = api_client.get(reverse('insights:next'), {'trigger': 'idle', 'idle_seconds': 45})
        insight = response.data['insight']
        assert insight['id'] == queued[0]
        assert insight['type'] == 'contradiction'
        assert insight['title'] == 'Shifted thinking mode'
        assert insight['state'] == 'delivered'

        response = api_client.post(
            reverse('insights:engagement', args=[insight['id']]),
            {'action': 'expand', 'rating': 0.5},
            format='json',
        )
        assert response.status_code == 200
        assert response.data['state'] == 'engaged'

        prefs = api_client.get(reverse('insights:preferences')).data
        assert prefs['category_engagement']['contradiction']['shown'] == 1
        assert prefs['category_engagement']['contradiction']['engaged'] == 1

        response = api_client.get(reverse('insights:next'), {'trigger': 'idle', 'idle_seconds': 45})
        assert response.data['insight'] is None
        assert response.data['reason'] == 'min_interval'

    def test_sessions_are_isolated(self, api_client):
        for _ in range(10):
            self._send(api_client, PLAIN_QUESTION, 'quick', session_id='first')
        self._send(api_client, PLAIN_QUESTION, 'council', session_id='first')

        response = api_client.get(
            reverse('insights:next'), {'trigger': 'idle', 'idle_seconds': 45, 'session_id': 'second'},
        )
        assert response.data['insight'] is None
        assert response.data['pending_count'] == 0

        response = api_client.get(
            reverse('insights:next'), {'trigger': 'idle', 'idle_seconds': 45, 'session_id': 'first'},
        )
        assert response.data['insight'] is not None
