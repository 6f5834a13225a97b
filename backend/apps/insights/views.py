"""
Insight API views

Every endpoint works on the requesting user's insight session, picked by
`session_id` (defaults to 'default').
"""
import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .insight_queue import DeliveryContext
from .serializers import (
    ActivitySerializer,
    EngagementSerializer,
    InsightPreferencesSerializer,
    NextInsightQuerySerializer,
    QueuedInsightSerializer,
)
from .services import InsightService
from .store import DEFAULT_SESSION_ID, InsightSessionStore

logger = logging.getLogger(__name__)


def _session_for(request, session_id=DEFAULT_SESSION_ID):
    store = InsightSessionStore()
    return store, store.get_or_create(request.user.pk, session_id)


def _session_id_param(request):
    return request.query_params.get('session_id') or request.data.get('session_id') or DEFAULT_SESSION_ID


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def next_insight_view(request):
    """
    GET /api/insights/next/?trigger=idle&idle_seconds=45

    Delivers the next eligible insight for the trigger, or explains why
    nothing was delivered. A delivered insight counts against the budget.
    """
    query = NextInsightQuerySerializer(data=request.query_params)
    query.is_valid(raise_exception=True)
    params = query.validated_data

    store, session = _session_for(request, params['session_id'])
    session.prune_expired()
    insight, reason = session.select_next(
        params['trigger'],
        DeliveryContext(
            idle_seconds=params.get('idle_seconds'),
            current_topic=params.get('current_topic') or None,
            is_conversation_active=params['conversation_active'],
            is_focus_mode=params['focus_mode'],
        ),
    )
    store.save(session)

    return Response({
        'insight': QueuedInsightSerializer(insight).data if insight else None,
        'reason': reason,
        'pending_count': session.pending_count(),
        'budget_remaining': session.budget.remaining(),
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def activity_view(request):
    """
    POST /api/insights/activity/

    Feed user activity into the session: keystrokes and sent messages drive
    the engagement estimate; sent message text and finished sessions are
    checked for pattern breaks and may queue insights.
    """
    serializer = ActivitySerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    store, session = _session_for(request, data['session_id'])
    queued = []

    if data['type'] == ActivitySerializer.KEYSTROKE:
        session.record_keystroke(data['chars_typed'])
    elif data['type'] == ActivitySerializer.MESSAGE_SENT:
        session.record_message_sent()
        if data.get('text'):
            queued = InsightService.observe_question(
                request.user, session, data['text'], mode=data.get('response_mode'),
            )
    else:
        queued = InsightService.observe_session(request.user, session, data['duration_minutes'])

    store.save(session)

    return Response({
        'engagement_level': session.engagement.current_level().value,
        'pending_count': session.pending_count(),
        'queued': [insight.id for insight in queued],
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def engagement_view(request, insight_id):
    """
    POST /api/insights/<insight_id>/engagement/

    Record expand / act / dismiss / ignore (plus an optional -1..1 rating)
    on a delivered insight. Returns 409 when the insight is not awaiting a
    response.
    """
    serializer = EngagementSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    store, session = _session_for(request, data['session_id'])
    insight = session.record_engagement(insight_id, data['action'], rating=data.get('rating'))
    store.save(session)

    return Response(QueuedInsightSerializer(insight).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def dismiss_active_view(request):
    """
    POST /api/insights/dismiss/

    Dismiss whatever insight is currently showing.
    """
    store, session = _session_for(request, _session_id_param(request))
    insight = session.dismiss_active()
    store.save(session)

    if insight is None:
        return Response(status=status.HTTP_204_NO_CONTENT)
    return Response(QueuedInsightSerializer(insight).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def reset_session_view(request):
    """
    POST /api/insights/session/reset/

    Start a new session's pacing. Queued insights and learned engagement
    rates are kept.
    """
    store, session = _session_for(request, _session_id_param(request))
    session.reset_session()
    store.save(session)
    return Response({'pending_count': session.pending_count()})


@api_view(['GET', 'PATCH'])
@permission_classes([IsAuthenticated])
def preferences_view(request):
    """
    GET /api/insights/preferences/
    PATCH /api/insights/preferences/

    Delivery preferences, including muted categories and the learned
    per-category engagement counts (read-only).
    """
    store, session = _session_for(request, _session_id_param(request))

    if request.method == 'PATCH':
        serializer = InsightPreferencesSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        session.update_preferences(**serializer.validated_data)
        store.save(session)
        logger.info(
            "insight_preferences_updated",
            extra={'user_id': request.user.id, 'fields': sorted(serializer.validated_data)},
        )

    return Response(InsightPreferencesSerializer(session.preferences).data)
