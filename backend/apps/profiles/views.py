"""
Profile API views

All endpoints act on the requesting user's own profile.
"""
import logging
from dataclasses import asdict
from datetime import timedelta

from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response

from . import elicitation, reflection
from .extraction import session_timing_signal
from .serializers import (
    ContextSummarySerializer,
    DimensionScoreSerializer,
    ElicitationAnswerSerializer,
    ElicitationQuestionSerializer,
    MessageIngestSerializer,
    PrivacyTierSerializer,
    ProfileSerializer,
    SessionCloseSerializer,
    SessionOpenSerializer,
)
from .services import ProfileService, get_context_summary, process_message
from .tasks import trigger_reflection_if_eligible

logger = logging.getLogger(__name__)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def context_summary_view(request):
    """
    GET /api/profile/context/

    Context summary for prompt assembly. Users without a profile get the
    neutral summary.
    """
    summary = get_context_summary(request.user)
    return Response(ContextSummarySerializer(asdict(summary)).data)


@api_view(['GET', 'PATCH'])
@permission_classes([IsAuthenticated])
def privacy_view(request):
    """
    GET /api/profile/privacy/
    PATCH /api/profile/privacy/ {"privacy_tier": "A" | "B" | "C"}
    """
    profile = ProfileService.get_or_create_profile(request.user)

    if request.method == 'PATCH':
        serializer = PrivacyTierSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ProfileService.set_privacy_tier(profile, serializer.validated_data['privacy_tier'])

    data = ProfileSerializer(profile).data
    data['dimensions'] = DimensionScoreSerializer(profile.dimensions.all(), many=True).data
    return Response(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def ingest_message_view(request):
    """
    POST /api/profile/messages/

    Extract signals from one user message. Always 202: learning is
    best-effort and never fails the caller.
    """
    serializer = MessageIngestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    signals = process_message(
        request.user,
        data['text'],
        session_id=data.get('session_id') or None,
        message_id=data.get('message_id') or None,
        response_mode=data.get('response_mode'),
    )
    return Response(
        {'signals': [str(s.signal_type) for s in signals]},
        status=status.HTTP_202_ACCEPTED,
    )


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def open_session_view(request):
    """
    POST /api/profile/sessions/

    Count a new session for the user.
    """
    serializer = SessionOpenSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    ProfileService.get_or_create_profile(request.user)
    profile = ProfileService.increment_session_count(request.user)
    return Response(ProfileSerializer(profile).data, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def close_session_view(request):
    """
    POST /api/profile/sessions/close/ {"duration_minutes": 25, "started_at": "..."}

    Records session timing and schedules a reflection pass for long sessions.
    Without a profile there is nothing to record.
    """
    serializer = SessionCloseSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    profile = ProfileService.get_profile(request.user)
    if profile is None:
        return Response({'task_id': None}, status=status.HTTP_202_ACCEPTED)

    minutes = data['duration_minutes']
    started_at = data.get('started_at') or timezone.now() - timedelta(minutes=minutes)
    ProfileService.store_signals(
        profile,
        [session_timing_signal(started_at, minutes, session_id=data.get('session_id') or None)],
    )

    task = trigger_reflection_if_eligible.delay(str(profile.id), 'session_close', session_minutes=minutes)
    return Response({'task_id': task.id}, status=status.HTTP_202_ACCEPTED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def manual_reflection_view(request):
    """
    POST /api/profile/reflect/

    "Update what you know about me". Runs synchronously.
    """
    profile = ProfileService.get_profile(request.user)
    result = reflection.on_manual_trigger(profile)
    code = status.HTTP_200_OK if result.success or profile is None else status.HTTP_409_CONFLICT
    return Response(asdict(result), status=code)


@api_view(['GET'])
@permission_classes([IsAdminUser])
def reflection_status_view(request):
    """
    GET /api/profile/reflection/status/

    Fleet-level reflection counts (staff only).
    """
    return Response(reflection.reflection_status())


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def next_question_view(request):
    """
    GET /api/profile/elicitation/

    Returns the question to show this session, if any, and records that
    the session has had its question.
    """
    profile = ProfileService.get_profile(request.user)
    decision = elicitation.select_question(profile)
    if not decision.ask:
        return Response({'ask': False, 'reason': decision.reason})

    elicitation.mark_question_asked(profile)
    return Response({
        'ask': True,
        'reason': decision.reason,
        'question': ElicitationQuestionSerializer(decision.question).data,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def answer_question_view(request):
    """
    POST /api/profile/elicitation/respond/ {"question_id": "...", "response": "..." | null}

    A blank or null response records a skip.
    """
    serializer = ElicitationAnswerSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    profile = ProfileService.get_or_create_profile(request.user)

    record = elicitation.process_response(
        profile,
        serializer.validated_data['question_id'],
        serializer.validated_data.get('response'),
    )
    return Response(
        {'question_id': record.question_id, 'skipped': record.skipped},
        status=status.HTTP_201_CREATED,
    )


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def reset_profile_view(request):
    """
    POST /api/profile/reset/

    Deletes every signal, belief, fact and answer held for the user.
    """
    profile = ProfileService.get_profile(request.user)
    if profile is not None:
        ProfileService.reset_profile(profile)
    return Response(status=status.HTTP_204_NO_CONTENT)
