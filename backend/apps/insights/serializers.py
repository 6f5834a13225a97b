"""
Insight serializers

Queued insights and preferences are session objects rather than models,
so these are plain serializers over their attributes.
"""
from rest_framework import serializers

from apps.profiles.constants import RESPONSE_MODES

from .insight_queue import ENGAGEMENT_ACTIONS
from .models import BubbleMode, InsightCategory, InsightTrigger
from .store import DEFAULT_SESSION_ID


class QueuedInsightSerializer(serializers.Serializer):
    id = serializers.CharField()
    type = serializers.CharField()
    title = serializers.CharField()
    message = serializers.CharField()
    expanded_content = serializers.CharField(allow_null=True)
    priority = serializers.IntegerField()
    trigger = serializers.CharField()
    context_tags = serializers.ListField(child=serializers.CharField())
    source_data = serializers.DictField()
    state = serializers.SerializerMethodField()
    created_at = serializers.DateTimeField()
    expires_at = serializers.DateTimeField()
    delivered_at = serializers.DateTimeField(allow_null=True)
    engagement_type = serializers.CharField(allow_null=True)
    feedback_rating = serializers.FloatField(allow_null=True)

    def get_state(self, obj):
        return obj.state.value


class NextInsightQuerySerializer(serializers.Serializer):
    trigger = serializers.ChoiceField(choices=InsightTrigger.choices)
    session_id = serializers.CharField(required=False, default=DEFAULT_SESSION_ID, max_length=100)
    idle_seconds = serializers.FloatField(required=False, min_value=0)
    current_topic = serializers.CharField(required=False, allow_blank=True)
    conversation_active = serializers.BooleanField(required=False, default=False)
    focus_mode = serializers.BooleanField(required=False, default=False)


class ActivitySerializer(serializers.Serializer):
    KEYSTROKE = 'keystroke'
    MESSAGE_SENT = 'message_sent'
    SESSION_END = 'session_end'

    type = serializers.ChoiceField(choices=[KEYSTROKE, MESSAGE_SENT, SESSION_END])
    session_id = serializers.CharField(required=False, default=DEFAULT_SESSION_ID, max_length=100)
    chars_typed = serializers.IntegerField(required=False, default=1, min_value=0)
    text = serializers.CharField(required=False, allow_blank=True, trim_whitespace=False)
    response_mode = serializers.ChoiceField(choices=RESPONSE_MODES, required=False)
    duration_minutes = serializers.FloatField(required=False, min_value=0)

    def validate(self, attrs):
        if attrs['type'] == self.SESSION_END and attrs.get('duration_minutes') is None:
            raise serializers.ValidationError({'duration_minutes': 'Required for session_end.'})
        return attrs


class EngagementSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=sorted(ENGAGEMENT_ACTIONS))
    rating = serializers.FloatField(required=False, min_value=-1, max_value=1)
    session_id = serializers.CharField(required=False, default=DEFAULT_SESSION_ID, max_length=100)


class CategoryStatsSerializer(serializers.Serializer):
    shown = serializers.IntegerField()
    engaged = serializers.IntegerField()
    rate = serializers.FloatField()


class InsightPreferencesSerializer(serializers.Serializer):
    enabled = serializers.BooleanField(required=False)
    bubble_mode = serializers.ChoiceField(choices=BubbleMode.choices, required=False)
    max_per_session = serializers.IntegerField(required=False, min_value=0)
    max_per_hour = serializers.IntegerField(required=False, min_value=0)
    min_interval_minutes = serializers.FloatField(required=False, min_value=0)
    preferred_triggers = serializers.ListField(
        child=serializers.ChoiceField(choices=InsightTrigger.choices),
        required=False,
    )
    muted_categories = serializers.ListField(
        child=serializers.ChoiceField(choices=InsightCategory.choices),
        required=False,
    )
    category_engagement = serializers.DictField(child=CategoryStatsSerializer(), read_only=True)
