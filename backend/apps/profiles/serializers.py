"""
Profile serializers
"""
from rest_framework import serializers

from .constants import RESPONSE_MODES
from .models import DimensionScore, PrivacyTier, UserProfile


class ProfileSerializer(serializers.ModelSerializer):
    """Profile with its privacy tier; only the tier is writable."""

    class Meta:
        model = UserProfile
        fields = [
            'id',
            'privacy_tier',
            'session_count',
            'signal_count',
            'questions_asked',
            'elicitation_phase',
            'last_reflection_at',
            'next_reflection_at',
            'first_seen_at',
            'last_active_at',
        ]
        read_only_fields = [f for f in fields if f != 'privacy_tier']


class DimensionScoreSerializer(serializers.ModelSerializer):
    class Meta:
        model = DimensionScore
        fields = ['domain', 'tier', 'value', 'confidence', 'decay_rate', 'sources', 'last_updated_at']
        read_only_fields = fields


class MessageIngestSerializer(serializers.Serializer):
    text = serializers.CharField(allow_blank=True, trim_whitespace=False)
    session_id = serializers.CharField(required=False, allow_blank=True, max_length=100)
    message_id = serializers.CharField(required=False, allow_blank=True, max_length=100)
    response_mode = serializers.ChoiceField(choices=RESPONSE_MODES, required=False)


class SessionOpenSerializer(serializers.Serializer):
    session_id = serializers.CharField(required=False, allow_blank=True, max_length=100)


class SessionCloseSerializer(serializers.Serializer):
    session_id = serializers.CharField(required=False, allow_blank=True, max_length=100)
    started_at = serializers.DateTimeField(required=False)
    duration_minutes = serializers.FloatField(min_value=0)


class ElicitationQuestionSerializer(serializers.Serializer):
    id = serializers.CharField()
    domain = serializers.CharField()
    question = serializers.CharField()
    short_form = serializers.CharField()
    phase = serializers.IntegerField()
    prompt = serializers.SerializerMethodField()

    def get_prompt(self, obj):
        from .elicitation import format_question
        return format_question(obj)


class ElicitationAnswerSerializer(serializers.Serializer):
    question_id = serializers.CharField(max_length=50)
    response = serializers.CharField(required=False, allow_null=True, allow_blank=True)


class ContextSummarySerializer(serializers.Serializer):
    should_personalize = serializers.BooleanField()
    summary = serializers.CharField(allow_blank=True)
    adapters = serializers.DictField()
    confidence = serializers.FloatField()


class PrivacyTierSerializer(serializers.Serializer):
    privacy_tier = serializers.ChoiceField(choices=PrivacyTier.choices)
