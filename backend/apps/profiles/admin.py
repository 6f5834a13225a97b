"""
Django admin for intelligence profile models
"""
from django.contrib import admin

from apps.profiles.models import DimensionScore, ElicitationResponse, ProfileFact, ProfileSignal, UserProfile


class DimensionScoreInline(admin.TabularInline):
    model = DimensionScore
    extra = 0
    fields = ['domain', 'confidence', 'decay_rate', 'sources', 'last_updated_at', 'last_decayed_at']
    readonly_fields = fields


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    """Admin for UserProfile model"""

    list_display = ['id', 'user', 'privacy_tier', 'session_count', 'signal_count', 'last_reflection_at']
    list_filter = ['privacy_tier']
    search_fields = ['user__username', 'user__email']
    readonly_fields = ['id', 'created_at', 'updated_at', 'first_seen_at']
    inlines = [DimensionScoreInline]

    fieldsets = [
        ('Basic Info', {
            'fields': ['id', 'user', 'privacy_tier']
        }),
        ('Activity', {
            'fields': ['session_count', 'signal_count', 'first_seen_at', 'last_active_at']
        }),
        ('Elicitation', {
            'fields': ['questions_asked', 'questions_skipped', 'elicitation_phase', 'last_question_session', 'last_question_asked_at'],
            'classes': ['collapse']
        }),
        ('Reflection', {
            'fields': ['last_reflection_at', 'next_reflection_at']
        }),
        ('Timestamps', {
            'fields': ['created_at', 'updated_at']
        }),
    ]


@admin.register(ProfileSignal)
class ProfileSignalAdmin(admin.ModelAdmin):
    """Signals are append-only, so the admin is read-only."""

    list_display = ['id', 'profile', 'signal_type', 'strength', 'processed', 'created_at']
    list_filter = ['signal_type', 'category', 'processed']
    search_fields = ['session_id', 'message_id']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(ProfileFact)
class ProfileFactAdmin(admin.ModelAdmin):
    list_display = ['id', 'profile', 'fact_type', 'key', 'value', 'confidence', 'is_explicit']
    list_filter = ['domain', 'is_explicit', 'source']
    search_fields = ['key', 'value']


@admin.register(ElicitationResponse)
class ElicitationResponseAdmin(admin.ModelAdmin):
    list_display = ['id', 'profile', 'question_id', 'skipped', 'session_number', 'phase', 'created_at']
    list_filter = ['question_id', 'skipped', 'phase']
