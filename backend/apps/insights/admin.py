"""
Django admin for insight models
"""
from django.contrib import admin

from apps.insights.models import BehaviorBaseline


@admin.register(BehaviorBaseline)
class BehaviorBaselineAdmin(admin.ModelAdmin):
    """Admin for BehaviorBaseline model"""

    list_display = ['id', 'user', 'data_points', 'mode_preference', 'avg_word_count', 'updated_at']
    search_fields = ['user__username', 'user__email']
    readonly_fields = ['id', 'created_at', 'updated_at']

    fieldsets = [
        ('Basic Info', {
            'fields': ['id', 'user', 'data_points']
        }),
        ('Questions', {
            'fields': ['avg_word_count', 'mode_counts', 'mode_preference', 'top_topics']
        }),
        ('Sessions', {
            'fields': ['session_samples', 'avg_session_minutes']
        }),
        ('Timestamps', {
            'fields': ['created_at', 'updated_at']
        }),
    ]
