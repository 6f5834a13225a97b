"""
Insight URL routing
"""
from django.urls import path

from . import views

app_name = 'insights'

urlpatterns = [
    path('next/', views.next_insight_view, name='next'),
    path('activity/', views.activity_view, name='activity'),
    path('dismiss/', views.dismiss_active_view, name='dismiss'),
    path('preferences/', views.preferences_view, name='preferences'),
    path('session/reset/', views.reset_session_view, name='session-reset'),
    path('<str:insight_id>/engagement/', views.engagement_view, name='engagement'),
]
