"""
Profile URL routing
"""
from django.urls import path

from . import views

app_name = 'profiles'

urlpatterns = [
    path('context/', views.context_summary_view, name='context'),
    path('privacy/', views.privacy_view, name='privacy'),
    path('messages/', views.ingest_message_view, name='messages'),

    # Sessions
    path('sessions/', views.open_session_view, name='session-open'),
    path('sessions/close/', views.close_session_view, name='session-close'),

    # Reflection
    path('reflect/', views.manual_reflection_view, name='reflect'),
    path('reflection/status/', views.reflection_status_view, name='reflection-status'),

    # Elicitation
    path('elicitation/', views.next_question_view, name='elicitation'),
    path('elicitation/respond/', views.answer_question_view, name='elicitation-respond'),

    path('reset/', views.reset_profile_view, name='reset'),
]
