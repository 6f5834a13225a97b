"""
Celery tasks for profile reflection.

`run_batch_reflection_task` is scheduled hourly through CELERY_BEAT_SCHEDULE;
the other two are enqueued from request handlers when a trigger fires.
"""
import logging
from dataclasses import asdict

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task
def run_reflection_task(profile_id: str) -> dict:
    """
    Run one reflection pass for a profile.

    Returns:
        Dict with status and the ReflectionResult fields
    """
    from apps.profiles.reflection import run_reflection

    try:
        result = run_reflection(profile_id)
    except Exception as exc:
        logger.exception("reflection_task_failed", extra={'profile_id': profile_id})
        return {'status': 'failed', 'profile_id': profile_id, 'error': str(exc)}

    return {
        'status': 'completed' if result.success else 'failed',
        'profile_id': profile_id,
        **asdict(result),
    }


@shared_task(name='profiles.run_batch_reflection')
def run_batch_reflection_task(limit: int = None) -> dict:
    """
    Fleet-level sweep over eligible profiles.

    Returns:
        Dict with status and processed/succeeded/failed/skipped counts
    """
    from apps.profiles.reflection import run_batch_reflection

    try:
        stats = run_batch_reflection(limit=limit)
    except Exception as exc:
        logger.exception("batch_reflection_task_failed", extra={'limit': limit})
        return {'status': 'failed', 'error': str(exc)}

    return {'status': 'completed', **stats}


@shared_task
def trigger_reflection_if_eligible(profile_id: str, trigger: str = 'message', **context) -> dict:
    """
    Run reflection for an event trigger if its conditions hold.

    Triggers:
        message: the regular eligibility rules
        session_close: needs `session_minutes`
        decision_cluster: needs `decision_count`
        manual: always runs
    """
    from apps.profiles.models import UserProfile
    from apps.profiles import reflection

    profile = UserProfile.objects.filter(pk=profile_id).first()
    if profile is None:
        return {'status': 'skipped', 'profile_id': profile_id, 'reason': 'profile_not_found'}

    try:
        if trigger == 'session_close':
            result = reflection.on_session_close(profile, context.get('session_minutes', 0))
        elif trigger == 'decision_cluster':
            result = reflection.on_decision_cluster(profile, context.get('decision_count', 0))
        elif trigger == 'manual':
            result = reflection.on_manual_trigger(profile)
        else:
            eligibility = reflection.check_eligibility(profile)
            if not eligibility.should_run:
                return {'status': 'skipped', 'profile_id': profile_id, 'reason': eligibility.reason}
            result = reflection.run_reflection(profile.pk)
    except Exception as exc:
        logger.exception(
            "reflection_trigger_failed",
            extra={'profile_id': profile_id, 'trigger': trigger},
        )
        return {'status': 'failed', 'profile_id': profile_id, 'trigger': trigger, 'error': str(exc)}

    if result is None:
        return {'status': 'skipped', 'profile_id': profile_id, 'trigger': trigger, 'reason': 'conditions_not_met'}

    return {
        'status': 'completed' if result.success else 'failed',
        'profile_id': profile_id,
        'trigger': trigger,
        'signals_processed': result.signals_processed,
        'dimensions_updated': result.dimensions_updated,
        'errors': result.errors,
    }
