"""
Celery task lifecycle logging.

Each task run gets its task id as correlation id, so every record the task
emits (reflection passes, batch sweeps) can be grouped with its start and
finish events.
"""
import logging
from typing import Any, Dict, Tuple

from celery.signals import task_prerun, task_postrun, task_failure, task_retry

from apps.common.correlation import get_correlation_id, set_correlation_id


logger = logging.getLogger(__name__)

_MAX_ARG_REPR = 500


def _sanitize_payload(args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> Dict[str, Any]:
    def _truncate(value: Any) -> Any:
        text = repr(value)
        if len(text) > _MAX_ARG_REPR:
            return text[:_MAX_ARG_REPR] + "...(truncated)"
        return value

    return {
        "task_args": [_truncate(arg) for arg in args],
        "task_kwargs": {key: _truncate(val) for key, val in kwargs.items()},
    }


@task_prerun.connect
def log_task_prerun(sender=None, task_id=None, task=None, args=None, kwargs=None, **_):
    if not get_correlation_id():
        set_correlation_id(task_id)
    payload = _sanitize_payload(args or (), kwargs or {})
    logger.info(
        "celery_task_started",
        extra={
            "task_id": task_id,
            "task_name": getattr(sender, "name", None),
            **payload,
        },
    )


@task_postrun.connect
def log_task_postrun(sender=None, task_id=None, task=None, retval=None, state=None, **_):
    status = retval.get("status") if isinstance(retval, dict) else None
    logger.info(
        "celery_task_completed",
        extra={
            "task_id": task_id,
            "task_name": getattr(sender, "name", None),
            "state": state,
            "result_status": status,
        },
    )
    if get_correlation_id() == task_id:
        set_correlation_id(None)


@task_failure.connect
def log_task_failure(sender=None, task_id=None, exception=None, args=None, kwargs=None, **_):
    payload = _sanitize_payload(args or (), kwargs or {})
    logger.error(
        "celery_task_failed",
        extra={
            "task_id": task_id,
            "task_name": getattr(sender, "name", None),
            "exception": repr(exception),
            **payload,
        },
    )


@task_retry.connect
def log_task_retry(sender=None, request=None, reason=None, **_):
    logger.warning(
        "celery_task_retry",
        extra={
            "task_id": getattr(request, "id", None),
            "task_name": getattr(sender, "name", None),
            "reason": repr(reason),
        },
    )
