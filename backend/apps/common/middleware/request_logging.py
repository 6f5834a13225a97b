import time
import uuid
from typing import Callable, Optional

from django.http import HttpRequest, HttpResponse

from apps.common.correlation import set_correlation_id
from apps.common.logging_utils import build_log_extra, get_logger


logger = get_logger(__name__)

SESSION_HEADER = "X-Session-ID"


def _get_user_id(request: HttpRequest) -> Optional[int]:
    user = getattr(request, "user", None)
    if user and getattr(user, "is_authenticated", False):
        return user.id
    return None


class RequestLoggingMiddleware:
    """
    Tags each request with a correlation id and logs its outcome.

    The client's conversation session id (X-Session-ID) is logged alongside,
    since insight delivery state is keyed by it.
    """

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        start_time = time.monotonic()
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        request.correlation_id = correlation_id
        set_correlation_id(correlation_id)

        def _extra(status_code):
            duration_ms = (time.monotonic() - start_time) * 1000.0
            return build_log_extra(
                correlation_id=correlation_id,
                method=request.method,
                path=request.path,
                status_code=status_code,
                duration_ms=round(duration_ms, 2),
                user_id=_get_user_id(request),
                session_id=request.headers.get(SESSION_HEADER),
            )

        try:
            response = self.get_response(request)
        except Exception:
            logger.exception("request_failed", extra=_extra(500))
            set_correlation_id(None)
            raise

        logger.info("request_completed", extra=_extra(getattr(response, "status_code", None)))
        response["X-Correlation-ID"] = correlation_id
        set_correlation_id(None)
        return response
