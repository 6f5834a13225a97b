"""
Correlation id propagation.

Holds the id of the request or task currently being handled so that log
records emitted anywhere below it can be grouped together.
"""
import contextvars
from typing import Optional

_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_correlation_id(value: Optional[str]) -> None:
    _correlation_id.set(value)
