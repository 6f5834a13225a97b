"""
Session store for insight state.

Sessions are pickled into a dedicated Django cache alias with an explicit
TTL, so an abandoned session simply ages out.
"""
import logging
from typing import Optional

from django.conf import settings
from django.core.cache import caches

from apps.common.logging_utils import build_log_extra

from .insight_queue import InsightPreferences, InsightSession

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = 'default'


class InsightSessionStore:
    KEY_PREFIX = 'insights:session'

    def __init__(self, cache_alias: Optional[str] = None, ttl_seconds: Optional[int] = None):
        self.cache = caches[cache_alias or settings.INSIGHT_SESSION_CACHE]
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.INSIGHT_SESSION_TTL_SECONDS

    def key(self, user_key, session_id: str = DEFAULT_SESSION_ID) -> str:
        return f"{self.KEY_PREFIX}:{user_key}:{session_id}"

    def get(self, user_key, session_id: str = DEFAULT_SESSION_ID) -> Optional[InsightSession]:
        return self.cache.get(self.key(user_key, session_id))

    def save(self, session: InsightSession) -> None:
        self.cache.set(self.key(session.user_key, session.session_id), session, timeout=self.ttl_seconds)

    def delete(self, user_key, session_id: str = DEFAULT_SESSION_ID) -> None:
        self.cache.delete(self.key(user_key, session_id))

    def get_or_create(
        self,
        user_key,
        session_id: str = DEFAULT_SESSION_ID,
        preferences: Optional[InsightPreferences] = None,
    ) -> InsightSession:
        session = self.get(user_key, session_id)
        if session is None:
            session = InsightSession(user_key, session_id=session_id, preferences=preferences)
            self.save(session)
            logger.info(
                "insight_session_created",
                extra=build_log_extra(user_key=str(user_key), session_id=session_id),
            )
        return session
