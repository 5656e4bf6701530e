# storefront/services/correlation_service.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Any
from ..config import Config
from ..models.errors import ErrorKind, failure
from ..models.session import Correlation, CorrelationKind, CurrentUser, SessionContext
from ..utils.messages import Messages

class CorrelationService:
    """Maps provider references back to the order or top-up that issued them"""

    def __init__(self, ttl: Optional[int] = None):
        self.ttl = timedelta(seconds=Config.CORRELATION_TTL if ttl is None else ttl)
        self.logger = logging.getLogger(__name__)

    def register(self, context: SessionContext, provider_ref: str,
                 kind: CorrelationKind, target_id: int) -> Correlation:
        """Remember which order or top-up a provider reference belongs to"""
        self.prune(context)
        correlation = Correlation(
            kind=kind,
            target_id=target_id,
            user_id=context.user.id,
            created_at=datetime.now(timezone.utc)
        )
        context.correlations[provider_ref] = correlation
        return correlation

    def resolve(self, context: SessionContext, provider_ref: Optional[str],
                kind: Optional[CorrelationKind] = None) -> Dict[str, Any]:
        """Look a reference up; unknown, foreign or stale entries are rejected"""
        if not provider_ref:
            return failure(ErrorKind.VALIDATION, Messages.MISSING_REFERENCE)

        correlation = context.correlations.get(provider_ref)
        if correlation is None or (kind is not None and correlation.kind != kind):
            return failure(ErrorKind.NOT_FOUND, Messages.INVALID_SESSION)
        if correlation.user_id != context.user.id:
            self.logger.warning(
                f"User {context.user.id} presented reference {provider_ref} owned by {correlation.user_id}"
            )
            return failure(ErrorKind.FORBIDDEN, Messages.INVALID_SESSION)
        if self._expired(correlation):
            context.correlations.pop(provider_ref, None)
            return failure(ErrorKind.NOT_FOUND, Messages.INVALID_SESSION)

        return {"success": True, "target_id": correlation.target_id, "correlation": correlation}

    def discard(self, context: SessionContext, provider_ref: Optional[str]) -> None:
        if provider_ref:
            context.correlations.pop(provider_ref, None)

    def prune(self, context: SessionContext) -> int:
        """Drop expired entries, returns how many went"""
        stale = [ref for ref, entry in context.correlations.items() if self._expired(entry)]
        for ref in stale:
            del context.correlations[ref]
        return len(stale)

    def _expired(self, correlation: Correlation) -> bool:
        return datetime.now(timezone.utc) - correlation.created_at > self.ttl

class SessionRegistry:
    """One SessionContext per user, held by the application"""

    def __init__(self):
        self._sessions: Dict[int, SessionContext] = {}

    def get(self, user: CurrentUser) -> SessionContext:
        context = self._sessions.get(user.id)
        if context is None:
            context = SessionContext(user=user)
            self._sessions[user.id] = context
        elif context.user.role != user.role:
            context.user = user
        return context

    def drop(self, user_id: int) -> None:
        self._sessions.pop(user_id, None)
