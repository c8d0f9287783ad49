"""
Registration session management.

Keeps one RegistrationCoordinator per active session. Sessions that are not
in memory (after a restart) are resumed from their persisted draft.
"""
import time
import uuid
import logging
from typing import Callable, Dict, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from ..config import Settings, settings as default_settings
from ..core.audit_service import AuditTrail
from ..core.scheduler import DebounceScheduler
from .client import RegistrationApiClient
from .coordinator import RegistrationCoordinator
from .exceptions import SessionNotFoundException
from .notifications import NotificationCollector
from .persistence import DraftStore, PersistenceManager
from .schemas import RegistrationStateResponse
from .steps import route_for

# Set up logging
logger = logging.getLogger(__name__)


class RegistrationSessionManager:
    """
    Registry of active registration sessions.

    Args:
        client: Registration backend client shared by every session
        store: Draft storage shared by every session
        audit_session_factory: Database sessions for stored audit events, None to only log them
        settings: Timing and storage settings
    """
    def __init__(
        self,
        client: RegistrationApiClient,
        store: DraftStore,
        audit_session_factory: Optional[Callable[[], Session]] = None,
        settings: Settings = default_settings
    ):
        self.client = client
        self.store = store
        self.audit_session_factory = audit_session_factory
        self.settings = settings
        self._sessions: Dict[str, RegistrationCoordinator] = {}
        self._notifications: Dict[str, NotificationCollector] = {}
        self._last_seen: Dict[str, float] = {}

    def create_session(self) -> RegistrationCoordinator:
        self._evict_idle()
        session_id = uuid.uuid4().hex
        coordinator = self._build(session_id)
        coordinator.persistence.save_now(coordinator.draft, coordinator.progress)
        self._sessions[session_id] = coordinator
        self._last_seen[session_id] = time.monotonic()
        coordinator.audit.record("registration_started", "Registration session created")
        logger.info(f"Created registration session {session_id}")
        return coordinator

    def get_session(self, session_id: str) -> RegistrationCoordinator:
        """
        Active coordinator for a session.

        Raises:
            SessionNotFoundException: If the session is neither active nor persisted
        """
        self._evict_idle()
        coordinator = self._sessions.get(session_id)
        if coordinator is not None:
            self._last_seen[session_id] = time.monotonic()
            return coordinator

        coordinator = self._build(session_id)
        if not coordinator.persistence.has_snapshot():
            self._notifications.pop(session_id, None)
            raise SessionNotFoundException(session_id)
        coordinator.resume()
        self._sessions[session_id] = coordinator
        self._last_seen[session_id] = time.monotonic()
        return coordinator

    async def discard_session(self, session_id: str) -> None:
        """Reset the registration and forget the session."""
        coordinator = self.get_session(session_id)
        coordinator.reset()
        await coordinator.aclose()
        self._forget(session_id)
        logger.info(f"Discarded registration session {session_id}")

    async def release_if_completed(self, coordinator: RegistrationCoordinator) -> None:
        """Forget a session once its registration has been submitted."""
        if not coordinator.is_completed:
            return
        await coordinator.aclose()
        self._forget(coordinator.session_id)
        logger.info(f"Released completed registration session {coordinator.session_id}")

    def state(self, coordinator: RegistrationCoordinator) -> RegistrationStateResponse:
        """Session state for the API, without passwords."""
        collector = self._notifications.get(coordinator.session_id)
        return RegistrationStateResponse(
            session_id=coordinator.session_id,
            draft=coordinator.draft.model_copy(update={"password": "", "confirm_password": ""}),
            progress=coordinator.progress,
            route=route_for(coordinator.current_step),
            availability=coordinator.availability.states(),
            verification=coordinator.verification.snapshot(),
            gate=coordinator.can_submit(),
            is_submitting=coordinator.is_submitting,
            notifications=collector.drain() if collector else []
        )

    async def shutdown(self) -> None:
        """Flush pending saves, stop every session and close the backend client."""
        for coordinator in list(self._sessions.values()):
            await coordinator.aclose()
        self._sessions.clear()
        self._notifications.clear()
        self._last_seen.clear()
        await self.client.aclose()

    def _forget(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._notifications.pop(session_id, None)
        self._last_seen.pop(session_id, None)

    def _evict_idle(self) -> None:
        """Drop sessions untouched for longer than a draft stays valid."""
        cutoff = time.monotonic() - self.settings.draft_expiration_hours * 3600
        for session_id, last_seen in list(self._last_seen.items()):
            if last_seen < cutoff:
                coordinator = self._sessions.get(session_id)
                if coordinator is not None:
                    coordinator.scheduler.cancel_all()
                self._forget(session_id)
                logger.info(f"Evicted idle registration session {session_id}")

    def _build(self, session_id: str) -> RegistrationCoordinator:
        scheduler = DebounceScheduler()
        persistence = PersistenceManager(
            self.store,
            scheduler,
            storage_key=f"{self.settings.draft_storage_prefix}:{session_id}",
            session_id=session_id,
            delay_seconds=self.settings.autosave_debounce_ms / 1000,
            expiration_hours=self.settings.draft_expiration_hours
        )
        collector = NotificationCollector()
        self._notifications[session_id] = collector
        return RegistrationCoordinator(
            self.client,
            persistence,
            scheduler,
            session_id,
            availability_delay=self.settings.availability_debounce_ms / 1000,
            verification_delay=self.settings.verification_debounce_ms / 1000,
            audit=AuditTrail(self.audit_session_factory, session_id),
            notifier=collector
        )


def get_session_manager(request: Request) -> RegistrationSessionManager:
    """
    Session manager dependency - Returns the manager created at application startup.
    """
    return request.app.state.session_manager
