"""Shared-link state machine (visitor side of delegated admin access).

    loading -> not_found | expired
            -> active -> awaiting_auth -> authenticated | access_denied

The phone creates ``shared_links/{id}`` and sends the link to someone. The
visitor's browser asks for access, which stamps its visitor id on the
record; the phone then approves. Only the browser whose id is on the record
may use the approval. Two browsers requesting at once race: whichever write
lands last owns the binding and the other one is denied.
"""

import asyncio
import enum
import inspect
import logging
from collections.abc import Callable
from datetime import datetime

from codeprism.config import settings
from codeprism.core.errors import InvalidTransitionError, NotFoundError
from codeprism.services.document_store import (
    DocumentNotFoundError,
    DocumentStore,
    Subscription,
)
from codeprism.services.remote_auth import (
    Observation,
    SessionKind,
    SessionStatus,
    Verdict,
    evaluate,
    isoformat,
    short_id,
    utcnow,
)
from codeprism.services.session_context import LocalCache, SessionContext, ensure_visitor_id

logger = logging.getLogger("codeprism.auth")


class LinkState(str, enum.Enum):
    loading = "loading"
    not_found = "not_found"
    expired = "expired"
    active = "active"
    awaiting_auth = "awaiting_auth"
    authenticated = "authenticated"
    access_denied = "access_denied"


TERMINAL_STATES = {LinkState.not_found, LinkState.expired}


class SharedLinkVisitor:
    def __init__(
        self,
        store: DocumentStore,
        link_id: str,
        *,
        tab_cache: LocalCache,
        local_cache: LocalCache,
        on_redirect: Callable | None = None,
        redirect_delay: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.link_id = link_id
        self.context = SessionContext.load(local_cache)
        self._tab_cache = tab_cache
        self._on_redirect = on_redirect
        self._redirect_delay = (
            settings.shared_redirect_delay if redirect_delay is None else redirect_delay
        )
        self._clock = clock

        self.state = LinkState.loading
        self.visitor_id: str | None = None
        self.link: dict | None = None
        self.redirected = False

        self._sub: Subscription | None = None
        self._redirect_task: asyncio.Task | None = None

    @property
    def collection(self) -> str:
        return SessionKind.shared.collection

    async def open(self) -> LinkState:
        """Fetch the link, classify it, and start following it live."""
        self.visitor_id = ensure_visitor_id(self._tab_cache)

        snapshot = await self.store.get(self.collection, self.link_id)
        observation = evaluate(
            SessionKind.shared, snapshot, visitor_id=self.visitor_id, now=self._clock()
        )
        if observation.verdict is Verdict.missing:
            self.state = LinkState.not_found
            return self.state
        if observation.verdict is Verdict.expired:
            self.state = LinkState.expired
            return self.state

        self._sub = self.store.subscribe(self.collection, self.link_id, self._on_snapshot)
        await self._sub.start()
        return self.state

    async def request_access(self) -> None:
        """Ask for approval and bind the link to this browser."""
        if self.state not in (LinkState.active, LinkState.awaiting_auth):
            raise InvalidTransitionError(f"Cannot request access while {self.state.value}")

        try:
            await self.store.update(
                self.collection,
                self.link_id,
                {
                    "status": SessionStatus.awaiting_auth.value,
                    "requestedAt": isoformat(self._clock()),
                    "visitorId": self.visitor_id,
                },
            )
        except DocumentNotFoundError:
            self._stop()
            self.state = LinkState.not_found
            raise NotFoundError("Secure link not found")

        if self.state is LinkState.active:
            self.state = LinkState.awaiting_auth
        logger.info("shared link access requested link=%s", short_id(self.link_id))

    async def close(self) -> None:
        self._stop()
        if self._redirect_task is not None and not self._redirect_task.done():
            self._redirect_task.cancel()
        self._redirect_task = None

    async def _on_snapshot(self, snapshot: dict | None) -> None:
        observation = evaluate(
            SessionKind.shared, snapshot, visitor_id=self.visitor_id, now=self._clock()
        )

        if observation.verdict is Verdict.missing:
            self._stop()
            self.state = LinkState.not_found
        elif observation.verdict is Verdict.expired:
            self._stop()
            self.state = LinkState.expired
        elif observation.verdict is Verdict.access_denied:
            self.link = snapshot
            if self.state is not LinkState.access_denied:
                logger.warning("shared link bound to another visitor link=%s", short_id(self.link_id))
            self.state = LinkState.access_denied
        elif observation.verdict is Verdict.authenticated:
            self.link = snapshot
            self._grant(observation)
        else:
            self.link = snapshot
            if observation.status == SessionStatus.awaiting_auth.value:
                self.state = LinkState.awaiting_auth
            else:
                self.state = LinkState.active

    def _grant(self, observation: Observation) -> None:
        if self.state is LinkState.authenticated:
            return
        self.state = LinkState.authenticated
        self.context.promote(
            self.link_id,
            SessionKind.shared,
            expires_at=observation.expires_at,
            visitor_id=self.visitor_id,
            constraints=observation.constraints,
        )
        logger.info("shared link authenticated link=%s", short_id(self.link_id))
        self._redirect_task = asyncio.create_task(self._redirect_later())

    async def _redirect_later(self) -> None:
        await asyncio.sleep(self._redirect_delay)
        self.redirected = True
        if self._on_redirect is None:
            return
        try:
            result = self._on_redirect()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("redirect callback failed link=%s", short_id(self.link_id))

    def _stop(self) -> None:
        if self._sub is not None:
            self._sub.unsubscribe()
            self._sub = None
