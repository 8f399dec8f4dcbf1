"""Admin console auth state machine (desktop side of QR login).

    checking_remote_toggle -> disabled | qr_generated -> pending_approval
        -> authenticated -> unauthenticated (exit_reason: expired | terminated | logout)

The console owns three subscriptions:

- the remote toggle (config/admin_status): QR login is offered only while
  it is armed; otherwise the admin surface renders as a plain not-found;
- a one-shot watcher on the pending QR session, cancelled on its first
  authenticated snapshot;
- a long-lived watcher on the promoted session, which logs the console out
  as soon as the record is deleted, leaves ``authenticated`` or expires.

Every forced logout also disarms the remote toggle so the QR stops being
offered until the phone arms it again.
"""

import enum
import functools
import logging
from collections.abc import Callable
from datetime import datetime

from codeprism.services.document_store import DocumentStore, DocumentStoreError, Subscription
from codeprism.services.remote_auth import (
    ADMIN_STATUS_DOC,
    CONFIG_COLLECTION,
    SessionKind,
    Verdict,
    evaluate,
    new_direct_session_record,
    new_session_id,
    qr_payload,
    set_remote_enabled,
    short_id,
    utcnow,
)
from codeprism.services.session_context import LocalCache, SessionContext

logger = logging.getLogger("codeprism.auth")


class ConsoleState(str, enum.Enum):
    checking_remote_toggle = "checking_remote_toggle"
    disabled = "disabled"
    qr_generated = "qr_generated"
    pending_approval = "pending_approval"
    qr_failed = "qr_failed"
    authenticated = "authenticated"
    unauthenticated = "unauthenticated"


class ExitReason(str, enum.Enum):
    expired = "expired"
    terminated = "terminated"
    logout = "logout"


class AdminConsole:
    def __init__(
        self,
        store: DocumentStore,
        cache: LocalCache,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.context = SessionContext.load(cache)
        self._clock = clock

        self.state = ConsoleState.checking_remote_toggle
        self.remote_enabled = False
        self.qr_id: str | None = None
        self.exit_reason: ExitReason | None = None
        self.last_error: str | None = None

        self._toggle_sub: Subscription | None = None
        self._pending_sub: Subscription | None = None
        self._session_sub: Subscription | None = None

    # --- views ---

    @property
    def is_authenticated(self) -> bool:
        return self.state is ConsoleState.authenticated

    @property
    def qr_code(self) -> str | None:
        """Scannable payload while a QR is on offer, else None."""
        if self.view != "qr":
            return None
        return qr_payload(self.qr_id)

    @property
    def view(self) -> str:
        if self.state is ConsoleState.checking_remote_toggle:
            return "loading"
        if self.state is ConsoleState.authenticated:
            return "dashboard"
        if not self.remote_enabled:
            return "not_found"
        if self.state is ConsoleState.qr_failed:
            return "qr_failed"
        if self.qr_id and self.state in (ConsoleState.qr_generated, ConsoleState.pending_approval):
            return "qr"
        return "not_found"

    # --- lifecycle ---

    async def start(self) -> None:
        """Resume a cached session if any, then follow the remote toggle."""
        if self.context.has_session:
            await self._watch_session()
        self._toggle_sub = self.store.subscribe(
            CONFIG_COLLECTION, ADMIN_STATUS_DOC, self._on_toggle
        )
        await self._toggle_sub.start()

    async def close(self) -> None:
        """Tear down every subscription this console holds."""
        for sub in (self._toggle_sub, self._pending_sub, self._session_sub):
            if sub is not None:
                sub.unsubscribe()
        self._toggle_sub = self._pending_sub = self._session_sub = None

    async def generate_new_qr(self) -> str | None:
        """Mint a fresh pending session and watch it. Returns the QR payload.

        Any previous pending session is abandoned, never reused. Store
        failures leave the console in ``qr_failed``; call again to retry.
        """
        self._withdraw_qr()
        qr_id = new_session_id()
        self.qr_id = qr_id
        self.last_error = None
        try:
            await self.store.set(
                SessionKind.direct.collection, qr_id, new_direct_session_record(self._clock())
            )
            self.state = ConsoleState.qr_generated
            self._pending_sub = self.store.subscribe(
                SessionKind.direct.collection,
                qr_id,
                functools.partial(self._on_pending_snapshot, qr_id),
            )
            await self._pending_sub.start()
        except DocumentStoreError as exc:
            logger.warning("qr generation failed session=%s error=%s", short_id(qr_id), exc)
            self._withdraw_qr()
            self.state = ConsoleState.qr_failed
            self.last_error = str(exc)
            return None

        logger.info("qr generated session=%s", short_id(qr_id))
        return qr_payload(qr_id)

    async def refresh(self) -> None:
        """Re-read the active session record (explicit poll)."""
        if not self.context.has_session:
            return
        session_id = self.context.session_id
        snapshot = await self.store.get(self.context.kind.collection, session_id)
        await self._on_session_snapshot(session_id, snapshot)

    async def logout(self) -> None:
        """User-initiated logout: delete the record, clear the cache, disarm."""
        session_id = self.context.session_id
        kind = self.context.kind
        self._cancel_session_watch()
        self._withdraw_qr()
        self.context.clear()
        self.state = ConsoleState.unauthenticated
        self.exit_reason = ExitReason.logout
        if session_id:
            try:
                await self.store.delete(kind.collection, session_id)
            except DocumentStoreError as exc:
                logger.warning(
                    "could not delete session on logout session=%s error=%s",
                    short_id(session_id), exc,
                )
        logger.info("admin logout session=%s kind=%s", short_id(session_id), kind.value)
        await self._disarm_remote()

    # --- listeners ---

    async def _on_toggle(self, snapshot: dict | None) -> None:
        self.remote_enabled = bool(snapshot and snapshot.get("remoteEnabled"))
        if self.context.has_session:
            return

        if self.remote_enabled:
            if self.qr_id is None:
                await self.generate_new_qr()
            return

        self._withdraw_qr()
        if self.state is not ConsoleState.unauthenticated:
            self.state = ConsoleState.disabled

    async def _on_pending_snapshot(self, qr_id: str, snapshot: dict | None) -> None:
        if qr_id != self.qr_id:
            return
        observation = evaluate(SessionKind.direct, snapshot, now=self._clock())

        if observation.verdict is Verdict.authenticated:
            self._withdraw_qr()
            self.context.promote(qr_id, SessionKind.direct, expires_at=observation.expires_at)
            self.state = ConsoleState.authenticated
            self.exit_reason = None
            logger.info("admin session promoted session=%s", short_id(qr_id))
            await self._watch_session()
        elif observation.verdict is Verdict.waiting and self.state is ConsoleState.qr_generated:
            self.state = ConsoleState.pending_approval

    async def _on_session_snapshot(self, session_id: str, snapshot: dict | None) -> None:
        if session_id != self.context.session_id:
            return
        observation = evaluate(
            self.context.kind,
            snapshot,
            visitor_id=self.context.visitor_id,
            now=self._clock(),
        )

        if observation.verdict is Verdict.authenticated:
            self.context.refresh(
                expires_at=observation.expires_at, constraints=observation.constraints
            )
            self.state = ConsoleState.authenticated
        elif observation.verdict is Verdict.expired:
            await self._force_logout(ExitReason.expired, delete_record=True)
        else:
            await self._force_logout(ExitReason.terminated)

    # --- helpers ---

    async def _watch_session(self) -> None:
        session_id = self.context.session_id
        self._session_sub = self.store.subscribe(
            self.context.kind.collection,
            session_id,
            functools.partial(self._on_session_snapshot, session_id),
        )
        await self._session_sub.start()

    async def _force_logout(self, reason: ExitReason, *, delete_record: bool = False) -> None:
        if not self.context.has_session:
            return
        session_id = self.context.session_id
        kind = self.context.kind

        self._cancel_session_watch()
        self.context.clear()
        self.state = ConsoleState.unauthenticated
        self.exit_reason = reason
        logger.info(
            "admin session ended session=%s kind=%s reason=%s",
            short_id(session_id), kind.value, reason.value,
        )

        if delete_record:
            try:
                await self.store.delete(kind.collection, session_id)
            except DocumentStoreError as exc:
                logger.warning("could not delete dead session=%s error=%s", short_id(session_id), exc)
        await self._disarm_remote()

    async def _disarm_remote(self) -> None:
        try:
            await set_remote_enabled(self.store, False, self._clock())
        except DocumentStoreError as exc:
            logger.warning("could not disarm remote toggle error=%s", exc)

    def _withdraw_qr(self) -> None:
        if self._pending_sub is not None:
            self._pending_sub.unsubscribe()
            self._pending_sub = None
        self.qr_id = None

    def _cancel_session_watch(self) -> None:
        if self._session_sub is not None:
            self._session_sub.unsubscribe()
            self._session_sub = None
