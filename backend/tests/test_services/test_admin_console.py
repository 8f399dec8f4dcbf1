"""Admin console: QR login, promotion and forced logout."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from codeprism.services import approver_service
from codeprism.services.admin_console import AdminConsole, ConsoleState, ExitReason
from codeprism.services.document_store import DocumentStoreError, InMemoryDocumentStore
from codeprism.services.remote_auth import (
    ADMIN_STATUS_DOC,
    CONFIG_COLLECTION,
    SessionKind,
    isoformat,
)
from codeprism.services.session_context import (
    BOUND_VISITOR_KEY,
    SESSION_KEY,
    SHARED_FLAG_KEY,
    InMemoryLocalCache,
)

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FlakyStore(InMemoryDocumentStore):
    """In-memory store whose session writes or deletes can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_session_writes = False
        self.fail_session_deletes = False

    async def _write(self, collection, doc_id, data):
        if self.fail_session_writes and collection == "sessions":
            raise DocumentStoreError("database unavailable")
        await super()._write(collection, doc_id, data)

    async def _erase(self, collection, doc_id):
        if self.fail_session_deletes and collection == "sessions":
            raise DocumentStoreError("database unavailable")
        return await super()._erase(collection, doc_id)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cache():
    return InMemoryLocalCache()


async def _arm(store):
    await approver_service.arm_remote_login(store, enabled=True, now=START)


async def _approve(store, console, clock, minutes=60):
    await approver_service.approve_session(
        store,
        kind=SessionKind.direct,
        session_id=console.qr_id,
        ttl=timedelta(minutes=minutes),
        now=clock(),
    )


async def _remote_enabled(store):
    doc = await store.get(CONFIG_COLLECTION, ADMIN_STATUS_DOC)
    return bool(doc and doc.get("remoteEnabled"))


# --- toggle ---

@pytest.mark.asyncio
async def test_disarmed_toggle_renders_not_found(store, cache, clock):
    console = AdminConsole(store, cache, clock=clock)
    assert console.view == "loading"

    await console.start()

    assert console.state is ConsoleState.disabled
    assert console.view == "not_found"
    assert console.qr_code is None
    assert await store.list_documents("sessions") == []


@pytest.mark.asyncio
async def test_armed_toggle_offers_a_pending_qr(store, cache, clock):
    await _arm(store)
    console = AdminConsole(store, cache, clock=clock)
    await console.start()

    assert console.state is ConsoleState.pending_approval
    assert console.view == "qr"
    payload = json.loads(console.qr_code)
    assert payload == {"id": console.qr_id, "action": "authenticate_admin"}
    record = await store.get("sessions", console.qr_id)
    assert record["status"] == "pending"
    assert record["type"] == "admin_auth"


@pytest.mark.asyncio
async def test_arming_later_generates_qr(store, cache, clock):
    console = AdminConsole(store, cache, clock=clock)
    await console.start()
    assert console.view == "not_found"

    await _arm(store)
    assert console.view == "qr"


@pytest.mark.asyncio
async def test_disarming_withdraws_the_qr(store, cache, clock):
    await _arm(store)
    console = AdminConsole(store, cache, clock=clock)
    await console.start()
    qr_id = console.qr_id

    await approver_service.arm_remote_login(store, enabled=False)

    assert console.state is ConsoleState.disabled
    assert console.view == "not_found"
    assert store.subscriber_count("sessions", qr_id) == 0


@pytest.mark.asyncio
async def test_generate_new_qr_abandons_the_previous_one(store, cache, clock):
    await _arm(store)
    console = AdminConsole(store, cache, clock=clock)
    await console.start()
    old_id = console.qr_id

    await console.generate_new_qr()

    assert console.qr_id != old_id
    assert store.subscriber_count("sessions", old_id) == 0
    # Approving the abandoned id does nothing to this console
    await approver_service.approve_session(
        store, kind=SessionKind.direct, session_id=old_id, ttl=timedelta(hours=1), now=clock()
    )
    assert console.state is ConsoleState.pending_approval


@pytest.mark.asyncio
async def test_qr_failure_is_explicit_and_retryable(cache, clock):
    store = FlakyStore()
    await _arm(store)
    store.fail_session_writes = True
    console = AdminConsole(store, cache, clock=clock)
    await console.start()

    assert console.state is ConsoleState.qr_failed
    assert console.view == "qr_failed"
    assert console.qr_id is None
    assert console.last_error == "database unavailable"

    store.fail_session_writes = False
    payload = await console.generate_new_qr()

    assert payload is not None
    assert console.view == "qr"
    assert console.last_error is None


# --- approval ---

@pytest.mark.asyncio
async def test_approval_promotes_exactly_once(store, cache, clock):
    await _arm(store)
    console = AdminConsole(store, cache, clock=clock)
    await console.start()
    qr_id = console.qr_id

    await _approve(store, console, clock)

    assert console.state is ConsoleState.authenticated
    assert console.view == "dashboard"
    assert console.qr_id is None
    assert console.context.session_id == qr_id
    assert console.context.expires_at == START + timedelta(minutes=60)
    assert cache.get(SESSION_KEY) == qr_id
    assert cache.get(SHARED_FLAG_KEY) is None
    # Only the long-lived session watcher remains on the record
    assert store.subscriber_count("sessions", qr_id) == 1


@pytest.mark.asyncio
async def test_approver_extension_is_adopted(store, cache, clock):
    await _arm(store)
    console = AdminConsole(store, cache, clock=clock)
    await console.start()
    session_id = console.qr_id
    await _approve(store, console, clock, minutes=10)

    clock.advance(minutes=5)
    await approver_service.extend_session(
        store, kind=SessionKind.direct, session_id=session_id,
        ttl=timedelta(minutes=30), now=clock(),
    )

    assert console.is_authenticated
    assert console.context.expires_at == clock() + timedelta(minutes=30)


# --- forced logout ---

@pytest.mark.asyncio
async def test_expiry_found_on_refresh_logs_out(store, cache, clock):
    await _arm(store)
    console = AdminConsole(store, cache, clock=clock)
    await console.start()
    session_id = console.qr_id
    await _approve(store, console, clock, minutes=1)

    clock.advance(minutes=2)
    await console.refresh()

    assert console.state is ConsoleState.unauthenticated
    assert console.exit_reason is ExitReason.expired
    assert cache.get(SESSION_KEY) is None
    assert await store.get("sessions", session_id) is None
    assert await _remote_enabled(store) is False


@pytest.mark.asyncio
async def test_expiry_found_on_push_logs_out(store, cache, clock):
    await _arm(store)
    console = AdminConsole(store, cache, clock=clock)
    await console.start()
    session_id = console.qr_id
    await _approve(store, console, clock, minutes=1)

    clock.advance(minutes=2)
    await store.update("sessions", session_id, {"touchedAt": isoformat(clock())})

    assert console.exit_reason is ExitReason.expired
    assert console.context.has_session is False


@pytest.mark.asyncio
async def test_numeric_expiry_on_push_logs_out(store, cache, clock):
    await _arm(store)
    console = AdminConsole(store, cache, clock=clock)
    await console.start()
    session_id = console.qr_id
    await _approve(store, console, clock)

    past = int((clock() - timedelta(hours=1)).timestamp() * 1000)
    await store.update("sessions", session_id, {"expiresAt": past})

    assert console.state is ConsoleState.unauthenticated
    assert console.exit_reason is ExitReason.expired
    assert cache.get(SESSION_KEY) is None
    assert await _remote_enabled(store) is False


@pytest.mark.asyncio
async def test_remote_delete_terminates(store, cache, clock):
    await _arm(store)
    console = AdminConsole(store, cache, clock=clock)
    await console.start()
    session_id = console.qr_id
    await _approve(store, console, clock)

    await approver_service.terminate_session(
        store, kind=SessionKind.direct, session_id=session_id
    )

    assert console.state is ConsoleState.unauthenticated
    assert console.exit_reason is ExitReason.terminated
    assert cache.get(SESSION_KEY) is None
    assert await _remote_enabled(store) is False
    assert console.view == "not_found"


@pytest.mark.asyncio
async def test_status_change_terminates(store, cache, clock):
    await _arm(store)
    console = AdminConsole(store, cache, clock=clock)
    await console.start()
    session_id = console.qr_id
    await _approve(store, console, clock)

    await store.update("sessions", session_id, {"status": "pending"})

    assert console.exit_reason is ExitReason.terminated
    assert store.subscriber_count("sessions", session_id) == 0


@pytest.mark.asyncio
async def test_logout_deletes_record_and_disarms(store, cache, clock):
    await _arm(store)
    console = AdminConsole(store, cache, clock=clock)
    await console.start()
    session_id = console.qr_id
    await _approve(store, console, clock)

    await console.logout()

    assert console.state is ConsoleState.unauthenticated
    assert console.exit_reason is ExitReason.logout
    assert await store.get("sessions", session_id) is None
    assert await _remote_enabled(store) is False
    assert cache.get(SESSION_KEY) is None


@pytest.mark.asyncio
async def test_logout_disarms_even_when_delete_fails(cache, clock):
    store = FlakyStore()
    await _arm(store)
    console = AdminConsole(store, cache, clock=clock)
    await console.start()
    session_id = console.qr_id
    await _approve(store, console, clock)
    store.fail_session_deletes = True

    await console.logout()

    assert console.state is ConsoleState.unauthenticated
    assert console.exit_reason is ExitReason.logout
    assert cache.get(SESSION_KEY) is None
    assert await _remote_enabled(store) is False
    assert store.subscriber_count("sessions", session_id) == 0


# --- resume ---

@pytest.mark.asyncio
async def test_resumes_cached_session(store, clock):
    await store.set("sessions", "s1", {
        "status": "authenticated",
        "type": "admin_auth",
        "createdAt": isoformat(START),
        "expiresAt": isoformat(START + timedelta(hours=1)),
    })
    console = AdminConsole(store, InMemoryLocalCache({SESSION_KEY: "s1"}), clock=clock)
    await console.start()

    assert console.state is ConsoleState.authenticated
    assert console.view == "dashboard"


@pytest.mark.asyncio
async def test_stale_cached_session_is_dropped(store, clock):
    cache = InMemoryLocalCache({SESSION_KEY: "gone"})
    console = AdminConsole(store, cache, clock=clock)
    await console.start()

    assert console.state is ConsoleState.unauthenticated
    assert console.exit_reason is ExitReason.terminated
    assert cache.get(SESSION_KEY) is None


@pytest.mark.asyncio
async def test_resumed_shared_session_checks_binding(store, clock):
    await store.set("shared_links", "link1", {
        "status": "authenticated",
        "type": "shared_access",
        "userType": "guest",
        "visitorId": "v1",
        "expiresAt": isoformat(START + timedelta(hours=1)),
    })
    cache = InMemoryLocalCache({
        SESSION_KEY: "link1",
        SHARED_FLAG_KEY: "true",
        BOUND_VISITOR_KEY: "v1",
    })
    console = AdminConsole(store, cache, clock=clock)
    await console.start()
    assert console.is_authenticated
    assert console.context.constraints.user_type == "guest"

    await store.update("shared_links", "link1", {"visitorId": "v2"})

    assert console.exit_reason is ExitReason.terminated
    assert cache.get(SHARED_FLAG_KEY) is None


@pytest.mark.asyncio
async def test_close_drops_every_subscription(store, cache, clock):
    await _arm(store)
    console = AdminConsole(store, cache, clock=clock)
    await console.start()
    qr_id = console.qr_id

    await console.close()

    assert store.subscriber_count(CONFIG_COLLECTION, ADMIN_STATUS_DOC) == 0
    assert store.subscriber_count("sessions", qr_id) == 0
