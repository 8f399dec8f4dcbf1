"""Remote-approval sessions: the shared engine behind QR login and shared links.

A session record is a document that one party creates and another approves.
The requesting side never decides on its own that it is authenticated; it
only evaluates snapshots of the record as they arrive. Two kinds exist:

- direct: ``sessions/{id}``, created by the admin console and rendered as
  a QR code for the phone to approve.
- shared: ``shared_links/{id}``, created by the phone and opened by a
  visitor's browser. Approval is bound to the browser that requested it.

Expiry is evaluated on every observation. A record whose ``expiresAt`` has
passed is expired whatever its stored status says, but nothing sweeps it:
it stays apparently valid until someone reads it again.
"""

import enum
import json
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from codeprism.services.document_store import DocumentStore

CONFIG_COLLECTION = "config"
ADMIN_STATUS_DOC = "admin_status"

QR_ACTION = "authenticate_admin"
DIRECT_SESSION_TYPE = "admin_auth"
SHARED_SESSION_TYPE = "shared_access"


class SessionKind(str, enum.Enum):
    direct = "direct"
    shared = "shared"

    @property
    def collection(self) -> str:
        return "sessions" if self is SessionKind.direct else "shared_links"

    @property
    def binds_visitor(self) -> bool:
        return self is SessionKind.shared


class SessionStatus(str, enum.Enum):
    pending = "pending"
    active = "active"
    awaiting_auth = "awaiting_auth"
    authenticated = "authenticated"


class Verdict(str, enum.Enum):
    missing = "missing"
    expired = "expired"
    waiting = "waiting"
    authenticated = "authenticated"
    access_denied = "access_denied"


@dataclass(frozen=True)
class AccessConstraints:
    """Scope granted to a delegated approver through a shared link."""

    user_type: str
    access_type: str | None = None


@dataclass(frozen=True)
class Observation:
    verdict: Verdict
    status: str | None = None
    expires_at: datetime | None = None
    constraints: AccessConstraints | None = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: str | int | float | datetime | None) -> datetime | None:
    """Parse a stored timestamp: ISO string, datetime, or epoch milliseconds.

    Naive values are taken as UTC. Any other type raises TypeError.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        raise TypeError("boolean is not a timestamp")
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise TypeError(f"unsupported timestamp type {type(value).__name__}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_expired(record: dict, now: datetime | None = None) -> bool:
    """True when the record carries an ``expiresAt`` that is not in the future.

    An unreadable timestamp counts as expired.
    """
    raw = record.get("expiresAt")
    if raw is None:
        return False
    try:
        expires_at = parse_timestamp(raw)
    except (TypeError, ValueError, OverflowError, OSError):
        return True
    return expires_at <= (now or utcnow())


def new_session_id() -> str:
    """Opaque 128-bit random token, used as document key and QR payload."""
    return secrets.token_hex(16)


def new_visitor_id() -> str:
    return str(uuid.uuid4())


def short_id(session_id: str | None) -> str:
    """Truncated id for log lines."""
    return f"{session_id[:6]}..." if session_id else "-"


def new_direct_session_record(now: datetime | None = None) -> dict:
    return {
        "status": SessionStatus.pending.value,
        "createdAt": isoformat(now or utcnow()),
        "type": DIRECT_SESSION_TYPE,
    }


def new_shared_link_record(
    user_type: str,
    access_type: str | None = None,
    now: datetime | None = None,
) -> dict:
    record = {
        "status": SessionStatus.active.value,
        "createdAt": isoformat(now or utcnow()),
        "type": SHARED_SESSION_TYPE,
        "userType": user_type,
    }
    if access_type is not None:
        record["accessType"] = access_type
    return record


def qr_payload(session_id: str) -> str:
    """The scannable payload for a pending direct session."""
    return json.dumps({"id": session_id, "action": QR_ACTION})


def constraints_of(record: dict) -> AccessConstraints | None:
    user_type = record.get("userType")
    if not user_type:
        return None
    return AccessConstraints(user_type=user_type, access_type=record.get("accessType"))


def evaluate(
    kind: SessionKind,
    snapshot: dict | None,
    *,
    visitor_id: str | None = None,
    now: datetime | None = None,
) -> Observation:
    """Classify one snapshot of a session record for the observing browser.

    Order matters: a missing record beats everything, expiry beats status,
    and a visitor-bound record only counts as authenticated for the browser
    whose id is stamped on it.
    """
    if snapshot is None:
        return Observation(Verdict.missing)

    status = snapshot.get("status")
    if is_expired(snapshot, now):
        return Observation(Verdict.expired, status=status)

    # Unparseable timestamps were already reported as expired above.
    expires_at = parse_timestamp(snapshot.get("expiresAt"))

    if status != SessionStatus.authenticated.value:
        return Observation(Verdict.waiting, status=status, expires_at=expires_at)

    if kind.binds_visitor:
        bound = snapshot.get("visitorId")
        if bound is None or visitor_id is None or bound != visitor_id:
            return Observation(Verdict.access_denied, status=status, expires_at=expires_at)

    return Observation(
        Verdict.authenticated,
        status=status,
        expires_at=expires_at,
        constraints=constraints_of(snapshot),
    )


async def set_remote_enabled(
    store: DocumentStore,
    enabled: bool,
    now: datetime | None = None,
) -> None:
    """Arm or disarm the QR login surface."""
    await store.set(
        CONFIG_COLLECTION,
        ADMIN_STATUS_DOC,
        {"remoteEnabled": enabled, "updatedAt": isoformat(now or utcnow())},
        merge=True,
    )
