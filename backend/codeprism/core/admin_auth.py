"""Admin gate for server-side admin routes.

The admin surface must not visibly exist to anyone without a live admin
session, so every failure here is a plain 404, indistinguishable from an
unknown route. A session counts as live when its record evaluates as
authenticated right now (same rules the console applies).
"""

import logging
import secrets

from fastapi import Depends, Request

from codeprism.config import settings
from codeprism.core.errors import NotFoundError
from codeprism.dependencies import get_store
from codeprism.services.document_store import DocumentStore
from codeprism.services.remote_auth import SessionKind, Verdict, evaluate, short_id

logger = logging.getLogger("codeprism.auth")

ADMIN_SESSION_HEADER = "X-Admin-Session"
ADMIN_SESSION_KIND_HEADER = "X-Admin-Session-Kind"
VISITOR_ID_HEADER = "X-Visitor-Id"
APPROVER_TOKEN_HEADER = "X-Approver-Token"


async def require_admin_session(
    request: Request,
    store: DocumentStore = Depends(get_store),
) -> str | None:
    """FastAPI dependency: resolve the caller's admin session id.

    Returns None when the gate is disabled by configuration.
    """
    if not settings.admin_auth_required:
        return None

    session_id = request.headers.get(ADMIN_SESSION_HEADER)
    if not session_id:
        raise NotFoundError("Not found")

    try:
        kind = SessionKind(request.headers.get(ADMIN_SESSION_KIND_HEADER, SessionKind.direct.value))
    except ValueError:
        raise NotFoundError("Not found")

    snapshot = await store.get(kind.collection, session_id)
    observation = evaluate(
        kind, snapshot, visitor_id=request.headers.get(VISITOR_ID_HEADER)
    )
    if observation.verdict is not Verdict.authenticated:
        logger.info(
            "admin gate refused session=%s kind=%s verdict=%s",
            short_id(session_id), kind.value, observation.verdict.value,
        )
        raise NotFoundError("Not found")

    request.state.admin_session = session_id
    return session_id


async def require_approver(request: Request) -> None:
    """FastAPI dependency: the approver surface exists only when a token is configured."""
    expected = settings.approver_token
    supplied = request.headers.get(APPROVER_TOKEN_HEADER, "")
    if not expected or not secrets.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise NotFoundError("Not found")
