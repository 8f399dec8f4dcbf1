"""Public share gate: metadata, access-code verification, gated download.

No admin session involved. Protected files need the exact access code.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from codeprism.core.errors import BadRequestError
from codeprism.dependencies import get_store
from codeprism.schemas.vault import VaultVerifyRequest
from codeprism.services import vault_service
from codeprism.services.document_store import DocumentStore
from codeprism.services.vault_service import RetrievalMode

router = APIRouter(prefix="/vault/share", tags=["vault-share"])

BYTE_ACTIONS = {"download": RetrievalMode.download, "raw": RetrievalMode.inline}


@router.get("")
async def share(
    file: str | None = None,
    action: str | None = None,
    code: str | None = None,
    store: DocumentStore = Depends(get_store),
):
    """Metadata by default; bytes only for ``action=download`` or ``action=raw``."""
    if not file:
        raise BadRequestError("Missing identifier")

    mode = BYTE_ACTIONS.get(action or "")
    if mode is None:
        info = await vault_service.share_metadata(store, filename=file)
        return {"success": True, "file": info.model_dump(mode="json")}

    payload = await vault_service.retrieve(store, filename=file, code=code, mode=mode)
    return Response(
        content=payload.data,
        media_type=payload.content_type,
        headers=payload.headers,
    )


@router.post("")
async def verify(
    body: VaultVerifyRequest,
    store: DocumentStore = Depends(get_store),
):
    """Check an access code without releasing any bytes."""
    if not body.filename or not body.accessCode:
        raise BadRequestError("Missing security credentials")
    await vault_service.verify_code(store, filename=body.filename, code=body.accessCode)
    return {"success": True, "message": "Decryption successful"}
