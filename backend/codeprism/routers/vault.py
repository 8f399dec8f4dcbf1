"""Admin vault routes: list, preview, upload, visibility/sync, delete.

All routes sit behind the admin gate; without a live admin session they
answer 404 like any unknown path.
"""

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import Response

from codeprism.core.admin_auth import require_admin_session
from codeprism.core.errors import BadRequestError
from codeprism.dependencies import get_store
from codeprism.schemas.vault import VaultUpdateRequest
from codeprism.services import vault_service
from codeprism.services.document_store import DocumentStore
from codeprism.services.vault_service import RetrievalMode

router = APIRouter(
    prefix="/vault",
    tags=["vault"],
    dependencies=[Depends(require_admin_session)],
)


def _file_summary(record) -> dict:
    return {
        "name": record.name,
        "size": record.size,
        "type": record.type,
        "visibility": record.visibility.value,
        "hasAccessCode": bool(record.access_code),
        "status": record.storage_status,
    }


@router.get("")
async def list_or_preview(
    file: str | None = None,
    action: str | None = None,
    store: DocumentStore = Depends(get_store),
):
    """List vault files, or stream one when ``file`` is given (admin preview)."""
    if file is not None:
        mode = RetrievalMode.download if action == "download" else RetrievalMode.inline
        payload = await vault_service.retrieve(
            store, filename=file, mode=mode, check_access=False
        )
        return Response(
            content=payload.data,
            media_type=payload.content_type,
            headers=payload.headers,
        )

    files = await vault_service.list_files(store)
    return {"success": True, "files": [f.model_dump(mode="json") for f in files]}


@router.post("", status_code=201)
async def upload_file(
    file: UploadFile | None = File(None),
    store: DocumentStore = Depends(get_store),
):
    """Upload bytes to primary storage and create the metadata record."""
    if file is None or not file.filename:
        raise BadRequestError("No file provided")

    data = await file.read()
    record = await vault_service.upload(
        store,
        filename=file.filename,
        data=data,
        content_type=file.content_type,
    )
    return {
        "success": True,
        "message": "File uploaded to vault",
        "file": _file_summary(record),
    }


@router.patch("")
async def update_file(
    body: VaultUpdateRequest,
    store: DocumentStore = Depends(get_store),
):
    """Change visibility / access code; ``syncToDB`` also refreshes the inline copy.

    Sending ``accessCode`` as null or "" clears the code.
    """
    clear_code = "accessCode" in body.model_fields_set and not body.accessCode
    record = await vault_service.update_settings(
        store,
        filename=body.fileName,
        visibility=body.visibility,
        access_code=body.accessCode or None,
        clear_access_code=clear_code,
        sync_to_db=body.syncToDB,
    )
    return {
        "success": True,
        "message": "File settings updated",
        "file": _file_summary(record),
    }


@router.delete("")
async def delete_file(
    file: str | None = None,
    store: DocumentStore = Depends(get_store),
):
    """Remove the blob and the metadata record."""
    if not file:
        raise BadRequestError("No file provided")
    await vault_service.delete_file(store, filename=file)
    return {"success": True, "message": "File deleted"}
