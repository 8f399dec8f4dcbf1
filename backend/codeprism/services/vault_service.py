"""Vault service: upload, list, share-gated retrieval, visibility, delete.

Key rules:
- The metadata document ``vault/{name}`` is the only source of truth for
  whether a file exists and who may read it. Blobs without metadata are
  unreachable.
- Authorization is decided before any storage lookup.
- Bytes come from primary storage first, then from the inline base64 copy
  on the metadata document (written only by an explicit sync).
- Access codes are stored and compared as plaintext. This is a share gate,
  not real access control.
"""

import base64
import binascii
import enum
import logging
import mimetypes
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePosixPath
from urllib.parse import quote

from codeprism.config import settings
from codeprism.core.errors import (
    AuthorizationError,
    BadRequestError,
    NotFoundError,
    PayloadMissingError,
    StorageUnavailableError,
)
from codeprism.schemas.vault import VaultFileEntry, VaultFileRecord, VaultShareInfo, Visibility
from codeprism.services.document_store import DocumentNotFoundError, DocumentStore
from codeprism.services.remote_auth import isoformat, utcnow
from codeprism.services.storage import get_storage, vault_storage_key

logger = logging.getLogger("codeprism.vault")

VAULT_COLLECTION = "vault"

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".pdf": "application/pdf",
}


class RetrievalMode(str, enum.Enum):
    inline = "inline"
    download = "download"


@dataclass
class VaultPayload:
    record: VaultFileRecord
    data: bytes
    content_type: str
    source: str
    headers: dict[str, str] = field(default_factory=dict)


# --- pure helpers ---

def file_type_for(filename: str, content_type: str | None = None) -> str:
    """Lowercased extension, or one derived from the MIME type when there is none."""
    suffix = PurePosixPath(filename).suffix.lower()
    if suffix:
        return suffix[1:]
    if content_type:
        guessed = mimetypes.guess_extension(content_type.split(";")[0].strip())
        if guessed:
            return guessed[1:].lower()
        return content_type.split("/")[-1].split(";")[0].strip().lower()
    return ""


def resolve_content_type(filename: str, file_type: str | None = None) -> str:
    """MIME type from the extension; unknown extensions are served as binary."""
    suffix = PurePosixPath(filename).suffix.lower()
    if not suffix and file_type:
        suffix = f".{file_type.lower()}"
    return CONTENT_TYPES.get(suffix, DEFAULT_CONTENT_TYPE)


def content_disposition(filename: str) -> str:
    """``attachment`` disposition carrying the original file name."""
    escaped = filename.replace("\\", "\\\\").replace('"', '\\"')
    try:
        escaped.encode("ascii")
    except UnicodeEncodeError:
        fallback = escaped.encode("ascii", "replace").decode("ascii").replace("?", "_")
        return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"
    return f'attachment; filename="{escaped}"'


def validate_filename(filename: str | None) -> str:
    name = (filename or "").strip()
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        raise BadRequestError("Invalid file name")
    return name


def _codes_match(stored: str | None, code: str | None) -> bool:
    if not code or not stored:
        return False
    return secrets.compare_digest(code.encode("utf-8"), stored.encode("utf-8"))


def authorize(record: VaultFileRecord, code: str | None) -> None:
    """Require an exact access-code match for protected files."""
    if not record.is_protected:
        return
    if not _codes_match(record.access_code, code):
        logger.warning("access code rejected file=%s supplied=%s", record.name, bool(code))
        raise AuthorizationError()


# --- metadata ---

async def resolve_metadata(store: DocumentStore, *, filename: str) -> VaultFileRecord:
    """Load a file's metadata. Missing metadata means the file does not exist."""
    data = await store.get(VAULT_COLLECTION, filename)
    if data is None:
        raise NotFoundError()
    return VaultFileRecord.model_validate({**data, "name": filename})


async def list_files(store: DocumentStore, *, base_url: str | None = None) -> list[VaultFileEntry]:
    """List every file known to the vault (by metadata)."""
    base = (settings.public_base_url if base_url is None else base_url).rstrip("/")
    entries = []
    for name, data in await store.list_documents(VAULT_COLLECTION):
        record = VaultFileRecord.model_validate({**data, "name": name})
        quoted = quote(name)
        entries.append(
            VaultFileEntry(
                name=name,
                size=record.size,
                updatedAt=record.updated_at,
                type=record.type,
                url=f"{base}/vault?file={quoted}&action=preview",
                shareUrl=f"{base}/v/{quoted}",
                status=record.storage_status,
                visibility=record.visibility,
                hasAccessCode=bool(record.access_code),
            )
        )
    return entries


async def share_metadata(store: DocumentStore, *, filename: str) -> VaultShareInfo:
    """What the public share gate may reveal about a file."""
    record = await resolve_metadata(store, filename=filename)
    return VaultShareInfo(
        name=record.name,
        visibility=record.visibility,
        type=record.type or file_type_for(record.name),
        size=record.size,
        status=record.storage_status,
    )


# --- bytes ---

async def load_payload(record: VaultFileRecord) -> tuple[bytes, str]:
    """Primary storage first, then the inline copy. Returns (data, source)."""
    storage = get_storage()
    key = vault_storage_key(record.name)
    try:
        return await storage.load(key), "primary"
    except Exception as exc:
        logger.warning(
            "primary storage miss file=%s error=%s; trying inline copy",
            record.name, type(exc).__name__,
        )

    if record.content:
        try:
            return base64.b64decode(record.content, validate=True), "inline"
        except (binascii.Error, ValueError):
            logger.error("inline copy is not valid base64 file=%s", record.name)

    raise PayloadMissingError()


async def retrieve(
    store: DocumentStore,
    *,
    filename: str,
    code: str | None = None,
    mode: RetrievalMode = RetrievalMode.inline,
    check_access: bool = True,
) -> VaultPayload:
    """Release a file's bytes if the caller may have them.

    check_access=False is for the authenticated admin preview only.
    """
    record = await resolve_metadata(store, filename=filename)
    if check_access:
        authorize(record, code)

    data, source = await load_payload(record)
    logger.info("vault release file=%s mode=%s source=%s", record.name, mode.value, source)
    headers = {}
    if mode is RetrievalMode.download:
        headers["Content-Disposition"] = content_disposition(record.name)

    return VaultPayload(
        record=record,
        data=data,
        content_type=resolve_content_type(record.name, record.type),
        source=source,
        headers=headers,
    )


async def verify_code(store: DocumentStore, *, filename: str, code: str | None) -> None:
    """Check an access code without releasing anything.

    The stored code must match exactly whatever the file's visibility; a
    public file with no code never verifies.
    """
    record = await resolve_metadata(store, filename=filename)
    if not _codes_match(record.access_code, code):
        logger.warning("access code verification failed file=%s", record.name)
        raise AuthorizationError("Invalid Security Code")


# --- writes ---

async def upload(
    store: DocumentStore,
    *,
    filename: str,
    data: bytes,
    content_type: str | None = None,
    source: str = "upload",
    now: datetime | None = None,
) -> VaultFileRecord:
    """Store bytes in primary storage and write the metadata document.

    Re-uploading an existing name overwrites it but keeps its visibility and
    access code. A previous inline copy is dropped since it is now stale.
    """
    name = validate_filename(filename)
    if len(data) > settings.vault_max_file_size:
        raise BadRequestError(
            f"File too large. Maximum size is {settings.vault_max_file_size // (1024 * 1024)} MB."
        )

    previous = await store.get(VAULT_COLLECTION, name) or {}
    file_type = file_type_for(name, content_type)

    storage = get_storage()
    await storage.save(
        vault_storage_key(name), data, content_type or resolve_content_type(name, file_type)
    )

    document = {
        "name": name,
        "size": len(data),
        "type": file_type,
        "updatedAt": isoformat(now or utcnow()),
        "visibility": previous.get("visibility") or Visibility.public.value,
        "source": source,
    }
    if previous.get("accessCode"):
        document["accessCode"] = previous["accessCode"]
    await store.set(VAULT_COLLECTION, name, document)

    logger.info("vault upload file=%s size=%d overwrite=%s", name, len(data), bool(previous))
    return VaultFileRecord.model_validate(document)


async def update_settings(
    store: DocumentStore,
    *,
    filename: str,
    visibility: Visibility | str | None = None,
    access_code: str | None = None,
    clear_access_code: bool = False,
    sync_to_db: bool = False,
    now: datetime | None = None,
) -> VaultFileRecord:
    """Change visibility and/or access code, optionally syncing the inline copy.

    All changes land in a single metadata write; if the sync cannot read the
    primary bytes nothing is written.
    """
    record = await resolve_metadata(store, filename=filename)
    fields: dict = {}

    if visibility is not None:
        try:
            fields["visibility"] = Visibility(visibility).value
        except ValueError:
            raise BadRequestError("Invalid visibility")

    if clear_access_code:
        fields["accessCode"] = None
    elif access_code is not None:
        fields["accessCode"] = access_code

    if sync_to_db:
        storage = get_storage()
        try:
            data = await storage.load(vault_storage_key(record.name))
        except FileNotFoundError:
            raise PayloadMissingError("Nothing in primary storage to sync")
        except Exception as exc:
            raise StorageUnavailableError() from exc
        fields["content"] = base64.b64encode(data).decode("ascii")
        fields["size"] = len(data)
        fields["source"] = "storage_sync"

    if not fields:
        return record

    fields["updatedAt"] = isoformat(now or utcnow())
    try:
        await store.update(VAULT_COLLECTION, record.name, fields)
    except DocumentNotFoundError:
        raise NotFoundError()

    logger.info(
        "vault settings updated file=%s visibility=%s code_changed=%s synced=%s",
        record.name,
        fields.get("visibility", record.visibility.value),
        "accessCode" in fields,
        sync_to_db,
    )
    return VaultFileRecord.model_validate({**record.model_dump(by_alias=True), **fields})


async def delete_file(store: DocumentStore, *, filename: str) -> None:
    """Delete the blob and the metadata. Both are always attempted.

    A storage failure only leaves an unreachable blob behind, so it is
    logged; a metadata failure propagates.
    """
    storage = get_storage()
    try:
        await storage.delete(vault_storage_key(filename))
    except Exception as exc:
        logger.warning("storage delete failed file=%s error=%s", filename, exc)

    await store.delete(VAULT_COLLECTION, filename)
    logger.info("vault delete file=%s", filename)
