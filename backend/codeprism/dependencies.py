from codeprism.services.document_store import DocumentStore, get_document_store


async def get_store() -> DocumentStore:
    """FastAPI dependency: the active document store."""
    return get_document_store()
