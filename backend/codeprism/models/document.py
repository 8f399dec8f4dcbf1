"""Document model: one row per (collection, doc_id) pair.

Backs the SQL document store. Every logical collection (sessions,
shared_links, config, vault) lives in this single table; the payload is
an opaque JSON object owned by the services that read it.
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from codeprism.models.base import Base, TimestampMixin


class Document(TimestampMixin, Base):
    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(100), primary_key=True)
    doc_id: Mapped[str] = mapped_column(String(500), primary_key=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
