# Import all models so Base.metadata is populated before create_all.
from codeprism.models.document import Document  # noqa: F401
