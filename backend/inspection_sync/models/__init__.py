"""All local cache models.

Import all models here so SQLAlchemy can discover them for create_all.
"""

from inspection_sync.models.base import Base  # noqa: F401

# Drafts & Mutation Queue
from inspection_sync.models.cache import (  # noqa: F401
    InspectionDraftRecord,
    QueuedMutationRecord,
)
