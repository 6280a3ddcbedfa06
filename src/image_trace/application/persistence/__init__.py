"""
Persistence: encrypted audit records, owner/admin archive access, retention.
"""

from .archive import SearchArchive
from .retention import PurgeReport, RetentionPolicy
from .writer import PersistenceWriter

__all__ = ["PersistenceWriter", "PurgeReport", "RetentionPolicy", "SearchArchive"]
