"""frpfleet package initialization."""

from __future__ import annotations

from .services.dispatch_service import BatchReport, dispatch
from .services.filter_service import apply_filters, parse_filter, select_configs
from .services.index_service import incremental_sync, query_aggregate, query_by_type, rebuild
from .services.status_service import CacheManager
from .services.tag_service import add_tag, list_tags, query_tags, remove_tag
from .services.update_service import (
    BulkUpdateError,
    bulk_update_field,
    list_backups,
    restore_backup,
)
from .store import ConfigEntry, IndexUnavailableError, set_data_dir

__all__ = [
    "__version__",
    "BatchReport",
    "BulkUpdateError",
    "CacheManager",
    "ConfigEntry",
    "IndexUnavailableError",
    "add_tag",
    "apply_filters",
    "bulk_update_field",
    "dispatch",
    "get_version",
    "incremental_sync",
    "list_backups",
    "list_tags",
    "parse_filter",
    "query_aggregate",
    "query_by_type",
    "query_tags",
    "rebuild",
    "remove_tag",
    "restore_backup",
    "select_configs",
    "set_data_dir",
]

__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
