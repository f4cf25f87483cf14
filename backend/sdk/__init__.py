# sdk/ — Async Python client for the Todoria API
# ApiClient talks HTTP; TaskStore and CategoryStore keep a local copy of a
# workspace's board and apply optimistic mutations on top of it.

from sdk.api import ApiClient, ApiError
from sdk.stores import WorkspaceContext, UserDirectory, Notifier, TaskStore, CategoryStore
from sdk.reorder import plan_drop, build_rows

__all__ = [
    "ApiClient", "ApiError",
    "WorkspaceContext", "UserDirectory", "Notifier", "TaskStore", "CategoryStore",
    "plan_drop", "build_rows",
]
