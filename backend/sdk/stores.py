# sdk/stores.py — Optimistic task and category stores
#
# Every mutation returns {"success": bool, ...}. Failures restore the previous
# local state and report the server's message, or a fixed fallback when the
# server sent none. Each task carries a mutation generation: a response is only
# reconciled (or rolled back) if no newer update for that task started since.

import asyncio
import copy
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sdk.api import ApiClient, ApiError

logger = logging.getLogger("todoria.sdk.stores")

NO_WORKSPACE = "No workspace selected"

# Request keys that map onto a different task field (or none) in local state
_REQUEST_ONLY_KEYS = {"assignee_ids", "workspace_id"}


def _error_message(error: ApiError, fallback: str) -> str:
    return error.message or fallback


class WorkspaceContext:
    """Which workspace the stores act on"""

    def __init__(self, workspace_id: Optional[str] = None):
        self.current_workspace_id = workspace_id

    def select(self, workspace_id: Optional[str]) -> None:
        self.current_workspace_id = workspace_id


class UserDirectory:
    """Known users, used to render optimistic assignee names"""

    def __init__(self, users: Optional[list] = None):
        self.users = list(users or [])

    def name_of(self, user_id: str) -> str:
        for u in self.users:
            if u.get("id") == user_id:
                return u.get("name") or "Unknown"
        return "Unknown"


class Notifier:
    """Toast sink; keeps every message so callers (and tests) can inspect them"""

    def __init__(self):
        self.messages: List[tuple] = []

    def success(self, message: str) -> None:
        self.messages.append(("success", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    @property
    def errors(self) -> List[str]:
        return [m for kind, m in self.messages if kind == "error"]

    @property
    def successes(self) -> List[str]:
        return [m for kind, m in self.messages if kind == "success"]


def default_filters() -> dict:
    return {
        "category_id": None,
        "assignee_ids": [],
        "status": None,
        "priority": None,
        "search": "",
    }


class TaskStore:
    def __init__(
        self,
        api: ApiClient,
        workspace: WorkspaceContext,
        users: Optional[UserDirectory] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.api = api
        self.workspace = workspace
        self.users = users or UserDirectory()
        self.notifier = notifier or Notifier()

        self.tasks: List[dict] = []
        self.is_loading = False
        self.is_fetching = False
        self.is_mutating = False
        self.is_loading_more = False
        self.error: Optional[str] = None
        self.next_cursor: Optional[str] = None
        self.has_more = False
        self.filters = default_filters()
        self._generation: Dict[str, int] = {}
        self._background: set = set()

    # --- helpers ---

    def _find(self, task_id: str) -> Optional[dict]:
        return next((t for t in self.tasks if t["id"] == task_id), None)

    def _snapshot(self) -> List[dict]:
        return copy.deepcopy(self.tasks)

    def optimistic_fields(self, data: dict) -> dict:
        """Local task fields implied by an update request"""
        fields = {k: v for k, v in data.items() if k not in _REQUEST_ONLY_KEYS}
        if "assignee_ids" in data:
            fields["assignees"] = [
                {"id": uid, "name": self.users.name_of(uid)} for uid in data["assignee_ids"] or []
            ]
        return fields

    async def wait_background(self) -> None:
        """Wait for refetches started after position updates"""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # --- queries ---

    async def fetch_tasks(self, filters: Optional[dict] = None, show_loading: bool = True) -> dict:
        workspace_id = self.workspace.current_workspace_id
        if not workspace_id:
            return {"success": False, "error": NO_WORKSPACE}

        if show_loading:
            self.is_loading = self.is_fetching = True
            self.error = None
        try:
            page = await self.api.list_tasks(workspace_id, **(filters or {}))
        except ApiError as e:
            message = _error_message(e, "Failed to fetch tasks")
            self.error = message
            if show_loading:
                self.is_loading = self.is_fetching = False
            self.notifier.error(message)
            return {"success": False, "error": message}

        self.tasks = page.get("tasks", [])
        self.next_cursor = page.get("next_cursor") or None
        self.has_more = bool(page.get("has_more"))
        if show_loading:
            self.is_loading = self.is_fetching = False
        return {"success": True, "tasks": self.tasks}

    async def load_more_tasks(self) -> dict:
        if not self.has_more or not self.next_cursor or self.is_loading_more:
            return {"success": False}
        workspace_id = self.workspace.current_workspace_id
        if not workspace_id:
            return {"success": False, "error": NO_WORKSPACE}

        self.is_loading_more = True
        try:
            page = await self.api.list_tasks(workspace_id, cursor=self.next_cursor, **self.filters)
        except ApiError as e:
            message = _error_message(e, "Failed to load more tasks")
            self.is_loading_more = False
            self.notifier.error(message)
            return {"success": False, "error": message}

        self.tasks = self.tasks + page.get("tasks", [])
        self.next_cursor = page.get("next_cursor") or None
        self.has_more = bool(page.get("has_more"))
        self.is_loading_more = False
        return {"success": True}

    # --- mutations ---

    async def create_task(self, data: dict) -> dict:
        workspace_id = self.workspace.current_workspace_id
        if not workspace_id:
            self.notifier.error(NO_WORKSPACE)
            return {"success": False, "error": NO_WORKSPACE}

        self.is_mutating = True
        try:
            task = await self.api.create_task({**data, "workspace_id": workspace_id})
        except ApiError as e:
            message = _error_message(e, "Failed to create task")
            self.is_mutating = False
            self.notifier.error(message)
            return {"success": False, "error": message}

        self.tasks = self.tasks + [task]
        self.is_mutating = False
        self.notifier.success(f'Created "{(task or {}).get("title") or "Task"}"')
        return {"success": True, "task": task}

    async def update_task(self, task_id: str, data: dict) -> dict:
        previous = self._snapshot()
        gen = self._generation.get(task_id, 0) + 1
        self._generation[task_id] = gen

        fields = self.optimistic_fields(data)
        self.tasks = [{**t, **fields} if t["id"] == task_id else t for t in self.tasks]

        try:
            updated = await self.api.update_task(task_id, data)
        except ApiError as e:
            message = _error_message(e, "Failed to update task")
            if self._generation.get(task_id) == gen:
                self.tasks = previous
            self.notifier.error(message)
            return {"success": False, "error": message}

        old = next((t for t in previous if t["id"] == task_id), None)
        title = (updated or {}).get("title") or (old or {}).get("title") or "Task"
        if self._generation.get(task_id) == gen:
            self.tasks = [{**t, **updated} if t["id"] == task_id else t for t in self.tasks]
        self.notifier.success(f'Updated "{title}"')
        return {"success": True, "task": updated}

    def _apply_move(self, task_id: str, category_id: Optional[str], position: int) -> None:
        task = self._find(task_id)
        if task is None:
            return
        rest = [t for t in self.tasks if t["id"] != task_id]
        dest = sorted(
            [t for t in rest if t.get("category_id") == category_id],
            key=lambda t: t.get("position") or 0,
        )
        dest.insert(position, {**task, "category_id": category_id, "position": position})
        dest = [{**t, "position": i} for i, t in enumerate(dest)]
        others = [t for t in rest if t.get("category_id") != category_id]
        self.tasks = others + dest

    async def update_task_position(self, task_id: str, category_id: Optional[str], position: int) -> dict:
        previous = self._snapshot()
        self._apply_move(task_id, category_id, position)
        self.is_mutating = True

        try:
            await self.api.update_task_position(task_id, category_id, position)
        except ApiError as e:
            self.tasks = previous
            self.is_mutating = False
            message = _error_message(e, "Failed to update position")
            self.notifier.error(message)
            return {"success": False, "error": message}

        # Other tasks' positions shifted server-side
        refresh = asyncio.ensure_future(self.fetch_tasks(self.filters, show_loading=False))
        self._background.add(refresh)
        refresh.add_done_callback(self._background.discard)
        self.is_mutating = False
        return {"success": True}

    async def delete_task(self, task_id: str) -> dict:
        previous = self._snapshot()
        old = self._find(task_id)
        title = (old or {}).get("title") or "Task"
        self.tasks = [t for t in self.tasks if t["id"] != task_id]

        try:
            await self.api.delete_task(task_id)
        except ApiError as e:
            message = _error_message(e, "Failed to delete task")
            self.tasks = previous
            self.notifier.error(message)
            return {"success": False, "error": message}

        self.notifier.success(f'Deleted "{title}"')
        return {"success": True}

    async def toggle_complete(self, task: dict, categories: Optional[list] = None) -> dict:
        """Flip completed/todo, following the "Completed" and "To Do" columns when present"""
        previous = self._snapshot()
        new_status = "todo" if task.get("status") == "completed" else "completed"
        by_name = {c.get("name"): c for c in categories or []}

        category_id = task.get("category_id")
        if new_status == "completed" and "Completed" in by_name:
            category_id = by_name["Completed"]["id"]
        elif new_status == "todo" and "To Do" in by_name:
            category_id = by_name["To Do"]["id"]
        completed_at = datetime.now(timezone.utc).isoformat() if new_status == "completed" else None

        self.tasks = [
            {**t, "status": new_status, "completed_at": completed_at, "category_id": category_id}
            if t["id"] == task["id"] else t
            for t in self.tasks
        ]

        try:
            updated = await self.api.update_task(task["id"], {"status": new_status, "category_id": category_id})
        except ApiError as e:
            message = _error_message(e, "Failed to update task")
            self.tasks = previous
            self.notifier.error(message)
            return {"success": False, "error": message}

        self.tasks = [{**t, **updated} if t["id"] == task["id"] else t for t in self.tasks]
        label = task.get("title") or "Task"
        if new_status == "completed":
            self.notifier.success(f'Marked "{label}" as completed')
        else:
            self.notifier.success(f'Marked "{label}" as incomplete')
        return {"success": True, "task": updated}

    # --- local state ---

    def set_filters(self, **filters) -> None:
        self.filters = {**self.filters, **filters}

    def clear_filters(self) -> None:
        self.filters = default_filters()

    def clear_tasks(self) -> None:
        """Used when switching workspaces"""
        self.tasks = []
        self.next_cursor = None
        self.has_more = False
        self.error = None


class CategoryStore:
    def __init__(self, api: ApiClient, workspace: WorkspaceContext, notifier: Optional[Notifier] = None):
        self.api = api
        self.workspace = workspace
        self.notifier = notifier or Notifier()

        self.categories: List[dict] = []
        self.is_loading = False
        self.is_fetching = False
        self.is_mutating = False
        self.error: Optional[str] = None

    def _name_of(self, category_id: str) -> str:
        cat = next((c for c in self.categories if c["id"] == category_id), None)
        return (cat or {}).get("name") or "Category"

    async def fetch_categories(self) -> dict:
        workspace_id = self.workspace.current_workspace_id
        if not workspace_id:
            return {"success": False, "error": NO_WORKSPACE}

        self.is_loading = self.is_fetching = True
        self.error = None
        try:
            self.categories = await self.api.list_categories(workspace_id)
        except ApiError as e:
            message = _error_message(e, "Failed to fetch categories")
            self.error = message
            self.notifier.error(message)
            return {"success": False, "error": message}
        finally:
            self.is_loading = self.is_fetching = False
        return {"success": True, "categories": self.categories}

    async def create_category(self, data: dict) -> dict:
        workspace_id = self.workspace.current_workspace_id
        if not workspace_id:
            self.notifier.error(NO_WORKSPACE)
            return {"success": False, "error": NO_WORKSPACE}

        self.is_mutating = True
        try:
            category = await self.api.create_category({**data, "workspace_id": workspace_id})
        except ApiError as e:
            message = _error_message(e, "Failed to create category")
            self.notifier.error(message)
            return {"success": False, "error": message}
        finally:
            self.is_mutating = False

        self.categories = self.categories + [category]
        self.notifier.success(f'Category "{(category or {}).get("name") or "Category"}" created')
        return {"success": True, "category": category}

    async def update_category(self, category_id: str, data: dict) -> dict:
        self.is_mutating = True
        try:
            updated = await self.api.update_category(category_id, data)
        except ApiError as e:
            message = _error_message(e, "Failed to update category")
            self.notifier.error(message)
            return {"success": False, "error": message}
        finally:
            self.is_mutating = False

        name = (updated or {}).get("name") or self._name_of(category_id)
        self.categories = [{**c, **updated} if c["id"] == category_id else c for c in self.categories]
        self.notifier.success(f'Category "{name}" updated')
        return {"success": True, "category": updated}

    async def reorder_categories(self, category_ids: List[str]) -> dict:
        workspace_id = self.workspace.current_workspace_id
        if not workspace_id:
            self.notifier.error(NO_WORKSPACE)
            return {"success": False, "error": NO_WORKSPACE}

        previous = copy.deepcopy(self.categories)
        by_id = {c["id"]: c for c in previous}
        self.categories = [
            {**by_id[cid], "position": index} for index, cid in enumerate(category_ids) if cid in by_id
        ]

        try:
            self.categories = await self.api.reorder_categories(workspace_id, category_ids)
        except ApiError as e:
            self.categories = previous
            message = _error_message(e, "Failed to reorder categories")
            self.notifier.error(message)
            return {"success": False, "error": message}
        return {"success": True}

    async def delete_category(self, category_id: str) -> dict:
        name = self._name_of(category_id)
        self.is_mutating = True
        try:
            await self.api.delete_category(category_id)
        except ApiError as e:
            message = _error_message(e, "Failed to delete category")
            self.notifier.error(message)
            return {"success": False, "error": message}
        finally:
            self.is_mutating = False

        self.categories = [c for c in self.categories if c["id"] != category_id]
        self.notifier.success(f'Category "{name}" deleted')
        return {"success": True}

    def clear_categories(self) -> None:
        self.categories = []
        self.error = None
