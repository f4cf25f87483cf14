# sdk/api.py — httpx wrapper around the /api/v1 endpoints
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger("todoria.sdk")


class ApiError(Exception):
    """Non-2xx response (status_code 0 for transport failures)"""

    def __init__(self, status_code: int, detail: Any = None):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")

    @property
    def message(self) -> Optional[str]:
        """User-facing message from the server, if it sent one"""
        if isinstance(self.detail, str) and self.detail:
            return self.detail
        if isinstance(self.detail, dict):
            return self.detail.get("message") or None
        return None


def _clean_params(params: dict) -> dict:
    cleaned = {}
    for key, value in params.items():
        if value is None or value == "" or value == []:
            continue
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        cleaned[key] = value
    return cleaned


class ApiClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.token = token
        self._client = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def request(self, method: str, path: str, params: dict = None, json: Any = None) -> Any:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            resp = await self._client.request(
                method, path, params=_clean_params(params or {}), json=json, headers=headers,
            )
        except httpx.HTTPError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise ApiError(0, None) from e

        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail")
            except (ValueError, AttributeError):
                detail = None
            raise ApiError(resp.status_code, detail)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    # --- Tasks ---

    async def list_tasks(self, workspace_id: str, **filters) -> dict:
        return await self.request("GET", "/api/v1/tasks", params={"workspace_id": workspace_id, **filters})

    async def create_task(self, data: dict) -> dict:
        return await self.request("POST", "/api/v1/tasks", json=data)

    async def update_task(self, task_id: str, data: dict) -> dict:
        return await self.request("PUT", f"/api/v1/tasks/{task_id}", json=data)

    async def update_task_position(self, task_id: str, category_id: Optional[str], position: int) -> dict:
        return await self.request(
            "PATCH", f"/api/v1/tasks/{task_id}/position",
            json={"category_id": category_id, "position": position},
        )

    async def delete_task(self, task_id: str) -> dict:
        return await self.request("DELETE", f"/api/v1/tasks/{task_id}")

    # --- Categories ---

    async def list_categories(self, workspace_id: str) -> list:
        return await self.request("GET", "/api/v1/categories", params={"workspace_id": workspace_id})

    async def create_category(self, data: dict) -> dict:
        return await self.request("POST", "/api/v1/categories", json=data)

    async def update_category(self, category_id: str, data: dict) -> dict:
        return await self.request("PATCH", f"/api/v1/categories/{category_id}", json=data)

    async def reorder_categories(self, workspace_id: str, category_ids: list) -> list:
        return await self.request(
            "PATCH", "/api/v1/categories/reorder",
            json={"workspace_id": workspace_id, "category_ids": category_ids},
        )

    async def delete_category(self, category_id: str) -> dict:
        return await self.request("DELETE", f"/api/v1/categories/{category_id}")
