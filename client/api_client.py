"""Async HTTP client for the expense API and for direct object-storage uploads."""
import logging
from typing import Any, Dict, List, Optional

import httpx

from models.expense import Expense, UploadSignResponse

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A non-2xx response from the expense API or the object store."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("message", response.reason_phrase))
    return response.reason_phrase


class ExpenseApiClient:
    """
    Talks to the `/api` routes with one shared cookie jar, so session cookies
    travel with every API call. Uploads to presigned URLs go through a
    separate client that never carries those cookies.
    """

    def __init__(self, base_url: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._api = httpx.AsyncClient(base_url=f"{base_url.rstrip('/')}/api", transport=transport)
        self._storage = httpx.AsyncClient(transport=transport)

    async def __aenter__(self) -> "ExpenseApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._api.aclose()
        await self._storage.aclose()

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self._api.request(method, path, json=json)
        if not response.is_success:
            message = _error_message(response)
            logger.debug(f"{method} {path} failed with {response.status_code}: {message}")
            raise ApiError(response.status_code, message)
        return response.json()["data"]

    async def list_expenses(self) -> List[Expense]:
        data = await self._request("GET", "/expenses")
        return [Expense.model_validate(item) for item in data["expenses"]]

    async def get_expense(self, expense_id: int) -> Expense:
        data = await self._request("GET", f"/expenses/{expense_id}")
        return Expense.model_validate(data["expense"])

    async def create_expense(self, title: str, amount: int, expense_id: Optional[int] = None) -> Expense:
        payload: Dict[str, Any] = {"title": title, "amount": amount}
        if expense_id is not None:
            payload["id"] = expense_id
        data = await self._request("POST", "/expenses", json=payload)
        return Expense.model_validate(data["expense"])

    async def delete_expense(self, expense_id: int) -> Expense:
        data = await self._request("DELETE", f"/expenses/{expense_id}")
        return Expense.model_validate(data["deleted"])

    async def sign_upload(self, filename: str, content_type: str) -> UploadSignResponse:
        data = await self._request("POST", "/upload/sign", json={"filename": filename, "type": content_type})
        return UploadSignResponse.model_validate(data)

    async def attach_file(self, expense_id: int, key: str) -> Expense:
        data = await self._request("PATCH", f"/expenses/{expense_id}", json={"fileKey": key})
        return Expense.model_validate(data["expense"])

    async def put_object(self, upload_url: str, content: bytes, content_type: str) -> None:
        """PUTs raw bytes to a presigned URL."""
        response = await self._storage.put(upload_url, content=content, headers={"Content-Type": content_type})
        if not response.is_success:
            raise ApiError(response.status_code, response.text or response.reason_phrase)
