"""Role-scoped API calls made with the cached session's bearer token."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ValidationError

from schemas import (
    AddRatingRequest,
    CreateStoreRequest,
    PublicUser,
    RatingOut,
    StoreListItem,
    StoreOut,
    validation_message,
)
from session import NOT_AUTHENTICATED, SessionCache, error_from, transport_error

logger = logging.getLogger(__name__)


@dataclass
class ApiResult:
    data: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class StoreRatingClient:
    def __init__(self, http: httpx.AsyncClient, cache: SessionCache):
        self.http = http
        self.cache = cache

    async def _request(
        self,
        method: str,
        url: str,
        default_error: str,
        body: Optional[BaseModel] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> ApiResult:
        session = self.cache.get()
        if session is None:
            return ApiResult(error=NOT_AUTHENTICATED)
        json_body = body.model_dump(mode="json", by_alias=True, exclude_none=True) if body else None
        try:
            response = await self.http.request(
                method,
                url,
                json=json_body,
                params=params,
                headers={"Authorization": f"Bearer {session.token}"},
            )
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, url, e)
            return ApiResult(error=transport_error(e))
        if response.is_error:
            return ApiResult(error=error_from(response, default_error))
        try:
            return ApiResult(data=response.json())
        except ValueError as e:
            logger.error("%s %s returned a non-JSON body: %s", method, url, e)
            return ApiResult(error=default_error)

    async def get_admin_users(self, **filters: Any) -> ApiResult:
        params = {k: v for k, v in filters.items() if v is not None}
        result = await self._request("GET", "/admin/users", "Failed to fetch users", params=params)
        if result.ok:
            result.data = [PublicUser.model_validate(u) for u in result.data["users"]]
        return result

    async def create_store(self, name: str, email: str, address: Optional[str] = None) -> ApiResult:
        try:
            body = CreateStoreRequest(name=name, email=email, address=address)
        except ValidationError as e:
            return ApiResult(error=validation_message(e))
        result = await self._request("POST", "/owner/store", "Failed to create store", body=body)
        if result.ok:
            result.data = StoreOut.model_validate(result.data)
        return result

    async def add_rating(self, store_id: str, rating: int, comment: Optional[str] = None) -> ApiResult:
        """Rate a store. Ratings outside 1..5 are rejected without a request."""
        try:
            body = AddRatingRequest(store_id=store_id, rating=rating, comment=comment)
        except ValidationError as e:
            return ApiResult(error=validation_message(e))
        result = await self._request("POST", "/ratings", "Failed to submit rating", body=body)
        if result.ok:
            result.data = RatingOut.model_validate(result.data)
        return result

    async def list_stores(self, name: Optional[str] = None, address: Optional[str] = None) -> ApiResult:
        params = {k: v for k, v in {"name": name, "address": address}.items() if v}
        result = await self._request("GET", "/stores", "Failed to fetch stores", params=params)
        if result.ok:
            stores: List[StoreListItem] = [StoreListItem.model_validate(s) for s in result.data]
            result.data = stores
        return result
