"""Shopify bulk-operation client."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import httpx

from catalog_sync.errors import (
    DownloadError,
    JobCanceled,
    JobFailed,
    NotConfigured,
    PlatformRequestError,
    PollTimeout,
    SubmissionRejected,
)
from catalog_sync.settings import SyncSettings
from catalog_sync.utils.retry import retry_async

logger = logging.getLogger(__name__)


VARIANT_EXPORT_QUERY = """
{
  productVariants {
    edges {
      node {
        id
        sku
        price
        inventoryQuantity
        displayName
        title
        image { url }
        product {
          id
          title
          status
          featuredMedia { preview { image { url } } }
          mfOrderEntryCollection: metafield(namespace: "custom", key: "order_entry_collection") { value }
          mfOrderEntryDescription: metafield(namespace: "custom", key: "label_title") { value }
          mfFabric: metafield(namespace: "custom", key: "fabric") { value }
          mfColor: metafield(namespace: "custom", key: "color") { value }
          mfCADWSPrice: metafield(namespace: "custom", key: "cad_ws_price") { value }
          mfUSDWSPrice: metafield(namespace: "custom", key: "us_ws_price") { value }
          mfMSRPCAD: metafield(namespace: "custom", key: "msrp_cad") { value }
          mfMSRPUSD: metafield(namespace: "custom", key: "msrp_us") { value }
        }
        inventoryItem {
          id
          measurement { weight { unit value } }
          inventoryLevels(first: 10) {
            edges {
              node {
                id
                quantities(names: ["incoming", "committed"]) { name quantity }
              }
            }
          }
        }
      }
    }
  }
}
"""

RUN_QUERY_MUTATION = """
mutation bulkRun($query: String!) {
  bulkOperationRunQuery(query: $query) {
    bulkOperation { id status }
    userErrors { field message }
  }
}
"""

OPERATION_FIELDS = "id status errorCode objectCount fileSize url"

NODE_QUERY = f"""
query bulkOperation($id: ID!) {{
  node(id: $id) {{
    ... on BulkOperation {{ {OPERATION_FIELDS} }}
  }}
}}
"""

CURRENT_OPERATION_QUERY = f"""
query {{
  currentBulkOperation {{ {OPERATION_FIELDS} }}
}}
"""

CANCEL_MUTATION = """
mutation {
  bulkOperationCancel {
    bulkOperation { id status }
    userErrors { field message }
  }
}
"""

RUNNING_STATUSES = frozenset({"CREATED", "RUNNING", "CANCELING"})


@dataclass(slots=True)
class BulkOperation:
    id: str
    status: str
    error_code: str | None = None
    object_count: int = 0
    url: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "BulkOperation":
        return cls(
            id=data.get("id", ""),
            status=(data.get("status") or "").upper(),
            error_code=data.get("errorCode"),
            object_count=int(data.get("objectCount") or 0),
            url=data.get("url"),
        )

    @property
    def is_running(self) -> bool:
        return self.status in RUNNING_STATUSES


@dataclass(slots=True)
class BulkResult:
    url: str | None
    object_count: int


class ShopifyBulkClient:
    def __init__(
        self,
        settings: SyncSettings,
        *,
        session: httpx.AsyncClient | None = None,
        download_session: httpx.AsyncClient | None = None,
        retry_attempts: int = 3,
    ) -> None:
        if not settings.shopify_configured:
            raise NotConfigured("SHOPIFY_STORE_DOMAIN and SHOPIFY_ACCESS_TOKEN must be set")
        self.settings = settings
        self._session = session or httpx.AsyncClient(timeout=30.0)
        # The result URL is pre-signed; it must not receive the API token.
        self._download_session = download_session or httpx.AsyncClient(timeout=httpx.Timeout(30.0, read=120.0))
        self._headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": settings.access_token or "",
        }
        self._retry_attempts = retry_attempts

    async def close(self) -> None:
        await self._session.aclose()
        await self._download_session.aclose()

    async def submit(self, query: str = VARIANT_EXPORT_QUERY) -> str:
        data = await self._graphql(RUN_QUERY_MUTATION, {"query": query}, rejected=SubmissionRejected)
        payload = data.get("bulkOperationRunQuery") or {}
        user_errors = payload.get("userErrors") or []
        if user_errors:
            messages = "; ".join(err.get("message", "unknown error") for err in user_errors)
            raise SubmissionRejected(f"Shopify rejected bulk query: {messages}")
        operation = payload.get("bulkOperation") or {}
        job_id = operation.get("id")
        if not job_id:
            raise SubmissionRejected("No operation ID returned from Shopify")
        logger.info("Submitted bulk operation %s (%s)", job_id, operation.get("status"))
        return job_id

    async def get_operation(self, job_id: str) -> BulkOperation | None:
        data = await self._graphql(NODE_QUERY, {"id": job_id})
        node = data.get("node")
        if not node:
            return None
        return BulkOperation.from_payload(node)

    async def current_operation(self) -> BulkOperation | None:
        data = await self._graphql(CURRENT_OPERATION_QUERY)
        current = data.get("currentBulkOperation")
        if not current:
            return None
        return BulkOperation.from_payload(current)

    async def cancel(self) -> BulkOperation | None:
        data = await self._graphql(CANCEL_MUTATION)
        payload = data.get("bulkOperationCancel") or {}
        for err in payload.get("userErrors") or []:
            logger.warning("Cancel bulk operation: %s", err.get("message"))
        operation = payload.get("bulkOperation")
        return BulkOperation.from_payload(operation) if operation else None

    async def await_completion(
        self,
        job_id: str,
        *,
        max_wait: float | None = None,
        poll_interval: float | None = None,
    ) -> BulkResult:
        max_wait = self.settings.max_wait if max_wait is None else max_wait
        poll_interval = self.settings.poll_interval if poll_interval is None else poll_interval
        deadline = time.monotonic() + max_wait
        polls = 0
        while True:
            await asyncio.sleep(poll_interval)
            polls += 1
            try:
                operation = await self.get_operation(job_id)
            except PlatformRequestError as exc:
                logger.warning("Polling %s failed (attempt %s): %s", job_id, polls, exc)
                operation = None
            if operation is not None:
                logger.debug("Bulk operation %s is %s", job_id, operation.status)
                if operation.status == "COMPLETED":
                    logger.info("Bulk operation %s completed with %s objects", job_id, operation.object_count)
                    return BulkResult(url=operation.url, object_count=operation.object_count)
                if operation.status in {"FAILED", "EXPIRED"}:
                    raise JobFailed(job_id, operation.error_code or operation.status)
                if operation.status == "CANCELED":
                    raise JobCanceled(job_id)
            if time.monotonic() >= deadline:
                raise PollTimeout(job_id, max_wait)

    @asynccontextmanager
    async def download(self, url: str | None) -> AsyncIterator[AsyncIterator[str]]:
        if not url:
            yield _no_lines()
            return
        try:
            async with self._download_session.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise DownloadError(f"Failed to download results: HTTP {response.status_code}")
                yield _guarded_lines(response)
        except httpx.HTTPError as exc:
            raise DownloadError(f"Failed to download results: {exc}") from exc

    async def _graphql(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        *,
        rejected: type[Exception] = PlatformRequestError,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables
        request = retry_async(self._session.post, attempts=self._retry_attempts)
        try:
            response = await request(self.settings.graphql_url, json=payload, headers=self._headers)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PlatformRequestError(f"Shopify GraphQL request failed: {exc}") from exc
        errors = body.get("errors")
        if errors:
            first = errors[0] if isinstance(errors, list) else errors
            message = first.get("message") if isinstance(first, dict) else str(first)
            raise rejected(f"Shopify GraphQL error: {message or 'unknown error'}")
        return body.get("data") or {}


async def _no_lines() -> AsyncIterator[str]:
    return
    yield  # pragma: no cover


async def _guarded_lines(response: httpx.Response) -> AsyncIterator[str]:
    try:
        async for line in response.aiter_lines():
            yield line
    except httpx.HTTPError as exc:
        raise DownloadError(f"Download interrupted: {exc}") from exc
