from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx

from stocksync.config import SyncSettings, get_settings
from stocksync.errors import RemoteError
from stocksync.models import JobKind, Location
from stocksync.store.base import InventoryStore, JobSnapshot, StagedTarget, SubmitResult, VariantPage, VariantRecord

RETRYABLE_HTTP_STATUSES = {408, 425, 429, 500, 502, 503, 504}
THROTTLED_CODES = {"THROTTLED", "MAX_COST_EXCEEDED"}

logger = logging.getLogger(__name__)

LOCATIONS_QUERY = """
query getLocations {
  locations(first: 250, includeLegacy: true, includeInactive: true) {
    edges { node { id name } }
  }
}
"""

VARIANTS_QUERY = """
query getInventoryData($first: Int!, $after: String, $levels: Int!) {
  productVariants(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        sku
        inventoryItem {
          id
          inventoryLevels(first: $levels) {
            edges {
              node {
                location { id }
                quantities(names: ["available"]) { name quantity }
              }
            }
          }
        }
      }
    }
  }
}
"""

CURRENT_JOB_QUERY = """
query currentJob($type: BulkOperationType!) {
  currentBulkOperation(type: $type) { id status type }
}
"""

JOB_STATUS_QUERY = """
query jobStatus($id: ID!) {
  node(id: $id) {
    ... on BulkOperation {
      id
      status
      type
      errorCode
      objectCount
      url
      partialDataUrl
    }
  }
}
"""

RUN_QUERY_MUTATION = """
mutation runQuery($query: String!) {
  bulkOperationRunQuery(query: $query) {
    bulkOperation { id status type }
    userErrors { field message }
  }
}
"""

RUN_MUTATION_MUTATION = """
mutation runMutation($mutation: String!, $stagedUploadPath: String!) {
  bulkOperationRunMutation(mutation: $mutation, stagedUploadPath: $stagedUploadPath) {
    bulkOperation { id status type }
    userErrors { field message }
  }
}
"""

CANCEL_MUTATION = """
mutation cancelJob($id: ID!) {
  bulkOperationCancel(id: $id) {
    bulkOperation { id status }
    userErrors { field message }
  }
}
"""

STAGED_UPLOADS_MUTATION = """
mutation stagedUploadsCreate($input: [StagedUploadInput!]!) {
  stagedUploadsCreate(input: $input) {
    stagedTargets { url resourceUrl parameters { name value } }
    userErrors { field message }
  }
}
"""

_JOB_TYPES = {"QUERY": JobKind.READ, "MUTATION": JobKind.WRITE}


class ShopifyGraphQLStore(InventoryStore):
    name = "shopify"

    def __init__(
        self,
        settings: SyncSettings | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        if not self.settings.shop_domain or not self.settings.access_token:
            raise RuntimeError("Missing shop credentials: set STOCKSYNC_SHOP_DOMAIN and STOCKSYNC_ACCESS_TOKEN")

        self.max_fetch_retries = self.settings.max_fetch_retries
        self.retry_backoff_seconds = self.settings.retry_backoff_seconds
        self.client = httpx.Client(
            timeout=self.settings.request_timeout_seconds,
            headers={
                "X-Shopify-Access-Token": self.settings.access_token,
                "Content-Type": "application/json",
            },
            transport=transport,
        )
        # Staged targets and result files live on signed storage URLs; the admin token stays off them.
        self.transfer_client = httpx.Client(
            timeout=self.settings.request_timeout_seconds,
            follow_redirects=True,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()
        self.transfer_client.close()

    def list_locations(self) -> list[Location]:
        data = self._execute(LOCATIONS_QUERY)
        edges = (data.get("locations") or {}).get("edges") or []
        return [
            Location(id=edge["node"]["id"], name=edge["node"]["name"])
            for edge in edges
        ]

    def list_variants(self, cursor: str | None = None) -> VariantPage:
        data = self._execute(
            VARIANTS_QUERY,
            {
                "first": self.settings.variants_page_size,
                "after": cursor,
                "levels": self.settings.levels_page_size,
            },
        )
        connection = data.get("productVariants")
        if connection is None:
            raise RemoteError("productVariants missing from listing response")

        variants: list[VariantRecord] = []
        for edge in connection.get("edges") or []:
            node = edge.get("node") or {}
            item = node.get("inventoryItem") or {}
            if not item.get("id"):
                continue
            levels: dict[str, int] = {}
            for level_edge in (item.get("inventoryLevels") or {}).get("edges") or []:
                level = level_edge.get("node") or {}
                location_id = (level.get("location") or {}).get("id")
                quantity = _available_quantity(level.get("quantities"))
                if location_id and quantity is not None:
                    levels[location_id] = quantity
            variants.append(VariantRecord(sku=node.get("sku"), inventory_item_id=item["id"], levels=levels))

        page_info = connection.get("pageInfo") or {}
        return VariantPage(
            variants=variants,
            has_next_page=bool(page_info.get("hasNextPage")),
            end_cursor=page_info.get("endCursor"),
        )

    def current_job(self, kind: JobKind) -> JobSnapshot | None:
        job_type = "QUERY" if kind == JobKind.READ else "MUTATION"
        data = self._execute(CURRENT_JOB_QUERY, {"type": job_type})
        return _snapshot(data.get("currentBulkOperation"))

    def run_query(self, query: str) -> SubmitResult:
        data = self._execute(RUN_QUERY_MUTATION, {"query": query})
        return _submit_result(data.get("bulkOperationRunQuery"))

    def run_mutation(self, mutation: str, staged_upload_path: str) -> SubmitResult:
        data = self._execute(RUN_MUTATION_MUTATION, {"mutation": mutation, "stagedUploadPath": staged_upload_path})
        return _submit_result(data.get("bulkOperationRunMutation"))

    def get_job(self, job_id: str) -> JobSnapshot | None:
        data = self._execute(JOB_STATUS_QUERY, {"id": job_id})
        return _snapshot(data.get("node"))

    def cancel_job(self, job_id: str) -> str | None:
        data = self._execute(CANCEL_MUTATION, {"id": job_id})
        block = data.get("bulkOperationCancel") or {}
        errors = _user_errors(block)
        if errors:
            raise RemoteError(errors[0], details={"user_errors": errors})
        return (block.get("bulkOperation") or {}).get("status")

    def create_staged_upload(self, filename: str, mime_type: str, http_method: str, resource: str) -> StagedTarget:
        data = self._execute(
            STAGED_UPLOADS_MUTATION,
            {
                "input": [
                    {
                        "filename": filename,
                        "mimeType": mime_type,
                        "httpMethod": http_method,
                        "resource": resource,
                    }
                ]
            },
        )
        block = data.get("stagedUploadsCreate") or {}
        errors = _user_errors(block)
        if errors:
            raise RemoteError(errors[0], details={"user_errors": errors})
        targets = block.get("stagedTargets") or []
        if not targets or not targets[0].get("url"):
            raise RemoteError("No staged upload target returned")
        target = targets[0]
        return StagedTarget(
            url=target["url"],
            resource_url=target.get("resourceUrl"),
            parameters=[(str(p["name"]), str(p["value"])) for p in target.get("parameters") or []],
        )

    def upload(self, target: StagedTarget, payload: bytes, filename: str, mime_type: str) -> None:
        # Form parameters must precede the file part for the storage backend to accept the policy.
        response = self.transfer_client.post(
            target.url,
            data=dict(target.parameters),
            files={"file": (filename, payload, mime_type)},
        )
        response.raise_for_status()

    def fetch_artifact(self, url: str) -> list[str]:
        response = self._send_with_retries(lambda: self.transfer_client.get(url), label=url)
        return [line for line in response.text.splitlines() if line.strip()]

    def _execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        response = self._send_with_retries(
            lambda: self.client.post(self.settings.graphql_url, json={"query": query, "variables": variables or {}}),
            label="graphql",
            inspect=_raise_graphql_errors,
        )
        return response.json().get("data") or {}

    def _send_with_retries(
        self,
        send: Callable[[], httpx.Response],
        label: str,
        inspect: Callable[[httpx.Response], None] | None = None,
    ) -> httpx.Response:
        attempts = self.max_fetch_retries + 1
        for attempt in range(attempts):
            try:
                response = send()
                if response.status_code in RETRYABLE_HTTP_STATUSES:
                    raise httpx.HTTPStatusError(
                        f"Retryable status {response.status_code} for {label}",
                        request=response.request,
                        response=response,
                    )
                response.raise_for_status()
                if inspect is not None:
                    inspect(response)
                return response
            except (httpx.TimeoutException, httpx.NetworkError, httpx.HTTPStatusError, RemoteError) as exc:
                if isinstance(exc, httpx.HTTPStatusError):
                    status = exc.response.status_code if exc.response is not None else None
                    if status not in RETRYABLE_HTTP_STATUSES:
                        raise
                if isinstance(exc, RemoteError) and not exc.retryable:
                    raise

                if attempt >= attempts - 1:
                    raise

                backoff = self.retry_backoff_seconds * (2**attempt)
                if backoff > 0:
                    time.sleep(backoff)
                logger.debug(
                    "Retrying %s after error (%s), attempt %s/%s",
                    label,
                    exc,
                    attempt + 1,
                    attempts,
                )
        raise RuntimeError(f"Unreachable retry state for {label}")


def _raise_graphql_errors(response: httpx.Response) -> None:
    try:
        payload = response.json()
    except ValueError as exc:
        raise RemoteError(f"Non-JSON response ({response.status_code}): {response.text[:200]}") from exc

    errors = payload.get("errors")
    if not errors:
        return
    if isinstance(errors, str):
        raise RemoteError(errors)
    codes = {str((error.get("extensions") or {}).get("code", "")) for error in errors}
    message = "; ".join(str(error.get("message", "")) for error in errors)
    raise RemoteError(message, details={"errors": errors}, retryable=bool(codes & THROTTLED_CODES))


def _user_errors(block: dict[str, Any]) -> list[str]:
    return [str(error.get("message", "")) for error in block.get("userErrors") or []]


def _submit_result(block: dict[str, Any] | None) -> SubmitResult:
    block = block or {}
    return SubmitResult(job=_snapshot(block.get("bulkOperation")), user_errors=_user_errors(block))


def _snapshot(node: dict[str, Any] | None) -> JobSnapshot | None:
    if not node or not node.get("id"):
        return None
    return JobSnapshot(
        id=node["id"],
        status=str(node.get("status") or "CREATED"),
        kind=_JOB_TYPES.get(str(node.get("type") or "")),
        object_count=_to_int(node.get("objectCount")),
        url=node.get("url"),
        partial_data_url=node.get("partialDataUrl"),
        error_code=node.get("errorCode"),
    )


def _available_quantity(quantities: list[dict[str, Any]] | None) -> int | None:
    for entry in quantities or []:
        if entry.get("name", "available") == "available" and entry.get("quantity") is not None:
            return int(entry["quantity"])
    return None


def _to_int(value: Any) -> int:
    # objectCount is an unsigned 64-bit scalar and arrives as a string.
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
