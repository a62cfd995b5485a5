from __future__ import annotations

import logging
from typing import Sequence

import httpx

from stocksync.errors import StockSyncError, UploadError
from stocksync.importer.batches import BatchUnit, serialize
from stocksync.jobs.client import BulkJobClient, JobSpec
from stocksync.models import RemoteJob
from stocksync.store.base import InventoryStore

UPLOAD_FILENAME = "updates.jsonl"
UPLOAD_MIME_TYPE = "text/jsonl"
UPLOAD_METHOD = "POST"
UPLOAD_RESOURCE = "BULK_MUTATION_VARIABLES"

INVENTORY_SET_MUTATION = """
mutation call($input: InventorySetQuantitiesInput!) {
  inventorySetQuantities(input: $input) {
    inventoryAdjustmentGroup { id }
    userErrors { field message }
  }
}
"""

logger = logging.getLogger(__name__)


class StagedUploadPipeline:
    def __init__(self, store: InventoryStore, client: BulkJobClient) -> None:
        self.store = store
        self.client = client

    def execute(self, units: Sequence[BatchUnit]) -> RemoteJob:
        payload = serialize(units)

        try:
            target = self.store.create_staged_upload(UPLOAD_FILENAME, UPLOAD_MIME_TYPE, UPLOAD_METHOD, UPLOAD_RESOURCE)
        except (StockSyncError, httpx.HTTPError) as exc:
            raise UploadError("target", f"Failed to create upload target: {exc}") from exc

        # The storage key survives URL expiry; the resource URL does not.
        key = target.key
        if not key:
            raise UploadError("target", "Upload target has no key parameter")

        try:
            self.store.upload(target, payload, UPLOAD_FILENAME, UPLOAD_MIME_TYPE)
        except (StockSyncError, httpx.HTTPError) as exc:
            raise UploadError("upload", f"Upload failed: {exc}") from exc
        logger.info("Uploaded %s batch units (%s bytes) to %s", len(units), len(payload), key)

        try:
            return self.client.submit(JobSpec.write(INVENTORY_SET_MUTATION, key))
        except (StockSyncError, httpx.HTTPError) as exc:
            raise UploadError("trigger", f"Bulk mutation error: {exc}") from exc
