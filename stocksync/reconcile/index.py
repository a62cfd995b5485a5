from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Iterator, Mapping

import httpx

from stocksync.errors import IndexBuildError, StockSyncError
from stocksync.models import InventoryIndexEntry
from stocksync.store.base import InventoryStore

logger = logging.getLogger(__name__)


def sku_key(sku: str) -> str:
    return sku.strip().casefold()


class InventoryIndex(Mapping[str, InventoryIndexEntry]):
    def __init__(self, entries: dict[str, InventoryIndexEntry]) -> None:
        self._entries = dict(entries)

    def __getitem__(self, key: str) -> InventoryIndexEntry:
        return self._entries[sku_key(key)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, sku: str) -> InventoryIndexEntry | None:
        return self._entries.get(sku_key(sku))


class RemoteIndexBuilder:
    def __init__(self, store: InventoryStore) -> None:
        self.store = store

    def build(self) -> InventoryIndex:
        entries: dict[str, InventoryIndexEntry] = {}
        cursor: str | None = None
        pages = 0
        while True:
            try:
                page = self.store.list_variants(cursor)
            except (StockSyncError, httpx.HTTPError) as exc:
                raise IndexBuildError(
                    f"Listing page {pages + 1} failed: {exc}",
                    details={"page": pages + 1, "cursor": cursor},
                ) from exc
            pages += 1

            for variant in page.variants:
                if not variant.sku or not variant.sku.strip():
                    continue
                key = sku_key(variant.sku)
                if key in entries:
                    logger.debug("SKU %s listed more than once; keeping the later variant", variant.sku)
                entries[key] = InventoryIndexEntry(
                    sku=key,
                    inventory_item_id=variant.inventory_item_id,
                    levels=MappingProxyType(dict(variant.levels)),
                )

            if not page.has_next_page:
                break
            if not page.end_cursor:
                raise IndexBuildError(
                    f"Listing page {pages} reported more pages without a cursor",
                    details={"page": pages},
                )
            cursor = page.end_cursor

        logger.info("Indexed %s SKUs from %s listing pages", len(entries), pages)
        return InventoryIndex(entries)
