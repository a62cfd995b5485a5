from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from stocksync.errors import ParseError
from stocksync.models import EntityKind, EntityNode

PARENT_KEY = "__parentId"
GID_RE = re.compile(r"^gid://[^/]+/(?P<type>[A-Za-z]+)/")
# Longest tags first so "ProductVariant" is never read as "Product".
TYPE_TAGS = (
    ("ProductVariant", EntityKind.VARIANT),
    ("InventoryLevel", EntityKind.INVENTORY_LEVEL),
    ("InventoryItem", EntityKind.INVENTORY_ITEM),
    ("Product", EntityKind.PRODUCT),
)

logger = logging.getLogger(__name__)


def classify(record: dict[str, Any]) -> EntityKind:
    ident = record.get("id")
    if isinstance(ident, str) and ident:
        match = GID_RE.match(ident)
        if match:
            for tag, kind in TYPE_TAGS:
                if match.group("type") == tag:
                    return kind
        else:
            for tag, kind in TYPE_TAGS:
                if tag in ident:
                    return kind

    if "location" in record and "quantities" in record:
        return EntityKind.INVENTORY_LEVEL
    return EntityKind.UNKNOWN


@dataclass
class TreeBuildResult:
    products: list[EntityNode]
    dropped: int = 0
    unknown: int = 0
    parse_errors: list[ParseError] = field(default_factory=list)


class TreeBuilder:
    def __init__(self) -> None:
        self.products: dict[str, EntityNode] = {}
        self.variants: dict[str, EntityNode] = {}
        self.inventory_items: dict[str, EntityNode] = {}
        self._order: list[EntityNode] = []
        self._pending: list[EntityNode] = []
        self._parse_errors: list[ParseError] = []
        self._unknown = 0
        self._synthetic = 0

    def feed_line(self, line_number: int, line: str) -> None:
        text = line.strip()
        if not text:
            return
        try:
            record = json.loads(text)
        except json.JSONDecodeError as exc:
            self._parse_errors.append(ParseError(line_number, f"Malformed JSON on line {line_number}: {exc.msg}"))
            return
        if not isinstance(record, dict):
            self._parse_errors.append(ParseError(line_number, f"Line {line_number} is not a JSON object"))
            return
        self.feed(record)

    def feed(self, record: dict[str, Any]) -> None:
        kind = classify(record)
        if kind == EntityKind.UNKNOWN:
            self._unknown += 1
            return

        data = {key: value for key, value in record.items() if key != PARENT_KEY}
        ident = str(record.get("id") or self._synthetic_id(kind))
        node = EntityNode(id=ident, kind=kind, parent_id=record.get(PARENT_KEY), data=data)

        if kind == EntityKind.PRODUCT:
            self.products[node.id] = node
            self._order.append(node)
            return

        if kind == EntityKind.VARIANT:
            self.variants[node.id] = node
            nested = data.get("inventoryItem")
            if isinstance(nested, dict):
                item_id = str(nested.get("id") or self._synthetic_id(EntityKind.INVENTORY_ITEM))
                item = self.inventory_items.get(item_id)
                if item is None:
                    item = EntityNode(id=item_id, kind=EntityKind.INVENTORY_ITEM, parent_id=node.id, data=dict(nested))
                    self.inventory_items[item.id] = item
                else:
                    item.data.update(nested)
                node.children.append(item)
        elif kind == EntityKind.INVENTORY_ITEM:
            # One node per item id; levels may already hang off the first one seen.
            existing = self.inventory_items.get(node.id)
            if existing is not None:
                existing.data.update(data)
                return
            self.inventory_items[node.id] = node

        if not self._attach(node):
            self._pending.append(node)

    def finish(self) -> TreeBuildResult:
        dropped = 0
        for node in self._pending:
            if not self._attach(node):
                dropped += 1
        self._pending = []

        if dropped or self._unknown or self._parse_errors:
            logger.warning(
                "Tree build dropped %s orphaned, %s unrecognised and %s malformed records",
                dropped,
                self._unknown,
                len(self._parse_errors),
            )
        return TreeBuildResult(
            products=list(self._order),
            dropped=dropped,
            unknown=self._unknown,
            parse_errors=list(self._parse_errors),
        )

    def _attach(self, node: EntityNode) -> bool:
        parent_id = node.parent_id
        if not parent_id:
            return False

        if node.kind == EntityKind.VARIANT:
            parent = self.products.get(parent_id)
        elif node.kind == EntityKind.INVENTORY_ITEM:
            parent = self.variants.get(parent_id)
            if parent is not None and any(child.id == node.id for child in parent.children):
                return True
        else:
            parent = self.inventory_items.get(parent_id)
            if parent is None:
                variant = self.variants.get(parent_id)
                if variant is not None:
                    items = variant.children_of(EntityKind.INVENTORY_ITEM)
                    parent = items[0] if items else variant

        if parent is None:
            return False
        parent.children.append(node)
        return True

    def _synthetic_id(self, kind: EntityKind) -> str:
        self._synthetic += 1
        return f"{kind.value}#{self._synthetic}"


def build_tree(lines: Iterable[str]) -> TreeBuildResult:
    builder = TreeBuilder()
    for line_number, line in enumerate(lines, start=1):
        builder.feed_line(line_number, line)
    return builder.finish()
