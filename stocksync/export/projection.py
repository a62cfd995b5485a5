from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from stocksync.models import EntityKind, EntityNode

ALL_LOCATIONS = "ALL_LOCATIONS"
NO_LOCATION = "N/A"
EXPORT_COLUMNS = [
    "Product Title",
    "SKU",
    "Option1 Value",
    "Option2 Value",
    "Option3 Value",
    "Inventory Location",
    "Quantity Available",
]


@dataclass(frozen=True)
class ExportRow:
    product_title: str
    sku: str
    option1: str
    option2: str
    option3: str
    location: str
    quantity: int

    def to_record(self) -> dict[str, Any]:
        return dict(
            zip(
                EXPORT_COLUMNS,
                [self.product_title, self.sku, self.option1, self.option2, self.option3, self.location, self.quantity],
            )
        )


def project_rows(products: list[EntityNode], location_id: str | None = None) -> list[ExportRow]:
    filtered = bool(location_id) and location_id != ALL_LOCATIONS
    rows: list[ExportRow] = []
    for product in products:
        title = str(product.data.get("title") or "")
        for variant in product.children_of(EntityKind.VARIANT):
            options = _option_values(variant)
            sku = str(variant.data.get("sku") or "")
            levels = _levels(variant)
            if filtered:
                levels = [level for level in levels if _location(level).get("id") == location_id]

            if not levels:
                if not filtered:
                    rows.append(ExportRow(title, sku, *options, location=NO_LOCATION, quantity=0))
                continue

            for level in levels:
                rows.append(
                    ExportRow(
                        title,
                        sku,
                        *options,
                        location=str(_location(level).get("name") or "Unknown"),
                        quantity=_quantity(level),
                    )
                )
    return rows


def _levels(variant: EntityNode) -> list[EntityNode]:
    levels = variant.children_of(EntityKind.INVENTORY_LEVEL)
    for item in variant.children_of(EntityKind.INVENTORY_ITEM):
        levels.extend(item.children_of(EntityKind.INVENTORY_LEVEL))
    return levels


def _option_values(variant: EntityNode) -> tuple[str, str, str]:
    values = ["", "", ""]
    for index, option in enumerate((variant.data.get("selectedOptions") or [])[:3]):
        values[index] = str(option.get("value") or "")
    return values[0], values[1], values[2]


def _location(level: EntityNode) -> dict[str, Any]:
    return level.data.get("location") or {}


def _quantity(level: EntityNode) -> int:
    quantities = level.data.get("quantities") or []
    for entry in quantities:
        if entry.get("name", "available") == "available" and entry.get("quantity") is not None:
            return int(entry["quantity"])
    return 0
