from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from stocksync.errors import ValidationRejection
from stocksync.models import Accepted, DesiredRow, InventoryDiff, Location, ReconciliationOutcome, Rejected, Skipped
from stocksync.reconcile.index import InventoryIndex, sku_key

INVALID_QUANTITY = "invalid quantity"
LOCATION_REQUIRED = "location required"
LOCATION_NOT_FOUND = "location not found"
LOCATION_MISMATCH = "location mismatch"
DUPLICATE_ROW = "duplicate row"
VARIANT_NOT_FOUND = "variant not found"
LOCATION_NOT_STOCKED = "location not stocked for this SKU"
ALREADY_MATCHES = "already matches"

MAX_QUANTITY = 1_000_000_000
MAX_QUANTITY_DIGITS = 9

logger = logging.getLogger(__name__)


def parse_quantity(value: Any) -> int:
    if value is None or isinstance(value, bool):
        raise ValidationRejection(INVALID_QUANTITY, "Invalid or missing quantity value")
    if isinstance(value, int):
        if abs(value) > MAX_QUANTITY:
            raise ValidationRejection(INVALID_QUANTITY, f"Quantity {value} is out of range")
        return value
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationRejection(INVALID_QUANTITY, f"Invalid quantity value '{value}'") from None
    if not number.is_finite():
        raise ValidationRejection(INVALID_QUANTITY, f"Invalid quantity value '{value}'")
    # Bound the magnitude before converting; exponent notation can be arbitrarily large.
    if number.adjusted() > MAX_QUANTITY_DIGITS or abs(number) > MAX_QUANTITY:
        raise ValidationRejection(INVALID_QUANTITY, f"Quantity '{value}' is out of range")
    if number != number.to_integral_value():
        raise ValidationRejection(INVALID_QUANTITY, f"Invalid quantity value '{value}'")
    return int(number)


@dataclass(frozen=True)
class LocationScope:
    locations: tuple[Location, ...]
    selected: Location | None = None

    @classmethod
    def all_locations(cls, locations: Iterable[Location]) -> LocationScope:
        return cls(locations=tuple(locations))

    @classmethod
    def single(cls, location: Location) -> LocationScope:
        return cls(locations=(location,), selected=location)

    def resolve(self, label: str | None) -> Location:
        label = (label or "").strip()
        if self.selected is None:
            if not label:
                raise ValidationRejection(
                    LOCATION_REQUIRED, 'Inventory Location is required when "All Locations" is selected'
                )
            wanted = label.casefold()
            for location in self.locations:
                if location.name.casefold() == wanted:
                    return location
            raise ValidationRejection(LOCATION_NOT_FOUND, f"Location '{label}' not found in store")

        if label and label.casefold() != self.selected.name.casefold():
            raise ValidationRejection(
                LOCATION_MISMATCH, f"Location mismatch: '{label}' does not match '{self.selected.name}'"
            )
        return self.selected


class RowDifferencer:
    def __init__(self, index: InventoryIndex, scope: LocationScope) -> None:
        self.index = index
        self.scope = scope
        self._seen: set[tuple[str, str]] = set()

    def classify(self, row: DesiredRow) -> ReconciliationOutcome:
        try:
            return self._classify(row)
        except ValidationRejection as exc:
            return Rejected(row=row, reason=exc.reason, detail=exc.message)
        except Exception as exc:
            logger.exception("Unexpected error classifying row %s (SKU %s)", row.row_number, row.sku)
            return Rejected(row=row, reason=str(exc))

    def classify_all(self, rows: Iterable[DesiredRow]) -> list[ReconciliationOutcome]:
        return [self.classify(row) for row in rows]

    def _classify(self, row: DesiredRow) -> ReconciliationOutcome:
        quantity = parse_quantity(row.quantity)
        location = self.scope.resolve(row.location_label)

        combination = (sku_key(row.sku), location.id)
        if combination in self._seen:
            raise ValidationRejection(DUPLICATE_ROW, "You have an identical row with the same SKU and location")
        self._seen.add(combination)

        entry = self.index.lookup(row.sku)
        if entry is None:
            raise ValidationRejection(VARIANT_NOT_FOUND, f"Variant not found for SKU {row.sku}")

        current = entry.levels.get(location.id)
        if current is None:
            raise ValidationRejection(
                LOCATION_NOT_STOCKED, f"SKU {row.sku} is not stocked at '{location.name}'"
            )

        if current == quantity:
            return Skipped(row=row, reason=ALREADY_MATCHES)

        return Accepted(
            row=row,
            diff=InventoryDiff(
                inventory_item_id=entry.inventory_item_id,
                location_id=location.id,
                quantity=quantity,
                sku=row.sku,
                row_number=row.row_number,
            ),
        )
