from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from openpyxl import Workbook, load_workbook

from stocksync.models import DesiredRow, RowNote

SKU_COLUMN = "SKU"
QUANTITY_COLUMN = "Quantity Available"
LOCATION_COLUMN = "Inventory Location"
REASON_COLUMN = "Error Reason"
EXCEL_SUFFIXES = {".xlsx", ".xlsm"}

NumberedRecord = tuple[int, dict[str, Any]]


def read_records(path: str | Path) -> list[NumberedRecord]:
    path = Path(path)
    if path.suffix.lower() in EXCEL_SUFFIXES:
        return _read_xlsx(path)
    if path.suffix.lower() == ".csv":
        return _read_csv(path)
    raise ValueError(f"Unsupported file type: {path.suffix or path.name}")


def desired_rows(records: Iterable[NumberedRecord]) -> list[DesiredRow]:
    rows: list[DesiredRow] = []
    for row_number, record in records:
        sku = _text(record.get(SKU_COLUMN))
        # Rows without a SKU and repeated header rows are not inventory records.
        if not sku or sku == SKU_COLUMN:
            continue
        rows.append(
            DesiredRow(
                row_number=row_number,
                sku=sku,
                quantity=record.get(QUANTITY_COLUMN),
                location_label=_text(record.get(LOCATION_COLUMN)) or None,
                raw=dict(record),
            )
        )
    return rows


def write_records(path: str | Path, records: Sequence[Mapping[str, Any]], columns: Sequence[str]) -> Path:
    path = Path(path)
    if path.suffix.lower() in EXCEL_SUFFIXES:
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "Products"
        sheet.append(list(columns))
        for record in records:
            sheet.append([record.get(column, "") for column in columns])
        workbook.save(path)
        return path

    if path.suffix.lower() == ".csv":
        with path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=list(columns), extrasaction="ignore")
            writer.writeheader()
            for record in records:
                writer.writerow(record)
        return path
    raise ValueError(f"Unsupported file type: {path.suffix or path.name}")


def write_row_notes(path: str | Path, notes: Iterable[RowNote]) -> Path:
    records: list[dict[str, Any]] = []
    columns = [SKU_COLUMN]
    for note in notes:
        record = note.to_dict(REASON_COLUMN)
        record.setdefault(SKU_COLUMN, note.row.sku)
        records.append(record)
        for column in record:
            if column not in columns and column != REASON_COLUMN:
                columns.append(column)
    columns.append(REASON_COLUMN)
    return write_records(path, records, columns)


def _read_xlsx(path: Path) -> list[NumberedRecord]:
    workbook = load_workbook(path, read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return []
        columns = [_text(value) for value in header]

        records: list[NumberedRecord] = []
        for row_number, values in enumerate(rows, start=2):
            record = {column: value for column, value in zip(columns, values) if column and value is not None}
            if record:
                records.append((row_number, record))
        return records
    finally:
        workbook.close()


def _read_csv(path: Path) -> list[NumberedRecord]:
    with path.open(newline="", encoding="utf-8-sig") as handle:
        reader = csv.reader(handle)
        header = next(reader, None)
        if header is None:
            return []
        columns = [_text(value) for value in header]
        records: list[NumberedRecord] = []
        for row_number, values in enumerate(reader, start=2):
            record = {column: value for column, value in zip(columns, values) if column and value != ""}
            if record:
                records.append((row_number, record))
        return records


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()
