from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from stocksync.config import SyncSettings, get_settings
from stocksync.export.pipeline import ExportPipeline
from stocksync.export.projection import ALL_LOCATIONS, EXPORT_COLUMNS
from stocksync.importer.pipeline import ImportPipeline
from stocksync.sheets import desired_rows, read_records, write_records, write_row_notes
from stocksync.store.base import InventoryStore
from stocksync.store.fixture import FixtureStore
from stocksync.store.graphql import ShopifyGraphQLStore


@dataclass(frozen=True)
class StoreRegistry:
    factory: Callable[[SyncSettings, str | None], InventoryStore]


STORES: dict[str, StoreRegistry] = {
    "live": StoreRegistry(factory=lambda settings, _fixture: ShopifyGraphQLStore(settings)),
    "fixture": StoreRegistry(factory=lambda _settings, fixture: FixtureStore.from_file(fixture)),
}


def build_store(mode: str, fixture: str | None = None, settings: SyncSettings | None = None) -> InventoryStore:
    registry = STORES.get(mode)
    if not registry:
        raise ValueError(f"Unknown store mode: {mode}")
    return registry.factory(settings or get_settings(), fixture)


def run_export(store: InventoryStore, location: str, out: str, settings: SyncSettings | None = None) -> int:
    result = ExportPipeline(store, settings=settings).run(location_id=location)
    if not result.success:
        print(f"export status={result.status} error={result.error}")
        return 1

    path = write_records(out, [row.to_record() for row in result.rows], EXPORT_COLUMNS)
    job_id = result.job.id if result.job else None
    print(
        f"export job={job_id} status={result.status} rows={len(result.rows)} "
        f"dropped={result.dropped} parse_errors={result.parse_errors} out={path}"
    )
    return 0


def run_import(
    store: InventoryStore,
    source: str,
    location: str,
    settings: SyncSettings | None = None,
    report_path: str | None = None,
) -> int:
    rows = desired_rows(read_records(source))
    result = ImportPipeline(store, settings=settings).run(rows, location_id=location)
    report = result.report
    print(f"import job={report.job_id} status={result.status} {report.summary()}")
    for message in report.errors:
        print(f"  - {message}")
    if report_path:
        path = write_row_notes(report_path, report.rejected_rows + report.skipped_rows)
        print(f"row report={path}")
    return 0 if result.status == "COMPLETED" else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Bulk inventory export and reconciliation")
    parser.add_argument("--mode", default="live", choices=sorted(STORES.keys()))
    parser.add_argument("--fixture", help="JSON fixture for --mode fixture (defaults to the bundled sample store)")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    commands = parser.add_subparsers(dest="command", required=True)

    export_parser = commands.add_parser("export", help="Export inventory levels to a spreadsheet")
    export_parser.add_argument("--location", default=ALL_LOCATIONS, help=f"Location id or {ALL_LOCATIONS}")
    export_parser.add_argument("--out", default="products_export.xlsx")

    import_parser = commands.add_parser("import", help="Reconcile a spreadsheet against the store")
    import_parser.add_argument("source", help="Path to an .xlsx or .csv file")
    import_parser.add_argument("--location", required=True, help=f"Location id or {ALL_LOCATIONS}")
    import_parser.add_argument("--report", help="Write rejected and skipped rows to this .xlsx or .csv file")

    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    settings = get_settings()
    if args.mode == "fixture":
        settings = settings.model_copy(update={"poll_interval_seconds": 0.0, "cancel_settle_seconds": 0.0})
    store = build_store(args.mode, fixture=args.fixture, settings=settings)

    if args.command == "export":
        code = run_export(store, location=args.location, out=args.out, settings=settings)
    else:
        if not Path(args.source).exists():
            parser.error(f"File not found: {args.source}")
        code = run_import(
            store, source=args.source, location=args.location, settings=settings, report_path=args.report
        )
    raise SystemExit(code)


if __name__ == "__main__":
    main()
