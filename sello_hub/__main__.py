"""CLI entry point for Sello Hub.

Usage:
    # Start the API server
    python -m sello_hub serve
    SELLO_DEV_MODE=true python -m sello_hub serve

    # Preview a spreadsheet (auto-detects the importer)
    python -m sello_hub import auto /path/to/export.xlsx

    # Preview and apply to the state file
    python -m sello_hub import sales /path/to/sales.xlsx --apply
    python -m sello_hub import mappings /path/to/skus.csv --platform eBay --mode replace --apply
    python -m sello_hub import ca_prices /path/to/ca.csv --report-date 2025-12-01 --apply

    # List available importers
    python -m sello_hub importers

    # Exports
    python -m sello_hub export-products -o products.csv
    python -m sello_hub strategy --platform eBay -o strategy.csv

    # Courier rates from the shipping history
    python -m sello_hub calibrate-logistics
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date


def _configure_logging() -> None:
    from .config import get_settings

    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load():
    from .config import get_settings
    from .store import load_state
    from .thresholds import load_pricing_rules

    settings = get_settings()
    state = load_state(settings.state_path, load_pricing_rules(settings.pricing_rules_path))
    return settings, state


def _write(text: str, output: str | None) -> None:
    if output:
        with open(output, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        print(f"Wrote {output}")
    else:
        sys.stdout.write(text)


def _cmd_serve(args: argparse.Namespace) -> None:
    """Start the API server."""
    import uvicorn

    from .api import create_app
    from .config import get_settings

    settings = get_settings()
    app = create_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


def _cmd_import(args: argparse.Namespace) -> None:
    """Preview a spreadsheet and optionally apply it."""
    from pathlib import Path

    from .adapters.detection import build_importer, detect_and_ingest, importer_kinds
    from .reconcile import apply_import
    from .store import save_state

    source = Path(args.source)
    if not source.exists():
        print(f"Error: Path not found: {source}", file=sys.stderr)
        sys.exit(1)

    settings, state = _load()
    options = {
        "tz": settings.app_timezone,
        "platform": args.platform,
        "report_date": args.report_date,
        "period_days": args.period_days or settings.default_period_days,
    }
    try:
        if args.kind == "auto":
            result = detect_and_ingest(
                source, state, max_size_mb=settings.max_upload_mb, **options
            )
        else:
            if args.kind not in importer_kinds():
                print(f"Error: Unknown import type '{args.kind}'", file=sys.stderr)
                print(f"Available: auto, {', '.join(importer_kinds())}", file=sys.stderr)
                sys.exit(1)
            importer = build_importer(args.kind, **options)
            result = importer.ingest(source, state, max_size_mb=settings.max_upload_mb)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(result.summary)
    print()

    if result.errors:
        print(f"--- Errors ({len(result.errors)}) ---")
        for err in result.errors[:20]:
            print(f"  ! {err}")
        if len(result.errors) > 20:
            print(f"  ... and {len(result.errors) - 20} more")
        print()

    if result.warnings:
        print(f"--- Warnings ({len(result.warnings)}) ---")
        for warn in result.warnings[:10]:
            print(f"  * {warn}")
        print()

    if not args.apply:
        return
    try:
        applied = apply_import(state, result, args.mode, args.platform, settings.app_timezone)
    except ValueError as e:
        print(f"Not applied: {e}", file=sys.stderr)
        sys.exit(1)
    save_state(state, settings.state_path)
    changes = ", ".join(f"{k}={v}" for k, v in applied.items())
    print(f"Applied to {settings.state_path}: {changes}")


def _cmd_importers(args: argparse.Namespace) -> None:
    """List available importers."""
    from .adapters.detection import list_importers

    print("Available importers:")
    for i in list_importers():
        print(f"  {i['kind']:<12} {i['name']:<25} ({i['class']})")


def _cmd_export_products(args: argparse.Namespace) -> None:
    from .product_list import ProductFilters, build_product_view, export_products_csv

    _, state = _load()
    filters = ProductFilters(platform=args.platform, manager=args.manager, status=args.status)
    view = build_product_view(state.products, filters)
    _write(export_products_csv(view), args.output)


def _cmd_strategy(args: argparse.Namespace) -> None:
    from .strategy import build_strategy, export_strategy_csv
    from .thresholds import load_hub_config

    settings, state = _load()
    config = load_hub_config(settings.thresholds_path)
    rows = build_strategy(
        state.products,
        state.pricing_rules,
        config.strategy,
        include_incoming=args.include_incoming,
    )
    _write(export_strategy_csv(rows, state.products, args.platform), args.output)


def _cmd_calibrate_logistics(args: argparse.Namespace) -> None:
    """Set courier rates from the recorded shipping history."""
    from .logistics import calibrate_logistics
    from .store import save_state

    settings, state = _load()
    try:
        updated = calibrate_logistics(state)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    save_state(state, settings.state_path)
    print(
        f"Calibration complete. Updated rates for {updated} services "
        f"based on {len(state.shipment_history)} shipments."
    )
    for rule in state.logistics_rules:
        if rule.price > 0:
            print(f"  {rule.name:<20} {rule.price:>8.2f}")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="sello_hub",
        description="Sello Hub: inventory and pricing data layer",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # serve
    subparsers.add_parser("serve", help="Start the API server")

    # import
    import_parser = subparsers.add_parser("import", help="Preview (and apply) a spreadsheet")
    import_parser.add_argument("kind", help="Importer kind, or 'auto' to detect it")
    import_parser.add_argument("source", help="Path to the CSV/XLSX/XLS file")
    import_parser.add_argument(
        "--apply",
        action="store_true",
        help="Merge the preview into the state file",
    )
    import_parser.add_argument("--platform", help="Platform for SKU mapping imports")
    import_parser.add_argument(
        "--mode",
        choices=["merge", "replace"],
        default="merge",
        help="How SKU mappings combine with existing aliases (default: merge)",
    )
    import_parser.add_argument(
        "--report-date",
        type=date.fromisoformat,
        help="Date of a CA price report, YYYY-MM-DD (default: today)",
    )
    import_parser.add_argument(
        "--period-days",
        type=float,
        help="Sales period when the report has no dates",
    )

    # importers
    subparsers.add_parser("importers", help="List available importers")

    # export-products
    products_parser = subparsers.add_parser("export-products", help="Export the product list as CSV")
    products_parser.add_argument("--platform", default="All")
    products_parser.add_argument("--manager", default="All")
    products_parser.add_argument("--status", default="All")
    products_parser.add_argument("--output", "-o", help="Write CSV to this path")

    # strategy
    strategy_parser = subparsers.add_parser("strategy", help="Export the pricing strategy as CSV")
    strategy_parser.add_argument("--platform", help="One row per alias on this platform")
    strategy_parser.add_argument(
        "--include-incoming",
        action="store_true",
        help="Count incoming stock towards the runway",
    )
    strategy_parser.add_argument("--output", "-o", help="Write CSV to this path")

    # calibrate-logistics
    subparsers.add_parser(
        "calibrate-logistics", help="Set courier rates from the shipping history"
    )

    args = parser.parse_args()
    _configure_logging()

    commands = {
        "serve": _cmd_serve,
        "import": _cmd_import,
        "importers": _cmd_importers,
        "export-products": _cmd_export_products,
        "strategy": _cmd_strategy,
        "calibrate-logistics": _cmd_calibrate_logistics,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        sys.exit(1)
    command(args)


if __name__ == "__main__":
    main()
