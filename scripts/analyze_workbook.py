#!/usr/bin/env python
"""
Analyze a pricing workbook offline and print the catalog it produces.

Usage:
    python scripts/analyze_workbook.py path/to/workbook.xlsx [--ai] [--json blueprint.json]
"""
import argparse
import json
import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from service_pricing.blueprint.ai_generator import AIBlueprintGenerator
from service_pricing.blueprint.deterministic import DeterministicBlueprintGenerator
from service_pricing.config.logging import configure_logging
from service_pricing.config.settings import get_settings
from service_pricing.engine.catalog import build_metadata_from_blueprint
from service_pricing.errors import PricingError
from service_pricing.workbook.mapping import merge_workbook_mapping
from service_pricing.workbook.snapshot import extract_workbook_snapshot


def main():
    parser = argparse.ArgumentParser(description="Analyze a pricing workbook")
    parser.add_argument("workbook", type=Path)
    parser.add_argument("--ai", action="store_true", help="use the AI generator (needs OPENAI_API_KEY)")
    parser.add_argument("--json", type=Path, help="write the blueprint JSON to this path")
    args = parser.parse_args()

    configure_logging()
    settings = get_settings()
    mapping = merge_workbook_mapping()

    print("=" * 60)
    print(f"WORKBOOK ANALYSIS: {args.workbook.name}")
    print("=" * 60)

    try:
        snapshot = extract_workbook_snapshot(
            args.workbook.read_bytes(),
            max_rows=settings.snapshot_max_rows,
            max_columns=settings.snapshot_max_columns,
            filename=args.workbook.name,
        )
        if args.ai:
            generator = AIBlueprintGenerator(
                api_key=settings.openai_api_key,
                model=settings.openai_model,
                timeout=settings.openai_timeout,
                schema_era=settings.schema_era,
            )
        else:
            generator = DeterministicBlueprintGenerator(mapping)
        blueprint = generator.generate(snapshot, mapping, workbook_filename=args.workbook.name)
        metadata = build_metadata_from_blueprint(blueprint, mapping, workbook_filename=args.workbook.name)
    except PricingError as e:
        print(f"\n❌ ANALYSIS FAILED: {e}")
        sys.exit(1)

    print(f"Sheets: {', '.join(sheet.name for sheet in snapshot.sheets)}")
    print(f"Generated by: {blueprint.metadata.generated_by}")
    print(f"Mode: {metadata.mode}")
    print(f"Notes: {blueprint.metadata.notes or ''}")
    print()
    for line in metadata.line_items:
        print(f"  row {line.row:>4}  {line.charge_type:<9}  {line.tier:<20}  {line.service}")
    print()
    print(f"Services: {len(metadata.line_items)}")

    if args.json:
        args.json.write_text(json.dumps(blueprint.to_dict(), indent=2), encoding='utf-8')
        print(f"Blueprint written to {args.json}")


if __name__ == "__main__":
    main()
