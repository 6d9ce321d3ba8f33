"""Command line entry point for the migration engine."""

import argparse
import json
import logging
import signal
import sys
from typing import List, Optional

from .catalog import DEFAULT_CATALOG
from .exceptions import ConfigurationError, MigrationError, TransformError
from .models.migration import (
    MigrationConfig,
    MigrationRun,
    SourceType,
    TargetType,
)
from .orchestrator import MigrationOrchestrator, create_loader
from .services.manifest import ManifestWriter
from .services.planner import StagePlanner
from .services.validator import ReferenceValidator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_CONFIG = 2


def load_config(args) -> MigrationConfig:
    """Build the run configuration from the config file, flags and environment."""
    config = MigrationConfig()
    if getattr(args, "config", None):
        with open(args.config) as f:
            config = MigrationConfig.from_dict(json.load(f))

    if getattr(args, "source_type", None):
        config.source.type = SourceType(args.source_type)
    if getattr(args, "export_dir", None):
        config.source.export_dir = args.export_dir
        if not getattr(args, "source_type", None):
            config.source.type = SourceType.JSON_EXPORT
    if getattr(args, "target_type", None):
        config.target.type = TargetType(args.target_type)
    if getattr(args, "manifest", None):
        config.manifest_path = args.manifest
    if getattr(args, "output_dir", None):
        config.output_dir = args.output_dir
    if getattr(args, "workers", None):
        config.parallel_workers = args.workers
    if getattr(args, "dry_run", False):
        config.dry_run = True
    if getattr(args, "resume", False):
        config.resume = True
    if getattr(args, "no_indexes", False):
        config.build_indexes = False

    return config.apply_environment()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="storebridge - migrate a Firestore database to MongoDB"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run migration
    run_parser = subparsers.add_parser("run", help="Run a migration")
    _add_config_arguments(run_parser)
    run_parser.add_argument("--dry-run", action="store_true", help="Write to memory instead of MongoDB")
    run_parser.add_argument("--resume", action="store_true", help="Skip records mapped in the manifest")
    run_parser.add_argument("--workers", type=int, help="Parallel writer threads")
    run_parser.add_argument("--output-dir", help="Directory for the run report")
    run_parser.add_argument("--no-indexes", action="store_true", help="Skip index creation")

    # Show plan
    plan_parser = subparsers.add_parser("plan", help="Show migration stages and deferred relations")
    plan_parser.add_argument("--json", action="store_true", help="Print as JSON")

    # Verify target
    verify_parser = subparsers.add_parser("verify", help="Check referential integrity of the target")
    _add_config_arguments(verify_parser)
    verify_parser.add_argument("--entity", action="append", help="Limit to an entity type")

    # Summarise manifest
    manifest_parser = subparsers.add_parser("manifest", help="Summarise a manifest file")
    manifest_parser.add_argument("path", help="Path to the manifest")

    # Preview transformation
    preview_parser = subparsers.add_parser("preview", help="Preview the transformation of raw documents")
    preview_parser.add_argument("--entity", required=True, help="Entity type to transform")
    preview_parser.add_argument("--input", required=True, help="Path to input JSON file")

    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    commands = {
        "run": run_migration,
        "plan": show_plan,
        "verify": run_verification,
        "manifest": show_manifest,
        "preview": run_preview,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return EXIT_CONFIG

    try:
        return command(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        for problem in e.problems:
            print(f"  - {problem}", file=sys.stderr)
        return EXIT_CONFIG
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG


def _add_config_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to migration config file")
    parser.add_argument("--source-type", choices=[t.value for t in SourceType], help="Source reader")
    parser.add_argument("--export-dir", help="Directory of <collection>.json exports")
    parser.add_argument("--target-type", choices=[t.value for t in TargetType], help="Target writer")
    parser.add_argument("--manifest", help="Path to the manifest file")


def run_migration(args) -> int:
    """Run a migration from config file and flags."""
    config = load_config(args)
    orchestrator = MigrationOrchestrator(config)

    # Fail before any I/O on configuration problems
    orchestrator.plan()

    previous = signal.getsignal(signal.SIGINT)

    def handle_interrupt(signum, frame):
        print("\nInterrupt received, stopping after the current batch...", file=sys.stderr)
        orchestrator.cancel()

    signal.signal(signal.SIGINT, handle_interrupt)
    try:
        result = orchestrator.run_migration()
    finally:
        signal.signal(signal.SIGINT, previous)
        orchestrator.close()

    print_summary(result)
    return EXIT_ERRORS if result.has_unrecoverable_errors else EXIT_OK


def print_summary(result: MigrationRun) -> None:
    print("\n" + "=" * 60)
    print("MIGRATION COMPLETE")
    print("=" * 60)
    print(f"Status: {result.status.value}")
    if result.dry_run:
        print("Dry run: nothing was written to MongoDB")
    if result.resumed:
        print(f"Resumed from: {result.manifest_path}")

    print(f"\n{'Entity':<22}{'Total':>8}{'Migrated':>10}{'Resumed':>9}{'Skipped':>9}{'Errored':>9}")
    for entity, counts in result.summary().items():
        print(
            f"{entity:<22}{counts['total']:>8}{counts['migrated']:>10}{counts['resumed']:>9}"
            f"{counts['skipped']:>9}{counts['errored']:>9}"
        )

    for step in result.steps:
        if step.stage is None:
            print(f"\n{step.name}: {step.records_succeeded} ok, {step.records_failed} failed", end="")
            if step.broken_references:
                print(f", {step.broken_references} broken references", end="")
            print()

    for error in result.errors:
        print(f"\nError ({error.get('phase')}): {error.get('error')}")
    if result.manifest_path:
        print(f"\nManifest: {result.manifest_path}")
    if result.duration_seconds:
        print(f"Duration: {result.duration_seconds:.2f} seconds")


def show_plan(args) -> int:
    """Print the stage plan of the catalog."""
    plan = StagePlanner(DEFAULT_CATALOG).plan()

    if args.json:
        print(json.dumps(plan.to_dict(), indent=2))
        return EXIT_OK

    print("\n=== Migration Plan ===")
    for index, stage in enumerate(plan.stages, 1):
        entities = ", ".join(
            f"{name} ({DEFAULT_CATALOG.get_entity(name).source_collection})" for name in stage
        )
        print(f"  Stage {index}: {entities}")

    print("\nDeferred relations (patched after all stages):")
    for relation in plan.to_dict()["deferred"]:
        print(f"  - {relation}")
    return EXIT_OK


def run_verification(args) -> int:
    """Check that every foreign key in the target resolves."""
    config = load_config(args)
    loader = create_loader(config)
    try:
        if not loader.validate_connection():
            print("Cannot connect to the target store", file=sys.stderr)
            return EXIT_ERRORS
        report = ReferenceValidator(loader, DEFAULT_CATALOG).validate(args.entity)
    except MigrationError as e:
        print(f"Verification failed: {e}", file=sys.stderr)
        return EXIT_ERRORS
    finally:
        loader.close()

    print("\n=== Referential Integrity ===")
    print(f"Documents checked: {report.documents_checked}")
    print(f"References checked: {report.references_checked}")
    print(f"Dangling references: {report.dangling}")
    for field_name, count in sorted(report.by_field.items()):
        print(f"  {field_name}: {count}")
    for error in report.errors:
        print(f"  - {error.entity} {error.record_key} {error.field}: {error.message}")

    return EXIT_OK if report.valid else EXIT_ERRORS


def show_manifest(args) -> int:
    """Summarise a manifest file."""
    manifest = ManifestWriter(args.path).load()

    print("\n=== Manifest ===")
    if manifest.legacy:
        print("Format: legacy mappings file")
    else:
        print(f"Run: {manifest.run_id}")
        print(f"Status: {manifest.status}")
        print(f"Complete: {manifest.complete}")
        print(f"Written: {manifest.written_at}")
    for entity, count in manifest.counts.items():
        print(f"  {entity}: {count}")
    print(f"Total: {manifest.total}")
    return EXIT_OK


def run_preview(args) -> int:
    """Preview a transformation."""
    with open(args.input) as f:
        input_data = json.load(f)

    if not isinstance(input_data, list):
        input_data = [input_data]

    orchestrator = MigrationOrchestrator(MigrationConfig(save_report=False))

    status = EXIT_OK
    for data in input_data:
        try:
            result = orchestrator.preview_transformation(
                args.entity, data, record_id=str(data.get("id", "preview"))
            )
        except TransformError as e:
            print(f"Record {e.record_id} would be skipped: {e}")
            status = EXIT_ERRORS
            continue
        print(json.dumps(result.to_dict(), indent=2, default=str))
        print("-" * 40)
    return status


if __name__ == "__main__":
    sys.exit(main())
