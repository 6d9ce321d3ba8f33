#!/usr/bin/env python3
"""
Example: Firestore to MongoDB Migration

This script shows how to drive the storebridge engine from Python rather
than through the ``storebridge`` command.

Usage:
    # Demo against a small generated export (no credentials needed)
    python run_migration.py --demo

    # Dry run against Firestore (writes to memory only)
    python run_migration.py --dry-run

    # Full migration, resuming from an earlier manifest
    python run_migration.py --resume
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from storebridge.models.migration import (
    MigrationConfig,
    SourceType,
)
from storebridge.orchestrator import MigrationOrchestrator
from storebridge.services.validator import ReferenceValidator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('migration.log')
    ]
)
logger = logging.getLogger(__name__)

SAMPLE_EXPORT = {
    "userProfiles": {
        "u1": {
            "email": "ani@example.com",
            "name": "Ani",
            "role": "administrator",
            "certificates": ["c1"],
            "contributedFiles": {"f1": "README.md"},
            "createdAt": "2024-03-01T10:00:00Z",
        },
        "u2": {
            "email": "davit@example.com",
            "name": "Davit",
            "role": "translator",
            "currentFiles": {"f1": "README.md"},
        },
    },
    "projects": {
        "p1": {
            "uId": "u1",
            "title": "Kubernetes docs",
            "status": "in progress",
            "categories": ["cloud"],
            "files": ["f1"],
        },
    },
    "files": {
        "f1": {
            "projectId": "p1",
            "uId": "u1",
            "fileName": "README.md",
            "filePath": "docs/README.md",
            "assignedTranslatorId": "u2",
            "status": "in progress",
            "originalText": "Kubernetes is an open source system",
            "storageType": "github_raw",
        },
    },
    "certificates": {
        "c1": {
            "userId": "u1",
            "projectId": "p1",
            "fileId": "f1",
            "verificationCode": "ARM-0001",
            "type": "gold",
        },
    },
    "reviews": {},
    "translationMemory": {
        "tm1": {
            "uId": "u2",
            "originalText": "open source",
            "translatedText": "բաց կոդով",
            "projectId": "p1",
        },
    },
}


def create_config(dry_run: bool = True, resume: bool = False) -> MigrationConfig:
    """Create migration configuration programmatically."""
    config = MigrationConfig(
        name="Armenian docs Firestore to MongoDB",
        dry_run=dry_run,
        resume=resume,
        parallel_workers=4,
        manifest_path=str(Path(__file__).parent / "data" / "migration-manifest.json"),
        output_dir=str(Path(__file__).parent / "data"),
    )
    if os.environ.get("FIRESTORE_EMULATOR_HOST"):
        config.source.type = SourceType.FIRESTORE_REST
    return config.apply_environment()


def run_migration(config: MigrationConfig):
    """Run the migration."""
    logger.info("=" * 60)
    logger.info("STARTING MIGRATION")
    logger.info("=" * 60)
    logger.info(f"Name: {config.name}")
    logger.info(f"Dry Run: {config.dry_run}")
    logger.info(f"Source: {config.source.type.value}")
    logger.info(f"Target: {config.target.database}")

    orchestrator = MigrationOrchestrator(config)
    try:
        result = orchestrator.run_migration()
    except KeyboardInterrupt:
        orchestrator.cancel()
        raise
    finally:
        orchestrator.close()

    # Print results
    logger.info("=" * 60)
    logger.info("MIGRATION COMPLETE")
    logger.info("=" * 60)
    logger.info(f"Status: {result.status.value}")
    for entity, counts in result.summary().items():
        logger.info(
            f"{entity}: {counts['migrated']}/{counts['total']} migrated, "
            f"{counts['skipped']} skipped, {counts['errored']} errored"
        )

    if result.duration_seconds:
        logger.info(f"Duration: {result.duration_seconds:.2f} seconds")

    if result.errors:
        logger.warning(f"Errors ({len(result.errors)}):")
        for error in result.errors[:10]:  # Show first 10
            logger.warning(f"  - {error}")

    return result


def demo_with_sample_data():
    """
    Demo migration with a generated export (no credentials needed).

    Writes a small Firestore-style export, migrates it into the in-memory
    store and checks that every reference resolved.
    """
    logger.info("Running demo with sample data...")

    output = Path(__file__).parent / "demo_output"
    export_dir = output / "export"
    export_dir.mkdir(parents=True, exist_ok=True)
    for collection, documents in SAMPLE_EXPORT.items():
        with open(export_dir / f"{collection}.json", "w", encoding="utf-8") as f:
            json.dump(documents, f, indent=2, ensure_ascii=False)

    config = MigrationConfig(
        name="Demo Migration",
        dry_run=True,
        output_dir=str(output),
    )
    config.source.type = SourceType.JSON_EXPORT
    config.source.export_dir = str(export_dir)

    orchestrator = MigrationOrchestrator(config)

    # Preview one transformation
    preview = orchestrator.preview_transformation("documents", SAMPLE_EXPORT["files"]["f1"], "f1")
    logger.info("files/f1 -> documents:")
    logger.info(json.dumps(preview.data, indent=2, default=str, ensure_ascii=False))

    result = orchestrator.run_migration()
    logger.info(f"Status: {result.status.value}")
    for entity, counts in result.summary().items():
        logger.info(f"  {entity}: {counts}")

    report = ReferenceValidator(orchestrator.loader, orchestrator.catalog).validate()
    logger.info(f"Dangling references after patching: {report.dangling}")

    logger.info("\nDemo complete! Check demo_output/ for the run report.")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Firestore to MongoDB Migration"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Read Firestore but write to memory only"
    )
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Skip records already listed in the manifest"
    )
    parser.add_argument(
        "--demo",
        action="store_true",
        help="Run demo with sample data (no credentials needed)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.demo:
        demo_with_sample_data()
        return

    config = create_config(dry_run=args.dry_run, resume=args.resume)
    problems = config.validate()
    if problems:
        for problem in problems:
            logger.error(problem)
        logger.info("Set the Firebase and MongoDB environment variables or use --demo")
        sys.exit(2)

    result = run_migration(config)
    if result.has_unrecoverable_errors:
        sys.exit(1)


if __name__ == "__main__":
    main()
