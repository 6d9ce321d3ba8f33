"""Migration orchestrator - coordinates the complete migration process."""

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .catalog import DEFAULT_CATALOG
from .exceptions import (
    ConfigurationError,
    ExtractionError,
    LoadError,
    MigrationCancelled,
    MigrationError,
    TransformError,
)
from .models.migration import (
    MigrationConfig,
    MigrationRun,
    MigrationStatus,
    MigrationStep,
    SourceConfig,
    SourceType,
    TargetType,
)
from .models.record import MigrationResult, SourceRecord, TransformedRecord
from .models.schema import Catalog, EntityDefinition
from .services.context import MigrationContext
from .services.identifier_map import IdentifierMap
from .services.index_builder import IndexBuilder, IndexReport
from .services.manifest import ManifestWriter
from .services.patcher import BackReferencePatcher, PatchReport
from .services.planner import MigrationPlan, StagePlanner
from .services.retry import RetryPolicy
from .services.transformer import TransformEngine
from .extractors.base import BaseExtractor
from .extractors.firestore_extractor import FirestoreExtractor
from .extractors.json_extractor import JSONExportExtractor
from .extractors.rest_extractor import FirestoreRESTExtractor
from .loaders.base import BaseLoader
from .loaders.memory_loader import MemoryLoader
from .loaders.mongo_loader import MongoLoader

logger = logging.getLogger(__name__)

WriteOutcome = Tuple[TransformedRecord, MigrationResult]


def create_extractor(source: SourceConfig) -> BaseExtractor:
    """Create an appropriate reader for the source."""
    if source.type == SourceType.FIRESTORE:
        return FirestoreExtractor.from_config(source)
    elif source.type == SourceType.FIRESTORE_REST:
        return FirestoreRESTExtractor.from_config(source)
    elif source.type == SourceType.JSON_EXPORT:
        extractor = JSONExportExtractor(source.export_dir or ".")
        extractor.page_size = source.page_size
        return extractor
    else:
        raise ConfigurationError(f"Unsupported source type: {source.type}")


def create_loader(config: MigrationConfig) -> BaseLoader:
    """Create an appropriate writer for the target; dry runs never touch MongoDB."""
    if config.dry_run or config.target.type == TargetType.MEMORY:
        return MemoryLoader(batch_size=config.write_batch_size)
    elif config.target.type == TargetType.MONGODB:
        return MongoLoader.from_config(config.target, batch_size=config.write_batch_size)
    else:
        raise ConfigurationError(f"Unsupported target type: {config.target.type}")


class MigrationOrchestrator:
    """
    Orchestrates the complete migration process.

    Handles:
    - Planning stages and deferred relations before any I/O
    - Reading, transforming and writing each entity type, stage by stage
    - Resuming from a manifest without re-inserting mapped records
    - Patching deferred back-references
    - Building indexes
    - Manifest flushes and the end-of-run report
    """

    def __init__(
        self,
        config: MigrationConfig,
        extractor: Optional[BaseExtractor] = None,
        loader: Optional[BaseLoader] = None,
        catalog: Optional[Catalog] = None,
        transformer: Optional[TransformEngine] = None,
        manifest: Optional[ManifestWriter] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            extractor: Source reader (created from the config when omitted)
            loader: Target writer (created from the config when omitted)
            catalog: Entity catalog (defaults to the Firestore to MongoDB catalog)
            transformer: Transform engine (defaults to the built-in rules)
            manifest: Manifest writer (defaults to ``config.manifest_path``)
        """
        self.config = config
        self.catalog = catalog or DEFAULT_CATALOG
        self.transformer = transformer or TransformEngine(self.catalog)
        self.manifest = manifest or ManifestWriter(config.manifest_path)
        self.retry = RetryPolicy(max_retries=config.max_retries, backoff=config.retry_backoff)
        self.cancel_event = threading.Event()

        self._extractor = extractor
        self._loader = loader

        # Runtime state
        self.run: Optional[MigrationRun] = None
        self.context: Optional[MigrationContext] = None
        self.patch_report: Optional[PatchReport] = None
        self.index_report: Optional[IndexReport] = None
        self._manifest_ready = False

        self._setup_directories()

    def _setup_directories(self):
        """Create output directories."""
        self.logs_dir = Path(self.config.output_dir) / "logs"
        if self.config.save_report:
            self.logs_dir.mkdir(parents=True, exist_ok=True)

    @property
    def extractor(self) -> BaseExtractor:
        if self._extractor is None:
            self._extractor = create_extractor(self.config.source)
        return self._extractor

    @property
    def loader(self) -> BaseLoader:
        if self._loader is None:
            self._loader = create_loader(self.config)
        return self._loader

    def plan(self) -> MigrationPlan:
        """
        Validate the configuration and compute the stage plan.

        Raises:
            ConfigurationError: on any problem, before the stores are touched
        """
        problems = self.config.validate() + self.transformer.validate()
        if problems:
            raise ConfigurationError("Invalid migration configuration", problems)
        return StagePlanner(self.catalog).plan()

    def cancel(self) -> None:
        """Ask the running migration to stop at the next batch boundary."""
        logger.warning("Cancellation requested")
        self.cancel_event.set()

    def run_migration(self) -> MigrationRun:
        """
        Run the complete migration.

        Returns:
            MigrationRun with results and statistics
        """
        self.run = MigrationRun(
            name=self.config.name,
            dry_run=self.config.dry_run,
            manifest_path=None if self.config.dry_run else self.config.manifest_path,
        )
        self.run.started_at = datetime.utcnow()
        self.run.status = MigrationStatus.PLANNING

        try:
            # Phase 1: Planning
            logger.info("=== PHASE 1: PLANNING ===")
            plan = self.plan()
            self.run.stages = [list(stage) for stage in plan.stages]
            self.run.deferred_relations = plan.to_dict()["deferred"]

            self.context = MigrationContext(
                catalog=self.catalog,
                plan=plan,
                id_map=IdentifierMap(self.catalog.entities.keys()),
                run_id=self.run.id,
                cancel_event=self.cancel_event,
            )
            self._resume()

            if not self.loader.validate_connection():
                raise LoadError("Failed to connect to target store")

            # Phase 2: Forward pass
            logger.info("=== PHASE 2: MIGRATION ===")
            self.run.status = MigrationStatus.MIGRATING
            for index, stage in enumerate(plan.stages):
                logger.info(f"--- Stage {index + 1}/{len(plan.stages)}: {', '.join(stage)} ---")
                for entity in stage:
                    self._migrate_entity(self.catalog.get_entity(entity), index)
                self._flush_manifest()

            # Phase 3: Back-references
            logger.info("=== PHASE 3: BACK-REFERENCES ===")
            self.run.status = MigrationStatus.PATCHING
            self._run_patch()

            # Phase 4: Indexes
            if self.config.build_indexes:
                logger.info("=== PHASE 4: INDEXES ===")
                self.run.status = MigrationStatus.INDEXING
                self._run_indexes()

            if self.run.has_unrecoverable_errors:
                self.run.status = MigrationStatus.COMPLETED_WITH_ERRORS
                logger.warning("=== MIGRATION COMPLETED WITH ERRORS ===")
            else:
                self.run.status = MigrationStatus.COMPLETED
                logger.info("=== MIGRATION COMPLETED ===")

        except MigrationCancelled as e:
            logger.warning(f"Migration cancelled: {e}")
            self._record_run_error(e)
            self.run.status = MigrationStatus.CANCELLED

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            for problem in e.problems:
                logger.error(f"  - {problem}")
            self._record_run_error(e, problems=e.problems)
            self.run.status = MigrationStatus.FAILED

        except MigrationError as e:
            logger.error(f"Migration failed: {e}")
            self._record_run_error(e)
            self.run.status = MigrationStatus.FAILED

        except Exception as e:
            logger.exception(f"Migration failed with an unexpected error: {e}")
            self._record_run_error(e)
            self.run.status = MigrationStatus.FAILED

        finally:
            self.run.completed_at = datetime.utcnow()
            self.run.current_step = None
            self.run.update_totals()
            self._flush_manifest(complete=self.run.status == MigrationStatus.COMPLETED)
            if self.config.save_report:
                self._save_report()

        return self.run

    def _record_run_error(self, error: Exception, problems: Optional[List[str]] = None) -> None:
        entry = {
            "phase": self.run.status.value,
            "error_type": type(error).__name__,
            "error": str(error),
            "timestamp": datetime.utcnow().isoformat(),
        }
        if problems:
            entry["problems"] = problems
        self.run.errors.append(entry)

    def _resume(self) -> None:
        """Seed the identifier map from the manifest of an earlier run."""
        if not self.config.resume:
            if self.manifest.exists() and not self.config.dry_run:
                logger.warning(
                    f"Manifest {self.manifest.path} exists and will be overwritten; "
                    "use resume to skip records it already maps"
                )
            self._manifest_ready = True
            return

        if not self.manifest.exists():
            logger.warning(f"No manifest at {self.manifest.path}; starting a fresh run")
            self._manifest_ready = True
            return

        manifest = self.manifest.load()
        if manifest.catalog and manifest.catalog != self.catalog.name:
            raise ConfigurationError(
                f"Manifest belongs to catalog '{manifest.catalog}', not '{self.catalog.name}'"
            )
        unknown = [e for e in manifest.mappings if e not in self.catalog.entities]
        if unknown:
            raise ConfigurationError(f"Manifest lists unknown entity types: {', '.join(unknown)}")

        seeded = self.context.id_map.seed(manifest.decoded(self.loader.decode_key))
        self.run.resumed = True
        self.run.metadata["resumed_from"] = {
            "run_id": manifest.run_id,
            "status": manifest.status,
            "entries": seeded,
            "legacy": manifest.legacy,
        }
        self._manifest_ready = True
        logger.info(f"Resuming from {self.manifest.path}: {manifest.counts}")

    def _flush_manifest(self, complete: bool = False) -> None:
        if self.config.dry_run or not self._manifest_ready or self.context is None:
            return
        try:
            self.manifest.write(
                self.context.id_map,
                run_id=self.run.id,
                catalog=self.catalog.name,
                status=self.run.status.value,
                complete=complete,
                index_version=self.catalog.index_version,
            )
        except OSError as e:
            logger.error(f"Failed to write manifest {self.manifest.path}: {e}")
            self.run.errors.append({
                "phase": "manifest",
                "error": str(e),
                "timestamp": datetime.utcnow().isoformat(),
            })

    def _migrate_entity(self, entity: EntityDefinition, stage: int) -> MigrationStep:
        """Read, transform and write every record of one entity type."""
        step = self.run.add_step(
            name=f"Migrate {entity.source_collection} to {entity.target_collection}",
            entity=entity.name,
            stage=stage,
        )
        step.status = MigrationStatus.MIGRATING
        step.started_at = datetime.utcnow()
        self.run.current_step = step.id

        cursor = self.config.start_after.get(entity.source_collection)
        if cursor:
            step.details["start_after"] = cursor

        try:
            with ThreadPoolExecutor(max_workers=self.config.parallel_workers) as executor:
                batches = self.extractor.stream(
                    entity.source_collection, entity.name, self.config.read_batch_size, cursor
                )
                for number, batch in enumerate(batches, 1):
                    self.context.check_cancelled()

                    to_write = self._prepare_batch(entity, batch, step)
                    size = self.config.write_batch_size
                    futures = [
                        executor.submit(self._write_chunk, entity, to_write[i:i + size])
                        for i in range(0, len(to_write), size)
                    ]
                    for future in futures:
                        self._record_outcomes(step, future.result())

                    step.details["cursor"] = self.extractor.cursor_for(batch[-1])
                    logger.info(
                        f"{entity.name}: {step.records_processed} read, "
                        f"{step.records_succeeded} written, {step.records_resumed} already migrated, "
                        f"{step.records_skipped} skipped, {step.records_failed} failed"
                    )

                    flush_every = self.config.manifest_flush_batches
                    if flush_every and number % flush_every == 0:
                        self._flush_manifest()

            step.status = MigrationStatus.COMPLETED
            logger.info(
                f"Migrated {step.records_migrated}/{step.records_processed} {entity.name} records"
            )

        except MigrationCancelled:
            step.status = MigrationStatus.CANCELLED
            raise

        except ExtractionError as e:
            step.status = MigrationStatus.FAILED
            step.errors.append({"error": str(e), "collection": e.collection})
            logger.error(f"Reading {entity.source_collection} failed: {e}")
            raise

        finally:
            step.completed_at = datetime.utcnow()
            if not step.is_balanced:
                logger.error(f"{entity.name}: record counts do not add up")

        return step

    def _prepare_batch(
        self,
        entity: EntityDefinition,
        batch: List[SourceRecord],
        step: MigrationStep
    ) -> List[TransformedRecord]:
        """Transform a read batch; skip malformed records and already-mapped ones."""
        to_write: List[TransformedRecord] = []

        for record in batch:
            step.records_processed += 1
            try:
                transformed = self.transformer.transform_record(record, self.context)
            except TransformError as e:
                step.records_skipped += 1
                step.record_error({**e.to_dict(), "stage": "transform"}, self.config.max_error_samples)
                logger.warning(f"Skipping {entity.name} {record.id}: {e}")
                continue

            step.broken_references += len(transformed.broken_references)
            step.enum_fallbacks += len(transformed.enum_fallbacks)
            for fallback in transformed.enum_fallbacks:
                logger.warning(
                    f"{entity.name} {record.id}: unknown {fallback['field']} "
                    f"{fallback['value']!r}, using {fallback['fallback']!r}"
                )

            existing = self.context.id_map.get(entity.name, record.id)
            if existing is not None:
                step.records_resumed += 1
                self.context.add_deferred(transformed.deferred_references(existing))
                continue

            to_write.append(transformed)

        return to_write

    def _write_chunk(
        self,
        entity: EntityDefinition,
        records: List[TransformedRecord]
    ) -> List[WriteOutcome]:
        """
        Insert a micro-batch, retrying only the records that failed.

        Each record that lands is entered in the identifier map before the
        next retry round, so its key is usable even if siblings keep failing.
        """
        outcomes: List[WriteOutcome] = []
        remaining = records
        attempt = 0

        while remaining:
            result = self.loader.insert_batch(
                entity.target_collection,
                [(r.source_id, r.document()) for r in remaining],
            )

            failed: List[WriteOutcome] = []
            for record, outcome in zip(remaining, result.results):
                outcome.retry_count = attempt
                if outcome.success:
                    self.context.id_map.put(entity.name, record.source_id, outcome.target_id)
                    outcomes.append((record, outcome))
                else:
                    failed.append((record, outcome))

            if not failed:
                break
            if attempt >= self.retry.max_retries or self.context.cancelled:
                outcomes.extend(failed)
                break

            attempt += 1
            wait = self.retry.delay(attempt)
            logger.warning(
                f"{len(failed)} {entity.name} writes failed; "
                f"retry {attempt}/{self.retry.max_retries} in {wait:.2f}s"
            )
            if self.cancel_event.wait(wait):
                outcomes.extend(failed)
                break
            remaining = [record for record, _ in failed]

        return outcomes

    def _record_outcomes(self, step: MigrationStep, outcomes: List[WriteOutcome]) -> None:
        for record, outcome in outcomes:
            if outcome.success:
                step.records_succeeded += 1
                self.context.add_deferred(record.deferred_references(outcome.target_id))
            else:
                step.records_failed += 1
                step.record_error({
                    "record_id": record.source_id,
                    "stage": "write",
                    "error": outcome.error,
                    "retries": outcome.retry_count,
                }, self.config.max_error_samples)
                logger.error(f"Failed to write {step.entity} {record.source_id}: {outcome.error}")

    def _run_patch(self) -> None:
        """Resolve every deferred reference recorded in the forward pass."""
        step = self.run.add_step(name="Patch back-references")
        step.status = MigrationStatus.PATCHING
        step.started_at = datetime.utcnow()
        self.run.current_step = step.id

        try:
            deferred = self.context.take_deferred()
            self.run.metadata["deferred_references"] = len(deferred)

            patcher = BackReferencePatcher(
                self.loader,
                self.catalog,
                retry=self.retry,
                max_workers=self.config.parallel_workers,
                max_error_samples=self.config.max_error_samples,
            )
            self.patch_report = patcher.patch(deferred, self.context.id_map, self.cancel_event)

            report = self.patch_report
            step.records_processed = report.records_patched + report.records_failed
            step.records_succeeded = report.records_patched
            step.records_failed = report.records_failed
            step.broken_references = report.broken_references
            for failure in report.failures:
                step.record_error(failure, self.config.max_error_samples)
            step.details = {"fields": report.fields, "broken": report.broken}

            self.context.check_cancelled()
            step.status = MigrationStatus.COMPLETED

        except MigrationCancelled:
            step.status = MigrationStatus.CANCELLED
            raise

        finally:
            step.completed_at = datetime.utcnow()

    def _run_indexes(self) -> None:
        """Apply the catalog's index list."""
        step = self.run.add_step(name="Build indexes")
        step.status = MigrationStatus.INDEXING
        step.started_at = datetime.utcnow()
        self.run.current_step = step.id

        try:
            self.index_report = IndexBuilder.from_catalog(self.loader, self.catalog, self.retry).build()
            report = self.index_report
            step.records_processed = len(report.created) + len(report.existing) + len(report.failed)
            step.records_succeeded = len(report.created) + len(report.existing)
            step.records_failed = len(report.failed)
            for failure in report.failed:
                step.record_error(failure, self.config.max_error_samples)
            step.details = report.to_dict()
            step.status = MigrationStatus.COMPLETED
        finally:
            step.completed_at = datetime.utcnow()

    def _save_report(self):
        """Save the migration report."""
        filepath = self.logs_dir / f"migration_report_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.json"
        try:
            with open(filepath, 'w') as f:
                json.dump(self.run.to_dict(), f, indent=2, default=str)
        except OSError as e:
            logger.error(f"Failed to save migration report: {e}")
            return
        self.run.metadata["report_path"] = str(filepath)
        logger.info(f"Saved migration report to {filepath}")

    def preview_transformation(
        self,
        entity: str,
        document: Dict[str, Any],
        record_id: str = "preview"
    ) -> TransformedRecord:
        """Preview a single record transformation against an empty identifier map."""
        definition = self.catalog.get_entity(entity)
        record = SourceRecord(
            id=record_id,
            source_entity=definition.name,
            source_collection=definition.source_collection,
            data=document,
        )
        context = MigrationContext(
            catalog=self.catalog,
            plan=StagePlanner(self.catalog).plan(),
            id_map=IdentifierMap(self.catalog.entities.keys()),
        )
        return self.transformer.transform_record(record, context)

    def close(self) -> None:
        """Release store connections."""
        if self._extractor is not None:
            self._extractor.close()
        if self._loader is not None:
            self._loader.close()
