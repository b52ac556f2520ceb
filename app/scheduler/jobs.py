"""
app/scheduler/jobs.py

Concrete pipeline tasks and the factory that wires them into a manager.

Tasks (cron, UTC, configurable through env)
--------------------------------------------
  csv-import              pull every tenant feed and stage its rows
  import-processing       promote PENDING staged rows to chat sessions
  batch-submission        submit eligible sessions as one enrichment batch
  batch-polling           move SUBMITTED batches to COMPLETED / FAILED
  batch-reconciliation    apply COMPLETED batch output to sessions

Tasks share nothing in memory; every hand-off between them is a persisted
row state, so each can run in its own process.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass

from app.config import (
    SchedulerSettings,
    get_batch_enrichment_settings,
    get_csv_import_settings,
    get_import_processing_settings,
    get_scheduler_settings,
)
from app.domain.batch_enrichment import (
    BatchPollSummary,
    BatchSubmissionSummary,
    ReconciliationSummary,
)
from app.domain.chat_import import CSVImportRunSummary, ImportProcessingSummary, TenantImportResult
from app.scheduler.base import ScheduledTask, TaskConfig
from app.scheduler.manager import SchedulerManager
from app.services.batch_enrichment_service import BatchEnrichmentService, get_batch_enrichment_service
from app.services.csv_import_service import CSVImportService, get_csv_import_service
from app.services.import_processing_service import ImportProcessingService, get_import_processing_service

logger = logging.getLogger(__name__)

CSV_IMPORT_TASK_ID = "csv-import"
IMPORT_PROCESSING_TASK_ID = "import-processing"
BATCH_SUBMISSION_TASK_ID = "batch-submission"
BATCH_POLLING_TASK_ID = "batch-polling"
BATCH_RECONCILIATION_TASK_ID = "batch-reconciliation"

TASK_IDS = (
    CSV_IMPORT_TASK_ID,
    IMPORT_PROCESSING_TASK_ID,
    BATCH_SUBMISSION_TASK_ID,
    BATCH_POLLING_TASK_ID,
    BATCH_RECONCILIATION_TASK_ID,
)


# ---------------------------------------------------------------------------
# CSV ingestion
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CSVImportMetrics:
    total_tenants_processed: int
    total_rows_imported: int
    total_errors: int
    average_run_time_seconds: float
    error_rate: float


class CsvImportTask(ScheduledTask):
    """
    Periodic CSV ingestion across all importable tenants.

    Emits ``progress`` after every tenant page and ``batch_completed`` at the
    end of each run, in addition to the base lifecycle events.
    """

    def __init__(self, *, service: CSVImportService, config: TaskConfig) -> None:
        super().__init__(task_id=CSV_IMPORT_TASK_ID, name="CSV ingestion", config=config)
        self._service = service
        self._counter_lock = threading.Lock()
        self._tenants_processed = 0
        self._rows_imported = 0
        self._tenant_errors = 0

    def execute_task(self) -> CSVImportRunSummary:
        summary = self._service.run(progress=lambda progress: self.emit("progress", **progress))
        self._count(tenants=summary.processed, rows=summary.imported, errors=summary.errors)
        self.emit(
            "batch_completed",
            processed=summary.processed,
            imported=summary.imported,
            updated=summary.updated,
            errors=summary.errors,
        )
        return summary

    def trigger_tenant_import(self, tenant_id: uuid.UUID) -> TenantImportResult:
        """
        Import one tenant immediately, outside the cron loop.

        Raises ``LookupError`` for an unknown tenant.
        """

        logger.info("Manual tenant import requested task_id=%s tenant_id=%s", self.task_id, tenant_id)
        result = self._service.import_tenant_by_id(tenant_id)
        self._count(tenants=1, rows=result.imported, errors=0 if result.success else 1)
        return result

    def get_csv_import_metrics(self) -> CSVImportMetrics:
        metrics = self.get_metrics()
        with self._counter_lock:
            processed = self._tenants_processed
            return CSVImportMetrics(
                total_tenants_processed=processed,
                total_rows_imported=self._rows_imported,
                total_errors=self._tenant_errors,
                average_run_time_seconds=metrics.average_run_time_seconds,
                error_rate=(self._tenant_errors / processed) if processed else 0.0,
            )

    def _count(self, *, tenants: int, rows: int, errors: int) -> None:
        with self._counter_lock:
            self._tenants_processed += tenants
            self._rows_imported += rows
            self._tenant_errors += errors


# ---------------------------------------------------------------------------
# Import promotion
# ---------------------------------------------------------------------------


class ImportProcessingTask(ScheduledTask):
    def __init__(self, *, service: ImportProcessingService, config: TaskConfig) -> None:
        super().__init__(task_id=IMPORT_PROCESSING_TASK_ID, name="Import processing", config=config)
        self._service = service

    def execute_task(self) -> ImportProcessingSummary:
        summary = self._service.run()
        logger.info(
            "Import processing run finished claimed=%s processed=%s degraded=%s failed=%s",
            summary.claimed,
            summary.processed,
            summary.degraded,
            summary.failed,
        )
        return summary


# ---------------------------------------------------------------------------
# Batch enrichment
# ---------------------------------------------------------------------------


class BatchSubmissionTask(ScheduledTask):
    def __init__(self, *, service: BatchEnrichmentService, config: TaskConfig) -> None:
        super().__init__(task_id=BATCH_SUBMISSION_TASK_ID, name="Batch submission", config=config)
        self._service = service

    def execute_task(self) -> BatchSubmissionSummary:
        return self._service.submit_batch()


class BatchPollingTask(ScheduledTask):
    def __init__(self, *, service: BatchEnrichmentService, config: TaskConfig) -> None:
        super().__init__(task_id=BATCH_POLLING_TASK_ID, name="Batch polling", config=config)
        self._service = service

    def execute_task(self) -> BatchPollSummary:
        summary = self._service.poll_batches()
        if summary.polled:
            logger.info(
                "Batch polling run finished polled=%s completed=%s failed=%s pending=%s errors=%s",
                summary.polled,
                summary.completed,
                summary.failed,
                summary.pending,
                summary.errors,
            )
        return summary


class BatchReconciliationTask(ScheduledTask):
    def __init__(self, *, service: BatchEnrichmentService, config: TaskConfig) -> None:
        super().__init__(task_id=BATCH_RECONCILIATION_TASK_ID, name="Batch reconciliation", config=config)
        self._service = service

    def execute_task(self) -> ReconciliationSummary:
        return self._service.reconcile_batches()


# ---------------------------------------------------------------------------
# Manager factory
# ---------------------------------------------------------------------------


def _task_config(scheduler: SchedulerSettings, *, interval: str, timeout_seconds: float) -> TaskConfig:
    return TaskConfig(
        interval=interval,
        enabled=scheduler.enabled,
        timeout_seconds=timeout_seconds,
        max_retries=scheduler.max_retries,
        retry_delay_seconds=scheduler.retry_delay_seconds,
    )


def build_tasks(
    *,
    csv_import_service: CSVImportService | None = None,
    import_processing_service: ImportProcessingService | None = None,
    batch_enrichment_service: BatchEnrichmentService | None = None,
) -> list[ScheduledTask]:
    """
    Build every pipeline task from env settings. Services default to the
    cached process-wide instances.
    """

    scheduler = get_scheduler_settings()
    csv_settings = get_csv_import_settings()
    processing_settings = get_import_processing_settings()
    batch_settings = get_batch_enrichment_settings()

    csv_import_service = csv_import_service or get_csv_import_service()
    import_processing_service = import_processing_service or get_import_processing_service()
    batch_enrichment_service = batch_enrichment_service or get_batch_enrichment_service()

    return [
        CsvImportTask(
            service=csv_import_service,
            config=_task_config(
                scheduler,
                interval=csv_settings.interval,
                timeout_seconds=csv_settings.timeout_seconds,
            ),
        ),
        ImportProcessingTask(
            service=import_processing_service,
            config=_task_config(
                scheduler,
                interval=processing_settings.interval,
                timeout_seconds=processing_settings.timeout_seconds,
            ),
        ),
        BatchSubmissionTask(
            service=batch_enrichment_service,
            config=_task_config(
                scheduler,
                interval=batch_settings.submission_interval,
                timeout_seconds=batch_settings.timeout_seconds,
            ),
        ),
        BatchPollingTask(
            service=batch_enrichment_service,
            config=_task_config(
                scheduler,
                interval=batch_settings.polling_interval,
                timeout_seconds=batch_settings.timeout_seconds,
            ),
        ),
        BatchReconciliationTask(
            service=batch_enrichment_service,
            config=_task_config(
                scheduler,
                interval=batch_settings.reconciliation_interval,
                timeout_seconds=batch_settings.timeout_seconds,
            ),
        ),
    ]


def build_scheduler_manager(
    *,
    task_ids: tuple[str, ...] | None = None,
    tasks: list[ScheduledTask] | None = None,
) -> SchedulerManager:
    """
    Return a manager with the pipeline tasks registered but not started.

    ``task_ids`` limits registration to a subset, which is how the standalone
    runner hosts a single task per process.
    """

    manager = SchedulerManager(enabled=get_scheduler_settings().enabled)
    for task in tasks if tasks is not None else build_tasks():
        if task_ids is not None and task.task_id not in task_ids:
            continue
        manager.register(task, critical=task.task_id in (CSV_IMPORT_TASK_ID, BATCH_POLLING_TASK_ID))
    return manager
