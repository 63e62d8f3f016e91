"""
Asynchronous job workflow: submit -> background round trip -> poll.

JobOrchestrator writes the pending record and schedules the worker without
awaiting it. BackgroundWorker performs the round trip and writes exactly one
terminal record (complete or failed). Per job there are exactly two writes,
in that order, so a poller sees ``pending`` then a terminal state, never the
reverse.
"""
import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set

from .config import Settings
from .errors import ABGServiceError, InvalidRequestError, NotFoundError, StoreWriteError
from .gemini_client import CompletionClient
from .job_store import ANALYSIS_STORE, OCR_STORE, JobStore
from .models import JobKind, JobRecord, JobStatus
from .pipeline import PreparedInput, execute, prepare
from .structured_logging import StructuredLogger

logger = StructuredLogger(__name__)

STORE_BY_KIND = {
    JobKind.ANALYSIS: ANALYSIS_STORE,
    JobKind.OCR: OCR_STORE,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def describe_error(error: Exception) -> str:
    """Human-readable error string for a failed job record."""
    if isinstance(error, ABGServiceError):
        return error.message
    return f"Internal error: {error}" if str(error) else f"Internal error: {type(error).__name__}"


class BackgroundWorker:
    """Runs one job to a terminal state. Never raises."""

    def __init__(self, stores: Dict[str, JobStore], settings: Settings):
        self.stores = stores
        self.settings = settings

    async def run(
        self,
        job_id: str,
        prepared: PreparedInput,
        client: CompletionClient,
        created_at: Optional[str] = None,
    ) -> None:
        store = self.stores[STORE_BY_KIND[prepared.kind]]
        log = logger.bind(job_id=job_id, kind=prepared.kind.value)
        log.info("Job started", mode=prepared.mode)

        try:
            data = await execute(prepared, client, self.settings)
            record = JobRecord(
                status=JobStatus.COMPLETE,
                data=data,
                created_at=created_at,
                completed_at=_now(),
            )
            log.info("Job complete")
        except Exception as e:
            record = JobRecord(
                status=JobStatus.FAILED,
                error=describe_error(e),
                created_at=created_at,
                completed_at=_now(),
            )
            log.error("Job failed", error=record.error)

        try:
            await store.set(job_id, record.model_dump(by_alias=True, exclude_none=True))
        except Exception as e:
            # Nothing left to report to; the job stays pending in the store
            log.error("Failed to write terminal job status", error=str(e))


class JobOrchestrator:
    """Public submission and status surface for asynchronous jobs."""

    def __init__(
        self,
        stores: Dict[str, JobStore],
        settings: Settings,
        worker: Optional[BackgroundWorker] = None,
    ):
        self.stores = stores
        self.settings = settings
        self.worker = worker or BackgroundWorker(stores, settings)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    async def submit(
        self,
        kind: JobKind,
        payload: Any,
        client_provider: Callable[[], CompletionClient],
    ) -> str:
        """Validate, write the pending record, schedule the worker, return the id.

        ``client_provider`` is resolved after validation and before the
        pending write, so a missing API key never leaves a job behind.

        The worker runs as an asyncio task on the running loop, tracked until
        it finishes so ``active_jobs`` and shutdown see it.

        Raises:
            ValidationError: required input fields are absent.
            ConfigurationError: the completion client cannot be built.
            StoreWriteError: the pending record could not be written.
        """
        prepared = prepare(kind, payload, self.settings)
        client = client_provider()
        job_id = str(uuid.uuid4())
        created_at = _now()
        record = JobRecord(status=JobStatus.PENDING, data=prepared.to_record_data(), created_at=created_at)

        store = self.stores[STORE_BY_KIND[kind]]
        try:
            await store.set(job_id, record.model_dump(by_alias=True, exclude_none=True))
        except StoreWriteError:
            raise
        except Exception as e:
            logger.error("Failed to write pending job", job_id=job_id, error=str(e))
            raise StoreWriteError(f"Failed to start {kind.value} job.")

        task = asyncio.create_task(self.worker.run(job_id, prepared, client, created_at))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info("Job submitted", job_id=job_id, kind=kind.value, store=store.name)
        return job_id

    async def get_status(self, job_id: Optional[str]) -> Dict[str, Any]:
        """Return the stored record, searching every job store.

        Raises:
            InvalidRequestError: no job id given.
            NotFoundError: no store holds the id.
        """
        if not job_id or not job_id.strip():
            raise InvalidRequestError("Job ID is required.")
        job_id = job_id.strip()
        for store in self.stores.values():
            record = await store.get(job_id)
            if record is not None:
                return record
        raise NotFoundError("Job not found.")

    async def wait_for_pending(self) -> None:
        """Wait for spawned worker tasks (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
