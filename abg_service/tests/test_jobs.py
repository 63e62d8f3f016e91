"""
Tests for the asynchronous job workflow (orchestrator + background worker).
"""
import asyncio
import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from abg_service.config import Settings
from abg_service.errors import (
    ConfigurationError,
    InvalidRequestError,
    NotFoundError,
    StoreWriteError,
    UpstreamError,
    ValidationError,
)
from abg_service.extraction import ANALYSIS_KEYS
from abg_service.job_store import ANALYSIS_STORE, OCR_STORE, InMemoryJobStore, create_job_stores
from abg_service.jobs import BackgroundWorker, JobOrchestrator, describe_error
from abg_service.models import JobKind
from abg_service.pipeline import MISSING_REQUIRED_MESSAGE
from conftest import FakeCompletionClient, make_image_b64

ANALYSIS_PAYLOAD = {"values": {"ph": 7.15, "pco2": 8.9}, "sampleType": "arterial"}
ANALYSIS_TEXT = '{"keyFindings": "Acute respiratory acidosis.", "differentials": "- **COPD exacerbation**"}'


class FailingStore(InMemoryJobStore):
    """Accepts the first ``ok_writes`` writes, then fails."""

    def __init__(self, name, ok_writes=0):
        super().__init__(name)
        self.ok_writes = ok_writes

    async def set(self, job_id, record):
        if self.ok_writes <= 0:
            raise StoreWriteError("disk full")
        self.ok_writes -= 1
        await super().set(job_id, record)


class TestJobOrchestrator(unittest.TestCase):

    def setUp(self):
        self.settings = Settings(gemini_api_key="test-key")
        self.stores = create_job_stores("memory")
        self.orchestrator = JobOrchestrator(self.stores, self.settings)

    def test_submit_returns_before_completion(self):
        client = FakeCompletionClient(ANALYSIS_TEXT, delay=0.2)

        async def scenario():
            job_id = await self.orchestrator.submit(JobKind.ANALYSIS, ANALYSIS_PAYLOAD, lambda: client)
            pending = await self.orchestrator.get_status(job_id)
            active = self.orchestrator.active_jobs
            await self.orchestrator.wait_for_pending()
            final = await self.orchestrator.get_status(job_id)
            return pending, active, final

        pending, active, final = asyncio.run(scenario())
        self.assertEqual(pending["status"], "pending")
        self.assertEqual(pending["data"]["values"], {"ph": 7.15, "pco2": 8.9})
        self.assertNotIn("error", pending)
        self.assertEqual(active, 1)

        self.assertEqual(final["status"], "complete")
        self.assertEqual(list(final["data"]), list(ANALYSIS_KEYS))
        self.assertEqual(final["data"]["keyFindings"], "Acute respiratory acidosis.")
        self.assertIn("completedAt", final)
        self.assertEqual(final["createdAt"], pending["createdAt"])
        self.assertEqual(self.orchestrator.active_jobs, 0)

    def test_upstream_failure_recorded(self):
        client = FakeCompletionClient(UpstreamError(503, "overloaded"))

        async def scenario():
            job_id = await self.orchestrator.submit(JobKind.ANALYSIS, ANALYSIS_PAYLOAD, lambda: client)
            await self.orchestrator.wait_for_pending()
            return await self.orchestrator.get_status(job_id)

        record = asyncio.run(scenario())
        self.assertEqual(record["status"], "failed")
        self.assertEqual(record["error"], "Gemini API error (503): overloaded")
        self.assertNotIn("data", record)

    def test_unexpected_exception_recorded(self):
        client = FakeCompletionClient(RuntimeError("boom"))

        async def scenario():
            job_id = await self.orchestrator.submit(JobKind.ANALYSIS, ANALYSIS_PAYLOAD, lambda: client)
            await self.orchestrator.wait_for_pending()
            return await self.orchestrator.get_status(job_id)

        record = asyncio.run(scenario())
        self.assertEqual(record["status"], "failed")
        self.assertEqual(record["error"], "Internal error: boom")

    def test_ocr_job_uses_ocr_store(self):
        client = FakeCompletionClient('{"pco2": "8.9 (+)"}')

        async def scenario():
            job_id = await self.orchestrator.submit(JobKind.OCR, {"image": make_image_b64()}, lambda: client)
            await self.orchestrator.wait_for_pending()
            return job_id, await self.orchestrator.get_status(job_id)

        job_id, record = asyncio.run(scenario())
        self.assertEqual(record["status"], "complete")
        self.assertEqual(record["data"]["pco2"], {"value": 8.9, "error": None, "warning": None})
        self.assertEqual(len(self.stores[OCR_STORE]), 1)
        self.assertEqual(len(self.stores[ANALYSIS_STORE]), 0)

    def test_validation_error_writes_nothing(self):
        client = FakeCompletionClient(ANALYSIS_TEXT)
        with self.assertRaises(ValidationError) as context:
            asyncio.run(self.orchestrator.submit(JobKind.ANALYSIS, {"values": {"ph": 7.1}}, lambda: client))
        self.assertEqual(context.exception.message, MISSING_REQUIRED_MESSAGE)
        self.assertEqual(len(self.stores[ANALYSIS_STORE]), 0)
        self.assertEqual(client.calls, 0)

    def test_missing_api_key_writes_nothing(self):
        def no_client():
            raise ConfigurationError("API key not configured.")

        with self.assertRaises(ConfigurationError):
            asyncio.run(self.orchestrator.submit(JobKind.ANALYSIS, ANALYSIS_PAYLOAD, no_client))
        self.assertEqual(len(self.stores[ANALYSIS_STORE]), 0)

    def test_pending_write_failure_raises(self):
        stores = {ANALYSIS_STORE: FailingStore(ANALYSIS_STORE), OCR_STORE: InMemoryJobStore(OCR_STORE)}
        orchestrator = JobOrchestrator(stores, self.settings)
        client = FakeCompletionClient(ANALYSIS_TEXT)
        with self.assertRaises(StoreWriteError):
            asyncio.run(orchestrator.submit(JobKind.ANALYSIS, ANALYSIS_PAYLOAD, lambda: client))
        self.assertEqual(client.calls, 0)

    def test_get_status_errors(self):
        for missing in (None, "", "   "):
            with self.assertRaises(InvalidRequestError) as context:
                asyncio.run(self.orchestrator.get_status(missing))
            self.assertEqual(context.exception.status_code, 400)
        with self.assertRaises(NotFoundError) as context:
            asyncio.run(self.orchestrator.get_status("no-such-job"))
        self.assertEqual(context.exception.message, "Job not found.")


class TestBackgroundWorker(unittest.TestCase):

    def test_terminal_write_failure_does_not_raise(self):
        settings = Settings(gemini_api_key="test-key")
        store = FailingStore(ANALYSIS_STORE, ok_writes=1)
        stores = {ANALYSIS_STORE: store, OCR_STORE: InMemoryJobStore(OCR_STORE)}
        orchestrator = JobOrchestrator(stores, settings)
        client = FakeCompletionClient(ANALYSIS_TEXT)

        async def scenario():
            job_id = await orchestrator.submit(JobKind.ANALYSIS, ANALYSIS_PAYLOAD, lambda: client)
            await orchestrator.wait_for_pending()
            return await orchestrator.get_status(job_id)

        record = asyncio.run(scenario())
        # Terminal write was lost; the record stays pending
        self.assertEqual(record["status"], "pending")
        self.assertEqual(client.calls, 1)

    def test_worker_is_reusable_directly(self):
        settings = Settings(gemini_api_key="test-key")
        stores = create_job_stores("memory")
        worker = BackgroundWorker(stores, settings)
        orchestrator = JobOrchestrator(stores, settings, worker=worker)
        self.assertIs(orchestrator.worker, worker)


class TestDescribeError(unittest.TestCase):

    def test_service_error_message(self):
        self.assertEqual(describe_error(NotFoundError("Job not found.")), "Job not found.")

    def test_bare_exception(self):
        self.assertEqual(describe_error(KeyError()), "Internal error: KeyError")


if __name__ == "__main__":
    unittest.main()
