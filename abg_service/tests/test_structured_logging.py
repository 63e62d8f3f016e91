import json
import logging
import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from abg_service.structured_logging import (
    JSONFormatter,
    StructuredLogger,
    _mask_ip,
    set_request_id,
)


class _Capture(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestStructuredLogger(unittest.TestCase):

    def setUp(self):
        self.handler = _Capture()
        self.underlying = logging.getLogger("abg_service.tests.logging")
        self.underlying.addHandler(self.handler)
        self.underlying.setLevel(logging.DEBUG)

    def tearDown(self):
        self.underlying.removeHandler(self.handler)

    def test_fields_rendered_as_json(self):
        set_request_id("req-42")
        StructuredLogger(self.underlying.name).info("Job submitted", job_id="abc", kind="ocr")

        entry = json.loads(JSONFormatter().format(self.handler.records[0]))
        self.assertEqual(entry["message"], "Job submitted")
        self.assertEqual(entry["service"], "abg-interpreter")
        self.assertEqual(entry["request_id"], "req-42")
        self.assertEqual(entry["data"], {"job_id": "abc", "kind": "ocr"})

    def test_bind_merges_context(self):
        log = StructuredLogger(self.underlying.name).bind(job_id="abc")
        log.error("Job failed", error="boom")
        self.assertEqual(self.handler.records[0].fields, {"job_id": "abc", "error": "boom"})
        self.assertEqual(self.handler.records[0].levelno, logging.ERROR)

    def test_exception_includes_traceback(self):
        try:
            raise RuntimeError("bad")
        except RuntimeError:
            StructuredLogger(self.underlying.name).exception("Unhandled")
        entry = json.loads(JSONFormatter().format(self.handler.records[0]))
        self.assertIn("RuntimeError: bad", entry["exception"])


class TestMaskIp(unittest.TestCase):

    def test_ipv4(self):
        self.assertEqual(_mask_ip("192.168.10.20"), "192.168.x.x")

    def test_ipv6(self):
        self.assertEqual(_mask_ip("2001:db8::1"), "2001:db8:x")

    def test_other(self):
        self.assertEqual(_mask_ip("testclient"), "x")


if __name__ == "__main__":
    unittest.main()
