from __future__ import annotations

import unittest
import uuid

from vendorflow_testkit import FlowTestCase


class RequestIdHeadersTestCase(FlowTestCase):
    def test_generates_request_id_when_missing(self):
        res = self.client.get("/api/health")
        self.assertEqual(res.status_code, 200)
        rid = (res.headers.get("X-Request-ID") or "").strip()
        self.assertTrue(rid)
        uuid.UUID(rid)

    def test_echoes_request_id_when_provided(self):
        incoming = "rid-test-123"
        res = self.client.get("/api/health", headers={"X-Request-ID": incoming})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.headers.get("X-Request-ID"), incoming)

    def test_error_payload_includes_trace_id(self):
        headers = self.auth(self.make_user("admin"))
        res = self.client.put("/api/admin/orders/999/status", json={"status": "shipped"}, headers=headers)
        self.assertEqual(res.status_code, 400)
        body = res.get_json(force=True)
        self.assertIsInstance(body, dict)
        self.assertIn("trace_id", body)
        self.assertEqual((body.get("trace_id") or "").strip(), (res.headers.get("X-Request-ID") or "").strip())

    def test_health_reports_db_and_integrations(self):
        body = self.client.get("/api/health").get_json()
        self.assertEqual(body["db"], "ok")
        self.assertEqual(body["integrations"]["carrier"]["status"], "configured")
        self.assertEqual(body["integrations"]["payments"]["provider"], "mock")
        self.assertIn("alembic_head", self.client.get("/api/version").get_json())


if __name__ == "__main__":
    unittest.main()
