from __future__ import annotations

import unittest

from vendorflow_testkit import FlowTestCase


class ApiErrorContractTestCase(FlowTestCase):
    def test_unknown_api_route_returns_json_error_shape(self):
        res = self.client.get("/api/does-not-exist")
        self.assertEqual(res.status_code, 404)
        self.assertTrue(res.is_json)
        body = res.get_json(force=True) or {}
        self.assertFalse(bool(body.get("ok", True)))
        self.assertTrue(str(body.get("error") or "").strip())
        self.assertTrue(str(body.get("message") or "").strip())
        self.assertEqual(int(body.get("status") or 0), 404)
        self.assertTrue(str(body.get("trace_id") or "").strip())

    def test_order_flow_errors_share_the_shape(self):
        customer = self.make_user("customer")
        headers = self.auth(self.make_user("admin"))
        order_id = int(self.make_order(customer, status="delivered").id)

        res = self.client.put(f"/api/admin/orders/{order_id}/status", json={"status": "cancelled"}, headers=headers)
        self.assertEqual(res.status_code, 409)
        body = res.get_json(force=True) or {}
        self.assertEqual(set(body), {"ok", "error", "message", "status", "trace_id"})
        self.assertEqual(body["error"], "INVALID_TRANSITION")
        self.assertEqual(body["status"], 409)

        res = self.client.post("/api/vendor/orders/424242/accept", headers=headers)
        self.assertEqual(res.status_code, 403)

        res = self.client.get("/api/admin/orders/424242", headers=headers)
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["error"], "ORDER_NOT_FOUND")

    def test_garbage_token_is_unauthorized(self):
        res = self.client.get("/api/orders", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["message"], "Unauthorized")


if __name__ == "__main__":
    unittest.main()
