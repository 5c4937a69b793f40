from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from vendorflow_testkit import FlowTestCase

from vendorflow.extensions import db
from vendorflow.models import Order, PlatformEvent


class AdminOrdersApiTestCase(FlowTestCase):
    def setUp(self):
        super().setUp()
        customer = self.make_user("customer")
        vendor, vendor_user = self.make_vendor()
        self.vendor_id = int(vendor.id)
        self.pending_id = int(self.make_order(customer, status="pending").id)
        self.review_id = int(self.make_order(customer, status="admin_review_required").id)
        self.shipped_id = int(self.make_order(customer, status="shipped", vendor=vendor, awb_number="M00000009").id)
        self.returning_id = int(
            self.make_order(
                customer,
                status="return_requested",
                vendor=vendor,
                awb_number="M00000011",
                return_type="requested",
                return_reason="Too small",
            ).id
        )
        self.admin_headers = self.auth(self.make_user("admin"))
        self.customer_headers = self.auth(customer)
        self.vendor_headers = self.auth(vendor_user)

    def _put(self, path: str, body: dict):
        return self.client.put(path, json=body, headers=self.admin_headers)

    def test_admin_only(self):
        self.assertEqual(self.client.get("/api/admin/orders").status_code, 401)
        self.assertEqual(self.client.get("/api/admin/orders", headers=self.vendor_headers).status_code, 403)
        self.assertEqual(self.client.get("/api/admin/orders", headers=self.customer_headers).status_code, 403)

    def test_list_filters(self):
        r = self.client.get("/api/admin/orders", headers=self.admin_headers)
        self.assertEqual(r.get_json()["total"], 4)

        r = self.client.get("/api/admin/orders?unassigned=1", headers=self.admin_headers)
        self.assertEqual({o["id"] for o in r.get_json()["items"]}, {self.pending_id, self.review_id})

        r = self.client.get(f"/api/admin/orders?vendor_id={self.vendor_id}&status=shipped", headers=self.admin_headers)
        self.assertEqual([o["id"] for o in r.get_json()["items"]], [self.shipped_id])

        r = self.client.get("/api/admin/orders?vendor_id=abc", headers=self.admin_headers)
        self.assertEqual(r.status_code, 400)

    def test_stats_overview(self):
        data = self.client.get("/api/admin/orders/stats/overview", headers=self.admin_headers).get_json()
        self.assertEqual(data["total_orders"], 4)
        self.assertEqual(data["unassigned"], 2)
        self.assertEqual(data["admin_review"], 1)
        self.assertEqual(data["counts"]["shipped"], 1)

    def test_detail_includes_transitions(self):
        self._put(f"/api/admin/orders/{self.pending_id}/status", {"status": "confirmed"})
        r = self.client.get(f"/api/admin/orders/{self.pending_id}", headers=self.admin_headers)
        data = r.get_json()
        self.assertEqual(data["order"]["status"], "confirmed")
        self.assertEqual([t["to_status"] for t in data["transitions"]], ["confirmed"])
        self.assertIsNone(data["vendor"])

    def test_status_endpoint_limits_targets(self):
        r = self._put(f"/api/admin/orders/{self.shipped_id}/status", {"status": "delivered"})
        self.assertEqual(r.status_code, 400)
        r = self._put(f"/api/admin/orders/{self.shipped_id}/status", {"status": "cancelled"})
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.get_json()["error"], "INVALID_TRANSITION")

    def test_assign_vendor_from_review(self):
        r = self._put(f"/api/admin/orders/{self.review_id}/assign-vendor", {"vendor_id": self.vendor_id})
        self.assertEqual(r.status_code, 200)
        order = r.get_json()["order"]
        self.assertEqual(order["status"], "processing")
        self.assertEqual(order["vendor_id"], self.vendor_id)
        self.assertEqual(order["assignment_mode"], "assigned-by-admin")

        r = self._put(f"/api/admin/orders/{self.pending_id}/assign-vendor", {"vendor_id": "x"})
        self.assertEqual(r.status_code, 400)

    def test_payment_status_update_is_audited(self):
        r = self._put(
            f"/api/admin/orders/{self.pending_id}/payment-status",
            {"payment_status": "failed", "payment_gateway": "razorpay"},
        )
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.get_json()["order"]["payment_status"], "failed")
        self.assertEqual(PlatformEvent.query.filter_by(event_type="payment_status_updated").count(), 1)
        order = db.session.get(Order, self.pending_id)
        self.assertEqual(order.payment_meta()["events"][-1]["type"], "admin_payment_status")

        r = self._put(f"/api/admin/orders/{self.pending_id}/payment-status", {"payment_status": "bogus"})
        self.assertEqual(r.status_code, 400)

    def test_cancel_via_delete(self):
        r = self.client.delete(f"/api/admin/orders/{self.pending_id}", headers=self.admin_headers)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.get_json()["order"]["status"], "cancelled")
        r = self.client.delete(f"/api/admin/orders/{self.shipped_id}", headers=self.admin_headers)
        self.assertEqual(r.status_code, 409)

    def test_return_review(self):
        r = self.client.get("/api/admin/orders/returns?return_type=requested", headers=self.admin_headers)
        self.assertEqual([o["id"] for o in r.get_json()["items"]], [self.returning_id])

        r = self.client.post(
            f"/api/admin/orders/{self.returning_id}/return/deny",
            json={"admin_notes": ""},
            headers=self.admin_headers,
        )
        self.assertEqual(r.status_code, 400)

        r = self.client.post(
            f"/api/admin/orders/{self.returning_id}/return/accept",
            json={"admin_notes": "approved"},
            headers=self.admin_headers,
        )
        self.assertEqual(r.status_code, 200)
        data = r.get_json()
        self.assertEqual(data["order"]["status"], "return_accepted")
        self.assertEqual(data["order"]["refund_status"], "pending")
        self.assertTrue(data["pickup"]["created"])

        r = self._put(f"/api/admin/orders/{self.returning_id}/return-awb", {"awb_number": "R99999999X"})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.get_json()["order"]["return_awb_number"], "R99999999X")

    def test_awb_override_and_live_tracking(self):
        r = self._put(f"/api/admin/orders/{self.shipped_id}/awb", {"awb_number": "no"})
        self.assertEqual(r.status_code, 400)
        r = self._put(f"/api/admin/orders/{self.shipped_id}/awb", {"awb_number": "d00000123"})
        self.assertEqual(r.get_json()["order"]["awb_number"], "D00000123")

        with patch.dict(os.environ, {"MOCK_CARRIER_STATUS": "Out for delivery"}):
            r = self.client.post(f"/api/admin/orders/{self.shipped_id}/track", headers=self.admin_headers)
        self.assertEqual(r.status_code, 200)
        data = r.get_json()
        self.assertEqual(data["tracking"]["mapped_status"], "out_for_delivery")
        self.assertEqual(data["order"]["dtdc_status"], "out_for_delivery")

        with patch.dict(os.environ, {"INTEGRATIONS_MODE": "disabled"}):
            r = self.client.post(f"/api/admin/orders/{self.shipped_id}/track", headers=self.admin_headers)
        self.assertEqual(r.status_code, 502)

        r = self.client.post(f"/api/admin/orders/{self.pending_id}/track", headers=self.admin_headers)
        self.assertEqual(r.status_code, 400)

    def test_refund_retry_requires_failed_refund(self):
        r = self.client.post(f"/api/admin/orders/{self.returning_id}/refund/retry", headers=self.admin_headers)
        self.assertEqual(r.status_code, 400)

        Order.query.filter_by(id=self.returning_id).update(
            {"status": "return_picked_up", "refund_status": "failed"}, synchronize_session=False
        )
        db.session.commit()
        r = self.client.post(f"/api/admin/orders/{self.returning_id}/refund/retry", headers=self.admin_headers)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.get_json()["order"]["refund_status"], "pending")


if __name__ == "__main__":
    unittest.main()
