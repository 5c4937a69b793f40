from __future__ import annotations

import unittest
from datetime import datetime, timedelta

from vendorflow_testkit import FlowTestCase

from vendorflow.extensions import db
from vendorflow.models import JobRun, Order, VendorLedgerEntry
from vendorflow.services.notification_dispatcher import dispatch_stage


class VendorLedgerApiTestCase(FlowTestCase):
    def setUp(self):
        super().setUp()
        customer = self.make_user("customer")
        vendor, vendor_user = self.make_vendor(commission="10")
        self.vendor_id = int(vendor.id)
        self.make_order(
            customer,
            status="delivered",
            vendor=vendor,
            delivered_at=datetime.utcnow() - timedelta(days=5),
        )
        self.make_order(customer, status="shipped", vendor=vendor)
        self.admin_headers = self.auth(self.make_user("admin"))
        self.vendor_headers = self.auth(vendor_user)
        self.customer_headers = self.auth(customer)

    def _pay(self, body: dict):
        return self.client.put(f"/api/vendor-ledger/admin/{self.vendor_id}", json=body, headers=self.admin_headers)

    def test_admin_overview_totals(self):
        r = self.client.get("/api/vendor-ledger/admin", headers=self.admin_headers)
        self.assertEqual(r.status_code, 200)
        data = r.get_json()
        self.assertEqual(data["totals"]["earned"], 882.0)
        self.assertEqual(data["totals"]["pending"], 882.0)
        self.assertEqual(data["totals"]["balance"], 882.0)
        self.assertEqual(self.client.get("/api/vendor-ledger/admin", headers=self.vendor_headers).status_code, 403)

    def test_recorded_payments_accumulate(self):
        r = self._pay({"amount": "500", "notes": "NEFT 1"})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.get_json()["entry"]["paid"], 500.0)

        r = self._pay({"paid": 600, "notes": "NEFT 2"})
        data = r.get_json()
        self.assertEqual(data["entry"]["paid"], 1100.0)
        self.assertEqual(data["ledger"]["balance"], -218.0)
        self.assertEqual(data["ledger"]["notes"], "NEFT 2")
        self.assertEqual(VendorLedgerEntry.query.count(), 1)

    def test_negative_or_garbage_amount_is_rejected(self):
        self.assertEqual(self._pay({"amount": -1}).status_code, 400)
        self.assertEqual(self._pay({"amount": "ten"}).status_code, 400)
        self.assertEqual(self._pay({"amount": "NaN"}).status_code, 400)
        self.assertEqual(self.client.put("/api/vendor-ledger/admin/999", json={"amount": 1}, headers=self.admin_headers).status_code, 404)

    def test_vendor_self_view_has_rows(self):
        r = self.client.get("/api/vendor-ledger/vendor", headers=self.vendor_headers)
        self.assertEqual(r.status_code, 200)
        ledger = r.get_json()["ledger"]
        self.assertEqual(ledger["earned_orders"], 1)
        self.assertEqual(len(ledger["orders"]), 2)
        self.assertEqual(self.client.get("/api/vendor-ledger/vendor", headers=self.customer_headers).status_code, 403)

    def test_admin_detail(self):
        r = self.client.get(f"/api/vendor-ledger/admin/{self.vendor_id}", headers=self.admin_headers)
        self.assertEqual(r.get_json()["ledger"]["vendor_id"], self.vendor_id)
        self.assertEqual(self.client.get("/api/vendor-ledger/admin/999", headers=self.admin_headers).status_code, 404)


class CustomerOrdersApiTestCase(FlowTestCase):
    def setUp(self):
        super().setUp()
        customer = self.make_user("customer")
        other = self.make_user("customer")
        vendor, _ = self.make_vendor()
        self.delivered_id = int(
            self.make_order(
                customer,
                status="delivered",
                vendor=vendor,
                awb_number="M00000021",
                dtdc_status="delivered",
                delivered_at=datetime.utcnow(),
            ).id
        )
        self.others_id = int(self.make_order(other, status="pending").id)
        self.headers = self.auth(customer)

    def test_customer_sees_only_own_orders(self):
        r = self.client.get("/api/orders", headers=self.headers)
        self.assertEqual([o["id"] for o in r.get_json()["items"]], [self.delivered_id])
        self.assertEqual(self.client.get(f"/api/orders/{self.others_id}", headers=self.headers).status_code, 404)
        self.assertEqual(self.client.get("/api/orders").status_code, 401)

    def test_tracking_returns_cached_snapshot(self):
        r = self.client.get(f"/api/orders/{self.delivered_id}/tracking", headers=self.headers)
        data = r.get_json()
        self.assertEqual(data["awb_number"], "M00000021")
        self.assertEqual(data["dtdc_status"], "delivered")
        self.assertEqual(data["tracking"], {})

    def test_return_request(self):
        r = self.client.post(
            f"/api/orders/{self.delivered_id}/return",
            json={"reason": "Colour differs", "attachments": ["https://img/1.jpg"]},
            headers=self.headers,
        )
        self.assertEqual(r.status_code, 201)
        order = r.get_json()["order"]
        self.assertEqual(order["status"], "return_requested")
        self.assertEqual(order["return_request"]["reason"], "Colour differs")

        r = self.client.post(f"/api/orders/{self.delivered_id}/return", json={"reason": "again"}, headers=self.headers)
        self.assertEqual(r.status_code, 409)

        r = self.client.post(f"/api/orders/{self.others_id}/return", json={"reason": "x"}, headers=self.headers)
        self.assertEqual(r.status_code, 404)


class NotificationsApiTestCase(FlowTestCase):
    def setUp(self):
        super().setUp()
        customer = self.make_user("customer")
        vendor, _ = self.make_vendor()
        order = self.make_order(customer, status="shipped", vendor=vendor)
        dispatch_stage(order, "status:shipped")
        dispatch_stage(order, "status:delivered")
        self.headers = self.auth(customer)
        self.other_headers = self.auth(self.make_user("customer"))

    def test_inbox_and_read_flags(self):
        r = self.client.get("/api/notifications", headers=self.headers)
        data = r.get_json()
        self.assertEqual(len(data["items"]), 2)
        self.assertEqual(data["unread_count"], 2)

        first_id = data["items"][0]["id"]
        r = self.client.put(f"/api/notifications/{first_id}/read", headers=self.headers)
        self.assertTrue(r.get_json()["item"]["is_read"])
        self.assertEqual(self.client.post(f"/api/notifications/{first_id}/read", headers=self.other_headers).status_code, 404)

        r = self.client.get("/api/notifications?unread=1", headers=self.headers)
        self.assertEqual(len(r.get_json()["items"]), 1)

        r = self.client.post("/api/notifications/mark-all-read", headers=self.headers)
        self.assertEqual(r.get_json()["updated"], 1)
        self.assertEqual(self.client.get("/api/notifications", headers=self.headers).get_json()["unread_count"], 0)

    def test_requires_login(self):
        self.assertEqual(self.client.get("/api/notifications").status_code, 401)


class AdminJobsApiTestCase(FlowTestCase):
    def setUp(self):
        super().setUp()
        customer = self.make_user("customer")
        vendor, _ = self.make_vendor()
        self.shipped_id = int(
            self.make_order(customer, status="shipped", vendor=vendor, awb_number="M00000031").id
        )
        self.admin_headers = self.auth(self.make_user("admin"))
        self.customer_headers = self.auth(customer)

    def test_manual_run_records_job_run(self):
        r = self.client.post(
            "/api/admin/jobs/refund_worker/run",
            json={"limit": 10},
            headers=self.admin_headers,
        )
        self.assertEqual(r.status_code, 200)
        data = r.get_json()
        self.assertTrue(data["ok"])
        self.assertEqual(data["job_name"], "refund_worker")
        self.assertEqual(JobRun.query.filter_by(job_name="refund_worker").count(), 1)

        r = self.client.get("/api/admin/jobs/runs?job_name=refund_worker", headers=self.admin_headers)
        self.assertEqual(len(r.get_json()["items"]), 1)

        summary = self.client.get("/api/admin/jobs/summary", headers=self.admin_headers).get_json()
        self.assertTrue(summary["jobs"]["refund_worker"]["last_ok"])
        self.assertIsNone(summary["jobs"]["stale_claim_runner"]["last_run_at"])
        self.assertTrue(summary["flags"]["jobs.refund_worker_enabled"])

    def test_reconciler_run_through_api(self):
        r = self.client.post("/api/admin/jobs/shipment_reconciler/run", json={}, headers=self.admin_headers)
        self.assertEqual(r.get_json()["result"]["processed"], 1)
        self.assertEqual(db.session.get(Order, self.shipped_id).dtdc_status, "in_transit")

    def test_unknown_job_and_auth(self):
        self.assertEqual(self.client.post("/api/admin/jobs/nope/run", headers=self.admin_headers).status_code, 404)
        self.assertEqual(self.client.post("/api/admin/jobs/refund_worker/run", headers=self.customer_headers).status_code, 403)


if __name__ == "__main__":
    unittest.main()
