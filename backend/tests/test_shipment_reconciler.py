from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from vendorflow_testkit import FlowTestCase

from vendorflow.extensions import db
from vendorflow.models import JobRun, Order
from vendorflow.jobs.shipment_reconciler import run_shipment_reconciliation
from vendorflow.services.errors import InvalidTransitionError, OrderValidationError
from vendorflow.services.shipment_service import mark_shipped, set_awb
from vendorflow.utils.carrier_status import is_pickup_text, map_carrier_status


class CarrierStatusMappingTestCase(unittest.TestCase):
    def test_vocabulary(self):
        cases = {
            "Out For Delivery": "out_for_delivery",
            "RTO Initiated": "rto",
            "Return to Origin": "rto",
            "Undelivered - address not found": "failed",
            "Not Delivered": "failed",
            "Delivered": "delivered",
            "Shipment Lost": "failed",
            "In Transit": "in_transit",
            "Arrived at hub": "in_transit",
            "In-Scan at origin": "in_transit",
            "Booked": "booked",
            "Pickup Scheduled": "booked",
            "Softdata Upload": "booked",
            "": "pending",
            None: "pending",
            "Something new": "pending",
        }
        for text, expected in cases.items():
            self.assertEqual(map_carrier_status(text), expected, text)

    def test_pickup_detection(self):
        self.assertTrue(is_pickup_text("Pickup Completed"))
        self.assertTrue(is_pickup_text("Shipment picked up from customer"))
        self.assertFalse(is_pickup_text("Pickup Scheduled"))


class ShipmentServiceTestCase(FlowTestCase):
    def setUp(self):
        super().setUp()
        self.customer = self.make_user("customer")
        self.vendor, self.vendor_user = self.make_vendor()

    def test_mark_shipped_books_forward_shipment(self):
        order = self.make_order(self.customer, status="processing", vendor=self.vendor)
        result = mark_shipped(order, self.vendor, actor=self.actor(self.vendor_user))
        self.assertEqual(order.status, "shipped")
        self.assertTrue(result["shipment"]["created"])
        self.assertEqual(order.awb_number, result["shipment"]["awb_number"])
        self.assertEqual(order.dtdc_status, "booked")

    def test_carrier_outage_keeps_the_shipped_status(self):
        order = self.make_order(self.customer, status="processing", vendor=self.vendor)
        with patch.dict(os.environ, {"MOCK_CARRIER_FORCE_FAIL": "1"}):
            result = mark_shipped(order, self.vendor, actor=self.actor(self.vendor_user))
        db.session.refresh(order)
        self.assertEqual(order.status, "shipped")
        self.assertIsNone(order.awb_number)
        self.assertFalse(result["shipment"]["created"])
        events = order.payment_meta().get("events") or []
        self.assertEqual(events[-1]["type"], "shipment_create_failed")

    def test_set_awb_validates_format_and_state(self):
        order = self.make_order(self.customer, status="processing", vendor=self.vendor)
        with self.assertRaises(OrderValidationError):
            set_awb(order, "bad awb")
        set_awb(order, "d12345678x")
        self.assertEqual(order.awb_number, "D12345678X")
        with self.assertRaises(InvalidTransitionError):
            set_awb(order, "R123456789", direction="return")


class ShipmentReconcilerTestCase(FlowTestCase):
    def setUp(self):
        super().setUp()
        self.customer = self.make_user("customer")
        self.vendor, self.vendor_user = self.make_vendor()

    def _run(self, carrier_status: str) -> dict:
        with patch.dict(os.environ, {"MOCK_CARRIER_STATUS": carrier_status}):
            return run_shipment_reconciliation(limit=50)

    def test_delivered_scan_delivers_shipped_order(self):
        order = self.make_order(self.customer, status="shipped", vendor=self.vendor, awb_number="M00000001")
        result = self._run("Delivered")
        self.assertTrue(result["ok"])
        self.assertEqual(result["processed"], 1)
        self.assertEqual(result["order_status_updated"], 1)
        db.session.refresh(order)
        self.assertEqual(order.status, "delivered")
        self.assertEqual(order.dtdc_status, "delivered")
        self.assertIsNotNone(order.delivered_at)
        self.assertEqual(JobRun.query.filter_by(job_name="shipment_reconciler").count(), 1)

    def test_in_transit_only_refreshes_snapshot(self):
        order = self.make_order(self.customer, status="shipped", vendor=self.vendor, awb_number="M00000002")
        result = self._run("In Transit")
        self.assertEqual(result["order_status_updated"], 0)
        self.assertEqual(result["updated"], 1)
        db.session.refresh(order)
        self.assertEqual(order.status, "shipped")
        self.assertEqual(order.dtdc_status, "in_transit")
        self.assertEqual(order.tracking_data().get("mapped_status"), "in_transit")
        self.assertIsNotNone(order.tracking_last_updated)

    def test_return_pickup_moves_to_picked_up(self):
        order = self.make_order(
            self.customer,
            status="return_accepted",
            vendor=self.vendor,
            awb_number="M00000003",
            return_awb_number="R00000003",
            return_type="accepted",
        )
        result = self._run("Pickup Completed")
        self.assertEqual(result["order_status_updated"], 1)
        db.session.refresh(order)
        self.assertEqual(order.status, "return_picked_up")
        self.assertEqual(order.tracking_data().get("leg"), "return")

    def test_return_pickup_wording_is_not_a_delivery(self):
        order = self.make_order(
            self.customer,
            status="return_accepted",
            vendor=self.vendor,
            awb_number="M00000004",
            return_awb_number="R00000004",
            return_type="accepted",
        )
        self._run("Pickup Scheduled")
        db.session.refresh(order)
        self.assertEqual(order.status, "return_accepted")

    def test_missing_awb_is_booked_on_next_pass(self):
        order = self.make_order(self.customer, status="shipped", vendor=self.vendor)
        result = self._run("Booked")
        self.assertEqual(result["shipments_created"], 1)
        db.session.refresh(order)
        self.assertTrue((order.awb_number or "").startswith("M"))

    def test_disabled_flag_short_circuits(self):
        self.make_order(self.customer, status="shipped", vendor=self.vendor, awb_number="M00000005")
        with patch.dict(os.environ, {"FEATURE_FLAGS_JSON": '{"jobs.shipment_reconciler_enabled": false}'}):
            result = run_shipment_reconciliation(limit=50)
        self.assertFalse(result["ok"])
        self.assertTrue(result["disabled"])
        run = JobRun.query.filter_by(job_name="shipment_reconciler").first()
        self.assertEqual(run.error, "disabled_by_flag")

    def test_integrations_disabled_reports_failure(self):
        with patch.dict(os.environ, {"INTEGRATIONS_MODE": "disabled"}):
            result = run_shipment_reconciliation(limit=50)
        self.assertFalse(result["ok"])
        self.assertIn("INTEGRATION_DISABLED", result["error"])


if __name__ == "__main__":
    unittest.main()
