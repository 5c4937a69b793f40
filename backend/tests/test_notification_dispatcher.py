from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from vendorflow_testkit import FlowTestCase

from vendorflow.models import Notification
from vendorflow.services.notification_dispatcher import dispatch_stage, resolve_recipients
from vendorflow.services.stage_messages import render_stage, stage_audience, stage_type


class StageMessagesTestCase(unittest.TestCase):
    def test_suffixed_keys_share_prefix_copy(self):
        self.assertEqual(stage_type("order:available:17"), "new_order_available")
        self.assertEqual(stage_audience("order:assigned:4"), ("vendor",))
        self.assertEqual(stage_type("status:unknown"), "order_update")
        self.assertEqual(stage_audience("status:unknown"), ())

    def test_render_escapes_order_number(self):
        class _O:
            order_number = "ORD-<b>"

        copy = render_stage("status:shipped", _O())
        self.assertEqual(copy["title"], "Order shipped")
        self.assertIn("ORD-&lt;b&gt;", copy["html"])
        self.assertEqual(copy["subject"], "Order shipped: ORD-<b>")


class DispatchStageTestCase(FlowTestCase):
    def setUp(self):
        super().setUp()
        self.customer = self.make_user("customer")
        self.admin = self.make_user("admin")
        self.vendor, self.vendor_user = self.make_vendor()
        self.order = self.make_order(self.customer, status="shipped", vendor=self.vendor)

    def test_each_recipient_is_notified_once_per_stage(self):
        first = dispatch_stage(self.order, "status:shipped")
        second = dispatch_stage(self.order, "status:shipped")
        self.assertEqual(first["recipients"], 2)
        self.assertEqual(first["created"], 2)
        self.assertEqual(first["sent"], 2)
        self.assertEqual(second["created"], 0)
        self.assertEqual(second["skipped"], 2)
        self.assertEqual(Notification.query.filter_by(order_id=int(self.order.id)).count(), 2)

    def test_failed_delivery_keeps_the_row(self):
        with patch.dict(os.environ, {"MOCK_NOTIFY_FORCE_FAIL": "1"}):
            summary = dispatch_stage(self.order, "status:delivered")
        self.assertEqual(summary["failed"], 2)
        rows = Notification.query.filter_by(order_id=int(self.order.id), stage_key="status:delivered").all()
        self.assertEqual(len(rows), 2)
        for row in rows:
            self.assertEqual(row.status, "failed")
            self.assertFalse(row.meta_dict()["delivery"]["email"]["ok"])

    def test_messaging_disabled_records_skipped_rows(self):
        with patch.dict(os.environ, {"INTEGRATIONS_MODE": "disabled"}):
            summary = dispatch_stage(self.order, "status:cancelled")
        self.assertEqual(summary["created"], 2)
        statuses = {r.status for r in Notification.query.filter_by(stage_key="status:cancelled").all()}
        self.assertEqual(statuses, {"skipped"})

    def test_recipient_resolution(self):
        other_vendor, other_user = self.make_vendor()
        self.make_vendor(status="pending")
        ids = {int(u.id) for u in resolve_recipients(self.order, ("customer", "vendor", "admin"))}
        self.assertEqual(ids, {int(self.customer.id), int(self.vendor_user.id), int(self.admin.id)})

        available = {int(u.id) for u in resolve_recipients(self.order, ("available_vendors",))}
        self.assertEqual(available, {int(self.vendor_user.id), int(other_user.id)})

        unassigned = self.make_order(self.customer, status="pending")
        self.assertEqual(resolve_recipients(unassigned, ("vendor",)), [])

    def test_no_recipients_is_a_no_op(self):
        unassigned = self.make_order(self.customer, status="pending")
        summary = dispatch_stage(unassigned, "order:assigned:1")
        self.assertEqual(summary["recipients"], 0)
        self.assertEqual(Notification.query.count(), 0)


if __name__ == "__main__":
    unittest.main()
