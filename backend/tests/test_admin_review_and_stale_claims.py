from __future__ import annotations

import unittest
from datetime import datetime, timedelta

from vendorflow_testkit import FlowTestCase

from vendorflow.extensions import db
from vendorflow.jobs.admin_review_runner import run_admin_review_escalation
from vendorflow.jobs.stale_claim_runner import run_stale_claim_reset
from vendorflow.models import JobRun, Notification, Order, OrderTransition
from vendorflow.services.vendor_assignment_service import ACCEPTED_BY_VENDOR, ASSIGNED_BY_ADMIN


def _age(order: Order, **delta) -> None:
    past = datetime.utcnow() - timedelta(**delta)
    Order.query.filter_by(id=int(order.id)).update(
        {"created_at": past, "updated_at": past}, synchronize_session=False
    )
    db.session.commit()
    db.session.refresh(order)


class AdminReviewRunnerTestCase(FlowTestCase):
    def setUp(self):
        super().setUp()
        self.customer = self.make_user("customer")
        self.admin = self.make_user("admin")
        self.vendor, self.vendor_user = self.make_vendor()

    def test_unclaimed_orders_past_cutoff_are_escalated(self):
        old = self.make_order(self.customer, status="pending")
        _age(old, minutes=45)
        fresh = self.make_order(self.customer, status="pending")
        claimed = self.make_order(self.customer, status="pending", vendor=self.vendor)
        _age(claimed, minutes=45)

        result = run_admin_review_escalation(limit=50)
        self.assertTrue(result["ok"])
        self.assertEqual(result["escalated"], 1)

        for o in (old, fresh, claimed):
            db.session.refresh(o)
        self.assertEqual(old.status, "admin_review_required")
        self.assertEqual(fresh.status, "pending")
        self.assertEqual(claimed.status, "pending")

        row = OrderTransition.query.filter_by(order_id=int(old.id)).one()
        self.assertEqual((row.actor_type, row.reason), ("system", "unclaimed_timeout"))
        self.assertEqual(
            Notification.query.filter_by(user_id=int(self.admin.id), stage_key="status:admin_review_required").count(),
            1,
        )

    def test_cutoff_comes_from_config(self):
        order = self.make_order(self.customer, status="pending")
        _age(order, minutes=10)
        self.app.config["ADMIN_REVIEW_AFTER_MINUTES"] = 5
        try:
            result = run_admin_review_escalation(limit=50)
        finally:
            self.app.config["ADMIN_REVIEW_AFTER_MINUTES"] = 30
        self.assertEqual(result["escalated"], 1)

    def test_second_run_is_a_no_op(self):
        order = self.make_order(self.customer, status="pending")
        _age(order, hours=2)
        run_admin_review_escalation(limit=50)
        again = run_admin_review_escalation(limit=50)
        self.assertEqual(again["processed"], 0)
        self.assertEqual(JobRun.query.filter_by(job_name="admin_review_runner").count(), 2)


class StaleClaimRunnerTestCase(FlowTestCase):
    def setUp(self):
        super().setUp()
        self.customer = self.make_user("customer")
        self.vendor_a, self.user_a = self.make_vendor()
        self.vendor_b, self.user_b = self.make_vendor()
        self.make_vendor(status="suspended")

    def _claimed(self, **fields):
        fields.setdefault("assignment_mode", ACCEPTED_BY_VENDOR)
        return self.make_order(self.customer, status="processing", vendor=self.vendor_a, **fields)

    def test_stale_claim_returns_to_pool_and_notifies_vendors(self):
        order = self._claimed()
        _age(order, hours=30)

        result = run_stale_claim_reset(limit=50)
        self.assertEqual(result["reset"], 1)
        self.assertEqual(result["notified"], 2)

        db.session.refresh(order)
        self.assertEqual(order.status, "pending")
        self.assertIsNone(order.vendor_id)
        self.assertIsNone(order.assignment_mode)
        self.assertEqual(order.payment_meta()["events"][-1]["type"], "stale_claim_reset")

        notified = {
            int(n.user_id)
            for n in Notification.query.filter(Notification.stage_key.like("order:available:%")).all()
        }
        self.assertEqual(notified, {int(self.user_a.id), int(self.user_b.id)})

    def test_recent_booked_or_admin_assigned_claims_are_kept(self):
        recent = self._claimed()
        booked = self._claimed(awb_number="M00000077")
        _age(booked, hours=30)
        assigned = self._claimed(assignment_mode=ASSIGNED_BY_ADMIN)
        _age(assigned, hours=30)

        result = run_stale_claim_reset(limit=50)
        self.assertEqual(result["processed"], 0)
        for o in (recent, booked, assigned):
            db.session.refresh(o)
            self.assertEqual(o.status, "processing")
            self.assertEqual(int(o.vendor_id), int(self.vendor_a.id))


if __name__ == "__main__":
    unittest.main()
