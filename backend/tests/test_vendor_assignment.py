from __future__ import annotations

import unittest

from sqlalchemy.orm.attributes import set_committed_value

from vendorflow_testkit import FlowTestCase

from vendorflow.extensions import db
from vendorflow.models import Notification, Order, OrderTransition, PlatformEvent
from vendorflow.services.errors import (
    InvalidTransitionError,
    OrderConflictError,
    OrderValidationError,
    TransitionForbiddenError,
)
from vendorflow.services.vendor_assignment_service import (
    ACCEPTED_BY_VENDOR,
    ASSIGNED_BY_ADMIN,
    assign_vendor,
    cancel_by_vendor,
    claim_order,
    list_unassigned,
)


class VendorClaimTestCase(FlowTestCase):
    def setUp(self):
        super().setUp()
        self.customer = self.make_user("customer")
        self.admin = self.make_user("admin")
        self.vendor_a, self.user_a = self.make_vendor()
        self.vendor_b, self.user_b = self.make_vendor()

    def test_claim_moves_paid_order_to_processing(self):
        order = self.make_order(self.customer, status="pending")
        row = claim_order(order, self.vendor_a, actor=self.actor(self.user_a))
        self.assertEqual(row.to_status, "processing")
        self.assertEqual(order.status, "processing")
        self.assertEqual(int(order.vendor_id), int(self.vendor_a.id))
        self.assertEqual(order.assignment_mode, ACCEPTED_BY_VENDOR)

    def test_unpaid_order_cannot_be_claimed(self):
        order = self.make_order(self.customer, status="pending", payment_status="pending")
        with self.assertRaises(InvalidTransitionError):
            claim_order(order, self.vendor_a, actor=self.actor(self.user_a))
        db.session.refresh(order)
        self.assertIsNone(order.vendor_id)

    def test_unapproved_vendor_cannot_claim(self):
        pending_vendor, pending_user = self.make_vendor(status="pending")
        order = self.make_order(self.customer, status="pending")
        with self.assertRaises(TransitionForbiddenError):
            claim_order(order, pending_vendor, actor=self.actor(pending_user))

    def test_second_claim_sees_existing_owner(self):
        order = self.make_order(self.customer, status="pending")
        claim_order(order, self.vendor_a, actor=self.actor(self.user_a))
        with self.assertRaises(OrderConflictError):
            claim_order(order, self.vendor_b, actor=self.actor(self.user_b))
        db.session.refresh(order)
        self.assertEqual(int(order.vendor_id), int(self.vendor_a.id))

    def test_claim_race_has_exactly_one_winner(self):
        order = self.make_order(self.customer, status="pending")
        db.session.refresh(order)

        # Vendor A's request commits first...
        Order.query.filter_by(id=int(order.id)).update(
            {"vendor_id": int(self.vendor_a.id), "status": "processing", "assignment_mode": ACCEPTED_BY_VENDOR},
            synchronize_session=False,
        )
        db.session.commit()
        db.session.refresh(order)

        # ...while vendor B still holds the row as it was before.
        set_committed_value(order, "vendor_id", None)
        set_committed_value(order, "status", "pending")
        with self.assertRaises(OrderConflictError) as ctx:
            claim_order(order, self.vendor_b, actor=self.actor(self.user_b))
        self.assertEqual(ctx.exception.message, "order_already_claimed")

        fresh = db.session.get(Order, int(order.id))
        self.assertEqual(int(fresh.vendor_id), int(self.vendor_a.id))
        self.assertEqual(OrderTransition.query.filter_by(order_id=int(order.id)).count(), 0)
        self.assertEqual(PlatformEvent.query.filter_by(event_type="order_claim_lost").count(), 1)

    def test_list_unassigned_only_returns_paid_claimable_orders(self):
        visible = self.make_order(self.customer, status="pending")
        handed_back = self.make_order(self.customer, status="admin_review_required")
        self.make_order(self.customer, status="pending", payment_status="pending")
        self.make_order(self.customer, status="processing", vendor=self.vendor_a)
        self.make_order(self.customer, status="shipped")
        ids = {int(o.id) for o in list_unassigned()}
        self.assertEqual(ids, {int(visible.id), int(handed_back.id)})


class VendorCancelAndReassignTestCase(FlowTestCase):
    def setUp(self):
        super().setUp()
        self.customer = self.make_user("customer")
        self.admin = self.make_user("admin")
        self.vendor_a, self.user_a = self.make_vendor()
        self.vendor_b, self.user_b = self.make_vendor()

    def test_vendor_cancel_then_admin_reassign(self):
        order = self.make_order(self.customer, status="pending")
        claim_order(order, self.vendor_a, actor=self.actor(self.user_a))

        cancel_by_vendor(order, self.vendor_a, reason="out of stock", actor=self.actor(self.user_a))
        self.assertEqual(order.status, "admin_review_required")
        self.assertIsNone(order.vendor_id)
        self.assertIsNone(order.assignment_mode)
        events = order.payment_meta().get("events") or []
        self.assertEqual(events[-1]["type"], "vendor_cancellation")
        self.assertEqual(events[-1]["reason"], "out of stock")

        assign_vendor(order, int(self.vendor_b.id), actor=self.actor(self.admin))
        self.assertEqual(order.status, "processing")
        self.assertEqual(int(order.vendor_id), int(self.vendor_b.id))
        self.assertEqual(order.assignment_mode, ASSIGNED_BY_ADMIN)

        # The customer heard about "processing" once, not once per seller.
        self.assertEqual(
            Notification.query.filter_by(user_id=int(self.customer.id), stage_key="status:processing").count(),
            1,
        )
        self.assertEqual(
            Notification.query.filter_by(user_id=int(self.user_b.id), order_id=int(order.id))
            .filter(Notification.stage_key.like("order:assigned:%"))
            .count(),
            1,
        )

    def test_second_vendor_claims_after_cancel(self):
        order = self.make_order(self.customer, status="pending")
        claim_order(order, self.vendor_a, actor=self.actor(self.user_a))
        cancel_by_vendor(order, self.vendor_a, reason="courier strike", actor=self.actor(self.user_a))
        self.assertEqual(order.status, "admin_review_required")
        self.assertIsNone(order.vendor_id)

        row = claim_order(order, self.vendor_b, actor=self.actor(self.user_b))
        self.assertEqual((row.from_status, row.to_status), ("admin_review_required", "processing"))
        self.assertEqual(int(order.vendor_id), int(self.vendor_b.id))
        self.assertEqual(order.assignment_mode, ACCEPTED_BY_VENDOR)

        with self.assertRaises(OrderConflictError):
            claim_order(order, self.vendor_a, actor=self.actor(self.user_a))

    def test_reassigned_vendor_is_notified_each_time(self):
        order = self.make_order(self.customer, status="pending")
        assign_vendor(order, int(self.vendor_a.id), actor=self.actor(self.admin))
        assign_vendor(order, int(self.vendor_b.id), actor=self.actor(self.admin))
        assign_vendor(order, int(self.vendor_a.id), actor=self.actor(self.admin))
        self.assertEqual(int(order.vendor_id), int(self.vendor_a.id))
        self.assertEqual(
            Notification.query.filter_by(user_id=int(self.user_a.id), order_id=int(order.id))
            .filter(Notification.stage_key.like("order:assigned:%"))
            .count(),
            2,
        )

    def test_vendor_cannot_cancel_someone_elses_order(self):
        order = self.make_order(self.customer, status="pending")
        claim_order(order, self.vendor_a, actor=self.actor(self.user_a))
        with self.assertRaises(TransitionForbiddenError):
            cancel_by_vendor(order, self.vendor_b, actor=self.actor(self.user_b))

    def test_vendor_cannot_cancel_after_shipment_is_booked(self):
        order = self.make_order(
            self.customer,
            status="processing",
            vendor=self.vendor_a,
            assignment_mode=ACCEPTED_BY_VENDOR,
            awb_number="M00000042",
        )
        with self.assertRaises(InvalidTransitionError):
            cancel_by_vendor(order, self.vendor_a, actor=self.actor(self.user_a))

    def test_admin_assignment_keeps_vendor_claim_mode(self):
        order = self.make_order(self.customer, status="pending")
        claim_order(order, self.vendor_a, actor=self.actor(self.user_a))
        assign_vendor(order, int(self.vendor_b.id), actor=self.actor(self.admin))
        self.assertEqual(int(order.vendor_id), int(self.vendor_b.id))
        self.assertEqual(order.assignment_mode, ACCEPTED_BY_VENDOR)

    def test_assignment_rules(self):
        unpaid = self.make_order(self.customer, status="pending", payment_status="pending")
        assign_vendor(unpaid, int(self.vendor_a.id), actor=self.actor(self.admin))
        self.assertEqual(unpaid.status, "pending")
        self.assertEqual(int(unpaid.vendor_id), int(self.vendor_a.id))

        assign_vendor(unpaid, None, actor=self.actor(self.admin))
        self.assertIsNone(unpaid.vendor_id)

        suspended, _ = self.make_vendor(status="suspended")
        with self.assertRaises(OrderValidationError):
            assign_vendor(unpaid, int(suspended.id), actor=self.actor(self.admin))

        shipped = self.make_order(self.customer, status="shipped", vendor=self.vendor_a)
        with self.assertRaises(InvalidTransitionError):
            assign_vendor(shipped, int(self.vendor_b.id), actor=self.actor(self.admin))

        processing = self.make_order(self.customer, status="processing", vendor=self.vendor_a)
        with self.assertRaises(InvalidTransitionError):
            assign_vendor(processing, None, actor=self.actor(self.admin))


if __name__ == "__main__":
    unittest.main()
