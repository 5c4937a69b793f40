from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from vendorflow_testkit import FlowTestCase

from vendorflow.celery_app import _extract_trace_id, beat_schedule
from vendorflow.models import JobRun
from vendorflow.tasks.fulfillment_tasks import _retry_countdown, escalate_unclaimed, settle_refunds


class BeatScheduleTestCase(unittest.TestCase):
    def test_every_worker_is_scheduled(self):
        schedule = beat_schedule()
        self.assertEqual(
            set(schedule),
            {"shipment-reconciler", "refund-settlement", "admin-review-escalation", "stale-claim-reset"},
        )
        self.assertEqual(schedule["shipment-reconciler"]["schedule"], 10800.0)
        for entry in schedule.values():
            self.assertTrue(entry["task"].startswith("vendorflow.tasks.fulfillment_tasks."))

    def test_interval_has_a_floor(self):
        with patch.dict(os.environ, {"ADMIN_REVIEW_INTERVAL_SECONDS": "5", "REFUND_SETTLEMENT_INTERVAL_SECONDS": "x"}):
            schedule = beat_schedule()
        self.assertEqual(schedule["admin-review-escalation"]["schedule"], 60.0)
        self.assertEqual(schedule["refund-settlement"]["schedule"], 10800.0)

    def test_trace_id_extraction(self):
        self.assertEqual(_extract_trace_id((), {"trace_id": "trace_1"}), "trace_1")
        self.assertEqual(_extract_trace_id(("x", "trace_2"), {}), "trace_2")
        self.assertEqual(_extract_trace_id(None, None), "")

    def test_retry_backoff_is_capped(self):
        self.assertEqual(_retry_countdown(0), 5)
        self.assertEqual(_retry_countdown(3), 40)
        self.assertEqual(_retry_countdown(20), 900)


class FulfillmentTasksTestCase(FlowTestCase):
    def test_tasks_run_the_jobs_eagerly(self):
        result = settle_refunds.apply(kwargs={"trace_id": "trace_refunds"}).get()
        self.assertTrue(result["ok"])
        result = escalate_unclaimed.apply().get()
        self.assertEqual(result["escalated"], 0)
        self.assertEqual(JobRun.query.count(), 2)


if __name__ == "__main__":
    unittest.main()
