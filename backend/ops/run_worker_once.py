from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

JOBS = ("shipment_reconciler", "refund_worker", "admin_review_runner", "stale_claim_runner")


def main() -> int:
    parser = argparse.ArgumentParser(description="Run one fulfillment worker pass outside Celery.")
    parser.add_argument("job", choices=JOBS)
    parser.add_argument("--limit", type=int, default=500)
    args = parser.parse_args()

    from vendorflow.jobs import admin_review_runner, refund_worker, shipment_reconciler, stale_claim_runner

    modules = {
        "shipment_reconciler": shipment_reconciler,
        "refund_worker": refund_worker,
        "admin_review_runner": admin_review_runner,
        "stale_claim_runner": stale_claim_runner,
    }
    result = modules[args.job].run_once(limit=max(1, int(args.limit)))
    print(json.dumps(result, indent=2, default=str))
    return 0 if result.get("ok") else 1


if __name__ == "__main__":
    raise SystemExit(main())
