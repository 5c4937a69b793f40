from __future__ import annotations

import argparse
import json
import os
import sys


def _bootstrap_app():
    from vendorflow import create_app

    app = create_app()
    app.app_context().push()
    return app


def main():
    parser = argparse.ArgumentParser(description="Report vendor payout balances and flag overpaid vendors.")
    parser.add_argument("--vendor-id", type=int, default=0, help="Limit the report to one vendor.")
    parser.add_argument("--rows", action="store_true", help="Include per-order payout rows.")
    args = parser.parse_args()

    _bootstrap_app()
    from vendorflow.extensions import db
    from vendorflow.models import Vendor
    from vendorflow.services.vendor_ledger_service import get_vendor_ledger

    if args.vendor_id:
        vendor = db.session.get(Vendor, int(args.vendor_id))
        if vendor is None:
            print(json.dumps({"ok": False, "error": "vendor not found"}))
            return 1
        vendors = [vendor]
    else:
        vendors = Vendor.query.order_by(Vendor.id.asc()).all()

    ledgers = [get_vendor_ledger(v, include_rows=args.rows) for v in vendors]
    overpaid = [row["vendor_id"] for row in ledgers if float(row.get("balance") or 0) < 0]
    summary = {"ok": not overpaid, "vendors": len(ledgers), "overpaid_vendor_ids": overpaid, "ledgers": ledgers}
    print(json.dumps(summary, indent=2))
    return 0 if not overpaid else 2


if __name__ == "__main__":
    os.environ.setdefault("FLASK_APP", "main.py")
    sys.exit(main())
