from __future__ import annotations

from datetime import datetime, timedelta

from flask import Blueprint, jsonify, request

from vendorflow.extensions import db
from vendorflow.models import Vendor
from vendorflow.services.errors import OrderValidationError
from vendorflow.services.vendor_analytics_service import top_vendors, vendor_payout_report
from vendorflow.utils.auth import current_user, is_admin

admin_reports_bp = Blueprint("admin_reports_bp", __name__, url_prefix="/api")


def _admin():
    u = current_user()
    if not u:
        return None, (jsonify({"message": "Unauthorized"}), 401)
    if not is_admin(u):
        return None, (jsonify({"message": "Forbidden"}), 403)
    return u, None


def _day_arg(name: str) -> datetime | None:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        return datetime.strptime(raw, "%Y-%m-%d")
    except ValueError:
        raise OrderValidationError(f"{name} must be YYYY-MM-DD")


@admin_reports_bp.get("/admin/reports/vendors/top")
def admin_top_vendors():
    u, err = _admin()
    if err:
        return err

    period = (request.args.get("period") or "all").strip().lower()
    try:
        limit = max(1, min(int(request.args.get("limit") or 10), 50))
    except Exception:
        limit = 10
    return jsonify({"ok": True, "period": period, "items": top_vendors(period=period, limit=limit)}), 200


@admin_reports_bp.get("/admin/reports/vendors/<int:vendor_id>")
def admin_vendor_report(vendor_id: int):
    u, err = _admin()
    if err:
        return err

    vendor = db.session.get(Vendor, int(vendor_id))
    if not vendor:
        return jsonify({"message": "Not found"}), 404

    start = _day_arg("start_date")
    end = _day_arg("end_date")
    if end is not None:
        # end_date is inclusive
        end = end + timedelta(days=1)
    if start is not None and end is not None and start >= end:
        raise OrderValidationError("start_date must not be after end_date")
    return jsonify({"ok": True, "report": vendor_payout_report(vendor, start=start, end=end)}), 200
