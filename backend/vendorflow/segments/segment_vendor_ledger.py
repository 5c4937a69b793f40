from __future__ import annotations

from flask import Blueprint, jsonify, request

from vendorflow.extensions import db
from vendorflow.models import Vendor
from vendorflow.services.vendor_ledger_service import (
    get_vendor_ledger,
    list_vendor_ledgers,
    record_vendor_payment,
)
from vendorflow.utils.actors import actor_for
from vendorflow.utils.auth import current_user, is_admin, linked_vendor, role_of

vendor_ledger_bp = Blueprint("vendor_ledger_bp", __name__, url_prefix="/api")


def _admin():
    u = current_user()
    if not u:
        return None, (jsonify({"message": "Unauthorized"}), 401)
    if not is_admin(u):
        return None, (jsonify({"message": "Forbidden"}), 403)
    return u, None


@vendor_ledger_bp.get("/vendor-ledger/admin")
def admin_vendor_ledgers():
    u, err = _admin()
    if err:
        return err

    items = list_vendor_ledgers()
    totals = {
        key: round(sum(float(row.get(key) or 0) for row in items), 2)
        for key in ("earned", "pending", "paid", "balance")
    }
    return jsonify({"ok": True, "items": items, "totals": totals}), 200


@vendor_ledger_bp.get("/vendor-ledger/admin/<int:vendor_id>")
def admin_vendor_ledger_detail(vendor_id: int):
    u, err = _admin()
    if err:
        return err

    vendor = db.session.get(Vendor, int(vendor_id))
    if not vendor:
        return jsonify({"message": "Not found"}), 404
    return jsonify({"ok": True, "ledger": get_vendor_ledger(vendor, include_rows=True)}), 200


@vendor_ledger_bp.put("/vendor-ledger/admin/<int:vendor_id>")
def admin_record_payment(vendor_id: int):
    u, err = _admin()
    if err:
        return err

    vendor = db.session.get(Vendor, int(vendor_id))
    if not vendor:
        return jsonify({"message": "Not found"}), 404

    payload = request.get_json(silent=True) or {}
    amount = payload.get("amount", payload.get("paid"))
    notes = payload.get("notes")
    entry = record_vendor_payment(
        vendor,
        amount,
        notes=notes if isinstance(notes, str) else None,
        actor=actor_for(u),
    )
    return jsonify({
        "ok": True,
        "entry": entry.to_dict(),
        "ledger": get_vendor_ledger(vendor),
    }), 200


@vendor_ledger_bp.get("/vendor-ledger/vendor")
def my_vendor_ledger():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    if role_of(u) != "vendor":
        return jsonify({"message": "Forbidden"}), 403
    vendor = linked_vendor(u)
    if vendor is None:
        return jsonify({
            "ok": False,
            "error": "VENDOR_NOT_LINKED",
            "message": "Vendor account not linked. Please contact support.",
        }), 400
    return jsonify({"ok": True, "ledger": get_vendor_ledger(vendor, include_rows=True)}), 200
