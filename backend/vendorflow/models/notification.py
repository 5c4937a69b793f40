import json
from datetime import datetime

from vendorflow.extensions import db


class Notification(db.Model):
    __tablename__ = "notifications"
    __table_args__ = (
        db.UniqueConstraint("user_id", "order_id", "stage_key", name="uq_notification_user_order_stage"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    stage_key = db.Column(db.String(80), nullable=False)
    type = db.Column(db.String(48), nullable=False, default="order_update")

    channel = db.Column(db.String(32), nullable=False, default="in_app")
    title = db.Column(db.String(160), nullable=True)
    message = db.Column(db.Text, nullable=False, default="")

    status = db.Column(db.String(24), nullable=False, default="queued")  # queued | sent | failed | skipped
    provider = db.Column(db.String(64), nullable=True)
    provider_ref = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    sent_at = db.Column(db.DateTime, nullable=True)

    meta = db.Column(db.Text, nullable=True)  # JSON string

    def meta_dict(self) -> dict:
        raw = (self.meta or "").strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return data if isinstance(data, dict) else {}
        except Exception:
            return {}

    def update_meta(self, **fields) -> None:
        meta = self.meta_dict()
        meta.update(fields)
        try:
            self.meta = json.dumps(meta, separators=(",", ":"), default=str)
        except Exception:
            self.meta = "{}"

    def mark_read(self, read_at: datetime | None = None) -> datetime:
        stamped = read_at or datetime.utcnow()
        self.update_meta(is_read=True, read_at=stamped.isoformat())
        return stamped

    def to_dict(self):
        meta = self.meta_dict()
        read_at = meta.get("read_at")
        if not isinstance(read_at, str) or not read_at.strip():
            read_at = None
        return {
            "id": self.id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "stage_key": self.stage_key,
            "type": self.type or "order_update",
            "channel": self.channel or "in_app",
            "title": self.title or "",
            "message": self.message or "",
            "status": self.status or "queued",
            "provider": self.provider or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "is_read": bool(meta.get("is_read")),
            "read_at": read_at,
            "meta": meta,
        }
