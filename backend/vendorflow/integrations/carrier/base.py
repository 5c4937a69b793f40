from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class TrackingEvent:
    code: str = ""
    action: str = ""
    origin: str = ""
    destination: str = ""
    action_date: str = ""
    action_time: str = ""
    remarks: str = ""


@dataclass
class TrackingResult:
    awb_number: str
    status_text: str
    events: list[TrackingEvent] = field(default_factory=list)
    raw: dict | None = None

    def to_snapshot(self) -> dict:
        return {
            "awb_number": self.awb_number,
            "status_text": self.status_text,
            "events": [e.__dict__ for e in self.events],
        }


@dataclass
class ShipmentResult:
    awb_number: str
    provider: str
    raw: dict | None = None


class CarrierProvider:
    name = "unknown"

    def track(self, awb_number: str) -> TrackingResult:
        raise NotImplementedError

    def create_shipment(self, *, order, origin: dict, direction: str = "forward") -> ShipmentResult:
        raise NotImplementedError

    def download_label(self, awb_number: str) -> bytes:
        raise NotImplementedError
