from __future__ import annotations

import os

from vendorflow.integrations.carrier.base import CarrierProvider, ShipmentResult, TrackingEvent, TrackingResult

_LABEL_PDF = (
    b"%PDF-1.4\n1 0 obj<</Type/Catalog/Pages 2 0 R>>endobj\n"
    b"2 0 obj<</Type/Pages/Kids[]/Count 0>>endobj\ntrailer<</Root 1 0 R>>\n%%EOF\n"
)


class MockCarrierProvider(CarrierProvider):
    """Deterministic carrier for sandbox runs.

    `MOCK_CARRIER_STATUS` sets the status text every AWB reports.
    """

    name = "mock"

    def track(self, awb_number: str) -> TrackingResult:
        status = (os.getenv("MOCK_CARRIER_STATUS") or "In Transit").strip()
        return TrackingResult(
            awb_number=(awb_number or "").strip().upper(),
            status_text=status,
            events=[TrackingEvent(code="MCK", action=status, remarks="mock")],
            raw={"provider": self.name},
        )

    def create_shipment(self, *, order, origin: dict, direction: str = "forward") -> ShipmentResult:
        if (os.getenv("MOCK_CARRIER_FORCE_FAIL") or "").strip() == "1":
            raise RuntimeError("MOCK_CARRIER_DOWN")
        prefix = "M" if direction == "forward" else "R"
        awb = f"{prefix}{int(order.id):08d}"
        return ShipmentResult(awb_number=awb, provider=self.name, raw={"origin": origin, "direction": direction})

    def download_label(self, awb_number: str) -> bytes:
        return _LABEL_PDF
