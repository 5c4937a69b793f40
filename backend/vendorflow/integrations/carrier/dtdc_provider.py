from __future__ import annotations

import os
import re
import time

import requests

from vendorflow.integrations.carrier.base import CarrierProvider, ShipmentResult, TrackingEvent, TrackingResult


DTDC_ENDPOINTS = {
    "staging": {
        "authenticate": "http://dtdcstagingapi.dtdc.com/dtdc-tracking-api/dtdc-api/api/dtdc/authenticate",
        "track": "http://dtdcstagingapi.dtdc.com/dtdc-tracking-api/dtdc-api/rest/XMLSchemaTrk/getDetails",
    },
    "production": {
        "authenticate": "https://blktracksvc.dtdc.com/dtdc-api/api/dtdc/authenticate",
        "track": "https://blktracksvc.dtdc.com/dtdc-api/rest/XMLSchemaTrk/getDetails",
    },
}
DEFAULT_BOOKING_URL = "https://dtdcapi.shipsy.io/api/customer/integration/consignment/softdata"
DEFAULT_LABEL_URL = "https://dtdcapi.shipsy.io/api/customer/integration/consignment/shippinglabel/stream"

TRACKING_AWB_RE = re.compile(r"^[A-Z]\d{8}$")
TOKEN_TTL_SECONDS = 60 * 60


class DtdcCarrierProvider(CarrierProvider):
    name = "dtdc"

    # Shared across instances; a provider is built per job run.
    _token_cache: dict = {"token": None, "expires_at": 0.0}

    def __init__(
        self,
        *,
        tracking_credentials: str,
        api_key: str,
        customer_code: str = "",
        environment: str = "production",
        booking_url: str = "",
        label_url: str = "",
    ):
        username, _, password = (tracking_credentials or "").partition(":")
        self.username = username.strip()
        self.password = password.strip()
        self.api_key = api_key
        self.customer_code = customer_code
        self.environment = "staging" if (environment or "").strip().lower() == "staging" else "production"
        self.booking_url = booking_url or DEFAULT_BOOKING_URL
        self.label_url = label_url or DEFAULT_LABEL_URL

    def _endpoint(self, name: str) -> str:
        return DTDC_ENDPOINTS[self.environment][name]

    def _auth_token(self) -> str:
        cache = DtdcCarrierProvider._token_cache
        if cache.get("token") and time.time() < float(cache.get("expires_at") or 0):
            return str(cache["token"])
        r = requests.get(
            self._endpoint("authenticate"),
            params={"username": self.username, "password": self.password},
            timeout=10,
        )
        if r.status_code != 200 or not r.text:
            raise RuntimeError(f"DTDC_AUTH_FAILED:HTTP {r.status_code}")
        token = r.text.strip().strip('"')
        cache["token"] = token
        cache["expires_at"] = time.time() + TOKEN_TTL_SECONDS
        return token

    @classmethod
    def clear_token_cache(cls) -> None:
        cls._token_cache["token"] = None
        cls._token_cache["expires_at"] = 0.0

    def track(self, awb_number: str) -> TrackingResult:
        awb = (awb_number or "").strip().upper()
        if not TRACKING_AWB_RE.match(awb):
            raise ValueError(f"DTDC_INVALID_AWB:{awb}")
        r = requests.get(
            self._endpoint("track"),
            params={
                "strcnno": awb,
                "TrkType": "cnno",
                "addtnIDtl": "Y",
                "apikey": self._auth_token(),
            },
            headers={"Accept": "application/json"},
            timeout=15,
        )
        if r.status_code != 200:
            raise RuntimeError(f"DTDC_TRACK_FAILED:HTTP {r.status_code}")
        if r.text.strip().startswith("<"):
            raise RuntimeError("DTDC_TRACK_FAILED:xml_response_unsupported")
        data = r.json() if r.content else {}
        return _parse_tracking(awb, data if isinstance(data, dict) else {})

    def create_shipment(self, *, order, origin: dict, direction: str = "forward") -> ShipmentResult:
        destination = order.shipping_address() or {}
        if direction != "forward":
            origin, destination = destination, origin
        payload = {
            "consignments": [
                {
                    "customer_code": self.customer_code,
                    "service_type_id": "B2C PRIORITY",
                    "load_type": "NON-DOCUMENT",
                    "consignment_type": "Forward" if direction == "forward" else "Reverse",
                    "customer_reference_number": order.order_number,
                    "num_pieces": "1",
                    "declared_value": str(order.total),
                    "cod_amount": str(order.total) if (order.payment_method or "") == "cod" else "0",
                    "cod_collection_mode": "cash" if (order.payment_method or "") == "cod" else "",
                    "origin_details": _address_block(origin),
                    "destination_details": _address_block(destination),
                }
            ]
        }
        r = requests.post(
            self.booking_url,
            json=payload,
            headers={"api-key": self.api_key, "Content-Type": "application/json"},
            timeout=20,
        )
        j = r.json() if r.content else {}
        rows = j.get("data") if isinstance(j, dict) else None
        first = rows[0] if isinstance(rows, list) and rows else {}
        if r.status_code < 200 or r.status_code >= 300 or not first.get("success"):
            msg = (first.get("message") or (j.get("message") if isinstance(j, dict) else "") or f"HTTP {r.status_code}")
            raise RuntimeError(f"DTDC_BOOKING_FAILED:{str(msg).strip()}")
        awb = str(first.get("reference_number") or "").strip().upper()
        if not awb:
            raise RuntimeError("DTDC_BOOKING_FAILED:missing reference_number")
        return ShipmentResult(awb_number=awb, provider=self.name, raw=j)

    def download_label(self, awb_number: str) -> bytes:
        r = requests.get(
            self.label_url,
            params={"reference_number": awb_number, "label_code": "SHIP_LABEL_4X6", "label_format": "pdf"},
            headers={"api-key": self.api_key},
            timeout=20,
        )
        if r.status_code != 200 or not r.content:
            raise RuntimeError(f"DTDC_LABEL_FAILED:HTTP {r.status_code}")
        return r.content


def _address_block(addr: dict) -> dict:
    addr = addr or {}
    name = addr.get("name") or " ".join(
        p for p in (addr.get("first_name") or "", addr.get("last_name") or "") if p
    )
    return {
        "name": name,
        "phone": addr.get("phone") or "",
        "address_line_1": addr.get("address1") or "",
        "address_line_2": addr.get("address2") or "",
        "pincode": addr.get("postcode") or "",
        "city": addr.get("city") or "",
        "state": addr.get("state") or "",
    }


def _parse_tracking(awb: str, data: dict) -> TrackingResult:
    header = data.get("trackHeader") if isinstance(data.get("trackHeader"), dict) else {}
    details = data.get("trackDetails") if isinstance(data.get("trackDetails"), list) else []
    events = []
    for d in details:
        if not isinstance(d, dict):
            continue
        events.append(
            TrackingEvent(
                code=str(d.get("strCode") or ""),
                action=str(d.get("strAction") or ""),
                origin=str(d.get("strOrigin") or ""),
                destination=str(d.get("strDestination") or ""),
                action_date=str(d.get("strActionDate") or ""),
                action_time=str(d.get("strActionTime") or ""),
                remarks=str(d.get("sTrRemarks") or d.get("strRemarks") or ""),
            )
        )
    return TrackingResult(
        awb_number=str(header.get("strShipmentNo") or awb),
        status_text=str(header.get("strStatus") or ""),
        events=events,
        raw=data,
    )


def dtdc_health() -> dict:
    missing = []
    if not (os.getenv("DTDC_TRACKING_CREDENTIALS") or "").strip():
        missing.append("DTDC_TRACKING_CREDENTIALS")
    if not (os.getenv("DTDC_API_KEY") or "").strip():
        missing.append("DTDC_API_KEY")
    return {"missing": missing}
