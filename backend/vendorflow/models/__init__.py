from vendorflow.models.user import User
from vendorflow.models.vendor import Vendor
from vendorflow.models.order import Order, OrderItem
from vendorflow.models.order_transition import OrderTransition
from vendorflow.models.vendor_ledger_entry import VendorLedgerEntry
from vendorflow.models.notification import Notification
from vendorflow.models.job_run import JobRun
from vendorflow.models.platform_event import PlatformEvent

__all__ = [
    "User",
    "Vendor",
    "Order",
    "OrderItem",
    "OrderTransition",
    "VendorLedgerEntry",
    "Notification",
    "JobRun",
    "PlatformEvent",
]
