from __future__ import annotations

import os
import unittest
from datetime import datetime
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import inspect

from vendorflow import create_app
from vendorflow.extensions import db
from vendorflow.models import Order, User, Vendor
from vendorflow.utils.jwt_utils import create_token

TEST_ENV = {
    "VENDORFLOW_ENV": "test",
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "SECRET_KEY": "vendorflow-test-secret-key",
    "INTEGRATIONS_MODE": "sandbox",
    "CARRIER_PROVIDER": "mock",
    "PAYMENTS_PROVIDER": "mock",
    "MESSAGING_PROVIDER": "mock",
    "WORKER_ITEM_DELAY_MS": "0",
    "SENTRY_DSN": "",
    "FEATURE_FLAGS_JSON": "",
}


def _pk(obj) -> int:
    # Identity survives the request teardown that detaches and expires test fixtures.
    return int(inspect(obj).identity[0])


class FlowTestCase(unittest.TestCase):
    """App per suite, fresh in-memory schema per test."""

    @classmethod
    def setUpClass(cls):
        cls._env = patch.dict(os.environ, TEST_ENV, clear=False)
        cls._env.start()
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        cls._env.stop()

    def setUp(self):
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.drop_all()
        db.create_all()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()

    # seeding

    def make_user(self, role: str = "customer", *, vendor: Vendor | None = None, email: str | None = None) -> User:
        n = User.query.count() + 1
        u = User(
            name=f"{role.title()} {n}",
            email=email or f"{role}{n}@vendorflow.test",
            role=role,
            vendor_id=_pk(vendor) if vendor is not None else None,
        )
        u.set_password("Passw0rd!")
        db.session.add(u)
        db.session.commit()
        return u

    def make_vendor(self, *, status: str = "approved", commission="10", with_user: bool = True):
        n = Vendor.query.count() + 1
        v = Vendor(
            name=f"Vendor {n}",
            username=f"vendor{n}",
            email=f"shop{n}@vendorflow.test",
            status=status,
            is_active=True,
            commission=Decimal(str(commission)),
            address1="12 Market Road",
            city="Pune",
            state="MH",
            postcode="411001",
        )
        db.session.add(v)
        db.session.commit()
        user = self.make_user("vendor", vendor=v) if with_user else None
        return v, user

    def make_order(
        self,
        customer: User,
        *,
        subtotal="1000",
        status: str = "pending",
        payment_method: str = "online",
        payment_status: str = "paid",
        vendor: Vendor | None = None,
        **fields,
    ) -> Order:
        o = Order(
            customer_id=_pk(customer),
            subtotal=Decimal(str(subtotal)),
            status=status,
            payment_method=payment_method,
            payment_status=payment_status,
            vendor_id=_pk(vendor) if vendor is not None else None,
            **fields,
        )
        if payment_method != "cod" and payment_status == "paid" and "payment_transaction_id" not in fields:
            o.payment_transaction_id = f"pay_{int(datetime.utcnow().timestamp() * 1e6)}_{Order.query.count()}"
        db.session.add(o)
        db.session.commit()
        return o

    def auth(self, user: User) -> dict:
        return {"Authorization": f"Bearer {create_token(_pk(user))}"}

    def reload(self, obj):
        return db.session.get(type(obj), _pk(obj))

    @staticmethod
    def actor(user: User) -> dict:
        return {"type": (user.role or "customer"), "id": int(user.id)}
