import itertools
from datetime import datetime
from decimal import Decimal

import pytest

from mxportal import create_app
from mxportal.config import TestConfig
from mxportal.extensions import db
from mxportal.models import FoodOrder, FoodOrderOtp, MerchantBankAccount, MerchantParent, MerchantStore

_order_refs = itertools.count(9000001)


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def parent(app):
    row = MerchantParent(parent_name="Ramesh Foods", owner_email="owner@rameshfoods.in", phone="9876543210")
    db.session.add(row)
    db.session.commit()
    return row


@pytest.fixture
def store(parent):
    row = MerchantStore(
        store_id="GMMC1001",
        parent_id=parent.id,
        store_name="Ramesh Kitchen",
        store_display_name="Ramesh Kitchen Indiranagar",
        owner_name="Ramesh Kumar",
        store_email="kitchen@rameshfoods.in",
        store_phones="+91 98765 43210,080-4000000",
    )
    db.session.add(row)
    db.session.commit()
    return row


@pytest.fixture
def other_store(parent):
    row = MerchantStore(store_id="GMMC2002", parent_id=parent.id, store_name="Other Kitchen")
    db.session.add(row)
    db.session.commit()
    return row


@pytest.fixture
def bank_account(store):
    row = MerchantBankAccount(
        store_id=store.id,
        account_holder_name="Ramesh Kumar",
        account_number="123456789012",
        ifsc_code="HDFC0001234",
        bank_name="HDFC Bank",
        is_primary=True,
        is_active=True,
    )
    db.session.add(row)
    db.session.commit()
    return row


@pytest.fixture
def make_order(store):
    def _make(status="CREATED", total="250.00", otp_code="1234", verified=False, owner=None, **fields):
        ref = next(_order_refs)
        order = FoodOrder(
            order_id=ref,
            formatted_order_id=f"GMF{ref}",
            merchant_store_id=(owner or store).id,
            order_status=status,
            food_items_total_value=Decimal(total),
            customer_name="Asha",
            **fields,
        )
        db.session.add(order)
        if otp_code is not None:
            db.session.add(FoodOrderOtp(
                order_id=ref,
                otp_code=otp_code,
                otp_type="PICKUP",
                verified_at=datetime.utcnow() if verified else None,
            ))
        db.session.commit()
        return order

    return _make
