import os
from pathlib import Path
from uuid import uuid4

import pytest
from protean.integrations.pytest import DomainFixture


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Pytest hook to run before collecting tests.

    Selects the config overlay through PROTEAN_ENV before the domain is initialized.
    """
    os.environ["PROTEAN_ENV"] = session.config.option.env


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))

        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/application/" in test_path:
            item.add_marker(pytest.mark.application)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


@pytest.fixture(scope="session")
def storefront_bed():
    from storefront.domain import storefront
    from storefront.utils.db import drop_db, setup_db

    bed = DomainFixture(storefront)
    bed.setup()
    setup_db(storefront)
    yield bed
    drop_db(storefront)
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(storefront_bed):
    with storefront_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def run_around_tests(_ctx):
    """Reset data stores and the payment gateway after every test."""
    yield

    from protean import current_domain

    from storefront.payments.gateway import reset_gateway

    for _, provider in current_domain.providers.items():
        provider._data_reset()
    current_domain.event_store.store._data_reset()
    reset_gateway()


# ---------------------------------------------------------------------------
# Shared builders
# ---------------------------------------------------------------------------
@pytest.fixture
def address():
    return {
        "full_name": "Asha Rao",
        "phone_number": "9876543210",
        "address_line1": "12 MG Road",
        "address_line2": "Near Metro",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
        "country": "India",
    }


@pytest.fixture
def register():
    """Register a customer and return their id."""
    from protean import current_domain

    from storefront.customer.registration import RegisterCustomer

    def _register(name="Asha Rao", email=None):
        email = email or f"{uuid4().hex[:10]}@example.com"
        return current_domain.process(RegisterCustomer(name=name, email=email), asynchronous=False)

    return _register


@pytest.fixture
def customer_id(register):
    return register()


@pytest.fixture
def make_variant():
    """Create a listed category, product and variant; returns the variant id."""
    from protean import current_domain

    from storefront.catalogue.management import AddCategory, AddProduct, AddVariant

    def _make_variant(price=100.0, stock=10, sale_price=None, product_name="Cotton Kurta", name="Blue / M"):
        category_id = current_domain.process(AddCategory(name=f"Category {uuid4().hex[:8]}"), asynchronous=False)
        product_id = current_domain.process(
            AddProduct(name=product_name, category_id=category_id),
            asynchronous=False,
        )
        return current_domain.process(
            AddVariant(
                product_id=product_id,
                name=name,
                regular_price=price,
                sale_price=sale_price,
                stock=stock,
            ),
            asynchronous=False,
        )

    return _make_variant


@pytest.fixture
def fund():
    """Put store credit in a customer's wallet."""
    from storefront.wallet import service as wallet

    def _fund(customer_id, amount):
        return wallet.credit(customer_id, amount, "Test top-up", admin_ref="admin-test")

    return _fund


@pytest.fixture
def place(address):
    """Check out explicit lines ``[(variant_id, quantity), ...]`` and return the result."""
    from storefront.checkout.orchestrator import place_order_from_cart

    def _place(customer_id, lines, payment_method="COD", coupon_code=None, use_wallet=False):
        return place_order_from_cart(
            customer_id,
            address,
            payment_method,
            coupon_code=coupon_code,
            use_wallet=use_wallet,
            lines=[{"variant_id": variant_id, "quantity": quantity} for variant_id, quantity in lines],
        )

    return _place


@pytest.fixture
def deliver():
    """Move an order all the way to Delivered."""
    from storefront.ordering.workflow import advance_order_status

    def _deliver(order_id):
        for status in ("Processing", "Shipped", "Delivered"):
            advance_order_status(order_id, status)

    return _deliver
