"""Tests for Variant stock reservation and restoration."""

import random

import pytest
from protean.exceptions import ValidationError

from storefront.catalogue.events import LowStockDetected, StockReserved, StockRestored, StockUpdated
from storefront.catalogue.variant import LOW_STOCK_THRESHOLD, Variant
from storefront.errors import InsufficientStock


def _variant(stock=20, regular_price=100.0, sale_price=None):
    return Variant.create(
        product_id="prod-001",
        name="Blue / M",
        regular_price=regular_price,
        sale_price=sale_price,
        stock=stock,
    )


class TestCreate:
    def test_sale_price_defaults_to_regular_price(self):
        assert _variant().sale_price == 100.0

    def test_sale_price_cannot_exceed_regular_price(self):
        with pytest.raises(ValidationError):
            _variant(regular_price=100.0, sale_price=120.0)

    def test_negative_stock_is_rejected(self):
        with pytest.raises(ValidationError):
            _variant(stock=-1)


class TestReserve:
    def test_reserve_decrements(self):
        variant = _variant(stock=20)
        variant.reserve(3, order_ref="ORD1")
        assert variant.stock == 17
        event = variant._events[-1]
        assert isinstance(event, StockReserved)
        assert event.stock_after == 17
        assert event.order_ref == "ORD1"

    def test_reserve_everything(self):
        variant = _variant(stock=5)
        variant.reserve(5)
        assert variant.stock == 0

    def test_shortfall_reports_available(self):
        variant = _variant(stock=2)
        with pytest.raises(InsufficientStock) as exc:
            variant.reserve(3)
        assert exc.value.available == 2
        assert exc.value.requested == 3
        assert variant.stock == 2

    @pytest.mark.parametrize("quantity", [0, -1, None])
    def test_quantity_must_be_positive(self, quantity):
        with pytest.raises(ValidationError):
            _variant().reserve(quantity)

    def test_low_stock_event_when_threshold_reached(self):
        variant = _variant(stock=LOW_STOCK_THRESHOLD + 1)
        variant.reserve(1)
        assert isinstance(variant._events[-1], LowStockDetected)


class TestRestore:
    def test_restore_increments_without_upper_bound(self):
        variant = _variant(stock=0)
        variant.restore(7, order_ref="ORD1", reason="Order cancelled")
        assert variant.stock == 7
        event = variant._events[-1]
        assert isinstance(event, StockRestored)
        assert event.reason == "Order cancelled"


class TestSetStock:
    def test_set_stock(self):
        variant = _variant(stock=20)
        variant.set_stock(35)
        assert variant.stock == 35
        assert any(isinstance(e, StockUpdated) and e.previous_stock == 20 for e in variant._events)

    def test_negative_stock_level_is_rejected(self):
        with pytest.raises(ValidationError):
            _variant().set_stock(-3)


class TestStockNeverNegative:
    def test_random_reserve_restore_sequences(self):
        rng = random.Random(7)
        variant = _variant(stock=15)
        for _ in range(300):
            quantity = rng.randint(1, 6)
            if rng.random() < 0.6:
                try:
                    variant.reserve(quantity)
                except InsufficientStock:
                    pass
            else:
                variant.restore(quantity)
            assert variant.stock >= 0
