"""Application tests for stock commands and purchasability checks."""

import pytest
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError

from storefront.catalogue import stock
from storefront.catalogue.management import AddCategory, SetCategoryListing, SetProductListing
from storefront.catalogue.product import Product
from storefront.catalogue.variant import Variant
from storefront.errors import ConcurrencyConflict, InsufficientStock, conflicts_as_retryable


class TestStockCommands:
    def test_reserve_and_restore_persist(self, make_variant):
        variant_id = make_variant(stock=10)
        assert stock.reserve(variant_id, 4, order_ref="ORD1") == 6
        assert stock.restore(variant_id, 2, order_ref="ORD1", reason="Item cancelled") == 8
        assert current_domain.repository_for(Variant).get(variant_id).stock == 8

    def test_failed_reserve_leaves_stock_untouched(self, make_variant):
        variant_id = make_variant(stock=1)
        with pytest.raises(InsufficientStock):
            stock.reserve(variant_id, 2)
        assert current_domain.repository_for(Variant).get(variant_id).stock == 1

    def test_stale_copy_cannot_sell_the_last_unit_twice(self, make_variant):
        variant_id = make_variant(stock=1)
        repo = current_domain.repository_for(Variant)
        first, second = repo.get(variant_id), repo.get(variant_id)

        first.reserve(1, order_ref="ORD1")
        second.reserve(1, order_ref="ORD2")
        repo.add(first)

        with pytest.raises(ConcurrencyConflict):
            with conflicts_as_retryable():
                repo.add(second)
        assert repo.get(variant_id).stock == 0

    def test_update_stock(self, make_variant):
        variant_id = make_variant(stock=10)
        assert stock.update_stock(variant_id, 3) == 3

    def test_unknown_variant(self):
        with pytest.raises(ObjectNotFoundError):
            stock.reserve("missing", 1)

    def test_low_stock_listing_is_sorted(self, make_variant):
        plenty = make_variant(stock=50)
        low = make_variant(stock=4)
        empty = make_variant(stock=0)

        listed = [v["variant_id"] for v in stock.low_stock_variants()]
        assert listed == [empty, low]
        assert plenty not in listed


class TestPurchasability:
    def test_listed_variant(self, make_variant):
        variant_id = make_variant(product_name="Linen Shirt")
        variant, product = stock.load_purchasable(variant_id)
        assert str(variant.id) == variant_id
        assert product.name == "Linen Shirt"

    def test_unlisted_product(self, make_variant):
        variant_id = make_variant(product_name="Linen Shirt")
        variant = current_domain.repository_for(Variant).get(variant_id)
        current_domain.process(SetProductListing(product_id=variant.product_id, is_listed=False), asynchronous=False)

        with pytest.raises(ValidationError) as exc:
            stock.load_purchasable(variant_id)
        assert exc.value.messages["items"] == ["Linen Shirt is no longer available"]

    def test_unlisted_category(self, make_variant):
        variant_id = make_variant()
        variant = current_domain.repository_for(Variant).get(variant_id)
        product = current_domain.repository_for(Product).get(variant.product_id)
        current_domain.process(
            SetCategoryListing(category_id=product.category_id, is_listed=False),
            asynchronous=False,
        )
        with pytest.raises(ValidationError):
            stock.load_purchasable(variant_id)

    def test_missing_variant(self):
        with pytest.raises(ValidationError) as exc:
            stock.load_purchasable("missing")
        assert "items" in exc.value.messages


class TestCategoryNames:
    def test_duplicate_category_name(self):
        current_domain.process(AddCategory(name="Ethnic Wear"), asynchronous=False)
        with pytest.raises(ValidationError):
            current_domain.process(AddCategory(name="Ethnic Wear"), asynchronous=False)
