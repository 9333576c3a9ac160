"""Catalogue management — commands and handlers for categories, products and variants."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, Float, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from storefront.catalogue.category import Category
from storefront.catalogue.product import Product
from storefront.catalogue.variant import Variant
from storefront.domain import storefront


@storefront.command(part_of="Category")
class AddCategory:
    name = String(required=True, max_length=100)
    description = String(max_length=500)


@storefront.command(part_of="Category")
class SetCategoryListing:
    category_id = Identifier(required=True)
    is_listed = Boolean(required=True)


@storefront.command(part_of="Product")
class AddProduct:
    name = String(required=True, max_length=255)
    category_id = Identifier(required=True)
    description = Text()


@storefront.command(part_of="Product")
class SetProductListing:
    product_id = Identifier(required=True)
    is_listed = Boolean(required=True)


@storefront.command(part_of="Variant")
class AddVariant:
    product_id = Identifier(required=True)
    name = String(required=True, max_length=100)
    sku = String(max_length=50)
    regular_price = Float(required=True, min_value=0.0)
    sale_price = Float(min_value=0.0)
    stock = Integer(default=0, min_value=0)


@storefront.command_handler(part_of=Category)
class CategoryHandler:
    @handle(AddCategory)
    def add_category(self, command):
        repo = current_domain.repository_for(Category)
        if repo._dao.query.filter(name=command.name).all().items:
            raise ValidationError({"name": ["A category with this name already exists"]})
        category = Category(name=command.name, description=command.description)
        repo.add(category)
        return str(category.id)

    @handle(SetCategoryListing)
    def set_category_listing(self, command):
        repo = current_domain.repository_for(Category)
        category = repo.get(command.category_id)
        category.set_listed(command.is_listed)
        repo.add(category)


@storefront.command_handler(part_of=Product)
class ProductHandler:
    @handle(AddProduct)
    def add_product(self, command):
        current_domain.repository_for(Category).get(command.category_id)
        product = Product(name=command.name, category_id=command.category_id, description=command.description)
        current_domain.repository_for(Product).add(product)
        return str(product.id)

    @handle(SetProductListing)
    def set_product_listing(self, command):
        repo = current_domain.repository_for(Product)
        product = repo.get(command.product_id)
        product.set_listed(command.is_listed)
        repo.add(product)


@storefront.command_handler(part_of=Variant)
class AddVariantHandler:
    @handle(AddVariant)
    def add_variant(self, command):
        current_domain.repository_for(Product).get(command.product_id)
        variant = Variant.create(
            product_id=command.product_id,
            name=command.name,
            sku=command.sku,
            regular_price=command.regular_price,
            sale_price=command.sale_price,
            stock=command.stock,
        )
        current_domain.repository_for(Variant).add(variant)
        return str(variant.id)
