"""Catalogue routes: categories, products, variants and stock levels."""

from fastapi import APIRouter, Query
from protean.utils.globals import current_domain

from storefront.api.schemas import (
    AddCategoryRequest,
    AddProductRequest,
    AddVariantRequest,
    IdResponse,
    ListingRequest,
    StatusResponse,
    UpdateStockRequest,
)
from storefront.catalogue import stock
from storefront.catalogue.management import (
    AddCategory,
    AddProduct,
    AddVariant,
    SetCategoryListing,
    SetProductListing,
)
from storefront.catalogue.variant import LOW_STOCK_THRESHOLD, Variant
from storefront.errors import conflicts_as_retryable

router = APIRouter(prefix="/catalogue", tags=["catalogue"])


def _process(command):
    with conflicts_as_retryable():
        return current_domain.process(command, asynchronous=False)


@router.post("/categories", status_code=201, response_model=IdResponse)
async def add_category(body: AddCategoryRequest) -> IdResponse:
    return IdResponse(id=_process(AddCategory(name=body.name, description=body.description)))


@router.put("/categories/{category_id}/listing", response_model=StatusResponse)
async def set_category_listing(category_id: str, body: ListingRequest) -> StatusResponse:
    _process(SetCategoryListing(category_id=category_id, is_listed=body.is_listed))
    return StatusResponse(message="Category listed" if body.is_listed else "Category unlisted")


@router.post("/products", status_code=201, response_model=IdResponse)
async def add_product(body: AddProductRequest) -> IdResponse:
    return IdResponse(
        id=_process(AddProduct(name=body.name, category_id=body.category_id, description=body.description))
    )


@router.put("/products/{product_id}/listing", response_model=StatusResponse)
async def set_product_listing(product_id: str, body: ListingRequest) -> StatusResponse:
    _process(SetProductListing(product_id=product_id, is_listed=body.is_listed))
    return StatusResponse(message="Product listed" if body.is_listed else "Product unlisted")


@router.post("/variants", status_code=201, response_model=IdResponse)
async def add_variant(body: AddVariantRequest) -> IdResponse:
    return IdResponse(id=_process(AddVariant(**body.model_dump())))


@router.get("/variants/low-stock")
async def low_stock(threshold: int = Query(LOW_STOCK_THRESHOLD, ge=0)) -> dict:
    return {"success": True, "variants": stock.low_stock_variants(threshold)}


@router.get("/variants/{variant_id}")
async def get_variant(variant_id: str) -> dict:
    variant = current_domain.repository_for(Variant).get(variant_id)
    return {
        "success": True,
        "variant_id": str(variant.id),
        "product_id": str(variant.product_id),
        "name": variant.name,
        "sku": variant.sku,
        "regular_price": variant.regular_price,
        "sale_price": variant.sale_price,
        "stock": variant.stock,
    }


@router.put("/variants/{variant_id}/stock")
async def update_stock(variant_id: str, body: UpdateStockRequest) -> dict:
    return {"success": True, "message": "Stock updated", "stock": stock.update_stock(variant_id, body.stock)}
