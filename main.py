import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import cache as cache_keys
import config
import database
from cache import QueryCache
from discounts import ValidationKind, validate_cart, validate_code
from pricing import CartPricing, effective_unit_price, line_total, price_cart
from repository import (
    DiscountCodeRepository,
    DuplicateCode,
    OrderRepository,
    ProductRepository,
    TransientFailure,
)
from schemas import (
    CartItem,
    DiscountCode,
    DiscountCodeCreate,
    DiscountCodeUpdate,
    Order,
    OrderItem,
    Product,
    ProductOut,
    ProductUpdate,
    ShippingDetails,
)

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

product_cache = QueryCache(ttl=config.PRODUCT_CACHE_TTL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        try:
            DiscountCodeRepository(database.db).ensure_indexes()
        except TransientFailure:
            logger.warning("Could not create discount code indexes at startup")
    yield


app = FastAPI(title="Footwear Store API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TransientFailure)
async def transient_failure_handler(request: Request, exc: TransientFailure):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Storage temporarily unavailable, please retry", "retryable": True},
    )


# ---------------------- Dependencies ----------------------
def get_db():
    return database.db


def get_cache() -> QueryCache:
    return product_cache


def get_products(db=Depends(get_db)) -> ProductRepository:
    return ProductRepository(db)


def get_discount_codes(db=Depends(get_db)) -> DiscountCodeRepository:
    return DiscountCodeRepository(db)


def get_orders(db=Depends(get_db)) -> OrderRepository:
    return OrderRepository(db)


def require_admin(x_admin_key: Optional[str] = Header(None)):
    if config.ADMIN_API_KEY and x_admin_key != config.ADMIN_API_KEY:
        raise HTTPException(status_code=403, detail="Admins only")


@app.get("/")
def read_root():
    return {"message": "Footwear Store Backend Running"}


@app.get("/test")
def test_database(db=Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_name"] = db.name if hasattr(db, 'name') else "✅ Connected"
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if config.DATABASE_URL else "❌ Not Set"

    return response


# ---------------------- Catalog API ----------------------
@app.get("/api/products", response_model=List[ProductOut])
def list_products(
    category: Optional[str] = None,
    q: Optional[str] = None,
    discounted: Optional[bool] = None,
    repo: ProductRepository = Depends(get_products),
    cache: QueryCache = Depends(get_cache),
):
    if category or q or discounted is not None:
        return repo.list(category=category, q=q, discounted=discounted)

    products = cache.get(cache_keys.PRODUCT_LIST)
    if products is None:
        products = repo.list()
        cache.set(cache_keys.PRODUCT_LIST, products)
    return products


@app.get("/api/products/{product_id}", response_model=ProductOut)
def get_product(product_id: str, repo: ProductRepository = Depends(get_products),
                cache: QueryCache = Depends(get_cache)):
    key = cache_keys.product_detail(product_id)
    product = cache.get(key)
    if product is None:
        product = repo.get(product_id)
        if product is None:
            raise HTTPException(status_code=404, detail="Product not found")
        cache.set(key, product)
    return product


@app.post("/api/products", response_model=ProductOut, status_code=201, dependencies=[Depends(require_admin)])
def create_product(payload: Product, repo: ProductRepository = Depends(get_products),
                   cache: QueryCache = Depends(get_cache)):
    product = repo.create(payload)
    cache.mark_stale(cache_keys.PRODUCTS)
    return product


@app.patch("/api/products/{product_id}", response_model=ProductOut, dependencies=[Depends(require_admin)])
def update_product(product_id: str, payload: ProductUpdate, repo: ProductRepository = Depends(get_products),
                   cache: QueryCache = Depends(get_cache)):
    product = repo.update(product_id, payload)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    cache.mark_stale(cache_keys.PRODUCTS)
    return product


@app.delete("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str, repo: ProductRepository = Depends(get_products),
                   cache: QueryCache = Depends(get_cache)):
    if not repo.delete(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    cache.mark_stale(cache_keys.PRODUCTS)
    return {"status": "deleted"}


class BulkDiscountRequest(BaseModel):
    product_ids: List[str] = Field(..., min_length=1)
    discount_percentage: float = Field(..., ge=1, le=100)


class BulkDiscountRemoveRequest(BaseModel):
    product_ids: List[str] = Field(..., min_length=1)


class BulkDiscountResponse(BaseModel):
    updated: int
    discount_percentage: float
    missing: List[str] = []


def _set_bulk_discount(product_ids: List[str], percentage: float, repo: ProductRepository,
                       cache: QueryCache) -> BulkDiscountResponse:
    ids = list(dict.fromkeys(product_ids))
    found = repo.get_many(ids)
    updated = repo.set_discount(ids, percentage)
    cache.mark_stale(cache_keys.PRODUCTS)
    return BulkDiscountResponse(
        updated=updated,
        discount_percentage=percentage,
        missing=[pid for pid in ids if pid not in found],
    )


@app.post("/api/products/discount", response_model=BulkDiscountResponse, dependencies=[Depends(require_admin)])
def apply_product_discount(payload: BulkDiscountRequest, repo: ProductRepository = Depends(get_products),
                           cache: QueryCache = Depends(get_cache)):
    return _set_bulk_discount(payload.product_ids, payload.discount_percentage, repo, cache)


@app.post("/api/products/discount/remove", response_model=BulkDiscountResponse,
          dependencies=[Depends(require_admin)])
def remove_product_discount(payload: BulkDiscountRemoveRequest, repo: ProductRepository = Depends(get_products),
                            cache: QueryCache = Depends(get_cache)):
    # Removal writes an explicit 0, never drops the field
    return _set_bulk_discount(payload.product_ids, 0, repo, cache)


@app.get("/api/inventory/summary", dependencies=[Depends(require_admin)])
def inventory_summary(repo: ProductRepository = Depends(get_products)):
    return repo.summary()


# ---------------------- Discount code API ----------------------
class DiscountCodeListItem(DiscountCode):
    status: str


def code_status(code: DiscountCode, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    if not code.is_active:
        return "inactive"
    if code.expires_at is not None and code.expires_at <= now:
        return "expired"
    if code.max_uses is not None and code.uses_count >= code.max_uses:
        return "exhausted"
    return "active"


@app.post("/api/discount-codes", response_model=DiscountCode, status_code=201,
          dependencies=[Depends(require_admin)])
def create_discount_code(payload: DiscountCodeCreate, repo: DiscountCodeRepository = Depends(get_discount_codes)):
    try:
        return repo.create(payload)
    except DuplicateCode:
        raise HTTPException(status_code=400, detail="Discount code already exists")


@app.get("/api/discount-codes", response_model=List[DiscountCodeListItem], dependencies=[Depends(require_admin)])
def list_discount_codes(repo: DiscountCodeRepository = Depends(get_discount_codes)):
    now = datetime.now(timezone.utc)
    return [DiscountCodeListItem(**c.model_dump(), status=code_status(c, now)) for c in repo.list()]


@app.patch("/api/discount-codes/{code_id}", response_model=DiscountCode, dependencies=[Depends(require_admin)])
def update_discount_code(code_id: str, payload: DiscountCodeUpdate,
                         repo: DiscountCodeRepository = Depends(get_discount_codes)):
    code = repo.update(code_id, payload)
    if code is None:
        raise HTTPException(status_code=404, detail="Discount code not found")
    return code


@app.delete("/api/discount-codes/{code_id}", dependencies=[Depends(require_admin)])
def delete_discount_code(code_id: str, repo: DiscountCodeRepository = Depends(get_discount_codes)):
    if not repo.soft_delete(code_id):
        raise HTTPException(status_code=404, detail="Discount code not found")
    return {"status": "deactivated"}


class ValidateCodeRequest(BaseModel):
    code: str = ""
    cart_subtotal: int = Field(..., ge=0)
    product_ids: List[str] = Field(default_factory=list)


class ValidateCodeResponse(BaseModel):
    valid: bool
    kind: ValidationKind
    message: str
    shortfall: Optional[int] = None
    discount_code: Optional[DiscountCode] = None


@app.post("/api/discount-codes/validate", response_model=ValidateCodeResponse)
def validate_discount_code(payload: ValidateCodeRequest, repo: DiscountCodeRepository = Depends(get_discount_codes),
                           products: ProductRepository = Depends(get_products)):
    # Categories come from the catalog, not from the client
    in_cart = products.get_many(payload.product_ids)
    result = validate_code(
        payload.code,
        payload.cart_subtotal,
        payload.product_ids,
        repo.find_active,
        categories={p.category for p in in_cart.values()},
    )
    return ValidateCodeResponse(valid=result.valid, **result.model_dump())


# ---------------------- Cart & checkout ----------------------
class CartLine(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartPriceRequest(BaseModel):
    items: List[CartLine]
    discount_code: Optional[str] = None


class PricedLine(BaseModel):
    product_id: str
    name: str
    quantity: int
    unit_price: int
    effective_unit_price: int
    line_total: int


class CartPriceResponse(BaseModel):
    items: List[PricedLine]
    pricing: CartPricing
    discount_valid: Optional[bool] = None
    discount_message: Optional[str] = None


def load_cart(lines: List[CartLine], repo: ProductRepository, check_stock: bool = False) -> List[CartItem]:
    """Snapshot current catalog data for each line; repeated products are merged."""
    quantities: dict = {}
    for line in lines:
        quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity

    products = repo.get_many(quantities.keys())
    items = []
    for product_id, quantity in quantities.items():
        product = products.get(product_id)
        if product is None:
            raise HTTPException(status_code=404, detail=f"Product not found: {product_id}")
        if check_stock and product.stock < quantity:
            raise HTTPException(status_code=400, detail=f"Insufficient stock for {product.name}")
        items.append(CartItem.from_product(product, quantity))
    return items


def _priced_lines(items: List[CartItem]) -> List[PricedLine]:
    return [
        PricedLine(
            product_id=item.product_id,
            name=item.name,
            quantity=item.quantity,
            unit_price=item.price,
            effective_unit_price=effective_unit_price(item.price, item.discount),
            line_total=line_total(item),
        )
        for item in items
    ]


@app.post("/api/cart/price", response_model=CartPriceResponse)
def price_cart_endpoint(payload: CartPriceRequest, products: ProductRepository = Depends(get_products),
                        codes: DiscountCodeRepository = Depends(get_discount_codes)):
    items = load_cart(payload.items, products)

    if payload.discount_code is None:
        return CartPriceResponse(items=_priced_lines(items), pricing=price_cart(items))

    # An unusable code still prices the cart, just without the coupon
    result = validate_cart(payload.discount_code, items, codes.find_active)
    return CartPriceResponse(
        items=_priced_lines(items),
        pricing=price_cart(items, result.discount_code),
        discount_valid=result.valid,
        discount_message=result.message,
    )


class CheckoutRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    items: List[CartLine]
    discount_code: Optional[str] = None
    shipping_details: ShippingDetails


class CheckoutResponse(BaseModel):
    order_id: str
    status: str
    subtotal: int
    discount_amount: int
    total_amount: int
    discount_code: Optional[str] = None


@app.post("/api/checkout", response_model=CheckoutResponse, status_code=201)
def checkout(payload: CheckoutRequest, products: ProductRepository = Depends(get_products),
             codes: DiscountCodeRepository = Depends(get_discount_codes),
             orders: OrderRepository = Depends(get_orders)):
    if not payload.items:
        raise HTTPException(status_code=400, detail="Cart is empty")

    items = load_cart(payload.items, products, check_stock=True)

    applied: Optional[DiscountCode] = None
    if payload.discount_code:
        result = validate_cart(payload.discount_code, items, codes.find_active)
        if not result.valid:
            raise HTTPException(status_code=400, detail=result.message)
        applied = result.discount_code

    pricing = price_cart(items, applied)
    order = Order(
        user_id=payload.user_id,
        items=[
            OrderItem(
                product_id=item.product_id,
                name=item.name,
                quantity=item.quantity,
                price_at_purchase=effective_unit_price(item.price, item.discount),
            )
            for item in items
        ],
        subtotal=pricing.subtotal,
        discount_amount=pricing.discount_amount,
        discount_code=pricing.discount_code,
        total_amount=pricing.total,
        status="pending",
        shipping_details=payload.shipping_details,
    )
    order_id = orders.create(order)

    # Redemption is only counted once the order exists
    if applied is not None:
        try:
            counted = codes.increment_usage(applied.id)
        except TransientFailure:
            logger.warning("Cancelling order %s, usage of %s could not be recorded", order_id, applied.code)
            orders.set_status(order_id, "cancelled")
            raise
        if not counted:
            orders.set_status(order_id, "cancelled")
            raise HTTPException(status_code=409, detail="Discount code has reached maximum uses")

    return CheckoutResponse(
        order_id=order_id,
        status=order.status,
        subtotal=order.subtotal,
        discount_amount=order.discount_amount,
        total_amount=order.total_amount,
        discount_code=order.discount_code,
    )


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, orders: OrderRepository = Depends(get_orders)):
    order = orders.get(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
