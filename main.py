import logging
import math
import os
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

import cart as carts
import database
import orders
from auth import create_access_token, get_current_user, hash_password, public_user, verify_password
from config import LOG_LEVEL
from database import get_db, serialize_doc
from errors import Forbidden, InvalidInput, NotFound, ShopError
from pricing import final_price
from schemas import (
    DeliveryAddress,
    Discount,
    Location,
    PaymentMethod,
    Product as ProductSchema,
    ProductCategory,
    ProductType,
    SelectedVariant,
    Unit,
    User as UserSchema,
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes(database.db)
    yield


app = FastAPI(title="KrishiBandhu Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("Datastore failure on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Routes
@app.get("/")
def read_root():
    return {"message": "KrishiBandhu Marketplace API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["database_url"] = "✅ Set"
            response["database_name"] = database.db.name
            response["collections"] = database.db.list_collection_names()
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Auth
class RegisterInput(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None
    village: Optional[str] = None
    district: Optional[str] = None
    state: Optional[str] = None


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


@app.post("/auth/register", response_model=TokenResponse)
def register(payload: RegisterInput, db=Depends(get_db)):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user_model = UserSchema(
        name=payload.name,
        email=email,
        password_hash=hash_password(payload.password),
        phone=payload.phone,
        village=payload.village,
        district=payload.district,
        state=payload.state,
    )
    try:
        result = db["user"].insert_one(user_model.model_dump())
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already registered")
    user_id = str(result.inserted_id)
    logger.info("Registered user %s", user_id)
    user = db["user"].find_one({"_id": result.inserted_id})
    return TokenResponse(access_token=create_access_token({"sub": user_id}), user=public_user(user))


@app.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginInput, db=Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Invalid email or password")
    token = create_access_token({"sub": str(user["_id"])})
    return TokenResponse(access_token=token, user=public_user(user))


@app.get("/auth/me")
def me(current_user: dict = Depends(get_current_user)):
    return current_user


# Products
def product_out(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize_doc(doc)
    out["final_price"] = final_price(doc)
    return out


def pagination(page: int, limit: int, total: int, shown: int) -> Dict[str, Any]:
    skip = (page - 1) * limit
    return {
        "current_page": page,
        "total_pages": math.ceil(total / limit),
        "total_products": total,
        "has_next": skip + shown < total,
        "has_prev": page > 1,
    }


def owned_product(db, product_id: str, user_id: str, action: str) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": carts.parse_object_id(product_id, "product id")})
    if not product:
        raise NotFound("Product not found")
    if product.get("seller_id") != user_id:
        raise Forbidden(f"Access denied. You can only {action} your own products")
    return product


class ProductIn(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: ProductCategory
    type: ProductType
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(..., ge=0)
    unit: Unit
    images: List[str] = []
    location: Location = Location()
    tags: List[str] = []
    discount: Discount = Discount()


@app.post("/products", status_code=201)
def create_product(data: ProductIn, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    product = ProductSchema(**data.model_dump(), seller_id=current_user["id"])
    res = db["product"].insert_one(product.model_dump())
    logger.info("User %s listed product %s", current_user["id"], res.inserted_id)
    created = db["product"].find_one({"_id": res.inserted_id})
    return product_out(created)


SORT_FIELDS = {"created_at", "price", "title", "views", "stock"}


@app.get("/products")
def list_products(
    type: Optional[ProductType] = None,
    category: Optional[ProductCategory] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    seller_id: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 12,
    db=Depends(get_db),
):
    if page < 1 or limit < 1:
        raise InvalidInput("page and limit must be positive")
    if sort_by not in SORT_FIELDS:
        raise InvalidInput(f"sort_by must be one of {', '.join(sorted(SORT_FIELDS))}")
    query: Dict[str, Any] = {"is_active": True}
    if type:
        query["type"] = type.value
    if category:
        query["category"] = category.value
    if seller_id:
        query["seller_id"] = seller_id
    price_filter: Dict[str, Any] = {}
    if min_price is not None:
        price_filter["$gte"] = float(min_price)
    if max_price is not None:
        price_filter["$lte"] = float(max_price)
    if price_filter:
        query["price"] = price_filter
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}},
        ]

    total = db["product"].count_documents(query)
    cursor = (
        db["product"].find(query)
        .sort(sort_by, -1 if sort_order == "desc" else 1)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    items = [product_out(d) for d in cursor]
    return {"products": items, "pagination": pagination(page, limit, total, len(items))}


@app.get("/products/categories")
def product_categories(type: Optional[ProductType] = None, db=Depends(get_db)):
    match: Dict[str, Any] = {"is_active": True}
    if type:
        match["type"] = type.value
    rows = db["product"].aggregate([
        {"$match": match},
        {"$group": {"_id": "$category", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
    ])
    return [{"category": r["_id"], "count": r["count"]} for r in rows]


@app.get("/products/mine")
def my_products(status: str = "all", page: int = 1, limit: int = 10, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    if status not in ("all", "active", "inactive"):
        raise InvalidInput("status must be all, active or inactive")
    if page < 1 or limit < 1:
        raise InvalidInput("page and limit must be positive")
    query: Dict[str, Any] = {"seller_id": current_user["id"]}
    if status != "all":
        query["is_active"] = status == "active"
    total = db["product"].count_documents(query)
    cursor = db["product"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    items = [product_out(d) for d in cursor]
    return {"products": items, "pagination": pagination(page, limit, total, len(items))}


@app.get("/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    product = db["product"].find_one_and_update(
        {"_id": carts.parse_object_id(product_id, "product id"), "is_active": True},
        {"$inc": {"views": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not product:
        raise NotFound("Product not found")
    return product_out(product)


class ProductUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category: Optional[ProductCategory] = None
    type: Optional[ProductType] = None
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    unit: Optional[Unit] = None
    images: Optional[List[str]] = None
    location: Optional[Location] = None
    tags: Optional[List[str]] = None
    discount: Optional[Discount] = None
    is_active: Optional[bool] = None


@app.put("/products/{product_id}")
def update_product(product_id: str, data: ProductUpdate, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    product = owned_product(db, product_id, current_user["id"], "update")
    update_dict = data.model_dump(exclude_unset=True)
    if not update_dict:
        raise InvalidInput("No fields to update")
    update_dict["updated_at"] = datetime.now(timezone.utc)
    updated = db["product"].find_one_and_update(
        {"_id": product["_id"]}, {"$set": update_dict}, return_document=ReturnDocument.AFTER
    )
    return product_out(updated)


@app.delete("/products/{product_id}")
def delete_product(product_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    product = owned_product(db, product_id, current_user["id"], "delete")
    db["product"].update_one(
        {"_id": product["_id"]},
        {"$set": {"is_active": False, "updated_at": datetime.now(timezone.utc)}},
    )
    return {"ok": True}


# Cart
class AddCartItem(BaseModel):
    product_id: str
    quantity: int = 1
    selected_variant: SelectedVariant = SelectedVariant()


class UpdateCartItem(BaseModel):
    product_id: str
    quantity: int


@app.get("/cart")
def get_cart(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return carts.view_cart(db, current_user["id"])


@app.get("/cart/count")
def get_cart_count(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return {"count": carts.cart_count(db, current_user["id"])}


@app.post("/cart/add")
def add_to_cart(item: AddCartItem, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return carts.add_item(db, current_user["id"], item.product_id, item.quantity, item.selected_variant)


@app.put("/cart/update")
def update_cart(item: UpdateCartItem, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return carts.update_item(db, current_user["id"], item.product_id, item.quantity)


@app.delete("/cart/remove/{product_id}")
def remove_from_cart(product_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    carts.remove_item(db, current_user["id"], product_id)
    return {"ok": True}


@app.delete("/cart/clear")
def clear_cart(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    carts.clear_cart(db, current_user["id"])
    return {"ok": True}


# Orders
class CheckoutInput(BaseModel):
    delivery_address: DeliveryAddress
    payment_method: PaymentMethod
    upi_id: Optional[str] = None
    special_instructions: Optional[str] = None


class StatusInput(BaseModel):
    status: str
    note: Optional[str] = None
    tracking_number: Optional[str] = None
    delivery_partner: Optional[str] = None


class PaymentInput(BaseModel):
    amount: float
    transaction_id: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None


class CancelInput(BaseModel):
    reason: Optional[str] = None


@app.post("/orders", status_code=201)
def create_orders(payload: CheckoutInput, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    placed = orders.place_orders(
        db,
        current_user["id"],
        payload.delivery_address,
        payload.payment_method,
        upi_id=payload.upi_id,
        special_instructions=payload.special_instructions,
    )
    return [serialize_doc(o) for o in placed]


@app.get("/orders")
def list_orders(role: str = "buyer", status: Optional[str] = None, page: int = 1, limit: int = 10, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    result = orders.list_orders(db, current_user["id"], role=role, status=status, page=page, limit=limit)
    result["orders"] = [serialize_doc(o) for o in result["orders"]]
    return result


@app.get("/orders/stats")
def get_order_stats(role: str = "seller", current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return orders.order_stats(db, current_user["id"], role=role)


@app.get("/orders/{order_id}")
def get_order(order_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return serialize_doc(orders.get_order(db, order_id, current_user["id"]))


@app.put("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: StatusInput, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    updated = orders.update_status(
        db,
        order_id,
        current_user["id"],
        payload.status,
        note=payload.note,
        tracking_number=payload.tracking_number,
        delivery_partner=payload.delivery_partner,
    )
    return serialize_doc(updated)


@app.post("/orders/{order_id}/payment")
def process_payment(order_id: str, payload: PaymentInput, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return orders.process_payment(
        db,
        order_id,
        current_user["id"],
        payload.amount,
        transaction_id=payload.transaction_id,
        payment_method=payload.payment_method,
    )


@app.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, payload: Optional[CancelInput] = None, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    reason = payload.reason if payload else None
    return serialize_doc(orders.cancel_order(db, order_id, current_user["id"], reason))


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
