"""
Cart operations

One cart document per user, created lazily. Quantities are validated against
the product's stock at the moment of each mutation; stock itself is only
reserved at checkout (see orders.place_orders).
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId

from errors import InsufficientStock, InvalidInput, NotFound, SelfTradeForbidden
from pricing import final_price, summarize
from schemas import Cart, CartItem, SelectedVariant, utcnow

logger = logging.getLogger(__name__)


def parse_object_id(value: str, what: str = "id") -> ObjectId:
    if not value or not ObjectId.is_valid(value):
        raise InvalidInput(f"Invalid {what}")
    return ObjectId(value)


def get_active_product(db, product_id: str) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product id")})
    if not product or not product.get("is_active", False):
        raise NotFound("Product not found or not available")
    return product


def get_or_create_cart(db, user_id: str) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user_id": user_id})
    if cart is None:
        db["cart"].update_one(
            {"user_id": user_id},
            {"$setOnInsert": Cart(user_id=user_id).model_dump(exclude={"user_id"})},
            upsert=True,
        )
        cart = db["cart"].find_one({"user_id": user_id})
    return cart


def _products_by_id(db, items: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    ids = [ObjectId(it["product_id"]) for it in items if ObjectId.is_valid(it.get("product_id", ""))]
    if not ids:
        return {}
    return {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})}


def _price_lines(db, items: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]], Dict[str, Any]]:
    """Join cart lines with their products.

    Returns the priced lines, the raw lines that are still purchasable, and
    the cart summary. Lines whose product vanished or was deactivated are
    left out of both lists.
    """
    products = _products_by_id(db, items)
    priced, kept = [], []
    for it in items:
        product = products.get(it["product_id"])
        if not product or not product.get("is_active", False):
            continue
        unit_price = final_price(product)
        images = product.get("images") or []
        priced.append({
            "product_id": it["product_id"],
            "title": product.get("title"),
            "price": product.get("price"),
            "final_price": unit_price,
            "images": images,
            "stock": product.get("stock", 0),
            "unit": product.get("unit"),
            "seller_id": product.get("seller_id"),
            "quantity": it["quantity"],
            "item_total": round(unit_price * it["quantity"], 2),
            "added_at": it.get("added_at"),
            "selected_variant": it.get("selected_variant") or {},
        })
        kept.append(it)
    summary = summarize(line["item_total"] for line in priced)
    summary["total_items"] = sum(line["quantity"] for line in priced)
    return priced, kept, summary


def _store_items(db, user_id: str, items: List[Dict[str, Any]]) -> None:
    _, _, summary = _price_lines(db, items)
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {
            "items": items,
            "total_items": summary["total_items"],
            "estimated_total": summary["total"],
            "updated_at": utcnow(),
        }},
        upsert=True,
    )


def view_cart(db, user_id: str) -> Dict[str, Any]:
    cart = get_or_create_cart(db, user_id)
    items = cart.get("items", [])
    priced, kept, summary = _price_lines(db, items)
    if len(kept) != len(items):
        logger.info("Dropping %d unavailable line(s) from cart of user %s", len(items) - len(kept), user_id)
        _store_items(db, user_id, kept)
    return {"id": str(cart["_id"]), "items": priced, "summary": summary}


def add_item(db, user_id: str, product_id: str, quantity: int = 1, selected_variant: Optional[SelectedVariant] = None) -> Dict[str, Any]:
    if quantity <= 0:
        raise InvalidInput("Quantity must be at least 1")
    product = get_active_product(db, product_id)
    if product.get("seller_id") == user_id:
        raise SelfTradeForbidden("You cannot add your own product to cart")

    stock = int(product.get("stock", 0))
    if quantity > stock:
        raise InsufficientStock(f"Only {stock} items available in stock")

    cart = get_or_create_cart(db, user_id)
    items = cart.get("items", [])
    existing = next((it for it in items if it["product_id"] == product_id), None)
    if existing is not None:
        new_quantity = existing["quantity"] + quantity
        if new_quantity > stock:
            raise InsufficientStock(
                f"Cannot add {quantity} more items. Only {stock - existing['quantity']} more available"
            )
        existing["quantity"] = new_quantity
        existing["added_at"] = utcnow()
    else:
        line = CartItem(product_id=product_id, quantity=quantity, selected_variant=selected_variant or SelectedVariant())
        items.append(line.model_dump())

    _store_items(db, user_id, items)
    return view_cart(db, user_id)


def update_item(db, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
    if quantity < 0:
        raise InvalidInput("Valid product ID and quantity are required")
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        raise NotFound("Cart not found")
    items = cart.get("items", [])

    if quantity == 0:
        items = [it for it in items if it["product_id"] != product_id]
    else:
        product = get_active_product(db, product_id)
        stock = int(product.get("stock", 0))
        if quantity > stock:
            raise InsufficientStock(f"Only {stock} items available in stock")
        line = next((it for it in items if it["product_id"] == product_id), None)
        if line is None:
            raise NotFound("Item not found in cart")
        line["quantity"] = quantity

    _store_items(db, user_id, items)
    return view_cart(db, user_id)


def remove_item(db, user_id: str, product_id: str) -> None:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        raise NotFound("Cart not found")
    items = cart.get("items", [])
    remaining = [it for it in items if it["product_id"] != product_id]
    if len(remaining) == len(items):
        raise NotFound("Item not found in cart")
    _store_items(db, user_id, remaining)


def clear_cart(db, user_id: str) -> None:
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {"items": [], "total_items": 0, "estimated_total": 0, "updated_at": utcnow()}},
        upsert=True,
    )


def cart_count(db, user_id: str) -> int:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        return 0
    return sum(it["quantity"] for it in cart.get("items", []))
