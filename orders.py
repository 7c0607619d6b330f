"""
Order lifecycle

Checkout turns a buyer's cart into one order per seller, reserving stock with
conditional decrements and undoing every reservation (and any order already
written) if a later step fails. Status changes follow ALLOWED_TRANSITIONS;
cancellation restores the reserved stock exactly once.
"""

import logging
import math
import secrets
import string
import time
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument

from cart import clear_cart, parse_object_id
from config import ESTIMATED_DELIVERY_DAYS
from errors import Forbidden, InsufficientStock, InvalidInput, NotFound
from pricing import final_price, summarize
from schemas import (
    DeliveryAddress,
    DeliveryDetails,
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusBlock,
    OrderSummary,
    PaymentDetails,
    PaymentMethod,
    PaymentStatus,
    StatusEntry,
    utcnow,
)

logger = logging.getLogger(__name__)

S = OrderStatus

ALLOWED_TRANSITIONS = {
    S.placed: {S.confirmed, S.cancelled},
    S.confirmed: {S.processing, S.cancelled},
    S.processing: {S.ready_to_ship, S.cancelled},
    S.ready_to_ship: {S.shipped, S.cancelled},
    S.shipped: {S.out_for_delivery, S.delivered},
    S.out_for_delivery: {S.delivered},
    S.delivered: {S.returned},
    S.cancelled: set(),
    S.returned: set(),
}

CANCELLABLE = frozenset(s.value for s, targets in ALLOWED_TRANSITIONS.items() if S.cancelled in targets)

UNPAYABLE = frozenset({S.cancelled.value, S.returned.value})


def can_transition(current: str, target: str) -> bool:
    return S(target) in ALLOWED_TRANSITIONS[S(current)]


def generate_order_id() -> str:
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(5))
    return f"ORD{int(time.time() * 1000)}{suffix}"


def _status_entry(status: OrderStatus, note: str, actor: Optional[str]) -> Dict[str, Any]:
    return StatusEntry(status=status, note=note, updated_by=actor).model_dump()


# -------
# Lookups
# -------

def find_order(db, order_ref: str) -> Dict[str, Any]:
    if ObjectId.is_valid(order_ref):
        query = {"$or": [{"order_id": order_ref}, {"_id": ObjectId(order_ref)}]}
    else:
        query = {"order_id": order_ref}
    order = db["order"].find_one(query)
    if not order:
        raise NotFound("Order not found")
    return order


def get_order(db, order_ref: str, user_id: str) -> Dict[str, Any]:
    order = find_order(db, order_ref)
    if user_id not in (order["buyer_id"], order["seller_id"]):
        raise Forbidden("Access denied")
    return order


def list_orders(db, user_id: str, role: str = "buyer", status: Optional[str] = None, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    if role not in ("buyer", "seller"):
        raise InvalidInput("role must be 'buyer' or 'seller'")
    if page < 1 or limit < 1:
        raise InvalidInput("page and limit must be positive")
    query: Dict[str, Any] = {"buyer_id" if role == "buyer" else "seller_id": user_id}
    if status:
        query["order_status.current"] = status

    total = db["order"].count_documents(query)
    cursor = db["order"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return {
        "orders": list(cursor),
        "pagination": {
            "current_page": page,
            "total_pages": math.ceil(total / limit),
            "total_orders": total,
        },
    }


def order_stats(db, user_id: str, role: str = "seller") -> Dict[str, Any]:
    field = "seller_id" if role == "seller" else "buyer_id"
    breakdown = db["order"].aggregate([
        {"$match": {field: user_id}},
        {"$group": {
            "_id": "$order_status.current",
            "count": {"$sum": 1},
            "total_amount": {"$sum": "$order_summary.total_amount"},
        }},
    ])
    revenue = list(db["order"].aggregate([
        {"$match": {field: user_id, "payment_details.status": PaymentStatus.completed.value}},
        {"$group": {"_id": None, "total": {"$sum": "$order_summary.total_amount"}}},
    ]))
    return {
        "status_breakdown": [
            {"status": row["_id"], "count": row["count"], "total_amount": row["total_amount"]}
            for row in breakdown
        ],
        "total_orders": db["order"].count_documents({field: user_id}),
        "total_revenue": revenue[0]["total"] if revenue else 0,
    }


# --------
# Checkout
# --------

def _reserve(db, product_id: str, quantity: int) -> Dict[str, Any]:
    """Atomically take `quantity` units; returns the product as it was before."""
    oid = parse_object_id(product_id, "product id")
    product = db["product"].find_one_and_update(
        {"_id": oid, "is_active": True, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.BEFORE,
    )
    if product is not None:
        return product
    current = db["product"].find_one({"_id": oid})
    if not current or not current.get("is_active", False):
        raise NotFound(f"Product {product_id} is not available")
    raise InsufficientStock(f"Insufficient stock for {current.get('title', 'item')}. Available: {current.get('stock', 0)}")


def _release(db, reservations: Iterable[Tuple[str, int]]) -> None:
    for product_id, quantity in reservations:
        db["product"].update_one({"_id": ObjectId(product_id)}, {"$inc": {"stock": quantity}})


def place_orders(
    db,
    buyer_id: str,
    delivery_address: DeliveryAddress,
    payment_method: PaymentMethod,
    upi_id: Optional[str] = None,
    special_instructions: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Check out the buyer's cart, one order per seller.

    Either every order is written and the cart emptied, or stock and the
    order collection are left as they were.
    """
    payment_method = PaymentMethod(payment_method)
    if payment_method == PaymentMethod.upi and not (upi_id or "").strip():
        raise InvalidInput("UPI ID is required for UPI payments")

    cart = db["cart"].find_one({"user_id": buyer_id})
    lines = (cart or {}).get("items", [])
    if not lines:
        raise InvalidInput("Cart is empty")

    reservations: List[Tuple[str, int]] = []
    docs: List[Dict[str, Any]] = []
    try:
        by_seller: Dict[str, List[OrderItem]] = {}
        for line in lines:
            quantity = int(line["quantity"])
            product = _reserve(db, line["product_id"], quantity)
            reservations.append((line["product_id"], quantity))

            unit_price = final_price(product)
            images = product.get("images") or []
            by_seller.setdefault(product["seller_id"], []).append(OrderItem(
                product_id=line["product_id"],
                title=product.get("title", ""),
                price=unit_price,
                quantity=quantity,
                unit=product.get("unit"),
                image=images[0] if images else "",
                total_price=round(unit_price * quantity, 2),
            ))

        now = utcnow()
        for seller_id, items in by_seller.items():
            totals = summarize(item.total_price for item in items)
            order = Order(
                order_id=generate_order_id(),
                buyer_id=buyer_id,
                seller_id=seller_id,
                items=items,
                order_summary=OrderSummary(
                    subtotal=totals["subtotal"],
                    delivery_charges=totals["delivery_charges"],
                    taxes=totals["taxes"],
                    discount=0,
                    total_amount=totals["total"],
                ),
                delivery_address=delivery_address,
                payment_details=PaymentDetails(
                    method=payment_method,
                    upi_id=upi_id if payment_method == PaymentMethod.upi else None,
                    amount=totals["total"],
                ),
                order_status=OrderStatusBlock(
                    current=S.placed,
                    history=[StatusEntry(status=S.placed, timestamp=now, note="Order placed successfully", updated_by=buyer_id)],
                ),
                delivery_details=DeliveryDetails(estimated_delivery=now + timedelta(days=ESTIMATED_DELIVERY_DAYS)),
                special_instructions=special_instructions,
                created_at=now,
                updated_at=now,
            )
            docs.append(order.model_dump())

        db["order"].insert_many(docs)
    except Exception:
        logger.warning("Checkout for buyer %s failed; releasing %d reservation(s)", buyer_id, len(reservations))
        _release(db, reservations)
        if docs:
            db["order"].delete_many({"order_id": {"$in": [d["order_id"] for d in docs]}})
        raise

    clear_cart(db, buyer_id)
    logger.info("Buyer %s placed %d order(s): %s", buyer_id, len(docs), ", ".join(d["order_id"] for d in docs))
    return docs


# ------------------
# Status transitions
# ------------------

def cancel_order(db, order_ref: str, user_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
    order = get_order(db, order_ref, user_id)
    current = order["order_status"]["current"]
    if current not in CANCELLABLE:
        raise InvalidInput(f"Cannot cancel order in {current} status")

    now = utcnow()
    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "order_status.current": {"$in": sorted(CANCELLABLE)}},
        {
            "$set": {"order_status.current": S.cancelled.value, "updated_at": now},
            "$push": {"order_status.history": _status_entry(S.cancelled, reason or "Order cancelled by user", user_id)},
        },
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        # lost the race to another transition
        latest = find_order(db, order_ref)
        raise InvalidInput(f"Cannot cancel order in {latest['order_status']['current']} status")

    _release(db, ((item["product_id"], item["quantity"]) for item in updated["items"]))

    refunded = db["order"].update_one(
        {"_id": updated["_id"], "payment_details.status": PaymentStatus.completed.value},
        {"$set": {"payment_details.status": PaymentStatus.refunded.value, "updated_at": now}},
    )
    if refunded.modified_count:
        logger.info("Order %s marked refunded", updated["order_id"])
    logger.info("Order %s cancelled by %s (was %s)", updated["order_id"], user_id, current)
    return find_order(db, order_ref)


def update_status(
    db,
    order_ref: str,
    user_id: str,
    status: str,
    note: Optional[str] = None,
    tracking_number: Optional[str] = None,
    delivery_partner: Optional[str] = None,
) -> Dict[str, Any]:
    order = find_order(db, order_ref)
    if order["seller_id"] != user_id:
        raise Forbidden("Access denied. Only sellers can update order status")
    try:
        target = S(status)
    except ValueError:
        raise InvalidInput("Invalid order status")

    if target == S.cancelled:
        return cancel_order(db, order_ref, user_id, note)

    current = order["order_status"]["current"]
    if not can_transition(current, target):
        raise InvalidInput(f"Cannot change order status from {current} to {target.value}")

    now = utcnow()
    changes: Dict[str, Any] = {"order_status.current": target.value, "updated_at": now}
    if tracking_number:
        changes["delivery_details.tracking_number"] = tracking_number
    if delivery_partner:
        changes["delivery_details.delivery_partner"] = delivery_partner
    if target == S.delivered:
        changes["delivery_details.actual_delivery"] = now

    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "order_status.current": current},
        {
            "$set": changes,
            "$push": {"order_status.history": _status_entry(target, note or f"Order status updated to {target.value}", user_id)},
        },
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise InvalidInput("Order status changed meanwhile; reload and try again")
    logger.info("Order %s: %s -> %s by %s", updated["order_id"], current, target.value, user_id)
    return updated


# -------
# Payment
# -------

def process_payment(
    db,
    order_ref: str,
    user_id: str,
    amount: float,
    transaction_id: Optional[str] = None,
    payment_method: Optional[str] = None,
) -> Dict[str, Any]:
    order = find_order(db, order_ref)
    if order["buyer_id"] != user_id:
        raise Forbidden("Access denied")
    if order["order_status"]["current"] in UNPAYABLE:
        raise InvalidInput(f"Cannot pay for an order in {order['order_status']['current']} status")
    if payment_method is not None and PaymentMethod(payment_method).value != order["payment_details"]["method"]:
        raise InvalidInput("Payment method does not match the order")
    if amount != order["order_summary"]["total_amount"]:
        raise InvalidInput("Payment amount mismatch")

    now = utcnow()
    paid = db["order"].find_one_and_update(
        {"_id": order["_id"], "order_status.current": {"$nin": sorted(UNPAYABLE)}},
        {"$set": {
            "payment_details.status": PaymentStatus.completed.value,
            "payment_details.transaction_id": transaction_id,
            "payment_details.paid_at": now,
            "payment_details.amount": amount,
            "updated_at": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if paid is None:
        # cancelled or returned since it was loaded
        latest = find_order(db, order_ref)
        raise InvalidInput(f"Cannot pay for an order in {latest['order_status']['current']} status")
    db["order"].update_one(
        {"_id": order["_id"], "order_status.current": S.placed.value},
        {
            "$set": {"order_status.current": S.confirmed.value},
            "$push": {"order_status.history": _status_entry(S.confirmed, "Payment completed successfully", user_id)},
        },
    )
    logger.info("Payment of %s recorded for order %s", amount, order["order_id"])
    return {
        "order_id": order["order_id"],
        "payment_status": PaymentStatus.completed.value,
        "transaction_id": transaction_id,
    }
