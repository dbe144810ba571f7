"""
Orders

Checkout turns the caller's cart into an order, charges the mock payment
processor and clears the cart on success. The steps are not transactional:
a crash between them can leave an order without a cleared cart.
"""

from typing import Any, Iterable, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field
from pymongo import DESCENDING
from pymongo.database import Database

import cart as carts
from auth import get_current_user
from catalog import aliens_by_id, paginate
from database import get_db, is_object_id, oid, utc_now
from errors import BusinessError, NotFoundError
from logging_config import get_logger
from models import Cart, Order, OrderLine
from payment import PaymentProcessor
from schemas import ApiModel, PaymentMethod, ShippingAddress, ok

log = get_logger("orders")

router = APIRouter(prefix="/api/orders", tags=["orders"])

ORDER_ALIEN_FIELDS = ("name", "price", "image", "faction", "rarity")


def get_payment_processor(request: Request) -> PaymentProcessor:
    return request.app.state.payment_processor


def save_order(db: Database, order: Order) -> Order:
    """Persist an existing order. The total is re-checked before every write."""
    order.verify_total()
    order.updated_at = utc_now()
    db["order"].update_one({"_id": oid(order.id)}, {"$set": order.to_dict()})
    return order


def create_order(
    db: Database,
    user_id: str,
    shipping_address: dict,
    payment_method: Any,
    processor: PaymentProcessor,
) -> Order:
    cart_doc = db["cart"].find_one({"user_id": str(user_id)})
    if not cart_doc or not cart_doc.get("items"):
        raise BusinessError("Cart is empty", code="EMPTY_CART")
    cart = Cart.from_dict(cart_doc)

    lines = []
    for line in cart.items:
        alien = db["alien"].find_one({"_id": oid(line.alien_id)}) if is_object_id(line.alien_id) else None
        if not alien:
            raise BusinessError(f"Alien {line.alien_id} is no longer available", code="ALIEN_UNAVAILABLE")
        if not alien.get("in_stock", True):
            raise BusinessError(f"Alien {alien['name']} is out of stock", code="OUT_OF_STOCK")
        lines.append(OrderLine(alien_id=line.alien_id, quantity=line.quantity, price=float(alien["price"])))

    total = round(sum(line.subtotal for line in lines), 2)
    order = Order.create(str(user_id), lines, total, shipping_address)
    order.id = str(db["order"].insert_one(order.to_dict()).inserted_id)
    log.info("Order %s created for user %s, total %.2f", order.order_number, user_id, order.total_amount)

    payment = processor.process(order.total_amount, payment_method)
    if not payment.success:
        order.mark_payment_failed()
        save_order(db, order)
        log.warning("Payment failed for order %s: %s", order.order_number, payment.error)
        raise BusinessError("Payment processing failed", code="PAYMENT_FAILED", details=payment.error)

    order.mark_paid()
    save_order(db, order)
    carts.clear(db, cart)
    log.info("Order %s paid (transaction %s)", order.order_number, payment.transaction_id)
    return order


def find_order(db: Database, user_id: str, order_id: str) -> Order:
    doc = db["order"].find_one({"_id": oid(order_id), "user_id": str(user_id)})
    if not doc:
        raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
    return Order.from_dict(doc)


def list_orders(db: Database, user_id: str, page: int = 1, limit: int = 10) -> tuple[list[Order], dict]:
    query = {"user_id": str(user_id)}
    docs = db["order"].find(query).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    orders = [Order.from_dict(doc) for doc in docs]
    return orders, paginate(db["order"].count_documents(query), page, limit, total_key="totalOrders")


def cancel_order(db: Database, user_id: str, order_id: str) -> Order:
    order = find_order(db, user_id, order_id)
    order.cancel()
    save_order(db, order)
    log.info("Order %s cancelled by user %s", order.order_number, user_id)
    return order


def order_tracking(db: Database, user_id: str, order_id: str) -> dict:
    return find_order(db, user_id, order_id).tracking()


def _order_alien(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    view = {"id": str(doc["_id"])}
    view.update({name: doc.get(name) for name in ORDER_ALIEN_FIELDS})
    return view


def order_payloads(db: Database, orders: Iterable[Order], detailed: bool = True) -> list[dict]:
    """Orders with each line's alien populated when the product still exists."""
    orders = list(orders)
    aliens = aliens_by_id(db, [line.alien_id for order in orders for line in order.items])
    payloads = []
    for order in orders:
        data = {
            "id": order.id,
            "orderNumber": order.order_number,
            "items": [
                {
                    "alienId": line.alien_id,
                    "alien": _order_alien(aliens.get(line.alien_id)),
                    "quantity": line.quantity,
                    "price": line.price,
                }
                for line in order.items
            ],
            "totalAmount": order.total_amount,
            "paymentStatus": order.payment_status.value,
            "orderStatus": order.order_status.value,
            "createdAt": order.created_at,
        }
        if detailed:
            data["shippingAddress"] = ShippingAddress.model_validate(order.shipping_address).model_dump(by_alias=True)
            data["notes"] = order.notes
            data["updatedAt"] = order.updated_at
        payloads.append(data)
    return payloads


def order_payload(db: Database, order: Order) -> dict:
    return order_payloads(db, [order])[0]


class CreateOrderRequest(ApiModel):
    shipping_address: ShippingAddress = Field(..., alias="shippingAddress")
    payment_method: PaymentMethod = Field(..., alias="paymentMethod")


@router.post("", status_code=201)
def post_order(
    payload: CreateOrderRequest,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    order = create_order(db, str(user["_id"]), payload.shipping_address.model_dump(), payload.payment_method, processor)
    return ok({"order": order_payload(db, order)}, "Order created successfully")


@router.get("")
def get_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    orders, pagination = list_orders(db, str(user["_id"]), page, limit)
    return ok({"orders": order_payloads(db, orders, detailed=False), "pagination": pagination})


@router.get("/{order_id}")
def get_order(order_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok({"order": order_payload(db, find_order(db, str(user["_id"]), order_id))})


@router.put("/{order_id}/cancel")
def put_cancel_order(order_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    order = cancel_order(db, str(user["_id"]), order_id)
    return ok({"order": order_payload(db, order)}, "Order cancelled successfully")


@router.get("/{order_id}/tracking")
def get_order_tracking(order_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(order_tracking(db, str(user["_id"]), order_id))
