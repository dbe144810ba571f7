"""Admin dashboard: analytics, order and user management, catalog writes, metrics."""

import re
from collections import Counter, defaultdict
from datetime import timedelta
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field
from pymongo import DESCENDING
from pymongo.database import Database

from auth import check_admin_change, require_admin, user_payload
from cache import ResponseCache, get_cache
from catalog import (
    AlienFilters,
    alien_filters,
    alien_form,
    alien_payload,
    aliens_by_id,
    create_alien,
    delete_alien,
    find_aliens,
    paginate,
    set_alien_flag,
    update_alien,
)
from database import get_db, oid, update_document, utc_now
from errors import NotFoundError
from logging_config import get_logger
from models import Order, OrderStatus, PaymentStatus
from orders import save_order
from schemas import ApiModel, ok

log = get_logger("admin")

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])

ORDER_SORT_FIELDS = {
    "createdAt": "created_at",
    "totalAmount": "total_amount",
    "orderNumber": "order_number",
    "orderStatus": "order_status",
}
USER_SORT_FIELDS = {"createdAt": "created_at", "email": "email", "firstName": "first_name", "lastName": "last_name"}


def _regex(text: str) -> dict:
    return {"$regex": re.escape(text.strip()), "$options": "i"}


def _customers(db: Database, user_ids) -> dict[str, dict]:
    ids = [oid(u) for u in set(user_ids)]
    return {str(doc["_id"]): doc for doc in db["user"].find({"_id": {"$in": ids}})}


def _customer_name(user: Optional[dict]) -> str:
    if not user:
        return "Guest"
    return user_payload(user)["fullName"] or user["email"]


def _order_summary(order: Order, customer: Optional[dict]) -> dict:
    return {
        "id": order.id,
        "orderNumber": order.order_number,
        "customer": _customer_name(customer),
        "email": customer.get("email") if customer else None,
        "totalAmount": order.total_amount,
        "orderStatus": order.order_status.value,
        "paymentStatus": order.payment_status.value,
        "itemCount": len(order.items),
        "notes": order.notes,
        "createdAt": order.created_at,
        "updatedAt": order.updated_at,
    }


# Analytics


def dashboard_analytics(db: Database, days: int = 30) -> dict:
    now = utc_now()
    start = now - timedelta(days=days)
    window = [Order.from_dict(doc) for doc in db["order"].find({"created_at": {"$gte": start}})]
    paid = [order for order in window if order.payment_status == PaymentStatus.COMPLETED]

    revenue = round(sum(order.total_amount for order in paid), 2)
    sold: Counter = Counter()
    earned: dict[str, float] = defaultdict(float)
    for order in paid:
        for line in order.items:
            sold[line.alien_id] += line.quantity
            earned[line.alien_id] += line.subtotal
    aliens = aliens_by_id(db, list(sold))
    top_selling = [
        {
            "id": alien_id,
            "name": aliens[alien_id]["name"],
            "image": aliens[alien_id].get("image"),
            "faction": aliens[alien_id].get("faction"),
            "totalSold": count,
            "totalRevenue": round(earned[alien_id], 2),
        }
        for alien_id, count in sold.most_common()
        if alien_id in aliens
    ][:5]

    recent = [Order.from_dict(doc) for doc in db["order"].find().sort("created_at", DESCENDING).limit(10)]
    customers = _customers(db, [order.user_id for order in recent])

    status_counts = Counter(doc.get("order_status") for doc in db["order"].find({}, {"order_status": 1}))

    week_start = now - timedelta(days=7)
    daily: dict[str, dict] = {}
    for order in paid:
        created = order.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=now.tzinfo)
        if created < week_start:
            continue
        day = daily.setdefault(created.strftime("%Y-%m-%d"), {"sales": 0.0, "orders": 0})
        day["sales"] = round(day["sales"] + order.total_amount, 2)
        day["orders"] += 1

    return {
        "overview": {
            "totalUsers": db["user"].count_documents({}),
            "totalAliens": db["alien"].count_documents({}),
            "totalOrders": db["order"].count_documents({}),
            "recentOrders": len(window),
            "totalRevenue": revenue,
            "averageOrderValue": round(revenue / len(paid), 2) if paid else 0,
        },
        "topSellingAliens": top_selling,
        "recentOrders": [_order_summary(order, customers.get(order.user_id)) for order in recent],
        "orderStatusDistribution": [{"status": status, "count": count} for status, count in sorted(status_counts.items())],
        "dailySales": [{"date": date, **values} for date, values in sorted(daily.items())],
    }


@router.get("/analytics")
def get_analytics(days: int = Query(30, ge=1, le=365), db: Database = Depends(get_db)):
    return ok(dashboard_analytics(db, days))


# Orders


class OrderUpdate(ApiModel):
    order_status: Optional[OrderStatus] = Field(None, alias="orderStatus")
    payment_status: Optional[PaymentStatus] = Field(None, alias="paymentStatus")
    notes: Optional[str] = Field(None, max_length=500)


def apply_order_update(order: Order, update: OrderUpdate) -> Order:
    """Apply status changes through the state machines.

    A cancellation runs first, since it is the only way to reach a refund.
    Otherwise payment status goes before order status.
    """
    changes_order = update.order_status is not None and update.order_status != order.order_status
    if changes_order and update.order_status == OrderStatus.CANCELLED:
        order.cancel()
        changes_order = False
    if update.payment_status is not None:
        order.set_payment_status(update.payment_status)
    if changes_order:
        order.transition_to(update.order_status)
    if update.notes is not None:
        order.notes = update.notes
    return order


@router.get("/orders")
def list_all_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    paymentStatus: Optional[PaymentStatus] = None,
    search: Optional[str] = Query(None, max_length=100),
    sortBy: Literal["createdAt", "totalAmount", "orderNumber", "orderStatus"] = "createdAt",
    sortOrder: Literal["asc", "desc"] = "desc",
    db: Database = Depends(get_db),
):
    query: dict = {}
    if status:
        query["order_status"] = status.value
    if paymentStatus:
        query["payment_status"] = paymentStatus.value
    if search and search.strip():
        matched = db["user"].find(
            {"$or": [{"email": _regex(search)}, {"first_name": _regex(search)}, {"last_name": _regex(search)}]},
            {"_id": 1},
        )
        query["$or"] = [
            {"order_number": _regex(search)},
            {"user_id": {"$in": [str(doc["_id"]) for doc in matched]}},
        ]
    direction = DESCENDING if sortOrder == "desc" else 1
    docs = db["order"].find(query).sort(ORDER_SORT_FIELDS[sortBy], direction).skip((page - 1) * limit).limit(limit)
    orders = [Order.from_dict(doc) for doc in docs]
    customers = _customers(db, [order.user_id for order in orders])
    return ok({
        "orders": [_order_summary(order, customers.get(order.user_id)) for order in orders],
        "pagination": paginate(db["order"].count_documents(query), page, limit),
    })


@router.put("/orders/{order_id}")
def update_order(order_id: str, payload: OrderUpdate, db: Database = Depends(get_db)):
    doc = db["order"].find_one({"_id": oid(order_id)})
    if not doc:
        raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
    order = apply_order_update(Order.from_dict(doc), payload)
    save_order(db, order)
    log.info("Order %s updated: %s/%s", order.order_number, order.order_status.value, order.payment_status.value)
    customer = _customers(db, [order.user_id]).get(order.user_id)
    return ok({"order": _order_summary(order, customer)}, "Order updated successfully")


# Users


class AdminFlag(ApiModel):
    is_admin: bool = Field(..., alias="isAdmin")


@router.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    isAdmin: Optional[bool] = None,
    sortBy: Literal["createdAt", "email", "firstName", "lastName"] = "createdAt",
    sortOrder: Literal["asc", "desc"] = "desc",
    db: Database = Depends(get_db),
):
    query: dict = {}
    if isAdmin is not None:
        query["is_admin"] = isAdmin
    if search and search.strip():
        query["$or"] = [{"email": _regex(search)}, {"first_name": _regex(search)}, {"last_name": _regex(search)}]
    direction = DESCENDING if sortOrder == "desc" else 1
    docs = db["user"].find(query).sort(USER_SORT_FIELDS[sortBy], direction).skip((page - 1) * limit).limit(limit)
    users = []
    for doc in docs:
        data = user_payload(doc)
        data["wishlistCount"] = len(doc.get("wishlist", []))
        data["updatedAt"] = doc.get("updated_at")
        users.append(data)
    return ok({"users": users, "pagination": paginate(db["user"].count_documents(query), page, limit)})


@router.put("/users/{user_id}/admin")
def set_user_admin(user_id: str, payload: AdminFlag, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    check_admin_change(admin, user_id, payload.is_admin)
    updated = update_document(db, "user", user_id, {"is_admin": payload.is_admin})
    if not updated:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    log.info("Admin %s set is_admin=%s on user %s", admin["_id"], payload.is_admin, user_id)
    verb = "granted" if payload.is_admin else "revoked"
    return ok({"user": user_payload(updated)}, f"User {verb} admin privileges")


# Aliens


class FeaturedFlag(ApiModel):
    featured: bool


class StockFlag(ApiModel):
    in_stock: bool = Field(..., alias="inStock")


@router.get("/aliens")
def list_aliens_admin(filters: AlienFilters = Depends(alien_filters), db: Database = Depends(get_db)):
    docs, total = find_aliens(db, filters)
    return ok({"aliens": [alien_payload(doc) for doc in docs], "pagination": paginate(total, filters.page, filters.limit)})


@router.post("/aliens", status_code=201)
def create_alien_admin(
    request: Request,
    body: tuple = Depends(alien_form),
    db: Database = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    data, upload = body
    return ok(alien_payload(create_alien(db, cache, request.app.state.settings, data, upload)), "Alien created successfully")


@router.put("/aliens/{alien_id}")
def update_alien_admin(
    request: Request,
    alien_id: str,
    body: tuple = Depends(alien_form),
    db: Database = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    data, upload = body
    doc = update_alien(db, cache, request.app.state.settings, alien_id, data, upload)
    return ok(alien_payload(doc), "Alien updated successfully")


@router.delete("/aliens/{alien_id}")
def delete_alien_admin(alien_id: str, db: Database = Depends(get_db), cache: ResponseCache = Depends(get_cache)):
    delete_alien(db, cache, alien_id)
    return ok(message="Alien deleted successfully")


@router.put("/aliens/{alien_id}/featured")
def toggle_featured(alien_id: str, payload: FeaturedFlag, db: Database = Depends(get_db), cache: ResponseCache = Depends(get_cache)):
    doc = set_alien_flag(db, cache, alien_id, "featured", payload.featured)
    verb = "featured" if payload.featured else "unfeatured"
    return ok(alien_payload(doc), f"Alien {verb} successfully")


@router.put("/aliens/{alien_id}/stock")
def toggle_stock(alien_id: str, payload: StockFlag, db: Database = Depends(get_db), cache: ResponseCache = Depends(get_cache)):
    doc = set_alien_flag(db, cache, alien_id, "in_stock", payload.in_stock)
    state = "in stock" if payload.in_stock else "out of stock"
    return ok(alien_payload(doc), f"Alien marked as {state}")


# Metrics


@router.get("/metrics")
def get_metrics(request: Request):
    state = request.app.state
    return ok(state.perf_monitor.snapshot({
        "errors": state.error_monitor.error_stats(),
        "health": state.error_monitor.health_status(),
        "cache": state.cache.status(),
    }))
