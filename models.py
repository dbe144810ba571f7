"""Domain models for carts and orders.

These carry the business rules and know nothing about MongoDB; the service
modules load them with from_dict(), mutate them, and persist to_dict().
"""

import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from errors import BusinessError

MAX_QUANTITY = 10
TOTAL_TOLERANCE = 0.01


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = _as_utc(value)
    return value.isoformat() if value else None


# --- Cart ---


@dataclass
class CartLine:
    alien_id: str
    quantity: int

    def to_dict(self) -> dict[str, Any]:
        return {"alien_id": self.alien_id, "quantity": self.quantity}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CartLine":
        return cls(alien_id=str(data["alien_id"]), quantity=int(data["quantity"]))


@dataclass
class Cart:
    """A user's shopping cart. One per user, never deleted, only emptied."""

    user_id: str
    items: list[CartLine] = field(default_factory=list)
    id: Optional[str] = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    def find(self, alien_id: str) -> Optional[CartLine]:
        for line in self.items:
            if line.alien_id == str(alien_id):
                return line
        return None

    def add_item(self, alien_id: str, quantity: int = 1) -> CartLine:
        """Add to an existing line or append a new one; quantity is capped at 10."""
        line = self.find(alien_id)
        if line:
            line.quantity = min(line.quantity + quantity, MAX_QUANTITY)
        else:
            line = CartLine(alien_id=str(alien_id), quantity=min(quantity, MAX_QUANTITY))
            self.items.append(line)
        self.touch()
        return line

    def update_item(self, alien_id: str, quantity: int) -> None:
        """Set a line's quantity; zero or less removes the line."""
        line = self.find(alien_id)
        if line is None:
            return
        if quantity <= 0:
            self.remove_item(alien_id)
        else:
            line.quantity = min(quantity, MAX_QUANTITY)
            self.touch()

    def remove_item(self, alien_id: str) -> None:
        self.items = [line for line in self.items if line.alien_id != str(alien_id)]
        self.touch()

    def clear(self) -> None:
        self.items = []
        self.touch()

    def touch(self) -> None:
        self.updated_at = _utc_now()

    @property
    def total_items(self) -> int:
        return sum(line.quantity for line in self.items)

    def total_price(self, prices: Mapping[str, float]) -> float:
        """Sum of quantity x current price; lines without a known price count as 0."""
        total = 0.0
        for line in self.items:
            price = prices.get(line.alien_id)
            if price:
                total += price * line.quantity
        return round(total, 2)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "items": [line.to_dict() for line in self.items],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Cart":
        return cls(
            id=str(data["_id"]) if data.get("_id") is not None else data.get("id"),
            user_id=str(data["user_id"]),
            items=[CartLine.from_dict(item) for item in data.get("items", [])],
            created_at=_as_utc(data.get("created_at")) or _utc_now(),
            updated_at=_as_utc(data.get("updated_at")) or _utc_now(),
        )


# --- Order ---


class OrderStatus(str, Enum):
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


ORDER_TRANSITIONS: dict[OrderStatus, frozenset] = {
    OrderStatus.PROCESSING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

NON_CANCELLABLE = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Offsets from created_at used by the tracking timeline.
PAYMENT_CONFIRMED_AFTER = timedelta(minutes=5)
ORDER_CONFIRMED_AFTER = timedelta(minutes=30)
SHIPPED_AFTER = timedelta(days=1)
DELIVERED_AFTER = timedelta(days=3)

_ORDER_PROGRESS = [OrderStatus.PROCESSING, OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.DELIVERED]


class OrderTotalMismatch(BusinessError):
    def __init__(self, total_amount: float, calculated: float):
        self.total_amount = total_amount
        self.calculated = calculated
        super().__init__(
            f"Total amount {total_amount:.2f} does not match calculated total {calculated:.2f}",
            code="TOTAL_MISMATCH",
        )


class InvalidTransition(BusinessError):
    def __init__(self, kind: str, current: str, target: str):
        super().__init__(
            f"Cannot change {kind} from '{current}' to '{target}'",
            code="INVALID_STATUS_TRANSITION",
        )


def generate_order_number(now_ms: Optional[int] = None, rng: Optional[random.Random] = None) -> str:
    """BM + last 8 digits of the millisecond timestamp + 4 random digits."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    rng = rng or random
    return f"BM{str(now_ms)[-8:]}{rng.randint(1000, 9999)}"


@dataclass
class OrderLine:
    """A purchased product with its price frozen at order time."""

    alien_id: str
    quantity: int
    price: float

    def __post_init__(self):
        if int(self.quantity) != self.quantity or self.quantity < 1:
            raise BusinessError("Quantity must be a whole number of at least 1", code="VALIDATION_ERROR")
        if self.price < 0 or self.price != self.price or self.price == float("inf"):
            raise BusinessError("Price must be a valid positive number", code="VALIDATION_ERROR")

    @property
    def subtotal(self) -> float:
        return self.price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {"alien_id": self.alien_id, "quantity": self.quantity, "price": self.price}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OrderLine":
        return cls(alien_id=str(data["alien_id"]), quantity=int(data["quantity"]), price=float(data["price"]))


@dataclass
class Order:
    user_id: str
    items: list[OrderLine]
    total_amount: float
    shipping_address: dict[str, str]
    order_number: str
    payment_status: PaymentStatus = PaymentStatus.PENDING
    order_status: OrderStatus = OrderStatus.PROCESSING
    notes: Optional[str] = None
    id: Optional[str] = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    @classmethod
    def create(
        cls,
        user_id: str,
        items: list[OrderLine],
        total_amount: float,
        shipping_address: dict[str, str],
        order_number: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ) -> "Order":
        """Build a new pending order; the order number and total are settled here."""
        if not items:
            raise BusinessError("Order must contain at least one item", code="VALIDATION_ERROR")
        order = cls(
            user_id=str(user_id),
            items=list(items),
            total_amount=round(total_amount, 2),
            shipping_address=dict(shipping_address),
            order_number=order_number or generate_order_number(rng=rng),
        )
        order.verify_total()
        return order

    @property
    def calculated_total(self) -> float:
        return sum(line.subtotal for line in self.items)

    def verify_total(self) -> None:
        calculated = self.calculated_total
        if abs(self.total_amount - calculated) > TOTAL_TOLERANCE:
            raise OrderTotalMismatch(self.total_amount, calculated)

    # Order status machine

    def transition_to(self, status: OrderStatus) -> None:
        status = OrderStatus(status)
        if status == self.order_status:
            return
        if status not in ORDER_TRANSITIONS[self.order_status]:
            raise InvalidTransition("order status", self.order_status.value, status.value)
        self.order_status = status
        self.updated_at = _utc_now()

    def set_payment_status(self, status: PaymentStatus) -> None:
        status = PaymentStatus(status)
        if status == self.payment_status:
            return
        if status not in PAYMENT_TRANSITIONS[self.payment_status]:
            raise InvalidTransition("payment status", self.payment_status.value, status.value)
        # refunds only happen as part of cancel()
        if status == PaymentStatus.REFUNDED and self.order_status != OrderStatus.CANCELLED:
            raise InvalidTransition("payment status", self.payment_status.value, status.value)
        self.payment_status = status
        self.updated_at = _utc_now()

    def mark_paid(self) -> None:
        self.set_payment_status(PaymentStatus.COMPLETED)
        self.transition_to(OrderStatus.CONFIRMED)

    def mark_payment_failed(self) -> None:
        self.set_payment_status(PaymentStatus.FAILED)

    @property
    def can_cancel(self) -> bool:
        return self.order_status not in NON_CANCELLABLE

    def cancel(self) -> None:
        if not self.can_cancel:
            raise BusinessError(
                f"Order cannot be cancelled when it is {self.order_status.value}",
                code="CANNOT_CANCEL_ORDER",
            )
        self.transition_to(OrderStatus.CANCELLED)
        if self.payment_status == PaymentStatus.COMPLETED:
            self.set_payment_status(PaymentStatus.REFUNDED)

    # Tracking

    def _reached(self, status: OrderStatus) -> bool:
        if self.order_status == OrderStatus.CANCELLED:
            return False
        return _ORDER_PROGRESS.index(self.order_status) >= _ORDER_PROGRESS.index(status)

    def tracking(self) -> dict[str, Any]:
        """Synthetic milestone timeline derived from the statuses and created_at."""
        created = _as_utc(self.created_at)
        timeline = [{
            "status": "placed",
            "label": "Order placed",
            "timestamp": _iso(created),
            "completed": True,
        }]
        paid = self.payment_status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED)
        if paid:
            timeline.append({
                "status": "payment_confirmed",
                "label": "Payment confirmed",
                "timestamp": _iso(created + PAYMENT_CONFIRMED_AFTER),
                "completed": True,
            })
        if self._reached(OrderStatus.CONFIRMED) or (self.order_status == OrderStatus.CANCELLED and paid):
            timeline.append({
                "status": "confirmed",
                "label": "Order confirmed",
                "timestamp": _iso(created + ORDER_CONFIRMED_AFTER),
                "completed": True,
            })
        if self.order_status == OrderStatus.CANCELLED:
            timeline.append({
                "status": "cancelled",
                "label": "Order cancelled",
                "timestamp": _iso(self.updated_at),
                "completed": True,
            })
        else:
            timeline.append({
                "status": "shipped",
                "label": "Order shipped",
                "timestamp": _iso(created + SHIPPED_AFTER),
                "completed": self._reached(OrderStatus.SHIPPED),
            })
            timeline.append({
                "status": "delivered",
                "label": "Order delivered",
                "timestamp": _iso(created + DELIVERED_AFTER),
                "completed": self._reached(OrderStatus.DELIVERED),
            })

        estimated = None
        if self.order_status != OrderStatus.CANCELLED:
            estimated = _iso(created + DELIVERED_AFTER)
        return {
            "orderId": self.id,
            "orderNumber": self.order_number,
            "currentStatus": self.order_status.value,
            "paymentStatus": self.payment_status.value,
            "timeline": timeline,
            "estimatedDelivery": estimated,
        }

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "user_id": self.user_id,
            "items": [line.to_dict() for line in self.items],
            "total_amount": self.total_amount,
            "shipping_address": dict(self.shipping_address),
            "order_number": self.order_number,
            "payment_status": self.payment_status.value,
            "order_status": self.order_status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.notes is not None:
            result["notes"] = self.notes
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Order":
        return cls(
            id=str(data["_id"]) if data.get("_id") is not None else data.get("id"),
            user_id=str(data["user_id"]),
            items=[OrderLine.from_dict(item) for item in data.get("items", [])],
            total_amount=float(data["total_amount"]),
            shipping_address=dict(data.get("shipping_address") or {}),
            order_number=data["order_number"],
            payment_status=PaymentStatus(data.get("payment_status", "pending")),
            order_status=OrderStatus(data.get("order_status", "processing")),
            notes=data.get("notes"),
            created_at=_as_utc(data.get("created_at")) or _utc_now(),
            updated_at=_as_utc(data.get("updated_at")) or _utc_now(),
        )
