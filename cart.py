"""Per-user shopping carts: persistence helpers and the /api/cart routes."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import get_current_user
from catalog import aliens_by_id, get_alien
from database import get_db, oid
from errors import BusinessError
from logging_config import get_logger
from models import MAX_QUANTITY, Cart
from schemas import ApiModel, ok

log = get_logger("cart")

router = APIRouter(prefix="/api/cart", tags=["cart"])

CART_ALIEN_FIELDS = ("name", "price", "image", "faction", "rarity", "in_stock")


def get_or_create(db: Database, user_id: str) -> Cart:
    """Return the user's cart, creating an empty one on first access."""
    doc = db["cart"].find_one({"user_id": str(user_id)})
    if doc:
        return Cart.from_dict(doc)
    cart = Cart(user_id=str(user_id))
    try:
        cart.id = str(db["cart"].insert_one(cart.to_dict()).inserted_id)
    except DuplicateKeyError:
        # created concurrently by another request
        return Cart.from_dict(db["cart"].find_one({"user_id": str(user_id)}))
    log.info("Created cart for user %s", user_id)
    return cart


def save(db: Database, cart: Cart) -> Cart:
    db["cart"].update_one(
        {"user_id": cart.user_id},
        {"$set": {"items": [line.to_dict() for line in cart.items], "updated_at": cart.updated_at}},
    )
    return cart


def add_item(db: Database, cart: Cart, alien_id: str, quantity: int = 1) -> Cart:
    alien = get_alien(db, alien_id)
    if not alien.get("in_stock", True):
        raise BusinessError("Alien is out of stock", code="OUT_OF_STOCK")
    cart.add_item(str(alien["_id"]), quantity)
    return save(db, cart)


def update_item(db: Database, cart: Cart, alien_id: str, quantity: int) -> Cart:
    cart.update_item(str(oid(alien_id)), quantity)
    return save(db, cart)


def remove_item(db: Database, cart: Cart, alien_id: str) -> Cart:
    cart.remove_item(str(oid(alien_id)))
    return save(db, cart)


def clear(db: Database, cart: Cart) -> Cart:
    cart.clear()
    return save(db, cart)


def _cart_alien(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    view = {"id": str(doc["_id"])}
    for name in CART_ALIEN_FIELDS:
        view["inStock" if name == "in_stock" else name] = doc.get(name)
    return view


def cart_view(db: Database, cart: Cart) -> dict:
    """Cart joined with current product data. Deleted products show as alien=None."""
    aliens = aliens_by_id(db, [line.alien_id for line in cart.items])
    prices = {alien_id: doc.get("price", 0) for alien_id, doc in aliens.items()}
    return {
        "id": cart.id,
        "items": [
            {"alienId": line.alien_id, "alien": _cart_alien(aliens.get(line.alien_id)), "quantity": line.quantity}
            for line in cart.items
        ],
        "totalItems": cart.total_items,
        "totalPrice": cart.total_price(prices),
        "updatedAt": cart.updated_at,
    }


class AddToCartRequest(ApiModel):
    alien_id: str = Field(..., alias="alienId", min_length=1)
    quantity: int = Field(1, ge=1, description="Clamped to the per-line maximum")


class QuantityUpdate(ApiModel):
    quantity: int = Field(..., ge=0, le=MAX_QUANTITY)


def _respond(db: Database, cart: Cart, message: Optional[str] = None) -> dict:
    return ok({"cart": cart_view(db, cart)}, message)


@router.get("")
def get_cart(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return _respond(db, get_or_create(db, user["_id"]))


@router.post("")
@router.post("/add")
def add_to_cart(payload: AddToCartRequest, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = add_item(db, get_or_create(db, user["_id"]), payload.alien_id, payload.quantity)
    return _respond(db, cart, "Item added to cart successfully")


@router.put("/update/{alien_id}")
def update_cart_item(alien_id: str, payload: QuantityUpdate, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = update_item(db, get_or_create(db, user["_id"]), alien_id, payload.quantity)
    return _respond(db, cart, "Cart updated successfully")


@router.delete("/remove/{alien_id}")
def remove_cart_item(alien_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = remove_item(db, get_or_create(db, user["_id"]), alien_id)
    return _respond(db, cart, "Item removed from cart successfully")


@router.delete("/clear")
def clear_cart(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = clear(db, get_or_create(db, user["_id"]))
    return _respond(db, cart, "Cart cleared successfully")
