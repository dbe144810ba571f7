"""User wishlists, stored as a list of alien ids on the user document."""

from fastapi import APIRouter, Depends
from pydantic import Field
from pymongo import ReturnDocument
from pymongo.database import Database

from auth import get_current_user
from catalog import alien_payload, aliens_by_id, get_alien
from database import get_db, utc_now
from errors import ConflictError, NotFoundError
from logging_config import get_logger
from schemas import ApiModel, ok

log = get_logger("wishlist")

router = APIRouter(prefix="/api/wishlist", tags=["wishlist"])


class WishlistAdd(ApiModel):
    alien_id: str = Field(..., alias="alienId", min_length=1)


def wishlist_view(db: Database, user: dict) -> dict:
    """Populated wishlist in stored order; ids of deleted aliens are skipped."""
    ids = [str(alien_id) for alien_id in user.get("wishlist", [])]
    aliens = aliens_by_id(db, ids)
    items = [alien_payload(aliens[alien_id]) for alien_id in ids if alien_id in aliens]
    return {"wishlist": items, "count": len(items)}


def _update_wishlist(db: Database, user: dict, update: dict) -> dict:
    update.setdefault("$set", {})["updated_at"] = utc_now()
    return db["user"].find_one_and_update({"_id": user["_id"]}, update, return_document=ReturnDocument.AFTER)


@router.get("")
def get_wishlist(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(wishlist_view(db, user))


@router.post("/add", status_code=201)
def add_to_wishlist(payload: WishlistAdd, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    alien_id = str(get_alien(db, payload.alien_id)["_id"])
    if alien_id in [str(a) for a in user.get("wishlist", [])]:
        raise ConflictError("Alien is already in wishlist", code="ALREADY_IN_WISHLIST")
    updated = _update_wishlist(db, user, {"$addToSet": {"wishlist": alien_id}})
    log.info("User %s added %s to wishlist", user["_id"], alien_id)
    return ok(wishlist_view(db, updated), "Alien added to wishlist successfully")


@router.delete("/remove/{alien_id}")
def remove_from_wishlist(alien_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    if alien_id not in [str(a) for a in user.get("wishlist", [])]:
        raise NotFoundError("Alien is not in wishlist", code="NOT_IN_WISHLIST")
    updated = _update_wishlist(db, user, {"$pull": {"wishlist": alien_id}})
    return ok(wishlist_view(db, updated), "Alien removed from wishlist successfully")


@router.get("/check/{alien_id}")
def check_wishlist(alien_id: str, user: dict = Depends(get_current_user)):
    return ok({"isInWishlist": alien_id in [str(a) for a in user.get("wishlist", [])], "alienId": alien_id})


@router.delete("/clear")
def clear_wishlist(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    updated = _update_wishlist(db, user, {"$set": {"wishlist": []}})
    return ok(wishlist_view(db, updated), "Wishlist cleared successfully")
