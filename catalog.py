"""
Catalog

Alien queries, pagination and the /api/aliens routes. Public reads are
cached; admin writes go through the service functions at the bottom, which
are shared with the admin router and invalidate the cache.
"""

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError
from pymongo import DESCENDING
from pymongo.database import Database
from starlette.datastructures import UploadFile

from auth import require_admin
from cache import ALIEN_DETAIL_TTL, ALIEN_LIST_TTL, ResponseCache, cached, get_cache, path_key, query_key
from database import create_document, get_db, is_object_id, oid, update_document
from errors import NotFoundError, ValidationFailed, format_validation_errors
from logging_config import get_logger
from schemas import RARITIES, Alien as AlienSchema, AlienUpdate, ok
from uploads import discard_image, save_image

log = get_logger("catalog")

router = APIRouter(prefix="/api/aliens", tags=["aliens"])

SORT_FIELDS = {
    "name": "name",
    "price": "price",
    "rarity": "rarity",
    "createdAt": "created_at",
    "faction": "faction",
    "planet": "planet",
}
DEFAULT_PRICE_RANGE = {"minPrice": 0, "maxPrice": 1000}
FEATURED_LIMIT = 6
RELATED_LIMIT = 4


@dataclass
class AlienFilters:
    search: Optional[str] = None
    faction: Optional[str] = None
    planet: Optional[str] = None
    rarity: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    featured: Optional[bool] = None
    in_stock: Optional[bool] = None
    page: int = 1
    limit: int = 12
    sort_by: str = "createdAt"
    sort_order: str = "desc"


def alien_filters(
    search: Optional[str] = Query(None, max_length=100),
    faction: Optional[str] = Query(None, max_length=50),
    planet: Optional[str] = Query(None, max_length=50),
    rarity: Optional[Literal["Common", "Rare", "Epic", "Legendary"]] = None,
    minPrice: Optional[float] = Query(None, ge=0),
    maxPrice: Optional[float] = Query(None, ge=0),
    featured: Optional[bool] = None,
    inStock: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    sortBy: Literal["name", "price", "rarity", "createdAt", "faction", "planet"] = "createdAt",
    sortOrder: Literal["asc", "desc"] = "desc",
) -> AlienFilters:
    return AlienFilters(
        search=search,
        faction=faction,
        planet=planet,
        rarity=rarity,
        min_price=minPrice,
        max_price=maxPrice,
        featured=featured,
        in_stock=inStock,
        page=page,
        limit=limit,
        sort_by=sortBy,
        sort_order=sortOrder,
    )


def _contains(text: str) -> dict:
    return {"$regex": re.escape(text.strip()), "$options": "i"}


def build_alien_query(filters: AlienFilters) -> tuple[dict, list[tuple[str, int]]]:
    """Mongo filter and sort spec for a catalog listing."""
    query: dict[str, Any] = {}
    if filters.search and filters.search.strip():
        query["$or"] = [
            {"name": _contains(filters.search)},
            {"faction": _contains(filters.search)},
            {"planet": _contains(filters.search)},
        ]
    if filters.faction:
        query["faction"] = _contains(filters.faction)
    if filters.planet:
        query["planet"] = _contains(filters.planet)
    if filters.rarity:
        query["rarity"] = filters.rarity
    if filters.min_price is not None or filters.max_price is not None:
        query["price"] = {}
        if filters.min_price is not None:
            query["price"]["$gte"] = filters.min_price
        if filters.max_price is not None:
            query["price"]["$lte"] = filters.max_price
    if filters.featured is not None:
        query["featured"] = filters.featured
    if filters.in_stock is not None:
        query["in_stock"] = filters.in_stock

    direction = DESCENDING if filters.sort_order == "desc" else 1
    sort = [(SORT_FIELDS.get(filters.sort_by, "created_at"), direction)]
    return query, sort


def paginate(total: int, page: int, limit: int, total_key: str = "totalCount") -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "currentPage": page,
        "totalPages": total_pages,
        total_key: total,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
        "limit": limit,
    }


def alien_payload(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    return {
        "id": str(doc["_id"]),
        "name": doc.get("name"),
        "faction": doc.get("faction"),
        "planet": doc.get("planet"),
        "rarity": doc.get("rarity"),
        "price": doc.get("price"),
        "image": doc.get("image"),
        "backstory": doc.get("backstory"),
        "abilities": doc.get("abilities", []),
        "clothingStyle": doc.get("clothing_style"),
        "featured": bool(doc.get("featured")),
        "inStock": bool(doc.get("in_stock", True)),
        "createdAt": doc.get("created_at"),
        "updatedAt": doc.get("updated_at"),
    }


def find_aliens(db: Database, filters: AlienFilters) -> tuple[list[dict], int]:
    query, sort = build_alien_query(filters)
    skip = (filters.page - 1) * filters.limit
    docs = list(db["alien"].find(query).sort(sort).skip(skip).limit(filters.limit))
    return docs, db["alien"].count_documents(query)


def get_alien(db: Database, alien_id: str) -> dict:
    doc = db["alien"].find_one({"_id": oid(alien_id)})
    if not doc:
        raise NotFoundError("Alien not found", code="ALIEN_NOT_FOUND")
    return doc


def aliens_by_id(db: Database, alien_ids) -> dict[str, dict]:
    """Existing aliens keyed by id string; unknown or malformed ids are skipped."""
    ids = [oid(a) for a in {str(a) for a in alien_ids} if is_object_id(a)]
    return {str(doc["_id"]): doc for doc in db["alien"].find({"_id": {"$in": ids}})}


def _rarity_rank(rarity: str) -> int:
    return RARITIES.index(rarity) if rarity in RARITIES else len(RARITIES)


def filter_options(db: Database) -> dict:
    price = list(db["alien"].aggregate([
        {"$group": {"_id": None, "minPrice": {"$min": "$price"}, "maxPrice": {"$max": "$price"}}},
    ]))
    price_range = DEFAULT_PRICE_RANGE
    if price:
        price_range = {"minPrice": price[0]["minPrice"], "maxPrice": price[0]["maxPrice"]}
    return {
        "factions": sorted(db["alien"].distinct("faction")),
        "planets": sorted(db["alien"].distinct("planet")),
        "rarities": sorted(db["alien"].distinct("rarity"), key=_rarity_rank),
        "priceRange": price_range,
    }


# Writes


async def alien_form(request: Request) -> tuple[dict, Optional[UploadFile]]:
    """Read an alien write body sent as JSON or multipart form data."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data") or content_type.startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        data: dict[str, Any] = {}
        upload = None
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if key == "image" and value.filename:
                    upload = value
            else:
                data[key] = value
        return data, upload
    body = await request.body()
    if not body:
        return {}, None
    try:
        data = json.loads(body)
    except ValueError:
        raise ValidationFailed("Request body is not valid JSON")
    if not isinstance(data, dict):
        raise ValidationFailed("Request body must be a JSON object")
    return data, None


def _validate(model, data: dict, image: Optional[str], upload_dir: str):
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        discard_image(image, upload_dir)
        raise ValidationFailed("Validation failed", details=format_validation_errors(exc.errors()))


def create_alien(db: Database, cache: ResponseCache, settings, data: dict, upload: Optional[UploadFile] = None) -> dict:
    image = None
    if upload is not None:
        image = data["image"] = save_image(upload, settings.upload_dir, settings.max_upload_size)
    alien = _validate(AlienSchema, data, image, settings.upload_dir)
    alien_id = create_document(db, "alien", alien)
    cache.invalidate_aliens()
    log.info("Alien created: %s (%s)", alien_id, alien.name)
    return db["alien"].find_one({"_id": oid(alien_id)})


def update_alien(db: Database, cache: ResponseCache, settings, alien_id: str, data: dict, upload: Optional[UploadFile] = None) -> dict:
    object_id = oid(alien_id)
    image = None
    if upload is not None:
        image = data["image"] = save_image(upload, settings.upload_dir, settings.max_upload_size)
    changes = _validate(AlienUpdate, data, image, settings.upload_dir).model_dump(exclude_unset=True)
    changes = {k: v for k, v in changes.items() if v is not None or k in ("backstory", "clothing_style")}
    updated = update_document(db, "alien", object_id, changes)
    if not updated:
        discard_image(image, settings.upload_dir)
        raise NotFoundError("Alien not found", code="ALIEN_NOT_FOUND")
    cache.invalidate_alien(alien_id)
    log.info("Alien updated: %s", alien_id)
    return updated


def delete_alien(db: Database, cache: ResponseCache, alien_id: str) -> None:
    result = db["alien"].delete_one({"_id": oid(alien_id)})
    if not result.deleted_count:
        raise NotFoundError("Alien not found", code="ALIEN_NOT_FOUND")
    cache.invalidate_alien(alien_id)
    log.info("Alien deleted: %s", alien_id)


def set_alien_flag(db: Database, cache: ResponseCache, alien_id: str, field: str, value: bool) -> dict:
    updated = update_document(db, "alien", alien_id, {field: bool(value)})
    if not updated:
        raise NotFoundError("Alien not found", code="ALIEN_NOT_FOUND")
    cache.invalidate_alien(alien_id)
    return updated


# Routes


@router.get("")
@cached(ALIEN_LIST_TTL, query_key(
    "aliens:list",
    "page", "limit", "search", "faction", "planet", "rarity",
    "minPrice", "maxPrice", "featured", "inStock", "sortBy", "sortOrder",
    defaults={"page": 1, "limit": 12, "sortBy": "createdAt", "sortOrder": "desc"},
))
def list_aliens(request: Request, filters: AlienFilters = Depends(alien_filters), db: Database = Depends(get_db)):
    docs, total = find_aliens(db, filters)
    return ok({
        "aliens": [alien_payload(doc) for doc in docs],
        "pagination": paginate(total, filters.page, filters.limit),
    })


@router.get("/featured")
@cached(ALIEN_LIST_TTL, query_key("aliens:featured", "limit", defaults={"limit": FEATURED_LIMIT}))
def featured_aliens(request: Request, limit: int = Query(FEATURED_LIMIT, ge=1, le=50), db: Database = Depends(get_db)):
    docs = db["alien"].find({"featured": True, "in_stock": True}).sort("created_at", DESCENDING).limit(limit)
    return ok([alien_payload(doc) for doc in docs])


@router.get("/filter-options")
@cached(ALIEN_LIST_TTL, lambda request: "aliens:filter-options")
def get_filter_options(request: Request, db: Database = Depends(get_db)):
    return ok(filter_options(db))


@router.get("/{alien_id}")
@cached(ALIEN_DETAIL_TTL, path_key("alien:detail", "alien_id"))
def get_alien_detail(request: Request, alien_id: str, db: Database = Depends(get_db)):
    return ok(alien_payload(get_alien(db, alien_id)))


@router.get("/{alien_id}/related")
@cached(ALIEN_LIST_TTL, path_key("alien:related", "alien_id"))
def related_aliens(request: Request, alien_id: str, limit: int = Query(RELATED_LIMIT, ge=1, le=20), db: Database = Depends(get_db)):
    alien = get_alien(db, alien_id)
    docs = (
        db["alien"]
        .find({
            "_id": {"$ne": alien["_id"]},
            "$or": [{"faction": alien["faction"]}, {"planet": alien["planet"]}],
            "in_stock": True,
        })
        .sort([("featured", DESCENDING), ("created_at", DESCENDING)])
        .limit(limit)
    )
    return ok([alien_payload(doc) for doc in docs])


@router.post("", status_code=201)
def post_alien(
    request: Request,
    _admin: dict = Depends(require_admin),
    body: tuple = Depends(alien_form),
    db: Database = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    data, upload = body
    doc = create_alien(db, cache, request.app.state.settings, data, upload)
    return ok(alien_payload(doc), "Alien created successfully")


@router.put("/{alien_id}")
def put_alien(
    request: Request,
    alien_id: str,
    _admin: dict = Depends(require_admin),
    body: tuple = Depends(alien_form),
    db: Database = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    data, upload = body
    doc = update_alien(db, cache, request.app.state.settings, alien_id, data, upload)
    return ok(alien_payload(doc), "Alien updated successfully")


@router.delete("/{alien_id}")
def remove_alien(
    alien_id: str,
    _admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    delete_alien(db, cache, alien_id)
    return ok(message="Alien deleted successfully")
