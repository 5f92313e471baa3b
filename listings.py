"""
Listings: creation, product CRUD and the cascading delete shared by every
listing type.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from database import DocumentStore, serialize
from errors import (
    INVALID_ARGUMENT,
    NOT_FOUND,
    PERMISSION_DENIED,
    NotFoundError,
    PermissionDeniedError,
    ServiceError,
    ValidationError,
    action,
    normalize_error,
)
from events import EventBus, listing_paths, revalidate
from schemas import (
    BOOKINGS,
    FAVORITES,
    LISTING_TYPES,
    MESSAGES,
    NOTIFICATIONS,
    PRODUCTS,
    REVIEWS,
    Accommodation,
    Listing,
    ListingImage,
    Product,
    Service,
    images_collection,
    listing_collection,
    resolve_owner_id,
)

logger = logging.getLogger(__name__)

PERMISSION_MESSAGE = "You don't have permission to delete this listing"

LISTING_MODELS = {"product": Product, "accommodation": Accommodation, "service": Service}


def _failure(error: str, code: str) -> Dict[str, Any]:
    return {"success": False, "error": error, "code": code}


def _dependents(listing_id: str, listing_type: str) -> List[tuple]:
    """(step name, collection, filter) in the order they must be removed"""
    steps = [
        ("images", images_collection(listing_type), {f"{listing_type}_id": listing_id}),
        ("favorites", FAVORITES, {"item_id": listing_id, "item_type": listing_type}),
        ("notifications", NOTIFICATIONS, {"extra_data.listing_id": listing_id}),
        ("reviews", REVIEWS, {"listing_id": listing_id, "listing_type": listing_type}),
    ]
    if listing_type == "accommodation":
        steps.append(("bookings", BOOKINGS, {"accommodation_id": listing_id}))
    steps.append(("messages", MESSAGES, {"listing_id": listing_id, "listing_type": listing_type}))
    return steps


def delete_listing(store: DocumentStore, listing_id: str, listing_type: str, user_id: str,
                   bus: Optional[EventBus] = None) -> Dict[str, Any]:
    """
    Delete a listing and everything that references it.

    Only the owner may delete. Dependents go first (images, favorites,
    notifications, reviews, bookings for accommodations, messages), then the
    listing itself, so no reader ever sees a dependent pointing at a missing
    listing. Returns {"success": True} or {"success": False, "error": ..., "code": ...}
    with an error code from errors; never raises.

    The removal runs inside store.transaction(). With transactions disabled
    a failure part way leaves the steps already done in place; the log line
    names them.
    """
    if listing_type not in LISTING_TYPES:
        return _failure("Invalid listing type", INVALID_ARGUMENT)

    collection = listing_collection(listing_type)
    completed: List[str] = []
    try:
        listing = store.get_document(collection, listing_id)
        if listing is None:
            return _failure(f"{listing_type} not found", NOT_FOUND)

        if resolve_owner_id(listing) != user_id:
            logger.warning("User %s tried to delete %s %s owned by someone else", user_id, listing_type, listing_id)
            return _failure(PERMISSION_MESSAGE, PERMISSION_DENIED)

        counts: Dict[str, int] = {}
        with store.transaction():
            for step, dependent_collection, filter_dict in _dependents(listing_id, listing_type):
                counts[step] = store.delete_where(dependent_collection, filter_dict)
                completed.append(step)
            store.delete_by_id(collection, listing_id)
            completed.append("listing")
    except Exception as e:
        error = normalize_error(e)
        logger.error(
            "Error deleting %s %s after steps %s: [%s] %s",
            listing_type, listing_id, completed or "none", error.code, error.message,
        )
        return _failure(f"Failed to delete {listing_type}", error.code)

    logger.info("Deleted %s %s with dependents %s", listing_type, listing_id, counts)
    revalidate(bus, *listing_paths(listing_type))
    return {"success": True}


def delete_product_listing(store: DocumentStore, listing_id: str, user_id: str, bus: EventBus = None):
    return delete_listing(store, listing_id, "product", user_id, bus)


def delete_accommodation_listing(store: DocumentStore, listing_id: str, user_id: str, bus: EventBus = None):
    return delete_listing(store, listing_id, "accommodation", user_id, bus)


def delete_service_listing(store: DocumentStore, listing_id: str, user_id: str, bus: EventBus = None):
    return delete_listing(store, listing_id, "service", user_id, bus)


def _without_ids(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc.pop("id", None)
    doc.pop("_id", None)
    return doc


@action
def create_listing(store: DocumentStore, listing_type: str, data: Union[Listing, Dict[str, Any]],
                   images: Iterable[Union[str, ListingImage]] = (), bus: Optional[EventBus] = None) -> Dict[str, Any]:
    """
    Store a listing with a normalized owner_id, then its images keyed by
    <type>_id. Ids are always generated here; client-supplied ones are dropped.
    """
    if listing_type not in LISTING_TYPES:
        raise ValidationError("Invalid listing type")
    if isinstance(data, dict):
        data = LISTING_MODELS[listing_type].model_validate(data)

    collection = listing_collection(listing_type)
    listing_id = store.create_document(collection, _without_ids(data.model_dump()))
    for i, image in enumerate(images):
        if isinstance(image, str):
            image = ListingImage(url=image, is_primary=i == 0)
        image_doc = _without_ids(image.model_dump())
        image_doc[f"{listing_type}_id"] = listing_id
        store.create_document(images_collection(listing_type), image_doc)

    revalidate(bus, *listing_paths(listing_type))
    return serialize(store.get_document(collection, listing_id))


# ---------------------------
# Products
# ---------------------------
@action
def get_products(store: DocumentStore, category: Optional[str] = None, university: Optional[str] = None,
                 min_price: Optional[float] = None, max_price: Optional[float] = None,
                 limit: Optional[int] = None) -> List[Dict[str, Any]]:
    filter_dict: Dict[str, Any] = {"is_sold": False}
    if category:
        filter_dict["category_id"] = category
    if university:
        filter_dict["university_id"] = university
    price_filter = {}
    if min_price is not None:
        price_filter["$gte"] = min_price
    if max_price is not None:
        price_filter["$lte"] = max_price
    if price_filter:
        filter_dict["price"] = price_filter

    docs = store.get_documents(PRODUCTS, filter_dict, limit, sort=[("created_at", -1)])
    return [serialize(d) for d in docs]


@action
def get_product(store: DocumentStore, product_id: str) -> Dict[str, Any]:
    doc = store.get_document(PRODUCTS, product_id)
    if doc is None:
        raise NotFoundError("product not found")
    return serialize(doc)


@action
def create_product(store: DocumentStore, data: Union[Product, Dict[str, Any]],
                   bus: Optional[EventBus] = None) -> Dict[str, Any]:
    return create_listing(store, "product", data, bus=bus)


@action
def update_product(store: DocumentStore, product_id: str, updates: Dict[str, Any],
                   bus: Optional[EventBus] = None) -> Dict[str, Any]:
    updates = {k: v for k, v in updates.items() if k not in ("id", "_id", "owner_id", "created_at")}
    store.update_by_id(PRODUCTS, product_id, updates)
    revalidate(bus, f"/marketplace/products/{product_id}", "/marketplace")
    return {"id": product_id, **updates}


@action
def mark_product_sold(store: DocumentStore, product_id: str, bus: Optional[EventBus] = None) -> Dict[str, Any]:
    return update_product(store, product_id, {"is_sold": True, "status": "sold"}, bus)


@action
def delete_product(store: DocumentStore, product_id: str, user_id: str,
                   bus: Optional[EventBus] = None) -> Dict[str, Any]:
    """HTTP-facing variant of the cascade: failures are raised, not returned"""
    result = delete_listing(store, product_id, "product", user_id, bus)
    if result["success"]:
        return result
    if result["code"] == PERMISSION_DENIED:
        raise PermissionDeniedError(result["error"])
    if result["code"] == NOT_FOUND:
        raise NotFoundError(result["error"])
    raise ServiceError(result["error"], result["code"])
