"""
Favorites. Saving someone else's listing tells its owner about it; those
notifications carry the listing id so the cascading delete can find them.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from database import DocumentStore, serialize
from errors import NotFoundError, ServiceError, action
from events import LISTING_SECTIONS
from schemas import FAVORITES, Favorite, NotificationCreate, listing_collection, resolve_owner_id

logger = logging.getLogger(__name__)


def listing_link(listing_type: str, listing_id: str) -> str:
    if listing_type == "product":
        return f"/marketplace/products/{listing_id}"
    return f"{LISTING_SECTIONS.get(listing_type, '/' + listing_type)}/{listing_id}"


@action
def get_favorites(store: DocumentStore, user_id: str, item_type: Optional[str] = None) -> List[Dict[str, Any]]:
    filter_dict = {"user_id": user_id}
    if item_type:
        filter_dict["item_type"] = item_type
    return [serialize(d) for d in store.get_documents(FAVORITES, filter_dict, sort=[("created_at", -1)])]


@action
def is_favorite(store: DocumentStore, user_id: str, item_id: str, item_type: str) -> bool:
    return store.count_documents(FAVORITES, {"user_id": user_id, "item_id": item_id, "item_type": item_type}) > 0


@action
def add_favorite(store: DocumentStore, data: Union[Favorite, Dict[str, Any]], dispatcher=None) -> Dict[str, Any]:
    if isinstance(data, dict):
        data = Favorite.model_validate(data)

    existing = store.get_documents(FAVORITES, data.model_dump(), limit=1)
    if existing:
        return serialize(existing[0])

    listing = store.get_document(listing_collection(data.item_type), data.item_id)
    if listing is None:
        raise NotFoundError(f"{data.item_type} not found")

    favorite_id = store.create_document(FAVORITES, data)
    owner_id = resolve_owner_id(listing)
    if dispatcher is not None and owner_id and owner_id != data.user_id:
        try:
            dispatcher.notify_and_push(NotificationCreate(
                user_id=owner_id,
                type="favorite",
                title="Someone saved your listing",
                body=f"{listing.get('title') or 'Your listing'} was added to a favorites list",
                link=listing_link(data.item_type, data.item_id),
                extra_data={"listing_id": data.item_id, "listing_type": data.item_type},
            ))
        except ServiceError as e:
            logger.error("Favorite %s saved but owner notification failed: %s", favorite_id, e.message)
    return serialize(store.get_document(FAVORITES, favorite_id))


@action
def remove_favorite(store: DocumentStore, favorite_id: str) -> Dict[str, Any]:
    store.delete_by_id(FAVORITES, favorite_id)
    return {"success": True}
