"""
Database Schemas

Pydantic models for the marketplace collections and the request bodies
that write into them. Documents are stored with snake_case field names;
the document id lives in `_id` and is returned to clients as `id`.

Collections:
- products, accommodations, services      (listings, one per type)
- product_images, accommodation_images, service_images
- user_favorites, reviews, bookings, messages, notifications, users
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Literal, Dict, Any
from datetime import datetime

ListingType = Literal['product', 'accommodation', 'service']
LISTING_TYPES = ('product', 'accommodation', 'service')

USERS = "users"
FAVORITES = "user_favorites"
NOTIFICATIONS = "notifications"
REVIEWS = "reviews"
BOOKINGS = "bookings"
MESSAGES = "messages"
PRODUCTS = "products"


def listing_collection(listing_type: str) -> str:
    return f"{listing_type}s"


def images_collection(listing_type: str) -> str:
    return f"{listing_type}_images"


# Owner id fields, newest convention first; older documents used the others
OWNER_FIELDS = ("owner_id", "seller_id", "seller.id", "user_id")


def resolve_owner_id(listing: Dict[str, Any]) -> Optional[str]:
    for field in OWNER_FIELDS:
        value: Any = listing
        for part in field.split("."):
            value = value.get(part) if isinstance(value, dict) else None
        if value:
            return str(value)
    return None


# ---------------------------
# Listings
# ---------------------------
class Listing(BaseModel):
    """Fields shared by every listing type"""
    model_config = ConfigDict(extra='allow')

    owner_id: str = Field(..., description="User who owns the listing")
    title: str = Field(..., description="Listing title")
    description: Optional[str] = None
    status: str = Field('active', description="active, sold, archived ...")


class Product(Listing):
    """Collection name: "products" """
    name: Optional[str] = None
    price: float = Field(..., ge=0)
    category_id: Optional[str] = None
    university_id: Optional[str] = None
    condition: Optional[str] = None
    location: Optional[str] = None
    is_sold: bool = False
    views: int = 0
    likes: int = 0


class Accommodation(Listing):
    """Collection name: "accommodations" """
    price: Optional[float] = Field(None, ge=0)
    location: Optional[str] = None
    bedrooms: Optional[int] = Field(None, ge=0)
    available_from: Optional[datetime] = None


class Service(Listing):
    """Collection name: "services" """
    price: Optional[float] = Field(None, ge=0)
    category_id: Optional[str] = None


class ListingImage(BaseModel):
    """Collection name: "<type>_images", keyed back by "<type>_id" """
    model_config = ConfigDict(extra='allow')

    url: str
    is_primary: bool = False


class Favorite(BaseModel):
    user_id: str
    item_id: str
    item_type: ListingType


class NewListing(BaseModel):
    listing: Dict[str, Any]
    images: List[str] = Field(default_factory=list, description="Image URLs, the first one is primary")


# ---------------------------
# Reviews & messages
# ---------------------------
class Review(BaseModel):
    model_config = ConfigDict(extra='allow')

    listing_id: Optional[str] = None
    listing_type: Optional[ListingType] = None
    reviewer_id: str
    reviewee_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class ReviewUpdate(BaseModel):
    """Partial review update; only the fields sent are written"""
    model_config = ConfigDict(extra='allow')

    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = None


class Message(BaseModel):
    model_config = ConfigDict(extra='allow')

    conversation_id: Optional[str] = None
    listing_id: Optional[str] = None
    listing_type: Optional[ListingType] = None
    sender_id: str
    receiver_id: Optional[str] = None
    user_id: Optional[str] = Field(None, description="Owner of the mailbox the message shows up in")
    content: str
    attachments: List[str] = Field(default_factory=list)
    is_read: bool = False


class UpdateBody(BaseModel):
    """PUT body: the id of the document plus any fields to change"""
    model_config = ConfigDict(extra='allow')

    id: str


class IdBody(BaseModel):
    id: str


# ---------------------------
# Notifications & users
# ---------------------------
class NotificationCreate(BaseModel):
    """user_id None means a broadcast to every user"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(None, alias='userId')
    type: str = 'system'
    title: str
    body: str = ''
    link: Optional[str] = None
    extra_data: Dict[str, Any] = Field(default_factory=dict, alias='extraData')


class NotificationBody(BaseModel):
    notification: NotificationCreate


class ReadBody(BaseModel):
    """userId is required when the notification is a broadcast"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: Optional[str] = Field(None, alias='userId')


class UserIdBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias='userId')


class Announcement(BaseModel):
    title: str
    body: str = ''
    link: Optional[str] = None


class PushTokenBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias='userId')
    token: Optional[str] = Field(None, description="FCM registration token; null turns push off")
