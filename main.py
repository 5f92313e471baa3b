import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from database import DocumentStore, require_store
from errors import ServiceError
from events import EventBus
from favorites import add_favorite, get_favorites, is_favorite, remove_favorite
from listings import (
    create_listing,
    create_product,
    delete_listing,
    delete_product,
    get_product,
    get_products,
    update_product,
)
from messages import create_message, delete_message, get_messages, mark_messages_read, update_message
from notifications import NotificationDispatcher
from push import PushGateway
from reviews import create_review, delete_review, get_reviews, update_review
from schemas import (
    Announcement,
    Favorite,
    IdBody,
    ListingType,
    Message,
    NewListing,
    NotificationBody,
    Product,
    PushTokenBody,
    ReadBody,
    Review,
    UpdateBody,
    UserIdBody,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------
# Dependencies
# ---------------------------
def get_store(request: Request) -> DocumentStore:
    return require_store(request.app.state.store)


def get_bus(request: Request) -> EventBus:
    return request.app.state.bus


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return NotificationDispatcher(get_store(request), request.app.state.gateway)


def _updates(body: UpdateBody) -> Dict[str, Any]:
    updates = body.model_dump()
    updates.pop("id", None)
    return updates


def create_app(store: Optional[DocumentStore] = None, gateway: Optional[PushGateway] = None,
               bus: Optional[EventBus] = None, from_env: bool = True) -> FastAPI:
    """
    Build the API around explicitly supplied collaborators. Anything not
    passed in is built from the environment unless from_env is False.
    """
    if store is None and from_env:
        store = DocumentStore.from_env()
    if gateway is None:
        gateway = PushGateway.from_env() if from_env else PushGateway(None)

    app = FastAPI(title="Campus Market API")
    app.state.store = store
    app.state.gateway = gateway
    app.state.bus = bus or EventBus()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        return JSONResponse({"error": exc.message, "code": exc.code}, status_code=exc.status_code)

    @app.get("/")
    def read_root():
        return {"name": "Campus Market API", "version": 1}

    @app.get("/test")
    def test_database(request: Request):
        response = {
            "backend": "Running",
            "database": "Not Available",
            "push": "Available" if request.app.state.gateway.available else "Not Configured",
            "collections": [],
        }
        if request.app.state.store is None:
            return response
        try:
            response["collections"] = request.app.state.store.list_collection_names()[:10]
            response["database"] = "Connected & Working"
        except Exception as e:
            response["database"] = f"Connected but Error: {str(e)[:80]}"
        return response

    # ---------------------------
    # Listings
    # ---------------------------
    @app.post("/api/listings/{listing_type}", response_model=dict)
    def create_listing_route(listing_type: ListingType, body: NewListing,
                             store: DocumentStore = Depends(get_store), bus: EventBus = Depends(get_bus)):
        return create_listing(store, listing_type, body.listing, body.images, bus)

    @app.delete("/api/listings/{listing_type}/{listing_id}")
    def delete_listing_route(listing_type: ListingType, listing_id: str,
                             user_id: str = Query(..., alias="userId"),
                             store: DocumentStore = Depends(get_store), bus: EventBus = Depends(get_bus)):
        return delete_listing(store, listing_id, listing_type, user_id, bus)

    # ---------------------------
    # Products
    # ---------------------------
    @app.get("/api/products", response_model=List[dict])
    def list_products(
        category: Optional[str] = Query(None),
        university: Optional[str] = Query(None),
        min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
        max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
        limit: Optional[int] = Query(None, ge=1, le=200),
        store: DocumentStore = Depends(get_store),
    ):
        return get_products(store, category, university, min_price, max_price, limit)

    @app.get("/api/products/{product_id}", response_model=dict)
    def read_product(product_id: str, store: DocumentStore = Depends(get_store)):
        return get_product(store, product_id)

    @app.post("/api/products", response_model=dict)
    def create_product_route(product: Product, store: DocumentStore = Depends(get_store),
                             bus: EventBus = Depends(get_bus)):
        return create_product(store, product, bus)

    @app.put("/api/products", response_model=dict)
    def update_product_route(body: UpdateBody, store: DocumentStore = Depends(get_store),
                             bus: EventBus = Depends(get_bus)):
        return update_product(store, body.id, _updates(body), bus)

    @app.delete("/api/products", response_model=dict)
    def delete_product_route(id: str = Body(...), user_id: str = Body(..., alias="userId"),
                             store: DocumentStore = Depends(get_store), bus: EventBus = Depends(get_bus)):
        return delete_product(store, id, user_id, bus)

    # ---------------------------
    # Favorites
    # ---------------------------
    @app.get("/api/favorites", response_model=List[dict])
    def list_favorites(user_id: str = Query(..., alias="userId"), item_type: Optional[ListingType] = Query(None, alias="type"),
                       store: DocumentStore = Depends(get_store)):
        return get_favorites(store, user_id, item_type)

    @app.get("/api/favorites/check", response_model=dict)
    def check_favorite(user_id: str = Query(..., alias="userId"), item_id: str = Query(..., alias="itemId"),
                       item_type: ListingType = Query(..., alias="itemType"),
                       store: DocumentStore = Depends(get_store)):
        return {"favorite": is_favorite(store, user_id, item_id, item_type)}

    @app.post("/api/favorites", response_model=dict)
    def add_favorite_route(favorite: Favorite, store: DocumentStore = Depends(get_store),
                           dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
        return add_favorite(store, favorite, dispatcher)

    @app.delete("/api/favorites", response_model=dict)
    def remove_favorite_route(body: IdBody, store: DocumentStore = Depends(get_store)):
        return remove_favorite(store, body.id)

    # ---------------------------
    # Messages
    # ---------------------------
    @app.get("/api/messages", response_model=List[dict])
    def list_messages(conversation_id: Optional[str] = Query(None, alias="conversationId"),
                      user_id: Optional[str] = Query(None, alias="userId"),
                      store: DocumentStore = Depends(get_store)):
        return get_messages(store, conversation_id, user_id)

    @app.post("/api/messages", response_model=dict)
    def create_message_route(message: Message, store: DocumentStore = Depends(get_store),
                             dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
        return create_message(store, message, dispatcher)

    @app.put("/api/messages", response_model=dict)
    def update_message_route(body: UpdateBody, store: DocumentStore = Depends(get_store)):
        return update_message(store, body.id, _updates(body))

    @app.post("/api/messages/mark-read", response_model=dict)
    def mark_messages_read_route(ids: List[str] = Body(..., embed=True), store: DocumentStore = Depends(get_store)):
        return {"updated": mark_messages_read(store, ids)}

    @app.delete("/api/messages", response_model=dict)
    def delete_message_route(body: IdBody, store: DocumentStore = Depends(get_store)):
        return delete_message(store, body.id)

    # ---------------------------
    # Reviews
    # ---------------------------
    @app.get("/api/reviews", response_model=List[dict])
    def list_reviews(reviewee_id: Optional[str] = Query(None, alias="revieweeId"),
                     reviewer_id: Optional[str] = Query(None, alias="reviewerId"),
                     store: DocumentStore = Depends(get_store)):
        return get_reviews(store, reviewee_id, reviewer_id)

    @app.post("/api/reviews", response_model=dict)
    def create_review_route(review: Review, store: DocumentStore = Depends(get_store)):
        return create_review(store, review)

    @app.put("/api/reviews", response_model=dict)
    def update_review_route(body: UpdateBody, store: DocumentStore = Depends(get_store)):
        return update_review(store, body.id, _updates(body))

    @app.delete("/api/reviews", response_model=dict)
    def delete_review_route(body: IdBody, store: DocumentStore = Depends(get_store)):
        return delete_review(store, body.id)

    # ---------------------------
    # Notifications
    # ---------------------------
    @app.get("/api/notifications")
    def list_notifications(request: Request, user_id: Optional[str] = Query(None, alias="userId")):
        if not user_id:
            return JSONResponse({"data": [], "error": "Missing userId"}, status_code=400)
        return {"data": get_dispatcher(request).get_notifications(user_id), "error": None}

    @app.get("/api/notifications/unread-count")
    def unread_count(user_id: str = Query(..., alias="userId"),
                     dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
        return {"count": dispatcher.get_unread_count(user_id), "error": None}

    @app.post("/api/notifications")
    def create_notification_route(body: NotificationBody,
                                  dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
        return {"data": dispatcher.notify_and_push(body.notification), "error": None}

    @app.post("/api/notifications/mark-read")
    def mark_read_route(body: ReadBody, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
        dispatcher.mark_read(body.id, body.user_id)
        return {"data": None, "error": None}

    @app.post("/api/notifications/mark-all-read")
    def mark_all_read_route(body: UserIdBody, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
        return {"data": {"updated": dispatcher.mark_all_read(body.user_id)}, "error": None}

    @app.post("/api/notifications/delete")
    def delete_notification_route(body: IdBody, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
        dispatcher.delete_notification(body.id)
        return {"data": None, "error": None}

    @app.post("/api/users/push-token")
    def push_token_route(body: PushTokenBody, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
        dispatcher.register_push_token(body.user_id, body.token)
        return {"data": None, "error": None}

    @app.post("/api/admin/announcements")
    def announce_route(body: Announcement, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
        return {"data": dispatcher.announce(body.title, body.body, body.link), "error": None}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
