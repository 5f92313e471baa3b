"""
Notification records and push fan-out.

A notification is always written first; push delivery follows and is
best-effort. A notification with user_id None is a broadcast: one record,
pushed to every user holding a token at the moment it is sent, listed only
for users who existed when it was sent, and read or unread per user
(`read_by`).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pymongo.errors import PyMongoError

from database import DocumentStore, serialize
from errors import NotFoundError, ValidationError, action
from push import PushGateway
from schemas import NOTIFICATIONS, USERS, NotificationCreate

logger = logging.getLogger(__name__)


def _for_reader(notification: Dict[str, Any], user_id: Optional[str]) -> Dict[str, Any]:
    """Resolve a broadcast's read flag for one reader"""
    if notification.get("user_id") is None:
        read_by = notification.pop("read_by", None) or []
        notification["read"] = user_id is not None and user_id in read_by
    return notification


class NotificationDispatcher:
    def __init__(self, store: DocumentStore, gateway: Optional[PushGateway] = None):
        self.store = store
        self.gateway = gateway or PushGateway(None)

    # ---------------------------
    # Records
    # ---------------------------
    @action
    def create_notification(self, data: Union[NotificationCreate, Dict[str, Any]]) -> Dict[str, Any]:
        if isinstance(data, dict):
            data = NotificationCreate.model_validate(data)
        doc = data.model_dump()
        doc["read"] = False
        if doc["user_id"] is None:
            doc["read_by"] = []
        doc["created_at"] = datetime.now(timezone.utc)

        notification_id = self.store.create_document(NOTIFICATIONS, doc)
        return _for_reader(serialize(self.store.get_document(NOTIFICATIONS, notification_id)), None)

    def _broadcast_filter(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Broadcasts sent while the user existed; None when the user is unknown"""
        user = self.store.get_document(USERS, user_id)
        if user is None:
            return None
        filter_dict: Dict[str, Any] = {"user_id": None}
        if user.get("created_at") is not None:
            filter_dict["created_at"] = {"$gte": user["created_at"]}
        return filter_dict

    def _visible_filter(self, user_id: str, targeted: Dict[str, Any] = None,
                        broadcast: Dict[str, Any] = None) -> Dict[str, Any]:
        branches = [{"user_id": user_id, **(targeted or {})}]
        broadcasts = self._broadcast_filter(user_id)
        if broadcasts is not None:
            branches.append({**broadcasts, **(broadcast or {})})
        return {"$or": branches}

    @action
    def get_notifications(self, user_id: str) -> List[Dict[str, Any]]:
        docs = self.store.get_documents(
            NOTIFICATIONS, self._visible_filter(user_id), sort=[("created_at", -1), ("_id", -1)],
        )
        return [_for_reader(serialize(d), user_id) for d in docs]

    @action
    def get_unread_count(self, user_id: str) -> int:
        return self.store.count_documents(
            NOTIFICATIONS,
            self._visible_filter(user_id, {"read": False}, {"read_by": {"$ne": user_id}}),
        )

    @action
    def mark_read(self, notification_id: str, user_id: Optional[str] = None) -> None:
        """Broadcasts are read per user, so marking one needs the reader's id"""
        notification = self.store.get_document(NOTIFICATIONS, notification_id)
        if notification is None:
            raise NotFoundError(f"{NOTIFICATIONS} document {notification_id} not found")
        if notification.get("user_id") is not None:
            self.store.update_by_id(NOTIFICATIONS, notification_id, {"read": True})
            return
        if not user_id:
            raise ValidationError("userId is required to mark a broadcast as read")
        self.store.add_to_set(NOTIFICATIONS, {"_id": notification_id}, "read_by", user_id)

    @action
    def mark_all_read(self, user_id: str) -> int:
        updated = self.store.update_many(NOTIFICATIONS, {"user_id": user_id, "read": False}, {"read": True})
        broadcasts = self._broadcast_filter(user_id)
        if broadcasts is not None:
            updated += self.store.add_to_set(NOTIFICATIONS, broadcasts, "read_by", user_id)
        return updated

    @action
    def register_push_token(self, user_id: str, token: Optional[str]) -> None:
        """Store or clear the device token push delivery uses for this user"""
        self.store.update_by_id(USERS, user_id, {"fcm_token": token or None})

    @action
    def delete_notification(self, notification_id: str) -> int:
        return self.store.delete_by_id(NOTIFICATIONS, notification_id)

    # ---------------------------
    # Push
    # ---------------------------
    def _user_token(self, user_id: str) -> Optional[str]:
        user = self.store.get_document(USERS, user_id)
        return (user or {}).get("fcm_token") or None

    def _all_tokens(self) -> List[str]:
        users = self.store.get_documents(
            USERS, {"fcm_token": {"$nin": [None, ""]}}, projection={"fcm_token": 1}
        )
        return [u["fcm_token"] for u in users if u.get("fcm_token")]

    def send_push_notification(self, user_id: str, title: str, body: str,
                               data: Dict[str, Any] = None) -> Dict[str, Any]:
        """Push straight to one user; users without a token are skipped"""
        if not self.gateway.available:
            return {"status": "unavailable"}
        token = self._user_token(user_id)
        if not token:
            return {"status": "skipped", "reason": "no push token"}
        return self.gateway.send(token, title, body, data)

    def _push(self, notification: Dict[str, Any]) -> Dict[str, Any]:
        title = notification.get("title") or "Notification"
        body = notification.get("body") or ""
        data = {"link": notification.get("link") or "", "type": notification.get("type") or ""}

        if not self.gateway.available:
            logger.warning("Push gateway unavailable; notification %s stored without push", notification.get("id"))
            return {"status": "unavailable"}

        user_id = notification.get("user_id")
        if user_id is None:
            return self.gateway.send_many(self._all_tokens(), title, body, data)
        return self.send_push_notification(user_id, title, body, data)

    def notify_and_push(self, data: Union[NotificationCreate, Dict[str, Any]]) -> Dict[str, Any]:
        notification = self.create_notification(data)
        try:
            push = self._push(notification)
        except PyMongoError as e:
            logger.error("Push lookup failed for notification %s: %s", notification.get("id"), e)
            push = {"status": "failed", "error": str(e)}
        return {"notification": notification, "push": push}

    def announce(self, title: str, body: str = "", link: Optional[str] = None) -> Dict[str, Any]:
        """Admin announcement to every user"""
        return self.notify_and_push(
            NotificationCreate(user_id=None, type="announcement", title=title, body=body, link=link)
        )

    def notify_new_message(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        receiver_id = message.get("receiver_id")
        if not receiver_id or receiver_id == message.get("sender_id"):
            return None

        content = message.get("content") or ""
        extra_data = {"message_id": message.get("id"), "conversation_id": message.get("conversation_id")}
        if message.get("listing_id"):
            extra_data["listing_id"] = message["listing_id"]
            extra_data["listing_type"] = message.get("listing_type")

        conversation_id = message.get("conversation_id")
        return self.notify_and_push(NotificationCreate(
            user_id=receiver_id,
            type="message",
            title="New message",
            body=content if len(content) <= 100 else content[:97] + "...",
            link=f"/messages/{conversation_id}" if conversation_id else "/messages",
            extra_data=extra_data,
        ))
