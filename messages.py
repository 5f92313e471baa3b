import logging
from typing import Any, Dict, List, Optional, Union

from database import DocumentStore, serialize
from errors import ServiceError, ValidationError, action
from schemas import MESSAGES, Message

logger = logging.getLogger(__name__)


@action
def get_messages(store: DocumentStore, conversation_id: Optional[str] = None,
                 user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """A conversation oldest first, or a user's mailbox newest first"""
    if not conversation_id and not user_id:
        raise ValidationError("Either conversationId or userId is required")

    if conversation_id:
        docs = store.get_documents(MESSAGES, {"conversation_id": conversation_id}, sort=[("created_at", 1)])
    else:
        docs = store.get_documents(MESSAGES, {"user_id": user_id}, sort=[("created_at", -1)])
    return [serialize(d) for d in docs]


@action
def create_message(store: DocumentStore, data: Union[Message, Dict[str, Any]],
                   dispatcher=None) -> Dict[str, Any]:
    if isinstance(data, dict):
        data = Message.model_validate(data)
    message_id = store.create_document(MESSAGES, data)
    message = serialize(store.get_document(MESSAGES, message_id))
    if dispatcher is not None:
        try:
            dispatcher.notify_new_message(message)
        except ServiceError as e:
            logger.error("Message %s saved but receiver notification failed: %s", message_id, e.message)
    return message


@action
def update_message(store: DocumentStore, message_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    store.update_by_id(MESSAGES, message_id, updates)
    return {"id": message_id, **{k: v for k, v in updates.items() if k != "id"}}


@action
def mark_messages_read(store: DocumentStore, message_ids: List[str]) -> int:
    if not message_ids:
        return 0
    return store.update_many(MESSAGES, {"_id": {"$in": list(message_ids)}}, {"is_read": True})


@action
def delete_message(store: DocumentStore, message_id: str) -> Dict[str, Any]:
    store.delete_by_id(MESSAGES, message_id)
    return {"success": True}
