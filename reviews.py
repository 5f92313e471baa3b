from typing import Any, Dict, List, Optional, Union

from database import DocumentStore, serialize
from errors import ValidationError, action
from schemas import REVIEWS, Review, ReviewUpdate


@action
def get_reviews(store: DocumentStore, reviewee_id: Optional[str] = None,
                reviewer_id: Optional[str] = None) -> List[Dict[str, Any]]:
    if not reviewee_id and not reviewer_id:
        raise ValidationError("Either revieweeId or reviewerId is required")

    if reviewee_id:
        filter_dict = {"reviewee_id": reviewee_id}
    else:
        filter_dict = {"reviewer_id": reviewer_id}
    docs = store.get_documents(REVIEWS, filter_dict, sort=[("created_at", -1)])
    return [serialize(d) for d in docs]


@action
def create_review(store: DocumentStore, data: Union[Review, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, dict):
        data = Review.model_validate(data)
    review_id = store.create_document(REVIEWS, data)
    return serialize(store.get_document(REVIEWS, review_id))


@action
def update_review(store: DocumentStore, review_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    updates = ReviewUpdate.model_validate(updates).model_dump(exclude_unset=True)
    store.update_by_id(REVIEWS, review_id, updates)
    return {"id": review_id, **{k: v for k, v in updates.items() if k != "id"}}


@action
def delete_review(store: DocumentStore, review_id: str) -> Dict[str, Any]:
    store.delete_by_id(REVIEWS, review_id)
    return {"success": True}
