from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from .auth import get_current_user, require_roles
from .store import Store, get_store


router = APIRouter(prefix="/reviews", tags=["reviews"])

REVIEW_STATUSES = ("approved", "rejected")


class ReviewCreate(BaseModel):
    userId: Optional[str] = None
    name: Optional[str] = None
    text: Optional[str] = None


class ReviewStatusUpdate(BaseModel):
    status: Optional[str] = None


@router.post("/{property_id}")
def add_review(
    property_id: str,
    payload: ReviewCreate,
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    if not payload.userId or not payload.name or not payload.text:
        raise HTTPException(status_code=400, detail="Missing required fields")
    review = store.insert_review(property_id, payload.userId, payload.name, payload.text)
    return {"message": "Review added successfully", "review": review}


@router.get("")
def list_reviews(store: Store = Depends(get_store)) -> List[Dict[str, Any]]:
    return store.list_reviews()


@router.get("/{user_email}")
def list_user_reviews(user_email: str, store: Store = Depends(get_store)) -> List[Dict[str, Any]]:
    return store.list_reviews(user_id=user_email)


@router.patch("/{review_id}/status")
def moderate_review(
    review_id: str,
    payload: ReviewStatusUpdate,
    store: Store = Depends(get_store),
    admin: Dict[str, Any] = Depends(require_roles("admin")),
) -> Dict[str, str]:
    if payload.status not in REVIEW_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status")
    if not store.set_review_status(review_id, payload.status):
        raise HTTPException(status_code=404, detail="Review not found")
    return {"status": payload.status}


@router.delete("/{review_id}")
def delete_review(
    review_id: str,
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, str]:
    if not store.delete_review(review_id):
        raise HTTPException(status_code=404, detail="Review not found")
    return {"message": "Review deleted successfully"}
