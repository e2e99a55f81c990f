from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from .auth import get_current_user
from .store import IntegrityError, Store, get_store


router = APIRouter(prefix="/wishlist", tags=["wishlist"])


class WishlistAdd(BaseModel):
    userEmail: Optional[str] = None
    propertyId: Optional[str] = None


@router.post("")
def add_to_wishlist(
    payload: WishlistAdd,
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    if not payload.userEmail or not payload.propertyId:
        raise HTTPException(status_code=400, detail="Missing userEmail or propertyId")
    if store.find_wishlist_item(payload.userEmail, payload.propertyId):
        raise HTTPException(status_code=400, detail="Property already in wishlist")
    try:
        return store.add_wishlist_item(payload.userEmail, payload.propertyId)
    except IntegrityError as exc:
        raise HTTPException(status_code=400, detail="Property already in wishlist") from exc


@router.get("/{email}")
def list_wishlist(
    email: str,
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    """Return the properties ``email`` has wishlisted."""

    ids = store.wishlist_property_ids(email)
    if not ids:
        return []
    return store.list_properties(ids=ids)


@router.delete("/{email}/{property_id}")
def remove_from_wishlist(
    email: str,
    property_id: str,
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, str]:
    if not store.remove_wishlist_item(email, property_id):
        raise HTTPException(status_code=404, detail="Wishlist item not found")
    return {"message": "Removed from wishlist"}
