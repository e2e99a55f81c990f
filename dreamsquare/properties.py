"""FastAPI router for property listing management."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel

from .auth import get_current_user, require_roles
from .store import Store, get_store
from .workflow import (
    Forbidden,
    InvalidArgument,
    NotFound,
    create_property,
    edit_property,
    set_property_status,
)


router = APIRouter(tags=["properties"])


class StatusUpdate(BaseModel):
    status: Optional[str] = None


class AdvertiseUpdate(BaseModel):
    advertised: bool = True


class ReviewCreate(BaseModel):
    userId: Optional[str] = None
    name: Optional[str] = None
    text: Optional[str] = None


@router.post("/properties")
def add_property(
    payload: Dict[str, Any] = Body(default_factory=dict),
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Mapping[str, Any]:
    """Create a listing in ``pending`` status for admin review."""

    try:
        return create_property(store, payload)
    except InvalidArgument as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except Forbidden as exc:
        raise HTTPException(status_code=403, detail=exc.message) from exc


@router.get("/properties")
def list_properties(
    email: Optional[str] = Query(default=None),
    store: Store = Depends(get_store),
) -> List[Dict[str, Any]]:
    """Return an agent's listings when ``email`` is given, else verified ones."""

    if email:
        return store.list_properties(agent_email=email)
    return store.list_properties(status="verified")


@router.get("/admin/properties")
def list_all_properties(
    store: Store = Depends(get_store),
    admin: Dict[str, Any] = Depends(require_roles("admin")),
) -> List[Dict[str, Any]]:
    return store.list_properties(newest_first=True)


@router.get("/advertised-properties")
def list_advertised_properties(store: Store = Depends(get_store)) -> List[Dict[str, Any]]:
    return store.list_properties(status="verified", advertised=True)


@router.get("/properties/{property_id}")
def get_property(
    property_id: str,
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    prop = store.get_property(property_id)
    if prop is None:
        raise HTTPException(status_code=404, detail="Property not found")
    return {**prop, "reviews": store.list_reviews(property_id=property_id)}


@router.put("/properties/{property_id}")
def update_property(
    property_id: str,
    payload: Dict[str, Any] = Body(default_factory=dict),
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    try:
        updated = edit_property(store, property_id, payload)
    except InvalidArgument as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    return {"message": "Property updated successfully", "property": updated}


@router.delete("/properties/{property_id}")
def delete_property(
    property_id: str,
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, int]:
    return {"deletedCount": store.delete_property(property_id)}


@router.patch("/properties/{property_id}/status")
def update_status(
    property_id: str,
    payload: StatusUpdate,
    store: Store = Depends(get_store),
    admin: Dict[str, Any] = Depends(require_roles("admin")),
) -> Dict[str, str]:
    try:
        set_property_status(store, property_id, payload.status)
    except InvalidArgument as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    return {"status": payload.status or ""}


@router.patch("/properties/{property_id}/advertise")
def update_advertised(
    property_id: str,
    payload: AdvertiseUpdate,
    store: Store = Depends(get_store),
    admin: Dict[str, Any] = Depends(require_roles("admin")),
) -> Dict[str, bool]:
    if not store.set_property_fields(property_id, advertised=payload.advertised):
        raise HTTPException(status_code=404, detail="Property not found")
    return {"advertised": payload.advertised}


@router.post("/properties/{property_id}/reviews")
def add_property_review(
    property_id: str,
    payload: ReviewCreate,
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    if not payload.userId or not payload.name or not payload.text:
        raise HTTPException(status_code=400, detail="Missing fields")
    if store.get_property(property_id) is None:
        raise HTTPException(status_code=404, detail="Property not found")
    return store.insert_review(property_id, payload.userId, payload.name, payload.text)
