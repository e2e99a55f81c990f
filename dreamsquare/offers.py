"""FastAPI router for purchase offers."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from .auth import get_current_user
from .store import Store, get_store
from .workflow import InvalidArgument, NotFound, accept_offer, reject_offer, submit_offer


router = APIRouter(prefix="/offers", tags=["offers"])


class OfferCreate(BaseModel):
    propertyId: Optional[str] = None
    offerAmount: Optional[float] = None
    buyerEmail: Optional[str] = None
    buyerName: Optional[str] = None
    buyingDate: Optional[str] = None
    title: Optional[str] = None
    location: Optional[str] = None
    agentName: Optional[str] = None


@router.post("")
def create_offer(
    payload: OfferCreate,
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    try:
        offer = submit_offer(store, payload.model_dump())
    except InvalidArgument as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    return {"message": "Offer submitted successfully", "offer": offer}


@router.get("")
def list_buyer_offers(
    buyerEmail: Optional[str] = Query(default=None),
    store: Store = Depends(get_store),
) -> List[Dict[str, Any]]:
    """Return a buyer's offers, newest first, each with its listing image."""

    if not buyerEmail:
        raise HTTPException(status_code=400, detail="buyerEmail query parameter required")
    offers = store.list_offers(buyer_email=buyerEmail)
    ids = {o["propertyId"] for o in offers}
    images = {p["id"]: p.get("image") for p in store.list_properties(ids=ids)} if ids else {}
    return [{**o, "image": images.get(o["propertyId"])} for o in offers]


@router.get("/agent/{email}")
def list_agent_offers(email: str, store: Store = Depends(get_store)) -> List[Dict[str, Any]]:
    return store.list_offers(agent_email=email)


@router.get("/{offer_id}")
def get_offer(offer_id: str, store: Store = Depends(get_store)) -> Dict[str, Any]:
    offer = store.get_offer(offer_id)
    if offer is None:
        raise HTTPException(status_code=404, detail="Offer not found")
    return offer


@router.patch("/{offer_id}/accept")
def accept(
    offer_id: str,
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    try:
        rejected = accept_offer(store, offer_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except InvalidArgument as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    return {"message": "Offer accepted and others rejected", "rejected": rejected}


@router.patch("/{offer_id}/reject")
def reject(
    offer_id: str,
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, str]:
    try:
        reject_offer(store, offer_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except InvalidArgument as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    return {"message": "Offer rejected"}
