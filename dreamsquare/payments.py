"""Payment intents, purchase completion and payment records."""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
import os
from typing import Any, Dict, List, Optional, Union

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from .auth import get_current_user
from .store import Store, get_store
from .workflow import InvalidArgument, NotFound, mark_bought, record_payment

logger = logging.getLogger(__name__)

MIN_INTENT_AMOUNT = 50


class PaymentGatewayError(Exception):
    """Raised when the gateway refuses or fails to create an intent."""


class PaymentGateway(ABC):
    """Create payment intents on an external gateway."""

    configured = True

    @abstractmethod
    def create_intent(self, amount: int) -> str:
        """Create an intent for ``amount`` minor units and return its client secret."""
        raise NotImplementedError


class StripeGateway(PaymentGateway):
    def __init__(self, api_key: Optional[str] = None, currency: Optional[str] = None) -> None:
        self.api_key = api_key or os.getenv("PAYMENT_GATEWAY_KEY") or ""
        self.currency = currency or os.getenv("PAYMENT_CURRENCY", "usd")
        self.configured = bool(self.api_key)

    def create_intent(self, amount: int) -> str:
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.api_key,
                amount=amount,
                currency=self.currency,
                payment_method_types=["card"],
            )
        except stripe.StripeError as exc:
            raise PaymentGatewayError(getattr(exc, "user_message", None) or str(exc)) from exc
        return intent["client_secret"]


def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway


class PaymentIntentRequest(BaseModel):
    amount: Optional[int] = None


class PurchaseCompletion(BaseModel):
    transactionId: Optional[str] = None


class PaymentCreate(BaseModel):
    offerId: Optional[str] = None
    propertyId: Optional[str] = None
    email: Optional[str] = None
    amount: Optional[Union[float, str]] = None
    transactionId: Optional[str] = None
    paymentMethod: Optional[str] = None


router = APIRouter(tags=["payments"])


@router.post("/create-payment-intent")
def create_payment_intent(
    payload: PaymentIntentRequest,
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> Dict[str, Any]:
    """Create a card payment intent and relay its client secret."""

    if not payload.amount or payload.amount < MIN_INTENT_AMOUNT:
        raise HTTPException(status_code=400, detail="Invalid payment amount")
    if not gateway.configured:
        raise HTTPException(status_code=503, detail="Payment gateway not configured")
    try:
        secret = gateway.create_intent(payload.amount)
    except PaymentGatewayError as exc:
        logger.error("Payment intent failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"clientSecret": secret}


@router.patch("/project-status/{offer_id}")
def complete_purchase(
    offer_id: str,
    payload: PurchaseCompletion,
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """Mark an offer bought once the buyer's payment has gone through."""

    try:
        mark_bought(store, offer_id, payload.transactionId)
    except InvalidArgument as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    return {"success": True, "message": "Project marked as bought"}


@router.post("/payments")
def create_payment(
    payload: PaymentCreate,
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    try:
        payment = record_payment(store, payload.model_dump())
    except InvalidArgument as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    return {"insertedId": payment["id"]}


@router.get("/payments/agent/{email}")
def list_sold_payments(email: str, store: Store = Depends(get_store)) -> List[Dict[str, Any]]:
    """Return payments received for listings owned by the agent ``email``."""

    return store.list_paid_payments_for_agent(email)


@router.get("/payments/{payment_id}")
def get_payment(
    payment_id: str,
    store: Store = Depends(get_store),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    payment = store.get_payment(payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail="Payment not found")
    return payment
