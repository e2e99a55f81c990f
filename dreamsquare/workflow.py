"""Offer lifecycle and property status workflow.

Offers move ``pending -> accepted -> bought`` or ``pending -> rejected``;
``rejected`` and ``bought`` are terminal and at most one offer per property is
``accepted`` or ``bought`` at a time.  Properties move ``pending -> verified``
or ``pending -> rejected`` under an administrator's control.

The functions here take a :class:`~dreamsquare.store.Store` explicitly and
raise :class:`InvalidArgument`, :class:`NotFound` or :class:`Forbidden`; the
routers translate those into HTTP responses.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
from typing import Any, Mapping, Optional

from .store import Store

logger = logging.getLogger(__name__)


PROPERTY_STATUSES = ("pending", "verified", "rejected")
PROPERTY_DECISIONS = ("verified", "rejected")
OFFER_STATUSES = ("pending", "accepted", "rejected", "bought")
USER_ROLES = ("user", "agent", "admin", "fraud")


class WorkflowError(Exception):
    """Base class for workflow failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidArgument(WorkflowError):
    """Missing or malformed input, or a disallowed transition."""


class NotFound(WorkflowError):
    """The referenced document does not exist or no document matched."""


class Forbidden(WorkflowError):
    """The caller may not perform this action."""


def _missing(payload: Mapping[str, Any], fields: tuple[str, ...]) -> list[str]:
    return [name for name in fields if payload.get(name) in (None, "")]


# ---------------------------------------------------------------------------
# Offers
# ---------------------------------------------------------------------------

_OFFER_REQUIRED = ("propertyId", "offerAmount", "buyerEmail", "buyerName", "buyingDate")


def submit_offer(store: Store, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Validate ``payload`` against its property and store a pending offer."""

    if _missing(payload, _OFFER_REQUIRED):
        raise InvalidArgument("Missing required fields")

    try:
        amount = float(payload["offerAmount"])
    except (TypeError, ValueError):
        raise InvalidArgument("Offer amount must be a number") from None
    if not math.isfinite(amount):
        raise InvalidArgument("Offer amount must be a number")

    prop = store.get_property(str(payload["propertyId"]))
    if prop is None:
        raise NotFound("Property not found")

    low, high = prop["minPrice"], prop["maxPrice"]
    if amount < low or amount > high:
        raise InvalidArgument(f"Offer must be between {_fmt(low)} and {_fmt(high)}")

    offer = store.insert_offer(
        {
            "property_id": prop["id"],
            "title": payload.get("title") or prop.get("title"),
            "location": payload.get("location") or prop.get("location"),
            "agent_name": payload.get("agentName") or prop.get("agentName"),
            "agent_email": prop["agentEmail"],
            "offer_amount": amount,
            "buyer_email": str(payload["buyerEmail"]),
            "buyer_name": str(payload["buyerName"]),
            "buying_date": str(payload["buyingDate"]),
            "status": "pending",
        }
    )
    logger.info("Offer %s submitted on property %s", offer["id"], prop["id"])
    return offer


def accept_offer(store: Store, offer_id: str) -> int:
    """Accept ``offer_id`` and reject its siblings; return how many were rejected.

    The accept write and the sibling sweep share one transaction, so no reader
    sees two accepted offers for the same property.
    """

    with store.transaction() as tx:
        offer = tx.get_offer(offer_id)
        if offer is None:
            raise NotFound("Offer not found")
        if offer["status"] not in ("pending", "accepted"):
            raise InvalidArgument(f"Offer is already {offer['status']}")
        siblings = tx.list_offers(property_id=offer["propertyId"])
        if any(o["status"] == "bought" and o["id"] != offer_id for o in siblings):
            raise InvalidArgument("Property already has a bought offer")

        tx.update_offer(offer_id, status="accepted")
        rejected = tx.reject_sibling_offers(offer["propertyId"], offer_id)

    logger.info(
        "Offer %s accepted on property %s; %d sibling(s) rejected",
        offer_id,
        offer["propertyId"],
        rejected,
    )
    return rejected


def reject_offer(store: Store, offer_id: str) -> None:
    with store.transaction() as tx:
        offer = tx.get_offer(offer_id)
        if offer is None:
            raise NotFound("Offer not found")
        if offer["status"] == "bought":
            raise InvalidArgument("Offer is already bought")
        tx.update_offer(offer_id, status="rejected")
    logger.info("Offer %s rejected", offer_id)


def mark_bought(store: Store, offer_id: str, transaction_id: Optional[str]) -> None:
    """Record the gateway transaction on an offer and mark it bought.

    Only an ``accepted`` offer can be bought; accepting already rejected its
    siblings.  Pending, rejected and already bought offers are left untouched
    and reported as not found, matching a no-op update.
    """

    if not transaction_id:
        raise InvalidArgument("Transaction ID is required")
    changed = store.update_offer(
        offer_id,
        only_if_status=("accepted",),
        status="bought",
        transaction_id=str(transaction_id),
    )
    if not changed:
        raise NotFound("Offer not found or already updated")
    logger.info("Offer %s marked bought (transaction %s)", offer_id, transaction_id)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

_PAYMENT_REQUIRED = ("offerId", "propertyId", "email", "amount", "transactionId", "paymentMethod")


def parse_amount(value: Any) -> float:
    """Return ``value`` as a finite positive float or raise InvalidArgument."""

    if isinstance(value, bool):
        raise InvalidArgument("Invalid amount")
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise InvalidArgument("Invalid amount") from None
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidArgument("Invalid amount")
    return amount


def record_payment(store: Store, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Store the payment for a bought offer; each offer is paid once."""

    if _missing(payload, _PAYMENT_REQUIRED):
        raise InvalidArgument("Missing required payment fields")
    amount = parse_amount(payload["amount"])
    offer_id = str(payload["offerId"])
    with store.transaction() as tx:
        offer = tx.get_offer(offer_id)
        if offer is None:
            raise NotFound("Offer not found")
        if offer["status"] != "bought":
            raise InvalidArgument("Offer has not been bought")
        if tx.find_payment_for_offer(offer_id):
            raise InvalidArgument("Payment already recorded for this offer")
        payment = tx.insert_payment(
            {
                "offer_id": offer_id,
                "property_id": str(payload["propertyId"]),
                "email": str(payload["email"]),
                "amount": amount,
                "transaction_id": str(payload["transactionId"]),
                "payment_method": str(payload["paymentMethod"]),
            }
        )
    logger.info("Payment %s recorded for offer %s", payment["id"], payment["offerId"])
    return payment


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


def set_property_status(store: Store, property_id: str, status: Any) -> None:
    if status not in PROPERTY_DECISIONS:
        raise InvalidArgument("Invalid status")
    if not store.set_property_fields(property_id, status=status):
        raise NotFound("Property not found")
    logger.info("Property %s marked %s", property_id, status)


def create_property(store: Store, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Store a new listing for its agent unless that agent is flagged as fraud."""

    if not payload:
        raise InvalidArgument("Property data is required")
    agent = store.find_user_by_email(payload.get("agentEmail") or "")
    if agent and agent["role"] == "fraud":
        raise Forbidden("Fraud agents cannot add properties")
    _check_price_range(payload.get("minPrice"), payload.get("maxPrice"))
    try:
        return store.insert_property(payload)
    except ValueError as exc:
        raise InvalidArgument(str(exc)) from exc


def edit_property(store: Store, property_id: str, payload: Mapping[str, Any]) -> dict[str, Any]:
    current = store.get_property(property_id)
    if current is None:
        raise NotFound("Property not found")
    _check_price_range(
        payload.get("minPrice", current["minPrice"]),
        payload.get("maxPrice", current["maxPrice"]),
    )
    try:
        updated = store.update_property(property_id, payload)
    except ValueError as exc:
        raise InvalidArgument(str(exc)) from exc
    if updated is None:
        raise NotFound("Property not found")
    return updated


def _check_price_range(low: Any, high: Any) -> None:
    try:
        low, high = float(low), float(high)
    except (TypeError, ValueError):
        raise InvalidArgument("minPrice and maxPrice are required numbers") from None
    if not (math.isfinite(low) and math.isfinite(high)):
        raise InvalidArgument("minPrice and maxPrice are required numbers")
    if low > high:
        raise InvalidArgument("minPrice cannot exceed maxPrice")


# ---------------------------------------------------------------------------
# Fraud cascade
# ---------------------------------------------------------------------------


@dataclass
class FraudCascadeResult:
    """Outcome of :func:`mark_fraud`.

    ``properties_deleted`` is ``None`` when the user has no email on record and
    the listing purge was skipped.
    """

    user_id: str
    email: Optional[str]
    properties_deleted: Optional[int]

    def to_api(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "email": self.email,
            "role": "fraud",
            "propertiesDeleted": self.properties_deleted,
        }


def flag_user_as_fraud(store: Store, user_id: str) -> Optional[str]:
    """First cascade step: set role ``fraud``; return the user's email."""

    if not store.set_user_role(user_id, "fraud"):
        raise NotFound("User not found")
    user = store.get_user(user_id)
    return user["email"] if user else None


def purge_agent_listings(store: Store, agent_email: str) -> int:
    """Second cascade step: delete every listing owned by ``agent_email``."""

    return store.delete_properties_by_agent(agent_email)


def mark_fraud(store: Store, user_id: str) -> FraudCascadeResult:
    """Flag ``user_id`` as fraud and delete their listings.

    The two steps are not rolled back together.  If the purge fails the role
    stays ``fraud`` and the error propagates; calling again finishes the job.
    """

    email = flag_user_as_fraud(store, user_id)
    deleted = None
    if email:
        deleted = purge_agent_listings(store, email)
    logger.info("User %s marked fraud; %s listing(s) removed", user_id, deleted or 0)
    return FraudCascadeResult(user_id=user_id, email=email, properties_deleted=deleted)


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
