"""Persistence helpers for the marketplace collections.

All listing, user, offer, payment, wishlist and review data goes through the
:class:`Store` defined here.  It relies on SQLAlchemy Core so we can target
SQLite for local development and PostgreSQL in production without changing
application code.  The connection string is controlled by the
``DATABASE_URL`` environment variable and defaults to a SQLite file in the
working directory.

A ``Store`` is created once by the application factory and handed to routes
as a dependency; nothing in this module keeps a process-wide engine.
"""

from __future__ import annotations

from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import os
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional
from uuid import uuid4

from fastapi import Request
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine, Row
from sqlalchemy.exc import IntegrityError as SQLAlchemyIntegrityError

IntegrityError = SQLAlchemyIntegrityError


DEFAULT_DATABASE_URL = "sqlite:///./dreamsquare.db"


def build_engine(url: Optional[str] = None) -> Engine:
    """Return a SQLAlchemy engine for ``url`` or the configured database."""

    url = url or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL

    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    return create_engine(url, future=True, connect_args=connect_args)


metadata = MetaData()


users_table = Table(
    "users",
    metadata,
    Column("id", String, primary_key=True),
    Column("email", String, nullable=False, unique=True),
    Column("name", String, nullable=True),
    Column("photo", String, nullable=True),
    Column("role", String, nullable=True),
    Column("created_at", DateTime, nullable=False),
)

properties_table = Table(
    "properties",
    metadata,
    Column("id", String, primary_key=True),
    Column("agent_email", String, nullable=False, index=True),
    Column("agent_name", String, nullable=True),
    Column("title", String, nullable=True),
    Column("location", String, nullable=True),
    Column("image", String, nullable=True),
    Column("min_price", Float, nullable=False),
    Column("max_price", Float, nullable=False),
    Column("status", String, nullable=False, default="pending"),
    Column("advertised", Boolean, nullable=False, default=False),
    Column("metadata", Text, nullable=True),
    Column("created_at", DateTime, nullable=False),
)

offers_table = Table(
    "offers",
    metadata,
    Column("id", String, primary_key=True),
    Column("property_id", String, nullable=False, index=True),
    Column("title", String, nullable=True),
    Column("location", String, nullable=True),
    Column("agent_name", String, nullable=True),
    Column("agent_email", String, nullable=True, index=True),
    Column("offer_amount", Float, nullable=False),
    Column("buyer_email", String, nullable=False, index=True),
    Column("buyer_name", String, nullable=False),
    Column("buying_date", String, nullable=False),
    Column("status", String, nullable=False, default="pending"),
    Column("transaction_id", String, nullable=True),
    Column("created_at", DateTime, nullable=False),
)

payments_table = Table(
    "payments",
    metadata,
    Column("id", String, primary_key=True),
    Column("offer_id", String, nullable=False),
    Column("property_id", String, nullable=False, index=True),
    Column("email", String, nullable=False),
    Column("amount", Float, nullable=False),
    Column("transaction_id", String, nullable=False),
    Column("payment_method", String, nullable=False),
    Column("status", String, nullable=False, default="paid"),
    Column("date", DateTime, nullable=False),
)

wishlist_table = Table(
    "wishlist",
    metadata,
    Column("id", String, primary_key=True),
    Column("user_email", String, nullable=False, index=True),
    Column("property_id", String, nullable=False),
    UniqueConstraint("user_email", "property_id", name="uq_wishlist_user_property"),
)

reviews_table = Table(
    "reviews",
    metadata,
    Column("id", String, primary_key=True),
    Column("review_id", String, nullable=False, unique=True),
    Column("property_id", String, nullable=False, index=True),
    Column("user_id", String, nullable=False, index=True),
    Column("name", String, nullable=False),
    Column("text", Text, nullable=False),
    Column("status", String, nullable=True),
    Column("created_at", DateTime, nullable=False),
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(slots=True)
class UserRecord:
    id: str
    email: str
    name: Optional[str] = None
    photo: Optional[str] = None
    role: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_api(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "photo": self.photo,
            "role": self.role or "user",
            "createdAt": _iso(self.created_at),
        }


@dataclass(slots=True)
class PropertyRecord:
    """Typed representation of a property row."""

    id: str
    agent_email: str
    min_price: float
    max_price: float
    status: str = "pending"
    agent_name: Optional[str] = None
    title: Optional[str] = None
    location: Optional[str] = None
    image: Optional[str] = None
    advertised: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def to_api(self) -> dict[str, Any]:
        """Return a JSON-serialisable representation using camelCase keys.

        Free-form listing attributes stored in ``metadata`` are merged into the
        top level so clients see the document they submitted.
        """

        return {
            **self.metadata,
            "id": self.id,
            "agentEmail": self.agent_email,
            "agentName": self.agent_name,
            "title": self.title,
            "location": self.location,
            "image": self.image,
            "minPrice": self.min_price,
            "maxPrice": self.max_price,
            "status": self.status,
            "advertised": self.advertised,
            "createdAt": _iso(self.created_at),
        }


@dataclass(slots=True)
class OfferRecord:
    id: str
    property_id: str
    offer_amount: float
    buyer_email: str
    buyer_name: str
    buying_date: str
    status: str = "pending"
    title: Optional[str] = None
    location: Optional[str] = None
    agent_name: Optional[str] = None
    agent_email: Optional[str] = None
    transaction_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_api(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "propertyId": self.property_id,
            "title": self.title,
            "location": self.location,
            "agentName": self.agent_name,
            "agentEmail": self.agent_email,
            "offerAmount": self.offer_amount,
            "buyerEmail": self.buyer_email,
            "buyerName": self.buyer_name,
            "buyingDate": self.buying_date,
            "status": self.status,
            "transactionId": self.transaction_id,
            "createdAt": _iso(self.created_at),
        }


@dataclass(slots=True)
class PaymentRecord:
    id: str
    offer_id: str
    property_id: str
    email: str
    amount: float
    transaction_id: str
    payment_method: str
    status: str = "paid"
    date: Optional[datetime] = None

    def to_api(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "offerId": self.offer_id,
            "propertyId": self.property_id,
            "email": self.email,
            "amount": self.amount,
            "transactionId": self.transaction_id,
            "paymentMethod": self.payment_method,
            "status": self.status,
            "date": _iso(self.date),
        }


@dataclass(slots=True)
class ReviewRecord:
    id: str
    review_id: str
    property_id: str
    user_id: str
    name: str
    text: str
    status: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_api(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "reviewId": self.review_id,
            "propertyId": self.property_id,
            "userId": self.user_id,
            "name": self.name,
            "text": self.text,
            "status": self.status,
            "createdAt": _iso(self.created_at),
        }


class Store:
    """Access to every marketplace collection through one SQLAlchemy engine.

    Each method opens its own transaction unless the store was obtained from
    :meth:`transaction`, in which case all calls share that transaction and
    commit or roll back together.
    """

    def __init__(self, engine: Engine, connection: Optional[Connection] = None) -> None:
        self.engine = engine
        self._connection = connection

    @classmethod
    def from_url(cls, url: Optional[str] = None) -> "Store":
        store = cls(build_engine(url))
        store.init_db()
        return store

    def init_db(self) -> None:
        """Create tables that do not exist yet."""

        metadata.create_all(self.engine)

    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        """Yield a store whose operations run in a single transaction."""

        if self._connection is not None:
            yield self
            return
        with self.engine.begin() as conn:
            yield Store(self.engine, conn)

    def _begin(self):
        if self._connection is not None:
            return nullcontext(self._connection)
        return self.engine.begin()

    # -- users ---------------------------------------------------------------

    def insert_user(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        data = {
            "id": uuid4().hex,
            "email": _require_str(payload.get("email"), "email"),
            "name": _maybe_str(payload.get("name")),
            "photo": _maybe_str(payload.get("photo") or payload.get("photoURL")),
            "role": _maybe_str(payload.get("role")) or "user",
            "created_at": utcnow(),
        }
        with self._begin() as conn:
            conn.execute(insert(users_table).values(**data))
        return UserRecord(**data).to_api()

    def find_user_by_email(self, email: str) -> Optional[dict[str, Any]]:
        stmt = select(users_table).where(users_table.c.email == email)
        with self._begin() as conn:
            row = conn.execute(stmt).first()
        return UserRecord(**_row(row)).to_api() if row else None

    def get_user(self, user_id: str) -> Optional[dict[str, Any]]:
        stmt = select(users_table).where(users_table.c.id == user_id)
        with self._begin() as conn:
            row = conn.execute(stmt).first()
        return UserRecord(**_row(row)).to_api() if row else None

    def list_users(self) -> list[dict[str, Any]]:
        stmt = select(users_table).order_by(users_table.c.created_at.asc())
        with self._begin() as conn:
            rows = conn.execute(stmt).all()
        return [UserRecord(**_row(r)).to_api() for r in rows]

    def set_user_role(self, user_id: str, role: str) -> int:
        """Set ``role`` on the user and return the number of matched rows."""

        stmt = update(users_table).where(users_table.c.id == user_id).values(role=role)
        with self._begin() as conn:
            return conn.execute(stmt).rowcount

    def delete_user(self, user_id: str) -> int:
        with self._begin() as conn:
            return conn.execute(delete(users_table).where(users_table.c.id == user_id)).rowcount

    # -- properties ----------------------------------------------------------

    def insert_property(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a listing with status ``pending`` and return it."""

        data = _normalise_property(payload)
        data.update(id=uuid4().hex, status="pending", advertised=False, created_at=utcnow())
        with self._begin() as conn:
            conn.execute(insert(properties_table).values(**data))
            row = conn.execute(
                select(properties_table).where(properties_table.c.id == data["id"])
            ).one()
        return PropertyRecord(**_property_row(row)).to_api()

    def get_property(self, property_id: str) -> Optional[dict[str, Any]]:
        stmt = select(properties_table).where(properties_table.c.id == property_id)
        with self._begin() as conn:
            row = conn.execute(stmt).first()
        return PropertyRecord(**_property_row(row)).to_api() if row else None

    def list_properties(
        self,
        *,
        agent_email: Optional[str] = None,
        status: Optional[str] = None,
        advertised: Optional[bool] = None,
        ids: Optional[Iterable[str]] = None,
        newest_first: bool = False,
    ) -> list[dict[str, Any]]:
        stmt = select(properties_table)
        if agent_email is not None:
            stmt = stmt.where(properties_table.c.agent_email == agent_email)
        if status is not None:
            stmt = stmt.where(properties_table.c.status == status)
        if advertised is not None:
            stmt = stmt.where(properties_table.c.advertised == advertised)
        if ids is not None:
            stmt = stmt.where(properties_table.c.id.in_(list(ids)))
        order = properties_table.c.created_at
        stmt = stmt.order_by(order.desc() if newest_first else order.asc())
        with self._begin() as conn:
            rows = conn.execute(stmt).all()
        return [PropertyRecord(**_property_row(r)).to_api() for r in rows]

    def update_property(self, property_id: str, payload: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        """Replace the editable fields of a listing; ``None`` if it is missing.

        Identity, ownership, status, the advertised flag and creation time are
        not editable here.
        """

        changes = _normalise_property(payload, partial=True)
        for key in ("id", "agent_email", "status", "advertised", "created_at"):
            changes.pop(key, None)
        with self._begin() as conn:
            row = conn.execute(
                select(properties_table).where(properties_table.c.id == property_id)
            ).first()
            if row is None:
                return None
            if "metadata" in changes:
                merged = json.loads(row.metadata or "{}")
                merged.update(json.loads(changes["metadata"]))
                changes["metadata"] = json.dumps(merged)
            if changes:
                conn.execute(
                    update(properties_table)
                    .where(properties_table.c.id == property_id)
                    .values(**changes)
                )
            row = conn.execute(
                select(properties_table).where(properties_table.c.id == property_id)
            ).one()
        return PropertyRecord(**_property_row(row)).to_api()

    def set_property_fields(self, property_id: str, **values: Any) -> int:
        stmt = (
            update(properties_table)
            .where(properties_table.c.id == property_id)
            .values(**values)
        )
        with self._begin() as conn:
            return conn.execute(stmt).rowcount

    def delete_property(self, property_id: str) -> int:
        stmt = delete(properties_table).where(properties_table.c.id == property_id)
        with self._begin() as conn:
            return conn.execute(stmt).rowcount

    def delete_properties_by_agent(self, agent_email: str) -> int:
        stmt = delete(properties_table).where(properties_table.c.agent_email == agent_email)
        with self._begin() as conn:
            return conn.execute(stmt).rowcount

    # -- offers --------------------------------------------------------------

    def insert_offer(self, data: Mapping[str, Any]) -> dict[str, Any]:
        values = dict(data)
        values.update(id=uuid4().hex, created_at=utcnow())
        values.setdefault("status", "pending")
        with self._begin() as conn:
            conn.execute(insert(offers_table).values(**values))
        return OfferRecord(**values).to_api()

    def get_offer(self, offer_id: str) -> Optional[dict[str, Any]]:
        stmt = select(offers_table).where(offers_table.c.id == offer_id)
        with self._begin() as conn:
            row = conn.execute(stmt).first()
        return OfferRecord(**_row(row)).to_api() if row else None

    def list_offers(
        self,
        *,
        buyer_email: Optional[str] = None,
        agent_email: Optional[str] = None,
        property_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Return offers matching the filters, newest first."""

        stmt = select(offers_table)
        if buyer_email is not None:
            stmt = stmt.where(offers_table.c.buyer_email == buyer_email)
        if agent_email is not None:
            stmt = stmt.where(offers_table.c.agent_email == agent_email)
        if property_id is not None:
            stmt = stmt.where(offers_table.c.property_id == property_id)
        stmt = stmt.order_by(offers_table.c.created_at.desc())
        with self._begin() as conn:
            rows = conn.execute(stmt).all()
        return [OfferRecord(**_row(r)).to_api() for r in rows]

    def update_offer(
        self,
        offer_id: str,
        *,
        only_if_status: Optional[Iterable[str]] = None,
        **values: Any,
    ) -> int:
        """Update one offer and return the number of rows changed.

        When ``only_if_status`` is given the row is only touched if its
        current status is one of those values.
        """

        stmt = update(offers_table).where(offers_table.c.id == offer_id)
        if only_if_status is not None:
            stmt = stmt.where(offers_table.c.status.in_(list(only_if_status)))
        with self._begin() as conn:
            return conn.execute(stmt.values(**values)).rowcount

    def reject_sibling_offers(self, property_id: str, offer_id: str) -> int:
        """Reject every other offer on ``property_id``; return how many changed."""

        stmt = (
            update(offers_table)
            .where(offers_table.c.property_id == property_id)
            .where(offers_table.c.id != offer_id)
            .where(offers_table.c.status != "rejected")
            .values(status="rejected")
        )
        with self._begin() as conn:
            return conn.execute(stmt).rowcount

    # -- payments ------------------------------------------------------------

    def insert_payment(self, data: Mapping[str, Any]) -> dict[str, Any]:
        values = dict(data)
        values.update(id=uuid4().hex, status="paid", date=utcnow())
        with self._begin() as conn:
            conn.execute(insert(payments_table).values(**values))
        return PaymentRecord(**values).to_api()

    def get_payment(self, payment_id: str) -> Optional[dict[str, Any]]:
        stmt = select(payments_table).where(payments_table.c.id == payment_id)
        with self._begin() as conn:
            row = conn.execute(stmt).first()
        return PaymentRecord(**_row(row)).to_api() if row else None

    def find_payment_for_offer(self, offer_id: str) -> Optional[dict[str, Any]]:
        stmt = select(payments_table).where(payments_table.c.offer_id == offer_id)
        with self._begin() as conn:
            row = conn.execute(stmt).first()
        return PaymentRecord(**_row(row)).to_api() if row else None

    def list_paid_payments_for_agent(self, agent_email: str) -> list[dict[str, Any]]:
        """Return paid payments made against any listing owned by ``agent_email``."""

        owned = select(properties_table.c.id).where(properties_table.c.agent_email == agent_email)
        stmt = (
            select(payments_table)
            .where(payments_table.c.status == "paid")
            .where(payments_table.c.property_id.in_(owned))
            .order_by(payments_table.c.date.desc())
        )
        with self._begin() as conn:
            rows = conn.execute(stmt).all()
        return [PaymentRecord(**_row(r)).to_api() for r in rows]

    # -- wishlist ------------------------------------------------------------

    def add_wishlist_item(self, user_email: str, property_id: str) -> dict[str, Any]:
        """Insert a wishlist entry; raises :data:`IntegrityError` on duplicates."""

        values = {"id": uuid4().hex, "user_email": user_email, "property_id": property_id}
        with self._begin() as conn:
            conn.execute(insert(wishlist_table).values(**values))
        return {"id": values["id"], "userEmail": user_email, "propertyId": property_id}

    def find_wishlist_item(self, user_email: str, property_id: str) -> Optional[dict[str, Any]]:
        stmt = select(wishlist_table).where(
            wishlist_table.c.user_email == user_email,
            wishlist_table.c.property_id == property_id,
        )
        with self._begin() as conn:
            row = conn.execute(stmt).first()
        if row is None:
            return None
        return {"id": row.id, "userEmail": row.user_email, "propertyId": row.property_id}

    def wishlist_property_ids(self, user_email: str) -> list[str]:
        stmt = select(wishlist_table.c.property_id).where(wishlist_table.c.user_email == user_email)
        with self._begin() as conn:
            return [r.property_id for r in conn.execute(stmt).all()]

    def remove_wishlist_item(self, user_email: str, property_id: str) -> int:
        stmt = delete(wishlist_table).where(
            wishlist_table.c.user_email == user_email,
            wishlist_table.c.property_id == property_id,
        )
        with self._begin() as conn:
            return conn.execute(stmt).rowcount

    # -- reviews -------------------------------------------------------------

    def insert_review(self, property_id: str, user_id: str, name: str, text: str) -> dict[str, Any]:
        values = {
            "id": uuid4().hex,
            "review_id": uuid4().hex,
            "property_id": property_id,
            "user_id": user_id,
            "name": name,
            "text": text,
            "status": None,
            "created_at": utcnow(),
        }
        with self._begin() as conn:
            conn.execute(insert(reviews_table).values(**values))
        return ReviewRecord(**values).to_api()

    def list_reviews(
        self, *, user_id: Optional[str] = None, property_id: Optional[str] = None
    ) -> list[dict[str, Any]]:
        stmt = select(reviews_table)
        if user_id is not None:
            stmt = stmt.where(reviews_table.c.user_id == user_id)
        if property_id is not None:
            stmt = stmt.where(reviews_table.c.property_id == property_id)
        stmt = stmt.order_by(reviews_table.c.created_at.desc())
        with self._begin() as conn:
            rows = conn.execute(stmt).all()
        return [ReviewRecord(**_row(r)).to_api() for r in rows]

    def set_review_status(self, review_id: str, status: str) -> int:
        """Set moderation status by row id or public review id."""

        stmt = (
            update(reviews_table)
            .where((reviews_table.c.id == review_id) | (reviews_table.c.review_id == review_id))
            .values(status=status)
        )
        with self._begin() as conn:
            return conn.execute(stmt).rowcount

    def delete_review(self, review_id: str) -> int:
        stmt = delete(reviews_table).where(reviews_table.c.review_id == review_id)
        with self._begin() as conn:
            return conn.execute(stmt).rowcount


def get_store(request: Request) -> Store:
    """FastAPI dependency returning the application's store."""

    return request.app.state.store


_PROPERTY_COLUMNS = {
    "agentEmail": "agent_email",
    "agentName": "agent_name",
    "title": "title",
    "location": "location",
    "image": "image",
    "minPrice": "min_price",
    "maxPrice": "max_price",
    "advertised": "advertised",
}

# Keys clients may echo back from ``to_api`` that are never stored in metadata.
_PROPERTY_RESERVED = {"id", "_id", "status", "createdAt", "reviews"}


def _normalise_property(payload: Mapping[str, Any], partial: bool = False) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}
    for key, value in payload.items():
        column = _PROPERTY_COLUMNS.get(key)
        if column:
            data[column] = value
        elif key not in _PROPERTY_RESERVED:
            extra[key] = value

    for column in ("min_price", "max_price"):
        if column in data:
            data[column] = _require_float(data[column], column)
    if "advertised" in data:
        data["advertised"] = bool(data["advertised"])

    if not partial:
        data["agent_email"] = _require_str(data.get("agent_email"), "agentEmail")
        for column in ("min_price", "max_price"):
            if data.get(column) is None:
                raise ValueError(f"{column} is required")

    if extra or not partial:
        data["metadata"] = json.dumps(extra)
    return data


def _row(row: Row[Any]) -> dict[str, Any]:
    return dict(row._mapping)


def _property_row(row: Row[Any]) -> dict[str, Any]:
    data = _row(row)
    meta = data.get("metadata")
    if isinstance(meta, str) and meta:
        data["metadata"] = json.loads(meta)
    else:
        data["metadata"] = {}
    return data


def _require_str(value: Any, name: str) -> str:
    if not value:
        raise ValueError(f"{name} is required")
    return str(value)


def _require_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number") from None


def _maybe_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)
