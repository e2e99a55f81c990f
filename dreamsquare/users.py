"""FastAPI router for marketplace users and their roles."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel

from .auth import (
    IdentityDirectory,
    IdentityProviderError,
    get_identity_directory,
    require_roles,
)
from .store import IntegrityError, Store, get_store
from .workflow import NotFound, mark_fraud

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


class UserDelete(BaseModel):
    email: Optional[str] = None


def ensure_admin(store: Store, email: str) -> Dict[str, Any]:
    """Create ``email`` as an admin, or promote the existing user."""

    user = store.find_user_by_email(email)
    if user is None:
        return store.insert_user({"email": email, "role": "admin"})
    if user["role"] != "admin":
        store.set_user_role(user["id"], "admin")
        logger.info("Bootstrap admin %s promoted", email)
    return {**user, "role": "admin"}


@router.post("")
def register_user(
    payload: Dict[str, Any] = Body(default_factory=dict),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    """Store a user on first sign-in; repeat calls are no-ops."""

    email = payload.get("email")
    if not email:
        raise HTTPException(status_code=400, detail="email is required")
    if store.find_user_by_email(email):
        return {"message": "user already exists", "inserted": False}
    # Self-registration never grants elevated roles.
    payload = {**payload, "role": "user"}
    try:
        user = store.insert_user(payload)
    except IntegrityError:
        return {"message": "user already exists", "inserted": False}
    return {"inserted": True, "insertedId": user["id"], "user": user}


@router.get("/role/{email}")
def get_role(email: str, store: Store = Depends(get_store)) -> Dict[str, str]:
    user = store.find_user_by_email(email)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"role": user["role"]}


@router.get("")
def list_users(store: Store = Depends(get_store)) -> List[Dict[str, Any]]:
    return store.list_users()


def _set_role(store: Store, user_id: str, role: str) -> Dict[str, Any]:
    if not store.set_user_role(user_id, role):
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("User %s promoted to %s", user_id, role)
    return {"id": user_id, "role": role}


@router.patch("/admin/{user_id}")
def make_admin(
    user_id: str,
    store: Store = Depends(get_store),
    admin: Dict[str, Any] = Depends(require_roles("admin")),
) -> Dict[str, Any]:
    return _set_role(store, user_id, "admin")


@router.patch("/agent/{user_id}")
def make_agent(
    user_id: str,
    store: Store = Depends(get_store),
    admin: Dict[str, Any] = Depends(require_roles("admin")),
) -> Dict[str, Any]:
    return _set_role(store, user_id, "agent")


@router.patch("/fraud/{user_id}")
def make_fraud(
    user_id: str,
    store: Store = Depends(get_store),
    admin: Dict[str, Any] = Depends(require_roles("admin")),
) -> Dict[str, Any]:
    """Flag an agent as fraudulent and remove all of their listings."""

    try:
        result = mark_fraud(store, user_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    return result.to_api()


@router.delete("/{user_id}")
def delete_user(
    user_id: str,
    payload: Optional[UserDelete] = None,
    store: Store = Depends(get_store),
    directory: IdentityDirectory = Depends(get_identity_directory),
    admin: Dict[str, Any] = Depends(require_roles("admin")),
) -> Dict[str, Any]:
    """Delete a user record and, when ``email`` is given, their login account.

    Failures at the identity provider are logged and reported in the response
    but do not undo the record deletion.
    """

    deleted = store.delete_user(user_id)
    identity_deleted = False
    email = payload.email if payload else None
    if email:
        try:
            identity_deleted = directory.delete_user_by_email(email)
        except IdentityProviderError as exc:
            logger.warning("Identity provider delete failed for %s: %s", email, exc)
    return {"deletedCount": deleted, "identityDeleted": identity_deleted}
