"""Bearer-token authentication and identity-provider account management.

Tokens are issued by an AWS Cognito user pool.  Verification is a capability
object held on the application (``app.state.token_verifier``) so tests and
local development can substitute their own; routes only ever see the decoded
claims returned by :func:`get_current_user`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
import os
import time
from typing import Any, Callable, Dict, Optional

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwk, jwt
from jose.exceptions import JOSEError
from jose.utils import base64url_decode

from .store import Store, get_store

logger = logging.getLogger(__name__)


class InvalidToken(Exception):
    """Raised when a bearer token cannot be verified."""


class TokenVerifier(ABC):
    """Turn a raw bearer token into the caller's claims."""

    @abstractmethod
    def verify(self, token: str) -> Dict[str, Any]:
        raise NotImplementedError


class CognitoTokenVerifier(TokenVerifier):
    """Verify Cognito-issued JWTs against the pool's published JWKS."""

    def __init__(self, region: str, user_pool_id: str) -> None:
        self.issuer = f"https://cognito-idp.{region}.amazonaws.com/{user_pool_id}"
        self._jwks: Optional[Dict[str, Any]] = None

    def _keys(self) -> list[Dict[str, Any]]:
        if self._jwks is None:
            try:
                resp = requests.get(f"{self.issuer}/.well-known/jwks.json", timeout=10)
                resp.raise_for_status()
                self._jwks = resp.json()
            except requests.RequestException as exc:
                raise InvalidToken("Unable to fetch signing keys") from exc
        return self._jwks.get("keys", [])

    def _signing_key(self, kid: Optional[str]) -> Optional[Dict[str, Any]]:
        """Find ``kid`` in the cached JWKS, refetching once after a key rotation."""

        cached = self._jwks is not None
        key = next((k for k in self._keys() if k.get("kid") == kid), None)
        if key is None and cached:
            logger.info("Signing key %s not cached; refreshing JWKS", kid)
            self._jwks = None
            key = next((k for k in self._keys() if k.get("kid") == kid), None)
        return key

    def verify(self, token: str) -> Dict[str, Any]:
        try:
            headers = jwt.get_unverified_header(token)
            key = self._signing_key(headers.get("kid"))
            if not key:
                raise InvalidToken("Unknown signing key")
            public_key = jwk.construct(key)
            message, encoded_sig = token.rsplit(".", 1)
            decoded_sig = base64url_decode(encoded_sig.encode())
            if not public_key.verify(message.encode(), decoded_sig):
                raise InvalidToken("Signature verification failed")
            claims = jwt.get_unverified_claims(token)
            expires = float(claims["exp"]) if claims.get("exp") is not None else None
        except (JOSEError, TypeError, ValueError) as exc:
            raise InvalidToken(str(exc)) from exc

        if claims.get("iss") != self.issuer:
            raise InvalidToken("Invalid issuer")
        if claims.get("token_use") not in {"id", "access"}:
            raise InvalidToken("Invalid token use")
        if expires is not None and expires < time.time():
            raise InvalidToken("Token expired")
        return claims


class UnverifiedTokenVerifier(TokenVerifier):
    """Decode claims without checking the signature.

    Used when Cognito is not configured so the API remains usable during local
    development.  Never use this in production.
    """

    def verify(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.get_unverified_claims(token)
        except JOSEError as exc:
            raise InvalidToken(str(exc)) from exc


def build_token_verifier() -> TokenVerifier:
    region = os.getenv("COGNITO_REGION")
    user_pool_id = os.getenv("COGNITO_USER_POOL_ID")
    if region and user_pool_id:
        return CognitoTokenVerifier(region, user_pool_id)
    logger.warning("Cognito is not configured; bearer tokens will not be verified")
    return UnverifiedTokenVerifier()


class IdentityProviderError(Exception):
    """Raised when the identity provider rejects an account operation."""


class IdentityDirectory(ABC):
    """Account operations on the identity provider."""

    @abstractmethod
    def delete_user_by_email(self, email: str) -> bool:
        raise NotImplementedError


class CognitoDirectory(IdentityDirectory):
    def __init__(self, user_pool_id: str, region: Optional[str] = None, client=None) -> None:
        self.user_pool_id = user_pool_id
        self.client = client or boto3.client("cognito-idp", region_name=region)

    def delete_user_by_email(self, email: str) -> bool:
        """Delete the pool account whose email is ``email``.

        Returns ``False`` when no such account exists.
        """

        try:
            resp = self.client.list_users(
                UserPoolId=self.user_pool_id,
                Filter=f'email = "{email}"',
                Limit=1,
            )
            users = resp.get("Users", [])
            if not users:
                return False
            self.client.admin_delete_user(
                UserPoolId=self.user_pool_id, Username=users[0]["Username"]
            )
            return True
        except (ClientError, BotoCoreError) as exc:
            raise IdentityProviderError(str(exc)) from exc


class LocalDirectory(IdentityDirectory):
    """No identity provider configured; nothing to delete."""

    def delete_user_by_email(self, email: str) -> bool:
        logger.info("No identity provider configured; skipping account removal for %s", email)
        return False


def build_identity_directory() -> IdentityDirectory:
    user_pool_id = os.getenv("COGNITO_USER_POOL_ID")
    if user_pool_id:
        return CognitoDirectory(user_pool_id, region=os.getenv("COGNITO_REGION"))
    return LocalDirectory()


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

_scheme = HTTPBearer(auto_error=False)


def get_token_verifier(request: Request) -> TokenVerifier:
    return request.app.state.token_verifier


def get_identity_directory(request: Request) -> IdentityDirectory:
    return request.app.state.identity_directory


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_scheme),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> Dict[str, Any]:
    """Return the verified claims of the caller's bearer token.

    A missing header or token yields 401; a token the verifier rejects yields
    403.
    """

    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="unauthorized access")
    try:
        return verifier.verify(credentials.credentials)
    except InvalidToken as exc:
        logger.info("Rejected bearer token: %s", exc)
        raise HTTPException(status_code=403, detail="forbidden access") from exc


def require_roles(*roles: str) -> Callable[..., Dict[str, Any]]:
    """Dependency factory admitting only callers whose stored role is in ``roles``."""

    def role_dependency(
        user: Dict[str, Any] = Depends(get_current_user),
        store: Store = Depends(get_store),
    ) -> Dict[str, Any]:
        email = user.get("email")
        record = store.find_user_by_email(email) if email else None
        if not record or record["role"] not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return record

    return role_dependency
