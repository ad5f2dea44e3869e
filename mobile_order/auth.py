"""
Bearer-token verification backed by Firebase Auth, plus an in-memory double.
"""

from __future__ import annotations

import logging
import uuid
from typing import Dict, Optional, Protocol

import firebase_admin
from fastapi import HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials as firebase_credentials

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "mobile-order"


class InvalidTokenError(Exception):
    """Raised when a bearer token cannot be verified."""


class TokenVerifier(Protocol):
    def verify(self, token: str) -> str:
        """Return the uid the token was issued for."""
        ...


class InMemoryTokenVerifier:
    """Issues opaque tokens for tests and local development."""

    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        self.tokens: Dict[str, str] = dict(tokens or {})

    def issue(self, uid: str) -> str:
        token = f"test-{uuid.uuid4().hex}"
        self.tokens[token] = uid
        return token

    def revoke(self, token: str) -> None:
        self.tokens.pop(token, None)

    def verify(self, token: str) -> str:
        uid = self.tokens.get(token)
        if not uid:
            raise InvalidTokenError("Unknown token")
        return uid


class FirebaseTokenVerifier:
    """
    Verifies Firebase ID tokens with firebase_admin.

    The SDK app is initialised once per process under its own name so it does
    not collide with a default app created elsewhere.
    """

    def __init__(
        self,
        project_id: Optional[str] = None,
        credentials_path: Optional[str] = None,
    ):
        try:
            self._app = firebase_admin.get_app(FIREBASE_APP_NAME)
        except ValueError:
            credential = (
                firebase_credentials.Certificate(credentials_path)
                if credentials_path
                else None
            )
            options = {"projectId": project_id} if project_id else None
            self._app = firebase_admin.initialize_app(
                credential, options, name=FIREBASE_APP_NAME
            )

    def verify(self, token: str) -> str:
        try:
            decoded = firebase_auth.verify_id_token(token, app=self._app)
        except (ValueError, firebase_auth.InvalidIdTokenError) as exc:
            raise InvalidTokenError(str(exc)) from exc
        uid = decoded.get("uid")
        if not uid:
            raise InvalidTokenError("Token has no uid")
        return uid


def authenticate(
    verifier: TokenVerifier, credentials: Optional[HTTPAuthorizationCredentials]
) -> str:
    """Resolve the caller's uid or raise a 401."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = credentials.credentials.strip()
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return verifier.verify(token)
    except InvalidTokenError as exc:
        logger.info("Rejected bearer token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
