"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from mobile_order.auth import (
    FirebaseTokenVerifier,
    InMemoryTokenVerifier,
    TokenVerifier,
    authenticate,
)
from mobile_order.config import get_settings
from mobile_order.db import DbClient, InMemoryDbClient, SqlDbClient
from mobile_order.storage import InMemoryStorageClient, S3StorageClient, StorageClient

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_token_verifier: TokenVerifier | None = None

bearer_scheme = HTTPBearer(auto_error=False)


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so the connection pool is shared across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = SqlDbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.s3_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            endpoint=settings.s3_endpoint,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
            public_base_url=settings.s3_public_base_url,
        )
    return _storage_client


def get_token_verifier() -> TokenVerifier:
    global _token_verifier
    if _token_verifier:
        return _token_verifier

    settings = get_settings()
    if settings.use_in_memory_backends or not (
        settings.firebase_project_id or settings.firebase_credentials_path
    ):
        _token_verifier = InMemoryTokenVerifier()
    else:
        _token_verifier = FirebaseTokenVerifier(
            project_id=settings.firebase_project_id,
            credentials_path=settings.firebase_credentials_path,
        )
    return _token_verifier


def get_current_owner_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> str:
    """uid of the authenticated caller; every owner-scoped route depends on it."""
    return authenticate(verifier, credentials)


def get_max_image_bytes() -> int:
    return get_settings().max_image_bytes
