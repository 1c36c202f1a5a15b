"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

from fastapi import Depends

from portfolio_backend.auth import AuthClient, InMemoryAuthClient, SupabaseAuthClient
from portfolio_backend.config import Settings, get_settings
from portfolio_backend.db import InMemoryRecordStore, RecordStore, SqlRecordStore
from portfolio_backend.rate_limit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from portfolio_backend.services import ProfileService, ProjectService, UserService
from portfolio_backend.storage import InMemoryStorageClient, S3StorageClient, StorageClient
from portfolio_backend.uploads import ProjectImageOrchestrator

logger = logging.getLogger(__name__)

_record_store: RecordStore | None = None
_storage_client: StorageClient | None = None
_auth_client: AuthClient | None = None


def get_record_store() -> RecordStore:
    """
    Return a singleton record store so in-memory state persists across requests.
    """
    global _record_store
    if _record_store:
        return _record_store

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        logger.warning("DATABASE_URL not configured; using in-memory record store")
        _record_store = InMemoryRecordStore()
    else:
        _record_store = SqlRecordStore(settings.database_url)
    return _record_store


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.storage_endpoint:
        _storage_client = InMemoryStorageClient(base_url=settings.public_storage_base)
    else:
        _storage_client = S3StorageClient(
            bucket=settings.storage_bucket,
            endpoint=settings.storage_endpoint,
            region=settings.storage_region,
            access_key_id=settings.storage_access_key_id or "",
            secret_access_key=settings.storage_secret_access_key or "",
            base_url=settings.public_storage_base,
        )
    return _storage_client


def get_auth_client() -> AuthClient:
    global _auth_client
    if _auth_client:
        return _auth_client

    settings = get_settings()
    if settings.use_in_memory_backends or not (
        settings.supabase_url and settings.supabase_key
    ):
        logger.warning("Supabase auth not configured; using in-memory auth client")
        _auth_client = InMemoryAuthClient()
    else:
        _auth_client = SupabaseAuthClient(
            url=settings.supabase_url,
            api_key=settings.supabase_key,
            timeout=settings.auth_timeout_seconds,
        )
    return _auth_client


def build_rate_limiter(settings: Settings) -> RateLimiter:
    """Rate-limit table for one app instance; Redis when several processes share it."""
    if settings.redis_url and not settings.use_in_memory_backends:
        return RedisRateLimiter(url=settings.redis_url)
    return InMemoryRateLimiter()


def get_project_service(
    store: RecordStore = Depends(get_record_store),
) -> ProjectService:
    return ProjectService(store)


def get_profile_service(
    store: RecordStore = Depends(get_record_store),
) -> ProfileService:
    return ProfileService(store)


def get_user_service(auth: AuthClient = Depends(get_auth_client)) -> UserService:
    return UserService(auth)


def get_orchestrator(
    projects: ProjectService = Depends(get_project_service),
    storage: StorageClient = Depends(get_storage_client),
) -> ProjectImageOrchestrator:
    return ProjectImageOrchestrator(projects, storage)
