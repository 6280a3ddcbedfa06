"""
Application DI Container (dependency-injector).

Wires settings -> encryption -> stores -> providers -> registry -> service.
Every component is a Singleton: configuration, credentials and the
encryption key are loaded once and shared by all searches.

Usage::

    from image_trace.config import Settings
    from image_trace.container import ApplicationContainer

    container = ApplicationContainer()
    container.config.from_dict(Settings.from_env().to_container_config())

    service = container.search_service()

    # In tests - override any provider:
    container.registry.override(providers.Object(fake_registry))
"""

from __future__ import annotations

import logging
from pathlib import Path

from dependency_injector import containers, providers

from image_trace.application.persistence import (
    PersistenceWriter,
    RetentionPolicy,
    SearchArchive,
)
from image_trace.application.search import (
    AccessShaper,
    EntitlementTable,
    ProviderRegistry,
    ResultAggregator,
    SearchAllowance,
    SearchOrchestrator,
    SearchService,
)
from image_trace.infrastructure.crypto import EncryptionService
from image_trace.infrastructure.images import ImageLoader
from image_trace.infrastructure.providers import (
    GoogleVisionProvider,
    ProprietaryProvider,
    SearchProvider,
    TinEyeProvider,
)
from image_trace.infrastructure.storage import FileBlobStore, JsonRecordStore
from image_trace.shared.async_utils import QuotaCounter

logger = logging.getLogger(__name__)


def _create_providers(
    proprietary: dict | None,
    google_vision: dict | None,
    tineye: dict | None,
) -> list[SearchProvider]:
    """Build the closed adapter set from provider settings."""
    proprietary = proprietary or {}
    google_vision = google_vision or {}
    tineye = tineye or {}
    adapters: list[SearchProvider] = [
        ProprietaryProvider(
            scanner_url=proprietary.get("scanner_url") or "",
            api_key=proprietary.get("api_key"),
            quota=QuotaCounter(per_minute=100, per_day=10_000),
        ),
        TinEyeProvider(
            api_key=tineye.get("api_key"),
            quota=QuotaCounter(per_minute=5, per_day=150),
        ),
        GoogleVisionProvider(
            api_key=google_vision.get("api_key"),
            quota=QuotaCounter(per_minute=10, per_day=1000),
        ),
    ]
    configured = [a.provider_id for a in adapters if a.configured]
    logger.info(f"Configured providers: {configured}")
    return adapters


def _create_blob_store(data_dir: str) -> FileBlobStore:
    return FileBlobStore(Path(data_dir).expanduser() / "blobs")


class ApplicationContainer(containers.DeclarativeContainer):
    """Central DI container for image-trace.

    Manages creation and lifecycle of all core services:
    - ``registry``: provider adapters with availability cache and quotas
    - ``writer`` / ``archive`` / ``retention``: encrypted persistence
    - ``search_service``: the search facade used by the HTTP layer
    """

    config = providers.Configuration()

    entitlements = providers.Singleton(EntitlementTable.from_yaml, config.entitlements_file)

    encryption = providers.Singleton(EncryptionService, secret=config.secret)

    record_store = providers.Singleton(JsonRecordStore, data_dir=config.data_dir)

    blob_store = providers.Singleton(_create_blob_store, data_dir=config.data_dir)

    adapters = providers.Singleton(
        _create_providers,
        proprietary=config.providers.proprietary,
        google_vision=config.providers.google_vision,
        tineye=config.providers.tineye,
    )

    registry = providers.Singleton(
        ProviderRegistry,
        providers=adapters,
        entitlements=entitlements,
        availability_ttl=config.availability_ttl.as_(float),
    )

    writer = providers.Singleton(
        PersistenceWriter,
        records=record_store,
        blobs=blob_store,
        encryption=encryption,
    )

    archive = providers.Singleton(
        SearchArchive,
        records=record_store,
        blobs=blob_store,
        encryption=encryption,
        entitlements=entitlements,
    )

    retention = providers.Singleton(
        RetentionPolicy,
        records=record_store,
        archive=archive,
        retention_days=config.retention_days.as_int(),
    )

    image_loader = providers.Singleton(
        ImageLoader,
        max_bytes=config.max_image_bytes.as_int(),
        max_pixels=config.max_image_pixels.as_int(),
    )

    search_service = providers.Singleton(
        SearchService,
        registry=registry,
        orchestrator=providers.Singleton(SearchOrchestrator),
        aggregator=providers.Singleton(ResultAggregator),
        shaper=providers.Singleton(AccessShaper, id_key=config.secret),
        writer=writer,
        archive=archive,
        retention=retention,
        entitlements=entitlements,
        allowance=providers.Singleton(SearchAllowance, entitlements),
        image_loader=image_loader,
    )


__all__ = ["ApplicationContainer"]
