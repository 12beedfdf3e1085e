"""Lazily built application services shared by the HTTP routes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from iqps.api.auth import StaticTokenVerifier, TokenVerifier
from iqps.application.ports.notifier_port import NotifierPort, NullNotifier
from iqps.application.services.lifecycle_coordinator import LifecycleCoordinator
from iqps.application.services.search_ranker import SearchRanker
from iqps.config import IqpsSettings
from iqps.infrastructure.notify.slack_notifier import SlackNotifier
from iqps.infrastructure.storage.file_storage import LocalFileStorage
from iqps.infrastructure.storage.paths import Paths
from iqps.infrastructure.stores.catalog_store import CatalogStore


@dataclass
class AppServices:
    settings: IqpsSettings
    store: CatalogStore
    paths: Paths
    ranker: SearchRanker
    coordinator: LifecycleCoordinator
    notifier: NotifierPort
    verifier: TokenVerifier


def build_services(settings: IqpsSettings) -> AppServices:
    store = CatalogStore(
        settings.db_url,
        pool_size=settings.db_pool_size,
        pool_timeout=settings.db_pool_timeout,
    )
    paths = Paths(
        settings.static_files_url,
        settings.static_file_storage_location,
        settings.uploaded_qps_path,
        settings.library_qps_path,
    )
    return AppServices(
        settings=settings,
        store=store,
        paths=paths,
        ranker=SearchRanker(store, paths),
        coordinator=LifecycleCoordinator(
            store,
            paths,
            LocalFileStorage(),
            max_upload_limit=settings.max_upload_limit,
        ),
        notifier=SlackNotifier.from_url(settings.slack_webhook_url) or NullNotifier(),
        verifier=StaticTokenVerifier(settings.admin_tokens),
    )


_services: Optional[AppServices] = None


def get_services() -> AppServices:
    global _services
    if _services is None:
        _services = build_services(IqpsSettings.from_env())
    return _services
