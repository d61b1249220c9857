"""
Process bootstrap and supervision.

Services start in dependency order: TLS key/cert updater, network attachment
cache, user-defined injection updater, HTTPS listener. The process then blocks
until any of them stops or a termination signal arrives, and winds the rest down.
"""

import signal
import sys
import threading
from dataclasses import dataclass
from typing import List, Optional

from .core.config import Settings, get_settings
from .core.logging import get_logger, setup_logging
from .core.service import BackgroundService, start_services, watch
from .main import create_app
from .server import MutateServer
from .services.k8s import KubernetesClient, create_api_client
from .services.keycert import ClientCAPool, KeyCertIdentity, new_server_context
from .services.keycert_updater import KeyCertUpdater
from .services.nad_cache import NetAttachDefCache
from .services.udi import UserDefinedInjectionUpdater, UserDefinedInjections
from .webhook.mutate import MutationEngine


logger = get_logger(__name__)


@dataclass
class Services:
    identity: KeyCertIdentity
    keycert_updater: KeyCertUpdater
    nad_cache: NetAttachDefCache
    udi_store: UserDefinedInjections
    udi_updater: UserDefinedInjectionUpdater
    engine: MutationEngine
    server: MutateServer

    @property
    def ordered(self) -> List[BackgroundService]:
        return [self.keycert_updater, self.nad_cache, self.udi_updater, self.server]


def build_services(settings: Settings, kube_client: Optional[KubernetesClient] = None) -> Services:
    """Wire every component from the settings. Raises on unusable TLS material or cluster config."""
    ca_pool = ClientCAPool(settings.client_ca_paths, insecure=settings.insecure)
    identity = KeyCertIdentity(
        settings.tls_cert_file,
        settings.tls_private_key_file,
        context_factory=lambda: new_server_context(ca_pool),
    )

    if kube_client is None:
        kube_client = KubernetesClient(create_api_client(settings.kube_config_path))

    timeout = settings.service_timeout_seconds
    nad_cache = NetAttachDefCache(kube_client, timeout, watch_timeout_seconds=settings.nad_watch_timeout_seconds)
    udi_store = UserDefinedInjections()
    udi_updater = UserDefinedInjectionUpdater(
        kube_client,
        udi_store,
        namespace=settings.namespace,
        configmap_name=settings.user_defined_injection_configmap,
        interval=settings.udi_interval_seconds,
        timeout=timeout,
    )
    engine = MutationEngine(
        kube_client,
        nad_cache,
        udi_store,
        resource_name_keys=settings.resource_name_keys,
        inject_hugepage_down_api=settings.inject_hugepage_down_api,
        honor_resources=settings.honor_resources,
    )
    server = MutateServer(
        create_app(engine, read_timeout=settings.read_timeout_seconds),
        identity,
        address=settings.bind_address,
        port=settings.port,
        timeout=timeout,
        startup_interval=settings.server_startup_interval_seconds,
        keep_alive_timeout=settings.keep_alive_timeout_seconds,
        limit_concurrency=settings.limit_concurrency,
        backlog=settings.backlog,
    )
    return Services(
        identity=identity,
        keycert_updater=KeyCertUpdater(identity, timeout),
        nad_cache=nad_cache,
        udi_store=udi_store,
        udi_updater=udi_updater,
        engine=engine,
        server=server,
    )


def install_signal_handlers(trigger: threading.Event) -> None:
    def _handler(signum, frame):
        logger.info("received signal %s, shutting down", signal.Signals(signum).name)
        trigger.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def serve(services: List[BackgroundService], trigger: Optional[threading.Event] = None) -> Optional[BaseException]:
    """Start every service, then block until one stops or ``trigger`` fires. Returns the combined error."""
    start_services(services)
    logger.info("all services are running")
    return watch(services, trigger)


def main(settings: Optional[Settings] = None) -> int:
    settings = settings or Settings()
    try:
        settings.validate_runtime()
    except ValueError as exc:
        logger.error("invalid configuration: %s", exc)
        return 2

    logger.info("starting mutating admission controller for network resources injection")
    try:
        services = build_services(settings)
    except Exception as exc:
        logger.error("failed to initialise services: %s", exc)
        return 1

    trigger = threading.Event()
    install_signal_handlers(trigger)
    try:
        error = serve(services.ordered, trigger)
    except Exception as exc:
        logger.error("starting services failed: %s", exc)
        return 1

    if error is not None:
        logger.error("%s", error)
        return 1
    logger.info("shutdown complete")
    return 0


def cli() -> None:
    """Console entrypoint: logging from the environment derived settings, then ``main``."""
    settings = get_settings()
    setup_logging(settings)
    sys.exit(main(settings))
