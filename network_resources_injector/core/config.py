"""
Runtime configuration for the network resources injector.

All values are sourced from environment variables (or a local ``.env`` file) and
passed explicitly to every component that needs them.
"""

from functools import lru_cache

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CLIENT_CA = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"
DEFAULT_RESOURCE_NAME_KEY = "k8s.v1.cni.cncf.io/resourceName"


class Settings(BaseSettings):
    """Webhook configuration sourced from environment variables."""

    model_config = SettingsConfigDict(env_file=(".env",), env_file_encoding="utf-8", extra="ignore", populate_by_name=True)

    # HTTPS listener
    bind_address: str = "0.0.0.0"
    port: int = 8443
    tls_cert_file: str = "cert.pem"
    tls_private_key_file: str = "key.pem"
    client_ca: str = Field(default=DEFAULT_CLIENT_CA, description="Comma separated client CA file paths")
    insecure: bool = Field(default=False, description="Do not require client certificates")
    keep_alive_timeout_seconds: int = 5
    read_timeout_seconds: float = Field(default=5.0, description="Time allowed for a client to send the request body")
    limit_concurrency: int | None = Field(default=1000, description="Connections and tasks served at once, 503 beyond")
    backlog: int = 2048
    server_startup_interval_seconds: float = 0.05

    # Mutation behaviour
    network_resource_name_keys: str = DEFAULT_RESOURCE_NAME_KEY
    inject_hugepage_down_api: bool = False
    honor_resources: bool = False

    # User-defined injections
    namespace: str = "kube-system"
    user_defined_injection_configmap: str = "nri-user-defined-injections"
    udi_interval_seconds: float = 30.0

    # Background services
    service_timeout_seconds: float = 2.0
    nad_watch_timeout_seconds: int = 300

    # Cluster access
    kube_config_path: str | None = Field(default=None, alias="KUBE_CONFIG_PATH")

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    log_file: str | None = None
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_date_format: str = "%Y-%m-%d %H:%M:%S"

    @computed_field
    @property
    def client_ca_paths(self) -> list[str]:
        paths = [p.strip() for p in self.client_ca.split(",") if p.strip()]
        return paths or [DEFAULT_CLIENT_CA]

    @computed_field
    @property
    def resource_name_keys(self) -> list[str]:
        return [k.strip() for k in self.network_resource_name_keys.split(",") if k.strip()]

    def validate_runtime(self) -> None:
        """Reject configurations the webhook cannot start with."""
        if self.port < 1024 or self.port > 65535:
            raise ValueError("invalid port number. Choose between 1024 and 65535")
        if not self.bind_address or not self.tls_cert_file or not self.tls_private_key_file:
            raise ValueError("bind address, TLS cert file and TLS key file must be set")
        if not self.resource_name_keys:
            raise ValueError("resource name keys can not be empty")
        if self.service_timeout_seconds <= 0 or self.udi_interval_seconds <= 0:
            raise ValueError("service timeout and user-defined injection interval must be positive")
        if self.read_timeout_seconds <= 0:
            raise ValueError("read timeout must be positive")
        if self.limit_concurrency is not None and self.limit_concurrency < 1:
            raise ValueError("concurrency limit must be at least 1")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]
