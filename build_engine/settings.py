#build_engine\settings.py

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Build engine configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Wiring
    persistence_backend: str = "memory"
    client_backend: str = "memory"

    # Storage
    uploads_bucket: str = "site-uploads"
    static_bucket: str = "site-static"
    aws_region: str = "us-east-1"

    # Domains
    base_domain: str = "example.com"
    reserved_subdomains: List[str] = ["www", "api", "admin", "cdn", "mail"]

    # Shared distribution
    shared_distribution_id: str = ""
    shared_distribution_domain: Optional[str] = None
    edge_function_name: str = "tenant-routing-function"

    # Strategy
    default_deployment_strategy: str = "shared"
    force_deployment_strategy: Optional[str] = None
    enable_individual_for_enterprise: bool = True
    max_individual_distributions: int = 400
    high_traffic_page_views: int = 1_000_000
    default_tenant_tier: str = "standard"
    enterprise_tenant_ids: List[str] = []

    # DNS automation
    route53_enabled: bool = False
    route53_hosted_zone_id: Optional[str] = None

    # Archive limits
    archive_min_bytes: int = 22
    archive_max_entries: int = 10_000
    archive_max_uncompressed_bytes: int = 500 * 1024 * 1024

    # Pipeline
    workspace_root: str = "temp/builds"
    discovery_max_depth: int = 3
    install_command: str = "npm install --legacy-peer-deps"
    install_timeout_seconds: int = 600
    build_timeout_seconds: int = 900
    command_output_limit: int = 20 * 1024 * 1024

    # Artifact upload
    upload_batch_width: int = 10
    upload_max_attempts: int = 3
    upload_backoff_seconds: float = 1.0
    upload_failure_threshold: float = 0.2

    # Version pointer mirror
    pointer_copy_width: int = 10
    pointer_failure_threshold: float = 0.1

    # Queue / workers
    queue_max_attempts: int = 3
    queue_backoff_seconds: float = 2.0
    worker_pool_size: int = 2
    worker_poll_interval: float = 2.0
    lease_seconds: int = 60

    # Remote calls
    remote_connect_timeout: int = 5
    remote_read_timeout: int = 30

    @property
    def shared_cdn_domain(self) -> str:
        return self.shared_distribution_domain or f"{self.shared_distribution_id}.cloudfront.net"


settings = EngineSettings()
