#build_engine\container.py

"""Dependency injection container - wires all services together."""

import logging
import socket
from dataclasses import dataclass
from typing import Optional

from build_engine.core.clients import CdnProvider, DnsClient, ObjectStore
from build_engine.core.models import Strategy
from build_engine.core.repository import (
    BuildRepository,
    DeploymentRepository,
    JobQueue,
    TenantDirectory,
    TenantDistributionRepository,
)
from build_engine.distribution.backends import IndividualDistributionBackend, SharedDistributionBackend
from build_engine.distribution.service import DeploymentService
from build_engine.distribution.strategy import DeploymentStrategySelector, StrategyConfig
from build_engine.distribution.version_pointer import VersionPointerManager
from build_engine.edge.routing import RoutingConfig
from build_engine.executor.config import WorkerConfig
from build_engine.executor.executor import Executor
from build_engine.executor.retry_service import RetryPolicy, RetryService
from build_engine.pipeline.commands import CommandRunner
from build_engine.pipeline.orchestrator import BuildOrchestrator, PipelineOptions
from build_engine.pipeline.submission import BuildSubmissionService
from build_engine.pipeline.uploader import ArtifactUploader
from build_engine.settings import EngineSettings

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: EngineSettings

    # Repositories
    builds: BuildRepository
    deployments: DeploymentRepository
    distributions: TenantDistributionRepository
    tenants: TenantDirectory
    queue: JobQueue

    # Clients
    store: ObjectStore
    cdn: CdnProvider
    dns: Optional[DnsClient]

    # Services
    selector: DeploymentStrategySelector
    deployer: DeploymentService
    orchestrator: BuildOrchestrator
    submissions: BuildSubmissionService
    retry_service: RetryService

    @property
    def routing_config(self) -> RoutingConfig:
        return RoutingConfig.build(self.settings.base_domain, self.settings.reserved_subdomains)

    def make_executor(self, worker_id: Optional[str] = None) -> Executor:
        worker_id = worker_id or f"worker-{socket.gethostname()}"
        return Executor(
            config=WorkerConfig.from_settings(worker_id, self.settings),
            queue=self.queue,
            orchestrator=self.orchestrator,
            retry_service=self.retry_service,
        )


# ============================================
# REPOSITORIES
# ============================================

def _memory_repositories(settings: EngineSettings):
    from build_engine.infrastructure.memory.repository import (
        InMemoryBuildRepository,
        InMemoryDeploymentRepository,
        InMemoryJobQueue,
        InMemoryTenantDirectory,
        InMemoryTenantDistributionRepository,
    )

    return (
        InMemoryBuildRepository(),
        InMemoryDeploymentRepository(),
        InMemoryTenantDistributionRepository(),
        InMemoryTenantDirectory(settings.default_tenant_tier, settings.enterprise_tenant_ids),
        InMemoryJobQueue(),
    )


def _postgres_repositories(settings: EngineSettings, session_factory=None):
    from build_engine.infrastructure.postgres.database import get_session_factory
    from build_engine.infrastructure.postgres.repository import (
        PostgresBuildRepository,
        PostgresDeploymentRepository,
        PostgresJobQueue,
        PostgresTenantDirectory,
        PostgresTenantDistributionRepository,
    )

    factory = session_factory or get_session_factory()
    return (
        PostgresBuildRepository(factory),
        PostgresDeploymentRepository(factory),
        PostgresTenantDistributionRepository(factory),
        PostgresTenantDirectory(
            factory,
            default_tier=settings.default_tenant_tier,
            enterprise_tenant_ids=settings.enterprise_tenant_ids,
        ),
        PostgresJobQueue(factory),
    )


# ============================================
# CLIENTS
# ============================================

def _memory_clients(settings: EngineSettings):
    from build_engine.infrastructure.memory.clients import (
        FakeCdnProvider,
        InMemoryDnsClient,
        InMemoryObjectStore,
    )

    cdn = FakeCdnProvider()
    if settings.shared_distribution_id:
        cdn.add_existing(settings.shared_distribution_id, settings.shared_cdn_domain)
    return (
        InMemoryObjectStore(),
        cdn,
        InMemoryDnsClient(settings.base_domain, enabled=settings.route53_enabled),
    )


def _aws_clients(settings: EngineSettings):
    from build_engine.infrastructure.aws.cloudfront import CloudFrontCdnProvider
    from build_engine.infrastructure.aws.route53 import Route53DnsClient
    from build_engine.infrastructure.aws.s3 import S3ObjectStore
    from build_engine.infrastructure.aws.session import make_client

    timeouts = dict(
        connect_timeout=settings.remote_connect_timeout,
        read_timeout=settings.remote_read_timeout,
    )
    store = S3ObjectStore(make_client("s3", settings.aws_region, **timeouts))
    # CloudFront and Route 53 are global services homed in us-east-1
    cdn = CloudFrontCdnProvider(make_client("cloudfront", "us-east-1", **timeouts))
    dns = Route53DnsClient(
        make_client("route53", "us-east-1", **timeouts),
        hosted_zone_id=settings.route53_hosted_zone_id,
        base_domain=settings.base_domain,
        enabled=settings.route53_enabled,
    )
    return store, cdn, dns


# ============================================
# CONTAINER
# ============================================

def build_container(
    settings: EngineSettings,
    *,
    persistence: str = "memory",
    clients: str = "memory",
    session_factory=None,
    runner: Optional[CommandRunner] = None,
) -> Container:
    """
    Wire a complete engine.

    Args:
        persistence: "memory" or "postgres"
        clients: "memory" or "aws"
        session_factory: SQLAlchemy session factory for "postgres" (defaults to production)
        runner: command runner for install/build (defaults to a subprocess runner)
    """
    if persistence == "postgres":
        builds, deployments, distributions, tenants, queue = _postgres_repositories(settings, session_factory)
    elif persistence == "memory":
        builds, deployments, distributions, tenants, queue = _memory_repositories(settings)
    else:
        raise ValueError(f"Unknown persistence backend: {persistence}")

    if clients == "aws":
        store, cdn, dns = _aws_clients(settings)
    elif clients == "memory":
        store, cdn, dns = _memory_clients(settings)
    else:
        raise ValueError(f"Unknown client backend: {clients}")

    selector = DeploymentStrategySelector(StrategyConfig.from_settings(settings))

    backends = {
        Strategy.INDIVIDUAL: IndividualDistributionBackend(
            cdn,
            distributions,
            static_bucket=settings.static_bucket,
            region=settings.aws_region,
        ),
        Strategy.SHARED: SharedDistributionBackend(
            cdn,
            distribution_id=settings.shared_distribution_id,
            base_domain=settings.base_domain,
        ),
    }

    pointers = VersionPointerManager(
        store,
        settings.static_bucket,
        copy_width=settings.pointer_copy_width,
        failure_threshold=settings.pointer_failure_threshold,
    )

    deployer = DeploymentService(
        selector=selector,
        backends=backends,
        pointers=pointers,
        distributions=distributions,
        tenants=tenants,
        builds=builds,
        deployments=deployments,
        dns=dns,
        base_domain=settings.base_domain,
        static_bucket=settings.static_bucket,
    )

    uploader = ArtifactUploader(
        store,
        settings.static_bucket,
        batch_width=settings.upload_batch_width,
        max_attempts=settings.upload_max_attempts,
        backoff_seconds=settings.upload_backoff_seconds,
        failure_threshold=settings.upload_failure_threshold,
    )

    orchestrator = BuildOrchestrator(
        builds=builds,
        deployments=deployments,
        store=store,
        uploader=uploader,
        deployer=deployer,
        options=PipelineOptions.from_settings(settings),
        runner=runner or CommandRunner(settings.command_output_limit),
    )

    retry_service = RetryService(queue, RetryPolicy(base_seconds=settings.queue_backoff_seconds), builds)
    queue.on_dead = retry_service.fail_abandoned_build

    container = Container(
        settings=settings,
        builds=builds,
        deployments=deployments,
        distributions=distributions,
        tenants=tenants,
        queue=queue,
        store=store,
        cdn=cdn,
        dns=dns,
        selector=selector,
        deployer=deployer,
        orchestrator=orchestrator,
        submissions=BuildSubmissionService(builds, queue, settings.queue_max_attempts),
        retry_service=retry_service,
    )

    logger.info(f"[container] Wired engine (persistence={persistence}, clients={clients})")
    return container
