#tests\conftest.py

"""Pytest configuration and fixtures."""

from typing import Callable, Dict

import pytest

from build_engine.core.models import Strategy
from build_engine.distribution.backends import IndividualDistributionBackend, SharedDistributionBackend
from build_engine.distribution.service import DeploymentService
from build_engine.distribution.strategy import DeploymentStrategySelector, StrategyConfig
from build_engine.distribution.version_pointer import VersionPointerManager
from build_engine.infrastructure.memory.clients import (
    FakeCdnProvider,
    InMemoryDnsClient,
    InMemoryObjectStore,
)
from build_engine.infrastructure.memory.repository import (
    InMemoryBuildRepository,
    InMemoryDeploymentRepository,
    InMemoryJobQueue,
    InMemoryTenantDirectory,
    InMemoryTenantDistributionRepository,
)
from build_engine.settings import EngineSettings

from factories import (
    BASE_DOMAIN,
    SHARED_DOMAIN,
    SHARED_ID,
    STATIC_BUCKET,
    UPLOADS_BUCKET,
)


# ============================================
# Settings
# ============================================

@pytest.fixture
def engine_settings(tmp_path):
    return EngineSettings(
        _env_file=None,
        uploads_bucket=UPLOADS_BUCKET,
        static_bucket=STATIC_BUCKET,
        base_domain=BASE_DOMAIN,
        shared_distribution_id=SHARED_ID,
        shared_distribution_domain=SHARED_DOMAIN,
        workspace_root=str(tmp_path / "builds"),
        upload_backoff_seconds=0.0,
        force_deployment_strategy=None,
        enterprise_tenant_ids=[],
    )

# ============================================
# In-memory infrastructure
# ============================================

@pytest.fixture
def builds():
    return InMemoryBuildRepository()

@pytest.fixture
def deployments():
    return InMemoryDeploymentRepository()

@pytest.fixture
def distributions():
    return InMemoryTenantDistributionRepository()

@pytest.fixture
def tenants():
    return InMemoryTenantDirectory()

@pytest.fixture
def queue():
    return InMemoryJobQueue()

@pytest.fixture
def store():
    return InMemoryObjectStore()

@pytest.fixture
def cdn():
    provider = FakeCdnProvider()
    provider.add_existing(SHARED_ID, SHARED_DOMAIN)
    return provider

@pytest.fixture
def dns():
    return InMemoryDnsClient(BASE_DOMAIN)

# ============================================
# Distribution services
# ============================================

@pytest.fixture
def strategy_config():
    return StrategyConfig(base_domain=BASE_DOMAIN, max_individual_distributions=400)

@pytest.fixture
def selector(strategy_config):
    return DeploymentStrategySelector(strategy_config)

@pytest.fixture
def pointers(store):
    return VersionPointerManager(store, STATIC_BUCKET)

@pytest.fixture
def backends(cdn, distributions):
    return {
        Strategy.INDIVIDUAL: IndividualDistributionBackend(
            cdn, distributions, static_bucket=STATIC_BUCKET, region="us-east-1"
        ),
        Strategy.SHARED: SharedDistributionBackend(
            cdn, distribution_id=SHARED_ID, base_domain=BASE_DOMAIN
        ),
    }

@pytest.fixture
def deployer(selector, backends, pointers, distributions, tenants, builds, deployments, dns):
    return DeploymentService(
        selector=selector,
        backends=backends,
        pointers=pointers,
        distributions=distributions,
        tenants=tenants,
        builds=builds,
        deployments=deployments,
        dns=dns,
        base_domain=BASE_DOMAIN,
        static_bucket=STATIC_BUCKET,
    )

@pytest.fixture
def seed_version(store) -> Callable[[str, str, Dict[str, bytes]], None]:
    """Put artifact files for a tenant version into the static bucket."""

    def seed(tenant_id: str, version: str, files: Dict[str, bytes]) -> None:
        for relative, body in files.items():
            store.put(
                STATIC_BUCKET,
                f"tenants/{tenant_id}/deployments/{version}/{relative}",
                body,
                "text/html",
            )

    return seed
