#tests\test_deployment_service.py

"""Test publishing, rollback, status and migration."""

import pytest

from build_engine.core.errors import (
    BuildValidationError,
    TransientInfraError,
    VersionPointerError,
)
from build_engine.core.models import (
    Build,
    BuildStatus,
    DeploymentStatus,
    Strategy,
    TenantProfile,
)
from build_engine.distribution.service import RETIRED
from build_engine.distribution.strategy import StrategyConfig
from build_engine.infrastructure.memory.clients import FakeCdnProvider

from factories import BASE_DOMAIN, SHARED_DOMAIN, SHARED_ID, STATIC_BUCKET

SITE = {"index.html": b"<html>home</html>", "about/index.html": b"<html>about</html>"}


def enterprise(tenant_id="t1", **kwargs):
    return TenantProfile(tenant_id=tenant_id, subscription_tier="enterprise", plan_type="enterprise", **kwargs)


def successful_build(tenant_id="t1", build_id="b1"):
    return Build(
        build_id=build_id,
        tenant_id=tenant_id,
        source_key=f"uploads/{tenant_id}/{build_id}.zip",
        status=BuildStatus.SUCCESS,
    )


# ---------------------------------------------------------
# Publish
# ---------------------------------------------------------

class TestPublish:
    """Test making a build live."""

    def test_shared_tenant(self, deployer, seed_version, cdn, store):
        """Test a standard tenant is served from the shared distribution."""
        seed_version("t1", "b1", SITE)

        result = deployer.publish("t1", "b1")

        assert result.strategy == Strategy.SHARED
        assert result.deployment_url == f"https://t1.{BASE_DOMAIN}/"
        assert result.pointer.version == "b1"
        assert result.invalidation_id == "I000001"
        assert cdn.invalidations[0][0] == SHARED_ID
        assert store.get(STATIC_BUCKET, "tenants/t1/deployments/current/index.html") == SITE["index.html"]

    def test_enterprise_tenant(self, deployer, tenants, seed_version, cdn):
        """Test an enterprise tenant gets its own distribution."""
        tenants.put(enterprise())
        seed_version("t1", "b1", SITE)

        result = deployer.publish("t1", "b1")

        assert result.strategy == Strategy.INDIVIDUAL
        assert result.distribution.distribution_id == "E000001"
        assert result.deployment_url == "https://de000001.cloudfront.net/"
        assert cdn.invalidations == [("E000001", ("/*",))]
        assert deployer.serving_strategy("t1") == Strategy.INDIVIDUAL

    def test_republish_reuses_distribution(self, deployer, tenants, seed_version, cdn):
        """Test a second publish does not create another distribution."""
        tenants.put(enterprise())
        seed_version("t1", "b1", SITE)
        seed_version("t1", "b2", SITE)

        deployer.publish("t1", "b1")
        result = deployer.publish("t1", "b2")

        assert result.distribution.distribution_id == "E000001"
        assert len(cdn.configs) == 1

    def test_invalidation_failure_is_warning(self, deployer, seed_version, cdn):
        """Test a failed invalidation does not fail the publish."""
        cdn.failing_invalidations.add(SHARED_ID)
        seed_version("t1", "b1", SITE)

        result = deployer.publish("t1", "b1")

        assert result.invalidation_id is None
        assert any("Cache invalidation failed" in w for w in result.warnings)
        assert result.pointer.version == "b1"

    def test_distribution_failure_is_warning(self, deployer, tenants, seed_version, cdn):
        """Test a provider error falls back to the direct bucket URL."""
        tenants.put(enterprise())
        seed_version("t1", "b1", SITE)

        def broken(config):
            raise TransientInfraError("provider unavailable")

        cdn.create_distribution = broken

        result = deployer.publish("t1", "b1")

        assert result.distribution is None
        assert result.invalidation_id is None
        assert result.deployment_url == (
            f"https://{STATIC_BUCKET}.s3.amazonaws.com/tenants/t1/deployments/b1/index.html"
        )
        assert any("Distribution setup failed" in w for w in result.warnings)

    def test_missing_artifacts(self, deployer):
        """Test a pointer failure propagates."""
        with pytest.raises(VersionPointerError):
            deployer.publish("t1", "b1")


class TestQuota:
    """Test behavior near the distribution limit."""

    @pytest.fixture
    def cdn(self):
        provider = FakeCdnProvider(quota=2)
        provider.add_existing(SHARED_ID, SHARED_DOMAIN)
        return provider

    @pytest.fixture
    def strategy_config(self):
        return StrategyConfig(base_domain=BASE_DOMAIN, max_individual_distributions=1)

    def test_provider_quota_falls_back_to_shared(self, deployer, tenants, seed_version, cdn):
        """Test a provider quota error publishes via the shared distribution."""
        cdn.quota = 1
        tenants.put(enterprise())
        seed_version("t1", "b1", SITE)

        result = deployer.publish("t1", "b1")

        assert result.strategy == Strategy.SHARED
        assert result.deployment_url == f"https://t1.{BASE_DOMAIN}/"
        assert any("quota exceeded" in r for r in result.reasons)

    def test_limit_reached_uses_shared(self, deployer, tenants, seed_version):
        """Test a second enterprise tenant is shared once the limit is used."""
        tenants.put(enterprise("t1"))
        tenants.put(enterprise("t2"))
        seed_version("t1", "b1", SITE)
        seed_version("t2", "b1", SITE)

        assert deployer.publish("t1", "b1").strategy == Strategy.INDIVIDUAL
        result = deployer.publish("t2", "b1")

        assert result.strategy == Strategy.SHARED
        assert any("(1/1)" in r for r in result.reasons)

    def test_own_distribution_not_counted(self, deployer, tenants, seed_version):
        """Test a tenant already holding the last slot keeps it."""
        tenants.put(enterprise("t1"))
        seed_version("t1", "b1", SITE)
        seed_version("t1", "b2", SITE)

        deployer.publish("t1", "b1")
        result = deployer.publish("t1", "b2")

        assert result.strategy == Strategy.INDIVIDUAL
        assert result.distribution.distribution_id == "E000001"

    def test_migrate_at_limit_rejected(self, deployer, tenants, seed_version):
        """Test migrating to individual is refused without headroom."""
        tenants.put(enterprise("t1"))
        seed_version("t1", "b1", SITE)
        deployer.publish("t1", "b1")

        with pytest.raises(BuildValidationError, match="distribution limit"):
            deployer.migrate_tenant("t2", Strategy.INDIVIDUAL)


# ---------------------------------------------------------
# Rollback
# ---------------------------------------------------------

class TestRollback:
    """Test pointing a tenant back at an earlier build."""

    def test_rollback(self, deployer, builds, deployments, seed_version, store, cdn):
        """Test rollback mirrors the old build and records an active deployment."""
        builds.create(successful_build(build_id="b1"))
        builds.create(successful_build(build_id="b2"))
        seed_version("t1", "b1", {"index.html": b"<html>v1</html>"})
        seed_version("t1", "b2", {"index.html": b"<html>v2</html>"})
        deployer.publish("t1", "b2")

        deployment = deployer.rollback("t1", "b1")

        assert deployment.status == DeploymentStatus.ACTIVE
        assert deployment.build_id == "b1"
        assert deployment.notes == "Rollback to build b1"
        assert deployment.invalidation_id == "I000002"
        assert deployments.latest_active("t1").deployment_id == deployment.deployment_id
        assert deployer.pointers.get_current_pointer("t1").version == "b1"
        assert store.get(STATIC_BUCKET, "tenants/t1/deployments/current/index.html") == b"<html>v1</html>"

    def test_unknown_build(self, deployer):
        """Test rollback to a build that does not exist."""
        with pytest.raises(BuildValidationError, match="not found"):
            deployer.rollback("t1", "missing")

    def test_other_tenants_build(self, deployer, builds):
        """Test a tenant cannot roll back to another tenant's build."""
        builds.create(successful_build(tenant_id="t2", build_id="b1"))

        with pytest.raises(BuildValidationError):
            deployer.rollback("t1", "b1")

    def test_failed_build(self, deployer, builds):
        """Test only successful builds can be rolled back to."""
        build = successful_build()
        build.status = BuildStatus.FAILED
        builds.create(build)

        with pytest.raises(BuildValidationError, match="failed"):
            deployer.rollback("t1", "b1")

    def test_missing_artifacts_marks_failed(self, deployer, builds, deployments):
        """Test a pointer failure leaves a failed deployment behind."""
        builds.create(successful_build())

        with pytest.raises(VersionPointerError):
            deployer.rollback("t1", "b1")

        assert deployments.get_by_build("b1").status == DeploymentStatus.FAILED


# ---------------------------------------------------------
# Status
# ---------------------------------------------------------

class TestDeploymentStatus:
    """Test the status summary."""

    def test_never_published(self, deployer):
        """Test a new tenant has no current version."""
        status = deployer.get_deployment_status("t1")

        assert status["strategy"] == "shared"
        assert status["currentVersion"] is None
        assert status["deploymentUrl"] is None

    def test_after_publish(self, deployer, seed_version):
        """Test the summary reflects the live version."""
        seed_version("t1", "b1", SITE)
        deployer.publish("t1", "b1")

        status = deployer.get_deployment_status("t1")

        assert status["tenantId"] == "t1"
        assert status["distributionId"] == SHARED_ID
        assert status["domain"] == f"t1.{BASE_DOMAIN}"
        assert status["currentVersion"] == "b1"
        assert status["deploymentUrl"] == f"https://t1.{BASE_DOMAIN}/"
        assert status["lastUpdated"] is not None


# ---------------------------------------------------------
# Migration
# ---------------------------------------------------------

class TestMigration:
    """Test moving tenants between strategies."""

    def test_upgrade(self, deployer, tenants, cdn):
        """Test shared -> individual provisions and invalidates both sides."""
        tenants.put(enterprise())

        result = deployer.migrate_tenant("t1", Strategy.INDIVIDUAL)

        assert result.from_strategy == Strategy.SHARED
        assert result.to_strategy == Strategy.INDIVIDUAL
        assert result.distribution.distribution_id == "E000001"
        assert [i[0] for i in cdn.invalidations] == [SHARED_ID, "E000001"]
        assert result.invalidations == ["I000001", "I000002"]
        assert tenants.get_profile("t1").deployment_strategy == Strategy.INDIVIDUAL
        assert deployer.serving_strategy("t1") == Strategy.INDIVIDUAL

    def test_upgrade_with_custom_domain_updates_dns(self, deployer, tenants, dns):
        """Test a custom domain tenant gets a DNS record for its distribution."""
        tenants.put(enterprise(custom_domain="www.acme.io"))

        result = deployer.migrate_tenant("t1", Strategy.INDIVIDUAL)

        assert result.dns_change_id == "change-1"
        assert dns.records[f"t1.{BASE_DOMAIN}"] == "de000001.cloudfront.net"

    def test_downgrade_retires_distribution(self, deployer, tenants, distributions):
        """Test individual -> shared keeps the distribution record as retired."""
        tenants.put(enterprise())
        deployer.migrate_tenant("t1", Strategy.INDIVIDUAL)

        result = deployer.migrate_tenant("t1", Strategy.SHARED)

        assert result.from_strategy == Strategy.INDIVIDUAL
        assert distributions.get("t1").status == RETIRED
        assert deployer.serving_strategy("t1") == Strategy.SHARED
        assert tenants.get_profile("t1").deployment_strategy == Strategy.SHARED

    def test_reupgrade_reuses_distribution(self, deployer, tenants, cdn):
        """Test upgrading again brings back the retired distribution."""
        tenants.put(enterprise())
        deployer.migrate_tenant("t1", Strategy.INDIVIDUAL)
        deployer.migrate_tenant("t1", Strategy.SHARED)

        result = deployer.migrate_tenant("t1", Strategy.INDIVIDUAL)

        assert result.distribution.distribution_id == "E000001"
        assert len(cdn.configs) == 1
        assert deployer.serving_strategy("t1") == Strategy.INDIVIDUAL

    def test_downgrade_blocked(self, deployer, tenants):
        """Test a custom domain tenant cannot move to shared."""
        tenants.put(enterprise(custom_domain="www.acme.io"))

        with pytest.raises(BuildValidationError, match="custom domain"):
            deployer.migrate_tenant("t1", Strategy.SHARED)
