# build_engine/distribution/service.py

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from build_engine.core.clients import DnsClient
from build_engine.core.errors import (
    BuildValidationError,
    QuotaExceededError,
    VersionPointerError,
)
from build_engine.core.models import (
    BuildStatus,
    Deployment,
    DeploymentStatus,
    Strategy,
    TenantDistribution,
    TenantProfile,
    VersionPointer,
)
from build_engine.core.repository import (
    BuildRepository,
    DeploymentRepository,
    TenantDirectory,
    TenantDistributionRepository,
)
from build_engine.core.state_machine import DeploymentStateMachine
from build_engine.distribution.backends import DistributionBackend
from build_engine.distribution.locks import TenantLocks
from build_engine.distribution.strategy import DeploymentStrategySelector, StrategyDecision
from build_engine.distribution.version_pointer import VersionPointerManager

logger = logging.getLogger(__name__)

RETIRED = "Retired"


@dataclass
class PublishResult:
    strategy: Strategy
    pointer: VersionPointer
    deployment_url: str
    distribution: Optional[TenantDistribution] = None
    invalidation_id: Optional[str] = None
    reasons: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class MigrationResult:
    tenant_id: str
    from_strategy: Strategy
    to_strategy: Strategy
    distribution: TenantDistribution
    invalidations: List[str] = field(default_factory=list)
    dns_change_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


class DeploymentService:
    """
    Publishing, rollback and migration of tenant sites.

    CDN work (distribution lookup, creation, invalidation) never fails a
    publish; it is downgraded to a warning. Only a failed version pointer
    update propagates.
    """

    def __init__(
        self,
        *,
        selector: DeploymentStrategySelector,
        backends: Dict[Strategy, DistributionBackend],
        pointers: VersionPointerManager,
        distributions: TenantDistributionRepository,
        tenants: TenantDirectory,
        builds: BuildRepository,
        deployments: DeploymentRepository,
        dns: Optional[DnsClient] = None,
        base_domain: str,
        static_bucket: str,
    ):
        self.selector = selector
        self.backends = backends
        self.pointers = pointers
        self.distributions = distributions
        self.tenants = tenants
        self.builds = builds
        self.deployments = deployments
        self.dns = dns
        self.base_domain = base_domain
        self.static_bucket = static_bucket
        self._tenant_lock = TenantLocks()

    # ---------------------------------------------------------
    # Strategy
    # ---------------------------------------------------------

    def current_distribution_count(self) -> int:
        return self.distributions.count_by_strategy(Strategy.INDIVIDUAL)

    def determine_strategy(self, tenant_id: str) -> Tuple[TenantProfile, StrategyDecision]:
        profile = self.tenants.get_profile(tenant_id)
        count = self.current_distribution_count()
        if self.serving_strategy(tenant_id) == Strategy.INDIVIDUAL:
            # The tenant's own distribution does not compete for quota
            count -= 1
        decision = self.selector.determine_strategy(profile, count)
        return profile, decision

    def serving_strategy(self, tenant_id: str) -> Strategy:
        """What actually serves the tenant right now, from persisted records."""
        record = self.distributions.get(tenant_id)
        if record and record.strategy == Strategy.INDIVIDUAL and record.status != RETIRED:
            return Strategy.INDIVIDUAL
        return Strategy.SHARED

    # ---------------------------------------------------------
    # Publish
    # ---------------------------------------------------------

    def publish(self, tenant_id: str, build_id: str) -> PublishResult:
        """
        Make build_id the tenant's live version.

        Raises:
            VersionPointerError: the pointer or its mirror could not be updated
        """
        with self._tenant_lock(tenant_id):
            _, decision = self.determine_strategy(tenant_id)
            strategy = decision.strategy
            reasons = list(decision.reasons)
            warnings: List[str] = []

            distribution = None
            try:
                distribution = self.backends[strategy].get_or_create_distribution(tenant_id)
            except QuotaExceededError as e:
                reason = f"Individual distribution quota exceeded, using shared: {e}"
                logger.warning(f"[deploy] {reason}")
                reasons.append(reason)
                strategy = Strategy.SHARED
                distribution = self.backends[strategy].get_or_create_distribution(tenant_id)
            except Exception as e:
                logger.warning(f"[deploy] Distribution setup failed for {tenant_id}: {e}", exc_info=True)
                warnings.append(f"Distribution setup failed: {e}")

            pointer = self.pointers.update_version_pointer(tenant_id, build_id)

            invalidation_id = None
            if distribution is not None and distribution.distribution_id:
                invalidation_id = self._invalidate(self.backends[strategy], tenant_id, build_id, warnings)

            url = self.deployment_url(tenant_id, build_id, distribution)
            logger.info(f"[deploy] ✅ Tenant {tenant_id} published {build_id} via {strategy.value}: {url}")

            return PublishResult(
                strategy=strategy,
                pointer=pointer,
                deployment_url=url,
                distribution=distribution,
                invalidation_id=invalidation_id,
                reasons=reasons,
                warnings=warnings,
            )

    def deployment_url(
        self,
        tenant_id: str,
        build_id: str,
        distribution: Optional[TenantDistribution],
    ) -> str:
        if distribution is not None and distribution.strategy == Strategy.INDIVIDUAL and distribution.domain:
            return f"https://{distribution.domain}/"
        if distribution is not None and distribution.strategy == Strategy.SHARED:
            return f"https://{tenant_id}.{self.base_domain}/"
        return (
            f"https://{self.static_bucket}.s3.amazonaws.com/"
            f"tenants/{tenant_id}/deployments/{build_id}/index.html"
        )

    def _invalidate(
        self,
        backend: DistributionBackend,
        tenant_id: str,
        build_id: Optional[str],
        warnings: List[str],
    ) -> Optional[str]:
        try:
            return backend.invalidate_cache(tenant_id, build_id)
        except Exception as e:
            logger.warning(
                f"[deploy] Cache invalidation ({backend.strategy.value}) failed for {tenant_id}: {e}"
            )
            warnings.append(f"Cache invalidation failed: {e}")
            return None

    def invalidate_cache(self, tenant_id: str, build_id: Optional[str] = None) -> Optional[str]:
        """Invalidate whatever currently serves the tenant. Never raises."""
        warnings: List[str] = []
        return self._invalidate(
            self.backends[self.serving_strategy(tenant_id)], tenant_id, build_id, warnings
        )

    # ---------------------------------------------------------
    # Rollback
    # ---------------------------------------------------------

    def rollback(self, tenant_id: str, target_build_id: str) -> Deployment:
        build = self.builds.get(target_build_id)
        if build is None or build.tenant_id != tenant_id:
            raise BuildValidationError(f"Build {target_build_id} not found for tenant {tenant_id}")
        if build.status != BuildStatus.SUCCESS:
            raise BuildValidationError(
                f"Cannot roll back to build {target_build_id} in status {build.status.value}"
            )

        logger.info(f"[deploy] Rolling back tenant {tenant_id} to {target_build_id}")

        deployment = Deployment.for_build(build)
        deployment.notes = f"Rollback to build {target_build_id}"
        self.deployments.create(deployment)

        with self._tenant_lock(tenant_id):
            try:
                self.pointers.update_version_pointer(tenant_id, target_build_id)
            except VersionPointerError:
                DeploymentStateMachine.transition(deployment, DeploymentStatus.FAILED)
                self.deployments.update(deployment)
                raise

            strategy = self.serving_strategy(tenant_id)
            backend = self.backends[strategy]
            distribution = backend.get_distribution(tenant_id)

            warnings: List[str] = []
            if distribution is not None:
                deployment.invalidation_id = self._invalidate(backend, tenant_id, target_build_id, warnings)

        deployment.deployment_url = self.deployment_url(tenant_id, target_build_id, distribution)
        DeploymentStateMachine.transition(deployment, DeploymentStatus.ACTIVE)
        self.deployments.update(deployment)

        logger.info(f"[deploy] ✅ Tenant {tenant_id} rolled back to {target_build_id}")
        return deployment

    # ---------------------------------------------------------
    # Status
    # ---------------------------------------------------------

    def get_deployment_status(self, tenant_id: str) -> Dict[str, Any]:
        strategy = self.serving_strategy(tenant_id)
        distribution = self.backends[strategy].get_distribution(tenant_id)
        pointer = self.pointers.get_current_pointer(tenant_id)
        active = self.deployments.latest_active(tenant_id)

        current_version = pointer.version if pointer else None
        return {
            "tenantId": tenant_id,
            "strategy": strategy.value,
            "distributionId": distribution.distribution_id if distribution else None,
            "domain": distribution.domain if distribution else None,
            "distributionStatus": distribution.status if distribution else None,
            "currentVersion": current_version,
            "lastUpdated": pointer.timestamp.isoformat() if pointer else None,
            "activeDeploymentId": active.deployment_id if active else None,
            "deploymentUrl": (
                self.deployment_url(tenant_id, current_version, distribution)
                if current_version else None
            ),
        }

    # ---------------------------------------------------------
    # Migration
    # ---------------------------------------------------------

    def migrate_tenant(self, tenant_id: str, target: Strategy) -> MigrationResult:
        """
        Move a tenant between strategies.

        The target is provisioned first, both caches are invalidated, and
        only then is the tenant's preference switched. An abandoned
        individual distribution is marked retired, not deleted.
        """
        profile = self.tenants.get_profile(tenant_id)
        count = self.current_distribution_count()

        if target == Strategy.INDIVIDUAL:
            validation = self.selector.validate_strategy(profile, target, count)
            if not validation.valid:
                raise BuildValidationError(f"Cannot migrate {tenant_id} to individual: {validation.reason}")
        elif not self.selector.can_downgrade(profile):
            raise BuildValidationError(
                f"Cannot migrate {tenant_id} to shared: custom domain or data isolation requires individual"
            )

        source = self.serving_strategy(tenant_id)
        logger.info(f"[deploy] Migrating tenant {tenant_id}: {source.value} -> {target.value}")

        with self._tenant_lock(tenant_id):
            distribution = self.backends[target].get_or_create_distribution(tenant_id)

            result = MigrationResult(
                tenant_id=tenant_id,
                from_strategy=source,
                to_strategy=target,
                distribution=distribution,
            )

            if target == Strategy.INDIVIDUAL and self.dns and self.selector.has_custom_domain(profile):
                try:
                    result.dns_change_id = self.dns.create_or_update_subdomain(tenant_id, distribution.domain)
                except Exception as e:
                    logger.warning(f"[deploy] DNS update failed for {tenant_id}: {e}")
                    result.warnings.append(f"DNS update failed: {e}")

            for strategy in dict.fromkeys((source, target)):
                invalidation_id = self._invalidate(self.backends[strategy], tenant_id, None, result.warnings)
                if invalidation_id:
                    result.invalidations.append(invalidation_id)

            if source == Strategy.INDIVIDUAL and target == Strategy.SHARED:
                record = self.distributions.get(tenant_id)
                if record is not None:
                    record.status = RETIRED
                    self.distributions.save(record)
                    logger.info(
                        f"[deploy] Distribution {record.distribution_id} retired, teardown deferred"
                    )

            self.tenants.set_deployment_strategy(tenant_id, target)

        logger.info(f"[deploy] ✅ Tenant {tenant_id} migrated to {target.value}")
        return result
