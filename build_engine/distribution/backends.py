# build_engine/distribution/backends.py

import logging
from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import uuid4

from build_engine.core.clients import CdnProvider, DistributionConfig
from build_engine.core.errors import DistributionNotFound
from build_engine.core.models import Strategy, TenantDistribution
from build_engine.core.repository import TenantDistributionRepository
from build_engine.distribution.locks import TenantLocks

logger = logging.getLogger(__name__)


def current_prefix(tenant_id: str) -> str:
    return f"tenants/{tenant_id}/deployments/current"


class DistributionBackend(ABC):
    """One way of serving a tenant from the CDN."""

    strategy: Strategy

    @abstractmethod
    def get_or_create_distribution(self, tenant_id: str) -> TenantDistribution:
        raise NotImplementedError

    @abstractmethod
    def get_distribution(self, tenant_id: str) -> Optional[TenantDistribution]:
        raise NotImplementedError

    @abstractmethod
    def invalidation_paths(self, tenant_id: str) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    def invalidate_cache(self, tenant_id: str, build_id: Optional[str] = None) -> str:
        """Returns the invalidation id. Raises DistributionNotFound."""
        raise NotImplementedError


# ---------------------------------------------------------
# Individual
# ---------------------------------------------------------

class IndividualDistributionBackend(DistributionBackend):
    """
    Dedicated distribution per tenant, rooted at the tenant's current mirror.

    Created lazily on first deploy and persisted for reuse. A record whose
    distribution no longer exists at the provider is dropped.
    """

    strategy = Strategy.INDIVIDUAL

    def __init__(
        self,
        cdn: CdnProvider,
        repository: TenantDistributionRepository,
        *,
        static_bucket: str,
        region: str,
    ):
        self.cdn = cdn
        self.repo = repository
        self.static_bucket = static_bucket
        self.region = region
        self._tenant_lock = TenantLocks()

    def _origin_domain(self) -> str:
        return f"{self.static_bucket}.s3.{self.region}.amazonaws.com"

    def get_or_create_distribution(self, tenant_id: str) -> TenantDistribution:
        with self._tenant_lock(tenant_id):
            existing = self.get_distribution(tenant_id)
            if existing:
                logger.info(
                    f"[distribution] Reusing {existing.distribution_id} for tenant {tenant_id}"
                )
                self.repo.save(existing)
                return existing

            config = DistributionConfig(
                caller_reference=f"tenant-{tenant_id}-{uuid4().hex[:12]}",
                comment=f"Static site distribution for tenant {tenant_id}",
                origin_id=f"S3-{self.static_bucket}-{tenant_id}",
                origin_domain=self._origin_domain(),
                origin_path=f"/{current_prefix(tenant_id)}",
            )

            # QuotaExceededError propagates to the caller, which falls back to shared.
            info = self.cdn.create_distribution(config)

            record = TenantDistribution(
                tenant_id=tenant_id,
                strategy=Strategy.INDIVIDUAL,
                distribution_id=info.distribution_id,
                domain=info.domain,
                status=info.status,
            )
            self.repo.save(record)

            logger.info(
                f"[distribution] ✅ Created {info.distribution_id} ({info.domain}) "
                f"for tenant {tenant_id}"
            )
            return record

    def get_distribution(self, tenant_id: str) -> Optional[TenantDistribution]:
        record = self.repo.get(tenant_id)
        if record is None or record.strategy != Strategy.INDIVIDUAL or not record.distribution_id:
            return None

        try:
            info = self.cdn.get_distribution(record.distribution_id)
        except DistributionNotFound:
            logger.warning(
                f"[distribution] {record.distribution_id} no longer exists, "
                f"clearing record for tenant {tenant_id}"
            )
            self.repo.delete(tenant_id)
            return None

        record.status = info.status
        record.domain = info.domain
        return record

    def invalidation_paths(self, tenant_id: str) -> List[str]:
        return ["/*"]

    def invalidate_cache(self, tenant_id: str, build_id: Optional[str] = None) -> str:
        record = self.repo.get(tenant_id)
        if record is None or not record.distribution_id:
            raise DistributionNotFound(f"No individual distribution for tenant {tenant_id}")

        try:
            invalidation_id = self.cdn.create_invalidation(
                record.distribution_id, self.invalidation_paths(tenant_id)
            )
        except DistributionNotFound:
            self.repo.delete(tenant_id)
            raise

        logger.info(
            f"[distribution] Invalidation {invalidation_id} on {record.distribution_id} "
            f"for tenant {tenant_id}" + (f" build {build_id}" if build_id else "")
        )
        return invalidation_id


# ---------------------------------------------------------
# Shared
# ---------------------------------------------------------

class SharedDistributionBackend(DistributionBackend):
    """
    One provisioned distribution for all tenants; routing happens at the edge.

    Records are derived, never stored.
    """

    strategy = Strategy.SHARED

    def __init__(
        self,
        cdn: CdnProvider,
        *,
        distribution_id: str,
        base_domain: str,
    ):
        self.cdn = cdn
        self.distribution_id = distribution_id
        self.base_domain = base_domain

    def tenant_domain(self, tenant_id: str) -> str:
        return f"{tenant_id}.{self.base_domain}"

    def get_or_create_distribution(self, tenant_id: str) -> TenantDistribution:
        return TenantDistribution(
            tenant_id=tenant_id,
            strategy=Strategy.SHARED,
            distribution_id=self.distribution_id or None,
            domain=self.tenant_domain(tenant_id),
        )

    def get_distribution(self, tenant_id: str) -> Optional[TenantDistribution]:
        if not self.distribution_id:
            return None
        return self.get_or_create_distribution(tenant_id)

    def invalidation_paths(self, tenant_id: str) -> List[str]:
        root = f"/{current_prefix(tenant_id)}"
        return [f"{root}/*", f"{root}/index.html", f"{root}/"]

    def invalidate_cache(self, tenant_id: str, build_id: Optional[str] = None) -> str:
        if not self.distribution_id:
            raise DistributionNotFound("No shared distribution configured")

        invalidation_id = self.cdn.create_invalidation(
            self.distribution_id, self.invalidation_paths(tenant_id)
        )
        logger.info(
            f"[distribution] Shared invalidation {invalidation_id} for tenant {tenant_id}"
        )
        return invalidation_id
