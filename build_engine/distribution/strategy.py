# build_engine/distribution/strategy.py
"""
Individual vs shared distribution selection.

Every decision is a pure function of (tenant profile, current individual
distribution count) and the selector's configuration. Nothing here reads
repositories or talks to the CDN.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from build_engine.core.models import Strategy, TenantProfile

logger = logging.getLogger(__name__)

ENTERPRISE_TIERS = ("enterprise", "premium")
DATA_ISOLATION = "data_isolation"
QUOTA_WARNING_THRESHOLD = 90


@dataclass(frozen=True)
class StrategyConfig:
    base_domain: str = "example.com"
    default_strategy: Strategy = Strategy.SHARED
    force_strategy: Optional[Strategy] = None
    enable_individual_for_enterprise: bool = True
    max_individual_distributions: int = 400
    high_traffic_page_views: int = 1_000_000

    @classmethod
    def from_settings(cls, settings) -> "StrategyConfig":
        return cls(
            base_domain=settings.base_domain,
            default_strategy=Strategy(settings.default_deployment_strategy),
            force_strategy=(
                Strategy(settings.force_deployment_strategy)
                if settings.force_deployment_strategy else None
            ),
            enable_individual_for_enterprise=settings.enable_individual_for_enterprise,
            max_individual_distributions=settings.max_individual_distributions,
            high_traffic_page_views=settings.high_traffic_page_views,
        )


@dataclass(frozen=True)
class StrategyDecision:
    strategy: Strategy
    reasons: Tuple[str, ...]
    can_upgrade: bool
    can_downgrade: bool
    current_distribution_count: int
    degraded_features: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "reasons": list(self.reasons),
            "canUpgrade": self.can_upgrade,
            "canDowngrade": self.can_downgrade,
            "currentDistributionCount": self.current_distribution_count,
            "degradedFeatures": list(self.degraded_features),
        }


@dataclass(frozen=True)
class StrategyValidation:
    valid: bool
    reason: str = ""
    fallback: Strategy = Strategy.SHARED


@dataclass
class StrategyStatistics:
    total: int = 0
    individual: int = 0
    shared: int = 0
    can_upgrade: int = 0
    can_downgrade: int = 0
    quota_utilization: float = 0.0


@dataclass(frozen=True)
class QuotaRecommendation:
    type: str
    action: str
    reason: str


@dataclass
class QuotaReport:
    current_utilization: float
    recommendations: List[QuotaRecommendation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class DeploymentStrategySelector:
    def __init__(self, config: StrategyConfig):
        self.config = config

    # ---------------------------------------------------------
    # Tenant attributes
    # ---------------------------------------------------------

    def is_enterprise(self, tenant: TenantProfile) -> bool:
        return (
            tenant.subscription_tier in ENTERPRISE_TIERS
            or tenant.plan_type == "enterprise"
        )

    def has_custom_domain(self, tenant: TenantProfile) -> bool:
        return bool(tenant.custom_domain) and (
            tenant.custom_domain != f"{tenant.tenant_id}.{self.config.base_domain}"
        )

    def is_high_traffic(self, tenant: TenantProfile) -> bool:
        return (
            tenant.traffic_tier == "high"
            or tenant.monthly_page_views > self.config.high_traffic_page_views
        )

    def requires_isolation(self, tenant: TenantProfile) -> bool:
        return DATA_ISOLATION in tenant.compliance_requirements

    def _limit(self, count: int) -> str:
        return f"({count}/{self.config.max_individual_distributions})"

    def _has_headroom(self, count: int) -> bool:
        return count < self.config.max_individual_distributions

    # ---------------------------------------------------------
    # Decision
    # ---------------------------------------------------------

    def determine_strategy(self, tenant: TenantProfile, current_count: int) -> StrategyDecision:
        """Forced override, then the stored preference, then a recommendation."""
        degraded: Tuple[str, ...] = ()

        if self.config.force_strategy is not None:
            strategy = self.config.force_strategy
            reasons = [f"Forced to {strategy.value} strategy by configuration"]

        elif tenant.deployment_strategy is not None:
            strategy = tenant.deployment_strategy
            reasons = [f"Tenant has explicit deployment strategy: {strategy.value}"]

            validation = self.validate_strategy(tenant, strategy, current_count)
            if not validation.valid:
                reasons.append(f"Explicit strategy not feasible: {validation.reason}")
                reasons.append(f"Falling back to {validation.fallback.value} strategy")
                strategy = validation.fallback

        else:
            strategy, reasons, degraded = self.recommend_strategy(tenant, current_count)

        decision = StrategyDecision(
            strategy=strategy,
            reasons=tuple(reasons),
            can_upgrade=self.can_upgrade(tenant, current_count),
            can_downgrade=self.can_downgrade(tenant),
            current_distribution_count=current_count,
            degraded_features=degraded,
        )

        logger.info(
            f"[strategy] Tenant {tenant.tenant_id}: {decision.strategy.value} "
            f"{self._limit(current_count)} reasons={list(decision.reasons)}"
        )
        return decision

    def recommend_strategy(
        self,
        tenant: TenantProfile,
        current_count: int,
    ) -> Tuple[Strategy, List[str], Tuple[str, ...]]:
        """
        Rules in order: compliance isolation, custom domain, high traffic,
        subscription tier. The first rule that wants an individual
        distribution wins when there is quota headroom. Blocked rules are
        recorded as degraded features.
        """
        rules = [
            (
                self.requires_isolation(tenant),
                "data_isolation",
                "Compliance requirements mandate data isolation",
                "Compliance requirements cannot be met at distribution limit",
            ),
            (
                self.has_custom_domain(tenant),
                "custom_domain",
                f"Custom domain {tenant.custom_domain} requires individual distribution for SSL",
                "Custom domain will not be supported at distribution limit",
            ),
            (
                self.is_high_traffic(tenant),
                "performance_isolation",
                "High traffic tenant gets individual distribution for performance isolation",
                "High traffic tenant but at distribution limit",
            ),
            (
                self.config.enable_individual_for_enterprise and self.is_enterprise(tenant),
                "dedicated_distribution",
                "Enterprise tier eligible for individual distribution",
                "Enterprise tier but at distribution limit",
            ),
        ]

        reasons: List[str] = []
        degraded: List[str] = []
        limit = self._limit(current_count)

        for wanted, feature, granted, blocked in rules:
            if not wanted:
                continue
            if self._has_headroom(current_count):
                reasons.append(granted)
                reasons.append(f"Within distribution limit {limit}")
                return Strategy.INDIVIDUAL, reasons, ()
            reasons.append(f"{blocked} {limit}")
            degraded.append(feature)

        if degraded:
            reasons.append("Using shared distribution to stay within provider quotas")
            return Strategy.SHARED, reasons, tuple(degraded)

        if self.config.default_strategy == Strategy.INDIVIDUAL and self._has_headroom(current_count):
            return Strategy.INDIVIDUAL, ["Default strategy is individual"], ()

        return Strategy.SHARED, ["Standard tier uses shared distribution by default"], ()

    def validate_strategy(
        self,
        tenant: TenantProfile,
        strategy: Strategy,
        current_count: int,
    ) -> StrategyValidation:
        if strategy == Strategy.SHARED:
            return StrategyValidation(valid=True)

        if not self._has_headroom(current_count):
            return StrategyValidation(
                valid=False,
                reason=f"At distribution limit {self._limit(current_count)}",
            )

        if not self.config.enable_individual_for_enterprise and not self.is_enterprise(tenant):
            return StrategyValidation(
                valid=False,
                reason="Individual distributions only available for enterprise tiers",
            )

        return StrategyValidation(valid=True)

    def can_upgrade(self, tenant: TenantProfile, current_count: int) -> bool:
        if not self._has_headroom(current_count):
            return False
        return (
            self.is_enterprise(tenant)
            or self.has_custom_domain(tenant)
            or self.is_high_traffic(tenant)
            or self.requires_isolation(tenant)
        )

    def can_downgrade(self, tenant: TenantProfile) -> bool:
        # Shared distributions cannot serve either requirement.
        return not (self.has_custom_domain(tenant) or self.requires_isolation(tenant))

    # ---------------------------------------------------------
    # Reporting
    # ---------------------------------------------------------

    def get_strategy_statistics(self, tenants: Iterable[TenantProfile]) -> StrategyStatistics:
        """Simulate assigning tenants in order, counting individual distributions as they go."""
        stats = StrategyStatistics()

        for tenant in tenants:
            decision = self.determine_strategy(tenant, stats.individual)
            stats.total += 1
            if decision.strategy == Strategy.INDIVIDUAL:
                stats.individual += 1
            else:
                stats.shared += 1
            if decision.can_upgrade:
                stats.can_upgrade += 1
            if decision.can_downgrade:
                stats.can_downgrade += 1

        stats.quota_utilization = stats.individual / self.config.max_individual_distributions * 100
        return stats

    def recommend_quota_adjustments(self, stats: StrategyStatistics) -> QuotaReport:
        report = QuotaReport(current_utilization=stats.quota_utilization)
        utilization = f"Quota utilization at {stats.quota_utilization:.1f}%"

        if stats.quota_utilization > 90:
            report.recommendations.append(
                QuotaRecommendation("urgent", "Request CDN distribution quota increase", utilization)
            )
        elif stats.quota_utilization > 75:
            report.recommendations.append(
                QuotaRecommendation("warning", "Plan CDN distribution quota increase", utilization)
            )

        if stats.can_upgrade > 0 and stats.quota_utilization > 80:
            report.recommendations.append(
                QuotaRecommendation(
                    "info",
                    f"Consider keeping {stats.can_upgrade} tenants on shared distribution",
                    "Approaching quota limits",
                )
            )

        return report

    def get_configuration(self) -> Dict[str, Any]:
        return {
            "defaultStrategy": self.config.default_strategy.value,
            "forceStrategy": self.config.force_strategy.value if self.config.force_strategy else None,
            "enableIndividualForEnterprise": self.config.enable_individual_for_enterprise,
            "maxIndividualDistributions": self.config.max_individual_distributions,
            "quotaThreshold": QUOTA_WARNING_THRESHOLD,
        }
