#tests\test_strategy.py

"""Test distribution strategy selection."""

import pytest

from build_engine.core.models import Strategy, TenantProfile
from build_engine.distribution.strategy import (
    DeploymentStrategySelector,
    StrategyConfig,
    StrategyStatistics,
)


def enterprise(tenant_id="t1", **kwargs):
    return TenantProfile(tenant_id=tenant_id, subscription_tier="enterprise", plan_type="enterprise", **kwargs)


def standard(tenant_id="t1", **kwargs):
    return TenantProfile(tenant_id=tenant_id, **kwargs)


class TestDetermineStrategy:
    """Test the decision for a single tenant."""

    def test_standard_is_shared(self, selector):
        """Test a standard tenant with no special needs is shared."""
        decision = selector.determine_strategy(standard(), 0)

        assert decision.strategy == Strategy.SHARED
        assert decision.reasons == ("Standard tier uses shared distribution by default",)
        assert not decision.can_upgrade
        assert decision.can_downgrade

    def test_enterprise_under_limit(self, selector):
        """Test an enterprise tenant below the limit gets an individual distribution."""
        decision = selector.determine_strategy(enterprise(), 399)

        assert decision.strategy == Strategy.INDIVIDUAL
        assert "Within distribution limit (399/400)" in decision.reasons

    def test_enterprise_at_limit(self, selector):
        """Test an enterprise tenant at the limit is shared with a degraded feature."""
        decision = selector.determine_strategy(enterprise(), 400)

        assert decision.strategy == Strategy.SHARED
        assert any("(400/400)" in reason for reason in decision.reasons)
        assert decision.degraded_features == ("dedicated_distribution",)
        assert not decision.can_upgrade

    def test_pure(self, selector):
        """Test identical inputs give identical decisions."""
        tenant = enterprise(custom_domain="www.acme.io")

        assert selector.determine_strategy(tenant, 10) == selector.determine_strategy(tenant, 10)

    @pytest.mark.parametrize("tenant,feature", [
        (standard(compliance_requirements=("data_isolation",)), "data_isolation"),
        (standard(custom_domain="www.acme.io"), "custom_domain"),
        (standard(traffic_tier="high"), "performance_isolation"),
        (standard(monthly_page_views=2_000_000), "performance_isolation"),
    ])
    def test_rules_grant_individual(self, selector, tenant, feature):
        """Test each individual-worthy attribute on its own."""
        assert selector.determine_strategy(tenant, 0).strategy == Strategy.INDIVIDUAL

        at_limit = selector.determine_strategy(tenant, 400)
        assert at_limit.strategy == Strategy.SHARED
        assert feature in at_limit.degraded_features

    def test_platform_subdomain_is_not_custom(self, selector):
        """Test the tenant's own platform subdomain does not count as custom."""
        decision = selector.determine_strategy(standard(custom_domain="t1.example.com"), 0)
        assert decision.strategy == Strategy.SHARED

    def test_first_matching_rule_reported(self, selector):
        """Test the isolation rule wins over a custom domain."""
        tenant = standard(custom_domain="www.acme.io", compliance_requirements=("data_isolation",))

        decision = selector.determine_strategy(tenant, 0)

        assert decision.reasons[0] == "Compliance requirements mandate data isolation"

    def test_all_blocked_rules_degraded(self, selector):
        """Test every blocked rule is listed at the limit."""
        tenant = enterprise(custom_domain="www.acme.io", traffic_tier="high")

        decision = selector.determine_strategy(tenant, 400)

        assert decision.degraded_features == (
            "custom_domain",
            "performance_isolation",
            "dedicated_distribution",
        )
        assert decision.reasons[-1] == "Using shared distribution to stay within provider quotas"

    def test_enterprise_disabled(self):
        """Test enterprise tier alone is not enough when disabled."""
        selector = DeploymentStrategySelector(StrategyConfig(enable_individual_for_enterprise=False))
        assert selector.determine_strategy(enterprise(), 0).strategy == Strategy.SHARED

    def test_default_individual(self):
        """Test an individual default applies to plain tenants with headroom."""
        selector = DeploymentStrategySelector(StrategyConfig(default_strategy=Strategy.INDIVIDUAL))

        assert selector.determine_strategy(standard(), 0).strategy == Strategy.INDIVIDUAL
        assert selector.determine_strategy(standard(), 400).strategy == Strategy.SHARED


class TestOverrides:
    """Test forced and explicit strategies."""

    def test_force_wins(self):
        """Test a forced strategy ignores the tenant profile."""
        selector = DeploymentStrategySelector(StrategyConfig(force_strategy=Strategy.SHARED))

        decision = selector.determine_strategy(enterprise(custom_domain="www.acme.io"), 0)

        assert decision.strategy == Strategy.SHARED
        assert decision.reasons == ("Forced to shared strategy by configuration",)

    def test_force_individual_ignores_limit(self):
        """Test a forced individual strategy is not quota checked."""
        selector = DeploymentStrategySelector(StrategyConfig(force_strategy=Strategy.INDIVIDUAL))
        assert selector.determine_strategy(standard(), 400).strategy == Strategy.INDIVIDUAL

    def test_explicit_preference(self, selector):
        """Test a stored preference is honored."""
        tenant = standard(deployment_strategy=Strategy.INDIVIDUAL)

        decision = selector.determine_strategy(tenant, 5)

        assert decision.strategy == Strategy.INDIVIDUAL
        assert decision.reasons[0] == "Tenant has explicit deployment strategy: individual"

    def test_explicit_preference_falls_back(self, selector):
        """Test an infeasible preference falls back to shared."""
        tenant = enterprise(deployment_strategy=Strategy.INDIVIDUAL)

        decision = selector.determine_strategy(tenant, 400)

        assert decision.strategy == Strategy.SHARED
        assert "Falling back to shared strategy" in decision.reasons

    def test_explicit_shared_for_enterprise(self, selector):
        """Test an enterprise tenant may choose shared."""
        decision = selector.determine_strategy(enterprise(deployment_strategy=Strategy.SHARED), 0)
        assert decision.strategy == Strategy.SHARED


class TestValidation:
    """Test strategy feasibility checks."""

    def test_shared_always_valid(self, selector):
        """Test shared is always feasible."""
        assert selector.validate_strategy(standard(), Strategy.SHARED, 10_000).valid

    def test_individual_at_limit(self, selector):
        """Test individual is rejected at the limit."""
        result = selector.validate_strategy(enterprise(), Strategy.INDIVIDUAL, 400)

        assert not result.valid
        assert result.fallback == Strategy.SHARED
        assert "(400/400)" in result.reason

    def test_individual_requires_enterprise_when_disabled(self):
        """Test non-enterprise tenants are rejected when enterprise gating is off."""
        selector = DeploymentStrategySelector(StrategyConfig(enable_individual_for_enterprise=False))

        assert not selector.validate_strategy(standard(), Strategy.INDIVIDUAL, 0).valid
        assert selector.validate_strategy(enterprise(), Strategy.INDIVIDUAL, 0).valid

    def test_can_downgrade(self, selector):
        """Test custom domains and isolation block a downgrade."""
        assert selector.can_downgrade(enterprise())
        assert not selector.can_downgrade(standard(custom_domain="www.acme.io"))
        assert not selector.can_downgrade(standard(compliance_requirements=("data_isolation",)))


class TestReporting:
    """Test statistics, quota recommendations and configuration."""

    def test_statistics_simulate_quota(self):
        """Test tenants beyond the limit are counted as shared."""
        selector = DeploymentStrategySelector(StrategyConfig(max_individual_distributions=2))
        tenants = [enterprise(f"e{i}") for i in range(3)] + [standard("s1")]

        stats = selector.get_strategy_statistics(tenants)

        assert stats.total == 4
        assert stats.individual == 2
        assert stats.shared == 2
        assert stats.quota_utilization == 100.0

    def test_urgent_recommendation(self, selector):
        """Test utilization above ninety percent is urgent."""
        report = selector.recommend_quota_adjustments(
            StrategyStatistics(total=380, individual=370, quota_utilization=92.5, can_upgrade=3)
        )

        types = [r.type for r in report.recommendations]
        assert types == ["urgent", "info"]

    def test_warning_recommendation(self, selector):
        """Test utilization above seventy-five percent is a warning."""
        report = selector.recommend_quota_adjustments(StrategyStatistics(quota_utilization=78.0))
        assert [r.type for r in report.recommendations] == ["warning"]

    def test_no_recommendation(self, selector):
        """Test low utilization needs no action."""
        report = selector.recommend_quota_adjustments(StrategyStatistics(quota_utilization=10.0))

        assert report.recommendations == []
        assert report.to_dict() == {"current_utilization": 10.0, "recommendations": []}

    def test_configuration(self, selector):
        """Test the exposed configuration."""
        assert selector.get_configuration() == {
            "defaultStrategy": "shared",
            "forceStrategy": None,
            "enableIndividualForEnterprise": True,
            "maxIndividualDistributions": 400,
            "quotaThreshold": 90,
        }
