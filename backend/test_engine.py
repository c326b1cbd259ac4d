"""
Unit tests for the monthly tick engine

Tests cover:
- Month counter and report replacement
- Range invariants and floors
- Coverage allocation (monotonicity, zero demand)
- Enforcement modifiers
- Budget ledger and debt issuance
- Infrastructure decay and maintenance caps
- Slow feedback formulas
- Determinism
"""

import numpy as np
import pytest

from engine import advance, allocate_coverage, enforcement_modifiers, worst_score
from mathutil import ordered_mean
from models import SERVICES, Service
from world import create_city


def _mean_satisfaction(districts):
    return sum(d.satisfaction for d in districts) / len(districts)


def _zero_budgets(policy):
    for service in SERVICES:
        setattr(policy.service_budgets, service.key, 0.0)


class TestAdvance:
    """Test suite for advance()"""

    def test_single_tick_example(self):
        """One tick from the default city: month 1, sane satisfaction, 3 worst ids"""
        world = create_city(1337)
        advance(world.city, world.districts)

        assert world.city.month == 1
        mean_sat = _mean_satisfaction(world.districts)
        assert 0.0 < mean_sat < 1.0

        worst = world.city.last_report.worst_districts.by_satisfaction
        ids = {d.id for d in world.districts}
        assert len(worst) == 3
        assert len(set(worst)) == 3
        assert all(district_id in ids for district_id in worst)

    def test_report_replaced_each_tick(self):
        world = create_city(1337)
        first = world.city.last_report
        advance(world.city, world.districts)
        second = world.city.last_report

        assert second is not first
        assert second.month == 0
        advance(world.city, world.districts)
        assert world.city.last_report.month == 1

    def test_empty_district_list_rejected(self):
        world = create_city(1337)
        with pytest.raises(ValueError):
            advance(world.city, [])

    def test_determinism_with_policy_sequence(self):
        """Same seed and policy sequence give identical state"""
        def run():
            world = create_city(4242)
            for month in range(10):
                world.city.policy.enforcement_intensity = 0.1 * month
                world.city.policy.service_budgets.police = 500_000.0 + 100_000.0 * month
                advance(world.city, world.districts)
            return world.city.to_dict(), [d.to_dict() for d in world.districts]

        assert run() == run()

    def test_range_invariants_under_extreme_policies(self):
        """Every 0..1 field stays in range and floors hold, however wild the policy"""
        world = create_city(77)
        policies = [
            dict(enforcementIntensity=3.0, maintenanceBudget=1e12,
                 serviceBudgets={s.key: 1e12 for s in SERVICES}),
            dict(enforcementIntensity=-1.0, maintenanceBudget=0.0,
                 propertyTaxRate=0.0, salesTaxRate=0.0,
                 serviceBudgets={s.key: 0.0 for s in SERVICES}),
            dict(enforcementIntensity=0.9, maintenanceBudget=-5e6,
                 serviceBudgets={s.key: -1e6 for s in SERVICES}),
        ]
        for overrides in policies:
            world.city.policy.apply_overrides(overrides)
            for _ in range(8):
                advance(world.city, world.districts)
                assert 0.0 <= world.city.citywide.trust <= 1.0
                assert 0.0 <= world.city.citywide.unemployment <= 1.0
                assert world.city.cash >= 0.0
                assert world.city.debt >= 0.0
                for d in world.districts:
                    out = d.outcomes
                    for value in (out.crime_rate, out.fire_incidents, out.sickness, out.garbage,
                                  out.water_outages, out.graduation, d.satisfaction):
                        assert 0.0 <= value <= 1.0
                    infra = d.infrastructure
                    for value in (infra.roads_condition, infra.water_condition, infra.sewer_condition):
                        assert 0.0 <= value <= 1.0
                    assert np.all(d.service_coverage >= 0.0)
                    assert np.all(d.service_coverage <= 1.0)
                    assert d.pop >= 500
                    assert d.households >= 200
                    assert d.property_value >= 30_000_000

    def test_zero_service_budgets_lower_satisfaction(self):
        """Defunding every service lowers mean satisfaction versus the default budget"""
        baseline = create_city(1337)
        defunded = create_city(1337)
        _zero_budgets(defunded.city.policy)

        for _ in range(6):
            advance(baseline.city, baseline.districts)
            advance(defunded.city, defunded.districts)

        assert _mean_satisfaction(defunded.districts) < _mean_satisfaction(baseline.districts)

    def test_zero_budgets_give_zero_coverage(self):
        world = create_city(1337)
        _zero_budgets(world.city.policy)
        advance(world.city, world.districts)
        for d in world.districts:
            assert np.all(d.service_coverage == 0.0)

    def test_demand_uses_pre_tick_population(self):
        world = create_city(1337)
        d = world.districts[0]
        pop = d.pop
        households = d.households

        advance(world.city, world.districts)
        demand = d.service_demand

        assert demand.shape == (len(SERVICES),)
        assert demand[Service.POLICE] == pytest.approx(pop * (0.6 + 0.8 * d.needs.crime_risk))
        assert demand[Service.EDUCATION] == pytest.approx(households * 2.2)
        assert demand[Service.WATER] == pytest.approx(pop)
        assert demand[Service.TRANSIT] == pytest.approx(pop * (0.35 + 0.9 * d.density))


class TestCoverageAllocation:
    """Test suite for allocate_coverage()"""

    def setup_method(self):
        self.demand = np.array([
            [100.0, 50.0, 10.0, 0.0, 5.0, 20.0, 30.0],
            [300.0, 25.0, 40.0, 0.0, 5.0, 80.0, 70.0],
        ])

    def test_matches_saturating_formula(self):
        budgets = np.array([4000.0, 1000.0, 500.0, 100.0, 200.0, 900.0, 600.0])
        coverage = allocate_coverage(self.demand, budgets)

        cost = 22.0
        alloc = 4000.0 * 100.0 / 400.0
        expected = 1 - np.exp(-alloc / (cost * 100.0 + 1e-9))
        assert abs(coverage[0, Service.POLICE] - expected) < 1e-12

    def test_monotonic_in_budget(self):
        """More budget never lowers coverage and raises it wherever there is demand"""
        low = allocate_coverage(self.demand, np.full(7, 1000.0))
        high = allocate_coverage(self.demand, np.full(7, 5000.0))

        assert np.all(high >= low)
        has_demand = self.demand > 0
        assert np.all(high[has_demand] > low[has_demand])

    def test_zero_demand_service_has_zero_coverage(self):
        """A service with no citywide demand yields 0 coverage and no NaN"""
        coverage = allocate_coverage(self.demand, np.full(7, 1e6))
        assert np.all(coverage[:, Service.EDUCATION] == 0.0)
        assert not np.any(np.isnan(coverage))

    def test_all_zero_demand(self):
        coverage = allocate_coverage(np.zeros((3, 7)), np.full(7, 1e6))
        assert np.all(coverage == 0.0)

    def test_coverage_never_reaches_above_one(self):
        coverage = allocate_coverage(self.demand, np.full(7, 1e15))
        assert np.all(coverage <= 1.0)
        assert coverage[1, Service.POLICE] > 0.99

    def test_negative_budget_clamped_to_zero(self):
        coverage = allocate_coverage(self.demand, np.full(7, -1e6))
        assert np.all(coverage == 0.0)


class TestEnforcement:
    def test_effect_range(self):
        assert enforcement_modifiers(0.0) == (pytest.approx(0.8), 0.0)
        effect, penalty = enforcement_modifiers(1.0)
        assert effect == pytest.approx(1.2)
        assert penalty == pytest.approx(0.4)

    def test_penalty_starts_above_sixty_percent(self):
        assert enforcement_modifiers(0.6)[1] == 0.0
        assert enforcement_modifiers(0.8)[1] == pytest.approx(0.2)

    def test_intensity_is_clamped(self):
        assert enforcement_modifiers(5.0) == enforcement_modifiers(1.0)
        assert enforcement_modifiers(-2.0) == enforcement_modifiers(0.0)

    def test_heavy_enforcement_erodes_trust(self):
        moderate = create_city(1337)
        heavy = create_city(1337)
        heavy.city.policy.enforcement_intensity = 1.0

        advance(moderate.city, moderate.districts)
        advance(heavy.city, heavy.districts)

        assert heavy.city.citywide.trust < moderate.city.citywide.trust


class TestBudget:
    """Test suite for the cash/debt ledger"""

    def test_revenue_and_expenses(self):
        world = create_city(1337)
        city = world.city
        total_pv = sum(d.property_value for d in world.districts)
        total_pop = sum(d.pop for d in world.districts)
        avg_income = sum(d.income_median * d.pop for d in world.districts) / total_pop
        city.debt = 1_000_000.0

        advance(city, world.districts)
        report = city.last_report

        expected_revenue = 0.012 * total_pv + 0.02 * (total_pop * avg_income * (0.22 / 12))
        expected_expenses = city.policy.service_budgets.total() + 400_000.0 + (0.045 / 12) * 1_000_000.0
        assert report.revenue == pytest.approx(expected_revenue, rel=1e-12)
        assert report.expenses == pytest.approx(expected_expenses, rel=1e-12)
        assert report.surplus == pytest.approx(expected_revenue - expected_expenses, rel=1e-12)

    def test_surplus_never_repays_debt(self):
        world = create_city(1337)
        world.city.debt = 5_000_000.0
        cash_before = world.city.cash

        advance(world.city, world.districts)

        assert world.city.last_report.surplus > 0
        assert world.city.debt == 5_000_000.0
        assert world.city.cash == pytest.approx(cash_before + world.city.last_report.surplus)

    def test_deficit_moves_shortfall_into_debt(self):
        """No money is created or destroyed when a deficit issues debt"""
        world = create_city(1337)
        city = world.city
        city.policy.property_tax_rate = 0.0
        city.policy.sales_tax_rate = 0.0
        city.cash = 1_000_000.0
        city.debt = 2_000_000.0
        cash_before = city.cash
        debt_before = city.debt

        advance(city, world.districts)

        surplus = city.last_report.surplus
        assert surplus < 0
        assert city.cash == 0.0
        assert city.debt == pytest.approx(debt_before + (abs(surplus) - cash_before), rel=1e-12)
        assert any("deficit" in line for line in city.last_report.highlights)

    def test_debt_accrues_interest_expense(self):
        world = create_city(1337)
        city = world.city
        city.policy.property_tax_rate = 0.0
        city.policy.sales_tax_rate = 0.0
        city.cash = 0.0
        city.debt = 12_000_000.0

        advance(city, world.districts)

        interest = 0.045 / 12 * 12_000_000.0
        assert city.last_report.expenses == pytest.approx(
            city.policy.service_budgets.total() + city.policy.maintenance_budget + interest
        )
        assert city.debt == pytest.approx(12_000_000.0 + city.last_report.expenses)


class TestInfrastructure:
    """Test suite for decay and maintenance"""

    def test_no_maintenance_means_decay(self):
        world = create_city(1337)
        world.city.policy.maintenance_budget = 0.0
        before = [(d.infrastructure.roads_condition, d.infrastructure.water_condition,
                   d.infrastructure.sewer_condition, d.density) for d in world.districts]

        advance(world.city, world.districts)

        for d, (roads, water, sewer, density) in zip(world.districts, before):
            usage = 0.6 + 0.8 * density
            assert d.infrastructure.roads_condition == pytest.approx(max(0.0, roads - 0.010 * usage))
            assert d.infrastructure.water_condition == pytest.approx(max(0.0, water - 0.008 * usage))
            assert d.infrastructure.sewer_condition == pytest.approx(max(0.0, sewer - 0.009 * usage))

    def test_maintenance_improvement_is_capped(self):
        """Even unlimited maintenance improves a category by at most its cap per month"""
        world = create_city(1337)
        world.city.policy.maintenance_budget = 1e15
        before = [(d.infrastructure.roads_condition, d.infrastructure.water_condition,
                   d.infrastructure.sewer_condition) for d in world.districts]

        advance(world.city, world.districts)

        for d, (roads, water, sewer) in zip(world.districts, before):
            assert d.infrastructure.roads_condition <= roads + 0.10 + 1e-12
            assert d.infrastructure.water_condition <= water + 0.09 + 1e-12
            assert d.infrastructure.sewer_condition <= sewer + 0.085 + 1e-12

    def test_maintenance_beats_no_maintenance(self):
        funded = create_city(1337)
        unfunded = create_city(1337)
        unfunded.city.policy.maintenance_budget = 0.0

        for _ in range(3):
            advance(funded.city, funded.districts)
            advance(unfunded.city, unfunded.districts)

        for a, b in zip(funded.districts, unfunded.districts):
            assert a.infrastructure.roads_condition > b.infrastructure.roads_condition

    def test_worst_score_weights(self):
        world = create_city(1337)
        d = world.districts[0]
        d.infrastructure.roads_condition = 0.0
        d.infrastructure.water_condition = 1.0
        d.infrastructure.sewer_condition = 1.0
        assert worst_score(d) == pytest.approx(0.45)
        d.infrastructure.roads_condition = 1.0
        d.infrastructure.sewer_condition = 0.5
        assert worst_score(d) == pytest.approx(0.10)


class TestFeedback:
    """Test suite for trust, unemployment, migration and property drift"""

    def test_trust_and_unemployment_formulas(self):
        world = create_city(1337)
        city = world.city
        city.policy.enforcement_intensity = 0.9
        city.policy.property_tax_rate = 0.02
        trust_before = city.citywide.trust
        unemployment_before = city.citywide.unemployment

        advance(city, world.districts)

        avg_sat = ordered_mean([d.satisfaction for d in world.districts])
        expected_trust = trust_before + 0.04 * (avg_sat - trust_before) - 0.02 * (0.9 - 0.6)
        tax_pressure = (0.02 - 0.01) / 0.02
        expected_unemployment = (
            unemployment_before
            + 0.01 * (0.55 - avg_sat)
            + 0.004 * tax_pressure
            - 0.003 * (avg_sat - 0.5)
        )
        assert city.citywide.trust == pytest.approx(expected_trust, abs=1e-12)
        assert city.citywide.unemployment == pytest.approx(expected_unemployment, abs=1e-12)

    def test_migration_is_bounded(self):
        world = create_city(1337)
        before = {d.id: d.pop for d in world.districts}

        advance(world.city, world.districts)

        for d in world.districts:
            assert before[d.id] * 0.995 - 1 <= d.pop <= before[d.id] * 1.005 + 1
            assert d.households == max(200, int(d.pop / 2.4 + 0.5))

    def test_property_values_drift_slowly(self):
        world = create_city(1337)
        before = {d.id: (d.property_value, d.rent_index) for d in world.districts}

        advance(world.city, world.districts)

        for d in world.districts:
            pv, rent = before[d.id]
            assert pv * 0.99 - 1 <= d.property_value <= pv * 1.01 + 1
            assert 0.2 * d.property_value - 1 <= d.land_value <= 0.5 * d.property_value + 1
            assert 0.65 <= d.rent_index <= 1.8
            assert abs(d.rent_index - rent) <= rent * 0.01

    def test_floors_hold_for_tiny_districts(self):
        world = create_city(1337)
        d = world.districts[0]
        d.pop = 10
        d.households = 1
        d.property_value = 1_000
        d.land_value = 100

        advance(world.city, world.districts)

        assert d.pop == 500
        assert d.households == 208
        assert d.property_value == 30_000_000
