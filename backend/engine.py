"""
Monthly Tick Engine

Advances the city and every district by exactly one month under the current
policy. The stages run in a fixed order because later stages read values
written earlier in the same tick:

    A. demand -> B. coverage -> C. enforcement -> D. outcomes
    -> E. satisfaction -> F. budget -> G. infrastructure -> H. feedback

All behavior is deterministic - no randomness, I/O, or hidden state.
Out-of-range inputs are clamped at each computation site rather than rejected.

Performance notes:
- Demand and coverage are computed as (districts x services) NumPy matrices
- Per-district outcome formulas stay scalar for readability
"""

import logging
import math
from typing import List, Tuple

import numpy as np

from config import CONFIG
from mathutil import clamp, clamp01, ordered_mean, ordered_sum, round_half_up
from models import SERVICES, City, District, Service, service_array
from reporting import compute_report

logger = logging.getLogger(__name__)

_COST_PER_UNIT = service_array(CONFIG.services.cost_per_unit)


def advance(city: City, districts: List[District]) -> None:
    """
    Run one monthly tick.

    Mutates ``city`` and ``districts`` in place, replaces ``city.last_report``
    and increments ``city.month``.

    Args:
        city: Citywide state and current policy
        districts: Every district of the grid, in generation order
    """
    if not districts:
        raise ValueError("advance() requires at least one district")

    policy = city.policy

    # --- A) Demand ---
    demand = _compute_demand(districts)

    # --- B) Coverage from budgets ---
    coverage = allocate_coverage(demand, policy.service_budgets.as_array())
    for i, district in enumerate(districts):
        district.service_demand = demand[i].copy()
        district.service_coverage = coverage[i].copy()

    # --- C) Enforcement ---
    enforce_effect, trust_penalty = enforcement_modifiers(policy.enforcement_intensity)

    # --- D/E) Outcomes and satisfaction ---
    trust = city.citywide.trust
    unemployment = city.citywide.unemployment
    for district in districts:
        _update_outcomes(district, enforce_effect, trust, unemployment)
        _update_satisfaction(district)

    # --- F) Budget ---
    revenue, expenses, surplus = _settle_budget(city, districts)

    # --- G) Infrastructure wear + maintenance ---
    _apply_infrastructure_decay(districts)
    _apply_maintenance(districts, policy.maintenance_budget)

    # --- H) Slow feedback loops ---
    _apply_feedback(city, districts, trust_penalty)

    city.last_report = compute_report(city, districts, revenue, expenses, surplus)
    city.month += 1

    logger.debug(
        "Month %d complete: revenue=%.0f expenses=%.0f surplus=%.0f trust=%.3f unemployment=%.3f",
        city.month, revenue, expenses, surplus, city.citywide.trust, city.citywide.unemployment
    )


def _compute_demand(districts: List[District]) -> np.ndarray:
    """Raw need units per district and service (not normalized)."""
    demand = np.zeros((len(districts), len(SERVICES)), dtype=np.float64)
    per_household = CONFIG.services.education_demand_per_household

    for i, d in enumerate(districts):
        pop = d.pop
        roads = d.infrastructure.roads_condition
        water = d.infrastructure.water_condition

        row = demand[i]
        row[Service.POLICE] = pop * (0.6 + 0.8 * d.needs.crime_risk)
        row[Service.FIRE] = pop * (0.4 + 0.7 * d.density + 0.4 * (1 - roads)) * (0.75 + 0.5 * d.needs.fire_risk)
        row[Service.HEALTH] = pop * (0.5 + 0.9 * d.needs.health_risk + 0.5 * (1 - water))
        row[Service.EDUCATION] = d.households * per_household
        row[Service.TRANSIT] = pop * (0.35 + 0.9 * d.density)
        row[Service.SANITATION] = pop * (0.6 + 0.6 * d.density)
        row[Service.WATER] = pop * 1.0

    return demand


def allocate_coverage(demand: np.ndarray, budgets: np.ndarray) -> np.ndarray:
    """
    Split each service budget across districts by share of demand and convert
    the dollars to a coverage fraction with diminishing returns.

    coverage = 1 - exp(-allocation / (cost_per_unit * demand + eps))

    A service whose citywide demand is zero gets zero allocation everywhere.

    Args:
        demand: (districts, services) raw demand matrix
        budgets: (services,) monthly budget per service

    Returns:
        (districts, services) coverage matrix clamped to [0, 1]
    """
    # Column totals accumulated district by district
    totals = np.zeros(demand.shape[1], dtype=np.float64)
    for row in demand:
        totals += row
    has_demand = totals > 0
    safe_totals = np.where(has_demand, totals, 1.0)
    allocation = np.where(has_demand, budgets * demand / safe_totals, 0.0)

    denom = _COST_PER_UNIT * demand + CONFIG.services.coverage_epsilon
    with np.errstate(over="ignore"):
        coverage = 1.0 - np.exp(-allocation / denom)
    return np.clip(coverage, 0.0, 1.0)


def enforcement_modifiers(intensity: float) -> Tuple[float, float]:
    """
    Police effectiveness multiplier and trust penalty for an enforcement level.

    Returns:
        (effect in [0.8, 1.2], trust penalty in [0, 0.4])
    """
    cfg = CONFIG.outcomes
    enforce = clamp01(intensity)
    effect = cfg.enforcement_effect_min + cfg.enforcement_effect_span * enforce
    penalty = max(0.0, enforce - cfg.enforcement_trust_threshold)
    return effect, penalty


def _update_outcomes(district: District, enforce_effect: float, trust: float, unemployment: float) -> None:
    cfg = CONFIG.outcomes
    d = district
    roads = d.infrastructure.roads_condition
    water = d.infrastructure.water_condition
    cov = d.service_coverage
    out = d.outcomes

    police_cov_eff = clamp01(float(cov[Service.POLICE]) * enforce_effect)

    out.crime_rate = clamp01(
        cfg.base_crime
        * (1 + 0.6 * d.needs.crime_risk)
        * (1 - 0.75 * police_cov_eff)
        * (1 + 0.4 * unemployment)
        * (1 + 0.3 * (1 - trust))
    )

    out.fire_incidents = clamp01(
        cfg.base_fire
        * (1 + 0.5 * d.density)
        * (1 + 0.5 * (1 - roads))
        * (1 + 0.35 * d.needs.fire_risk)
        * (1 - 0.7 * float(cov[Service.FIRE]))
    )

    out.sickness = clamp01(
        cfg.base_sickness
        * (1 + 0.7 * d.needs.health_risk)
        * (1 + 0.6 * (1 - water))
        * (1 - 0.65 * float(cov[Service.HEALTH]))
    )

    out.garbage = clamp01((1 - float(cov[Service.SANITATION])) * (0.5 + 0.7 * d.density))

    out.water_outages = clamp01(
        (1 - float(cov[Service.WATER])) * 0.5 + (1 - water) * 0.7
    )

    out.graduation = clamp01(0.55 + 0.35 * float(cov[Service.EDUCATION]) - 0.15 * out.crime_rate)


def _update_satisfaction(district: District) -> None:
    w = CONFIG.satisfaction
    out = district.outcomes
    district.satisfaction = clamp01(
        w.base
        - w.crime_weight * out.crime_rate
        - w.sickness_weight * out.sickness
        - w.garbage_weight * out.garbage
        - w.water_outage_weight * out.water_outages
        + w.graduation_weight * out.graduation
        + w.roads_weight * district.infrastructure.roads_condition
    )


def _settle_budget(city: City, districts: List[District]) -> Tuple[float, float, float]:
    """
    Collect taxes, pay services, maintenance and bond interest.

    A negative cash balance is converted into new debt; surpluses never pay
    debt down.

    Returns:
        (revenue, expenses, surplus)
    """
    cfg = CONFIG.budget
    policy = city.policy

    total_property_value = sum(d.property_value for d in districts)
    total_pop = sum(d.pop for d in districts)
    avg_income = sum(d.income_median * d.pop for d in districts) / max(1, total_pop)

    # Simplified monthly revenue model (not annualized; tuned for gameplay)
    property_revenue = policy.property_tax_rate * total_property_value
    taxable_sales = total_pop * avg_income * (cfg.consumption_share / cfg.months_per_year)
    sales_revenue = policy.sales_tax_rate * taxable_sales
    revenue = property_revenue + sales_revenue

    service_expenses = policy.service_budgets.total()
    interest = (city.bond_rate_apr / cfg.months_per_year) * city.debt
    expenses = service_expenses + policy.maintenance_budget + interest

    surplus = revenue - expenses
    city.cash += surplus

    if city.cash < 0:
        shortfall = -city.cash
        city.debt += shortfall
        city.cash = 0.0
        logger.info("Month %d deficit: issued %.0f in bonds (debt now %.0f)", city.month, shortfall, city.debt)

    return revenue, expenses, surplus


def _apply_infrastructure_decay(districts: List[District]) -> None:
    cfg = CONFIG.infrastructure
    for d in districts:
        infra = d.infrastructure
        usage = cfg.usage_base + cfg.usage_density_factor * d.density
        infra.roads_condition = clamp01(infra.roads_condition - cfg.road_decay * usage)
        infra.water_condition = clamp01(infra.water_condition - cfg.water_decay * usage)
        infra.sewer_condition = clamp01(infra.sewer_condition - cfg.sewer_decay * usage)


def worst_score(district: District) -> float:
    """Weighted infrastructure deficit used to steer maintenance spending."""
    cfg = CONFIG.infrastructure
    infra = district.infrastructure
    return (
        (1 - infra.roads_condition) * cfg.road_weight
        + (1 - infra.water_condition) * cfg.water_weight
        + (1 - infra.sewer_condition) * cfg.sewer_weight
    )


def _apply_maintenance(districts: List[District], maintenance_budget: float) -> None:
    """Spend the maintenance budget on the worst districts with diminishing returns."""
    cfg = CONFIG.infrastructure
    weights = [max(cfg.min_worst_score, worst_score(d)) for d in districts]
    weight_sum = ordered_sum(weights)

    for d, weight in zip(districts, weights):
        infra = d.infrastructure
        allocation = maintenance_budget * weight / weight_sum
        # Exponent capped so a large negative budget cannot overflow math.exp
        effectiveness = 1 - math.exp(min(-allocation / cfg.maintenance_scale, 700.0))

        road_def = (1 - infra.roads_condition) * cfg.road_weight
        water_def = (1 - infra.water_condition) * cfg.water_weight
        sewer_def = (1 - infra.sewer_condition) * cfg.sewer_weight
        def_sum = road_def + water_def + sewer_def + cfg.deficit_epsilon

        infra.roads_condition = clamp01(
            infra.roads_condition + effectiveness * cfg.road_improvement_cap * road_def / def_sum
        )
        infra.water_condition = clamp01(
            infra.water_condition + effectiveness * cfg.water_improvement_cap * water_def / def_sum
        )
        infra.sewer_condition = clamp01(
            infra.sewer_condition + effectiveness * cfg.sewer_improvement_cap * sewer_def / def_sum
        )


def _apply_feedback(city: City, districts: List[District], trust_penalty: float) -> None:
    """Trust, unemployment, migration and property-market drift."""
    cfg = CONFIG.feedback
    citywide = city.citywide
    policy = city.policy

    avg_sat = ordered_mean([d.satisfaction for d in districts])

    # Trust drifts toward satisfaction and is penalized by aggressive enforcement
    citywide.trust = clamp01(
        citywide.trust
        + cfg.trust_drift_rate * (avg_sat - citywide.trust)
        - cfg.enforcement_trust_penalty_rate * trust_penalty
    )

    # Unemployment reacts (loosely) to satisfaction and tax burden
    tax_pressure = clamp01((policy.property_tax_rate - cfg.tax_pressure_floor) / cfg.tax_pressure_span)
    citywide.unemployment = clamp01(
        citywide.unemployment
        + cfg.unemployment_satisfaction_rate * (cfg.unemployment_satisfaction_reference - avg_sat)
        + cfg.unemployment_tax_pressure_rate * tax_pressure
        - cfg.unemployment_midpoint_rate * (avg_sat - 0.5)
    )

    monthly_inflation = city.inflation_apr / CONFIG.budget.months_per_year

    for d in districts:
        sat = d.satisfaction
        crime = d.outcomes.crime_rate

        # Migration: very small monthly
        migration = 1 + cfg.migration_satisfaction_rate * (sat - 0.5) - cfg.migration_crime_rate * (crime - cfg.reference_crime)
        migration = clamp(migration, cfg.migration_min_factor, cfg.migration_max_factor)
        d.pop = max(cfg.min_population, round_half_up(d.pop * migration))
        d.households = max(cfg.min_households, round_half_up(d.pop / cfg.persons_per_household))

        # Property value responds slowly
        pv_change = (
            1
            + cfg.property_satisfaction_rate * (sat - 0.5)
            - cfg.property_crime_rate * crime
            + cfg.property_inflation_rate * monthly_inflation
        )
        pv_change = clamp(pv_change, cfg.property_min_factor, cfg.property_max_factor)
        d.property_value = max(cfg.min_property_value, round_half_up(d.property_value * pv_change))

        land_share = clamp(d.land_value / max(1, d.property_value), cfg.land_share_min, cfg.land_share_max)
        d.land_value = round_half_up(d.property_value * land_share)

        d.rent_index = clamp(
            d.rent_index * (1 + cfg.rent_satisfaction_rate * (sat - 0.5) + cfg.rent_crime_rate * (crime - cfg.reference_crime)),
            cfg.rent_min,
            cfg.rent_max,
        )
