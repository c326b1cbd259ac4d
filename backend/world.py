"""
World generation.

Builds a city and its district grid from a single integer seed. District
attributes are correlated on purpose: central cells are denser, density
drives population, wear and risk, and income drives infrastructure and
property values.

Derived fields (demand, coverage, outcomes, satisfaction) are filled by one
run of the regular monthly tick, after which the month counter is rewound
to 0.
"""

import logging
from typing import Optional

from config import CONFIG
from engine import advance
from mathutil import clamp, clamp01, round_half_up
from models import (
    City,
    Citywide,
    District,
    Infrastructure,
    Needs,
    Policy,
    WorldState,
)
from rng import Mulberry32

logger = logging.getLogger(__name__)

_INCOME_REFERENCE = 120_000.0


def create_city(seed: Optional[int] = None) -> WorldState:
    """
    Generate a deterministic city.

    Args:
        seed: World seed (defaults to CONFIG.grid.default_seed)

    Returns:
        WorldState with the city, its districts in row-major order, and the
        grid size
    """
    if seed is None:
        seed = CONFIG.grid.default_seed
    w = CONFIG.grid.width
    h = CONFIG.grid.height
    defaults = CONFIG.city
    rng = Mulberry32(seed)

    city = City(
        seed=seed,
        policy=Policy.default(),
        citywide=Citywide(
            trust=defaults.starting_trust,
            unemployment=defaults.starting_unemployment,
        ),
        month=0,
        cash=defaults.starting_cash,
        debt=defaults.starting_debt,
        bond_rate_apr=defaults.bond_rate_apr,
        inflation_apr=defaults.inflation_apr,
    )

    districts = [_generate_district(rng, x, y, w, h) for y in range(h) for x in range(w)]

    # Seed tick: populate derived fields with the same dynamics used afterwards
    advance(city, districts)
    city.month = 0
    city.last_report = city.last_report.with_month(0)

    logger.info(
        "Created city seed=%d with %d districts (avg satisfaction %.3f)",
        seed, len(districts), city.last_report.avg_satisfaction
    )
    return WorldState(city=city, districts=districts, grid_width=w, grid_height=h)


def centrality(x: int, y: int, w: int, h: int) -> float:
    """1 at the grid center, 0 at the corners."""
    return 1 - (abs(x - (w - 1) / 2) / (w / 2) + abs(y - (h - 1) / 2) / (h / 2)) / 2


def _generate_district(rng: Mulberry32, x: int, y: int, w: int, h: int) -> District:
    # Draw order matters: it fixes the world for a seed
    t = rng.normish()
    density = clamp01(0.25 + 0.65 * centrality(x, y, w, h) + 0.2 * (t - 0.5))

    income_median = round_half_up(35_000 + 85_000 * clamp01(0.35 + 0.5 * t + 0.25 * (1 - density)))
    pop = round_half_up(4000 + 16_000 * clamp01(0.25 + 0.65 * density + 0.2 * (t - 0.5)))
    households = round_half_up(pop / rng.uniform(2.1, 2.8))
    wealth = income_median / _INCOME_REFERENCE

    infra_base = clamp01(0.55 + 0.35 * wealth + 0.15 * (rng.normish() - 0.5))
    roads = clamp01(infra_base - 0.15 * density)
    water = clamp01(infra_base - 0.10 * density)
    sewer = clamp01(infra_base - 0.12 * density)

    crime_risk = clamp01(0.25 + 0.45 * density + 0.25 * (1 - wealth) + 0.2 * (rng.normish() - 0.5))
    fire_risk = clamp01(0.20 + 0.35 * density + 0.2 * (1 - roads) + 0.15 * (rng.normish() - 0.5))
    health_risk = clamp01(0.22 + 0.30 * density + 0.25 * (1 - water) + 0.2 * (rng.normish() - 0.5))

    property_value = round_half_up(
        (180_000_000 + 900_000_000 * clamp01(0.35 * density + 0.55 * wealth))
        * clamp01(0.85 + 0.3 * rng.normish())
    )
    land_value = round_half_up(property_value * rng.uniform(0.25, 0.45))
    rent_index = clamp(0.85 + 0.6 * wealth + 0.2 * (density - 0.5), 0.65, 1.6)

    return District(
        id=f"D{y * w + x + 1}",
        x=x,
        y=y,
        pop=pop,
        households=households,
        land_value=land_value,
        property_value=property_value,
        rent_index=rent_index,
        income_median=income_median,
        density=density,
        needs=Needs(crime_risk=crime_risk, fire_risk=fire_risk, health_risk=health_risk),
        infrastructure=Infrastructure(
            roads_condition=roads,
            water_condition=water,
            sewer_condition=sewer,
            power_reliability=clamp01(0.90 + 0.1 * infra_base),
        ),
        satisfaction=CONFIG.city.starting_satisfaction,
    )
