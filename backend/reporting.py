"""
City reporting.

Pure functions of post-tick state: the monthly CityReport, the district
inspector text, and the scalar each map overlay colors by.
"""

from enum import Enum
from typing import Callable, List, Tuple

from mathutil import ordered_mean
from models import SERVICES, City, CityReport, District, WorstDistricts

WORST_DISTRICT_COUNT = 3


class OverlayMode(str, Enum):
    """Map overlays. Every overlay value is in [0, 1] with 1 = good."""
    SATISFACTION = "satisfaction"
    CRIME = "crime"
    WATER = "water"
    ROADS = "roads"


def format_money(amount: float) -> str:
    """Compact dollar amount: $1.23B, $4.56M, $7.8K, $12."""
    sign = "-" if amount < 0 else ""
    x = abs(amount)
    if x >= 1_000_000_000:
        return f"{sign}${x / 1_000_000_000:.2f}B"
    if x >= 1_000_000:
        return f"{sign}${x / 1_000_000:.2f}M"
    if x >= 1_000:
        return f"{sign}${x / 1_000:.1f}K"
    return f"{sign}${x:.0f}"


def format_pct(fraction: float) -> str:
    return f"{fraction * 100:.1f}%"


def _worst_ids(districts: List[District], key: Callable[[District], float], descending: bool) -> Tuple[str, ...]:
    # sorted() stays stable with reverse=True, so ties keep generation order
    ranked = sorted(districts, key=key, reverse=descending)
    return tuple(d.id for d in ranked[:WORST_DISTRICT_COUNT])


def compute_report(
    city: City,
    districts: List[District],
    revenue: float,
    expenses: float,
    surplus: float
) -> CityReport:
    """
    Summarize the state left by one tick.

    Args:
        city: City after all tick stages have run
        districts: Districts after all tick stages have run
        revenue: Total tax revenue of the month
        expenses: Services + maintenance + bond interest of the month
        surplus: revenue - expenses

    Returns:
        A new CityReport for the month the tick ran in
    """
    avg_satisfaction = ordered_mean([d.satisfaction for d in districts])
    avg_crime = ordered_mean([d.outcomes.crime_rate for d in districts])
    avg_water_outages = ordered_mean([d.outcomes.water_outages for d in districts])

    worst = WorstDistricts(
        by_satisfaction=_worst_ids(districts, lambda d: d.satisfaction, descending=False),
        by_crime=_worst_ids(districts, lambda d: d.outcomes.crime_rate, descending=True),
        by_water=_worst_ids(districts, lambda d: d.outcomes.water_outages, descending=True),
    )

    highlights = [
        f"Revenue {format_money(revenue)} vs Expenses {format_money(expenses)} → Surplus {format_money(surplus)}.",
        f"Avg Satisfaction {format_pct(avg_satisfaction)} | Avg Crime {format_pct(avg_crime)} | "
        f"Avg Water Outages {format_pct(avg_water_outages)}.",
        f"Trust {format_pct(city.citywide.trust)} | Unemployment {format_pct(city.citywide.unemployment)}.",
    ]
    if surplus < 0:
        highlights.append(
            f"Budget deficit is forcing debt issuance. Cash is now {format_money(city.cash)}; "
            f"Debt {format_money(city.debt)}."
        )
    else:
        highlights.append(f"City cash is now {format_money(city.cash)}; Debt {format_money(city.debt)}.")

    return CityReport(
        month=city.month,
        revenue=revenue,
        expenses=expenses,
        surplus=surplus,
        cash=city.cash,
        debt=city.debt,
        avg_satisfaction=avg_satisfaction,
        avg_crime=avg_crime,
        avg_water_outages=avg_water_outages,
        trust=city.citywide.trust,
        unemployment=city.citywide.unemployment,
        highlights=tuple(highlights),
        worst_districts=worst,
    )


def overlay_value(district: District, mode: OverlayMode) -> float:
    """Scalar in [0, 1] (1 = good) for coloring a district under an overlay."""
    mode = OverlayMode(mode)
    if mode is OverlayMode.SATISFACTION:
        return district.satisfaction
    if mode is OverlayMode.CRIME:
        return 1 - district.outcomes.crime_rate
    if mode is OverlayMode.WATER:
        return 1 - district.outcomes.water_outages
    return district.infrastructure.roads_condition


def district_summary(district: District) -> str:
    """Multi-line inspector text for one district."""
    d = district
    out = d.outcomes
    infra = d.infrastructure
    lines = [
        f"{d.id} @ ({d.x},{d.y})",
        f"Pop: {d.pop:,} | Income Median: ${d.income_median:,} | Density: {d.density * 100:.0f}%",
        f"Satisfaction: {format_pct(d.satisfaction)}",
        "",
        "Outcomes:",
        f"  Crime: {format_pct(out.crime_rate)}",
        f"  Sickness: {format_pct(out.sickness)}",
        f"  Garbage: {format_pct(out.garbage)}",
        f"  Water Outages: {format_pct(out.water_outages)}",
        f"  Graduation: {format_pct(out.graduation)}",
        "",
        "Infrastructure:",
        f"  Roads: {format_pct(infra.roads_condition)}",
        f"  Water: {format_pct(infra.water_condition)}",
        f"  Sewer: {format_pct(infra.sewer_condition)}",
        "",
        "Service Coverage:",
    ]
    for service in SERVICES:
        lines.append(f"  {service.key}: {format_pct(float(d.service_coverage[service]))}")
    return "\n".join(lines)
