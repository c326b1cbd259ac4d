"""
CitySim State Model

City-level and district-level state mutated in place by the monthly tick,
plus the immutable per-month report. Seven-service quantities are numpy
arrays indexed by the Service enum so every formula covers every service.
"""

from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

from config import CONFIG
from mathutil import ordered_sum


class Service(IntEnum):
    """Public services, in array order."""
    POLICE = 0
    FIRE = 1
    HEALTH = 2
    EDUCATION = 3
    TRANSIT = 4
    SANITATION = 5
    WATER = 6

    @property
    def key(self) -> str:
        return self.name.lower()


SERVICES: Tuple[Service, ...] = tuple(Service)


def service_array(values: Mapping[str, float]) -> np.ndarray:
    """Build a per-service array from a name-keyed mapping."""
    return np.array([float(values[s.key]) for s in SERVICES], dtype=np.float64)


def zero_service_array() -> np.ndarray:
    return np.zeros(len(SERVICES), dtype=np.float64)


def _service_dict(values: np.ndarray) -> Dict[str, float]:
    return {s.key: float(values[s]) for s in SERVICES}


@dataclass(slots=True)
class ServiceBudgets:
    """Monthly spending per service. All seven are always present."""
    police: float = 0.0
    fire: float = 0.0
    health: float = 0.0
    education: float = 0.0
    transit: float = 0.0
    sanitation: float = 0.0
    water: float = 0.0

    @classmethod
    def from_mapping(cls, values: Mapping[str, float]) -> "ServiceBudgets":
        return cls(**{s.key: float(values[s.key]) for s in SERVICES})

    def as_array(self) -> np.ndarray:
        return np.array([getattr(self, s.key) for s in SERVICES], dtype=np.float64)

    def total(self) -> float:
        return ordered_sum(getattr(self, s.key) for s in SERVICES)

    def to_dict(self) -> Dict[str, float]:
        return {s.key: getattr(self, s.key) for s in SERVICES}


# External (camelCase) policy keys mapped onto attribute names
_POLICY_FIELD_ALIASES = {
    "propertyTaxRate": "property_tax_rate",
    "salesTaxRate": "sales_tax_rate",
    "enforcementIntensity": "enforcement_intensity",
    "maintenanceBudget": "maintenance_budget",
}

_SERVICE_KEYS = frozenset(s.key for s in SERVICES)


def _as_number(name: str, value: object) -> float:
    # bool is an int subclass but never a valid rate or amount
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got {value!r}")
    return float(value)


@dataclass(slots=True)
class Policy:
    """
    Player-set fiscal configuration.

    Supplied by the UI or a policy file before each tick. The engine reads it
    but never mutates it; out-of-range values are clamped where they are used.
    """
    property_tax_rate: float
    sales_tax_rate: float
    enforcement_intensity: float
    service_budgets: ServiceBudgets
    maintenance_budget: float

    @classmethod
    def default(cls) -> "Policy":
        defaults = CONFIG.city
        return cls(
            property_tax_rate=defaults.property_tax_rate,
            sales_tax_rate=defaults.sales_tax_rate,
            enforcement_intensity=defaults.enforcement_intensity,
            service_budgets=ServiceBudgets.from_mapping(defaults.service_budgets),
            maintenance_budget=defaults.maintenance_budget,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "propertyTaxRate": self.property_tax_rate,
            "salesTaxRate": self.sales_tax_rate,
            "enforcementIntensity": self.enforcement_intensity,
            "serviceBudgets": self.service_budgets.to_dict(),
            "maintenanceBudget": self.maintenance_budget,
        }

    def apply_overrides(self, overrides: Mapping[str, object]) -> None:
        """
        Merge a partial policy mapping into this policy.

        Accepts camelCase or snake_case keys; service budgets may be given as
        a nested ``serviceBudgets``/``service_budgets`` mapping. Unknown keys
        are ignored. Values are validated before any field is changed.

        Args:
            overrides: Dictionary of policy fields to new values

        Raises:
            ValueError: if a value is not a number or the budgets are not a mapping
        """
        fields: Dict[str, float] = {}
        budgets: Dict[str, float] = {}
        for key, value in overrides.items():
            if key in ("serviceBudgets", "service_budgets"):
                if not isinstance(value, Mapping):
                    raise ValueError(f"{key} must be a mapping of service name to amount")
                for service_key, amount in value.items():
                    if service_key in _SERVICE_KEYS:
                        budgets[service_key] = _as_number(f"{key}.{service_key}", amount)
                continue
            attr = _POLICY_FIELD_ALIASES.get(key, key)
            if attr in _POLICY_FIELD_ALIASES.values():
                fields[attr] = _as_number(key, value)

        for attr, number in fields.items():
            setattr(self, attr, number)
        for service_key, number in budgets.items():
            setattr(self.service_budgets, service_key, number)


@dataclass(slots=True)
class Citywide:
    trust: float  # 0..1
    unemployment: float  # 0..1


@dataclass(frozen=True, slots=True)
class WorstDistricts:
    by_satisfaction: Tuple[str, ...] = ()
    by_crime: Tuple[str, ...] = ()
    by_water: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CityReport:
    """Summary of one month. Replaced wholesale every tick."""
    month: int
    revenue: float = 0.0
    expenses: float = 0.0
    surplus: float = 0.0
    cash: float = 0.0
    debt: float = 0.0
    avg_satisfaction: float = 0.0
    avg_crime: float = 0.0
    avg_water_outages: float = 0.0
    trust: float = 0.0
    unemployment: float = 0.0
    highlights: Tuple[str, ...] = ()
    worst_districts: WorstDistricts = field(default_factory=WorstDistricts)

    def with_month(self, month: int) -> "CityReport":
        return replace(self, month=month)

    def to_dict(self) -> Dict[str, object]:
        return {
            "month": self.month,
            "revenue": self.revenue,
            "expenses": self.expenses,
            "surplus": self.surplus,
            "cash": self.cash,
            "debt": self.debt,
            "avgSatisfaction": self.avg_satisfaction,
            "avgCrime": self.avg_crime,
            "avgWaterOutages": self.avg_water_outages,
            "trust": self.trust,
            "unemployment": self.unemployment,
            "highlights": list(self.highlights),
            "worstDistricts": {
                "bySatisfaction": list(self.worst_districts.by_satisfaction),
                "byCrime": list(self.worst_districts.by_crime),
                "byWater": list(self.worst_districts.by_water),
            },
        }


@dataclass(slots=True)
class City:
    """Citywide state. Owned by the application, mutated in place by the tick."""
    seed: int
    policy: Policy
    citywide: Citywide
    month: int = 0
    cash: float = 0.0
    debt: float = 0.0
    bond_rate_apr: float = 0.0
    inflation_apr: float = 0.0
    last_report: CityReport = field(default_factory=lambda: CityReport(month=0))

    def to_dict(self) -> Dict[str, object]:
        return {
            "month": self.month,
            "seed": self.seed,
            "cash": self.cash,
            "debt": self.debt,
            "bondRateAPR": self.bond_rate_apr,
            "inflationAPR": self.inflation_apr,
            "policy": self.policy.to_dict(),
            "citywide": {
                "trust": self.citywide.trust,
                "unemployment": self.citywide.unemployment,
            },
            "lastReport": self.last_report.to_dict(),
        }


@dataclass(slots=True)
class Needs:
    """Latent risk factors, fixed at generation."""
    crime_risk: float  # 0..1
    fire_risk: float  # 0..1
    health_risk: float  # 0..1


@dataclass(slots=True)
class Infrastructure:
    roads_condition: float  # 0..1
    water_condition: float  # 0..1
    sewer_condition: float  # 0..1
    power_reliability: float  # 0..1 (not yet simulated)


@dataclass(slots=True)
class Outcomes:
    crime_rate: float = 0.0
    fire_incidents: float = 0.0
    sickness: float = 0.0
    graduation: float = 0.0
    garbage: float = 0.0
    water_outages: float = 0.0


@dataclass(slots=True)
class District:
    """
    One grid cell of the city.

    Identity (id, x, y), density and needs are fixed at generation. Demand,
    coverage, outcomes and satisfaction are recomputed on every tick.
    """

    # Identification
    id: str
    x: int
    y: int

    # Population & economy
    pop: int
    households: int
    land_value: int
    property_value: int
    rent_index: float
    income_median: int
    density: float  # 0..1

    needs: Needs
    infrastructure: Infrastructure

    # Derived each tick
    service_demand: np.ndarray = field(default_factory=zero_service_array)
    service_coverage: np.ndarray = field(default_factory=zero_service_array)
    outcomes: Outcomes = field(default_factory=Outcomes)
    satisfaction: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        """Serialize all fields to basic Python types."""
        return {
            "id": self.id,
            "x": self.x,
            "y": self.y,
            "pop": self.pop,
            "households": self.households,
            "landValue": self.land_value,
            "propertyValue": self.property_value,
            "rentIndex": self.rent_index,
            "incomeMedian": self.income_median,
            "density": self.density,
            "needs": {
                "crimeRisk": self.needs.crime_risk,
                "fireRisk": self.needs.fire_risk,
                "healthRisk": self.needs.health_risk,
            },
            "infrastructure": {
                "roadsCondition": self.infrastructure.roads_condition,
                "waterCondition": self.infrastructure.water_condition,
                "sewerCondition": self.infrastructure.sewer_condition,
                "powerReliability": self.infrastructure.power_reliability,
            },
            "serviceDemand": _service_dict(self.service_demand),
            "serviceCoverage": _service_dict(self.service_coverage),
            "outcomes": {
                "crimeRate": self.outcomes.crime_rate,
                "fireIncidents": self.outcomes.fire_incidents,
                "sickness": self.outcomes.sickness,
                "graduation": self.outcomes.graduation,
                "garbage": self.outcomes.garbage,
                "waterOutages": self.outcomes.water_outages,
            },
            "satisfaction": self.satisfaction,
        }


@dataclass(slots=True)
class WorldState:
    """A freshly generated city and its district grid."""
    city: City
    districts: List[District]
    grid_width: int
    grid_height: int

    def find_district(self, x: int, y: int) -> Optional[District]:
        return find_district(self.districts, x, y)

    def get_district(self, district_id: str) -> Optional[District]:
        for district in self.districts:
            if district.id == district_id:
                return district
        return None


def find_district(districts: List[District], x: int, y: int) -> Optional[District]:
    """Return the district at grid cell (x, y), or None if out of the grid."""
    for district in districts:
        if district.x == x and district.y == y:
            return district
    return None
