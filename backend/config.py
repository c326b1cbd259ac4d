"""
Simulation Configuration

Centralizes all tunable parameters for the city simulation.
Balance constants live here instead of being scattered through the engine.
"""

from dataclasses import dataclass, field
from typing import Dict


@dataclass
class GridConfig:
    """City grid layout."""
    width: int = 10
    height: int = 8
    default_seed: int = 1337


@dataclass
class CityDefaultsConfig:
    """Starting finances, rates and policy for a freshly generated city."""

    # Finances
    starting_cash: float = 20_000_000.0
    starting_debt: float = 0.0
    bond_rate_apr: float = 0.045
    inflation_apr: float = 0.03

    # Policy (monthly, simplified)
    property_tax_rate: float = 0.012
    sales_tax_rate: float = 0.02
    enforcement_intensity: float = 0.5
    maintenance_budget: float = 400_000.0
    service_budgets: Dict[str, float] = field(default_factory=lambda: {
        "police": 500_000.0,
        "fire": 350_000.0,
        "health": 250_000.0,
        "education": 800_000.0,
        "transit": 300_000.0,
        "sanitation": 220_000.0,
        "water": 260_000.0,
    })

    # Citywide sentiment
    starting_trust: float = 0.55
    starting_unemployment: float = 0.07
    starting_satisfaction: float = 0.55


@dataclass
class ServiceConfig:
    """Service coverage economics."""

    # Higher = more expensive to achieve coverage
    cost_per_unit: Dict[str, float] = field(default_factory=lambda: {
        "police": 22.0,
        "fire": 18.0,
        "health": 20.0,
        "education": 35.0,
        "transit": 28.0,
        "sanitation": 16.0,
        "water": 14.0,
    })
    coverage_epsilon: float = 1e-9
    education_demand_per_household: float = 2.2


@dataclass
class OutcomeConfig:
    """Base incident rates before risk and coverage modifiers."""
    base_crime: float = 0.12
    base_fire: float = 0.08
    base_sickness: float = 0.10

    # Enforcement scales police effectiveness into [min, min + span]
    enforcement_effect_min: float = 0.8
    enforcement_effect_span: float = 0.4
    enforcement_trust_threshold: float = 0.6


@dataclass
class SatisfactionConfig:
    """District satisfaction weights."""
    base: float = 0.75
    crime_weight: float = 0.35
    sickness_weight: float = 0.20
    garbage_weight: float = 0.15
    water_outage_weight: float = 0.10
    graduation_weight: float = 0.10
    roads_weight: float = 0.10


@dataclass
class BudgetConfig:
    """Revenue model."""
    consumption_share: float = 0.22  # Share of annual income spent
    months_per_year: int = 12


@dataclass
class InfrastructureConfig:
    """Wear and maintenance."""

    # Monthly decay
    road_decay: float = 0.010
    water_decay: float = 0.008
    sewer_decay: float = 0.009
    usage_base: float = 0.6
    usage_density_factor: float = 0.8

    # Worst-score weights
    road_weight: float = 0.45
    water_weight: float = 0.35
    sewer_weight: float = 0.20
    min_worst_score: float = 0.001

    # Maintenance effectiveness
    maintenance_scale: float = 90_000.0
    road_improvement_cap: float = 0.10
    water_improvement_cap: float = 0.09
    sewer_improvement_cap: float = 0.085
    deficit_epsilon: float = 1e-9


@dataclass
class FeedbackConfig:
    """Slow feedback loops (trust, unemployment, migration, property)."""

    # Trust
    trust_drift_rate: float = 0.04
    enforcement_trust_penalty_rate: float = 0.02

    # Unemployment
    unemployment_satisfaction_reference: float = 0.55
    unemployment_satisfaction_rate: float = 0.01
    unemployment_tax_pressure_rate: float = 0.004
    unemployment_midpoint_rate: float = 0.003
    tax_pressure_floor: float = 0.01
    tax_pressure_span: float = 0.02

    # Migration
    migration_satisfaction_rate: float = 0.002
    migration_crime_rate: float = 0.0015
    migration_min_factor: float = 0.995
    migration_max_factor: float = 1.005
    persons_per_household: float = 2.4

    # Property market
    property_satisfaction_rate: float = 0.003
    property_crime_rate: float = 0.002
    property_inflation_rate: float = 0.0005
    property_min_factor: float = 0.99
    property_max_factor: float = 1.01
    land_share_min: float = 0.2
    land_share_max: float = 0.5
    rent_satisfaction_rate: float = 0.002
    rent_crime_rate: float = 0.001
    rent_min: float = 0.65
    rent_max: float = 1.8

    # Shared reference points
    reference_crime: float = 0.12

    # Floors
    min_population: int = 500
    min_households: int = 200
    min_property_value: int = 30_000_000


@dataclass
class ServerConfig:
    """Websocket run loop."""
    tick_interval_seconds: float = 0.35
    default_overlay: str = "satisfaction"


@dataclass
class SimulationConfig:
    """Master configuration for the entire simulation."""

    grid: GridConfig = field(default_factory=GridConfig)
    city: CityDefaultsConfig = field(default_factory=CityDefaultsConfig)
    services: ServiceConfig = field(default_factory=ServiceConfig)
    outcomes: OutcomeConfig = field(default_factory=OutcomeConfig)
    satisfaction: SatisfactionConfig = field(default_factory=SatisfactionConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    infrastructure: InfrastructureConfig = field(default_factory=InfrastructureConfig)
    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    def __post_init__(self):
        """Validation and derived values."""
        if self.grid.width <= 0 or self.grid.height <= 0:
            raise ValueError("grid dimensions must be positive")
        if self.budget.months_per_year <= 0:
            raise ValueError("months_per_year must be positive")

        expected = {"police", "fire", "health", "education", "transit", "sanitation", "water"}
        if set(self.services.cost_per_unit) != expected:
            raise ValueError(f"cost_per_unit must define exactly {sorted(expected)}")
        if any(cost <= 0 for cost in self.services.cost_per_unit.values()):
            raise ValueError("cost_per_unit values must be positive")
        if set(self.city.service_budgets) != expected:
            raise ValueError(f"service_budgets must define exactly {sorted(expected)}")

        if self.infrastructure.maintenance_scale <= 0:
            raise ValueError("maintenance_scale must be positive")
        if self.feedback.migration_min_factor > self.feedback.migration_max_factor:
            raise ValueError("migration_min_factor cannot exceed migration_max_factor")
        if self.feedback.property_min_factor > self.feedback.property_max_factor:
            raise ValueError("property_min_factor cannot exceed property_max_factor")
        if not (0.0 <= self.city.starting_trust <= 1.0):
            raise ValueError("starting_trust must be in [0, 1]")
        if not (0.0 <= self.city.starting_unemployment <= 1.0):
            raise ValueError("starting_unemployment must be in [0, 1]")
        if self.server.tick_interval_seconds <= 0:
            raise ValueError("tick_interval_seconds must be positive")


# Global configuration instance
CONFIG = SimulationConfig()
