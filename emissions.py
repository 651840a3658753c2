# emissions.py
from __future__ import annotations

import math
from typing import Dict, Literal, Mapping, Optional, Tuple, TypeAlias, TypedDict

# Green commute modes
TransportType: TypeAlias = Literal[
    "walking",
    "biking",
    "public_transit",
    "carpool",
    "electric_vehicle",
]

TRANSPORT_TYPES: Tuple[TransportType, ...] = (
    "walking",
    "biking",
    "public_transit",
    "carpool",
    "electric_vehicle",
)

# kg CO2 per km for an average solo car trip
BASELINE_CAR_EMISSIONS = 0.20

# kg CO2 one tree absorbs per year
TREE_ABSORPTION_KG = 22.0

# Per-passenger emission factors (kg CO2 per km)
_FACTORS: Dict[TransportType, float] = {
    "walking": 0.0,
    "biking": 0.0,
    "public_transit": 0.05,
    "carpool": 0.10,          # shared between 2+ people
    "electric_vehicle": 0.02,  # depends on the grid
}

_LABELS: Dict[TransportType, str] = {
    "walking": "Walking",
    "biking": "Biking",
    "public_transit": "Public Transit",
    "carpool": "Carpool",
    "electric_vehicle": "Electric Vehicle",
}


class SavingsEstimate(TypedDict):
    transportType: TransportType
    distance: float
    co2Saved: float
    co2Emitted: float
    equivalentTrees: float
    equivalentMiles: float


def _factor_for(transport_type: str, factors: Optional[Mapping[str, float]] = None) -> float:
    table = _FACTORS if factors is None else factors
    try:
        return table[transport_type]
    except KeyError:
        raise ValueError(f"unknown transport type: {transport_type!r}") from None


def _check_distance(distance: float) -> None:
    if math.isnan(distance) or distance < 0:
        raise ValueError("distance must be a non-negative number")


def calculate_co2_savings(
    transport_type: TransportType | str,
    distance: float,
    *,
    factors: Optional[Mapping[str, float]] = None,
    baseline: float = BASELINE_CAR_EMISSIONS,
) -> float:
    """
    CO2 (kg) saved by covering `distance` km with `transport_type` instead of a car.

    The result is floored at zero so a factor table with a mode dirtier than
    the baseline never reports negative savings.
    """
    _check_distance(distance)
    factor = _factor_for(transport_type, factors)
    return max(0.0, (baseline - factor) * distance)


def transport_emissions(transport_type: TransportType | str, distance: float) -> float:
    """CO2 (kg) emitted by the chosen mode itself."""
    _check_distance(distance)
    return _factor_for(transport_type) * distance


def equivalent_trees(co2_saved: float) -> float:
    return co2_saved / TREE_ABSORPTION_KG


def equivalent_miles(co2_saved: float) -> float:
    # distance not driven in a car
    return co2_saved / BASELINE_CAR_EMISSIONS


def transport_label(transport_type: TransportType | str) -> str:
    return _LABELS.get(transport_type, "Unknown")  # type: ignore[call-overload]


def emission_factor(transport_type: TransportType | str) -> float:
    return _factor_for(transport_type)


def estimate_savings(transport_type: TransportType | str, distance: float) -> SavingsEstimate:
    saved = calculate_co2_savings(transport_type, distance)
    return {
        "transportType": transport_type,  # type: ignore[typeddict-item]
        "distance": distance,
        "co2Saved": saved,
        "co2Emitted": transport_emissions(transport_type, distance),
        "equivalentTrees": equivalent_trees(saved),
        "equivalentMiles": equivalent_miles(saved),
    }
