import math

import pytest

from emissions import (
    TRANSPORT_TYPES,
    calculate_co2_savings,
    equivalent_miles,
    equivalent_trees,
    estimate_savings,
    transport_emissions,
    transport_label,
)

DISTANCES = [0.0, 0.5, 1.0, 3.7, 12.0, 250.0]


@pytest.mark.parametrize("transport_type", TRANSPORT_TYPES)
def test_savings_never_negative_and_zero_at_zero_distance(transport_type):
    assert calculate_co2_savings(transport_type, 0) == 0
    for d in DISTANCES:
        assert calculate_co2_savings(transport_type, d) >= 0


@pytest.mark.parametrize("transport_type", TRANSPORT_TYPES)
def test_savings_monotonic_in_distance(transport_type):
    values = [calculate_co2_savings(transport_type, d) for d in DISTANCES]
    assert values == sorted(values)


@pytest.mark.parametrize("distance", DISTANCES)
def test_walking_and_biking_save_full_car_baseline(distance):
    walking = calculate_co2_savings("walking", distance)
    assert walking == calculate_co2_savings("biking", distance)
    assert walking == pytest.approx(0.20 * distance)


def test_electric_vehicle_example():
    saved = calculate_co2_savings("electric_vehicle", 10)
    assert saved == pytest.approx(1.8)
    assert equivalent_trees(saved) == pytest.approx(0.0818, abs=1e-4)
    assert equivalent_miles(saved) == pytest.approx(9.0)


def test_mode_factors():
    assert calculate_co2_savings("public_transit", 10) == pytest.approx(1.5)
    assert calculate_co2_savings("carpool", 10) == pytest.approx(1.0)
    assert transport_emissions("carpool", 10) == pytest.approx(1.0)
    assert transport_emissions("walking", 10) == 0


def test_savings_floor_with_dirtier_factor_table():
    factors = {"walking": 0.0, "biking": 0.0, "public_transit": 0.35}
    assert calculate_co2_savings("public_transit", 10, factors=factors) == 0.0
    assert calculate_co2_savings("walking", 10, factors=factors) == pytest.approx(2.0)


def test_unknown_transport_type_fails_fast():
    with pytest.raises(ValueError, match="unknown transport type"):
        calculate_co2_savings("solo_car", 5)


@pytest.mark.parametrize("distance", [-1.0, math.nan])
def test_invalid_distance_fails_fast(distance):
    with pytest.raises(ValueError):
        calculate_co2_savings("walking", distance)


def test_labels():
    assert transport_label("public_transit") == "Public Transit"
    assert transport_label("electric_vehicle") == "Electric Vehicle"
    assert transport_label("hovercraft") == "Unknown"


def test_estimate_savings_bundle():
    est = estimate_savings("biking", 5)
    assert est["co2Saved"] == pytest.approx(1.0)
    assert est["co2Emitted"] == 0
    assert est["equivalentTrees"] == pytest.approx(1.0 / 22)
    assert est["equivalentMiles"] == pytest.approx(5.0)
