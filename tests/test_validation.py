import pytest

from validation import (
    ValidationError,
    parse_limit,
    parse_period,
    validate_comment,
    validate_commute,
    validate_post,
    validate_profile,
)


def test_valid_commute_is_normalised():
    out = validate_commute({"transportType": "biking", "distance": "4.5", "duration": 18, "requestId": " r-1 "})
    assert out == {"transportType": "biking", "distance": 4.5, "duration": 18.0, "requestId": "r-1"}


def test_zero_distance_allowed():
    assert validate_commute({"transportType": "walking", "distance": 0})["distance"] == 0.0


@pytest.mark.parametrize(
    "payload, field",
    [
        ({"distance": 3}, "transportType"),
        ({"transportType": "solo_car", "distance": 3}, "transportType"),
        ({"transportType": "biking"}, "distance"),
        ({"transportType": "biking", "distance": -1}, "distance"),
        ({"transportType": "biking", "distance": "NaN"}, "distance"),
        ({"transportType": "biking", "distance": "far"}, "distance"),
        ({"transportType": "biking", "distance": True}, "distance"),
        ({"transportType": "biking", "distance": 2, "duration": -5}, "duration"),
        ({"transportType": "biking", "distance": 2, "requestId": ""}, "requestId"),
        ({"transportType": "biking", "distance": 2, "requestId": "x" * 65}, "requestId"),
    ],
)
def test_invalid_commute_reports_field(payload, field):
    with pytest.raises(ValidationError) as exc:
        validate_commute(payload)
    assert field in exc.value.fields


def test_profile_create_requires_id_name_and_email():
    with pytest.raises(ValidationError) as exc:
        validate_profile({"email": "not-an-email"})
    assert exc.value.fields == {
        "id": "id is required",
        "name": "Name is required",
        "email": "Please enter a valid email",
    }


def test_profile_create():
    out = validate_profile({"id": "u1", "name": " Ada ", "email": "ada@uni.edu", "college": "MIT"})
    assert out == {"id": "u1", "name": "Ada", "email": "ada@uni.edu", "college": "MIT"}


def test_profile_update_rejects_derived_fields():
    with pytest.raises(ValidationError) as exc:
        validate_profile({"totalCO2Saved": 1000, "streak": 99}, partial=True)
    assert set(exc.value.fields) == {"totalCO2Saved", "streak"}


def test_profile_update_needs_some_field():
    with pytest.raises(ValidationError) as exc:
        validate_profile({}, partial=True)
    assert "body" in exc.value.fields
    assert validate_profile({"bio": "cyclist"}, partial=True) == {"bio": "cyclist"}


def test_post_and_comment():
    assert validate_post({"content": " hi "}) == {"content": "hi", "type": "general"}
    with pytest.raises(ValidationError) as exc:
        validate_post({"content": "", "type": "rant"})
    assert set(exc.value.fields) == {"content", "type"}
    with pytest.raises(ValidationError) as exc:
        validate_comment({"content": "x" * 1001})
    assert set(exc.value.fields) == {"content", "userId"}


def test_parse_limit_and_period():
    assert parse_limit(None, default=10, maximum=100) == 10
    assert parse_limit("25", default=10, maximum=100) == 25
    for bad in ("0", "101", "ten"):
        with pytest.raises(ValidationError):
            parse_limit(bad, default=10, maximum=100)
    assert parse_period(None) == "week"
    assert parse_period("month") == "month"
    with pytest.raises(ValidationError):
        parse_period("year")
