import pytest

from coverage_map.analytics.validation import (
    ValidationError,
    validate_bool,
    validate_optional_float,
    validate_optional_int,
    validate_optional_string,
    validate_path,
    validate_positive_int,
    validate_prefix_param,
    validate_string_choice,
)


def test_validation_error_response():
    response = ValidationError("sortBy", "must be one of ['count']", "size").to_response()
    assert response["success"] is False
    assert response["error"]["code"] == "INVALID_PARAMETER"
    assert response["error"]["httpStatus"] == 400
    assert response["error"]["details"] == {"parameter": "sortBy", "value": "size"}


def test_positive_int():
    assert validate_positive_int("12", "minCount") == 12
    assert validate_positive_int(None, "time", default=5) == 5
    with pytest.raises(ValidationError):
        validate_positive_int("-1", "minCount")
    with pytest.raises(ValidationError):
        validate_positive_int("many", "minCount")
    with pytest.raises(ValidationError):
        validate_positive_int(None, "minCount")


def test_optional_numbers():
    assert validate_optional_int("", "maxCount") is None
    assert validate_optional_int("3", "maxCount") == 3
    assert validate_optional_float(None, "snr") is None
    assert validate_optional_float("-7.25", "snr") == -7.25
    with pytest.raises(ValidationError):
        validate_optional_float("inf", "snr")
    with pytest.raises(ValidationError):
        validate_optional_float("loud", "rssi")


def test_bool():
    assert validate_bool(True, "observed") is True
    assert validate_bool("no", "observed") is False
    assert validate_bool(None, "observed") is None
    with pytest.raises(ValidationError):
        validate_bool("maybe", "observed")


def test_string_choice_returns_canonical_value():
    assert validate_string_choice("ASC", "sortOrder", ("asc", "desc")) == "asc"
    assert validate_string_choice(None, "sortOrder", ("asc", "desc"), default="desc") == "desc"
    with pytest.raises(ValidationError):
        validate_string_choice("sideways", "sortOrder", ("asc", "desc"))


def test_prefix_param():
    assert validate_prefix_param("a1") == "A1"
    for bad in ("", "a", "a1b", "zz"):
        with pytest.raises(ValidationError):
            validate_prefix_param(bad)


def test_path():
    assert validate_path(None) == []
    assert validate_path(["A1", "b2"]) == ["a1", "b2"]
    with pytest.raises(ValidationError):
        validate_path("a1,b2")
    with pytest.raises(ValidationError):
        validate_path(["a1", "xyz"])


def test_optional_string():
    assert validate_optional_string(None, "drivers") is None
    assert validate_optional_string("  ", "drivers") is None
    assert validate_optional_string(" alice ", "drivers") == "alice"
    for bad in (["alice"], {"name": "alice"}, 7):
        with pytest.raises(ValidationError):
            validate_optional_string(bad, "drivers")
    with pytest.raises(ValidationError):
        validate_optional_string("x" * 256, "drivers")
