"""Tests for endpoint JSON Schema validation."""

import pytest

from lavs.errors import LAVSError, LAVSErrorCode
from lavs.manifest.schema import Endpoint
from lavs.validation import SchemaValidator


def _endpoint(input_schema=None, output_schema=None, endpoint_id="addTodo"):
    schema = {}
    if input_schema is not None:
        schema["input"] = input_schema
    if output_schema is not None:
        schema["output"] = output_schema
    return Endpoint.model_validate(
        {
            "id": endpoint_id,
            "method": "mutation",
            "handler": {"type": "script", "command": "node"},
            "schema": schema or None,
        }
    )


TODO_INPUT = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "priority": {"type": "integer", "default": 3},
    },
    "required": ["title"],
}


@pytest.fixture
def validator() -> SchemaValidator:
    return SchemaValidator()


def test_no_schema_accepts_anything(validator):
    endpoint = _endpoint()

    assert validator.validate_input(endpoint, "whatever").valid
    assert validator.validate_output(endpoint, 42).valid
    assert validator.cache_size == 0


def test_valid_input_gets_defaults(validator):
    data = {"title": "Buy milk"}

    result = validator.validate_input(_endpoint(TODO_INPUT), data)

    assert result.valid
    assert data == {"title": "Buy milk", "priority": 3}


def test_defaults_can_be_disabled():
    data = {"title": "Buy milk"}

    SchemaValidator(use_defaults=False).validate_input(_endpoint(TODO_INPUT), data)

    assert "priority" not in data


def test_missing_required_property_reports_path(validator):
    result = validator.validate_input(_endpoint(TODO_INPUT), {})

    assert not result.valid
    assert result.errors[0].path == "/"
    assert result.errors[0].keyword == "required"
    assert "'title'" in result.errors[0].message


def test_nested_error_path(validator):
    result = validator.validate_input(_endpoint(TODO_INPUT), {"title": "x", "priority": "high"})

    assert not result.valid
    assert result.errors[0].path == "/priority"
    assert result.errors[0].keyword == "type"


def test_assert_valid_input_raises_invalid_params(validator):
    with pytest.raises(LAVSError) as exc_info:
        validator.assert_valid_input(_endpoint(TODO_INPUT), {"priority": 1})

    err = exc_info.value
    assert err.code == LAVSErrorCode.INVALID_PARAMS
    assert err.message.startswith("Invalid input for endpoint 'addTodo':")
    assert err.data["validationErrors"][0]["keyword"] == "required"


def test_assert_valid_output_raises_internal_error(validator):
    endpoint = _endpoint(output_schema={"type": "object", "required": ["id"]})

    with pytest.raises(LAVSError) as exc_info:
        validator.assert_valid_output(endpoint, {"title": "x"})

    assert exc_info.value.code == LAVSErrorCode.INTERNAL_ERROR
    assert "does not match schema" in exc_info.value.message


def test_output_does_not_receive_defaults(validator):
    endpoint = _endpoint(output_schema={"type": "object", "properties": {"n": {"default": 1}}})
    result = {"other": True}

    validator.assert_valid_output(endpoint, result)

    assert result == {"other": True}


def test_validators_are_cached_per_scope(validator):
    endpoint = _endpoint(TODO_INPUT)

    validator.validate_input(endpoint, {"title": "a"}, scope="agent-a")
    validator.validate_input(endpoint, {"title": "b"}, scope="agent-a")
    assert validator.cache_size == 1

    validator.validate_input(endpoint, {"title": "c"}, scope="agent-b")
    assert validator.cache_size == 2

    validator.clear_cache()
    assert validator.cache_size == 0


def test_same_endpoint_id_in_other_scope_uses_its_own_schema(validator):
    strict = _endpoint({"type": "object", "required": ["title"]}, endpoint_id="add")
    loose = _endpoint({"type": "object"}, endpoint_id="add")

    assert not validator.validate_input(strict, {}, scope="a").valid
    assert validator.validate_input(loose, {}, scope="b").valid


def test_invalid_schema_is_internal_error_and_not_cached(validator):
    endpoint = _endpoint({"type": "not-a-type"})

    for _ in range(2):
        with pytest.raises(LAVSError) as exc_info:
            validator.validate_input(endpoint, {})
        assert exc_info.value.code == LAVSErrorCode.INTERNAL_ERROR
        assert "Failed to compile JSON Schema for input:addTodo" in exc_info.value.message

    assert validator.cache_size == 0


def test_unresolvable_ref_is_internal_error_and_not_cached(validator):
    endpoint = _endpoint({"$ref": "#/definitions/missing"})

    with pytest.raises(LAVSError) as exc_info:
        validator.validate_input(endpoint, {})

    assert exc_info.value.code == LAVSErrorCode.INTERNAL_ERROR
    assert "input:addTodo" in exc_info.value.message
    assert validator.cache_size == 0
