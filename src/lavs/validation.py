"""JSON Schema validation for endpoint input and output.

Validation is opt-in: an endpoint without ``schema.input`` (or
``schema.output``) accepts anything on that side. Compiled validators are
cached lazily per direction and endpoint; a schema that is itself invalid
fails the call with ``InternalError`` and is never cached.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Literal

from jsonschema import Draft7Validator, validators
from jsonschema.exceptions import SchemaError
from jsonschema.protocols import Validator
from referencing.exceptions import Unresolvable

from lavs.errors import LAVSError, LAVSErrorCode
from lavs.manifest.schema import Endpoint

logger = logging.getLogger(__name__)

Direction = Literal["input", "output"]


@dataclass
class ValidationIssue:
    """A single schema violation."""

    path: str
    message: str
    keyword: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "message": self.message,
            "keyword": self.keyword,
            "params": self.params,
        }


@dataclass
class ValidationResult:
    """Outcome of validating a value against an endpoint schema."""

    valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)


def _extend_with_default(validator_class: type[Validator]) -> type[Validator]:
    """Build a validator class that fills in ``default`` values while validating."""
    validate_properties = validator_class.VALIDATORS["properties"]

    def set_defaults(
        validator: Validator,
        properties: dict[str, Any],
        instance: Any,
        schema: dict[str, Any],
    ) -> Iterator[Any]:
        if validator.is_type(instance, "object"):
            for name, subschema in properties.items():
                if isinstance(subschema, dict) and "default" in subschema:
                    instance.setdefault(name, copy.deepcopy(subschema["default"]))
        yield from validate_properties(validator, properties, instance, schema)

    return validators.extend(validator_class, {"properties": set_defaults})


class SchemaValidator:
    """Validates endpoint values against their declared JSON Schemas.

    Schemas without a ``$schema`` keyword are treated as draft-07.

    Args:
        use_defaults: Fill missing input properties from schema defaults
    """

    def __init__(self, use_defaults: bool = True) -> None:
        self.use_defaults = use_defaults
        self._validators: dict[tuple[Direction, str, str], Validator] = {}

    @property
    def cache_size(self) -> int:
        """Number of compiled validators currently cached."""
        return len(self._validators)

    def validate_input(self, endpoint: Endpoint, value: Any, scope: str = "") -> ValidationResult:
        """Validate a call's input against ``schema.input``.

        Args:
            endpoint: Endpoint definition
            value: Input value (dict inputs may receive schema defaults)
            scope: Cache namespace, typically the agent id, so endpoints with
                the same id in different manifests do not share validators

        Returns:
            Validation result
        """
        return self._validate("input", endpoint, endpoint.input_schema, value, scope)

    def validate_output(self, endpoint: Endpoint, value: Any, scope: str = "") -> ValidationResult:
        """Validate a handler's result against ``schema.output``."""
        return self._validate("output", endpoint, endpoint.output_schema, value, scope)

    def assert_valid_input(self, endpoint: Endpoint, value: Any, scope: str = "") -> None:
        """Validate input, raising ``InvalidParams`` on any violation."""
        result = self.validate_input(endpoint, value, scope)
        if not result.valid:
            raise LAVSError(
                LAVSErrorCode.INVALID_PARAMS,
                f"Invalid input for endpoint '{endpoint.id}': {summarize_errors(result.errors)}",
                {"validationErrors": [e.to_dict() for e in result.errors]},
            )

    def assert_valid_output(self, endpoint: Endpoint, value: Any, scope: str = "") -> None:
        """Validate output, raising ``InternalError`` on any violation.

        Output that violates the schema is a handler bug, not a caller error.
        """
        result = self.validate_output(endpoint, value, scope)
        if not result.valid:
            raise LAVSError(
                LAVSErrorCode.INTERNAL_ERROR,
                f"Invalid output from endpoint '{endpoint.id}': "
                f"handler returned data that does not match schema "
                f"({summarize_errors(result.errors)})",
                {"validationErrors": [e.to_dict() for e in result.errors]},
            )

    def clear_cache(self) -> None:
        """Drop every compiled validator (call after manifests change)."""
        self._validators.clear()

    def _validate(
        self,
        direction: Direction,
        endpoint: Endpoint,
        schema: dict[str, Any] | None,
        value: Any,
        scope: str,
    ) -> ValidationResult:
        if not schema:
            return ValidationResult(valid=True)

        validator = self._get_or_compile(direction, endpoint.id, scope, schema)
        try:
            errors = sorted(
                validator.iter_errors(value),
                key=lambda e: [str(p) for p in e.absolute_path],
            )
        except Unresolvable as e:
            self._validators.pop((direction, scope, endpoint.id), None)
            raise LAVSError(
                LAVSErrorCode.INTERNAL_ERROR,
                f"Failed to compile JSON Schema for {direction}:{endpoint.id}: {e}",
            ) from e
        if not errors:
            return ValidationResult(valid=True)

        return ValidationResult(
            valid=False,
            errors=[
                ValidationIssue(
                    path=_json_pointer(e.absolute_path),
                    message=e.message,
                    keyword=str(e.validator),
                    params={"expected": e.validator_value} if e.validator != "required" else {},
                )
                for e in errors
            ],
        )

    def _get_or_compile(
        self,
        direction: Direction,
        endpoint_id: str,
        scope: str,
        schema: dict[str, Any],
    ) -> Validator:
        key = (direction, scope, endpoint_id)
        cached = self._validators.get(key)
        if cached is not None:
            return cached

        validator_class = validators.validator_for(schema, default=Draft7Validator)
        try:
            validator_class.check_schema(schema)
        except SchemaError as e:
            raise LAVSError(
                LAVSErrorCode.INTERNAL_ERROR,
                f"Failed to compile JSON Schema for {direction}:{endpoint_id}: {e.message}",
            ) from e

        if direction == "input" and self.use_defaults:
            validator_class = _extend_with_default(validator_class)

        compiled = validator_class(schema)
        self._validators[key] = compiled
        logger.debug("Compiled %s schema for endpoint '%s'", direction, endpoint_id)
        return compiled


def _json_pointer(path: Any) -> str:
    parts = [str(p) for p in path]
    if not parts:
        return "/"
    return "/" + "/".join(parts)


def summarize_errors(errors: list[ValidationIssue]) -> str:
    """Join violations into a single human-readable line."""
    if not errors:
        return "Unknown validation error"
    return "; ".join(f"{e.path} {e.message}" for e in errors)
