"""Pluggable resource type contracts.

A contract validates the rendered property payload of one resource type.
Contracts are looked up by type pattern in a SchemaRegistry; exact types
win over glob patterns.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog
from jsonschema import Draft202012Validator
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

logger = structlog.get_logger(__name__)

# Annotation naming the resource type a JSON schema file applies to
RESOURCE_TYPE_KEYWORD = "x-resource-type"


@runtime_checkable
class TypeContract(Protocol):
    """Validates one resource payload."""

    def validate(self, payload: Mapping[str, Any]) -> list[str]:
        """Return violation messages, empty if the payload complies."""
        ...


class JsonSchemaContract:
    """Contract backed by a JSON Schema (Draft 2020-12)."""

    def __init__(self, schema: Mapping[str, Any]) -> None:
        Draft202012Validator.check_schema(schema)
        self.schema = dict(schema)
        self._validator = Draft202012Validator(self.schema)

    def validate(self, payload: Mapping[str, Any]) -> list[str]:
        messages: list[str] = []
        for error in sorted(self._validator.iter_errors(payload), key=lambda e: list(e.path)):
            location = ".".join(str(part) for part in error.absolute_path) or "<root>"
            messages.append(f"{location}: {error.message}")
        return messages


class ModelContract:
    """Contract backed by a pydantic model."""

    def __init__(self, model: type[BaseModel]) -> None:
        self.model = model

    def validate(self, payload: Mapping[str, Any]) -> list[str]:
        try:
            self.model.model_validate(dict(payload))
        except PydanticValidationError as e:
            return [
                f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            ]
        return []


class RequiredPropertiesContract:
    """Contract requiring a set of top-level properties."""

    def __init__(self, required: Iterable[str]) -> None:
        self.required = tuple(sorted(set(required)))

    def validate(self, payload: Mapping[str, Any]) -> list[str]:
        return [
            f"missing required property '{name}'"
            for name in self.required
            if name not in payload
        ]


class SchemaRegistry:
    """Resource type to contract lookup.

    Example:
        >>> registry = SchemaRegistry()
        >>> registry.register(
        ...     "Microsoft.Storage/storageAccounts",
        ...     RequiredPropertiesContract(["accessTier"]),
        ... )
        >>> registry.get("Microsoft.Storage/storageAccounts") is not None
        True
    """

    def __init__(self) -> None:
        self._exact: dict[str, TypeContract] = {}
        self._globs: list[tuple[str, TypeContract]] = []

    def register(self, type_pattern: str, contract: TypeContract) -> None:
        """Register ``contract`` for a type or glob pattern."""
        key = type_pattern.lower()
        if any(char in key for char in "*?["):
            self._globs.append((key, contract))
        else:
            self._exact[key] = contract

    def get(self, resource_type: str) -> TypeContract | None:
        """Return the contract for ``resource_type``, if any."""
        key = resource_type.lower()
        if key in self._exact:
            return self._exact[key]
        for pattern, contract in self._globs:
            if fnmatchcase(key, pattern):
                return contract
        return None

    def __len__(self) -> int:
        return len(self._exact) + len(self._globs)

    def load_directory(self, directory: Path) -> int:
        """Register every ``*.schema.json`` file carrying ``x-resource-type``.

        Returns:
            Number of contracts registered.
        """
        count = 0
        for path in sorted(directory.glob("*.schema.json")):
            schema = json.loads(path.read_text())
            resource_type = schema.get(RESOURCE_TYPE_KEYWORD)
            if not resource_type:
                logger.warning("schema_without_resource_type", path=str(path))
                continue
            self.register(resource_type, JsonSchemaContract(schema))
            count += 1
        logger.info("schema_contracts_loaded", directory=str(directory), count=count)
        return count
