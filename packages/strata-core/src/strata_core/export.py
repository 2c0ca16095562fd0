"""JSON Schema documents for strata's file formats.

- ``manifest.json``: the hand-off to deployment tooling, possibly written in
  another language
- ``strata.yaml``: engine configuration, for editor completion
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator
from pydantic import BaseModel
from pydantic.json_schema import JsonSchemaMode

from strata_core.config import EngineConfig
from strata_core.manifest import DeploymentManifest

JSON_SCHEMA_DIALECT = "https://json-schema.org/draft/2020-12/schema"
SCHEMA_BASE_URI = "https://strata.dev/schemas"
MANIFEST_SCHEMA_ID = f"{SCHEMA_BASE_URI}/deployment-manifest.schema.json"
CONFIG_SCHEMA_ID = f"{SCHEMA_BASE_URI}/strata-config.schema.json"


def export_manifest_schema(output_path: Path | str | None = None) -> dict[str, Any]:
    """Export the DeploymentManifest JSON Schema.

    The schema describes the serialized form, so it validates
    ``manifest.json`` exactly as the engine writes it.

    Args:
        output_path: Optional file to write; parent directories are created.

    Returns:
        The schema document.

    Example:
        >>> export_manifest_schema()["title"]
        'DeploymentManifest'
    """
    return _export(DeploymentManifest, MANIFEST_SCHEMA_ID, "serialization", output_path)


def export_config_schema(output_path: Path | str | None = None) -> dict[str, Any]:
    """Export the EngineConfig JSON Schema describing ``strata.yaml``."""
    return _export(EngineConfig, CONFIG_SCHEMA_ID, "validation", output_path)


def check_manifest_document(document: dict[str, Any]) -> list[str]:
    """Check a parsed manifest against the exported schema.

    Returns:
        One message per violation as ``"<json path>: <message>"``, ordered by
        path. Empty when the document conforms.
    """
    validator = Draft202012Validator(export_manifest_schema())
    errors = sorted(validator.iter_errors(document), key=lambda e: list(map(str, e.path)))
    return [f"{error.json_path}: {error.message}" for error in errors]


def _export(
    model: type[BaseModel],
    schema_id: str,
    mode: JsonSchemaMode,
    output_path: Path | str | None,
) -> dict[str, Any]:
    schema = model.model_json_schema(mode=mode)
    schema["$schema"] = JSON_SCHEMA_DIALECT
    schema["$id"] = schema_id
    schema.setdefault("additionalProperties", False)

    if output_path is not None:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(schema, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return schema
