"""Pipeline definition loading and export.

Definitions are read from YAML or JSON files and validated against
PipelineSchema. When no file is configured the built-in definition is used.
"""

import json
from pathlib import Path
from typing import Any

import yaml

from lldap_ci.pipeline.schema import PipelineSchema, default_pipeline


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the document is not an object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def load_pipeline(path: Path) -> PipelineSchema:
    """Load and validate a pipeline definition from a file (YAML or JSON).

    File format is determined by extension (.yaml, .yml for YAML,
    .json for JSON).

    Args:
        path: Path to the definition file.

    Returns:
        Validated PipelineSchema instance.

    Raises:
        ValueError: If file extension is not supported.
        FileNotFoundError: If the file does not exist.
        pydantic.ValidationError: If data does not match schema.
    """
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = load_yaml(path)
    elif suffix == ".json":
        data = load_json(path)
    else:
        raise ValueError(
            f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
        )
    return PipelineSchema.model_validate(data)


def resolve_pipeline(path: Path | None) -> PipelineSchema:
    """Load the definition at path, or the built-in one when path is None."""
    if path is None:
        return default_pipeline()
    return load_pipeline(path)


def pipeline_to_yaml_string(pipeline: PipelineSchema) -> str:
    """Convert a pipeline definition to a YAML string.

    Unset optional fields are written as null so that loading the output
    does not bring their defaults back.
    """
    data = pipeline.model_dump(mode="json")
    result: str = yaml.dump(
        data, default_flow_style=False, allow_unicode=True, sort_keys=False
    )
    return result


def pipeline_to_json_string(pipeline: PipelineSchema) -> str:
    """Convert a pipeline definition to a JSON string."""
    data = pipeline.model_dump(mode="json")
    return json.dumps(data, indent=2, ensure_ascii=False)


__all__ = [
    "load_json",
    "load_pipeline",
    "load_yaml",
    "pipeline_to_json_string",
    "pipeline_to_yaml_string",
    "resolve_pipeline",
]
