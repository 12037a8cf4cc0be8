import json
from pathlib import Path
from typing import Any, Dict, List, Set

import jsonschema


def _load_schema(name: str) -> Dict[str, Any]:
    schema_path = Path(__file__).with_name(f"{name}.schema.json")
    with schema_path.open("r", encoding="utf-8") as f:
        return json.load(f)["schema"]


_regeneration_validator = jsonschema.Draft7Validator(_load_schema("regeneration"))


def validation_errors(data: Any) -> List[str]:
    errors = sorted(_regeneration_validator.iter_errors(data), key=lambda e: list(e.path))
    return [f"{'/'.join(map(str, err.path))} {err.message}" for err in errors]


def sanitize_regeneration(data: Any) -> Dict[str, Any]:
    """Drop every top-level field that fails the schema and keep the rest."""
    if not isinstance(data, dict):
        return {}
    invalid: Set[str] = set()
    for error in _regeneration_validator.iter_errors(data):
        if error.path:
            invalid.add(str(error.path[0]))
    return {key: value for key, value in data.items() if key not in invalid}
