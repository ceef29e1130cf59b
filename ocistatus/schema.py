"""JSON Schema validation infrastructure.

Shapes checked on the read path before anything is decoded:
- in-toto statements (``intoto-statement.schema.json``)
- status predicates (``status.schema.json``)

Validators are cached; the schema registry resolves ``$ref`` across the
bundled schema files.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, List

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from ocistatus.core import PACKAGE_ROOT, load_json

SCHEMAS_DIR = PACKAGE_ROOT / "schemas"

INTOTO_STATEMENT_SCHEMA = "intoto-statement.schema.json"
STATUS_SCHEMA = "status.schema.json"


@lru_cache(maxsize=1)
def _schema_registry(schemas_dir: Path = SCHEMAS_DIR) -> Registry:
    """Build a schema registry for the bundled schemas."""
    resources = []
    for schema_path in sorted(schemas_dir.glob("*.schema.json")):
        schema = load_json(schema_path)
        schema_id = schema.get("$id") or f"https://schemas.ocistatus.dev/{schema_path.name}"
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(schema_name: str) -> Draft202012Validator:
    """Return a cached validator for one of the bundled schemas."""
    schema_path = SCHEMAS_DIR / schema_name
    if not schema_path.is_file():
        raise FileNotFoundError(f"schema not found: {schema_path}")
    return Draft202012Validator(load_json(schema_path), registry=_schema_registry())


def validate_against_schema(obj: Any, schema_name: str) -> List[str]:
    """Validate an object against a bundled schema.

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = schema_validator(schema_name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]
