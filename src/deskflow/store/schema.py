from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from deskflow.domain import rules

FIELD_TYPES = {"text", "number", "date", "datetime", "enum", "bool", "ref", "json"}
DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parents[3] / "resources" / "schema" / "collections.yaml"


@dataclass(frozen=True)
class Schema:
    version: int
    enums: dict[str, list[str]]
    collections: dict[str, Any]

    def fields(self, collection: str) -> dict[str, dict[str, Any]]:
        collection_def = self.collections.get(collection)
        if collection_def is None:
            raise SchemaError(f"Unknown collection: {collection}")
        return collection_def.get("fields", {})

    def references(self, target: str) -> list[tuple[str, str]]:
        """Return (collection, field) pairs holding a soft reference to ``target``."""
        refs: list[tuple[str, str]] = []
        for collection_name, collection_def in self.collections.items():
            for field_name, spec in (collection_def.get("fields") or {}).items():
                if spec.get("type") == "ref" and spec.get("ref") == target:
                    refs.append((collection_name, field_name))
        return refs


class SchemaError(RuntimeError):
    pass


def load_schema(schema_path: Path | None = None) -> Schema:
    schema_path = schema_path or DEFAULT_SCHEMA_PATH
    data = yaml.safe_load(schema_path.read_text(encoding="utf-8")) or {}
    version = data.get("version", 1)
    enums = data.get("enums", {})
    collections = data.get("collections", {})
    if not isinstance(collections, dict):
        raise SchemaError("Schema collections must be a mapping.")
    for collection_name, collection_def in collections.items():
        fields = (collection_def or {}).get("fields")
        if not isinstance(fields, dict):
            raise SchemaError(f"Collection {collection_name} fields must be a mapping.")
        for field_name, spec in fields.items():
            if spec.get("type") not in FIELD_TYPES:
                raise SchemaError(f"Unknown field type {spec.get('type')} for {collection_name}.{field_name}.")
            if spec.get("type") == "enum" and spec.get("enum") not in enums:
                raise SchemaError(f"Unknown enum {spec.get('enum')} for {collection_name}.{field_name}.")
    return Schema(version=version, enums=enums, collections=collections)


def validate_document(
    schema: Schema,
    collection: str,
    fields: dict[str, Any],
    *,
    partial: bool,
) -> dict[str, Any]:
    """Check ``fields`` against the collection definition and return a cleaned copy.

    Unknown fields are rejected. Required fields must be present and non-empty
    on create; on a partial update they may be omitted but not blanked.
    """
    spec_by_field = schema.fields(collection)
    unknown = sorted(set(fields) - set(spec_by_field))
    if unknown:
        raise rules.ValidationError(f"Unknown fields for {collection}: {', '.join(unknown)}")

    cleaned: dict[str, Any] = {}
    for field_name, spec in spec_by_field.items():
        if field_name not in fields:
            if spec.get("required") and not partial:
                raise rules.ValidationError(f"{field_name} is required.")
            continue
        value = fields[field_name]
        if spec.get("required"):
            rules.require(value, field_name)
        cleaned[field_name] = _clean_value(schema, field_name, spec, value)
    return cleaned


def _clean_value(schema: Schema, field_name: str, spec: dict[str, Any], value: Any) -> Any:
    field_type = spec.get("type")
    if isinstance(value, str) and value.strip() == "" and field_type != "text":
        return None
    if value is None:
        return None
    if field_type == "enum":
        value = getattr(value, "value", value)
        rules.validate_enum(value, schema.enums[spec["enum"]], field_name)
        return value
    if field_type == "date":
        parsed = rules.parse_date(value, field_name)
        return parsed.isoformat() if parsed else None
    if field_type == "datetime":
        parsed_dt = rules.parse_datetime(value, field_name)
        return parsed_dt.isoformat() if parsed_dt else None
    if field_type == "bool":
        if isinstance(value, str):
            return value.lower() in {"true", "1", "yes", "on"}
        return bool(value)
    if field_type == "number":
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise rules.ValidationError(f"{field_name} must be a number.") from exc
    if field_type == "json":
        if not isinstance(value, (list, dict)):
            raise rules.ValidationError(f"{field_name} must be a list or mapping.")
        return value
    return str(value)
