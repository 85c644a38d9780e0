from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

import yaml

from deskflow.adapters.airtable.client import AirtableClient, AirtableError
from deskflow.store.base import (
    NotFoundError,
    PermissionDenied,
    Record,
    SnapshotHub,
    SnapshotListener,
    StoreError,
    Subscription,
    newest_first,
    normalize_timestamp,
)
from deskflow.store.schema import Schema

logger = logging.getLogger(__name__)

DEFAULT_MODIFIED_FIELD = "ModifiedAt"
DEFAULT_MAPPING_PATH = Path(__file__).resolve().parents[4] / "resources" / "schema" / "airtable.mapping.yaml"


@dataclass(frozen=True)
class AirtableMapping:
    modified_field: str
    tables: dict[str, dict[str, str]]

    def columns(self, collection: str) -> dict[str, str]:
        columns = self.tables.get(collection)
        if columns is None:
            raise StoreError(f"No Airtable mapping for collection {collection}.")
        return columns


class MappingError(RuntimeError):
    pass


def load_mapping(mapping_path: Path) -> AirtableMapping:
    data = yaml.safe_load(mapping_path.read_text(encoding="utf-8")) or {}
    tables = data.get("tables", {})
    if not isinstance(tables, dict):
        raise MappingError("Airtable mapping tables must be a mapping.")
    for collection, columns in tables.items():
        if not isinstance(columns, dict):
            raise MappingError(f"Airtable mapping for {collection} must be a mapping.")
    return AirtableMapping(
        modified_field=data.get("modified_field") or DEFAULT_MODIFIED_FIELD,
        tables=tables,
    )


class AirtableDocumentStore:
    """Document collections backed by Airtable tables.

    Record ``createdTime`` and a last-modified-time column are both assigned by
    Airtable, so no client clock is involved in ordering. Airtable has no push
    channel; other writers are observed through ``poll_interval``.
    """

    def __init__(
        self,
        client: AirtableClient,
        mapping: AirtableMapping,
        schema: Schema,
        table_ids: dict[str, str],
        poll_interval: float | None = None,
    ) -> None:
        self.client = client
        self.mapping = mapping
        self.schema = schema
        self.table_ids = table_ids
        self._hub = SnapshotHub(self.snapshot, poll_interval=poll_interval)

    async def create(self, collection: str, fields: Record) -> str:
        table_id = self._table_id(collection)
        payload = to_airtable_fields(fields, self.mapping.columns(collection), self.schema.fields(collection))
        record = await self._call(collection, self.client.create_record, table_id, payload)
        await self._hub.refresh_quietly(collection)
        return record.record_id

    async def update(self, collection: str, doc_id: str, fields: Record) -> None:
        table_id = self._table_id(collection)
        payload = to_airtable_fields(fields, self.mapping.columns(collection), self.schema.fields(collection))
        await self._call(collection, self.client.update_record, table_id, doc_id, payload)
        await self._hub.refresh_quietly(collection)

    async def delete(self, collection: str, doc_id: str) -> None:
        table_id = self._table_id(collection)
        await self._call(collection, self.client.delete_record, table_id, doc_id)
        await self._hub.refresh_quietly(collection)

    async def snapshot(self, collection: str) -> list[Record]:
        table_id = self._table_id(collection)
        columns = self.mapping.columns(collection)
        query_fields = [*columns.values(), self.mapping.modified_field]
        records = await self._call(collection, self.client.list_records, table_id, query_fields)
        schema_fields = self.schema.fields(collection)
        documents = []
        for record in records:
            document = from_airtable_fields(record.fields, columns, schema_fields)
            document["id"] = record.record_id
            created_at = normalize_timestamp(record.created_time)
            document["created_at"] = created_at
            document["updated_at"] = normalize_timestamp(record.fields.get(self.mapping.modified_field)) or created_at
            documents.append(document)
        return newest_first(documents)

    async def subscribe(self, collection: str, on_change: SnapshotListener) -> Subscription:
        return await self._hub.subscribe(collection, on_change)

    async def close(self) -> None:
        await self._hub.close()
        self.client.session.close()

    def _table_id(self, collection: str) -> str:
        table_id = (self.table_ids.get(collection) or "").strip()
        if not table_id:
            raise StoreError(f"Missing Airtable table id for {collection} in workspace config.")
        return table_id

    async def _call(self, collection: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except AirtableError as exc:
            raise translate_error(collection, exc) from exc


def translate_error(collection: str, exc: AirtableError) -> StoreError:
    status = exc.status_code or 0
    if status == 404:
        return NotFoundError(f"{collection}: record not found.", status_code=status)
    if status in {401, 403}:
        return PermissionDenied(
            "Airtable auth/permission error; check PAT scopes and base access.",
            status_code=status,
        )
    return StoreError(str(exc), status_code=exc.status_code)


def to_airtable_fields(
    fields: Record,
    columns: dict[str, str],
    schema_fields: dict[str, Any],
) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for field_name, value in fields.items():
        column = columns.get(field_name)
        if column is None:
            raise StoreError(f"Field {field_name} has no Airtable column mapping.")
        payload[column] = _to_airtable_value(value, schema_fields.get(field_name))
    return payload


def from_airtable_fields(
    remote_fields: dict[str, Any],
    columns: dict[str, str],
    schema_fields: dict[str, Any],
) -> Record:
    document: Record = {}
    for field_name, column in columns.items():
        document[field_name] = _from_airtable_value(remote_fields.get(column), schema_fields.get(field_name))
    return document


def _to_airtable_value(value: Any, spec: dict[str, Any] | None) -> Any:
    field_type = spec.get("type") if isinstance(spec, dict) else None
    if value is None:
        return False if field_type == "bool" else None
    if field_type == "json":
        return json.dumps(value)
    if field_type == "bool":
        return bool(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _from_airtable_value(value: Any, spec: dict[str, Any] | None) -> Any:
    field_type = spec.get("type") if isinstance(spec, dict) else None
    if field_type == "bool":
        if isinstance(value, str):
            return value.lower() in {"true", "1", "yes"}
        return bool(value)
    if value is None or value == "":
        return None
    if field_type == "json":
        if isinstance(value, (list, dict)):
            return value
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            logger.warning("ignoring malformed json column value=%r", value)
            return None
    if field_type == "number":
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
    if field_type == "date" and isinstance(value, str):
        return value.split("T")[0]
    if isinstance(value, dict) and "name" in value:
        return str(value["name"])
    return value
