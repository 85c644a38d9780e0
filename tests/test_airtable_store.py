import asyncio
import json

import pytest

from deskflow.adapters.airtable.client import AirtableClient, AirtableError, AirtableRecord
from deskflow.adapters.airtable.store import (
    DEFAULT_MAPPING_PATH,
    AirtableDocumentStore,
    from_airtable_fields,
    load_mapping,
    to_airtable_fields,
    translate_error,
)
from deskflow.store.base import NotFoundError, PermissionDenied, StoreError
from deskflow.store.schema import load_schema


class FakeSession:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeClient:
    def __init__(self) -> None:
        self.records: dict[str, list[AirtableRecord]] = {}
        self.calls = []
        self.session = FakeSession()
        self._next = 0

    def list_records(self, table_id, fields=None, filter_formula=None):
        self.calls.append(("list", table_id, fields))
        return list(self.records.get(table_id, []))

    def create_record(self, table_id, fields):
        self.calls.append(("create", table_id, fields))
        self._next += 1
        record = AirtableRecord(
            record_id=f"rec{self._next}",
            fields=dict(fields),
            created_time=f"2026-01-0{self._next}T00:00:00.000Z",
        )
        self.records.setdefault(table_id, []).append(record)
        return record

    def update_record(self, table_id, record_id, fields):
        self.calls.append(("update", table_id, record_id, fields))
        for index, record in enumerate(self.records.get(table_id, [])):
            if record.record_id == record_id:
                updated = AirtableRecord(record_id, {**record.fields, **fields}, record.created_time)
                self.records[table_id][index] = updated
                return updated
        raise AirtableError("Airtable error 404: NOT_FOUND", status_code=404)

    def delete_record(self, table_id, record_id):
        self.calls.append(("delete", table_id, record_id))
        remaining = [record for record in self.records.get(table_id, []) if record.record_id != record_id]
        if len(remaining) == len(self.records.get(table_id, [])):
            raise AirtableError("Airtable error 404: NOT_FOUND", status_code=404)
        self.records[table_id] = remaining


def _store(client: FakeClient) -> AirtableDocumentStore:
    return AirtableDocumentStore(
        client,
        load_mapping(DEFAULT_MAPPING_PATH),
        load_schema(),
        table_ids={"tasks": "tblTasks", "projects": "tblProjects"},
    )


def test_mapping_file_covers_every_collection() -> None:
    mapping = load_mapping(DEFAULT_MAPPING_PATH)
    schema = load_schema()
    assert mapping.modified_field == "ModifiedAt"
    for collection in schema.collections:
        assert set(mapping.columns(collection)) == set(schema.fields(collection))


def test_field_payload_uses_column_names() -> None:
    mapping = load_mapping(DEFAULT_MAPPING_PATH)
    schema = load_schema()
    payload = to_airtable_fields(
        {
            "title": "Ship",
            "is_today": None,
            "attachments": [{"type": "url", "value": "https://example.com"}],
            "due_date": "2026-03-10",
        },
        mapping.columns("tasks"),
        schema.fields("tasks"),
    )
    assert payload["Title"] == "Ship"
    assert payload["Today"] is False
    assert json.loads(payload["Attachments"]) == [{"type": "url", "value": "https://example.com"}]
    assert payload["Due Date"] == "2026-03-10"
    with pytest.raises(StoreError):
        to_airtable_fields({"colour": "red"}, mapping.columns("tasks"), schema.fields("tasks"))


def test_remote_fields_are_converted_back() -> None:
    mapping = load_mapping(DEFAULT_MAPPING_PATH)
    schema = load_schema()
    document = from_airtable_fields(
        {
            "Title": "Ship",
            "Status": {"name": "in-progress"},
            "Due Date": "2026-03-10T00:00:00.000Z",
            "Order": "3",
            "Attachments": "not json",
            "Description": "",
        },
        mapping.columns("tasks"),
        schema.fields("tasks"),
    )
    assert document["status"] == "in-progress"
    assert document["due_date"] == "2026-03-10"
    assert document["order"] == 3
    assert document["is_today"] is False
    assert document["attachments"] is None
    assert document["description"] is None
    assert document["project_id"] is None


def test_snapshot_orders_by_created_time_and_reads_modified_column() -> None:
    client = FakeClient()
    client.records["tblTasks"] = [
        AirtableRecord("recOld", {"Title": "Old", "ModifiedAt": "2026-01-05T10:00:00.000Z"}, "2026-01-01T00:00:00.000Z"),
        AirtableRecord("recNew", {"Title": "New"}, "2026-01-03T00:00:00.000Z"),
    ]
    store = _store(client)
    records = asyncio.run(store.snapshot("tasks"))
    assert [record["id"] for record in records] == ["recNew", "recOld"]
    assert records[0]["updated_at"] == records[0]["created_at"] == "2026-01-03T00:00:00.000000Z"
    assert records[1]["updated_at"] == "2026-01-05T10:00:00.000000Z"
    _, table_id, fields = client.calls[0]
    assert table_id == "tblTasks"
    assert "ModifiedAt" in fields


def test_writes_refresh_subscribers() -> None:
    client = FakeClient()
    store = _store(client)
    deliveries = []

    async def scenario() -> str:
        await store.subscribe("tasks", deliveries.append)
        record_id = await store.create("tasks", {"title": "Ship", "is_today": True})
        await store.update("tasks", record_id, {"status": "completed"})
        await store.close()
        return record_id

    record_id = asyncio.run(scenario())
    assert len(deliveries) == 3
    latest = deliveries[-1][0]
    assert latest["id"] == record_id
    assert (latest["title"], latest["status"], latest["is_today"]) == ("Ship", "completed", True)
    assert client.session.closed


def test_missing_records_and_tables() -> None:
    client = FakeClient()
    store = _store(client)
    with pytest.raises(NotFoundError):
        asyncio.run(store.delete("tasks", "recMissing"))
    with pytest.raises(StoreError):
        asyncio.run(store.snapshot("stakeholders"))


def test_translate_error() -> None:
    assert isinstance(translate_error("tasks", AirtableError("x", status_code=404)), NotFoundError)
    assert isinstance(translate_error("tasks", AirtableError("x", status_code=403)), PermissionDenied)
    other = translate_error("tasks", AirtableError("Airtable request failed: timeout"))
    assert type(other) is StoreError
    assert other.status_code is None


class GarbledResponse:
    status_code = 200
    text = "<html>gateway</html>"

    def json(self):
        raise ValueError("Expecting value: line 1 column 1 (char 0)")


class GarbledSession:
    def request(self, method, url, **kwargs):
        return GarbledResponse()


def test_unreadable_response_becomes_airtable_error() -> None:
    client = AirtableClient(api_key="key", base_id="app1")
    client.session = GarbledSession()
    with pytest.raises(AirtableError, match="unreadable response"):
        client.list_records("tblTasks")
