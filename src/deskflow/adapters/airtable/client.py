from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import requests

BASE_URL = "https://api.airtable.com"


@dataclass(frozen=True)
class AirtableRecord:
    record_id: str
    fields: dict[str, Any]
    created_time: str | None = None


class AirtableError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AirtableClient:
    def __init__(self, api_key: str, base_id: str, timeout: float = 30) -> None:
        self.base_id = base_id
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(
            {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        )

    def list_records(
        self,
        table_id: str,
        fields: list[str] | None = None,
        filter_formula: str | None = None,
    ) -> list[AirtableRecord]:
        params: dict[str, Any] = {}
        if fields:
            params["fields[]"] = fields
        if filter_formula:
            params["filterByFormula"] = filter_formula

        records: list[AirtableRecord] = []
        offset = None
        while True:
            if offset:
                params["offset"] = offset
            data = self._request("GET", f"/v0/{self.base_id}/{table_id}", params=params)
            for record in data.get("records", []):
                records.append(_record(record))
            offset = data.get("offset")
            if not offset:
                break
        return records

    def create_record(self, table_id: str, fields: dict[str, Any]) -> AirtableRecord:
        data = self._request(
            "POST",
            f"/v0/{self.base_id}/{table_id}",
            json={"fields": fields, "typecast": True},
        )
        return _record(data)

    def update_record(self, table_id: str, record_id: str, fields: dict[str, Any]) -> AirtableRecord:
        data = self._request(
            "PATCH",
            f"/v0/{self.base_id}/{table_id}/{record_id}",
            json={"fields": fields, "typecast": True},
        )
        return _record(data)

    def delete_record(self, table_id: str, record_id: str) -> None:
        self._request("DELETE", f"/v0/{self.base_id}/{table_id}/{record_id}")

    def _request(self, method: str, path: str, params: dict[str, Any] | None = None, json: Any | None = None):
        url = f"{BASE_URL}{path}"
        try:
            response = self.session.request(method, url, params=params, json=json, timeout=self.timeout)
        except requests.RequestException as exc:
            raise AirtableError(f"Airtable request failed: {exc}") from exc
        if response.status_code >= 400:
            raise AirtableError(
                f"Airtable error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise AirtableError(f"Airtable returned an unreadable response: {exc}") from exc


def _record(data: dict[str, Any]) -> AirtableRecord:
    return AirtableRecord(
        record_id=data["id"],
        fields=data.get("fields", {}),
        created_time=data.get("createdTime"),
    )
