from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from deskflow.domain.kinds import AttachmentType
from deskflow.domain.rules import ValidationError, parse_date, validate_enum


@dataclass(frozen=True)
class Attachment:
    type: str
    value: str
    name: str | None = None

    @classmethod
    def from_record(cls, data: Any) -> Attachment:
        if isinstance(data, str):
            return cls(type=AttachmentType.URL.value, value=data)
        if not isinstance(data, dict):
            raise ValidationError("each attachment must be a link or a {type, value} mapping.")
        attachment_type = str(data.get("type") or AttachmentType.URL.value)
        validate_enum(attachment_type, [t.value for t in AttachmentType], "attachment type")
        return cls(
            type=attachment_type,
            value=str(data.get("value") or ""),
            name=_optional(data.get("name")),
        )

    def to_fields(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "value": self.value}
        if self.name:
            payload["name"] = self.name
        return payload

    @property
    def display_name(self) -> str:
        return self.name or self.value


@dataclass(frozen=True)
class Task:
    id: str
    title: str
    description: str | None = None
    priority: str = "medium"
    status: str = "todo"
    due_date: date | None = None
    project_id: str | None = None
    stakeholder_id: str | None = None
    is_today: bool = False
    attachments: tuple[Attachment, ...] = ()
    order: int | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Task:
        return cls(
            id=record["id"],
            title=str(record.get("title") or ""),
            description=_optional(record.get("description")),
            priority=str(record.get("priority") or "medium"),
            status=str(record.get("status") or "todo"),
            due_date=parse_date(record.get("due_date"), "due_date"),
            project_id=_optional(record.get("project_id")),
            stakeholder_id=_optional(record.get("stakeholder_id")),
            is_today=bool(record.get("is_today")),
            attachments=_attachments(record.get("attachments")),
            order=_optional_int(record.get("order")),
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "project_id": self.project_id,
            "stakeholder_id": self.stakeholder_id,
            "is_today": self.is_today,
            "attachments": [attachment.to_fields() for attachment in self.attachments],
            "order": self.order,
        }


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    description: str | None = None
    status: str = "planning"
    parent_id: str | None = None
    stakeholder_id: str | None = None
    deadline: date | None = None
    attachments: tuple[Attachment, ...] = ()
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Project:
        return cls(
            id=record["id"],
            name=str(record.get("name") or ""),
            description=_optional(record.get("description")),
            status=str(record.get("status") or "planning"),
            parent_id=_optional(record.get("parent_id")),
            stakeholder_id=_optional(record.get("stakeholder_id")),
            deadline=parse_date(record.get("deadline"), "deadline"),
            attachments=_attachments(record.get("attachments")),
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "parent_id": self.parent_id,
            "stakeholder_id": self.stakeholder_id,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "attachments": [attachment.to_fields() for attachment in self.attachments],
        }


@dataclass(frozen=True)
class Stakeholder:
    id: str
    name: str
    email: str | None = None
    phone: str | None = None
    role: str | None = None
    company: str | None = None
    notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Stakeholder:
        return cls(
            id=record["id"],
            name=str(record.get("name") or ""),
            email=_optional(record.get("email")),
            phone=_optional(record.get("phone")),
            role=_optional(record.get("role")),
            company=_optional(record.get("company")),
            notes=_optional(record.get("notes")),
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "company": self.company,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class Followup:
    id: str
    stakeholder_id: str
    title: str
    description: str | None = None
    followup_type: str = "other"
    status: str = "pending"
    date: date | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Followup:
        return cls(
            id=record["id"],
            stakeholder_id=str(record.get("stakeholder_id") or ""),
            title=str(record.get("title") or ""),
            description=_optional(record.get("description")),
            followup_type=str(record.get("type") or "other"),
            status=str(record.get("status") or "pending"),
            date=parse_date(record.get("date"), "date"),
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "stakeholder_id": self.stakeholder_id,
            "title": self.title,
            "description": self.description,
            "type": self.followup_type,
            "status": self.status,
            "date": self.date.isoformat() if self.date else None,
        }


@dataclass(frozen=True)
class Subtask:
    id: str
    task_id: str
    title: str
    description: str | None = None
    priority: str = "medium"
    status: str = "todo"
    due_date: date | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Subtask:
        return cls(
            id=record["id"],
            task_id=str(record.get("task_id") or ""),
            title=str(record.get("title") or ""),
            description=_optional(record.get("description")),
            priority=str(record.get("priority") or "medium"),
            status=str(record.get("status") or "todo"),
            due_date=parse_date(record.get("due_date"), "due_date"),
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "due_date": self.due_date.isoformat() if self.due_date else None,
        }


@dataclass(frozen=True)
class KnowledgeEntry:
    id: str
    title: str
    content: str | None = None
    category: str = "reference"
    tags: str | None = None
    attachments: tuple[Attachment, ...] = field(default_factory=tuple)
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> KnowledgeEntry:
        tags = record.get("tags")
        if isinstance(tags, list):
            tags = ", ".join(str(tag) for tag in tags)
        return cls(
            id=record["id"],
            title=str(record.get("title") or ""),
            content=_optional(record.get("content")),
            category=str(record.get("category") or "reference"),
            tags=_optional(tags),
            attachments=_attachments(record.get("attachments")),
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "content": self.content,
            "category": self.category,
            "tags": self.tags,
            "attachments": [attachment.to_fields() for attachment in self.attachments],
        }


def _optional(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _attachments(value: Any) -> tuple[Attachment, ...]:
    if not value:
        return ()
    if not isinstance(value, list):
        raise ValidationError("attachments must be a list.")
    return tuple(Attachment.from_record(item) for item in value)
