from __future__ import annotations

from enum import Enum

from deskflow.domain.rules import ValidationError


class EntityKind(str, Enum):
    TASK = "tasks"
    PROJECT = "projects"
    STAKEHOLDER = "stakeholders"
    FOLLOWUP = "followups"
    SUBTASK = "subtasks"
    KNOWLEDGE = "knowledge"

    @classmethod
    def parse(cls, value: str | EntityKind) -> EntityKind:
        if isinstance(value, EntityKind):
            return value
        lowered = value.strip().lower()
        for kind in cls:
            if lowered in {kind.value, kind.value.rstrip("s"), kind.name.lower()}:
                return kind
        raise ValidationError(f"Unknown entity kind: {value}")


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class ProjectStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    ON_HOLD = "on-hold"
    COMPLETED = "completed"


class FollowupType(str, Enum):
    CALL = "call"
    EMAIL = "email"
    MEETING = "meeting"
    OTHER = "other"


class FollowupStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class KnowledgeCategory(str, Enum):
    HOW_TO = "how-to"
    FAQ = "faq"
    REFERENCE = "reference"
    TROUBLESHOOTING = "troubleshooting"


class AttachmentType(str, Enum):
    URL = "url"
    DOCUMENT = "document"


class TaskTab(str, Enum):
    TODAY = "today"
    BACKLOG = "backlog"
    COMPLETED = "completed"
    OVERDUE = "overdue"


ALL_TAB = "all"
