from deskflow.domain.models import (
    Attachment,
    Followup,
    KnowledgeEntry,
    Project,
    Stakeholder,
    Subtask,
    Task,
)
from deskflow.domain.rules import ValidationError

__all__ = [
    "Attachment",
    "Followup",
    "KnowledgeEntry",
    "Project",
    "Stakeholder",
    "Subtask",
    "Task",
    "ValidationError",
]
