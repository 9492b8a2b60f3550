"""Core data models for the repository dashboard state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from relboard.github.models import Issue, Label, Milestone, PullRequest, Release, Repository

LogLevel = Literal["info", "success", "warning", "error"]


class LoadStatus(str, Enum):
    """Lifecycle of a repository load."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass
class FetchLogEntry:
    """One progress message recorded while loading a repository."""

    message: str
    level: LogLevel = "info"
    timestamp: datetime = field(default_factory=datetime.now)


class RepositorySnapshot(BaseModel):
    """Everything the dashboard knows about the selected repository."""

    repository: Repository | None = None
    releases: list[Release] = Field(default_factory=list)
    pull_requests: list[PullRequest] = Field(default_factory=list)
    issues: list[Issue] = Field(default_factory=list)
    labels: list[Label] = Field(default_factory=list)
    milestones: list[Milestone] = Field(default_factory=list)
    issue_types: list[Label] = Field(default_factory=list)
    review_statuses: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.repository is None
