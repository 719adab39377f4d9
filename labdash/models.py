"""Domain records shared by the fetch clients and the views."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

TIME_FORMAT = "%b %d %H:%M:%S"

# Rich styles per status; anything missing renders with the default style.
PIPELINE_STATUS_STYLE: dict[str, str] = {
    "SUCCESS": "green",
    "FAILED": "red",
}

JOB_STATUS_STYLE: dict[str, str] = {
    "SUCCESS": "green",
    "FAILED": "red",
    "RUNNING": "yellow",
}

# FAILED first, then RUNNING, then PENDING, then everything else.
JOB_STATUS_RANK: dict[str, int] = {
    "FAILED": 0,
    "RUNNING": 1,
    "PENDING": 2,
}


@dataclass(frozen=True)
class PipelineRecord:
    project_name: str
    pipeline_id: str
    branch: str
    web_url: str
    status: str
    created_at: datetime


@dataclass(frozen=True)
class JobRecord:
    project_id: str
    job_id: str
    stage_name: str
    name: str
    status: str


def trailing_id(global_id: str) -> str:
    """``gid://gitlab/Ci::Build/42`` -> ``42``."""
    return global_id.rsplit("/", 1)[-1]


def sort_jobs(jobs: list[JobRecord]) -> list[JobRecord]:
    """Order jobs FAILED, RUNNING, PENDING, then the rest; ties keep document order."""
    return sorted(jobs, key=lambda j: JOB_STATUS_RANK.get(j.status, len(JOB_STATUS_RANK)))


def format_time(ts: datetime | None) -> str:
    if ts is None:
        return "never"
    return ts.strftime(TIME_FORMAT)
