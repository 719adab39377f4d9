"""
GitLab client -- pipelines and jobs over GraphQL, job traces over REST.

All methods are coroutines and must run on the background loop that opened the
session (see ``labdash.refresh.BackgroundLoop``).

Usage:
    client = GitLabClient(token, "https://gitlab.com")
    await client.open()
    pipelines = await client.list_pipelines(project_cfg)
    jobs = await client.list_jobs("group/project", "1234")
    log = await client.get_job_log(jobs[0].project_id, jobs[0].job_id)
    await client.close()
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Optional

import aiohttp
import structlog

from labdash.config import DEFAULT_MATCH_BRANCH, ProjectConfig
from labdash.errors import FetchError
from labdash.models import JobRecord, PipelineRecord, sort_jobs, trailing_id

logger = structlog.get_logger(__name__)

# GitLab caps connection pages at 100 nodes.
MAX_PAGE_SIZE = 100

PROJECT_PIPELINES_QUERY = """
query ProjectPipelines($name: ID!, $first: Int!) {
  project(fullPath: $name) {
    pipelines(first: $first) {
      nodes {
        iid
        ref
        path
        status
        createdAt
      }
    }
  }
}
"""

_STAGE_FIELDS = """
        nodes {
          name
          jobs {
            nodes {
              id
              name
              status
            }
          }
        }
"""

PIPELINE_JOBS_QUERY = (
    """
query PipelineJobs($projectName: ID!, $pipelineId: ID!) {
  project(fullPath: $projectName) {
    id
    pipeline(iid: $pipelineId) {
      stages {"""
    + _STAGE_FIELDS
    + """      }
      downstream {
        nodes {
          stages {"""
    + _STAGE_FIELDS
    + """          }
        }
      }
    }
  }
}
"""
)


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------

def _required(obj: dict[str, Any] | None, key: str, what: str) -> Any:
    value = (obj or {}).get(key)
    if value is None:
        raise FetchError(f"Failed to get {what}")
    return value


def _nodes(conn: dict[str, Any] | None) -> list[dict[str, Any]]:
    return [n for n in ((conn or {}).get("nodes") or []) if n]


def parse_created_at(raw: str) -> datetime:
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).astimezone()
    except (TypeError, ValueError) as exc:
        raise FetchError(f"Bad createdAt timestamp: {raw!r}") from exc


def parse_pipelines(
    project: ProjectConfig, data: dict[str, Any] | None, gitlab_url: str
) -> list[PipelineRecord]:
    """Turn a ProjectPipelines response into records, newest first as delivered."""
    name = project.name
    proj = (data or {}).get("project")
    if proj is None:
        raise FetchError(f"Failed to get project data ({name})")
    pipelines = proj.get("pipelines")
    if pipelines is None:
        raise FetchError(f"Expected pipeline data for project ({name})")
    if pipelines.get("nodes") is None:
        raise FetchError(f"No pipelines ({name})")

    res: list[PipelineRecord] = []
    for node in _nodes(pipelines):
        branch = _required(node, "ref", f"branch name ({name})")
        if not project.wants_branch(branch):
            continue
        path = _required(node, "path", f"pipeline url ({name})")
        res.append(PipelineRecord(
            project_name=name,
            pipeline_id=str(_required(node, "iid", f"pipeline iid ({name})")),
            branch=branch,
            web_url=f"{gitlab_url}{path}",
            status=_required(node, "status", f"pipeline status ({name})"),
            created_at=parse_created_at(_required(node, "createdAt", f"created at ({name})")),
        ))
        if len(res) >= project.num_pipelines:
            break
    return res


def _stage_jobs(project_id: str, stage: dict[str, Any]) -> list[JobRecord]:
    stage_name = _required(stage, "name", "stage name")
    res = []
    for job in _nodes(stage.get("jobs")):
        res.append(JobRecord(
            project_id=project_id,
            job_id=trailing_id(_required(job, "id", "job id")),
            stage_name=stage_name,
            name=_required(job, "name", "job name"),
            status=_required(job, "status", "job status"),
        ))
    return res


def parse_jobs(data: dict[str, Any] | None) -> list[JobRecord]:
    """Turn a PipelineJobs response into sorted records, child pipelines included."""
    proj = (data or {}).get("project")
    if proj is None:
        raise FetchError("Expected project data")
    pipeline = proj.get("pipeline")
    if pipeline is None:
        raise FetchError("Expected pipeline data for project")
    project_id = trailing_id(_required(proj, "id", "project id"))

    stages = (pipeline.get("stages") or {}).get("nodes")
    if stages is None:
        raise FetchError("No stages")

    res: list[JobRecord] = []
    for stage in (s for s in stages if s):
        res.extend(_stage_jobs(project_id, stage))

    for downstream in _nodes(pipeline.get("downstream")):
        for stage in _nodes(downstream.get("stages")):
            res.extend(_stage_jobs(project_id, stage))

    return sort_jobs(res)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class GitLabClient:
    """Thin aiohttp wrapper around the GitLab GraphQL and REST APIs."""

    def __init__(self, token: str, gitlab_url: str = "https://gitlab.com", timeout: int = 30):
        self.token = token
        self.gitlab_url = gitlab_url.rstrip("/")
        self.graphql_url = f"{self.gitlab_url}/api/graphql"
        self.api_url = f"{self.gitlab_url}/api/v4"
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def headers(self) -> dict[str, str]:
        return {
            "PRIVATE-TOKEN": self.token,
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    async def open(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers=self.headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("GitLabClient.open() has not been awaited")
        return self._session

    async def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any] | None:
        try:
            async with self.session.post(
                self.graphql_url, json={"query": query, "variables": variables}
            ) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise FetchError(f"GraphQL request failed ({resp.status}): {body[:200]}", resp.status)
                payload = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FetchError(f"GraphQL request failed: {exc}") from exc

        if payload.get("errors"):
            messages = "; ".join(str(e.get("message", e)) for e in payload["errors"])
            raise FetchError(f"GraphQL errors: {messages}")
        logger.debug("graphql_response", variables=variables)
        return payload.get("data")

    async def list_pipelines(self, project: ProjectConfig) -> list[PipelineRecord]:
        if project.match_branch_re.pattern == DEFAULT_MATCH_BRANCH:
            first = min(project.num_pipelines, MAX_PAGE_SIZE)
        else:
            first = MAX_PAGE_SIZE
        data = await self._graphql(PROJECT_PIPELINES_QUERY, {"name": project.name, "first": first})
        return parse_pipelines(project, data, self.gitlab_url)

    async def list_jobs(self, project_name: str, pipeline_id: str) -> list[JobRecord]:
        data = await self._graphql(
            PIPELINE_JOBS_QUERY, {"projectName": project_name, "pipelineId": pipeline_id}
        )
        return parse_jobs(data)

    async def get_job_log(self, project_id: str, job_id: str) -> str:
        url = f"{self.api_url}/projects/{project_id}/jobs/{job_id}/trace"
        try:
            async with self.session.get(url) as resp:
                if resp.status != 200:
                    raise FetchError(f"Trace request failed ({resp.status}) for job {job_id}", resp.status)
                raw = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FetchError(f"Trace request failed for job {job_id}: {exc}") from exc
        return raw.decode("utf-8", errors="replace")
