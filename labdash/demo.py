"""
Demo backend -- synthetic CI data so the dashboard runs without GitLab.

Implements the same coroutine interface as ``GitLabClient``. Every call moves
the simulation forward a little: jobs go CREATED -> PENDING -> RUNNING ->
SUCCESS/FAILED, running jobs append lines to their log, and pipeline status is
derived from its jobs.

    python dashboard.py --demo
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from labdash.config import ProjectConfig
from labdash.errors import FetchError
from labdash.models import JobRecord, PipelineRecord, sort_jobs

DEMO_PROJECTS = [
    ProjectConfig(name="demo/webapp"),
    ProjectConfig(name="demo/api-server", num_pipelines=3),
]

_DEMO_BRANCHES = [
    "main",
    "feature/chunk-meshing",
    "feature/login-flow",
    "fix/flaky-cache-test",
    "release/2.4",
    "renovate/aiohttp-3.x",
]

_DEMO_STAGES: list[tuple[str, list[str]]] = [
    ("build", ["compile", "docker-image"]),
    ("test", ["unit-tests", "integration-tests", "lint", "typecheck"]),
    ("package", ["wheel", "sbom"]),
    ("deploy", ["deploy-staging"]),
]

_DEMO_LOG_LINES = [
    "$ pip install -e .[test]",
    "Collecting aiohttp>=3.9",
    "  Downloading aiohttp-3.9.5-cp312-cp312-manylinux_2_17_x86_64.whl (1.3 MB)",
    "Successfully installed labdash-0.1.0",
    "$ pytest -q",
    "........................................................................ [ 41%]",
    "........................................................................ [ 83%]",
    "..............................                                           [100%]",
    "Uploading artifacts for successful job",
    "\x1b[32;1mJob succeeded\x1b[0;m",
    "Running with gitlab-runner 16.9.1 (782c6ecb) on docker-auto-scale",
    "section_start:1712345678:prepare_script\r\x1b[0KPreparing environment",
    "Fetching changes with git depth set to 20...",
    "Checking out 3f9c2a1e as detached HEAD (ref is main)...",
]

_TRANSITIONS = {
    "CREATED": "PENDING",
    "PENDING": "RUNNING",
}


@dataclass
class _DemoJob:
    job_id: str
    stage_name: str
    name: str
    status: str = "CREATED"
    log: list[str] = field(default_factory=list)


@dataclass
class _DemoPipeline:
    project: str
    project_id: str
    iid: str
    branch: str
    created_at: datetime
    jobs: list[_DemoJob] = field(default_factory=list)

    @property
    def status(self) -> str:
        statuses = {j.status for j in self.jobs}
        if "FAILED" in statuses:
            return "FAILED"
        if "RUNNING" in statuses:
            return "RUNNING"
        if statuses <= {"SUCCESS"}:
            return "SUCCESS"
        return "PENDING"


class DemoClient:
    def __init__(self, projects: list[ProjectConfig] | None = None, seed: int | None = None,
                 latency: float = 0.3, failure_rate: float = 0.08):
        self.projects = projects or DEMO_PROJECTS
        self.gitlab_url = "https://gitlab.example.com"
        self.latency = latency
        self.failure_rate = failure_rate
        self._rng = random.Random(seed)
        self._job_counter = 5000
        self._pipelines: dict[str, list[_DemoPipeline]] = {}
        self._by_project_id: dict[str, str] = {}
        now = datetime.now().astimezone()
        for i, project in enumerate(self.projects):
            project_id = str(1001 + i)
            self._by_project_id[project_id] = project.name
            self._pipelines[project.name] = [
                self._new_pipeline(project.name, project_id, str(900 - n), now - timedelta(minutes=17 * n))
                for n in range(max(project.num_pipelines, 1) * 2)
            ]

    def _new_pipeline(self, project: str, project_id: str, iid: str, created_at: datetime) -> _DemoPipeline:
        pipeline = _DemoPipeline(
            project=project,
            project_id=project_id,
            iid=iid,
            branch=self._rng.choice(_DEMO_BRANCHES),
            created_at=created_at,
        )
        finished = created_at < datetime.now().astimezone() - timedelta(minutes=30)
        for stage_name, names in _DEMO_STAGES:
            for name in names:
                self._job_counter += 1
                job = _DemoJob(job_id=str(self._job_counter), stage_name=stage_name, name=name)
                if finished:
                    job.status = "FAILED" if self._rng.random() < self.failure_rate else "SUCCESS"
                    job.log = self._rng.sample(_DEMO_LOG_LINES, 6)
                pipeline.jobs.append(job)
        return pipeline

    # -- simulation ---------------------------------------------------------

    def _advance(self, pipeline: _DemoPipeline) -> None:
        for job in pipeline.jobs:
            if job.status in _TRANSITIONS and self._rng.random() < 0.35:
                job.status = _TRANSITIONS[job.status]
            elif job.status == "RUNNING":
                job.log.extend(self._rng.choice(_DEMO_LOG_LINES) for _ in range(self._rng.randint(1, 8)))
                if self._rng.random() < 0.15:
                    job.status = "FAILED" if self._rng.random() < self.failure_rate else "SUCCESS"

    async def _latency(self) -> None:
        if self.latency:
            await asyncio.sleep(self._rng.uniform(0, self.latency))

    def _find_pipeline(self, project_name: str, pipeline_id: str) -> _DemoPipeline:
        for pipeline in self._pipelines.get(project_name, []):
            if pipeline.iid == pipeline_id:
                return pipeline
        raise FetchError(f"Expected pipeline data for project ({project_name})")

    # -- fetch interface ----------------------------------------------------

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def list_pipelines(self, project: ProjectConfig) -> list[PipelineRecord]:
        await self._latency()
        pipelines = self._pipelines.get(project.name)
        if pipelines is None:
            raise FetchError(f"Failed to get project data ({project.name})")
        res = []
        for p in pipelines:
            self._advance(p)
            if not project.wants_branch(p.branch):
                continue
            res.append(PipelineRecord(
                project_name=p.project,
                pipeline_id=p.iid,
                branch=p.branch,
                web_url=f"{self.gitlab_url}/{p.project}/-/pipelines/{p.iid}",
                status=p.status,
                created_at=p.created_at,
            ))
        return res[: project.num_pipelines]

    async def list_jobs(self, project_name: str, pipeline_id: str) -> list[JobRecord]:
        await self._latency()
        pipeline = self._find_pipeline(project_name, pipeline_id)
        self._advance(pipeline)
        return sort_jobs([
            JobRecord(
                project_id=pipeline.project_id,
                job_id=j.job_id,
                stage_name=j.stage_name,
                name=j.name,
                status=j.status,
            )
            for j in pipeline.jobs
        ])

    async def get_job_log(self, project_id: str, job_id: str) -> str:
        await self._latency()
        project_name = self._by_project_id.get(project_id)
        for pipeline in self._pipelines.get(project_name or "", []):
            for job in pipeline.jobs:
                if job.job_id == job_id:
                    if job.status == "RUNNING":
                        self._advance(pipeline)
                    return "\n".join(job.log)
        raise FetchError(f"Trace request failed (404) for job {job_id}", 404)
