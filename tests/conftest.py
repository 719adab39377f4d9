"""Shared fakes: no terminal, no network, no background threads."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Coroutine, Optional

import pytest
from rich.console import Console

from labdash.app import AppContext
from labdash.config import ProjectConfig
from labdash.errors import FetchError
from labdash.events import Event
from labdash.models import JobRecord, PipelineRecord


class ImmediateRunner:
    """Runs each submitted coroutine to completion on the spot."""

    def __init__(self):
        self.submitted = 0

    def submit(self, coro: Coroutine[Any, Any, Any]) -> None:
        self.submitted += 1
        asyncio.run(coro)


class DeferredRunner:
    """Holds coroutines until the test decides to run them, in any order."""

    def __init__(self):
        self.pending: list[Coroutine[Any, Any, Any]] = []

    def submit(self, coro: Coroutine[Any, Any, Any]) -> None:
        self.pending.append(coro)

    def run(self, index: int) -> None:
        asyncio.run(self.pending.pop(index))

    def close(self) -> None:
        for coro in self.pending:
            coro.close()
        self.pending.clear()


class FakeScreen:
    def __init__(self, width: int = 100, height: int = 20):
        self.width = width
        self.height = height
        self.draws: list[Any] = []
        self.clears = 0

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def draw(self, renderable: Any) -> None:
        self.draws.append(renderable)

    def clear(self) -> None:
        self.clears += 1

    def text(self, index: int = -1) -> str:
        console = Console(width=self.width, height=self.height, record=True, color_system=None)
        with console.capture() as capture:
            console.print(self.draws[index])
        return capture.get()


class ScriptedEvents:
    """Yields the scripted events, then reports the stream closed."""

    def __init__(self, events: list[Event]):
        self.events = list(events)

    def next_event(self, timeout: float | None = None) -> Optional[Event]:
        if not self.events:
            return None
        return self.events.pop(0)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


BASE_TIME = datetime(2026, 3, 14, 9, 26, 53).astimezone()


def make_pipeline(n: int, project: str = "group/app", status: str = "SUCCESS") -> PipelineRecord:
    return PipelineRecord(
        project_name=project,
        pipeline_id=str(100 + n),
        branch=f"feature/{n}",
        web_url=f"https://gitlab.com/{project}/-/pipelines/{100 + n}",
        status=status,
        created_at=BASE_TIME - timedelta(minutes=n),
    )


def make_job(n: int, status: str = "SUCCESS", stage: str = "test") -> JobRecord:
    return JobRecord(project_id="42", job_id=str(7000 + n), stage_name=stage, name=f"job-{n}", status=status)


class FakeClient:
    def __init__(self):
        self.pipelines: dict[str, list[PipelineRecord]] = {}
        self.jobs: list[JobRecord] = []
        self.log = ""
        self.fail = False
        self.calls: list[tuple] = []

    async def list_pipelines(self, project: ProjectConfig) -> list[PipelineRecord]:
        self.calls.append(("pipelines", project.name))
        if self.fail:
            raise FetchError("boom")
        return list(self.pipelines.get(project.name, []))

    async def list_jobs(self, project_name: str, pipeline_id: str) -> list[JobRecord]:
        self.calls.append(("jobs", project_name, pipeline_id))
        if self.fail:
            raise FetchError("boom")
        return list(self.jobs)

    async def get_job_log(self, project_id: str, job_id: str) -> str:
        self.calls.append(("log", project_id, job_id))
        if self.fail:
            raise FetchError("boom")
        return self.log


@pytest.fixture
def client() -> FakeClient:
    c = FakeClient()
    c.pipelines["group/app"] = [make_pipeline(n) for n in range(3)]
    c.jobs = [make_job(0, "FAILED"), make_job(1, "RUNNING"), make_job(2, "PENDING"), make_job(3)]
    c.log = "\n".join(f"line {i}" for i in range(50))
    return c


@pytest.fixture
def screen() -> FakeScreen:
    return FakeScreen()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ctx(client: FakeClient, screen: FakeScreen, clock: FakeClock) -> AppContext:
    return AppContext(
        client=client,
        runner=ImmediateRunner(),
        screen=screen,
        events=ScriptedEvents([]),
        projects=[ProjectConfig(name="group/app")],
        clock=clock,
    )
