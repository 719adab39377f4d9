"""GitLab payload parsing, and the client against a local aiohttp server."""

from __future__ import annotations

import asyncio
import re
from typing import Any

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from labdash.config import ProjectConfig
from labdash.errors import FetchError
from labdash.gitlab import GitLabClient, parse_jobs, parse_pipelines

GITLAB = "https://gitlab.example.com"


def pipeline_node(iid: int, ref: str = "main", status: str = "SUCCESS") -> dict[str, Any]:
    return {
        "iid": str(iid),
        "ref": ref,
        "path": f"/group/app/-/pipelines/{iid}",
        "status": status,
        "createdAt": "2026-03-14T09:26:53Z",
    }


def pipelines_payload(*nodes: dict[str, Any]) -> dict[str, Any]:
    return {"project": {"pipelines": {"nodes": list(nodes)}}}


def stage(name: str, *jobs: tuple[int, str, str]) -> dict[str, Any]:
    return {
        "name": name,
        "jobs": {"nodes": [
            {"id": f"gid://gitlab/Ci::Build/{jid}", "name": jname, "status": status}
            for jid, jname, status in jobs
        ]},
    }


def jobs_payload(stages: list[dict[str, Any]], downstream: list[list[dict[str, Any]]] = ()) -> dict[str, Any]:
    return {"project": {
        "id": "gid://gitlab/Project/42",
        "pipeline": {
            "stages": {"nodes": stages},
            "downstream": {"nodes": [{"stages": {"nodes": s}} for s in downstream]},
        },
    }}


class TestParsePipelines:
    def test_records(self) -> None:
        res = parse_pipelines(ProjectConfig(name="group/app"), pipelines_payload(pipeline_node(7)), GITLAB)
        assert len(res) == 1
        p = res[0]
        assert p.project_name == "group/app"
        assert p.pipeline_id == "7"
        assert p.branch == "main"
        assert p.web_url == "https://gitlab.example.com/group/app/-/pipelines/7"
        assert p.status == "SUCCESS"
        assert p.created_at.utcoffset() is not None

    def test_branch_filter_then_limit(self) -> None:
        project = ProjectConfig(name="group/app", match_branch_re=re.compile("^release/"), num_pipelines=2)
        payload = pipelines_payload(
            pipeline_node(1, "main"),
            pipeline_node(2, "release/1"),
            pipeline_node(3, "feature/release/x"),
            pipeline_node(4, "release/2"),
            pipeline_node(5, "release/3"),
        )
        res = parse_pipelines(project, payload, GITLAB)
        assert [p.pipeline_id for p in res] == ["2", "4"]

    @pytest.mark.parametrize("payload", [
        None,
        {"project": None},
        {"project": {"pipelines": None}},
        {"project": {"pipelines": {"nodes": None}}},
        pipelines_payload({"iid": "1", "ref": "main", "status": "SUCCESS", "createdAt": "2026-03-14T09:26:53Z"}),
        pipelines_payload(dict(pipeline_node(1), createdAt="yesterday")),
    ])
    def test_malformed(self, payload) -> None:
        with pytest.raises(FetchError):
            parse_pipelines(ProjectConfig(name="group/app"), payload, GITLAB)


class TestParseJobs:
    def test_sorted_with_project_id(self) -> None:
        payload = jobs_payload([
            stage("build", (1, "compile", "SUCCESS")),
            stage("test", (2, "unit", "RUNNING"), (3, "lint", "FAILED"), (4, "e2e", "PENDING")),
        ])
        jobs = parse_jobs(payload)
        assert [(j.name, j.status) for j in jobs] == [
            ("lint", "FAILED"), ("unit", "RUNNING"), ("e2e", "PENDING"), ("compile", "SUCCESS"),
        ]
        assert {j.project_id for j in jobs} == {"42"}
        assert jobs[0].job_id == "3"
        assert jobs[0].stage_name == "test"

    def test_downstream_jobs_included(self) -> None:
        payload = jobs_payload(
            [stage("trigger", (1, "bridge", "SUCCESS"))],
            downstream=[[stage("child-test", (9, "child", "FAILED"))]],
        )
        jobs = parse_jobs(payload)
        assert [j.name for j in jobs] == ["child", "bridge"]
        assert jobs[0].stage_name == "child-test"

    def test_no_stages(self) -> None:
        with pytest.raises(FetchError, match="No stages"):
            parse_jobs({"project": {"id": "gid://gitlab/Project/1", "pipeline": {"stages": None}}})

    def test_missing_pipeline(self) -> None:
        with pytest.raises(FetchError):
            parse_jobs({"project": {"id": "gid://gitlab/Project/1", "pipeline": None}})


# ---------------------------------------------------------------------------
# Client against a local server
# ---------------------------------------------------------------------------

class FakeGitLab:
    def __init__(self):
        self.requests: list[dict[str, Any]] = []
        self.graphql_status = 200
        self.graphql_errors: list[dict[str, Any]] = []

    async def graphql(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append({"headers": dict(request.headers), "body": body})
        if self.graphql_status != 200:
            return web.Response(status=self.graphql_status, text="nope")
        if self.graphql_errors:
            return web.json_response({"errors": self.graphql_errors})
        variables = body["variables"]
        if "first" in variables:
            data = pipelines_payload(*(pipeline_node(i) for i in range(variables["first"])))
        else:
            data = jobs_payload([stage("test", (5, "unit", "FAILED"))])
        return web.json_response({"data": data})

    async def trace(self, request: web.Request) -> web.Response:
        self.requests.append({"headers": dict(request.headers), "path": request.path})
        if request.match_info["job_id"] == "404":
            return web.Response(status=404)
        return web.Response(body="step 1\nstep 2\n\xff".encode("latin-1"))

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/graphql", self.graphql)
        app.router.add_get("/api/v4/projects/{project_id}/jobs/{job_id}/trace", self.trace)
        return app


def with_client(gitlab: FakeGitLab, body):
    async def go():
        server = TestServer(gitlab.app())
        await server.start_server()
        client = GitLabClient("glpat-secret", f"http://{server.host}:{server.port}/")
        await client.open()
        try:
            return await body(client)
        finally:
            await client.close()
            await server.close()

    return asyncio.run(go())


class TestGitLabClient:
    def test_list_pipelines(self) -> None:
        gitlab = FakeGitLab()
        project = ProjectConfig(name="group/app", num_pipelines=3)
        res = with_client(gitlab, lambda c: c.list_pipelines(project))
        assert len(res) == 3
        sent = gitlab.requests[0]
        assert sent["body"]["variables"] == {"name": "group/app", "first": 3}
        assert sent["headers"]["PRIVATE-TOKEN"] == "glpat-secret"
        assert sent["headers"]["Authorization"] == "Bearer glpat-secret"
        assert res[0].web_url.startswith("http://")

    def test_branch_filter_asks_for_full_page(self) -> None:
        gitlab = FakeGitLab()
        project = ProjectConfig(name="group/app", match_branch_re=re.compile("^main$"), num_pipelines=3)
        res = with_client(gitlab, lambda c: c.list_pipelines(project))
        assert gitlab.requests[0]["body"]["variables"]["first"] == 100
        assert len(res) == 3

    def test_list_jobs(self) -> None:
        gitlab = FakeGitLab()
        res = with_client(gitlab, lambda c: c.list_jobs("group/app", "7"))
        assert [(j.project_id, j.job_id, j.status) for j in res] == [("42", "5", "FAILED")]
        assert gitlab.requests[0]["body"]["variables"] == {"projectName": "group/app", "pipelineId": "7"}

    def test_job_log(self) -> None:
        gitlab = FakeGitLab()
        log = with_client(gitlab, lambda c: c.get_job_log("42", "5"))
        assert log.startswith("step 1\nstep 2\n")
        assert log.endswith("\ufffd")
        assert gitlab.requests[0]["path"] == "/api/v4/projects/42/jobs/5/trace"

    def test_job_log_http_error(self) -> None:
        gitlab = FakeGitLab()
        with pytest.raises(FetchError) as info:
            with_client(gitlab, lambda c: c.get_job_log("42", "404"))
        assert info.value.status_code == 404

    def test_graphql_http_error(self) -> None:
        gitlab = FakeGitLab()
        gitlab.graphql_status = 502
        with pytest.raises(FetchError) as info:
            with_client(gitlab, lambda c: c.list_jobs("group/app", "7"))
        assert info.value.status_code == 502

    def test_graphql_errors(self) -> None:
        gitlab = FakeGitLab()
        gitlab.graphql_errors = [{"message": "field 'x' doesn't exist"}]
        with pytest.raises(FetchError, match="doesn't exist"):
            with_client(gitlab, lambda c: c.list_jobs("group/app", "7"))

    def test_connection_refused(self) -> None:
        async def go():
            client = GitLabClient("t", "http://127.0.0.1:9", timeout=5)
            await client.open()
            try:
                await client.list_jobs("group/app", "7")
            finally:
                await client.close()

        with pytest.raises(FetchError):
            asyncio.run(go())
