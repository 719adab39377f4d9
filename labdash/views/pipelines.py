"""Pipeline list -- the top-level screen."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from rich.text import Text

from labdash.config import ProjectConfig
from labdash.models import PIPELINE_STATUS_STYLE, TIME_FORMAT, PipelineRecord
from labdash.refresh import RefreshPublisher
from labdash.views.base import TableView, View
from labdash.views.jobs import JobListView

if TYPE_CHECKING:
    from labdash.app import AppContext

HELP_TEXT = """
h               Close help
ESC             Exit
up/down arrow   Select pipeline
Enter           List pipeline jobs
R               Refresh pipelines
"""


async def fetch_all_pipelines(client: Any, projects: list[ProjectConfig]) -> list[PipelineRecord]:
    """Pipelines of every project, concatenated in config order."""
    batches = await asyncio.gather(*(client.list_pipelines(p) for p in projects))
    return [pipeline for batch in batches for pipeline in batch]


class PipelineListView(TableView[PipelineRecord]):
    HELP_TEXT = HELP_TEXT

    def __init__(self, ctx: AppContext):
        publisher = RefreshPublisher(
            ctx.runner,
            lambda: fetch_all_pipelines(ctx.client, ctx.projects),
            kind="pipelines",
        )
        super().__init__(ctx, publisher)

    def open(self, row: PipelineRecord) -> View:
        return JobListView(self.ctx, row.project_name, row.pipeline_id)

    def title(self) -> str:
        return f"{self.last_updated()}, {len(self.state.rows)} pipelines (h for help)"

    def columns(self) -> list[tuple[str, int]]:
        return [
            ("Project", 15),
            ("Branch", 20),
            ("Created At", 15),
            ("URL", 40),
            ("Status", 10),
        ]

    def cells(self, row: PipelineRecord) -> list[Text]:
        return [
            Text(row.project_name),
            Text(row.branch),
            Text(row.created_at.strftime(TIME_FORMAT)),
            Text(row.web_url),
            Text(row.status, style=PIPELINE_STATUS_STYLE.get(row.status, "")),
        ]
