"""Job list -- jobs of one pipeline, worst first."""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

from rich.text import Text

from labdash.models import JOB_STATUS_STYLE, JobRecord
from labdash.refresh import RefreshPublisher
from labdash.views.base import TableView, View
from labdash.views.log_viewer import LogViewerView

if TYPE_CHECKING:
    from labdash.app import AppContext

HELP_TEXT = """
h               Close help
ESC             Back to pipelines
up/down arrow   Select job
PgUp/PgDn       Move half a screen
Enter           Trace job logs
R               Refresh jobs
"""


class JobListView(TableView[JobRecord]):
    HELP_TEXT = HELP_TEXT
    HIGHLIGHT_STYLE = "bold underline"
    PAGE_KEYS = True

    def __init__(self, ctx: AppContext, project_name: str, pipeline_id: str):
        self.project_name = project_name
        self.pipeline_id = pipeline_id
        publisher = RefreshPublisher(
            ctx.runner,
            lambda: ctx.client.list_jobs(project_name, pipeline_id),
            kind="jobs",
        )
        super().__init__(ctx, publisher)
        self.status_counts: Counter[str] = Counter()

    def on_merge(self) -> None:
        # rows arrive pre-sorted (FAILED, RUNNING, PENDING, rest); never re-sort here
        self.status_counts = Counter(job.status for job in self.state.rows)

    def open(self, row: JobRecord) -> View:
        return LogViewerView(self.ctx, row)

    def title(self) -> str:
        return (
            f"{self.project_name} #{self.pipeline_id} | {self.last_updated()}, "
            f"{len(self.state.rows)} jobs ({self.status_counts.get('PENDING', 0)} pending) (h for help)"
        )

    def columns(self) -> list[tuple[str, int]]:
        return [
            ("Name", 30),
            ("State", 20),
            ("Stage", 50),
        ]

    def cells(self, row: JobRecord) -> list[Text]:
        return [
            Text(row.name),
            Text(row.status, style=JOB_STATUS_STYLE.get(row.status, "")),
            Text(row.stage_name),
        ]
