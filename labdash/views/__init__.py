"""The three screens: pipeline list -> job list -> log viewer."""

from labdash.views.base import Push, Transition, View
from labdash.views.jobs import JobListView
from labdash.views.log_viewer import LogViewerView
from labdash.views.pipelines import PipelineListView

__all__ = [
    "JobListView",
    "LogViewerView",
    "PipelineListView",
    "Push",
    "Transition",
    "View",
]
