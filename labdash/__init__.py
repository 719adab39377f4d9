"""
labdash -- GitLab CI pipelines in a full-screen terminal dashboard.

Browse pipelines across projects, drill into a pipeline's jobs and tail a
job's log without leaving the keyboard.
"""

__version__ = "0.1.0"
