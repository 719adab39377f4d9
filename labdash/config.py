"""
Config loading -- ``config.yaml`` with kebab-case keys.

Example::

    gitlab-access-token: glpat-xxxxxxxx
    gitlab-url: https://gitlab.com
    projects:
      - name: group/project
        match-branch-re: "^(main|release/.*)$"
        num-pipelines: 5

``GITLAB_ACCESS_TOKEN`` in the environment (or ``.env``) overrides the token.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from labdash.errors import ConfigError

DEFAULT_CONFIG_FILE = "config.yaml"
DEFAULT_GITLAB_URL = "https://gitlab.com"
DEFAULT_NUM_PIPELINES = 5
DEFAULT_MATCH_BRANCH = ".*"
TOKEN_ENV = "GITLAB_ACCESS_TOKEN"


@dataclass(frozen=True)
class ProjectConfig:
    name: str
    match_branch_re: re.Pattern[str] = field(default_factory=lambda: re.compile(DEFAULT_MATCH_BRANCH))
    num_pipelines: int = DEFAULT_NUM_PIPELINES

    def wants_branch(self, branch: str) -> bool:
        return self.match_branch_re.search(branch) is not None


@dataclass(frozen=True)
class Config:
    gitlab_access_token: str
    projects: list[ProjectConfig]
    gitlab_url: str = DEFAULT_GITLAB_URL

    @property
    def project_names(self) -> list[str]:
        return [p.name for p in self.projects]


def _parse_project(raw: Any, index: int) -> ProjectConfig:
    if isinstance(raw, str):
        raw = {"name": raw}
    if not isinstance(raw, dict):
        raise ConfigError(f"projects[{index}] must be a mapping or a project path")

    name = raw.get("name")
    if not name or not isinstance(name, str):
        raise ConfigError(f"projects[{index}] is missing 'name'")

    pattern = raw.get("match-branch-re", DEFAULT_MATCH_BRANCH)
    try:
        match_branch_re = re.compile(str(pattern))
    except re.error as exc:
        raise ConfigError(f"projects[{index}] ({name}): invalid match-branch-re: {exc}") from exc

    num = raw.get("num-pipelines", DEFAULT_NUM_PIPELINES)
    if not isinstance(num, int) or isinstance(num, bool) or num < 1:
        raise ConfigError(f"projects[{index}] ({name}): num-pipelines must be a positive integer")

    return ProjectConfig(name=name, match_branch_re=match_branch_re, num_pipelines=num)


def parse_config(data: Any) -> Config:
    """Build a Config from the decoded YAML document."""
    if not isinstance(data, dict):
        raise ConfigError("config must be a mapping")

    token = os.environ.get(TOKEN_ENV) or data.get("gitlab-access-token")
    if not token:
        raise ConfigError(f"gitlab-access-token is not set (config file or ${TOKEN_ENV})")

    raw_projects = data.get("projects") or []
    if not isinstance(raw_projects, list) or not raw_projects:
        raise ConfigError("at least one project must be configured under 'projects'")

    gitlab_url = str(data.get("gitlab-url") or DEFAULT_GITLAB_URL).rstrip("/")

    return Config(
        gitlab_access_token=str(token),
        projects=[_parse_project(p, i) for i, p in enumerate(raw_projects)],
        gitlab_url=gitlab_url,
    )


def load_config(path: str | Path = DEFAULT_CONFIG_FILE) -> Config:
    """Read and validate a YAML config file."""
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"{p}: config file not found") from exc
    except OSError as exc:
        raise ConfigError(f"{p}: {exc}") from exc

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"{p}: invalid YAML: {exc}") from exc

    try:
        return parse_config(data)
    except ConfigError as exc:
        raise ConfigError(f"{p}: {exc}") from exc
