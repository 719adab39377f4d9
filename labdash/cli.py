"""
labdash CLI -- browse GitLab CI pipelines from the terminal.

Usage:
    labdash                           # reads ./config.yaml
    labdash -c ~/.config/labdash.yaml
    labdash --demo                    # synthetic data, no GitLab needed
    LABDASH_LOG=debug labdash         # log to ./labdash.log
Controls:
    up/down, PgUp/PgDn                # move
    Enter                             # drill into pipeline / job
    R                                 # refresh now
    h                                 # toggle help
    Esc                               # back / quit
"""

from __future__ import annotations

import argparse
import sys
from typing import Any, Optional

import structlog
from dotenv import load_dotenv
from rich.console import Console

from labdash import __version__
from labdash.app import AppContext, ViewStack
from labdash.config import DEFAULT_CONFIG_FILE, load_config
from labdash.demo import DemoClient
from labdash.errors import ConfigError, LabdashError, RenderError
from labdash.events import DEFAULT_TICK_INTERVAL, InputMultiplexer, KeyPoller
from labdash.gitlab import GitLabClient
from labdash.logs import configure_logging
from labdash.refresh import BackgroundLoop
from labdash.screen import Screen
from labdash.views import PipelineListView

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="labdash", description="GitLab CI pipelines terminal dashboard")
    ap.add_argument("-c", "--config-file", default=DEFAULT_CONFIG_FILE,
                    help=f"Path to config.yaml (default {DEFAULT_CONFIG_FILE})")
    ap.add_argument("--demo", action="store_true", help="Synthetic data mode")
    ap.add_argument("--seed", type=int, default=None, help="Random seed for --demo")
    ap.add_argument("--tick-ms", type=int, default=int(DEFAULT_TICK_INTERVAL * 1000),
                    help="Input tick interval in ms (default 200)")
    ap.add_argument("--debug", action="store_true",
                    help="Write debug logs to $LABDASH_LOG_FILE (default labdash.log)")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap


def make_client(args: argparse.Namespace) -> tuple[Any, list]:
    if args.demo:
        client = DemoClient(seed=args.seed)
        return client, client.projects
    cfg = load_config(args.config_file)
    return GitLabClient(cfg.gitlab_access_token, cfg.gitlab_url), cfg.projects


def run(args: argparse.Namespace, console: Console) -> int:
    try:
        client, projects = make_client(args)
    except ConfigError as exc:
        logger.error("config_error", error=str(exc))
        console.print(f"[bold red]✗[/] {exc}")
        return EXIT_USAGE

    runner = BackgroundLoop().start()
    events: Optional[InputMultiplexer] = None
    try:
        runner.run(client.open())
        with KeyPoller() as poller:
            if not poller.enabled:
                console.print("[bold red]✗[/] labdash needs an interactive terminal")
                return EXIT_USAGE
            events = InputMultiplexer(poller, args.tick_ms / 1000.0).start()
            with Screen() as screen:
                ctx = AppContext(
                    client=client,
                    runner=runner,
                    screen=screen,
                    events=events,
                    projects=projects,
                )
                ViewStack(ctx, PipelineListView(ctx)).run()
    except RenderError as exc:
        logger.error("render_failed", error=str(exc))
        console.print(f"[bold red]✗[/] {exc}")
        return EXIT_FAILURE
    except LabdashError as exc:
        logger.error("fatal", error=str(exc))
        console.print(f"[bold red]✗[/] {exc}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        pass
    finally:
        if events is not None:
            events.stop()
        runner.run(client.close(), timeout=5)
        runner.stop()

    logger.info("shutdown")
    return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    load_dotenv()
    log_file = configure_logging(debug=args.debug)
    logger.info("startup", version=__version__, demo=args.demo, log_file=log_file)
    sys.exit(run(args, Console(stderr=True)))


if __name__ == "__main__":
    main()
