"""CLI entry point for eyes-storybook."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from eyes_storybook import __version__
from eyes_storybook.errors import ConfigurationError
from eyes_storybook.models.config import RunConfig
from eyes_storybook.models.story import load_stories
from eyes_storybook.orchestrator import Orchestrator
from eyes_storybook.reporter.aggregator import FATAL_EXIT_CODE
from eyes_storybook.reporter.reporter import Reporter

DEFAULT_CONFIG_PATH = "eyes-storybook.json"

console = Console()


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    level = logging.DEBUG if (verbose or debug) else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    if not debug:
        # httpx logs every request at INFO
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


@click.group()
@click.version_option(__version__, "--version", message="Version %(version)s")
@click.option("--verbose", "-v", is_flag=True, help="Display more logs")
@click.option("--debug", is_flag=True, help="Display all possible logs and debug information")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """Visual regression tests for Storybook stories."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    setup_logging(verbose, debug)


def _load_config(path: str) -> RunConfig:
    config_path = Path(path)
    if config_path.exists():
        cfg = RunConfig.load(config_path)
        console.print(f"Configuration was loaded from \"{config_path.resolve()}\".")
        return cfg
    if path != DEFAULT_CONFIG_PATH:
        raise ConfigurationError(f"Configuration file cannot be found in \"{config_path.resolve()}\".")
    console.print("No configuration file found. Use default.")
    return RunConfig()


@cli.command()
@click.option("--conf", "-c", default=DEFAULT_CONFIG_PATH, help="Path to configuration file")
@click.option("--stories", "-s", "stories_file", required=True, help="Path to the stories JSON file")
@click.option("--local", "-l", is_flag=True, help="Force to use Browser mode")
@click.option("--concurrency", type=int, default=None, help="Override the maximum number of concurrent stories")
@click.option("--report-dir", default=None, help="Write a JSON report into this directory")
@click.pass_context
def run(ctx: click.Context, conf: str, stories_file: str, local: bool,
        concurrency: int | None, report_dir: str | None) -> None:
    """Capture every story and compare it against its baseline."""
    console.print(f"Used eyes.storybook of version {__version__}.")
    debug = ctx.obj.get("debug", False)
    try:
        cfg = _load_config(conf)
        overrides: dict = {}
        if local:
            overrides["use_remote_rendering"] = False
            logging.getLogger(__name__).info("Forced Browser mode, due to --local argument.")
        if concurrency is not None:
            overrides["concurrency"] = concurrency
        if report_dir:
            overrides["report_output_dir"] = report_dir
        if overrides:
            cfg = cfg.model_copy(update=overrides)
        stories = load_stories(stories_file)
    except (ConfigurationError, FileNotFoundError) as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(FATAL_EXIT_CODE)

    orchestrator = Orchestrator(cfg)
    verdict = orchestrator.run(stories)

    reporter = Reporter(console, cfg.report_output_dir)
    reporter.print_summary(verdict)
    for fmt, path in reporter.generate_reports(verdict, orchestrator.batch.id).items():
        console.print(f"  {fmt.upper()} report: [blue]{path}[/blue]")

    if verdict.fatal_error is not None and not debug:
        console.print("Run with --debug flag to see more logs.")
    sys.exit(verdict.exit_code)


@cli.command()
@click.option("--app-name", "-a", prompt="Application name", help="Name the results are grouped under")
def init(app_name: str) -> None:
    """Create a default configuration file."""
    config_path = Path(DEFAULT_CONFIG_PATH)
    if config_path.exists():
        if not click.confirm(f"{DEFAULT_CONFIG_PATH} already exists. Overwrite?"):
            return

    cfg = RunConfig(app_name=app_name)
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nSet your API key and run:")
    console.print("  [blue]export APPLITOOLS_API_KEY=...[/blue]")
    console.print("  [blue]eyes-storybook run --stories stories.json[/blue]")


if __name__ == "__main__":
    cli()
