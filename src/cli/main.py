"""CLI entry point for the chat context engine."""

import sys
from pathlib import Path

import click

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from cli.commands import context, ingest, memory
from cli.config import load_config_model
from cli.logging_config import setup_logging
from observability import log_run_summary


@click.group()
@click.version_option(version="0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ./context.yaml or ~/.chatctx/config.yaml)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, json_logs: bool, config_path: Path | None):
    """chatctx - context assembly for multi-party chat agents."""
    try:
        config = load_config_model(config_path)
    except ValueError as e:
        raise click.ClickException(str(e))

    level = "DEBUG" if verbose else config.logging.level
    setup_logging(json_mode=json_logs or config.logging.json_mode, level=level)
    ctx.obj = {"config": config}
    ctx.call_on_close(log_run_summary)


cli.add_command(ingest)
cli.add_command(context)
cli.add_command(memory)


if __name__ == "__main__":
    cli()
