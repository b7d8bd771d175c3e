"""velobuild CLI entry point and global options."""

import sys
from pathlib import Path
from typing import Literal

import click

from velobuild import __version__
from velobuild.cli.commands import (
    EXIT_FAILURE,
    build,
    cache,
    download,
    export,
    keygen,
    resolve,
    scan,
    verify,
)
from velobuild.cli.output import OutputFormat, OutputFormatter, set_output_format
from velobuild.core.errors import VelobuildError, handle_error
from velobuild.core.logging import configure_logging, set_verbose


@click.group()
@click.option(
    "--format",
    "-f",
    type=click.Choice(["json", "jsonl", "human"]),
    default="json",
    help="Output format (default: json)",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose logging to stderr",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    default=False,
    help="Suppress progress output",
)
@click.option(
    "--log-format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Log format for stderr (default: text)",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Config file (default: ./velobuild.yaml if present)",
)
@click.version_option(version=__version__, prog_name="velobuild")
@click.pass_context
def cli(
    ctx: click.Context,
    format: OutputFormat,
    verbose: bool,
    quiet: bool,
    log_format: Literal["text", "json"],
    config_path: Path | None,
) -> None:
    """velobuild: build offline Velociraptor collectors with verified tools.

    Reads artifact definitions, resolves the external tools they need,
    downloads and verifies those tools and packages everything into a
    self-contained collector with a machine-readable build manifest.
    """
    ctx.ensure_object(dict)
    ctx.obj = {
        "format": format,
        "verbose": verbose,
        "quiet": quiet,
        "log_format": log_format,
        "config_path": config_path,
        "formatter": OutputFormatter(format=format),
    }

    set_output_format(format)
    set_verbose(verbose)
    configure_logging(log_format=log_format, quiet=quiet)


cli.add_command(scan)
cli.add_command(resolve)
cli.add_command(download)
cli.add_command(build)
cli.add_command(export)
cli.add_command(verify)
cli.add_command(cache)
cli.add_command(keygen)


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except VelobuildError as e:
        handle_error(e, EXIT_FAILURE)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
