"""CLI entrypoint for liverun."""

import sys
from pathlib import Path
from typing import Optional

import click

from liverun.config import ConfigError, load_config
from liverun.log import configure_logging
from liverun.session import Session


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="liverun")
@click.argument("lang")
@click.argument("file", required=False)
@click.option(
    "-d",
    "--directory",
    type=click.Path(),
    default=None,
    help="The directory to monitor for changes (default: working directory).",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="YAML config file (default: ./liverun.yaml if present).",
)
@click.option(
    "--staleness",
    type=float,
    default=None,
    help="Seconds after which a running program is killed by a newer change.",
)
@click.option("--no-tui", is_flag=True, help="Stream output as plain text instead of the full-screen display.")
@click.option("--log-file", type=click.Path(dir_okay=False), default=None, help="Write logs to this file.")
@click.option("--debug", is_flag=True, help="Enable debug logging.")
def cli(
    lang: str,
    file: Optional[str],
    directory: Optional[str],
    config_file: Optional[Path],
    staleness: Optional[float],
    no_tui: bool,
    log_file: Optional[str],
    debug: bool,
):
    """Re-run FILE with LANG every time it is saved.

    LANG is an interpreter on your PATH (e.g. python3, node). Without FILE,
    a temporary file is created and opened in $VISUAL; with FILE, every
    file under the monitored directory is watched.
    """
    use_tui = not no_tui and sys.stdout.isatty()

    try:
        config = load_config(
            lang,
            directory=directory,
            config_file=config_file,
            overrides={
                "staleness_threshold_s": staleness,
                "log_file": log_file,
                "debug": True if debug else None,
            },
            use_tui=use_tui,
        )
    except ConfigError as e:
        click.echo(f"liverun: {e}", err=True)
        raise SystemExit(1)

    configure_logging(config.log_file, config.debug, config.use_tui)

    try:
        status = Session(config, file).run()
    except ConfigError as e:
        click.echo(f"liverun: {e}", err=True)
        raise SystemExit(1)

    raise SystemExit(status)


if __name__ == "__main__":
    cli()
