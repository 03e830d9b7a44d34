"""Common CLI options shared by the tracing commands."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import click


def trace_output_options(func: Callable) -> Callable:
    """
    Add the options that shape what a trace shows.

    Adds:
    - -p/--port: Ports to trace (repeatable)
    - -m/--method: Only show calls of these methods (repeatable)
    - -s/--status: Only show responses with these statuses (repeatable)
    - --no-correlate: Don't match responses to their calls
    - --always-show-frame-dump / --always-show-hex
    - -c/--config: YAML file with defaults for all of the above
    - --log-file: Rotating diagnostics log
    - --strict: Treat configuration warnings as errors
    """
    options = [
        click.option(
            "-p",
            "--port",
            "ports",
            type=int,
            multiple=True,
            help="TCP port to trace; repeat for several (default: 4040)",
        ),
        click.option(
            "-m",
            "--method",
            "methods",
            multiple=True,
            help="Only show calls to this method (arg1); repeat for several",
        ),
        click.option(
            "-s",
            "--status",
            "statuses",
            multiple=True,
            help="Only show responses with this status: ok, notok, error "
            "(optionally alias=Label); repeat for several",
        ),
        click.option(
            "--no-correlate",
            is_flag=True,
            help="Don't match responses to their calls (responses show method=unknown)",
        ),
        click.option(
            "--always-show-frame-dump",
            is_flag=True,
            help="Print every frame's fields and arguments",
        ),
        click.option(
            "--always-show-hex",
            is_flag=True,
            help="Print a hex dump of every frame",
        ),
        click.option(
            "-c",
            "--config",
            "config_file",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            help="YAML configuration file",
        ),
        click.option(
            "--log-file",
            type=click.Path(dir_okay=False, path_type=Path),
            help="Also write diagnostics to this file (rotated at 10 MB)",
        ),
        click.option(
            "--strict",
            is_flag=True,
            help="Fail on configuration warnings (e.g. unknown status aliases)",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func
