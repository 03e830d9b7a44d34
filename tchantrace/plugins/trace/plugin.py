"""
Trace plugin: live TChannel tracing on one or more interfaces.

Every interface gets its own capture and TCP tracker; sessions from all of
them share one id sequence and one console.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import click

from tchantrace.core.coordinator import CaptureCoordinator, SourceFactory
from tchantrace.core.options import resolve_options
from tchantrace.plugins import register_plugin
from tchantrace.plugins.base import PluginBase
from tchantrace.utils.cli_options import trace_output_options
from tchantrace.utils.context import ExecutionContext
from tchantrace.utils.errors import handle_error
from tchantrace.utils.logger import console_err, get_logger, setup_logger

logger = get_logger(__name__)


@register_plugin
class TracePlugin(PluginBase):
    """Plugin for tracing TChannel traffic on live interfaces."""

    @property
    def name(self) -> str:
        """Plugin name."""
        return "trace"

    def setup_cli(self, cli_group: click.Group) -> None:
        """Register the trace command."""

        @cli_group.command(name="trace")
        @click.option(
            "-i",
            "--interface",
            "interfaces",
            multiple=True,
            help="Interface to capture on (name or tshark -D index); repeat for several",
        )
        @click.option(
            "-f",
            "--filter",
            "capture_filter",
            help="Base BPF capture filter (default: 'ip proto \\tcp')",
        )
        @click.option(
            "-B",
            "--buffer-size",
            type=click.IntRange(min=1),
            help="Capture buffer size in bytes",
        )
        @trace_output_options
        @click.pass_context
        def trace_command(ctx: click.Context, **kwargs: Any) -> None:
            """
            Trace TChannel calls on live network interfaces.

            Prints a line when capture starts on each interface, when each
            connection starts and ends, and for every decoded frame. Responses
            are matched to their calls so they show the method they answer.

            \b
            Examples:
              tchantrace trace -i eth0
              tchantrace trace -i eth0 -i lo -p 4040 -p 21300
              tchantrace trace -i eth0 -m Hyperbahn::ad -s error
            """
            root = ctx.find_root().obj or {}
            try:
                exit_code = self.execute(verbose=root.get("verbose", 0), **kwargs)
            except KeyboardInterrupt:
                console_err.print("\n[yellow]Interrupted[/yellow]")
                exit_code = 130
            ctx.exit(exit_code)

    def execute(  # type: ignore[override]
        self,
        interfaces: tuple[str, ...] = (),
        capture_filter: str | None = None,
        buffer_size: int | None = None,
        ports: tuple[int, ...] = (),
        methods: tuple[str, ...] = (),
        statuses: tuple[str, ...] = (),
        no_correlate: bool = False,
        always_show_frame_dump: bool = False,
        always_show_hex: bool = False,
        config_file: Path | None = None,
        log_file: Path | None = None,
        strict: bool = False,
        verbose: int = 0,
        source_factory: SourceFactory | None = None,
    ) -> int:
        """
        Execute the trace plugin.

        Args:
            interfaces: Interfaces to capture on (falls back to the config file)
            capture_filter: Base BPF filter
            buffer_size: Capture buffer size in bytes
            ports: Ports to trace
            methods: Method names to show
            statuses: Response status aliases to show
            no_correlate: Disable call correlation
            always_show_frame_dump: Dump every frame's fields
            always_show_hex: Hex dump every frame
            config_file: Optional YAML configuration file
            log_file: Optional diagnostics log file
            strict: Fail on configuration warnings
            verbose: Verbosity for the log file handler
            source_factory: Override for how capture sources are built

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        ExecutionContext.set_strict(strict)
        if log_file:
            setup_logger("tchantrace", verbose, str(log_file))

        coordinator: CaptureCoordinator | None = None
        try:
            options = resolve_options(
                config_file,
                correlate=not no_correlate,
                filter=capture_filter,
                ports=ports,
                interfaces=interfaces,
                buffer_size=buffer_size,
                tracked_methods=methods,
                response_statuses=statuses,
                always_show_frame_dump=always_show_frame_dump or None,
                always_show_hex=always_show_hex or None,
            )
            logger.debug(f"Effective options: {options}")

            coordinator = CaptureCoordinator(options, source_factory=source_factory)
            coordinator.listen()
            coordinator.run()
            return 0
        except Exception as e:
            return handle_error(e, show_traceback=logger.isEnabledFor(logging.DEBUG))
        finally:
            if coordinator is not None:
                coordinator.stop()
