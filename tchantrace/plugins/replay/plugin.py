"""Replay plugin: trace TChannel traffic from saved capture files."""

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
class ReplayPlugin(PluginBase):
    """Plugin for tracing pcap/pcapng files offline."""

    @property
    def name(self) -> str:
        """Plugin name."""
        return "replay"

    def setup_cli(self, cli_group: click.Group) -> None:
        """Register the replay command."""

        @cli_group.command(name="replay")
        @click.option(
            "-r",
            "--read",
            "capture_files",
            type=click.Path(dir_okay=False, path_type=Path),
            multiple=True,
            required=True,
            help="pcap/pcapng file to read; repeat for several",
        )
        @trace_output_options
        @click.pass_context
        def replay_command(ctx: click.Context, **kwargs: Any) -> None:
            """
            Trace TChannel calls recorded in capture files.

            Output is the same as the trace command; each file is treated
            like its own interface.

            \b
            Examples:
              tchantrace replay -r capture.pcap
              tchantrace replay -r a.pcapng -r b.pcapng -p 21300 --always-show-hex
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
        capture_files: tuple[Path, ...] = (),
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
        Execute the replay plugin.

        Args:
            capture_files: Files to read, in order of the listen lines
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
            source_factory: Override for how file sources are built

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
                ports=ports,
                tracked_methods=methods,
                response_statuses=statuses,
                always_show_frame_dump=always_show_frame_dump or None,
                always_show_hex=always_show_hex or None,
            )
            coordinator = CaptureCoordinator(options)
            coordinator.replay(list(capture_files), source_factory=source_factory)
            coordinator.run()
            return 0
        except Exception as e:
            return handle_error(e, show_traceback=logger.isEnabledFor(logging.DEBUG))
        finally:
            if coordinator is not None:
                coordinator.stop()
