"""Main CLI entry point for tchantrace."""

import click

from tchantrace import __version__
from tchantrace.plugins import discover_plugins, get_all_plugins
from tchantrace.utils.logger import setup_logger

EXAMPLES = """Examples:

\b
  tchantrace trace -i eth0                         # default port 4040
  tchantrace trace -i eth0 -i lo -p 4040 -p 21300
  tchantrace trace -i eth0 -m Hyperbahn::ad -s notok -s error
  tchantrace replay -r capture.pcap
"""


@click.group(context_settings=dict(help_option_names=["-h", "--help"]), epilog=EXAMPLES)
@click.version_option(version=__version__, prog_name="tchantrace")
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v for INFO, -vv for DEBUG)")
@click.pass_context
def cli(ctx: click.Context, verbose: int) -> None:
    """
    Passive TChannel traffic tracer.

    Watches TCP traffic on network interfaces, splits it into sessions and
    prints every TChannel frame with the method its response answers.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["logger"] = setup_logger("tchantrace", verbose)


discover_plugins()
for _plugin_class in get_all_plugins():
    _plugin_class().setup_cli(cli)


def main() -> None:
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
