# Copyright (c) Syntropy Systems
"""Main CLI entry point for tempo."""

import logging

import typer
from rich.logging import RichHandler

from tempo.cli.agent_cmd import agent
from tempo.cli.catalog_cmd import catalog, scenarios
from tempo.cli.init_cmd import init
from tempo.cli.rebaseline_cmd import rebaseline
from tempo.cli.report_cmd import report
from tempo.cli.run_cmd import distributed, run
from tempo.cli.samples_cmd import samples_app
from tempo.cli.units_cmd import units

app = typer.Typer(
    name="tempo",
    help=(
        "Performance test coordination. Run scenarios against baselines, "
        "catch regressions before they ship."
    ),
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=verbose, rich_tracebacks=True)],
        force=True,
    )


# Register commands
_ = app.command()(init)
_ = app.command()(catalog)
_ = app.command()(scenarios)
_ = app.command()(run)
_ = app.command()(distributed)
_ = app.command()(report)
_ = app.command()(rebaseline)
_ = app.command()(units)
_ = app.command()(agent)

# Register samples sub-app
app.add_typer(samples_app, name="samples")


if __name__ == "__main__":
    app()
