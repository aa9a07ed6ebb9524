# Copyright (c) Syntropy Systems
"""Main CLI entry point for abfunnel."""

import typer

from abfunnel.cli.aggregate import aggregate
from abfunnel.cli.init_cmd import init
from abfunnel.cli.sample_size import sample_size
from abfunnel.cli.significance import significance

app = typer.Typer(
    name="abfunnel",
    help=(
        "A/B funnel metrics for browser test suites. Replay saved runs, "
        "check significance, size experiments."
    ),
    no_args_is_help=True,
    add_completion=False,
)

# Register commands
_ = app.command()(init)
_ = app.command()(aggregate)
_ = app.command()(significance)
_ = app.command(name="sample-size")(sample_size)


if __name__ == "__main__":
    app()
