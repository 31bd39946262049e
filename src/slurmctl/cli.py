# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Main CLI entry point for slurmctl.

Umbrella over the standalone programs (slurm-submit, slurm-monitor,
slurm-cancel, service-info, service-serve); each subcommand behaves
exactly like its standalone counterpart.
"""

import typer

from slurmctl import __version__
from slurmctl.commands import cancel, config, monitor, serve, service_info, submit

app = typer.Typer(
    name="slurmctl",
    help="Submit, monitor and cancel Slurm jobs, and manage the inference service job",
    no_args_is_help=True,
)

app.command("submit")(submit.submit)
app.command("monitor")(monitor.monitor)
app.command("cancel")(cancel.cancel)
app.command("service-info")(service_info.service_info)
app.command("serve")(serve.serve)


@app.command()
def version():
    """Show version information."""
    typer.echo(f"slurmctl version {__version__}")


app.add_typer(config.app, name="config")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
