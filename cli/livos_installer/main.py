from __future__ import annotations

import typer

from .commands import backups_cmd, config_cmd, install_cmd, settings_cmd, status_cmd, update_cmd
from .logging_ import setup_logging


def _build_app() -> typer.Typer:
    app = typer.Typer(
        name="livos-installer",
        help="Install, update and migrate a LivOS server.",
        no_args_is_help=True,
    )

    app.command("install")(install_cmd.install)
    app.command("update")(update_cmd.update)
    app.command("status")(status_cmd.status)
    app.add_typer(backups_cmd.app, name="backups")
    app.add_typer(config_cmd.app, name="config")
    app.add_typer(settings_cmd.app, name="settings")

    @app.callback()
    def _main(
            verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose logs."),
    ):
        setup_logging(verbose)

    return app


app = _build_app()
