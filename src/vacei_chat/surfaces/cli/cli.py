import logging

import typer

from ... import __version__
from .commands import register_chat_commands

app = typer.Typer(add_completion=False, help="VACEI engagement chat client.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"vacei-chat {__version__}")
        raise typer.Exit()


@app.callback()
def root(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logs"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    _ = version
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


register_chat_commands(app)


def main() -> None:
    app()


__all__ = ["app", "main"]
