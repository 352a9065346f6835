from __future__ import annotations

import click
from flask import Flask, current_app
from flask.cli import with_appcontext

from .errors import RecipesAPIError


@click.command("create-user")
@click.argument("username")
@click.password_option()
@with_appcontext
def create_user_command(username: str, password: str) -> None:
    """Register USERNAME so it can sign in."""

    users = current_app.config["AUTH_GATE"].users
    try:
        users.add_user(username, password, timeout=current_app.config["STORE_TIMEOUT"])
    except RecipesAPIError as exc:
        raise click.ClickException(exc.message) from exc
    click.echo(f"User '{username}' created.")


def register_cli(app: Flask) -> None:
    app.cli.add_command(create_user_command)


__all__ = ["create_user_command", "register_cli"]
