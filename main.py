"""WSGI entrypoint for the recipes API.

Run with any WSGI server, for example ``gunicorn main:app``. Local
development can use ``flask --app main run``, and users are registered with
``flask --app main create-user NAME``.
"""

from recipes_api import create_app

app = create_app()


__all__ = ["app"]
