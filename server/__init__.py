"""Server package for the Timesheet application.

Flask REST API served by Waitress, acting as the remote authority for
clients configured with the ``rest`` backend.
"""
from .server import app as flask_app
from .server import DEFAULT_SERVER_HOST, DEFAULT_SERVER_PORT, init_server_db, run_server

__all__ = ["run_server", "flask_app", "init_server_db", "DEFAULT_SERVER_HOST", "DEFAULT_SERVER_PORT"]
