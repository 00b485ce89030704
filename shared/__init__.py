"""Shared package for the Timesheet application.

Models, errors, logging and report helpers used by both client and server.
"""

__VERSION__ = "1.0.0"
__API_VERSION__ = "v1"
