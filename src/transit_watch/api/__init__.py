"""FastAPI application and routes.

This module provides the HTTP surface of the auth subsystem.

## API Structure

- /auth - Discord sign-in, session verification, logout
- /health - Liveness check

## Authentication

Protected endpoints accept the session token as a bearer token or in the
session cookie set at sign-in.
"""

from transit_watch.api.app import create_app

__all__ = ["create_app"]
