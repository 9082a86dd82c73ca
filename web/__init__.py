"""FastAPI web application for lldap CI.

This module provides the HTTP API for inspecting pipeline runs and the
GitHub webhook that triggers them.

All business logic is delegated to core modules in lldap_ci/.
"""

from web.app import app, create_app

__all__ = ["app", "create_app"]
