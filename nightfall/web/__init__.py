"""HTTP executor for nightfall."""

from nightfall.web.server import create_app, create_app_from_settings, run_server

__all__ = ["create_app", "create_app_from_settings", "run_server"]
