"""
Django application initialization.
"""

import os

from ..config import Config


def _export_settings(config: Config, config_path: str | None) -> None:
    # os.environ requires strings, so convert Path objects
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "fiscalflow.web.settings")
    if config_path:
        os.environ["FISCALFLOW_CONFIG"] = str(config_path)
    os.environ["FISCALFLOW_STATE_DB"] = str(config.state_db_path)
    if config.web.debug:
        os.environ["DJANGO_DEBUG"] = "true"


def run_server(
    config: Config,
    config_path: str | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """
    Run the Django development server.

    Args:
        config: Application config
        config_path: Path to config.yaml (re-read by the views)
        host: Host to bind to (overrides config)
        port: Port to listen on (overrides config)
    """
    _export_settings(config, config_path)

    import django

    django.setup()

    from django.core.management import execute_from_command_line

    host = host or config.web.host
    port = port or config.web.port

    print(f"\n🌐 Starting fiscalflow HTTP endpoints at http://{host}:{port}/")
    print(f"💾 State DB: {config.state_db_path}")
    print("\nPress Ctrl+C to stop.\n")

    execute_from_command_line(
        [
            "manage.py",
            "runserver",
            f"{host}:{port}",
            "--noreload",
        ]
    )
