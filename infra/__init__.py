# Infrastructure module - configuration and logging
# Settings from YAML + environment, Rich console and JSON file logs

from .config import ExportSettings, ConfigError, load_settings
from .logging import get_logger, configure_logging, RunContext, get_run_id, generate_run_id

__all__ = [
    # Config
    "ExportSettings",
    "ConfigError",
    "load_settings",
    # Logging
    "get_logger",
    "configure_logging",
    "RunContext",
    "get_run_id",
    "generate_run_id",
]
