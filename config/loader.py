"""
Configuration reload utilities for the coordination layer.

The main public function is ``reload_settings()`` which:
1. Reloads environment variables from ``.env`` (via ``dotenv.load_dotenv``).
2. Re‑creates the ``CoordinatorSettings`` instance so that any changed values are applied.
3. Updates the symbols exported by ``config`` (the module‑level globals) to reflect the
   new values.

Already-constructed coordination objects keep the knobs they were built with; a reload
only affects objects constructed afterwards.
"""

from __future__ import annotations

import importlib

import structlog
from dotenv import load_dotenv
from pydantic import ValidationError

logger = structlog.get_logger(__name__)


def reload_settings() -> bool:
    """
    Reload configuration from the environment and refresh the ``config`` package.

    Returns ``True`` on success, ``False`` when the new environment fails validation.
    """
    import config as config_pkg

    # `config.settings` is shadowed by the settings instance on the package.
    settings_mod = importlib.import_module("config.settings")

    load_dotenv(override=True)

    try:
        new_settings = settings_mod.CoordinatorSettings()
    except ValidationError as exc:
        logger.error("Configuration reload rejected; keeping previous settings", error=str(exc))
        return False

    settings_mod.settings = new_settings
    config_pkg.settings = new_settings
    for field_name in settings_mod.CoordinatorSettings.model_fields:
        value = getattr(new_settings, field_name)
        setattr(settings_mod, field_name, value)
        setattr(config_pkg, field_name, value)

    logger.info("Configuration reloaded")
    return True
