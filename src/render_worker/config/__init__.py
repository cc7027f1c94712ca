"""Configuration package for the render worker.

Re-exports the settings accessor so that callers can write::

    from render_worker.config import get_settings
"""

from render_worker.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
