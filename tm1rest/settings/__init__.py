"""Connection settings loading."""

from .app import TM1Settings, get_settings
from .loader import load_connection_configs


__all__ = ["TM1Settings", "get_settings", "load_connection_configs"]
