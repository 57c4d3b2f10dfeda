"""
Environment settings shared by the engine's entry points.
"""

from common.config.base_settings import BaseAppSettings

__all__ = ["BaseAppSettings"]
