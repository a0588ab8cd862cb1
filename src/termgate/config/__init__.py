"""Configuration management for termgate.

Loads and validates YAML-based configuration with Pydantic models.
Supports environment variable overrides via the TERMGATE_ prefix.
"""

from termgate.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
