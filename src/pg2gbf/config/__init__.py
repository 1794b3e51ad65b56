"""
Configuration module for the table export pipeline.
"""

from .settings import (
    Config,
    ConfigurationError,
    ExportConfig,
    PostgresCredentials,
)

__all__ = [
    'Config',
    'ConfigurationError',
    'ExportConfig',
    'PostgresCredentials',
]
