"""
Core infrastructure for sphingo-de.

Provides:
- Configuration management
"""

from sphingo_de.core.config import (
    Config,
    DatasetSpec,
    DEConfig,
    PlotConfig,
    PreprocessConfig,
)

__all__ = [
    "Config",
    "DatasetSpec",
    "DEConfig",
    "PlotConfig",
    "PreprocessConfig",
]
