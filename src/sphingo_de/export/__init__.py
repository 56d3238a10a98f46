"""
Output generation.

Writers for per-stratum TSV tables and combined CSV tables.
"""

from sphingo_de.export.writer import ResultWriter, STRATUM_SUFFIX

__all__ = [
    "ResultWriter",
    "STRATUM_SUFFIX",
]
