"""
Differential expression pipeline.

Panel-restricted two-group comparisons of single cells, stratified by cell type.
"""

from sphingo_de.differential.hurdle import (
    HurdleTest,
    hurdle_test,
)
from sphingo_de.differential.wilcoxon import (
    WilcoxonTest,
    wilcoxon_test,
)
from sphingo_de.differential.effect_size import (
    EffectSizeCalculator,
)
from sphingo_de.differential.fdr import (
    FDRCorrector,
    add_panel_corrections,
    whole_transcriptome_adjust,
)
from sphingo_de.differential.stratified import (
    DEResult,
    DERunReport,
    DegenerateTestError,
    InsufficientCellsError,
    NoFeaturesError,
    PanelDifferential,
    StrataSpec,
    StratumFailure,
    run_de,
)

__all__ = [
    # Tests
    "HurdleTest",
    "hurdle_test",
    "WilcoxonTest",
    "wilcoxon_test",
    # Effect size
    "EffectSizeCalculator",
    # Corrections
    "FDRCorrector",
    "add_panel_corrections",
    "whole_transcriptome_adjust",
    # Stratified
    "DEResult",
    "DERunReport",
    "DegenerateTestError",
    "InsufficientCellsError",
    "NoFeaturesError",
    "PanelDifferential",
    "StrataSpec",
    "StratumFailure",
    "run_de",
]
