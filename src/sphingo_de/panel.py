"""
Sphingosine-pathway gene panel and display orderings.

The panel is defined once and shared by the DE engine, the result
assembler and the plotting layer.
"""

from __future__ import annotations

# Ordered as displayed on heatmap rows: synthesis, turnover, S1P export and receptors.
SPHINGOSINE_PANEL: tuple[str, ...] = (
    # De novo synthesis
    "SPTLC1",
    "SPTLC2",
    "SPTLC3",
    "KDSR",
    "CERS1",
    "CERS2",
    "CERS3",
    "CERS4",
    "CERS5",
    "CERS6",
    "DEGS1",
    # Ceramide / sphingomyelin turnover
    "SMPD1",
    "UGCG",
    "ASAH1",
    "ASAH2",
    "ACER1",
    "ACER2",
    "ACER3",
    # S1P synthesis and degradation
    "SPHK1",
    "SPHK2",
    "SGPP1",
    "SGPP2",
    "SGPL1",
    # S1P export
    "SPNS2",
    "ABCC1",
    # S1P receptors
    "S1PR1",
    "S1PR2",
    "S1PR3",
    "S1PR4",
    "S1PR5",
)

BULK_STRATUM = "bulk"
"""Name of the pseudo-stratum covering all cells."""

# Colon atlas cell types, grouped by compartment (epithelial, immune, stromal).
STRATUM_ORDER_ALL: tuple[str, ...] = (
    BULK_STRATUM,
    "Stem",
    "TA 1",
    "TA 2",
    "Cycling TA",
    "Enterocyte Progenitors",
    "Immature Enterocytes 1",
    "Immature Enterocytes 2",
    "Enterocytes",
    "Best4+ Enterocytes",
    "Immature Goblet",
    "Goblet",
    "Tuft",
    "Enteroendocrine",
    "M cells",
    "Plasma",
    "Follicular",
    "GC",
    "Cycling B",
    "CD4+ Activated Fos-hi",
    "CD4+ Activated Fos-lo",
    "CD4+ Memory",
    "CD4+ PD1+",
    "Tregs",
    "CD8+ IELs",
    "CD8+ LP",
    "CD8+ IL17+",
    "Cycling T",
    "MT-hi",
    "NKs",
    "ILCs",
    "Macrophages",
    "Inflammatory Monocytes",
    "Cycling Monocytes",
    "DC1",
    "DC2",
    "CD69+ Mast",
    "CD69- Mast",
    "Endothelial",
    "Microvascular",
    "Post-capillary Venules",
    "Pericytes",
    "Glia",
    "Myofibroblasts",
    "Inflammatory Fibroblasts",
    "RSPO3+",
    "WNT2B+ Fos-hi",
    "WNT2B+ Fos-lo 1",
    "WNT2B+ Fos-lo 2",
    "WNT5B+ 1",
    "WNT5B+ 2",
)

# Shorter ordering for the significant-only heatmap: strata with at least one
# BH-significant panel gene in the UC vs HC comparison.
STRATUM_ORDER_SIGNIFICANT: tuple[str, ...] = (
    BULK_STRATUM,
    "Stem",
    "Cycling TA",
    "Immature Enterocytes 2",
    "Enterocytes",
    "Best4+ Enterocytes",
    "Goblet",
    "Plasma",
    "CD4+ Activated Fos-hi",
    "CD8+ IELs",
    "Macrophages",
    "Inflammatory Monocytes",
    "Endothelial",
    "Post-capillary Venules",
    "Inflammatory Fibroblasts",
    "WNT2B+ Fos-hi",
)
