"""
Per-stratum dot plots and violin plots of panel gene expression by group.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence, Union

import anndata as ad
import matplotlib.pyplot as plt
import scanpy as sc

from sphingo_de.differential.stratified import StrataSpec
from sphingo_de.encoding import encode_stratum

logger = logging.getLogger(__name__)


def plot_stratum_expression(
    adata: ad.AnnData,
    stratum: str,
    genes: Sequence[str],
    grouping_field: str,
    output_dir: Union[str, Path],
    strata: StrataSpec,
    group_order: Optional[Sequence[str]] = None,
    dpi: int = 300,
) -> dict[str, Path]:
    """
    Save a dot plot and a violin plot for one stratum.

    Args:
        adata: Combined dataset (log-normalized ``.X``).
        stratum: Stratum to draw.
        genes: Genes to show, in display order.
        grouping_field: Column splitting the cells (e.g. disease).
        output_dir: Directory for images.
        strata: Stratum selection the name belongs to.
        group_order: Order of groups on the plots.
        dpi: Image resolution.

    Returns:
        Mapping ``{"dotplot": path, "violin": path}``; empty if nothing to draw.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    mask = strata.mask(adata.obs, stratum)
    genes = [g for g in dict.fromkeys(genes) if g in adata.var_names]
    if not mask.any() or not genes:
        logger.warning("Nothing to plot for stratum '%s'", stratum)
        return {}

    sub = adata[mask, genes].copy()
    groups = sub.obs[grouping_field].astype(str)
    categories = [g for g in (group_order or sorted(groups.unique())) if g in set(groups)]
    sub.obs[grouping_field] = groups.astype("category").cat.set_categories(categories)
    sub = sub[sub.obs[grouping_field].notna()].copy()

    key = encode_stratum(stratum)
    paths: dict[str, Path] = {}

    dot = sc.pl.dotplot(
        sub,
        var_names=genes,
        groupby=grouping_field,
        title=stratum,
        show=False,
        return_fig=True,
    )
    paths["dotplot"] = output_dir / f"dotplot_{key}.png"
    dot.savefig(paths["dotplot"], dpi=dpi, bbox_inches="tight")
    plt.close("all")

    sc.pl.violin(
        sub,
        keys=genes,
        groupby=grouping_field,
        stripplot=False,
        rotation=90,
        show=False,
    )
    fig = plt.gcf()
    fig.suptitle(stratum)
    paths["violin"] = output_dir / f"violin_{key}.png"
    fig.savefig(paths["violin"], dpi=dpi, bbox_inches="tight")
    plt.close("all")

    logger.debug("Saved expression plots for stratum '%s'", stratum)
    return paths
