"""
Normalization, embedding and clustering of the combined dataset.

Thin wrapper over scanpy. After :func:`preprocess`:

- ``layers["counts"]`` holds raw counts,
- ``.X`` holds log-normalized expression (used for DE and plots),
- ``obsm["X_pca"]``, ``obsm["X_umap"]`` and ``obs["leiden"]`` are set.
"""

from __future__ import annotations

import logging

import anndata as ad
import scanpy as sc

from sphingo_de.core.config import PreprocessConfig
from sphingo_de.ingest.local_h5ad import looks_like_counts

logger = logging.getLogger(__name__)


def normalize(adata: ad.AnnData, target_sum: float = 1e4) -> ad.AnnData:
    """Total-count normalize and log1p-transform in place, keeping raw counts."""
    if not looks_like_counts(adata):
        logger.warning("Expression is not integer-valued; assuming it is already log-normalized")
        return adata
    adata.layers["counts"] = adata.X.copy()
    sc.pp.normalize_total(adata, target_sum=target_sum)
    sc.pp.log1p(adata)
    return adata


def embed_and_cluster(
    adata: ad.AnnData,
    config: PreprocessConfig,
    seed: int = 0,
) -> ad.AnnData:
    """
    PCA on scaled highly variable genes, kNN graph, Leiden and UMAP.

    Scaling is done on a copy so ``.X`` keeps log-normalized values.
    """
    n_top = min(config.n_top_genes, adata.n_vars)
    sc.pp.highly_variable_genes(adata, n_top_genes=n_top, flavor="seurat")

    scaled = adata[:, adata.var["highly_variable"]].copy()
    sc.pp.scale(scaled, max_value=10)
    n_pcs = min(config.n_pcs, scaled.n_vars - 1, scaled.n_obs - 1)
    sc.pp.pca(scaled, n_comps=n_pcs, random_state=seed)
    adata.obsm["X_pca"] = scaled.obsm["X_pca"]

    sc.pp.neighbors(adata, n_neighbors=config.n_neighbors, use_rep="X_pca", random_state=seed)
    sc.tl.leiden(
        adata,
        resolution=config.resolution,
        random_state=seed,
        flavor="igraph",
        n_iterations=2,
    )
    sc.tl.umap(adata, random_state=seed)
    logger.info(
        "Embedded %d cells: %d PCs, %d Leiden clusters",
        adata.n_obs, n_pcs, adata.obs["leiden"].nunique(),
    )
    return adata


def preprocess(
    adata: ad.AnnData,
    config: PreprocessConfig | None = None,
    seed: int = 0,
) -> ad.AnnData:
    """
    Run normalization and clustering in place.

    Args:
        adata: Combined dataset.
        config: Preprocessing parameters.
        seed: Random seed for PCA, Leiden and UMAP.

    Returns:
        The same AnnData, annotated.
    """
    config = config or PreprocessConfig()
    normalize(adata, target_sum=config.target_sum)
    return embed_and_cluster(adata, config, seed=seed)
