"""
Local H5AD dataset loading.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import anndata as ad
import numpy as np
from scipy import sparse as sp

logger = logging.getLogger(__name__)


def load_dataset(
    path: Union[str, Path],
    layer: Optional[str] = None,
) -> ad.AnnData:
    """
    Load a dataset from a local H5AD file into memory.

    Args:
        path: Path to H5AD file.
        layer: Promote this layer to ``.X`` (None keeps ``.X``).

    Returns:
        AnnData with cells x genes expression and aligned cell metadata.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"H5AD file not found: {path}")

    adata = ad.read_h5ad(path)
    if layer is not None:
        if layer not in adata.layers:
            raise KeyError(f"Layer '{layer}' not found in {path}; available: {list(adata.layers)}")
        adata.X = adata.layers[layer].copy()

    validate_dataset(adata, name=str(path))
    logger.info("Loaded %s (%d cells x %d genes)", path, adata.n_obs, adata.n_vars)
    return adata


def validate_dataset(adata: ad.AnnData, name: str = "dataset") -> None:
    """
    Check the invariants the DE engine relies on.

    Raises:
        ValueError: On misaligned metadata, duplicate cell ids or negative values.
    """
    if adata.obs.shape[0] != adata.n_obs:
        raise ValueError(
            f"{name}: metadata has {adata.obs.shape[0]} rows for {adata.n_obs} cells"
        )
    if not adata.obs_names.is_unique:
        raise ValueError(f"{name}: cell identifiers are not unique")

    X = adata.X
    if X is None or 0 in X.shape:
        return
    min_value = X.min() if sp.issparse(X) else np.min(X)
    if min_value < 0:
        raise ValueError(f"{name}: expression values must be non-negative (min={min_value})")


def looks_like_counts(adata: ad.AnnData, n_check: int = 1000) -> bool:
    """True if the first cells of ``.X`` contain only integer values."""
    X = adata.X[: min(n_check, adata.n_obs)]
    values = X.data if sp.issparse(X) else np.asarray(X).ravel()
    if values.size == 0:
        return True
    return bool(np.all(np.equal(np.mod(values, 1), 0)))
