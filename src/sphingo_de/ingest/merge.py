"""
Metadata harmonization and merging of several datasets.

Public datasets annotate the same concepts under different column names
(``Cluster`` vs ``cell_type``, ``Health`` vs ``disease``). Each dataset is
renamed onto a shared schema, tagged with its provenance and concatenated.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

import anndata as ad
import pandas as pd

from sphingo_de.core.config import DatasetSpec
from sphingo_de.ingest.local_h5ad import load_dataset

logger = logging.getLogger(__name__)


def harmonize_metadata(
    adata: ad.AnnData,
    column_map: Optional[Mapping[str, str]] = None,
    keep: Optional[Sequence[str]] = None,
    name: str = "dataset",
) -> ad.AnnData:
    """
    Rename metadata columns onto the shared schema.

    Args:
        adata: Dataset to harmonize (not modified).
        column_map: Source column -> shared column.
        keep: Shared columns to retain; all must be present.
        name: Dataset name for error messages.

    Returns:
        Copy with renamed and restricted ``obs``.
    """
    adata = adata.copy()
    obs = adata.obs.rename(columns=dict(column_map or {}))

    if keep is not None:
        missing = [c for c in keep if c not in obs.columns]
        if missing:
            raise KeyError(
                f"{name}: metadata is missing fields {missing}; "
                f"available: {list(obs.columns)}"
            )
        obs = obs[list(keep)]

    adata.obs = obs
    return adata


def merge_datasets(
    datasets: Mapping[str, ad.AnnData],
    provenance_key: str = "dataset",
    categorical: Optional[Sequence[str]] = None,
) -> ad.AnnData:
    """
    Concatenate harmonized datasets into one.

    Genes are intersected; cell ids are made unique by suffixing the dataset
    name.

    Args:
        datasets: Dataset name -> AnnData (already harmonized).
        provenance_key: Metadata column recording the source dataset.
        categorical: Metadata columns converted to categoricals.

    Returns:
        Combined AnnData.
    """
    if not datasets:
        raise ValueError("No datasets to merge")

    combined = ad.concat(
        dict(datasets),
        join="inner",
        label=provenance_key,
        index_unique="-",
        merge="same",
    )

    for col in categorical or []:
        if col in combined.obs.columns:
            combined.obs[col] = combined.obs[col].astype(str).astype("category")

    logger.info(
        "Merged %d datasets: %d cells x %d shared genes",
        len(datasets), combined.n_obs, combined.n_vars,
    )
    return combined


def load_and_merge(
    specs: Sequence[DatasetSpec],
    fields: Sequence[str],
    provenance_key: str = "dataset",
) -> ad.AnnData:
    """
    Load, harmonize and merge the configured datasets.

    Args:
        specs: Dataset specifications.
        fields: Shared metadata fields every dataset must provide.
        provenance_key: Metadata column recording the source dataset.

    Returns:
        Combined AnnData.
    """
    if not specs:
        raise ValueError("No datasets configured")

    fields = list(dict.fromkeys(fields))
    harmonized = {}
    for spec in specs:
        adata = load_dataset(spec.path)
        harmonized[spec.name] = harmonize_metadata(
            adata, spec.column_map, keep=fields, name=spec.name
        )

    if len(harmonized) == 1:
        (name, adata), = harmonized.items()
        adata.obs[provenance_key] = pd.Categorical([name] * adata.n_obs)
        for col in fields:
            adata.obs[col] = adata.obs[col].astype(str).astype("category")
        return adata

    return merge_datasets(harmonized, provenance_key=provenance_key, categorical=fields)
