"""
Data ingestion layer.

Loads H5AD datasets, harmonizes their metadata and merges them.
"""

from sphingo_de.ingest.local_h5ad import load_dataset, looks_like_counts, validate_dataset
from sphingo_de.ingest.merge import harmonize_metadata, load_and_merge, merge_datasets

__all__ = [
    "load_dataset",
    "looks_like_counts",
    "validate_dataset",
    "harmonize_metadata",
    "load_and_merge",
    "merge_datasets",
]
