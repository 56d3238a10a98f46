"""Pytest configuration and fixtures."""

import matplotlib

matplotlib.use("Agg")

import anndata as ad
import numpy as np
import pandas as pd
import pytest

PANEL_GENES = ["SPHK1", "S1PR1", "SGPL1", "CERS2", "ACER2"]
OTHER_GENES = [f"gene_{i}" for i in range(5)]

CELL_TYPES = {
    # name: (UC cells, HC cells)
    "CD4+ Memory": (30, 30),
    "WNT2B+ Fos-lo 1": (30, 30),
    "Tuft": (2, 2),
}


def _make_counts(seed: int = 42) -> tuple[np.ndarray, pd.DataFrame]:
    rng = np.random.default_rng(seed)
    genes = PANEL_GENES + OTHER_GENES
    blocks = []
    obs_rows = []
    for cell_type, (n_uc, n_hc) in CELL_TYPES.items():
        for disease, n in (("UC", n_uc), ("HC", n_hc)):
            lam = np.full(len(genes), 1.0)
            if cell_type == "CD4+ Memory" and disease == "UC":
                lam[genes.index("SPHK1")] = 6.0
            if cell_type == "WNT2B+ Fos-lo 1" and disease == "HC":
                lam[genes.index("S1PR1")] = 6.0
            counts = rng.poisson(lam, size=(n, len(genes))).astype(float)
            counts[:, genes.index("ACER2")] = 0.0
            blocks.append(counts)
            obs_rows += [{"cell_type": cell_type, "disease": disease}] * n
    counts = np.vstack(blocks)
    obs = pd.DataFrame(obs_rows)
    obs.index = [f"cell_{i}" for i in range(len(obs))]
    return counts, obs


@pytest.fixture
def de_adata():
    """Log-normalized dataset: 3 cell types x UC/HC, panel and non-panel genes."""
    counts, obs = _make_counts()
    var = pd.DataFrame(index=PANEL_GENES + OTHER_GENES)
    adata = ad.AnnData(X=np.log1p(counts), obs=obs, var=var)
    adata.obs["cell_type"] = adata.obs["cell_type"].astype("category")
    adata.obs["disease"] = adata.obs["disease"].astype("category")
    return adata


@pytest.fixture
def counts_adata():
    """Same layout as ``de_adata`` with raw integer counts in ``.X``."""
    counts, obs = _make_counts()
    var = pd.DataFrame(index=PANEL_GENES + OTHER_GENES)
    return ad.AnnData(X=counts, obs=obs, var=var)


@pytest.fixture
def panel():
    return list(PANEL_GENES)


@pytest.fixture
def scenario_adata():
    """
    Two cell types, four genes (G1-G3 in the panel, G4 outside).

    G3 is expressed only in TypeB cells, so it is filtered out of TypeA by
    min_pct but tested in bulk.
    """
    rows = []
    values = []
    high, low = np.log1p(4.0), np.log1p(1.0)
    for cell_type in ("TypeA", "TypeB"):
        for disease in ("UC", "HC"):
            for _ in range(6):
                g1 = high if disease == "UC" else low
                g2 = low if disease == "UC" else high
                g3 = high if (cell_type == "TypeB" and disease == "UC") else 0.0
                g4 = low
                values.append([g1, g2, g3, g4])
                rows.append({"cell_type": cell_type, "disease": disease})
    obs = pd.DataFrame(rows, index=[f"c{i}" for i in range(len(rows))])
    var = pd.DataFrame(index=["G1", "G2", "G3", "G4"])
    return ad.AnnData(X=np.array(values), obs=obs, var=var)
