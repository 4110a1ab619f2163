"""Pytest configuration and shared fixtures for hdwgcna tests."""

import sys
from pathlib import Path

import pytest
import numpy as np
import pandas as pd

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tests.fixtures import create_mock_adata, create_module_expression


# ============================================================================
# Expression Fixtures
# ============================================================================


@pytest.fixture
def module_expression():
    """120 observations x 120 genes: planted modules of 40/30/20 genes plus 30 noise genes."""
    return create_module_expression()


@pytest.fixture
def small_modules() -> pd.DataFrame:
    """Module table for a handful of genes."""
    return pd.DataFrame(
        {
            "gene_name": ["g1", "g2", "g3", "g4", "g5", "g6"],
            "module": pd.Categorical(
                ["blue", "turquoise", "turquoise", "blue", "grey", "turquoise"],
                categories=["turquoise", "blue", "grey"],
            ),
        }
    )


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


# ============================================================================
# AnnData Fixtures
# ============================================================================


@pytest.fixture
def mock_adata():
    """Mock single-cell AnnData: 600 cells, 200 genes, 3 clusters, 2 samples."""
    return create_mock_adata()


@pytest.fixture
def small_adata():
    """Small AnnData for quick metacell tests."""
    return create_mock_adata(n_cells=90, module_sizes=(5, 5), n_noise=10)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def sample_config_yaml(tmp_path) -> Path:
    """Write a small hdwgcna configuration file."""
    import yaml

    config = {
        "hdwgcna": {
            "experiment_name": "test",
            "metacell_group_by": ["cluster"],
            "normalize_metacells": False,
            "metacells": {"k": 10, "max_shared": 5, "min_cells": 50},
            "genes": {"method": "all"},
            "soft_power": {"powers": [2, 4, 6, 8]},
            "network": {"soft_power": 6, "min_module_size": 10, "tom_dir": "TOM"},
            "eigengenes": {"batch_vars": ["sample"], "harmonize_method": "linear"},
            "dme": {"group_by": "cluster"},
        }
    }

    path = tmp_path / "hdwgcna.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f)

    return path


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(7)
