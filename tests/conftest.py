"""Pytest configuration and shared fixtures for RIRA tests."""

import sys
from pathlib import Path

import matplotlib
import pytest
import pandas as pd

matplotlib.use("Agg")

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Import mock data generators
from tests.fixtures import (
    MOCK_GATING_PARAMS,
    create_calls_frame,
    create_gating_adata,
)


# ============================================================================
# Mock Data Fixtures
# ============================================================================


@pytest.fixture
def gating_adata():
    """Mock AnnData with 60 cells each of T, B, myeloid, epithelial and stromal."""
    return create_gating_adata()


@pytest.fixture
def small_adata():
    """Mock AnnData with 10 cells per population, below the default min_cells."""
    return create_gating_adata(n_per_population=10, populations=["Tcell", "Bcell"])


@pytest.fixture
def umap_adata():
    """Mock AnnData with an X_umap embedding."""
    return create_gating_adata(n_per_population=20, include_umap=True)


@pytest.fixture
def gating_params():
    """GatingParams tuned for the mock data."""
    from rira.core.gating import GatingParams

    return GatingParams(**MOCK_GATING_PARAMS)


@pytest.fixture
def abc_calls() -> pd.DataFrame:
    """Purity calls for models A, B, C over five cells."""
    return create_calls_frame(
        [
            {"A": True, "B": True},
            {"A": True},
            {"B": True},
            {"C": True},
            {},
        ],
        models=["A", "B", "C"],
    )


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


# ============================================================================
# Gate Definition Fixtures
# ============================================================================


@pytest.fixture
def gate_dir(tmp_path) -> Path:
    """Directory with a master table and two small gate models."""
    directory = tmp_path / "gates"
    directory.mkdir()

    (directory / "master_table.tsv").write_text(
        "name\tsignature\n"
        "Immune\tPTPRC\n"
        "Tcell\tCD3D,CD3E\n"
        "Bcell\tMS4A1,CD79A\n"
    )
    (directory / "Tcell.test.tsv").write_text(
        "levels\tuse_as\tname\tsignature\n"
        "level1\tpositive\tImmune\t\n"
        "level2\tpositive\tTcell\t\n"
        "level2\tnegative\tBcell\t\n"
    )
    (directory / "Bcell.test.tsv").write_text(
        "levels\tuse_as\tname\tsignature\n"
        "level2\tpositive\tBcell\tMS4A1,CD79A,CD19\n"
        "level1\tpositive\tImmune\t\n"
        "level2\tnegative\tTcell\tTcell\n"
    )
    return directory


@pytest.fixture
def model_db_dir(tmp_path) -> Path:
    """Local model database laid out as <db>/human/generic/*.tsv."""
    generic = tmp_path / "scGate_models" / "human" / "generic"
    generic.mkdir(parents=True)

    (generic / "master_table.tsv").write_text(
        "name\tsignature\n"
        "Immune\tPTPRC\n"
        "Myeloid\tLYZ,CD14,CSF1R\n"
    )
    (generic / "Myeloid.tsv").write_text(
        "levels\tuse_as\tname\tsignature\n"
        "level1\tpositive\tImmune\t\n"
        "level2\tpositive\tMyeloid\t\n"
    )
    (generic / "Epithelial.tsv").write_text(
        "levels\tuse_as\tname\tsignature\n"
        "level1\tpositive\tEpithelial\tEPCAM,KRT8,KRT18\n"
        "level1\tnegative\tImmune\t\n"
    )
    (generic / "Male.tsv").write_text(
        "levels\tuse_as\tname\tsignature\n"
        "level1\tpositive\tMale\tDDX3Y,KDM5D\n"
    )
    (generic / "Female.tsv").write_text(
        "levels\tuse_as\tname\tsignature\n"
        "level1\tpositive\tFemale\tXIST\n"
    )
    return tmp_path / "scGate_models"


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def sample_run_config(tmp_path) -> Path:
    """Create sample run configuration file."""
    import yaml

    config = {
        "params": dict(MOCK_GATING_PARAMS),
        "consensus": {
            "drop_ambiguous": True,
            "label_rename": {"Tcell.RM": "T_NK", "NK.RM": "T_NK"},
        },
        "models": ["Tcell.RM", "NK.RM", "Bcell.RM"],
        "output_dir": str(tmp_path / "output"),
    }

    path = tmp_path / "gating.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f)

    return path
