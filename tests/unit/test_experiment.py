"""Unit tests for the experiment store."""

import pytest
import pandas as pd

from hdwgcna.core.experiment import (
    HARMONIZED_EIGENGENES,
    RAW_EIGENGENES,
    ExperimentStore,
    WGCNAExperiment,
)
from hdwgcna.errors import ExperimentNotFoundError, MissingArtifactError


class TestExperimentStore:
    """Tests for ExperimentStore."""

    def test_create_and_get(self):
        """Test created experiments are retrievable by name."""
        store = ExperimentStore()
        exp = store.create("INH", genes=["a", "b"])
        assert store.get("INH") is exp
        assert store["INH"].genes == ["a", "b"]
        assert "INH" in store
        assert len(store) == 1

    def test_duplicate_name(self):
        """Test creating an existing name fails unless overwriting."""
        store = ExperimentStore()
        store.create("INH")
        with pytest.raises(ValueError, match="already exists"):
            store.create("INH")
        replaced = store.create("INH", overwrite=True, genes=["x"])
        assert store.get("INH") is replaced

    def test_empty_name(self):
        """Test an empty name is rejected."""
        with pytest.raises(ValueError):
            ExperimentStore().create("")

    def test_unknown_name(self):
        """Test unknown names raise ExperimentNotFoundError (a KeyError)."""
        store = ExperimentStore()
        store.create("INH")
        with pytest.raises(ExperimentNotFoundError, match="available"):
            store.get("EX")
        with pytest.raises(KeyError):
            store["EX"]

    def test_copy_is_independent(self):
        """Test copies share no mutable state with the source."""
        store = ExperimentStore()
        source = store.create("INH", genes=["a", "b"])
        source.eigengenes[RAW_EIGENGENES] = pd.DataFrame({"turquoise": [1.0, 2.0]})

        duplicate = store.copy("INH", "INH_v2")
        duplicate.genes.append("c")
        duplicate.eigengenes[RAW_EIGENGENES].iloc[0, 0] = 99.0

        assert duplicate.name == "INH_v2"
        assert source.genes == ["a", "b"]
        assert source.eigengenes[RAW_EIGENGENES].iloc[0, 0] == 1.0
        assert store.names() == ["INH", "INH_v2"]

    def test_copy_existing_target(self):
        """Test copying onto an existing name fails."""
        store = ExperimentStore()
        store.create("A")
        store.create("B")
        with pytest.raises(ValueError):
            store.copy("A", "B")

    def test_remove(self):
        """Test removed experiments are no longer available."""
        store = ExperimentStore()
        store.create("INH")
        removed = store.remove("INH")
        assert removed.name == "INH"
        assert "INH" not in store
        assert list(store) == []


class TestWGCNAExperiment:
    """Tests for WGCNAExperiment."""

    def test_require_missing(self):
        """Test missing artifacts raise MissingArtifactError."""
        exp = WGCNAExperiment(name="INH")
        with pytest.raises(MissingArtifactError, match="power_table"):
            exp.require("power_table", "network construction")
        with pytest.raises(MissingArtifactError):
            exp.require("genes", "expression setup")

    def test_require_present(self):
        """Test present artifacts are returned."""
        exp = WGCNAExperiment(name="INH", genes=["a"])
        assert exp.require("genes", "expression setup") == ["a"]

    def test_get_mes_prefers_harmonized(self):
        """Test harmonized eigengenes are returned when present."""
        raw = pd.DataFrame({"turquoise": [1.0]})
        harmonized = pd.DataFrame({"turquoise": [2.0]})
        exp = WGCNAExperiment(name="INH")
        exp.eigengenes[RAW_EIGENGENES] = raw
        assert exp.get_mes() is raw

        exp.eigengenes[HARMONIZED_EIGENGENES] = harmonized
        assert exp.get_mes() is harmonized
        assert exp.get_mes(harmonized=False) is raw

    def test_get_mes_missing(self):
        """Test an experiment without eigengenes raises."""
        with pytest.raises(MissingArtifactError):
            WGCNAExperiment(name="INH").get_mes()

    def test_summary_empty(self):
        """Test summary of an empty experiment."""
        summary = WGCNAExperiment(name="INH").summary()
        assert summary["n_metacells"] == 0
        assert summary["soft_power"] is None
        assert summary["n_modules"] == 0
