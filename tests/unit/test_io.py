"""Unit tests for logging and artifact persistence."""

import json
import logging
from pathlib import Path

import pytest
import numpy as np
import pandas as pd
import yaml

from hdwgcna.core.experiment import RAW_EIGENGENES, WGCNAExperiment
from hdwgcna.errors import ShapeMismatchError
from hdwgcna.io import (
    get_logger,
    get_timestamped_log_path,
    load_metacells,
    load_tom,
    log_json,
    log_yaml,
    save_experiment_tables,
    save_metacells,
    save_tom,
    to_builtin,
    tom_path,
    write_dataframe,
)


class TestTOMStorage:
    """Tests for save_tom / load_tom."""

    def test_save_and_load(self, tmp_output_dir):
        """Test the TOM and gene order are restored."""
        tom = np.array([[1.0, 0.2], [0.2, 1.0]])
        path = save_tom(tom, ["g1", "g2"], tmp_output_dir / "TOM", "INH")

        assert path == tom_path(tmp_output_dir / "TOM", "INH")
        assert path.name == "INH_TOM.npz"
        loaded, genes = load_tom(tmp_output_dir / "TOM", "INH")
        np.testing.assert_array_equal(loaded, tom)
        assert genes == ["g1", "g2"]

    def test_shape_mismatch(self, tmp_output_dir):
        """Test a gene list of the wrong length is rejected."""
        with pytest.raises(ShapeMismatchError):
            save_tom(np.eye(3), ["g1", "g2"], tmp_output_dir, "INH")

    def test_missing_file(self, tmp_output_dir):
        """Test loading an absent TOM raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_tom(tmp_output_dir, "missing")


class TestMetacellStorage:
    """Tests for save_metacells / load_metacells."""

    def test_membership_round_trip(self, small_adata, tmp_output_dir):
        """Test the membership map survives h5ad serialization."""
        adata = small_adata[:3].copy()
        members = {"mc_0": ["cell_0", "cell_1"], "mc_1": ["cell_2"]}
        adata.uns["metacell_members"] = members

        path = save_metacells(adata, tmp_output_dir / "metacells.h5ad")
        assert "metacell_members" in adata.uns

        loaded = load_metacells(path)
        assert loaded.uns["metacell_members"] == members
        assert loaded.n_obs == 3

    def test_missing_file(self, tmp_output_dir):
        """Test loading an absent file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_metacells(tmp_output_dir / "none.h5ad")


class TestTables:
    """Tests for CSV output."""

    def test_write_dataframe_creates_parent(self, tmp_output_dir):
        """Test parent directories are created."""
        path = write_dataframe(pd.DataFrame({"a": [1]}), tmp_output_dir / "x" / "y.csv")
        assert path.exists()
        assert pd.read_csv(path)["a"].tolist() == [1]

    def test_save_experiment_tables(self, tmp_output_dir):
        """Test every present table is written under the experiment name."""
        exp = WGCNAExperiment(name="INH")
        exp.power_table = pd.DataFrame({"Power": [1, 2]})
        exp.eigengenes[RAW_EIGENGENES] = pd.DataFrame(
            {"turquoise": [0.1, 0.2]}, index=["c1", "c2"]
        )
        exp.dmes["case_vs_control"] = pd.DataFrame({"module": ["turquoise"]})

        written = save_experiment_tables(exp, tmp_output_dir)

        assert set(written) == {"power_table", RAW_EIGENGENES, "dme_case_vs_control"}
        assert written["power_table"] == tmp_output_dir / "INH" / "power_table.csv"
        mes = pd.read_csv(written[RAW_EIGENGENES], index_col=0)
        assert list(mes.index) == ["c1", "c2"]


class TestLogging:
    """Tests for logging helpers."""

    def test_timestamped_path(self):
        """Test a timestamp is inserted before the suffix."""
        path = get_timestamped_log_path(Path("logs/network.log"))
        assert path.parent == Path("logs")
        assert path.name.startswith("network_")
        assert path.suffix == ".log"

    def test_get_logger_writes_file(self, tmp_output_dir):
        """Test the stage logger writes to its file."""
        logger, path = get_logger(
            "hdwgcna.test_stage", tmp_output_dir / "stage.log", timestamped=False
        )
        logger.info("hello %s", "network")
        for handler in logger.handlers:
            handler.flush()
        assert path == tmp_output_dir / "stage.log"
        assert "hello network" in path.read_text()
        assert logger.propagate is False

    def test_log_json_appends(self, tmp_output_dir):
        """Test records are appended as JSON lines with numpy values converted."""
        path = tmp_output_dir / "run.jsonl"
        log_json(path, {"power": np.int64(6), "genes": np.array([1, 2])})
        log_json(path, {"power": 8})

        lines = path.read_text().splitlines()
        assert [json.loads(line)["power"] for line in lines] == [6, 8]
        assert json.loads(lines[0])["genes"] == [1, 2]

    def test_log_yaml_file(self, tmp_output_dir):
        """Test YAML documents are separated by ---."""
        path = tmp_output_dir / "run.yaml"
        log_yaml(path, {"stage": "tom"})
        log_yaml(path, {"stage": "cut"})
        docs = [d for d in yaml.safe_load_all(path.read_text()) if d]
        assert docs == [{"stage": "tom"}, {"stage": "cut"}]

    def test_log_yaml_logger(self, tmp_output_dir, caplog):
        """Test YAML documents go to a logger when one is given."""
        logger = logging.getLogger("hdwgcna.test_yaml")
        with caplog.at_level(logging.INFO, logger="hdwgcna.test_yaml"):
            log_yaml(tmp_output_dir / "unused.yaml", {"stage": "tom"}, logger=logger)
        assert "stage: tom" in caplog.text
        assert not (tmp_output_dir / "unused.yaml").exists()

    def test_to_builtin(self):
        """Test nested numpy values and paths become plain types."""
        value = to_builtin({1: (np.float32(0.5), Path("a/b")), "x": np.arange(2)})
        assert value == {"1": [0.5, "a/b"], "x": [0, 1]}
