"""Unit tests for pipeline orchestration."""

import json
import threading

import pytest
import pandas as pd
import yaml

from hdwgcna.config import HdWGCNAConfig
from hdwgcna.core.experiment import HARMONIZED_EIGENGENES, RAW_EIGENGENES, ExperimentStore
from hdwgcna.errors import OperationCancelled
from hdwgcna.pipeline import PipelineLogger, StageExecutor, run_pipeline
from tests.fixtures import majority_labels


class TestPipelineLogger:
    """Tests for PipelineLogger."""

    def test_create_logger(self, tmp_path):
        """Test creating logger with a log directory."""
        logger = PipelineLogger(log_dir=str(tmp_path / "logs"))
        assert logger.log_dir.exists()
        assert logger.log_file.name.startswith("hdwgcna_")
        logger.close()

    def test_console_only(self):
        """Test a logger without a directory has no log file."""
        logger = PipelineLogger()
        assert logger.log_file is None

    def test_stage_events_written(self, tmp_path):
        """Test stage events reach the log file."""
        plog = PipelineLogger(log_dir=str(tmp_path), log_name="hdwgcna.test_events")
        plog.setup(console=False)
        plog.log_stage_start("network", "Network construction")
        plog.log_stage_complete("network", 3.0)
        plog.log_stage_error("dme", "boom")
        plog.close()

        text = plog.log_file.read_text()
        assert "Starting stage network: Network construction" in text
        assert "Stage network completed in 3.0s" in text
        assert "Stage dme failed: boom" in text
        assert plog.logger.handlers == []

    def test_format_duration(self):
        """Test duration formatting."""
        assert PipelineLogger.format_duration(30) == "30.0s"
        assert PipelineLogger.format_duration(90) == "1m 30s"
        assert PipelineLogger.format_duration(3700) == "1h 1m"


class TestStageExecutor:
    """Tests for StageExecutor."""

    def test_dependency_order(self):
        """Test stages run after their dependencies."""
        calls = []
        executor = StageExecutor()
        executor.register_stage("network", lambda **kw: calls.append("network"), ["powers"])
        executor.register_stage("powers", lambda **kw: calls.append("powers"))
        executor.register_stage("metacells", lambda **kw: calls.append("metacells"))
        executor.run()
        assert calls == ["powers", "metacells", "network"]
        assert executor.completed_stages == calls

    def test_results_passed_downstream(self):
        """Test later stages see earlier results."""
        executor = StageExecutor()
        executor.register_stage("a", lambda stage_results: 2)
        executor.register_stage("b", lambda stage_results: stage_results["a"] * 3, ["a"])
        results = executor.run()
        assert results == {"a": 2, "b": 6}
        assert set(executor.durations) == {"a", "b"}

    def test_duplicate_stage(self):
        """Test a stage id can only be registered once."""
        executor = StageExecutor()
        executor.register_stage("a", lambda **kw: None)
        with pytest.raises(ValueError, match="already registered"):
            executor.register_stage("a", lambda **kw: None)

    def test_unknown_dependency(self):
        """Test unknown dependencies are rejected before running."""
        executor = StageExecutor()
        executor.register_stage("a", lambda **kw: None, ["missing"])
        with pytest.raises(ValueError, match="unknown"):
            executor.run()

    def test_circular_dependency(self):
        """Test circular dependencies are detected."""
        executor = StageExecutor()
        executor.register_stage("a", lambda **kw: None, ["b"])
        executor.register_stage("b", lambda **kw: None, ["a"])
        with pytest.raises(ValueError, match="Circular"):
            executor.run()

    def test_failure_stops_run(self, tmp_path):
        """Test a failing stage is logged, re-raised and later stages skipped."""
        def fail(stage_results):
            raise RuntimeError("tree cut failed")

        plog = PipelineLogger(log_dir=str(tmp_path), log_name="hdwgcna.test_failure")
        plog.setup(console=False)
        executor = StageExecutor(logger=plog)
        executor.register_stage("a", fail)
        executor.register_stage("b", lambda **kw: None, ["a"])
        with pytest.raises(RuntimeError):
            executor.run()
        plog.close()

        assert executor.completed_stages == []
        assert "Stage a failed: tree cut failed" in plog.log_file.read_text()

    def test_cancel_event(self):
        """Test a set cancel event stops before the next stage."""
        event = threading.Event()
        executor = StageExecutor(cancel_event=event)
        executor.register_stage("a", lambda **kw: event.set())
        executor.register_stage("b", lambda **kw: None, ["a"])
        with pytest.raises(OperationCancelled):
            executor.run()
        assert executor.completed_stages == ["a"]


@pytest.fixture
def pipeline_config() -> HdWGCNAConfig:
    return HdWGCNAConfig.from_dict(
        {
            "experiment_name": "test",
            "metacell_group_by": ["cluster"],
            "normalize_metacells": False,
            "metacells": {"k": 10, "max_shared": 5, "min_cells": 50},
            "genes": {"method": "all"},
            "soft_power": {"powers": [2, 4, 6, 8]},
            "network": {"soft_power": 6, "min_module_size": 10},
            "eigengenes": {"batch_vars": ["sample"], "harmonize_method": "linear"},
            "dme": {"group_by": "cluster"},
        }
    )


class TestRunPipeline:
    """End-to-end tests for run_pipeline."""

    def test_requires_group_by(self, mock_adata):
        """Test a configuration without metacell groups is rejected."""
        with pytest.raises(ValueError, match="metacell_group_by"):
            run_pipeline(mock_adata, HdWGCNAConfig())

    def test_full_run(self, mock_adata, pipeline_config, tmp_output_dir):
        """Test every artifact is produced and written."""
        store, summary = run_pipeline(
            mock_adata, pipeline_config, output_dir=tmp_output_dir, traits=["score"]
        )

        experiment = store.get("test")
        assert summary["experiment"]["soft_power"] == 6
        assert summary["experiment"]["n_modules"] >= 3
        stages = list(summary["stages"])
        assert stages[:7] == [
            "metacells", "genes", "expression", "powers", "network",
            "eigengenes", "connectivity",
        ]
        assert set(stages[7:]) == {"hubs", "traits", "dme"}

        # eigengenes cover every cell
        assert experiment.eigengenes[RAW_EIGENGENES].shape[0] == mock_adata.n_obs
        assert experiment.eigengenes[HARMONIZED_EIGENGENES].shape == (
            experiment.eigengenes[RAW_EIGENGENES].shape
        )
        assert any(c.startswith("kME_") for c in experiment.modules.columns)
        assert not experiment.hub_genes.empty
        assert set(experiment.traits["group"]) == {"all"}

        out = tmp_output_dir / "test"
        for name in ["power_table.csv", "modules.csv", "MEs.csv", "hMEs.csv",
                     "hub_genes.csv", "module_traits.csv", "dme_cluster_vs_rest.csv"]:
            assert (out / name).exists(), name
        assert (tmp_output_dir / "test_metacells.h5ad").exists()
        assert (tmp_output_dir / "TOM" / "test_TOM.npz").exists()
        assert (tmp_output_dir / "config.yaml").exists()
        record = json.loads((tmp_output_dir / "run_summary.jsonl").read_text().splitlines()[0])
        assert record["experiment"]["name"] == "test"

        documents = [
            d for d in yaml.safe_load_all((tmp_output_dir / "stages.yaml").read_text()) if d
        ]
        assert [d["stage"] for d in documents] == stages
        assert documents[0]["result"]["n_metacells"] > 0

    def test_shifted_module_detected(self, mock_adata, pipeline_config):
        """Test the module shifted in c0 is up in c0 versus the rest."""
        store, _ = run_pipeline(mock_adata, pipeline_config)
        experiment = store.get("test")

        modules = experiment.modules.set_index("gene_name")["module"]
        majority = majority_labels(modules, mock_adata.var["planted"])
        shifted = majority.loc["mod0", "label"]
        assert majority.loc["mod0", "share"] >= 0.9

        dmes = experiment.dmes["cluster_vs_rest"]
        row = dmes[(dmes["group"] == "c0") & (dmes["module"] == shifted)].iloc[0]
        assert row["avg_log2FC"] > 0
        assert row["p_val_adj"] < 0.05

    def test_nothing_written_without_output(self, mock_adata, pipeline_config, tmp_path, monkeypatch):
        """Test no files are written when no output directory is given."""
        monkeypatch.chdir(tmp_path)
        store, summary = run_pipeline(mock_adata, pipeline_config)
        assert "outputs" not in summary
        assert list(tmp_path.iterdir()) == []
        assert store.get("test").network.tom_path is None

    def test_existing_store(self, mock_adata, pipeline_config):
        """Test the experiment is added to a caller-owned store."""
        store = ExperimentStore()
        store.create("other")
        returned, _ = run_pipeline(mock_adata, pipeline_config, store=store)
        assert returned is store
        assert store.names() == ["other", "test"]

    def test_input_not_modified(self, mock_adata, pipeline_config):
        """Test the single-cell data is left untouched."""
        obs = mock_adata.obs.copy()
        X = mock_adata.X.copy()
        run_pipeline(mock_adata, pipeline_config)
        pd.testing.assert_frame_equal(mock_adata.obs, obs)
        assert (mock_adata.X == X).all()


class TestEndToEndScenario:
    """Component-level run on 500 cells x 200 genes with three clusters."""

    def test_metacells_network_dme(self):
        """Test metacells per cluster, at least two modules and valid DME rows."""
        from hdwgcna.core.differential import DMETester
        from hdwgcna.core.eigengenes import ModuleSummarizer
        from hdwgcna.core.metacells import MetacellAggregator, MetacellConfig
        from hdwgcna.core.network import NetworkConfig, NetworkConstructor, select_expression
        from tests.fixtures import create_mock_adata

        adata = create_mock_adata(n_cells=500)
        assert adata.n_vars == 200

        metacells = MetacellAggregator(
            MetacellConfig(k=20, max_shared=5, min_cells=30)
        ).construct(adata, group_by=["cluster"])
        assert set(metacells.group_counts) == {"c0", "c1", "c2"}
        assert all(n >= 1 for n in metacells.group_counts.values())

        dat_expr = select_expression(metacells.adata, list(adata.var_names))
        network = NetworkConstructor(
            NetworkConfig(min_module_size=10, tom_dir=None)
        ).construct(dat_expr, soft_power=6)
        assert network.n_modules >= 2

        mes = ModuleSummarizer().eigengenes(adata, network.modules).mes
        samples = adata.obs["sample"].astype(str)
        dmes = DMETester().two_group(
            mes,
            samples.index[samples == "s0"],
            samples.index[samples == "s1"],
        )
        assert sorted(dmes["module"]) == sorted(mes.columns)
        assert (dmes["p_val_adj"] >= dmes["p_val"]).all()
