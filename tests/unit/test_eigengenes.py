"""Unit tests for eigengenes, harmonization, kME, hub genes and traits."""

import pytest
import numpy as np
import pandas as pd

from hdwgcna.core.eigengenes import (
    KME_PREFIX,
    EigengeneConfig,
    HarmonizeMethod,
    ModuleSummarizer,
    compute_eigengenes,
    get_hub_genes,
    harmonize_eigengenes,
    module_eigengene,
    module_levels,
    module_trait_correlation,
)
from hdwgcna.errors import ShapeMismatchError

PLANTED_COLORS = {"mod0": "turquoise", "mod1": "blue", "mod2": "brown", "noise": "grey"}


@pytest.fixture
def planted_modules(mock_adata) -> pd.DataFrame:
    """Module table matching the planted modules of mock_adata."""
    return pd.DataFrame(
        {
            "gene_name": list(mock_adata.var_names),
            "module": pd.Categorical(
                mock_adata.var["planted"].map(PLANTED_COLORS),
                categories=["turquoise", "blue", "brown", "grey"],
            ),
        }
    )


class TestEigengeneConfig:
    """Tests for EigengeneConfig dataclass."""

    def test_default_values(self):
        """Test default configuration values."""
        config = EigengeneConfig()
        assert config.batch_vars == []
        assert config.harmonize_method is HarmonizeMethod.HARMONY
        assert config.n_hub_genes == 10

    def test_to_dict(self):
        """Test enums serialize to their values."""
        d = EigengeneConfig(harmonize_method="linear").to_dict()
        assert d["harmonize_method"] == "linear"


class TestModuleEigengene:
    """Tests for module_eigengene and compute_eigengenes."""

    def test_matches_first_principal_component(self, rng):
        """Test the eigengene spans the first principal component."""
        factor = rng.normal(size=(50, 1))
        values = factor + 0.3 * rng.normal(size=(50, 8))
        me = module_eigengene(values)

        scaled = (values - values.mean(0)) / values.std(0, ddof=1)
        u, s, _ = np.linalg.svd(scaled, full_matrices=False)
        assert abs(np.corrcoef(me, u[:, 0])[0, 1]) == pytest.approx(1.0)
        assert np.linalg.norm(me) == pytest.approx(s[0])

    def test_sign_follows_average(self, rng):
        """Test the eigengene correlates positively with mean expression."""
        values = rng.normal(size=(40, 1)) + 0.2 * rng.normal(size=(40, 6))
        me = module_eigengene(values)
        assert np.corrcoef(me, values.mean(axis=1))[0, 1] > 0.9
        assert np.corrcoef(module_eigengene(-values), -values.mean(axis=1))[0, 1] > 0.9

    def test_column_order_invariant(self, rng):
        """Test permuting genes does not change the eigengene."""
        values = rng.normal(size=(30, 1)) + 0.5 * rng.normal(size=(30, 5))
        np.testing.assert_allclose(
            module_eigengene(values), module_eigengene(values[:, ::-1]), atol=1e-10
        )

    def test_constant_module(self):
        """Test a module without variance gives a zero eigengene."""
        np.testing.assert_array_equal(module_eigengene(np.ones((10, 3))), np.zeros(10))

    def test_module_levels(self, small_modules):
        """Test levels follow category order and exclude grey."""
        assert module_levels(small_modules) == ["turquoise", "blue"]

    def test_compute_eigengenes(self, rng, small_modules):
        """Test one column per assigned module, indexed like the input."""
        expr = pd.DataFrame(
            rng.normal(size=(20, 6)),
            index=[f"c{i}" for i in range(20)],
            columns=small_modules["gene_name"],
        )
        mes = compute_eigengenes(expr, small_modules)
        assert list(mes.columns) == ["turquoise", "blue"]
        assert list(mes.index) == list(expr.index)

    def test_compute_eigengenes_without_grey_genes(self, rng, small_modules):
        """Test unassigned genes need not be in the expression matrix."""
        assigned = small_modules.loc[small_modules["module"] != "grey", "gene_name"]
        expr = pd.DataFrame(rng.normal(size=(20, 5)), columns=list(assigned))
        mes = compute_eigengenes(expr, small_modules)
        assert list(mes.columns) == ["turquoise", "blue"]
        assert mes.shape == (20, 2)

    def test_compute_eigengenes_missing_gene(self, rng, small_modules):
        """Test genes absent from the expression raise ShapeMismatchError."""
        expr = pd.DataFrame(rng.normal(size=(5, 2)), columns=["g1", "g2"])
        with pytest.raises(ShapeMismatchError):
            compute_eigengenes(expr, small_modules)


class TestModuleSummarizer:
    """Tests for ModuleSummarizer."""

    def test_eigengenes_raw(self, mock_adata, planted_modules):
        """Test raw eigengenes without batch variables."""
        result = ModuleSummarizer().eigengenes(mock_adata, planted_modules)
        assert result.mes.shape == (mock_adata.n_obs, 3)
        assert list(result.mes.columns) == ["turquoise", "blue", "brown"]
        assert result.hmes is None
        assert result.to_dict()["harmonized"] is False

    def test_eigengenes_with_unassigned_gene(self, rng):
        """Test a module table with a grey gene yields eigengenes for assigned modules."""
        import anndata as ad

        adata = ad.AnnData(
            X=rng.normal(size=(30, 4)),
            obs=pd.DataFrame(index=[f"cell_{i}" for i in range(30)]),
            var=pd.DataFrame(index=["g1", "g2", "g3", "g4"]),
        )
        modules = pd.DataFrame(
            {
                "gene_name": ["g1", "g2", "g3", "g4"],
                "module": ["turquoise", "turquoise", "blue", "grey"],
            }
        )
        result = ModuleSummarizer().eigengenes(adata, modules)
        assert list(result.mes.columns) == ["turquoise", "blue"]
        assert result.mes.shape == (30, 2)

    def test_eigengenes_harmonized(self, mock_adata, planted_modules):
        """Test harmonized eigengenes have the raw shape and index."""
        summarizer = ModuleSummarizer(EigengeneConfig(harmonize_method="linear"))
        result = summarizer.eigengenes(mock_adata, planted_modules, batch_vars=["sample"])
        assert result.hmes.shape == result.mes.shape
        assert result.hmes.index.equals(result.mes.index)
        assert result.batch_vars == ["sample"]

    def test_eigengenes_group(self, mock_adata, planted_modules):
        """Test restricting eigengenes to one group."""
        result = ModuleSummarizer().eigengenes(
            mock_adata, planted_modules, group_by="cluster", group_name="c1"
        )
        assert result.mes.shape[0] == int((mock_adata.obs["cluster"] == "c1").sum())

    def test_module_connectivity(self, mock_adata, planted_modules):
        """Test kME columns and strong own-module connectivity."""
        summarizer = ModuleSummarizer()
        mes = summarizer.eigengenes(mock_adata, planted_modules).mes
        modules = summarizer.module_connectivity(mock_adata, planted_modules, mes)

        kme_cols = [c for c in modules.columns if c.startswith(KME_PREFIX)]
        assert kme_cols == ["kME_turquoise", "kME_blue", "kME_brown"]
        blue = modules[modules["module"] == "blue"]
        assert (blue["kME_blue"] > 0.7).all()
        assert (blue["kME_blue"] > blue["kME_brown"].abs()).all()
        assert KME_PREFIX + "blue" not in planted_modules.columns

    def test_module_connectivity_replaces_columns(self, mock_adata, planted_modules):
        """Test recomputing kME does not duplicate columns."""
        summarizer = ModuleSummarizer()
        mes = summarizer.eigengenes(mock_adata, planted_modules).mes
        once = summarizer.module_connectivity(mock_adata, planted_modules, mes)
        twice = summarizer.module_connectivity(mock_adata, once, mes)
        assert list(twice.columns) == list(once.columns)

    def test_module_connectivity_missing_observations(self, mock_adata, planted_modules):
        """Test eigengenes missing observations raise ShapeMismatchError."""
        summarizer = ModuleSummarizer()
        mes = summarizer.eigengenes(mock_adata, planted_modules).mes
        with pytest.raises(ShapeMismatchError):
            summarizer.module_connectivity(mock_adata, planted_modules, mes.iloc[:10])

    def test_expression_scores(self, mock_adata, planted_modules):
        """Test hub gene scores track the eigengenes."""
        summarizer = ModuleSummarizer()
        mes = summarizer.eigengenes(mock_adata, planted_modules).mes
        modules = summarizer.module_connectivity(mock_adata, planted_modules, mes)
        scores = summarizer.module_expression_scores(mock_adata, modules, n_genes=5)

        assert list(scores.columns) == ["turquoise", "blue", "brown"]
        for module in scores.columns:
            assert np.corrcoef(scores[module], mes[module])[0, 1] > 0.9

    def test_expression_scores_control(self, mock_adata, planted_modules):
        """Test scanpy control-gene scoring returns one column per module."""
        summarizer = ModuleSummarizer(EigengeneConfig(scoring_method="control"))
        mes = summarizer.eigengenes(mock_adata, planted_modules).mes
        modules = summarizer.module_connectivity(mock_adata, planted_modules, mes)
        scores = summarizer.module_expression_scores(mock_adata, modules, n_genes=5)
        assert scores.shape == (mock_adata.n_obs, 3)

    def test_expression_scores_control_layer(self, mock_adata, planted_modules):
        """Test control scoring reads the requested layer."""
        mock_adata.layers["norm"] = mock_adata.X.copy()
        summarizer = ModuleSummarizer(EigengeneConfig(scoring_method="control"))
        mes = summarizer.eigengenes(mock_adata, planted_modules).mes
        modules = summarizer.module_connectivity(mock_adata, planted_modules, mes)

        from_x = summarizer.module_expression_scores(mock_adata, modules, n_genes=5)
        from_layer = summarizer.module_expression_scores(
            mock_adata, modules, n_genes=5, layer="norm"
        )
        pd.testing.assert_frame_equal(from_x, from_layer)


class TestHubGenes:
    """Tests for get_hub_genes."""

    @pytest.fixture
    def modules_with_kme(self, small_modules):
        modules = small_modules.copy()
        modules["kME_turquoise"] = [0.1, 0.9, 0.5, 0.2, 0.0, 0.9]
        modules["kME_blue"] = [0.8, 0.1, 0.2, 0.95, 0.3, 0.0]
        return modules

    def test_ranking(self, modules_with_kme):
        """Test hubs are ranked by own-module kME, ties by gene name."""
        hubs = get_hub_genes(modules_with_kme, n_hubs=2)
        assert hubs["gene_name"].tolist() == ["g2", "g6", "g4", "g1"]
        assert hubs["module"].tolist() == ["turquoise", "turquoise", "blue", "blue"]
        assert list(hubs.columns) == ["gene_name", "module", "kME"]

    def test_fewer_genes_than_requested(self, modules_with_kme):
        """Test modules smaller than n_hubs return all their genes."""
        hubs = get_hub_genes(modules_with_kme, n_hubs=10)
        assert len(hubs) == 5

    def test_missing_kme(self, small_modules):
        """Test a missing kME column raises KeyError."""
        with pytest.raises(KeyError, match="module_connectivity"):
            get_hub_genes(small_modules)

    def test_invalid_n_hubs(self, modules_with_kme):
        """Test n_hubs below 1 is rejected."""
        with pytest.raises(ValueError):
            get_hub_genes(modules_with_kme, n_hubs=0)


class TestHarmonize:
    """Tests for harmonize_eigengenes."""

    @pytest.fixture
    def batched(self, rng):
        n = 200
        obs = pd.DataFrame(
            {"batch": np.repeat(["a", "b"], n // 2)},
            index=[f"cell_{i}" for i in range(n)],
        )
        mes = pd.DataFrame(
            rng.normal(size=(n, 2)) + np.where(obs[["batch"]] == "b", 5.0, 0.0),
            index=obs.index,
            columns=["turquoise", "blue"],
        )
        return mes, obs

    def test_linear_removes_offset(self, batched):
        """Test linear correction removes additive batch offsets."""
        mes, obs = batched
        hmes = harmonize_eigengenes(mes, obs, "batch", method="linear")
        means = hmes.groupby(obs["batch"]).mean()
        np.testing.assert_allclose(means.loc["a"], means.loc["b"], atol=1e-8)
        np.testing.assert_allclose(hmes.mean(), mes.mean(), atol=1e-8)

    def test_shape_preserved(self, batched):
        """Test index and columns are unchanged."""
        mes, obs = batched
        hmes = harmonize_eigengenes(mes, obs, ["batch"], method="linear")
        assert hmes.index.equals(mes.index)
        assert list(hmes.columns) == list(mes.columns)

    def test_single_batch_unchanged(self, batched, caplog):
        """Test a single batch returns an unchanged copy."""
        mes, obs = batched
        obs = obs.assign(batch="a")
        hmes = harmonize_eigengenes(mes, obs, "batch")
        pd.testing.assert_frame_equal(hmes, mes)
        assert hmes is not mes
        assert "Only one batch" in caplog.text

    def test_missing_column(self, batched):
        """Test a missing batch column raises KeyError."""
        mes, obs = batched
        with pytest.raises(KeyError, match="donor"):
            harmonize_eigengenes(mes, obs, "donor")

    def test_no_batch_vars(self, batched):
        """Test an empty batch list is rejected."""
        mes, obs = batched
        with pytest.raises(ValueError):
            harmonize_eigengenes(mes, obs, [])

    def test_harmony(self, batched):
        """Test Harmony returns a matrix of the input shape."""
        import harmonypy  # noqa: F401

        mes, obs = batched
        hmes = harmonize_eigengenes(mes, obs, "batch", method="harmony")
        assert hmes.shape == mes.shape
        assert hmes.index.equals(mes.index)


class TestModuleTraitCorrelation:
    """Tests for module_trait_correlation."""

    def test_detects_trait(self, mock_adata, planted_modules):
        """Test the planted trait correlates with its module."""
        mes = ModuleSummarizer().eigengenes(mock_adata, planted_modules).mes
        table = module_trait_correlation(mes, mock_adata.obs, ["score"])

        assert list(table.columns) == ["group", "trait", "module", "cor", "p_val", "fdr"]
        row = table.set_index("module").loc["blue"]
        assert row["cor"] > 0.5
        assert row["fdr"] < 0.05

    def test_per_group_blocks(self, mock_adata, planted_modules):
        """Test correlations are reported overall and per group."""
        mes = ModuleSummarizer().eigengenes(mock_adata, planted_modules).mes
        table = module_trait_correlation(
            mes, mock_adata.obs, ["score", "sample"], group_by="cluster"
        )
        assert table["group"].unique().tolist() == ["all", "c0", "c1", "c2"]
        assert len(table) == 4 * 2 * 3

    def test_missing_trait(self, mock_adata, planted_modules):
        """Test an unknown trait raises KeyError."""
        mes = ModuleSummarizer().eigengenes(mock_adata, planted_modules).mes
        with pytest.raises(KeyError):
            module_trait_correlation(mes, mock_adata.obs, ["age"])
