"""Unit tests for statistical utilities."""

import pytest
import numpy as np

from hdwgcna.utils.stats import (
    CorrectionMethod,
    apply_fdr_correction,
    cor_pvalue_student,
    correlate_columns,
    scale_columns,
)


class TestCorrection:
    """Tests for apply_fdr_correction."""

    def test_benjamini_hochberg(self):
        """Test BH adjusted values against a hand computation."""
        p = np.array([0.01, 0.04, 0.03, 0.2])
        adjusted = apply_fdr_correction(p, "fdr_bh")
        # sorted: 0.01*4/1, 0.03*4/2, 0.04*4/3, 0.2*4/4 then cumulative min from the top
        np.testing.assert_allclose(adjusted, [0.04, 0.05333333, 0.05333333, 0.2])

    def test_bonferroni(self):
        """Test Bonferroni multiplies by the number of tests and caps at 1."""
        adjusted = apply_fdr_correction([0.01, 0.5], CorrectionMethod.BONFERRONI)
        np.testing.assert_allclose(adjusted, [0.02, 1.0])

    def test_holm(self):
        """Test Holm step-down adjustment."""
        adjusted = apply_fdr_correction([0.01, 0.04, 0.03], "holm")
        np.testing.assert_allclose(adjusted, [0.03, 0.06, 0.06])

    def test_none(self):
        """Test no correction returns the raw values."""
        np.testing.assert_array_equal(apply_fdr_correction([0.2, 0.3], "none"), [0.2, 0.3])

    def test_nan_ignored(self):
        """Test NaN p-values stay NaN and are not counted."""
        adjusted = apply_fdr_correction([0.01, np.nan, 0.02], "bonferroni")
        np.testing.assert_allclose(adjusted[[0, 2]], [0.02, 0.04])
        assert np.isnan(adjusted[1])

    def test_empty(self):
        """Test empty input gives empty output."""
        assert apply_fdr_correction([]).shape == (0,)

    def test_unknown_method(self):
        """Test unknown methods are rejected."""
        with pytest.raises(ValueError):
            apply_fdr_correction([0.1], "bh-yekutieli")


class TestScaleColumns:
    """Tests for scale_columns."""

    def test_unit_variance(self, rng):
        """Test columns are centered with unit sample variance."""
        scaled = scale_columns(rng.normal(3.0, 2.0, size=(50, 4)))
        np.testing.assert_allclose(scaled.mean(axis=0), 0.0, atol=1e-12)
        np.testing.assert_allclose(scaled.std(axis=0, ddof=1), 1.0)

    def test_constant_column(self):
        """Test constant columns become zeros."""
        scaled = scale_columns(np.array([[1.0, 2.0], [1.0, 4.0]]))
        np.testing.assert_array_equal(scaled[:, 0], [0.0, 0.0])

    def test_single_row(self):
        """Test a single observation scales to zeros."""
        np.testing.assert_array_equal(scale_columns(np.array([[5.0, 1.0]])), [[0.0, 0.0]])


class TestCorrelation:
    """Tests for correlate_columns and cor_pvalue_student."""

    def test_matches_numpy(self, rng):
        """Test column correlations match np.corrcoef."""
        a = rng.normal(size=(30, 3))
        b = rng.normal(size=(30, 2))
        expected = np.corrcoef(a.T, b.T)[:3, 3:]
        np.testing.assert_allclose(correlate_columns(a, b), expected)

    def test_vector_input(self, rng):
        """Test 1-D inputs are treated as single columns."""
        x = rng.normal(size=20)
        assert correlate_columns(x, 2 * x + 1).shape == (1, 1)
        assert correlate_columns(x, 2 * x + 1)[0, 0] == pytest.approx(1.0)

    def test_constant_column_zero(self, rng):
        """Test correlations with a constant column are zero."""
        cor = correlate_columns(rng.normal(size=(10, 1)), np.ones((10, 1)))
        assert cor[0, 0] == 0.0

    def test_row_mismatch(self):
        """Test differing row counts are rejected."""
        with pytest.raises(ValueError):
            correlate_columns(np.ones((3, 1)), np.ones((4, 1)))

    def test_student_pvalue(self):
        """Test p-values for zero, perfect and moderate correlation."""
        p = cor_pvalue_student([0.0, 1.0, 0.5], 20)
        assert p[0] == pytest.approx(1.0)
        assert p[1] == 0.0
        assert 0.0 < p[2] < 0.05

    def test_student_pvalue_small_n(self):
        """Test fewer than three observations give NaN."""
        assert np.isnan(cor_pvalue_student([0.5], 2)).all()
