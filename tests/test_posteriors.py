"""Tests for posterior tables."""

import pandas as pd
import pytest

from xseq.posteriors import format_posteriors
from xseq.posteriors import rank_posteriors
from xseq.posteriors import summarize_genes


@pytest.fixture
def posteriors():
    index = pd.MultiIndex.from_tuples(
        [("P1", "TP53"), ("P2", "TP53"), ("P1", "KRAS"), ("P3", "MYC")],
        names=["patient_id", "gene_id"])
    return pd.Series([0.9, 0.5, 0.5, 0.1], index=index, name="posterior")


def test_format_keeps_order(posteriors):
    table = format_posteriors(posteriors)
    assert list(table.columns) == ["patient_id", "gene_id", "posterior"]
    assert table.values.tolist() == [
        ["P1", "TP53", 0.9], ["P2", "TP53", 0.5],
        ["P1", "KRAS", 0.5], ["P3", "MYC", 0.1]]


def test_format_is_idempotent(posteriors):
    table = format_posteriors(posteriors)
    again = format_posteriors(
        table.set_index(["patient_id", "gene_id"])["posterior"])
    pd.testing.assert_frame_equal(table, again)


def test_format_accepts_mappings():
    flat = format_posteriors({("P1", "TP53"): 0.9, ("P2", "MYC"): 0.2})
    nested = format_posteriors({"P1": {"TP53": 0.9}, "P2": {"MYC": 0.2}})
    pd.testing.assert_frame_equal(flat, nested)


def test_format_accepts_result_objects(posteriors):
    class Result:
        pass

    result = Result()
    result.posteriors = posteriors
    assert len(format_posteriors(result)) == 4


def test_format_rejects_bad_input(posteriors):
    with pytest.raises(TypeError):
        format_posteriors([0.1, 0.2])
    with pytest.raises(ValueError):
        format_posteriors(posteriors.reset_index(drop=True))


def test_rank_is_stable(posteriors):
    ranked = rank_posteriors(format_posteriors(posteriors))
    assert ranked["gene_id"].tolist() == ["TP53", "TP53", "KRAS", "MYC"]
    assert ranked["posterior"].is_monotonic_decreasing
    ascending = rank_posteriors(
        format_posteriors(posteriors), ascending=True)
    assert ascending["gene_id"].tolist() == ["MYC", "TP53", "KRAS", "TP53"]


def test_summarize_genes(posteriors):
    summary = summarize_genes(format_posteriors(posteriors))
    assert summary.index.tolist() == ["TP53", "KRAS", "MYC"]
    assert summary.loc["TP53", "n_mutations"] == 2
    assert summary.loc["TP53", "mean_posterior"] == pytest.approx(0.7)
    assert summary.loc["TP53", "prob_any_functional"] == pytest.approx(
        1 - 0.1 * 0.5)
