"""Tests for the initial EM parameters."""

import numpy as np
import pandas as pd
import pytest

from xseq.exceptions import ConfigurationError
from xseq.expression_distribution import GeneExpressionDistribution
from xseq.network import InfluenceGraph
from xseq.priors import dysregulation_template
from xseq.priors import initialize_prior
from xseq.priors import population_baseline


def test_dysregulation_template():
    assert np.allclose(dysregulation_template("loss"), [1, 0, 0])
    assert np.allclose(dysregulation_template("gain"), [0, 0, 1])
    assert np.allclose(dysregulation_template("both"), [0.5, 0, 0.5])
    with pytest.raises(ValueError):
        dysregulation_template("synonymous")


def test_missing_distribution_names_gene(scenario_a):
    mutations, _, _ = scenario_a
    with pytest.raises(ConfigurationError, match="G"):
        initialize_prior({}, mutations, cis=True)


def test_trans_requires_graph(trans_data):
    mutations, _, distributions = trans_data
    with pytest.raises(ConfigurationError):
        initialize_prior(distributions, mutations, cis=False)


def test_cis_passenger_rows_follow_background(scenario_a):
    mutations, _, distributions = scenario_a
    prior = initialize_prior(distributions, mutations, cis=True)

    assert prior.baseline is None
    assert prior.prior == pytest.approx(0.5)
    assert np.allclose(
        prior.cpd.passenger.loc["G"], distributions["G"].weights)
    assert np.allclose(prior.cpd.functional.sum(axis=1), 1.0)


@pytest.mark.parametrize("mutation_type,favoured,other", [
    ("loss", "down", "up"),
    ("gain", "up", "down"),
])
def test_functional_row_favours_dysregulation(
        scenario_a, mutation_type, favoured, other):
    mutations, _, distributions = scenario_a
    prior = initialize_prior(
        distributions, mutations, cis=True, mutation_type=mutation_type)
    row = prior.cpd.functional.loc["G"]
    assert row[favoured] > row["neutral"] > row[other]


def test_trans_baseline_is_shared(trans_data):
    mutations, _, distributions = trans_data
    mutations = pd.concat([mutations, pd.DataFrame({
        "patient_id": ["P20"], "gene_id": ["N2"],
        "mutation_type": ["NONSENSE"]})], ignore_index=True)
    graph = InfluenceGraph.from_mapping(
        {"M": {"N1": 1.0, "N2": 0.1}, "N2": {"N1": 0.5}})
    prior = initialize_prior(
        distributions, mutations, cis=False, mutation_type="loss",
        graph=graph)

    passenger = prior.cpd.passenger.to_numpy()
    assert prior.baseline is not None
    assert np.allclose(passenger, prior.baseline[None, :])
    assert prior.baseline.sum() == pytest.approx(1.0)


def test_expression_seeds_prior(scenario_a):
    mutations, expression, distributions = scenario_a
    prior = initialize_prior(
        distributions, mutations, cis=True, expression=expression)

    row = prior.cpd.functional.loc["G"]
    assert row.idxmax() == "up"
    # every carrier is dysregulated, so the estimate hits the bound
    assert prior.prior == pytest.approx(0.95)
    assert prior.cpd.functional_rate.loc["G"] == pytest.approx(0.95)


def test_forced_prior(scenario_a):
    mutations, expression, distributions = scenario_a
    prior = initialize_prior(
        distributions, mutations, cis=True, expression=expression,
        prior=0.3)
    assert prior.prior == pytest.approx(0.3)


def test_population_baseline_without_informative_genes():
    d = GeneExpressionDistribution.non_informative(
        "A", [1.0, 1.0, 1.0], "constant")
    baseline = population_baseline({"A": d}, ["A"])
    assert baseline.sum() == pytest.approx(1.0)
    assert baseline.argmax() == 1
    assert (baseline > 0).all()
