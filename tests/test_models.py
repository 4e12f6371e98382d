"""Tests for model assembly and validation."""

import numpy as np
import pandas as pd
import pytest

from xseq.exceptions import ConfigurationError
from xseq.exceptions import DataQualityWarning
from xseq.exceptions import NumericalError
from xseq.expression_distribution import GeneExpressionDistribution
from xseq.models import ConditionalProbabilityTable
from xseq.models import build_model
from xseq.network import InfluenceGraph
from xseq.priors import initialize_prior


def _cis_model(mutations, expression, distributions, **kwargs):
    prior = initialize_prior(distributions, mutations, cis=True)
    return build_model(
        mutations, expression, distributions, None, prior.cpd,
        prior.prior, True, **kwargs)


def test_cis_model_uses_self_loops(scenario_a):
    model = _cis_model(*scenario_a)

    assert model.graph.is_self_loop_only()
    assert model.n_instances == 1
    assert list(model.genes) == ["G"]
    assert model.evidence.n_obs_per_instance.tolist() == [1]
    assert model.warnings == ()
    assert list(model.instance_index) == [("P1", "G")]
    assert "cis" in repr(model)


def test_trans_evidence_is_normalised(trans_data):
    mutations, expression, distributions = trans_data
    graph = InfluenceGraph.from_mapping(
        {"M": {"M": 1.0, "N1": 1.0, "N2": 0.1}})
    prior = initialize_prior(
        distributions, mutations, cis=False, graph=graph)
    model = build_model(
        mutations, expression, distributions, graph, prior.cpd,
        prior.prior, False, baseline=prior.baseline)

    evidence = model.evidence
    assert evidence.n_obs_per_instance.tolist() == [2] * 8
    totals = np.bincount(evidence.obs_instance, weights=evidence.obs_weight)
    assert np.allclose(totals, 1.0)
    assert sorted(set(np.round(evidence.obs_weight, 4))) == [
        round(0.1 / 1.1, 4), round(1.0 / 1.1, 4)]


def test_raw_trans_weights(trans_data):
    mutations, expression, distributions = trans_data
    graph = InfluenceGraph.from_mapping({"M": {"N1": 1.0, "N2": 0.1}})
    prior = initialize_prior(
        distributions, mutations, cis=False, graph=graph)
    model = build_model(
        mutations, expression, distributions, graph, prior.cpd,
        prior.prior, False, normalize_weights=False)
    assert sorted(set(model.evidence.obs_weight)) == [0.1, 1.0]


def test_duplicate_instances_rejected(scenario_a):
    mutations, expression, distributions = scenario_a
    doubled = pd.concat([mutations, mutations], ignore_index=True)
    prior = initialize_prior(distributions, mutations, cis=True)
    with pytest.raises(ConfigurationError, match="unique"):
        build_model(doubled, expression, distributions, None,
                    prior.cpd, prior.prior, True)


def test_gene_missing_from_expression(scenario_a):
    mutations, expression, distributions = scenario_a
    with pytest.raises(ConfigurationError, match="expression"):
        _cis_model(mutations, expression.rename(columns={"G": "H"}),
                   distributions)


def test_patient_missing_from_expression(scenario_a):
    mutations, expression, distributions = scenario_a
    with pytest.raises(ConfigurationError, match="patients"):
        _cis_model(mutations, expression.drop(index="P1"), distributions)


def test_missing_values_rejected(scenario_a):
    mutations, expression, distributions = scenario_a
    expression = expression.copy()
    expression.loc["P2", "G"] = np.nan
    with pytest.raises(ConfigurationError):
        _cis_model(mutations, expression, distributions)


def test_mode_and_graph_must_agree(trans_data):
    mutations, expression, distributions = trans_data
    graph = InfluenceGraph.from_mapping({"M": {"N1": 1.0}})
    prior = initialize_prior(
        distributions, mutations, cis=False, graph=graph)

    with pytest.raises(ConfigurationError, match="self-loop"):
        build_model(mutations, expression, distributions, graph,
                    prior.cpd, prior.prior, True)
    with pytest.raises(ConfigurationError, match="graph"):
        build_model(mutations, expression, distributions, None,
                    prior.cpd, prior.prior, False)


def test_trans_passenger_rows_must_match(trans_data):
    mutations, expression, distributions = trans_data
    graph = InfluenceGraph.from_mapping({"M": {"N1": 1.0}})
    prior = initialize_prior(
        distributions, mutations, cis=False, graph=graph)
    with pytest.raises(ConfigurationError, match="baseline"):
        build_model(mutations, expression, distributions, graph,
                    prior.cpd, prior.prior, False,
                    baseline=[0.2, 0.6, 0.2])


@pytest.mark.parametrize("prior", [0.0, 1.0, 1.5])
def test_prior_bounds(scenario_a, prior):
    mutations, expression, distributions = scenario_a
    cpd = initialize_prior(distributions, mutations, cis=True).cpd
    with pytest.raises(ConfigurationError):
        build_model(mutations, expression, distributions, None, cpd,
                    prior, True)


def test_non_informative_gene_warns(scenario_a):
    mutations, expression, _ = scenario_a
    distributions = {"G": GeneExpressionDistribution.non_informative(
        "G", [0.0], "too few background samples")}
    with pytest.warns(DataQualityWarning, match="G"):
        model = _cis_model(mutations, expression, distributions)
    assert len(model.evidence.obs_instance) == 0
    assert len(model.warnings) == 1


def test_invalid_cpd_rows():
    cpd = ConditionalProbabilityTable.from_arrays(
        ["G"], [[0.5, 0.5, 0.5]], [[0.1, 0.8, 0.1]], [0.5])
    with pytest.raises(NumericalError) as info:
        cpd.validate(iteration=3)
    assert info.value.gene == "G"
    assert info.value.iteration == 3


def test_with_cpd_returns_copy(scenario_a):
    model = _cis_model(*scenario_a)
    cpd = ConditionalProbabilityTable.from_arrays(
        ["G"], [[0.1, 0.1, 0.8]], [[0.1, 0.8, 0.1]], [0.9])
    updated = model.with_cpd(cpd)
    assert updated.cpd is cpd
    assert model.cpd is not cpd
    assert updated.evidence is model.evidence
