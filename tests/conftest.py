"""Shared synthetic data for the xseq tests."""

import numpy as np
import pandas as pd
import pytest

from xseq.expression_distribution import GeneExpressionDistribution


def tight_distribution(gene, loc=0.0, scale=1.0):
    """Background made of a single component at `loc`."""
    return GeneExpressionDistribution.from_components(
        gene, [1.0], [loc], [scale])


@pytest.fixture
def rng():
    return np.random.default_rng(777)


@pytest.fixture
def scenario_a():
    """Two patients, one gene; the carrier is a far outlier."""
    expression = pd.DataFrame(
        {"G": [5.0, 0.0]}, index=["P1", "P2"])
    mutations = pd.DataFrame({
        "patient_id": ["P1"],
        "gene_id": ["G"],
        "mutation_type": ["MISSENSE"]})
    distributions = {"G": tight_distribution("G", 0.0, 0.1)}
    return mutations, expression, distributions


@pytest.fixture
def trans_data(rng):
    """Gene M mutated in 8 patients that over-express N1 only."""
    patients = [f"P{i}" for i in range(40)]
    expression = pd.DataFrame(
        rng.normal(0.0, 1.0, size=(40, 3)),
        index=patients, columns=["M", "N1", "N2"])
    carriers = patients[:8]
    expression.loc[carriers, "N1"] = 6.0
    mutations = pd.DataFrame({
        "patient_id": carriers,
        "gene_id": ["M"] * 8,
        "mutation_type": ["NONSENSE"] * 8})
    distributions = {
        g: tight_distribution(g) for g in expression.columns}
    return mutations, expression, distributions


@pytest.fixture
def cis_data(rng):
    """Six genes, 80 patients, a mix of driver and passenger genes.

    G0 and G1 carriers are strongly over- or under-expressed, G2 and
    G3 carriers look like the background, G4 is mutated in a single
    patient and G5 is constant (non-informative).
    """
    n = 80
    patients = [f"TCGA-{i:03d}" for i in range(n)]
    genes = [f"G{i}" for i in range(6)]
    expression = pd.DataFrame(
        rng.normal(0.0, 1.0, size=(n, len(genes))),
        index=patients, columns=genes)
    expression["G5"] = 2.0

    records = []
    for gene, carriers, shift in [
            ("G0", range(0, 12), 5.0),
            ("G1", range(10, 20), -5.0),
            ("G2", range(20, 30), 0.0),
            ("G3", range(30, 36), 0.0),
            ("G4", range(40, 41), 0.0),
            ("G5", range(50, 53), 0.0)]:
        for i in carriers:
            expression.loc[patients[i], gene] += shift
            records.append((patients[i], gene, "FRAMESHIFT"))
    mutations = pd.DataFrame(
        records, columns=["patient_id", "gene_id", "mutation_type"])
    return mutations, expression
