"""Basic usage example for xseq.

This script simulates a small cohort, then runs a cis analysis (does
a mutation dysregulate its own gene?) and a trans analysis (does it
dysregulate the genes it influences?) and prints the ranked
posteriors.
"""

import numpy as np
import pandas as pd

from xseq import InfluenceGraph
from xseq import rank_posteriors
from xseq import run_analysis
from xseq import summarize_genes


def simulate_cohort(n_patients=120, seed=777):
    """Simulate expression and mutations for a handful of genes.

    TP53 loss-of-function carriers under-express TP53 and CDKN1A.
    KRAS carriers look like everybody else.

    Returns
    -------
    mutations : pandas.DataFrame
    expression : pandas.DataFrame
    """
    rng = np.random.default_rng(seed)
    patients = [f"TCGA-{i:04d}" for i in range(n_patients)]
    genes = ["TP53", "CDKN1A", "MDM2", "KRAS", "BRAF"]
    expression = pd.DataFrame(
        rng.normal(0.0, 1.0, size=(n_patients, len(genes))),
        index=patients, columns=genes)

    tp53 = patients[:20]
    kras = patients[20:35]
    expression.loc[tp53, "TP53"] -= 4.0
    expression.loc[tp53, "CDKN1A"] -= 4.0

    mutations = pd.DataFrame({
        "patient_id": tp53 + kras,
        "gene_id": ["TP53"] * len(tp53) + ["KRAS"] * len(kras),
        "mutation_type": ["NONSENSE"] * len(tp53)
                         + ["MISSENSE"] * len(kras)})
    return mutations, expression


def main():
    mutations, expression = simulate_cohort()

    # Cis analysis
    print("Running cis analysis...")
    table, result = run_analysis(
        mutations, expression, cis=True, mutation_type="loss")
    print(f"  converged={result.converged} "
          f"after {result.n_iterations} iterations")
    print(summarize_genes(table))

    # Trans analysis over a small influence graph
    print("\nRunning trans analysis...")
    graph = InfluenceGraph.from_edges(pd.DataFrame({
        "gene_a": ["TP53", "TP53", "KRAS"],
        "gene_b": ["CDKN1A", "MDM2", "BRAF"],
        "weight": [1.0, 0.5, 1.0]}))
    weights = pd.Series(1.0, index=expression.columns)
    table, result = run_analysis(
        mutations, expression, graph, weights, cis=False,
        mutation_type="loss",
        constraints={"equal_functional_rate": False,
                     "fixed_baseline": True})
    print(rank_posteriors(table).head(10))
    for message in result.warnings:
        print(f"  warning: {message}")


if __name__ == "__main__":
    main()


# Alternative: run from the command line
# ======================================
#
#   python -m xseq run --mutations mutations.tsv \
#       --expression expression.tsv --graph graph.tsv \
#       --weights weights.tsv --trans --mutation-type loss \
#       --output posteriors.tsv
