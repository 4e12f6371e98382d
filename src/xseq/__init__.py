"""xseq: functional impact of somatic mutations on gene expression.

This package estimates, for every patient and mutated gene, the
posterior probability that the mutation is functional, i.e. that it
dysregulates the expression of the gene itself (cis) or of genes
connected to it in an influence graph (trans). Parameters are learned
by expectation-maximisation.

"""

__version__ = "0.1.0"

from xseq.estimate_presence import filter_mutations
from xseq.expression_distribution import (
    GeneExpressionDistribution,
    fit_expression_distributions,
)
from xseq.network import InfluenceGraph, reduce_network
from xseq.priors import initialize_prior
from xseq.models import ConditionalProbabilityTable, XseqModel, build_model
from xseq.em import Constraints, learn_parameters
from xseq.posteriors import (
    format_posteriors,
    rank_posteriors,
    summarize_genes,
)
from xseq.analysis import run_analysis

__all__ = [
    "filter_mutations",
    "GeneExpressionDistribution",
    "fit_expression_distributions",
    "InfluenceGraph",
    "reduce_network",
    "initialize_prior",
    "ConditionalProbabilityTable",
    "XseqModel",
    "build_model",
    "Constraints",
    "learn_parameters",
    "format_posteriors",
    "rank_posteriors",
    "summarize_genes",
    "run_analysis",
]
