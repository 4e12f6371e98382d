"""End-to-end cis or trans analysis.

Chains the steps of the model: mutation filtering, expression
distributions, network reduction, prior initialisation, model
assembly, EM learning and posterior formatting. Also usable from the
command line:

    python -m xseq run --mutations mut.tsv --expression expr.tsv \\
        --mutation-type loss --cis --output posteriors.tsv
"""

import argparse
import logging
import sys

import pandas as pd

from .constants import DEFAULT_ITER_MAX
from .constants import DEFAULT_THRESHOLD
from .constants import DEFAULT_PSEUDOCOUNT
from .constants import DEFAULT_WEIGHT_THRESHOLD
from .estimate_presence import filter_mutations
from .exceptions import XseqError
from .expression_distribution import fit_expression_distributions
from .em import Constraints
from .em import learn_parameters
from .models import build_model
from .network import InfluenceGraph
from .network import reduce_network
from .posteriors import format_posteriors
from .priors import initialize_prior


logger = logging.getLogger(__name__)


def run_analysis(
        mutations: pd.DataFrame,
        expression: pd.DataFrame,
        graph: InfluenceGraph | None = None,
        gene_weights: pd.Series | None = None,
        *,
        cis: bool = True,
        mutation_type: str = "both",
        constraints=None,
        iter_max: int = DEFAULT_ITER_MAX,
        threshold: float = DEFAULT_THRESHOLD,
        pseudocount: float = DEFAULT_PSEUDOCOUNT,
        weight_threshold: float = DEFAULT_WEIGHT_THRESHOLD,
        cna_calls: pd.DataFrame | None = None,
        distributions: dict | None = None,
        n_jobs: int | None = None):
    """Run a full analysis and return ``(table, result)``.

    Parameters
    ----------
    mutations : pandas.DataFrame
        Long-form mutation table (``'patient_id'``, ``'gene_id'``,
        ``'mutation_type'``, optional ``'cna_call'``).
    expression : pandas.DataFrame
        Clean patients x genes expression matrix.
    graph : InfluenceGraph or None
        Influence graph, required for trans analysis.
    gene_weights : pandas.Series or None
        Expressedness weights. When given, mutated genes and graph
        nodes below `weight_threshold` are dropped.
    cis : bool, default True
        Cis or trans analysis.
    mutation_type : {'loss', 'gain', 'both'}, default 'both'
    constraints : Constraints, dict or None
        EM constraints, see :class:`xseq.em.Constraints`.
    iter_max, threshold, pseudocount
        EM settings, see :func:`xseq.em.learn_parameters`.
    weight_threshold : float, default 0.8
        Expressedness cut-off.
    cna_calls : pandas.DataFrame or None
        Patients x genes copy-number calls excluded from backgrounds.
    distributions : dict or None
        Precomputed distributions; fitted when None.
    n_jobs : int or None
        Worker processes for the distribution fits.

    Returns
    -------
    table : pandas.DataFrame
        Posterior table from :func:`format_posteriors`.
    result : LearningResult
        Learned model, trace and warnings.

    """
    expression = expression.copy()
    expression.index = expression.index.astype(str)
    expression.columns = expression.columns.astype(str)

    instances = filter_mutations(
        mutations, mutation_type=mutation_type,
        gene_weights=gene_weights, threshold=weight_threshold,
        genes=expression.columns, patients=expression.index)

    if distributions is None:
        distributions = fit_expression_distributions(
            expression, mutations=mutations, cna_calls=cna_calls,
            n_jobs=n_jobs)

    if not cis and graph is not None and gene_weights is not None:
        graph = reduce_network(graph, gene_weights, weight_threshold)

    prior = initialize_prior(
        distributions, instances, cis=cis, mutation_type=mutation_type,
        graph=graph, expression=expression)
    model = build_model(
        instances, expression, distributions, graph if not cis else None,
        prior.cpd, prior.prior, cis, baseline=prior.baseline,
        mutation_type=mutation_type)
    result = learn_parameters(
        model, Constraints.coerce(constraints), iter_max=iter_max,
        threshold=threshold, pseudocount=pseudocount)
    return format_posteriors(result.posteriors), result


def parse_args(argv=None) -> argparse.Namespace:
    """Parse CLI arguments for the analysis."""
    parser = argparse.ArgumentParser(
        prog="xseq run",
        description="Estimate the probability that each somatic "
                    "mutation dysregulates gene expression.")
    parser.add_argument(
        "--mutations", required=True,
        help="TSV with patient_id, gene_id, mutation_type "
             "[, cna_call].")
    parser.add_argument(
        "--expression", required=True,
        help="TSV expression matrix, patients as rows, genes as "
             "columns.")
    parser.add_argument(
        "--graph", help="TSV edge list with gene_a, gene_b, weight.")
    parser.add_argument(
        "--weights", help="TSV with gene_id and weight columns.")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--cis", dest="cis", action="store_true",
                      default=True, help="Cis analysis (default).")
    mode.add_argument("--trans", dest="cis", action="store_false",
                      help="Trans analysis, needs --graph.")
    parser.add_argument(
        "--mutation-type", default="both",
        choices=["loss", "gain", "both"])
    parser.add_argument(
        "--equal-functional-rate", action="store_true",
        help="Share the functional rate across genes.")
    parser.add_argument(
        "--free-baseline", action="store_true",
        help="Re-estimate the passenger baseline in the M-step.")
    parser.add_argument("--iter-max", type=int, default=DEFAULT_ITER_MAX)
    parser.add_argument(
        "--threshold", type=float, default=DEFAULT_THRESHOLD)
    parser.add_argument(
        "--weight-threshold", type=float,
        default=DEFAULT_WEIGHT_THRESHOLD)
    parser.add_argument("--n-jobs", type=int, default=None)
    parser.add_argument(
        "--output", default="-",
        help="Output TSV, '-' for standard output.")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """CLI entrypoint for the analysis."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s:%(name)s: %(message)s")

    try:
        mutations = pd.read_csv(args.mutations, sep="\t")
        expression = pd.read_csv(args.expression, sep="\t", index_col=0)
        graph = None
        if args.graph:
            graph = InfluenceGraph.from_edges(
                pd.read_csv(args.graph, sep="\t"))
        weights = None
        if args.weights:
            weights = pd.read_csv(
                args.weights, sep="\t", index_col=0).iloc[:, 0]

        table, result = run_analysis(
            mutations, expression, graph, weights,
            cis=args.cis,
            mutation_type=args.mutation_type,
            constraints=Constraints(
                equal_functional_rate=args.equal_functional_rate,
                fixed_baseline=not args.free_baseline),
            iter_max=args.iter_max,
            threshold=args.threshold,
            weight_threshold=args.weight_threshold,
            n_jobs=args.n_jobs)
    except XseqError as e:
        logger.error(str(e))
        return 1

    output = sys.stdout if args.output == "-" else args.output
    table.to_csv(output, sep="\t", index=False)
    logger.info(
        f"Wrote {len(table)} posteriors after {result.n_iterations} "
        f"iterations (converged={result.converged}).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
