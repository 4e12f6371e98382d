"""Initial parameters for the EM learner.

The passenger row of each conditional probability table starts at the
background frequency of the expression states: the gene's own
background in cis mode, the population baseline averaged over the
genes of the influence graph in trans mode. The functional row starts
as an even blend of that background and a template putting all mass
on the states a mutation of the requested type should dysregulate
(down for loss, up for gain, both for both). When the expression
matrix is available, the carriers' observed state frequencies replace
the background in the blend and give a moment estimate of the global
functional prior.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from .constants import STATES
from .constants import N_STATES
from .constants import DEFAULT_FUNCTIONAL_PRIOR
from .constants import dysregulated_states
from .exceptions import ConfigurationError
from .models import ConditionalProbabilityTable


logger = logging.getLogger(__name__)

# Probability floor keeping seeded rows strictly positive
_FLOOR = 1e-3
_PRIOR_BOUNDS = (0.05, 0.95)


@dataclass(frozen=True, eq=False)
class XseqPrior:
    """Initial parameters returned by :func:`initialize_prior`.

    Attributes
    ----------
    prior : float
        Global probability that a mutation is functional.
    cpd : ConditionalProbabilityTable
        Seeded emission tables for every mutated gene.
    baseline : numpy.ndarray or None
        Population baseline over ``STATES`` (trans mode only).
    mutation_type : str
        The mutation type filter used.
    cis : bool
        Mode the parameters were seeded for.
    """

    prior: float
    cpd: ConditionalProbabilityTable
    baseline: np.ndarray | None
    mutation_type: str
    cis: bool


def _floor(p):
    p = np.clip(np.asarray(p, dtype=float), _FLOOR, None)
    return p / p.sum(axis=-1, keepdims=True)


def dysregulation_template(mutation_type):
    """Uniform distribution over the dysregulated states of a filter."""
    if mutation_type not in dysregulated_states:
        raise ValueError(
            f"mutation_type must be one of {sorted(dysregulated_states)},"
            f" got {mutation_type!r}")
    mask = np.isin(STATES, dysregulated_states[mutation_type])
    return mask / mask.sum()


def population_baseline(distributions, genes=None):
    """Mean state weights over the informative distributions of `genes`.

    Falls back to all informative distributions, then to the neutral
    state, when `genes` has none.
    """
    pool = [distributions[g] for g in (genes or []) if g in distributions]
    informative = [d for d in pool if d.informative]
    if not informative:
        informative = [d for d in distributions.values() if d.informative]
    if not informative:
        baseline = np.isin(STATES, ["neutral"]).astype(float)
    else:
        baseline = np.mean([d.weights for d in informative], axis=0)
    return _floor(baseline)


def _carrier_state_frequencies(mutations, expression, distributions,
                               graph, cis):
    """Average state probabilities of the carriers' evidence genes.

    Returns a genes x ``STATES`` frame, with NaN rows for genes
    without evidence.
    """
    rows = {}
    expr = expression.copy()
    expr.index = expr.index.astype(str)
    expr.columns = expr.columns.astype(str)
    for gene, group in mutations.groupby("gene_id", sort=False):
        if cis:
            sources = [(gene, 1.0)]
        else:
            sources = graph.neighbors(gene, include_self=False)
        sources = [
            (n, w) for n, w in sources
            if w > 0 and n in expr.columns and n in distributions
            and distributions[n].informative]
        patients = group["patient_id"][
            group["patient_id"].isin(expr.index)]
        if not sources or patients.empty:
            rows[gene] = np.full(N_STATES, np.nan)
            continue
        total = np.zeros(N_STATES)
        for nbr, w in sources:
            probs = distributions[nbr].state_probabilities(
                expr.loc[patients, nbr].to_numpy())
            total += w * probs.mean(axis=0)
        rows[gene] = total / sum(w for _, w in sources)
    return pd.DataFrame.from_dict(rows, orient="index", columns=list(STATES))


def initialize_prior(
        distributions: dict,
        mutations: pd.DataFrame,
        cis: bool,
        mutation_type: str = "both",
        graph=None,
        expression: pd.DataFrame | None = None,
        prior: float | None = None) -> XseqPrior:
    """Derive initial EM parameters.

    Parameters
    ----------
    distributions : dict
        Gene -> :class:`GeneExpressionDistribution`.
    mutations : pandas.DataFrame
        Filtered mutation instances (``'patient_id'``,
        ``'gene_id'``).
    cis : bool
        Cis or trans mode.
    mutation_type : {'loss', 'gain', 'both'}, default 'both'
        Decides which states the functional row favours.
    graph : InfluenceGraph or None
        Reduced influence graph, required in trans mode.
    expression : pandas.DataFrame or None
        Patients x genes matrix. When given, carriers' state
        frequencies seed the functional rows and the global prior.
    prior : float or None
        Force the global functional prior instead of estimating it.

    Returns
    -------
    XseqPrior

    Raises
    ------
    ConfigurationError
        If a mutated gene has no distribution, or trans mode has no
        graph.

    """
    template = dysregulation_template(mutation_type)
    genes = pd.Index(mutations["gene_id"].astype(str).unique())

    for gene in genes:
        if gene not in distributions:
            raise ConfigurationError(
                "Mutated gene has no expression distribution", gene)
    if not cis and graph is None:
        raise ConfigurationError("Trans prior requires an influence graph")

    if cis:
        baseline = None
        passenger = _floor(np.array(
            [distributions[g].weights for g in genes]))
    else:
        baseline = population_baseline(distributions, list(graph.genes))
        passenger = np.tile(baseline, (len(genes), 1))

    carriers = None
    if expression is not None and len(genes):
        carriers = _carrier_state_frequencies(
            mutations.astype({"patient_id": str, "gene_id": str}),
            expression, distributions, graph, cis).reindex(genes)

    reference = passenger.copy()
    if carriers is not None:
        observed = carriers.notna().all(axis=1).to_numpy()
        reference[observed] = carriers.to_numpy()[observed]
    functional = _floor(0.5 * template + 0.5 * reference)

    if prior is None:
        prior = DEFAULT_FUNCTIONAL_PRIOR
        if carriers is not None and carriers.notna().all(axis=1).any():
            # Carriers show dysregulation at rate pi + (1 - pi) * b
            dys = template > 0
            observed = carriers.notna().all(axis=1).to_numpy()
            c = carriers.to_numpy()[observed][:, dys].sum(axis=1).mean()
            b = passenger[observed][:, dys].sum(axis=1).mean()
            prior = (c - b) / (1 - b) if b < 1 else prior
    prior = float(np.clip(prior, *_PRIOR_BOUNDS))

    cpd = ConditionalProbabilityTable.from_arrays(
        genes, functional, passenger, np.full(len(genes), prior))
    cpd.validate()

    logger.info(
        f"Initialised {'cis' if cis else 'trans'} prior for "
        f"{len(genes)} genes ({mutation_type}): "
        f"P(functional) = {prior:.3f}")
    return XseqPrior(
        prior=prior, cpd=cpd, baseline=baseline,
        mutation_type=mutation_type, cis=bool(cis))
