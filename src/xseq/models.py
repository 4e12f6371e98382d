"""Data models for the mutation functional-impact analysis."""

from dataclasses import dataclass, field, replace
import logging
import warnings

import numpy as np
import pandas as pd

from .constants import STATES
from .constants import N_STATES
from .exceptions import ConfigurationError
from .exceptions import DataQualityWarning
from .exceptions import NumericalError
from .network import InfluenceGraph
from .network import self_loop_graph


logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ConditionalProbabilityTable:
    """Emission probabilities linking mutation state to expression state.

    Attributes
    ----------
    functional : pandas.DataFrame
        Genes x ``STATES``. Row ``g`` is P(expression state | a
        mutation in ``g`` is functional).
    passenger : pandas.DataFrame
        Genes x ``STATES``. Row ``g`` is P(expression state | a
        mutation in ``g`` is a passenger), i.e. the background. In
        trans mode every row holds the same population baseline.
    functional_rate : pandas.Series
        Per-gene probability that a mutation is functional.

    """

    functional: pd.DataFrame
    passenger: pd.DataFrame
    functional_rate: pd.Series

    def __post_init__(self):
        genes = self.functional.index
        if not (genes.equals(self.passenger.index)
                and genes.equals(self.functional_rate.index)):
            raise ConfigurationError(
                "CPD tables must share the same gene index")
        for name in ("functional", "passenger"):
            if list(getattr(self, name).columns) != list(STATES):
                raise ConfigurationError(
                    f"CPD {name} columns must be {list(STATES)}")

    @classmethod
    def from_arrays(cls, genes, functional, passenger, functional_rate):
        """Wrap gene-aligned numpy arrays into a table."""
        index = pd.Index([str(g) for g in genes], name="gene_id")
        return cls(
            functional=pd.DataFrame(
                np.asarray(functional, dtype=float).reshape(-1, N_STATES),
                index=index, columns=list(STATES)),
            passenger=pd.DataFrame(
                np.asarray(passenger, dtype=float).reshape(-1, N_STATES),
                index=index, columns=list(STATES)),
            functional_rate=pd.Series(
                np.asarray(functional_rate, dtype=float),
                index=index, name="functional_rate"))

    @property
    def genes(self):
        return self.functional.index

    def validate(self, atol=1e-6, iteration=None):
        """Raise NumericalError unless every row is a distribution."""
        for name in ("functional", "passenger"):
            table = getattr(self, name)
            values = table.to_numpy()
            bad = (~np.isfinite(values).all(axis=1)
                   | (values < 0).any(axis=1)
                   | ~np.isclose(values.sum(axis=1), 1.0, atol=atol))
            if bad.any():
                gene = table.index[np.argmax(bad)]
                raise NumericalError(
                    f"CPD {name} row does not sum to 1",
                    f"gene {gene}", gene=gene, iteration=iteration)
        rates = self.functional_rate.to_numpy()
        bad = ~np.isfinite(rates) | (rates < 0) | (rates > 1)
        if bad.any():
            gene = self.genes[np.argmax(bad)]
            raise NumericalError(
                "Functional rate outside [0, 1]", f"gene {gene}",
                gene=gene, iteration=iteration)
        return self


@dataclass(frozen=True, eq=False)
class Evidence:
    """Flattened expression evidence of all mutation instances.

    Each observation is one (mutation instance, evidence gene) pair:
    the mutated gene itself in cis mode, a retained graph neighbor in
    trans mode.

    Attributes
    ----------
    instance_gene : numpy.ndarray
        Index into the CPD genes for every mutation instance.
    obs_instance : numpy.ndarray
        Mutation instance of every observation.
    obs_weight : numpy.ndarray
        Weight of every observation (edge weight, normalised by the
        instance's total when requested; 1 in cis mode).
    obs_log_density : numpy.ndarray
        Observations x ``STATES`` log-density of the evidence gene's
        expression value under each state.

    """

    instance_gene: np.ndarray
    obs_instance: np.ndarray
    obs_weight: np.ndarray
    obs_log_density: np.ndarray

    @property
    def obs_gene(self):
        return self.instance_gene[self.obs_instance]

    @property
    def n_obs_per_instance(self):
        return np.bincount(
            self.obs_instance, minlength=len(self.instance_gene))


@dataclass(frozen=True, eq=False, repr=False)
class XseqModel:
    """Immutable bundle consumed and returned by the EM learner.

    Build instances with :func:`build_model`. Learning never mutates
    a model; it returns a copy with new conditional probabilities.

    Attributes
    ----------
    mutations : pandas.DataFrame
        Retained mutation instances (``'patient_id'``,
        ``'gene_id'``, ...), one row per (patient, gene).
    expression : pandas.DataFrame
        Patients x genes expression matrix.
    distributions : dict
        Gene -> :class:`GeneExpressionDistribution`.
    graph : InfluenceGraph
        Self loops in cis mode, the reduced influence graph in trans
        mode.
    cpd : ConditionalProbabilityTable
        Current emission parameters and functional rates.
    prior : float
        Initial global probability that a mutation is functional.
    cis : bool
        Cis (own expression) or trans (neighbor expression) mode.
    baseline : numpy.ndarray or None
        Population baseline over ``STATES`` used as the passenger
        row in trans mode.
    mutation_type : str
        Mutation type filter the model was built for.
    normalize_weights : bool
        Whether trans edge weights are normalised per instance.
    evidence : Evidence
        Precomputed observation arrays.
    warnings : tuple of str
        Data-quality messages gathered while building.

    """

    mutations: pd.DataFrame
    expression: pd.DataFrame
    distributions: dict
    graph: InfluenceGraph
    cpd: ConditionalProbabilityTable
    prior: float
    cis: bool
    baseline: np.ndarray | None = None
    mutation_type: str = "both"
    normalize_weights: bool = True
    evidence: Evidence = field(default=None, compare=False)
    warnings: tuple = ()

    def __repr__(self):
        mode = "cis" if self.cis else "trans"
        return (
            f"XseqModel(\n"
            f"  mode={mode!r}, mutation_type={self.mutation_type!r}\n"
            f"  mutation instances: {self.n_instances} in "
            f"{len(self.genes)} genes\n"
            f"  expression: {self.expression.shape}\n"
            f"  graph: {self.graph.n_nodes} genes, "
            f"{self.graph.n_edges} edges\n"
            f"  observations: {len(self.evidence.obs_instance)}\n"
            f")")

    @property
    def n_instances(self):
        return len(self.mutations)

    @property
    def genes(self):
        """Mutated genes, in the order of the CPD rows."""
        return self.cpd.genes

    @property
    def instance_index(self):
        """(patient_id, gene_id) MultiIndex of the mutation instances."""
        return pd.MultiIndex.from_frame(
            self.mutations[["patient_id", "gene_id"]])

    def with_cpd(self, cpd):
        """Return a copy of the model carrying `cpd`."""
        return replace(self, cpd=cpd)


def _check_subset(genes, universe, what):
    missing = pd.Index(genes).difference(pd.Index(universe))
    if len(missing):
        raise ConfigurationError(
            f"Mutated genes missing from {what}",
            ", ".join(map(str, missing[:10])))


def build_model(
        mutations: pd.DataFrame,
        expression: pd.DataFrame,
        distributions: dict,
        graph: InfluenceGraph | None,
        cpd: ConditionalProbabilityTable,
        prior: float,
        cis: bool,
        *,
        baseline=None,
        mutation_type="both",
        normalize_weights=True) -> XseqModel:
    """Validate inputs and assemble an :class:`XseqModel`.

    Parameters
    ----------
    mutations : pandas.DataFrame
        Filtered mutation instances, see
        :func:`xseq.estimate_presence.filter_mutations`.
    expression : pandas.DataFrame
        Patients x genes expression matrix without missing values.
    distributions : dict
        Gene -> :class:`GeneExpressionDistribution`.
    graph : InfluenceGraph or None
        Required in trans mode. In cis mode it may be omitted (self
        loops are built) but must otherwise contain self loops only.
    cpd : ConditionalProbabilityTable
        Initial parameters covering every mutated gene.
    prior : float
        Initial global functional probability, in (0, 1).
    cis : bool
        Analysis mode.
    baseline : array-like or None
        Population baseline over ``STATES`` (trans mode).
    mutation_type : {'loss', 'gain', 'both'}
        Recorded for reference.
    normalize_weights : bool, default True
        Divide each instance's neighbor weights by their total.

    Returns
    -------
    XseqModel

    Raises
    ------
    ConfigurationError
        On gene-set mismatches or mode/graph inconsistency.

    """
    for col in ("patient_id", "gene_id"):
        if col not in mutations.columns:
            raise KeyError(f"Mutation table lacks column {col!r}")
    mutations = mutations.copy().reset_index(drop=True)
    mutations["patient_id"] = mutations["patient_id"].astype(str)
    mutations["gene_id"] = mutations["gene_id"].astype(str)
    if mutations.duplicated(["patient_id", "gene_id"]).any():
        raise ConfigurationError(
            "Mutation instances must be unique per (patient, gene)",
            "collapse them with filter_mutations()")

    expression = expression.copy()
    expression.index = expression.index.astype(str)
    expression.columns = expression.columns.astype(str)
    if expression.isna().to_numpy().any():
        raise ConfigurationError("Expression matrix has missing values")

    genes = pd.Index(mutations["gene_id"].unique())
    _check_subset(genes, expression.columns, "expression matrix")
    _check_subset(genes, list(distributions), "distributions")
    _check_subset(genes, cpd.genes, "conditional probability table")
    missing_patients = pd.Index(
        mutations["patient_id"].unique()).difference(expression.index)
    if len(missing_patients):
        raise ConfigurationError(
            "Mutated patients missing from expression matrix",
            ", ".join(missing_patients[:10]))

    if not 0 < prior < 1:
        raise ConfigurationError(
            "Functional prior must lie in (0, 1)", f"got {prior}")

    if cis:
        if graph is None:
            graph = self_loop_graph(genes)
        elif not graph.is_self_loop_only():
            raise ConfigurationError(
                "Cis model requires a self-loop-only graph",
                "found an edge between distinct genes")
    elif graph is None:
        raise ConfigurationError("Trans model requires an influence graph")

    if baseline is not None:
        baseline = np.asarray(baseline, dtype=float)
        if baseline.shape != (N_STATES,) or not np.isclose(
                baseline.sum(), 1.0):
            raise ConfigurationError(
                f"Baseline must be a distribution over {list(STATES)}")

    cpd = ConditionalProbabilityTable(
        functional=cpd.functional.loc[genes],
        passenger=cpd.passenger.loc[genes],
        functional_rate=cpd.functional_rate.loc[genes])
    cpd.validate()
    if not cis:
        rows = cpd.passenger.to_numpy()
        shared = rows[:1] if baseline is None else baseline[None, :]
        if not np.allclose(rows, shared):
            raise ConfigurationError(
                "Trans passenger rows must all hold the population "
                "baseline")

    evidence, messages = _collect_evidence(
        mutations, expression, distributions, graph, genes, cis,
        normalize_weights)
    if messages:
        summary = (
            f"{len(messages)} data-quality issues while collecting "
            f"expression evidence, e.g. {messages[0]}")
        logger.warning(summary)
        warnings.warn(summary, DataQualityWarning, stacklevel=2)

    model = XseqModel(
        mutations=mutations,
        expression=expression,
        distributions=dict(distributions),
        graph=graph,
        cpd=cpd,
        prior=float(prior),
        cis=bool(cis),
        baseline=baseline,
        mutation_type=mutation_type,
        normalize_weights=normalize_weights,
        evidence=evidence,
        warnings=tuple(messages))
    logger.info(f"Built {model!r}")
    return model


def _collect_evidence(mutations, expression, distributions, graph,
                      genes, cis, normalize_weights):
    """Gather the observation arrays, one gene at a time."""
    gene_pos = {g: i for i, g in enumerate(genes)}
    instance_gene = mutations["gene_id"].map(gene_pos).to_numpy(dtype=int)
    patient_rows = expression.index.get_indexer(mutations["patient_id"])
    values = expression.to_numpy(dtype=float)
    columns = {g: j for j, g in enumerate(expression.columns)}

    obs_instance, obs_weight, obs_log_density = [], [], []
    messages = []
    for gene, rows in mutations.groupby("gene_id", sort=False).groups.items():
        rows = np.asarray(rows, dtype=int)

        if cis:
            sources = [(gene, 1.0)]
        else:
            sources = graph.neighbors(gene, include_self=False)
            for nbr, w in sources:
                dist = distributions.get(nbr)
                if w > 0 and dist is not None and not dist.informative:
                    messages.append(
                        f"{nbr} (non-informative neighbor of {gene}, "
                        f"{dist.reason})")
        sources = [
            (n, w) for n, w in sources
            if w > 0 and n in columns and n in distributions
            and distributions[n].informative]

        if not sources:
            reason = (
                "non-informative distribution" if cis
                else "no retained informative neighbors")
            messages.append(f"{gene} ({reason})")
            continue

        weights = np.array([w for _, w in sources], dtype=float)
        if normalize_weights and not cis:
            weights = weights / weights.sum()

        for (nbr, _), w in zip(sources, weights):
            x = values[patient_rows[rows], columns[nbr]]
            obs_instance.append(rows)
            obs_weight.append(np.full(len(rows), w))
            obs_log_density.append(distributions[nbr].log_density(x))

    if obs_instance:
        evidence = Evidence(
            instance_gene=instance_gene,
            obs_instance=np.concatenate(obs_instance),
            obs_weight=np.concatenate(obs_weight),
            obs_log_density=np.vstack(obs_log_density))
    else:
        evidence = Evidence(
            instance_gene=instance_gene,
            obs_instance=np.zeros(0, dtype=int),
            obs_weight=np.zeros(0),
            obs_log_density=np.zeros((0, N_STATES)))
    return evidence, messages
