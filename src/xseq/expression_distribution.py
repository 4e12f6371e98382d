"""Per-gene expression distributions.

Each gene's expression across the patient population is summarised
by a one-dimensional Gaussian mixture fitted on the *background*
patients, i.e. those without a mutation (or copy-number alteration)
in the gene, so that the fit reflects unperturbed expression. The
fitted components are mapped onto three expression states:

    down     under-expressed relative to the background
    neutral  the dominant background component
    up       over-expressed relative to the background

For a patient's expression value `x`, the state log-densities
``log N(x; loc_s, scale_s)`` are the evidence the EM learner
combines with the conditional probability tables.

Genes with too few background patients or (near) constant expression
get a single-component, non-informative distribution. All states then
share one density, so the gene carries no evidence and is skipped
when aggregating trans evidence.
"""

import logging
import warnings
from dataclasses import dataclass
from functools import partial
from multiprocessing import Pool

import numpy as np
import pandas as pd
from scipy.stats import norm
from sklearn.mixture import GaussianMixture

from .constants import STATES
from .constants import N_STATES
from .constants import DEFAULT_N_COMPONENTS
from .constants import MIN_BACKGROUND_SAMPLES
from .constants import MIN_BACKGROUND_STD
from .constants import MIN_COMPONENT_WEIGHT
from .constants import OUTLIER_SHIFT
from .constants import OUTLIER_SCALE
from .constants import OUTLIER_WEIGHT
from .constants import default_n_jobs
from .constants import random_seed
from .exceptions import ConfigurationError
from .exceptions import DataQualityError
from .exceptions import DataQualityWarning


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneExpressionDistribution:
    """Mixture over the expression states of one gene.

    Attributes
    ----------
    gene : str
        Gene identifier.
    weights : tuple of float
        Mixture weight of each state, ordered as ``STATES``. Sums to
        one.
    locs : tuple of float
        Location (mean) of each state.
    scales : tuple of float
        Scale (standard deviation) of each state, strictly positive.
    informative : bool
        False for the single-component fallback.
    n_background : int
        Number of background values the fit used.
    n_components : int
        Number of mixture components that were fitted (1 for the
        fallback).
    reason : str or None
        Why the distribution is non-informative.

    """

    gene: str
    weights: tuple
    locs: tuple
    scales: tuple
    informative: bool = True
    n_background: int = 0
    n_components: int = N_STATES
    reason: str | None = None

    def __post_init__(self):
        for name in ("weights", "locs", "scales"):
            values = getattr(self, name)
            if len(values) != N_STATES:
                raise ValueError(
                    f"{name} of {self.gene!r} must have {N_STATES} "
                    f"entries, got {len(values)}")
            object.__setattr__(
                self, name, tuple(float(v) for v in values))
        if not np.isclose(sum(self.weights), 1.0, atol=1e-8):
            raise ValueError(
                f"Weights of {self.gene!r} sum to "
                f"{sum(self.weights)}, not 1")
        if min(self.weights) < 0:
            raise ValueError(f"Negative weight for {self.gene!r}")
        if min(self.scales) <= 0:
            raise ValueError(f"Non-positive scale for {self.gene!r}")

    @classmethod
    def from_components(
            cls,
            gene,
            weights,
            locs,
            scales,
            *,
            min_weight=MIN_COMPONENT_WEIGHT,
            n_background=0):
        """Build a distribution from arbitrary mixture components.

        Components lighter than `min_weight` are discarded. Of the
        rest, the heaviest is the neutral state; all components below
        it are moment-matched into the down state and all above it
        into the up state. A dysregulated state without components is
        given a broad outlier component placed ``OUTLIER_SHIFT``
        neutral scales away from the neutral location.

        Examples
        --------
        >>> d = GeneExpressionDistribution.from_components(
        ...     'TP53', [1.0], [0.0], [0.1])
        >>> [round(x, 2) for x in d.locs]
        [-0.3, 0.0, 0.3]

        """
        weights = np.asarray(weights, dtype=float).ravel()
        locs = np.asarray(locs, dtype=float).ravel()
        scales = np.asarray(scales, dtype=float).ravel()
        if not len(weights) == len(locs) == len(scales) or not len(weights):
            raise ValueError(
                "weights, locs and scales must be non-empty and of "
                "equal length")

        keep = weights >= min(min_weight, weights.max())
        weights, locs, scales = weights[keep], locs[keep], scales[keep]
        weights = weights / weights.sum()

        order = np.argsort(locs, kind="stable")
        weights, locs, scales = weights[order], locs[order], scales[order]
        neutral = int(np.argmax(weights))

        n_loc, n_scale = locs[neutral], scales[neutral]
        groups = {
            "down": slice(0, neutral),
            "neutral": slice(neutral, neutral + 1),
            "up": slice(neutral + 1, len(weights)),
        }
        out_w, out_loc, out_scale = [], [], []
        for state, sign in zip(STATES, (-1, 0, 1)):
            w, m, s = _moment_match(
                weights[groups[state]], locs[groups[state]],
                scales[groups[state]])
            if w == 0:
                w = OUTLIER_WEIGHT
                m = n_loc + sign * OUTLIER_SHIFT * n_scale
                s = OUTLIER_SCALE * n_scale
            out_w.append(w)
            out_loc.append(m)
            out_scale.append(s)

        out_w = np.asarray(out_w)
        return cls(
            gene=str(gene),
            weights=tuple(out_w / out_w.sum()),
            locs=tuple(out_loc),
            scales=tuple(out_scale),
            informative=True,
            n_background=int(n_background),
            n_components=len(weights))

    @classmethod
    def non_informative(cls, gene, values, reason):
        """Single-component fallback carrying no state evidence."""
        values = np.asarray(values, dtype=float)
        loc = float(values.mean()) if values.size else 0.0
        scale = float(values.std()) if values.size > 1 else 0.0
        if not scale > MIN_BACKGROUND_STD:
            scale = 1.0
        return cls(
            gene=str(gene),
            weights=(0.0, 1.0, 0.0),
            locs=(loc,) * N_STATES,
            scales=(scale,) * N_STATES,
            informative=False,
            n_background=int(values.size),
            n_components=1,
            reason=reason)

    def log_density(self, values) -> np.ndarray:
        """Log-density of each value under each state (n x 3)."""
        values = np.asarray(values, dtype=float).reshape(-1, 1)
        return norm.logpdf(
            values, loc=np.asarray(self.locs),
            scale=np.asarray(self.scales))

    def state_probabilities(self, values) -> np.ndarray:
        """Posterior probability of each state given the values.

        Uses the mixture weights as the state prior. Rows sum to one.
        """
        log_joint = self.log_density(values) + np.log(
            np.clip(self.weights, 1e-300, None))
        log_joint -= log_joint.max(axis=1, keepdims=True)
        joint = np.exp(log_joint)
        return joint / joint.sum(axis=1, keepdims=True)

    def most_likely_state(self, values) -> np.ndarray:
        """Label of the most probable state for each value."""
        idx = self.state_probabilities(values).argmax(axis=1)
        return np.asarray(STATES, dtype=object)[idx]


def _moment_match(weights, locs, scales):
    """Collapse mixture components into one Gaussian."""
    total = float(np.sum(weights))
    if total == 0:
        return 0.0, 0.0, 1.0
    mean = float(np.sum(weights * locs) / total)
    second = float(np.sum(weights * (scales ** 2 + locs ** 2)) / total)
    return total, mean, float(np.sqrt(max(second - mean ** 2, 1e-12)))


def _check_background(gene, values, min_samples, min_std):
    if values.size < min_samples:
        raise DataQualityError(
            f"Cannot fit background of {gene}",
            f"{values.size} background samples < {min_samples}",
            gene=gene)
    if values.std() <= min_std:
        raise DataQualityError(
            f"Cannot fit background of {gene}",
            "near-zero background variance", gene=gene)


def fit_gene_distribution(
        gene,
        values,
        n_components=DEFAULT_N_COMPONENTS,
        min_samples=MIN_BACKGROUND_SAMPLES,
        min_std=MIN_BACKGROUND_STD,
        min_weight=MIN_COMPONENT_WEIGHT):
    """Fit the expression distribution of a single gene.

    Parameters
    ----------
    gene : str
        Gene identifier.
    values : array-like
        Background expression values of the gene.
    n_components : int, default 3
        Number of Gaussian components.
    min_samples : int, default 10
        Fewer background values than this yields the fallback.
    min_std : float, default 1e-6
        Background standard deviation at or below this yields the
        fallback.
    min_weight : float, default 0.01
        Lighter fitted components are discarded.

    Returns
    -------
    GeneExpressionDistribution

    """
    values = np.asarray(values, dtype=float)
    values = values[np.isfinite(values)]

    try:
        _check_background(gene, values, min_samples, min_std)
    except DataQualityError as e:
        logger.debug(str(e))
        return GeneExpressionDistribution.non_informative(
            gene, values, e.details)

    # A mixture cannot have more components than distinct values
    k = int(min(n_components, np.unique(values).size))
    if k > 1:
        means_init = np.percentile(values, np.linspace(5, 95, k))
    else:
        means_init = np.array([np.median(values)])

    gmm = GaussianMixture(
        n_components=k,
        covariance_type="full",
        means_init=means_init.reshape(-1, 1),
        random_state=random_seed,
        reg_covar=max(1e-6, 1e-6 * values.var()))
    gmm.fit(values.reshape(-1, 1))

    return GeneExpressionDistribution.from_components(
        gene,
        gmm.weights_,
        gmm.means_.ravel(),
        np.sqrt(gmm.covariances_.ravel()),
        min_weight=min_weight,
        n_background=values.size)


def background_mask(expression, mutations=None, cna_calls=None):
    """Return a boolean patients x genes mask of background values.

    A value is background unless the patient carries a mutation in
    the gene or has a non-zero copy-number call for it.
    """
    mask = pd.DataFrame(
        True, index=expression.index, columns=expression.columns)

    if mutations is not None and len(mutations):
        carriers = mutations[["patient_id", "gene_id"]].astype(str)
        carriers = carriers[
            carriers["patient_id"].isin(mask.index.astype(str))
            & carriers["gene_id"].isin(mask.columns.astype(str))]
        rows = mask.index.astype(str).get_indexer(carriers["patient_id"])
        cols = mask.columns.astype(str).get_indexer(carriers["gene_id"])
        values = mask.to_numpy(copy=True)
        values[rows, cols] = False
        mask = pd.DataFrame(values, index=mask.index, columns=mask.columns)

    if cna_calls is not None:
        cna = cna_calls.reindex(
            index=expression.index, columns=expression.columns)
        mask &= cna.fillna(0).eq(0)

    return mask


def fit_expression_distributions(
        expression: pd.DataFrame,
        mutations: pd.DataFrame | None = None,
        cna_calls: pd.DataFrame | None = None,
        n_components: int = DEFAULT_N_COMPONENTS,
        n_jobs: int | None = None,
        **kwargs) -> dict:
    """Fit one expression distribution per gene.

    Parameters
    ----------
    expression : pandas.DataFrame
        Patients x genes matrix of expression values without missing
        entries.
    mutations : pandas.DataFrame or None
        Mutation table with ``'patient_id'`` and ``'gene_id'``.
        Carriers are excluded from their gene's background.
    cna_calls : pandas.DataFrame or None
        Patients x genes copy-number calls. Patients with a non-zero
        call are excluded from that gene's background.
    n_components : int, default 3
        Number of mixture components per gene.
    n_jobs : int or None
        Worker processes. Defaults to ``XSEQ_N_JOBS`` (1).
    **kwargs
        Forwarded to :func:`fit_gene_distribution` (``min_samples``,
        ``min_std``, ``min_weight``).

    Returns
    -------
    dict
        Mapping gene -> :class:`GeneExpressionDistribution`.

    Raises
    ------
    ConfigurationError
        If `expression` has missing values or duplicated genes.

    """
    if expression.isna().to_numpy().any():
        raise ConfigurationError(
            "Expression matrix has missing values",
            "impute them before fitting distributions")
    if expression.columns.duplicated().any():
        dups = expression.columns[expression.columns.duplicated()]
        raise ConfigurationError(
            "Duplicated genes in expression matrix", list(dups[:5]))

    n_jobs = default_n_jobs if n_jobs is None else n_jobs
    genes = [str(g) for g in expression.columns]
    logger.info(
        f"Fitting expression distributions for {len(genes)} genes "
        f"({n_components} components)...")

    mask = background_mask(expression, mutations, cna_calls)
    values = expression.to_numpy(dtype=float)
    mask_values = mask.to_numpy(dtype=bool)
    backgrounds = [values[mask_values[:, j], j] for j in range(len(genes))]

    func = partial(
        fit_gene_distribution, n_components=n_components, **kwargs)
    if n_jobs > 1:
        with Pool(processes=n_jobs) as pool:
            fitted = pool.starmap(func, zip(genes, backgrounds))
    else:
        fitted = [func(g, b) for g, b in zip(genes, backgrounds)]

    distributions = dict(zip(genes, fitted))

    fallback = [d for d in fitted if not d.informative]
    if fallback:
        examples = ", ".join(
            f"{d.gene} ({d.reason})" for d in fallback[:5])
        message = (
            f"{len(fallback)} genes got a non-informative "
            f"distribution, e.g. {examples}")
        logger.warning(message)
        warnings.warn(message, DataQualityWarning, stacklevel=2)

    logger.info("... done.")
    return distributions
