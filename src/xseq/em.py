"""EM estimation of functional-mutation posteriors and emission tables.

Each mutation instance ``i`` (a patient carrying a mutation in gene
``g``) has a binary latent state S in {functional, passenger}. Its
evidence is a set of observations ``n`` (the gene itself in cis mode,
its retained neighbors in trans mode), each with a weight ``w_n`` and
per-state log-densities ``e_n``. The model's log-likelihood is

    sum_i log( pi_g * prod_n (sum_s f_g[s] e_n[s]) ** w_n
               + (1 - pi_g) * prod_n (sum_s p_g[s] e_n[s]) ** w_n )

where ``f_g`` and ``p_g`` are the functional and passenger rows of
the conditional probability table and ``pi_g`` the functional rate.

The E-step computes ``q_i = P(S_i = functional | evidence)`` together
with, for each observation, the posterior over its expression state
under each latent state. The M-step turns these into weighted state
counts. With a Dirichlet/Beta pseudocount ``a`` the estimates are
MAP and the tracked objective adds ``a * sum(log parameters)``; the
objective can then only increase from one iteration to the next.

Constraints
-----------
equal_functional_rate
    Pool rate and functional-row counts over all genes, so every gene
    shares one rate and one functional row.
fixed_baseline
    Keep the passenger rows at their initial values.
"""

import logging
import warnings
from dataclasses import dataclass, asdict

import numpy as np
import pandas as pd
from scipy.special import logsumexp

from .constants import DEFAULT_ITER_MAX
from .constants import DEFAULT_THRESHOLD
from .constants import DEFAULT_PSEUDOCOUNT
from .exceptions import ConfigurationError
from .exceptions import ConvergenceWarning
from .exceptions import NumericalError
from .models import ConditionalProbabilityTable
from .models import XseqModel


logger = logging.getLogger(__name__)

# Relative slack allowed for floating-point noise in the objective
_DECREASE_TOLERANCE = 1e-8


@dataclass(frozen=True)
class Constraints:
    """Cross-gene constraints applied in the M-step."""

    equal_functional_rate: bool = False
    fixed_baseline: bool = True

    @classmethod
    def coerce(cls, value):
        """Accept a Constraints, a dict of its fields, or None."""
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            unknown = set(value) - set(asdict(cls()))
            if unknown:
                raise ConfigurationError(
                    "Unknown constraint options", ", ".join(sorted(unknown)))
            return cls(**{k: bool(v) for k, v in value.items()})
        raise ConfigurationError(
            "Constraints must be a Constraints instance or a dict",
            type(value).__name__)


@dataclass(frozen=True)
class LearningConfig:
    """Stopping rule and regularisation of the EM run.

    Attributes
    ----------
    iter_max : int
        Maximum number of E-step/M-step pairs.
    threshold : float
        Stop once the objective increases by less than this.
    pseudocount : float
        Dirichlet/Beta pseudocount added to every count; 0 gives the
        plain maximum-likelihood updates.
    """

    iter_max: int = DEFAULT_ITER_MAX
    threshold: float = DEFAULT_THRESHOLD
    pseudocount: float = DEFAULT_PSEUDOCOUNT

    def __post_init__(self):
        if int(self.iter_max) != self.iter_max or self.iter_max < 1:
            raise ValueError(
                f"iter_max must be a positive integer, got {self.iter_max}")
        if not self.threshold >= 0:
            raise ValueError(
                f"threshold must be non-negative, got {self.threshold}")
        if not self.pseudocount >= 0:
            raise ValueError(
                f"pseudocount must be non-negative, got {self.pseudocount}")


@dataclass(frozen=True, eq=False)
class LearningResult:
    """Output of :func:`learn_parameters`.

    Attributes
    ----------
    model : XseqModel
        Copy of the input model with the learned parameters.
    posteriors : pandas.Series
        P(functional) per mutation instance, indexed by
        (patient_id, gene_id), in the model's instance order.
    loglik_trace : tuple of float
        Objective after each E-step of the loop. When the cap is
        reached, the returned posteriors come from one extra E-step
        on the final parameters, which is not recorded here.
    converged : bool
        Whether the threshold was met before the iteration cap.
    warnings : tuple of str
        Data-quality and convergence messages.
    """

    model: XseqModel
    posteriors: pd.Series
    loglik_trace: tuple
    converged: bool
    warnings: tuple = ()

    @property
    def n_iterations(self):
        return len(self.loglik_trace)


@dataclass(frozen=True, eq=False)
class _Parameters:
    """Gene-aligned parameter arrays of one iteration."""

    functional: np.ndarray
    passenger: np.ndarray
    rate: np.ndarray

    @classmethod
    def from_cpd(cls, cpd):
        return cls(
            functional=cpd.functional.to_numpy(dtype=float).copy(),
            passenger=cpd.passenger.to_numpy(dtype=float).copy(),
            rate=cpd.functional_rate.to_numpy(dtype=float).copy())

    def to_cpd(self, genes):
        return ConditionalProbabilityTable.from_arrays(
            genes, self.functional, self.passenger, self.rate)


@dataclass(frozen=True, eq=False)
class _EStep:
    posterior: np.ndarray
    objective: float
    resp_functional: np.ndarray
    resp_passenger: np.ndarray


def _log(x):
    with np.errstate(divide="ignore"):
        return np.log(x)


def _log_penalty(params, constraints, cis, pseudocount):
    """Log Dirichlet/Beta prior density of the free parameters."""
    if pseudocount == 0:
        return 0.0
    if constraints.equal_functional_rate:
        rate, functional = params.rate[:1], params.functional[:1]
    else:
        rate, functional = params.rate, params.functional
    total = np.sum(_log(rate)) + np.sum(_log(1 - rate))
    total += np.sum(_log(functional))
    if not constraints.fixed_baseline:
        passenger = params.passenger if cis else params.passenger[:1]
        total += np.sum(_log(passenger))
    return pseudocount * float(total)


def _e_step(params, evidence, constraints, cis, pseudocount):
    gene = evidence.obs_gene
    log_f = _log(params.functional)[gene] + evidence.obs_log_density
    log_p = _log(params.passenger)[gene] + evidence.obs_log_density
    norm_f = logsumexp(log_f, axis=1)
    norm_p = logsumexp(log_p, axis=1)

    n = len(evidence.instance_gene)
    ll_f = np.bincount(
        evidence.obs_instance, weights=evidence.obs_weight * norm_f,
        minlength=n)
    ll_p = np.bincount(
        evidence.obs_instance, weights=evidence.obs_weight * norm_p,
        minlength=n)

    rate = params.rate[evidence.instance_gene]
    joint_f = _log(rate) + ll_f
    joint_p = _log(1 - rate) + ll_p
    ll = np.logaddexp(joint_f, joint_p)
    posterior = np.exp(joint_f - ll)

    objective = float(ll.sum()) + _log_penalty(
        params, constraints, cis, pseudocount)
    return _EStep(
        posterior=posterior,
        objective=objective,
        resp_functional=np.exp(log_f - norm_f[:, None]),
        resp_passenger=np.exp(log_p - norm_p[:, None]))


def _normalize_rows(counts, genes, what, iteration):
    totals = counts.sum(axis=1, keepdims=True)
    bad = ~(totals[:, 0] > 0) | ~np.isfinite(totals[:, 0])
    if bad.any():
        gene = genes[int(np.argmax(bad))]
        raise NumericalError(
            f"{what} counts are all zero and cannot be normalised",
            f"gene {gene}, iteration {iteration}",
            gene=gene, iteration=iteration)
    return counts / totals


def _m_step(params, estep, evidence, constraints, cis, pseudocount,
            genes, iteration):
    n_genes = len(genes)
    gene = evidence.obs_gene
    q_obs = estep.posterior[evidence.obs_instance]

    counts_f = np.zeros_like(params.functional)
    counts_p = np.zeros_like(params.passenger)
    np.add.at(
        counts_f, gene,
        (q_obs * evidence.obs_weight)[:, None] * estep.resp_functional)
    np.add.at(
        counts_p, gene,
        ((1 - q_obs) * evidence.obs_weight)[:, None]
        * estep.resp_passenger)
    has_obs = np.bincount(gene, minlength=n_genes) > 0

    q_sum = np.bincount(
        evidence.instance_gene, weights=estep.posterior,
        minlength=n_genes)
    n_inst = np.bincount(evidence.instance_gene, minlength=n_genes)
    a = pseudocount

    if not n_genes:
        rate = params.rate.copy()
    elif constraints.equal_functional_rate:
        rate = np.full(
            n_genes, (q_sum.sum() + a) / (n_inst.sum() + 2 * a))
    else:
        rate = (q_sum + a) / (n_inst + 2 * a)

    functional = params.functional.copy()
    if constraints.equal_functional_rate:
        if has_obs.any():
            pooled = _normalize_rows(
                counts_f.sum(axis=0, keepdims=True) + a, genes[:1],
                "Shared functional", iteration)
            functional[:] = pooled
    elif has_obs.any():
        functional[has_obs] = _normalize_rows(
            counts_f[has_obs] + a, genes[has_obs], "Functional",
            iteration)

    passenger = params.passenger.copy()
    if not constraints.fixed_baseline and has_obs.any():
        if cis:
            passenger[has_obs] = _normalize_rows(
                counts_p[has_obs] + a, genes[has_obs], "Passenger",
                iteration)
        else:
            passenger[:] = _normalize_rows(
                counts_p.sum(axis=0, keepdims=True) + a, genes[:1],
                "Baseline", iteration)

    return _Parameters(functional=functional, passenger=passenger,
                       rate=rate)


def learn_parameters(
        model: XseqModel,
        constraints=None,
        iter_max: int = DEFAULT_ITER_MAX,
        threshold: float = DEFAULT_THRESHOLD,
        pseudocount: float = DEFAULT_PSEUDOCOUNT) -> LearningResult:
    """Fit the model by expectation-maximisation.

    Parameters
    ----------
    model : XseqModel
        Model built by :func:`xseq.models.build_model`.
    constraints : Constraints, dict or None
        ``equal_functional_rate`` (default False) and
        ``fixed_baseline`` (default True).
    iter_max : int, default 50
        Maximum number of E-step/M-step pairs.
    threshold : float, default 1e-6
        Convergence threshold on the increase of the objective.
    pseudocount : float, default 0.01
        Pseudocount of the MAP updates.

    Returns
    -------
    LearningResult

    Raises
    ------
    ConfigurationError
        If the constraints are malformed.
    NumericalError
        If the objective decreases or a table row cannot be
        normalised.

    Warns
    -----
    ConvergenceWarning
        When `iter_max` is reached before the threshold is met.

    """
    constraints = Constraints.coerce(constraints)
    config = LearningConfig(
        iter_max=iter_max, threshold=threshold, pseudocount=pseudocount)
    genes = np.asarray(model.genes, dtype=object)
    evidence = model.evidence
    params = _Parameters.from_cpd(model.cpd)
    if constraints.equal_functional_rate and len(genes):
        # Start from a shared value so the constraint holds throughout
        params = _Parameters(
            functional=np.tile(params.functional.mean(axis=0),
                               (len(genes), 1)),
            passenger=params.passenger,
            rate=np.full(len(genes), params.rate.mean()))

    logger.info(
        f"Learning {'cis' if model.cis else 'trans'} parameters: "
        f"{model.n_instances} instances, {len(evidence.obs_instance)} "
        f"observations, {constraints}.")

    trace = []
    converged = False
    estep = None
    for iteration in range(config.iter_max):
        estep = _e_step(params, evidence, constraints, model.cis,
                        config.pseudocount)
        if not np.isfinite(estep.objective):
            raise NumericalError(
                "Objective is not finite", f"iteration {iteration}",
                iteration=iteration)
        trace.append(estep.objective)
        logger.debug(
            f"Iteration {iteration}: objective {estep.objective:.6f}")

        if iteration > 0:
            delta = trace[-1] - trace[-2]
            tolerance = _DECREASE_TOLERANCE * max(1.0, abs(trace[-2]))
            if delta < -tolerance:
                raise NumericalError(
                    "Log-likelihood decreased between iterations",
                    f"iteration {iteration}: {trace[-2]:.10g} -> "
                    f"{trace[-1]:.10g}",
                    iteration=iteration)
            if delta < config.threshold:
                converged = True
                break

        params = _m_step(params, estep, evidence, constraints,
                         model.cis, config.pseudocount, genes, iteration)
        params.to_cpd(genes).validate(iteration=iteration)

    messages = list(model.warnings)
    if converged:
        logger.info(
            f"... converged after {len(trace)} iterations "
            f"(objective {trace[-1]:.6f}).")
    else:
        message = (
            f"EM stopped at iter_max={config.iter_max} before the "
            f"objective increase fell below {config.threshold}")
        logger.warning(message)
        warnings.warn(message, ConvergenceWarning, stacklevel=2)
        messages.append(message)
        # Posteriors must match the parameters of the last M-step
        estep = _e_step(params, evidence, constraints, model.cis,
                        config.pseudocount)

    posteriors = pd.Series(
        np.clip(estep.posterior, 0.0, 1.0),
        index=model.instance_index, name="posterior")
    return LearningResult(
        model=model.with_cpd(params.to_cpd(genes)),
        posteriors=posteriors,
        loglik_trace=tuple(trace),
        converged=converged,
        warnings=tuple(messages))
