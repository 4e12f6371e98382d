"""Posterior tables for downstream ranking and reporting."""

import logging

import numpy as np
import pandas as pd


logger = logging.getLogger(__name__)

posterior_columns = ["patient_id", "gene_id", "posterior"]


def format_posteriors(posteriors) -> pd.DataFrame:
    """Flatten per-(patient, gene) posteriors into a table.

    Parameters
    ----------
    posteriors : pandas.Series, dict or LearningResult
        Either a Series indexed by (patient_id, gene_id), a mapping
        ``{(patient, gene): probability}``, a nested mapping
        ``{patient: {gene: probability}}``, or an object with a
        ``posteriors`` attribute holding one of these.

    Returns
    -------
    pandas.DataFrame
        Columns ``'patient_id'``, ``'gene_id'`` and ``'posterior'``,
        one row per mutation instance, in input order. No sorting or
        aggregation is applied; see :func:`rank_posteriors`.

    Examples
    --------
    >>> format_posteriors({'P1': {'TP53': 0.97}}).values.tolist()
    [['P1', 'TP53', 0.97]]

    """
    posteriors = getattr(posteriors, "posteriors", posteriors)

    if isinstance(posteriors, pd.Series):
        if posteriors.index.nlevels != 2:
            raise ValueError(
                "Posterior series must be indexed by (patient, gene)")
        rows = [(p, g, v) for (p, g), v in posteriors.items()]
    elif isinstance(posteriors, dict):
        rows = []
        for key, value in posteriors.items():
            if isinstance(value, dict):
                rows.extend((key, g, v) for g, v in value.items())
            else:
                patient, gene = key
                rows.append((patient, gene, value))
    else:
        raise TypeError(
            "posteriors must be a pandas.Series or a dict, got "
            f"{type(posteriors).__name__}")

    table = pd.DataFrame(rows, columns=posterior_columns)
    table["patient_id"] = table["patient_id"].astype(str)
    table["gene_id"] = table["gene_id"].astype(str)
    table["posterior"] = table["posterior"].astype(float)
    logger.debug(f"Formatted {len(table)} posterior rows.")
    return table


def rank_posteriors(table: pd.DataFrame, ascending=False) -> pd.DataFrame:
    """Sort a posterior table by probability (stable for ties)."""
    ranked = table.sort_values(
        "posterior", ascending=ascending, kind="mergesort")
    return ranked.reset_index(drop=True)


def summarize_genes(table: pd.DataFrame) -> pd.DataFrame:
    """Per-gene summary of a posterior table.

    Returns
    -------
    pandas.DataFrame
        Indexed by gene, with ``'n_mutations'``,
        ``'mean_posterior'`` and ``'prob_any_functional'``, the
        probability that at least one of the gene's mutations is
        functional, ``1 - prod(1 - q)``. Sorted by the latter.
    """
    grouped = table.groupby("gene_id", sort=False)["posterior"]
    summary = pd.DataFrame({
        "n_mutations": grouped.size(),
        "mean_posterior": grouped.mean(),
        "prob_any_functional": grouped.agg(
            lambda q: 1.0 - float(np.prod(1.0 - q.to_numpy()))),
    })
    return summary.sort_values(
        "prob_any_functional", ascending=False, kind="mergesort")
