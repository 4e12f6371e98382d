"""Mutation tables, mutation-type filters and presence matrices.

This module turns a long-form mutation table (one row per mutation
record) into the set of mutation instances the model works with: one
row per (patient, gene) pair, restricted to the mutation classes
relevant for a loss, gain or combined analysis and, optionally, to
genes that are expressed in the tissue of interest.
"""

import logging

import pandas as pd

from .constants import all_mutation_types
from .constants import cna_column
from .constants import mutation_columns
from .constants import mutation_type_groups
from .constants import DEFAULT_WEIGHT_THRESHOLD


logger = logging.getLogger(__name__)


def validate_mutations(mutations: pd.DataFrame) -> pd.DataFrame:
    """Check a mutation table and return a normalised copy.

    Parameters
    ----------
    mutations : pandas.DataFrame
        Table with at least the columns ``'patient_id'``,
        ``'gene_id'`` and ``'mutation_type'``. An optional
        ``'cna_call'`` column holds integer copy-number calls
        (-2 deep deletion ... 2 high-level amplification).

    Returns
    -------
    pandas.DataFrame
        Copy with ids cast to ``str``, upper-case mutation types and
        a default index.

    Raises
    ------
    KeyError
        If a required column is missing.
    ValueError
        If a mutation type is not one of the known classes.

    """
    missing = [c for c in mutation_columns if c not in mutations.columns]
    if missing:
        raise KeyError(
            f"Mutation table lacks required columns: {missing}")

    df = mutations.copy()
    df["patient_id"] = df["patient_id"].astype(str)
    df["gene_id"] = df["gene_id"].astype(str)
    df["mutation_type"] = (
        df["mutation_type"].astype(str).str.strip().str.upper())

    unknown = sorted(set(df["mutation_type"]) - all_mutation_types)
    if unknown:
        raise ValueError(
            f"Unknown mutation types {unknown}. Expected any of "
            f"{sorted(all_mutation_types)}.")

    if cna_column in df.columns:
        df[cna_column] = pd.to_numeric(
            df[cna_column], errors="coerce").astype("Int64")

    return df.reset_index(drop=True)


def classify_mutation_types(mutation_types) -> pd.DataFrame:
    """Flag which analyses each mutation class takes part in.

    Parameters
    ----------
    mutation_types : sequence of str
        Mutation classes, e.g. ``['NONSENSE', 'MISSENSE']``.

    Returns
    -------
    pandas.DataFrame
        Boolean frame with columns ``'loss'`` and ``'gain'`` indexed
        by the (upper-cased) mutation types.

    Examples
    --------
    >>> classify_mutation_types(['NONSENSE', 'HLAMP']).values.tolist()
    [[True, False], [False, True]]

    """
    types = pd.Index([str(t).upper() for t in mutation_types])
    return pd.DataFrame(
        {"loss": types.isin(mutation_type_groups["loss"]),
         "gain": types.isin(mutation_type_groups["gain"])},
        index=types)


def filter_mutations(
        mutations: pd.DataFrame,
        mutation_type: str = "both",
        gene_weights: pd.Series | None = None,
        threshold: float = DEFAULT_WEIGHT_THRESHOLD,
        genes=None,
        patients=None,
        ) -> pd.DataFrame:
    """Return the mutation instances retained for modelling.

    Records are restricted to the mutation classes of
    `mutation_type`, to genes whose expressedness weight is at least
    `threshold` (when `gene_weights` is given) and to `genes` and
    `patients` (when given). Several records of the same (patient,
    gene) pair collapse into a single instance: the model is about
    mutation presence.

    Parameters
    ----------
    mutations : pandas.DataFrame
        Long-form mutation table, see :func:`validate_mutations`.
    mutation_type : {'loss', 'gain', 'both'}, default 'both'
        Which mutation classes to keep.
    gene_weights : pandas.Series or None
        Expressedness weight per gene in [0, 1]. Genes missing from
        the series are dropped.
    threshold : float, default 0.8
        Minimum weight for a gene to be retained.
    genes : iterable of str or None
        Optional universe of genes, e.g. the expression matrix
        columns.
    patients : iterable of str or None
        Optional universe of patients, e.g. the expression matrix
        index. Records of other patients are dropped.

    Returns
    -------
    pandas.DataFrame
        Columns ``'patient_id'``, ``'gene_id'``, ``'mutation_type'``
        (distinct classes joined by ``';'``) and, if present in the
        input, ``'cna_call'`` (the call of largest magnitude). Rows
        follow the order of first appearance in `mutations`.

    """
    if mutation_type not in mutation_type_groups:
        raise ValueError(
            f"mutation_type must be one of "
            f"{sorted(mutation_type_groups)}, got {mutation_type!r}")

    df = validate_mutations(mutations)
    n_records = len(df)

    keep = df["mutation_type"].isin(mutation_type_groups[mutation_type])
    if gene_weights is not None:
        weights = gene_weights.copy()
        weights.index = weights.index.astype(str)
        expressed = weights.index[weights >= threshold]
        keep &= df["gene_id"].isin(expressed)
    if genes is not None:
        keep &= df["gene_id"].isin(pd.Index(genes).astype(str))
    if patients is not None:
        keep &= df["patient_id"].isin(pd.Index(patients).astype(str))
    df = df.loc[keep]

    grouped = df.groupby(["patient_id", "gene_id"], sort=False)
    instances = grouped["mutation_type"].agg(
        lambda s: ";".join(dict.fromkeys(s))).reset_index()

    if cna_column in df.columns:
        def strongest(calls):
            calls = calls.dropna()
            if calls.empty:
                return pd.NA
            return calls.loc[calls.abs().idxmax()]

        instances[cna_column] = (
            grouped[cna_column].agg(strongest).astype("Int64").values)

    logger.info(
        f"Retained {len(instances)} mutation instances in "
        f"{instances['gene_id'].nunique()} genes from {n_records} "
        f"records ({mutation_type} analysis).")
    return instances


def compute_genes_present(mutations: pd.DataFrame, patients=None):
    """Build a 0/1 matrix of gene presence per patient.

    Parameters
    ----------
    mutations : pandas.DataFrame
        Mutation table with ``'patient_id'`` and ``'gene_id'``.
    patients : iterable of str or None
        Column order of the result; patients without mutations get
        all zeros. Defaults to the sorted mutated patients.

    Returns
    -------
    pandas.DataFrame
        Genes x patients matrix (int). Entry is 1 if the patient has
        at least one mutation in that gene, else 0.
    """
    present = pd.crosstab(
        mutations["gene_id"].astype(str),
        mutations["patient_id"].astype(str))
    present = (present > 0).astype(int)

    if patients is not None:
        present = present.reindex(
            columns=pd.Index(patients).astype(str), fill_value=0)
    else:
        present = present.reindex(columns=sorted(present.columns))
    present.index.name = "gene_id"
    present.columns.name = "patient_id"
    return present
