"""Gene influence graphs and their reduction for trans analysis.

The influence graph is stored as an index-based adjacency list: genes
are numbered and each gene keeps a tuple of ``(neighbor_index,
weight)`` pairs. Edges are undirected in meaning. Storage need not be
symmetric, but :meth:`InfluenceGraph.neighbors` always answers
symmetrically.
"""

import logging
from dataclasses import dataclass, field

import pandas as pd

from .constants import DEFAULT_WEIGHT_THRESHOLD


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InfluenceGraph:
    """Weighted gene-gene influence graph.

    Attributes
    ----------
    genes : tuple of str
        Node identifiers; position in the tuple is the node index.
    adjacency : tuple of tuple
        ``adjacency[i]`` holds ``(j, weight)`` pairs for the edges
        stored from gene ``i``.

    Examples
    --------
    >>> g = InfluenceGraph.from_edges(pd.DataFrame(
    ...     {'gene_a': ['TP53'], 'gene_b': ['MDM2'], 'weight': [0.9]}))
    >>> g.neighbors('MDM2')
    [('TP53', 0.9)]

    """

    genes: tuple
    adjacency: tuple
    index: dict = field(init=False, repr=False, compare=False)
    _symmetric: tuple = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        genes = tuple(str(g) for g in self.genes)
        if len(set(genes)) != len(genes):
            raise ValueError("Duplicated genes in influence graph")
        if len(self.adjacency) != len(genes):
            raise ValueError(
                "adjacency must have one entry per gene")
        object.__setattr__(self, "genes", genes)
        object.__setattr__(
            self, "index", {g: i for i, g in enumerate(genes)})

        merged = [dict() for _ in genes]
        for i, edges in enumerate(self.adjacency):
            for j, w in edges:
                w = float(w)
                for a, b in ((i, j), (j, i)):
                    merged[a][b] = max(w, merged[a].get(b, w))
        object.__setattr__(
            self, "_symmetric",
            tuple(tuple(m.items()) for m in merged))

    @classmethod
    def from_edges(cls, edges: pd.DataFrame, genes=None):
        """Build a graph from an edge table.

        Parameters
        ----------
        edges : pandas.DataFrame
            Columns ``'gene_a'``, ``'gene_b'`` and optionally
            ``'weight'`` (default 1.0). Rows with missing weights are
            dropped.
        genes : iterable of str or None
            Extra isolated nodes to include.

        Returns
        -------
        InfluenceGraph

        """
        for col in ("gene_a", "gene_b"):
            if col not in edges.columns:
                raise KeyError(f"Edge table lacks column {col!r}")
        edges = edges.copy()
        if "weight" not in edges.columns:
            edges["weight"] = 1.0
        edges = edges.dropna(subset=["gene_a", "gene_b", "weight"])
        if (edges["weight"] < 0).any():
            raise ValueError("Edge weights must be non-negative")

        nodes = list(dict.fromkeys(
            list(edges["gene_a"].astype(str))
            + list(edges["gene_b"].astype(str))
            + [str(g) for g in (genes or [])]))
        index = {g: i for i, g in enumerate(nodes)}
        adjacency = [[] for _ in nodes]
        for a, b, w in zip(edges["gene_a"].astype(str),
                           edges["gene_b"].astype(str),
                           edges["weight"].astype(float)):
            adjacency[index[a]].append((index[b], w))
        return cls(tuple(nodes), tuple(tuple(a) for a in adjacency))

    @classmethod
    def from_mapping(cls, mapping):
        """Build a graph from ``{gene: {neighbor: weight}}``."""
        nodes = list(dict.fromkeys(
            [str(g) for g in mapping]
            + [str(n) for nbrs in mapping.values() for n in nbrs]))
        index = {g: i for i, g in enumerate(nodes)}
        adjacency = [[] for _ in nodes]
        for gene, nbrs in mapping.items():
            for nbr, w in dict(nbrs).items():
                adjacency[index[str(gene)]].append((index[str(nbr)], float(w)))
        return cls(tuple(nodes), tuple(tuple(a) for a in adjacency))

    @property
    def n_nodes(self):
        return len(self.genes)

    @property
    def n_edges(self):
        """Number of distinct undirected edges, self-loops included."""
        return sum(
            1 for i, nbrs in enumerate(self._symmetric)
            for j, _ in nbrs if j >= i)

    def __contains__(self, gene):
        return str(gene) in self.index

    def neighbors(self, gene, include_self=True):
        """Return ``[(neighbor, weight), ...]`` for `gene`.

        Edges stored in either direction are reported; a pair stored
        twice keeps its largest weight. Unknown genes have no
        neighbors.
        """
        i = self.index.get(str(gene))
        if i is None:
            return []
        return [(self.genes[j], w) for j, w in self._symmetric[i]
                if include_self or j != i]

    def neighbor_indices(self, gene, include_self=True):
        """Like :meth:`neighbors` but with node indices."""
        i = self.index.get(str(gene))
        if i is None:
            return []
        return [(j, w) for j, w in self._symmetric[i]
                if include_self or j != i]

    def is_self_loop_only(self):
        """True if every stored edge joins a gene to itself."""
        return all(j == i for i, nbrs in enumerate(self.adjacency)
                   for j, _ in nbrs)

    def subgraph(self, genes, min_edge_weight=0.0):
        """Restrict the graph to `genes` and to sufficiently heavy edges.

        Node order follows this graph.
        """
        keep = {str(g) for g in genes}
        nodes = [g for g in self.genes if g in keep]
        new_index = {g: i for i, g in enumerate(nodes)}
        adjacency = []
        for g in nodes:
            old = self.index[g]
            adjacency.append(tuple(
                (new_index[self.genes[j]], w)
                for j, w in self.adjacency[old]
                if self.genes[j] in new_index and w >= min_edge_weight))
        return InfluenceGraph(tuple(nodes), tuple(adjacency))

    def to_edges(self):
        """Return the stored edges as a ``gene_a, gene_b, weight`` table."""
        rows = [(self.genes[i], self.genes[j], w)
                for i, nbrs in enumerate(self.adjacency)
                for j, w in nbrs]
        return pd.DataFrame(rows, columns=["gene_a", "gene_b", "weight"])


def reduce_network(
        graph: InfluenceGraph,
        gene_weights: pd.Series,
        threshold: float = DEFAULT_WEIGHT_THRESHOLD,
        min_edge_weight: float = 0.0) -> InfluenceGraph:
    """Keep only sufficiently expressed genes and the edges among them.

    Parameters
    ----------
    graph : InfluenceGraph
        Full influence graph.
    gene_weights : pandas.Series
        Expressedness weight in [0, 1] per gene. Genes missing from
        the series are dropped.
    threshold : float, default 0.8
        Genes with weight below this value are removed.
    min_edge_weight : float, default 0.0
        Edges lighter than this are removed as well.

    Returns
    -------
    InfluenceGraph
        The reduced graph. Raising `threshold` never adds nodes or
        edges.

    """
    weights = pd.Series(gene_weights, dtype=float)
    weights.index = weights.index.astype(str)
    if weights.isna().any() or ((weights < 0) | (weights > 1)).any():
        raise ValueError("Gene weights must lie in [0, 1]")

    retained = weights.index[weights >= threshold]
    reduced = graph.subgraph(retained, min_edge_weight=min_edge_weight)
    logger.info(
        f"Reduced influence graph from {graph.n_nodes} genes / "
        f"{graph.n_edges} edges to {reduced.n_nodes} genes / "
        f"{reduced.n_edges} edges (weight >= {threshold}).")
    return reduced


def self_loop_graph(genes) -> InfluenceGraph:
    """Graph in which every gene is connected only to itself (cis)."""
    genes = tuple(dict.fromkeys(str(g) for g in genes))
    return InfluenceGraph(
        genes, tuple(((i, 1.0),) for i in range(len(genes))))
