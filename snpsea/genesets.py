"""
Gene sets for loci: resolving loci to genes, merging loci that share genes,
and sampling null gene sets.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np

from .intervals import GenomicInterval, IntervalIndex
from .options import ConfigurationError

MAX_GENES = 10

MATCHED = 'matched'
RANDOM = 'random'


@dataclass
class GenesetResolution:
    """Result of overlapping named loci with gene intervals.

    Attributes:
        genesets: locus name -> sorted gene row indices, for loci with at least one gene
        absent: names missing from the locus intervals
        naked: names that overlap no genes, even after widening by slop
    """
    genesets: Dict[str, np.ndarray] = field(default_factory=dict)
    absent: Set[str] = field(default_factory=set)
    naked: Set[str] = field(default_factory=set)

    @property
    def names(self) -> List[str]:
        return sorted(self.genesets)


def resolve_genesets(names: Iterable[str],
                     locus_intervals: Mapping[str, GenomicInterval],
                     index: IntervalIndex,
                     slop: int) -> GenesetResolution:
    """Find the genes overlapping each named locus.

    Args:
        names: locus names to resolve
        locus_intervals: locus name -> interval
        index: gene interval index
        slop: widening used when a locus overlaps no genes directly

    Returns:
        GenesetResolution partitioning names into resolved, absent and naked loci
    """
    result = GenesetResolution()
    for name in sorted(set(names)):
        interval = locus_intervals.get(name)
        if interval is None:
            logging.info(f"{name} not found in the SNP intervals")
            result.absent.add(name)
            continue
        genes = index.locus_genes(interval, slop)
        if genes:
            result.genesets[name] = np.asarray(genes, dtype=np.int64)
        else:
            result.naked.add(name)
    logging.info(f"Resolved {len(result.genesets)} SNPs. "
                 f"{len(result.absent)} SNPs not found. "
                 f"{len(result.naked)} SNPs overlap 0 genes.")
    return result


class DisjointSet:
    """Union-find over integers 0..n-1 with path halving and union by size."""

    def __init__(self, n: int):
        self.parent = list(range(n))
        self.size = [1] * n

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, i: int, j: int) -> bool:
        """Join the sets of i and j. Returns False if they were already joined."""
        i, j = self.find(i), self.find(j)
        if i == j:
            return False
        if self.size[i] < self.size[j]:
            i, j = j, i
        self.parent[j] = i
        self.size[i] += self.size[j]
        return True

    def groups(self) -> List[List[int]]:
        """Members of each set, each list sorted, lists ordered by their first member."""
        members: Dict[int, List[int]] = {}
        for i in range(len(self.parent)):
            members.setdefault(self.find(i), []).append(i)
        return sorted(members.values(), key=lambda group: group[0])


def merge_loci(genesets: Mapping[str, Sequence[int]]) -> Dict[str, np.ndarray]:
    """Merge loci that share at least one gene.

    Every pair of loci is compared, so this is O(n^2) in the number of loci;
    tested SNP sets hold at most a few thousand loci. Loci are joined with a
    union-find structure, so chains of overlapping loci end up in one group
    and merging the output again changes nothing.

    Args:
        genesets: locus name -> gene row indices

    Returns:
        merged locus name -> sorted union of gene row indices. Merged names are
        the member names, sorted and joined with commas.
    """
    names = sorted(genesets)
    gene_sets = [set(int(g) for g in genesets[name]) for name in names]
    loci = DisjointSet(len(names))
    for i in range(len(names)):
        for j in range(i + 1, len(names)):
            if not gene_sets[i].isdisjoint(gene_sets[j]):
                loci.union(i, j)

    merged: Dict[str, np.ndarray] = {}
    num_merged_snps = 0
    num_merged_loci = 0
    for group in loci.groups():
        genes = set().union(*(gene_sets[i] for i in group))
        merged[','.join(names[i] for i in group)] = np.array(sorted(genes), dtype=np.int64)
        if len(group) > 1:
            num_merged_snps += len(group)
            num_merged_loci += 1

    logging.info(f"Merged {num_merged_snps} SNPs into {num_merged_loci} loci")
    return dict(sorted(merged.items()))


def cap_sizes(sizes: Iterable[int], max_genes: int = MAX_GENES) -> List[int]:
    """Clamp gene set sizes to max_genes for binning."""
    return [min(int(size), max_genes) for size in sizes]


def to_compressed(genesets: Sequence[Sequence[int]]) -> Tuple[np.ndarray, np.ndarray]:
    """Concatenate gene sets into a flat gene array and an offsets array of length n + 1."""
    lengths = np.array([len(g) for g in genesets], dtype=np.int64)
    offsets = np.zeros(len(genesets) + 1, dtype=np.int64)
    np.cumsum(lengths, out=offsets[1:])
    if len(genesets) and offsets[-1] > 0:
        genes = np.concatenate([np.asarray(g, dtype=np.int64) for g in genesets])
    else:
        genes = np.zeros(0, dtype=np.int64)
    return genes, offsets


@dataclass
class GenesetPool:
    """Gene sets of the null SNPs, grouped by capped size.

    Attributes:
        names: null SNP names, sorted
        genes: gene row indices of all gene sets, concatenated
        offsets: gene set i is genes[offsets[i]:offsets[i + 1]]
        bins: capped size -> indices of gene sets with that capped size
        max_genes: sizes above this share the top bin
    """
    names: List[str]
    genes: np.ndarray
    offsets: np.ndarray
    bins: Dict[int, np.ndarray]
    max_genes: int = MAX_GENES

    @classmethod
    def build(cls,
              null_names: Iterable[str],
              locus_intervals: Mapping[str, GenomicInterval],
              index: IntervalIndex,
              slop: int,
              max_genes: int = MAX_GENES) -> 'GenesetPool':
        """Resolve every null SNP and bin its gene set by capped size.

        Null SNPs that are absent from locus_intervals or overlap no genes are left out.
        """
        names, genesets = [], []
        for name in sorted(set(null_names)):
            interval = locus_intervals.get(name)
            if interval is None:
                continue
            genes = index.locus_genes(interval, slop)
            if genes:
                names.append(name)
                genesets.append(genes)

        genes, offsets = to_compressed(genesets)
        capped = np.minimum(np.diff(offsets), max_genes)
        bins = {int(size): np.flatnonzero(capped == size) for size in np.unique(capped)}
        logging.info(f"Binned {len(names)} null SNPs that overlap at least one gene")
        return cls(names, genes, offsets, bins, max_genes)

    def __len__(self) -> int:
        return len(self.names)

    @property
    def sizes(self) -> np.ndarray:
        return np.diff(self.offsets)

    def geneset(self, i: int) -> np.ndarray:
        return self.genes[self.offsets[i]:self.offsets[i + 1]]

    def bin_size(self, size: int) -> int:
        members = self.bins.get(size)
        return 0 if members is None else len(members)


class NullSampler:
    """Draws null SNP sets from a GenesetPool.

    In matched mode each draw holds one gene set per tested locus, drawn with
    replacement from the bin of the locus's capped size. In random mode each
    draw holds num_loci distinct gene sets drawn without regard to size.
    """

    def __init__(self, pool: GenesetPool, mode: str = MATCHED,
                 sizes: Optional[Sequence[int]] = None,
                 num_loci: Optional[int] = None):
        """
        Args:
            pool: null gene sets
            mode: 'matched' or 'random'
            sizes: gene set sizes of the tested loci (matched mode); capped here
            num_loci: loci per draw (random mode)

        Raises:
            ConfigurationError: if the pool cannot supply the requested draws
        """
        self.pool = pool
        self.mode = mode
        if mode == MATCHED:
            if sizes is None or len(sizes) == 0:
                raise ConfigurationError("Matched sampling needs the sizes of at least one gene set")
            self.sizes = cap_sizes(sizes, pool.max_genes)
            empty = sorted({s for s in self.sizes if pool.bin_size(s) == 0})
            if empty:
                raise ConfigurationError(
                    f"No null SNPs overlap a gene set of size {', '.join(map(str, empty))}")
            self.num_loci = len(self.sizes)
            # Order columns by bin so a draw is a handful of vectorized lookups
            self._bin_counts = [(s, self.sizes.count(s)) for s in sorted(set(self.sizes))]
        elif mode == RANDOM:
            if num_loci is None or num_loci <= 0:
                raise ConfigurationError("Random sampling needs a positive number of loci")
            if num_loci > len(pool):
                raise ConfigurationError(
                    f"Cannot draw {num_loci} distinct null SNPs from {len(pool)} that overlap genes")
            self.num_loci = num_loci
            self.sizes = None
        else:
            raise ConfigurationError(f"Unknown sampling mode '{mode}'")

    def draw(self, rng: np.random.Generator, num_draws: int) -> np.ndarray:
        """Draw null SNP sets.

        Returns:
            (num_draws, num_loci) array of indices into the pool
        """
        if self.mode == MATCHED:
            columns = []
            for size, count in self._bin_counts:
                members = self.pool.bins[size]
                columns.append(members[rng.integers(0, len(members), size=(num_draws, count))])
            return np.hstack(columns)

        result = np.empty((num_draws, self.num_loci), dtype=np.int64)
        for i in range(num_draws):
            result[i] = rng.choice(len(self.pool), size=self.num_loci, replace=False)
        return result

    def genesets(self, rng: np.random.Generator) -> List[np.ndarray]:
        """Draw one null SNP set as a list of gene sets."""
        return [self.pool.geneset(i) for i in self.draw(rng, 1)[0]]


def random_loci(pool: GenesetPool, n: int, rng: np.random.Generator) -> List[str]:
    """Pick n distinct null SNPs that overlap at least one gene.

    Raises:
        ConfigurationError: if fewer than n null SNPs overlap genes
    """
    if n > len(pool):
        raise ConfigurationError(f"Cannot pick {n} random SNPs from {len(pool)} null SNPs that overlap genes")
    picks = rng.choice(len(pool), size=n, replace=False)
    return sorted(pool.names[i] for i in picks)
