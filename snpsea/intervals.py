"""
Genomic intervals and the per-chromosome interval index used to map loci to genes.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple


@dataclass(frozen=True)
class GenomicInterval:
    """A closed interval [start, end] on a chromosome."""
    chrom: str
    start: int
    end: int

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Interval end {self.end} is before start {self.start} on {self.chrom}")

    def expand(self, slop: int) -> 'GenomicInterval':
        """Widen the interval by slop on both sides, never starting below 1."""
        return GenomicInterval(self.chrom, max(1, self.start - slop), self.end + slop)


class _Node:
    __slots__ = ("center", "by_start", "by_end", "left", "right")

    def __init__(self, intervals: List[Tuple[int, int, int]]):
        # Center on the median midpoint to keep the tree balanced
        mids = sorted((start + end) // 2 for start, end, _ in intervals)
        self.center = mids[len(mids) // 2]

        left, right, center = [], [], []
        for iv in intervals:
            if iv[1] < self.center:
                left.append(iv)
            elif iv[0] > self.center:
                right.append(iv)
            else:
                center.append(iv)

        self.by_start = sorted(center, key=lambda iv: iv[0])
        self.by_end = sorted(center, key=lambda iv: iv[1], reverse=True)
        self.left = _Node(left) if left else None
        self.right = _Node(right) if right else None

    def query(self, start: int, end: int, out: List[int]) -> None:
        if end < self.center:
            # Every interval here ends at or after center > end
            for iv_start, _, value in self.by_start:
                if iv_start > end:
                    break
                out.append(value)
            if self.left is not None:
                self.left.query(start, end, out)
        elif start > self.center:
            # Every interval here starts at or before center < start
            for _, iv_end, value in self.by_end:
                if iv_end < start:
                    break
                out.append(value)
            if self.right is not None:
                self.right.query(start, end, out)
        else:
            out.extend(value for _, _, value in self.by_start)
            if self.left is not None:
                self.left.query(start, end, out)
            if self.right is not None:
                self.right.query(start, end, out)


class IntervalTree:
    """Centered interval tree over closed intervals carrying integer values.

    Built in O(n log n); a query returns the k overlapping values in O(log n + k).
    """

    def __init__(self, intervals: Iterable[Tuple[int, int, int]]):
        """
        Args:
            intervals: (start, end, value) triples
        """
        intervals = list(intervals)
        self.size = len(intervals)
        self.root: Optional[_Node] = _Node(intervals) if intervals else None

    def find_overlapping(self, start: int, end: int) -> List[int]:
        """Values of all intervals that share at least one position with [start, end]."""
        out: List[int] = []
        if self.root is not None and start <= end:
            self.root.query(start, end, out)
        return out

    def __len__(self) -> int:
        return self.size


class IntervalIndex:
    """Maps genomic intervals to overlapping gene row indices, one tree per chromosome.

    Attributes:
        row_names: gene names in row order; values stored in the trees index this list
        trees: chromosome name -> IntervalTree
        skipped_intervals: number of input intervals whose gene is not in row_names
        missing_genes: genes in row_names that have no interval
    """

    def __init__(self, trees: Dict[str, IntervalTree], row_names: Sequence[str],
                 skipped_intervals: int = 0, missing_genes: Optional[List[str]] = None):
        self.trees = trees
        self.row_names = list(row_names)
        self.skipped_intervals = skipped_intervals
        self.missing_genes = missing_genes or []

    @classmethod
    def build(cls, gene_intervals: Iterable[Tuple[str, GenomicInterval]],
              row_names: Sequence[str]) -> 'IntervalIndex':
        """Build the index from named gene intervals, keeping only genes listed in row_names.

        Args:
            gene_intervals: (gene name, interval) pairs; a gene may have several intervals
            row_names: gene names of the specificity matrix, in row order

        Returns:
            IntervalIndex whose values are positions in row_names
        """
        row_index = {name: i for i, name in enumerate(row_names)}
        by_chrom: Dict[str, List[Tuple[int, int, int]]] = {}
        seen: Set[str] = set()
        skipped = 0
        for name, interval in gene_intervals:
            if name not in row_index:
                skipped += 1
                continue
            by_chrom.setdefault(interval.chrom, []).append(
                (interval.start, interval.end, row_index[name])
            )
            seen.add(name)

        missing = [name for name in row_names if name not in seen]
        if skipped:
            logging.info(f"Skipped {skipped} gene intervals because their genes are absent from the gene matrix")
        if missing:
            logging.warning(f"{len(missing)} genes from the gene matrix have no gene interval")

        trees = {chrom: IntervalTree(ivs) for chrom, ivs in by_chrom.items()}
        return cls(trees, row_names, skipped, missing)

    @property
    def num_intervals(self) -> int:
        return sum(len(tree) for tree in self.trees.values())

    def overlap(self, chrom: str, start: int, end: int) -> List[int]:
        """Sorted unique gene row indices overlapping [start, end] on chrom."""
        tree = self.trees.get(chrom)
        if tree is None:
            return []
        return sorted(set(tree.find_overlapping(start, end)))

    def locus_genes(self, interval: GenomicInterval, slop: int) -> List[int]:
        """Genes overlapping a locus; if there are none, retry once with the locus widened by slop."""
        genes = self.overlap(interval.chrom, interval.start, interval.end)
        if not genes and slop > 0:
            wide = interval.expand(slop)
            genes = self.overlap(wide.chrom, wide.start, wide.end)
        return genes
