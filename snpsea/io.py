"""
Readers for the files SNPsea takes as input and writers for the files it produces.
"""
import contextlib
import gzip
import logging
import os
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

import numpy as np
import polars as pl
from filelock import FileLock

from .intervals import GenomicInterval
from .montecarlo import PValueRecord
from .options import EnrichmentOptions
from .reports import records_to_frame

PathLike = Union[str, os.PathLike]

BED_COLUMNS = ['chrom', 'start', 'end', 'name']
NAME_HEADERS = ('SNP', 'snp', 'name', 'marker')
_SKIP_PREFIXES = ('#', 'track', 'browser')


def _read_text(path: PathLike) -> str:
    """Read a text file that may be gzip-compressed."""
    with open(path, 'rb') as f:
        data = f.read()
    if data[:2] == b'\x1f\x8b':
        data = gzip.decompress(data)
    return data.decode()


def _data_lines(path: PathLike, skip_prefixes: Sequence[str] = ('#',)) -> List[str]:
    return [
        line for line in _read_text(path).splitlines()
        if line.strip() and not line.startswith(tuple(skip_prefixes))
    ]


def read_bed(path: PathLike) -> pl.DataFrame:
    """Read the first four columns of a BED file.

    Comment, track and browser lines are skipped. Coordinates are kept as they
    appear in the file.

    Args:
        path: BED file, optionally gzip-compressed

    Returns:
        DataFrame with columns chrom, start, end, name
    """
    lines = _data_lines(path, _SKIP_PREFIXES)
    if not lines:
        return pl.DataFrame(schema={'chrom': pl.Utf8, 'start': pl.Int64, 'end': pl.Int64, 'name': pl.Utf8})

    df = pl.read_csv(
        '\n'.join(lines).encode(),
        separator='\t',
        has_header=False,
        infer_schema_length=0,
        truncate_ragged_lines=True,
    )
    if df.width < len(BED_COLUMNS):
        raise ValueError(f"{path} has {df.width} columns, expected at least {len(BED_COLUMNS)}")

    df = df.select(df.columns[:len(BED_COLUMNS)])
    df.columns = BED_COLUMNS
    if df.null_count().sum_horizontal().item() > 0:
        raise ValueError(f"{path} has rows with fewer than {len(BED_COLUMNS)} columns")

    return df.with_columns(
        pl.col('start').str.strip_chars().cast(pl.Int64),
        pl.col('end').str.strip_chars().cast(pl.Int64),
    )


def _intervals(df: pl.DataFrame) -> List[Tuple[str, GenomicInterval]]:
    return [
        (name, GenomicInterval(chrom, start, end))
        for chrom, start, end, name in df.select(BED_COLUMNS).iter_rows()
    ]


def read_bed_intervals(path: PathLike) -> Dict[str, GenomicInterval]:
    """Read named SNP intervals. If a name appears more than once, the last row wins."""
    intervals = dict(_intervals(read_bed(path)))
    logging.info(f"{path} has {len(intervals)} intervals")
    return intervals


def read_gene_intervals(path: PathLike) -> List[Tuple[str, GenomicInterval]]:
    """Read gene intervals. A gene may have several intervals."""
    intervals = _intervals(read_bed(path))
    logging.info(f"{path} has {len(intervals)} gene intervals")
    return intervals


def read_gct(path: PathLike) -> Tuple[np.ndarray, List[str], List[str]]:
    """Read a GCT 1.2 gene matrix.

    Line 1 is '#1.2', line 2 holds the number of rows and columns, line 3 is
    the header 'Name', 'Description', then one name per column.

    Args:
        path: GCT file, optionally gzip-compressed

    Returns:
        Tuple of (values, row_names, col_names)

    Raises:
        ValueError: if the file is not a well-formed GCT file
    """
    lines = _read_text(path).splitlines()
    if not lines or not lines[0].startswith('#1.2'):
        raise ValueError(f"Not a GCT file: {path}")
    try:
        num_rows, num_cols = (int(x) for x in lines[1].split()[:2])
    except (IndexError, ValueError):
        raise ValueError(f"Line 2 of GCT file is malformed: {path}")
    if num_rows <= 0 or num_cols <= 0:
        raise ValueError(f"Line 2 of GCT file is malformed: {path}")
    logging.info(f"{path} has {num_rows} rows, {num_cols} columns")

    body = '\n'.join(line for line in lines[2:] if line.strip())
    df = pl.read_csv(body.encode(), separator='\t', has_header=True, infer_schema_length=0)
    if df.width != num_cols + 2:
        raise ValueError(f"{path} declares {num_cols} columns but has {df.width - 2}")
    if df.height != num_rows:
        raise ValueError(f"{path} declares {num_rows} rows but has {df.height}")

    row_names = df.get_column(df.columns[0]).to_list()
    col_names = df.columns[2:]
    values = (
        df.select(pl.col(col_names).str.strip_chars().cast(pl.Float64))
        .to_numpy()
        .astype(np.float64)
    )
    return values, row_names, col_names


def read_names(path: PathLike) -> Set[str]:
    """Read a set of names, one per line.

    Lines starting with '#' are skipped. Names are taken from the first
    column, unless the first line has a column headed SNP, snp, name or
    marker, in which case that column is used.

    Raises:
        ValueError: if the file holds no names
    """
    lines = _data_lines(path)
    if not lines:
        raise ValueError(f"No names found in {path}")

    df = pl.read_csv(
        '\n'.join(lines).encode(),
        separator='\t',
        has_header=False,
        infer_schema_length=0,
        truncate_ragged_lines=True,
    )
    header = df.row(0)
    col = 0
    for i, value in enumerate(header):
        if value in NAME_HEADERS:
            col = i
            df = df.slice(1)
            break

    names = set(df.get_column(df.columns[col]).drop_nulls().str.strip_chars().to_list())
    names.discard('')
    if not names:
        raise ValueError(f"No names found in {path}")
    logging.info(f"{path} has {len(names)} items")
    return names


def write_table(path: PathLike, df: pl.DataFrame, append: bool = False) -> None:
    """Write a tab-separated table; missing values are written as NA.

    With append=True the rows are added to the end of an existing file
    without a header. Writes are serialized with a lock file next to path,
    removed once the write is done.
    """
    path = str(path)
    lock_path = path + ".lock"
    with FileLock(lock_path):
        if append and os.path.exists(path):
            with open(path, 'ab') as f:
                df.write_csv(f, separator='\t', include_header=False, null_value='NA')
        else:
            df.write_csv(path, separator='\t', null_value='NA')
    with contextlib.suppress(FileNotFoundError):
        os.remove(lock_path)


def write_pvalues(path: PathLike, records: Sequence[PValueRecord],
                  append: bool = False, replicates: bool = False) -> None:
    """Write p-value records, with a replicate column if replicates is True."""
    write_table(path, records_to_frame(records, replicates=replicates), append=append)


def write_snp_genes(path: PathLike, df: pl.DataFrame) -> None:
    logging.info(f"Writing {path}")
    write_table(path, df)


def write_condition_scores(path: PathLike, df: pl.DataFrame) -> None:
    logging.info(f"Writing {path}")
    write_table(path, df)


def write_args(path: PathLike, options: EnrichmentOptions,
               inputs: Mapping[str, Optional[str]], seed: int) -> None:
    """Record the command line arguments of a run so it can be repeated."""
    args = dict(inputs)
    args.update({
        'score': options.score_method,
        'slop': options.slop,
        'processes': options.processes,
        'null-snpsets': options.null_replicates,
        'min-observations': options.min_observations,
        'max-iterations': options.max_iterations,
        'seed': seed,
    })
    width = max(len(key) for key in args) + 2
    with open(path, 'w') as f:
        f.write("snpsea \\\n")
        f.write(" \\\n".join(f"    --{key:<{width}} {value}" for key, value in args.items() if value is not None))
        f.write("\n")
