"""
freq_table.py
Frequency-table codec for MarkovChain.

Layout, one record per line:

    <N>
    <prefix key>\t<word> <count> <word> <count> ...

Keys and words inside a pool are written in sorted order, so the same chain
always encodes to the same bytes. A pool is stored as (word, count) pairs
and decoded by repeating each word ``count`` times, which keeps the sampling
weights of the original pool.
"""
from __future__ import annotations

import io
import logging
import os
import re
from collections import Counter
from pathlib import Path
from typing import Iterable, List, Optional, TextIO, Tuple, Union

from markov_chain import KEY_SEP, ConfigurationError, FormatError, MarkovChain


logger = logging.getLogger(__name__)

FIELD_SEP = "\t"
_COUNT_RE = re.compile(r"[0-9]+")
_FORBIDDEN = ("\t", "\n", "\r")
# largest pool a single prefix may decode to
MAX_POOL_SIZE = 1 << 24

PathLike = Union[str, os.PathLike]


def _check_text(text: str, what: str) -> None:
    for ch in _FORBIDDEN:
        if ch in text:
            raise FormatError(f"{what} {text!r} contains {ch!r}")


def encode_pool(pool: List[str]) -> List[Tuple[str, int]]:
    """Run-length encode a suffix pool as sorted (word, count) pairs."""
    if len(pool) == 1:
        return [(pool[0], 1)]
    return sorted(Counter(pool).items())


def encode_line(key: str, pool: List[str], prefix_len: Optional[int] = None) -> str:
    _check_text(key, "prefix key")
    if prefix_len is not None and len(key.split(KEY_SEP)) != prefix_len:
        raise FormatError(f"prefix {key!r} does not hold {prefix_len} words")
    if not pool:
        raise FormatError(f"prefix {key!r} has an empty suffix pool")
    fields = []
    for word, count in encode_pool(pool):
        if not word:
            raise FormatError(f"empty suffix word under prefix {key!r}")
        _check_text(word, "suffix word")
        if KEY_SEP in word:
            raise FormatError(f"suffix word {word!r} contains a space")
        fields.append(f"{word} {count}")
    return f"{key}{FIELD_SEP}{' '.join(fields)}\n"


def decode_line(line: str, prefix_len: int, line_no: Optional[int] = None) -> Tuple[str, List[Tuple[str, int]]]:
    """Parse one table line into its key and (word, count) pairs."""
    line = line.rstrip("\r\n")
    key, sep, rest = line.partition(FIELD_SEP)
    if not sep:
        raise FormatError("missing tab between prefix and suffixes", line_no)
    if len(key.split(KEY_SEP)) != prefix_len:
        raise FormatError(f"prefix {key!r} does not hold {prefix_len} words", line_no)

    fields = rest.split()
    if not fields:
        raise FormatError(f"no suffixes for prefix {key!r}", line_no)
    if len(fields) % 2:
        raise FormatError(f"odd number of suffix fields ({len(fields)})", line_no)

    pairs = []
    for word, count in zip(fields[0::2], fields[1::2]):
        if not _COUNT_RE.fullmatch(count) or int(count) == 0:
            raise FormatError(f"count {count!r} for {word!r} is not a positive integer", line_no)
        pairs.append((word, int(count)))
    return key, pairs


def parse_header(line: str, line_no: int = 1) -> int:
    text = line.strip()
    if not _COUNT_RE.fullmatch(text):
        raise FormatError(f"expected prefix length header, got {text!r}", line_no)
    prefix_len = int(text)
    if prefix_len < 1:
        raise FormatError(f"prefix length header must be >= 1, got {prefix_len}", line_no)
    return prefix_len


def dump(chain: MarkovChain, fp: TextIO, header: bool = True) -> int:
    """Write ``chain`` to ``fp``. Returns the number of prefix lines written.

    ``header=False`` leaves out the prefix length line, for appending to a
    table that already starts with one.
    """
    # encode everything first so a bad entry leaves fp untouched
    lines = [encode_line(key, chain.chain[key], chain.prefix_len) for key in sorted(chain.chain)]
    if header:
        fp.write(f"{chain.prefix_len}\n")
    fp.writelines(lines)
    return len(lines)


def dumps(chain: MarkovChain, header: bool = True) -> str:
    buf = io.StringIO()
    dump(chain, buf, header=header)
    return buf.getvalue()


def load(lines: Iterable[str], prefix_len: Optional[int] = None) -> MarkovChain:
    """Rebuild a chain from table lines.

    The first non-blank line must be the prefix length header unless
    ``prefix_len`` is passed, in which case the lines are read as a headerless
    fragment. A key repeated across appended fragments gets one merged pool.
    """
    chain = None if prefix_len is None else MarkovChain(prefix_len)
    for line_no, line in enumerate(lines, 1):
        if not line.rstrip("\r\n"):
            continue
        if chain is None:
            chain = MarkovChain(parse_header(line, line_no))
            continue
        key, pairs = decode_line(line, chain.prefix_len, line_no)
        pool = chain.chain.setdefault(key, [])
        for word, count in pairs:
            if len(pool) + count > MAX_POOL_SIZE:
                raise FormatError(f"pool for prefix {key!r} exceeds {MAX_POOL_SIZE} entries", line_no)
            pool.extend([word] * count)

    if chain is None:
        raise FormatError("table is empty, expected prefix length header")
    return chain


def loads(text: str, prefix_len: Optional[int] = None) -> MarkovChain:
    return load(io.StringIO(text), prefix_len=prefix_len)


def read_header(path: PathLike, encoding: str = "utf-8") -> Optional[int]:
    """Prefix length stored at the top of ``path``, or None for a missing/empty file."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding=encoding) as f:
            for line_no, line in enumerate(f, 1):
                if line.strip():
                    return parse_header(line, line_no)
    except UnicodeDecodeError as e:
        raise FormatError(f"{path} is not valid {encoding}: {e}") from e
    return None


def save_table(chain: MarkovChain, path: PathLike, append: bool = False, encoding: str = "utf-8") -> int:
    """Write ``chain`` to ``path``.

    In append mode the header is only written when the file has none yet,
    and an existing header must match the chain's prefix length.
    """
    header = True
    if append:
        existing = read_header(path, encoding)
        if existing is not None:
            if existing != chain.prefix_len:
                raise ConfigurationError(
                    f"{path} holds prefix length {existing}, chain uses {chain.prefix_len}"
                )
            header = False

    with open(path, "a" if append else "w", encoding=encoding, newline="\n") as f:
        written = dump(chain, f, header=header)

    size = os.path.getsize(path)
    logger.info(f"Frequency table {'appended to' if append else 'saved to'} {path} "
                f"({written} prefixes, {size} bytes)")
    return written


def load_table(path: PathLike, encoding: str = "utf-8") -> MarkovChain:
    try:
        with open(path, "r", encoding=encoding, newline="") as f:
            chain = load(f)
    except UnicodeDecodeError as e:
        raise FormatError(f"{path} is not valid {encoding}: {e}") from e
    stats = chain.stats()
    logger.info(f"Frequency table loaded from {path} "
                f"(prefix length {chain.prefix_len}, {stats['prefixes']} prefixes, "
                f"{stats['suffix_entries']} suffix entries, "
                f"mean branching {stats['mean_branching']:.2f})")
    return chain
