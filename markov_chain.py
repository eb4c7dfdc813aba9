"""
markov_chain.py
Word-level Markov chain: prefix window, chain model, corpus builder and
random-walk generator.

A chain maps a prefix (the last N words, joined by single spaces) to the
list of words observed to follow it. A word seen k times after a prefix is
stored k times, so a uniform draw over the list picks it with probability
proportional to k.

For "I am not a number! I am a free man!" and N=2:

    Prefix       Suffix
    " "          I          (both slots still hold the empty marker)
    " I"         am
    "I am"       not, a
    "am a"       free
    ...
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Iterable, Iterator, List, Optional, TextIO

import numpy as np


logger = logging.getLogger(__name__)

# Separator inside a prefix key. Corpus words are whitespace-split, so they
# can never contain it.
KEY_SEP = " "
# Fills every slot of a fresh prefix. Real corpus words are never empty.
EMPTY_WORD = ""


class MarkovError(Exception):
    """Base class for everything this package raises."""


class ConfigurationError(MarkovError, ValueError):
    pass


class BuildError(MarkovError):
    """A read failed part way through a build.

    The chain keeps every entry added before the failure.
    """

    def __init__(self, message: str, tokens_read: int = 0):
        super().__init__(message)
        self.tokens_read = tokens_read


class FormatError(MarkovError, ValueError):
    """Malformed frequency table, or chain content that cannot be written as one."""

    def __init__(self, message: str, line_no: Optional[int] = None):
        if line_no is not None:
            message = f"line {line_no}: {message}"
        super().__init__(message)
        self.line_no = line_no


def tokenize(text: str) -> List[str]:
    return text.split()


class Prefix:
    __slots__ = ("words",)

    def __init__(self, n: int):
        if n < 1:
            raise ConfigurationError(f"prefix length must be >= 1, got {n}")
        self.words: List[str] = [EMPTY_WORD] * n

    def key(self) -> str:
        return KEY_SEP.join(self.words)

    def shift(self, word: str) -> None:
        # in place: drop the oldest word, length stays N
        del self.words[0]
        self.words.append(word)

    def __len__(self) -> int:
        return len(self.words)

    def __str__(self) -> str:
        return self.key()

    def __repr__(self) -> str:
        return f"Prefix({self.words!r})"


class MarkovChain:
    """Prefix -> suffix pool mapping with a fixed prefix length.

    A chain is owned by one pass at a time. ``add`` is a read-modify-write on
    the pool, so concurrent builders need their own locking.
    """

    def __init__(self, prefix_len: int = 2):
        if prefix_len < 1:
            raise ConfigurationError(f"prefix length must be >= 1, got {prefix_len}")
        self.prefix_len = prefix_len
        self.chain: Dict[str, List[str]] = {}

    def new_prefix(self) -> Prefix:
        return Prefix(self.prefix_len)

    def add(self, key: str, word: str) -> None:
        pool = self.chain.get(key)
        if pool is None:
            pool = self.chain[key] = []
        pool.append(word)

    def suffixes(self, key: str) -> List[str]:
        return self.chain.get(key, [])

    def suffix_counts(self, key: str) -> Counter:
        return Counter(self.chain.get(key, ()))

    def keys(self) -> List[str]:
        return list(self.chain)

    def __len__(self) -> int:
        return len(self.chain)

    def __contains__(self, key: object) -> bool:
        return key in self.chain

    def __repr__(self) -> str:
        return f"MarkovChain(prefix_len={self.prefix_len}, prefixes={len(self.chain)})"

    # ------------------------------------------------------------------
    # building
    # ------------------------------------------------------------------

    def build_tokens(self, tokens: Iterable[str], prefix: Optional[Prefix] = None) -> Prefix:
        """Append every token of ``tokens`` to the pool of the prefix before it.

        Each call starts from a fresh all-empty prefix unless ``prefix`` is
        given. Passing the prefix returned by the previous call carries the
        trailing words of one source over as the seed of the next; callers
        that want sources kept independent simply leave it out.

        Returns the prefix as it stands after the last token.
        """
        if prefix is None:
            prefix = self.new_prefix()
        elif len(prefix) != self.prefix_len:
            raise ConfigurationError(
                f"prefix has {len(prefix)} words, chain expects {self.prefix_len}"
            )
        for word in tokens:
            self.add(prefix.key(), word)
            prefix.shift(word)
        return prefix

    def build(self, stream: TextIO, prefix: Optional[Prefix] = None) -> Prefix:
        """Build from a text stream of whitespace separated words.

        A read error stops the pass and is raised as ``BuildError``; the
        entries gathered up to that point stay in the chain.
        """
        counter = _CountingTokens(stream)
        try:
            prefix = self.build_tokens(counter, prefix)
        except (OSError, UnicodeDecodeError) as exc:
            raise BuildError(
                f"read failed after {counter.count} words: {exc}", counter.count
            ) from exc
        logger.debug(f"Built {counter.count} words into {len(self.chain)} prefixes")
        return prefix

    # ------------------------------------------------------------------
    # generation
    # ------------------------------------------------------------------

    def walk(self, max_words: int, rng: Optional[np.random.Generator] = None) -> Iterator[str]:
        """Yield at most ``max_words`` words of a random walk over the chain.

        The walk ends early, without error, at a prefix with no suffixes.
        """
        if max_words < 0:
            raise ConfigurationError(f"max_words must be >= 0, got {max_words}")
        if rng is None:
            rng = np.random.default_rng()
        prefix = self.new_prefix()
        for _ in range(max_words):
            choices = self.chain.get(prefix.key())
            if not choices:
                break
            word = choices[int(rng.integers(len(choices)))]
            yield word
            prefix.shift(word)

    def generate(self, max_words: int = 100, rng: Optional[np.random.Generator] = None) -> str:
        return " ".join(self.walk(max_words, rng))

    def stats(self) -> Dict[str, float]:
        total = sum(len(pool) for pool in self.chain.values())
        distinct = sum(len(set(pool)) for pool in self.chain.values())
        return {
            "prefix_len": self.prefix_len,
            "prefixes": len(self.chain),
            "suffix_entries": total,
            "distinct_suffixes": distinct,
            "mean_branching": distinct / len(self.chain) if self.chain else 0.0,
        }


class _CountingTokens:
    """Iterates the words of a text stream, counting how many were handed out."""

    __slots__ = ("stream", "count")

    def __init__(self, stream: Iterable[str]):
        self.stream = stream
        self.count = 0

    def __iter__(self) -> Iterator[str]:
        for line in self.stream:
            for word in tokenize(line):
                self.count += 1
                yield word
