#!/usr/bin/env python3
"""
markov_cli.py
Command line front end: build a frequency table from text, generate text
from a saved table, or do both in one pass.

    markov-text --mode build --prefix 2 --model chain.txt book1.txt book2.txt
    markov-text --mode build --model output.txt --words 50 book.txt
    markov-text --mode generate --model chain.txt --words 50
    cat book.txt | markov-text --mode chain --words 50
"""
from __future__ import annotations

import argparse
import logging
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, TextIO

import numpy as np
from tqdm import tqdm

import freq_table
from markov_chain import BuildError, ConfigurationError, MarkovChain, MarkovError, Prefix


logger = logging.getLogger("markov_cli")

STDIN_NAME = "-"


@dataclass
class ChainConfig:
    """Settings for one CLI run"""
    prefix_len: int = 2             # words per prefix
    max_words: int = 100            # cap on generated words
    model_path: str = "output.txt"  # frequency table location
    seed: Optional[int] = None      # None: seeded from the clock
    encoding: str = "utf-8"
    carry_prefix: bool = False      # keep the prefix window across sources
    best_effort: bool = False       # keep partial chains on read errors
    append: bool = False            # append to an existing table
    progress: bool = True

    def __post_init__(self):
        if self.prefix_len < 1:
            raise ConfigurationError(f"prefix length must be >= 1, got {self.prefix_len}")
        if self.max_words < 0:
            raise ConfigurationError(f"word count must be >= 0, got {self.max_words}")

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "ChainConfig":
        return cls(
            prefix_len=args.prefix,
            max_words=args.words if args.words is not None else cls.max_words,
            model_path=args.model,
            seed=args.seed,
            encoding=args.encoding,
            carry_prefix=args.carry_prefix,
            best_effort=args.best_effort,
            append=args.append,
            progress=not args.no_progress,
        )

    def make_rng(self) -> np.random.Generator:
        seed = self.seed if self.seed is not None else time.time_ns()
        logger.info(f"Random seed: {seed}")
        return np.random.default_rng(seed)


@contextmanager
def open_source(name: str, encoding: str) -> Iterator[TextIO]:
    if name == STDIN_NAME:
        yield sys.stdin
        return
    with open(name, "r", encoding=encoding) as f:
        yield f


def build_chain(sources: Sequence[str], config: ChainConfig) -> MarkovChain:
    chain = MarkovChain(config.prefix_len)
    # one window for the whole run when carrying, shifted in place by every
    # build, so a failed source still hands its last words to the next one
    prefix: Optional[Prefix] = chain.new_prefix() if config.carry_prefix else None
    started = time.time()

    for name in tqdm(sources, desc="Building chain", unit="file", disable=not config.progress):
        try:
            with open_source(name, config.encoding) as stream:
                chain.build(stream, prefix)
        except BuildError as e:
            if not config.best_effort:
                raise
            logger.warning(f"Partial read of {name}, keeping {e.tokens_read} words: {e}")

    stats = chain.stats()
    logger.info(f"Chain built from {len(sources)} source(s) in {time.time() - started:.2f}s: "
                f"{stats['prefixes']} prefixes, {stats['suffix_entries']} suffix entries, "
                f"mean branching {stats['mean_branching']:.2f}")
    return chain


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="markov-text",
        description="Build word-level Markov chains from text and generate text from them",
    )
    parser.add_argument("--mode", choices=["build", "generate", "chain"], default="chain",
                        help="build: write a frequency table (and print text when --words is given); "
                             "generate: read one and print text; "
                             "chain: build from input and print text directly")
    parser.add_argument("--prefix", type=int, default=2, help="prefix length in words")
    parser.add_argument("--words", type=int,
                        help="maximum number of words to print (default 100; in build mode, "
                             "also print this many words after saving)")
    parser.add_argument("--model", "-m", default="output.txt", help="frequency table path")
    parser.add_argument("--seed", type=int, help="random seed for reproducible output")
    parser.add_argument("--encoding", default="utf-8", help="text encoding of inputs and table")
    parser.add_argument("--append", action="store_true",
                        help="append to an existing table instead of overwriting it")
    parser.add_argument("--carry-prefix", action="store_true",
                        help="let the last words of one input seed the next")
    parser.add_argument("--best-effort", action="store_true",
                        help="keep what was read when an input fails part way")
    parser.add_argument("--no-progress", action="store_true", help="hide the progress bar")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("inputs", nargs="*", help="input text files ('-' or none: stdin)")
    return parser


def run(args: argparse.Namespace) -> int:
    config = ChainConfig.from_args(args)
    sources: List[str] = args.inputs or [STDIN_NAME]

    if args.mode == "build":
        chain = build_chain(sources, config)
        freq_table.save_table(chain, config.model_path, append=config.append,
                              encoding=config.encoding)
        if args.words is None:
            return 0
    elif args.mode == "generate":
        chain = freq_table.load_table(config.model_path, encoding=config.encoding)
    else:
        chain = build_chain(sources, config)

    text = chain.generate(config.max_words, config.make_rng())
    print(text)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = create_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(levelname)s:%(name)s:%(message)s")
    try:
        return run(args)
    except (MarkovError, OSError) as e:
        logger.error(f"{args.mode} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
