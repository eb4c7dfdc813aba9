"""
Tests for the frequency-table codec: line format, round trips and the
error cases a corrupted table must raise.
"""
import io
import logging
from collections import Counter

import pytest

import freq_table
from markov_chain import ConfigurationError, FormatError, MarkovChain

SAMPLE = "I am not a number! I am a free man!"


def build(text, prefix_len=2):
    chain = MarkovChain(prefix_len)
    chain.build(io.StringIO(text))
    return chain


def assert_same_chain(a, b):
    assert a.prefix_len == b.prefix_len
    assert sorted(a.keys()) == sorted(b.keys())
    for key in a.keys():
        assert a.suffix_counts(key) == b.suffix_counts(key), f"pool differs for {key!r}"


def test_encode_line_sorts_words():
    assert freq_table.encode_line("I am", ["not", "a"]) == "I am\ta 1 not 1\n"


def test_decode_line():
    key, pairs = freq_table.decode_line("I am\ta 1 not 1\n", 2)
    assert key == "I am"
    assert pairs == [("a", 1), ("not", 1)]


def test_encode_pool_counts_duplicates():
    assert freq_table.encode_pool(["b", "a", "a"]) == [("a", 2), ("b", 1)]
    assert freq_table.encode_pool(["solo"]) == [("solo", 1)]


def test_duplicate_pool_round_trip():
    chain = MarkovChain(1)
    for word in ("a", "b", "a"):
        chain.add("x", word)

    text = freq_table.dumps(chain)
    assert text == "1\nx\ta 2 b 1\n"

    restored = freq_table.loads(text)
    assert sorted(restored.suffixes("x")) == ["a", "a", "b"]


def test_dumps_sample_table():
    text = freq_table.dumps(build(SAMPLE))
    lines = text.splitlines()
    assert lines[0] == "2"
    assert lines[1] == " \tI 1"
    assert lines[2] == " I\tam 1"
    assert "I am\ta 1 not 1" in lines
    assert len(lines) == 10
    assert lines[1:] == sorted(lines[1:])


@pytest.mark.parametrize("n", [1, 2, 3])
def test_round_trip(n):
    text = (SAMPLE + " ") * 3 + "the cat sat on the mat and the cat ran"
    chain = build(text, n)
    assert_same_chain(chain, freq_table.loads(freq_table.dumps(chain)))


def test_encoding_is_deterministic():
    a = MarkovChain(1)
    b = MarkovChain(1)
    for word in ("z", "y", "z"):
        a.add("k", word)
    a.add("j", "q")
    b.add("j", "q")
    for word in ("z", "z", "y"):
        b.add("k", word)

    assert freq_table.dumps(a) == freq_table.dumps(a)
    assert freq_table.dumps(a) == freq_table.dumps(b)


def test_headerless_fragment():
    chain = build(SAMPLE)
    body = freq_table.dumps(chain, header=False)
    assert not body.startswith("2\n")
    assert_same_chain(chain, freq_table.loads(body, prefix_len=2))


def test_fragments_merge_pools():
    text = "1\nk\ta 1\n\nk\ta 1 b 2\n"
    chain = freq_table.loads(text)
    assert chain.suffix_counts("k") == Counter({"a": 2, "b": 2})


def test_crlf_lines():
    chain = freq_table.loads("2\r\nI am\ta 1 not 1\r\n")
    assert chain.suffix_counts("I am") == Counter({"a": 1, "not": 1})


@pytest.mark.parametrize("text", [
    "",
    "\n\n",
    "two\nI am\ta 1\n",
    "I am\ta 1\n",
    "0\nx\ta 1\n",
    "-2\nx y\ta 1\n",
])
def test_bad_header(text):
    with pytest.raises(FormatError):
        freq_table.loads(text)


@pytest.mark.parametrize("line, reason", [
    ("I am a 1", "missing tab"),
    ("I am\ta 1 not", "odd field count"),
    ("I am\ta 0", "zero count"),
    ("I am\ta -1", "negative count"),
    ("I am\ta x", "non-numeric count"),
    ("I am\ta 1.5", "fractional count"),
    ("I am\t", "no suffixes"),
    ("I am not\ta 1", "too many prefix words"),
    ("I\ta 1", "too few prefix words"),
])
def test_malformed_line(line, reason):
    with pytest.raises(FormatError) as excinfo:
        freq_table.loads(f"2\n{line}\n")
    assert excinfo.value.line_no == 2, reason


@pytest.mark.parametrize("key, pool", [
    ("a\tb", ["x"]),
    ("a b", ["x\ty"]),
    ("a b", ["x\ny"]),
    ("a b", ["x y"]),
    ("a b", [""]),
    ("a b", []),
    ("a", ["x"]),
    ("a b c", ["x"]),
])
def test_unencodable_entries(key, pool):
    chain = MarkovChain(2)
    chain.chain[key] = pool
    buf = io.StringIO()
    with pytest.raises(FormatError):
        freq_table.dump(chain, buf)
    assert buf.getvalue() == ""


def test_save_and_load_table(tmp_path):
    path = tmp_path / "chain.txt"
    chain = build(SAMPLE)
    assert freq_table.save_table(chain, path) == 9
    assert_same_chain(chain, freq_table.load_table(path))


def test_append_writes_single_header(tmp_path):
    path = tmp_path / "chain.txt"
    freq_table.save_table(build("a b c"), path, append=True)
    freq_table.save_table(build("a b d"), path, append=True)

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines.count("2") == 1
    assert lines[0] == "2"

    chain = freq_table.load_table(path)
    assert chain.suffix_counts("a b") == Counter({"c": 1, "d": 1})
    assert chain.suffix_counts(" ") == Counter({"a": 2})


def test_append_rejects_other_prefix_length(tmp_path):
    path = tmp_path / "chain.txt"
    freq_table.save_table(build("a b c", 2), path)
    with pytest.raises(ConfigurationError):
        freq_table.save_table(build("a b c", 3), path, append=True)
    assert freq_table.read_header(path) == 2


def test_read_header_missing_file(tmp_path):
    assert freq_table.read_header(tmp_path / "nope.txt") is None


def test_oversized_count_is_rejected():
    with pytest.raises(FormatError) as excinfo:
        freq_table.loads("2\nI am\ta 99999999999\n")
    assert excinfo.value.line_no == 2

    with pytest.raises(FormatError):
        freq_table.loads(f"1\nk\tb 1\nk\ta {freq_table.MAX_POOL_SIZE}\n")


def test_undecodable_table_is_a_format_error(tmp_path):
    path = tmp_path / "chain.txt"
    path.write_bytes(b"2\nI am\t\xff\xfe 1\n")
    with pytest.raises(FormatError) as excinfo:
        freq_table.load_table(path)
    assert isinstance(excinfo.value.__cause__, UnicodeDecodeError)

    path.write_bytes(b"\xff\xfe\n")
    with pytest.raises(FormatError):
        freq_table.read_header(path)


def test_load_table_logs_stats(tmp_path, caplog):
    path = tmp_path / "chain.txt"
    freq_table.save_table(build(SAMPLE), path)
    with caplog.at_level(logging.INFO, logger="freq_table"):
        freq_table.load_table(path)
    assert "9 prefixes, 10 suffix entries" in caplog.text
