import io
import pytest

from git_insight import (
    CommitRecord, CommitStreamParser, ParseStats, StreamReadError,
    iter_commits, parse_commit_stream, parse_change_counts,
)


def make_block(timestamp, *changes):
    lines = ["---COMMIT---", str(timestamp)]
    lines.extend(f"{a}\t{d}\t{path}" for a, d, path in changes)
    return "\n".join(lines) + "\n"


# ============================================================================
# CHANGE LINES
# ============================================================================

def test_parse_change_counts():
    assert parse_change_counts("10\t5\tsrc/f.py") == (10, 5)
    assert parse_change_counts("0\t0\tempty.txt") == (0, 0)
    # Path is not needed to count
    assert parse_change_counts("3\t4") == (3, 4)

    # Binary marker in either field
    assert parse_change_counts("-\t-\timg.png") is None
    assert parse_change_counts("-\t3\tweird.dat") is None
    assert parse_change_counts("3\t-\tweird.dat") is None

    # Empty, non-numeric, negative, too few fields
    assert parse_change_counts("\t\tpath") is None
    assert parse_change_counts("ten\t5\tf.py") is None
    assert parse_change_counts("-5\t5\tf.py") is None
    assert parse_change_counts("garbage") is None


# ============================================================================
# BLOCK PARSING
# ============================================================================

def test_round_trip_counting():
    expected = [
        (1_700_000_000 - i * 3600, i * 3, i * 2 + 1)
        for i in range(25)
    ]
    stream = "".join(
        make_block(ts, (added, 0, "a.py"), (0, deleted, "b.py"))
        for ts, added, deleted in expected
    )

    records = parse_commit_stream(io.StringIO(stream))

    assert records == [CommitRecord(ts, a, d) for ts, a, d in expected]


def test_sample_log(sample_log):
    stats = ParseStats()
    records = parse_commit_stream(sample_log.splitlines(), stats)

    # Native newest-first order is kept, not sorted
    assert [r.timestamp for r in records] == [1705500000, 1705400000, 1705300000]
    assert records[0] == CommitRecord(1705500000, 15, 7)
    assert records[1] == CommitRecord(1705400000, 7, 0)
    assert records[2] == CommitRecord(1705300000, 100, 40)
    assert stats.commits == 3
    assert stats.binary_lines == 1
    assert stats.dropped_blocks == 0


def test_binary_file_exclusion():
    stream = make_block(
        1_700_000_000,
        ("-", "-", "logo.png"),
        ("12", "3", "main.py"),
        ("-", "-", "font.woff"),
    )
    records = parse_commit_stream(stream.splitlines())
    assert records == [CommitRecord(1_700_000_000, 12, 3)]


def test_binary_only_commit_still_counts():
    stream = make_block(1_700_000_000, ("-", "-", "logo.png"))
    records = parse_commit_stream(stream.splitlines())
    assert records == [CommitRecord(1_700_000_000, 0, 0)]


def test_commit_without_change_lines():
    stream = "---COMMIT---\n1700000000\n---COMMIT---\n1700000100\n5\t1\tf.py\n"
    records = parse_commit_stream(stream.splitlines())
    assert records == [
        CommitRecord(1_700_000_000, 0, 0),
        CommitRecord(1_700_000_100, 5, 1),
    ]


def test_corrupt_timestamp_drops_only_its_block():
    stream = (
        make_block(1_700_000_300, (1, 1, "a.py"))
        + make_block(1_700_000_200, (2, 2, "b.py"))
        + make_block("not-a-time", (1000, 1000, "lost.py"))
        + make_block(1_700_000_100, (3, 3, "c.py"))
    )
    stats = ParseStats()
    records = parse_commit_stream(stream.splitlines(), stats)

    assert len(records) == 3
    assert records == [
        CommitRecord(1_700_000_300, 1, 1),
        CommitRecord(1_700_000_200, 2, 2),
        CommitRecord(1_700_000_100, 3, 3),
    ]
    # Change lines of the broken block are not credited to its neighbour
    assert stats.dropped_blocks == 1
    assert stats.orphan_lines == 1


def test_blank_timestamp_drops_block():
    stream = "---COMMIT---\n\n4\t4\tx.py\n" + make_block(1_700_000_000, (1, 0, "y.py"))
    records = parse_commit_stream(stream.splitlines())
    assert records == [CommitRecord(1_700_000_000, 1, 0)]


def test_malformed_change_line_skips_only_that_line():
    stream = make_block(
        1_700_000_000,
        ("7", "2", "ok.py"),
        ("x", "2", "bad.py"),
        ("3", "1.5", "bad2.py"),
        ("1", "1", "ok2.py"),
    ) + "just some noise\n"
    stats = ParseStats()
    records = parse_commit_stream(stream.splitlines(), stats)

    assert records == [CommitRecord(1_700_000_000, 8, 3)]
    assert stats.skipped_lines == 3


def test_lines_before_first_block_are_ignored():
    stream = "5\t5\tstray.py\nwarning: something\n" + make_block(1_700_000_000, (1, 2, "a.py"))
    stats = ParseStats()
    records = parse_commit_stream(stream.splitlines(), stats)
    assert records == [CommitRecord(1_700_000_000, 1, 2)]
    assert stats.orphan_lines == 2


def test_blank_lines_are_skipped():
    stream = "\n\n---COMMIT---\n1700000000\n\n\n4\t1\ta.py\n\n\n2\t2\tb.py\n\n"
    records = parse_commit_stream(stream.splitlines())
    assert records == [CommitRecord(1_700_000_000, 6, 3)]


def test_trailing_delimiter_without_timestamp():
    stream = make_block(1_700_000_000, (1, 1, "a.py")) + "---COMMIT---\n"
    stats = ParseStats()
    records = parse_commit_stream(stream.splitlines(), stats)
    assert records == [CommitRecord(1_700_000_000, 1, 1)]
    assert stats.dropped_blocks == 1


def test_negative_timestamp_is_valid():
    records = parse_commit_stream(make_block(-86401, (1, 0, "old.txt")).splitlines())
    assert records == [CommitRecord(-86401, 1, 0)]


def test_empty_stream():
    assert parse_commit_stream([]) == []
    assert parse_commit_stream(io.StringIO("")) == []


def test_crlf_line_endings():
    stream = "---COMMIT---\r\n1700000000\r\n3\t1\ta.py\r\n"
    records = parse_commit_stream(io.StringIO(stream, newline=""))
    assert records == [CommitRecord(1_700_000_000, 3, 1)]


def test_rename_and_quoted_paths():
    # Rename notation and quoted paths still count their lines
    stream = make_block(
        1_700_000_000,
        ("4", "2", "src/{old => new}/mod.py"),
        ("1", "0", '"odd\\tname.txt"'),
    )
    records = parse_commit_stream(stream.splitlines())
    assert records == [CommitRecord(1_700_000_000, 5, 2)]


# ============================================================================
# BYTE STREAMS & READ ERRORS
# ============================================================================

def test_bytes_stream(sample_log):
    records = parse_commit_stream(io.BytesIO(sample_log.encode("utf-8")))
    assert len(records) == 3
    assert records[2] == CommitRecord(1705300000, 100, 40)


def test_undecodable_bytes_raise_read_error():
    stream = io.BytesIO(b"---COMMIT---\n1700000000\n1\t1\t\xff\xfe.py\n")
    with pytest.raises(StreamReadError):
        parse_commit_stream(stream)


class FailingStream:
    """Yields some lines, then fails like a broken pipe."""

    def __init__(self, lines):
        self.lines = lines

    def __iter__(self):
        yield from self.lines
        raise OSError("Input/output error")


def test_read_failure_is_propagated():
    stream = FailingStream(["---COMMIT---", "1700000000", "1\t1\ta.py"])
    with pytest.raises(StreamReadError, match="Input/output error"):
        parse_commit_stream(stream)


def test_read_error_is_an_os_error():
    assert issubclass(StreamReadError, OSError)


def test_iter_commits_is_lazy():
    stream = FailingStream([
        "---COMMIT---", "1700000000", "1\t1\ta.py",
        "---COMMIT---", "1700000100",
    ])
    commits = iter_commits(stream)

    # First block is complete once the second delimiter is read
    assert next(commits) == CommitRecord(1_700_000_000, 1, 1)
    with pytest.raises(StreamReadError):
        next(commits)


def test_iter_commits_large_generated_stream():
    def generate(n):
        for i in range(n):
            yield "---COMMIT---\n"
            yield f"{1_600_000_000 + i}\n"
            yield "1\t2\tfile.py\n"
            yield "-\t-\tblob.bin\n"

    stats = ParseStats()
    total = 0
    count = 0
    for record in iter_commits(generate(20_000), stats):
        count += 1
        total += record.total_changes

    assert count == 20_000
    assert total == 60_000
    assert stats.binary_lines == 20_000


# ============================================================================
# INCREMENTAL PARSER
# ============================================================================

def test_parser_feed_and_finish():
    parser = CommitStreamParser()
    assert parser.feed("---COMMIT---") is None
    assert parser.feed("1700000000") is None
    assert parser.feed("2\t3\ta.py") is None

    # Next delimiter completes the previous record
    assert parser.feed("---COMMIT---") == CommitRecord(1_700_000_000, 2, 3)
    assert parser.feed("1700000500") is None
    assert parser.finish() == CommitRecord(1_700_000_500, 0, 0)
    assert parser.finish() is None
    assert parser.stats.to_dict()["commits"] == 2


def test_parser_stats_are_independent():
    first = CommitStreamParser()
    second = CommitStreamParser()
    first.feed("---COMMIT---")
    first.feed("1")
    first.finish()
    assert first.stats.commits == 1
    assert second.stats.commits == 0
