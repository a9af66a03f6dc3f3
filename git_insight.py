#!/usr/bin/env python3
"""
Git Insight - Commit Productivity Metrics (v1.2.0)

Turns `git log --numstat` output into daily and monthly productivity reports:
- Streaming commit-stream parser (constant memory on multi-million commit logs)
- Daily buckets covering the whole span, including days without commits
- Monthly history buckets (only months with activity)
- Average commit size and refactoring ratio (deleted / added)
- Large-commit filtering for bulk imports and vendored code
- Per-language breakdown by file extension
- Terminal tables, bar charts and sparklines (colorama)
- JSON export, YAML/JSON configuration files and presets

Author: Git Insight Team
Version: 1.2.0
"""

import json
import os
import re
import subprocess
import sys
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Union

import click
import psutil
import yaml
from colorama import Fore, Style, init as colorama_init
from tqdm import tqdm

# Version information
VERSION = "1.2.0"
SCHEMA_VERSION = "1.0.0"

COMMIT_DELIMITER = "---COMMIT---"
BINARY_MARKER = "-"
SECONDS_PER_DAY = 24 * 60 * 60

DEFAULT_SINCE = "30 days ago"
DEFAULT_HISTORY_SINCE = "1 year ago"
DEFAULT_MAX_COMMIT_SIZE = 10000

_TIMESTAMP_RE = re.compile(r"[+-]?[0-9]+")
_COUNT_RE = re.compile(r"[0-9]+")


class StreamReadError(OSError):
    """The commit stream could not be read or decoded."""


# ============================================================================
# DATA STRUCTURES & MODELS
# ============================================================================


@dataclass(frozen=True)
class CommitRecord:
    """One commit: commit time plus line counts summed over its text files."""

    timestamp: int
    lines_added: int = 0
    lines_deleted: int = 0

    @property
    def total_changes(self) -> int:
        return self.lines_added + self.lines_deleted


@dataclass(frozen=True)
class DayBucket:
    day_start: int
    commit_count: int
    lines_added: int
    lines_deleted: int
    avg_commit_size: float
    refactoring_ratio: float


@dataclass(frozen=True)
class MonthBucket:
    """
    Aggregate for one month.

    month_key only orders and groups buckets; sample_timestamp is the first
    commit seen for the month and is what gets formatted for display.
    """

    month_key: int
    sample_timestamp: int
    commit_count: int
    lines_added: int
    lines_deleted: int
    avg_commit_size: float
    refactoring_ratio: float


@dataclass(frozen=True)
class ReportTotals:
    commit_count: int
    lines_added: int
    lines_deleted: int
    avg_commit_size: float
    refactoring_ratio: float


@dataclass
class ParseStats:
    """Counters describing what the parser kept and what it dropped."""

    commits: int = 0
    dropped_blocks: int = 0
    skipped_lines: int = 0
    binary_lines: int = 0
    orphan_lines: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class LanguageStats:
    lines_added: int = 0
    lines_deleted: int = 0

    @property
    def total_changes(self) -> int:
        return self.lines_added + self.lines_deleted


@dataclass
class FilterResult:
    commits: List[CommitRecord] = field(default_factory=list)
    filtered_count: int = 0
    filtered_lines: int = 0


# ============================================================================
# COMMIT STREAM PARSER
# ============================================================================


def _decode_line(line: Union[str, bytes]) -> str:
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StreamReadError(f"Undecodable commit stream: {e}") from e
    return line.rstrip("\n").rstrip("\r")


def parse_change_counts(line: str) -> Optional[tuple]:
    """
    Parse the numeric fields of a numstat change line.

    Returns (added, deleted), or None when the line carries no countable
    change (binary marker, empty field, too few fields, non-numeric value).
    """
    parts = line.split("\t")
    if len(parts) < 2:
        return None
    added_str, deleted_str = parts[0], parts[1]
    if not added_str or not deleted_str:
        return None
    if added_str == BINARY_MARKER or deleted_str == BINARY_MARKER:
        return None
    if not (_COUNT_RE.fullmatch(added_str) and _COUNT_RE.fullmatch(deleted_str)):
        return None
    return int(added_str), int(deleted_str)


class CommitStreamParser:
    """
    Incremental parser for `git log --numstat --pretty=format:---COMMIT---%n%at`.

    Feed it one line at a time; a completed CommitRecord is returned whenever
    a line closes the previous block. Malformed input is never an error: bad
    timestamps drop their block, bad change lines drop only themselves.

    Not safe for concurrent use; one parser holds one in-progress record.
    """

    def __init__(self, stats: Optional[ParseStats] = None):
        self.stats = stats if stats is not None else ParseStats()
        self._timestamp: Optional[int] = None
        self._added = 0
        self._deleted = 0
        self._expect_timestamp = False

    def _flush(self) -> Optional[CommitRecord]:
        if self._timestamp is None:
            return None
        record = CommitRecord(self._timestamp, self._added, self._deleted)
        self._timestamp = None
        self._added = 0
        self._deleted = 0
        self.stats.commits += 1
        return record

    def feed(self, line: Union[str, bytes]) -> Optional[CommitRecord]:
        line = _decode_line(line)

        if self._expect_timestamp:
            self._expect_timestamp = False
            candidate = line.strip()
            if _TIMESTAMP_RE.fullmatch(candidate):
                self._timestamp = int(candidate)
            else:
                self.stats.dropped_blocks += 1
            return None

        if not line:
            return None

        if line == COMMIT_DELIMITER:
            record = self._flush()
            self._expect_timestamp = True
            return record

        if self._timestamp is None:
            self.stats.orphan_lines += 1
            return None

        counts = parse_change_counts(line)
        if counts is None:
            parts = line.split("\t")
            if len(parts) >= 2 and BINARY_MARKER in (parts[0], parts[1]):
                self.stats.binary_lines += 1
            else:
                self.stats.skipped_lines += 1
            return None

        self._added += counts[0]
        self._deleted += counts[1]
        return None

    def finish(self) -> Optional[CommitRecord]:
        """Flush the block still open at end of stream, if any."""
        if self._expect_timestamp:
            # Delimiter was the last line; the block never got a timestamp.
            self._expect_timestamp = False
            self.stats.dropped_blocks += 1
        return self._flush()


def iter_commits(
    lines: Iterable[Union[str, bytes]], stats: Optional[ParseStats] = None
) -> Iterator[CommitRecord]:
    """
    Lazily parse commit records from a line iterable.

    Args:
        lines: Text or binary lines (file object, pipe, list of strings)
        stats: Optional ParseStats to fill while parsing

    Yields:
        CommitRecord objects in input order

    Raises:
        StreamReadError: The stream failed or was not valid UTF-8
    """
    parser = CommitStreamParser(stats)
    iterator = iter(lines)
    while True:
        try:
            line = next(iterator)
        except StopIteration:
            break
        except StreamReadError:
            raise
        except OSError as e:
            raise StreamReadError(f"Failed to read commit stream: {e}") from e
        record = parser.feed(line)
        if record is not None:
            yield record

    record = parser.finish()
    if record is not None:
        yield record


def parse_commit_stream(
    lines: Iterable[Union[str, bytes]], stats: Optional[ParseStats] = None
) -> List[CommitRecord]:
    """Parse a whole stream into a list of CommitRecords."""
    return list(iter_commits(lines, stats))


# ============================================================================
# BUCKET AGGREGATION
# ============================================================================


def day_start(timestamp: int) -> int:
    """Truncate to the UTC day boundary (floor, so pre-epoch goes earlier)."""
    return (timestamp // SECONDS_PER_DAY) * SECONDS_PER_DAY


def month_key(timestamp: int) -> int:
    """
    Approximate month grouping key.

    Uses 365-day years and 30-day months, so it drifts from the real calendar
    over multi-year spans. Only ordering and equality of keys matter.
    """
    days = timestamp // SECONDS_PER_DAY
    years = days // 365
    month = (days - years * 365) // 30
    return (years * 12 + month) * (30 * SECONDS_PER_DAY)


def calendar_month_key(timestamp: int) -> int:
    """Month grouping key following the real UTC calendar."""
    dt = _utc_datetime(timestamp)
    return dt.year * 12 + (dt.month - 1)


MONTH_SCHEMES = {
    "approximate": month_key,
    "calendar": calendar_month_key,
}


def _derived_metrics(commit_count: int, lines_added: int, lines_deleted: int):
    avg_commit_size = (
        (lines_added + lines_deleted) / commit_count if commit_count > 0 else 0.0
    )
    refactoring_ratio = lines_deleted / lines_added if lines_added > 0 else 0.0
    return avg_commit_size, refactoring_ratio


@dataclass
class _BucketAccumulator:
    commit_count: int = 0
    lines_added: int = 0
    lines_deleted: int = 0
    sample_timestamp: Optional[int] = None

    def add(self, commit: CommitRecord):
        if self.sample_timestamp is None:
            self.sample_timestamp = commit.timestamp
        self.commit_count += 1
        self.lines_added += commit.lines_added
        self.lines_deleted += commit.lines_deleted

    def metrics(self):
        return _derived_metrics(self.commit_count, self.lines_added, self.lines_deleted)


def daily_reports(
    commits: Sequence[CommitRecord], now: Optional[int] = None
) -> List[DayBucket]:
    """
    Aggregate commits into one bucket per UTC day.

    Every day from the oldest commit through max(now, newest commit) gets a
    bucket, so idle days show up with zero commits.

    Args:
        commits: CommitRecords in any order
        now: Current time in epoch seconds (defaults to the wall clock)

    Returns:
        DayBuckets ascending by day_start
    """
    if not commits:
        return []
    if now is None:
        now = int(time.time())

    timestamps = [c.timestamp for c in commits]
    span_start = day_start(min(timestamps))
    span_end = day_start(max(now, max(timestamps)))

    days: Dict[int, _BucketAccumulator] = {}
    current = span_start
    while current <= span_end:
        days[current] = _BucketAccumulator()
        current += SECONDS_PER_DAY

    for commit in commits:
        accumulator = days.get(day_start(commit.timestamp))
        if accumulator is not None:
            accumulator.add(commit)

    reports = []
    for key in sorted(days):
        acc = days[key]
        avg_size, ratio = acc.metrics()
        reports.append(
            DayBucket(
                day_start=key,
                commit_count=acc.commit_count,
                lines_added=acc.lines_added,
                lines_deleted=acc.lines_deleted,
                avg_commit_size=avg_size,
                refactoring_ratio=ratio,
            )
        )
    return reports


def monthly_reports(
    commits: Sequence[CommitRecord], month_scheme: str = "calendar"
) -> List[MonthBucket]:
    """
    Aggregate commits into month buckets; months without commits are absent.

    Commits are visited oldest first, so sample_timestamp is the earliest
    commit of its month.
    """
    if month_scheme not in MONTH_SCHEMES:
        raise ValueError(f"Unknown month scheme: {month_scheme}")
    key_for = MONTH_SCHEMES[month_scheme]

    months: Dict[int, _BucketAccumulator] = {}
    for commit in sorted(commits, key=lambda c: c.timestamp):
        key = key_for(commit.timestamp)
        if key not in months:
            months[key] = _BucketAccumulator()
        months[key].add(commit)

    reports = []
    for key in sorted(months):
        acc = months[key]
        avg_size, ratio = acc.metrics()
        reports.append(
            MonthBucket(
                month_key=key,
                sample_timestamp=acc.sample_timestamp,
                commit_count=acc.commit_count,
                lines_added=acc.lines_added,
                lines_deleted=acc.lines_deleted,
                avg_commit_size=avg_size,
                refactoring_ratio=ratio,
            )
        )
    return reports


def report_totals(buckets: Sequence[Union[DayBucket, MonthBucket]]) -> ReportTotals:
    """Overall totals for a bucket sequence, with the same zero rules."""
    commit_count = sum(b.commit_count for b in buckets)
    lines_added = sum(b.lines_added for b in buckets)
    lines_deleted = sum(b.lines_deleted for b in buckets)
    avg_size, ratio = _derived_metrics(commit_count, lines_added, lines_deleted)
    return ReportTotals(commit_count, lines_added, lines_deleted, avg_size, ratio)


def filter_large_commits(
    commits: Sequence[CommitRecord], max_commit_size: int = DEFAULT_MAX_COMMIT_SIZE
) -> FilterResult:
    """Drop commits changing more than max_commit_size lines (bulk imports)."""
    result = FilterResult()
    for commit in commits:
        if commit.total_changes <= max_commit_size:
            result.commits.append(commit)
        else:
            result.filtered_count += 1
            result.filtered_lines += commit.total_changes
    return result


# ============================================================================
# LANGUAGE BREAKDOWN
# ============================================================================

LANGUAGE_BY_EXTENSION = {
    ".py": "Python",
    ".js": "JavaScript",
    ".jsx": "JavaScript",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".rs": "Rust",
    ".go": "Go",
    ".java": "Java",
    ".c": "C",
    ".h": "C",
    ".cpp": "C++",
    ".cc": "C++",
    ".hpp": "C++",
    ".zig": "Zig",
    ".rb": "Ruby",
    ".php": "PHP",
    ".cs": "C#",
    ".swift": "Swift",
    ".kt": "Kotlin",
    ".scala": "Scala",
    ".sh": "Shell",
    ".bash": "Shell",
    ".sql": "SQL",
    ".html": "HTML",
    ".htm": "HTML",
    ".css": "CSS",
    ".scss": "CSS",
    ".sass": "CSS",
    ".md": "Markdown",
    ".markdown": "Markdown",
    ".json": "JSON",
    ".yaml": "YAML",
    ".yml": "YAML",
    ".xml": "XML",
}

LANGUAGE_COLORS = {
    "Python": Fore.GREEN,
    "JavaScript": Fore.YELLOW,
    "TypeScript": Fore.BLUE,
    "Rust": Fore.RED,
    "Go": Fore.CYAN,
    "Java": Fore.MAGENTA,
    "C": Fore.LIGHTBLUE_EX,
    "C++": Fore.LIGHTMAGENTA_EX,
    "Zig": Fore.LIGHTYELLOW_EX,
    "Ruby": Fore.LIGHTRED_EX,
    "PHP": Fore.LIGHTCYAN_EX,
    "C#": Fore.LIGHTGREEN_EX,
    "Shell": Fore.GREEN,
    "HTML": Fore.YELLOW,
    "CSS": Fore.MAGENTA,
}


def language_for_path(path: str) -> str:
    base = path.replace("\\", "/").rsplit("/", 1)[-1]
    ext = os.path.splitext(base)[1].lower()
    return LANGUAGE_BY_EXTENSION.get(ext, "Other")


def language_breakdown(lines: Iterable[Union[str, bytes]]) -> Dict[str, LanguageStats]:
    """
    Sum added/deleted lines per language from a numstat stream.

    Binary and malformed change lines are skipped the same way the commit
    parser skips them. Result is ordered by total changes, largest first.
    """
    stats: Dict[str, LanguageStats] = {}
    for raw in lines:
        line = _decode_line(raw)
        if not line or line == COMMIT_DELIMITER:
            continue
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        counts = parse_change_counts(line)
        if counts is None:
            continue
        language = language_for_path(parts[2])
        entry = stats.setdefault(language, LanguageStats())
        entry.lines_added += counts[0]
        entry.lines_deleted += counts[1]

    return dict(
        sorted(stats.items(), key=lambda item: (-item[1].total_changes, item[0]))
    )


# ============================================================================
# PERFORMANCE: MEMORY MONITORING
# ============================================================================


class MemoryMonitor:
    """Monitor memory usage and enforce limits"""

    def __init__(self, limit_mb: Optional[float] = None):
        self.limit_mb = limit_mb
        self.peak_mb = 0.0

    def check_memory(self) -> float:
        """Get current memory usage in MB"""
        process = psutil.Process(os.getpid())
        memory_mb = process.memory_info().rss / 1024 / 1024
        self.peak_mb = max(self.peak_mb, memory_mb)

        if self.limit_mb and memory_mb > self.limit_mb:
            raise MemoryError(
                f"Memory limit exceeded: {memory_mb:.1f}MB > {self.limit_mb}MB"
            )

        return memory_mb

    def get_peak(self) -> float:
        return self.peak_mb


# ============================================================================
# PROGRESS REPORTING
# ============================================================================


class ProgressReporter:
    """
    Progress and diagnostics output
    - Color-coded messages (colorama)
    - Progress bars with ETA (tqdm)
    """

    def __init__(
        self, quiet: bool = False, verbose: bool = False, use_colors: bool = True
    ):
        self.quiet = quiet
        self.verbose = verbose
        self.use_colors = use_colors
        self.start_time = time.time()
        self.stage_times = {}

    def _colorize(self, text: str, color: str) -> str:
        if self.use_colors:
            return f"{color}{text}{Style.RESET_ALL}"
        return text

    def stage_start(self, stage_name: str, message: str = ""):
        if self.quiet:
            return
        self.stage_times[stage_name] = time.time()
        stage_text = self._colorize(f"🔄 {stage_name}", Fore.BLUE + Style.BRIGHT)
        print(stage_text, file=sys.stderr)
        if message:
            print(f"   {message}", file=sys.stderr)

    def stage_complete(self, stage_name: str, stats: Dict = None):
        if self.quiet:
            return
        elapsed = time.time() - self.stage_times.get(stage_name, time.time())
        complete_text = self._colorize(
            f"✅ {stage_name} complete ({elapsed:.2f}s)", Fore.GREEN + Style.BRIGHT
        )
        print(complete_text, file=sys.stderr)

        if stats and self.verbose:
            for key, value in stats.items():
                print(f"   {key}: {value}", file=sys.stderr)

    def create_progress_bar(self, total: int, desc: str = "Parsing") -> Optional[tqdm]:
        """Create a progress bar with ETA, or None when there is nothing to show"""
        if self.quiet or total <= 0:
            return None

        return tqdm(
            total=total,
            desc=self._colorize(desc, Fore.CYAN),
            unit=" commits",
            ncols=100,
            leave=False,
            file=sys.stderr,
            bar_format="{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]",
        )

    def progress(self, message: str, count: Optional[int] = None):
        if self.quiet:
            return
        if count is not None:
            print(f"   {message} ({count:,})", end="\r", file=sys.stderr, flush=True)
        else:
            print(f"   {message}", file=sys.stderr)

    def info(self, message: str):
        if not self.quiet:
            info_text = self._colorize("ℹ️  ", Fore.BLUE)
            print(f"{info_text}{message}", file=sys.stderr)

    def warning(self, message: str):
        if not self.quiet:
            warning_text = self._colorize("⚠️  ", Fore.YELLOW + Style.BRIGHT)
            print(f"{warning_text}{message}", file=sys.stderr)

    def error(self, message: str):
        """Display error message (always shown)"""
        error_text = self._colorize(f"❌ ERROR: {message}", Fore.RED + Style.BRIGHT)
        print(error_text, file=sys.stderr)

    def success(self, message: str):
        if not self.quiet:
            success_text = self._colorize(f"✨ {message}", Fore.GREEN + Style.BRIGHT)
            print(success_text, file=sys.stderr)

    def summary(self, stats: Dict[str, Any]):
        if self.quiet:
            return
        elapsed = time.time() - self.start_time
        header = self._colorize("📊 SUMMARY", Fore.MAGENTA + Style.BRIGHT)
        print(header, file=sys.stderr)
        for key, value in stats.items():
            print(f"   {key}: {value}", file=sys.stderr)
        time_text = self._colorize(f"⏱️  Total time: {elapsed:.2f}s", Fore.YELLOW)
        print(time_text, file=sys.stderr)


# ============================================================================
# GIT LOG SOURCE
# ============================================================================


class GitLogSource:
    """
    Streams `git log --numstat` output for a repository.

    Output is consumed while git is still writing it, so the raw log is never
    held in memory as a whole.
    """

    def __init__(
        self,
        repo_path: str,
        reporter: Optional[ProgressReporter] = None,
        memory_monitor: Optional[MemoryMonitor] = None,
    ):
        self.repo_path = os.path.abspath(repo_path)
        self.reporter = reporter or ProgressReporter(quiet=True)
        self.memory_monitor = memory_monitor or MemoryMonitor()
        self.stats = ParseStats()

    def build_command(self, since: str) -> List[str]:
        return [
            "git",
            "-C",
            self.repo_path,
            "log",
            f"--since={since}",
            "--numstat",
            f"--pretty=format:{COMMIT_DELIMITER}%n%at",
        ]

    def count_commits(self, since: str) -> int:
        """Number of commits in range, only used to size the progress bar"""
        cmd = ["git", "-C", self.repo_path, "rev-list", "--count", f"--since={since}", "HEAD"]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
            return int(result.stdout.strip())
        except (subprocess.CalledProcessError, ValueError, OSError):
            return 0

    def iter_lines(self, since: str) -> Iterator[bytes]:
        process = subprocess.Popen(
            self.build_command(since),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        try:
            for line in process.stdout:
                yield line
        finally:
            process.stdout.close()
            process.wait()

        if process.returncode != 0:
            stderr = process.stderr.read()
            if isinstance(stderr, bytes):
                stderr = stderr.decode("utf-8", errors="replace")
            raise RuntimeError(f"Git command failed: {stderr.strip()}")

    def read_commits(self, since: str) -> List[CommitRecord]:
        """
        Run git log and parse every commit in range.

        Raises:
            RuntimeError: git exited with a non-zero status
            StreamReadError: git output could not be read or decoded
            MemoryError: the configured memory limit was exceeded
        """
        self.reporter.stage_start("Git Log Processing", f"Streaming commits since {since}...")
        self.stats = ParseStats()
        progress_bar = self.reporter.create_progress_bar(
            total=self.count_commits(since), desc="Parsing commits"
        )

        commits = []
        try:
            for commit in iter_commits(self.iter_lines(since), self.stats):
                commits.append(commit)

                if progress_bar:
                    progress_bar.update(1)
                elif len(commits) % 1000 == 0:
                    self.reporter.progress("Processed commits", len(commits))

                if len(commits) % 5000 == 0:
                    memory_mb = self.memory_monitor.check_memory()
                    if self.reporter.verbose:
                        self.reporter.info(f"Memory usage: {memory_mb:.1f} MB")
        finally:
            if progress_bar:
                progress_bar.close()

        self.reporter.stage_complete(
            "Git Log Processing",
            {
                "Commits parsed": f"{self.stats.commits:,}",
                "Dropped blocks": self.stats.dropped_blocks,
                "Skipped lines": self.stats.skipped_lines,
                "Binary lines": self.stats.binary_lines,
            },
        )
        return commits

    def language_breakdown(self, since: str) -> Dict[str, LanguageStats]:
        self.reporter.stage_start("Language Breakdown", f"Classifying changes since {since}...")
        stats = language_breakdown(self.iter_lines(since))
        self.reporter.stage_complete("Language Breakdown", {"Languages": len(stats)})
        return stats


# ============================================================================
# FORMATTING & RENDERING
# ============================================================================

SPARKLINE_CHARS = "▁▂▃▄▅▆▇█"
BAR = "██"
TABLE_WIDTHS = (12, 7, 11, 13, 16, 17)


def _utc_datetime(timestamp: int) -> datetime:
    return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=timestamp)


def format_daily_date(timestamp: int) -> str:
    """'Jul  5, 2024' style date in UTC"""
    dt = _utc_datetime(timestamp)
    return f"{dt:%b} {dt.day:>2}, {dt.year}"


def format_month(timestamp: int) -> str:
    dt = _utc_datetime(timestamp)
    return f"{dt:%b} {dt.year}"


def format_lines_added(lines: int, use_colors: bool = False) -> str:
    text = f"+{lines}"
    if use_colors and lines > 0:
        return f"{Fore.GREEN}{text}{Style.RESET_ALL}"
    return text


def format_lines_deleted(lines: int, use_colors: bool = False) -> str:
    text = f"-{lines}"
    if use_colors and lines > 0:
        return f"{Fore.RED}{text}{Style.RESET_ALL}"
    return text


def sparkline(values: Sequence[int]) -> str:
    if not values:
        return ""
    lo = min(values)
    hi = max(values)
    rng = hi - lo if hi != lo else 1
    n = len(SPARKLINE_CHARS) - 1
    return "".join(SPARKLINE_CHARS[min(n, (v - lo) * n // rng)] for v in values)


def _pad(text: str, width: int, align: str = ">") -> str:
    # ANSI codes take no columns, pad on the visible text length.
    visible = len(re.sub(r"\x1b\[[0-9;]*m", "", text))
    padding = " " * max(0, width - visible)
    return padding + text if align == ">" else text + padding


class ReportPrinter:
    """Renders bucket sequences as terminal tables and charts."""

    def __init__(self, use_colors: bool = True, out=None):
        self.use_colors = use_colors
        self.out = out

    def _echo(self, text: str = ""):
        print(text, file=self.out or sys.stdout)

    def _bold(self, text: str) -> str:
        if self.use_colors:
            return f"{Style.BRIGHT}{text}{Style.RESET_ALL}"
        return text

    def _color(self, text: str, color: str) -> str:
        if self.use_colors:
            return f"{color}{text}{Style.RESET_ALL}"
        return text

    def _separator(self):
        self._echo("|" + "|".join("-" * (w + 2) for w in TABLE_WIDTHS) + "|")

    def _row(self, cells: Sequence[str]):
        aligned = [
            _pad(cell, width, "<" if i == 0 else ">")
            for i, (cell, width) in enumerate(zip(cells, TABLE_WIDTHS))
        ]
        self._echo("| " + " | ".join(aligned) + " |")

    def _table(self, label: str, rows: List[tuple], totals: ReportTotals):
        self._row(
            [
                label,
                "Commits",
                "Lines Added",
                "Lines Deleted",
                "Avg. Commit Size",
                "Refactoring Ratio",
            ]
        )
        self._separator()
        for name, bucket in rows:
            self._row(
                [
                    name,
                    str(bucket.commit_count),
                    format_lines_added(bucket.lines_added, self.use_colors),
                    format_lines_deleted(bucket.lines_deleted, self.use_colors),
                    f"{bucket.avg_commit_size:.0f}",
                    f"{bucket.refactoring_ratio:.2f}",
                ]
            )
        self._separator()
        self._row(
            [
                self._bold("TOTAL"),
                self._bold(str(totals.commit_count)),
                format_lines_added(totals.lines_added, self.use_colors),
                format_lines_deleted(totals.lines_deleted, self.use_colors),
                self._bold(f"{totals.avg_commit_size:.0f}"),
                self._bold(f"{totals.refactoring_ratio:.2f}"),
            ]
        )

    def print_daily(self, since: str, buckets: Sequence[DayBucket]):
        self._echo()
        self._echo(f"{self._bold('Git Insight Daily Report')} for the last {self._bold(since)}")
        self._echo()
        rows = [(format_daily_date(b.day_start), b) for b in buckets]
        self._table("Date", rows, report_totals(buckets))

        if buckets:
            self._echo()
            self._echo(self._bold("Commit Activity:"))
            self.draw_daily_chart(buckets)
            if len(buckets) > 1:
                self._echo()
                trend = sparkline([b.commit_count for b in buckets])
                self._echo(f"{self._bold('Trend:')} {self._color(trend, Fore.CYAN)}")
        self._echo()

    def print_monthly(self, since: str, buckets: Sequence[MonthBucket]):
        self._echo()
        self._echo(f"{self._bold('Git Insight Monthly History')} for the last {self._bold(since)}")
        self._echo()
        rows = [(format_month(b.sample_timestamp), b) for b in buckets]
        self._table("Month", rows, report_totals(buckets))

        if buckets:
            self._echo()
            self._echo(self._bold("Monthly Activity:"))
            self.draw_monthly_chart(buckets)
        self._echo()

    def print_languages(self, since: str, stats: Dict[str, LanguageStats]):
        self._echo()
        self._echo(f"{self._bold('Git Insight Language Breakdown')} for the last {self._bold(since)}")
        self._echo()
        if not stats:
            self._echo("No line changes found in the specified time range.")
            return

        grand_total = sum(s.total_changes for s in stats.values()) or 1
        name_width = max(len("Language"), max(len(name) for name in stats))
        self._echo(
            f"{'Language':<{name_width}}  {'Added':>10}  {'Deleted':>10}  {'Share':>6}"
        )
        for name, entry in stats.items():
            share = entry.total_changes / grand_total
            bar = "█" * int(round(share * 30))
            color = LANGUAGE_COLORS.get(name, Fore.WHITE)
            label = self._color(f"{name:<{name_width}}", color)
            self._echo(
                f"{label}  {_pad(format_lines_added(entry.lines_added, self.use_colors), 10)}"
                f"  {_pad(format_lines_deleted(entry.lines_deleted, self.use_colors), 10)}"
                f"  {share:>6.1%} {self._color(bar, color)}"
            )
        self._echo()

    def draw_daily_chart(self, buckets: Sequence[DayBucket], max_days: int = 14, height: int = 4):
        """Mirrored bar chart: additions above the axis, deletions below."""
        recent = list(buckets)[-max_days:]
        max_lines = max(max(b.lines_added, b.lines_deleted) for b in recent)
        if max_lines == 0:
            self._echo("   (no line changes)")
            return

        for row in range(height, 0, -1):
            label = f"+{max_lines:>6} |" if row == height else "        |"
            cells = [
                f" {self._color(BAR, Fore.GREEN)} "
                if b.lines_added * height // max_lines >= row
                else "    "
                for b in recent
            ]
            self._echo(label + "".join(cells))
        self._echo("      0 +" + "═" * (len(recent) * 4))
        for row in range(1, height + 1):
            label = f"-{max_lines:>6} |" if row == height else "        |"
            cells = [
                f" {self._color(BAR, Fore.RED)} "
                if b.lines_deleted * height // max_lines >= row
                else "    "
                for b in recent
            ]
            self._echo(label + "".join(cells))
        self._echo("         " + "".join(f"{_utc_datetime(b.day_start).day:>2}  " for b in recent))

    def draw_monthly_chart(self, buckets: Sequence[MonthBucket], max_width: int = 70, height: int = 10):
        max_changes = max(b.lines_added + b.lines_deleted for b in buckets)
        if max_changes == 0:
            self._echo("   (no line changes)")
            return

        recent = list(buckets)[-(max_width // 5):]
        for row in range(height, 0, -1):
            if row == height:
                label = f"{max_changes:>7} |"
            elif row == height // 2:
                label = f"{max_changes // 2:>7} |"
            else:
                label = "        |"
            cells = [
                f" {self._color(BAR, Fore.MAGENTA)}  "
                if (b.lines_added + b.lines_deleted) * height // max_changes >= row
                else "     "
                for b in recent
            ]
            self._echo(label + "".join(cells))
        self._echo("        +" + "-" * (len(recent) * 5))
        self._echo("         " + "".join(f"{format_month(b.sample_timestamp)[:3]:<5}" for b in recent))


# ============================================================================
# EXPORT
# ============================================================================


def export_reports(
    output_path: str,
    buckets: Sequence[Union[DayBucket, MonthBucket]],
    aggregation_level: str,
    since: str,
) -> dict:
    """Write buckets and totals to a JSON file and return the written data"""
    data = {
        "schema_version": SCHEMA_VERSION,
        "generator_version": VERSION,
        "aggregation_level": aggregation_level,
        "since": since,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "total_buckets": len(buckets),
        "totals": asdict(report_totals(buckets)),
        "buckets": [asdict(b) for b in buckets],
    }

    parent = os.path.dirname(output_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    return data


# ============================================================================
# CONFIGURATION
# ============================================================================

CONFIG_NAMES = [
    ".git-insight.yaml",
    ".git-insight.yml",
    ".git-insight.json",
]

PRESETS = {
    "daily": {"history": False},
    "history": {"history": True, "since": DEFAULT_HISTORY_SINCE},
    "filtered": {"filter_large": True},
    "languages": {"by_language": True},
}


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML or JSON file"""
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    file_ext = os.path.splitext(config_path)[1].lower()

    with open(config_path, "r", encoding="utf-8") as f:
        if file_ext in [".yaml", ".yml"]:
            return yaml.safe_load(f) or {}
        elif file_ext == ".json":
            return json.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {file_ext}")


def find_config_file(repo_path: str) -> Optional[str]:
    """Look for a .git-insight config in the repository, then the current directory"""
    for search_dir in [repo_path, os.getcwd()]:
        for config_name in CONFIG_NAMES:
            config_path = os.path.join(search_dir, config_name)
            if os.path.exists(config_path):
                return config_path
    return None


class ConfigResolver:
    """
    Resolve configuration with precedence: CLI > Config File > Preset > Defaults
    """

    def __init__(
        self,
        cli_args: Dict[str, Any],
        config_path: Optional[str],
        preset_name: Optional[str],
        repo_path: str,
        reporter: Optional[ProgressReporter] = None,
    ):
        self.cli = {k: v for k, v in cli_args.items() if v is not None}
        self.config = {}
        self.preset = {}
        reporter = reporter or ProgressReporter()

        if config_path:
            self.config = load_config_file(config_path)
        else:
            auto_path = find_config_file(repo_path)
            if auto_path:
                try:
                    self.config = load_config_file(auto_path)
                    reporter.info(f"Auto-discovered configuration: {auto_path}")
                except (OSError, ValueError, yaml.YAMLError) as e:
                    reporter.warning(f"Found config file but failed to load: {e}")

        if not isinstance(self.config, dict):
            raise ValueError("Configuration file must contain a mapping")

        # kebab-case keys are accepted in config files
        self.config = {k.replace("-", "_"): v for k, v in self.config.items()}

        final_preset_name = preset_name or self.config.get("preset")
        self.preset = PRESETS.get(final_preset_name, {}) if final_preset_name else {}

    def get(self, key: str, default: Any = None) -> Any:
        if key in self.cli:
            return self.cli[key]
        if key in self.config:
            return self.config[key]
        if key in self.preset:
            return self.preset[key]
        return default


# ============================================================================
# CLI INTERFACE
# ============================================================================


@click.command(context_settings=dict(help_option_names=["-h", "--help"]))
@click.argument(
    "repo_path",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    default=".",
    required=False,
)
@click.option("--since", help='Analyze commits since the given date (default: "30 days ago")')
@click.option(
    "--history",
    is_flag=True,
    default=None,
    help="Show monthly aggregation instead of the daily view",
)
@click.option(
    "--filter-large",
    is_flag=True,
    default=None,
    help="Filter out commits with more than --max-commit-size lines changed",
)
@click.option(
    "--max-commit-size",
    type=click.IntRange(min=0),
    help="Threshold for large commit filtering (default: 10000)",
)
@click.option(
    "--by-language",
    is_flag=True,
    default=None,
    help="Show breakdown of changes by programming language",
)
@click.option(
    "--approximate-months",
    is_flag=True,
    default=None,
    help="Group history by fixed 30-day months instead of calendar months",
)
@click.option("--no-color", is_flag=True, default=None, help="Disable colored output")
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False),
    help="Also write the report buckets to this JSON file",
)
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file path (.yaml or .json)",
)
@click.option(
    "--preset",
    type=click.Choice(sorted(PRESETS)),
    help="Use predefined configuration",
)
@click.option("--memory-limit", type=float, help="Memory limit in MB")
@click.option(
    "-q", "--quiet", is_flag=True, default=None, help="Suppress progress output"
)
@click.option(
    "-v", "--verbose", is_flag=True, default=None, help="Show detailed progress information"
)
@click.version_option(version=VERSION)
def main(repo_path, config, preset, **kwargs):
    """
    Git Insight - commit productivity metrics for a git repository.

    \b
    Examples:
      git-insight                                  # Last 30 days, daily view
      git-insight --filter-large                   # Filter out bulk operations
      git-insight --history --filter-large         # Monthly view, filtered
      git-insight --since="60 days ago"            # 60 days, daily view
      git-insight --by-language                    # Language breakdown
    """
    colorama_init()
    early_reporter = ProgressReporter(
        quiet=bool(kwargs.get("quiet")), use_colors=not kwargs.get("no_color")
    )
    try:
        resolver = ConfigResolver(kwargs, config, preset, repo_path, early_reporter)
    except (OSError, ValueError, yaml.YAMLError) as e:
        early_reporter.error(f"Invalid configuration: {e}")
        sys.exit(1)

    quiet = resolver.get("quiet", False)
    verbose = resolver.get("verbose", False)
    use_colors = not resolver.get("no_color", False)
    reporter = ProgressReporter(quiet=quiet, verbose=verbose, use_colors=use_colors)

    history = resolver.get("history", False)
    since = resolver.get("since") or (DEFAULT_HISTORY_SINCE if history else DEFAULT_SINCE)
    filter_large = resolver.get("filter_large", False)
    max_commit_size = resolver.get("max_commit_size", DEFAULT_MAX_COMMIT_SIZE)
    by_language = resolver.get("by_language", False)
    month_scheme = "approximate" if resolver.get("approximate_months", False) else "calendar"
    output = resolver.get("output")
    memory_limit = resolver.get("memory_limit")

    if not os.path.exists(os.path.join(repo_path, ".git")):
        reporter.error(f"Not a git repository: {repo_path}")
        sys.exit(1)

    printer = ReportPrinter(use_colors=use_colors)
    source = GitLogSource(
        repo_path, reporter, memory_monitor=MemoryMonitor(limit_mb=memory_limit)
    )

    try:
        if by_language:
            printer.print_languages(since, source.language_breakdown(since))
            return

        commits = source.read_commits(since)
        if not commits:
            print("No commits found in the specified time range.")
            return

        if filter_large:
            result = filter_large_commits(commits, max_commit_size)
            if result.filtered_count > 0:
                reporter.info(
                    f"Filtered out {result.filtered_count} large commits "
                    f"(>{max_commit_size} lines changed) with "
                    f"{result.filtered_lines} total lines changed."
                )
            commits = result.commits

        if history:
            buckets = monthly_reports(commits, month_scheme=month_scheme)
            printer.print_monthly(since, buckets)
            level = "monthly"
        else:
            buckets = daily_reports(commits)
            printer.print_daily(since, buckets)
            level = "daily"

        if output:
            export_reports(output, buckets, level, since)
            reporter.success(f"Report written to: {output}")

        if verbose:
            reporter.summary(
                {
                    "Repository": repo_path,
                    "Commits analyzed": f"{len(commits):,}",
                    "Buckets": len(buckets),
                    "Parse statistics": source.stats.to_dict(),
                    "Peak memory": f"{source.memory_monitor.get_peak():.1f} MB",
                }
            )

    except Exception as e:
        reporter.error(f"Analysis failed: {str(e)}")
        if verbose:
            import traceback

            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
