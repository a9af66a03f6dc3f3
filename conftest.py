import pytest
import subprocess
from git_insight import ProgressReporter, CommitRecord

DAY = 86400

# 2024-01-15 00:00:00 UTC
JAN_15_2024 = 1_705_276_800


@pytest.fixture
def quiet_reporter():
    return ProgressReporter(quiet=True)


@pytest.fixture
def fixed_now():
    """Pinned wall clock: 2024-01-20 12:00:00 UTC."""
    return JAN_15_2024 + 5 * DAY + 12 * 3600


@pytest.fixture
def sample_log():
    """Three commits in git's native newest-first order, with a binary file."""
    return (
        "---COMMIT---\n"
        "1705500000\n"
        "10\t2\tsrc/main.py\n"
        "5\t5\tREADME.md\n"
        "\n"
        "---COMMIT---\n"
        "1705400000\n"
        "-\t-\tassets/logo.png\n"
        "7\t0\tsrc/util.py\n"
        "\n"
        "---COMMIT---\n"
        "1705300000\n"
        "100\t40\tlib/core.rs\n"
    )


@pytest.fixture
def sample_commits():
    return [
        CommitRecord(JAN_15_2024 + 3600, 50, 10),
        CommitRecord(JAN_15_2024 + 7200, 30, 0),
        CommitRecord(JAN_15_2024 + 2 * DAY + 60, 5, 25),
    ]


@pytest.fixture
def git_repo(tmp_path):
    repo = tmp_path / "repo"
    repo.mkdir()

    def run(*args):
        subprocess.run(["git", "-C", str(repo)] + list(args),
                       check=True, capture_output=True)

    run("init")
    run("config", "user.email", "tester@test.com")
    run("config", "user.name",  "Tester")

    # Commit 1 - two text files
    (repo / "app.py").write_text("print('hello')\n", encoding='utf-8')
    (repo / "lib.js").write_text("function helper() {}\n", encoding='utf-8')
    run("add", ".")
    run("commit", "-m", "initial")

    # Commit 2 - one line changed, one binary file added
    (repo / "app.py").write_text("print('hello')\nprint('world')\n", encoding='utf-8')
    (repo / "logo.bin").write_bytes(b"\x00\x01\x02\xff" * 16)
    run("add", ".")
    run("commit", "-m", "update app, add binary")

    # Commit 3 - deletion
    (repo / "lib.js").write_text("", encoding='utf-8')
    run("add", ".")
    run("commit", "-m", "empty lib")

    return str(repo)
