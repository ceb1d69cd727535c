"""Git history for the repository under review (GitPython)."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from models import Contributor

logger = logging.getLogger(__name__)


@dataclass
class GitHistory:
    """Commit totals, contributors and per-file change counts."""

    commit_count: int = 0
    contributors: list[Contributor] = field(default_factory=list)
    # relative path (from the scanned root) -> commits touching it
    file_commits: dict[str, int] = field(default_factory=dict)

    def file_statistics(self, relative_path: str) -> tuple[int, float]:
        """``(commits, change frequency %)`` for one file."""
        commits = self.file_commits.get(relative_path, 0)
        if not self.commit_count:
            return commits, 0.0
        return commits, commits / self.commit_count * 100


def _contributors(commits) -> list[Contributor]:
    counts: Counter[str] = Counter()
    last_seen: dict[str, str] = {}
    for commit in commits:
        name = commit.author.name or commit.author.email or "unknown"
        counts[name] += 1
        when = commit.committed_datetime.isoformat()
        if when > last_seen.get(name, ""):
            last_seen[name] = when

    total = sum(counts.values())
    contributors = [
        Contributor(
            name=name,
            num_commits=count,
            last_contribution=last_seen[name],
            percentage=count / total * 100,
        )
        for name, count in counts.items()
    ]
    contributors.sort(key=lambda c: (-c.num_commits, c.name))
    return contributors


def _file_commits(repo: Repo, prefix: str) -> dict[str, int]:
    """Count commits per path, relative to *prefix* inside the work tree."""
    output = repo.git.log("--name-only", "--pretty=format:", "HEAD")
    counts: Counter[str] = Counter()
    for line in output.splitlines():
        path = line.strip()
        if not path:
            continue
        if prefix:
            if not path.startswith(prefix + "/"):
                continue
            path = path[len(prefix) + 1 :]
        counts[path] += 1
    return dict(counts)


def mine_history(repo_path: str | Path) -> GitHistory | None:
    """Collect history for *repo_path*.

    Returns:
        None if the path is not inside a git repository, an empty
        ``GitHistory`` if it has no commits.
    """
    try:
        repo = Repo(repo_path, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        logger.info("%s is not a git repository; skipping history", repo_path)
        return None

    try:
        if not repo.head.is_valid():
            logger.info("Repository at %s has no commits yet", repo_path)
            return GitHistory()

        commits = list(repo.iter_commits("HEAD"))
        prefix = Path(repo_path).resolve().relative_to(
            Path(repo.working_tree_dir).resolve()
        ).as_posix()
        history = GitHistory(
            commit_count=len(commits),
            contributors=_contributors(commits),
            file_commits=_file_commits(repo, "" if prefix == "." else prefix),
        )
    except GitCommandError as e:
        logger.warning("Could not read git history for %s: %s", repo_path, e)
        return GitHistory()
    finally:
        repo.close()

    logger.info(
        "   %d commit(s) by %d contributor(s)",
        history.commit_count,
        len(history.contributors),
    )
    return history
