"""Modified-path discovery between two revisions using GitPython."""

from __future__ import annotations

import logging
from pathlib import Path

from git import Repo
from git.exc import BadName, BadObject, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from cd_orchestrator.errors import DiffUnavailable
from cd_orchestrator.models import RevisionRange

LOGGER = logging.getLogger(__name__)


def _open_repo(repo_path: Path) -> Repo:
    try:
        return Repo(repo_path)
    except (InvalidGitRepositoryError, NoSuchPathError) as exc:
        raise DiffUnavailable(f"Not a git repository: {repo_path}") from exc


def _resolve_commit(repo: Repo, revision: str):
    try:
        return repo.commit(revision)
    except (BadName, BadObject, ValueError, GitCommandError) as exc:
        # Shallow clones surface as unknown revisions here.
        raise DiffUnavailable(
            f"Cannot resolve revision {revision!r}; history may be shallow or the ref may not exist"
        ) from exc


def list_modified_paths(
    repo_path: Path,
    base: str,
    head: str,
    logger: logging.Logger | None = None,
) -> tuple[RevisionRange, frozenset[str]]:
    """Return the resolved revision range and every path touched between base and head.

    Renames contribute both the old and the new path; deletions contribute
    the removed path.
    """

    effective_logger = logger or LOGGER
    repo = _open_repo(repo_path)
    base_commit = _resolve_commit(repo, base)
    head_commit = _resolve_commit(repo, head)

    try:
        diffs = base_commit.diff(head_commit)
    except GitCommandError as exc:
        raise DiffUnavailable(f"git diff failed for {base}..{head}: {exc}") from exc

    paths: set[str] = set()
    renamed = 0
    deleted = 0
    for diff in diffs:
        if diff.renamed_file:
            renamed += 1
        if diff.deleted_file:
            deleted += 1
        for path in (diff.a_path, diff.b_path):
            if path:
                paths.add(path)

    revisions = RevisionRange(
        base=base,
        head=head,
        base_sha=base_commit.hexsha,
        head_sha=head_commit.hexsha,
    )
    effective_logger.info(
        "change_detection.diff base=%s head=%s paths=%s renamed=%s deleted=%s",
        revisions.base_sha[:12],
        revisions.head_sha[:12],
        len(paths),
        renamed,
        deleted,
    )
    return revisions, frozenset(paths)
