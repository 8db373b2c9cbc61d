"""Map modified paths onto the services they trigger."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence

from cd_orchestrator.detect.git_diff import list_modified_paths
from cd_orchestrator.models import ChangeSet, RevisionRange, ServiceDescriptor

LOGGER = logging.getLogger(__name__)


def path_matches_prefix(path: str, prefix: str) -> bool:
    """Return True when path is the prefix itself or lies beneath it.

    A prefix without a trailing slash is treated as a directory boundary, so
    ``vote`` matches ``vote/app.py`` but not ``voter/app.py``.
    """

    normalized_path = path.strip().lstrip("/")
    normalized_prefix = prefix.strip().removeprefix("./").lstrip("/")
    if not normalized_prefix:
        return False
    if normalized_prefix.endswith("/"):
        return normalized_path.startswith(normalized_prefix)
    return normalized_path == normalized_prefix or normalized_path.startswith(normalized_prefix + "/")


def _any_match(paths: Iterable[str], prefixes: Iterable[str]) -> bool:
    prefix_list = list(prefixes)
    return any(path_matches_prefix(path, prefix) for path in paths for prefix in prefix_list)


def compute_change_set(
    revisions: RevisionRange,
    modified_paths: frozenset[str],
    services: Sequence[ServiceDescriptor],
    shared_template_paths: Sequence[str] = (),
) -> ChangeSet:
    """Select the services triggered by the modified paths.

    A change under any shared release-template path selects every service.
    """

    shared_changed = _any_match(modified_paths, shared_template_paths)
    if shared_changed:
        selected = tuple(services)
    else:
        selected = tuple(service for service in services if _any_match(modified_paths, service.source_paths))
    return ChangeSet(
        revisions=revisions,
        modified_paths=modified_paths,
        services=selected,
        shared_templates_changed=shared_changed,
    )


def detect_changes(
    repo_path: Path,
    base: str,
    head: str,
    services: Sequence[ServiceDescriptor],
    shared_template_paths: Sequence[str] = (),
    logger: logging.Logger | None = None,
) -> ChangeSet:
    """Diff the revision range and return the resulting ChangeSet."""

    effective_logger = logger or LOGGER
    revisions, modified_paths = list_modified_paths(repo_path, base, head, logger=effective_logger)
    change_set = compute_change_set(revisions, modified_paths, services, shared_template_paths)
    effective_logger.info(
        "change_detection.complete changed=%s shared_templates_changed=%s services=%s",
        len(change_set.services),
        change_set.shared_templates_changed,
        ",".join(change_set.service_names) or "-",
    )
    return change_set
