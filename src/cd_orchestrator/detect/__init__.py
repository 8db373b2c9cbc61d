"""Change detection: which services a revision range touches."""

from cd_orchestrator.detect.change_detector import compute_change_set, detect_changes, path_matches_prefix
from cd_orchestrator.detect.git_diff import list_modified_paths

__all__ = [
    "compute_change_set",
    "detect_changes",
    "path_matches_prefix",
    "list_modified_paths",
]
