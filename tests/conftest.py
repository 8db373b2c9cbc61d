from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable

import pytest
import yaml
from git import Actor, Repo

from cd_orchestrator.config import AppSettings, load_settings
from cd_orchestrator.errors import BuildFailed, PublishFailed, ReleaseApplyFailed, ScanFailed
from cd_orchestrator.models import Finding, LocalImage, ReleaseApplyResult, RunSummary, ServiceDescriptor

AUTHOR = Actor("Release Bot", "release-bot@example.com")

VOTING_APP_SERVICES = [
    {"name": "vote", "source_paths": ["vote/"]},
    {"name": "result", "source_paths": ["result/"]},
    {"name": "worker", "source_paths": ["worker/"]},
    {"name": "redis", "source_paths": ["redis/"]},
    {"name": "db", "source_paths": ["db/"]},
]
VOTING_APP_NAMESPACES = {
    "vote": "frontend",
    "result": "frontend",
    "worker": "backend",
    "redis": "cache",
    "db": "db",
}


class EventLog:
    """Thread-safe ordered record of fake tool calls."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[tuple[str, str]] = []

    def add(self, kind: str, service: str) -> None:
        with self._lock:
            self.events.append((kind, service))

    def of(self, kind: str) -> list[str]:
        return [service for event_kind, service in self.events if event_kind == kind]

    def index(self, kind: str, service: str) -> int:
        return self.events.index((kind, service))


class FakeRegistry:
    def __init__(
        self,
        events: EventLog,
        findings: dict[str, list[Finding]] | None = None,
        fail_build: set[str] | None = None,
        fail_scan: set[str] | None = None,
        fail_push: set[str] | None = None,
    ) -> None:
        self.events = events
        self.findings = findings or {}
        self.fail_build = fail_build or set()
        self.fail_scan = fail_scan or set()
        self.fail_push = fail_push or set()

    def build(self, service: ServiceDescriptor, image_reference: str) -> LocalImage:
        self.events.add("build", service.name)
        if service.name in self.fail_build:
            raise BuildFailed(service.name, "docker build exited 1")
        return LocalImage(service=service.name, reference=image_reference, image_id=f"sha256:local-{service.name}")

    def scan(self, image: LocalImage) -> tuple[Finding, ...]:
        self.events.add("scan", image.service)
        if image.service in self.fail_scan:
            raise ScanFailed(image.service, "trivy exited 2")
        return tuple(self.findings.get(image.service, []))

    def push(self, image: LocalImage, image_reference: str) -> str:
        self.events.add("push", image.service)
        if image.service in self.fail_push:
            raise PublishFailed(image.service, "denied: requested access to the resource is denied")
        return "sha256:" + format(abs(hash(image_reference)) % (16**12), "012x").rjust(64, "0")


class FakeCluster:
    def __init__(
        self,
        events: EventLog,
        existing: set[tuple[str, str]] | None = None,
        not_ready: set[str] | None = None,
        fail_apply: set[str] | None = None,
    ) -> None:
        self.events = events
        self.existing = set(existing or set())
        self.not_ready = not_ready or set()
        self.fail_apply = fail_apply or set()
        self.applied: list[dict[str, object]] = []
        self._lock = threading.Lock()

    def release_exists(self, release: str, namespace: str) -> bool:
        with self._lock:
            return (release, namespace) in self.existing

    def apply_release(
        self,
        service: str,
        namespace: str,
        image_reference: str,
        *,
        install: bool,
        force: bool,
        wait_timeout_sec: int,
    ) -> ReleaseApplyResult:
        self.events.add("apply", service)
        with self._lock:
            self.applied.append(
                {
                    "service": service,
                    "namespace": namespace,
                    "image_reference": image_reference,
                    "install": install,
                    "force": force,
                    "wait_timeout_sec": wait_timeout_sec,
                }
            )
            self.existing.add((service, namespace))
        if service in self.fail_apply:
            raise ReleaseApplyFailed(service, "helm upgrade exited 1: UPGRADE FAILED")
        return ReleaseApplyResult(action="install" if install else "upgrade", ready=service not in self.not_ready)


class FakeProber:
    def __init__(self, ready: bool = True) -> None:
        self.ready = ready
        self.calls: list[tuple[str, str]] = []

    def wait_until_ready(self, service: str, url: str) -> bool:
        self.calls.append((service, url))
        return self.ready


class RecordingSink:
    def __init__(self) -> None:
        self.summaries: list[RunSummary] = []

    def publish(self, summary: RunSummary) -> None:
        self.summaries.append(summary)


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def events() -> EventLog:
    return EventLog()


@pytest.fixture
def git_repo(tmp_path: Path) -> Repo:
    repo = Repo.init(tmp_path / "repo")
    commit_files(
        repo,
        {
            "README.md": "voting app\n",
            "vote/app.py": "print('vote')\n",
            "result/server.js": "console.log('result')\n",
            "worker/Program.cs": "// worker\n",
            "redis/redis.conf": "maxmemory 64mb\n",
            "db/init.sql": "create table votes();\n",
            "charts/templates/deployment.yaml": "kind: Deployment\n",
        },
        "initial",
    )
    return repo


def commit_files(repo: Repo, files: dict[str, str | None], message: str) -> str:
    """Write (or delete, when content is None) files and commit; return the new SHA."""

    root = Path(repo.working_tree_dir)
    added: list[str] = []
    removed: list[str] = []
    for relative, content in files.items():
        target = root / relative
        if content is None:
            removed.append(relative)
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        added.append(relative)
    if added:
        repo.index.add(added)
    if removed:
        repo.index.remove(removed, working_tree=True)
    commit = repo.index.commit(message, author=AUTHOR, committer=AUTHOR)
    return commit.hexsha


def rename_file(repo: Repo, old: str, new: str, message: str) -> str:
    root = Path(repo.working_tree_dir)
    content = (root / old).read_text(encoding="utf-8")
    repo.index.remove([old], working_tree=True)
    target = root / new
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    repo.index.add([new])
    return repo.index.commit(message, author=AUTHOR, committer=AUTHOR).hexsha


@pytest.fixture
def settings_factory(tmp_path: Path, git_repo: Repo) -> Callable[..., AppSettings]:
    def _factory(**overrides: object) -> AppSettings:
        payload: dict[str, object] = {
            "paths": {
                "repo_root": "repo",
                "artifacts_root": "artifacts",
                "logs_root": "logs",
            },
            "services": VOTING_APP_SERVICES,
            "namespaces": VOTING_APP_NAMESPACES,
            "change_detection": {"shared_template_paths": ["charts/templates/"]},
            "registry": {"host": "registry.example.com", "repository": "voting-app"},
            "deploy": {"wait_timeout_sec": 300, "deploy_branches": ["main"]},
            "execution": {"max_workers": 4},
        }
        payload.update(overrides)
        config_path = tmp_path / "configs" / "settings.yaml"
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(yaml.safe_dump(payload), encoding="utf-8")
        return load_settings(config_file=config_path)

    return _factory
