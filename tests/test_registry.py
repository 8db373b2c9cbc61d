from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import SecretStr

from cd_orchestrator.errors import BuildFailed, PublishFailed, ScanFailed
from cd_orchestrator.image import DockerRegistryClient, build_image_reference, parse_trivy_report, split_image_reference
from cd_orchestrator.image import registry as registry_module
from cd_orchestrator.models import LocalImage, ServiceDescriptor
from cd_orchestrator.utils.commands import CommandResult

DIGEST = "sha256:" + "ab" * 32
VOTE = ServiceDescriptor(name="vote", source_paths=frozenset({"vote/"}), build_context="vote")


class ScriptedRunner:
    """Stands in for run_command, answering by tool subcommand."""

    def __init__(self, responses: dict[str, CommandResult]) -> None:
        self.responses = responses
        self.calls: list[dict[str, object]] = []

    def __call__(self, args, **kwargs) -> CommandResult:
        args = [str(part) for part in args]
        self.calls.append({"args": args, **kwargs})
        key = " ".join(args[:3]) if args[1] == "image" else " ".join(args[:2])
        for prefix, result in self.responses.items():
            if key.startswith(prefix):
                return result
        return CommandResult(tuple(args), 0, "", "", 0.0)

    def commands(self) -> list[str]:
        return [" ".join(call["args"][:2]) for call in self.calls]


def _ok(stdout: str = "") -> CommandResult:
    return CommandResult(("tool",), 0, stdout, "", 0.1)


def _fail(stderr: str, code: int = 1) -> CommandResult:
    return CommandResult(("tool",), code, "", stderr, 0.1)


def _client(tmp_path: Path, token: SecretStr | None = None) -> DockerRegistryClient:
    return DockerRegistryClient(repo_root=tmp_path, host="registry.example.com", username="ci", token=token)


def test_build_image_reference_uses_revision_tag() -> None:
    assert build_image_reference("registry.example.com", "voting-app", "vote", "abc123") == (
        "registry.example.com/voting-app/vote:abc123"
    )
    assert build_image_reference("localhost:5000/", "", "db", "abc") == "localhost:5000/db:abc"


def test_split_image_reference_handles_registry_ports() -> None:
    assert split_image_reference("localhost:5000/vote:abc") == ("localhost:5000/vote", "abc")
    assert split_image_reference("localhost:5000/vote") == ("localhost:5000/vote", "latest")


def test_parse_trivy_report_preserves_order_and_normalizes() -> None:
    payload = {
        "Results": [
            {"Target": "os", "Vulnerabilities": [
                {"VulnerabilityID": "CVE-1", "Severity": "HIGH", "PkgName": "openssl"},
                {"VulnerabilityID": "CVE-2", "Severity": "weird"},
            ]},
            {"Target": "python", "Vulnerabilities": None},
            {"Target": "node", "Vulnerabilities": [{"Severity": "LOW"}]},
        ]
    }

    findings = parse_trivy_report(payload)

    assert [(item.identifier, item.severity, item.package) for item in findings] == [
        ("CVE-1", "HIGH", "openssl"),
        ("CVE-2", "UNKNOWN", None),
    ]


def test_build_tags_with_reference_and_raises_on_failure(tmp_path: Path, monkeypatch) -> None:
    runner = ScriptedRunner({"docker build": _fail("failed to solve: process did not complete")})
    monkeypatch.setattr(registry_module, "run_command", runner)

    with pytest.raises(BuildFailed) as excinfo:
        _client(tmp_path).build(VOTE, "registry.example.com/voting-app/vote:abc")

    assert "failed to solve" in str(excinfo.value)
    build_args = runner.calls[0]["args"]
    assert build_args[:4] == ["docker", "build", "--tag", "registry.example.com/voting-app/vote:abc"]
    assert build_args[-1] == str(tmp_path / "vote")


def test_scan_failure_raises_scan_failed(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(registry_module, "run_command", ScriptedRunner({"trivy image": _fail("db download failed")}))

    with pytest.raises(ScanFailed):
        _client(tmp_path).scan(LocalImage(service="vote", reference="r/vote:abc"))


def test_push_logs_in_once_and_reads_digest(tmp_path: Path, monkeypatch) -> None:
    runner = ScriptedRunner({"docker push": _ok(f"abc: digest: {DIGEST} size: 1570\n")})
    monkeypatch.setattr(registry_module, "run_command", runner)
    client = _client(tmp_path, token=SecretStr("registry-token"))
    image = LocalImage(service="vote", reference="registry.example.com/voting-app/vote:abc")

    assert client.push(image, image.reference) == DIGEST
    assert client.push(image, image.reference) == DIGEST

    assert runner.commands().count("docker login") == 1
    login = next(call for call in runner.calls if call["args"][1] == "login")
    assert login["input_text"] == "registry-token"
    assert "registry-token" not in login["args"]


def test_push_failure_raises_publish_failed(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(registry_module, "run_command", ScriptedRunner({"docker push": _fail("unauthorized")}))
    image = LocalImage(service="vote", reference="registry.example.com/voting-app/vote:abc")

    with pytest.raises(PublishFailed) as excinfo:
        _client(tmp_path).push(image, image.reference)

    assert excinfo.value.retryable is True


def test_push_falls_back_to_repo_digests(tmp_path: Path, monkeypatch) -> None:
    runner = ScriptedRunner(
        {
            "docker push": _ok("pushed\n"),
            "docker image inspect": _ok(f'["registry.example.com/voting-app/vote@{DIGEST}"]'),
        }
    )
    monkeypatch.setattr(registry_module, "run_command", runner)
    image = LocalImage(service="vote", reference="registry.example.com/voting-app/vote:abc")

    assert _client(tmp_path).push(image, image.reference) == DIGEST
