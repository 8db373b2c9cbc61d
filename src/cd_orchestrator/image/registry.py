"""Registry interface and its docker/trivy implementation."""

from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Protocol

from pydantic import SecretStr

from cd_orchestrator.errors import BuildFailed, PublishFailed, ScanFailed
from cd_orchestrator.image.severity import normalize_severity
from cd_orchestrator.models import Finding, LocalImage, ServiceDescriptor
from cd_orchestrator.utils.commands import run_command

LOGGER = logging.getLogger(__name__)

_DIGEST_PATTERN = re.compile(r"digest:\s*(sha256:[0-9a-f]{64})")


class RegistryClient(Protocol):
    """Build, scan and publish container images."""

    def build(self, service: ServiceDescriptor, image_reference: str) -> LocalImage: ...

    def scan(self, image: LocalImage) -> tuple[Finding, ...]: ...

    def push(self, image: LocalImage, image_reference: str) -> str: ...


def build_image_reference(host: str, repository: str, service: str, revision: str) -> str:
    """Return ``host/repository/service:revision``; the tag is the immutable revision id."""

    parts = [part.strip("/") for part in (host, repository) if part and part.strip("/")]
    parts.append(service)
    return f"{'/'.join(parts)}:{revision}"


def split_image_reference(image_reference: str) -> tuple[str, str]:
    """Split ``repo/name:tag`` into repository and tag."""

    repository, sep, tag = image_reference.rpartition(":")
    if not sep or "/" in tag:
        return image_reference, "latest"
    return repository, tag


def parse_trivy_report(payload: dict[str, Any]) -> tuple[Finding, ...]:
    """Flatten a ``trivy image --format json`` report into findings in report order."""

    findings: list[Finding] = []
    for result in payload.get("Results") or []:
        for vulnerability in result.get("Vulnerabilities") or []:
            identifier = vulnerability.get("VulnerabilityID")
            if not identifier:
                continue
            findings.append(
                Finding(
                    severity=normalize_severity(vulnerability.get("Severity")),
                    identifier=str(identifier),
                    package=vulnerability.get("PkgName"),
                )
            )
    return tuple(findings)


class DockerRegistryClient:
    """RegistryClient backed by the docker and trivy command line tools."""

    def __init__(
        self,
        *,
        repo_root: Path,
        host: str,
        username: str | None = None,
        token: SecretStr | None = None,
        docker_bin: str = "docker",
        trivy_bin: str = "trivy",
        scan_timeout_sec: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._repo_root = repo_root
        self._host = host
        self._username = username
        self._token = token
        self._docker_bin = docker_bin
        self._trivy_bin = trivy_bin
        self._scan_timeout_sec = scan_timeout_sec
        self._logger = logger or LOGGER
        self._login_lock = threading.Lock()
        self._logged_in = False

    def build(self, service: ServiceDescriptor, image_reference: str) -> LocalImage:
        context = self._repo_root / service.build_context
        args = [self._docker_bin, "build", "--tag", image_reference]
        if service.dockerfile:
            args.extend(["--file", str(self._repo_root / service.dockerfile)])
        args.append(str(context))
        result = run_command(args, cwd=self._repo_root, logger=self._logger)
        if not result.ok:
            raise BuildFailed(service.name, f"docker build exited {result.returncode}: {result.tail()}")

        inspect = run_command(
            [self._docker_bin, "image", "inspect", "--format", "{{.Id}}", image_reference],
            logger=self._logger,
        )
        image_id = inspect.stdout.strip() if inspect.ok else None
        return LocalImage(service=service.name, reference=image_reference, image_id=image_id)

    def scan(self, image: LocalImage) -> tuple[Finding, ...]:
        result = run_command(
            [self._trivy_bin, "image", "--format", "json", "--quiet", image.reference],
            timeout_sec=self._scan_timeout_sec,
            logger=self._logger,
        )
        if not result.ok:
            raise ScanFailed(image.service, f"trivy exited {result.returncode}: {result.tail()}")
        try:
            payload = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise ScanFailed(image.service, f"unreadable trivy report: {exc}") from exc
        return parse_trivy_report(payload)

    def _ensure_login(self, service: str) -> None:
        if self._token is None:
            return
        with self._login_lock:
            if self._logged_in:
                return
            args = [self._docker_bin, "login", self._host, "--password-stdin"]
            if self._username:
                args.extend(["--username", self._username])
            result = run_command(args, input_text=self._token.get_secret_value(), logger=self._logger)
            if not result.ok:
                raise PublishFailed(service, f"registry login to {self._host} failed (exit {result.returncode})")
            self._logged_in = True
            self._logger.info("registry.login_ok host=%s", self._host)

    def push(self, image: LocalImage, image_reference: str) -> str:
        self._ensure_login(image.service)
        if image.reference != image_reference:
            tagged = run_command([self._docker_bin, "tag", image.reference, image_reference], logger=self._logger)
            if not tagged.ok:
                raise PublishFailed(image.service, f"docker tag exited {tagged.returncode}: {tagged.tail()}")

        result = run_command([self._docker_bin, "push", image_reference], logger=self._logger)
        if not result.ok:
            raise PublishFailed(image.service, f"docker push exited {result.returncode}: {result.tail()}")

        match = _DIGEST_PATTERN.search(result.stdout)
        if match:
            return match.group(1)

        inspect = run_command(
            [self._docker_bin, "image", "inspect", "--format", "{{json .RepoDigests}}", image_reference],
            logger=self._logger,
        )
        if inspect.ok:
            repository, _ = split_image_reference(image_reference)
            try:
                entries = json.loads(inspect.stdout or "[]") or []
            except json.JSONDecodeError:
                entries = []
            for entry in entries:
                name, _, digest = str(entry).partition("@")
                if name == repository and digest:
                    return digest
        raise PublishFailed(image.service, "push succeeded but the registry digest could not be determined")
