"""Configuration models and loading logic."""

from __future__ import annotations

import os
from pathlib import Path
from typing import ClassVar, Literal

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from cd_orchestrator.models import ServiceDescriptor

DEFAULT_SETTINGS_FILE = Path("configs/settings.yaml")
SETTINGS_FILE_ENV = "CD_ORCHESTRATOR_SETTINGS_FILE"

SeverityName = Literal["UNKNOWN", "LOW", "MEDIUM", "HIGH", "CRITICAL"]


class ProjectConfig(BaseModel):
    """Project metadata settings."""

    name: str = "cd_orchestrator"
    env: str = "dev"


class PathsConfig(BaseModel):
    """Filesystem locations used by a release run."""

    repo_root: Path = Path(".")
    artifacts_root: Path = Path("./artifacts")
    logs_root: Path = Path("./logs")

    def resolved(self, project_root: Path) -> "PathsConfig":
        """Return a copy with project-relative paths resolved to absolute paths."""

        updates: dict[str, Path] = {}
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            updates[field_name] = value if value.is_absolute() else (project_root / value).resolve()
        return self.model_copy(update=updates)


class ServiceConfig(BaseModel):
    """One independently deployable service and the paths that trigger it."""

    name: str = Field(min_length=1)
    source_paths: list[str] = Field(min_length=1)
    build_context: str | None = None
    dockerfile: str | None = None
    chart: str | None = None
    smoke_url: str | None = None

    @field_validator("source_paths")
    @classmethod
    def _strip_source_paths(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip().removeprefix("./") for item in value]
        if any(not item for item in cleaned):
            raise ValueError("source_paths entries must be non-empty")
        return cleaned


class ChangeDetectionConfig(BaseModel):
    """Paths whose modification invalidates every service."""

    shared_template_paths: list[str] = Field(default_factory=lambda: ["charts/templates/"])


class RegistryConfig(BaseModel):
    """Container registry and image tooling settings."""

    host: str = "docker.io"
    repository: str = "voting-app"
    username: str | None = None
    token: SecretStr | None = None
    docker_bin: str = "docker"
    trivy_bin: str = "trivy"
    scan_timeout_sec: int | None = Field(default=None, ge=1)


class GateConfig(BaseModel):
    """Vulnerability gate policy."""

    blocking_severity: SeverityName = "CRITICAL"

    @field_validator("blocking_severity", mode="before")
    @classmethod
    def _upper(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value


class DeployConfig(BaseModel):
    """Release application and readiness settings."""

    helm_bin: str = "helm"
    chart_root: str = "charts"
    wait_timeout_sec: int = Field(default=300, ge=1)
    force_upgrade: bool = True
    deploy_branches: list[str] = Field(default_factory=lambda: ["main"])
    # Enable only where the runner can reach each service smoke_url.
    smoke_enabled: bool = False
    smoke_max_attempts: int = Field(default=30, ge=1)
    smoke_interval_sec: float = Field(default=2.0, ge=0.0)


class ClusterConfig(BaseModel):
    """Cluster credentials injected at run start."""

    api_server: str | None = None
    ca_file: Path | None = None
    token: SecretStr | None = None


class ExecutionConfig(BaseModel):
    """Worker pool sizing for per-service fan-out."""

    max_workers: int = Field(default=4, ge=1)


class ReportingConfig(BaseModel):
    """Run summary sink settings."""

    write_artifacts: bool = True
    markdown_path: Path | None = None


class AppSettings(BaseSettings):
    """Top-level application settings."""

    _yaml_file_override: ClassVar[Path | None] = None

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    services: list[ServiceConfig] = Field(default_factory=list)
    namespaces: dict[str, str] = Field(default_factory=dict)
    change_detection: ChangeDetectionConfig = Field(default_factory=ChangeDetectionConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    deploy: DeployConfig = Field(default_factory=DeployConfig)
    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)

    model_config = SettingsConfigDict(
        env_prefix="CD_ORCHESTRATOR_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _unique_service_names(self) -> "AppSettings":
        seen: set[str] = set()
        for service in self.services:
            if service.name in seen:
                raise ValueError(f"Duplicate service name in configuration: {service.name}")
            seen.add(service.name)
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Use YAML defaults while allowing env vars to override values."""

        yaml_file = resolve_settings_file(cls._yaml_file_override)
        yaml_settings = YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            yaml_settings,
            file_secret_settings,
        )

    def service_descriptors(self) -> tuple[ServiceDescriptor, ...]:
        """Build immutable service descriptors in configuration order."""

        descriptors: list[ServiceDescriptor] = []
        for service in self.services:
            chart = service.chart or f"{self.deploy.chart_root.rstrip('/')}/{service.name}"
            descriptors.append(
                ServiceDescriptor(
                    name=service.name,
                    source_paths=frozenset(service.source_paths),
                    target_namespace=self.namespaces.get(service.name),
                    build_context=service.build_context or service.name,
                    dockerfile=service.dockerfile,
                    chart=chart,
                    smoke_url=service.smoke_url,
                )
            )
        return tuple(descriptors)

    def as_dict(self) -> dict[str, object]:
        """Return settings as a standard nested dictionary with secrets masked."""

        return self.model_dump(mode="json")


def find_project_root(start: Path | None = None) -> Path:
    """Locate the project root by traversing upward for config markers."""

    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / "configs/settings.yaml").exists():
            return candidate
    return current


def resolve_settings_file(override: Path | None = None) -> Path:
    """Resolve settings file from explicit override, env var, or default."""

    chosen = override
    if chosen is None:
        env_value = os.getenv(SETTINGS_FILE_ENV)
        if env_value:
            chosen = Path(env_value)
    if chosen is None:
        chosen = DEFAULT_SETTINGS_FILE

    if not chosen.is_absolute():
        chosen = (find_project_root() / chosen).resolve()
    return chosen


def load_settings(config_file: Path | None = None) -> AppSettings:
    """Load settings with YAML defaults and environment variable overrides."""

    settings_file = resolve_settings_file(config_file)
    project_root = settings_file.parent.parent.resolve()
    AppSettings._yaml_file_override = settings_file
    try:
        settings = AppSettings()
    finally:
        AppSettings._yaml_file_override = None
    resolved_paths = settings.paths.resolved(project_root=project_root)
    return settings.model_copy(update={"paths": resolved_paths})
