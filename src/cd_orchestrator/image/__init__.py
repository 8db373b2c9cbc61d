"""Image pipeline: build, scan, gate and publish one service image."""

from cd_orchestrator.image.pipeline import ImagePipelineResult, run_image_pipeline
from cd_orchestrator.image.registry import (
    DockerRegistryClient,
    RegistryClient,
    build_image_reference,
    parse_trivy_report,
    split_image_reference,
)
from cd_orchestrator.image.severity import SEVERITY_ORDER, evaluate_gate, normalize_severity

__all__ = [
    "ImagePipelineResult",
    "run_image_pipeline",
    "DockerRegistryClient",
    "RegistryClient",
    "build_image_reference",
    "parse_trivy_report",
    "split_image_reference",
    "SEVERITY_ORDER",
    "evaluate_gate",
    "normalize_severity",
]
