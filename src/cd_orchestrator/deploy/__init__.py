"""Deployment of gated images into their cluster namespaces."""

from cd_orchestrator.deploy.cluster import ClusterClient, HelmClusterClient
from cd_orchestrator.deploy.namespaces import NamespaceTable
from cd_orchestrator.deploy.orchestrator import DeployOptions, deploy_service
from cd_orchestrator.deploy.smoke import HttpSmokeProber, ReadinessProber

__all__ = [
    "ClusterClient",
    "HelmClusterClient",
    "NamespaceTable",
    "DeployOptions",
    "deploy_service",
    "HttpSmokeProber",
    "ReadinessProber",
]
