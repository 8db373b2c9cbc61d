"""Change-driven build, scan and deploy orchestration for multi-service repositories."""

__all__ = ["__version__"]

__version__ = "0.1.0"
