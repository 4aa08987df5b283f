"""opsbridge: plugin invocation runtime for an AI Kubernetes operations assistant."""

__version__ = "1.0.0"
