"""Local storage for deployments and templates."""

from .deployments import DeploymentStore, StorageError
from .templates import BUILT_IN_TEMPLATES, Template, TemplateError, TemplateStore

__all__ = [
    "BUILT_IN_TEMPLATES",
    "DeploymentStore",
    "StorageError",
    "Template",
    "TemplateError",
    "TemplateStore",
]
