"""
Core of the Mermaid to Dataverse deployer.

- Schema generation (SchemaGenerator, MetadataDocument)
- Dataverse access (DataverseConfig, DataverseMetadataClient)
- Deployment, rollback and history (DeploymentOrchestrator, RollbackExecutor)
- Input validation (InputValidator, ConfigurationError)

Usage:
    from core import SchemaGenerator, DeploymentOrchestrator, DeploymentOptions
    from core.platform import DataverseConfig, DataverseMetadataClient
"""

from .platform import (
    DataverseAPIError,
    DataverseConfig,
    DataverseMetadataClient,
    TransientAPIError,
)
from .schema import GlobalChoice, MetadataDocument, SchemaGenerator
from .services import (
    DeploymentHistory,
    DeploymentOptions,
    DeploymentOrchestrator,
    DeploymentResult,
    RollbackExecutor,
    RollbackOptions,
)
from .validators import ConfigurationError, InputValidator

__all__ = [
    "DataverseAPIError",
    "DataverseConfig",
    "DataverseMetadataClient",
    "TransientAPIError",
    "GlobalChoice",
    "MetadataDocument",
    "SchemaGenerator",
    "DeploymentHistory",
    "DeploymentOptions",
    "DeploymentOrchestrator",
    "DeploymentResult",
    "RollbackExecutor",
    "RollbackOptions",
    "ConfigurationError",
    "InputValidator",
]
