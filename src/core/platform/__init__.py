"""
Dataverse platform access: authentication, the metadata client and
response normalization.
"""

from .auth import AuthenticationError, CredentialFactory, TokenManager, dataverse_scope
from .dataverse_client import (
    DataverseAPIError,
    DataverseConfig,
    DataverseMetadataClient,
    DeleteOutcome,
    ErrorClass,
    TransientAPIError,
    classify_error,
)
from .normalizers import (
    AttributeRef,
    EntityRef,
    OptionSetRef,
    PublisherRef,
    RelationshipRef,
    SolutionRef,
)

__all__ = [
    "AuthenticationError",
    "CredentialFactory",
    "TokenManager",
    "dataverse_scope",
    "DataverseAPIError",
    "DataverseConfig",
    "DataverseMetadataClient",
    "DeleteOutcome",
    "ErrorClass",
    "TransientAPIError",
    "classify_error",
    "AttributeRef",
    "EntityRef",
    "OptionSetRef",
    "PublisherRef",
    "RelationshipRef",
    "SolutionRef",
]
