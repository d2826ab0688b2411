"""
Dataverse Metadata API Client

This module provides functionality to interact with the Dataverse Web API
metadata endpoints for creating, querying, and deleting publishers, solutions,
tables, columns, relationships and global choices.

Every public method returns normalized references (see ``normalizers``) so
callers never look at raw response payloads.
"""

import json
import os
import re
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import requests
from azure.core.credentials import TokenCredential
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_sleep_log,
)

from constants import APIConfig, DeploymentConfig
from shared.models.metadata_types import ComponentType
from .auth import AuthenticationError, CredentialFactory, TokenManager, dataverse_scope
from .normalizers import (
    AttributeRef,
    EntityRef,
    OptionSetRef,
    PublisherRef,
    RelationshipRef,
    SolutionRef,
    normalize_attribute,
    normalize_entity,
    normalize_option_set,
    normalize_publisher,
    normalize_relationship,
    normalize_solution,
    parse_entity_id_header,
)

logger = logging.getLogger(__name__)

DEPENDENCY_PATTERN = re.compile(
    r'referenced by \d+ other components?|0x8004f01f|cannot be deleted because',
    re.IGNORECASE,
)
ALREADY_EXISTS_PATTERN = re.compile(
    r'already exists|duplicate|is not unique|0x80044363|0x80048403',
    re.IGNORECASE,
)
# Customization locks and concurrency conflicts clear up on their own
RETRYABLE_MESSAGE_PATTERN = re.compile(
    r'customization|unexpected error|another user has changed|try again later',
    re.IGNORECASE,
)


class TransientAPIError(Exception):
    """Exception for transient API errors (429, 5xx, timeouts) that should be retried."""
    def __init__(self, status_code: int, retry_after: int = 5, message: str = ""):
        self.status_code = status_code
        self.retry_after = retry_after
        self.message = message
        super().__init__(f"Transient error (HTTP {status_code}): {message}")


class DataverseAPIError(Exception):
    """Exception raised for permanent Dataverse API errors."""

    def __init__(self, status_code: int, error_code: str, message: str):
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message} (HTTP {status_code})")


class ErrorClass(str, Enum):
    """How the orchestrator should treat a failed call."""
    TRANSIENT = "transient"
    ALREADY_EXISTS = "already_exists"
    DEPENDENCY_CONFLICT = "dependency_conflict"
    PERMANENT = "permanent"


class DeleteOutcome(str, Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    REFERENCED = "referenced"


def _is_transient_error(exception: BaseException) -> bool:
    """Check if exception is a transient error that should be retried."""
    if isinstance(exception, TransientAPIError):
        return True
    if isinstance(exception, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        return True
    return False


def classify_error(exception: BaseException) -> ErrorClass:
    """
    Classify an exception raised by the client.

    Dependency conflicts ("referenced by N other components") and duplicate
    names are reported separately from other permanent failures so callers can
    turn them into warnings.
    """
    if _is_transient_error(exception):
        return ErrorClass.TRANSIENT
    if isinstance(exception, DataverseAPIError):
        text = f"{exception.error_code} {exception.message}"
        if DEPENDENCY_PATTERN.search(text):
            return ErrorClass.DEPENDENCY_CONFLICT
        if ALREADY_EXISTS_PATTERN.search(text):
            return ErrorClass.ALREADY_EXISTS
    return ErrorClass.PERMANENT


_retry_transient = retry(
    stop=stop_after_attempt(APIConfig.MAX_RETRY_ATTEMPTS),
    wait=wait_exponential(
        multiplier=APIConfig.RETRY_MULTIPLIER,
        min=APIConfig.RETRY_MIN_WAIT_SECONDS,
        max=APIConfig.RETRY_MAX_WAIT_SECONDS,
    ),
    retry=retry_if_exception(_is_transient_error),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


@dataclass
class DataverseConfig:
    """Configuration for Dataverse Web API access."""
    environment_url: str
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    use_interactive_auth: bool = False
    api_version: str = APIConfig.DEFAULT_API_VERSION
    timeout: int = APIConfig.DEFAULT_TIMEOUT_SECONDS

    @property
    def api_base_url(self) -> str:
        return f"{self.environment_url.rstrip('/')}/api/data/{self.api_version}"

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'DataverseConfig':
        """Create DataverseConfig from a dictionary, falling back to environment variables."""
        dv_config = config_dict.get('dataverse', config_dict)
        return cls(
            environment_url=dv_config.get('environment_url') or os.environ.get('DATAVERSE_URL', ''),
            tenant_id=dv_config.get('tenant_id') or os.environ.get('AZURE_TENANT_ID'),
            client_id=dv_config.get('client_id') or os.environ.get('AZURE_CLIENT_ID'),
            client_secret=dv_config.get('client_secret') or os.environ.get('AZURE_CLIENT_SECRET'),
            use_interactive_auth=dv_config.get('use_interactive_auth', False),
            api_version=dv_config.get('api_version', APIConfig.DEFAULT_API_VERSION),
            timeout=dv_config.get('timeout', APIConfig.DEFAULT_TIMEOUT_SECONDS),
        )

    @classmethod
    def from_file(cls, config_path: str) -> 'DataverseConfig':
        """Load configuration from a JSON file."""
        if not config_path:
            raise ValueError("config_path cannot be empty")

        if not isinstance(config_path, str):
            raise TypeError(f"config_path must be string, got {type(config_path)}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config_dict = json.load(f)
        except FileNotFoundError:
            raise FileNotFoundError(
                f"Configuration file not found: {config_path}. "
                f"Please create a config.json file with your Dataverse environment settings."
            )
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file {config_path}: {e}")
        except UnicodeDecodeError as e:
            raise ValueError(f"Encoding error reading {config_path}: {e}")
        except PermissionError:
            raise PermissionError(f"Permission denied reading {config_path}")
        except Exception as e:
            raise IOError(f"Error reading configuration file {config_path}: {e}")

        if not isinstance(config_dict, dict):
            raise ValueError(f"Configuration file must contain a JSON object, got {type(config_dict)}")

        return cls.from_dict(config_dict)


@dataclass
class ApiResponse:
    """Handled response: parsed body plus the id of a created record."""
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)
    entity_id: Optional[str] = None


class DataverseMetadataClient:
    """
    Client for the Dataverse Web API metadata endpoints.

    This client handles authentication and provides methods for:
    - Publishers and solutions (query, create, delete)
    - Tables, columns and one-to-many relationships
    - Global choices (option sets)
    - Solution component registration

    Transient failures are retried with exponential backoff; everything else
    surfaces as ``DataverseAPIError`` for the caller to classify.
    """

    def __init__(self, config: DataverseConfig, credential: Optional[TokenCredential] = None):
        """
        Initialize the metadata client.

        Args:
            config: DataverseConfig instance with connection details
            credential: Optional credential; built from config when omitted
        """
        if not config:
            raise ValueError("config cannot be None")

        if not isinstance(config, DataverseConfig):
            raise TypeError(f"config must be DataverseConfig instance, got {type(config)}")

        if not config.environment_url:
            raise ValueError("environment_url is required in configuration")

        if not config.environment_url.lower().startswith('https://'):
            logger.warning(
                f"environment_url '{config.environment_url}' is not an https URL. "
                "API calls may fail."
            )

        self.config = config
        self._credential = credential
        self._token_manager: Optional[TokenManager] = None

    def _get_credential(self) -> TokenCredential:
        """Get the appropriate credential based on configuration."""
        if self._credential is None:
            self._credential = CredentialFactory.create_credential(
                tenant_id=self.config.tenant_id,
                client_id=self.config.client_id,
                client_secret=self.config.client_secret,
                use_interactive_auth=self.config.use_interactive_auth,
            )
        return self._credential

    def _get_access_token(self) -> str:
        if self._token_manager is None:
            self._token_manager = TokenManager(
                self._get_credential(),
                dataverse_scope(self.config.environment_url),
            )
        return self._token_manager.get_access_token()

    def _get_headers(self, solution_name: Optional[str] = None) -> Dict[str, str]:
        """Get HTTP headers with authorization."""
        headers = {
            "Authorization": f"Bearer {self._get_access_token()}",
            "Content-Type": "application/json; charset=utf-8",
            "Accept": "application/json",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
        }
        if solution_name:
            headers["MSCRM.SolutionUniqueName"] = solution_name
        return headers

    def _make_request(
        self,
        method: str,
        url: str,
        operation_name: str,
        **kwargs
    ) -> requests.Response:
        """
        Make HTTP request with consistent error handling.

        Timeouts and connection failures become ``TransientAPIError`` so they
        are retried; any other transport failure is permanent.
        """
        timeout = self.config.timeout
        try:
            logger.debug(f"{operation_name}: {method} {url}")
            return requests.request(method, url, timeout=timeout, **kwargs)

        except requests.exceptions.Timeout:
            logger.warning(f"{operation_name}: Request timeout after {timeout}s")
            raise TransientAPIError(408, message=f'{operation_name} timed out after {timeout} seconds')

        except requests.exceptions.ConnectionError as e:
            logger.warning(f"{operation_name}: Connection error: {e}")
            raise TransientAPIError(503, message=f'{operation_name} failed to connect to Dataverse: {e}')

        except requests.exceptions.RequestException as e:
            logger.error(f"{operation_name}: Request error: {e}")
            raise DataverseAPIError(
                status_code=500,
                error_code='RequestError',
                message=f'{operation_name} request failed: {e}'
            )

    @staticmethod
    def _error_details(response: requests.Response) -> Tuple[str, str]:
        """Error code and message of an OData error body."""
        try:
            error_data = response.json()
        except (json.JSONDecodeError, ValueError):
            return 'Unknown', response.text or response.reason or ''
        error = error_data.get('error', error_data) if isinstance(error_data, dict) else {}
        return (
            str(error.get('code') or error.get('errorCode') or 'Unknown'),
            error.get('message') or response.text or '',
        )

    def _handle_response(self, response: requests.Response) -> ApiResponse:
        """Handle API response and raise appropriate errors."""
        if response.status_code in (200, 201):
            if response.text:
                try:
                    return ApiResponse(response.status_code, response.json())
                except json.JSONDecodeError as e:
                    logger.error(f"Failed to parse JSON response: {e}")
                    logger.debug(f"Response text: {response.text[:500]}")
                    raise DataverseAPIError(
                        status_code=response.status_code,
                        error_code='InvalidResponse',
                        message=f'Server returned invalid JSON: {e}'
                    )
            return ApiResponse(response.status_code)

        if response.status_code == 204:
            return ApiResponse(204, entity_id=parse_entity_id_header(response.headers))

        error_code, error_message = self._error_details(response)
        text = f"{error_code} {error_message}"

        if response.status_code == 429:
            retry_after = int(response.headers.get('Retry-After', 30))
            logger.warning(f"Rate limited (429). Retry after {retry_after}s")
            raise TransientAPIError(429, retry_after, "Rate limit exceeded")

        # Duplicate and dependency responses are never worth retrying
        if not (DEPENDENCY_PATTERN.search(text) or ALREADY_EXISTS_PATTERN.search(text)):
            if response.status_code in APIConfig.TRANSIENT_STATUS_CODES:
                retry_after = int(response.headers.get('Retry-After', 10))
                logger.warning(f"Transient error ({response.status_code}). Retry after {retry_after}s")
                raise TransientAPIError(response.status_code, retry_after, error_message)
            if RETRYABLE_MESSAGE_PATTERN.search(error_message):
                logger.warning(f"Retryable platform error ({response.status_code}): {error_message}")
                raise TransientAPIError(response.status_code, 10, error_message)

        raise DataverseAPIError(
            status_code=response.status_code,
            error_code=error_code,
            message=error_message,
        )

    @_retry_transient
    def _send(
        self,
        method: str,
        path: str,
        operation_name: str,
        solution_name: Optional[str] = None,
        allow_not_found: bool = False,
        **kwargs
    ) -> Optional[ApiResponse]:
        """Send one request; ``None`` for a 404 when ``allow_not_found``."""
        url = f"{self.config.api_base_url}/{path}"
        response = self._make_request(
            method, url, operation_name,
            headers=self._get_headers(solution_name),
            **kwargs
        )
        if allow_not_found and response.status_code == 404:
            return None
        return self._handle_response(response)

    def _delete(self, path: str, operation_name: str) -> DeleteOutcome:
        try:
            result = self._send('DELETE', path, operation_name, allow_not_found=True)
        except DataverseAPIError as e:
            if classify_error(e) == ErrorClass.DEPENDENCY_CONFLICT:
                logger.warning(f"{operation_name}: still referenced: {e.message}")
                return DeleteOutcome.REFERENCED
            raise
        if result is None:
            logger.info(f"{operation_name}: not found")
            return DeleteOutcome.NOT_FOUND
        logger.info(f"{operation_name}: deleted")
        return DeleteOutcome.DELETED

    @staticmethod
    def _quote(value: str) -> str:
        """Escape a string literal for an OData filter."""
        return value.replace("'", "''")

    # ------------------------------------------------------------------
    # Publishers and solutions
    # ------------------------------------------------------------------

    def get_publisher(self, unique_name: str) -> Optional[PublisherRef]:
        """Find a publisher by unique name (case-insensitive on the server)."""
        path = (
            f"publishers?$filter=uniquename eq '{self._quote(unique_name)}'"
            "&$select=publisherid,uniquename,friendlyname,customizationprefix"
        )
        result = self._send('GET', path, f'Get publisher {unique_name}')
        return normalize_publisher(result.body)

    def ensure_publisher(
        self,
        unique_name: str,
        friendly_name: str,
        prefix: str,
        description: str = "",
    ) -> Tuple[PublisherRef, bool]:
        """
        Return the publisher, creating it when missing.

        Returns:
            Tuple of (publisher, created)
        """
        existing = self.get_publisher(unique_name)
        if existing:
            logger.info(f"Publisher '{unique_name}' already exists")
            return existing, False

        logger.info(f"Creating publisher '{unique_name}' with prefix '{prefix}'")
        body = {
            "uniquename": unique_name,
            "friendlyname": friendly_name,
            "customizationprefix": prefix,
            "description": description or f"Publisher for {friendly_name}",
            "customizationoptionvalueprefix": DeploymentConfig.CUSTOMIZATION_OPTION_VALUE_PREFIX,
        }
        result = self._send('POST', 'publishers', f'Create publisher {unique_name}', json=body)
        if not result.entity_id:
            created = self.get_publisher(unique_name)
            if created:
                return created, True
            raise DataverseAPIError(result.status_code, 'MissingId', f"Publisher '{unique_name}' id not returned")
        return PublisherRef(result.entity_id, unique_name, friendly_name, prefix), True

    def get_solution(self, unique_name: str) -> Optional[SolutionRef]:
        path = (
            "solutions?$select=solutionid,uniquename,friendlyname,_publisherid_value"
            "&$expand=publisherid($select=publisherid,uniquename,customizationprefix)"
            f"&$filter=uniquename eq '{self._quote(unique_name)}'"
        )
        result = self._send('GET', path, f'Get solution {unique_name}')
        return normalize_solution(result.body)

    def ensure_solution(
        self,
        unique_name: str,
        friendly_name: str,
        publisher: PublisherRef,
        version: str = DeploymentConfig.DEFAULT_SOLUTION_VERSION,
    ) -> Tuple[SolutionRef, bool]:
        """
        Return the solution, creating it under ``publisher`` when missing.

        Returns:
            Tuple of (solution, created)
        """
        existing = self.get_solution(unique_name)
        if existing:
            if existing.publisher_id and existing.publisher_id != publisher.publisher_id:
                logger.warning(
                    f"Solution '{unique_name}' belongs to another publisher ({existing.publisher_id})"
                )
            logger.info(f"Solution '{unique_name}' already exists")
            return existing, False

        logger.info(f"Creating solution '{unique_name}'")
        body = {
            "uniquename": unique_name,
            "friendlyname": friendly_name,
            "version": version,
            "publisherid@odata.bind": f"/publishers({publisher.publisher_id})",
        }
        result = self._send('POST', 'solutions', f'Create solution {unique_name}', json=body)
        if not result.entity_id:
            created = self.get_solution(unique_name)
            if created:
                return created, True
            raise DataverseAPIError(result.status_code, 'MissingId', f"Solution '{unique_name}' id not returned")
        return SolutionRef(result.entity_id, unique_name, friendly_name, publisher.publisher_id), True

    def add_component_to_solution(
        self,
        component_type: ComponentType,
        component_id: str,
        solution_unique_name: str,
    ) -> None:
        body = {
            "ComponentId": component_id,
            "ComponentType": int(component_type),
            "SolutionUniqueName": solution_unique_name,
            "AddRequiredComponents": False,
            "DoNotIncludeSubcomponents": False,
        }
        self._send(
            'POST', 'AddSolutionComponent',
            f'Add component {component_id} to {solution_unique_name}',
            json=body,
        )

    def remove_component_from_solution(
        self,
        component_type: ComponentType,
        component_id: str,
        solution_unique_name: str,
    ) -> None:
        body = {
            "SolutionComponent": {
                "@odata.type": "Microsoft.Dynamics.CRM.solutioncomponent",
                "solutioncomponentid": component_id,
            },
            "ComponentType": int(component_type),
            "SolutionUniqueName": solution_unique_name,
        }
        self._send(
            'POST', 'RemoveSolutionComponent',
            f'Remove component {component_id} from {solution_unique_name}',
            json=body,
        )

    def delete_solution(self, solution_id: str) -> DeleteOutcome:
        return self._delete(f"solutions({solution_id})", f'Delete solution {solution_id}')

    def delete_publisher(self, publisher_id: str) -> DeleteOutcome:
        return self._delete(f"publishers({publisher_id})", f'Delete publisher {publisher_id}')

    # ------------------------------------------------------------------
    # Tables and columns
    # ------------------------------------------------------------------

    def get_entity(self, logical_name: str) -> Optional[EntityRef]:
        """Table metadata, or ``None`` when the table does not exist."""
        path = f"EntityDefinitions(LogicalName='{logical_name.lower()}')?$select=LogicalName,SchemaName,MetadataId,IsCustomEntity"
        result = self._send('GET', path, f'Get entity {logical_name}', allow_not_found=True)
        return normalize_entity(result.body) if result else None

    def create_entity(self, payload: Dict[str, Any], solution_name: Optional[str] = None) -> EntityRef:
        """Create a table from an ``EntityMetadata`` payload."""
        logical_name = payload.get('LogicalName') or payload['SchemaName'].lower()
        logger.info(f"Creating entity {logical_name}")
        result = self._send(
            'POST', 'EntityDefinitions', f'Create entity {logical_name}',
            solution_name=solution_name, json=payload,
        )
        return EntityRef(
            logical_name=logical_name,
            metadata_id=result.entity_id,
            schema_name=payload.get('SchemaName'),
            is_custom=True,
        )

    def delete_entity(self, logical_name: str) -> DeleteOutcome:
        return self._delete(
            f"EntityDefinitions(LogicalName='{logical_name.lower()}')",
            f'Delete entity {logical_name}',
        )

    def get_attribute(self, entity_logical_name: str, attribute_logical_name: str) -> Optional[AttributeRef]:
        path = (
            f"EntityDefinitions(LogicalName='{entity_logical_name.lower()}')"
            f"/Attributes(LogicalName='{attribute_logical_name.lower()}')"
            "?$select=LogicalName,MetadataId,AttributeType"
        )
        result = self._send(
            'GET', path, f'Get attribute {entity_logical_name}.{attribute_logical_name}',
            allow_not_found=True,
        )
        return normalize_attribute(result.body) if result else None

    def create_attribute(
        self,
        entity_logical_name: str,
        payload: Dict[str, Any],
        solution_name: Optional[str] = None,
    ) -> AttributeRef:
        logical_name = payload.get('LogicalName') or payload['SchemaName'].lower()
        path = f"EntityDefinitions(LogicalName='{entity_logical_name.lower()}')/Attributes"
        result = self._send(
            'POST', path, f'Create attribute {entity_logical_name}.{logical_name}',
            solution_name=solution_name, json=payload,
        )
        return AttributeRef(
            logical_name=logical_name,
            metadata_id=result.entity_id,
            attribute_type=payload.get('AttributeType'),
        )

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def get_relationship(self, schema_name: str) -> Optional[RelationshipRef]:
        path = (
            "RelationshipDefinitions?$select=SchemaName,MetadataId"
            f"&$filter=SchemaName eq '{self._quote(schema_name)}'"
        )
        result = self._send('GET', path, f'Get relationship {schema_name}')
        return normalize_relationship(result.body)

    def create_relationship(
        self,
        payload: Dict[str, Any],
        solution_name: Optional[str] = None,
    ) -> RelationshipRef:
        schema_name = payload['SchemaName']
        logger.info(f"Creating relationship {schema_name}")
        result = self._send(
            'POST', 'RelationshipDefinitions', f'Create relationship {schema_name}',
            solution_name=solution_name, json=payload,
        )
        return RelationshipRef(schema_name=schema_name, metadata_id=result.entity_id)

    def delete_relationship(self, schema_name: str) -> DeleteOutcome:
        return self._delete(
            f"RelationshipDefinitions(SchemaName='{self._quote(schema_name)}')",
            f'Delete relationship {schema_name}',
        )

    # ------------------------------------------------------------------
    # Global choices
    # ------------------------------------------------------------------

    def get_global_option_set(self, name: str) -> Optional[OptionSetRef]:
        path = f"GlobalOptionSetDefinitions(Name='{self._quote(name)}')"
        result = self._send('GET', path, f'Get global choice {name}', allow_not_found=True)
        return normalize_option_set(result.body) if result else None

    def create_global_option_set(
        self,
        payload: Dict[str, Any],
        solution_name: Optional[str] = None,
    ) -> OptionSetRef:
        name = payload['Name']
        logger.info(f"Creating global choice {name}")
        result = self._send(
            'POST', 'GlobalOptionSetDefinitions', f'Create global choice {name}',
            solution_name=solution_name, json=payload,
        )
        values = [option.get('Value') for option in payload.get('Options', [])]
        return OptionSetRef(name=name, metadata_id=result.entity_id, options=values)

    def delete_global_option_set(self, metadata_id: str) -> DeleteOutcome:
        return self._delete(
            f"GlobalOptionSetDefinitions({metadata_id})",
            f'Delete global choice {metadata_id}',
        )


__all__ = [
    'ApiResponse',
    'AuthenticationError',
    'DataverseAPIError',
    'DataverseConfig',
    'DataverseMetadataClient',
    'DeleteOutcome',
    'ErrorClass',
    'TransientAPIError',
    'classify_error',
]
