"""
Authentication helpers for the Dataverse Web API.

Dataverse tokens are scoped to the environment itself, so the scope is
derived from the environment URL rather than being a fixed constant.

Classes:
    TokenManager: Thread-safe access token management with caching
    CredentialFactory: Factory for creating Azure credentials
"""

import time
import logging
import threading
from typing import Optional, List

from azure.identity import (
    InteractiveBrowserCredential,
    ClientSecretCredential,
    DefaultAzureCredential,
    ChainedTokenCredential,
)
from azure.core.credentials import TokenCredential

from constants import APIConfig

logger = logging.getLogger(__name__)


def dataverse_scope(environment_url: str) -> str:
    """``https://org.crm.dynamics.com/`` -> ``https://org.crm.dynamics.com/.default``."""
    if not environment_url:
        raise AuthenticationError("Environment URL is required to build the token scope")
    return f"{environment_url.rstrip('/')}/.default"


class CredentialFactory:
    """Factory for creating Azure credentials based on configuration.

    Example:
        >>> credential = CredentialFactory.create_credential(tenant_id, client_id, secret)
        >>> manager = TokenManager(credential, dataverse_scope(url))
    """

    @staticmethod
    def create_credential(
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        use_interactive_auth: bool = False,
    ) -> TokenCredential:
        """Create a chained token credential.

        The chain tries, in order:
        1. Service principal (if tenant, client id and secret are all provided)
        2. Interactive browser (if enabled)
        3. Default Azure credential (managed identity, Azure CLI, environment)
        """
        credentials: List[TokenCredential] = []

        if client_id and client_secret and tenant_id:
            logger.info("Adding client secret credential to auth chain")
            credentials.append(
                ClientSecretCredential(
                    tenant_id=tenant_id,
                    client_id=client_id,
                    client_secret=client_secret,
                )
            )

        if use_interactive_auth:
            logger.info("Adding interactive browser credential to auth chain")
            # Empty strings fail azure-identity validation
            interactive_kwargs = {}
            if tenant_id:
                interactive_kwargs['tenant_id'] = tenant_id
            if client_id:
                interactive_kwargs['client_id'] = client_id
            credentials.append(InteractiveBrowserCredential(**interactive_kwargs))

        credentials.append(DefaultAzureCredential())

        return ChainedTokenCredential(*credentials)


class TokenManager:
    """Thread-safe access token manager with caching.

    Entity creation runs on a worker pool, so several threads may ask for a
    token at once; only one of them acquires it and the others reuse the cache.

    Example:
        >>> manager = TokenManager(credential, dataverse_scope(url))
        >>> headers = {"Authorization": f"Bearer {manager.get_access_token()}"}
    """

    def __init__(
        self,
        credential: TokenCredential,
        scope: str,
        token_buffer_seconds: int = APIConfig.TOKEN_BUFFER_SECONDS,
    ):
        self._credential = credential
        self._scope = scope
        self._token_buffer_seconds = token_buffer_seconds
        self._access_token: Optional[str] = None
        self._token_expires: float = 0
        self._token_lock = threading.RLock()

    @property
    def scope(self) -> str:
        return self._scope

    def get_access_token(self) -> str:
        """Get a valid access token, refreshing if necessary.

        Raises:
            AuthenticationError: If token acquisition fails
        """
        with self._token_lock:
            current_time = time.time()

            if self._access_token and current_time < self._token_expires - self._token_buffer_seconds:
                logger.debug("Using cached access token")
                return self._access_token

            logger.info(f"Acquiring access token for {self._scope}")

            try:
                token = self._credential.get_token(self._scope)
            except Exception as e:
                logger.error(f"Authentication failed: {e}")
                raise AuthenticationError(f"Failed to acquire access token: {e}") from e

            if not token or not token.token:
                raise AuthenticationError("Received empty token from credential provider")

            self._access_token = token.token
            self._token_expires = token.expires_on

            logger.info("Access token acquired successfully")
            return self._access_token

    def invalidate_token(self) -> None:
        """Invalidate the cached token to force refresh on next request."""
        with self._token_lock:
            self._access_token = None
            self._token_expires = 0
            logger.debug("Token cache invalidated")

    @property
    def is_token_valid(self) -> bool:
        with self._token_lock:
            if not self._access_token:
                return False
            return time.time() < self._token_expires - self._token_buffer_seconds


class AuthenticationError(Exception):
    """Exception raised for authentication failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)
