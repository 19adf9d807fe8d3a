"""
Execution Engine - Credential Store.

============================================================
PURPOSE
============================================================
Resolves an account id to decrypted exchange API credentials.

Decryption lives outside the engine. The engine only holds
credentials in memory for the lifetime of one adapter and
never persists or logs them.

============================================================
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

from .adapters.logging_utils import mask_value
from .types import CredentialsNotFoundError


@dataclass(frozen=True)
class ApiCredentials:
    """Decrypted API key pair. repr() never shows the secret."""

    api_key: str
    api_secret: str = field(repr=False)

    def __repr__(self) -> str:
        return f"ApiCredentials(api_key={mask_value(self.api_key)})"

    __str__ = __repr__


class CredentialStore(ABC):
    """Account id → credentials."""

    @abstractmethod
    async def get_credentials(self, account_id: str) -> ApiCredentials:
        """
        Raises:
            CredentialsNotFoundError: If the account has no credentials
        """
        pass


class StaticCredentialStore(CredentialStore):
    """In-memory store, used by tests and single-account deployments."""

    def __init__(self, credentials: Optional[Dict[str, ApiCredentials]] = None):
        self._credentials = dict(credentials or {})

    def set(self, account_id: str, credentials: ApiCredentials) -> None:
        self._credentials[account_id] = credentials

    async def get_credentials(self, account_id: str) -> ApiCredentials:
        try:
            return self._credentials[account_id]
        except KeyError:
            raise CredentialsNotFoundError(f"No API credentials for account {account_id}") from None


class EnvCredentialStore(CredentialStore):
    """
    Environment-backed store.

    Looks up BINANCE_API_KEY_<ACCOUNT> / BINANCE_API_SECRET_<ACCOUNT>
    first, then the unsuffixed variables.
    """

    def __init__(
        self,
        api_key_env: str = "BINANCE_API_KEY",
        api_secret_env: str = "BINANCE_API_SECRET",
    ):
        load_dotenv()
        self._api_key_env = api_key_env
        self._api_secret_env = api_secret_env

    async def get_credentials(self, account_id: str) -> ApiCredentials:
        suffix = "_" + account_id.upper().replace("-", "_")
        api_key = os.getenv(self._api_key_env + suffix) or os.getenv(self._api_key_env)
        api_secret = os.getenv(self._api_secret_env + suffix) or os.getenv(self._api_secret_env)
        if not api_key or not api_secret:
            raise CredentialsNotFoundError(f"No API credentials for account {account_id}")
        return ApiCredentials(api_key=api_key, api_secret=api_secret)
