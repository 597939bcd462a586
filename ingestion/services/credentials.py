"""Credential store: token encryption at rest and access-token refresh."""

from datetime import datetime, timedelta
from typing import Optional, Tuple
import logging

from cryptography.fernet import InvalidToken

from ingestion.adapters.base import AuthError
from ingestion.adapters.registry import AdapterRegistry
from ingestion.core.config import Settings, get_settings
from ingestion.models import Integration, PlatformCredentials
from ingestion.services.state_machine import IntegrationStateMachine
from ingestion.utils.crypto import decrypt_token, encrypt_token

logger = logging.getLogger(__name__)

SECRET_FIELDS = ("access_token", "refresh_token", "api_secret")


class CredentialStore:
    """Owns credential secrets and the token refresh flow."""

    def __init__(
        self,
        registry: AdapterRegistry,
        state_machine: IntegrationStateMachine,
        settings: Optional[Settings] = None,
    ):
        self.registry = registry
        self.state_machine = state_machine
        self.settings = settings or get_settings()

    def _transform(self, credentials: PlatformCredentials, transform) -> dict:
        update = {}
        for field in SECRET_FIELDS:
            value = getattr(credentials, field)
            if value:
                update[field] = transform(value, self.settings.encryption_key, self.settings.encryption_salt)
        return update

    def encrypt(self, credentials: PlatformCredentials) -> PlatformCredentials:
        if credentials.encrypted:
            return credentials

        update = self._transform(credentials, encrypt_token)
        return credentials.model_copy(update={**update, "encrypted": True})

    def decrypt(self, credentials: PlatformCredentials) -> PlatformCredentials:
        if not credentials.encrypted:
            return credentials

        try:
            update = self._transform(credentials, decrypt_token)
        except (InvalidToken, ValueError) as e:
            raise AuthError(f"Stored credentials could not be decrypted: {e.__class__.__name__}")

        return credentials.model_copy(update={**update, "encrypted": False})

    def needs_refresh(self, integration: Integration, now: Optional[datetime] = None) -> bool:
        if integration.token_expires_at is None:
            return False
        window = timedelta(seconds=self.settings.token_refresh_window_seconds)
        return integration.token_expires_at <= (now or datetime.utcnow()) + window

    async def refresh_access_token(
        self, integration: Integration
    ) -> Tuple[PlatformCredentials, Optional[datetime]]:
        """Refresh and persist the access token.

        Returns the plaintext credentials to use for the rest of the unit
        of work and the new expiry.
        """
        adapter = self.registry.get(integration.platform_name)
        current = self.decrypt(integration.credentials)

        token = await adapter.refresh_access_token(current)

        refreshed = current.model_copy(update={
            "access_token": token.access_token,
            "refresh_token": token.refresh_token or current.refresh_token,
            "token_type": token.token_type,
        })
        await self.state_machine.record_token_refresh(
            integration.id, self.encrypt(refreshed), token.expires_at
        )

        logger.info(
            f"Refreshed access token for integration {integration.id}",
            extra={"integration_id": integration.id, "expires_at": token.expires_at},
        )
        return refreshed, token.expires_at
