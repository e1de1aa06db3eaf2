"""
Secure key-value storage for connection settings
Values live in the OS credential store through keyring, one entry per key
"""

import asyncio
import logging
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "com.cloudbite.link"

STORAGE_KEYS = {
    'LAST_KNOWN_API_URL': 'last_known_api_url',
    'CONNECTION_MODE': 'connection_mode',
    'MANUAL_URL': 'manual_server_url',
}


class SecureStorage:
    """
    Persists string values under fixed keys in the system keyring

    Backend calls may block (DBus, Keychain), so each one runs in a worker
    thread. A keyring that cannot be read behaves like an empty store and a
    failed write is logged; connection settings are recoverable by rediscovery.
    """

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        self.service_name = service_name

    async def get_item(self, key: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(keyring.get_password, self.service_name, key)
        except KeyringError as e:
            logger.warning(f"Secure storage read of '{key}' failed: {e}")
            return None

    async def set_item(self, key: str, value: str) -> bool:
        try:
            await asyncio.to_thread(keyring.set_password, self.service_name, key, value)
            return True
        except KeyringError as e:
            logger.error(f"Secure storage write of '{key}' failed: {e}")
            return False

    async def remove_item(self, key: str) -> bool:
        try:
            await asyncio.to_thread(keyring.delete_password, self.service_name, key)
            return True
        except PasswordDeleteError:
            # Nothing stored under this key
            return False
        except KeyringError as e:
            logger.error(f"Secure storage delete of '{key}' failed: {e}")
            return False

    async def clear(self) -> None:
        """Remove every known connection key"""
        for key in STORAGE_KEYS.values():
            await self.remove_item(key)
