"""
Storage module for persisted connection settings
"""

from .secure_storage import SecureStorage, STORAGE_KEYS

__all__ = ['SecureStorage', 'STORAGE_KEYS']
