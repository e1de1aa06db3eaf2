"""
Shared fixtures for cloudbite_link tests

No test touches the real network: probes are patched or served by a local
aiohttp test server, and device connectivity comes from FakeNetwork.
"""

import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

from cloudbite_link.config_loader import load_config
from cloudbite_link.events import EventStream
from cloudbite_link.network import NetworkStatus
from cloudbite_link.storage import SecureStorage

WIFI = NetworkStatus(is_connected=True, type='wifi')
OFFLINE = NetworkStatus(is_connected=False, type='none')

SERVER_URL = "http://192.168.1.77:3737/"


class MemoryKeyring(KeyringBackend):
    """Keyring backend holding passwords in a dict"""

    priority = 1

    def __init__(self):
        super().__init__()
        self.passwords = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        if (service, username) not in self.passwords:
            raise PasswordDeleteError(username)
        del self.passwords[(service, username)]


class FakeNetwork:
    """Controllable stand-in for DeviceNetwork"""

    def __init__(self, status: NetworkStatus = WIFI):
        self._status = status
        self._changes = EventStream('fake-network')
        self.fetch_count = 0

    async def fetch(self) -> NetworkStatus:
        self.fetch_count += 1
        return self._status

    def current(self) -> NetworkStatus:
        return self._status

    def subscribe(self, listener):
        return self._changes.subscribe(listener, replay=self._status)

    def set_status(self, status: NetworkStatus) -> None:
        if status == self._status:
            return
        self._status = status
        self._changes.emit(status)

    def start(self):
        pass

    def stop(self):
        pass


@pytest.fixture
def config():
    """Defaults with a pinned subnet and short timers"""
    config = load_config(None)
    config['discovery']['subnet'] = '192.168.1'
    config['discovery']['probe_timeout'] = 0.2
    config['connection']['debounce_seconds'] = 0.01
    config['connection']['settle_delay_seconds'] = 0.01
    config['health']['interval_seconds'] = 30
    return config


@pytest.fixture(autouse=True)
def memory_keyring():
    """Route every keyring call to a fresh in-memory backend"""
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture
def storage():
    return SecureStorage('com.cloudbite.link.test')


@pytest.fixture
def network():
    return FakeNetwork()
