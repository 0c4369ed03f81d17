from datetime import datetime

import pytest

from hostwatch.models import (
    NetConnection, ProcessInfo, SendResult, Session, Snapshot, UsbDevice
)
from hostwatch.notification.channels import NotificationChannel


class FakeChannel(NotificationChannel):
    """In-memory channel that replays scripted send results"""

    def __init__(self, name="fake", max_length=4000, results=None, enabled=True, error=None):
        super().__init__({'enabled': enabled, 'max_message_length': max_length})
        self.name = name
        self.results = list(results or [])
        self.error = error
        self.sent = []
        self.started = False
        self.closed = False

    async def send_chunk(self, text):
        self.sent.append(text)
        if self.error is not None:
            raise self.error
        if self.results:
            return self.results.pop(0)
        return SendResult(True)

    async def start(self):
        self.started = True

    async def close(self):
        self.closed = True


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays"""

    def __init__(self):
        self.calls = []

    async def __call__(self, delay):
        self.calls.append(delay)


@pytest.fixture
def fake_channel():
    return FakeChannel


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def make_snapshot():
    def _make(processes=(), usb_devices=(), connections=(), sessions=(), **kwargs):
        def _tuple(items, factory):
            if items is None:
                return None
            return tuple(factory(item) if isinstance(item, str) else item for item in items)

        values = {
            'taken_at': datetime(2024, 5, 1, 12, 0, 0),
            'hostname': 'testhost',
            'platform': 'Linux 6.1',
            'uptime_seconds': 3 * 86400 + 4 * 3600 + 5 * 60,
            'processes': _tuple(processes, lambda name: ProcessInfo(name=name, pid=abs(hash(name)) % 30000)),
            'usb_devices': _tuple(usb_devices, lambda dev_id: UsbDevice(id=dev_id, name=f"Device {dev_id}")),
            'connections': None if connections is None else tuple(connections),
            'sessions': None if sessions is None else tuple(sessions),
        }
        values.update(kwargs)
        return Snapshot(**values)
    return _make


@pytest.fixture
def ssh_connection():
    def _make(remote="203.0.113.7", local_port=22, status='ESTABLISHED', process_name='sshd'):
        return NetConnection(
            local_address='10.0.0.2',
            local_port=local_port,
            remote_address=remote,
            remote_port=51515,
            status=status,
            pid=999,
            process_name=process_name
        )
    return _make


@pytest.fixture
def session_record():
    def _make(user='alice', terminal='pts/0', host='192.168.1.20', started=None):
        return Session(user=user, terminal=terminal, host=host,
                       started=started or datetime(2024, 5, 1, 11, 0, 0))
    return _make
