import smtplib

import pytest
import requests

from hostwatch.notification.chat_channel import ChatChannel
from hostwatch.notification.email_channel import EmailChannel
from hostwatch.notification.websocket_channel import WebSocketChannel


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {'ok': status_code == 200}

    def json(self):
        return self._payload


class FakeSession:
    """requests.Session double with scripted responses per method"""

    def __init__(self, get=None, post=None):
        self.get_responses = list(get or [FakeResponse(200)])
        self.post_responses = list(post or [FakeResponse(200)])
        self.posts = []
        self.gets = []
        self.closed = False

    def _next(self, responses):
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, timeout=None):
        self.gets.append(url)
        return self._next(self.get_responses)

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        return self._next(self.post_responses)

    def close(self):
        self.closed = True


CHAT_CONFIG = {'enabled': True, 'bot_token': 'TOKEN', 'chat_id': '42', 'api_url': 'https://chat.example'}


# =============================================================================
# Chat
# =============================================================================

def test_chat_requires_credentials():
    assert ChatChannel(CHAT_CONFIG, session=FakeSession()).is_enabled()
    assert not ChatChannel({**CHAT_CONFIG, 'bot_token': ''}, session=FakeSession()).is_enabled()
    assert not ChatChannel({**CHAT_CONFIG, 'enabled': False}, session=FakeSession()).is_enabled()
    assert ChatChannel(CHAT_CONFIG, session=FakeSession()).max_message_length() == 4000


@pytest.mark.asyncio
async def test_chat_verifies_session_once_then_posts():
    session = FakeSession()
    channel = ChatChannel(CHAT_CONFIG, session=session)

    assert (await channel.send_chunk("first")).success
    assert (await channel.send_chunk("second")).success

    assert session.gets == ["https://chat.example/botTOKEN/getMe"]
    assert [payload['text'] for _, payload in session.posts] == ["first", "second"]
    assert session.posts[0][0] == "https://chat.example/botTOKEN/sendMessage"
    assert session.posts[0][1]['chat_id'] == '42'


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [429, 500, 503])
async def test_chat_server_and_rate_limit_errors_are_transient(status):
    session = FakeSession(post=[FakeResponse(status, {'description': 'Too Many Requests'})])
    result = await ChatChannel(CHAT_CONFIG, session=session).send_chunk("hi")

    assert not result.success
    assert result.transient
    assert f"HTTP {status}" in result.error


@pytest.mark.asyncio
async def test_chat_bad_request_is_permanent():
    session = FakeSession(post=[FakeResponse(400, {'description': 'Bad Request: chat not found'})])
    result = await ChatChannel(CHAT_CONFIG, session=session).send_chunk("hi")

    assert not result.success
    assert not result.transient
    assert "chat not found" in result.error


@pytest.mark.asyncio
async def test_chat_connection_error_is_transient():
    session = FakeSession(post=[requests.ConnectionError("connection reset")])
    result = await ChatChannel(CHAT_CONFIG, session=session).send_chunk("hi")

    assert not result.success and result.transient


@pytest.mark.asyncio
async def test_chat_auth_failure_forces_reverification():
    session = FakeSession(post=[FakeResponse(401, {'description': 'Unauthorized'}), FakeResponse(200)])
    channel = ChatChannel(CHAT_CONFIG, session=session)

    first = await channel.send_chunk("one")
    second = await channel.send_chunk("two")

    assert not first.success and not first.transient
    assert second.success
    assert len(session.gets) == 2


@pytest.mark.asyncio
async def test_chat_failed_verification_skips_post():
    session = FakeSession(get=[FakeResponse(401, {'description': 'Unauthorized'})])
    result = await ChatChannel(CHAT_CONFIG, session=session).send_chunk("hi")

    assert not result.success
    assert session.posts == []


# =============================================================================
# Email
# =============================================================================

class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout, error=None):
        self.host = host
        self.port = port
        self.error = error
        self.calls = []
        self.sent = []
        FakeSMTP.instances.append(self)

    def starttls(self):
        self.calls.append('starttls')

    def login(self, username, password):
        self.calls.append('login')

    def send_message(self, msg):
        if self.error is not None:
            raise self.error
        self.sent.append(msg)

    def quit(self):
        self.calls.append('quit')


EMAIL_CONFIG = {
    'enabled': True,
    'smtp_server': 'smtp.example',
    'smtp_port': 587,
    'username': 'agent@example.com',
    'password': 'secret',
    'recipients': 'ops@example.com, oncall@example.com'
}


def _email_channel(error=None):
    FakeSMTP.instances = []
    return EmailChannel(EMAIL_CONFIG, smtp_factory=lambda host, port, timeout: FakeSMTP(host, port, timeout, error))


def test_email_recipients_from_comma_separated_string():
    channel = _email_channel()
    assert channel.recipients == ['ops@example.com', 'oncall@example.com']
    assert channel.is_enabled()
    assert not EmailChannel({**EMAIL_CONFIG, 'recipients': []}).is_enabled()


def test_email_subject_skips_chunk_marker(monkeypatch):
    monkeypatch.setattr('socket.gethostname', lambda: 'web01')
    subject = _email_channel().build_subject("(2/3)\n🚨 *Suspicious Activity*\n\ndetails")

    assert subject == "Host Watch [web01]: 🚨 *Suspicious Activity"


@pytest.mark.asyncio
async def test_email_sends_with_starttls_and_login():
    channel = _email_channel()
    result = await channel.send_chunk("⚠️ *Resource Alert*\n\nCPU usage: 95.0%")

    assert result.success
    smtp = FakeSMTP.instances[0]
    assert smtp.calls == ['starttls', 'login', 'quit']
    assert smtp.sent[0]['To'] == 'ops@example.com, oncall@example.com'
    assert smtp.sent[0]['From'] == 'agent@example.com'


@pytest.mark.asyncio
async def test_email_auth_error_is_permanent():
    channel = _email_channel(smtplib.SMTPAuthenticationError(535, b'bad credentials'))
    result = await channel.send_chunk("hi")

    assert not result.success and not result.transient
    assert FakeSMTP.instances[0].calls[-1] == 'quit'


@pytest.mark.asyncio
async def test_email_disconnect_is_transient():
    result = await _email_channel(smtplib.SMTPServerDisconnected("gone")).send_chunk("hi")
    assert not result.success and result.transient


@pytest.mark.asyncio
@pytest.mark.parametrize("code,transient", [(451, True), (554, False)])
async def test_email_reply_codes(code, transient):
    result = await _email_channel(smtplib.SMTPDataError(code, b'nope')).send_chunk("hi")
    assert not result.success
    assert result.transient is transient


@pytest.mark.asyncio
async def test_email_socket_error_is_transient():
    result = await _email_channel(ConnectionRefusedError("refused")).send_chunk("hi")
    assert not result.success and result.transient


# =============================================================================
# WebSocket
# =============================================================================

class FakeClient:
    def __init__(self):
        self.messages = []

    async def send(self, message):
        self.messages.append(message)


@pytest.mark.asyncio
async def test_websocket_requires_started_server():
    result = await WebSocketChannel({'enabled': True}).send_chunk("hi")
    assert not result.success and not result.transient


@pytest.mark.asyncio
async def test_websocket_broadcasts_json_to_clients():
    channel = WebSocketChannel({'enabled': True})
    channel.server = object()
    client = FakeClient()
    channel.clients.add(client)

    result = await channel.send_chunk("alert text")

    assert result.success
    assert '"text": "alert text"' in client.messages[0]


class BrokenClient:
    async def send(self, message):
        raise RuntimeError("broken pipe")


@pytest.mark.asyncio
async def test_websocket_fails_when_no_client_received():
    channel = WebSocketChannel({'enabled': True})
    channel.server = object()
    channel.clients.add(BrokenClient())

    result = await channel.send_chunk("alert text")

    assert not result.success
    assert result.transient
    assert "broken pipe" in result.error


@pytest.mark.asyncio
async def test_websocket_succeeds_when_one_client_received():
    channel = WebSocketChannel({'enabled': True})
    channel.server = object()
    client = FakeClient()
    channel.clients.update({client, BrokenClient()})

    result = await channel.send_chunk("alert text")

    assert result.success
    assert len(client.messages) == 1
