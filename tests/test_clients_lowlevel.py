import importlib
import logging

import aiohttp
import pytest


pytestmark = pytest.mark.asyncio

URL = 'http://tr:9091/transmission/rpc'


class FakeResp:
    def __init__(self, status=200, json_data=None, headers=None, reason=''):
        self.status = status
        self._json = json_data
        self.headers = headers or {}
        self.reason = reason

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type='application/json'):
        if isinstance(self._json, Exception):
            raise self._json
        return self._json


class QueueSession:
    def __init__(self, responses):
        # responses: FakeResp instances or exceptions to raise, in call order
        self._q = list(responses)
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append(('POST', url, kwargs))
        assert self._q, f"Unexpected POST call to {url}"
        resp = self._q.pop(0)
        if isinstance(resp, BaseException):
            raise resp
        return resp


def _ok(arguments=None, headers=None):
    return FakeResp(status=200, json_data={'result': 'success', 'arguments': arguments or {}}, headers=headers)


def _client(session, **kw):
    tr = importlib.import_module('integrations.clients.transmission')
    kw.setdefault('retry_delay', 0)
    return tr.TransmissionClient(session, URL, **kw)


async def test_session_handshake_then_token_reused_on_next_call():
    session = QueueSession([
        FakeResp(status=409, headers={'X-Transmission-Session-Id': 'abc'}),
        _ok({'torrents': []}),
        _ok(),
    ])
    client = _client(session)
    torrents = await client.get_torrents()
    assert torrents == []
    assert client.session_id == 'abc'
    # First request had no token, the retransmission carried the new one
    assert 'X-Transmission-Session-Id' not in session.calls[0][2]['headers']
    assert session.calls[1][2]['headers']['X-Transmission-Session-Id'] == 'abc'
    assert session.calls[0][2]['json'] == session.calls[1][2]['json']

    await client.remove_torrents([1, 2])
    assert session.calls[2][2]['headers']['X-Transmission-Session-Id'] == 'abc'
    assert len(session.calls) == 3


async def test_two_retransmissions_allowed_third_conflict_fails():
    tr = importlib.import_module('integrations.clients.transmission')
    session = QueueSession([
        FakeResp(status=409, headers={'X-Transmission-Session-Id': 'a'}),
        FakeResp(status=409, headers={'X-Transmission-Session-Id': 'b'}),
        FakeResp(status=409, headers={'X-Transmission-Session-Id': 'c'}),
    ])
    client = _client(session)
    with pytest.raises(tr.SessionNegotiationFailed):
        await client.rpc('session-get')
    assert len(session.calls) == 3
    assert client.session_id == 'c'


async def test_conflict_twice_then_success():
    session = QueueSession([
        FakeResp(status=409, headers={'X-Transmission-Session-Id': 'a'}),
        FakeResp(status=409, headers={'X-Transmission-Session-Id': 'b'}),
        _ok({'version': '4.0'}),
    ])
    client = _client(session)
    out = await client.rpc('session-get')
    assert out == {'version': '4.0'}
    assert session.calls[2][2]['headers']['X-Transmission-Session-Id'] == 'b'


async def test_fresh_token_on_success_response_is_captured():
    session = QueueSession([
        _ok(headers={'X-Transmission-Session-Id': 'rotated'}),
        _ok(),
    ])
    client = _client(session)
    client.session_id = 'old'
    await client.rpc('session-get')
    assert client.session_id == 'rotated'
    await client.rpc('session-get')
    assert session.calls[1][2]['headers']['X-Transmission-Session-Id'] == 'rotated'


async def test_non_2xx_status_raises_rpc_call_failed():
    tr = importlib.import_module('integrations.clients.transmission')
    session = QueueSession([FakeResp(status=401, reason='Unauthorized')])
    client = _client(session)
    with pytest.raises(tr.RpcCallFailed) as exc:
        await client.rpc('torrent-get', {'fields': ['id']})
    assert exc.value.status == 401
    assert 'Unauthorized' in str(exc.value)


async def test_rpc_result_other_than_success_raises():
    tr = importlib.import_module('integrations.clients.transmission')
    session = QueueSession([FakeResp(status=200, json_data={'result': 'method name not recognized'})])
    client = _client(session)
    with pytest.raises(tr.RpcCallFailed) as exc:
        await client.rpc('bogus')
    assert exc.value.result == 'method name not recognized'
    assert 'method name not recognized' in str(exc.value)


async def test_malformed_json_raises_rpc_call_failed():
    tr = importlib.import_module('integrations.clients.transmission')
    session = QueueSession([FakeResp(status=200, json_data=ValueError('bad'))])
    client = _client(session)
    with pytest.raises(tr.RpcCallFailed):
        await client.rpc('session-get')


async def test_get_torrents_defaults_null_fields():
    session = QueueSession([
        _ok({'torrents': [{
            'id': 7,
            'name': None,
            'percentDone': None,
            'uploadRatio': -1,
            'addedDate': None,
            'downloadDir': None,
            'labels': None,
            'error': None,
            'errorString': None,
            'trackers': [{'announce': None, 'tier': 1}],
        }]}),
    ])
    client = _client(session)
    torrents = await client.get_torrents()
    assert torrents == [{
        'id': 7,
        'name': '',
        'percentDone': 0,
        'uploadRatio': -1,
        'addedDate': 0,
        'downloadDir': '',
        'labels': [],
        'error': 0,
        'errorString': '',
        'trackers': [{'announce': '', 'id': 0, 'scrape': '', 'tier': 1}],
    }]
    fields = session.calls[0][2]['json']['arguments']['fields']
    assert set(fields) == {
        'id', 'name', 'percentDone', 'uploadRatio', 'addedDate',
        'downloadDir', 'labels', 'error', 'errorString', 'trackers',
    }


async def test_basic_auth_attached_only_when_configured():
    session = QueueSession([_ok(), _ok()])
    client = _client(session, username='user', password='pa:ss')
    await client.rpc('session-get')
    auth = session.calls[0][2]['auth']
    assert isinstance(auth, aiohttp.BasicAuth)
    assert auth.login == 'user' and auth.password == 'pa:ss'

    anon = _client(session)
    await anon.rpc('session-get')
    assert session.calls[1][2]['auth'] is None


async def test_remove_sends_ids_and_delete_flag_and_is_not_retried():
    tr = importlib.import_module('integrations.clients.transmission')
    session = QueueSession([_ok()])
    client = _client(session)
    await client.remove_torrents([3, 5])
    body = session.calls[0][2]['json']
    assert body == {'method': 'torrent-remove', 'arguments': {'ids': [3, 5], 'delete-local-data': True}}

    failing = QueueSession([aiohttp.ServerDisconnectedError()])
    client2 = _client(failing)
    with pytest.raises(tr.ConnectivityError):
        await client2.remove_torrents([3])
    assert len(failing.calls) == 1


async def test_fetch_retries_connectivity_until_success_on_last_attempt(caplog):
    caplog.set_level(logging.INFO)
    failures = [aiohttp.ClientConnectionError('Connection refused') for _ in range(29)]
    session = QueueSession(failures + [_ok({'torrents': [{'id': 1, 'name': 'x'}]})])
    client = _client(session)
    torrents = await client.get_torrents()
    assert [t['id'] for t in torrents] == [1]
    assert len(session.calls) == 30
    messages = [r.getMessage() for r in caplog.records]
    assert sum('Connecting to Transmission' in m for m in messages) == 1
    assert any('Connected to Transmission (attempt 30): 1 torrents' in m for m in messages)
    assert not any('Connection failed' in m for m in messages)


async def test_fetch_gives_up_after_thirty_attempts(caplog):
    tr = importlib.import_module('integrations.clients.transmission')
    caplog.set_level(logging.INFO)
    session = QueueSession([aiohttp.ServerDisconnectedError() for _ in range(30)])
    client = _client(session)
    with pytest.raises(tr.ConnectivityError) as exc:
        await client.get_torrents()
    assert isinstance(exc.value.__cause__, aiohttp.ServerDisconnectedError)
    assert len(session.calls) == 30
    assert any('Connection failed after 30 attempts' in r.getMessage() for r in caplog.records)


async def test_fetch_timeout_counts_as_connectivity():
    import asyncio

    session = QueueSession([asyncio.TimeoutError(), _ok({'torrents': []})])
    client = _client(session)
    assert await client.get_torrents() == []
    assert len(session.calls) == 2


async def test_fetch_does_not_retry_non_connectivity_errors():
    tr = importlib.import_module('integrations.clients.transmission')
    session = QueueSession([FakeResp(status=500, reason='Internal Server Error')])
    client = _client(session)
    with pytest.raises(tr.RpcCallFailed):
        await client.get_torrents()
    assert len(session.calls) == 1


async def test_first_attempt_success_logs_plain_summary(caplog):
    caplog.set_level(logging.INFO)
    session = QueueSession([_ok({'torrents': [{'id': 1}, {'id': 2}]})])
    client = _client(session)
    await client.get_torrents()
    messages = [r.getMessage() for r in caplog.records]
    assert any(m == 'Fetched 2 torrent(s)' for m in messages)
    assert not any('Connecting to Transmission' in m for m in messages)


async def test_read_timeout_also_counts_as_connectivity():
    import asyncio

    session = QueueSession([FakeResp(json_data=asyncio.TimeoutError()), _ok({'torrents': []})])
    client = _client(session)
    assert await client.get_torrents() == []
    assert len(session.calls) == 2


@pytest.mark.parametrize('error', [
    aiohttp.ClientPayloadError('Response payload is not completed'),
    aiohttp.InvalidURL('http://[bad'),
])
async def test_other_client_errors_become_rpc_call_failed(error):
    tr = importlib.import_module('integrations.clients.transmission')
    session = QueueSession([error])
    client = _client(session)
    with pytest.raises(tr.RpcCallFailed) as exc:
        await client.get_torrents()
    assert exc.value.__cause__ is error
    assert len(session.calls) == 1
