from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiohttp


SESSION_HEADER = 'X-Transmission-Session-Id'

TORRENT_FIELDS = [
    'id',
    'name',
    'percentDone',
    'uploadRatio',
    'addedDate',
    'downloadDir',
    'labels',
    'error',
    'errorString',
    'trackers',
]

# Retransmissions allowed after a 409 before giving up on the call
MAX_SESSION_RETRIES = 2

# Failures that mean the daemon is not reachable (yet). A request timeout
# counts too, whether it expires while connecting or while reading.
CONNECTIVITY_ERRORS = (aiohttp.ClientConnectionError, asyncio.TimeoutError)


class TransmissionError(Exception):
    pass


class ConnectivityError(TransmissionError):
    pass


class SessionNegotiationFailed(TransmissionError):
    pass


class RpcCallFailed(TransmissionError):
    def __init__(self, message: str, *, status: Optional[int] = None, result: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.result = result


def _normalize_tracker(tracker: Any) -> Dict[str, Any]:
    tr = tracker if isinstance(tracker, dict) else {}
    return {
        'announce': tr.get('announce') or '',
        'id': tr.get('id') or 0,
        'scrape': tr.get('scrape') or '',
        'tier': tr.get('tier') or 0,
    }


def normalize_torrent(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Default every missing or null torrent-get field so callers never deal with None."""
    return {
        'id': raw.get('id') or 0,
        'name': raw.get('name') or '',
        'percentDone': raw.get('percentDone') or 0,
        'uploadRatio': raw.get('uploadRatio') or 0,
        'addedDate': raw.get('addedDate') or 0,
        'downloadDir': raw.get('downloadDir') or '',
        'labels': list(raw.get('labels') or []),
        'error': raw.get('error') or 0,
        'errorString': raw.get('errorString') or '',
        'trackers': [_normalize_tracker(t) for t in (raw.get('trackers') or [])],
    }


class TransmissionClient:
    """JSON-RPC client for a Transmission daemon.

    The client owns the session id negotiated with the daemon and reuses it
    across calls, so a single instance should live for the whole process.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        *,
        request_timeout: float = 10,
        connect_attempts: int = 30,
        retry_delay: float = 1.0,
    ) -> None:
        self.session = session
        self.url = url
        self.auth = aiohttp.BasicAuth(username or '', password or '', encoding='utf-8') if (username or password) else None
        self.request_timeout = request_timeout
        self.connect_attempts = connect_attempts
        self.retry_delay = retry_delay
        self.session_id: Optional[str] = None

    async def rpc(self, method: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body = {'method': method, 'arguments': arguments or {}}
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        retries = 0
        while True:
            headers = {'Accept': 'application/json'}
            if self.session_id:
                headers[SESSION_HEADER] = self.session_id
            try:
                async with self.session.post(self.url, json=body, headers=headers, auth=self.auth, timeout=timeout) as resp:
                    sid = resp.headers.get(SESSION_HEADER)
                    if sid:
                        self.session_id = sid
                    if resp.status == 409:
                        if retries >= MAX_SESSION_RETRIES:
                            raise SessionNegotiationFailed(
                                f'Failed to negotiate Transmission session after {retries + 1} attempts (409)'
                            )
                        retries += 1
                        logging.debug(f'Transmission {method}: session id refreshed; retransmitting ({retries}/{MAX_SESSION_RETRIES})')
                        continue
                    if not 200 <= resp.status < 300:
                        raise RpcCallFailed(
                            f'API request failed: [{resp.status}] {resp.reason or ""}'.rstrip(),
                            status=resp.status,
                        )
                    try:
                        payload = await resp.json(content_type=None)
                    except ValueError as e:
                        raise RpcCallFailed(f'Malformed RPC response: {e}', status=resp.status) from e
            except CONNECTIVITY_ERRORS as e:
                raise ConnectivityError(f'Transmission unreachable at {self.url}: {str(e) or type(e).__name__}') from e
            except aiohttp.ClientError as e:
                raise RpcCallFailed(f'API request failed: {str(e) or type(e).__name__}') from e

            result = payload.get('result') if isinstance(payload, dict) else None
            if result != 'success':
                raise RpcCallFailed(f'RPC error: {result}', status=resp.status, result=result)
            args = payload.get('arguments')
            return args if isinstance(args, dict) else {}

    async def get_torrents(self) -> List[Dict[str, Any]]:
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self.rpc('torrent-get', {'fields': TORRENT_FIELDS})
            except ConnectivityError:
                if attempt == 1:
                    logging.info(f'Connecting to Transmission ({self.url})...')
                if attempt >= self.connect_attempts:
                    logging.error(f'Connection failed after {attempt} attempts')
                    raise
                await asyncio.sleep(self.retry_delay)
                continue
            torrents = [normalize_torrent(t) for t in (response.get('torrents') or []) if isinstance(t, dict)]
            if attempt > 1:
                logging.info(f'Connected to Transmission (attempt {attempt}): {len(torrents)} torrents')
            else:
                logging.info(f'Fetched {len(torrents)} torrent(s)')
            return torrents

    async def remove_torrents(self, ids: Sequence[int], delete_local_data: bool = True) -> None:
        await self.rpc('torrent-remove', {'ids': list(ids), 'delete-local-data': delete_local_data})
