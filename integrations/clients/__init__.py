from __future__ import annotations

from .transmission import (
    ConnectivityError,
    RpcCallFailed,
    SessionNegotiationFailed,
    TransmissionClient,
    TransmissionError,
    normalize_torrent,
)

__all__ = [
    'ConnectivityError',
    'RpcCallFailed',
    'SessionNegotiationFailed',
    'TransmissionClient',
    'TransmissionError',
    'normalize_torrent',
]
