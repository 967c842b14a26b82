"""Lenient decoding of list-valued fields read from storage or requests.

Older rows hold option and correct-answer lists serialized twice
(a JSON string containing a JSON string), so up to two levels of
decoding are attempted before giving up.
"""
from __future__ import annotations

import json
import logging

_log = logging.getLogger("quickpoll.decoding")

MAX_DECODE_DEPTH = 2


def decode_list(raw: object) -> list:
    """Return *raw* as a list, decoding JSON strings up to two levels deep.

    Never raises: ``None``, undecodable strings and non-list payloads all
    come back as an empty list.
    """
    value = raw
    for _ in range(MAX_DECODE_DEPTH):
        if not isinstance(value, str):
            break
        try:
            value = json.loads(value)
        except ValueError:
            _log.warning("Undecodable list payload: %r", raw)
            return []
    if isinstance(value, (list, tuple)):
        return list(value)
    if value is not None:
        _log.debug("Expected a list, got %s: %r", type(value).__name__, raw)
    return []
