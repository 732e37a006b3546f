from __future__ import annotations

import json
import logging
import socket
import urllib.error
import urllib.request
from typing import Any

from crewloop.errors import TransportError

logger = logging.getLogger(__name__)

_BODY_EXCERPT = 500


def post_json(
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    timeout_s: float,
    *,
    provider: str,
) -> dict[str, Any]:
    data = json.dumps(payload).encode("utf-8")
    request = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json", **headers},
        method="POST",
    )
    logger.debug("POST %s (%d bytes)", url, len(data))
    try:
        with urllib.request.urlopen(request, timeout=timeout_s) as response:
            raw = response.read()
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="replace")[:_BODY_EXCERPT]
        raise TransportError(
            f"{provider} API error {exc.code}: {body}", status=exc.code, body=body
        ) from exc
    except (socket.timeout, TimeoutError) as exc:
        raise TransportError(f"{provider} API timeout after {timeout_s}s") from exc
    except urllib.error.URLError as exc:
        raise TransportError(f"{provider} API unreachable: {exc.reason}") from exc
    try:
        decoded = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise TransportError(f"{provider} API returned invalid JSON") from exc
    if not isinstance(decoded, dict):
        raise TransportError(f"{provider} API returned a non-object payload")
    return decoded
