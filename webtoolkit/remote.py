from __future__ import annotations

import logging
from typing import Any, Optional, Tuple

import httpx

from .responses import JSON_CONTENT_TYPE, encode_json


logger = logging.getLogger(__name__)


def push_json_to_remote(
    uri: str,
    data: Any,
    client: Optional[httpx.Client] = None,
) -> Tuple[httpx.Response, int]:
    """POST ``data`` as JSON to ``uri`` and return ``(response, status_code)``.

    Pass a configured ``httpx.Client`` to control transport, timeouts or
    proxies (tests pass one backed by ``httpx.MockTransport``). Without one a
    default client is created and closed after the call. No retries are
    attempted; transport failures propagate as ``httpx.HTTPError``.
    """
    body = encode_json(data)
    headers = {"Content-Type": JSON_CONTENT_TYPE}

    if client is None:
        with httpx.Client() as default_client:
            response = default_client.post(uri, content=body, headers=headers)
    else:
        response = client.post(uri, content=body, headers=headers)

    logger.info("pushed %d bytes of JSON to %s -> %d", len(body), uri, response.status_code)
    return response, response.status_code
