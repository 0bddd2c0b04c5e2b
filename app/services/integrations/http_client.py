"""
HTTP client helper with standardized timeout configuration.

Every outbound call (WhatsApp Cloud API sends, BSP message polling) goes through
create_httpx_client so none of them can hang a worker.
"""

import httpx


def get_httpx_timeout() -> httpx.Timeout:
    """Explicit connect / read / write / pool timeouts for BSP calls."""
    return httpx.Timeout(
        10.0,
        connect=5.0,
        read=10.0,
        write=5.0,
        pool=5.0,
    )


def create_httpx_client(
    *,
    headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """
    Create an httpx.AsyncClient with standardized timeout configuration.

    Args:
        headers: Default headers (e.g. Authorization) for every request
        transport: Alternative transport (httpx.MockTransport in tests)
    """
    return httpx.AsyncClient(
        timeout=get_httpx_timeout(),
        headers=headers,
        transport=transport,
    )
