# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
HTTP Requests and Transport

Single responsibility: Run GET requests and report their progress through
per-request hooks.

A Request subclass receives, in order: response_headers_complete(), any number
of got_body_data() calls, then exactly one of on_done() or on_fail(). Every
hook runs on the event loop thread that issued the request, so request owners
never need locking. After cancel_request() no further hooks fire.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional, Protocol
from urllib.parse import unquote, urlparse

import httpx

logger = logging.getLogger(__name__)

LOCAL_CHUNK_SIZE = 64 * 1024


class Request:
    """One GET request plus the hooks its owner overrides"""

    def __init__(self, url: str):
        self.url = url
        self.response_code = 0
        self.response_length = -1
        self.cancelled = False

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.url!r})"

    # -- Transport-facing --

    def set_response(self, code: int, length: Optional[int]):
        """Record response status line data before headers complete"""
        self.response_code = code
        self.response_length = length if length is not None and length >= 0 else -1

    # -- Hooks --

    def response_headers_complete(self):
        pass

    def got_body_data(self, data: bytes):
        pass

    def on_done(self):
        pass

    def on_fail(self, error: Exception):
        pass


class Transport(Protocol):
    """Anything that can run Requests"""

    def make_request(self, request: Request) -> None:
        ...

    def cancel_request(self, request: Request) -> None:
        ...


def _content_length(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("content-length")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class HttpxTransport:
    """
    Runs each Request as an asyncio task using httpx streaming.

    make_request() must be called while an event loop is running; the hooks
    are invoked from that loop. file:// URLs are read from the local
    filesystem, with a missing file reported as response code 404.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        user_agent: Optional[str] = None
    ):
        """
        Initialize transport.

        Args:
            client: Optional pre-built client (tests pass one with a MockTransport)
            timeout: Request timeout in seconds when building our own client
            user_agent: Optional User-Agent header when building our own client
        """
        self._owns_client = client is None
        if client is None:
            headers = {"User-Agent": user_agent} if user_agent else None
            client = httpx.AsyncClient(timeout=timeout, headers=headers, follow_redirects=True)
        self.client = client
        self._tasks: Dict[Request, asyncio.Task] = {}

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    @property
    def active_requests(self) -> int:
        return len(self._tasks)

    def make_request(self, request: Request) -> None:
        loop = asyncio.get_running_loop()
        self._tasks[request] = loop.create_task(self._run(request))

    def cancel_request(self, request: Request) -> None:
        request.cancelled = True
        task = self._tasks.pop(request, None)
        if task is not None:
            task.cancel()
            logger.debug(f"Cancelled request: {request.url}")

    async def wait_idle(self):
        """Wait until every request issued so far, and any they trigger, has finished"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
            for request, task in list(self._tasks.items()):
                if task.done():
                    del self._tasks[request]

    async def aclose(self):
        for request in list(self._tasks):
            self.cancel_request(request)
        if self._owns_client:
            await self.client.aclose()

    async def _run(self, request: Request):
        try:
            if request.url.startswith("file://"):
                await self._run_local(request)
            else:
                await self._run_http(request)
        except httpx.HTTPError as e:
            logger.warning(f"Request failed: {request.url}: {e}")
            self._finish(request, error=e)
        except OSError as e:
            logger.warning(f"Local request failed: {request.url}: {e}")
            self._finish(request, error=e)
        except Exception as e:
            # Malformed URLs (httpx.InvalidURL) and errors raised by hooks
            logger.error(f"Request aborted: {request.url}: {e}")
            self._finish(request, error=e)
        else:
            self._finish(request)

    def _finish(self, request: Request, error: Optional[Exception] = None):
        # Drop the task before the hook runs so the hook may issue new requests
        self._tasks.pop(request, None)
        if request.cancelled:
            return
        if error is None:
            request.on_done()
        else:
            request.on_fail(error)

    async def _run_http(self, request: Request):
        async with self.client.stream("GET", request.url) as response:
            request.set_response(response.status_code, _content_length(response))
            request.response_headers_complete()
            async for chunk in response.aiter_bytes():
                if request.cancelled:
                    return
                request.got_body_data(chunk)

    async def _run_local(self, request: Request):
        path = Path(unquote(urlparse(request.url).path))
        if not path.is_file():
            request.set_response(404, 0)
            request.response_headers_complete()
            return

        request.set_response(200, path.stat().st_size)
        request.response_headers_complete()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(LOCAL_CHUNK_SIZE), b""):
                if request.cancelled:
                    return
                request.got_body_data(chunk)
                # Yield so other requests progress
                await asyncio.sleep(0)
