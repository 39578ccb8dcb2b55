"""
Proxy Handler - Upstream Request Forwarding
============================================

This module converts one inbound request into one outbound response.

Flow:
-----
1. OPTIONS requests are answered locally as CORS preflights
2. Configuration is validated (fail closed when a required credential is missing)
3. The prefix is stripped from the path and the upstream URL is built
4. Headers are rewritten (Host dropped, Authorization replaced)
5. The request is forwarded once through the shared httpx client
6. The upstream response is relayed with CORS and cache headers forced
7. Transport failures become a JSON error envelope with status 502

The handler keeps no per-request state; one instance serves every request.
"""

import asyncio
import logging
from typing import AsyncIterator, List, Optional, Tuple

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.requests import ClientDisconnect

from ..models import ProxyConfig, ResponseMode, UnmatchedPrefixPolicy
from .errors import (
    ClientDisconnectedError,
    ConfigurationError,
    PrefixMismatchError,
    ProxyError,
    ResponseTooLargeError,
    UpstreamTimeoutError,
    transport_error_from,
)
from .rewrite import (
    build_response_headers,
    build_target_url,
    build_upstream_headers,
    cors_error_headers,
    preflight_headers,
    strip_prefix,
)

logger = logging.getLogger(__name__)

# Upstream body bytes included in warning logs for non-2xx responses
LOG_SNIPPET_BYTES = 200


def has_request_body(request: Request) -> bool:
    """True when the inbound request declares a body to forward."""
    if "transfer-encoding" in request.headers:
        return True
    content_length = request.headers.get("content-length")
    return bool(content_length) and content_length.strip() != "0"


def inbound_raw_path(request: Request) -> str:
    """
    Path as sent by the client, percent-encoding intact.

    Starlette's url.path is decoded, which would turn %2F into a separator
    upstream. Falls back to the decoded path when the server gives no raw_path.
    """
    raw_path = request.scope.get("raw_path")
    if isinstance(raw_path, (bytes, bytearray)) and raw_path:
        return bytes(raw_path).split(b"?", 1)[0].decode("latin-1")
    return request.url.path


def apply_headers(response: Response, headers: List[Tuple[str, str]]) -> Response:
    """Replace a response's headers with the given pairs, repeats included."""
    response.raw_headers = [
        (name.encode("latin-1"), value.encode("latin-1")) for name, value in headers
    ]
    return response


class ProxyHandler:
    """
    Prefix-stripping authenticated reverse proxy.

    Attributes:
        config: Immutable proxy configuration
        client: Process-wide httpx.AsyncClient used for every upstream call
        disconnect_poll_interval: Seconds between client-disconnect checks
    """

    def __init__(
        self,
        config: ProxyConfig,
        client: httpx.AsyncClient,
        disconnect_poll_interval: float = 0.5,
    ):
        self.config = config
        self.client = client
        self.disconnect_poll_interval = disconnect_poll_interval

    # ------------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------------

    async def handle(self, request: Request) -> Response:
        """
        Handle one inbound request.

        Args:
            request: Inbound FastAPI request

        Returns:
            Preflight answer, relayed upstream response, or error envelope
        """
        if request.method == "OPTIONS":
            return self.preflight()

        try:
            self.check_configuration()
            target_url = self.target_url_for(request)
            upstream = await self.forward(request, target_url)
            return await self.relay(upstream, target_url)

        except ProxyError as exc:
            self._log_failure(request, exc)
            return self.error_response(exc)

    def preflight(self) -> Response:
        return Response(status_code=204, headers=preflight_headers(self.config))

    def error_response(self, exc: ProxyError) -> JSONResponse:
        """Serialize a ProxyError into the JSON error envelope."""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_envelope().model_dump(exclude_none=True),
            headers=cors_error_headers(),
        )

    # ------------------------------------------------------------------------
    # Request side
    # ------------------------------------------------------------------------

    def check_configuration(self) -> None:
        """
        Raises:
            ConfigurationError: If a credential is required but not configured
        """
        if self.config.require_credential and not self.config.has_credential:
            raise ConfigurationError()

    def target_url_for(self, request: Request) -> str:
        """
        Build the upstream URL for a request.

        Raises:
            PrefixMismatchError: If the path is outside the prefix and the
                reject policy is active
        """
        path = inbound_raw_path(request)
        api_path = strip_prefix(path, self.config.path_prefix)

        if api_path is None:
            if self.config.unmatched_prefix_policy == UnmatchedPrefixPolicy.REJECT:
                raise PrefixMismatchError(f"Path '{path}' is outside '{self.config.path_prefix}'")
            api_path = path

        return build_target_url(self.config.base_url, api_path, request.url.query)

    async def forward(self, request: Request, target_url: str) -> httpx.Response:
        """
        Send the rewritten request upstream and wait for the response head.

        Body-less requests are raced against a client-disconnect watcher so
        an aborted client cancels the upstream call.

        Raises:
            UpstreamTimeoutError: If no response arrives within the timeout
            UpstreamTransportError: On DNS, connect, TLS or protocol failures
            ClientDisconnectedError: If the client went away first
        """
        headers = build_upstream_headers(self.config, request.headers.items())
        content = request.stream() if has_request_body(request) else None

        upstream_request = self.client.build_request(
            request.method,
            target_url,
            headers=headers,
            content=content,
            timeout=httpx.Timeout(self.config.timeout_seconds),
        )

        logger.info(
            f"Proxying {request.method}: {request.url.path} -> {target_url}",
            extra={"method": request.method, "target_url": target_url},
        )

        send_task = asyncio.ensure_future(self.client.send(upstream_request, stream=True))
        waiters = {send_task}
        watcher = None
        if content is None:
            watcher = asyncio.ensure_future(self._wait_for_disconnect(request))
            waiters.add(watcher)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.config.timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            await self._discard(send_task)
            raise
        finally:
            if watcher is not None:
                watcher.cancel()
                try:
                    await watcher
                except asyncio.CancelledError:
                    pass

        if send_task not in done:
            await self._discard(send_task)
            if watcher is not None and watcher in done:
                raise ClientDisconnectedError("Client disconnected before upstream responded")
            raise UpstreamTimeoutError(
                f"No upstream response within {self.config.timeout_seconds:g}s"
            )

        try:
            return send_task.result()
        except ClientDisconnect as exc:
            raise ClientDisconnectedError("Client disconnected while sending the request body") from exc
        except Exception as exc:
            raise transport_error_from(exc) from exc

    async def _wait_for_disconnect(self, request: Request) -> None:
        while not await request.is_disconnected():
            await asyncio.sleep(self.disconnect_poll_interval)

    @staticmethod
    async def _discard(task: "asyncio.Future[httpx.Response]") -> None:
        """Cancel an in-flight send and close the response if it won the race."""
        task.cancel()
        try:
            response = await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            return
        except (httpx.HTTPError, ClientDisconnect):
            return
        await response.aclose()

    # ------------------------------------------------------------------------
    # Response side
    # ------------------------------------------------------------------------

    async def relay(self, upstream: httpx.Response, target_url: str) -> Response:
        """
        Relay the upstream response to the client.

        Non-2xx statuses are relayed verbatim; only transport failures are
        converted into error envelopes.
        """
        headers = build_response_headers(self.config, upstream.headers.multi_items())

        if self.config.response_mode == ResponseMode.BUFFER:
            body = await self._read_buffered(upstream)
            if upstream.status_code >= 400:
                snippet = body[:LOG_SNIPPET_BYTES].decode("utf-8", errors="replace")
                logger.warning(
                    f"Upstream returned {upstream.status_code} for {target_url}: {snippet}",
                    extra={"status_code": upstream.status_code, "target_url": target_url},
                )
            if not any(name == "content-length" for name, _ in headers):
                headers.append(("content-length", str(len(body))))
            response = Response(content=body, status_code=upstream.status_code)
            return apply_headers(response, headers)

        if upstream.status_code >= 400:
            logger.warning(
                f"Upstream returned {upstream.status_code} for {target_url}",
                extra={"status_code": upstream.status_code, "target_url": target_url},
            )

        response = StreamingResponse(
            self._stream_body(upstream, target_url),
            status_code=upstream.status_code,
        )
        return apply_headers(response, headers)

    async def _read_buffered(self, upstream: httpx.Response) -> bytes:
        """
        Read the whole upstream body, bounded by size and timeout.

        Raises:
            ResponseTooLargeError: If the body exceeds max_response_bytes
            UpstreamTimeoutError: If reading exceeds the timeout
            UpstreamTransportError: If the connection fails mid-body
        """
        limit = self.config.max_response_bytes
        declared = upstream.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > limit:
            await upstream.aclose()
            raise ResponseTooLargeError(f"Declared length {declared} exceeds {limit} bytes")

        try:
            return await asyncio.wait_for(
                self._read_bounded(upstream, limit),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeoutError("Timed out reading upstream response body") from exc
        except ProxyError:
            raise
        except Exception as exc:
            raise transport_error_from(exc) from exc

    @staticmethod
    async def _raw_chunks(upstream: httpx.Response) -> AsyncIterator[bytes]:
        """Raw body chunks, including bodies httpx has already read into memory."""
        if upstream.is_stream_consumed:
            if upstream.content:
                yield upstream.content
            return
        async for chunk in upstream.aiter_raw():
            yield chunk

    async def _read_bounded(self, upstream: httpx.Response, limit: int) -> bytes:
        chunks = []
        size = 0
        try:
            async for chunk in self._raw_chunks(upstream):
                size += len(chunk)
                if size > limit:
                    raise ResponseTooLargeError(f"Upstream body exceeds {limit} bytes")
                chunks.append(chunk)
        finally:
            await upstream.aclose()
        return b"".join(chunks)

    async def _stream_body(self, upstream: httpx.Response, target_url: str) -> AsyncIterator[bytes]:
        """Yield raw upstream chunks; the upstream response is always closed."""
        try:
            async for chunk in self._raw_chunks(upstream):
                yield chunk
        except httpx.HTTPError as exc:
            # Status line already sent; the connection is dropped to signal truncation
            logger.error(
                f"Upstream body stream failed for {target_url}: {exc}",
                extra={"target_url": target_url},
            )
            raise
        finally:
            await upstream.aclose()

    # ------------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------------

    def _log_failure(self, request: Request, exc: ProxyError) -> None:
        extra = {
            "method": request.method,
            "path": request.url.path,
            "status_code": exc.status_code,
            "failure_kind": getattr(exc, "kind", None),
        }

        if isinstance(exc, ConfigurationError):
            logger.error(
                "Proxy misconfigured: REQUIRE_CREDENTIAL is set but UPSTREAM_CREDENTIAL is missing",
                extra=extra,
            )
        elif isinstance(exc, (PrefixMismatchError, ClientDisconnectedError)):
            logger.info(f"{exc.human_message}: {exc.detail}", extra=extra)
        else:
            logger.error(f"Proxy request failed: {exc.human_message} ({exc.detail})", extra=extra)


def build_proxy_handler(config: ProxyConfig, client: Optional[httpx.AsyncClient] = None) -> ProxyHandler:
    """
    Create a ProxyHandler with a pooled client suited to the configuration.

    Args:
        config: Proxy configuration
        client: Existing client to reuse (tests pass a MockTransport client)
    """
    if client is None:
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout_seconds),
            follow_redirects=False,
        )
    return ProxyHandler(config, client)
