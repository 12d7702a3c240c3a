"""
metricd - Server Middleware

Pure ASGI middleware for request framing:
- RequestDecompressionMiddleware: inflates gzip request bodies
- SignatureMiddleware: verifies HashSHA256 on requests, signs responses
"""

from typing import List, Tuple

import structlog
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from metricd.lib.compression import DECOMPRESSION_ERRORS, decompress
from metricd.lib.signature import SIGNATURE_HEADER, SignatureMismatch, check, sign

logger = structlog.get_logger(__name__)

Headers = List[Tuple[bytes, bytes]]

SIGNATURE_HEADER_KEY = SIGNATURE_HEADER.lower().encode("latin-1")


async def read_body(receive: Receive) -> bytes:
    """Drain the request body from `receive`."""
    chunks = []
    more_body = True
    while more_body:
        message = await receive()
        if message["type"] != "http.request":
            break
        chunks.append(message.get("body", b""))
        more_body = message.get("more_body", False)
    return b"".join(chunks)


def replay_body(body: bytes, receive: Receive) -> Receive:
    """Build a receive callable that yields `body` once, then defers to `receive`."""
    sent = False

    async def _receive() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return _receive


def get_header(headers: Headers, name: bytes) -> bytes:
    for key, value in headers:
        if key.lower() == name:
            return value
    return b""


def replace_headers(headers: Headers, drop: Tuple[bytes, ...], add: Headers) -> Headers:
    kept = [(key, value) for key, value in headers if key.lower() not in drop]
    return kept + add


class RequestDecompressionMiddleware:
    """Inflate request bodies sent with Content-Encoding: gzip."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        encoding = get_header(scope["headers"], b"content-encoding").decode("latin-1")
        if "gzip" not in encoding.lower():
            await self.app(scope, receive, send)
            return

        body = await read_body(receive)
        try:
            body = decompress(body)
        except DECOMPRESSION_ERRORS as e:
            logger.info("Failed to decompress request body", path=scope.get("path"), error=str(e))
            response = PlainTextResponse("invalid gzip body", status_code=400)
            await response(scope, receive, send)
            return

        scope = dict(scope)
        scope["headers"] = replace_headers(
            scope["headers"],
            (b"content-encoding", b"content-length"),
            [(b"content-length", str(len(body)).encode("latin-1"))],
        )
        await self.app(scope, replay_body(body, receive), send)


class SignatureMiddleware:
    """
    HMAC-SHA256 signing with a shared key.

    Requests carrying a HashSHA256 header are rejected with 400 when the
    signature does not match the (decompressed) body. Every response gets a
    HashSHA256 header over its uncompressed body.
    """

    def __init__(self, app: ASGIApp, key: str):
        self.app = app
        self.key = key

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.key:
            await self.app(scope, receive, send)
            return

        signature = get_header(scope["headers"], SIGNATURE_HEADER_KEY).decode("latin-1")
        if signature:
            body = await read_body(receive)
            try:
                check(self.key, body, signature)
            except SignatureMismatch as e:
                logger.info("Request signature mismatch", path=scope.get("path"), error=str(e))
                response = PlainTextResponse("signature mismatch", status_code=400)
                await response(scope, receive, send)
                return
            receive = replay_body(body, receive)

        await self.app(scope, receive, self._signing_send(send))

    def _signing_send(self, send: Send) -> Send:
        start: List[Message] = []
        chunks: List[bytes] = []

        async def _send(message: Message) -> None:
            if message["type"] == "http.response.start":
                start.append(message)
                return
            if message["type"] != "http.response.body":
                await send(message)
                return

            chunks.append(message.get("body", b""))
            if message.get("more_body", False):
                return

            body = b"".join(chunks)
            head = dict(start[0])
            head["headers"] = replace_headers(
                list(head.get("headers", [])),
                (SIGNATURE_HEADER_KEY,),
                [(SIGNATURE_HEADER_KEY, sign(self.key, body).encode("latin-1"))],
            )
            await send(head)
            await send({"type": "http.response.body", "body": body, "more_body": False})

        return _send
