"""Request body buffering shared by both HTTP surfaces."""

from fastapi import Request


class RequestBodyError(Exception):
    """Raised when an upload body is unacceptable before it reaches storage."""

    def __init__(self, code: str, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


def is_aws_chunked(headers) -> bool:
    payload_hash = headers.get("x-amz-content-sha256", "")
    content_encoding = headers.get("content-encoding", "")
    return payload_hash.upper().startswith("STREAMING-") or "aws-chunked" in content_encoding.lower()


def decode_aws_chunked(body: bytes) -> bytes:
    """Strip AWS streaming framing: ``<hex-size>[;chunk-signature=...]\\r\\n<data>\\r\\n`` ... ``0\\r\\n``.

    Chunk signatures and trailing checksum headers are ignored.
    """
    decoded = bytearray()
    pos = 0
    while True:
        eol = body.find(b"\r\n", pos)
        if eol < 0:
            raise RequestBodyError("IncompleteBody", "Malformed aws-chunked body: missing chunk header")
        size_field = body[pos:eol].split(b";", 1)[0].strip()
        try:
            size = int(size_field, 16)
        except ValueError:
            raise RequestBodyError("IncompleteBody", "Malformed aws-chunked body: bad chunk size") from None
        pos = eol + 2
        if size == 0:
            return bytes(decoded)
        chunk = body[pos:pos + size]
        if len(chunk) != size or body[pos + size:pos + size + 2] != b"\r\n":
            raise RequestBodyError("IncompleteBody", "Malformed aws-chunked body: truncated chunk")
        decoded += chunk
        pos += size + 2


async def read_body(request: Request, max_size: int) -> bytes:
    """Buffer the full request body, enforcing ``max_size`` and removing aws-chunked framing."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_size:
        raise RequestBodyError("EntityTooLarge", "Your proposed upload exceeds the maximum allowed size", 413)

    body = await request.body()
    if is_aws_chunked(request.headers):
        body = decode_aws_chunked(body)
        expected = request.headers.get("x-amz-decoded-content-length")
        if expected and expected.isdigit() and int(expected) != len(body):
            raise RequestBodyError(
                "IncompleteBody",
                "You did not provide the number of bytes specified by the Content-Length HTTP header",
            )

    if len(body) > max_size:
        raise RequestBodyError("EntityTooLarge", "Your proposed upload exceeds the maximum allowed size", 413)
    return body
