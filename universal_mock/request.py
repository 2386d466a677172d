import logging
import re
import time
from dataclasses import dataclass, field

from universal_mock.exceptions import InvalidRequestFormat, RequestHeaderTooLarge
from universal_mock.status_code import HttpResponseCode

RECV_SIZE = 8 * 1024
MAX_HEADER_SIZE = 64 * 1024

LEADING_BLANK_LINES = re.compile(rb"[\r\n]*")
HEAD_TERMINATOR = re.compile(rb"\r?\n\r?\n")
HEX_DIGITS = re.compile(rb"[0-9a-fA-F]+")
CONTINUE_RESPONSE = (
    f"HTTP/1.1 {HttpResponseCode.HTTP_100_CONTINUE} "
    f"{HttpResponseCode.HTTP_RESPONSE_MESSAGES[HttpResponseCode.HTTP_100_CONTINUE]}\r\n\r\n"
).encode("ascii")


@dataclass
class Request:
    method: str
    path: str
    version: str = "HTTP/1.1"
    headers: list = field(default_factory=list)
    body: bytes = b""
    client_address: tuple = None

    def get_header(self, name, default=None):
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return default

    @property
    def keep_alive(self):
        tokens = {
            token.strip().lower()
            for token in self.get_header("Connection", "").split(",")
        }
        if "close" in tokens:
            return False
        if self.version == "HTTP/1.0":
            return "keep-alive" in tokens
        return True


def parse_request(head: bytes, addr=None):
    """Parse the request line and headers. The body is filled in by the reader."""
    lines = head.rstrip(b"\r\n").decode("iso-8859-1").split("\n")
    request_line = lines[0].rstrip("\r")
    try:
        method, path, version = request_line.split()
    except ValueError:
        raise InvalidRequestFormat(f"malformed request line {request_line!r}") from None
    if not version.startswith("HTTP/1."):
        raise InvalidRequestFormat(f"unsupported protocol version {version!r}")

    headers = []
    for line in lines[1:]:
        line = line.rstrip("\r")
        name, sep, value = line.partition(":")
        # folded continuation lines and names with whitespace are not accepted
        if not sep or not name or name != name.strip():
            raise InvalidRequestFormat(f"malformed header line {line!r}")
        headers.append((name, value.strip()))

    return Request(method, path, version, headers, client_address=addr)


class ChunkedBody:
    """
    Decodes a chunked body from a buffer that keeps growing.

    `pos` remembers where the next chunk-size line starts, so every call
    only looks at bytes that were not decoded yet.
    """

    def __init__(self, pos=0):
        self.pos = pos
        self.chunks = []
        self._in_trailers = False

    @property
    def body(self):
        return b"".join(self.chunks)

    def advance(self, data):
        """Returns the offset just past the body once it is complete, else None."""
        while True:
            line_end = data.find(b"\r\n", self.pos)
            if line_end == -1:
                return None

            if self._in_trailers:
                # skip trailer fields up to the blank line
                if line_end == self.pos:
                    return line_end + 2
                self.pos = line_end + 2
                continue

            size_field = bytes(data[self.pos:line_end]).split(b";", 1)[0].strip()
            if not HEX_DIGITS.fullmatch(size_field):
                raise InvalidRequestFormat(f"invalid chunk size {size_field!r}")
            size = int(size_field, 16)
            chunk_start = line_end + 2

            if size == 0:
                self._in_trailers = True
                self.pos = chunk_start
                continue

            if len(data) < chunk_start + size + 2:
                return None
            if data[chunk_start + size:chunk_start + size + 2] != b"\r\n":
                raise InvalidRequestFormat("chunk data not terminated by CRLF")
            self.chunks.append(bytes(data[chunk_start:chunk_start + size]))
            self.pos = chunk_start + size + 2


def dump_request(request: Request) -> str:
    """Render the request the way it looked on the wire, body included."""
    lines = [f"{request.method} {request.path} {request.version}"]
    lines.extend(f"{name}: {value}" for name, value in request.headers)
    return "\r\n".join(lines) + "\r\n\r\n" + request.body.decode("utf-8", errors="replace")


class RequestReader:
    """
    Cuts the byte stream of one client connection into requests.

    The head of a request is parsed once; after that only the body framing
    is checked as bytes arrive. Nothing is lost on a socket.timeout, so
    read_request() may simply be called again.
    """

    def __init__(self, client_socket, addr, logger: logging.Logger):
        self._socket = client_socket
        self._addr = addr
        self._logger = logger
        self._buffer = bytearray()
        self._pending = None
        self._body_length = 0
        self._chunked = None
        self._continue_sent = False
        self.last_received = time.monotonic()

    @property
    def idle(self):
        """True when no bytes of a next request have arrived yet."""
        return self._pending is None and not self._buffer.strip(b"\r\n")

    def read_request(self):
        """Block until a full request is buffered. Returns None on EOF."""
        while True:
            request = self._take_request()
            if request is not None:
                self._logger.debug(f"[{self._addr[0]}] {request.method} {request.path}")
                return request
            data = self._socket.recv(RECV_SIZE)
            if not data:
                if not self.idle:
                    self._logger.debug(f"Connection from {self._addr[0]} closed mid-request")
                return None
            self._buffer += data
            self.last_received = time.monotonic()

    def _take_request(self):
        if self._pending is None and not self._take_head():
            return None

        request = self._pending
        if self._chunked is not None:
            end = self._chunked.advance(self._buffer)
            if end is None:
                self._maybe_send_continue(request)
                return None
            request.body = self._chunked.body
        else:
            end = self._body_length
            if len(self._buffer) < end:
                self._maybe_send_continue(request)
                return None
            request.body = bytes(self._buffer[:end])

        del self._buffer[:end]
        self._pending = None
        self._chunked = None
        self._body_length = 0
        self._continue_sent = False
        return request

    def _take_head(self):
        # blank lines before a request line are ignored
        blank = LEADING_BLANK_LINES.match(self._buffer).end()
        if blank:
            del self._buffer[:blank]

        match = HEAD_TERMINATOR.search(self._buffer, 0, MAX_HEADER_SIZE + 4)
        if match is None:
            if len(self._buffer) > MAX_HEADER_SIZE:
                raise RequestHeaderTooLarge(f"request head exceeds {MAX_HEADER_SIZE} bytes")
            return False
        if match.start() > MAX_HEADER_SIZE:
            raise RequestHeaderTooLarge(f"request head exceeds {MAX_HEADER_SIZE} bytes")

        request = parse_request(bytes(self._buffer[:match.start()]), self._addr)
        del self._buffer[:match.end()]

        transfer_encoding = request.get_header("Transfer-Encoding")
        content_length = request.get_header("Content-Length")
        if transfer_encoding is not None:
            codings = [c.strip().lower() for c in transfer_encoding.split(",")]
            if codings[-1] != "chunked":
                raise InvalidRequestFormat(f"unsupported transfer encoding {transfer_encoding!r}")
            self._chunked = ChunkedBody()
        elif content_length is not None:
            if not (content_length.isascii() and content_length.isdigit()):
                raise InvalidRequestFormat(f"invalid Content-Length {content_length!r}")
            self._body_length = int(content_length)

        self._pending = request
        return True

    def _maybe_send_continue(self, request):
        expect = request.get_header("Expect", "").lower()
        if expect == "100-continue" and request.version == "HTTP/1.1" and not self._continue_sent:
            self._socket.sendall(CONTINUE_RESPONSE)
            self._continue_sent = True
