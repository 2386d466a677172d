import logging
import socket

import pytest

from universal_mock.handlers import MockResponder
from universal_mock.server import MockServer
from universal_mock.settings import LOGGER_NAME, Configuration

RESPONSE_BODY = b'<?xml version="1.0"?><status>ok</status>'
CONTENT_TYPE = "application/xml; charset=UTF-8"


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    # main() attaches a handler bound to the captured stderr of one test
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def logger():
    return logging.getLogger(LOGGER_NAME)


@pytest.fixture
def response_file(tmp_path):
    path = tmp_path / "response.txt"
    path.write_bytes(RESPONSE_BODY)
    return path


@pytest.fixture
def configuration(response_file):
    return Configuration(
        interface_and_port="127.0.0.1:0",
        response_file=str(response_file),
        response_content_type=CONTENT_TYPE,
    )


@pytest.fixture
def running_server(configuration, logger):
    server = MockServer(configuration, MockResponder(configuration, logger), logger)
    server.start()
    yield server
    server.shutdown(timeout=1)


@pytest.fixture
def base_url(running_server):
    host, port = running_server.server_address
    return f"http://{host}:{port}"


@pytest.fixture
def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def split_response(raw: bytes):
    """Split raw response bytes into (status line, headers dict, body)."""
    head, _, body = raw.partition(b"\r\n\r\n")
    status_line, *header_lines = head.decode("iso-8859-1").split("\r\n")
    headers = {}
    for line in header_lines:
        name, _, value = line.partition(":")
        headers[name.strip()] = value.strip()
    return status_line, headers, body
