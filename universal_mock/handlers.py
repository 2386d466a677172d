import logging
from pathlib import Path

from universal_mock.request import Request, dump_request
from universal_mock.response import http_response
from universal_mock.settings import Configuration
from universal_mock.status_code import HttpResponseCode


def read_response_from_file(filename) -> bytes:
    return Path(filename).read_bytes()


class MockResponder:
    """
    Answers every request with the bytes of the configured response file.

    The file is read again for each request so it can be edited while the
    server runs. Read failures are logged and answered with an empty 200.
    """

    def __init__(self, configuration: Configuration, logger: logging.Logger):
        self.configuration = configuration
        self.logger = logger

    def __call__(self, request: Request, keep_open=True) -> bytes:
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug("Serving incoming request:\n%s", dump_request(request))

        response_file = self.configuration.response_file
        try:
            body = read_response_from_file(response_file)
        except OSError as e:
            self.logger.error(f"Could not read {response_file} file due to error: {e}")
            body = b""

        return http_response(
            body,
            HttpResponseCode.HTTP_200_OK,
            self.configuration.response_content_type,
            keep_open=keep_open,
            head_only=request.method == "HEAD",
        )
