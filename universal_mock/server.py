import argparse
import enum
import logging
import signal
import socket
import threading
import time

from rich.console import Console
from rich.markup import escape

from universal_mock.connection import POLL_INTERVAL, handle_request
from universal_mock.exceptions import (
    ConfigurationError,
    FlagParseError,
    ListenerError,
    MockServiceError,
)
from universal_mock.handlers import MockResponder
from universal_mock.settings import CONFIG_FILE, Configuration, Settings, response_file_exists

SHUTDOWN_TIMEOUT = 5  # seconds in-flight requests get to finish during shutdown
LISTEN_BACKLOG = 128

CONFIG_EXAMPLE = """
To configure the mock service you can also use a config.json file. Example:

    {
        "verbose": false,
        "interfaceAndPort": "localhost:20000",
        "responseFile": "response2.txt",
        "responseContentType": "text/xml; charset=UTF-8"
    }
"""

console = Console()
error_console = Console(stderr=True)


class ServerState(enum.Enum):
    STARTING = "starting"
    LISTENING = "listening"
    SHUTTING_DOWN = "shutting down"
    STOPPED = "stopped"


class MockServer:
    """
    Accepts connections on a background thread and hands each one to its own
    worker thread. shutdown() stops accepting and waits, bounded, for the
    workers to finish what they are serving.
    """

    def __init__(self, configuration: Configuration, responder, logger: logging.Logger):
        self.configuration = configuration
        self.responder = responder
        self.logger = logger
        self.state = ServerState.STARTING
        self.listen_error = None
        self.stopped = threading.Event()

        self._socket = None
        self._accept_thread = None
        self._lock = threading.Lock()
        self._connections = {}
        self._shutting_down = threading.Event()

    def is_shutting_down(self):
        return self._shutting_down.is_set()

    @property
    def server_address(self):
        return self._socket.getsockname()[:2]

    def active_connection_count(self):
        with self._lock:
            return len(self._connections)

    def bind(self):
        host, port = self.configuration.address
        try:
            if not host and socket.has_dualstack_ipv6():
                self._socket = socket.create_server(
                    ("", port), family=socket.AF_INET6, dual_stack=True, backlog=LISTEN_BACKLOG
                )
            else:
                infos = socket.getaddrinfo(
                    host or None, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
                )
                # a name like localhost may resolve to ::1 first; IPv4 is preferred
                family, _, _, _, sockaddr = next(
                    (info for info in infos if info[0] == socket.AF_INET), infos[0]
                )
                self._socket = socket.create_server(sockaddr, family=family, backlog=LISTEN_BACKLOG)
        except OSError as e:
            raise ListenerError(
                f"could not listen on {self.configuration.interface_and_port!r}: {e}"
            ) from e
        self._socket.settimeout(POLL_INTERVAL)

    def start(self):
        if self._socket is None:
            self.bind()
        self.logger.info(
            f'Starting mock service with interface "{self.configuration.interface_and_port}" '
            f'response file "{self.configuration.response_file}" '
            f'and response Content-Type "{self.configuration.response_content_type}"'
        )
        self.state = ServerState.LISTENING
        self._accept_thread = threading.Thread(
            target=self.serve_forever, name="mock-listener", daemon=True
        )
        self._accept_thread.start()

    def serve_forever(self):
        try:
            while not self._shutting_down.is_set():
                try:
                    client_socket, addr = self._socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._shutting_down.is_set():
                        break
                    self.listen_error = e
                    self.logger.error(f"Finished listening: {e}")
                    return

                thread = threading.Thread(
                    target=self._serve_connection,
                    args=(client_socket, addr),
                    daemon=True,  # a forced shutdown must not wait on these
                )
                with self._lock:
                    self._connections[thread] = client_socket
                thread.start()
            self.logger.info("Finished listening: server closed")
        finally:
            self.stopped.set()

    def _serve_connection(self, client_socket, addr):
        try:
            handle_request(client_socket, addr, self.responder, self, self.logger)
        finally:
            with self._lock:
                self._connections.pop(threading.current_thread(), None)

    def shutdown(self, timeout=SHUTDOWN_TIMEOUT):
        """Stop accepting and drain connections. Returns False when the timeout hit."""
        self.state = ServerState.SHUTTING_DOWN
        self._shutting_down.set()
        deadline = time.monotonic() + timeout

        if self._accept_thread is not None:
            self._accept_thread.join(max(0, deadline - time.monotonic()))
        if self._socket is not None:
            self._socket.close()

        drained = self._wait_for_connections(deadline)
        if not drained:
            self.logger.warning("Graceful shutdown timed out")
            self._close_connections()

        self.state = ServerState.STOPPED
        return drained

    def _wait_for_connections(self, deadline):
        while True:
            with self._lock:
                workers = [t for t in self._connections if t.is_alive()]
            if not workers:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            for worker in workers:
                worker.join(timeout=min(0.1, remaining))

    def _close_connections(self):
        with self._lock:
            sockets = list(self._connections.values())
        for client_socket in sockets:
            try:
                client_socket.shutdown(socket.SHUT_RDWR)
                client_socket.close()
            except OSError as e:
                self.logger.debug(f"Error force closing connection: {e}")


class FlagParser(argparse.ArgumentParser):
    def error(self, message):
        raise FlagParseError(message)


def non_empty(value):
    if not value:
        raise argparse.ArgumentTypeError("must not be empty")
    return value


def build_parser():
    parser = FlagParser(
        prog="universal-mock-service",
        description="Answer every HTTP request with the contents of one file.",
        add_help=False,
        allow_abbrev=False,
    )
    parser.add_argument("-h", "--help", action="store_true", help="Show this help message")
    parser.add_argument(
        "-v", dest="verbose", action="store_const", const=True, default=None,
        help="Show verbose logging.",
    )
    # the single dash spellings are kept for existing scripts
    parser.add_argument(
        "--interfaceAndPort", "-interfaceAndPort", dest="interface_and_port",
        type=non_empty, metavar="HOST:PORT",
        help="interface and port e.g. localhost:50000 or :50000 for all interfaces",
    )
    parser.add_argument(
        "--responseFile", "-responseFile", dest="response_file",
        type=non_empty, metavar="PATH",
        help="the file that will be sent as response to every request",
    )
    parser.add_argument(
        "--responseContentType", "-responseContentType", dest="response_content_type",
        type=non_empty, metavar="MIME",
        help="the Content-Type response header",
    )
    return parser


def print_help(parser):
    console.print(
        parser.format_help() + CONFIG_EXAMPLE,
        markup=False, emoji=False, highlight=False, soft_wrap=True,
    )


def print_error(message):
    error_console.print(
        f"[red]{escape(message)}[/red]", emoji=False, highlight=False, soft_wrap=True
    )


def run(configuration: Configuration, logger: logging.Logger, timeout=SHUTDOWN_TIMEOUT):
    """Serve until SIGINT/SIGTERM or until the listener fails."""
    if not response_file_exists(configuration.response_file):
        raise ConfigurationError(
            f"Response file {configuration.response_file} does not exist or is a directory"
        )
    server = MockServer(configuration, MockResponder(configuration, logger), logger)
    server.bind()

    stop_requested = threading.Event()

    def handle_signal(signum, frame):
        stop_requested.set()

    previous_handlers = {
        sig: signal.signal(sig, handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        server.start()
        while not stop_requested.is_set() and not server.stopped.is_set():
            stop_requested.wait(POLL_INTERVAL)

        logger.info("Shutting down server...")
        server.shutdown(timeout)
        logger.info("Server stopped")
    finally:
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)

    if server.listen_error is not None:
        raise ListenerError(f"listener failed: {server.listen_error}")


def main(argv=None, config_file=CONFIG_FILE):
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except FlagParseError as e:
        print_error(f"error parsing flags: {e}")
        return 1

    # If the help flag was set, just show the help message and exit.
    if args.help:
        print_help(parser)
        return 0

    settings = Settings(config_file)
    settings.configure(
        verbose=args.verbose,
        interfaceAndPort=args.interface_and_port,
        responseFile=args.response_file,
        responseContentType=args.response_content_type,
    )
    logger = settings.logger
    if settings.load_error:
        logger.debug(settings.load_error)

    try:
        run(settings.configuration, logger)
    except MockServiceError as e:
        print_error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
