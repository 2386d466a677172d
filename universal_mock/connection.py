import socket
import time

from universal_mock.exceptions import InvalidRequestFormat, RequestHeaderTooLarge
from universal_mock.request import RequestReader
from universal_mock.response import error_response
from universal_mock.status_code import HttpResponseCode

POLL_INTERVAL = 0.5
IDLE_TIMEOUT = 60


def handle_request(client_socket, addr, responder, lifecycle, logger):
    """
    Serve requests on one client connection until it closes.

    Each request is answered by `responder`. The socket is polled every
    POLL_INTERVAL so an idle keep-alive connection notices a shutdown; a
    request that is already arriving is always read to the end.
    """
    reader = RequestReader(client_socket, addr, logger)
    try:
        client_socket.settimeout(POLL_INTERVAL)
        while True:
            try:
                request = reader.read_request()
            except socket.timeout:
                if reader.idle and lifecycle.is_shutting_down():
                    logger.debug(f"Closing idle connection to {addr[0]} for shutdown")
                    break
                if time.monotonic() - reader.last_received > IDLE_TIMEOUT:
                    logger.debug(f"Connection to {addr[0]} idle for {IDLE_TIMEOUT}s")
                    break
                continue
            except RequestHeaderTooLarge as e:
                logger.warning(f"Rejecting request from {addr[0]}: {e}")
                client_socket.sendall(
                    error_response(HttpResponseCode.HTTP_431_REQUEST_HEADER_FIELDS_TOO_LARGE)
                )
                break
            except InvalidRequestFormat as e:
                logger.warning(f"Rejecting request from {addr[0]}: {e}")
                client_socket.sendall(error_response(HttpResponseCode.HTTP_400_BAD_REQUEST))
                break

            if request is None:
                logger.debug(f"Connection closed by {addr[0]}")
                break

            keep_open = request.keep_alive and not lifecycle.is_shutting_down()
            response = responder(request, keep_open=keep_open)

            # a slow reader must not trip the poll timeout halfway through a body
            client_socket.settimeout(None)
            client_socket.sendall(response)
            client_socket.settimeout(POLL_INTERVAL)
            logger.debug(f"Response sent to {addr[0]}")

            if not keep_open:
                break
    except OSError as e:
        # resets, broken pipes and sockets closed by a forced shutdown
        logger.debug(f"Connection to {addr[0]} failed: {e}")
    finally:
        try:
            client_socket.close()
        except OSError as e:
            logger.debug(f"Error closing connection to {addr[0]}: {e}")
        logger.debug(f"Connection to {addr[0]} closed")
