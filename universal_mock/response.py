import email.utils

from universal_mock.status_code import HttpResponseCode


def http_response(
    body,
    status_code=HttpResponseCode.HTTP_200_OK,
    content_type="text/plain; charset=utf-8",
    extra_headers=None,
    keep_open=True,
    head_only=False,
):
    """
    Serialise a complete HTTP/1.1 response.

    The content type is sent exactly as given. With head_only the headers,
    Content-Length included, describe the body but the body is left out.
    """
    if isinstance(body, str):
        body = body.encode("utf-8")

    if keep_open:
        connection = "keep-alive"
    else:
        connection = "close"

    response_header = [
        f"HTTP/1.1 {status_code} {HttpResponseCode.HTTP_RESPONSE_MESSAGES.get(status_code, 'Unknown')}",
        f"Date: {email.utils.formatdate(usegmt=True)}",
        f"Content-Type: {content_type}",
        f"Content-Length: {len(body)}",
        f"Connection: {connection}",
    ]
    if extra_headers:
        for k, v in extra_headers.items():
            response_header.append(f"{k}: {v}")

    headers_response = ("\r\n".join(response_header) + "\r\n\r\n").encode("utf-8")
    if head_only:
        return headers_response
    return headers_response + body


def error_response(status_code):
    """A plain text protocol error that also closes the connection."""
    return http_response(
        HttpResponseCode.HTTP_RESPONSE_MESSAGES[status_code],
        status_code,
        keep_open=False,
    )
