class HttpResponseCode:
    HTTP_100_CONTINUE = 100
    HTTP_200_OK = 200
    HTTP_400_BAD_REQUEST = 400
    HTTP_431_REQUEST_HEADER_FIELDS_TOO_LARGE = 431

    HTTP_RESPONSE_MESSAGES = {
        HTTP_100_CONTINUE: "Continue",
        HTTP_200_OK: "OK",
        HTTP_400_BAD_REQUEST: "Bad Request",
        HTTP_431_REQUEST_HEADER_FIELDS_TOO_LARGE: "Request Header Fields Too Large",
    }
