from .request_id import RequestIDMiddleware, bind_request_context, get_request_id, get_client_ip
from .logging import LoggingMiddleware, mask_query_params

__all__ = [
    "RequestIDMiddleware",
    "LoggingMiddleware",
    "bind_request_context",
    "mask_query_params",
    "get_request_id",
    "get_client_ip",
]
