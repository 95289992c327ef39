"""HTTP execution: requests and baseline construction."""

from pathspray.modules.http.requester import RequestFailed, Requester, compile_extractors

__all__ = [
    "RequestFailed",
    "Requester",
    "compile_extractors",
]
