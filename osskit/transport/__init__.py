"""
Transport module: HTTP executor contract, structured options and the
signed request pipeline.
"""

from osskit.transport.executor import HttpExecutor, HttpResponse, HttpxExecutor, StreamedResponse
from osskit.transport.options import RequestOptions, UrlOptions
from osskit.transport.request import OssTransport

__all__ = [
    "HttpExecutor",
    "HttpResponse",
    "HttpxExecutor",
    "StreamedResponse",
    "RequestOptions",
    "UrlOptions",
    "OssTransport",
]
