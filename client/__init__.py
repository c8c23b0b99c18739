"""Client side of the dual-response protocol.

- dual_response: find and normalize the resource handle inside a tool result
- pagination: page through, drain or stream the full result over HTTP
"""

from .dual_response import DualResponse, is_dual_response, parse
from .pagination import FetchError, Page, ResourcePager

__all__ = ["DualResponse", "FetchError", "Page", "ResourcePager", "is_dual_response", "parse"]
