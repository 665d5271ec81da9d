"""
Transport - Server Access

Responsibilities:
- Send GET/POST/DELETE requests to the configuration server
- Rotate across servers on I/O errors and 5xx answers
- Surface network failure distinctly from HTTP status
"""

from .base import HttpResult, Transport
from .http import HttpTransport

__all__ = ["HttpResult", "Transport", "HttpTransport"]
