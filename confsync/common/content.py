"""
Content helpers

Fingerprinting and log-safe truncation of configuration content.
"""

import hashlib

# Fingerprint of absent/empty content. Also the "unknown" poll cursor.
EMPTY_FINGERPRINT = ""

SHOW_CONTENT_SIZE = 100


def fingerprint(content: str | None) -> str:
    """
    Stable digest of content used to detect change cheaply.

    Lowercase hex MD5 of the UTF-8 bytes, matching what the server reports
    in long-poll comparisons. Empty or absent content maps to "".
    """
    if not content:
        return EMPTY_FINGERPRINT
    return hashlib.md5(content.encode("utf-8")).hexdigest()


def truncate_content(content: str | None) -> str:
    """First 100 characters of content for log lines"""
    if content is None:
        return ""
    if len(content) <= SHOW_CONTENT_SIZE:
        return content
    return content[:SHOW_CONTENT_SIZE] + "..."
