"""
confsync Services

- Transport - Request/response port to the configuration server
- Config Service - Tiered reads, writes, change polling and listeners
"""
