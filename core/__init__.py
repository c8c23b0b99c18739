"""Core package for the dual-response query server.

This package houses the primary components:
- registry: opaque id -> stored query handle table
- executor: count + bounded sample at creation time
- gateway: windowed re-execution for page requests
- server: tool table and shared wiring of the pieces above
"""
