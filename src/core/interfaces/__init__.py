"""Core interfaces.

- Contracts (Protocol) implemented by concrete adapters.
- Services depend on these abstractions, not on httpx.
"""
