"""Domain models and entities.

- Pure, strict data structures (Pydantic v2 and dataclasses).
- The domain knows nothing about HTTP, the CLI or the daemon SDK.
"""
