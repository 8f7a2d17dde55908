"""
Common utilities for quote-sync.

Modules:
- config: environment-driven settings
- errors: error hierarchy shared by store and sync engine
- logging_utils: stdlib logging setup
- remote: remote collection protocol with HTTP and in-memory implementations
"""

__all__ = [
    "config",
    "errors",
    "logging_utils",
    "remote",
]
