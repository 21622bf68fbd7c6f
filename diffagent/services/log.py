"""Console logging helpers - tagged print output"""

from __future__ import annotations

_verbose = False


def set_verbose(enabled: bool):
    """Enable or disable debug output"""
    global _verbose
    _verbose = bool(enabled)


def log(tag: str, message: str):
    print(f"[{tag}] {message}")


def debug(tag: str, message: str):
    """Print only when verbose logging is enabled"""
    if _verbose:
        print(f"[{tag}] {message}")
