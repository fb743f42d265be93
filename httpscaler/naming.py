"""Metric names derived from scaled object identities."""

from __future__ import annotations

import re

_UNSAFE = re.compile(r"[^-.0-9A-Za-z]")


def _escape_char(match: re.Match[str]) -> str:
    hex_bytes = match.group(0).encode("utf-8").hex().upper()
    return "_" + hex_bytes.rjust(4, "0")


def escape_string(s: str) -> str:
    """Replace every character outside ``[-.0-9A-Za-z]`` by ``_`` and its UTF-8 bytes in hex."""
    return _UNSAFE.sub(_escape_char, s)


def namespaced_key(namespace: str, name: str) -> str:
    """Return the ``namespace/name`` key of an object."""
    return f"{namespace}/{name}"


def metric_name(namespace: str, name: str) -> str:
    """Return the escaped metric name reported for a scaled object."""
    return escape_string(f"http-{namespaced_key(namespace, name)}")