"""JSONPath utilities for diffmig."""

from __future__ import annotations

from typing import Any

from jsonpath_ng import parse as jsonpath_parse
from jsonpath_ng.exceptions import JSONPathError


class JSONPathMatcher:
    """Utility class for JSONPath matching."""

    # Cache for compiled JSONPath expressions
    _cache: dict = {}

    @classmethod
    def compile(cls, path: str):
        """Compile and cache a JSONPath expression."""
        if path not in cls._cache:
            try:
                cls._cache[path] = jsonpath_parse(path)
            except JSONPathError as e:
                raise ValueError(f"Invalid JSONPath expression '{path}': {e}")
        return cls._cache[path]

    @classmethod
    def find_values(cls, data: Any, path: str) -> list[Any]:
        """Find all values matching a JSONPath expression."""
        expr = cls.compile(path)
        return [m.value for m in expr.find(data)]

    @classmethod
    def segments(cls, path: str) -> list[str]:
        """
        Split a plain dotted JSONPath ("$.record.forms") into field names.

        Only child field access is supported, wildcards, filters and array
        indices aren't.
        """
        if path == '$':
            return []
        if not path.startswith('$.'):
            raise ValueError(f"JSONPath must start at the root: '{path}'")

        segments = path[2:].split('.')
        for segment in segments:
            if not segment or any(c in segment for c in '[]*?@()'):
                raise ValueError(f"Unsupported JSONPath segment '{segment}' in '{path}'")
        return segments

    @classmethod
    def join(cls, segments: list[str]) -> str:
        return '.'.join(['$'] + list(segments))
