from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

MAX_BRACKET_DEPTH = 3
_KEY_RE = re.compile(r"^(?P<root>[^\[\]]+)(?P<rest>(?:\[[^\[\]]*\])*)$")
_SEGMENT_RE = re.compile(r"\[([^\[\]]*)\]")


def _split_key(raw_key: str) -> list[str] | None:
    match = _KEY_RE.fullmatch(raw_key.strip())
    if match is None:
        return None
    segments = _SEGMENT_RE.findall(match.group("rest"))
    if len(segments) > MAX_BRACKET_DEPTH:
        return None
    # "[]" is only meaningful as the last segment.
    if any(segment == "" for segment in segments[:-1]):
        return None
    return [match.group("root"), *segments]


def _parent(target: dict[str, Any], path: list[str]) -> dict[str, Any]:
    node = target
    for segment in path[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            child = {}
            node[segment] = child
        node = child
    return node


def _assign(target: dict[str, Any], path: list[str], value: str) -> None:
    _parent(target, path)[path[-1]] = value


def _append(target: dict[str, Any], path: list[str], value: str) -> None:
    node = _parent(target, path)
    current = node.get(path[-1])
    if isinstance(current, list):
        current.append(value)
    else:
        node[path[-1]] = [value]


def parse_query_params(items: Iterable[tuple[str, str]]) -> dict[str, Any]:
    """Expand ``a[b][c]=v`` style query items into nested dicts.

    ``a[b][]=v`` collects a list. Repeated plain keys keep the last value.
    Keys that are malformed or nested deeper than ``MAX_BRACKET_DEPTH`` are
    skipped.
    """
    params: dict[str, Any] = {}
    for raw_key, raw_value in items:
        path = _split_key(str(raw_key))
        if path is None:
            continue
        value = "" if raw_value is None else str(raw_value)
        if path[-1] == "":
            _append(params, path[:-1], value)
        else:
            _assign(params, path, value)
    return params
