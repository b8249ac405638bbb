"""Local evaluation of function nodes.

Each function maps an input string to named output ports. Boolean
functions route the input to the ``true`` or ``false`` port and leave the
other empty.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from flowloop.core.types import DEFAULT_OUTPUT_PORT, OUTPUT_SEPARATOR, FunctionNode


class FunctionResult(BaseModel):
    """Outcome of a function node."""

    success: bool
    outputs: dict[str, str] = Field(default_factory=dict)
    error: str | None = None

    @property
    def primary_output(self) -> str:
        """Single text view of the outputs.

        With several ports, the non-empty ones are joined.
        """
        if len(self.outputs) > 1:
            return OUTPUT_SEPARATOR.join(v for v in self.outputs.values() if v)
        if DEFAULT_OUTPUT_PORT in self.outputs:
            return self.outputs[DEFAULT_OUTPUT_PORT]
        return next(iter(self.outputs.values()), "")


def _single(output: str) -> FunctionResult:
    return FunctionResult(success=True, outputs={DEFAULT_OUTPUT_PORT: output})


def _branch(condition: bool, input: str) -> FunctionResult:
    if condition:
        return FunctionResult(success=True, outputs={"true": input, "false": ""})
    return FunctionResult(success=True, outputs={"true": "", "false": input})


def _failure(error: str) -> FunctionResult:
    return FunctionResult(success=False, error=error)


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)) or value is None:
        return json.dumps(value)
    return json.dumps(value, indent=2, ensure_ascii=False)


_URL_PATTERN = re.compile(r"""https?://[^\s<>"{}|\\^`\[\]]+""", re.IGNORECASE)
_ARRAY_SEGMENT = re.compile(r"^([^.\[]+)\[(\d*)\]$")


class FunctionExecutor:
    """Runs function nodes.

    Holds the ``memory`` function's store, so one executor per run keeps
    memories scoped to that run.

    Example:
        >>> executor = FunctionExecutor()
        >>> node = FunctionNode(id="f", function_type="string_replace",
        ...                     config={"find": "a", "replace": "b"})
        >>> executor.execute(node, "banana").outputs
        {'output': 'bbnbnb'}
    """

    def __init__(self) -> None:
        self._memory: dict[str, list[str]] = {}
        self._handlers: dict[str, Callable[[FunctionNode, str], FunctionResult]] = {
            "text_input": self._text_input,
            "content": self._content,
            "string_contains": self._string_contains,
            "string_concat": self._string_concat,
            "string_replace": self._string_replace,
            "string_split": self._string_split,
            "is_json": self._is_json,
            "is_empty": self._is_empty,
            "is_url": self._is_url,
            "if_else": self._if_else,
            "memory": self._memory_append,
            "extract_urls": self._extract_urls,
            "parse_json": self._parse_json,
            "format_json": self._format_json,
        }

    @property
    def function_types(self) -> list[str]:
        return sorted(self._handlers)

    def execute(self, node: FunctionNode, input: str) -> FunctionResult:
        """Evaluate ``node`` on ``input``. Never raises."""
        handler = self._handlers.get(node.function_type)
        if handler is None:
            return _failure(f"Unknown function type: {node.function_type}")
        try:
            return handler(node, input)
        except Exception as e:
            return _failure(str(e) or type(e).__name__)

    def get_memory_entries(self, key: str) -> list[str]:
        return list(self._memory.get(key, []))

    def clear_memory(self, key: str | None = None) -> None:
        if key is None:
            self._memory.clear()
        else:
            self._memory.pop(key, None)

    # Input

    def _text_input(self, node: FunctionNode, input: str) -> FunctionResult:
        return _single(input or str(node.config.get("inputText", "")))

    def _content(self, node: FunctionNode, input: str) -> FunctionResult:
        # Ignores its input
        return _single(str(node.config.get("content", "")))

    # String operations

    def _string_contains(self, node: FunctionNode, input: str) -> FunctionResult:
        needle = str(node.config.get("searchText", ""))
        if node.config.get("caseSensitive", False):
            return _branch(needle in input, input)
        return _branch(needle.lower() in input.lower(), input)

    def _string_concat(self, node: FunctionNode, input: str) -> FunctionResult:
        separator = str(node.config.get("separator", " "))
        return _single(input.replace(OUTPUT_SEPARATOR, separator))

    def _string_replace(self, node: FunctionNode, input: str) -> FunctionResult:
        find = str(node.config.get("find", ""))
        if not find:
            return _single(input)
        return _single(input.replace(find, str(node.config.get("replace", ""))))

    def _string_split(self, node: FunctionNode, input: str) -> FunctionResult:
        delimiter = str(node.config.get("delimiter", "")) or ","
        return _single("\n".join(input.split(delimiter)))

    # Logic

    def _is_json(self, node: FunctionNode, input: str) -> FunctionResult:
        try:
            json.loads(input)
        except ValueError:
            return _branch(False, input)
        return _branch(True, input)

    def _is_empty(self, node: FunctionNode, input: str) -> FunctionResult:
        return _branch(input.strip() == "", input)

    def _is_url(self, node: FunctionNode, input: str) -> FunctionResult:
        parsed = urlparse(input.strip())
        return _branch(bool(parsed.scheme and parsed.netloc), input)

    def _if_else(self, node: FunctionNode, input: str) -> FunctionResult:
        condition = str(node.config.get("condition", ""))
        return _branch(condition.lower() in input.lower(), input)

    def _memory_append(self, node: FunctionNode, input: str) -> FunctionResult:
        key = str(node.config.get("memoryKey", "")) or "default"
        entries = self._memory.setdefault(key, [])
        entries.append(input)
        return _single(OUTPUT_SEPARATOR.join(entries))

    def _extract_urls(self, node: FunctionNode, input: str) -> FunctionResult:
        urls = _URL_PATTERN.findall(input)
        if node.config.get("unique", True):
            urls = list(dict.fromkeys(urls))
        return _single("\n".join(urls))

    # Data transformation

    def _parse_json(self, node: FunctionNode, input: str) -> FunctionResult:
        try:
            data = json.loads(input)
        except ValueError:
            return _failure("Error: Invalid JSON")

        path = node.config.get("extractPath")
        if not path:
            return _single(_to_text(data))
        try:
            return _single(_extract_path(data, str(path)))
        except (KeyError, IndexError, TypeError, ValueError) as e:
            return _failure(f"Error: {e}")

    def _format_json(self, node: FunctionNode, input: str) -> FunctionResult:
        try:
            data = json.loads(input)
        except ValueError:
            return _failure("Invalid JSON")
        return _single(json.dumps(data, indent=2, ensure_ascii=False))


def _lookup(value: Any, name: str) -> Any:
    if not isinstance(value, dict) or name not in value:
        raise KeyError(f"Path not found: {name}")
    return value[name]


def _extract_path(data: Any, path: str) -> str:
    """Follow a dotted path such as ``items[0].name`` or ``items[].name``.

    An empty index (``[]``) maps the rest of the path over every element;
    the results are joined with ``", "``.
    """
    segments = path.split(".")
    current = data
    for position, segment in enumerate(segments):
        array_match = _ARRAY_SEGMENT.match(segment)
        if array_match is None:
            if not segment or "[" in segment:
                raise ValueError(f"Invalid path syntax: {'.'.join(segments[position:])}")
            current = _lookup(current, segment)
            continue

        name, index = array_match.groups()
        items = _lookup(current, name)
        if not isinstance(items, list):
            raise TypeError(f"{name} is not an array")

        if index == "":
            rest = ".".join(segments[position + 1:])
            if not rest:
                return json.dumps(items, indent=2, ensure_ascii=False)
            values = []
            for item in items:
                try:
                    values.append(_extract_raw(item, rest))
                except (KeyError, IndexError, TypeError):
                    continue
            values = [v for v in values if v is not None]
            return ", ".join(
                json.dumps(v, ensure_ascii=False) if isinstance(v, (dict, list)) else _to_text(v)
                for v in values
            )

        idx = int(index)
        if idx >= len(items):
            raise IndexError(f"Array index {idx} out of bounds")
        current = items[idx]

    return _to_text(current)


def _extract_raw(data: Any, path: str) -> Any:
    current = data
    for segment in path.split("."):
        array_match = _ARRAY_SEGMENT.match(segment)
        if array_match is None:
            current = _lookup(current, segment)
            continue
        name, index = array_match.groups()
        items = _lookup(current, name)
        if not isinstance(items, list) or index == "":
            raise TypeError(f"{name} is not indexable here")
        current = items[int(index)]
    return current
