# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Command Parser - turns dot-notation invocations into CommandCall descriptors.

    'browser.openUrl("youtube.com")'
        -> [CommandCall(path="browser.openUrl", args=("youtube.com",))]

    'system.clock() | system.notify()'
        -> two stages; the runtime appends stage 1's output to stage 2's args

Nothing is ever evaluated: arguments are scanned and coerced to literals.
"""

import json
import re
from typing import Any, List

from cmdflow.commands.models import CommandCall
from cmdflow.core.errors import ConfigurationError

PIPE = "|"
_CALL_RE = re.compile(r"^([A-Za-z_][\w.]*?)(?:\((.*)\))?$", re.DOTALL)
_PATH_RE = re.compile(r"^[A-Za-z_]\w*(\.[A-Za-z_]\w*)*$")
_OPENERS = "([{"
_CLOSERS = ")]}"


class CommandParseError(ConfigurationError):
    """Invocation text does not match the command grammar"""


def is_valid_path(path: str) -> bool:
    return bool(_PATH_RE.match(path or ""))


def parse_invocation(raw: str) -> List[CommandCall]:
    """
    Parse a single call or a pipe chain.

    Raises:
        CommandParseError: On empty input or malformed stages
    """
    text = (raw or "").strip()
    if not text:
        raise CommandParseError("Empty command")

    stages = _split_top_level(text, PIPE)
    calls = []
    for stage in stages:
        stage = stage.strip()
        if not stage:
            raise CommandParseError(f"Empty stage in chain: {text}")
        calls.append(parse_call(stage))
    return calls


def parse_call(text: str) -> CommandCall:
    """Parse one `ns.path(args)` stage"""
    match = _CALL_RE.match(text.strip())
    if not match:
        raise CommandParseError(f"Invalid command syntax: {text}")

    path = match.group(1)
    if path.endswith(".") or ".." in path:
        raise CommandParseError(f"Invalid command path: {path}")

    # Bare namespace opens it: `terminal` -> `terminal.open`
    if "." not in path:
        path = f"{path}.open"

    return CommandCall(path=path, args=tuple(parse_args(match.group(2) or "")), raw=text.strip())


def parse_args(args_string: str) -> List[Any]:
    """Split a raw argument list on top-level commas and coerce each piece"""
    if not args_string.strip():
        return []
    return [coerce_arg(piece.strip()) for piece in _split_top_level(args_string, ",") if piece.strip()]


def coerce_arg(value: str) -> Any:
    """
    Convert one raw argument to a Python literal.

    Quoted strings lose their quotes, JSON arrays/objects are decoded,
    true/false/null and numbers are converted, anything else stays a string.
    """
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return _unescape(value[1:-1], value[0])

    if (value.startswith("[") and value.endswith("]")) or (value.startswith("{") and value.endswith("}")):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    if value == "true":
        return True
    if value == "false":
        return False
    if value in ("null", "None"):
        return None

    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


def _unescape(body: str, quote: str) -> str:
    return body.replace("\\" + quote, quote).replace("\\\\", "\\")


def _split_top_level(text: str, separator: str) -> List[str]:
    """
    Split on separator outside quotes and bracket nesting.

    Raises:
        CommandParseError: On unterminated strings or unbalanced brackets
    """
    parts = []
    current = []
    depth = 0
    quote = None
    escaped = False

    for char in text:
        if quote:
            current.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue

        if char in "\"'":
            quote = char
        elif char in _OPENERS:
            depth += 1
        elif char in _CLOSERS:
            depth -= 1
            if depth < 0:
                raise CommandParseError(f"Unbalanced '{char}' in: {text}")
        elif char == separator and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)

    if quote:
        raise CommandParseError(f"Unterminated string in: {text}")
    if depth != 0:
        raise CommandParseError(f"Unbalanced brackets in: {text}")

    parts.append("".join(current))
    return parts
