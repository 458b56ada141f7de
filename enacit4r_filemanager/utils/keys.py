import logging
import re
import unicodedata
import urllib.parse
from typing import Callable, Optional

# a "%" must always introduce two hexadecimal digits
_BAD_ESCAPE = re.compile(r"%(?![0-9a-fA-F]{2})")


class KeyDecodeError(ValueError):
    """Exception raised when a key segment is not properly percent-encoded."""
    pass


def is_file(segment: str) -> bool:
    """Tell whether a path segment names a file.

    A segment is a file when it contains a "." and no "/". This is a naming
    heuristic: a folder called "a.b" is reported as a file.

    Args:
        segment (str): A path segment, relative to its parent folder

    Returns:
        bool: True if the segment is a bare file name
    """
    return "." in segment and "/" not in segment


def unescape_segment(raw: str) -> str:
    """Percent-decode a key segment, query style ("+" is a space).

    Args:
        raw (str): The encoded segment

    Raises:
        KeyDecodeError: When an escape sequence is malformed or the decoded bytes are not UTF-8

    Returns:
        str: The decoded segment
    """
    match = _BAD_ESCAPE.search(raw)
    if match:
        raise KeyDecodeError(f"invalid escape {raw[match.start():match.start() + 3]!r} in {raw!r}")
    try:
        return urllib.parse.unquote_plus(raw, errors="strict")
    except UnicodeDecodeError as e:
        raise KeyDecodeError(f"invalid UTF-8 in {raw!r}: {e}") from e


def try_unescape_segment(raw: str, on_error: Optional[Callable[[str, KeyDecodeError], None]] = None) -> Optional[str]:
    """Lenient form of unescape_segment: None is returned when the segment cannot be decoded."""
    try:
        return unescape_segment(raw)
    except KeyDecodeError as e:
        logging.warning(f"Skipping undecodable key segment {raw!r}: {e}")
        if on_error is not None:
            on_error(raw, e)
        return None


def strip_processing_prefix(key: str, prefix: str) -> str:
    """Remove the root folder prefix and any trailing slash from a key.

    Args:
        key (str): The object key
        prefix (str): The root folder, with or without a trailing slash

    Returns:
        str: The key relative to the root folder
    """
    prefix = prefix.strip("/")
    if prefix:
        if key == prefix:
            key = ""
        elif key.startswith(f"{prefix}/"):
            key = key[len(prefix) + 1:]
    return key.rstrip("/")


def join_key(*parts: str) -> str:
    """Join path parts with single slashes, empty parts are ignored."""
    cleaned = [part.strip("/") for part in parts]
    return "/".join([part for part in cleaned if part])


def dir_key(path: str) -> str:
    """The key of a folder: its marker object, also the prefix of its content."""
    path = path.rstrip("/")
    return f"{path}/" if path else ""


def normalize_file_name(name: str) -> str:
    """Make an uploaded file name key friendly: spaces become underscores and accents are dropped.

    Args:
        name (str): The original file name

    Returns:
        str: The normalized file name
    """
    name = name.replace(" ", "_")
    decomposed = unicodedata.normalize("NFD", name)
    stripped = "".join([c for c in decomposed if unicodedata.category(c) != "Mn"])
    return unicodedata.normalize("NFC", stripped)


_FORBIDDEN_CHARS = set('*?|<>"\\')


def sanitize_path(path: str) -> str:
    """Check a user supplied path: line breaks and leading slashes are removed,
    parent references and wildcard-like characters are rejected.

    Args:
        path (str): The path, relative to the root folder

    Raises:
        ValueError: When the path is None, contains '..' or a forbidden character

    Returns:
        str: The sanitized path
    """
    if path is None:
        raise ValueError("Invalid path: path cannot be None")
    path = path.replace("\r", "").replace("\n", "")
    if any(part == ".." for part in path.split("/")):
        raise ValueError("Invalid path: '..' not allowed")
    if any(c in _FORBIDDEN_CHARS for c in path):
        raise ValueError("Invalid path: contains forbidden characters")
    return path.lstrip("/")


def sanitize_file_name(name: str) -> str:
    """Check an uploaded file name, same rules as sanitize_path but no separator is allowed."""
    if name is None:
        raise ValueError("Invalid file name: file name cannot be None")
    name = name.replace("\r", "").replace("\n", "")
    if "/" in name:
        raise ValueError("Invalid file name: path separators not allowed")
    if name == "..":
        raise ValueError("Invalid file name: '..' not allowed")
    if any(c in _FORBIDDEN_CHARS for c in name):
        raise ValueError("Invalid file name: contains forbidden characters")
    return name
