"""Sectioned text format for bulk loading and saving the knowledge store.

On-disk format:
    [what]
    <key>=<value>
    ...

    [where]
    ...

Rules:
  - `[name]` opens a section; name is matched case-insensitively against the
    known categories. An unknown name makes every following line ignored
    until the next valid header.
  - Inside a valid section, the text before the first `=` is the key and the
    rest of the line is the value; both are truncated to the length limits.
  - Trailing CR/LF is stripped; blank lines are skipped.

Error policy (default, non-strict):
  - Lines without `=`, lines outside any section, lines under an unknown
    header, and entries the writer could not write back (empty key, key
    shaped like a header, stray CR inside a line): skipped (DEBUG log).
  - strict=True turns those skips into ValueError.
  - Non-UTF-8 or OS read errors while reading a path: WARNING, then re-raised.

This module writes logs to STDERR only (never STDOUT) so the REPL output stays
clean.
"""

from __future__ import annotations

import os
import sys
import logging
from typing import Callable, Iterable, Iterator, Optional, Sequence, TextIO, Tuple

# --------------------------- Logging ---------------------------
_root_logger = logging.getLogger("kbstore")
if not _root_logger.handlers:
    _h = logging.StreamHandler(stream=sys.stderr)
    _h.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    _root_logger.addHandler(_h)
_root_logger.setLevel(os.getenv("KB_LOG_LEVEL", "WARNING").upper())

_logger = logging.getLogger("kbstore.storage")

# --------------------------- Defaults --------------------------
_DEFAULT_ENCODING = "utf-8"
MAX_KEY_LEN = int(os.getenv("KB_MAX_KEY_LEN", "63"))
MAX_VALUE_LEN = int(os.getenv("KB_MAX_VALUE_LEN", "255"))


# ------------------------- Parsing -------------------------
def _section_name(line: str) -> Optional[str]:
    """Return the header name for a `[name]` line, else None."""
    if len(line) >= 2 and line[0] == "[" and line[-1] == "]":
        return line[1:-1]
    return None


def parse_sections(
    lines: Iterable[str],
    categories: Sequence[str],
    *,
    max_key_len: int = MAX_KEY_LEN,
    max_value_len: int = MAX_VALUE_LEN,
    strict: bool = False,
) -> Iterator[Tuple[str, str, str]]:
    """Yield (category, key, value) triples in file order.

    `categories` holds the known section names (lower case); the yielded
    category is always one of them.
    """
    known = {c.lower(): c for c in categories}
    current: Optional[str] = None
    in_unknown = False

    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip("\r\n")
        if not line:
            continue

        name = _section_name(line)
        if name is not None:
            current = known.get(name.lower())
            in_unknown = current is None
            if in_unknown:
                _skip(f"line {lineno}: unknown section [{name}]", strict)
            continue

        if current is None:
            reason = "under unknown section" if in_unknown else "outside any section"
            _skip(f"line {lineno}: {reason}", strict)
            continue

        key, sep, value = line.partition("=")
        if not sep:
            _skip(f"line {lineno}: missing '='", strict)
            continue
        key, value = key[:max_key_len], value[:max_value_len]
        try:
            validate_entry(key, value)
        except ValueError as e:
            _skip(f"line {lineno}: {e}", strict)
            continue
        yield current, key, value


def _skip(reason: str, strict: bool) -> None:
    msg = f"Skipping {reason}"
    if strict:
        raise ValueError(msg)
    _logger.debug(msg)


# ------------------------- Writing -------------------------
def validate_entry(key: str, value: str) -> None:
    """Raise ValueError if (key, value) could not be read back from the format."""
    if not key:
        raise ValueError("Key must be non-empty.")
    if "=" in key or "\n" in key or "\r" in key:
        raise ValueError("Key must not contain '=' or line breaks.")
    if "\n" in value or "\r" in value:
        raise ValueError("Value must not contain newline characters.")
    if key.startswith("[") and key.endswith("]"):
        raise ValueError("Key must not look like a section header.")


def write_sections(
    sections: Iterable[Tuple[str, Iterable[Tuple[str, str]]]], sink: TextIO
) -> int:
    """Write `[name]` + `key=value` blocks, each followed by a blank line.

    Returns the number of entries written.
    """
    written = 0
    for name, entries in sections:
        sink.write(f"[{name}]\n")
        for key, value in entries:
            validate_entry(key, value)
            sink.write(f"{key}={value}\n")
            written += 1
        sink.write("\n")
    return written


# ------------------------- Paths -------------------------
def read_path(
    path: str,
    parse: Callable[[TextIO], int],
    *,
    encoding: str = _DEFAULT_ENCODING,
) -> int:
    """Open `path` and hand the text stream to `parse`; return its result.

    Raises
    ------
    FileNotFoundError
        If `path` does not exist.
    OSError, UnicodeError
        Logged at WARNING and re-raised.
    """
    try:
        # newline="" keeps CRs so parse_sections() can strip them itself
        with open(path, "r", encoding=encoding, newline="") as fh:
            return parse(fh)
    except FileNotFoundError:
        raise
    except UnicodeError as e:
        _logger.warning("Load of %s halted due to Unicode decode error: %s", path, e)
        raise
    except OSError as e:
        _logger.warning("Load of %s halted due to read error: %s", path, e)
        raise


def write_path(
    path: str,
    write: Callable[[TextIO], None],
    *,
    encoding: str = _DEFAULT_ENCODING,
    tmp_suffix: str = ".tmp",
) -> None:
    """Write a file via `write(fh)`, then atomically replace `path` with it.

    The temp file is fsync'ed before the rename, and the directory is
    fsync'ed after it (best-effort). On failure the temp file is removed and
    `path` is untouched.
    """
    tmp_path = path + tmp_suffix
    parent = os.path.dirname(path) or "."
    os.makedirs(parent, exist_ok=True)

    try:
        with open(tmp_path, "w", encoding=encoding, newline="") as fh:
            write(fh)
            fh.flush()
            os.fsync(fh.fileno())
    except BaseException:
        try:
            os.remove(tmp_path)
        except OSError:
            _logger.debug("Could not remove temp file %s.", tmp_path)
        raise

    os.replace(tmp_path, path)
    try:
        dir_fd = os.open(parent, os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
    except OSError:
        _logger.debug("Directory fsync after save skipped (not supported).")
