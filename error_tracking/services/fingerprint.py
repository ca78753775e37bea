"""
Error fingerprinting.

Two reports that differ only in transient data (ids, counters, payload
contents) must land in the same error group. The normalizer masks those
volatile parts of the message and reduces the top stack frames to
``function@file``; the fingerprinter hashes the result into a fixed-width
hex string.

Hashes here are for deduplication, not security, and must be stable across
processes, so Python's salted ``hash()`` is never used.
"""

import re
from typing import List, Optional


UUID_PLACEHOLDER = "{{uuid}}"
NUMBER_PLACEHOLDER = "{{n}}"
STRING_PLACEHOLDER = '"{{str}}"'

MAX_FRAMES = 3
FRAME_DELIMITER = "|"

SUPPORTED_ALGORITHMS = ("fnv1a", "legacy")

_UUID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)
_NUMBER_RE = re.compile(r"\b\d+\b", re.ASCII)
_LONG_STRING_RE = re.compile(r'"[^"]{50,}"')

# JavaScript / V8 style: "    at handleClick (webpack:///src/Button.tsx:12:5)"
_JS_FRAME_RE = re.compile(r"at\s+(\S+).*?([^/\\]+\.\w+)")
# Python traceback style: '  File "/srv/app/views.py", line 42, in handler'
_PY_FRAME_RE = re.compile(r'File "(?P<path>[^"]+)", line \d+, in (?P<func>\S+)')

_FNV128_OFFSET = 0x6C62272E07BB014262B821756295C58D
_FNV128_PRIME = 0x0000000001000000000000000000013B
_MASK128 = (1 << 128) - 1
_MASK32 = 0xFFFFFFFF


def _frame_signature(line: str) -> Optional[str]:
    """Reduce a call-site line to ``function@file``; None if it is not one."""
    py_match = _PY_FRAME_RE.search(line)
    if py_match:
        filename = re.split(r"[/\\]", py_match.group("path"))[-1]
        return f"{py_match.group('func')}@{filename}"

    if "at " not in line:
        return None

    js_match = _JS_FRAME_RE.search(line)
    if js_match:
        return f"{js_match.group(1)}@{js_match.group(2)}"
    return line.strip()


def extract_frames(stack_trace: str, limit: int = MAX_FRAMES) -> List[str]:
    """
    Extract the top call-site frames of a stack trace.

    Args:
        stack_trace: Raw stack trace text
        limit: Maximum number of frames to return

    Returns:
        Up to ``limit`` frame signatures in stack order
    """
    frames: List[str] = []
    for line in stack_trace.split("\n"):
        signature = _frame_signature(line)
        if signature is None:
            continue
        frames.append(signature)
        if len(frames) >= limit:
            break
    return frames


def normalize_for_fingerprint(message: str, stack_trace: Optional[str] = None) -> str:
    """
    Build the normalization key for a report.

    UUIDs, standalone integers and long double-quoted literals are replaced
    by placeholders, the message is lower-cased and trimmed, and when a
    stack trace is given its top frames are appended.

    Args:
        message: Error message
        stack_trace: Optional stack trace

    Returns:
        Normalization key
    """
    normalized = _UUID_RE.sub(UUID_PLACEHOLDER, message)
    normalized = _NUMBER_RE.sub(NUMBER_PLACEHOLDER, normalized)
    normalized = _LONG_STRING_RE.sub(STRING_PLACEHOLDER, normalized)
    normalized = normalized.lower().strip()

    if stack_trace:
        normalized += FRAME_DELIMITER + FRAME_DELIMITER.join(extract_frames(stack_trace))

    return normalized


def fnv1a_128(text: str) -> str:
    """FNV-1a 128-bit hash of the UTF-8 bytes of ``text``, as 32 hex chars."""
    h = _FNV128_OFFSET
    for byte in text.encode("utf-8", errors="surrogatepass"):
        h ^= byte
        h = (h * _FNV128_PRIME) & _MASK128
    return format(h, "032x")


def legacy_hash(text: str) -> str:
    """
    Dual 32-bit multiplicative hash, as 16 hex chars.

    Matches the fingerprints produced by earlier JavaScript clients and
    servers: ``h = (h * 33) ^ c`` over UTF-16 code units with seeds 5381
    and 52711.
    """
    h1 = 5381
    h2 = 52711
    data = text.encode("utf-16-le", errors="surrogatepass")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h1 = ((h1 * 33) & _MASK32) ^ unit
        h2 = ((h2 * 33) & _MASK32) ^ unit
    return f"{h1:08x}{h2:08x}"


def hash_key(key: str, algorithm: str = "fnv1a") -> str:
    """
    Hash a normalization key.

    Args:
        key: Normalization key
        algorithm: 'fnv1a' (default) or 'legacy'

    Returns:
        Hex digest

    Raises:
        ValueError: If the algorithm is unknown
    """
    if algorithm == "fnv1a":
        return fnv1a_128(key)
    if algorithm == "legacy":
        return legacy_hash(key)
    raise ValueError(
        f"Unknown fingerprint algorithm '{algorithm}'. "
        f"Expected one of: {', '.join(SUPPORTED_ALGORITHMS)}"
    )


def compute_fingerprint(
    message: str,
    stack_trace: Optional[str] = None,
    override: Optional[str] = None,
    algorithm: str = "fnv1a"
) -> str:
    """
    Derive the fingerprint of a report.

    A non-empty caller-supplied override is used verbatim, which lets
    clients merge or split groups on purpose.

    Args:
        message: Error message
        stack_trace: Optional stack trace
        override: Client-supplied fingerprint
        algorithm: Hash algorithm for derived fingerprints

    Returns:
        Fingerprint string
    """
    if override:
        return override
    return hash_key(normalize_for_fingerprint(message, stack_trace), algorithm)
