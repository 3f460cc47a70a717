"""Sortable identifiers for runs, tasks, and events.

Every identifier is ``<kind>-<ULID>``: a short kind tag and a 26-character
Crockford Base32 ULID (48-bit millisecond timestamp, 80 random bits), so ids
of one kind sort by creation time.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Final

_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_DIGITS: Final[dict[str, int]] = {char: value for value, char in enumerate(_ALPHABET)}

ULID_LENGTH: Final[int] = 26
_TIMESTAMP_BITS: Final[int] = 48
_ENTROPY_BYTES: Final[int] = 10
_MAX_TIMESTAMP_MS: Final[int] = (1 << _TIMESTAMP_BITS) - 1

_RandBytes = Callable[[int], bytes]


class IdKind(StrEnum):
    TASK = "task"
    EVENT = "evt"
    RUN = "run"


def generate_ulid(*, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None) -> str:
    """Return a new ULID; ``timestamp_ms`` and ``randbytes`` make it reproducible."""

    stamp = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if isinstance(stamp, bool) or not isinstance(stamp, int):
        raise ValueError(f"timestamp_ms must be an int, got {type(stamp).__name__}")
    if not 0 <= stamp <= _MAX_TIMESTAMP_MS:
        raise ValueError(f"timestamp_ms {stamp} does not fit in {_TIMESTAMP_BITS} bits")

    entropy = bytes((randbytes or secrets.token_bytes)(_ENTROPY_BYTES))
    if len(entropy) != _ENTROPY_BYTES:
        raise ValueError(f"randbytes must return exactly {_ENTROPY_BYTES} bytes")

    value = (stamp << (8 * _ENTROPY_BYTES)) | int.from_bytes(entropy, "big")
    digits: list[str] = []
    for _ in range(ULID_LENGTH):
        value, digit = divmod(value, 32)
        digits.append(_ALPHABET[digit])
    return "".join(reversed(digits))


def validate_ulid(value: str) -> None:
    _ulid_to_int(value)


def parse_ulid_timestamp_ms(value: str) -> int:
    return _ulid_to_int(value) >> (8 * _ENTROPY_BYTES)


def new_id(
    kind: IdKind, *, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None
) -> str:
    return f"{kind.value}-{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def check_id(value: str, kind: IdKind) -> None:
    """Raise ``ValueError`` unless ``value`` is a well-formed ``kind`` id."""

    if not isinstance(value, str):
        raise ValueError(f"{kind.name.lower()} id must be a string, got {type(value).__name__}")
    head, separator, tail = value.partition("-")
    if not separator or head != kind.value:
        raise ValueError(f"expected prefix '{kind.value}-' in {value!r}")
    try:
        validate_ulid(tail)
    except ValueError as exc:
        raise ValueError(f"malformed {kind.name.lower()} id {value!r}: {exc}") from exc


def generate_task_id(
    *, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None
) -> str:
    return new_id(IdKind.TASK, timestamp_ms=timestamp_ms, randbytes=randbytes)


def generate_event_id(
    *, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None
) -> str:
    return new_id(IdKind.EVENT, timestamp_ms=timestamp_ms, randbytes=randbytes)


def generate_run_id(
    *, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None
) -> str:
    return new_id(IdKind.RUN, timestamp_ms=timestamp_ms, randbytes=randbytes)


def validate_task_id(value: str) -> None:
    check_id(value, IdKind.TASK)


def validate_event_id(value: str) -> None:
    check_id(value, IdKind.EVENT)


def short_id(value: str) -> str:
    """Last eight characters, enough to tell concurrent tasks apart in output."""

    if len(value) < 8:
        raise ValueError(f"id {value!r} is shorter than 8 characters")
    return value[-8:]


def _ulid_to_int(value: str) -> int:
    if not isinstance(value, str):
        raise ValueError(f"ulid must be a string, got {type(value).__name__}")
    if len(value) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(value)}")
    number = 0
    for position, char in enumerate(value.upper()):
        digit = _DIGITS.get(char)
        if digit is None:
            raise ValueError(f"invalid ULID character {char!r} at index {position}")
        number = number * 32 + digit
    if number.bit_length() > 128:
        raise ValueError("ulid exceeds 128 bits")
    return number


__all__ = [
    "ULID_LENGTH",
    "IdKind",
    "check_id",
    "generate_event_id",
    "generate_run_id",
    "generate_task_id",
    "generate_ulid",
    "new_id",
    "parse_ulid_timestamp_ms",
    "short_id",
    "validate_event_id",
    "validate_task_id",
    "validate_ulid",
]
