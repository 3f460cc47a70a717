"""Builders for build tool JSON diagnostic lines."""

from __future__ import annotations

import json
from typing import Any


def span(
    file_name: str = "src/lib.rs",
    line_start: int = 3,
    column_start: int = 5,
    line_end: int | None = None,
    column_end: int | None = None,
    *,
    is_primary: bool = True,
    label: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "file_name": file_name,
        "line_start": line_start,
        "column_start": column_start,
        "line_end": line_end if line_end is not None else line_start,
        "column_end": column_end if column_end is not None else column_start + 1,
        "is_primary": is_primary,
        "label": label,
    }
    payload.update(extra)
    return payload


def message(
    text: str = "unused variable: `x`",
    *,
    level: str = "warning",
    code: str | None = "unused_variables",
    spans: list[dict[str, Any]] | None = None,
    children: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "message": text,
        "code": {"code": code, "explanation": None} if code is not None else None,
        "level": level,
        "spans": spans if spans is not None else [span()],
        "children": children or [],
        "rendered": f"{level}: {text}\n",
    }


def compiler_message(**kwargs: Any) -> str:
    """One ``--message-format json`` line wrapping a compiler diagnostic."""

    return json.dumps(
        {
            "reason": "compiler-message",
            "package_id": "demo 0.1.0 (path+file:///work/demo)",
            "target": {"kind": ["lib"], "name": "demo"},
            "message": message(**kwargs),
        }
    )


def artifact_line() -> str:
    return json.dumps(
        {
            "reason": "compiler-artifact",
            "package_id": "demo 0.1.0 (path+file:///work/demo)",
            "filenames": ["/work/demo/target/debug/libdemo.rlib"],
            "fresh": False,
        }
    )


def rustc_line(**kwargs: Any) -> str:
    """A bare compiler diagnostic as printed by the legacy compiler driver."""

    return json.dumps(message(**kwargs))


__all__ = ["artifact_line", "compiler_message", "message", "rustc_line", "span"]
