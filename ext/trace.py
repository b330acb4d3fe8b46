"""Aheui Extension: step tracer.

Writes one line per executed step to stderr:

    step 12 (3, 0) v=(1, 0) bank=0 ADD

Bounced steps are marked with ``!``.
"""

from __future__ import annotations

import sys
from typing import Any, TextIO

from extensions import ExtensionAPI, StepContext


AHEUI_EXTENSION_NAME = "trace"
AHEUI_EXTENSION_API_VERSION = 1

TRACE_EVERY = 1


def format_step(interpreter: Any, ctx: StepContext) -> str:
    extra = ctx.extra or {}
    mark = "!" if extra.get("bounced") else ""
    return (
        f"step {ctx.step_index} {extra.get('position')} v={extra.get('vector')} "
        f"bank={interpreter.storage.current} {ctx.rule}{mark}"
    )


def _stream(interpreter: Any) -> TextIO:
    return getattr(interpreter, "trace_stream", sys.stderr)


def _trace_step(interpreter: Any, ctx: StepContext) -> None:
    print(format_step(interpreter, ctx), file=_stream(interpreter))


def _trace_end(interpreter: Any) -> None:
    print(f"halted after {interpreter.steps} steps", file=_stream(interpreter))


def aheui_register(ext: ExtensionAPI) -> None:
    ext.metadata(name=AHEUI_EXTENSION_NAME, version="1.0.0")
    ext.every_n_steps(TRACE_EVERY, _trace_step, name="trace_step")
    ext.on_event("program_end", _trace_end)
