from __future__ import annotations
import json
import os
import re
import sys
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from decoder import (
    DIR_FLIP_X,
    DIR_FLIP_XY,
    DIR_FLIP_Y,
    DIR_SET,
    OP_ADD,
    OP_BRANCH,
    OP_CMP,
    OP_DIV,
    OP_DUP,
    OP_HALT,
    OP_INPUT_CHAR,
    OP_INPUT_NUM,
    OP_MOD,
    OP_MOVE,
    OP_MUL,
    OP_NOP,
    OP_POP,
    OP_PRINT_CHAR,
    OP_PRINT_NUM,
    OP_PUSH,
    OP_SELECT,
    OP_SUB,
    OP_SWAP,
    AheuiError,
    Cell,
    Direction,
)
from extensions import HookRegistry, RuntimeServices, StepContext, build_default_services
from space import SourceLocation, Space, load_space


BANK_COUNT = 28
QUEUE_BANK = 21

MAX_CODE_POINT = 0x10FFFF
SURROGATES = range(0xD800, 0xE000)

# Elements the current bank must hold before an operation may run.
REQUIRED_ELEMENTS: Dict[str, int] = {
    OP_DIV: 2,
    OP_ADD: 2,
    OP_MUL: 2,
    OP_MOD: 2,
    OP_CMP: 2,
    OP_SUB: 2,
    OP_SWAP: 2,
    OP_DUP: 1,
    OP_MOVE: 1,
    OP_BRANCH: 1,
    OP_PRINT_NUM: 1,
    OP_PRINT_CHAR: 1,
    OP_POP: 1,
}

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")


class AheuiRuntimeError(AheuiError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        rewrite_rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rewrite_rule = rewrite_rule
        self.step_index: Optional[int] = None


class AheuiInputError(AheuiRuntimeError):
    """Raised when an input operation cannot produce a value."""


def trunc_div(b: int, a: int) -> int:
    quotient = abs(b) // abs(a)
    return -quotient if (b < 0) != (a < 0) else quotient


def trunc_mod(b: int, a: int) -> int:
    return b - a * trunc_div(b, a)


class Storage:
    """The 28 storage banks. Bank 21 is a queue, every other bank a stack."""

    def __init__(self) -> None:
        self.banks: List[Deque[int]] = [deque() for _ in range(BANK_COUNT)]
        self.current = 0

    def select(self, bank: int) -> None:
        if not 0 <= bank < BANK_COUNT:
            raise IndexError(f"bank {bank} out of range")
        self.current = bank

    def size(self) -> int:
        return len(self.banks[self.current])

    def push(self, value: int) -> None:
        self.banks[self.current].append(value)

    def push_to(self, bank: int, value: int) -> None:
        self.banks[bank].append(value)

    def pop(self) -> int:
        bank = self.banks[self.current]
        if self.current == QUEUE_BANK:
            return bank.popleft()
        return bank.pop()

    def peek(self) -> int:
        bank = self.banks[self.current]
        if self.current == QUEUE_BANK:
            return bank[0]
        return bank[-1]

    def duplicate(self) -> None:
        bank = self.banks[self.current]
        if self.current == QUEUE_BANK:
            bank.appendleft(bank[0])
        else:
            bank.append(bank[-1])

    def swap(self) -> None:
        # On the queue bank the two front elements end up at the back.
        a = self.pop()
        b = self.pop()
        self.push(a)
        self.push(b)

    def snapshot(self) -> Dict[int, List[int]]:
        return {index: list(bank) for index, bank in enumerate(self.banks) if bank}


class InputReader:
    """Buffers text from an input provider for number and character reads.

    The provider returns the next chunk of input (usually a line) or an
    empty string once input is exhausted. Both readers return None at end
    of input; ``read_number`` raises ValueError on a malformed token and
    leaves the token unconsumed.
    """

    def __init__(self, provider: Callable[[], str]) -> None:
        self._provider = provider
        self._buffer = ""
        self._pos = 0
        self._exhausted = False

    def _fill(self) -> bool:
        if self._exhausted:
            return False
        chunk = self._provider()
        if not chunk:
            self._exhausted = True
            return False
        self._buffer = self._buffer[self._pos:] + chunk
        self._pos = 0
        return True

    def read_char(self) -> Optional[int]:
        while self._pos >= len(self._buffer):
            if not self._fill():
                return None
        ch = self._buffer[self._pos]
        self._pos += 1
        return ord(ch)

    def read_number(self) -> Optional[int]:
        while True:
            buf = self._buffer
            while self._pos < len(buf) and buf[self._pos].isspace():
                self._pos += 1
            if self._pos < len(buf):
                break
            if not self._fill():
                return None

        # A token touching the end of the buffer may continue in the next chunk.
        length = 0
        while True:
            buf = self._buffer
            end = self._pos + length
            while end < len(buf) and not buf[end].isspace():
                end += 1
            length = end - self._pos
            if end < len(buf) or not self._fill():
                break

        token = self._buffer[self._pos:self._pos + length]
        if not _INTEGER_RE.fullmatch(token):
            raise ValueError(f"expected an integer, got {token!r}")
        self._pos += length
        return int(token)


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    location: Optional[SourceLocation]
    rule: str
    position: Optional[Tuple[int, int]]
    vector: Optional[Tuple[int, int]]
    bank: Optional[int]
    bounced: bool
    storage_snapshot: Optional[Dict[int, List[int]]]

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "step_index": self.step_index,
            "state_id": self.state_id,
            "rule": self.rule,
            "bounced": self.bounced,
        }
        if self.location is not None:
            data["source_location"] = {
                "file": self.location.file,
                "line": self.location.line,
                "column": self.location.column,
                "statement": self.location.statement,
            }
        if self.position is not None:
            data["position"] = list(self.position)
        if self.vector is not None:
            data["vector"] = list(self.vector)
        if self.bank is not None:
            data["bank"] = self.bank
        if self.storage_snapshot is not None:
            data["storage_snapshot"] = {str(k): v for k, v in self.storage_snapshot.items()}
        return data


class StateLogger:
    def __init__(self, verbose: bool, history: int = 1000) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.next_state_index = 0

    def record(
        self,
        *,
        rule: str,
        location: Optional[SourceLocation] = None,
        position: Optional[Tuple[int, int]] = None,
        vector: Optional[Tuple[int, int]] = None,
        bank: Optional[int] = None,
        bounced: bool = False,
        storage_snapshot: Optional[Dict[int, List[int]]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            location=location,
            rule=rule,
            position=position,
            vector=vector,
            bank=bank,
            bounced=bounced,
            storage_snapshot=storage_snapshot,
        )
        self.entries.append(entry)
        self.next_state_index += 1
        return entry

    @property
    def last(self) -> Optional[StateEntry]:
        return self.entries[-1] if self.entries else None


def _default_output(text: str) -> None:
    print(text, end="", flush=True)


class Interpreter:
    def __init__(
        self,
        *,
        source: str,
        filename: str,
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        input_provider: Optional[Callable[[], str]] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        history: int = 1000,
    ) -> None:
        self.source = source
        normalized_filename = filename if filename.startswith("<") else os.path.abspath(filename)
        self.filename = normalized_filename
        self.verbose = verbose
        self.services = services or build_default_services()
        self.hook_registry: HookRegistry = self.services.hook_registry
        self.input_provider = input_provider or sys.stdin.readline
        self.output_sink = output_sink or _default_output
        self.reader = InputReader(self.input_provider)

        self.space: Space = self.parse()
        self.storage = Storage()
        self.x = 0
        self.y = 0
        self.dx = 0
        self.dy = 0
        self.halted = False
        self.steps = 0

        self.logger = StateLogger(verbose=verbose, history=history)
        self.logger.record(rule="SEED")
        self.io_log: List[Dict[str, Any]] = []

        self._handlers: Dict[str, Callable[[Cell], None]] = {
            OP_NOP: self._nop,
            OP_ADD: self._add,
            OP_SUB: self._sub,
            OP_MUL: self._mul,
            OP_DIV: self._div,
            OP_MOD: self._mod,
            OP_CMP: self._cmp,
            OP_BRANCH: self._branch,
            OP_DUP: self._dup,
            OP_SWAP: self._swap,
            OP_POP: self._pop,
            OP_MOVE: self._move,
            OP_SELECT: self._select,
            OP_PUSH: self._push,
            OP_PRINT_NUM: self._print_num,
            OP_PRINT_CHAR: self._print_char,
            OP_INPUT_NUM: self._input_num,
            OP_INPUT_CHAR: self._input_char,
            OP_HALT: self._halt,
        }

    def parse(self) -> Space:
        return load_space(self.source, self.filename)

    @property
    def vector(self) -> Tuple[int, int]:
        return (self.dx, self.dy)

    def run(self, max_steps: Optional[int] = None) -> None:
        self._emit_event("program_start", self)
        try:
            if self.space.empty:
                self.halted = True
            while not self.halted:
                if max_steps is not None and self.steps >= max_steps:
                    raise AheuiRuntimeError(
                        f"Program did not halt within {max_steps} steps",
                        location=self.space.location(self.x, self.y),
                        rewrite_rule="STEP_LIMIT",
                    )
                self.step()
        except AheuiRuntimeError as error:
            self._emit_event("on_error", self, error)
            if error.step_index is None and self.logger.last is not None:
                error.step_index = self.logger.last.step_index
            raise
        except Exception as exc:
            self._emit_event("on_error", self, exc)
            # Convert unexpected Python-level exceptions into AheuiRuntimeError
            # so callers (REPL/CLI) can format them as Aheui tracebacks.
            last = self.logger.last
            wrapped = AheuiRuntimeError(
                f"Internal interpreter error: {exc}",
                location=last.location if last else None,
                rewrite_rule="internal",
            )
            if last is not None:
                wrapped.step_index = last.step_index
            raise wrapped from exc
        else:
            self._emit_event("program_end", self)

    def step(self) -> None:
        """Execute the cell under the pointer and move on."""
        if self.halted:
            return
        if self.space.empty:
            self.halted = True
            return
        x, y = self.x, self.y
        cell: Cell = self.space.cell_at(x, y)
        self._apply_direction(cell.direction)

        bounced = self.storage.size() < REQUIRED_ELEMENTS.get(cell.op, 0)
        if bounced:
            self._reverse()

        entry = self._log_step(cell, x, y, bounced)
        if not bounced:
            try:
                self._handlers[cell.op](cell)
            except AheuiRuntimeError as error:
                if error.location is None:
                    error.location = entry.location
                error.step_index = entry.step_index
                raise
        self.steps += 1

        if self.hook_registry.has_step_rules():
            self._run_step_rules(entry, cell, bounced)

        if self.halted:
            return
        self._advance()

    def _apply_direction(self, direction: Direction) -> None:
        flag = direction.flag
        if flag == DIR_SET:
            self.dx, self.dy = direction.dx, direction.dy
        elif flag == DIR_FLIP_X:
            self.dx = -self.dx
        elif flag == DIR_FLIP_Y:
            self.dy = -self.dy
        elif flag == DIR_FLIP_XY:
            self._reverse()

    def _advance(self) -> None:
        width, height = self.space.width, self.space.height
        x = self.x + self.dx
        y = self.y + self.dy
        if y < 0:
            y = height - 1
        if y >= height:
            y = 0
        if x < 0:
            x = width - 1
        if x >= width:
            x = 0
        self.x, self.y = x, y

    def _reverse(self) -> None:
        self.dx, self.dy = -self.dx, -self.dy

    # ---- operations ----

    def _nop(self, cell: Cell) -> None:
        pass

    def _binary(self, fn: Callable[[int, int], int]) -> None:
        storage = self.storage
        a = storage.pop()
        b = storage.pop()
        storage.push(fn(b, a))

    def _add(self, cell: Cell) -> None:
        self._binary(lambda b, a: b + a)

    def _sub(self, cell: Cell) -> None:
        self._binary(lambda b, a: b - a)

    def _mul(self, cell: Cell) -> None:
        self._binary(lambda b, a: b * a)

    def _div(self, cell: Cell) -> None:
        if self.storage.peek() == 0:
            raise AheuiRuntimeError("Division by zero", rewrite_rule=OP_DIV)
        self._binary(trunc_div)

    def _mod(self, cell: Cell) -> None:
        if self.storage.peek() == 0:
            raise AheuiRuntimeError("Modulo by zero", rewrite_rule=OP_MOD)
        self._binary(trunc_mod)

    def _cmp(self, cell: Cell) -> None:
        self._binary(lambda b, a: 1 if b >= a else 0)

    def _branch(self, cell: Cell) -> None:
        if self.storage.pop() == 0:
            self._reverse()

    def _dup(self, cell: Cell) -> None:
        self.storage.duplicate()

    def _swap(self, cell: Cell) -> None:
        self.storage.swap()

    def _pop(self, cell: Cell) -> None:
        self.storage.pop()

    def _move(self, cell: Cell) -> None:
        self.storage.push_to(cell.value, self.storage.pop())

    def _select(self, cell: Cell) -> None:
        self.storage.select(cell.value)

    def _push(self, cell: Cell) -> None:
        self.storage.push(cell.value)

    def _print_num(self, cell: Cell) -> None:
        value = self.storage.pop()
        self._write(str(value), value, OP_PRINT_NUM)

    def _print_char(self, cell: Cell) -> None:
        value = self.storage.peek()
        if not 0 <= value <= MAX_CODE_POINT or value in SURROGATES:
            raise AheuiRuntimeError(f"Cannot print {value} as a character", rewrite_rule=OP_PRINT_CHAR)
        self.storage.pop()
        self._write(chr(value), value, OP_PRINT_CHAR)

    def _input_num(self, cell: Cell) -> None:
        try:
            value = self.reader.read_number()
        except ValueError as exc:
            raise AheuiInputError(f"Invalid number input: {exc}", rewrite_rule=OP_INPUT_NUM)
        if value is None:
            raise AheuiInputError("Input exhausted while reading a number", rewrite_rule=OP_INPUT_NUM)
        self.io_log.append({"event": OP_INPUT_NUM, "value": value})
        self.storage.push(value)

    def _input_char(self, cell: Cell) -> None:
        value = self.reader.read_char()
        if value is None:
            raise AheuiInputError("Input exhausted while reading a character", rewrite_rule=OP_INPUT_CHAR)
        self.io_log.append({"event": OP_INPUT_CHAR, "value": value})
        self.storage.push(value)

    def _halt(self, cell: Cell) -> None:
        self.halted = True

    def _write(self, text: str, value: int, event: str) -> None:
        self.output_sink(text)
        self.io_log.append({"event": event, "value": value})
        self._emit_event("on_output", self, text)

    # ---- hooks and logging ----

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hook_registry.emit(event, *args, **kwargs)
        except AheuiRuntimeError:
            raise
        except Exception as exc:
            last = self.logger.last
            raise AheuiRuntimeError(
                f"Extension hook '{event}' failed: {exc}",
                location=last.location if last else None,
                rewrite_rule="EXT",
            )

    def _log_step(self, cell: Cell, x: int, y: int, bounced: bool) -> StateEntry:
        return self.logger.record(
            rule=cell.op,
            location=self.space.location(x, y),
            position=(x, y),
            vector=(self.dx, self.dy),
            bank=self.storage.current,
            bounced=bounced,
            storage_snapshot=self.storage.snapshot() if self.verbose else None,
        )

    def _run_step_rules(self, entry: StateEntry, cell: Cell, bounced: bool) -> None:
        try:
            self.hook_registry.after_step(
                self,
                StepContext(
                    step_index=entry.step_index,
                    rule=cell.op,
                    location=entry.location,
                    extra={"position": entry.position, "vector": self.vector, "bounced": bounced},
                ),
            )
        except AheuiRuntimeError:
            raise
        except Exception as exc:
            raise AheuiRuntimeError(
                f"Extension step rule failed: {exc}",
                location=entry.location,
                rewrite_rule="EXT",
            )


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter, depth: int = 5) -> None:
        self.interpreter = interpreter
        self.depth = depth

    def recent_steps(self) -> List[StateEntry]:
        entries = [e for e in self.interpreter.logger.entries if e.location is not None]
        return entries[-self.depth:]

    def format_text(self, error: AheuiRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent step last):"]
        for entry in self.recent_steps():
            loc = entry.location
            lines.append(f"  File \"{loc.file}\", line {loc.line}, column {loc.column}, in step {entry.step_index}")
            lines.append(f"    {loc.statement}")
            marker = "  (bounced)" if entry.bounced else ""
            lines.append(f"    Rule: {entry.rule}  Vector: {entry.vector}  Bank: {entry.bank}{marker}")
            if verbose and entry.storage_snapshot is not None:
                snapshot = ", ".join(f"{k}={v}" for k, v in entry.storage_snapshot.items())
                lines.append(f"    Storage snapshot: {snapshot}")
        if error.location is not None and not self.recent_steps():
            lines.append(f"  File \"{error.location.file}\", line {error.location.line}, column {error.location.column}")
        rule = error.rewrite_rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rewrite: {rule})")
        return "\n".join(lines)

    def to_json(self, error: AheuiRuntimeError) -> str:
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rule": error.rewrite_rule,
                "failing_step_index": error.step_index,
            },
            "traceback": [entry.as_dict() for entry in self.recent_steps()],
        }
        return json.dumps(data, indent=2)
