"""Shared fixtures for the Aheui test suite."""

import io
from typing import List, Optional

import pytest

from interpreter import Interpreter


class Run:
    def __init__(self, interpreter: Interpreter, output: List[str]) -> None:
        self.interpreter = interpreter
        self.output = output

    @property
    def text(self) -> str:
        return "".join(self.output)


@pytest.fixture
def make_interpreter():
    def _make(source: str, stdin: str = "", **kwargs) -> Run:
        output: List[str] = []
        interpreter = Interpreter(
            source=source,
            filename="<test>",
            input_provider=io.StringIO(stdin).readline,
            output_sink=output.append,
            **kwargs,
        )
        return Run(interpreter, output)

    return _make


@pytest.fixture
def run_program(make_interpreter):
    def _run(source: str, stdin: str = "", max_steps: Optional[int] = 10000, **kwargs) -> Run:
        run = make_interpreter(source, stdin, **kwargs)
        run.interpreter.run(max_steps=max_steps)
        return run

    return _run
