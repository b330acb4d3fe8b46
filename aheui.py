"""Aheui entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from extensions import AheuiExtensionError, RuntimeServices, build_default_services, load_runtime_services
from interpreter import AheuiRuntimeError, Interpreter, TracebackFormatter


def _repl_input() -> str:
    try:
        return input() + "\n"
    except EOFError:
        return ""


def _report(interpreter: Interpreter, error: AheuiRuntimeError, verbose: bool, traceback_json: bool = False) -> None:
    formatter = TracebackFormatter(interpreter)
    print(formatter.format_text(error, verbose=verbose), file=sys.stderr)
    if traceback_json:
        print(formatter.to_json(error), file=sys.stderr)


def run_repl(verbose: bool, services: Optional[RuntimeServices] = None, max_steps: Optional[int] = None) -> int:
    print("\x1b[38;2;153;221;255mAheui\033[0m REPL. Enter grid rows, blank line to run buffer.") # "Aheui" in light blue
    had_output = False

    def _output_sink(text: str) -> None:
        nonlocal had_output
        had_output = True
        print(text, end="", flush=True)

    buffer: List[str] = []
    while True:
        prompt = "\x1b[38;2;153;221;255m>>>\033[0m " if not buffer else "\x1b[38;2;153;221;255m..>\033[0m " # light blue
        if had_output:
            # Ensure prompt starts on a fresh line if the program printed anything
            print()
            had_output = False
        try:
            line = input(prompt)
        except EOFError:
            print()
            break

        if line != "":
            buffer.append(line)
            continue
        if not buffer:
            continue

        # Every buffer is an independent program with its own storage.
        source_text = "\n".join(buffer)
        buffer.clear()
        interpreter = Interpreter(
            source=source_text,
            filename="<repl>",
            verbose=verbose,
            services=services,
            input_provider=_repl_input,
            output_sink=_output_sink,
        )
        try:
            interpreter.run(max_steps=max_steps)
        except AheuiRuntimeError as error:
            _report(interpreter, error, verbose)

    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Aheui reference interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit storage snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--ext", dest="extensions", action="append", default=[], metavar="PATH", help="Load an extension module (repeatable)")
    parser.add_argument("--max-steps", type=int, default=None, metavar="N", help="Abort if the program has not halted after N steps")
    args = parser.parse_args(argv)

    try:
        services = load_runtime_services(args.extensions) if args.extensions else build_default_services()
    except AheuiExtensionError as exc:
        print(f"ExtensionError: {exc}", file=sys.stderr)
        return 1

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(verbose=args.verbose, services=services, max_steps=args.max_steps)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8", newline="") as handle:
                source_text = handle.read()
        except (OSError, UnicodeDecodeError) as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    interpreter = Interpreter(source=source_text, filename=filename, verbose=args.verbose, services=services)
    try:
        interpreter.run(max_steps=args.max_steps)
    except AheuiRuntimeError as error:
        sys.stdout.flush()
        _report(interpreter, error, args.verbose, args.traceback_json)
        return 1
    finally:
        sys.stdout.flush()
    return 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
