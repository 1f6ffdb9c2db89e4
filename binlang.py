"""BinLang entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from extensions import BinLangExtensionError, RuntimeServices, load_runtime_services
from history import HistoryTracker
from interpreter import BinLangRuntimeError, Interpreter, RunResult
from lexer import BinLangParseError


def _print_outcome(text: str) -> None:
    print(text)
    print()


def run_repl(interpreter: Interpreter) -> int:
    print("\x1b[38;2;153;221;255mBinLang\033[0m REPL. Enter lines, blank line to run a block.")
    buffer: List[str] = []

    while True:
        prompt = "\x1b[38;2;153;221;255m>>>\033[0m " if not buffer else "\x1b[38;2;153;221;255m..>\033[0m "
        try:
            line = input(prompt)
        except EOFError:
            print()
            break

        stripped = line.strip()
        if not buffer and stripped == "":
            continue
        if not buffer and not stripped.endswith("{"):
            _run_repl_source(interpreter, line)
            continue
        if stripped == "" and buffer:
            source_text = "\n".join(buffer)
            buffer.clear()
            _run_repl_source(interpreter, source_text)
            continue
        buffer.append(line)
    return 0


def _run_repl_source(interpreter: Interpreter, source_text: str) -> None:
    # Registers and functions persist between REPL entries.
    try:
        interpreter.run(source_text, reset=False)
    except BinLangParseError as error:
        print(f"ParseError: {error.message} ({error.kind})", file=sys.stderr)
    except BinLangRuntimeError as error:
        print(f"RuntimeError: {error.message} ({error.kind})", file=sys.stderr)


def _report_extras(result: RunResult, args: argparse.Namespace) -> None:
    if args.registers:
        print(HistoryTracker.viewer(result.registers), end="")
    for register in args.history or []:
        print(result.history.render(register))
    if args.verbose:
        for line in result.history.panel():
            print(line)


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="BinLang register-machine interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text (\\n separates lines)")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Record scope snapshots and print the history panel")
    parser.add_argument("-ext", "--ext", dest="extensions", action="append", default=[], help="Load an observer extension (repeatable)")
    parser.add_argument("--json", action="store_true", help="Emit the run result as JSON instead of text")
    parser.add_argument("--history", action="append", metavar="REG", help="Print the history of a register (repeatable)")
    parser.add_argument("--registers", action="store_true", help="Print the final register viewer")
    args = parser.parse_args(argv)

    try:
        services = load_runtime_services(args.extensions) if args.extensions else RuntimeServices()
    except BinLangExtensionError as error:
        print(f"ExtensionError: {error}", file=sys.stderr)
        return 1
    if args.verbose and services.metadata:
        print("Extensions: " + ", ".join(services.extension_names()), file=sys.stderr)

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        interpreter = Interpreter(filename="<string>", verbose=args.verbose, services=services, output_sink=_print_outcome)
        return run_repl(interpreter)

    if args.source_mode:
        source_text = args.program.replace("\\n", "\n")
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    sink = None if args.json else _print_outcome
    interpreter = Interpreter(filename=filename, verbose=args.verbose, services=services, output_sink=sink)
    try:
        result = interpreter.run(source_text)
    except BinLangParseError as error:
        print(f"ParseError: {error.message} ({error.kind})", file=sys.stderr)
        return 1
    except BinLangRuntimeError as error:
        print(f"RuntimeError: {error.message} ({error.kind})", file=sys.stderr)
        return 1

    if args.json:
        print(result.to_json())
    else:
        _report_extras(result, args)
    return 1 if result.errors else 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
