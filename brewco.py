"""Brewco entry point and REPL wiring."""
from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from diagnostics import INCOMPLETE_RECIPE
from interpreter import BrewcoRuntimeError, Interpreter, TracebackFormatter
from parser import ParseResult, parse
from type_checker import TypeChecker


EXIT_COMMANDS = ("exit", "quit", "enough_caffeine")
HELP_COMMANDS = ("help", "barista_help")

USAGE = """Brewco - a coffee-flavoured scripting language
Usage:
  brewco <filename.brewco>   Brew a Brewco program
  brewco repl                Start the interactive coffee shop
  brewco help                Show this help message
Options:
  --verbose                  Include scope snapshots in tracebacks
  --traceback-json           Also emit tracebacks as JSON"""

REPL_HELP = """Coffee Shop Commands:
  beans name pour_in value   Declare a variable
  pourout expression         Print an expression
  clear_counter              Forget every declaration and start fresh
  show_pantry                List top-level declarations
  exit | quit | enough_caffeine
Lines ending in '{' open a block; a blank line brews it."""


def _report_runtime_error(interpreter: Interpreter, error: BrewcoRuntimeError, *, as_json: bool = False) -> None:
    formatter = TracebackFormatter(interpreter)
    print(formatter.format_text(error, verbose=interpreter.verbose), file=sys.stderr)
    if as_json:
        print(formatter.to_json(error), file=sys.stderr)


def _report_diagnostics(result: ParseResult) -> None:
    for diagnostic in result.diagnostics:
        print(diagnostic.render(), file=sys.stderr)


def _is_incomplete(result: ParseResult) -> bool:
    return bool(result.diagnostics) and all(d.kind == INCOMPLETE_RECIPE for d in result.diagnostics)


def run_repl(verbose: bool) -> int:
    print("Welcome to the Brewco coffee shop! Type 'help' for commands, 'exit' to leave.")
    interpreter = Interpreter(filename="<repl>", verbose=verbose)
    buffer: List[str] = []

    while True:
        prompt = "brewco> " if not buffer else "   ...> "
        try:
            line = input(prompt)
        except EOFError:
            print()
            break

        stripped = line.strip()

        if not buffer:
            if stripped in EXIT_COMMANDS:
                print("Thanks for visiting the coffee shop!")
                break
            if stripped in HELP_COMMANDS:
                print(REPL_HELP)
                continue
            if stripped == "clear_counter":
                interpreter = Interpreter(filename="<repl>", verbose=verbose)
                print("Counter cleared. Fresh start brewing...")
                continue
            if stripped == "show_pantry":
                pantry = interpreter.bindings()
                if not pantry:
                    print("The pantry is empty.")
                for name, shown in pantry.items():
                    print(f"  {name} = {shown}")
                continue
            if stripped == "":
                continue
            if not stripped.endswith("{"):
                result = parse(line, "<repl>")
                if _is_incomplete(result):
                    buffer.append(line)
                    continue
                _run_repl_source(interpreter, result)
                continue

        if stripped == "" and buffer:
            source_text = "\n".join(buffer)
            buffer.clear()
            _run_repl_source(interpreter, parse(source_text, "<repl>"))
            continue

        buffer.append(line)

    return 0


def _run_repl_source(interpreter: Interpreter, result: ParseResult) -> None:
    if result.diagnostics:
        _report_diagnostics(result)
        return
    try:
        interpreter.run(result.statements)
    except BrewcoRuntimeError as error:
        _report_runtime_error(interpreter, error)


def run_file(filename: str, *, verbose: bool = False, traceback_json: bool = False) -> int:
    try:
        with open(filename, "r", encoding="utf-8") as handle:
            source_text = handle.read()
    except OSError as exc:
        print(f"Failed to read {filename}: {exc}", file=sys.stderr)
        return 1

    result = parse(source_text, filename)
    if result.diagnostics:
        _report_diagnostics(result)
        return 1

    checker = TypeChecker()
    if checker.check(result.statements):
        print("Your coffee isn't fresh! The type checker found these issues:", file=sys.stderr)
        for diagnostic in checker.diagnostics:
            print(diagnostic.render(), file=sys.stderr)
        return 1

    interpreter = Interpreter(filename=filename, verbose=verbose)
    try:
        interpreter.run(result.statements)
    except BrewcoRuntimeError as error:
        _report_runtime_error(interpreter, error, as_json=traceback_json)
        return 1
    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="brewco", description="Brewco reference interpreter")
    parser.add_argument("command", nargs="?", help="Source file path, 'repl' or 'help'")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit scope snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    args = parser.parse_args(argv)

    if args.command is None or args.command == "repl":
        return run_repl(verbose=args.verbose)
    if args.command == "help":
        print(USAGE)
        return 0
    return run_file(args.command, verbose=args.verbose, traceback_json=args.traceback_json)


if __name__ == "__main__":
    raise SystemExit(run_cli())
