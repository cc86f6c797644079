"""IPPcode24 interpreter entry point."""

from __future__ import annotations
import argparse
import sys
from typing import IO, Any, List, Optional, Sequence, TextIO, Tuple, Union

from channels import InputChannel, OutputChannel
from errors import InputFileError, IPPError, IPPRuntimeError, OutputFileError, ParameterError
from extensions import ExtensionAPI, load_runtime_services
from interpreter import Interpreter, TracebackFormatter
from stats import STAT_EOL, STAT_FREQUENT, STAT_HOT, STAT_INSTS, STAT_PRINT, STAT_STACK, STAT_VARS, StatsCollector


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> Any:
        raise ParameterError(message)


class _StatAction(argparse.Action):
    """Collects statistic options in command-line order."""

    def __call__(self, parser: argparse.ArgumentParser, namespace: argparse.Namespace, values: Any, option_string: Optional[str] = None) -> None:
        items: List[Tuple[str, Optional[str]]] = list(getattr(namespace, self.dest, None) or [])
        items.append((self.const, values if isinstance(values, str) else None))
        setattr(namespace, self.dest, items)


def _build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(description="IPPcode24 interpreter")
    parser.add_argument("--source", help="XML program file (default: standard input)")
    parser.add_argument("--input", help="File read by READ (default: standard input)")
    parser.add_argument("--stats", help="Write execution statistics to this file")
    for name in (STAT_INSTS, STAT_HOT, STAT_VARS, STAT_STACK, STAT_FREQUENT, STAT_EOL):
        parser.add_argument(f"--{name}", dest="stat_items", action=_StatAction, const=name, nargs=0, help=f"Statistic: {name}")
    parser.add_argument("--print", dest="stat_items", action=_StatAction, const=STAT_PRINT, metavar="TEXT", help="Write TEXT into the statistics file")
    parser.add_argument("--ext", action="append", default=[], metavar="PATH", help="Load an interpreter extension module")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit frame snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    return parser


def parse_arguments(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    args = _build_parser().parse_args(argv)
    if args.source is None and args.input is None:
        raise ParameterError("At least one of --source and --input is required")
    if args.stat_items and args.stats is None:
        raise ParameterError("Statistic options require --stats")
    return args


def _read_source(path: Optional[str], stdin: TextIO) -> Union[str, bytes]:
    if path is None:
        return stdin.read()
    try:
        with open(path, "rb") as handle:
            return handle.read()
    except OSError as exc:
        raise InputFileError(f"Failed to read {path}: {exc}")


def _open_input(path: Optional[str], stdin: TextIO) -> IO[Any]:
    if path is None:
        return stdin
    try:
        return open(path, "rb")
    except OSError as exc:
        raise InputFileError(f"Failed to open {path}: {exc}")


def _write_stats(path: str, text: str) -> None:
    try:
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(text)
    except OSError as exc:
        raise OutputFileError(f"Failed to write {path}: {exc}")


def run_cli(
    argv: Optional[Sequence[str]] = None,
    *,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
    stderr: Optional[TextIO] = None,
) -> int:
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr

    try:
        args = parse_arguments(argv)
        services = load_runtime_services(args.ext)
    except ParameterError as error:
        print(f"{error.__class__.__name__}: {error.message}", file=stderr)
        return error.exit_code

    collector: Optional[StatsCollector] = None
    if args.stats is not None:
        collector = StatsCollector()
        collector.attach(ExtensionAPI(services=services, ext_name="stats"))

    try:
        source = _read_source(args.source, stdin)
        input_stream = _open_input(args.input, stdin)
    except InputFileError as error:
        print(f"InputFileError: {error.message}", file=stderr)
        return error.exit_code

    out = OutputChannel(stdout)
    err = OutputChannel(stderr)
    interpreter = Interpreter(
        source=source,
        filename=args.source or "<stdin>",
        verbose=args.verbose,
        services=services,
        input_channel=InputChannel(input_stream),
        stdout=out,
        stderr=err,
    )
    try:
        code = interpreter.run()
    except IPPRuntimeError as error:
        out.flush()
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=stderr)
        code = error.exit_code
    except IPPError as error:
        print(f"{error.__class__.__name__}: {error.message}", file=stderr)
        code = error.exit_code
    finally:
        out.flush()
        if input_stream is not stdin:
            input_stream.close()

    if collector is not None:
        try:
            _write_stats(args.stats, collector.render(args.stat_items or []))
        except OutputFileError as error:
            print(f"OutputFileError: {error.message}", file=stderr)
            return error.exit_code
    return code


def main() -> int:
    return run_cli()


if __name__ == "__main__":
    raise SystemExit(main())
