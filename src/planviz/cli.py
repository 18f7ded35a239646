"""Command-line interface for rendering ShowPlan XML files."""
from __future__ import annotations

import argparse
import codecs
import json
import logging
import os
import sys
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .model import DEFAULT_THEME, PlanNode, PlanTheme
from .parser import parse_plan
from .raster import parse_background, render_png
from .render import FocusNotFoundError, render_plan_svg

logger = logging.getLogger(__name__)

SUBCOMMANDS_HINT = "Use one of: svg, png, inspect."


@dataclass
class CliError(Exception):
    code: str
    message: str
    hint: Optional[str] = None
    exit_code: int = 1
    file: Optional[str] = None
    retryable: bool = True


class UsageError(Exception):
    pass


class FriendlyArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # pragma: no cover - argparse callback
        raise UsageError(message)


def _build_parser() -> argparse.ArgumentParser:
    parser = FriendlyArgumentParser(
        prog="planviz",
        description="Render SQL Server ShowPlan XML execution plans as SVG or PNG.",
    )
    parser.add_argument("--error-format", choices=["text", "json"], default="text")
    parser.add_argument("--debug", action="store_true")

    subparsers = parser.add_subparsers(dest="command")

    svg_parser = subparsers.add_parser("svg", help="Render a plan to SVG")
    _add_input_arguments(svg_parser)
    svg_parser.add_argument("--stdout", action="store_true", help="Write SVG to stdout")
    svg_parser.add_argument("-o", "--output", help="Output .svg path")
    svg_parser.add_argument("--padding", type=float, default=DEFAULT_THEME.padding)

    png_parser = subparsers.add_parser("png", help="Render a plan to PNG")
    _add_input_arguments(png_parser)
    png_parser.add_argument("--stdout", action="store_true", help="Write PNG bytes to stdout")
    png_parser.add_argument("-o", "--output", help="Output .png path")
    png_parser.add_argument("--focus", type=int, metavar="NODE_ID", help="Crop to one operator")
    png_parser.add_argument("--padding", type=float, default=DEFAULT_THEME.padding)
    png_parser.add_argument("--scale", type=float, default=1.0)
    png_parser.add_argument(
        "--background",
        default="#ffffff",
        help='Canvas colour, or "none" for a transparent PNG',
    )

    inspect_parser = subparsers.add_parser("inspect", help="Print the parsed operator tree as JSON")
    _add_input_arguments(inspect_parser)

    return parser


def _add_input_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("input", nargs="?", help="Input .sqlplan / ShowPlan XML file")
    parser.add_argument("--text", help="Raw ShowPlan XML")


def _decode_plan_bytes(data: bytes, source_name: str) -> str:
    # SSMS and Query Store exports are UTF-16 with a BOM as often as UTF-8.
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        encoding = "utf-16"
    elif data.startswith(codecs.BOM_UTF8):
        encoding = "utf-8-sig"
    elif len(data) >= 2 and data[0] != 0 and data[1] == 0:
        encoding = "utf-16-le"
    else:
        encoding = "utf-8"
    try:
        return data.decode(encoding)
    except UnicodeDecodeError as exc:
        raise CliError(
            "E_IO_READ",
            f"failed to decode plan file as {encoding}: {source_name}",
            hint=str(exc),
            exit_code=2,
            file=source_name,
        )


def _read_input(path: Optional[str], text: Optional[str]) -> tuple[str, str, Optional[Path]]:
    if path and text is not None:
        raise CliError(
            "E_ARGS",
            "--text cannot be combined with file input",
            hint="Use either FILE or --text.",
            exit_code=2,
        )

    if text is not None:
        return text, "<text>", None

    if path:
        input_path = Path(path)
        if not input_path.exists():
            raise CliError(
                "E_IO_READ",
                f"input file not found: {input_path}",
                exit_code=2,
                file=str(input_path),
            )
        try:
            data = input_path.read_bytes()
        except OSError as exc:
            raise CliError(
                "E_IO_READ",
                f"failed to read input file: {input_path}",
                hint=str(exc),
                exit_code=2,
                file=str(input_path),
            )
        return _decode_plan_bytes(data, str(input_path)), str(input_path), input_path

    if sys.stdin.isatty():
        raise CliError(
            "E_ARGS",
            "no input provided",
            hint="Use a subcommand with FILE, --text, or pipe stdin.",
            exit_code=2,
        )

    data = sys.stdin.read()
    if not data.strip():
        raise CliError(
            "E_ARGS",
            "stdin was empty",
            hint="Pipe ShowPlan XML into stdin.",
            exit_code=2,
        )
    return data, "<stdin>", None


def _load_plan(source: str, source_name: str) -> PlanNode:
    root = parse_plan(source)
    if root is None:
        raise CliError(
            "E_PLAN_UNAVAILABLE",
            f"could not parse query plan XML: {source_name}",
            hint="Provide a well-formed ShowPlan XML document containing a RelOp element.",
            exit_code=3,
            file=None if source_name.startswith("<") else source_name,
            retryable=False,
        )
    logger.debug("parsed %d operators from %s", sum(1 for _ in root.walk()), source_name)
    return root


def _write_text(path: Path, content: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise CliError(
            "E_IO_WRITE",
            f"failed to write output file: {path}",
            hint=str(exc),
            exit_code=4,
            file=str(path),
        )


def _write_bytes(path: Path, content: bytes) -> None:
    try:
        path.write_bytes(content)
    except OSError as exc:
        raise CliError(
            "E_IO_WRITE",
            f"failed to write output file: {path}",
            hint=str(exc),
            exit_code=4,
            file=str(path),
        )


def _theme_from_args(args: argparse.Namespace) -> PlanTheme:
    if args.padding < 0:
        raise CliError(
            "E_ARGS",
            "--padding must be >= 0",
            hint="Use a non-negative padding like 0 or 20.",
            exit_code=2,
        )
    return DEFAULT_THEME.replace(padding=args.padding)


def _error_from_exception(exc: Exception) -> CliError:
    if isinstance(exc, CliError):
        return exc
    if isinstance(exc, FocusNotFoundError):
        return CliError(
            "E_FOCUS_NOT_FOUND",
            str(exc),
            hint="Run `planviz inspect` to list operator node ids and retry --focus.",
            exit_code=4,
            retryable=True,
        )
    if isinstance(exc, RuntimeError):
        return CliError(
            "E_RENDER",
            str(exc),
            hint="Install the cairo library or use `planviz svg` instead.",
            exit_code=5,
            retryable=False,
        )
    return CliError(
        "E_INTERNAL",
        str(exc) or exc.__class__.__name__,
        hint="Re-run with --debug to see traceback.",
        exit_code=1,
        retryable=False,
    )


def _emit_error(err: CliError, *, error_format: str) -> None:
    if error_format == "json":
        payload = {
            "ok": False,
            "code": err.code,
            "message": err.message,
            "file": err.file,
            "hint": err.hint,
            "retryable": err.retryable,
        }
        sys.stderr.write(json.dumps(payload) + "\n")
        return

    sys.stderr.write(f"error[{err.code}]: {err.message}\n")
    if err.hint:
        sys.stderr.write(f"hint: {err.hint}\n")


def _check_output_args(args: argparse.Namespace) -> None:
    if args.stdout and args.output:
        raise CliError(
            "E_ARGS",
            "--stdout and --output are mutually exclusive",
            hint="Choose either --stdout or --output.",
            exit_code=2,
        )


def _handle_svg(args: argparse.Namespace) -> int:
    _check_output_args(args)
    theme = _theme_from_args(args)

    source, source_name, source_path = _read_input(args.input, args.text)
    svg_text = render_plan_svg(_load_plan(source, source_name), theme)

    if args.stdout or (source_path is None and not args.output):
        sys.stdout.write(svg_text)
        if not svg_text.endswith("\n"):
            sys.stdout.write("\n")
        return 0

    output_path = Path(args.output) if args.output else source_path.with_suffix(".svg")
    _write_text(output_path, svg_text)
    print(f"Wrote {output_path}")
    return 0


def _handle_png(args: argparse.Namespace) -> int:
    _check_output_args(args)
    if args.scale <= 0:
        raise CliError(
            "E_ARGS",
            "--scale must be > 0",
            hint="Use a positive scale factor like 1 or 2.",
            exit_code=2,
        )
    theme = _theme_from_args(args)
    try:
        parse_background(args.background)
    except ValueError as exc:
        raise CliError(
            "E_ARGS",
            f"invalid --background colour: {args.background}",
            hint='Use a CSS colour such as "#1e1e1e", "white" or "none".',
            exit_code=2,
        ) from exc

    source, source_name, source_path = _read_input(args.input, args.text)
    svg_text = render_plan_svg(_load_plan(source, source_name), theme)
    png_bytes = render_png(
        svg_text,
        scale=args.scale,
        focus_node=args.focus,
        padding=args.padding,
        background=args.background,
    )

    if args.stdout or (source_path is None and not args.output):
        sys.stdout.buffer.write(png_bytes)
        return 0

    output_path = Path(args.output) if args.output else source_path.with_suffix(".png")
    _write_bytes(output_path, png_bytes)
    print(f"Wrote {output_path}")
    return 0


def _handle_inspect(args: argparse.Namespace) -> int:
    source, source_name, _source_path = _read_input(args.input, args.text)
    root = _load_plan(source, source_name)
    sys.stdout.write(json.dumps(root.to_dict(), indent=2) + "\n")
    return 0


def _configure_logging(debug_enabled: bool) -> None:
    if debug_enabled:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(levelname)s %(name)s: %(message)s",
        )


def main(argv: Optional[Iterable[str]] = None) -> int:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    parser = _build_parser()

    if not raw_argv:
        err = CliError("E_ARGS", "missing subcommand", hint=SUBCOMMANDS_HINT, exit_code=2)
        _emit_error(err, error_format="text")
        return err.exit_code

    debug_enabled = "--debug" in raw_argv or os.getenv("PLANVIZ_DEBUG") == "1"
    _configure_logging(debug_enabled)
    error_format = "text"
    if "--error-format" in raw_argv:
        idx = raw_argv.index("--error-format")
        if idx + 1 < len(raw_argv):
            error_format = raw_argv[idx + 1]

    try:
        args = parser.parse_args(raw_argv)
        error_format = args.error_format

        if args.command == "svg":
            return _handle_svg(args)
        if args.command == "png":
            return _handle_png(args)
        if args.command == "inspect":
            return _handle_inspect(args)

        raise CliError("E_ARGS", "missing subcommand", hint=SUBCOMMANDS_HINT, exit_code=2)
    except UsageError as exc:
        err = CliError("E_ARGS", str(exc), hint=SUBCOMMANDS_HINT, exit_code=2)
        _emit_error(err, error_format=error_format)
        return err.exit_code
    except Exception as exc:  # pragma: no cover - exercised in integration tests
        err = _error_from_exception(exc)
        _emit_error(err, error_format=error_format)
        if debug_enabled:
            traceback.print_exc(file=sys.stderr)
        return err.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
