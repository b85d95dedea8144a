"""CLI entrypoint for platybind."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Dict

from .config import CONFIG_FILE_NAME, load_config
from .errors import BindgenError
from .logging import configure_logging
from .pipeline import generate_bindings, write_files


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="platybind",
        description="Generate Perl FFI::Platypus bindings for the C ABI of a Rust crate.",
    )
    parser.add_argument(
        "--name",
        help="Perl package for the bindings, e.g. Foo::Bar (overrides the config file).",
    )
    parser.add_argument(
        "--input",
        help="Rust entry file (defaults to the Cargo [lib] path, then ffi/src/lib.rs).",
    )
    parser.add_argument(
        "--cargo-toml",
        dest="cargo_toml",
        help="Cargo manifest used to locate the entry file (defaults to ffi/Cargo.toml).",
    )
    parser.add_argument(
        "--main-file",
        dest="main_file",
        help="Path of the generated bindings module (defaults to lib/Foo/Bar.pm).",
    )
    parser.add_argument(
        "--config",
        default=".",
        help=f"Path to {CONFIG_FILE_NAME} or the directory holding it (defaults to current directory).",
    )
    parser.add_argument(
        "--output-dir",
        default=".",
        help="Directory the generated files are written below (defaults to current directory).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the generated files instead of writing them.",
    )
    parser.add_argument(
        "--log-file",
        help="Also write debug logs to this file.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Increase log verbosity for troubleshooting.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=False,
        help="Only log warnings and errors.",
    )
    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {"name": args.name, "main_file": args.main_file}
    # Command-line paths are relative to the working directory, not the config file.
    for key in ("input", "cargo_toml"):
        value = getattr(args, key)
        overrides[key] = str(Path(value).expanduser().resolve()) if value else None
    return overrides


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for platybind."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(
        verbose=bool(args.verbose),
        quiet=bool(args.quiet),
        log_file=Path(args.log_file) if args.log_file else None,
    )

    try:
        config = load_config(Path(args.config), _overrides(args))
        files = generate_bindings(config)
    except BindgenError as exc:
        parser.exit(1, f"platybind: error: {exc}\n")
    except OSError as exc:
        parser.exit(1, f"platybind: error: {exc}\nRun with --verbose for more details.\n")

    if args.dry_run:
        for generated in files:
            sys.stdout.write(f"==> {generated.path} <==\n")
            sys.stdout.write(generated.content)
        return

    output_dir = Path(args.output_dir)
    try:
        written = write_files(files, output_dir)
    except OSError as exc:
        parser.exit(1, f"platybind: error: cannot write output: {exc}\n")
    for path in written:
        print(f"Wrote {_relativize(path)}")


def _relativize(path: Path) -> str:
    try:
        return str(path.resolve().relative_to(Path.cwd().resolve()))
    except ValueError:
        return str(path)


if __name__ == "__main__":  # pragma: no cover
    main(sys.argv[1:])
