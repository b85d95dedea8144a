"""CLI parser and entrypoint behaviour tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from platybind.cli import _build_parser, main
from tests._fixtures.crate_builder import CrateBuilder


def test_cli_parses_options() -> None:
    parser = _build_parser()
    args = parser.parse_args(
        [
            "--name",
            "Foo::Bar",
            "--input",
            "rust/lib.rs",
            "--cargo-toml",
            "rust/Cargo.toml",
            "--main-file",
            "lib/Foo.pm",
            "--output-dir",
            "out",
            "--dry-run",
            "--verbose",
        ]
    )

    assert args.name == "Foo::Bar"
    assert args.input == "rust/lib.rs"
    assert args.cargo_toml == "rust/Cargo.toml"
    assert args.main_file == "lib/Foo.pm"
    assert args.output_dir == "out"
    assert args.dry_run is True
    assert args.verbose is True
    assert args.quiet is False


def test_cli_defaults() -> None:
    args = _build_parser().parse_args([])

    assert args.name is None
    assert args.config == "."
    assert args.output_dir == "."
    assert args.dry_run is False
    assert args.log_file is None


def test_cli_writes_generated_files(crate_builder: CrateBuilder, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    crate_builder.write_lib('pub extern "C" fn ping() -> i32 { 0 }\n')
    output_dir = tmp_path / "out"

    main(["--config", str(crate_builder.path()), "--name", "Ping", "--output-dir", str(output_dir), "--quiet"])

    bindings = output_dir / "lib" / "Ping.pm"
    assert bindings.exists()
    assert (output_dir / "lib" / "Ping" / "Types.pm").exists()
    assert "[ 'ping' => 'Ping::_FFI::ping' ]" in bindings.read_text(encoding="utf-8")
    assert "Ping.pm" in capsys.readouterr().out


def test_cli_reads_name_from_config_file(crate_builder: CrateBuilder, tmp_path: Path) -> None:
    crate_builder.write(
        {
            ".platybind.yml": "name: Acme::Ping\nmain_file: lib/Acme/Ping/FFI.pm\n",
            "ffi/src/lib.rs": 'pub extern "C" fn ping() {}\n',
        }
    )
    output_dir = tmp_path / "out"

    main(["--config", str(crate_builder.path() / ".platybind.yml"), "--output-dir", str(output_dir), "--quiet"])

    assert (output_dir / "lib" / "Acme" / "Ping" / "FFI.pm").exists()
    assert (output_dir / "lib" / "Acme" / "Ping" / "Types.pm").exists()


def test_cli_dry_run_prints_instead_of_writing(
    crate_builder: CrateBuilder, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    crate_builder.write_lib('pub extern "C" fn ping() {}\n')
    output_dir = tmp_path / "out"

    main(
        [
            "--config",
            str(crate_builder.path()),
            "--name",
            "Ping",
            "--output-dir",
            str(output_dir),
            "--dry-run",
            "--quiet",
        ]
    )

    out = capsys.readouterr().out
    assert "==> lib/Ping.pm <==" in out
    assert "==> lib/Ping/Types.pm <==" in out
    assert "package Ping;" in out
    assert not output_dir.exists()


def test_cli_input_override_is_relative_to_working_directory(
    crate_builder: CrateBuilder, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    crate_builder.write({"rust/entry.rs": 'pub extern "C" fn elsewhere() {}\n'})
    monkeypatch.chdir(crate_builder.path())
    output_dir = tmp_path / "out"

    main(["--name", "Foo", "--input", "rust/entry.rs", "--output-dir", str(output_dir), "--quiet"])

    assert "elsewhere" in (output_dir / "lib" / "Foo.pm").read_text(encoding="utf-8")


def test_cli_reports_errors_and_writes_nothing(
    crate_builder: CrateBuilder, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    crate_builder.write_lib('pub extern "C" fn attach(widget: *mut Widget) {}\n')
    output_dir = tmp_path / "out"

    with pytest.raises(SystemExit) as excinfo:
        main(["--config", str(crate_builder.path()), "--name", "Foo", "--output-dir", str(output_dir), "--quiet"])

    assert excinfo.value.code == 1
    assert "type `Widget` is not a known primitive or exported crate type" in capsys.readouterr().err
    assert not output_dir.exists()


def test_cli_requires_package_name(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--config", str(tmp_path), "--quiet"])

    assert excinfo.value.code == 1
    assert "`name` is required" in capsys.readouterr().err
