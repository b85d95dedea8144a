"""Configuration loading for platybind (.platybind.yml)."""

from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError

CONFIG_FILE_NAME = ".platybind.yml"
DEFAULT_INPUT = Path("ffi/src/lib.rs")
DEFAULT_CARGO_TOML = Path("ffi/Cargo.toml")

_PACKAGE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(?:::[A-Za-z_][A-Za-z0-9_]*)*$")


@dataclass
class BindgenConfig:
    """Represents the settings of one binding run."""

    name: str
    root: Path
    input: Optional[Path] = None
    cargo_toml: Optional[Path] = None
    main_file: Optional[str] = None
    abi: str = "C"
    require_no_mangle: bool = False
    types: Dict[str, str] = field(default_factory=dict)


def load_config(config_path: Optional[Path] = None, overrides: Optional[Mapping[str, Any]] = None) -> BindgenConfig:
    """Load configuration from disk and apply command-line overrides.

    A missing configuration file is not an error as long as the overrides
    supply the package name. Relative paths in the file resolve against the
    directory holding it.
    """
    config_file = _resolve_config_path(config_path or Path.cwd())
    root = config_file.parent

    data: Dict[str, Any] = {}
    if config_file.exists():
        data = _read_config(config_file)
    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    name = _as_str(data.get("name"))
    if not name:
        raise ConfigError(f"`name` is required (set it in {CONFIG_FILE_NAME} or pass --name)")
    if not _PACKAGE_NAME.match(name):
        raise ConfigError(f"`name` must be a Perl package name such as Foo::Bar, got {name!r}")

    abi = _as_str(data.get("abi")) or "C"
    require_no_mangle = _as_bool(data.get("require_no_mangle"))
    if data.get("require_no_mangle") is not None and require_no_mangle is None:
        raise ConfigError("`require_no_mangle` must be a boolean")

    main_file = _as_str(data.get("main_file"))
    if main_file is not None and (Path(main_file).is_absolute() or ".." in Path(main_file).parts):
        raise ConfigError(f"`main_file` must be a relative path inside the distribution, got {main_file!r}")

    return BindgenConfig(
        name=name,
        root=root,
        input=_as_path(root, data.get("input")),
        cargo_toml=_as_path(root, data.get("cargo_toml")),
        main_file=main_file,
        abi=abi,
        require_no_mangle=bool(require_no_mangle),
        types=_as_str_mapping(data.get("types"), "types"),
    )


def resolve_entry_file(config: BindgenConfig) -> Path:
    """Return the crate entry file for ``config``.

    An explicit ``input`` wins. Otherwise the Cargo manifest's ``[lib] path``
    is used, falling back to ``src/lib.rs`` next to the manifest.
    """
    if config.input is not None:
        return config.input

    manifest = config.cargo_toml or (config.root / DEFAULT_CARGO_TOML)
    if not manifest.is_file():
        return config.root / DEFAULT_INPUT

    try:
        data = tomllib.loads(manifest.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Failed to parse {manifest}: {exc}") from exc

    lib = _as_dict(data.get("lib"))
    lib_path = _as_str(lib.get("path"))
    if lib_path:
        return (manifest.parent / lib_path).resolve()
    return manifest.parent / "src" / "lib.rs"


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILE_NAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"{path.name} must contain a mapping at the root")
    return loaded


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, Path):
        return str(value)
    return str(value) if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_path(root: Path, value: Any) -> Optional[Path]:
    text = _as_str(value)
    if not text:
        return None
    path = Path(text).expanduser()
    return path if path.is_absolute() else (root / path)


def _as_str_mapping(value: Any, key: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"`{key}` must be a mapping")
    result: Dict[str, str] = {}
    for name, target in value.items():
        name_text, target_text = _as_str(name), _as_str(target)
        if not name_text or not target_text:
            raise ConfigError(f"`{key}` entries must map names to type names, got {name!r}: {target!r}")
        result[name_text] = target_text
    return result


__all__ = [
    "BindgenConfig",
    "CONFIG_FILE_NAME",
    "DEFAULT_CARGO_TOML",
    "DEFAULT_INPUT",
    "load_config",
    "resolve_entry_file",
]
