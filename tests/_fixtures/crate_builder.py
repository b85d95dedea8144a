"""Helper utilities for constructing temporary Rust crates in tests."""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Any, List, Mapping

from platybind.config import BindgenConfig
from platybind.extractor import ApiExtractor
from platybind.models import ApiModel, SourceUnit
from platybind.scanner import SourceScanner

DEFAULT_ENTRY = "ffi/src/lib.rs"


class CrateBuilder:
    """Utility for writing a throwaway distribution with an ``ffi/`` crate and scanning it."""

    def __init__(self, tmp_path: Path) -> None:
        self.root = tmp_path / "dist"
        self.root.mkdir()
        self._scanner = SourceScanner()

    def write(self, files: Mapping[str, str]) -> None:
        """Write `path -> contents` entries into the distribution."""
        for relative, content in files.items():
            path = self.root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            normalised = textwrap.dedent(content).lstrip("\n")
            path.write_text(normalised, encoding="utf-8")

    def write_lib(self, content: str) -> None:
        """Write the crate entry file."""
        self.write({DEFAULT_ENTRY: content})

    def scan(self, entry: str = DEFAULT_ENTRY) -> List[SourceUnit]:
        """Return the source units reachable from ``entry``."""
        return self._scanner.scan(self.root / entry)

    def config(self, **overrides: Any) -> BindgenConfig:
        """Return a configuration rooted at the distribution."""
        values: dict[str, Any] = {"name": "Foo::Bar", "root": self.root}
        values.update(overrides)
        return BindgenConfig(**values)

    def extract(self, entry: str = DEFAULT_ENTRY, **overrides: Any) -> ApiModel:
        """Scan ``entry`` and return the extracted model."""
        return ApiExtractor(self.config(**overrides)).extract(self.scan(entry))

    def path(self) -> Path:
        """Return the distribution root path."""
        return self.root


__all__ = ["CrateBuilder", "DEFAULT_ENTRY"]
