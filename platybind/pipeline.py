"""Pipeline wiring: scan, extract, generate."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, List, Optional

from .config import BindgenConfig, resolve_entry_file
from .extractor import ApiExtractor, NameRegistry
from .generator import BindingGenerator
from .logging import get_logger
from .models import GeneratedFile
from .scanner import SourceScanner

logger = get_logger("pipeline")


def generate_bindings(config: BindgenConfig, *, templates_dir: Path | None = None) -> List[GeneratedFile]:
    """Run every phase for ``config`` and return the generated files.

    Nothing is written to disk; any :class:`~platybind.errors.BindgenError`
    propagates before output exists.
    """
    entry = resolve_entry_file(config)
    logger.info("Scanning %s", entry)
    units = SourceScanner().scan(entry)
    logger.info("Parsed %d source file(s)", len(units))

    extractor = ApiExtractor(config, registry=NameRegistry())
    model = extractor.extract(units)
    logger.info(
        "Extracted %d function(s), %d record(s), %d enum(s), %d handle(s)",
        len(model.functions),
        len(model.structs),
        len(model.enums),
        len(model.handles),
    )

    generator = BindingGenerator(config.name, main_file=config.main_file, templates_dir=templates_dir)
    files = generator.generate(model, source=_display_path(entry, config.root))
    logger.info("Generated %s", ", ".join(generated.path for generated in files))
    return files


def write_files(files: Iterable[GeneratedFile], output_dir: Path) -> List[Path]:
    """Write generated files below ``output_dir`` and return their paths."""
    written: List[Path] = []
    for generated in files:
        target = output_dir / generated.path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(generated.content, encoding="utf-8")
        logger.debug("Wrote %s", target)
        written.append(target)
    return written


def _display_path(path: Path, root: Optional[Path]) -> str:
    if root is not None:
        try:
            return Path(os.path.relpath(path.resolve(), root.resolve())).as_posix()
        except ValueError:
            pass
    return path.as_posix()


__all__ = ["generate_bindings", "write_files"]
