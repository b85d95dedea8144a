"""Error taxonomy shared by the scanner, extractor and generator."""

from __future__ import annotations

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .models import SourcePosition


class BindgenError(RuntimeError):
    """Base class for every failure that aborts a binding run."""

    def __init__(
        self,
        message: str,
        *,
        item: Optional[str] = None,
        position: Optional["SourcePosition"] = None,
    ) -> None:
        self.message = message
        self.item = item
        self.position = position
        super().__init__(self._format())

    @property
    def path(self) -> Optional[str]:
        return self.position.path if self.position is not None else None

    def _format(self) -> str:
        prefix = f"{self.position}: " if self.position is not None else ""
        suffix = f" (in `{self.item}`)" if self.item else ""
        return f"{prefix}{self.message}{suffix}"


class ConfigError(BindgenError):
    """Raised when configuration values are missing or malformed."""


class UnreadableSource(BindgenError):
    """Raised when a source file is missing, undecodable or fails to parse."""

    def __init__(self, path: str, reason: str, *, position: Optional["SourcePosition"] = None) -> None:
        self.source_path = path
        self.reason = reason
        super().__init__(f"cannot read {path}: {reason}", position=position)

    @property
    def path(self) -> Optional[str]:
        return self.source_path


class UnresolvedType(BindgenError):
    """Raised when a type name never resolves to a primitive or crate type."""

    def __init__(
        self,
        name: str,
        *,
        item: Optional[str] = None,
        position: Optional["SourcePosition"] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.name = name
        detail = reason or "is not a known primitive or exported crate type"
        super().__init__(f"type `{name}` {detail}", item=item, position=position)


class UnsupportedType(UnresolvedType):
    """Raised when a type resolves but has no stable foreign representation."""

    def __init__(
        self,
        name: str,
        reason: str,
        *,
        item: Optional[str] = None,
        position: Optional["SourcePosition"] = None,
    ) -> None:
        super().__init__(name, item=item, position=position, reason=f"is not supported: {reason}")


class DuplicateSymbol(BindgenError):
    """Raised when two items compete for the same foreign name."""

    def __init__(
        self,
        name: str,
        *,
        position: Optional["SourcePosition"] = None,
        previous: Optional["SourcePosition"] = None,
    ) -> None:
        self.name = name
        self.previous = previous
        message = f"symbol `{name}` is declared more than once"
        if previous is not None:
            message += f" (first declared at {previous})"
        super().__init__(message, position=position)


class InvalidEnum(BindgenError):
    """Raised when enum discriminants are not literal, collide or overflow."""


class UnmappedTarget(BindgenError):
    """Raised when the generator meets a type with no target mapping.

    The extractor rejects every type the generator cannot map, so this
    signals a defect in the tool rather than in the input.
    """


__all__ = [
    "BindgenError",
    "ConfigError",
    "DuplicateSymbol",
    "InvalidEnum",
    "UnmappedTarget",
    "UnreadableSource",
    "UnresolvedType",
    "UnsupportedType",
]
