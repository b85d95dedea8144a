"""Type tables: Rust spellings to primitives, and resolved types to Platypus tokens.

Every FFI::Platypus type string the generator emits comes from this module,
so a wrong type on the Perl side traces back to one entry here.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional

from .errors import ConfigError, UnmappedTarget
from .models import (
    Aggregate,
    AggregateKind,
    Array,
    OpaqueHandle,
    Pointer,
    Primitive,
    PrimitiveKind,
    TypeRef,
)

_S = PrimitiveKind.SIGNED
_U = PrimitiveKind.UNSIGNED
_F = PrimitiveKind.FLOAT

VOID = Primitive(PrimitiveKind.VOID)
C_CHAR = Primitive(PrimitiveKind.CHAR, 8)

# Rust spelling -> primitive. Extended through the ``types`` configuration key.
DEFAULT_PRIMITIVES: Dict[str, Primitive] = {
    "i8": Primitive(_S, 8),
    "i16": Primitive(_S, 16),
    "i32": Primitive(_S, 32),
    "i64": Primitive(_S, 64),
    "u8": Primitive(_U, 8),
    "u16": Primitive(_U, 16),
    "u32": Primitive(_U, 32),
    "u64": Primitive(_U, 64),
    "f32": Primitive(_F, 32),
    "f64": Primitive(_F, 64),
    "bool": Primitive(PrimitiveKind.BOOL, 8),
    # Rust `char` is a Unicode scalar value, ABI-compatible with uint32_t.
    "char": Primitive(_U, 32),
    "isize": Primitive(_S, None, "ssize_t"),
    "usize": Primitive(_U, None, "size_t"),
    "c_char": C_CHAR,
    "c_schar": Primitive(_S, 8),
    "c_uchar": Primitive(_U, 8),
    "c_short": Primitive(_S, None, "short"),
    "c_ushort": Primitive(_U, None, "ushort"),
    "c_int": Primitive(_S, None, "int"),
    "c_uint": Primitive(_U, None, "uint"),
    "c_long": Primitive(_S, None, "long"),
    "c_ulong": Primitive(_U, None, "ulong"),
    "c_longlong": Primitive(_S, None, "longlong"),
    "c_ulonglong": Primitive(_U, None, "ulonglong"),
    "c_float": Primitive(_F, 32),
    "c_double": Primitive(_F, 64),
    "c_void": VOID,
    "size_t": Primitive(_U, None, "size_t"),
    "ssize_t": Primitive(_S, None, "ssize_t"),
}

# Primitive -> FFI::Platypus type token.
PLATYPUS_TOKENS: Dict[Primitive, str] = {
    Primitive(_S, 8): "sint8",
    Primitive(_S, 16): "sint16",
    Primitive(_S, 32): "sint32",
    Primitive(_S, 64): "sint64",
    Primitive(_U, 8): "uint8",
    Primitive(_U, 16): "uint16",
    Primitive(_U, 32): "uint32",
    Primitive(_U, 64): "uint64",
    Primitive(_F, 32): "float",
    Primitive(_F, 64): "double",
    Primitive(PrimitiveKind.BOOL, 8): "uint8",
    C_CHAR: "char",
    Primitive(_S, None, "ssize_t"): "ssize_t",
    Primitive(_U, None, "size_t"): "size_t",
    Primitive(_S, None, "short"): "short",
    Primitive(_U, None, "ushort"): "ushort",
    Primitive(_S, None, "int"): "int",
    Primitive(_U, None, "uint"): "uint",
    Primitive(_S, None, "long"): "long",
    Primitive(_U, None, "ulong"): "ulong",
    Primitive(_S, None, "longlong"): "longlong",
    Primitive(_U, None, "ulonglong"): "ulonglong",
    VOID: "void",
}

# Path prefixes whose last segment may name a primitive (`std::os::raw::c_int`, `libc::size_t`).
PRIMITIVE_PATH_ROOTS = frozenset({"std", "core", "libc", "ffi", "raw"})

# Integer types an enum may name in `#[repr(...)]`.
ENUM_REPRS = frozenset({"i8", "i16", "i32", "i64", "u8", "u16", "u32", "u64", "isize", "usize"})


def build_primitive_table(extra: Optional[Mapping[str, str]] = None) -> Dict[str, Primitive]:
    """Return the default primitive table extended with configured spellings.

    Each extra value must be an existing Rust primitive spelling (``i32``) or a
    Platypus token (``sint32``).
    """
    table = dict(DEFAULT_PRIMITIVES)
    if not extra:
        return table
    by_token: Dict[str, Primitive] = {}
    for primitive, token in PLATYPUS_TOKENS.items():
        by_token.setdefault(token, primitive)
    for spelling, target in extra.items():
        if target in DEFAULT_PRIMITIVES:
            table[spelling] = DEFAULT_PRIMITIVES[target]
        elif target in by_token:
            table[spelling] = by_token[target]
        else:
            raise ConfigError(
                f"type mapping `{spelling}: {target}` does not name a Rust primitive or Platypus type"
            )
    return table


def integer_range(primitive: Primitive) -> Optional[tuple[int, int]]:
    """Return the inclusive value range for fixed-width integers."""
    if primitive.width is None or primitive.kind not in (_S, _U):
        return None
    if primitive.kind is _U:
        return 0, (1 << primitive.width) - 1
    half = 1 << (primitive.width - 1)
    return -half, half - 1


class TypeMapper:
    """Translate resolved types into FFI::Platypus type strings for one package."""

    def __init__(self, package: str, tokens: Optional[Mapping[Primitive, str]] = None) -> None:
        self.package = package
        self.types_package = f"{package}::Types"
        self._tokens = dict(tokens or PLATYPUS_TOKENS)

    def class_name(self, name: str) -> str:
        """Perl class used for a record, enum or handle declared as ``name``.

        Classes live below ``<package>::Types`` so they never clash with the
        constructor subs the bindings package exports under the same names.
        """
        return f"{self.types_package}::{name}"

    def primitive(self, primitive: Primitive) -> str:
        token = self._tokens.get(primitive)
        if token is None:
            raise UnmappedTarget(f"no Platypus type for primitive `{primitive}`")
        return token

    def enum_base(self, signed: bool, repr: Optional[Primitive]) -> str:
        """Underlying integer type registered for an enum."""
        if repr is None:
            return "senum" if signed else "enum"
        return self.primitive(repr)

    def alias_target(self, ref: TypeRef) -> str:
        """Type registered for a named record, handle or plain alias."""
        if isinstance(ref, Aggregate) and ref.kind is AggregateKind.STRUCT:
            return f"record({self.class_name(ref.name)})"
        if isinstance(ref, OpaqueHandle):
            return f"object({self.class_name(ref.name)})"
        return self.signature(ref)

    def signature(self, ref: Optional[TypeRef]) -> str:
        """Type string for an ``attach`` argument or return slot."""
        if ref is None:
            return "void"
        if isinstance(ref, Primitive):
            if ref.kind is PrimitiveKind.VOID:
                raise UnmappedTarget("`void` is only valid behind a pointer")
            return self.primitive(ref)
        if isinstance(ref, Aggregate):
            return ref.name
        if isinstance(ref, Pointer):
            return self._pointer(ref)
        raise UnmappedTarget(f"no Platypus signature type for `{ref}`")

    def _pointer(self, ref: Pointer) -> str:
        target = ref.target
        if isinstance(target, OpaqueHandle):
            # Registered as object(Class): Perl sees a blessed handle, never an address.
            return target.name
        if isinstance(target, Primitive):
            if target.kind is PrimitiveKind.VOID:
                return "opaque"
            if target == C_CHAR:
                return "string"
            return f"{self.primitive(target)}*"
        if isinstance(target, Aggregate):
            if target.kind is AggregateKind.STRUCT:
                return f"record({self.class_name(target.name)})*"
            return f"{target.name}*"
        raise UnmappedTarget(f"no Platypus pointer type for `{ref}`")

    def field(self, ref: TypeRef, enum_bases: Mapping[str, str]) -> str:
        """Type string for a ``record_layout_1`` field."""
        if isinstance(ref, Primitive) and ref.kind is not PrimitiveKind.VOID:
            return self.primitive(ref)
        if isinstance(ref, Aggregate) and ref.kind is AggregateKind.ENUM:
            base = enum_bases.get(ref.name)
            if base is None:
                raise UnmappedTarget(f"enum `{ref.name}` has no registered base type")
            return base
        if isinstance(ref, Array) and isinstance(ref.element, Primitive):
            if ref.element == C_CHAR:
                return f"string({ref.length})"
            return f"{self.primitive(ref.element)}[{ref.length}]"
        if isinstance(ref, Pointer):
            if ref.target == C_CHAR:
                return "string rw" if ref.mutable else "string ro"
            return "opaque"
        raise UnmappedTarget(f"no Platypus record field type for `{ref}`")

    @staticmethod
    def is_hidden_field(ref: TypeRef) -> bool:
        """Raw pointer fields whose accessor is kept off the public surface."""
        return isinstance(ref, Pointer) and ref.target != C_CHAR


__all__ = [
    "C_CHAR",
    "DEFAULT_PRIMITIVES",
    "ENUM_REPRS",
    "PLATYPUS_TOKENS",
    "PRIMITIVE_PATH_ROOTS",
    "TypeMapper",
    "VOID",
    "build_primitive_table",
    "integer_range",
]
