"""Core data models shared across platybind components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple, Union


@dataclass(frozen=True)
class SourcePosition:
    """Location of an item in a source file (1-based)."""

    path: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.path}:{self.line}:{self.column}"


@dataclass(frozen=True)
class Attribute:
    """Outer attribute such as ``#[repr(C)]`` or ``#[path = "x.rs"]``."""

    path: str
    args: Tuple[str, ...] = ()
    value: Optional[str] = None


# ---------------------------------------------------------------------------
# Type syntax, as written in the source
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PathType:
    segments: Tuple[str, ...]
    generics: Tuple["TypeSyntax", ...] = ()

    @property
    def name(self) -> str:
        return self.segments[-1]

    def __str__(self) -> str:
        text = "::".join(self.segments)
        if self.generics:
            text += "<" + ", ".join(str(arg) for arg in self.generics) + ">"
        return text


@dataclass(frozen=True)
class PointerType:
    pointee: "TypeSyntax"
    mutable: bool

    def __str__(self) -> str:
        return f"*{'mut' if self.mutable else 'const'} {self.pointee}"


@dataclass(frozen=True)
class ArrayType:
    element: "TypeSyntax"
    length: Optional[str]

    def __str__(self) -> str:
        if self.length is None:
            return f"[{self.element}]"
        return f"[{self.element}; {self.length}]"


@dataclass(frozen=True)
class UnitType:
    def __str__(self) -> str:
        return "()"


@dataclass(frozen=True)
class UnsupportedSyntax:
    """Type construct the extractor never maps (references, tuples, ...)."""

    kind: str
    text: str

    def __str__(self) -> str:
        return self.text


TypeSyntax = Union[PathType, PointerType, ArrayType, UnitType, UnsupportedSyntax]


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Item:
    name: str
    position: SourcePosition
    public: bool = False
    attributes: Tuple[Attribute, ...] = ()

    def has_attribute(self, path: str) -> bool:
        return any(attribute.path == path for attribute in self.attributes)

    def attribute_args(self, path: str) -> Tuple[str, ...]:
        args: List[str] = []
        for attribute in self.attributes:
            if attribute.path == path:
                args.extend(attribute.args)
        return tuple(args)


@dataclass(frozen=True)
class Param:
    name: str
    type: TypeSyntax


@dataclass(frozen=True)
class FunctionItem(Item):
    abi: Optional[str] = None
    params: Tuple[Param, ...] = ()
    return_type: Optional[TypeSyntax] = None
    generic: bool = False


@dataclass(frozen=True)
class FieldSyntax:
    name: str
    type: TypeSyntax


class StructShape(str, Enum):
    NAMED = "named"
    TUPLE = "tuple"
    UNIT = "unit"


@dataclass(frozen=True)
class StructItem(Item):
    shape: StructShape = StructShape.NAMED
    fields: Tuple[FieldSyntax, ...] = ()
    generic: bool = False


@dataclass(frozen=True)
class VariantSyntax:
    name: str
    discriminant: Optional[str] = None
    has_fields: bool = False


@dataclass(frozen=True)
class EnumItem(Item):
    variants: Tuple[VariantSyntax, ...] = ()
    generic: bool = False


@dataclass(frozen=True)
class TypeAliasItem(Item):
    target: TypeSyntax = field(default_factory=UnitType)
    generic: bool = False


@dataclass(frozen=True)
class OtherItem(Item):
    """Anything the extractor does not understand; kept for diagnostics."""

    kind: str = ""


@dataclass(frozen=True)
class SourceUnit:
    """One parsed source file and its top-level items in declaration order."""

    path: str
    module_path: Tuple[str, ...]
    items: Tuple[Item, ...]


# ---------------------------------------------------------------------------
# Resolved types
# ---------------------------------------------------------------------------


class PrimitiveKind(str, Enum):
    SIGNED = "signed"
    UNSIGNED = "unsigned"
    FLOAT = "float"
    BOOL = "bool"
    CHAR = "char"
    VOID = "void"


@dataclass(frozen=True)
class Primitive:
    """Scalar type; ``native`` names platform-width C types (``int``, ``long``)."""

    kind: PrimitiveKind
    width: Optional[int] = None
    native: str = ""

    def __str__(self) -> str:
        if self.native:
            return self.native
        if self.width is None:
            return self.kind.value
        return f"{self.kind.value}{self.width}"


@dataclass(frozen=True)
class Pointer:
    target: "TypeRef"
    mutable: bool
    nullable: bool = True

    def __str__(self) -> str:
        return f"*{'mut' if self.mutable else 'const'} {self.target}"


@dataclass(frozen=True)
class OpaqueHandle:
    name: str

    def __str__(self) -> str:
        return self.name


class AggregateKind(str, Enum):
    STRUCT = "struct"
    ENUM = "enum"


@dataclass(frozen=True)
class Aggregate:
    name: str
    kind: AggregateKind

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Array:
    element: "TypeRef"
    length: int

    def __str__(self) -> str:
        return f"[{self.element}; {self.length}]"


TypeRef = Union[Primitive, Pointer, OpaqueHandle, Aggregate, Array]


# ---------------------------------------------------------------------------
# API model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApiParam:
    name: str
    type: TypeRef


@dataclass(frozen=True)
class ApiFunction:
    name: str
    params: Tuple[ApiParam, ...]
    returns: Optional[TypeRef]
    position: SourcePosition


@dataclass(frozen=True)
class ApiField:
    name: str
    type: TypeRef


@dataclass(frozen=True)
class ApiStruct:
    name: str
    fields: Tuple[ApiField, ...]
    position: SourcePosition
    exported: bool = True


@dataclass(frozen=True)
class ApiVariant:
    name: str
    value: int


@dataclass(frozen=True)
class ApiEnum:
    name: str
    variants: Tuple[ApiVariant, ...]
    position: SourcePosition
    repr: Optional[Primitive] = None
    exported: bool = True

    @property
    def signed(self) -> bool:
        return any(variant.value < 0 for variant in self.variants)


@dataclass(frozen=True)
class ApiTypeAlias:
    name: str
    target: TypeRef
    position: SourcePosition


@dataclass(frozen=True)
class ApiHandle:
    name: str
    position: SourcePosition
    exported: bool = True


ApiItem = Union[ApiFunction, ApiStruct, ApiEnum, ApiTypeAlias, ApiHandle]


@dataclass
class ApiModel:
    """Extracted public surface; a flat, ordered name -> item mapping."""

    items: Dict[str, ApiItem] = field(default_factory=dict)

    def __iter__(self) -> Iterator[ApiItem]:
        return iter(self.items.values())

    def __len__(self) -> int:
        return len(self.items)

    def __contains__(self, name: object) -> bool:
        return name in self.items

    def get(self, name: str) -> Optional[ApiItem]:
        return self.items.get(name)

    @property
    def functions(self) -> List[ApiFunction]:
        return [item for item in self.items.values() if isinstance(item, ApiFunction)]

    @property
    def structs(self) -> List[ApiStruct]:
        return [item for item in self.items.values() if isinstance(item, ApiStruct)]

    @property
    def enums(self) -> List[ApiEnum]:
        return [item for item in self.items.values() if isinstance(item, ApiEnum)]

    @property
    def aliases(self) -> List[ApiTypeAlias]:
        return [item for item in self.items.values() if isinstance(item, ApiTypeAlias)]

    @property
    def handles(self) -> List[ApiHandle]:
        return [item for item in self.items.values() if isinstance(item, ApiHandle)]


@dataclass(frozen=True)
class GeneratedFile:
    """Generated text and the relative path the packaging layer writes it to."""

    path: str
    content: str
