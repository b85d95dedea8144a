"""API extraction: from scanned Rust items to the flat binding model."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .config import BindgenConfig
from .errors import DuplicateSymbol, InvalidEnum, UnresolvedType, UnsupportedType
from .logging import get_logger
from .models import (
    Aggregate,
    AggregateKind,
    ApiEnum,
    ApiField,
    ApiFunction,
    ApiHandle,
    ApiItem,
    ApiModel,
    ApiParam,
    ApiStruct,
    ApiTypeAlias,
    ApiVariant,
    Array,
    ArrayType,
    EnumItem,
    FunctionItem,
    Item,
    OpaqueHandle,
    OtherItem,
    PathType,
    Pointer,
    PointerType,
    Primitive,
    PrimitiveKind,
    SourcePosition,
    SourceUnit,
    StructItem,
    StructShape,
    TypeAliasItem,
    TypeRef,
    TypeSyntax,
    UnitType,
    UnsupportedSyntax,
)
from .typemap import DEFAULT_PRIMITIVES, ENUM_REPRS, PRIMITIVE_PATH_ROOTS, build_primitive_table, integer_range

_INT_LITERAL = re.compile(
    r"^(?P<sign>-)?\s*(?P<body>0[xX][0-9a-fA-F_]+|0[oO][0-7_]+|0[bB][01_]+|[0-9][0-9_]*)"
    r"(?P<suffix>[iu](?:8|16|32|64|128|size))?$"
)
_RADIX = {"x": 16, "o": 8, "b": 2}

_UNSUPPORTED_SYNTAX = {
    "function_type": "function pointers are not supported",
    "reference_type": "references are not supported; use a raw pointer",
    "tuple_type": "tuples are not supported",
    "never_type": "the never type is not supported",
    "dynamic_type": "trait objects are not supported",
    "abstract_type": "impl trait is not supported",
    "bounded_type": "trait objects are not supported",
    "macro_invocation": "macros are not supported",
    "self_parameter": "methods taking self cannot be exported",
    "variadic_parameter": "variadic functions are not supported",
}

# Qualified paths starting here always refer to this crate.
_LOCAL_PATH_ROOTS = frozenset({"crate", "self", "super"})

_PARAM = "parameter"
_RETURN = "return"
_FIELD = "field"
_ALIAS = "alias"

_C_INT_SIGNED = (-(1 << 31), (1 << 31) - 1)
_C_INT_UNSIGNED = (0, (1 << 32) - 1)


def parse_int_literal(text: str) -> Optional[int]:
    """Parse a Rust integer literal (``0x1F``, ``1_000u32``, ``-0b10``) or return ``None``."""
    match = _INT_LITERAL.match(text.strip())
    if match is None:
        return None
    body = match.group("body").replace("_", "")
    base = 10
    if len(body) > 1 and body[0] == "0" and body[1].lower() in _RADIX:
        base = _RADIX[body[1].lower()]
        body = body[2:]
    if not body:
        return None
    value = int(body, base)
    return -value if match.group("sign") else value


class NameRegistry:
    """Foreign names claimed during one binding run."""

    def __init__(self) -> None:
        self._positions: Dict[str, SourcePosition] = {}

    def register(self, name: str, position: SourcePosition) -> None:
        previous = self._positions.get(name)
        if previous is not None:
            raise DuplicateSymbol(name, position=position, previous=previous)
        self._positions[name] = position

    def __contains__(self, name: object) -> bool:
        return name in self._positions

    def __len__(self) -> int:
        return len(self._positions)


class ApiExtractor:
    """Builds an :class:`ApiModel` from scanned source units.

    Extraction runs in two phases. Every struct, enum and alias declaration
    is collected first, so references resolve regardless of declaration
    order. Items outside the foreign-callable surface are skipped; any
    exported item that depends on an unmappable type aborts the run.
    """

    def __init__(self, config: Optional[BindgenConfig] = None, registry: Optional[NameRegistry] = None) -> None:
        self.abi = config.abi if config is not None else "C"
        self.require_no_mangle = config.require_no_mangle if config is not None else False
        self.primitives = build_primitive_table(config.types if config is not None else None)
        self.registry = registry if registry is not None else NameRegistry()
        self.logger = get_logger("extractor")

    def extract(self, units: Sequence[SourceUnit]) -> ApiModel:
        run = _ExtractionRun(self, units)
        run.visit_all()
        run.promote()
        model = run.build(self.registry)
        run.log_summary(model)
        return model

    def exports(self, item: FunctionItem) -> Optional[str]:
        """Return why ``item`` is not foreign-callable, or ``None`` when it is."""
        if not item.public:
            return "not public"
        if item.abi is None:
            return "not extern"
        if item.abi != self.abi:
            return f'extern "{item.abi}"'
        if item.generic:
            return "generic"
        if self.require_no_mangle and not item.has_attribute("no_mangle"):
            return "missing #[no_mangle]"
        return None


class _ExtractionRun:
    """Mutable state of one :meth:`ApiExtractor.extract` call."""

    def __init__(self, extractor: ApiExtractor, units: Sequence[SourceUnit]) -> None:
        self.extractor = extractor
        self.primitives = extractor.primitives
        self.logger = extractor.logger

        self.items: List[Item] = []
        self.order: Dict[Item, int] = {}
        self.declarations: Dict[str, List[Item]] = {}
        # First segments under which a qualified path names this crate's items.
        self.local_roots: Set[str] = set(_LOCAL_PATH_ROOTS)
        for unit in units:
            self.local_roots.update(unit.module_path)
            for item in unit.items:
                self.order[item] = len(self.items)
                self.items.append(item)
                if isinstance(item, (StructItem, EnumItem, TypeAliasItem)):
                    self.declarations.setdefault(item.name, []).append(item)
                elif isinstance(item, OtherItem) and item.kind == "mod_item":
                    self.local_roots.add(item.name)

        self.results: Dict[Item, ApiItem] = {}
        self.enums: Dict[Item, ApiEnum] = {}
        # Private declarations reached from the exported surface.
        self.reached: Dict[str, Item] = {}
        self.by_value: Set[str] = set()
        self.demoted: Set[str] = set()
        self.skipped: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Phase two: walk the surface
    # ------------------------------------------------------------------

    def visit_all(self) -> None:
        for item in self.items:
            if isinstance(item, FunctionItem):
                self._visit_function(item)
            elif isinstance(item, OtherItem):
                self.skipped[f"other ({item.kind})"] += 1
            elif not item.public:
                continue
            elif getattr(item, "generic", False):
                self.logger.debug("Skipping generic item `%s` at %s", item.name, item.position)
                self.skipped["generic"] += 1
            elif isinstance(item, StructItem):
                self._visit_struct(item)
            elif isinstance(item, EnumItem):
                self._visit_enum(item)
            elif isinstance(item, TypeAliasItem):
                self._visit_alias(item)

    def _visit_function(self, item: FunctionItem) -> None:
        reason = self.extractor.exports(item)
        if reason is not None:
            if item.public and item.abi is not None:
                self.logger.debug("Skipping function `%s` at %s: %s", item.name, item.position, reason)
            self.skipped[f"function, {reason}"] += 1
            return
        params = tuple(
            ApiParam(name=param.name, type=self._surface_type(param.type, _PARAM, item.name, item.position))
            for param in item.params
        )
        returns: Optional[TypeRef] = None
        if item.return_type is not None and not isinstance(item.return_type, UnitType):
            returns = self._surface_type(item.return_type, _RETURN, item.name, item.position)
        self.results[item] = ApiFunction(name=item.name, params=params, returns=returns, position=item.position)

    def _visit_struct(self, item: StructItem) -> None:
        if self._is_record(item):
            self.results[item] = self._record(item, exported=True)
        else:
            self.results[item] = ApiHandle(name=item.name, position=item.position)

    def _visit_enum(self, item: EnumItem) -> None:
        problem = self._enum_problem(item)
        if problem is not None:
            self.logger.debug("Skipping enum `%s` at %s: %s", item.name, item.position, problem)
            self.skipped["enum without C layout"] += 1
            return
        self.results[item] = self._enum(item)

    def _visit_alias(self, item: TypeAliasItem) -> None:
        if item.has_attribute("opaque"):
            self.results[item] = ApiHandle(name=item.name, position=item.position)
            return
        reached, by_value = dict(self.reached), set(self.by_value)
        try:
            target = self._surface_type(item.target, _ALIAS, item.name, item.position)
        except UnresolvedType as exc:
            # Unreferenced aliases such as callback types or re-exports from
            # other crates are left out; a reference from the surface
            # re-raises through the resolver.
            self.reached, self.by_value = reached, by_value
            self.logger.debug("Skipping alias `%s`: %s", item.name, exc)
            reason = "alias without C layout" if isinstance(exc, UnsupportedType) else "alias to unknown type"
            self.skipped[reason] += 1
            return
        self.results[item] = ApiTypeAlias(name=item.name, target=target, position=item.position)

    def promote(self) -> None:
        """Emit descriptors for private declarations the surface depends on."""
        done: Set[str] = set()
        while True:
            pending = [name for name in self.reached if name not in done]
            if not pending:
                return
            for name in pending:
                done.add(name)
                item = self.reached[name]
                if isinstance(item, EnumItem):
                    self.results[item] = replace(self._enum(item), exported=False)
                    kind = "enum"
                elif isinstance(item, StructItem) and self._is_record(item) and name in self.by_value:
                    self.results[item] = self._record(item, exported=False)
                    kind = "record"
                else:
                    self.results[item] = ApiHandle(name=name, position=item.position, exported=False)
                    if isinstance(item, StructItem) and self._is_record(item):
                        self.demoted.add(name)
                    kind = "opaque handle"
                self.logger.debug("Promoted private `%s` as %s", name, kind)

    def build(self, registry: NameRegistry) -> ApiModel:
        model = ApiModel()
        for item in sorted(self.results, key=self.order.__getitem__):
            api_item = self._finalize(self.results[item])
            registry.register(api_item.name, item.position)
            model.items[api_item.name] = api_item
        return model

    def log_summary(self, model: ApiModel) -> None:
        if self.skipped:
            details = ", ".join(f"{count} {reason}" for reason, count in sorted(self.skipped.items()))
            self.logger.debug("Skipped %d item(s): %s", sum(self.skipped.values()), details)
        self.logger.debug(
            "Model: %d function(s), %d record(s), %d enum(s), %d alias(es), %d handle(s)",
            len(model.functions),
            len(model.structs),
            len(model.enums),
            len(model.aliases),
            len(model.handles),
        )

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    @staticmethod
    def _is_record(item: StructItem) -> bool:
        return (
            not item.generic
            and item.shape is StructShape.NAMED
            and bool(item.fields)
            and "C" in item.attribute_args("repr")
            and not item.has_attribute("opaque")
        )

    def _record(self, item: StructItem, exported: bool) -> ApiStruct:
        fields = tuple(
            ApiField(
                name=field.name,
                type=self._surface_type(field.type, _FIELD, f"{item.name}.{field.name}", item.position),
            )
            for field in item.fields
        )
        return ApiStruct(name=item.name, fields=fields, position=item.position, exported=exported)

    @staticmethod
    def _enum_repr(item: EnumItem) -> Tuple[bool, Optional[Primitive]]:
        args = item.attribute_args("repr")
        for arg in args:
            if arg in ENUM_REPRS:
                return True, DEFAULT_PRIMITIVES[arg]
        return "C" in args, None

    def _enum_problem(self, item: EnumItem) -> Optional[str]:
        if item.generic:
            return "generic enums are not supported"
        if any(variant.has_fields for variant in item.variants):
            return "enums with fields have no C layout"
        if not item.variants:
            return "enums without variants cannot be represented"
        has_repr, _ = self._enum_repr(item)
        if not has_repr:
            return "enums need #[repr(C)] or an integer #[repr]"
        return None

    def _enum(self, item: EnumItem) -> ApiEnum:
        cached = self.enums.get(item)
        if cached is not None:
            return cached
        problem = self._enum_problem(item)
        if problem is not None:
            raise UnsupportedType(item.name, problem, item=item.name, position=item.position)

        _, repr_type = self._enum_repr(item)
        variants: List[ApiVariant] = []
        seen: Dict[int, str] = {}
        next_value = 0
        for variant in item.variants:
            value = next_value
            if variant.discriminant is not None:
                parsed = parse_int_literal(variant.discriminant)
                if parsed is None:
                    raise InvalidEnum(
                        f"discriminant of `{item.name}::{variant.name}` must be an integer literal,"
                        f" got `{variant.discriminant}`",
                        item=item.name,
                        position=item.position,
                    )
                value = parsed
            if value in seen:
                raise InvalidEnum(
                    f"`{item.name}::{variant.name}` reuses discriminant {value} of `{item.name}::{seen[value]}`",
                    item=item.name,
                    position=item.position,
                )
            seen[value] = variant.name
            variants.append(ApiVariant(name=variant.name, value=value))
            next_value = value + 1

        low, high = self._enum_range(repr_type, variants)
        for variant in variants:
            if not low <= variant.value <= high:
                raise InvalidEnum(
                    f"discriminant {variant.value} of `{item.name}::{variant.name}`"
                    f" does not fit {repr_type or 'a C int'}",
                    item=item.name,
                    position=item.position,
                )

        api_enum = ApiEnum(
            name=item.name,
            variants=tuple(variants),
            position=item.position,
            repr=repr_type,
            exported=item.public,
        )
        self.enums[item] = api_enum
        return api_enum

    @staticmethod
    def _enum_range(repr_type: Optional[Primitive], variants: Sequence[ApiVariant]) -> Tuple[int, int]:
        if repr_type is None:
            return _C_INT_SIGNED if any(v.value < 0 for v in variants) else _C_INT_UNSIGNED
        bounds = integer_range(repr_type)
        if bounds is not None:
            return bounds
        # isize/usize: assume a 64-bit target.
        if repr_type.kind is PrimitiveKind.SIGNED:
            return -(1 << 63), (1 << 63) - 1
        return 0, (1 << 64) - 1

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def _surface_type(self, syntax: TypeSyntax, site: str, owner: str, position: SourcePosition) -> TypeRef:
        """Resolve ``syntax`` and enforce where the resolved shape may appear."""
        ref = self._resolve(syntax, owner, position, ())

        def reject(reason: str) -> UnsupportedType:
            return UnsupportedType(str(syntax), reason, item=owner, position=position)

        if isinstance(ref, Pointer):
            if isinstance(ref.target, Pointer):
                raise reject("pointers to pointers are not supported")
            if isinstance(ref.target, Array):
                raise reject("pointers to arrays are not supported")
            return ref
        if isinstance(ref, Primitive) and ref.kind is PrimitiveKind.VOID:
            raise reject("`void` is only valid behind a pointer")
        if isinstance(ref, OpaqueHandle):
            raise reject(f"opaque type `{ref.name}` is only usable behind a pointer")
        if isinstance(ref, Array):
            if site != _FIELD:
                raise reject("arrays are only supported as struct fields")
            if not isinstance(ref.element, Primitive) or ref.element.kind is PrimitiveKind.VOID:
                raise reject("array elements must be primitive types")
            return ref
        if isinstance(ref, Aggregate) and ref.kind is AggregateKind.STRUCT:
            if site == _FIELD:
                raise reject("structs cannot be nested by value inside records")
            self.by_value.add(ref.name)
        return ref

    def _resolve(
        self,
        syntax: TypeSyntax,
        owner: str,
        position: SourcePosition,
        aliases: Tuple[str, ...],
    ) -> TypeRef:
        if isinstance(syntax, PointerType):
            if isinstance(syntax.pointee, UnitType):
                raise UnsupportedType(
                    str(syntax), "pointers to `()` are not supported; use c_void", item=owner, position=position
                )
            return Pointer(target=self._resolve(syntax.pointee, owner, position, aliases), mutable=syntax.mutable)
        if isinstance(syntax, ArrayType):
            if syntax.length is None:
                raise UnsupportedType(str(syntax), "slices are not supported", item=owner, position=position)
            length = parse_int_literal(syntax.length)
            if length is None or length <= 0:
                raise UnsupportedType(
                    str(syntax), "array lengths must be positive integer literals", item=owner, position=position
                )
            return Array(element=self._resolve(syntax.element, owner, position, aliases), length=length)
        if isinstance(syntax, UnitType):
            raise UnsupportedType("()", "`()` is only valid as a return type", item=owner, position=position)
        if isinstance(syntax, UnsupportedSyntax):
            reason = _UNSUPPORTED_SYNTAX.get(syntax.kind, f"{syntax.kind.replace('_', ' ')} is not supported")
            raise UnsupportedType(syntax.text, reason, item=owner, position=position)
        return self._resolve_path(syntax, owner, position, aliases)

    def _resolve_path(
        self,
        path: PathType,
        owner: str,
        position: SourcePosition,
        aliases: Tuple[str, ...],
    ) -> TypeRef:
        if path.generics:
            if path.name == "NonNull" and len(path.generics) == 1:
                target = self._resolve(path.generics[0], owner, position, aliases)
                return Pointer(target=target, mutable=True, nullable=False)
            raise UnsupportedType(str(path), "generic types are not supported", item=owner, position=position)

        if len(path.segments) > 1 and path.segments[0] in PRIMITIVE_PATH_ROOTS:
            primitive = self.primitives.get(path.name)
            if primitive is None:
                raise UnresolvedType(str(path), item=owner, position=position)
            return primitive
        if len(path.segments) == 1 and path.name in self.primitives:
            return self.primitives[path.name]
        if len(path.segments) > 1 and path.segments[0] not in self.local_roots:
            raise UnresolvedType(
                str(path), item=owner, position=position, reason="is not declared in this crate"
            )

        candidates = self.declarations.get(path.name)
        if not candidates:
            raise UnresolvedType(str(path), item=owner, position=position)
        if len(candidates) > 1:
            raise DuplicateSymbol(path.name, position=candidates[1].position, previous=candidates[0].position)
        declaration = candidates[0]

        if getattr(declaration, "generic", False):
            raise UnsupportedType(str(path), "generic types are not supported", item=owner, position=position)
        if isinstance(declaration, TypeAliasItem):
            if declaration.has_attribute("opaque"):
                self._reach(declaration)
                return OpaqueHandle(declaration.name)
            if declaration.name in aliases:
                cycle = " -> ".join(aliases + (declaration.name,))
                raise UnresolvedType(
                    declaration.name, item=owner, position=position, reason=f"is part of an alias cycle ({cycle})"
                )
            return self._resolve(declaration.target, owner, position, aliases + (declaration.name,))
        if isinstance(declaration, EnumItem):
            self._enum(declaration)
            self._reach(declaration)
            return Aggregate(name=declaration.name, kind=AggregateKind.ENUM)

        assert isinstance(declaration, StructItem)
        self._reach(declaration)
        if self._is_record(declaration):
            return Aggregate(name=declaration.name, kind=AggregateKind.STRUCT)
        return OpaqueHandle(declaration.name)

    def _reach(self, declaration: Item) -> None:
        if not declaration.public:
            self.reached.setdefault(declaration.name, declaration)

    def _finalize(self, api_item: ApiItem) -> ApiItem:
        """Point pointers at private records used only by reference to their handles."""
        if not self.demoted:
            return api_item
        if isinstance(api_item, ApiFunction):
            params = tuple(replace(param, type=self._demote(param.type)) for param in api_item.params)
            returns = self._demote(api_item.returns) if api_item.returns is not None else None
            return replace(api_item, params=params, returns=returns)
        if isinstance(api_item, ApiStruct):
            fields = tuple(replace(field, type=self._demote(field.type)) for field in api_item.fields)
            return replace(api_item, fields=fields)
        if isinstance(api_item, ApiTypeAlias):
            return replace(api_item, target=self._demote(api_item.target))
        return api_item

    def _demote(self, ref: TypeRef) -> TypeRef:
        if (
            isinstance(ref, Pointer)
            and isinstance(ref.target, Aggregate)
            and ref.target.kind is AggregateKind.STRUCT
            and ref.target.name in self.demoted
        ):
            return replace(ref, target=OpaqueHandle(ref.target.name))
        return ref


__all__ = ["ApiExtractor", "NameRegistry", "parse_int_literal"]
