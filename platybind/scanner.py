"""Rust source scanning built on tree-sitter."""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional, Sequence, Set, Tuple

import tree_sitter_rust
from tree_sitter import Language, Node, Parser

from .errors import UnreadableSource
from .logging import get_logger
from .models import (
    ArrayType,
    Attribute,
    EnumItem,
    FieldSyntax,
    FunctionItem,
    Item,
    OtherItem,
    Param,
    PathType,
    PointerType,
    SourcePosition,
    SourceUnit,
    StructItem,
    StructShape,
    TypeAliasItem,
    TypeSyntax,
    UnitType,
    UnsupportedSyntax,
    VariantSyntax,
)

RUST_LANGUAGE = Language(tree_sitter_rust.language())

_TRIVIA = {"line_comment", "block_comment", "inner_attribute_item", "empty_statement"}
_ROOT_FILE_NAMES = {"lib.rs", "main.rs", "mod.rs"}
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_ATTRIBUTE = re.compile(r"^#\s*\[(?P<body>.*)\]$", re.S)
_ATTRIBUTE_PATH = re.compile(r"^(?P<path>[A-Za-z_][A-Za-z0-9_]*(?:\s*::\s*[A-Za-z_][A-Za-z0-9_]*)*)(?P<rest>.*)$", re.S)

# (file, module path, directory its `mod x;` declarations resolve against)
_PendingModule = Tuple[Path, Tuple[str, ...], Path]


class SourceScanner:
    """Parses a crate entry file and the module files it declares."""

    def __init__(self, parser: Parser | None = None) -> None:
        self._parser = parser or Parser(RUST_LANGUAGE)
        self.logger = get_logger("scanner")

    def scan(self, entry: str | Path) -> List[SourceUnit]:
        """Return one unit per file, parents before children, depth-first."""
        entry_path = Path(entry).expanduser().resolve()
        units: List[SourceUnit] = []
        self._scan_file(entry_path, (), entry_path.parent, units, set())
        self.logger.debug(
            "Scanned %d file(s), %d item(s) from %s",
            len(units),
            sum(len(unit.items) for unit in units),
            entry_path,
        )
        return units

    def parse_items(self, source: str, path: str = "<memory>") -> Tuple[Item, ...]:
        """Parse a single source string without following `mod x;` declarations."""
        root = self._parse(source.encode("utf-8"), path)
        items: List[Item] = []
        self._collect(root, path, Path(path).parent, items, pending=None, module_path=())
        return tuple(items)

    def _scan_file(
        self,
        path: Path,
        module_path: Tuple[str, ...],
        module_dir: Path,
        units: List[SourceUnit],
        seen: Set[Path],
    ) -> None:
        if path in seen:
            self.logger.debug("Skipping %s, already scanned", path)
            return
        seen.add(path)

        root = self._parse(self._read(path), str(path))
        items: List[Item] = []
        pending: List[_PendingModule] = []
        self._collect(root, str(path), module_dir, items, pending, module_path)
        units.append(SourceUnit(path=str(path), module_path=module_path, items=tuple(items)))

        for child_path, child_module, child_dir in pending:
            self._scan_file(child_path, child_module, child_dir, units, seen)

    @staticmethod
    def _read(path: Path) -> bytes:
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            raise UnreadableSource(str(path), "file not found") from None
        except OSError as exc:
            raise UnreadableSource(str(path), exc.strerror or str(exc)) from exc
        try:
            raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise UnreadableSource(str(path), f"not valid UTF-8 ({exc.reason} at byte {exc.start})") from exc
        return raw

    def _parse(self, source: bytes, path: str) -> Node:
        tree = self._parser.parse(source)
        root = tree.root_node
        if root.has_error:
            error = _first_error(root) or root
            position = _position(error, path)
            raise UnreadableSource(path, f"syntax error at line {position.line}", position=position)
        return root

    def _collect(
        self,
        container: Node,
        path: str,
        module_dir: Path,
        items: List[Item],
        pending: Optional[List[_PendingModule]],
        module_path: Tuple[str, ...],
    ) -> None:
        attributes: List[Attribute] = []
        for child in container.named_children:
            if child.type == "attribute_item":
                attribute = parse_attribute(_text(child))
                if attribute is not None:
                    attributes.append(attribute)
                continue
            if child.type in _TRIVIA:
                continue

            attrs = tuple(attributes)
            attributes = []
            if child.type == "mod_item":
                items.append(_other(child, attrs, path))
                self._module(child, attrs, path, module_dir, items, pending, module_path)
                continue
            items.append(_convert_item(child, attrs, path))

    def _module(
        self,
        node: Node,
        attrs: Tuple[Attribute, ...],
        path: str,
        module_dir: Path,
        items: List[Item],
        pending: Optional[List[_PendingModule]],
        module_path: Tuple[str, ...],
    ) -> None:
        name = _field_text(node, "name")
        if _is_cfg_test(attrs):
            self.logger.debug("Skipping test-only module `%s` in %s", name, path)
            return

        child_module = module_path + (name,)
        body = node.child_by_field_name("body")
        if body is not None:
            self._collect(body, path, module_dir / name, items, pending, child_module)
            return
        if pending is None:
            return

        target = self._locate_module(name, attrs, Path(path), module_dir, _position(node, path))
        pending.append((target, child_module, _module_dir_for(target)))

    @staticmethod
    def _locate_module(
        name: str,
        attrs: Sequence[Attribute],
        declaring_file: Path,
        module_dir: Path,
        position: SourcePosition,
    ) -> Path:
        override = next((attr.value for attr in attrs if attr.path == "path" and attr.value), None)
        if override:
            candidates = [declaring_file.parent / override]
        else:
            candidates = [module_dir / f"{name}.rs", module_dir / name / "mod.rs"]
        for candidate in candidates:
            if candidate.is_file():
                return candidate.resolve()
        looked = ", ".join(str(candidate) for candidate in candidates)
        raise UnreadableSource(
            str(candidates[0]),
            f"module `{name}` not found (looked for {looked})",
            position=position,
        )


def _module_dir_for(path: Path) -> Path:
    if path.name in _ROOT_FILE_NAMES:
        return path.parent
    return path.parent / path.stem


def _is_cfg_test(attrs: Sequence[Attribute]) -> bool:
    return any(attr.path == "cfg" and attr.args == ("test",) for attr in attrs)


def _first_error(node: Node) -> Optional[Node]:
    if node.type == "ERROR" or node.is_missing:
        return node
    for child in node.children:
        if child.has_error or child.is_missing:
            found = _first_error(child)
            if found is not None:
                return found
    return None


# ---------------------------------------------------------------------------
# Node helpers
# ---------------------------------------------------------------------------


def _text(node: Node) -> str:
    return node.text.decode("utf-8") if node.text is not None else ""


def _field_text(node: Node, field: str) -> str:
    child = node.child_by_field_name(field)
    return _text(child) if child is not None else ""


def _position(node: Node, path: str) -> SourcePosition:
    row, column = node.start_point
    return SourcePosition(path=path, line=row + 1, column=column + 1)


def _is_public(node: Node) -> bool:
    for child in node.children:
        if child.type == "visibility_modifier":
            return _text(child).strip() == "pub"
    return False


def _is_generic(node: Node) -> bool:
    return node.child_by_field_name("type_parameters") is not None


# ---------------------------------------------------------------------------
# Attributes
# ---------------------------------------------------------------------------


def parse_attribute(text: str) -> Optional[Attribute]:
    """Parse ``#[path]``, ``#[path(a, b)]`` or ``#[path = "value"]``."""
    match = _ATTRIBUTE.match(text.strip())
    if match is None:
        return None
    return _parse_attribute_body(match.group("body").strip())


def _parse_attribute_body(body: str) -> Optional[Attribute]:
    match = _ATTRIBUTE_PATH.match(body)
    if match is None:
        return None
    path = re.sub(r"\s+", "", match.group("path"))
    rest = match.group("rest").strip()
    if path == "unsafe" and rest.startswith("(") and rest.endswith(")"):
        return _parse_attribute_body(rest[1:-1].strip())
    if rest.startswith("="):
        return Attribute(path=path, value=_unquote(rest[1:].strip()))
    if rest.startswith("(") and rest.endswith(")"):
        return Attribute(path=path, args=_split_arguments(rest[1:-1]))
    return Attribute(path=path)


def _split_arguments(text: str) -> Tuple[str, ...]:
    parts: List[str] = []
    current: List[str] = []
    depth = 0
    in_quote = False
    for char in text:
        if char == '"':
            in_quote = not in_quote
        elif not in_quote and char in "([{":
            depth += 1
        elif not in_quote and char in ")]}":
            depth -= 1
        elif char == "," and depth == 0 and not in_quote:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    parts.append("".join(current).strip())
    return tuple(part for part in parts if part)


def _unquote(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


def _convert_item(node: Node, attrs: Tuple[Attribute, ...], path: str) -> Item:
    if node.type == "function_item":
        return _function(node, attrs, path)
    if node.type == "struct_item":
        return _struct(node, attrs, path)
    if node.type == "enum_item":
        return _enum(node, attrs, path)
    if node.type == "type_item":
        return TypeAliasItem(
            name=_field_text(node, "name"),
            position=_position(node, path),
            public=_is_public(node),
            attributes=attrs,
            target=_type_of(node.child_by_field_name("type")),
            generic=_is_generic(node),
        )
    return _other(node, attrs, path)


def _other(node: Node, attrs: Tuple[Attribute, ...], path: str) -> OtherItem:
    return OtherItem(
        name=_field_text(node, "name"),
        position=_position(node, path),
        public=_is_public(node),
        attributes=attrs,
        kind=node.type,
    )


def _function(node: Node, attrs: Tuple[Attribute, ...], path: str) -> FunctionItem:
    params: List[Param] = []
    parameters = node.child_by_field_name("parameters")
    if parameters is not None:
        for child in parameters.named_children:
            if child.type == "parameter":
                name = _param_name(_field_text(child, "pattern"), len(params))
                params.append(Param(name=name, type=_type_of(child.child_by_field_name("type"))))
            elif child.type in {"self_parameter", "variadic_parameter"}:
                params.append(Param(name=f"arg{len(params)}", type=UnsupportedSyntax(child.type, _text(child))))

    return_node = node.child_by_field_name("return_type")
    return FunctionItem(
        name=_field_text(node, "name"),
        position=_position(node, path),
        public=_is_public(node),
        attributes=attrs,
        abi=_function_abi(node),
        params=tuple(params),
        return_type=_type_of(return_node) if return_node is not None else None,
        generic=_is_generic(node),
    )


def _function_abi(node: Node) -> Optional[str]:
    for child in node.children:
        if child.type == "extern_modifier":
            return _extern_abi(child)
        if child.type == "function_modifiers":
            for modifier in child.children:
                if modifier.type == "extern_modifier":
                    return _extern_abi(modifier)
    return None


def _extern_abi(node: Node) -> str:
    for child in node.children:
        if child.type in {"string_literal", "raw_string_literal"}:
            return _unquote(_text(child))
    # A bare `extern fn` uses the C ABI.
    return "C"


def _param_name(pattern: str, index: int) -> str:
    name = pattern.strip()
    if name.startswith("mut "):
        name = name[4:].strip()
    if name == "_" or not _IDENTIFIER.match(name):
        return f"arg{index}"
    return name


def _struct(node: Node, attrs: Tuple[Attribute, ...], path: str) -> StructItem:
    body = node.child_by_field_name("body")
    fields: List[FieldSyntax] = []
    if body is None:
        shape = StructShape.UNIT
    elif body.type == "field_declaration_list":
        shape = StructShape.NAMED
        for child in body.named_children:
            if child.type == "field_declaration":
                fields.append(
                    FieldSyntax(
                        name=_field_text(child, "name"),
                        type=_type_of(child.child_by_field_name("type")),
                    )
                )
    else:
        shape = StructShape.TUPLE
        for index, child in enumerate(body.children_by_field_name("type")):
            fields.append(FieldSyntax(name=str(index), type=_type_of(child)))

    return StructItem(
        name=_field_text(node, "name"),
        position=_position(node, path),
        public=_is_public(node),
        attributes=attrs,
        shape=shape,
        fields=tuple(fields),
        generic=_is_generic(node),
    )


def _enum(node: Node, attrs: Tuple[Attribute, ...], path: str) -> EnumItem:
    variants: List[VariantSyntax] = []
    body = node.child_by_field_name("body")
    if body is not None:
        for child in body.named_children:
            if child.type != "enum_variant":
                continue
            value = child.child_by_field_name("value")
            variants.append(
                VariantSyntax(
                    name=_field_text(child, "name"),
                    discriminant=_text(value) if value is not None else None,
                    has_fields=child.child_by_field_name("body") is not None,
                )
            )
    return EnumItem(
        name=_field_text(node, "name"),
        position=_position(node, path),
        public=_is_public(node),
        attributes=attrs,
        variants=tuple(variants),
        generic=_is_generic(node),
    )


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


def _type_of(node: Optional[Node]) -> TypeSyntax:
    if node is None:
        return UnitType()
    kind = node.type
    if kind in {"primitive_type", "type_identifier"}:
        return PathType(segments=(_text(node),))
    if kind == "scoped_type_identifier":
        segments = tuple(part.strip() for part in _text(node).split("::") if part.strip())
        return PathType(segments=segments)
    if kind == "generic_type":
        base = _type_of(node.child_by_field_name("type"))
        arguments = node.child_by_field_name("type_arguments")
        if not isinstance(base, PathType) or arguments is None:
            return UnsupportedSyntax(kind, _text(node))
        generics = tuple(_type_of(child) for child in arguments.named_children)
        return PathType(segments=base.segments, generics=generics)
    if kind == "pointer_type":
        mutable = any(child.type == "mutable_specifier" for child in node.children)
        return PointerType(pointee=_type_of(node.child_by_field_name("type")), mutable=mutable)
    if kind == "array_type":
        length = node.child_by_field_name("length")
        return ArrayType(
            element=_type_of(node.child_by_field_name("element")),
            length=_text(length) if length is not None else None,
        )
    if kind == "unit_type":
        return UnitType()
    return UnsupportedSyntax(kind, _text(node))


__all__ = ["RUST_LANGUAGE", "SourceScanner", "parse_attribute"]
