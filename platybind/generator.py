"""Renders an :class:`ApiModel` into Perl FFI::Platypus modules."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader

from .logging import get_logger
from .models import (
    Aggregate,
    AggregateKind,
    ApiEnum,
    ApiFunction,
    ApiModel,
    ApiStruct,
    ApiTypeAlias,
    GeneratedFile,
    OpaqueHandle,
    Pointer,
)
from .typemap import TypeMapper

BINDINGS_TEMPLATE = "bindings.pm.j2"
TYPES_TEMPLATE = "types.pm.j2"


def perl_quote(value: object) -> str:
    """Quote ``value`` as a Perl single-quoted string literal."""
    text = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{text}'"


class BindingGenerator:
    """Produces the bindings module and the types module for one package.

    Output depends only on the model, the package name and the templates,
    so two runs over the same crate produce byte-identical files.
    """

    def __init__(
        self,
        package: str,
        *,
        main_file: Optional[str] = None,
        templates_dir: Path | None = None,
        mapper: Optional[TypeMapper] = None,
    ) -> None:
        self.package = package
        self.mapper = mapper or TypeMapper(package)
        package_path = package.replace("::", "/")
        self.bindings_path = main_file or f"lib/{package_path}.pm"
        self.types_path = f"lib/{package_path}/Types.pm"
        # Attached xsubs live in their own package, never beside the wrappers.
        self.ffi_package = f"{package}::_FFI"
        self.templates_dir = templates_dir
        self._env = self._create_env(templates_dir)
        self.logger = get_logger("generator")

    def generate(self, model: ApiModel, source: Optional[str] = None) -> List[GeneratedFile]:
        context = self._build_context(model, source)
        files = [
            GeneratedFile(path=self.bindings_path, content=self._render(BINDINGS_TEMPLATE, context)),
            GeneratedFile(path=self.types_path, content=self._render(TYPES_TEMPLATE, context)),
        ]
        for generated in files:
            self.logger.debug("Rendered %s (%d bytes)", generated.path, len(generated.content))
        return files

    def _build_context(self, model: ApiModel, source: Optional[str]) -> Dict[str, Any]:
        mapper = self.mapper
        enum_bases = {enum.name: mapper.enum_base(enum.signed, enum.repr) for enum in model.enums}

        registrations: List[Dict[str, str]] = []
        aliases: List[Dict[str, str]] = []
        for item in model:
            if isinstance(item, ApiFunction):
                continue
            # Aliases go last: their targets may name any registered type.
            if isinstance(item, ApiTypeAlias):
                aliases.append({"name": item.name, "target": mapper.alias_target(item.target)})
            elif isinstance(item, ApiEnum):
                registrations.append({"name": item.name, "target": enum_bases[item.name]})
            elif isinstance(item, ApiStruct):
                target = mapper.alias_target(Aggregate(item.name, AggregateKind.STRUCT))
                registrations.append({"name": item.name, "target": target})
            else:
                registrations.append({"name": item.name, "target": mapper.alias_target(OpaqueHandle(item.name))})

        functions = [self._function_context(function) for function in model.functions]
        constructors = [
            {"name": struct.name, "class": mapper.class_name(struct.name)}
            for struct in model.structs
            if struct.exported
        ]
        records = [
            {
                "name": struct.name,
                "class": mapper.class_name(struct.name),
                "fields": [
                    {
                        "accessor": f"_{field.name}" if mapper.is_hidden_field(field.type) else field.name,
                        "type": mapper.field(field.type, enum_bases),
                    }
                    for field in struct.fields
                ],
            }
            for struct in model.structs
        ]
        enums = [
            {
                "name": enum.name,
                "class": mapper.class_name(enum.name),
                "exported": enum.exported,
                "variants": [{"name": variant.name, "value": variant.value} for variant in enum.variants],
            }
            for enum in model.enums
        ]
        handles = [{"name": handle.name, "class": mapper.class_name(handle.name)} for handle in model.handles]

        return {
            "package": self.package,
            "types_package": mapper.types_package,
            "source": source,
            "registrations": registrations + aliases,
            "functions": functions,
            "constructors": constructors,
            "exports": [function["name"] for function in functions] + [ctor["name"] for ctor in constructors],
            "records": records,
            "enums": enums,
            "handles": handles,
        }

    def _function_context(self, function: ApiFunction) -> Dict[str, Any]:
        params = [
            {
                "name": param.name,
                "var": f"${param.name}",
                "type": self.mapper.signature(param.type),
                "required": isinstance(param.type, Pointer) and not param.type.nullable,
            }
            for param in function.params
        ]
        return {
            "name": function.name,
            "symbol": f"{self.ffi_package}::{function.name}",
            "params": params,
            "returns": self.mapper.signature(function.returns),
        }

    def _render(self, template_name: str, context: Dict[str, Any]) -> str:
        template = self._env.get_template(template_name)
        return template.render(**context)

    @staticmethod
    def _create_env(templates_dir: Path | None) -> Environment:
        directories: List[str] = []
        if templates_dir:
            directories.append(str(templates_dir))
        default_dir = str(Path(__file__).with_name("templates"))
        if default_dir not in directories:
            directories.append(default_dir)
        env = Environment(
            loader=FileSystemLoader(directories),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        env.filters["perl_quote"] = perl_quote
        return env


__all__ = ["BINDINGS_TEMPLATE", "BindingGenerator", "TYPES_TEMPLATE", "perl_quote"]
