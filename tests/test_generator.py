"""Tests for platybind.generator."""

from __future__ import annotations

from pathlib import Path

import pytest

from platybind.errors import UnmappedTarget
from platybind.generator import BindingGenerator, perl_quote
from platybind.models import (
    Aggregate,
    AggregateKind,
    ApiEnum,
    ApiField,
    ApiFunction,
    ApiHandle,
    ApiModel,
    ApiParam,
    ApiStruct,
    ApiTypeAlias,
    ApiVariant,
    Array,
    OpaqueHandle,
    Pointer,
    SourcePosition,
)
from platybind.typemap import C_CHAR, DEFAULT_PRIMITIVES, VOID

HERE = SourcePosition("lib.rs", 1, 1)
I32 = DEFAULT_PRIMITIVES["i32"]


def _model(*items) -> ApiModel:
    return ApiModel(items={item.name: item for item in items})


def _sample_model() -> ApiModel:
    return _model(
        ApiEnum("Color", (ApiVariant("Red", 0), ApiVariant("Green", 5), ApiVariant("Blue", 6)), HERE),
        ApiStruct(
            "Point",
            (ApiField("x", I32), ApiField("y", I32), ApiField("label", Array(C_CHAR, 8))),
            HERE,
        ),
        ApiHandle("Widget", HERE, exported=False),
        ApiTypeAlias("Count", DEFAULT_PRIMITIVES["usize"], HERE),
        ApiFunction(
            "paint",
            (
                ApiParam("widget", Pointer(OpaqueHandle("Widget"), mutable=True)),
                ApiParam("at", Aggregate("Point", AggregateKind.STRUCT)),
                ApiParam("color", Aggregate("Color", AggregateKind.ENUM)),
            ),
            I32,
            HERE,
        ),
        ApiFunction("reset", (), None, HERE),
    )


def _files(model: ApiModel, **kwargs):
    bindings, types = BindingGenerator("Foo::Bar", **kwargs).generate(model, source="ffi/src/lib.rs")
    return bindings, types


def test_perl_quote_escapes_backslashes_and_quotes() -> None:
    assert perl_quote("plain") == "'plain'"
    assert perl_quote("it's") == "'it\\'s'"
    assert perl_quote("a\\b") == "'a\\\\b'"


def test_output_paths_follow_package_name() -> None:
    bindings, types = _files(_model())

    assert bindings.path == "lib/Foo/Bar.pm"
    assert types.path == "lib/Foo/Bar/Types.pm"


def test_main_file_overrides_bindings_path() -> None:
    bindings, types = _files(_model(), main_file="lib/Foo.pm")

    assert bindings.path == "lib/Foo.pm"
    assert types.path == "lib/Foo/Bar/Types.pm"


def test_bindings_set_up_platypus_and_registrations() -> None:
    bindings, _ = _files(_sample_model())
    content = bindings.content

    assert content.startswith("# Generated by platybind from ffi/src/lib.rs. Do not edit.\npackage Foo::Bar;\n")
    assert "my $ffi = FFI::Platypus->new( api => 2, lang => 'Rust' );\n$ffi->bundle;\n" in content
    assert "use Foo::Bar::Types ();\n" in content
    registrations = [line for line in content.splitlines() if line.startswith("$ffi->type(")]
    assert registrations == [
        "$ffi->type( 'enum' => 'Color' );",
        "$ffi->type( 'record(Foo::Bar::Types::Point)' => 'Point' );",
        "$ffi->type( 'object(Foo::Bar::Types::Widget)' => 'Widget' );",
        "$ffi->type( 'size_t' => 'Count' );",
    ]
    assert content.endswith("\n1;\n")


def test_bindings_attach_functions_with_wrappers() -> None:
    bindings, _ = _files(_sample_model())
    content = bindings.content

    assert (
        "$ffi->attach(\n"
        "    [ 'paint' => 'Foo::Bar::_FFI::paint' ]\n"
        "    => [ 'Widget', 'Point', 'Color' ]\n"
        "    => 'sint32'\n"
        ");\n"
    ) in content
    assert (
        "sub paint {\n"
        "    my ( $widget, $at, $color ) = @_;\n"
        "    return Foo::Bar::_FFI::paint($widget, $at, $color);\n"
        "}\n"
    ) in content
    assert "    [ 'reset' => 'Foo::Bar::_FFI::reset' ]\n    => []\n    => 'void'\n" in content
    assert "sub reset {\n    return Foo::Bar::_FFI::reset();\n}\n" in content


def test_underscore_prefixed_functions_keep_their_own_entry_points() -> None:
    x = ApiParam("x", DEFAULT_PRIMITIVES["u32"])
    model = _model(ApiFunction("foo", (x,), None, HERE), ApiFunction("_foo", (x,), None, HERE))

    bindings, _ = _files(model)
    lines = bindings.content.splitlines()

    attached = [line.split("'")[3] for line in lines if line.startswith("    [ '")]
    wrappers = [line[len("sub ") : -len(" {")] for line in lines if line.startswith("sub ")]
    assert attached == ["Foo::Bar::_FFI::foo", "Foo::Bar::_FFI::_foo"]
    assert wrappers == ["foo", "_foo"]
    assert len(set(attached + wrappers)) == 4
    assert "    return Foo::Bar::_FFI::foo($x);\n" in bindings.content
    assert "    return Foo::Bar::_FFI::_foo($x);\n" in bindings.content


def test_non_nullable_pointer_parameters_croak_on_undef() -> None:
    model = _model(
        ApiHandle("Engine", HERE),
        ApiFunction(
            "engine_run",
            (ApiParam("engine", Pointer(OpaqueHandle("Engine"), mutable=True, nullable=False)),),
            None,
            HERE,
        ),
    )

    bindings, _ = _files(model)

    assert "    croak 'engine_run: $engine must not be undef' unless defined $engine;\n" in bindings.content


def test_exports_functions_and_record_constructors() -> None:
    model = _sample_model()
    model.items["Hidden"] = ApiStruct("Hidden", (ApiField("v", I32),), HERE, exported=False)

    bindings, types = _files(model)

    assert "our @EXPORT_OK = (\n    'paint',\n    'reset',\n    'Point',\n);\n" in bindings.content
    assert "sub Point {\n    return Foo::Bar::Types::Point->new(@_);\n}\n" in bindings.content
    assert "sub Hidden" not in bindings.content
    assert "package Foo::Bar::Types::Hidden;" in types.content


def test_types_module_describes_records_enums_and_handles() -> None:
    _, types = _files(_sample_model())
    content = types.content

    assert content.startswith("# Generated by platybind from ffi/src/lib.rs. Do not edit.\npackage Foo::Bar::Types;\n")
    assert (
        "package Foo::Bar::Types::Point;\n\n"
        "use FFI::Platypus::Record qw( record_layout_1 );\n\n"
        "record_layout_1(\n"
        "    'sint32' => 'x',\n"
        "    'sint32' => 'y',\n"
        "    'string(8)' => 'label',\n"
        ");\n"
    ) in content
    assert (
        "package Foo::Bar::Types::Color;\n\n"
        "use constant {\n"
        "    Red => 0,\n"
        "    Green => 5,\n"
        "    Blue => 6,\n"
        "};\n"
    ) in content
    assert "package Foo::Bar::Types::Widget;\n" in content
    assert content.endswith("package Foo::Bar::Types;\n\n1;\n")


def test_only_exported_enums_offer_their_constants_for_import() -> None:
    model = _model(
        ApiEnum("Color", (ApiVariant("Red", 0), ApiVariant("Green", 1)), HERE),
        ApiEnum("State", (ApiVariant("Idle", 0), ApiVariant("Busy", 1)), HERE, exported=False),
    )

    _, types = _files(model)

    assert (
        "    Green => 1,\n"
        "};\n\n"
        "use Exporter qw( import );\n"
        "our @EXPORT_OK = qw( Red Green );\n"
    ) in types.content
    assert "qw( Idle Busy )" not in types.content
    assert "    Busy => 1,\n};\n\npackage Foo::Bar::Types;\n" in types.content


def test_record_fields_hide_raw_pointers_and_use_enum_bases() -> None:
    model = _model(
        ApiEnum("Level", (ApiVariant("Low", -1), ApiVariant("High", 1)), HERE),
        ApiStruct(
            "Node",
            (
                ApiField("level", Aggregate("Level", AggregateKind.ENUM)),
                ApiField("name", Pointer(C_CHAR, mutable=False)),
                ApiField("data", Pointer(VOID, mutable=True)),
                ApiField("next", Pointer(Aggregate("Node", AggregateKind.STRUCT), mutable=True)),
            ),
            HERE,
        ),
    )

    _, types = _files(model)

    assert (
        "record_layout_1(\n"
        "    'senum' => 'level',\n"
        "    'string ro' => 'name',\n"
        "    'opaque' => '_data',\n"
        "    'opaque' => '_next',\n"
        ");\n"
    ) in types.content


def test_record_pointer_signature_uses_record_class() -> None:
    model = _model(
        ApiStruct("Point", (ApiField("x", I32),), HERE),
        ApiFunction(
            "move_point",
            (ApiParam("point", Pointer(Aggregate("Point", AggregateKind.STRUCT), mutable=True)),),
            None,
            HERE,
        ),
    )

    bindings, _ = _files(model)

    assert "    => [ 'record(Foo::Bar::Types::Point)*' ]\n" in bindings.content


def test_generation_is_deterministic() -> None:
    first = _files(_sample_model())
    second = _files(_sample_model())

    assert first == second


def test_unmappable_type_raises_unmapped_target() -> None:
    model = _model(ApiFunction("broken", (ApiParam("value", VOID),), None, HERE))

    with pytest.raises(UnmappedTarget):
        _files(model)


def test_custom_templates_directory_overrides_defaults(tmp_path: Path) -> None:
    (tmp_path / "types.pm.j2").write_text("package {{ types_package }}; # custom\n1;\n", encoding="utf-8")

    bindings, types = _files(_model(), templates_dir=tmp_path)

    assert types.content == "package Foo::Bar::Types; # custom\n1;\n"
    assert bindings.content.startswith("# Generated by platybind")
