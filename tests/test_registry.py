import pytest

from etlgraph.exceptions import UnresolvedImplementationError
from etlgraph.runtime import (
    ComponentRegistry,
    ComponentRegistryOverrideWarning,
    TransformComponent,
    component,
)

from integration.components import ListSource, Passthrough


@pytest.fixture
def registry():
    return ComponentRegistry()


def test_register_and_resolve(registry):
    component("passthrough-again", registry)(Passthrough)

    assert registry.resolve("passthrough-again") is Passthrough
    assert registry.resolve("integration.components.Passthrough") is Passthrough
    assert "passthrough-again" in registry
    assert list(registry) == sorted(
        ["passthrough-again", "integration.components.Passthrough"]
    )


def test_component_id_is_kept(registry):
    registry.register("alias", ListSource)

    assert ListSource.component_id == "list-source"


def test_component_id_is_set():
    registry = ComponentRegistry()

    class Fresh(TransformComponent):
        async def transform(self, row, context):
            yield row

    registry.register(" fresh ", Fresh)

    assert Fresh.component_id == "fresh"
    assert registry.resolve("fresh") is Fresh


def test_override_warns(registry):
    registry.register("thing", ListSource)

    with pytest.warns(ComponentRegistryOverrideWarning, match="'thing'"):
        registry.register("thing", Passthrough)

    assert registry.resolve("thing") is Passthrough


@pytest.mark.parametrize("component_id", ("", "   "))
def test_empty_id(registry, component_id):
    with pytest.raises(ValueError):
        registry.register(component_id, ListSource)


def test_not_a_component(registry):
    with pytest.raises(TypeError):
        registry.register("int", int)


def test_dotted_path_is_imported_once(registry):
    assert registry.resolve("integration.components.ListSource") is ListSource
    assert "integration.components.ListSource" in registry


@pytest.mark.parametrize(
    "ref", ("integration.components.Nope", "no.such.module.Thing", "builtins.int")
)
def test_unresolvable_dotted_path(registry, ref):
    with pytest.raises(UnresolvedImplementationError):
        registry.resolve(ref)


def test_missing_reference(registry):
    with pytest.raises(UnresolvedImplementationError, match="has no implementation") as e:
        registry.resolve(None, "n")

    assert e.value.node_id == "n"


def test_suggestions(registry):
    registry.register("csv-reader", ListSource)

    with pytest.raises(UnresolvedImplementationError, match="Did you mean: csv-reader"):
        registry.resolve("csv-raeder")


def test_default_registry_knows_builtin_components():
    default = ComponentRegistry.default()

    assert default is ComponentRegistry.default()
    for component_id in ("file-source", "filter", "map-transform", "csv-destination"):
        assert component_id in default
