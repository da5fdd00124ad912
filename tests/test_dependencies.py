import subprocess
import zipfile

import pytest

from etlgraph import DependencyResolver, MissingOptionalDependencyWarning
from etlgraph.config import Config
from etlgraph.exceptions import DependencyResolutionError
from etlgraph.runtime import Dependency, SourceComponent

from integration.components import (
    MarkerSource,
    OptionalDependencySource,
    RequiredDependencySource,
)


def _wheel(cache, name, version):
    cache.mkdir(parents=True, exist_ok=True)
    path = cache / f"{name}-{version}-py3-none-any.whl"
    with zipfile.ZipFile(path, "w") as wheel:
        wheel.writestr(f"{name}/__init__.py", "")

    return path


@pytest.fixture
def cache(tmp_path):
    return tmp_path / "wheels"


@pytest.fixture
def resolver(cache):
    return DependencyResolver(Config(dependency_cache=cache, offline=False))


class First(SourceComponent):
    dependencies = (Dependency("Some_Lib", "1.0", optional=True), Dependency("other", "2"))

    async def produce(self, context):
        return
        yield


class Second(SourceComponent):
    dependencies = (Dependency("some-lib", "1.0"), Dependency("other", "3"))

    async def produce(self, context):
        return
        yield


def test_collect_dedupes_by_normalized_name(resolver, caplog):
    collected = resolver.collect([First, Second])

    assert [str(dep) for dep in collected] == ["some-lib==1.0", "other==2"]
    # a required declaration wins over an optional one
    assert collected[0].optional is False
    assert "Conflicting versions of 'other'" in caplog.text


def test_collect_runtime_dependencies(resolver):
    names = {dep.normalized_name for dep in resolver.collect([], include_runtime=True)}

    assert {"anyio", "pydantic", "sniffio"} <= names


def test_cached_wheel_is_used(resolver, cache, monkeypatch):
    wheel = _wheel(cache, "etlgraph_marker", "1.0")
    monkeypatch.setattr(
        subprocess, "run", lambda *args, **kwargs: pytest.fail("downloaded")
    )

    [resolved] = resolver.resolve([MarkerSource])

    assert resolved.wheel == wheel
    assert resolved.archive_name == wheel.name
    assert resolved.dependency.name == "etlgraph-marker"


def test_download(resolver, cache, monkeypatch):
    calls = []

    def fake_run(command, **kwargs):
        calls.append(command)
        _wheel(cache, "etlgraph_marker", "1.0")
        return subprocess.CompletedProcess(command, 0, "", "")

    monkeypatch.setattr(subprocess, "run", fake_run)
    resolver.config = Config(dependency_cache=cache, index_url="https://example.invalid/simple")

    [resolved] = resolver.resolve([MarkerSource])

    assert resolved.wheel.parent == cache
    [command] = calls
    assert command[1:4] == ["-m", "pip", "download"]
    assert "etlgraph-marker==1.0" in command
    assert command[-2:] == ["--index-url", "https://example.invalid/simple"]


def test_failed_download_of_required_dependency(resolver, monkeypatch):
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda command, **kwargs: subprocess.CompletedProcess(
            command, 1, "", "ERROR: No matching distribution found"
        ),
    )

    with pytest.raises(DependencyResolutionError) as exc_info:
        resolver.resolve([RequiredDependencySource])

    assert exc_info.value.missing == ["etlgraph-unavailable==9.9.9"]


def test_missing_optional_dependency_warns(resolver, monkeypatch):
    def timeout(command, **kwargs):
        raise subprocess.TimeoutExpired(command, kwargs["timeout"])

    monkeypatch.setattr(subprocess, "run", timeout)

    with pytest.warns(MissingOptionalDependencyWarning, match="etlgraph-unavailable"):
        assert resolver.resolve([OptionalDependencySource]) == []


def test_offline_never_downloads(cache, monkeypatch):
    monkeypatch.setattr(
        subprocess, "run", lambda *args, **kwargs: pytest.fail("downloaded")
    )
    resolver = DependencyResolver(dependency_cache=cache, offline=True)

    with pytest.raises(DependencyResolutionError):
        resolver.resolve([RequiredDependencySource])


def test_version_must_match(resolver, cache):
    _wheel(cache, "etlgraph_marker", "2.0")

    assert resolver.find_cached(Dependency("etlgraph-marker", "1.0")) is None
    assert resolver.find_cached(Dependency("etlgraph.marker", "2.0")) is not None
