import anyio
import pytest

from etlgraph.config import Config


@pytest.fixture
async def wrap_timeout():
    with anyio.fail_after(30):
        yield


@pytest.fixture
def config(tmp_path):
    return Config(dependency_cache=tmp_path / "wheels", offline=True)
