import pytest

import integration.components  # noqa: F401
from etlgraph import FlowBuilder, PipelineGraph
from etlgraph.runtime import ExecutionContext


@pytest.fixture(
    params=[
        pytest.param(("asyncio", {"use_uvloop": False}), id="asyncio"),
        pytest.param(
            ("trio", {"restrict_keyboard_interrupt_to_checkpoints": True}), id="trio"
        ),
    ],
    scope="session",
)
def anyio_backend(request):
    return request.param


@pytest.fixture
def context():
    return ExecutionContext(run_id="test-run")


@pytest.fixture
def load_flow():
    """Generate the flow of a sheet and instantiate it in-process, without a bundle."""

    def load(sheet, **settings):
        generated = FlowBuilder().generate(PipelineGraph.from_sheet(sheet))
        namespace = {}
        exec(compile(generated.source, generated.filename, "exec"), namespace)
        return namespace[generated.class_name](**settings)

    return load
