from .component import (
    DataConsumer,
    DataProducer,
    Dependency,
    DestinationComponent,
    EmptySourceWarning,
    ETLComponent,
    ParameterSpec,
    SourceComponent,
    TransformComponent,
)
from .context import ComponentContext, ExecutionContext, LogLine, Severity
from .flow import CompiledFlow
from .queues import InputQueue, OutputPort
from .registry import ComponentRegistry, ComponentRegistryOverrideWarning, component
from .row import Row

__all__ = [
    "CompiledFlow",
    "ComponentContext",
    "ComponentRegistry",
    "ComponentRegistryOverrideWarning",
    "DataConsumer",
    "DataProducer",
    "Dependency",
    "DestinationComponent",
    "ETLComponent",
    "EmptySourceWarning",
    "ExecutionContext",
    "InputQueue",
    "LogLine",
    "OutputPort",
    "ParameterSpec",
    "Row",
    "Severity",
    "SourceComponent",
    "TransformComponent",
    "component",
]
