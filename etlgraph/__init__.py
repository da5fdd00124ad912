from .build import FlowBuilder
from .components import csv_destination, file_source, filter, map_transform  # noqa: F401
from .control_flow import ControlFlowFanOutWarning, ControlSpine, analyze_control_flow
from .data_flow import DataFlowChain, DataFlowPlan, analyze_data_flow
from .dependencies import DependencyResolver, MissingOptionalDependencyWarning
from .generator import FlowGenerator, GeneratedFlow, format_literal
from .graph import Channel, Edge, Node, NodeKind, Parameter, PipelineGraph
from .launcher import BundleLauncher, IsolatedLoader
from .loader import FlowRunner, LogMessage, RunReport
from .runtime import (
    CompiledFlow,
    ComponentRegistry,
    Dependency,
    DestinationComponent,
    ETLComponent,
    ExecutionContext,
    ParameterSpec,
    Row,
    SourceComponent,
    TransformComponent,
    component,
)
from .validator import FlowValidator, ValidationResult

__all__ = [
    "BundleLauncher",
    "Channel",
    "CompiledFlow",
    "ComponentRegistry",
    "ControlFlowFanOutWarning",
    "ControlSpine",
    "DataFlowChain",
    "DataFlowPlan",
    "Dependency",
    "DependencyResolver",
    "DestinationComponent",
    "ETLComponent",
    "Edge",
    "ExecutionContext",
    "FlowBuilder",
    "FlowGenerator",
    "FlowRunner",
    "FlowValidator",
    "GeneratedFlow",
    "IsolatedLoader",
    "LogMessage",
    "MissingOptionalDependencyWarning",
    "Node",
    "NodeKind",
    "Parameter",
    "ParameterSpec",
    "PipelineGraph",
    "Row",
    "RunReport",
    "SourceComponent",
    "TransformComponent",
    "ValidationResult",
    "analyze_control_flow",
    "analyze_data_flow",
    "component",
    "format_literal",
]
