from aigo.streaming.publisher import StreamPublisher
from aigo.streaming.reconciler import EventReconciler
from aigo.streaming.steps import Step, StepKind, ToolInvocation, ToolStatus

__all__ = ["StreamPublisher", "EventReconciler", "Step", "StepKind", "ToolInvocation", "ToolStatus"]
