"""Adapters for external collaborators."""

from planchat.adapters.workflow_payload import parse_workflow_payload
from planchat.adapters.workflow_trigger import TriggerResult, WorkflowTrigger

__all__ = ["TriggerResult", "WorkflowTrigger", "parse_workflow_payload"]
