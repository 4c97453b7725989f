"""
Transfer module: conditional evaluation, transfer planning, multipart and
append coordination, checkpoints.
"""

from osskit.transfer.append import AppendCoordinator, AppendResult, AppendState
from osskit.transfer.checkpoint import Checkpoint, CheckpointStore, SourceSignature
from osskit.transfer.conditions import (
    ConditionContext,
    ConditionOutcome,
    ConditionalEvaluator,
    ObjectPrecondition,
)
from osskit.transfer.content_type import resolve_content_type
from osskit.transfer.multipart import MultipartCoordinator
from osskit.transfer.planner import PayloadSource, SourceKind, TransferPlan, TransferPlanner
from osskit.transfer.session import MultipartSession, MultipartState, PartResult

__all__ = [
    "AppendCoordinator",
    "AppendResult",
    "AppendState",
    "Checkpoint",
    "CheckpointStore",
    "SourceSignature",
    "ConditionContext",
    "ConditionOutcome",
    "ConditionalEvaluator",
    "ObjectPrecondition",
    "resolve_content_type",
    "MultipartCoordinator",
    "PayloadSource",
    "SourceKind",
    "TransferPlan",
    "TransferPlanner",
    "MultipartSession",
    "MultipartState",
    "PartResult",
]
