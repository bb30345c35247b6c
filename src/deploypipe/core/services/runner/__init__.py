from .core import StageRunner, aggregate_status, stage_outcome
from .gate import BranchGate, allows

__all__ = [
    "StageRunner",
    "aggregate_status",
    "stage_outcome",
    "BranchGate",
    "allows",
]
