from .builder import TransactionBuilder
from .orchestrator import ExecutionOrchestrator

__all__ = ["TransactionBuilder", "ExecutionOrchestrator"]
