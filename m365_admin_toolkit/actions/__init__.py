from .executor import ACTIONS, BulkMutationExecutor, MutationOutcome

__all__ = ["ACTIONS", "BulkMutationExecutor", "MutationOutcome"]
