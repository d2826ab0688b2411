"""
Deployment services: orchestration, rollback, history, cancellation and
progress observers.
"""

from .cancellation import (
    CancellationToken,
    DeploymentCancelledException,
    SimpleCancellationToken,
)
from .deployment import (
    ComponentKind,
    DeploymentOptions,
    DeploymentOrchestrator,
    DeploymentResult,
    DeploymentState,
    ItemOutcome,
    OutcomeStatus,
    RollbackLedger,
)
from .history import DeploymentHistory, HistoryNotFoundError
from .observer import (
    DeploymentObserver,
    LoggingObserver,
    RecordingObserver,
    SafeObserver,
)
from .rollback import (
    RollbackCause,
    RollbackExecutor,
    RollbackIssue,
    RollbackOptions,
    RollbackResult,
)

__all__ = [
    # Cancellation
    "CancellationToken",
    "DeploymentCancelledException",
    "SimpleCancellationToken",
    # Deployment
    "ComponentKind",
    "DeploymentOptions",
    "DeploymentOrchestrator",
    "DeploymentResult",
    "DeploymentState",
    "ItemOutcome",
    "OutcomeStatus",
    "RollbackLedger",
    # History
    "DeploymentHistory",
    "HistoryNotFoundError",
    # Observers
    "DeploymentObserver",
    "LoggingObserver",
    "RecordingObserver",
    "SafeObserver",
    # Rollback
    "RollbackCause",
    "RollbackExecutor",
    "RollbackIssue",
    "RollbackOptions",
    "RollbackResult",
]
