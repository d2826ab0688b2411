"""
Rollback of a deployment run.

Replays a ``RollbackLedger`` in reverse dependency order: relationships,
entities, global choices, standard-table solution components, the solution,
then the publisher. A component still referenced by something else is
skipped with a warning and the rollback moves on; rollback never raises for
remote failures.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from core.platform.dataverse_client import DeleteOutcome, ErrorClass, classify_error
from core.validators.input import ConfigurationError
from shared.models.metadata_types import ComponentType

from .deployment import DEPLOYMENT_ERRORS, RollbackLedger
from .observer import DeploymentObserver, SafeObserver

logger = logging.getLogger(__name__)

ROLLBACK_COMPONENTS = ("relationships", "entities", "global_choices", "solution", "publisher")


class RollbackCause(str, Enum):
    DEPENDENCY_CONFLICT = "dependency_conflict"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    API_ERROR = "api_error"


@dataclass(frozen=True)
class RollbackIssue:
    component: str
    name: str
    cause: RollbackCause
    message: str

    def __str__(self) -> str:
        return f"[{self.cause.value}] {self.component} '{self.name}': {self.message}"

    def to_dict(self) -> Dict[str, str]:
        return {
            "component": self.component,
            "name": self.name,
            "cause": self.cause.value,
            "message": self.message,
        }


@dataclass
class RollbackOptions:
    """Which parts of a deployment to remove (all by default)."""
    relationships: bool = True
    entities: bool = True
    global_choices: bool = True
    solution: bool = True
    publisher: bool = True

    @classmethod
    def only(cls, components: Iterable[str]) -> 'RollbackOptions':
        """Options removing just ``components`` (``relationships``, ``entities`` ...)."""
        requested = {c.strip().lower().replace('-', '_') for c in components if c.strip()}
        unknown = requested.difference(ROLLBACK_COMPONENTS)
        if unknown:
            raise ConfigurationError(
                f"Unknown rollback component(s): {', '.join(sorted(unknown))}. "
                f"Expected: {', '.join(ROLLBACK_COMPONENTS)}"
            )
        return cls(**{name: name in requested for name in ROLLBACK_COMPONENTS})

    def validate(self, ledger: Optional[RollbackLedger] = None) -> None:
        """
        Raises:
            ConfigurationError: If the selection would leave dangling dependencies
        """
        has_relationships = ledger is None or bool(ledger.relationships)
        if self.entities and not self.relationships and has_relationships:
            raise ConfigurationError("Removing entities requires removing their relationships first")
        if self.publisher and not self.solution:
            raise ConfigurationError("Removing the publisher requires removing the solution")


@dataclass
class RollbackResult:
    entities_processed: int = 0
    entities_deleted: int = 0
    entities_skipped: int = 0
    relationships_deleted: int = 0
    global_choices_deleted: int = 0
    solution_deleted: bool = False
    publisher_deleted: bool = False
    warnings: List[RollbackIssue] = field(default_factory=list)
    errors: List[RollbackIssue] = field(default_factory=list)
    remaining: RollbackLedger = field(default_factory=RollbackLedger)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def complete(self) -> bool:
        """Nothing from the ledger is left behind."""
        return self.remaining.is_empty

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "complete": self.complete,
            "entitiesProcessed": self.entities_processed,
            "entitiesDeleted": self.entities_deleted,
            "entitiesSkipped": self.entities_skipped,
            "relationshipsDeleted": self.relationships_deleted,
            "globalChoicesDeleted": self.global_choices_deleted,
            "solutionDeleted": self.solution_deleted,
            "publisherDeleted": self.publisher_deleted,
            "warnings": [w.to_dict() for w in self.warnings],
            "errors": [e.to_dict() for e in self.errors],
            "remaining": self.remaining.to_dict(),
        }


class RollbackExecutor:
    """Deletes what a deployment created."""

    def __init__(self, client: Any, observers: Sequence[DeploymentObserver] = ()):
        self.client = client
        self.observers = list(observers)

    def rollback(self, ledger: RollbackLedger, options: Optional[RollbackOptions] = None) -> RollbackResult:
        """
        Roll back ``ledger``.

        Raises:
            ConfigurationError: Only for an invalid option selection, before any remote call
        """
        options = options or RollbackOptions()
        options.validate(ledger)
        observer = SafeObserver(self.observers)
        result = RollbackResult()
        observer.on_progress("rollback", "Starting rollback", ledger.to_dict())

        if options.relationships:
            self._relationships(ledger, result, observer)
        else:
            result.remaining.relationships = list(ledger.relationships)

        if options.entities:
            self._entities(ledger, result, observer)
        else:
            result.remaining.entities = list(ledger.entities)

        if options.global_choices:
            self._global_choices(ledger, result, observer)
        else:
            result.remaining.global_choices = list(ledger.global_choices)

        if options.solution:
            self._solution_components(ledger, result, observer)
            self._solution(ledger, result, observer)
        else:
            result.remaining.solution_components = list(ledger.solution_components)
            result.remaining.solution = ledger.solution

        if options.publisher:
            self._publisher(ledger, result, observer)
        else:
            result.remaining.publisher = ledger.publisher

        observer.on_progress("rollback", "Rollback finished", result.to_dict())
        logger.info(
            f"Rollback finished: {result.entities_deleted}/{result.entities_processed} entities deleted, "
            f"{result.entities_skipped} skipped, {len(result.errors)} errors"
        )
        return result

    def _delete(self, component: str, name: str, action, result: RollbackResult,
                observer: SafeObserver) -> bool:
        """Run one delete; True when the component is gone afterwards."""
        try:
            outcome = action()
        except DEPLOYMENT_ERRORS as e:
            if classify_error(e) == ErrorClass.DEPENDENCY_CONFLICT:
                outcome = DeleteOutcome.REFERENCED
            else:
                cause = RollbackCause.TRANSIENT if classify_error(e) == ErrorClass.TRANSIENT else RollbackCause.API_ERROR
                issue = RollbackIssue(component, name, cause, str(e))
                result.errors.append(issue)
                observer.error(str(issue))
                return False

        if outcome == DeleteOutcome.REFERENCED:
            issue = RollbackIssue(component, name, RollbackCause.DEPENDENCY_CONFLICT,
                                  "still referenced by other components")
            result.warnings.append(issue)
            observer.warning(str(issue))
            return False
        if outcome == DeleteOutcome.NOT_FOUND:
            issue = RollbackIssue(component, name, RollbackCause.NOT_FOUND, "already removed")
            result.warnings.append(issue)
            observer.warning(str(issue))
            return True
        observer.info(f"Deleted {component} '{name}'")
        return True

    def _relationships(self, ledger: RollbackLedger, result: RollbackResult, observer: SafeObserver) -> None:
        for schema_name in reversed(ledger.relationships):
            if self._delete("relationship", schema_name,
                            lambda: self.client.delete_relationship(schema_name), result, observer):
                result.relationships_deleted += 1
            else:
                result.remaining.relationships.insert(0, schema_name)

    def _entities(self, ledger: RollbackLedger, result: RollbackResult, observer: SafeObserver) -> None:
        for logical_name in reversed(ledger.entities):
            result.entities_processed += 1
            deleted = self._delete("entity", logical_name,
                                   lambda: self.client.delete_entity(logical_name), result, observer)
            if deleted:
                result.entities_deleted += 1
            else:
                result.entities_skipped += 1
                result.remaining.entities.insert(0, logical_name)
        observer.on_progress(
            "rollback_entities",
            f"{result.entities_deleted}/{result.entities_processed} entities deleted",
            {"deleted": result.entities_deleted, "skipped": result.entities_skipped},
        )

    def _global_choices(self, ledger: RollbackLedger, result: RollbackResult, observer: SafeObserver) -> None:
        for choice in reversed(ledger.global_choices):
            metadata_id = choice.get("metadataId")
            name = choice.get("name", metadata_id or "")
            if not metadata_id:
                result.warnings.append(RollbackIssue("global_choice", name, RollbackCause.NOT_FOUND,
                                                     "metadata id was not recorded"))
                result.remaining.global_choices.insert(0, choice)
                continue
            if self._delete("global_choice", name,
                            lambda: self.client.delete_global_option_set(metadata_id), result, observer):
                result.global_choices_deleted += 1
            else:
                result.remaining.global_choices.insert(0, choice)

    def _solution_components(self, ledger: RollbackLedger, result: RollbackResult,
                             observer: SafeObserver) -> None:
        """Standard tables are only removed from the solution, never deleted."""
        default_solution = ledger.solution["uniqueName"] if ledger.solution else None
        for component in reversed(ledger.solution_components):
            name = component.get("name", component.get("componentId", ""))
            solution_name = component.get("solutionUniqueName") or default_solution
            if not solution_name:
                result.remaining.solution_components.insert(0, component)
                continue
            try:
                self.client.remove_component_from_solution(
                    ComponentType(component["componentType"]), component["componentId"], solution_name
                )
            except DEPLOYMENT_ERRORS as e:
                issue = RollbackIssue("solution_component", name, RollbackCause.API_ERROR, str(e))
                result.warnings.append(issue)
                observer.warning(str(issue))
                result.remaining.solution_components.insert(0, component)

    def _solution(self, ledger: RollbackLedger, result: RollbackResult, observer: SafeObserver) -> None:
        if not ledger.solution:
            return
        name = ledger.solution.get("uniqueName", ledger.solution["id"])
        result.solution_deleted = self._delete(
            "solution", name, lambda: self.client.delete_solution(ledger.solution["id"]), result, observer
        )
        if result.solution_deleted:
            # Components of a deleted unmanaged solution stay in the environment
            result.remaining.solution_components = []
        else:
            result.remaining.solution = ledger.solution

    def _publisher(self, ledger: RollbackLedger, result: RollbackResult, observer: SafeObserver) -> None:
        if not ledger.publisher:
            return
        if result.remaining.solution:
            issue = RollbackIssue("publisher", ledger.publisher.get("uniqueName", ""),
                                  RollbackCause.DEPENDENCY_CONFLICT, "solution was not removed")
            result.warnings.append(issue)
            observer.warning(str(issue))
            result.remaining.publisher = ledger.publisher
            return
        name = ledger.publisher.get("uniqueName", ledger.publisher["id"])
        result.publisher_deleted = self._delete(
            "publisher", name, lambda: self.client.delete_publisher(ledger.publisher["id"]), result, observer
        )
        if not result.publisher_deleted:
            result.remaining.publisher = ledger.publisher


__all__ = [
    'ROLLBACK_COMPONENTS',
    'RollbackCause',
    'RollbackExecutor',
    'RollbackIssue',
    'RollbackOptions',
    'RollbackResult',
]
