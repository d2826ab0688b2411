"""
Deployment Orchestrator.

Deploys a ``MetadataDocument`` to a Dataverse environment through a metadata
client. A run moves through these states::

    Idle -> PublisherReady -> SolutionReady -> EntitiesCreated
         -> AttributesCreated -> RelationshipsCreated -> Complete

``Failed`` is reachable from any non-terminal state; ``Cancelled`` is entered
when the cancellation token fires between two stages.

A stage that partially fails does not abort the run: every item gets an
outcome, and the next stage only works on items that are available (created
or already present). Before creating anything, the orchestrator looks the
item up by case-insensitive name and reuses it when found.

Entity creation is dispatched to a bounded thread pool. Attributes of an
entity are created after that entity, and relationships after both of their
endpoints.

Usage:
    orchestrator = DeploymentOrchestrator(client, observers=[LoggingObserver()])
    result = orchestrator.deploy(document, DeploymentOptions(
        solution_name="Sales", publisher_prefix="cr123"))
    print(result.summary())
"""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from constants import DeploymentConfig
from core.platform.auth import AuthenticationError
from core.platform.dataverse_client import (
    DataverseAPIError,
    ErrorClass,
    TransientAPIError,
    classify_error,
)
from core.platform.normalizers import EntityRef, PublisherRef, SolutionRef
from core.schema.global_choice import GlobalChoice
from core.schema.schema_generator import EntityDefinition, LookupColumn, MetadataDocument
from core.validators.input import ConfigurationError, InputValidator
from shared.models.metadata_types import CDMPolicy, ComponentType

from .cancellation import CancellationToken, DeploymentCancelledException, SimpleCancellationToken
from .observer import DeploymentObserver, SafeObserver

logger = logging.getLogger(__name__)

# Failures the orchestrator records per item instead of propagating
DEPLOYMENT_ERRORS = (DataverseAPIError, TransientAPIError, AuthenticationError)


class DeploymentState(str, Enum):
    IDLE = "idle"
    PUBLISHER_READY = "publisher_ready"
    SOLUTION_READY = "solution_ready"
    ENTITIES_CREATED = "entities_created"
    ATTRIBUTES_CREATED = "attributes_created"
    RELATIONSHIPS_CREATED = "relationships_created"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (DeploymentState.COMPLETE, DeploymentState.FAILED, DeploymentState.CANCELLED)


class ComponentKind(str, Enum):
    PUBLISHER = "publisher"
    SOLUTION = "solution"
    GLOBAL_CHOICE = "global_choice"
    ENTITY = "entity"
    ATTRIBUTE = "attribute"
    RELATIONSHIP = "relationship"
    SOLUTION_COMPONENT = "solution_component"


class OutcomeStatus(str, Enum):
    CREATED = "created"
    ALREADY_PRESENT = "already_present"
    SKIPPED = "skipped"
    FAILED = "failed"
    PLANNED = "planned"


@dataclass
class ItemOutcome:
    """Result of deploying one named component."""
    kind: ComponentKind
    name: str
    status: OutcomeStatus
    message: str = ""
    parent: Optional[str] = None
    metadata_id: Optional[str] = None

    @property
    def already_present(self) -> bool:
        return self.status == OutcomeStatus.ALREADY_PRESENT

    @property
    def available(self) -> bool:
        """The component exists remotely after this step."""
        return self.status in (OutcomeStatus.CREATED, OutcomeStatus.ALREADY_PRESENT)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "kind": self.kind.value,
            "name": self.name,
            "status": self.status.value,
            "alreadyPresent": self.already_present,
        }
        if self.message:
            data["message"] = self.message
        if self.parent:
            data["parent"] = self.parent
        if self.metadata_id:
            data["metadataId"] = self.metadata_id
        return data


@dataclass
class DeploymentOptions:
    """What to deploy into and how."""
    solution_name: str
    publisher_prefix: str
    solution_display_name: Optional[str] = None
    publisher_name: Optional[str] = None
    publisher_display_name: Optional[str] = None
    cdm_policy: CDMPolicy = CDMPolicy.USE_CDM
    max_concurrency: int = DeploymentConfig.DEFAULT_MAX_CONCURRENCY
    global_choices: List[GlobalChoice] = field(default_factory=list)
    add_to_solution: bool = True
    dry_run: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DeploymentOptions':
        """Build from the ``deployment`` section of a config file."""
        section = data.get('deployment', data)
        return cls(
            solution_name=section.get('solution_name', ''),
            publisher_prefix=section.get('publisher_prefix', ''),
            solution_display_name=section.get('solution_display_name'),
            publisher_name=section.get('publisher_name'),
            publisher_display_name=section.get('publisher_display_name'),
            cdm_policy=CDMPolicy(section.get('cdm_policy', CDMPolicy.USE_CDM.value)),
            max_concurrency=section.get('max_concurrency', DeploymentConfig.DEFAULT_MAX_CONCURRENCY),
            global_choices=[GlobalChoice.from_dict(c) for c in section.get('global_choices', [])],
            add_to_solution=section.get('add_to_solution', True),
            dry_run=section.get('dry_run', False),
        )

    @property
    def effective_publisher_name(self) -> str:
        return self.publisher_name or f"{self.publisher_prefix}publisher"

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: On any missing or invalid option
        """
        InputValidator.validate_solution_name(self.solution_name)
        InputValidator.validate_publisher_prefix(self.publisher_prefix)
        InputValidator.validate_solution_name(self.effective_publisher_name)
        if not isinstance(self.max_concurrency, int) or not (
            1 <= self.max_concurrency <= DeploymentConfig.MAX_CONCURRENCY_LIMIT
        ):
            raise ConfigurationError(
                f"max_concurrency must be between 1 and {DeploymentConfig.MAX_CONCURRENCY_LIMIT}"
            )
        for choice in self.global_choices:
            problems = choice.validation_errors()
            if problems:
                raise ConfigurationError("; ".join(problems))


@dataclass
class RollbackLedger:
    """Components created by one run, in creation order."""
    publisher: Optional[Dict[str, str]] = None
    solution: Optional[Dict[str, str]] = None
    global_choices: List[Dict[str, str]] = field(default_factory=list)
    entities: List[str] = field(default_factory=list)
    relationships: List[str] = field(default_factory=list)
    solution_components: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.publisher or self.solution or self.global_choices or self.entities
            or self.relationships or self.solution_components
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "publisher": self.publisher,
            "solution": self.solution,
            "globalChoices": list(self.global_choices),
            "entities": list(self.entities),
            "relationships": list(self.relationships),
            "solutionComponents": list(self.solution_components),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'RollbackLedger':
        data = data or {}
        return cls(
            publisher=data.get('publisher'),
            solution=data.get('solution'),
            global_choices=list(data.get('globalChoices', [])),
            entities=list(data.get('entities', [])),
            relationships=list(data.get('relationships', [])),
            solution_components=list(data.get('solutionComponents', [])),
        )


@dataclass
class DeploymentResult:
    """Structured outcome of one run; partial progress is always kept."""
    deployment_id: str
    solution_name: str
    state: DeploymentState = DeploymentState.IDLE
    outcomes: List[ItemOutcome] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    ledger: RollbackLedger = field(default_factory=RollbackLedger)
    started_at: str = ""
    finished_at: Optional[str] = None
    dry_run: bool = False
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return not self.errors and self.state == DeploymentState.COMPLETE

    def outcomes_for(self, kind: ComponentKind) -> List[ItemOutcome]:
        return [o for o in self.outcomes if o.kind == kind]

    def count(self, kind: ComponentKind, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.kind == kind and o.status == status)

    def summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {"state": self.state.value, "success": self.success}
        for kind in (ComponentKind.GLOBAL_CHOICE, ComponentKind.ENTITY,
                     ComponentKind.ATTRIBUTE, ComponentKind.RELATIONSHIP):
            summary[kind.value] = {
                status.value: self.count(kind, status)
                for status in OutcomeStatus
                if self.count(kind, status)
            }
        summary["errors"] = len(self.errors)
        summary["warnings"] = len(self.warnings)
        return summary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deploymentId": self.deployment_id,
            "solutionName": self.solution_name,
            "state": self.state.value,
            "success": self.success,
            "dryRun": self.dry_run,
            "cancelled": self.cancelled,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "summary": self.summary(),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "rollbackLedger": self.ledger.to_dict(),
        }


def new_deployment_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"deploy-{stamp}-{uuid.uuid4().hex[:8]}"


class _DeploymentRun:
    """
    State of one run: result, ledger and the known-existing caches.

    Shared by the worker threads of that run only.
    """

    def __init__(self, options: DeploymentOptions, observer: SafeObserver, deployment_id: str):
        self.options = options
        self.observer = observer
        self.result = DeploymentResult(
            deployment_id=deployment_id,
            solution_name=options.solution_name,
            started_at=datetime.now(timezone.utc).isoformat(),
            dry_run=options.dry_run,
        )
        self.publisher: Optional[PublisherRef] = None
        self.solution: Optional[SolutionRef] = None
        self.known_entities: Dict[str, EntityRef] = {}
        self.available_entities: Set[str] = set()
        self._lock = threading.RLock()
        self._name_locks: Dict[str, threading.Lock] = {}

    def name_lock(self, name: str) -> threading.Lock:
        with self._lock:
            return self._name_locks.setdefault(name.lower(), threading.Lock())

    def record(self, outcome: ItemOutcome) -> ItemOutcome:
        with self._lock:
            self.result.outcomes.append(outcome)
        return outcome

    def warn(self, message: str) -> None:
        with self._lock:
            self.result.warnings.append(message)
        self.observer.warning(message)

    def fail(self, message: str) -> None:
        with self._lock:
            self.result.errors.append(message)
        self.observer.error(message)

    def remember_entity(self, ref: EntityRef) -> None:
        with self._lock:
            self.known_entities[ref.logical_name.lower()] = ref
            self.available_entities.add(ref.logical_name.lower())

    def cached_entity(self, logical_name: str) -> Optional[EntityRef]:
        with self._lock:
            return self.known_entities.get(logical_name.lower())

    def is_available(self, logical_name: str) -> bool:
        with self._lock:
            return logical_name.lower() in self.available_entities

    def ledger_entity(self, logical_name: str) -> None:
        with self._lock:
            self.result.ledger.entities.append(logical_name)

    def transition(self, state: DeploymentState) -> None:
        self.result.state = state
        self.observer.on_progress(state.value, f"Deployment {self.result.deployment_id} is {state.value}")


class DeploymentOrchestrator:
    """
    Runs deployments of metadata documents.

    The orchestrator holds no state between runs: caches, ledger and result
    live on a per-run object created by ``deploy()``.
    """

    def __init__(
        self,
        client: Any,
        observers: Sequence[DeploymentObserver] = (),
        cancellation_token: Optional[CancellationToken] = None,
    ):
        """
        Args:
            client: Metadata client (``DataverseMetadataClient`` or compatible)
            observers: Progress sinks notified during each run
            cancellation_token: Checked between stages
        """
        self.client = client
        self.observers = list(observers)
        self.cancellation_token = cancellation_token or SimpleCancellationToken()

    def deploy(
        self,
        document: MetadataDocument,
        options: DeploymentOptions,
        deployment_id: Optional[str] = None,
    ) -> DeploymentResult:
        """
        Deploy ``document``.

        Raises:
            ConfigurationError: Invalid options or an empty document; raised
                before any remote call.
        """
        options.validate()
        if not (document.entities or document.relationships or document.cdm_entities
                or document.additional_columns or options.global_choices):
            raise ConfigurationError("Metadata document is empty; nothing to deploy")
        if document.publisher_prefix and document.publisher_prefix != options.publisher_prefix:
            raise ConfigurationError(
                f"Document was generated for prefix '{document.publisher_prefix}', "
                f"not '{options.publisher_prefix}'"
            )

        run = _DeploymentRun(options, SafeObserver(self.observers), deployment_id or new_deployment_id())
        run.observer.on_progress(
            "start",
            f"Deploying {len(document.entities)} entities to solution '{options.solution_name}'",
            {"deploymentId": run.result.deployment_id, "dryRun": options.dry_run},
        )

        if options.dry_run:
            self._plan(run, document)
            return self._finish(run)

        stages: List[Callable[[], bool]] = [
            lambda: self._ensure_publisher(run),
            lambda: self._ensure_solution(run),
            lambda: self._ensure_global_choices(run),
            lambda: self._ensure_entities(run, document),
            lambda: self._ensure_attributes(run, document),
            lambda: self._ensure_relationships(run, document),
        ]
        try:
            for stage in stages:
                self.cancellation_token.throw_if_cancelled()
                if not stage():
                    run.transition(DeploymentState.FAILED)
                    break
        except DeploymentCancelledException:
            run.result.cancelled = True
            run.warn("Deployment cancelled; returning partial results")
            run.transition(DeploymentState.CANCELLED)

        return self._finish(run)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _finish(self, run: _DeploymentRun) -> DeploymentResult:
        result = run.result
        if not result.state.is_terminal:
            run.transition(DeploymentState.COMPLETE)
        result.finished_at = datetime.now(timezone.utc).isoformat()
        run.observer.on_progress("finished", "Deployment finished", result.summary())
        logger.info(f"Deployment {result.deployment_id} finished: {result.summary()}")
        return result

    def _failure(
        self,
        run: _DeploymentRun,
        kind: ComponentKind,
        name: str,
        exc: Exception,
        parent: Optional[str] = None,
    ) -> ItemOutcome:
        """Record a failed call according to its classification."""
        error_class = classify_error(exc)
        label = f"{kind.value} '{name}'"
        if error_class == ErrorClass.ALREADY_EXISTS:
            run.warn(f"{label} already exists remotely: {exc}")
            return run.record(ItemOutcome(kind, name, OutcomeStatus.ALREADY_PRESENT, str(exc), parent))
        if error_class == ErrorClass.DEPENDENCY_CONFLICT:
            run.warn(f"Skipped {label}: {exc}")
            return run.record(ItemOutcome(kind, name, OutcomeStatus.SKIPPED, str(exc), parent))
        if error_class == ErrorClass.TRANSIENT:
            run.fail(f"{label} failed after retries: {exc}")
            return run.record(ItemOutcome(kind, name, OutcomeStatus.FAILED, str(exc), parent))
        run.warn(f"Skipped {label}, rejected by the platform: {exc}")
        return run.record(ItemOutcome(kind, name, OutcomeStatus.SKIPPED, str(exc), parent))

    def _add_to_solution(self, run: _DeploymentRun, component_type: ComponentType,
                         component_id: Optional[str], name: str, record_in_ledger: bool = False) -> None:
        if not run.options.add_to_solution:
            return
        if not component_id:
            run.warn(f"Cannot add '{name}' to solution: component id unknown")
            return
        try:
            self.client.add_component_to_solution(component_type, component_id, run.options.solution_name)
        except DEPLOYMENT_ERRORS as e:
            run.warn(f"Could not add '{name}' to solution '{run.options.solution_name}': {e}")
            return
        run.record(ItemOutcome(ComponentKind.SOLUTION_COMPONENT, name, OutcomeStatus.CREATED,
                               metadata_id=component_id))
        if record_in_ledger:
            run.result.ledger.solution_components.append(
                {"componentType": int(component_type), "componentId": component_id, "name": name,
                 "solutionUniqueName": run.options.solution_name}
            )

    def _lookup_entity(self, run: _DeploymentRun, logical_name: str) -> Optional[EntityRef]:
        """Entity by name, using the run cache before the remote lookup."""
        cached = run.cached_entity(logical_name)
        if cached:
            return cached
        ref = self.client.get_entity(logical_name)
        if ref:
            run.remember_entity(ref)
        return ref

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------

    def _plan(self, run: _DeploymentRun, document: MetadataDocument) -> None:
        """Outcomes for a dry run; no remote calls."""
        prefix = run.options.publisher_prefix
        run.record(ItemOutcome(ComponentKind.PUBLISHER, run.options.effective_publisher_name, OutcomeStatus.PLANNED))
        run.record(ItemOutcome(ComponentKind.SOLUTION, run.options.solution_name, OutcomeStatus.PLANNED))
        for choice in run.options.global_choices:
            run.record(ItemOutcome(ComponentKind.GLOBAL_CHOICE, choice.logical_name(prefix), OutcomeStatus.PLANNED))
        for entity in document.entities:
            run.record(ItemOutcome(ComponentKind.ENTITY, entity.logical_name, OutcomeStatus.PLANNED))
            for attribute in entity.attributes:
                run.record(ItemOutcome(ComponentKind.ATTRIBUTE, attribute["LogicalName"], OutcomeStatus.PLANNED,
                                       parent=entity.logical_name))
        for logical in document.cdm_entities.values():
            run.record(ItemOutcome(ComponentKind.SOLUTION_COMPONENT, logical, OutcomeStatus.PLANNED))
        for relationship in document.relationships:
            run.record(ItemOutcome(ComponentKind.RELATIONSHIP, relationship.schema_name, OutcomeStatus.PLANNED))
        for column in document.additional_columns:
            run.record(ItemOutcome(ComponentKind.RELATIONSHIP, column.logical_name, OutcomeStatus.PLANNED,
                                   parent=column.entity_logical_name))
        for message in document.errors:
            run.fail(message)

    # ------------------------------------------------------------------
    # Publisher and solution
    # ------------------------------------------------------------------

    def _ensure_publisher(self, run: _DeploymentRun) -> bool:
        options = run.options
        name = options.effective_publisher_name
        try:
            publisher, created = self.client.ensure_publisher(
                unique_name=name,
                friendly_name=options.publisher_display_name or name,
                prefix=options.publisher_prefix,
            )
        except DEPLOYMENT_ERRORS as e:
            run.fail(f"Publisher '{name}' could not be ensured: {e}")
            run.record(ItemOutcome(ComponentKind.PUBLISHER, name, OutcomeStatus.FAILED, str(e)))
            return False

        if publisher.prefix and publisher.prefix != options.publisher_prefix:
            run.warn(
                f"Publisher '{name}' uses prefix '{publisher.prefix}', "
                f"components are generated with '{options.publisher_prefix}'"
            )
        run.publisher = publisher
        status = OutcomeStatus.CREATED if created else OutcomeStatus.ALREADY_PRESENT
        run.record(ItemOutcome(ComponentKind.PUBLISHER, name, status, metadata_id=publisher.publisher_id))
        if created:
            run.result.ledger.publisher = {"id": publisher.publisher_id, "uniqueName": name}
        run.transition(DeploymentState.PUBLISHER_READY)
        return True

    def _ensure_solution(self, run: _DeploymentRun) -> bool:
        options = run.options
        name = options.solution_name
        try:
            solution, created = self.client.ensure_solution(
                unique_name=name,
                friendly_name=options.solution_display_name or name,
                publisher=run.publisher,
            )
        except DEPLOYMENT_ERRORS as e:
            run.fail(f"Solution '{name}' could not be ensured: {e}")
            run.record(ItemOutcome(ComponentKind.SOLUTION, name, OutcomeStatus.FAILED, str(e)))
            return False

        run.solution = solution
        status = OutcomeStatus.CREATED if created else OutcomeStatus.ALREADY_PRESENT
        run.record(ItemOutcome(ComponentKind.SOLUTION, name, status, metadata_id=solution.solution_id))
        if created:
            run.result.ledger.solution = {"id": solution.solution_id, "uniqueName": name}
        run.transition(DeploymentState.SOLUTION_READY)
        return True

    # ------------------------------------------------------------------
    # Global choices
    # ------------------------------------------------------------------

    def _ensure_global_choices(self, run: _DeploymentRun) -> bool:
        prefix = run.options.publisher_prefix
        seen: Set[str] = set()
        for choice in run.options.global_choices:
            name = choice.logical_name(prefix)
            if name in seen:
                run.record(ItemOutcome(ComponentKind.GLOBAL_CHOICE, name, OutcomeStatus.ALREADY_PRESENT,
                                       "declared more than once"))
                continue
            seen.add(name)
            try:
                existing = self.client.get_global_option_set(name)
                if existing:
                    run.record(ItemOutcome(ComponentKind.GLOBAL_CHOICE, name, OutcomeStatus.ALREADY_PRESENT,
                                           metadata_id=existing.metadata_id))
                    self._add_to_solution(run, ComponentType.OPTION_SET, existing.metadata_id, name)
                    continue
                created = self.client.create_global_option_set(
                    choice.to_payload(prefix), solution_name=run.options.solution_name
                )
            except DEPLOYMENT_ERRORS as e:
                self._failure(run, ComponentKind.GLOBAL_CHOICE, name, e)
                continue
            run.record(ItemOutcome(ComponentKind.GLOBAL_CHOICE, name, OutcomeStatus.CREATED,
                                   metadata_id=created.metadata_id))
            run.result.ledger.global_choices.append({"name": name, "metadataId": created.metadata_id})
        if run.options.global_choices:
            run.observer.on_progress("global_choices", f"{len(seen)} global choices processed")
        return True

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def _ensure_entities(self, run: _DeploymentRun, document: MetadataDocument) -> bool:
        for diagram_name, logical in document.cdm_entities.items():
            self._register_standard_entity(run, diagram_name, logical)

        if document.entities:
            with ThreadPoolExecutor(max_workers=run.options.max_concurrency) as pool:
                list(pool.map(lambda definition: self._ensure_entity(run, definition), document.entities))

        available = sum(1 for e in document.entities if run.is_available(e.logical_name))
        run.observer.on_progress(
            "entities",
            f"{available}/{len(document.entities)} entities available",
            {"available": available, "total": len(document.entities)},
        )
        run.transition(DeploymentState.ENTITIES_CREATED)
        return True

    def _register_standard_entity(self, run: _DeploymentRun, diagram_name: str, logical: str) -> None:
        """Standard tables are never created, only verified and added to the solution."""
        try:
            ref = self._lookup_entity(run, logical)
        except DEPLOYMENT_ERRORS as e:
            self._failure(run, ComponentKind.SOLUTION_COMPONENT, logical, e)
            return
        if not ref:
            run.fail(f"Standard table '{logical}' (for '{diagram_name}') does not exist in the environment")
            run.record(ItemOutcome(ComponentKind.SOLUTION_COMPONENT, logical, OutcomeStatus.FAILED,
                                   "standard table not found"))
            return
        self._add_to_solution(run, ComponentType.ENTITY, ref.metadata_id, logical, record_in_ledger=True)

    def _ensure_entity(self, run: _DeploymentRun, definition: EntityDefinition) -> ItemOutcome:
        name = definition.logical_name
        with run.name_lock(name):
            if run.cached_entity(name):
                logger.debug(f"Entity {name} already handled in this run")
                return run.record(ItemOutcome(ComponentKind.ENTITY, name, OutcomeStatus.ALREADY_PRESENT,
                                              metadata_id=run.cached_entity(name).metadata_id))
            try:
                existing = self.client.get_entity(name)
                if existing:
                    run.remember_entity(existing)
                    self._add_to_solution(run, ComponentType.ENTITY, existing.metadata_id, name)
                    return run.record(ItemOutcome(ComponentKind.ENTITY, name, OutcomeStatus.ALREADY_PRESENT,
                                                  metadata_id=existing.metadata_id))
                created = self.client.create_entity(
                    definition.to_payload(), solution_name=run.options.solution_name
                )
            except DEPLOYMENT_ERRORS as e:
                outcome = self._failure(run, ComponentKind.ENTITY, name, e)
                if outcome.available:
                    run.remember_entity(EntityRef(logical_name=name))
                return outcome

            run.remember_entity(created)
            run.ledger_entity(name)
            run.observer.on_log(logging.INFO, f"Created entity {name}")
            return run.record(ItemOutcome(ComponentKind.ENTITY, name, OutcomeStatus.CREATED,
                                          metadata_id=created.metadata_id))

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    def _ensure_attributes(self, run: _DeploymentRun, document: MetadataDocument) -> bool:
        pending = [e for e in document.entities if e.attributes and run.is_available(e.logical_name)]
        for definition in document.entities:
            if definition.attributes and not run.is_available(definition.logical_name):
                run.warn(f"Attributes of '{definition.logical_name}' skipped: entity is not available")

        if pending:
            with ThreadPoolExecutor(max_workers=run.options.max_concurrency) as pool:
                list(pool.map(lambda definition: self._ensure_entity_attributes(run, definition), pending))

        run.transition(DeploymentState.ATTRIBUTES_CREATED)
        return True

    def _ensure_entity_attributes(self, run: _DeploymentRun, definition: EntityDefinition) -> None:
        """Columns of one entity, one after the other."""
        entity = definition.logical_name
        seen: Set[str] = set()
        for payload in definition.attributes:
            name = payload["LogicalName"]
            if name.lower() in seen:
                run.record(ItemOutcome(ComponentKind.ATTRIBUTE, name, OutcomeStatus.ALREADY_PRESENT,
                                       "declared more than once", parent=entity))
                continue
            seen.add(name.lower())
            try:
                existing = self.client.get_attribute(entity, name)
                if existing:
                    run.record(ItemOutcome(ComponentKind.ATTRIBUTE, name, OutcomeStatus.ALREADY_PRESENT,
                                           parent=entity, metadata_id=existing.metadata_id))
                    continue
                created = self.client.create_attribute(entity, payload, solution_name=run.options.solution_name)
            except DEPLOYMENT_ERRORS as e:
                self._failure(run, ComponentKind.ATTRIBUTE, name, e, parent=entity)
                continue
            run.record(ItemOutcome(ComponentKind.ATTRIBUTE, name, OutcomeStatus.CREATED,
                                   parent=entity, metadata_id=created.metadata_id))

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def _ensure_relationships(self, run: _DeploymentRun, document: MetadataDocument) -> bool:
        standard = {logical.lower() for logical in document.cdm_entities.values()}
        seen: Set[str] = set()

        for relationship in document.relationships:
            missing = [
                name for name in (relationship.referenced_entity, relationship.referencing_entity)
                if not self._endpoint_available(run, name, standard)
            ]
            if missing:
                run.warn(
                    f"Relationship '{relationship.schema_name}' skipped: "
                    f"entity {', '.join(missing)} is not available"
                )
                run.record(ItemOutcome(ComponentKind.RELATIONSHIP, relationship.schema_name,
                                       OutcomeStatus.SKIPPED, "endpoint not available"))
                continue
            self._ensure_relationship(run, relationship.schema_name, relationship.payload, seen)

        for column in document.additional_columns:
            self._ensure_lookup_column(run, column, standard, seen)

        run.transition(DeploymentState.RELATIONSHIPS_CREATED)
        return True

    def _endpoint_available(self, run: _DeploymentRun, logical_name: str, standard: Set[str]) -> bool:
        if run.is_available(logical_name):
            return True
        if logical_name.lower() in standard:
            return run.cached_entity(logical_name) is not None
        return False

    def _ensure_lookup_column(self, run: _DeploymentRun, column: LookupColumn,
                              standard: Set[str], seen: Set[str]) -> None:
        """Bind a lookup column to the first of its targets that exists."""
        if not run.is_available(column.entity_logical_name):
            run.warn(f"Lookup '{column.logical_name}' skipped: entity '{column.entity_logical_name}' is not available")
            run.record(ItemOutcome(ComponentKind.RELATIONSHIP, column.logical_name, OutcomeStatus.SKIPPED,
                                   "entity not available", parent=column.entity_logical_name))
            return

        target = None
        for candidate in column.targets:
            if self._endpoint_available(run, candidate, standard):
                target = candidate
                break
            try:
                if self._lookup_entity(run, candidate):
                    target = candidate
                    break
            except DEPLOYMENT_ERRORS as e:
                run.warn(f"Lookup target '{candidate}' could not be checked: {e}")

        if target is None:
            run.fail(
                f"Lookup '{column.logical_name}' skipped: none of the targets "
                f"{', '.join(column.targets)} exists"
            )
            run.record(ItemOutcome(ComponentKind.RELATIONSHIP, column.logical_name, OutcomeStatus.SKIPPED,
                                   "no target exists", parent=column.entity_logical_name))
            return

        payload = column.relationship_payload(target)
        self._ensure_relationship(run, payload["SchemaName"], payload, seen, parent=column.entity_logical_name)

    def _ensure_relationship(self, run: _DeploymentRun, schema_name: str, payload: Dict[str, Any],
                             seen: Set[str], parent: Optional[str] = None) -> None:
        if schema_name.lower() in seen:
            run.record(ItemOutcome(ComponentKind.RELATIONSHIP, schema_name, OutcomeStatus.ALREADY_PRESENT,
                                   "declared more than once", parent=parent))
            return
        seen.add(schema_name.lower())
        try:
            existing = self.client.get_relationship(schema_name)
            if existing:
                run.record(ItemOutcome(ComponentKind.RELATIONSHIP, schema_name, OutcomeStatus.ALREADY_PRESENT,
                                       parent=parent, metadata_id=existing.metadata_id))
                return
            created = self.client.create_relationship(payload, solution_name=run.options.solution_name)
        except DEPLOYMENT_ERRORS as e:
            self._failure(run, ComponentKind.RELATIONSHIP, schema_name, e, parent=parent)
            return
        run.result.ledger.relationships.append(schema_name)
        run.record(ItemOutcome(ComponentKind.RELATIONSHIP, schema_name, OutcomeStatus.CREATED,
                               parent=parent, metadata_id=created.metadata_id))


__all__ = [
    'ComponentKind',
    'DEPLOYMENT_ERRORS',
    'DeploymentOptions',
    'DeploymentOrchestrator',
    'DeploymentResult',
    'DeploymentState',
    'ItemOutcome',
    'OutcomeStatus',
    'RollbackLedger',
    'new_deployment_id',
]
