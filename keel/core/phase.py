"""
Phase Graph.

This module holds the registry of phases and computes execution plans.

Key features:
- Phase records with specialization and depends-on edges
- Validation of references and acyclicity (Kahn's algorithm)
- Freeze after load; frozen graphs are read-only
- plan_for() returns the ordered phases needed to reach a target
"""

import logging
import threading
from dataclasses import dataclass

from keel.errors import (
    ConfigurationError,
    DuplicatePhase,
    GraphCycle,
    UnknownPhase,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Phase:
    """
    A named stage of a workflow.

    Attributes:
        id: Unique phase identifier (e.g. "build", "code-build")
        description: Human-readable description
        specializes: Phase this one is a variant of, if any
        depends_on: Phases that must run before this one
    """

    id: str
    description: str = ""
    specializes: str | None = None
    depends_on: tuple[str, ...] = ()

    def __post_init__(self):
        if not self.id:
            raise ConfigurationError("Phase id must not be empty")
        # accept lists from callers, store a tuple
        object.__setattr__(self, "depends_on", tuple(self.depends_on))

    def predecessors(self) -> tuple[str, ...]:
        """Return every phase that must precede this one in a plan."""
        if self.specializes is None:
            return self.depends_on
        return (self.specializes, *self.depends_on)


class PhaseGraph:
    """
    Registry of phases and their ordering relations.

    Phases are registered at load time, then the graph is frozen. Planning
    on a frozen graph needs no locking.
    """

    def __init__(self):
        self._phases: dict[str, Phase] = {}
        self._order: dict[str, int] = {}
        self._frozen = False
        self._lock = threading.Lock()

    def register(self, phase: Phase) -> None:
        """
        Register a phase.

        Raises:
            DuplicatePhase: If the id is already registered
            ConfigurationError: If the graph is frozen
        """
        with self._lock:
            if self._frozen:
                raise ConfigurationError(
                    f"Cannot register phase '{phase.id}': phase graph is frozen"
                )
            if phase.id in self._phases:
                raise DuplicatePhase(phase.id)
            self._order[phase.id] = len(self._phases)
            self._phases[phase.id] = phase
        logger.debug("Registered phase %s", phase.id)

    def get(self, phase_id: str) -> Phase:
        """
        Look up a phase.

        Raises:
            UnknownPhase: If no phase has this id
        """
        try:
            return self._phases[phase_id]
        except KeyError:
            raise UnknownPhase(phase_id) from None

    def __contains__(self, phase_id: object) -> bool:
        return phase_id in self._phases

    def __len__(self) -> int:
        return len(self._phases)

    def phases(self) -> list[Phase]:
        """Return all phases in registration order."""
        return list(self._phases.values())

    @property
    def frozen(self) -> bool:
        return self._frozen

    def validate(self) -> None:
        """
        Check that every reference resolves and that the graph is acyclic.

        Raises:
            UnknownPhase: If a specializes/depends_on reference is unknown
            GraphCycle: If the edges form a cycle
        """
        for phase in self._phases.values():
            for ref in phase.predecessors():
                if ref not in self._phases:
                    raise UnknownPhase(ref, referenced_by=phase.id)

        self._toposort(list(self._phases))

    def freeze(self) -> None:
        """Validate the graph and reject further registrations."""
        self.validate()
        with self._lock:
            self._frozen = True
        logger.debug("Phase graph frozen with %d phases", len(self._phases))

    def plan_for(self, target_phase_id: str) -> list[Phase]:
        """
        Compute the ordered list of phases needed to reach a target.

        The plan contains the target, everything it specializes and the
        transitive closure of depends-on edges from all of those. Specialized
        phases precede their specializations and dependencies precede their
        dependents; ties keep registration order.

        Args:
            target_phase_id: Phase to plan for

        Returns:
            Phases in execution order, ending with the target

        Raises:
            UnknownPhase: If the target or a referenced phase is unknown
            GraphCycle: If the relevant subgraph has a cycle
        """
        self.get(target_phase_id)

        collected: list[str] = []
        seen: set[str] = set()
        to_process = [target_phase_id]

        while to_process:
            current = to_process.pop()
            if current in seen:
                continue
            seen.add(current)
            collected.append(current)

            for ref in self.get(current).predecessors():
                if ref not in self._phases:
                    raise UnknownPhase(ref, referenced_by=current)
                to_process.append(ref)

        return [self._phases[phase_id] for phase_id in self._toposort(collected)]

    def _toposort(self, phase_ids: list[str]) -> list[str]:
        # Kahn's algorithm; the ready queue is kept in registration order
        members = set(phase_ids)
        dependents: dict[str, list[str]] = {phase_id: [] for phase_id in members}
        in_degree: dict[str, int] = {phase_id: 0 for phase_id in members}

        for phase_id in members:
            for ref in self._phases[phase_id].predecessors():
                if ref in members:
                    dependents[ref].append(phase_id)
                    in_degree[phase_id] += 1

        queue = [phase_id for phase_id in members if in_degree[phase_id] == 0]
        result = []

        while queue:
            queue.sort(key=self._order.__getitem__)
            node = queue.pop(0)
            result.append(node)

            for dependent in dependents[node]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        if len(result) != len(members):
            remaining = {phase_id for phase_id in members if in_degree[phase_id] > 0}
            raise GraphCycle(self._find_cycle(remaining))

        return result

    def _find_cycle(self, candidates: set[str]) -> list[str]:
        start = min(candidates, key=self._order.__getitem__)
        path: list[str] = []
        index: dict[str, int] = {}
        node = start

        # every remaining node has a predecessor among the remaining nodes
        while node not in index:
            index[node] = len(path)
            path.append(node)
            node = next(
                ref
                for ref in self._phases[node].predecessors()
                if ref in candidates
            )

        cycle = path[index[node]:]
        cycle.reverse()
        return [*cycle, cycle[0]]
