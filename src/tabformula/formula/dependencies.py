"""Formula dependency tracking for tabformula.

Records which fields each formula field reads, so that a change to one
field can be propagated to every formula that depends on it, in an order
where each formula is computed after its inputs.
"""

from collections import deque
from collections.abc import Iterable

from tabformula.core.logging import LoggerMixin
from tabformula.formula.parser import ParseResult


class FormulaDependencyGraph(LoggerMixin):
    """
    Directed graph of formula field dependencies.

    Two adjacency maps are kept in sync:
    - ``dependents[x]``: fields whose formulas read ``x`` (recalculate on change)
    - ``requires[f]``: fields formula ``f`` reads (compute these first)

    Ordering follows insertion order, so results are deterministic.
    """

    def __init__(self):
        self.dependents: dict[str, dict[str, None]] = {}
        self.requires: dict[str, dict[str, None]] = {}

    def add_formula_field(self, field_id: str, depends_on: Iterable[str]) -> tuple[bool, str | None]:
        """
        Register (or replace) a formula field's inputs.

        Args:
            field_id: Name of the formula field
            depends_on: Fields the formula references

        Returns:
            Tuple of (success, error_message); the graph is left untouched
            when the new edges would close a cycle
        """
        inputs = list(dict.fromkeys(depends_on))
        if self.detect_circular_reference(field_id, inputs):
            self.logger.debug("Rejected %s: circular reference via %s", field_id, inputs)
            return False, f"Circular reference detected for field '{field_id}'"

        self._unlink(field_id)
        self.requires[field_id] = dict.fromkeys(inputs)
        for name in inputs:
            self.dependents.setdefault(name, {})[field_id] = None
        return True, None

    def add_parsed_formula(self, field_id: str, parsed: ParseResult) -> tuple[bool, str | None]:
        """Register a formula field from its parse result."""
        if not parsed.valid:
            return False, f"Formula parse error: {parsed.error}"
        return self.add_formula_field(field_id, parsed.dependencies)

    def remove_formula_field(self, field_id: str) -> None:
        """Forget a formula field and every edge touching it."""
        self._unlink(field_id)
        self.requires.pop(field_id, None)
        self.dependents.pop(field_id, None)

    def _unlink(self, field_id: str) -> None:
        for name in self.requires.get(field_id, {}):
            readers = self.dependents.get(name)
            if readers is not None:
                readers.pop(field_id, None)
                if not readers:
                    del self.dependents[name]

    def get_affected_fields(self, changed_field_id: str) -> list[str]:
        """
        Formula fields needing recalculation after ``changed_field_id`` changes.

        Breadth-first over dependents, so nearer fields come first.
        """
        affected: list[str] = []
        seen = {changed_field_id}
        queue = deque([changed_field_id])
        while queue:
            current = queue.popleft()
            for reader in self.dependents.get(current, {}):
                if reader not in seen:
                    seen.add(reader)
                    affected.append(reader)
                    queue.append(reader)
        return affected

    def get_evaluation_order(self, field_ids: Iterable[str]) -> list[str]:
        """
        Order formula fields so each comes after the fields it reads.

        Kahn's algorithm restricted to ``field_ids``.

        Returns:
            Ordered field names, or an empty list if they contain a cycle
        """
        wanted = list(dict.fromkeys(field_ids))
        pending = {
            fid: sum(1 for name in self.requires.get(fid, {}) if name in wanted) for fid in wanted
        }
        ready = deque(fid for fid in wanted if pending[fid] == 0)

        order: list[str] = []
        while ready:
            fid = ready.popleft()
            order.append(fid)
            for reader in self.dependents.get(fid, {}):
                if reader in pending:
                    pending[reader] -= 1
                    if pending[reader] == 0:
                        ready.append(reader)

        if len(order) != len(wanted):
            self.logger.debug("Cycle among %s", wanted)
            return []
        return order

    def detect_circular_reference(self, field_id: str, depends_on: Iterable[str]) -> bool:
        """Check whether ``field_id`` reading ``depends_on`` would close a cycle."""
        stack = list(depends_on)
        visited: set[str] = set()
        while stack:
            current = stack.pop()
            if current == field_id:
                return True
            if current in visited:
                continue
            visited.add(current)
            stack.extend(self.requires.get(current, {}))
        return False

    def get_dependencies(self, field_id: str) -> set[str]:
        """Fields ``field_id`` reads directly."""
        return set(self.requires.get(field_id, {}))

    def get_dependents(self, field_id: str) -> set[str]:
        """Formula fields that read ``field_id`` directly."""
        return set(self.dependents.get(field_id, {}))

    def clear(self) -> None:
        self.dependents.clear()
        self.requires.clear()

    def __len__(self) -> int:
        return len(self.requires)

    def __repr__(self) -> str:
        edges = sum(len(inputs) for inputs in self.requires.values())
        return f"FormulaDependencyGraph(fields={len(self.requires)}, edges={edges})"
