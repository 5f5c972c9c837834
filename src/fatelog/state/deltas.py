"""
Delta application and collection.

apply_delta(state, delta) -> state' is pure: the input GameState is never
touched. The state is dumped to its JSON form, the single mutation is made
at the delta's path, and the result is validated back into a GameState.
Anything that cannot be applied exactly as logged raises, because a
silently skipped delta would make replayed state drift from history.
"""

import copy
from datetime import datetime
from typing import Any, Iterable

from pydantic import ValidationError
from pydantic_core import to_jsonable_python

from .schema import GameState
from .schemas.delta import Delta, DeltaOperation, KNOWN_OPERATIONS, KNOWN_TARGETS


# Where each delta target is rooted inside the GameState dump
TARGET_ROOTS: dict[str, tuple[str, ...]] = {
    "session": (),
    "world": ("world",),
    "player": ("player",),
    "npc": ("npcs",),
    "scene": ("current_scene",),
    "location": ("world", "locations"),
}


class DeltaError(Exception):
    """Error applying or recording a delta."""
    pass


class InvalidDeltaOperationError(DeltaError):
    """Delta carries an operation this engine does not implement."""
    def __init__(self, operation: str, delta_id: str = ""):
        self.operation = operation
        self.delta_id = delta_id
        where = f" in delta {delta_id}" if delta_id else ""
        super().__init__(f"Unknown delta operation '{operation}'{where}")


class InvalidDeltaTargetError(DeltaError):
    """Delta addresses a state root that does not exist."""
    def __init__(self, target: str, delta_id: str = ""):
        self.target = target
        self.delta_id = delta_id
        where = f" in delta {delta_id}" if delta_id else ""
        super().__init__(f"Unknown delta target '{target}'{where}")


class DeltaApplicationError(DeltaError):
    """Delta is well-formed but cannot be applied to this state."""
    def __init__(self, delta: Delta, reason: str):
        self.delta = delta
        self.reason = reason
        super().__init__(f"Cannot apply {delta.delta_id} ({delta.operation} {delta.dotted_path}): {reason}")


def check_delta_kind(operation: str, target: str, delta_id: str = "") -> None:
    """Reject unknown operations/targets. Used at the log-write boundary and before apply."""
    if operation not in KNOWN_OPERATIONS:
        raise InvalidDeltaOperationError(operation, delta_id)
    if target not in KNOWN_TARGETS:
        raise InvalidDeltaTargetError(target, delta_id)


def changed_path(delta: Delta) -> str:
    return delta.dotted_path


def path_matches(watched: str, changed: str) -> bool:
    """True if changed is the watched path or lies beneath it."""
    return changed == watched or changed.startswith(watched + ".")


# -----------------------------------------------------------------------------
# Application
# -----------------------------------------------------------------------------

def _step(container: Any, key: str | int, delta: Delta, create: bool) -> Any:
    if isinstance(container, dict):
        key = str(key)
        if key not in container or container[key] is None:
            if not create:
                raise DeltaApplicationError(delta, f"missing key '{key}'")
            container[key] = {}
        return container[key]
    if isinstance(container, list):
        index = _list_index(container, key, delta)
        return container[index]
    raise DeltaApplicationError(delta, f"cannot descend into {type(container).__name__} at '{key}'")


def _list_index(container: list, key: str | int, delta: Delta) -> int:
    try:
        index = int(key)
    except (TypeError, ValueError):
        raise DeltaApplicationError(delta, f"list index expected, got '{key}'") from None
    if not 0 <= index < len(container):
        raise DeltaApplicationError(delta, f"index {index} out of range (len {len(container)})")
    return index


def _mutate(data: dict, delta: Delta) -> None:
    """Apply one delta to a GameState dump in place."""
    check_delta_kind(delta.operation, delta.target, delta.delta_id)

    full_path = [*TARGET_ROOTS[delta.target], *delta.path]
    operation = DeltaOperation(delta.operation)
    value = copy.deepcopy(to_jsonable_python(delta.new_value))

    parent: Any = data
    for key in full_path[:-1]:
        parent = _step(parent, key, delta, create=operation != DeltaOperation.REMOVE)
    last = full_path[-1]

    if operation == DeltaOperation.SET:
        if isinstance(parent, dict):
            parent[str(last)] = value
        elif isinstance(parent, list):
            parent[_list_index(parent, last, delta)] = value
        else:
            raise DeltaApplicationError(delta, "parent is not a container")

    elif operation == DeltaOperation.APPEND:
        if isinstance(parent, dict):
            current = parent.get(str(last))
            if current is None:
                current = parent[str(last)] = []
        elif isinstance(parent, list):
            current = parent[_list_index(parent, last, delta)]
        else:
            raise DeltaApplicationError(delta, "parent is not a container")
        if not isinstance(current, list):
            raise DeltaApplicationError(delta, "append target is not a list")
        current.append(value)

    elif operation == DeltaOperation.REMOVE:
        addressed = _peek(parent, last)
        if value is not None and isinstance(addressed, list):
            try:
                addressed.remove(value)
            except ValueError:
                raise DeltaApplicationError(delta, "element to remove not present") from None
        elif isinstance(parent, dict):
            if str(last) not in parent:
                raise DeltaApplicationError(delta, f"missing key '{last}'")
            del parent[str(last)]
        elif isinstance(parent, list):
            parent.pop(_list_index(parent, last, delta))
        else:
            raise DeltaApplicationError(delta, "parent is not a container")


def _peek(parent: Any, key: str | int) -> Any:
    if isinstance(parent, dict):
        return parent.get(str(key))
    if isinstance(parent, list):
        try:
            index = int(key)
        except (TypeError, ValueError):
            return None
        if 0 <= index < len(parent):
            return parent[index]
    return None


def apply_delta(state: GameState, delta: Delta) -> GameState:
    """
    Apply one delta, returning a new GameState.

    Raises:
        InvalidDeltaOperationError: unknown operation
        InvalidDeltaTargetError: unknown target
        DeltaApplicationError: path not present / result fails validation
    """
    data = state.model_dump(mode="json")
    _mutate(data, delta)
    try:
        return GameState.model_validate(data)
    except ValidationError as e:
        raise DeltaApplicationError(
            delta, f"resulting state is invalid ({e.error_count()} errors): {e.errors()[0]['msg']}"
        ) from e


def read_value(state: GameState, target: str, path: list[str | int], default: Any = None) -> Any:
    """Value currently stored at target + path in the state's JSON form."""
    if target not in KNOWN_TARGETS:
        raise InvalidDeltaTargetError(target)
    node: Any = state.model_dump(mode="json")
    for key in [*TARGET_ROOTS[target], *path]:
        if isinstance(node, dict) and str(key) in node:
            node = node[str(key)]
        elif isinstance(node, list):
            try:
                node = node[int(key)]
            except (TypeError, ValueError, IndexError):
                return default
        else:
            return default
    return node


def order_deltas(deltas: Iterable[Delta]) -> list[Delta]:
    return sorted(deltas, key=lambda d: (d.turn_id, d.sequence))


def apply_deltas(state: GameState, deltas: Iterable[Delta]) -> GameState:
    """Apply deltas in (turn_id, sequence) order."""
    for delta in order_deltas(deltas):
        state = apply_delta(state, delta)
    return state


# -----------------------------------------------------------------------------
# Collection
# -----------------------------------------------------------------------------

class DeltaCollector:
    """
    Assigns identity and ordering to the deltas of a single turn.

    delta_id is "{session_id}-{turn_id}-{sequence}" with a 1-based sequence.
    """

    def __init__(self, session_id: str, turn_id: int):
        self.session_id = session_id
        self.turn_id = turn_id
        self._deltas: list[Delta] = []

    def collect(
        self,
        target: str,
        operation: str,
        path: list[str | int],
        previous_value: Any,
        new_value: Any,
        cause: str = "",
        event_id: str = "",
    ) -> Delta:
        target = getattr(target, "value", target)
        operation = getattr(operation, "value", operation)
        check_delta_kind(operation, target)

        sequence = len(self._deltas) + 1
        delta = Delta(
            delta_id=f"{self.session_id}-{self.turn_id}-{sequence}",
            turn_id=self.turn_id,
            sequence=sequence,
            timestamp=datetime.now(),
            target=target,
            operation=operation,
            path=list(path),
            previous_value=to_jsonable_python(previous_value),
            new_value=to_jsonable_python(new_value),
            cause=cause,
            event_id=event_id,
        )
        self._deltas.append(delta)
        return delta

    def get_deltas(self) -> list[Delta]:
        return list(self._deltas)

    def pop(self) -> Delta:
        """Discard the most recent delta (one that failed to apply)."""
        return self._deltas.pop()

    def clear(self) -> None:
        self._deltas = []

    def __len__(self) -> int:
        return len(self._deltas)
