# file: reliefsync/services/lifecycle.py

from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple


class TransitionError(Exception):
    def __init__(self, lifecycle: str, action: str, status: str, message: Optional[str] = None):
        self.lifecycle = lifecycle
        self.action = action
        self.status = status
        article = "an" if lifecycle[:1] in "aeiou" else "a"
        super().__init__(message or f"Cannot {action} {article} {lifecycle} that is {status}")


class Lifecycle:
    """
    Finite state machine shared by the request, offer and match aggregates.

    `transitions` maps an action name to the {from_status: to_status} edges it
    allows. Terminal statuses accept no action at all. `rank` orders statuses
    by their distance from the initial status; `resolve` uses it to pick a
    deterministic winner when two copies of the same record disagree.
    """

    def __init__(
            self,
            name: str,
            initial: str,
            transitions: Mapping[str, Mapping[str, str]],
            terminal: Iterable[str],
            deletable: Optional[Iterable[str]] = None,
    ):
        self.name = name
        self.initial = initial
        self.transitions: Dict[str, Dict[str, str]] = {a: dict(e) for a, e in transitions.items()}
        self.terminal: FrozenSet[str] = frozenset(terminal)

        states = {initial} | set(self.terminal)
        for edges in self.transitions.values():
            states.update(edges.keys())
            states.update(edges.values())
        self.states: FrozenSet[str] = frozenset(states)

        self.deletable: FrozenSet[str] = frozenset(deletable) if deletable is not None else self.states
        for status in self.terminal:
            for action, edges in self.transitions.items():
                if status in edges:
                    raise ValueError(f"{name}: terminal status {status} has outgoing action {action}")
        self._ranks = self._compute_ranks()

    def _compute_ranks(self) -> Dict[str, int]:
        predecessors: Dict[str, set] = {s: set() for s in self.states}
        for edges in self.transitions.values():
            for src, dst in edges.items():
                if src != dst:
                    predecessors[dst].add(src)

        ranks: Dict[str, int] = {}

        def longest(status: str, trail: Tuple[str, ...]) -> int:
            if status in ranks:
                return ranks[status]
            if status in trail:
                raise ValueError(f"{self.name}: cycle through {status}")
            best = 0
            for prev in predecessors[status]:
                best = max(best, 1 + longest(prev, trail + (status,)))
            ranks[status] = best
            return best

        for status in self.states:
            longest(status, ())
        return ranks

    def is_valid(self, status: str) -> bool:
        return status in self.states

    def is_terminal(self, status: str) -> bool:
        return status in self.terminal

    def can(self, action: str, status: str) -> bool:
        return status in self.transitions.get(action, {})

    def check(self, action: str, status: str) -> None:
        if action not in self.transitions:
            raise ValueError(f"{self.name}: unknown action {action}")
        if not self.can(action, status):
            raise TransitionError(self.name, action, status)

    def next_status(self, action: str, status: str) -> str:
        self.check(action, status)
        return self.transitions[action][status]

    def can_delete(self, status: str) -> bool:
        return status in self.deletable

    def check_delete(self, status: str) -> None:
        if not self.can_delete(status):
            raise TransitionError(self.name, "delete", status)

    def rank(self, status: str) -> Tuple[int, int, str]:
        return self._ranks.get(status, -1), int(status in self.terminal), status

    def resolve(self, current: Optional[str], incoming: Optional[str]) -> Optional[str]:
        """
        Picks the status two diverging copies of a record should agree on.
        A terminal current status is never left; otherwise the status furthest
        along the lifecycle wins, so the result does not depend on the order
        in which updates arrived.
        """
        if incoming is None or not self.is_valid(incoming):
            return current
        if current is None or not self.is_valid(current):
            return incoming
        if self.is_terminal(current):
            return current
        return max(current, incoming, key=self.rank)


REQUEST_LIFECYCLE = Lifecycle(
    name="request",
    initial="pending",
    transitions={
        "edit": {"pending": "pending", "matched": "matched"},
        "match": {"pending": "matched", "matched": "matched"},
        "accept": {"matched": "accepted"},
        "reject": {"matched": "matched", "accepted": "accepted"},
        "fulfill": {"accepted": "fulfilled"},
        "cancel": {"pending": "cancelled", "matched": "cancelled"},
    },
    terminal=("fulfilled", "cancelled"),
    deletable=("pending", "matched", "accepted", "cancelled"),
)

OFFER_LIFECYCLE = Lifecycle(
    name="offer",
    initial="pending",
    transitions={
        "edit": {"pending": "pending"},
        "match": {"pending": "matched", "matched": "matched"},
        "fulfill": {"matched": "fulfilled"},
        "expire": {"pending": "expired"},
    },
    terminal=("fulfilled", "expired"),
    deletable=("pending", "matched", "expired"),
)

MATCH_LIFECYCLE = Lifecycle(
    name="match",
    initial="pending",
    transitions={
        "accept": {"pending": "accepted"},
        "reject": {"pending": "rejected"},
        "fulfill": {"accepted": "fulfilled"},
    },
    terminal=("rejected", "fulfilled"),
)
