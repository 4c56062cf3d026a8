"""
Scope resolution: caller identity + role -> visible deal owners.

A restricted scope carries two join keys, rep ids and normalized owner-name
keys, and a deal is visible when it matches either. An empty restricted
scope never widens to unrestricted.
"""

import enum
import hashlib
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set

from forecast_engine.core.errors import ScopeEmptyError
from forecast_engine.core.parsing import normalize_name_key
from forecast_engine.engine.deal import Deal

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    ADMIN = "admin"
    EXEC = "exec"
    MANAGER = "manager"
    REP = "rep"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        """Tolerant parse; unknown roles get the least privilege."""
        key = str(value or "").strip().lower()
        key = _ROLE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            logger.debug(f"Unknown role {value!r}, treating as rep")
            return cls.REP


_ROLE_ALIASES = {
    "exec_manager": "exec",
    "executive": "exec",
    "org_admin": "admin",
}


@dataclass(frozen=True)
class Caller:
    """Authenticated caller, as handed over by the identity layer."""

    user_id: int
    org_id: int
    role: Role = Role.REP
    see_all: bool = False


@dataclass(frozen=True)
class RepDirectoryEntry:
    """One row of the org's rep directory."""

    id: int
    org_id: int
    user_id: Optional[int] = None
    manager_rep_id: Optional[int] = None
    role: Optional[str] = None
    rep_name: Optional[str] = None
    display_name: Optional[str] = None
    crm_owner_name: Optional[str] = None
    active: bool = True

    @property
    def is_rep(self) -> bool:
        """Unset or unknown directory roles count as rep."""
        return Role.parse(self.role) == Role.REP

    @property
    def name_keys(self) -> Set[str]:
        keys = {
            normalize_name_key(n)
            for n in (self.display_name, self.rep_name, self.crm_owner_name)
        }
        keys.discard("")
        return keys


@dataclass(frozen=True)
class Scope:
    """Resolved visibility. ``unrestricted`` means no filter at all."""

    org_id: int
    unrestricted: bool = False
    owner_ids: FrozenSet[int] = frozenset()
    name_keys: FrozenSet[str] = frozenset()
    role: Role = Role.REP

    @classmethod
    def everyone(cls, org_id: int, role: Role = Role.ADMIN) -> "Scope":
        return cls(org_id=org_id, unrestricted=True, role=role)

    @property
    def is_empty(self) -> bool:
        return not self.unrestricted and not self.owner_ids and not self.name_keys

    @property
    def label(self) -> str:
        return "Company" if self.unrestricted else "Team"

    def includes(self, deal: Deal) -> bool:
        if deal.org_id != self.org_id:
            return False
        if self.unrestricted:
            return True
        if deal.owner_id is not None and deal.owner_id in self.owner_ids:
            return True
        key = deal.owner_key
        return bool(key) and key in self.name_keys

    def filter(self, deals: Iterable[Deal]) -> List[Deal]:
        return [d for d in deals if self.includes(d)]

    def ensure_visible(self) -> "Scope":
        """Raise ScopeEmptyError for a restricted scope with nothing in it."""
        if self.is_empty:
            raise ScopeEmptyError(org_id=self.org_id, role=self.role.value)
        return self

    def cache_key(self) -> str:
        """Stable hash for caller-side memoization per (org, period, scope)."""
        if self.unrestricted:
            body = f"{self.org_id}|*"
        else:
            ids = ",".join(str(i) for i in sorted(self.owner_ids))
            names = ",".join(sorted(self.name_keys))
            body = f"{self.org_id}|{ids}|{names}"
        return hashlib.sha256(body.encode("utf-8")).hexdigest()[:16]


class ScopeResolver:
    """
    Resolve a caller's scope against the org rep directory.

    - admin, or exec with see-all: unrestricted
    - exec: self plus the full active descendant tree
    - manager: self plus active direct reports in the rep role
    - rep (and unknown roles): self only
    """

    def __init__(self, org_id: int, directory: Iterable[RepDirectoryEntry]):
        self.org_id = org_id
        self._reps: Dict[int, RepDirectoryEntry] = {}
        self._by_user: Dict[int, RepDirectoryEntry] = {}
        self._children: Dict[int, List[int]] = defaultdict(list)
        for rep in directory:
            if rep.org_id != org_id:
                continue
            self._reps[rep.id] = rep
            if rep.user_id is not None:
                current = self._by_user.get(rep.user_id)
                # several rows per user: the newest one wins
                if current is None or rep.id > current.id:
                    self._by_user[rep.user_id] = rep
            if rep.manager_rep_id is not None:
                self._children[rep.manager_rep_id].append(rep.id)

    def rep_for_user(self, user_id: int) -> Optional[RepDirectoryEntry]:
        return self._by_user.get(user_id)

    def direct_reports(self, rep_id: int) -> List[int]:
        return [r for r in self._children.get(rep_id, []) if self._reps[r].active]

    def descendants(self, rep_id: int) -> Set[int]:
        """Active descendants of ``rep_id``; cycles in the manager chain are cut."""
        seen: Set[int] = {rep_id}
        stack = [rep_id]
        found: Set[int] = set()
        while stack:
            current = stack.pop()
            for child in self.direct_reports(current):
                if child in seen:
                    continue
                seen.add(child)
                found.add(child)
                stack.append(child)
        return found

    def resolve(self, caller: Caller) -> Scope:
        if caller.org_id != self.org_id:
            raise ValueError(
                f"Caller org {caller.org_id} does not match directory org {self.org_id}"
            )
        role = caller.role if isinstance(caller.role, Role) else Role.parse(caller.role)

        if role == Role.ADMIN or (role == Role.EXEC and caller.see_all):
            return Scope.everyone(self.org_id, role)

        me = self.rep_for_user(caller.user_id)
        if me is None:
            logger.warning(
                f"No rep row for user {caller.user_id} in org {self.org_id}; "
                f"scope is empty"
            )
            return Scope(org_id=self.org_id, role=role)

        visible = {me.id}
        if role == Role.MANAGER:
            visible.update(
                r for r in self.direct_reports(me.id) if self._reps[r].is_rep
            )
        elif role == Role.EXEC:
            visible.update(self.descendants(me.id))

        names: Set[str] = set()
        for rep_id in visible:
            names |= self._reps[rep_id].name_keys

        logger.debug(
            f"Resolved {role.value} scope for user {caller.user_id}: "
            f"{len(visible)} reps, {len(names)} name keys"
        )
        return Scope(
            org_id=self.org_id,
            owner_ids=frozenset(visible),
            name_keys=frozenset(names),
            role=role,
        )
