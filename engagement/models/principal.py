from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    Carried through the request via FastAPI's dependency system.  The
    activity endpoints bind every ingested event to ``user_id`` and never
    trust a learner id sent in the request body.

    user_id: subject from JWT
    roles:   platform roles (learner, instructor, admin)
    """

    user_id: str
    roles: frozenset[str]

    def has_any_role(self, roles: set[str]) -> bool:
        return bool(self.roles & roles)
