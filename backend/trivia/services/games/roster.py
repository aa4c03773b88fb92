"""Team roster: who has joined the current session."""

from __future__ import annotations

import logging
from typing import Callable

from trivia.entities import Team
from trivia.services.games.clock import now_ms
from trivia.store import TEAMS

logger = logging.getLogger(__name__)


class TeamRoster:
    """Registers teams by participant identity. Each team writes only its own record."""

    def __init__(self, store, clock: Callable[[], int] = now_ms) -> None:
        self._store = store
        self._clock = clock

    def join(self, team_id: str, name: str) -> Team:
        """Create or overwrite the team record. Joining twice keeps a single record."""
        existing = self._store.get(TEAMS, team_id)
        joined_at = existing.joined_at if existing else self._clock()
        self._store.set(TEAMS, team_id, {'name': name, 'joined_at': joined_at}, merge=True)
        logger.info(f'[join] team={team_id} name={name!r} rejoin={existing is not None}')
        return Team(id=team_id, name=name, joined_at=joined_at)

    def get(self, team_id: str) -> Team | None:
        return self._store.get(TEAMS, team_id)

    def teams(self) -> list[Team]:
        return self._store.list(TEAMS)

    def subscribe(self, on_change: Callable[[list[Team]], None], deliver_initial: bool = True):
        return self._store.subscribe(TEAMS, on_change, deliver_initial=deliver_initial)
