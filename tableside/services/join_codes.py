from __future__ import annotations

import logging
import secrets
from random import Random
from typing import Optional

from sqlalchemy.orm import Session

from tableside.core.config import JOIN_CODE_ALPHABET, JOIN_CODE_LENGTH, JOIN_CODE_MAX_ATTEMPTS
from tableside.core.errors import ResourceExhausted, ValidationError
from tableside.models.table_session import SESSION_ACTIVE, TableSession

logger = logging.getLogger(__name__)


class JoinCodeGenerator:
    """Draws short join codes that are free among active sessions.

    The check here only narrows the odds; the partial unique index on
    active join codes is what finally reserves a code.
    """

    def __init__(
        self,
        *,
        length: int = JOIN_CODE_LENGTH,
        alphabet: str = JOIN_CODE_ALPHABET,
        max_attempts: int = JOIN_CODE_MAX_ATTEMPTS,
        rng: Optional[Random] = None,
    ) -> None:
        if length < 3:
            raise ValidationError("join code length must be at least 3")
        if len(set(alphabet)) < 2:
            raise ValidationError("join code alphabet needs at least two distinct symbols")
        if max_attempts < 1:
            raise ValidationError("join code attempts must be at least 1")
        self.length = length
        self.alphabet = "".join(dict.fromkeys(alphabet))
        self.max_attempts = max_attempts
        self._rng = rng or secrets.SystemRandom()

    def draw(self) -> str:
        return "".join(self._rng.choice(self.alphabet) for _ in range(self.length))

    def is_free(self, db: Session, code: str) -> bool:
        taken = (
            db.query(TableSession.id)
            .filter(TableSession.join_code == code, TableSession.status == SESSION_ACTIVE)
            .first()
        )
        return taken is None

    def generate(self, db: Session, restaurant_id: int) -> str:
        for attempt in range(1, self.max_attempts + 1):
            code = self.draw()
            if self.is_free(db, code):
                return code
            logger.info(
                "[SESSIONS] join code collision restaurant_id=%s attempt=%s/%s",
                restaurant_id,
                attempt,
                self.max_attempts,
            )
        logger.error(
            "[SESSIONS] join code space exhausted restaurant_id=%s attempts=%s",
            restaurant_id,
            self.max_attempts,
        )
        raise ResourceExhausted("Could not allocate a free join code, try again")
