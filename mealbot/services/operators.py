from __future__ import annotations

import hmac
import logging

from mealbot.db.models import Operator
from mealbot.db.session import get_session


logger = logging.getLogger(__name__)


class OperatorWhitelist:
    """Users allowed to run mutating commands in group chats."""

    def __init__(self, *, static_ids: frozenset[int] = frozenset(), admin_password: str | None = None) -> None:
        self._static = static_ids
        self._password = admin_password

    def is_authorized(self, user_id: int) -> bool:
        if user_id in self._static:
            return True
        with get_session() as session:
            return session.get(Operator, user_id) is not None

    def add(self, user_id: int) -> None:
        with get_session() as session:
            if session.get(Operator, user_id) is None:
                session.add(Operator(telegram_user_id=user_id))
        logger.info("Whitelisted user %s", user_id)

    def authenticate(self, user_id: int, password: str) -> bool:
        if not self._password:
            return False
        if not hmac.compare_digest(self._password.encode("utf-8"), (password or "").encode("utf-8")):
            return False
        self.add(user_id)
        return True
