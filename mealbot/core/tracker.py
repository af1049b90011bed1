from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from sqlalchemy import delete, select

from mealbot.core.events import Action, DeleteMessage, EditMessage, Role, SendPrompt
from mealbot.db.models import TrackedMessage
from mealbot.db.session import get_session


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageRef:
    chat_id: int
    message_id: int
    role: str
    has_media: bool = False


class MessageTracker:
    """
    Role-indexed registry of the messages a session owns.

    Each (session, role) pair maps to at most one live message, so prompts are
    edited or replaced instead of piling up in the chat. Every helper returns
    the delete/edit actions needed to get the chat into that shape; it never
    talks to the transport itself.
    """

    def refs(self, session_id: str) -> dict[str, MessageRef]:
        with get_session() as session:
            found = session.execute(
                select(TrackedMessage).where(TrackedMessage.session_id == session_id)
            ).scalars()
            return {
                row.role: MessageRef(row.chat_id, row.message_id, row.role, bool(row.has_media))
                for row in found
            }

    def get(self, session_id: str, role: Role) -> MessageRef | None:
        return self.refs(session_id).get(role)

    def track(
        self,
        session_id: str,
        *,
        chat_id: int,
        message_id: int,
        role: Role,
        has_media: bool = False,
    ) -> list[Action]:
        """Record a message; the message it displaces (if any) gets deleted."""
        out: list[Action] = []
        with get_session() as session:
            row = session.execute(
                select(TrackedMessage).where(
                    TrackedMessage.session_id == session_id,
                    TrackedMessage.role == role,
                )
            ).scalar_one_or_none()
            if row:
                if row.chat_id == chat_id and row.message_id == message_id:
                    return out
                out.append(DeleteMessage(chat_id=row.chat_id, message_id=row.message_id))
            else:
                row = TrackedMessage(session_id=session_id, role=role)
                session.add(row)
            row.chat_id = chat_id
            row.message_id = message_id
            row.has_media = 1 if has_media else 0
        return out

    def supersede(self, session_id: str, role: Role, prompt: SendPrompt) -> list[Action]:
        """
        Show `prompt` as the session's only `role` message.

        Text-only predecessors are edited in place; media messages cannot
        become text (and vice versa) so those are deleted and re-sent.
        """
        tracked = replace(prompt, session_id=session_id, role=role)
        prev = self.get(session_id, role)
        if prev is None:
            return [tracked]
        if not prev.has_media and prompt.photo_file_id is None and prev.chat_id == prompt.chat_id:
            return [
                EditMessage(
                    chat_id=prev.chat_id,
                    message_id=prev.message_id,
                    text=prompt.text,
                    buttons=prompt.buttons,
                )
            ]
        self._forget(session_id, role)
        return [DeleteMessage(chat_id=prev.chat_id, message_id=prev.message_id), tracked]

    def discard(self, session_id: str, role: Role) -> list[Action]:
        """Delete the session's `role` message, if it has one."""
        prev = self.get(session_id, role)
        if prev is None:
            return []
        self._forget(session_id, role)
        return [DeleteMessage(chat_id=prev.chat_id, message_id=prev.message_id)]

    def cleanup(self, session_id: str) -> list[Action]:
        """Forget every message of the session and return the deletes for them."""
        with get_session() as session:
            found = list(
                session.execute(
                    select(TrackedMessage).where(TrackedMessage.session_id == session_id)
                ).scalars()
            )
            session.execute(delete(TrackedMessage).where(TrackedMessage.session_id == session_id))
        if found:
            logger.debug("Cleaning up %d tracked messages of session %s", len(found), session_id)
        return [DeleteMessage(chat_id=row.chat_id, message_id=row.message_id) for row in found]

    def _forget(self, session_id: str, role: str) -> None:
        with get_session() as session:
            session.execute(
                delete(TrackedMessage).where(
                    TrackedMessage.session_id == session_id,
                    TrackedMessage.role == role,
                )
            )
