"""Conversational assistant that turns questions into SQL."""

import logging
import re
from typing import Dict, List, Optional, Sequence

from sql_console.errors import TransportError
from sql_console.models import ConversationTurn, Role
from sql_console.transport import TransportClient


logger = logging.getLogger(__name__)

SQL_FENCE_RE = re.compile(r"```sql\s*\n?(.*?)```", re.DOTALL)

SUGGESTIONS = [
    "Show first 10 rows",
    "What columns are in this table?",
    "How many rows are there?",
    "Summarize the numeric columns",
]


def strip_sql_fences(text: str) -> str:
    """Remove fenced SQL blocks so a reply does not show its SQL twice."""
    return SQL_FENCE_RE.sub("", text).strip()


def extract_sql(text: str) -> Optional[str]:
    """Return the first fenced SQL block in ``text``, if any."""
    match = SQL_FENCE_RE.search(text)
    if not match:
        return None
    return match.group(1).strip() or None


def build_messages(history: Sequence[ConversationTurn], new_user_text: str) -> List[Dict[str, str]]:
    """Wire messages for ``history`` followed by the new user turn.

    An exchange whose round trip failed is left out entirely: the failed
    assistant turn was never said by the model and the user turn before it
    never got a reply.
    """
    messages = []
    for index, turn in enumerate(history):
        if turn.failed:
            continue
        if index + 1 < len(history) and history[index + 1].failed:
            continue
        messages.append(turn.to_message())
    messages.append(ConversationTurn.user(new_user_text).to_message())
    return messages


class ConversationalAssistant:
    def __init__(self, transport: TransportClient):
        self.transport = transport

    async def send(
        self,
        history: Sequence[ConversationTurn],
        new_user_text: str,
        auto_execute: bool = True,
    ) -> ConversationTurn:
        """Send the conversation plus ``new_user_text`` and return the assistant's turn.

        ``history`` is not modified. A failed round trip comes back as an
        assistant turn flagged ``failed`` with the error in its content, so
        callers can always append what they get.
        """
        messages = build_messages(history, new_user_text)

        try:
            reply = await self.transport.chat(messages, auto_execute)
        except TransportError as e:
            logger.error(f"Assistant round trip failed: {e}")
            return ConversationTurn(role=Role.ASSISTANT, content=f"Error: {e}", failed=True)

        logger.info(
            f"Assistant replied ({len(reply.reply)} chars, sql={'yes' if reply.sql else 'no'}, "
            f"preview={'yes' if reply.query_result else 'no'})"
        )
        return ConversationTurn(
            role=Role.ASSISTANT,
            content=reply.reply,
            sql=reply.sql or None,
            query_result=reply.query_result,
        )
