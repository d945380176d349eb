"""Context compaction: bound prior turns before and during a run.

Prior turns arrive from the client in whatever shape it stored them.
Before each run they are normalized into role-tagged text turns, bulky
tool payloads are reduced to one-line summaries, and the sequence is cut
to the most recent turns that fit the configured ceilings. During a run,
the same compactor shrinks tool-result turns so the working context
stays under both ceilings.
"""

import json
import logging
from typing import Any, Iterable, List, Optional, Union

from pydantic import ValidationError

from conduit.config import ConduitSettings
from conduit.orchestration.models import Turn, WorkingContext
from conduit.orchestration.payloads import DATA_KEYS, compact_payload

logger = logging.getLogger(__name__)

HistoryItem = Union[Turn, dict]

# Below this a truncated body is not worth keeping.
MIN_DATA_CHARS = 256


class ContextCompactor:
    """Produces a bounded working context from history plus a new message."""

    def __init__(self, settings: ConduitSettings) -> None:
        self.settings = settings

    def compact(self, history: Optional[Iterable[HistoryItem]], message: str) -> WorkingContext:
        """Build the working context for a run.

        The original history is never mutated.

        Args:
            history: Prior turns, newest last.
            message: The new user message.

        Returns:
            A WorkingContext; it may be empty if nothing had content.
        """
        turns = [t for t in (self._normalize(item) for item in history or []) if t]
        turns = [t for t in turns if t.has_content()]

        message = (message or "").strip()
        if message and (not turns or turns[-1].role != "user" or turns[-1].text() != message):
            turns.append(Turn(role="user", content=message))

        max_turns = self.settings.max_history_pairs * 2
        if len(turns) > max_turns:
            logger.debug(f"Trimming history from {len(turns)} to {max_turns} turns")
            turns = turns[-max_turns:]

        while len(turns) > 2 and _chars(turns) > self.settings.max_context_chars:
            turns = turns[1:]

        if _bytes(turns) > self.settings.absolute_context_bytes:
            logger.warning(
                f"Context still {_bytes(turns)} bytes after trimming, keeping final two turns"
            )
            turns = turns[-2:]

        # Providers expect the conversation to open with a user turn.
        while turns and turns[0].role != "user":
            turns = turns[1:]

        return WorkingContext(turns)

    def shrink_tool_results(
        self, context: WorkingContext, anchor: Optional[Turn] = None
    ) -> int:
        """Keep the working context under its ceilings during a run.

        Data bodies of all but the latest tool-result turn go first. If the
        context is still over ``max_context_chars``, the latest round's
        results share what is left of it. Past ``absolute_context_bytes``
        every data body is dropped, then history turns before ``anchor``
        (the run's own message). Summaries, quality labels and guidance
        always survive. Returns the number of parts shrunk.
        """
        max_chars = self.settings.max_context_chars
        max_bytes = self.settings.absolute_context_bytes
        if context.serialized_size() <= max_chars and _bytes(context.turns) <= max_bytes:
            return 0

        result_turns = [
            index
            for index, turn in enumerate(context.turns)
            if isinstance(turn.content, list)
            and any(part.get("type") == "tool_result" for part in turn.content)
        ]
        shrunk = self._omit_data(context, result_turns[:-1])
        if result_turns and context.serialized_size() > max_chars:
            shrunk += self._fit_round(context, result_turns[-1])

        if _bytes(context.turns) > max_bytes:
            shrunk += self._omit_data(context, result_turns[-1:])
            self._drop_history(context, anchor)

        if shrunk:
            logger.info(
                f"Shrunk {shrunk} tool results to keep context bounded "
                f"({context.serialized_size()} chars)"
            )
        return shrunk

    def _omit_data(self, context: WorkingContext, indexes: List[int]) -> int:
        shrunk = 0
        for index in indexes:
            turn = context.turns[index]
            parts = []
            for part in turn.content:
                if _has_data(part):
                    body = {k: v for k, v in part["content"].items() if k != "data"}
                    body["data_omitted"] = True
                    part = {**part, "content": body}
                    shrunk += 1
                parts.append(part)
            context.turns[index] = Turn(role=turn.role, content=parts)
        return shrunk

    def _fit_round(self, context: WorkingContext, index: int) -> int:
        """Split the remaining char budget evenly across one round's results."""
        turn = context.turns[index]
        sized = [_data_chars(part) for part in turn.content if _has_data(part)]
        if not sized:
            return 0
        others = context.serialized_size() - sum(sized)
        # Headroom for the JSON escaping of truncated bodies.
        budget = int(max(self.settings.max_context_chars - others, 0) * 0.9) // len(sized)

        shrunk = 0
        parts = []
        for part in turn.content:
            if _has_data(part):
                data = part["content"]["data"]
                size = _data_chars(part)
                if size > budget:
                    body = {k: v for k, v in part["content"].items() if k != "data"}
                    if budget >= MIN_DATA_CHARS:
                        records = min(
                            self.settings.max_result_records,
                            max(1, _records_in(data) * budget // size),
                        )
                        body["data"] = compact_payload(data, records, budget)
                        body["data_truncated"] = True
                    else:
                        body["data_omitted"] = True
                    part = {**part, "content": body}
                    shrunk += 1
            parts.append(part)
        context.turns[index] = Turn(role=turn.role, content=parts)

        # Escaping can push a truncated body back over the ceiling.
        if context.serialized_size() > self.settings.max_context_chars:
            self._omit_data(context, [index])
        return shrunk

    def _drop_history(self, context: WorkingContext, anchor: Optional[Turn]) -> None:
        limit = next(
            (i for i, turn in enumerate(context.turns) if turn is anchor), 0
        )
        dropped = 0
        while dropped < limit and _bytes(context.turns) > self.settings.absolute_context_bytes:
            context.turns.pop(0)
            dropped += 1
        while dropped < limit and context.turns[0].role != "user":
            context.turns.pop(0)
            dropped += 1
        if dropped:
            logger.warning(f"Dropped {dropped} history turns to stay under the byte ceiling")

    def _normalize(self, item: HistoryItem) -> Optional[Turn]:
        try:
            turn = item if isinstance(item, Turn) else Turn.model_validate(item)
        except ValidationError as e:
            logger.debug(f"Skipping malformed history turn: {e.error_count()} errors")
            return None

        text = turn.text().strip()
        notes = [_summarize_tool_use(tool_use) for tool_use in turn.tool_uses]
        if isinstance(turn.content, list):
            notes.extend(
                _summarize_result_part(part)
                for part in turn.content
                if part.get("type") == "tool_result"
            )
        notes = [note for note in notes if note]
        if notes:
            text = f"{text}\n[Tools used: {'; '.join(notes)}]".strip()
        return Turn(role=turn.role, content=text)


def _summarize_tool_use(tool_use: dict) -> str:
    name = tool_use.get("name", "tool")
    if tool_use.get("error"):
        return f"{name} (failed)"
    status = tool_use.get("status") or ("completed" if "result" in tool_use else "")
    return f"{name} ({status})" if status else name


def _summarize_result_part(part: dict) -> str:
    body: Any = part.get("content")
    name = part.get("name", "tool")
    if isinstance(body, dict) and body.get("summary"):
        return f"{name}: {body['summary']}"
    return name


def _chars(turns: List[Turn]) -> int:
    return sum(turn.serialized_size() for turn in turns)


def _bytes(turns: List[Turn]) -> int:
    return len(
        json.dumps([turn.model_dump(mode="json") for turn in turns]).encode("utf-8")
    )


def _has_data(part: dict) -> bool:
    body = part.get("content")
    return part.get("type") == "tool_result" and isinstance(body, dict) and "data" in body


def _data_chars(part: dict) -> int:
    return len(json.dumps(part["content"]["data"], default=str, separators=(",", ":")))


def _records_in(data: Any) -> int:
    if isinstance(data, list):
        return len(data)
    if isinstance(data, dict):
        for key in DATA_KEYS:
            if isinstance(data.get(key), list):
                return len(data[key])
    return 0
