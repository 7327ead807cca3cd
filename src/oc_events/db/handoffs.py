"""Recipient-addressed claims.

A handoff event names its recipient in metadata (``handoff.to_agent``,
``handoff.to``, ``to_agent`` or ``to``) or simply mentions ``@recipient`` in
its body. Either the ``@bob`` or ``bob`` form is accepted in every field.
"""

from __future__ import annotations

from oc_events.db.client import Database
from oc_events.db.events import EventRecord
from oc_events.db.events import claim_where
from oc_events.db.scope import ScopeCondition
from oc_events.errors import InvalidInputError

RECIPIENT_PATHS = ("$.handoff.to_agent", "$.handoff.to", "$.to_agent", "$.to")


def to_mention(value: str) -> str:
    return value if value.startswith("@") else f"@{value}"


def to_plain(value: str) -> str:
    return value[1:] if value.startswith("@") else value


def _recipient_filter() -> str:
    checks = " OR ".join(f"json_extract(metadata, '{path}') IN (?, ?)" for path in RECIPIENT_PATHS)
    # CASE keeps json_extract away from rows whose metadata is not JSON
    return f"""
        AND (
            CASE WHEN json_valid(metadata) THEN ({checks}) ELSE 0 END
            OR instr(body, ?) > 0
        )
    """


def claim_next_handoff_event(
    db: Database,
    topic: str,
    agent: str,
    recipient: str,
    condition: ScopeCondition,
) -> EventRecord | None:
    """Claim the oldest pending event in ``topic`` addressed to ``recipient``."""
    recipient = (recipient or "").strip()
    if not to_plain(recipient):
        raise InvalidInputError("recipient is required for handoff claims")

    mention = to_mention(recipient)
    plain = to_plain(recipient)
    params: list[str] = []
    for _ in RECIPIENT_PATHS:
        params.extend((mention, plain))
    params.append(mention)

    return claim_where(db, topic, agent, condition, extra_sql=_recipient_filter(), extra_params=params)
