"""Compact log line helpers for the orchestration loop.

Keeps turn traces short and greppable: ``[TAG] message (k=v, ...)``.
"""

from enum import Enum


class LogTag(str, Enum):
    """Compact semantic tags for turn logs.

    Format: [CATEGORY:EVENT]. Examples: [STATE:->], [T:EXEC], [D:]
    """

    # State transitions (compact arrows)
    STATE_TRANSITION = "STATE:->"

    # Tool pipeline events (T: prefix)
    TOOL_EXEC = "T:EXEC"             # Tool executed
    TOOL_REJECT = "T:REJ"            # Validator refused the arguments
    TOOL_UNGROUNDED = "T:GRND"       # Name not found in user wording
    TOOL_DUPLICATE = "T:DUP"         # Ledger matched a recent action

    # Decisions (D: prefix)
    DECISION = "D:"


def format_llm_log(
    tag: LogTag,
    message: str,
    context: dict | None = None,
    milestone: bool = False
) -> str:
    """Format a log message with minimal tokens.

    Example outputs:
    - "[T:EXEC] ✓ create_contact (ok=Y)"
    - "[STATE:->] ✓ stre→tool (why=tool_delta)"
    - "[D:] inten=Y (verb=update)"
    """
    parts = [f"[{tag.value}]"]

    if milestone:
        parts.append("✓")

    parts.append(message)

    if context:
        compact = ", ".join(f"{k}={v}" for k, v in context.items())
        parts.append(f"({compact})")

    return " ".join(parts)


def format_state_transition(from_state: str, to_state: str, reason: str) -> str:
    """Format a state transition.

    Example: "[STATE:->] ✓ awai→stre (why=content)"
    """
    message = f"{from_state[:4]}→{to_state[:4]}"
    return format_llm_log(
        LogTag.STATE_TRANSITION,
        message,
        context={"why": reason} if len(reason) < 30 else None,
        milestone=True
    )


def format_decision(
    decision_point: str,
    outcome: bool,
    **rationale
) -> str:
    """Format a decision with compact rationale.

    Example: "[D:] inten=Y (verb=delete, entity=contact)"
    """
    outcome_char = "Y" if outcome else "N"
    message = f"{decision_point[:5]}={outcome_char}"

    if not outcome or len(rationale) > 0:
        return format_llm_log(LogTag.DECISION, message, context=rationale)

    return format_llm_log(LogTag.DECISION, message)


def format_tool_event(tag: LogTag, tool_name: str, **context) -> str:
    """Format a per-tool pipeline event.

    Example: "[T:DUP] create_contact (window=60m)"
    """
    return format_llm_log(tag, tool_name, context=context or None, milestone=tag is LogTag.TOOL_EXEC)
