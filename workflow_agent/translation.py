"""
Model Output ↔ A2A Translation
==============================
Maps between A2A protocol constructs and the chat model's view of them.
- Conversation history → model input messages
- Trailing state line of the model reply → A2A task state
"""

from enum import Enum

from . import task_store as ts

DEFAULT_REPLY = "Completed."


class FinalState(str, Enum):
    """Control signal read from the last line of a model reply."""
    COMPLETED = "COMPLETED"
    INPUT_REQUIRED = "AWAITING_USER_INPUT"
    UNKNOWN = "UNKNOWN"


# FinalState → A2A state mapping. UNKNOWN falls back to completed.
FINAL_STATE_MAP = {
    FinalState.COMPLETED: ts.STATE_COMPLETED,
    FinalState.INPUT_REQUIRED: ts.STATE_INPUT_REQUIRED,
    FinalState.UNKNOWN: ts.STATE_COMPLETED,
}


def classify_final_state(text: str | None) -> tuple[FinalState, str]:
    """Split a model reply into its final-state signal and the reply text.

    The last non-empty line, upper-cased, is the signal. Everything before
    it is the reply. An empty reply becomes DEFAULT_REPLY.
    """
    lines = (text or "").strip().split("\n")
    signal = lines[-1].strip().upper() if lines else ""
    reply = "\n".join(lines[:-1]).strip()

    try:
        state = FinalState(signal)
    except ValueError:
        state = FinalState.UNKNOWN

    return state, reply or DEFAULT_REPLY


def final_state_to_a2a(state: FinalState) -> str:
    return FINAL_STATE_MAP[state]


def history_to_model_messages(history) -> list[dict]:
    """Convert A2A messages to model input messages.

    User messages contribute only their first text part, agent messages
    all of them. Messages without text are dropped.
    """
    messages = []
    for message in history:
        texts = message.text_parts()
        if message.role == ts.ROLE_USER:
            texts = texts[:1]
        if not texts:
            continue
        messages.append({
            "role": "model" if message.role == ts.ROLE_AGENT else "user",
            "content": [{"text": t} for t in texts],
        })
    return messages


def extract_text(message: ts.Message | None) -> str:
    """Join the text parts of a message, for logging."""
    if message is None:
        return ""
    return "\n".join(message.text_parts())
