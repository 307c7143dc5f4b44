"""
Tool: Message Style Adapter
Purpose: Rewrite suggestion and notification text to a user's communication style

Three independent adjustments, applied in order:
    1. Length: "brief" keeps the lead sentence plus the first later sentence
       carrying a number or a modal verb (the actionable part)
    2. Emoji: "never" strips emoji, "often" adds one matching the content
    3. Tone: "casual" swaps a handful of formal phrases for relaxed ones

Usage:
    from personalize.adaptive.style import adapt_message
    text = adapt_message(message, model.preferences.communication_style)
"""

import re
from typing import Any

from personalize.learning import EMOJI_PATTERN
from personalize.learning.models import CommunicationStyle

DEFAULT_MODAL_VERBS = ("would", "could", "should", "might", "must", "can")

# Emoji blocks, regional indicators and the variation selector that follows some symbols
EMOJI_STRIP = re.compile(
    "[\U0001F300-\U0001FAFF\U0001F1E0-\U0001F1FF☀-➿️]"
)

CONTEXTUAL_EMOJI = [
    (("great", "good job", "complete"), "{message} ✨"),
    (("deadline", "overdue", "urgent"), "⚠️ {message}"),
    (("focus", "productive"), "🎯 {message}"),
    (("break", "rest"), "☕ {message}"),
]

CASUAL_REPLACEMENTS = [
    (re.compile(r"I would recommend", re.IGNORECASE), "I'd suggest"),
    (re.compile(r"It appears that", re.IGNORECASE), "Looks like"),
    (re.compile(r"You might want to consider", re.IGNORECASE), "How about"),
    (re.compile(r"Would you like to", re.IGNORECASE), "Want to"),
    (re.compile(r"It is recommended", re.IGNORECASE), "You might want to"),
    (re.compile(r"This will help you", re.IGNORECASE), "This'll help"),
    (re.compile(r"In order to", re.IGNORECASE), "To"),
]


def split_sentences(content: str) -> list[str]:
    """
    Split content into sentences, keeping their terminal punctuation.

    Common abbreviations (e.g., Dr., etc.) do not end a sentence.
    """
    content = re.sub(r"\b(Mr|Mrs|Ms|Dr|Prof|Sr|Jr|vs|etc|e\.g|i\.e)\.", r"\1<PERIOD>", content)
    sentences = re.split(r"(?<=[.!?])\s+", content)
    sentences = [s.replace("<PERIOD>", ".") for s in sentences]
    return [s.strip() for s in sentences if s.strip()]


def _ensure_terminated(sentence: str) -> str:
    return sentence if sentence[-1] in ".!?" else f"{sentence}."


def truncate_to_essentials(message: str, modal_verbs: tuple[str, ...] | list[str] = DEFAULT_MODAL_VERBS) -> str:
    sentences = split_sentences(message)
    if len(sentences) <= 1:
        return message

    actionable = re.compile(
        r"\d|\b(" + "|".join(re.escape(v) for v in modal_verbs) + r")\b", re.IGNORECASE
    )
    lead = _ensure_terminated(sentences[0])
    for sentence in sentences[1:]:
        if actionable.search(sentence):
            return f"{lead} {_ensure_terminated(sentence)}"
    return lead


def remove_emojis(message: str) -> str:
    stripped = re.sub(r"\s+", " ", EMOJI_STRIP.sub("", message))
    return re.sub(r" ([.,!?])", r"\1", stripped).strip()


def add_contextual_emoji(message: str) -> str:
    if re.search(EMOJI_PATTERN, message):
        return message

    lower = message.lower()
    for keywords, template in CONTEXTUAL_EMOJI:
        if any(k in lower for k in keywords):
            return template.format(message=message)
    return message


def casualize_tone(message: str) -> str:
    for pattern, replacement in CASUAL_REPLACEMENTS:
        message = pattern.sub(replacement, message)
    return message


def adapt_message(
    message: str,
    style: CommunicationStyle,
    modal_verbs: tuple[str, ...] | list[str] = DEFAULT_MODAL_VERBS,
) -> str:
    adapted = message
    if style.preferred_length == "brief":
        adapted = truncate_to_essentials(adapted, modal_verbs)

    if style.emoji_usage == "never":
        adapted = remove_emojis(adapted)
    elif style.emoji_usage == "often":
        adapted = add_contextual_emoji(adapted)

    if style.tone_preference == "casual":
        adapted = casualize_tone(adapted)

    return adapted


def fill_template(template: str, context: dict[str, Any]) -> str:
    """Replace {key} placeholders; unknown placeholders are left as they are."""
    for key, value in context.items():
        template = template.replace("{" + key + "}", str(value))
    return template
