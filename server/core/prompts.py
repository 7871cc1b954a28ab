"""Prompt texts for the answer pipeline."""

import re

BASE_RULES = (
    "Use the following pieces of retrieved context to answer the question. "
    "If you don't know the answer from the context, say that you cannot find the information "
    "in the provided documents. Do not use outside knowledge. "
    "Your answer must be concise and professional."
)

PERSONAS: dict[str, str] = {
    "default": 'You are a helpful AI assistant for the company "Corporate Compass".',
    "hr": 'You are a friendly HR advisor for the company "Corporate Compass". You explain policies in plain language.',
    "developer": 'You are a technical assistant for engineers at "Corporate Compass". Prefer precise, technical wording.',
    "sales": 'You are an assistant for the sales team at "Corporate Compass". Focus on customer-facing facts.',
}

NO_RESULTS_TEXT = "I couldn't find any relevant information in the documents for your query."

SAFETY_TEXT = (
    "It sounds like you may be dealing with a sensitive matter. I can't help with this topic here. "
    "Please reach out to your HR representative or use the confidential reporting channel "
    "so that it can be handled properly and in confidence."
)

# word stems, matched at the start of a word
SENSITIVE_STEMS = (
    "harass",
    "discriminat",
    "fraud",
    "bully",
    "bullie",
    "retaliat",
    "sexual misconduct",
    "assault",
    "whistleblow",
    "embezzl",
)

_SENSITIVE_PATTERN = re.compile(r"\b(?:" + "|".join(re.escape(stem) for stem in SENSITIVE_STEMS) + r")", re.IGNORECASE)


def is_sensitive(query: str) -> bool:
    return _SENSITIVE_PATTERN.search(query) is not None


def system_prompt(persona: str | None) -> str:
    intro = PERSONAS.get((persona or "default").strip().lower(), PERSONAS["default"])
    return f"{intro}\n{BASE_RULES}"


def version_note(source: str, version: int) -> str:
    return (
        f"The user is asking specifically about version {version} of the document '{source}'. "
        "Answer only from that version and mention the version in your answer."
    )


def user_prompt(question: str, context: list[str], note: str | None = None) -> str:
    parts = []
    if note:
        parts.append(note)
    parts.append("Context:\n" + "\n\n".join(context))
    parts.append(f"Question: {question}")
    parts.append("Answer:")
    return "\n\n".join(parts)
