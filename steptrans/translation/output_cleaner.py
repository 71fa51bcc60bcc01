"""
Output cleaning utilities for LLM stage outputs.

Clean up common LLM output artifacts:
- Remove leading reasoning blocks (<think>, <thinking>, [REASONING] ...)
- Unwrap answer tags (<answer>, <result>, <output>)
- Remove "Translation:" style prefixes
- Remove code fence wrappers
"""

import re

# Reasoning blocks dropped with their content
REASONING_TAGS = [
    ("<think>", "</think>"),
    ("<thinking>", "</thinking>"),
    ("<thought>", "</thought>"),
    ("<reasoning>", "</reasoning>"),
    ("<reflection>", "</reflection>"),
    ("<internal>", "</internal>"),
    ("<scratch>", "</scratch>"),
    ("<analysis>", "</analysis>"),
    ("[THINKING]", "[/THINKING]"),
    ("[REASONING]", "[/REASONING]"),
    ("[INTERNAL]", "[/INTERNAL]"),
]

# Wrappers whose content is the answer
ANSWER_TAGS = [
    ("<answer>", "</answer>"),
    ("<result>", "</result>"),
    ("<output>", "</output>"),
]

PREFIXES = [
    "Here is the translation:",
    "Here's the translation:",
    "The translation is:",
    "Translated text:",
    "Translation:",
    "Output:",
    "Result:",
]

NO_ISSUES_PATTERNS = [
    r"\bno issues (?:were )?found\b",
    r"\bno (?:further )?(?:changes|improvements) (?:are )?(?:needed|required|necessary)\b",
    r"\bthe translation is perfect\b",
]


def remove_reasoning_markers(text: str) -> str:
    """
    Remove reasoning blocks that open the output.

    Only blocks at the very start are touched so that similar tags inside
    the translated content survive.
    """
    if not text:
        return text

    result = text.strip()
    removed = True
    while removed:
        removed = False
        for start, end in REASONING_TAGS:
            if result.startswith(start):
                close = result.find(end, len(start))
                if close == -1:
                    break
                result = result[close + len(end):].strip()
                removed = True
                break

    for start, end in ANSWER_TAGS:
        if result.startswith(start):
            close = result.find(end, len(start))
            if close != -1:
                result = result[len(start):close].strip()
            break

    return result


def clean_translation_output(text: str) -> str:
    """
    Clean LLM stage output to extract only the translated text.

    Args:
        text: Raw LLM output

    Returns:
        Cleaned text, or the original if cleaning would leave nothing
    """
    if not text:
        return text

    original = text
    text = remove_reasoning_markers(text)

    # Match ```language\ntext\n``` or ```\ntext\n```
    match = re.match(r'^```(?:[\w-]+)?\s*\n(.*?)\n```\s*$', text.strip(), re.DOTALL)
    if match:
        text = match.group(1)

    stripped = text.strip()
    for prefix in PREFIXES:
        if stripped.lower().startswith(prefix.lower()):
            stripped = stripped[len(prefix):].strip()
            break
    text = stripped

    if not text:
        return original.strip()
    return text


def critique_reports_no_issues(critique: str) -> bool:
    """True when a reflection output says the translation needs no changes."""
    if not critique:
        return False
    lowered = critique.lower()
    return any(re.search(p, lowered) for p in NO_ISSUES_PATTERNS)
