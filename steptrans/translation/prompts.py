"""
Prompt construction for LLM pipeline stages.

Each stage role has its own template; StepConfig.additional_notes and
builder-wide instructions are appended as numbered extra instructions.
"""

from __future__ import annotations
from typing import List, Optional

from steptrans.core.models import StepRole


PRESERVE_INSTRUCTIONS = """PROTECTED CONTENT:
Placeholders of the form @@PRESERVE_n@@ stand for content that must not be translated.
- Copy every @@PRESERVE_n@@ placeholder into your output exactly as written
- Do not translate, renumber, reorder or remove placeholders
- Translate only the text around them"""

INITIAL_TEMPLATE = """This is a translation task from {source_lang} to {target_lang}.

Formatting Rules:
1. Preserve all original formatting exactly:
   - Do not modify any Markdown syntax (**, *, #, etc.).
   - Do not translate any content within LaTeX formulas ($...$, $$...$$, \\( ... \\), \\[ ... \\]) or any LaTeX commands.
   - Keep all HTML tags intact.
2. Do not alter abbreviations, technical terms, or code identifiers.
3. Preserve document structure, including line breaks, paragraph spacing, lists, and tables.{country_rule}"""

REFLECTION_TEMPLATE = """You are reviewing a translation from {source_lang} to {target_lang}.

Original text:
{source_text}

Initial translation:
{translation}

Please analyze this translation and identify any issues. Consider:
1. Accuracy: Does the translation convey the exact meaning of the original?
2. Fluency: Does the translation read naturally in {target_lang}?
3. Terminology: Are technical terms, proper nouns, and specialized vocabulary translated appropriately?
4. Formatting: Is all original formatting preserved (Markdown, LaTeX, HTML tags, etc.)?
5. Consistency: Is the translation consistent throughout?{country_rule}"""

IMPROVEMENT_TEMPLATE = """You are improving a translation from {source_lang} to {target_lang} based on the following reflection.

Original text:
{source_text}

Initial translation:
{translation}

Reflection/Issues identified:
{critique}

Please provide an improved translation that addresses all the issues mentioned in the reflection while:
1. Maintaining the exact meaning of the original text
2. Ensuring natural fluency in {target_lang}
3. Preserving all original formatting (Markdown, LaTeX, HTML tags, etc.)
4. Using appropriate terminology and expressions{country_rule}"""

DIRECT_TEMPLATE = """Translate the following text from {source_lang} to {target_lang}.

Rules:
1. Preserve all formatting (Markdown, LaTeX, HTML, etc.)
2. Do not translate code, formulas, or technical identifiers
3. Maintain the original document structure{country_rule}"""


class PromptBuilder:
    """Builds stage prompts for one language pair."""

    def __init__(self, source_lang: str, target_lang: str, country: str = "",
                 instructions: Optional[List[str]] = None, preserve_markers: bool = True):
        self.source_lang = source_lang
        self.target_lang = target_lang
        self.country = country
        self.instructions = list(instructions or [])
        self.preserve_markers = preserve_markers

    def add_instruction(self, instruction: str) -> PromptBuilder:
        self.instructions.append(instruction)
        return self

    def _country_rule(self, number: int, wording: str) -> str:
        if not self.country:
            return ""
        return f"\n{number}. {wording} {self.country}."

    def _extras(self, prompt: str, notes: str = "") -> str:
        extra = self.instructions + ([notes] if notes else [])
        if extra:
            prompt += "\n\nAdditional Instructions:"
            for i, instruction in enumerate(extra, 1):
                prompt += f"\n{i}. {instruction}"
        if self.preserve_markers:
            prompt += "\n\n" + PRESERVE_INSTRUCTIONS
        return prompt

    def build_initial_translation(self, text: str, notes: str = "") -> str:
        prompt = INITIAL_TEMPLATE.format(
            source_lang=self.source_lang,
            target_lang=self.target_lang,
            country_rule=self._country_rule(4, "Use terminology and expressions appropriate for"),
        )
        prompt = self._extras(prompt, notes)
        return prompt + f"\n\nPlease translate the following text:\n\n{text}"

    def build_reflection(self, source_text: str, translation: str, notes: str = "") -> str:
        prompt = REFLECTION_TEMPLATE.format(
            source_lang=self.source_lang,
            target_lang=self.target_lang,
            source_text=source_text,
            translation=translation,
            country_rule=self._country_rule(6, "Regional appropriateness: Is the language appropriate for"),
        )
        prompt = self._extras(prompt, notes)
        if self.preserve_markers:
            prompt += "\nIMPORTANT: Check that all preserve markers are intact in the translation."
        return prompt + ("\n\nProvide a detailed analysis of any issues found. "
                         "If the translation is perfect, simply state that no issues were found.")

    def build_improvement(self, source_text: str, translation: str, critique: str, notes: str = "") -> str:
        prompt = IMPROVEMENT_TEMPLATE.format(
            source_lang=self.source_lang,
            target_lang=self.target_lang,
            source_text=source_text,
            translation=translation,
            critique=critique,
            country_rule=self._country_rule(5, "Using language appropriate for"),
        )
        prompt = self._extras(prompt, notes)
        return prompt + "\n\nProvide only the improved translation without any explanation or commentary."

    def build_direct_translation(self, text: str, notes: str = "") -> str:
        prompt = DIRECT_TEMPLATE.format(
            source_lang=self.source_lang,
            target_lang=self.target_lang,
            country_rule=self._country_rule(4, "Use language appropriate for"),
        )
        prompt = self._extras(prompt, notes)
        return prompt + f"\n\nText to translate:\n\n{text}"

    def build(self, role: StepRole, source_text: str, translation: str = "",
              critique: str = "", notes: str = "") -> str:
        """Build the prompt for a stage role."""
        if role == StepRole.REFLECT:
            return self.build_reflection(source_text, translation, notes)
        if role == StepRole.IMPROVE:
            return self.build_improvement(source_text, translation, critique, notes)
        return self.build_initial_translation(source_text, notes)
