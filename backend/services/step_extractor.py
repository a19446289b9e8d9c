"""
Learning step extraction for LearnPath Chat.

Heuristically pulls an ordered list of learning steps out of free-form model
output. This is pattern matching against unstructured text: it returns
whatever it can find, possibly nothing, and makes no correctness promise
beyond not raising.
"""
import logging
import re
from typing import List, Optional

from models.learning import LearningStep
from services.formatting import clean_markdown_text

logger = logging.getLogger(__name__)


class StepExtractor:
    """Best-effort classifier turning generated text into learning steps."""

    # Keyword patterns used to type a step from its title, checked in order
    SECTION_PATTERNS = [
        (re.compile(r"prerequisites?|before you start|foundation|basics|getting started", re.I), "prerequisite"),
        (re.compile(r"core|fundamentals|key concepts|essentials|primary|main", re.I), "core"),
        (re.compile(r"practice|projects?|exercises|hands-on|building|create|implement|coding", re.I), "practice"),
        (re.compile(r"advanced|deeper|next steps|further|mastery|optimization|expert", re.I), "advanced"),
    ]

    # Heading patterns, tried in order; the first one that matches anything wins
    STEP_PATTERNS = [
        # "Step 1: Title", "Phase A - Title"
        re.compile(r"(?:^|\n)(?:Step|Phase|Part|Level|Stage)[\s:-]+(\d+|[A-Z])[\s:-]*([^\n]+)", re.I),
        # "1. Title", "1) Title"
        re.compile(r"(?:^|\n)(\d+)[\.:\)\-]\s+([^\n]+)", re.I),
        # "## Title", "### Step 2: Title"
        re.compile(r"(?:^|\n)#{1,3}\s+(?:(?:Step|Phase|Part|Stage|Level)[\s:-]+)?([^\n]+)", re.I),
    ]

    # Types assigned to fallback paragraph steps by position
    PARAGRAPH_STEP_TYPES = ["prerequisite", "core", "core", "practice", "advanced"]
    MAX_PARAGRAPH_STEPS = 5

    MAX_DESCRIPTION_LENGTH = 100
    DESCRIPTION_LOOKAHEAD = 150
    MAX_PARAGRAPH_TITLE_LENGTH = 50

    LEARNING_KEYWORDS = re.compile(
        r"\b(?:prerequisites?|fundamentals|essentials|basics|first|second|third|then|next|"
        r"finally|advanced|begin by|start with)\b",
        re.I
    )

    def extract_steps(self, text: Optional[str]) -> List[LearningStep]:
        """
        Extract learning steps from generated text.

        Args:
            text: Model output, typically markdown

        Returns:
            Ordered list of steps; empty when no structure is found
        """
        if not text or not isinstance(text, str):
            return []

        logger.debug(f"Extracting learning steps from: {text[:100]}...")

        steps = self._extract_headed_steps(text)
        if not steps and self.has_learning_structure(text):
            steps = self._extract_paragraph_steps(text)

        logger.debug(f"Extracted {len(steps)} learning steps")
        return steps

    @classmethod
    def has_learning_structure(cls, text: Optional[str]) -> bool:
        """Check whether text looks like a sequence of things to learn."""
        if not text:
            return False

        has_steps = re.search(r"(?:^|\n)(?:step|phase|part|level|stage|\d+)[:.)\-]?\s+", text, re.I)
        has_headers = re.search(r"(?:^|\n)#{1,3}\s+", text)
        has_ordered_list = len(re.findall(r"(?:^|\n)\d+\.\s+", text)) >= 3
        has_keywords = cls.LEARNING_KEYWORDS.search(text)

        return bool(has_steps or has_headers or has_ordered_list or has_keywords)

    @staticmethod
    def detect_questions(text: Optional[str]) -> List[str]:
        """Return the sentences in text that end with a question mark."""
        if not text:
            return []
        return [question.strip() for question in re.findall(r"[^.!?]+\?", text)]

    def _extract_headed_steps(self, text: str) -> List[LearningStep]:
        steps: List[LearningStep] = []

        for pattern in self.STEP_PATTERNS:
            for match in pattern.finditer(text):
                number = len(steps) + 1
                groups = match.groups()
                raw_title = (groups[1] if len(groups) > 1 else None) or groups[0] or f"Step {number}"
                title = clean_markdown_text(raw_title).strip()

                steps.append(LearningStep(
                    step_id=f"step-{number}",
                    title=title,
                    description=self._describe(text, match.end()),
                    step_type=self._classify(title, number)
                ))

            if steps:
                break

        return steps

    def _extract_paragraph_steps(self, text: str) -> List[LearningStep]:
        paragraphs = [p for p in text.split("\n\n") if p.strip()][:self.MAX_PARAGRAPH_STEPS]
        steps: List[LearningStep] = []

        for index, paragraph in enumerate(paragraphs):
            title = re.split(r"[.!?]", paragraph)[0].strip()
            if len(title) > self.MAX_PARAGRAPH_TITLE_LENGTH:
                title = title[:self.MAX_PARAGRAPH_TITLE_LENGTH - 3] + "..."

            description = paragraph[len(title):].strip()[:self.MAX_DESCRIPTION_LENGTH]
            if len(description) > self.MAX_DESCRIPTION_LENGTH - 3:
                description += "..."

            steps.append(LearningStep(
                step_id=f"auto-{index}",
                title=title or f"Step {index + 1}",
                description=description or "Continue following this guide",
                step_type=self.PARAGRAPH_STEP_TYPES[index]
            ))

        return steps

    def _describe(self, text: str, start: int) -> str:
        """Take the text after a heading up to the next blank line, cleaned and shortened."""
        end = text.find("\n\n", start + 10)
        if end == -1:
            end = min(start + self.DESCRIPTION_LOOKAHEAD, len(text))

        description = clean_markdown_text(text[start:end].strip())
        description = re.sub(r"^\s*[-•*]\s*", "", description).strip()
        description = re.sub(r"^[:\-–]\s*", "", description).strip()

        if not description:
            return "No details provided for this step"
        if len(description) > self.MAX_DESCRIPTION_LENGTH:
            description = description[:self.MAX_DESCRIPTION_LENGTH - 3] + "..."
        return description

    def _classify(self, title: str, number: int) -> str:
        for pattern, step_type in self.SECTION_PATTERNS:
            if pattern.search(title.lower()):
                return step_type

        if number <= 2:
            return "prerequisite"
        if number <= 5:
            return "core"
        if number <= 8:
            return "practice"
        return "advanced"
