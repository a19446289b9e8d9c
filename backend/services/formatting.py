"""Markdown cleanup and light HTML formatting for model output."""
import re

_MARKDOWN_PATTERNS = [
    (re.compile(r"\*\*(.*?)\*\*"), r"\1"),      # bold asterisks
    (re.compile(r"\*(.*?)\*"), r"\1"),          # italic asterisks
    (re.compile(r"__(.*?)__"), r"\1"),          # bold underscores
    (re.compile(r"_(.*?)_"), r"\1"),            # italic underscores
    (re.compile(r"`(.*?)`"), r"\1"),            # inline code
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),  # keep link text, drop URL
]


def clean_markdown_text(text: str) -> str:
    """Strip markdown emphasis, inline code and link targets, keeping the content."""
    if not text:
        return ""

    for pattern, replacement in _MARKDOWN_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def format_explanation(text: str) -> str:
    """Render a step explanation as simple HTML: bold, italics and bullet lines."""
    if not text:
        return ""

    text = re.sub(r"\*\*([^*]+)\*\*", r"<strong>\1</strong>", text)
    text = re.sub(r"\*([^*]+)\*", r"<em>\1</em>", text)
    return re.sub(r"- ([^\n]+)", r"• \1<br/>", text)
