"""Text formatting utilities for the TUI.

Hides the details of text cleanup before messages are displayed. The
stored messages are never changed; only their rendering is.
"""

import re

from .config import EMPTY_REPLY_PLACEHOLDER

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_OPEN_THINK = re.compile(r"<think>.*\Z", re.DOTALL | re.IGNORECASE)


def strip_reasoning(text: str) -> str:
    """Remove ``<think>...</think>`` blocks emitted by reasoning models.

    An unterminated ``<think>`` (reply cut off mid-thought) is removed up to
    the end of the text.
    """
    text = _THINK_BLOCK.sub("", text)
    text = _OPEN_THINK.sub("", text)
    return text.strip()


def clean_latex(text: str) -> str:
    """Convert LaTeX notation to plain text equivalents.

    Handles common LaTeX patterns that Rich cannot render:
    - \\( ... \\) inline math -> just the content
    - \\[ ... \\] display math -> just the content
    - $...$ inline math -> just the content
    - $$...$$ display math -> just the content
    """
    text = re.sub(r'\\\(\s*', '', text)
    text = re.sub(r'\s*\\\)', '', text)
    text = re.sub(r'\\\[\s*', '', text)
    text = re.sub(r'\s*\\\]', '', text)

    # $$ before single $
    text = re.sub(r'\$\$\s*', '', text)
    text = re.sub(r'(?<!\\)\$([^$]+)(?<!\\)\$', r'\1', text)

    text = re.sub(r'\\frac\{([^}]*)\}\{([^}]*)\}', r'(\1)/(\2)', text)
    text = re.sub(r'\\sqrt\{([^}]*)\}', r'sqrt(\1)', text)
    text = re.sub(r'\\times', 'x', text)
    text = re.sub(r'\\cdot', '*', text)
    text = re.sub(r'\\pm', '+/-', text)
    text = re.sub(r'\\leq', '<=', text)
    text = re.sub(r'\\geq', '>=', text)
    text = re.sub(r'\\approx', '~=', text)
    text = re.sub(r'\\text\{([^}]*)\}', r'\1', text)

    return text


def format_reply(text: str) -> str:
    """Prepare an assistant reply for display."""
    cleaned = clean_latex(strip_reasoning(text))
    return cleaned if cleaned.strip() else EMPTY_REPLY_PLACEHOLDER
