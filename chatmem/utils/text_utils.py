"""
Text utilities for cleaning LLM responses and filtering chat messages.
"""

import re

CQ_CODE = re.compile(r'\[CQ:[^\]]+\]')


def clean_llm_response(response: str) -> str:
    """Clean LLM response by removing code block markers and wrapping quotes.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned text
    """
    response = response.strip()

    # Remove ```lang and ``` markers
    if response.startswith('```'):
        newline = response.find('\n')
        response = response[newline + 1:] if newline != -1 else response[3:]

    if response.endswith('```'):
        response = response[:-3]

    response = response.strip()
    for quote in ('"', "'", '`'):
        if len(response) >= 2 and response.startswith(quote) and response.endswith(quote):
            response = response[1:-1].strip()

    return response


def strip_cq_codes(text: str) -> str:
    """Remove OneBot CQ codes (mentions, images, faces...) from a message."""
    return CQ_CODE.sub('', text).strip()


def is_command(text: str) -> bool:
    return text.strip().startswith('/')


def has_meaningful_content(text: str, min_length: int = 5) -> bool:
    """True if at least min_length characters remain once CQ codes are removed."""
    return len(strip_cq_codes(text)) >= min_length
