"""
Telegram MarkdownV2 helpers.

Every character Telegram reserves in MarkdownV2 must be escaped in plain
text, and ``)``/``\\`` must be escaped inside link targets.
"""

import re

_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")
_URL_SPECIAL = re.compile(r"([)\\])")
_CODE_SPECIAL = re.compile(r"([`\\])")


def escape(text: str) -> str:
    """Escape text for MarkdownV2."""
    return _SPECIAL.sub(r"\\\1", text)


def bold(text: str) -> str:
    """Wrap already escaped text in bold markers."""
    return f"*{text}*"


def link(url: str, text: str) -> str:
    """Build an inline link. ``text`` must already be escaped."""
    target = _URL_SPECIAL.sub(r"\\\1", url)
    return f"[{text}]({target})"


def code_block(code: str, language: str = "") -> str:
    """Build a fenced code block."""
    body = _CODE_SPECIAL.sub(r"\\\1", code)
    return f"```{language}\n{body}\n```"
