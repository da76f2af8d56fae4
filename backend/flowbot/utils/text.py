# /flowbot/utils/text.py

import re
import unicodedata
from typing import Optional

# Shared text normalization used by the option matcher, the flow models and
# the confirmation prompts. Kept dependency-free so models can import it.

_WHITESPACE = re.compile(r"\s+")
_ASCII_DIGITS = re.compile(r"^[0-9]+$")

AFFIRMATIVE_TOKENS = frozenset({
    "sim", "s", "ss", "si", "yes", "y", "ok", "okay", "isso", "isso mesmo",
    "isso ai", "correto", "certo", "confirmo", "confirmar", "claro", "pode ser",
    "pode", "exato", "positivo", "👍",
})

NEGATIVE_TOKENS = frozenset({
    "nao", "n", "no", "nop", "negativo", "errado", "outra", "outro",
    "nenhuma", "nao e", "nao e isso", "cancelar", "👎",
})


def normalize_text(value: Optional[str]) -> str:
    """Trim, collapse internal whitespace and case-fold."""
    if value is None:
        return ""
    return _WHITESPACE.sub(" ", str(value).strip()).lower()


def strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _confirmation_key(value: Optional[str]) -> str:
    key = strip_accents(normalize_text(value))
    return key.strip(" .!?,;")


def is_affirmative(value: Optional[str]) -> bool:
    return _confirmation_key(value) in AFFIRMATIVE_TOKENS


def is_negative(value: Optional[str]) -> bool:
    return _confirmation_key(value) in NEGATIVE_TOKENS


def is_numeric_reply(value: Optional[str]) -> bool:
    return bool(value) and bool(_ASCII_DIGITS.match(str(value).strip()))
