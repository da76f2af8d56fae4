# /flowbot/workflows/matcher.py

"""
Option matching for flow nodes.

Exact matching (id, 1-based position, alias, text) is a set of dictionary
lookups and always deterministic. Fuzzy matching scores every option text by
Levenshtein similarity and is only ever returned as a *suggestion*: the
matcher never selects a fuzzy option on the caller's behalf.
"""

from typing import Dict, List, Literal, Optional, Sequence, Union
from pydantic import BaseModel
from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

from flowbot.models.flow import FlowOption, NormalizedFlowOption
from flowbot.utils.text import is_numeric_reply, normalize_text

MatchKind = Literal["id", "index", "alias", "text"]

DEFAULT_MINIMUM_CONFIDENCE = 0.5


class OptionMatch(BaseModel):
    kind: Literal["exact", "suggestion"]
    matched_by: MatchKind
    option: NormalizedFlowOption
    key: str
    confidence: float


class SuggestionResult(BaseModel):
    option: NormalizedFlowOption
    confidence: float


def normalize_option(option: Union[FlowOption, NormalizedFlowOption], index: int) -> NormalizedFlowOption:
    if isinstance(option, NormalizedFlowOption):
        return option
    return NormalizedFlowOption(
        original_index=index,
        id=option.id,
        text=option.text,
        next=option.next,
        aliases=list(option.aliases),
        correct=option.correct,
    )


def similarity(a: str, b: str) -> float:
    """1 - distance / max(len(a), len(b)) over normalized text."""
    a, b = normalize_text(a), normalize_text(b)
    if not a and not b:
        return 1.0
    return 1 - Levenshtein.distance(a, b) / max(len(a), len(b))


class OptionMatcher:
    def __init__(self, options: Sequence[Union[FlowOption, NormalizedFlowOption]], allow_index: bool = True):
        self.allow_index = allow_index
        self.options: List[NormalizedFlowOption] = [
            normalize_option(option, index) for index, option in enumerate(options)
        ]
        self._by_id: Dict[str, NormalizedFlowOption] = {}
        self._by_index: Dict[int, NormalizedFlowOption] = {}
        self._by_alias: Dict[str, NormalizedFlowOption] = {}
        self._by_text: Dict[str, NormalizedFlowOption] = {}
        self._candidates: List[str] = []
        self._candidate_options: List[NormalizedFlowOption] = []

        for position, option in enumerate(self.options, start=1):
            if option.id:
                self._by_id.setdefault(option.id, option)
            normalized_text = normalize_text(option.text)
            if normalized_text:
                self._by_text.setdefault(normalized_text, option)
                self._candidates.append(normalized_text)
                self._candidate_options.append(option)
            for alias in option.aliases:
                normalized_alias = normalize_text(alias)
                if normalized_alias:
                    self._by_alias.setdefault(normalized_alias, option)
            if allow_index:
                self._by_index[position] = option

    def match_exact(self, input_raw: Optional[str]) -> Optional[OptionMatch]:
        """Checks id -> index -> alias -> text; the first hit wins."""
        if input_raw is None:
            return None
        raw = str(input_raw).strip()
        if not raw:
            return None

        if raw in self._by_id:
            return self._exact("id", self._by_id[raw], raw)

        if self.allow_index and is_numeric_reply(raw):
            option = self._by_index.get(int(raw))
            if option is not None:
                return self._exact("index", option, raw)

        normalized = normalize_text(raw)
        if normalized in self._by_alias:
            return self._exact("alias", self._by_alias[normalized], normalized)
        if normalized in self._by_text:
            return self._exact("text", self._by_text[normalized], normalized)
        return None

    # The engine only ever needs exact matching.
    match = match_exact

    def match_option(
        self,
        input_raw: Optional[str],
        minimum_confidence: float = DEFAULT_MINIMUM_CONFIDENCE,
    ) -> Optional[OptionMatch]:
        exact = self.match_exact(input_raw)
        if exact is not None:
            return exact

        suggestion = self.suggest(input_raw, minimum_confidence)
        if suggestion is None:
            return None
        return OptionMatch(
            kind="suggestion",
            matched_by="text",
            option=suggestion.option,
            key=normalize_text(input_raw),
            confidence=suggestion.confidence,
        )

    def suggest(self, input_raw: Optional[str], minimum_confidence: float) -> Optional[SuggestionResult]:
        normalized_input = normalize_text(input_raw)
        if not normalized_input or not self._candidates:
            return None
        best = process.extractOne(
            normalized_input,
            self._candidates,
            scorer=Levenshtein.normalized_similarity,
            processor=None,
            score_cutoff=minimum_confidence,
        )
        if best is None:
            return None
        _, score, index = best
        return SuggestionResult(option=self._candidate_options[index], confidence=float(score))

    @staticmethod
    def _exact(matched_by: MatchKind, option: NormalizedFlowOption, key: str) -> OptionMatch:
        return OptionMatch(kind="exact", matched_by=matched_by, option=option, key=key, confidence=1.0)


def build_option_matcher(
    options: Sequence[Union[FlowOption, NormalizedFlowOption]],
    allow_index: bool = True,
) -> OptionMatcher:
    return OptionMatcher(options, allow_index=allow_index)


def find_best_suggestion(
    input_raw: str,
    options: Sequence[Union[FlowOption, NormalizedFlowOption]],
    minimum_confidence: float,
) -> Optional[SuggestionResult]:
    match = build_option_matcher(options).match_option(input_raw, minimum_confidence)
    if match is None or match.kind != "suggestion":
        return None
    return SuggestionResult(option=match.option, confidence=match.confidence)
