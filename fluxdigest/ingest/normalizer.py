import re

# Cap applied before any regex work so pathological entries stay cheap
SAFE_CONTENT_LENGTH = 50_000
ELLIPSIS = "..."

_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")


def clean_html(content: str | None, safe_length: int = SAFE_CONTENT_LENGTH) -> str:
    """
    Reduce entry HTML to plain text.

    - Cut to the first `safe_length` characters
    - Replace every tag with a space
    - Collapse whitespace runs and trim
    """
    if not content:
        return ""
    text = content[:safe_length]
    text = _TAG_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


class TokenEstimator:
    """Character-weighted token estimate.

    CJK unified ideographs cost `cjk_weight` tokens each, every other character
    `other_weight`. Swap in a subclass backed by a real tokenizer by overriding
    `truncate`.
    """

    cjk_weight = 1.6
    other_weight = 0.3
    cjk_range = (0x4E00, 0x9FFF)

    def weight(self, char: str) -> float:
        low, high = self.cjk_range
        return self.cjk_weight if low <= ord(char) <= high else self.other_weight

    def estimate(self, text: str) -> float:
        return sum(self.weight(c) for c in text)

    def truncate(self, text: str, max_tokens: float) -> str:
        """Cut `text` at the character where the running estimate reaches
        `max_tokens` and append an ellipsis; shorter text is returned as is."""
        if not text:
            return ""

        total = 0.0
        for i, char in enumerate(text):
            total += self.weight(char)
            if total >= max_tokens:
                return text[:i] + ELLIPSIS
        return text
