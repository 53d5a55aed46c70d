from __future__ import annotations

import math

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Return a rough token count for ``text``.

    Uses the ``characters / 4`` heuristic; callers that need an exact
    count can inject their own counter wherever ``token_count`` is accepted.
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)
