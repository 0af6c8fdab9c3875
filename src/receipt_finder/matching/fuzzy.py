"""Fuzzy text scoring for short strings (merchant names, sender fragments)."""


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + cost,
                )
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Normalized similarity in [0, 1], case-insensitive.

    Empty input on either side scores 0.0.
    """
    if not a or not b:
        return 0.0
    a, b = a.lower(), b.lower()
    distance = levenshtein_distance(a, b)
    return 1.0 - distance / max(len(a), len(b))


def is_fuzzy_match(a: str, b: str, threshold: float = 0.8) -> bool:
    """Return True if similarity(a, b) reaches the threshold."""
    return similarity(a, b) >= threshold
