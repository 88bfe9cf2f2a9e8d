"""
utils/icons.py
--------------
Maps a recurring payment's name to a display glyph.
"""

from config import DEFAULT_RECURRING_ICON

# Ordered: the first keyword found in the name wins.
DEFAULT_ICON_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("apple", "🍎"),
    ("zoom", "🔍"),
    ("youtube", "▶️"),
    ("google", "🔎"),
    ("netflix", "🎬"),
    ("spotify", "🎧"),
    ("amazon", "🛒"),
)


class IconClassifier:
    """Case-insensitive substring matcher over an ordered keyword table."""

    def __init__(
        self,
        keywords: tuple[tuple[str, str], ...] = DEFAULT_ICON_KEYWORDS,
        default: str = DEFAULT_RECURRING_ICON,
    ):
        self._keywords = tuple((key.lower(), glyph) for key, glyph in keywords)
        self.default = default

    def classify(self, name: str) -> str:
        lowered = (name or "").lower()
        for keyword, glyph in self._keywords:
            if keyword in lowered:
                return glyph
        return self.default


_default_classifier = IconClassifier()


def classify_icon(name: str) -> str:
    """Classify with the default keyword table."""
    return _default_classifier.classify(name)
