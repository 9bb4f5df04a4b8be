"""
chapelsite - build-time content pipeline for the church website

- scripture: Bible reference normalization
- sermons: podcast feed -> sermon collection with filter facets
- events: iCalendar feed -> upcoming events
- images: responsive <picture> rewriting of the generated HTML
- build: command line entry point
"""

__version__ = "1.0.0"

from .scripture import normalize_scripture, extract_book, sort_books  # noqa: E402
from .context import BuildContext  # noqa: E402

__all__ = [
    "__version__",
    "normalize_scripture",
    "extract_book",
    "sort_books",
    "BuildContext",
]
