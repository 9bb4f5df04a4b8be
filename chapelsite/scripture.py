"""
Scripture reference normalization.

Sermon feeds are typed by hand, so the same passage shows up as
"Gen 1:1", "genesis 1:1" or "Gen. 1:1". normalize_scripture() rewrites the
book token to its canonical full name and keeps the chapter/verse part as is:

  >>> normalize_scripture("1 cor 13:4-7")
  '1 Corinthians 13:4-7'
  >>> normalize_scripture("galations 5")
  'Galatians 5'
"""
import re

CANONICAL_BOOKS = [
    "Genesis", "Exodus", "Leviticus", "Numbers", "Deuteronomy", "Joshua",
    "Judges", "Ruth", "1 Samuel", "2 Samuel", "1 Kings", "2 Kings",
    "1 Chronicles", "2 Chronicles", "Ezra", "Nehemiah", "Esther", "Job",
    "Psalms", "Proverbs", "Ecclesiastes", "Song of Solomon", "Isaiah",
    "Jeremiah", "Lamentations", "Ezekiel", "Daniel", "Hosea", "Joel", "Amos",
    "Obadiah", "Jonah", "Micah", "Nahum", "Habakkuk", "Zephaniah", "Haggai",
    "Zechariah", "Malachi",
    "Matthew", "Mark", "Luke", "John", "Acts", "Romans", "1 Corinthians",
    "2 Corinthians", "Galatians", "Ephesians", "Philippians", "Colossians",
    "1 Thessalonians", "2 Thessalonians", "1 Timothy", "2 Timothy", "Titus",
    "Philemon", "Hebrews", "James", "1 Peter", "2 Peter", "1 John", "2 John",
    "3 John", "Jude", "Revelation",
]

# Abbreviations and misspellings seen in the feed. Lower-case keys.
# Every canonical name is added below, so only the variants live here.
BOOK_ALIASES = {
    "gen": "Genesis",
    "gn": "Genesis",
    "exod": "Exodus",
    "exo": "Exodus",
    "ex": "Exodus",
    "lev": "Leviticus",
    "num": "Numbers",
    "deut": "Deuteronomy",
    "dt": "Deuteronomy",
    "josh": "Joshua",
    "judg": "Judges",
    "jdg": "Judges",
    "1 sam": "1 Samuel",
    "2 sam": "2 Samuel",
    "1 kgs": "1 Kings",
    "2 kgs": "2 Kings",
    "1 chr": "1 Chronicles",
    "1 chron": "1 Chronicles",
    "2 chr": "2 Chronicles",
    "2 chron": "2 Chronicles",
    "neh": "Nehemiah",
    "esth": "Esther",
    "psalm": "Psalms",
    "psa": "Psalms",
    "ps": "Psalms",
    "prov": "Proverbs",
    "pr": "Proverbs",
    "eccl": "Ecclesiastes",
    "eccles": "Ecclesiastes",
    "song of songs": "Song of Solomon",
    "song": "Song of Solomon",
    "isa": "Isaiah",
    "jer": "Jeremiah",
    "lam": "Lamentations",
    "ezek": "Ezekiel",
    "dan": "Daniel",
    "hos": "Hosea",
    "obad": "Obadiah",
    "jon": "Jonah",
    "mic": "Micah",
    "nah": "Nahum",
    "hab": "Habakkuk",
    "zeph": "Zephaniah",
    "hag": "Haggai",
    "zech": "Zechariah",
    "mal": "Malachi",
    "matt": "Matthew",
    "mt": "Matthew",
    "mk": "Mark",
    "lk": "Luke",
    "jn": "John",
    "rom": "Romans",
    "1 cor": "1 Corinthians",
    "2 cor": "2 Corinthians",
    "gal": "Galatians",
    "galations": "Galatians",
    "eph": "Ephesians",
    "phil": "Philippians",
    "phillipians": "Philippians",
    "phillippians": "Philippians",
    "col": "Colossians",
    "1 thess": "1 Thessalonians",
    "2 thess": "2 Thessalonians",
    "1 tim": "1 Timothy",
    "2 tim": "2 Timothy",
    "tit": "Titus",
    "phlm": "Philemon",
    "philem": "Philemon",
    "heb": "Hebrews",
    "jas": "James",
    "1 pet": "1 Peter",
    "2 pet": "2 Peter",
    "1 jn": "1 John",
    "2 jn": "2 John",
    "3 jn": "3 John",
    "rev": "Revelation",
    "revelations": "Revelation",
}
for _name in CANONICAL_BOOKS:
    BOOK_ALIASES.setdefault(_name.lower(), _name)
del _name

# Longest alias first, so "song of solomon" wins over "song".
_ALIASES_BY_LENGTH = sorted(BOOK_ALIASES.items(), key=lambda kv: len(kv[0]), reverse=True)

# Leading book token: optional number prefix, then letters ("1 John", "Acts")
BOOK_TOKEN_RE = re.compile(r"^(\d?\s?[A-Za-z]+)")

NUMBER_PREFIX_RE = re.compile(r"^(\d+)\s*")


def normalize_scripture(text) -> str:
    """Return text with its leading book name replaced by the canonical name."""
    if not text or not isinstance(text, str):
        return ""

    cleaned = text.strip()
    lower = cleaned.lower()

    for alias, canonical in _ALIASES_BY_LENGTH:
        if not lower.startswith(alias):
            continue
        rest = cleaned[len(alias):]
        # "Gen. 1:1" -> abbreviation period belongs to the book token
        if rest.startswith("."):
            rest = rest[1:]
        # whole-token matches only: "job" must not eat the start of "jobs"
        if rest and not rest[0].isspace():
            continue
        rest = rest.strip()
        return f"{canonical} {rest}" if rest else canonical

    return cleaned


def extract_book(scripture: str) -> str:
    """
    Book name used for filtering: the leading token with its optional
    number, e.g. "1 John 4:8" -> "1 John". Multi-word names keep only
    their first word ("Song of Solomon 2:1" -> "Song").
    """
    if not scripture:
        return ""
    m = BOOK_TOKEN_RE.match(scripture)
    return m.group(1).strip() if m else ""


def book_sort_key(book: str):
    """
    Sort by base name first, then by the numeric prefix, so the John
    epistles group together: 1 John, 2 John, 3 John.
    """
    m = NUMBER_PREFIX_RE.match(book)
    number = int(m.group(1)) if m else 0
    base = book[m.end():] if m else book
    return (base.lower(), number, book)


def sort_books(books) -> list[str]:
    return sorted(set(books), key=book_sort_key)
