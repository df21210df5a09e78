import re
from typing import Iterable, List, Optional

_NON_DIGIT = re.compile(r"\D")
_NON_ALNUM = re.compile(r"[^a-z0-9]")

NAME_PREFIX_LENGTH = 5


def normalize_phone(phone: Optional[str]) -> str:
    return _NON_DIGIT.sub("", phone or "")


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def normalize_name(name: Optional[str]) -> str:
    return _NON_ALNUM.sub("", (name or "").lower())


def names_similar(a: str, b: str) -> bool:
    """
    Loose similarity between two normalized names.

    Equal, one containing the other, or sharing the first five characters
    when both are at least five long. Not transitive.
    """
    if a == b:
        return True
    if a in b or b in a:
        return True
    if len(a) >= NAME_PREFIX_LENGTH and len(b) >= NAME_PREFIX_LENGTH:
        return a[:NAME_PREFIX_LENGTH] == b[:NAME_PREFIX_LENGTH]
    return False


def merge_tags(*tag_lists: Optional[Iterable[str]]) -> List[str]:
    """Union of tag lists, first-seen order, no duplicates."""
    seen = []
    for tags in tag_lists:
        for tag in tags or []:
            if tag not in seen:
                seen.append(tag)
    return seen
