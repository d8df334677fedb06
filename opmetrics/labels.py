"""Label value helpers shared by the classifier and the exporters."""
import re
from typing import Iterable, Optional, Sequence

DEFAULT_EMPTY = "-"
DEFAULT_UNKNOWN = "_unknown"
DEFAULT_SCROLL = "_scroll"
DEFAULT_MSEARCH = "_msearch"
ETC_INDICATOR = "_etc"
DELIMITER = "/"
WILDCARD = "*"
DEFAULT_WILDCARD_TOKEN = "__any"
DEFAULT_MAX_INDEX_COUNT = 3

_LABEL_NAME_PATTERN = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')


def get_or_default(value: Optional[str], default: str) -> str:
    """Return ``value`` unless it is missing or blank."""
    if value is None or not value.strip():
        return default
    return value


def join_indices(
    indices: Optional[Iterable[Optional[str]]],
    max_count: int = DEFAULT_MAX_INDEX_COUNT
) -> str:
    """
    Collapse a set of index names into one label value.

    Names are sorted and de-duplicated, blank names are dropped, and at most
    ``max_count`` names are kept. When names were cut off the ``_etc`` marker
    is appended.

    Args:
        indices: Target index names, or None when the request carries none
        max_count: Maximum number of distinct names in the label

    An empty list is reported as ``_unknown``, the same as a missing one,
    rather than ``-``: a request naming no index is not distinguished from a
    request whose indices could not be read.

    Returns:
        Joined label, or ``_unknown`` when no usable name remains
    """
    if indices is None:
        return DEFAULT_UNKNOWN

    names = sorted(name for name in indices if name is not None and name.strip())

    distinct = []
    for name in names:
        if distinct and distinct[-1] == name:
            continue
        distinct.append(name)

    if not distinct:
        return DEFAULT_UNKNOWN

    kept = distinct[:max_count]
    if len(distinct) > max_count:
        kept.append(ETC_INDICATOR)
    return DELIMITER.join(kept)


def escape_wildcards(value: str, token: str = DEFAULT_WILDCARD_TOKEN) -> str:
    """Replace the wildcard character, which export formats reject."""
    if WILDCARD in value:
        return value.replace(WILDCARD, token)
    return value


def validate_label_names(label_names: Sequence[str]) -> bool:
    """
    Validate label names are Prometheus-safe.

    Label names must match [a-zA-Z_][a-zA-Z0-9_]*
    """
    return all(_LABEL_NAME_PATTERN.match(name) for name in label_names)
