"""Ordering of contender nodes.

The store appends a ten-digit, zero-padded, monotonically assigned counter
to every sequential node. Only those last ten digits are the counter; digits
before them belong to the node prefix. Contenders are ranked by the counter
and the prefix only breaks ties, so attempts using different resource ids
still queue in creation order.
"""

import re
from typing import Iterable, List, Optional, Tuple

SEQUENCE_WIDTH = 10

_SEQUENCE_SUFFIX = re.compile(r"(\d{%d})$" % SEQUENCE_WIDTH)


def sequence_number(name: str) -> Optional[int]:
    """Return the sequence counter of a node name, or None if it has none."""
    match = _SEQUENCE_SUFFIX.search(name)
    if match is None:
        return None
    return int(match.group(1))


def sequence_key(name: str) -> Tuple[int, int, str]:
    # Unsequenced names sort after every sequenced one.
    number = sequence_number(name)
    if number is None:
        return (1, 0, name)
    return (0, number, name)


def sort_contenders(names: Iterable[str]) -> List[str]:
    """Sort sibling node names into acquisition order."""
    return sorted(names, key=sequence_key)
