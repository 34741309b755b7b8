"""Native-library ABI discovery from archive entry paths."""

from __future__ import annotations

import re
from collections.abc import Iterable

# lib/<abi>/... where <abi> is lowercase alphanumerics and hyphens.
# Note that this excludes ABIs spelled with an underscore (x86_64).
NATIVE_LIB_PATTERN = re.compile(r"^lib/([a-z0-9-]+)/.*")


def scan_native_abis(entry_names: Iterable[str]) -> frozenset[str]:
    """Return the set of ABI identifiers found under ``lib/<abi>/``.

    Duplicates are merged; an archive without native code yields an
    empty set.
    """
    abis = set()
    for name in entry_names:
        match = NATIVE_LIB_PATTERN.match(name)
        if match:
            abis.add(match.group(1))
    return frozenset(abis)
