"""
Classic (BR/EDR) Discovery Output Parsing
==========================================

Parses the text output of BlueZ inquiry tools into device sightings.

``hcitool scan`` prints one tab-separated ``ADDRESS<TAB>NAME`` line per
responding device after a ``Scanning ...`` header. ``btscanner`` output
is less regular, so any line carrying a hardware address is accepted and
the remainder of the line is taken as the name.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional

_MAC_RE = re.compile(r"(?<![0-9A-Fa-f:])((?:[0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2})(?![0-9A-Fa-f:])")

# Placeholder names BlueZ prints when the remote name request failed.
_NO_NAME = {"", "n/a", "(unknown)", "unknown"}


@dataclass(frozen=True, slots=True)
class ClassicSighting:
    address: str
    name: Optional[str] = None


def is_hardware_address(value: str) -> bool:
    """True for a colon-separated 48-bit address such as ``00:1A:7D:DA:71:13``."""
    return bool(_MAC_RE.fullmatch(value.strip()))


def parse_inquiry_output(lines: Iterable[str]) -> list[ClassicSighting]:
    """Extract unique sightings from inquiry tool output.

    Lines shorter than an address or without one are skipped. The first
    sighting of an address wins; a later line may only fill in a missing
    name.
    """
    found: dict[str, ClassicSighting] = {}
    for raw in lines:
        line = raw.strip()
        if len(line) < 17 or ":" not in line:
            continue
        match = _MAC_RE.search(line)
        if match is None:
            continue

        address = match.group(1).upper()
        if "\t" in line:
            parts = [p.strip() for p in line.split("\t") if p.strip()]
            rest = " ".join(p for p in parts if p.upper() != address)
        else:
            rest = line[match.end():].strip(" -:\t")
        name = None if rest.lower() in _NO_NAME else rest

        existing = found.get(address)
        if existing is None:
            found[address] = ClassicSighting(address=address, name=name)
        elif existing.name is None and name:
            found[address] = ClassicSighting(address=address, name=name)

    return list(found.values())
