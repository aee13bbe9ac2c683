import re
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from cds_errors import MalformedCatalog

logger = logging.getLogger(__name__)

INFO_ONLY_MARKER = "info-only"
UNKNOWN_ARCH = "unknown"
CORE_TYPE = "core"


def title_first(s: str) -> str:
    return s[:1].upper() + s[1:]


@dataclass(frozen=True)
class CatalogEntry:
    canonical_path: str
    version: str
    build: str
    platform_or_arch: str
    bulletin_type: str
    display_label: str = field(init=False)

    def __post_init__(self):
        label = (f"{self.version} (Build {self.build}) - "
                 f"{title_first(self.platform_or_arch)} - {title_first(self.bulletin_type)}")
        object.__setattr__(self, "display_label", label)


@dataclass(frozen=True)
class VersionSelection:
    version: str
    build: str
    platform_or_arch: str
    bulletin_type: str
    canonical_path: str

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.version, self.build, self.platform_or_arch)

    @property
    def display_label(self) -> str:
        return f"{self.version} (Build {self.build}) - {title_first(self.platform_or_arch)}"


def entry_from_path(path: str, macos: bool = False, arch: Optional[str] = None) -> Optional[CatalogEntry]:
    """
    Split a bulletin path into a CatalogEntry.

    ws/17.6.3/24583834/windows/core/metadata.xml.gz -> platform from the path.
    fusion/13.6.2/24409261/core/metadata.xml.gz     -> only for macOS families; segment[3]
                                                       is the bulletin dir, so the arch comes
                                                       from the product (or "unknown").
    Anything else -> None.
    """
    parts = path.split("/")
    if len(parts) >= 6:
        return CatalogEntry(
            canonical_path=path,
            version=parts[1],
            build=parts[2],
            platform_or_arch=parts[3],
            bulletin_type=parts[-2],
        )
    if len(parts) == 5 and macos:
        return CatalogEntry(
            canonical_path=path,
            version=parts[1],
            build=parts[2],
            platform_or_arch=arch or UNKNOWN_ARCH,
            bulletin_type=parts[-2],
        )
    return None


def parse_catalog(xml_text: str, macos: bool = False, arch: Optional[str] = None) -> List[CatalogEntry]:
    """Entries in order of appearance; sorting is left to sort_entries()."""
    if not xml_text or not xml_text.strip().startswith("<"):
        raise MalformedCatalog("Received empty or malformed catalog XML data.")
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise MalformedCatalog(f"Catalog XML could not be parsed: {e}") from e

    entries = []
    for meta in root.iter("metadata"):
        path = (meta.findtext("url") or "").strip()
        if not path:
            continue
        if INFO_ONLY_MARKER in path:
            logger.debug(f"skipping info-only entry {path}")
            continue
        entry = entry_from_path(path, macos=macos, arch=arch)
        if entry is None:
            logger.debug(f"skipping unrecognised catalog path {path}")
            continue
        entries.append(entry)
    return entries


_LEADING_INT = re.compile(r"\d+")


def _to_int(s: str) -> int:
    m = _LEADING_INT.match(s.strip())
    return int(m.group()) if m else 0


def version_parts(version: str, width: int = 0) -> Tuple[int, ...]:
    parts = [_to_int(p) for p in version.split(".")]
    parts.extend([0] * (width - len(parts)))
    return tuple(parts)


def _sort_key(width: int):
    # newest version, newest build, core first, then type name; path keeps it total
    def key(e):
        return (
            tuple(-n for n in version_parts(e.version, width)),
            -_to_int(e.build),
            e.bulletin_type != CORE_TYPE,
            e.bulletin_type,
            e.canonical_path,
        )
    return key


def sort_entries(entries: Iterable) -> list:
    """Sort CatalogEntry or VersionSelection rows newest first."""
    rows = list(entries)
    width = max((len(r.version.split(".")) for r in rows), default=0)
    return sorted(rows, key=_sort_key(width))


def build_version_index(entries: Iterable[CatalogEntry]) -> List[VersionSelection]:
    seen: Dict[Tuple[str, str, str], VersionSelection] = {}
    for e in entries:
        k = (e.version, e.build, e.platform_or_arch)
        if k in seen:
            continue
        seen[k] = VersionSelection(
            version=e.version,
            build=e.build,
            platform_or_arch=e.platform_or_arch,
            bulletin_type=e.bulletin_type,
            canonical_path=e.canonical_path,
        )
    return sort_entries(seen.values())
