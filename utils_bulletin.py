import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union

from cds_errors import MalformedBulletin

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttributedNode:
    """A field that carries attributes, e.g. <relativePath powerOn="false">x.tar</relativePath>."""
    text: str
    attributes: Dict[str, str] = field(default_factory=dict)


# a field is plain text, an attributed node, or several of either (repeated tag)
FieldValue = Union[str, AttributedNode, List[Union[str, AttributedNode]]]


@dataclass(frozen=True)
class DownloadableItem:
    name: str
    directory_fragment: str
    file_name: str
    checksum_type: Optional[str] = None
    checksum_value: Optional[str] = None

    def url(self, base_url: str) -> str:
        return base_url.rstrip("/") + "/" + self.directory_fragment + self.file_name

    def to_dict(self, base_url: Optional[str] = None) -> dict:
        d = {
            "name": self.name,
            "pathFragment": self.directory_fragment,
            "fileName": self.file_name,
        }
        if base_url:
            d["url"] = self.url(base_url)
        if self.checksum_type and self.checksum_value:
            d["checksum"] = {"type": self.checksum_type, "value": self.checksum_value}
        return d


def directory_of(bulletin_path: str) -> str:
    parts = bulletin_path.split("/")
    if len(parts) < 2:
        raise ValueError(f"Invalid bulletin path format: {bulletin_path!r}")
    return "/".join(parts[:-1]) + "/"


def field_text(value: Optional[FieldValue]) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return first_non_empty(value)
    if isinstance(value, AttributedNode):
        return value.text.strip()
    return value.strip()


def first_non_empty(candidates: Iterable[Optional[FieldValue]]) -> str:
    for c in candidates:
        text = field_text(c)
        if text:
            return text
    return ""


def read_field(elem: ET.Element, tag: str) -> Optional[FieldValue]:
    nodes = elem.findall(f".//{tag}")
    if not nodes:
        return None
    values = [AttributedNode("".join(n.itertext()), dict(n.attrib)) if n.attrib else "".join(n.itertext())
              for n in nodes]
    return values[0] if len(values) == 1 else values


def read_checksum(component: ET.Element):
    block = component.find(".//checksum")
    if block is None:
        return None, None
    ctype = (block.findtext("checksumType") or "").strip()
    cvalue = (block.findtext("checksum") or "").strip()
    if ctype and cvalue:
        return ctype, cvalue
    return None, None


def item_from_component(component: ET.Element, directory_fragment: str) -> Optional[DownloadableItem]:
    file_name = field_text(read_field(component, "relativePath"))
    if not file_name:
        return None
    name = first_non_empty([
        read_field(component, "payload"),
        read_field(component, "componentID"),
        file_name,
    ])
    ctype, cvalue = read_checksum(component)
    return DownloadableItem(
        name=name,
        directory_fragment=directory_fragment,
        file_name=file_name,
        checksum_type=ctype,
        checksum_value=cvalue,
    )


def parse_bulletin(xml_text: str, directory_fragment: str) -> List[DownloadableItem]:
    """
    Flatten bulletin/componentList/component blocks of a core or packages
    metadata.xml into DownloadableItems.

    Components without a relativePath are dropped. A document with no
    bulletins is valid and yields []; unparseable XML raises MalformedBulletin.
    """
    if not xml_text or not xml_text.strip():
        return []
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise MalformedBulletin(f"Bulletin XML could not be parsed: {e}") from e

    items = []
    dropped = 0
    for bulletin in root.iter("bulletin"):
        for component_list in bulletin.iter("componentList"):
            for component in component_list.iter("component"):
                item = item_from_component(component, directory_fragment)
                if item is None:
                    dropped += 1
                    continue
                items.append(item)
    if dropped:
        logger.debug(f"dropped {dropped} component(s) without relativePath under {directory_fragment}")
    return items
