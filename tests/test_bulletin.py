"""Tests for bulletin (core/packages metadata.xml) parsing"""

import pytest

from cds_errors import MalformedBulletin
from utils_bulletin import (
    AttributedNode,
    DownloadableItem,
    directory_of,
    field_text,
    first_non_empty,
    parse_bulletin,
)

FRAGMENT = "ws/17.6.3/24583834/windows/core/"


def bulletin(*components, lists=1):
    comps = "".join(f"<component>{c}</component>" for c in components)
    component_lists = "".join(f"<componentList>{comps}</componentList>" for _ in range(lists))
    return f'<?xml version="1.0"?><metaList><bulletin><id>b1</id>{component_lists}</bulletin></metaList>'


class TestFieldText:

    def test_plain_text(self):
        assert field_text(" foo.exe ") == "foo.exe"

    def test_attributed_node(self):
        assert field_text(AttributedNode("foo.exe", {"powerOn": "false"})) == "foo.exe"

    def test_repeated_field_takes_first(self):
        assert field_text([AttributedNode("a.tar", {"x": "1"}), "b.tar"]) == "a.tar"

    def test_repeated_field_skips_blank_nodes(self):
        assert field_text(["  ", AttributedNode("", {"x": "1"}), "b.tar"]) == "b.tar"

    def test_missing(self):
        assert field_text(None) == ""
        assert field_text([]) == ""


class TestFirstNonEmpty:

    def test_priority_order(self):
        assert first_non_empty(["Payload", "componentId", "file.tar"]) == "Payload"

    def test_skips_empty_and_missing(self):
        assert first_non_empty([None, "  ", AttributedNode("vmware-tools"), "file.tar"]) == "vmware-tools"

    def test_nothing(self):
        assert first_non_empty([None, ""]) == ""


class TestParseBulletin:

    def test_component_with_payload_and_checksum(self):
        xml = bulletin(
            "<componentID>foo</componentID>"
            "<payload>FooInstaller</payload>"
            "<relativePath>foo.exe</relativePath>"
            "<checksum><checksumType>sha256</checksumType><checksum>abc123</checksum></checksum>"
        )
        items = parse_bulletin(xml, FRAGMENT)
        assert items == [DownloadableItem(
            name="FooInstaller",
            directory_fragment=FRAGMENT,
            file_name="foo.exe",
            checksum_type="sha256",
            checksum_value="abc123",
        )]

    def test_attributed_relative_path(self):
        xml = bulletin('<componentID>vmware-workstation</componentID>'
                       '<relativePath powerOn="false">vmware-workstation-17.6.3.exe.tar</relativePath>')
        [item] = parse_bulletin(xml, FRAGMENT)
        assert item.file_name == "vmware-workstation-17.6.3.exe.tar"
        assert item.name == "vmware-workstation"

    def test_name_falls_back_to_file_name(self):
        [item] = parse_bulletin(bulletin("<relativePath>tools-windows.tar</relativePath>"), FRAGMENT)
        assert item.name == item.file_name == "tools-windows.tar"

    def test_empty_payload_falls_back_to_component_id(self):
        [item] = parse_bulletin(bulletin("<payload> </payload><componentID>tools</componentID>"
                                         "<relativePath>t.tar</relativePath>"), FRAGMENT)
        assert item.name == "tools"

    def test_missing_relative_path_dropped(self):
        items = parse_bulletin(bulletin(
            "<componentID>no-file</componentID><payload>NoFile</payload>",
            "<componentID>ok</componentID><relativePath>ok.tar</relativePath>",
            "<relativePath>   </relativePath>",
        ), FRAGMENT)
        assert [i.file_name for i in items] == ["ok.tar"]
        assert all(i.file_name and i.name for i in items)

    def test_repeated_relative_path_with_blank_first(self):
        [item] = parse_bulletin(bulletin("<relativePath> </relativePath>"
                                         '<relativePath powerOn="false">tools.tar</relativePath>'), FRAGMENT)
        assert item.file_name == "tools.tar"

    def test_incomplete_checksum_ignored(self):
        [item] = parse_bulletin(bulletin(
            "<relativePath>a.tar</relativePath><checksum><checksumType>sha1</checksumType></checksum>"
        ), FRAGMENT)
        assert item.checksum_type is None
        assert item.checksum_value is None

    def test_no_checksum_block(self):
        [item] = parse_bulletin(bulletin("<relativePath>a.tar</relativePath>"), FRAGMENT)
        assert (item.checksum_type, item.checksum_value) == (None, None)

    def test_document_order_across_lists_and_bulletins(self):
        xml = ("<metaList>"
               "<bulletin><componentList>"
               "<component><relativePath>1.tar</relativePath></component>"
               "<component><relativePath>2.tar</relativePath></component>"
               "</componentList><componentList>"
               "<component><relativePath>3.tar</relativePath></component>"
               "</componentList></bulletin>"
               "<bulletin><componentList>"
               "<component><relativePath>4.tar</relativePath></component>"
               "</componentList></bulletin>"
               "</metaList>")
        assert [i.file_name for i in parse_bulletin(xml, FRAGMENT)] == ["1.tar", "2.tar", "3.tar", "4.tar"]

    def test_components_outside_bulletin_ignored(self):
        xml = "<metaList><componentList><component><relativePath>x.tar</relativePath></component></componentList></metaList>"
        assert parse_bulletin(xml, FRAGMENT) == []

    def test_fragment_attached(self):
        [item] = parse_bulletin(bulletin("<relativePath>a.tar</relativePath>"), "fusion/13.6.2/24409261/core/")
        assert item.directory_fragment == "fusion/13.6.2/24409261/core/"

    @pytest.mark.parametrize("xml", ["", "   ", "<metaList/>", "<metaList><bulletin/></metaList>"])
    def test_empty_documents(self, xml):
        assert parse_bulletin(xml, FRAGMENT) == []

    def test_malformed(self):
        with pytest.raises(MalformedBulletin):
            parse_bulletin("<metaList><bulletin><componentList></metaList>", FRAGMENT)


class TestDownloadableItem:

    def test_url(self):
        item = DownloadableItem("Foo", FRAGMENT, "foo.exe.tar")
        assert item.url("https://softwareupdate-prod.broadcom.com/cds/vmw-desktop/") == (
            "https://softwareupdate-prod.broadcom.com/cds/vmw-desktop/"
            "ws/17.6.3/24583834/windows/core/foo.exe.tar"
        )

    def test_to_dict(self):
        item = DownloadableItem("Foo", FRAGMENT, "foo.exe", "sha256", "abc123")
        d = item.to_dict("https://example.invalid/cds")
        assert d["name"] == "Foo"
        assert d["fileName"] == "foo.exe"
        assert d["url"] == "https://example.invalid/cds/" + FRAGMENT + "foo.exe"
        assert d["checksum"] == {"type": "sha256", "value": "abc123"}

    def test_to_dict_without_checksum(self):
        assert "checksum" not in DownloadableItem("Foo", FRAGMENT, "foo.exe").to_dict()


class TestDirectoryOf:

    def test_directory(self):
        assert directory_of("ws/17.6.3/24583834/windows/core/metadata.xml.gz") == FRAGMENT

    def test_invalid(self):
        with pytest.raises(ValueError):
            directory_of("metadata.xml.gz")
