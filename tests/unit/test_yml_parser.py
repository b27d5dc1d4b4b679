"""
Unit tests for the YML / XML offer feed parser.
"""

import json
import xml.etree.ElementTree as ET
import pytest

from parsers.base import ParseOptions
from parsers.yml_parser import YmlParser
from models.import_session import ImportFileFormat
from exceptions import MalformedInputError


YML_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<yml_catalog date="2024-01-01 10:00">
  <shop>
    <name>Widget Store</name>
    <categories>
      <category id="1">Widgets</category>
      <category id="2" parentId="1">Red widgets</category>
    </categories>
    <offers>
      <offer id="101" available="true">
        <name>Red Widget</name>
        <price>1999.50</price>
        <oldprice>2499</oldprice>
        <currencyId>RUB</currencyId>
        <categoryId>2</categoryId>
        <picture>https://cdn.example.com/1.jpg</picture>
        <picture>https://cdn.example.com/2.jpg</picture>
        <vendor>Acme</vendor>
        <vendorCode>AB-1</vendorCode>
        <param name="Color">Red</param>
        <param name="Size">L</param>
      </offer>
      <offer id="102" available="false" type="vendor.model">
        <model>Blue Widget</model>
        <price>10</price>
      </offer>
    </offers>
  </shop>
</yml_catalog>
""".encode("utf-8")


@pytest.fixture
def parser():
    return YmlParser()


class TestYmlParse:
    """Tests for YmlParser.parse()"""

    def test_one_row_per_offer(self, parser):
        result = parser.parse(YML_FEED, ParseOptions())

        assert result.row_count == 2

    def test_offer_fields(self, parser):
        row = parser.parse(YML_FEED, ParseOptions()).rows[0]

        assert row["id"] == "101"
        assert row["name"] == "Red Widget"
        assert row["price"] == "1999.50"
        assert row["oldprice"] == "2499"
        assert row["currencyId"] == "RUB"
        assert row["vendorCode"] == "AB-1"
        assert row["available"] == "true"

    def test_repeated_pictures_become_json_list(self, parser):
        row = parser.parse(YML_FEED, ParseOptions()).rows[0]

        assert json.loads(row["picture"]) == [
            "https://cdn.example.com/1.jpg",
            "https://cdn.example.com/2.jpg",
        ]

    def test_params_become_json_object(self, parser):
        row = parser.parse(YML_FEED, ParseOptions()).rows[0]

        assert json.loads(row["param"]) == {"Color": "Red", "Size": "L"}

    def test_model_used_when_name_missing(self, parser):
        row = parser.parse(YML_FEED, ParseOptions()).rows[1]

        assert row["name"] == "Blue Widget"
        assert row["type"] == "vendor.model"

    def test_missing_fields_are_empty(self, parser):
        row = parser.parse(YML_FEED, ParseOptions()).rows[1]

        assert row["vendorCode"] == ""
        assert row["param"] == ""

    def test_metadata(self, parser):
        metadata = parser.parse(YML_FEED, ParseOptions()).metadata

        assert metadata["format"] == "yml"
        assert metadata["shop_name"] == "Widget Store"
        assert metadata["categories"] == {"1": "Widgets", "2": "Red widgets"}

    def test_offers_without_shop(self, parser):
        content = b"<offers><offer id='1'><name>A</name></offer></offers>"

        result = parser.parse(content, ParseOptions())

        assert result.rows == [{"id": "1", "name": "A"}]
        assert result.metadata["shop_name"] is None

    def test_document_without_offers(self, parser):
        result = parser.parse(b"<catalog><shop><name>X</name></shop></catalog>", ParseOptions())

        assert result.row_count == 0

    def test_invalid_xml_raises(self, parser):
        with pytest.raises(MalformedInputError):
            parser.parse(b"<yml_catalog><shop>", ParseOptions())

    def test_max_rows(self, parser):
        result = parser.parse(YML_FEED, ParseOptions(max_rows=1))

        assert result.row_count == 1


class TestYmlDetectFormat:

    def test_yml_extension(self, parser):
        assert parser.detect_format("feed.yml") == ImportFileFormat.YML

    def test_xml_extension(self, parser):
        assert parser.detect_format("feed.xml") == ImportFileFormat.XML


class TestYmlRoundTrip:

    def test_serialized_offers_parse_back(self, parser):
        rows = [
            {"id": "1", "name": "Tom & Jerry <mug>", "price": "9.99"},
            {"id": "2", "name": "Стол", "price": "5"},
        ]
        catalog = ET.Element("yml_catalog")
        offers = ET.SubElement(ET.SubElement(catalog, "shop"), "offers")
        for row in rows:
            offer = ET.SubElement(offers, "offer", id=row["id"])
            ET.SubElement(offer, "name").text = row["name"]
            ET.SubElement(offer, "price").text = row["price"]

        result = parser.parse(ET.tostring(catalog, encoding="utf-8"), ParseOptions())

        assert result.rows == rows
