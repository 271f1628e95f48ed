"""Unit tests for the VAST parser."""

import pytest

from streamgate.exceptions import VastDurationError
from streamgate.parser import VastParser, parse_duration_seconds, parse_skip_offset


class TestTagValues:
    """Text extraction for whitelisted tags."""

    def test_cdata_is_unwrapped(self, parser, inline_vast):
        """CDATA content comes back as plain text."""
        assert parser.extract_tag_values(inline_vast, "Impression") == [
            "https://track.example.com/imp?a=1&b=2"
        ]

    def test_entities_are_decoded(self, parser):
        xml = "<VAST><ClickThrough>https://x.example.com/?a=1&amp;b=2&quot;</ClickThrough></VAST>"
        assert parser.extract_tag_values(xml, "ClickThrough") == ['https://x.example.com/?a=1&b=2"']

    def test_blank_values_dropped_and_order_kept(self, parser):
        xml = """<VAST>
            <Impression>   </Impression>
            <Impression> https://a.example.com/1 </Impression>
            <Impression><![CDATA[ ]]></Impression>
            <Impression>https://a.example.com/2</Impression>
        </VAST>"""
        assert parser.extract_tag_values(xml, "Impression") == [
            "https://a.example.com/1",
            "https://a.example.com/2",
        ]

    def test_tag_match_is_case_insensitive_and_namespace_agnostic(self, parser):
        xml = '<vast xmlns="http://www.iab.com/VAST"><impression>https://a.example.com/i</impression></vast>'
        assert parser.extract_tag_values(xml, "Impression") == ["https://a.example.com/i"]

    def test_malformed_xml_is_recovered(self, parser):
        """Unclosed elements still yield their text."""
        xml = "<VAST><Ad><Impression>https://a.example.com/i</Impression>"
        assert parser.extract_tag_values(xml, "Impression") == ["https://a.example.com/i"]

    def test_bare_ampersands_in_urls_survive(self, parser):
        xml = """<VAST>
            <Impression>https://t.example.com/imp?a=1&b=2</Impression>
            <VASTAdTagURI>https://ads.example.com/next?c=3&d=4&amp;e=5</VASTAdTagURI>
        </VAST>"""
        document = parser.parse(xml)

        assert document.tag_values("Impression") == ["https://t.example.com/imp?a=1&b=2"]
        assert document.tag_values("VASTAdTagURI") == ["https://ads.example.com/next?c=3&d=4&e=5"]

    @pytest.mark.parametrize("xml", ["", "   ", "not xml at all"])
    def test_unusable_input_yields_nothing(self, parser, xml):
        assert parser.extract_tag_values(xml, "Impression") == []


class TestMediaCandidates:
    """MediaFile extraction."""

    def test_attributes_parsed(self, parser, inline_vast):
        candidates = parser.extract_media_candidates(inline_vast, "https://ads.example.com/vast.xml")

        assert [c.url for c in candidates] == [
            "https://cdn.example.com/ad/master.m3u8",
            "https://cdn.example.com/ad/creative.mp4",
        ]
        assert candidates[0].type == "application/x-mpegurl"
        assert candidates[1].bitrate == 1200
        assert candidates[1].width == 1280
        assert candidates[1].height == 720

    def test_relative_url_resolved_against_base(self, parser):
        xml = '<VAST><MediaFile type="video/mp4">/media/a.mp4</MediaFile></VAST>'
        candidates = parser.extract_media_candidates(xml, "https://ads.example.com/tags/vast.xml")
        assert candidates[0].url == "https://ads.example.com/media/a.mp4"

    def test_bitrate_falls_back_to_minbitrate(self, parser):
        xml = '<VAST><MediaFile TYPE="VIDEO/MP4" minBitrate="500" width="abc">https://c.example.com/a.mp4</MediaFile></VAST>'
        candidate = parser.extract_media_candidates(xml)[0]

        assert candidate.type == "video/mp4"
        assert candidate.bitrate == 500
        assert candidate.width is None

    def test_bare_ampersand_in_media_url(self, parser):
        xml = '<VAST><MediaFile type="video/mp4">https://cdn.example.com/ad.mp4?x=1&y=2</MediaFile></VAST>'
        assert [c.url for c in parser.extract_media_candidates(xml)] == [
            "https://cdn.example.com/ad.mp4?x=1&y=2"
        ]

    def test_ampersand_inside_cdata_left_alone(self):
        from streamgate.parser import escape_bare_ampersands

        xml = "<a>x&y<![CDATA[p&q&amp;]]>&#38;&lt;</a>"
        assert escape_bare_ampersands(xml) == "<a>x&amp;y<![CDATA[p&q&amp;]]>&#38;&lt;</a>"

    def test_empty_media_file_skipped(self, parser):
        xml = '<VAST><MediaFile type="video/mp4">  </MediaFile></VAST>'
        assert parser.extract_media_candidates(xml) == []


class TestTrackingEvents:
    """Tracking event grouping."""

    def test_grouped_by_canonical_key(self, parser, inline_vast):
        events = parser.extract_tracking_events(inline_vast)

        assert events["start"] == ["https://track.example.com/start"]
        assert events["firstQuartile"] == ["https://track.example.com/q1"]
        assert events["closeLinear"] == ["https://track.example.com/close"]

    def test_aliases_folded_unknown_ignored_duplicates_removed(self, parser):
        xml = """<VAST>
            <Tracking event="FirstQuartile">https://t.example.com/a</Tracking>
            <Tracking event="first_quartile">https://t.example.com/b</Tracking>
            <Tracking event="firstquartile">https://t.example.com/a</Tracking>
            <Tracking event="creativeView">https://t.example.com/view</Tracking>
            <Tracking event="CLOSE_LINEAR">https://t.example.com/close</Tracking>
        </VAST>"""
        events = parser.extract_tracking_events(xml)

        assert events == {
            "firstQuartile": ["https://t.example.com/a", "https://t.example.com/b"],
            "closeLinear": ["https://t.example.com/close"],
        }


class TestDurations:
    """Duration and skip offset parsing."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("00:00:30", 30.0),
            ("00:01:30.500", 90.5),
            ("01:00:00", 3600.0),
            (" 00:00:15 ", 15.0),
            ("1:00:00", None),
            ("garbage", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse_duration_seconds(self, text, expected):
        assert parse_duration_seconds(text) == expected

    def test_percentage_of_duration(self):
        """25% of a two minute ad is thirty seconds."""
        assert parse_skip_offset("25%", 120.0) == 30.0

    def test_clock_offset_with_millis(self):
        assert parse_skip_offset("0:00:05.5", None) == 5.5
        assert parse_skip_offset("00:00:05.250", None) == 5.25

    def test_bare_seconds(self):
        assert parse_skip_offset("10", None) == 10.0

    @pytest.mark.parametrize("value,duration", [("150%", 60.0), ("50%", None), ("-3", None), ("soon", 30.0)])
    def test_invalid_offsets_raise(self, value, duration):
        with pytest.raises(VastDurationError):
            parse_skip_offset(value, duration)

    def test_skip_offset_from_document(self, parser):
        xml = '<VAST><Linear skipoffset="25%"><Duration>00:02:00</Duration></Linear></VAST>'
        assert parser.parse(xml).skip_offset_seconds() == 30.0

    def test_first_valid_skip_offset_wins(self, parser):
        xml = """<VAST>
            <Linear skipoffset="bogus"></Linear>
            <Linear skipoffset="00:00:07"></Linear>
            <Linear skipoffset="00:00:09"></Linear>
        </VAST>"""
        assert parser.extract_skip_offset_seconds(xml, 30.0) == 7.0

    def test_percentage_without_duration_is_ignored(self, parser):
        xml = '<VAST><Linear skipoffset="50%"></Linear></VAST>'
        assert parser.extract_skip_offset_seconds(xml, None) is None


class TestParserConfig:
    def test_strict_mode_gives_up_on_broken_xml(self):
        from streamgate.config import VastParserConfig

        strict = VastParser(VastParserConfig(recover_on_error=False))
        document = strict.parse("<VAST><Impression>x</VAST>")

        assert document.is_empty
        assert document.tag_values("Impression") == []
