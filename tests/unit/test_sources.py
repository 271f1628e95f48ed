"""Unit tests for source lookup: requests, providers, URL building and aggregation."""

import asyncio
import json
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from streamgate.exceptions import InvalidMediaRequestError, NoPlayableSourceError, UpstreamFetchError
from streamgate.proxy_token import ProxyTokenService
from streamgate.settings import ProviderSettings, ProxySettings
from streamgate.sources import (
    MediaRequest,
    OpukProvider,
    PlaylistClient,
    PlaylistJsonProvider,
    ResolvedStream,
    SourceListProvider,
    SourceAggregator,
    SourceProvider,
    StreamUrlBuilder,
    VixsrcProvider,
    dedupe_sources,
    extract_master_playlist_url,
    normalize_headers,
    parse_playlist_payload,
    select_default,
    to_playlist_payload,
    unwrap_source_url,
)
from streamgate.types import StreamSourceOption

from support import mock_client


MOVIE = MediaRequest.parse("movie", "550")
EPISODE = MediaRequest.parse("tv", "1399", "1", "2")

VIXSRC_PAGE = """<html><script>
    window.video = {id: 1};
    window.masterPlaylist = {
        params: {
            'token': 'abc123',
            'expires': '1700000000',
            'asn': '',
        },
        url: 'https://vixsrc.to/playlist/246?b=1',
    };
</script></html>"""


class TestMediaRequest:
    def test_movie(self):
        assert MOVIE.is_movie
        assert MOVIE.query_params() == {"type": "movie", "id": "550"}

    def test_episode(self):
        assert EPISODE.query_params() == {"type": "tv", "id": "1399", "season": "1", "episode": "2"}

    def test_movie_ignores_season(self):
        assert MediaRequest.parse("MOVIE", " 550 ", "x", "y").season is None

    @pytest.mark.parametrize(
        "args",
        [
            ("anime", "1"),
            (None, "1"),
            ("movie", None),
            ("movie", "12a"),
            ("movie", "-5"),
            ("movie", "١٢"),
            ("tv", "1399"),
            ("tv", "1399", "1", None),
            ("tv", "1399", "one", "2"),
        ],
    )
    def test_invalid(self, args):
        with pytest.raises(InvalidMediaRequestError):
            MediaRequest.parse(*args)


class TestPlaylistPayload:
    def test_parse_skips_malformed_entries(self):
        payload = {
            "playlist": [
                {"sources": [
                    {"type": "hls", "file": " https://a.example.com/1.m3u8 ", "label": "  "},
                    {"type": "mp4", "file": "https://a.example.com/1.mp4"},
                    {"type": "hls", "file": ""},
                    {"type": "hls", "file": "https://a.example.com/1.m3u8", "label": "dup"},
                    {"type": "hls", "file": "https://b.example.com/2.m3u8", "label": "B", "default": True},
                    "junk",
                ]},
                {"sources": "nope"},
                "junk",
            ]
        }
        options = parse_playlist_payload(payload)

        assert options == [
            StreamSourceOption(file="https://a.example.com/1.m3u8", label="Auto"),
            StreamSourceOption(file="https://b.example.com/2.m3u8", label="B", is_default=True),
        ]

    @pytest.mark.parametrize("payload", [None, [], {"playlist": "x"}, {"other": []}])
    def test_parse_garbage(self, payload):
        assert parse_playlist_payload(payload) == []

    def test_select_default_keeps_single_flag(self):
        sources = [
            StreamSourceOption(file="a"),
            StreamSourceOption(file="b", is_default=True),
            StreamSourceOption(file="c", is_default=True),
        ]
        assert [s.is_default for s in select_default(sources)] == [False, True, False]
        assert [s.is_default for s in select_default(sources[:1])] == [True]

    def test_dedupe_keeps_first(self):
        sources = [StreamSourceOption(file="a", label="first"), StreamSourceOption(file="a", label="second")]
        assert [s.label for s in dedupe_sources(sources)] == ["first"]

    def test_wire_shape(self):
        payload = to_playlist_payload([StreamSourceOption(file="a", label="L", provider="p", is_default=True)])
        assert payload == {
            "playlist": [{"sources": [{"type": "hls", "file": "a", "label": "L", "provider": "p", "default": True}]}]
        }


class TestMasterPlaylistExtraction:
    def test_block_with_token(self):
        url = extract_master_playlist_url(VIXSRC_PAGE, "https://vixsrc.to/movie/550")
        parts = urlsplit(url)

        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://vixsrc.to/playlist/246"
        assert parse_qs(parts.query) == {
            "b": ["1"],
            "token": ["abc123"],
            "expires": ["1700000000"],
            "h": ["1"],
            "lang": ["en"],
        }

    def test_direct_m3u8_fallback(self):
        html = '<video src="https://cdn.example.com/hls/index.m3u8?sig=x"></video>'
        assert extract_master_playlist_url(html, "https://vixsrc.to/movie/1") == (
            "https://cdn.example.com/hls/index.m3u8?sig=x"
        )

    def test_nothing_found(self):
        assert extract_master_playlist_url("<html></html>", "https://vixsrc.to/movie/1") is None


class TestProviders:
    @pytest.mark.asyncio
    async def test_opuk_movie_and_episode_endpoints(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"success": True, "secureUrl": "https://cdn.opuk.test/master.m3u8"})

        provider = OpukProvider(mock_client(handler), ProviderSettings(base_url="https://opuk.test/", label="Amsterdam"))
        streams = await provider.fetch(MOVIE)
        await provider.fetch(EPISODE)

        assert [str(r.url) for r in seen] == [
            "https://opuk.test/api/secure-stream/550/",
            "https://opuk.test/api/secure-stream/1399-1-2/",
        ]
        assert seen[0].headers["origin"] == "https://opuk.test"
        assert streams[0].url == "https://cdn.opuk.test/master.m3u8"
        assert streams[0].headers["Referer"] == "https://opuk.test/"
        assert streams[0].label == "Amsterdam"

    @pytest.mark.asyncio
    async def test_opuk_unsuccessful_payload(self):
        provider = OpukProvider(
            mock_client(lambda r: httpx.Response(200, json={"success": False})),
            ProviderSettings(base_url="https://opuk.test"),
        )
        assert await provider.fetch(MOVIE) == []

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        provider = OpukProvider(
            mock_client(lambda r: httpx.Response(503)), ProviderSettings(base_url="https://opuk.test")
        )
        with pytest.raises(UpstreamFetchError):
            await provider.fetch(MOVIE)

    @pytest.mark.asyncio
    async def test_vixsrc_scrapes_page(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, text=VIXSRC_PAGE)

        provider = VixsrcProvider(mock_client(handler), ProviderSettings(base_url="https://vixsrc.to"))
        streams = await provider.fetch(EPISODE)

        assert seen == ["https://vixsrc.to/tv/1399/1/2"]
        assert streams[0].url.startswith("https://vixsrc.to/playlist/246?")
        assert streams[0].headers["Referer"] == "https://vixsrc.to/tv/1399/1/2"
        assert streams[0].headers["Origin"] == "https://vixsrc.to"

    @pytest.mark.asyncio
    async def test_playlist_provider_streams_not_wrapped(self):
        def handler(request):
            assert request.url.params["type"] == "tv"
            assert request.url.params["season"] == "1"
            return httpx.Response(
                200, json={"playlist": [{"sources": [{"type": "hls", "file": "https://p.example.com/a.m3u8"}]}]}
            )

        provider = PlaylistJsonProvider(
            mock_client(handler), ProviderSettings(base_url="https://p.example.com/api", provider="paris")
        )
        streams = await provider.fetch(EPISODE)

        assert streams == [
            ResolvedStream(url="https://p.example.com/a.m3u8", label="Auto", provider="paris", wrap=False)
        ]

    @pytest.mark.asyncio
    async def test_source_list_provider_carries_upstream_headers(self):
        wrapped = (
            "https://worker.test/m3u8-proxy/playlist.m3u8"
            "?url=https%3A%2F%2Fcdn.test%2Fa.m3u8"
            "&headers=%7B%22Referer%22%3A%22https%3A%2F%2Fembed.test%2F%22%7D"
        )

        def handler(request):
            assert request.url.params["id"] == "550"
            return httpx.Response(
                200,
                json={
                    "data": {
                        "sources": [
                            {"url": wrapped, "headers": '{"User-Agent": "ua-x"}', "quality": "Hindi"},
                            {"url": "https://cdn.test/b.m3u8", "headers": {"Origin": "https://o.test", "X": ""}},
                            {"url": ""},
                            "junk",
                        ]
                    }
                },
            )

        provider = SourceListProvider(
            mock_client(handler),
            ProviderSettings(base_url="https://list.example.com/api", label="Delhi", provider="delhi"),
        )
        streams = await provider.fetch(MOVIE)

        assert streams == [
            ResolvedStream(
                url="https://cdn.test/a.m3u8",
                headers={
                    "Referer": "https://embed.test/",
                    "User-Agent": "ua-x",
                    "Origin": "https://list.example.com",
                },
                label="Delhi (Hindi)",
                provider="delhi",
            ),
            ResolvedStream(
                url="https://cdn.test/b.m3u8",
                headers={"Origin": "https://o.test", "Referer": "https://list.example.com/"},
                label="Delhi",
                provider="delhi",
            ),
        ]

    @pytest.mark.asyncio
    async def test_source_list_provider_without_sources(self):
        provider = SourceListProvider(
            mock_client(lambda r: httpx.Response(200, json={"data": {"sources": None}})),
            ProviderSettings(base_url="https://list.example.com/api"),
        )
        assert await provider.fetch(MOVIE) == []

    def test_disabled_without_base_url(self):
        assert not PlaylistJsonProvider(mock_client(lambda r: httpx.Response(204))).enabled
        assert not OpukProvider(
            mock_client(lambda r: httpx.Response(204)),
            ProviderSettings(enabled=False, base_url="https://opuk.test"),
        ).enabled


class TestHeaderNormalization:
    @pytest.mark.parametrize(
        "headers,expected",
        [
            ({"Referer": "https://a.test/", "Blank": " ", "Num": 3}, {"Referer": "https://a.test/"}),
            ('{"Origin": "https://a.test"}', {"Origin": "https://a.test"}),
            ("not json", {}),
            ('["list"]', {}),
            (None, {}),
        ],
    )
    def test_normalize_headers(self, headers, expected):
        assert normalize_headers(headers) == expected

    def test_plain_url_is_not_unwrapped(self):
        assert unwrap_source_url("https://cdn.test/a.m3u8?sig=1", {"Origin": "https://o.test"}) == (
            "https://cdn.test/a.m3u8?sig=1",
            {"Origin": "https://o.test"},
        )

    def test_side_headers_override_wrapped_ones(self):
        url = "https://w.test/p?url=https%3A%2F%2Fcdn.test%2Fa.m3u8&headers=%7B%22Referer%22%3A%22https%3A%2F%2Fold.test%2F%22%7D"
        assert unwrap_source_url(url, {"Referer": "https://new.test/"}) == (
            "https://cdn.test/a.m3u8",
            {"Referer": "https://new.test/"},
        )


class TestStreamUrlBuilder:
    STREAM = ResolvedStream(url="https://cdn.example.com/a.m3u8", headers={"Referer": "https://vixsrc.to/"})

    def test_secure_proxy_preferred(self, token_service):
        builder = StreamUrlBuilder(token_service, ProxySettings(worker_base_url="https://worker.example.com"))
        url = builder.build(self.STREAM, "https://app.example.com")

        assert url.startswith("https://app.example.com/secure-proxy?token=")
        payload = token_service.decode(parse_qs(urlsplit(url).query)["token"][0])
        assert payload.target == "https://cdn.example.com/a.m3u8"
        assert payload.headers == {"Referer": "https://vixsrc.to/"}

    def test_worker_proxy_when_tokens_disabled(self):
        builder = StreamUrlBuilder(ProxyTokenService(None), ProxySettings(worker_base_url="https://worker.example.com/"))
        url = builder.build(self.STREAM, "https://app.example.com")
        parts = urlsplit(url)
        query = parse_qs(parts.query)

        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://worker.example.com/m3u8-proxy/playlist.m3u8"
        assert query["url"] == ["https://cdn.example.com/a.m3u8"]
        assert json.loads(query["headers"][0]) == {"Referer": "https://vixsrc.to/"}

    def test_raw_url_as_last_resort(self, token_service):
        assert StreamUrlBuilder(ProxyTokenService(None)).build(self.STREAM) == self.STREAM.url
        assert StreamUrlBuilder(token_service).build(self.STREAM, None) == self.STREAM.url

    def test_unwrapped_stream_left_alone(self, token_service):
        stream = ResolvedStream(url="https://p.example.com/a.m3u8", wrap=False)
        assert StreamUrlBuilder(token_service).build(stream, "https://app.example.com") == stream.url


class StaticProvider(SourceProvider):
    def __init__(self, name, streams=(), delay=0.0, error=None, timeout=1.0):
        self.name = name
        super().__init__(httpx.AsyncClient(), ProviderSettings(base_url=f"https://{name}.test", timeout=timeout))
        self.streams = list(streams)
        self.delay = delay
        self.error = error

    async def fetch(self, request):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.streams


class TestSourceAggregator:
    @pytest.mark.asyncio
    async def test_failures_are_isolated(self):
        aggregator = SourceAggregator(
            [
                StaticProvider("broken", error=RuntimeError("boom")),
                StaticProvider("slow", [ResolvedStream(url="https://slow.test/a.m3u8")], delay=1.0, timeout=0.05),
                StaticProvider("good", [ResolvedStream(url="https://good.test/a.m3u8")]),
            ],
            StreamUrlBuilder(ProxyTokenService(None)),
        )
        sources = await aggregator.aggregate(MOVIE)

        assert sources == [
            StreamSourceOption(file="https://good.test/a.m3u8", label="Good", provider="good", is_default=True)
        ]

    @pytest.mark.asyncio
    async def test_order_dedupe_and_single_default(self):
        aggregator = SourceAggregator(
            [
                StaticProvider("first", [ResolvedStream(url="https://x.test/a.m3u8", label="One")]),
                StaticProvider(
                    "second",
                    [
                        ResolvedStream(url="https://x.test/a.m3u8", label="Dup"),
                        ResolvedStream(url="https://x.test/b.m3u8", label="Two", is_default=True),
                    ],
                ),
            ],
            StreamUrlBuilder(ProxyTokenService(None)),
        )
        sources = await aggregator.aggregate(MOVIE)

        assert [(s.file, s.label, s.is_default) for s in sources] == [
            ("https://x.test/a.m3u8", "One", False),
            ("https://x.test/b.m3u8", "Two", True),
        ]

    @pytest.mark.asyncio
    async def test_all_failing_gives_empty_list(self):
        aggregator = SourceAggregator(
            [StaticProvider("broken", error=UpstreamFetchError("down"))],
            StreamUrlBuilder(ProxyTokenService(None)),
        )
        assert await aggregator.aggregate(MOVIE) == []

    @pytest.mark.asyncio
    async def test_same_upstream_deduped_before_tokenizing(self, token_service):
        aggregator = SourceAggregator(
            [
                StaticProvider("first", [ResolvedStream(url="https://cdn.test/x.m3u8", label="One")]),
                StaticProvider("second", [ResolvedStream(url="https://cdn.test/x.m3u8", label="Dup")]),
            ],
            StreamUrlBuilder(token_service),
        )
        sources = await aggregator.aggregate(MOVIE, "https://app.example.com")

        assert [s.label for s in sources] == ["One"]
        token = parse_qs(urlsplit(sources[0].file).query)["token"][0]
        assert token_service.decode(token).target == "https://cdn.test/x.m3u8"


class TestPlaylistClient:
    @pytest.mark.asyncio
    async def test_load(self):
        client = PlaylistClient(
            mock_client(
                lambda r: httpx.Response(
                    200, json={"playlist": [{"sources": [{"type": "hls", "file": "https://a.test/1.m3u8"}]}]}
                )
            )
        )
        sources = await client.load("https://app.example.com/sources?type=movie&id=550")
        assert [s.file for s in sources] == ["https://a.test/1.m3u8"]

    @pytest.mark.asyncio
    async def test_empty_playlist(self):
        client = PlaylistClient(mock_client(lambda r: httpx.Response(200, json={"playlist": []})))
        with pytest.raises(NoPlayableSourceError):
            await client.load("https://app.example.com/sources")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [httpx.Response(502), httpx.Response(200, text="<html>")])
    async def test_bad_response(self, response):
        client = PlaylistClient(mock_client(lambda r: response))
        with pytest.raises(UpstreamFetchError):
            await client.load("https://app.example.com/sources")
