"""Test helpers shared across suites."""

import asyncio
from typing import Callable, Optional

import httpx

from streamgate.types import ActiveVastAd, AdSlot


INLINE_VAST = """<?xml version="1.0" encoding="UTF-8"?>
<VAST version="3.0">
  <Ad id="inline-1">
    <InLine>
      <AdSystem>Test</AdSystem>
      <Impression><![CDATA[https://track.example.com/imp?a=1&b=2]]></Impression>
      <Error>https://track.example.com/error?code=[ERRORCODE]</Error>
      <Creatives>
        <Creative>
          <Linear skipoffset="00:00:05">
            <Duration>00:00:30</Duration>
            <TrackingEvents>
              <Tracking event="start">https://track.example.com/start</Tracking>
              <Tracking event="firstQuartile">https://track.example.com/q1</Tracking>
              <Tracking event="midpoint">https://track.example.com/mid</Tracking>
              <Tracking event="thirdQuartile">https://track.example.com/q3</Tracking>
              <Tracking event="complete">https://track.example.com/complete</Tracking>
              <Tracking event="skip">https://track.example.com/skip</Tracking>
              <Tracking event="closeLinear">https://track.example.com/close</Tracking>
            </TrackingEvents>
            <VideoClicks>
              <ClickThrough>https://advertiser.example.com/landing</ClickThrough>
              <ClickTracking>https://track.example.com/click</ClickTracking>
            </VideoClicks>
            <MediaFiles>
              <MediaFile type="application/x-mpegURL" bitrate="800" width="1280" height="720">
                <![CDATA[https://cdn.example.com/ad/master.m3u8]]>
              </MediaFile>
              <MediaFile type="video/mp4" bitrate="1200" width="1280" height="720">
                <![CDATA[https://cdn.example.com/ad/creative.mp4]]>
              </MediaFile>
            </MediaFiles>
          </Linear>
        </Creative>
      </Creatives>
    </InLine>
  </Ad>
</VAST>
"""


def wrapper_vast(
    tag_url: str,
    impression: str = "https://wrapper.example.com/imp",
    start: Optional[str] = "https://wrapper.example.com/start",
) -> str:
    tracking = f'<Tracking event="start">{start}</Tracking>' if start else ""
    return f"""<VAST version="3.0">
  <Ad>
    <Wrapper>
      <Impression>{impression}</Impression>
      <VASTAdTagURI><![CDATA[{tag_url}]]></VASTAdTagURI>
      <Creatives><Creative><Linear><TrackingEvents>{tracking}</TrackingEvents></Linear></Creative></Creatives>
    </Wrapper>
  </Ad>
</VAST>"""


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.requests: list[httpx.Request] = []

        def _handle(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if handler is None:
                return httpx.Response(200, content=b"GIF89a")
            return handler(request)

        super().__init__(_handle)

    @property
    def urls(self) -> list[str]:
        return [str(r.url) for r in self.requests]


class FrozenClock:
    """Settable clock for token expiry tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeMainPlayer:
    def __init__(self, duration: Optional[float] = 3600.0):
        self.current_time = 0.0
        self.duration = duration
        self.source_url: Optional[str] = "https://cdn.example.com/main.m3u8"
        self.calls: list = []

    def play(self):
        self.calls.append("play")

    def pause(self):
        self.calls.append("pause")

    def seek(self, position):
        self.current_time = position
        self.calls.append(("seek", position))


class FakeAdPlayer:
    def __init__(self):
        self.current_time = 0.0
        self.duration: Optional[float] = None
        self.loaded: list[str] = []
        self.calls: list[str] = []

    def load(self, url):
        self.loaded.append(url)

    def play(self):
        self.calls.append("play")

    def stop(self):
        self.calls.append("stop")


class FakeAdService:
    def __init__(self, ad: Optional[ActiveVastAd] = None):
        self.ad = ad
        self.requested: list[AdSlot] = []
        self.gate: Optional[asyncio.Event] = None

    async def resolve_slot(self, slot):
        self.requested.append(slot)
        if self.gate is not None:
            await self.gate.wait()
        if self.ad is None:
            return None
        return ActiveVastAd(**{**self.ad.__dict__, "slot": slot})


def make_ad(**overrides) -> ActiveVastAd:
    values = dict(
        slot=AdSlot.PREROLL,
        media_url="https://cdn.example.com/ad.mp4",
        click_through_url="https://advertiser.example.com/landing",
        duration_seconds=20.0,
        skip_offset_seconds=5.0,
        impression_urls=["https://t.example.com/imp"],
        error_urls=["https://t.example.com/err?code=[ERRORCODE]"],
        click_tracking_urls=["https://t.example.com/click"],
        tracking={
            "start": ["https://t.example.com/start"],
            "firstQuartile": ["https://t.example.com/q1"],
            "midpoint": ["https://t.example.com/mid"],
            "thirdQuartile": ["https://t.example.com/q3"],
            "complete": ["https://t.example.com/complete"],
            "skip": ["https://t.example.com/skip"],
            "closeLinear": ["https://t.example.com/close"],
        },
    )
    values.update(overrides)
    return ActiveVastAd(**values)
