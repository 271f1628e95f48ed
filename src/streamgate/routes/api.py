"""FastAPI application: ad decisions, the secure proxy and source lookup."""

import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from ..events import StreamEvents
from ..exceptions import InvalidMediaRequestError, StreamGateError
from ..http_client_manager import (
    close_http_clients,
    get_main_http_client,
    get_upstream_http_client,
)
from ..log_config import (
    clear_playback_context,
    configure_logging,
    get_context_logger,
    set_playback_context,
)
from ..metrics import MetricsCollector, NoOpMetrics, PrometheusMetrics
from ..parser import VastParser
from ..playlist_proxy import ProxyResponse, SecurePlaylistProxy
from ..proxy_token import ProxyTokenService
from ..resolver import AdService
from ..settings import DEFAULT_USER_AGENT, Settings, get_settings
from ..sources import MediaRequest, SourceAggregator, to_playlist_payload
from ..types import AdSlot
from .helpers import request_origin


NO_STORE = {"cache-control": "no-store, max-age=0"}
REQUEST_ID_HEADER = "x-request-id"

logger = get_context_logger("api")
router = APIRouter()


@dataclass
class AppServices:
    """Long-lived collaborators shared by every request."""

    settings: Settings
    http_client: httpx.AsyncClient
    parser: VastParser
    token_service: ProxyTokenService
    proxy: SecurePlaylistProxy
    aggregator: SourceAggregator
    metrics: MetricsCollector
    registry: Optional[CollectorRegistry] = None


def _services(request: Request) -> AppServices:
    return request.app.state.services


def _public_origin(request: Request) -> str:
    return request_origin(str(request.url))


def _ad_request_headers(request: Request) -> dict[str, str]:
    """Viewer headers relayed to the ad server, with browser-like fallbacks."""
    origin = request.headers.get("origin") or _public_origin(request)
    return {
        "origin": origin,
        "referer": request.headers.get("referer") or f"{origin.rstrip('/')}/",
        "user-agent": request.headers.get("user-agent") or DEFAULT_USER_AGENT,
    }


def _to_response(proxied: ProxyResponse) -> Response:
    if proxied.stream is not None:
        return StreamingResponse(
            proxied.stream, status_code=proxied.status_code, headers=proxied.headers
        )
    return Response(content=proxied.body, status_code=proxied.status_code, headers=proxied.headers)


@router.get("/ads")
async def ad_decision(request: Request, slot: Optional[str] = Query(None)) -> JSONResponse:
    services = _services(request)
    ad_slot = AdSlot.parse(slot)
    ads = services.settings.ads

    if not ads.tag_url_for(ad_slot):
        return JSONResponse({"enabled": False, "slot": ad_slot.value}, headers=NO_STORE)

    service = AdService.from_settings(
        ads,
        services.http_client,
        server_side=True,
        request_headers=_ad_request_headers(request),
        parser=services.parser,
        metrics=services.metrics,
    )
    ad = await service.resolve_slot(ad_slot)
    if ad is None:
        return JSONResponse({"enabled": False, "slot": ad_slot.value}, headers=NO_STORE)
    return JSONResponse(ad.to_payload(), headers=NO_STORE)


async def secure_proxy(request: Request, token: Optional[str] = Query(None)) -> Response:
    services = _services(request)
    proxied = await services.proxy.serve(
        token,
        public_origin=_public_origin(request),
        origin=request.headers.get("origin"),
        referer=request.headers.get("referer"),
        range_header=request.headers.get("range"),
    )
    return _to_response(proxied)


async def secure_proxy_preflight() -> Response:
    return _to_response(ProxyResponse.preflight())


@router.get("/sources")
async def sources(
    request: Request,
    media_type: Optional[str] = Query(None, alias="type"),
    media_id: Optional[str] = Query(None, alias="id"),
    season: Optional[str] = Query(None),
    episode: Optional[str] = Query(None),
) -> JSONResponse:
    services = _services(request)
    try:
        media = MediaRequest.parse(media_type, media_id, season, episode)
    except InvalidMediaRequestError as e:
        logger.info(StreamEvents.SOURCES_REQUEST_REJECTED, error=str(e))
        return JSONResponse({"error": "Invalid parameters"}, status_code=400, headers=NO_STORE)

    options = await services.aggregator.aggregate(media, public_origin=_public_origin(request))
    if not options:
        return JSONResponse(
            {"error": "Failed to resolve any playable source"}, status_code=502, headers=NO_STORE
        )
    return JSONResponse(to_playlist_payload(options), headers=NO_STORE)


@router.get("/metrics")
async def metrics(request: Request) -> Response:
    registry = _services(request).registry
    if registry is None:
        return JSONResponse({"error": "Metrics are disabled"}, status_code=404)
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)


async def _handle_stream_gate_error(request: Request, exc: StreamGateError) -> JSONResponse:
    logger.error(StreamEvents.UNHANDLED_ERROR, path=request.url.path, error=str(exc))
    return JSONResponse({"error": exc.message}, status_code=500, headers=NO_STORE)


def create_app(
    settings: Optional[Settings] = None,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    upstream_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings to use; loaded from YAML and the environment if omitted
        http_client: Client for ad tags and provider lookups; pooled if omitted
        upstream_client: Client for secure proxy fetches; defaults to
            ``http_client`` when given, otherwise pooled
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.logging.level, settings.logging.json_output)

        main_client = http_client or get_main_http_client(settings.http)
        proxy_client = upstream_client or http_client or get_upstream_http_client(settings.http)

        registry = CollectorRegistry() if settings.metrics_enabled else None
        collector: MetricsCollector = (
            PrometheusMetrics(registry=registry) if registry is not None else NoOpMetrics()
        )
        token_service = ProxyTokenService(
            settings.proxy.token_secret, settings.proxy.token_ttl_seconds
        )
        app.state.services = AppServices(
            settings=settings,
            http_client=main_client,
            parser=VastParser(),
            token_service=token_service,
            proxy=SecurePlaylistProxy(token_service, proxy_client, settings.proxy, collector),
            aggregator=SourceAggregator.from_settings(settings, main_client, token_service, collector),
            metrics=collector,
            registry=registry,
        )
        logger.info(
            StreamEvents.APP_STARTED,
            environment=settings.environment,
            ads_enabled=settings.ads.enabled,
            proxy_enabled=token_service.enabled,
            metrics_enabled=settings.metrics_enabled,
        )
        try:
            yield
        finally:
            await close_http_clients()

    app = FastAPI(title="streamgate", lifespan=lifespan)
    app.include_router(router)
    app.add_api_route(settings.proxy.path, secure_proxy, methods=["GET"])
    app.add_api_route(settings.proxy.path, secure_proxy_preflight, methods=["OPTIONS"])
    app.add_exception_handler(StreamGateError, _handle_stream_gate_error)

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        clear_playback_context()
        set_playback_context(request_id=request_id, path=request.url.path)
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    return app


__all__ = ["create_app", "router", "AppServices"]
