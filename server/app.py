from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from analytics.device_classifier import classify, resolve_device_label
from analytics.device_correction import run_device_correction
from analytics.visitor_tracking import (
    LocationCache,
    LocationLookup,
    TrackVisitPayload,
    client_ip_from_headers,
    track_visit,
)
from listings.description_parser import parse_description, visible_sections
from server.config import Settings, build_store
from server.security import bearer_token, verify_admin_token
from storage.errors import StoreError
from telemetry.logging_utils import get_logger
from telemetry.metrics import MetricsSink, summarize_metrics

logger = get_logger(__name__)


class ClassifyPayload(BaseModel):
    user_agent: str = Field(default="", alias="userAgent")
    screen_width: Optional[float] = Field(default=None, alias="screenWidth")
    screen_height: Optional[float] = Field(default=None, alias="screenHeight")

    model_config = {"populate_by_name": True}


class DescriptionPayload(BaseModel):
    description: Optional[str] = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def create_app(
    store: Any = None,
    settings: Optional[Settings] = None,
    *,
    locator: Optional[LocationLookup] = None,
    metrics: Optional[MetricsSink] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    store = store if store is not None else build_store(settings)
    owns_locator = locator is None
    if locator is None:
        locator = LocationLookup(
            cache=LocationCache(),
            url_template=settings.geo_lookup_url,
            timeout=settings.geo_lookup_timeout_seconds,
        )
    if metrics is None:
        metrics = MetricsSink(settings.metrics_dir, client=getattr(store, "client", None))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        # Injected locators belong to the caller.
        if owns_locator:
            locator.close()

    app = FastAPI(title="PropertyHub", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.store = store
    app.state.settings = settings
    app.state.locator = locator

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        first = (exc.errors() or [{}])[0]
        return _error(status.HTTP_400_BAD_REQUEST, str(first.get("msg") or "Invalid request"))

    @app.exception_handler(StoreError)
    async def _store_error(request: Request, exc: StoreError):
        logger.error("store_request_failed", extra={"operation": exc.operation, "error": str(exc)[:200]})
        return _error(status.HTTP_502_BAD_GATEWAY, "Datastore request failed")

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception):
        logger.exception("unhandled_error", extra={"path": request.url.path})
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    def require_admin(request: Request) -> None:
        token = bearer_token(request.headers.get("Authorization"))
        if not verify_admin_token(token, settings.admin_api_token):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    @app.get("/api/health")
    def health():
        return {"success": True, "store": "ok" if store.ping() else "unavailable"}

    @app.post("/api/admin/analytics/visitors/update-devices", dependencies=[Depends(require_admin)])
    def update_devices():
        report = run_device_correction(
            store,
            thresholds=settings.thresholds,
            max_workers=settings.device_update_workers,
            metrics=metrics,
        )
        return {"success": True, **report.as_dict()}

    @app.get("/api/admin/metrics", dependencies=[Depends(require_admin)])
    def job_metrics(limit: int = 500):
        rows = metrics.read(limit=max(1, min(limit, 5000)))
        return {"success": True, "summary": summarize_metrics(rows), "rows": rows}

    @app.get("/api/admin/analytics/visitor/{visitor_id}", dependencies=[Depends(require_admin)])
    def get_visitor(visitor_id: str):
        visitor = store.get_visitor(visitor_id)
        if not visitor:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Visitor not found")
        detected = classify(
            visitor.get("user_agent"),
            visitor.get("screen_width"),
            visitor.get("screen_height"),
            settings.thresholds,
        )
        return {
            "success": True,
            "visitor": visitor,
            "detected": {**detected, "label": resolve_device_label(visitor.get("user_agent"), detected["category"])},
        }

    @app.post("/api/track-visit")
    def track(payload: TrackVisitPayload, request: Request):
        fallback_ip = request.client.host if request.client else None
        try:
            result = track_visit(
                store,
                payload,
                client_ip=client_ip_from_headers(request.headers, fallback_ip),
                user_agent=request.headers.get("user-agent"),
                locator=locator,
                site_origin=settings.site_origin,
                thresholds=settings.thresholds,
            )
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        return {"success": True, "isNew": result["is_new"], "deviceType": result["device_type"]}

    @app.post("/api/device/classify")
    def classify_device(payload: ClassifyPayload):
        detected = classify(payload.user_agent, payload.screen_width, payload.screen_height, settings.thresholds)
        return {**detected, "label": resolve_device_label(payload.user_agent, detected["category"])}

    @app.post("/api/properties/parse-description")
    def parse_property_description(payload: DescriptionPayload):
        sections = parse_description(payload.description)
        return {"success": True, "sections": sections, "visible": visible_sections(sections)}

    @app.get("/api/properties/{property_id}/details")
    def property_details(property_id: str):
        prop = store.get_property(property_id)
        if not prop:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Property not found")
        sections = parse_description(prop.get("description"))
        return {
            "success": True,
            "property_id": prop.get("id", property_id),
            "sections": sections,
            "visible": visible_sections(sections),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server.app:app", host="0.0.0.0", port=8000, reload=False)
