"""FastAPI application that exposes a local API for the time balance account."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import FastAPI, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from .bootstrap import AppServices, create_services
from .codec import as_utc, event_to_dict, meter_to_dict
from .controller import AccountController
from .device import FaceChange
from .errors import (
    CapacityError,
    ConflictError,
    FormatError,
    NotFoundError,
    StateError,
    TimeBalanceError,
    ValidationError,
)
from .models import CatalogVariant, MeterEvent

logger = logging.getLogger(__name__)

_ERROR_STATUS: list[tuple[type[TimeBalanceError], int]] = [
    (NotFoundError, 404),
    (ValidationError, 400),
    (FormatError, 400),
    (StateError, 409),
    (ConflictError, 409),
    (CapacityError, 409),
]


class MeterCreate(BaseModel):
    name: str
    factor: Optional[float] = None

    model_config = ConfigDict(extra="forbid")


class MeterRename(BaseModel):
    name: str

    model_config = ConfigDict(extra="forbid")


class MeterOrder(BaseModel):
    ids: List[UUID]

    model_config = ConfigDict(extra="forbid")


class ActivationPayload(BaseModel):
    comment: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class EventTimesUpdate(BaseModel):
    start_time: datetime
    end_time: datetime

    model_config = ConfigDict(extra="forbid")


class TimelinePeriodPayload(BaseModel):
    hours: float = Field(gt=0)

    model_config = ConfigDict(extra="forbid")


class DeviceEventPayload(BaseModel):
    event_type: str
    face: Optional[int] = None
    raw_hex: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    db_path: Optional[Path] = None,
    variant: str | CatalogVariant = CatalogVariant.METER,
    services: Optional[AppServices] = None,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    resolved = services or create_services(db_path=db_path, variant=variant)
    controller = resolved.controller

    app = FastAPI(title="Time Balance", version="0.3.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.services = resolved

    @app.exception_handler(TimeBalanceError)
    async def _handle_domain_error(request: Request, exc: TimeBalanceError) -> JSONResponse:
        return JSONResponse(status_code=_status_for(exc), content={"detail": str(exc)})

    @app.on_event("startup")
    async def _startup() -> None:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        resolved.close()

    @app.get("/api/status")
    def status() -> Dict[str, Any]:
        active = controller.active_event()
        sync = resolved.sync
        return {
            "variant": resolved.config.variant.value,
            "balance": _balance_payload(controller),
            "active_event": _event_payload(controller, active) if active else None,
            "timeline_period_hours": controller.timeline_period.total_seconds() / 3600.0,
            "sync": {
                "enabled": sync.is_enabled,
                "provider": sync.active_provider_name,
                "status": sync.status.value,
                "last_sync_time": sync.last_sync_time.isoformat() if sync.last_sync_time else None,
            },
            "device_connected": resolved.device.is_connected,
        }

    @app.get("/api/balance")
    def balance() -> Dict[str, Any]:
        return _balance_payload(controller)

    @app.get("/api/timeline")
    def timeline(
        hours: Optional[float] = Query(
            default=None,
            gt=0,
            description="Lookback window in hours. Defaults to the saved timeline period.",
        ),
    ) -> Dict[str, Any]:
        period = timedelta(hours=hours) if hours is not None else controller.timeline_period
        points = controller.timeline(period)
        return {
            "period_hours": period.total_seconds() / 3600.0,
            "points": [
                {"timestamp": point.timestamp.isoformat(), "balance_hours": point.balance_hours}
                for point in points
            ],
        }

    @app.put("/api/timeline-period")
    def set_timeline_period(payload: TimelinePeriodPayload) -> Dict[str, Any]:
        controller.timeline_period = timedelta(hours=payload.hours)
        return {"period_hours": payload.hours}

    @app.get("/api/meters")
    def list_meters() -> Dict[str, Any]:
        return {"meters": [meter_to_dict(meter) for meter in controller.ordered_meters()]}

    @app.post("/api/meters", status_code=201)
    def add_meter(payload: MeterCreate) -> Dict[str, Any]:
        meter = controller.add_meter(payload.name, payload.factor)
        return {"meter": meter_to_dict(meter)}

    @app.patch("/api/meters/{meter_id}")
    def rename_meter(meter_id: UUID, payload: MeterRename) -> Dict[str, Any]:
        meter = controller.rename_meter(meter_id, payload.name)
        return {"meter": meter_to_dict(meter)}

    @app.delete("/api/meters/{meter_id}", status_code=204)
    def delete_meter(meter_id: UUID) -> Response:
        controller.delete_meter(meter_id)
        return Response(status_code=204)

    @app.post("/api/meters/reorder")
    def reorder_meters(payload: MeterOrder) -> Dict[str, Any]:
        applied = controller.reorder_meters(payload.ids)
        return {
            "applied": applied,
            "meters": [meter_to_dict(meter) for meter in controller.ordered_meters()],
        }

    @app.post("/api/meters/{meter_id}/activate")
    def activate(meter_id: UUID, payload: Optional[ActivationPayload] = None) -> Dict[str, Any]:
        event = controller.activate(meter_id, payload.comment if payload else None)
        return {"event": _event_payload(controller, event)}

    @app.post("/api/deactivate")
    def deactivate() -> Dict[str, Any]:
        event = controller.deactivate()
        return {"event": _event_payload(controller, event) if event else None}

    @app.get("/api/events")
    def events(
        limit: Optional[int] = Query(default=None, ge=1, description="Most recent events only."),
    ) -> Dict[str, Any]:
        ordered = sorted(controller.events, key=lambda event: event.start_time, reverse=True)
        if limit:
            ordered = ordered[:limit]
        return {"events": [_event_payload(controller, event) for event in ordered]}

    @app.patch("/api/events/{event_id}")
    def update_event(event_id: UUID, payload: EventTimesUpdate) -> Dict[str, Any]:
        event = controller.update_event_times(
            event_id, as_utc(payload.start_time), as_utc(payload.end_time)
        )
        return {"event": _event_payload(controller, event)}

    @app.delete("/api/events/{event_id}", status_code=204)
    def delete_event(event_id: UUID) -> Response:
        controller.delete_event(event_id)
        return Response(status_code=204)

    @app.get("/api/export")
    def export_data() -> Response:
        return Response(content=controller.export_data(), media_type="application/json")

    @app.post("/api/import")
    async def import_data(request: Request) -> Dict[str, Any]:
        body = await request.body()
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FormatError("Import data must be UTF-8 encoded JSON.") from exc
        await run_in_threadpool(controller.import_data, text)
        return {"meters": len(controller.catalog), "events": len(controller.events)}

    @app.post("/api/reset")
    def reset() -> Dict[str, Any]:
        controller.reset_data()
        return {"meters": [meter_to_dict(meter) for meter in controller.ordered_meters()]}

    @app.post("/api/device")
    def device_event(payload: DeviceEventPayload) -> Dict[str, Any]:
        action = resolved.device.handle(
            FaceChange(event_type=payload.event_type, face=payload.face, raw_hex=payload.raw_hex)
        )
        return {
            "action": action,
            "log": [
                {"at": entry.at.isoformat(), "message": entry.message}
                for entry in resolved.device.change_log
            ],
        }

    @app.get("/api/notifications")
    def notifications() -> Dict[str, Any]:
        return {
            "notifications": [
                {
                    "title": toast.title,
                    "body": toast.body,
                    "created_at": toast.created_at.isoformat(),
                }
                for toast in reversed(resolved.notifications.toasts)
            ]
        }

    return app


def _status_for(exc: TimeBalanceError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _balance_payload(controller: AccountController) -> Dict[str, Any]:
    seconds = controller.current_balance().total_seconds()
    return {"seconds": seconds, "hours": seconds / 3600.0}


def _event_payload(controller: AccountController, event: MeterEvent) -> Dict[str, Any]:
    payload = event_to_dict(event, controller.config.variant)
    payload["isActive"] = event.is_active
    payload["durationSeconds"] = event.duration(controller.now()).total_seconds()
    payload["contributionSeconds"] = event.time_contribution(controller.now()).total_seconds()
    return payload
