"""Spreadsheet upload endpoints.

GET  /imports         - registered importers
POST /imports/{kind}  - preview an upload; ``apply=true`` also merges it
                        into the hub state ("auto" detects the importer)
"""

from __future__ import annotations

import json
import logging
from datetime import date

from fastapi import APIRouter, File, Form, HTTPException, UploadFile

from ..adapters.detection import build_importer, detect_and_ingest, importer_kinds, list_importers
from ..adapters.sales import SalesColumnMapping
from ..api_models import ImporterInfo, ImportResponse
from ..reconcile import MappingMode, apply_import
from .state import AppState

logger = logging.getLogger("sello.routes.imports")

AUTO = "auto"


def _parse_json_form(value: str | None, what: str) -> dict | None:
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"Invalid {what} JSON: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=400, detail=f"{what} must be a JSON object")
    return parsed


def create_imports_router(state: AppState) -> APIRouter:
    router = APIRouter(prefix="/imports", tags=["imports"])

    @router.get("", response_model=list[ImporterInfo])
    async def get_importers():
        return [ImporterInfo(kind=i["kind"], name=i["name"]) for i in list_importers()]

    @router.post("/{kind}", response_model=ImportResponse)
    async def upload(
        kind: str,
        file: UploadFile = File(...),
        apply: bool = Form(False),
        platform: str | None = Form(None),
        mode: MappingMode = Form(MappingMode.MERGE),
        report_date: date | None = Form(None),
        period_days: float | None = Form(None),
        mapping: str | None = Form(None),
        resolutions: str | None = Form(None),
    ) -> ImportResponse:
        """Preview (and optionally apply) an uploaded spreadsheet."""
        if kind != AUTO and kind not in importer_kinds():
            raise HTTPException(
                status_code=404,
                detail=f"Unknown import type '{kind}'. Supported: {', '.join(importer_kinds())}",
            )

        settings = state.settings
        contents = await file.read()
        size_mb = len(contents) / (1024 * 1024)
        if size_mb > settings.max_upload_mb:
            raise HTTPException(
                status_code=413,
                detail=f"File too large ({size_mb:.1f}MB). Maximum is {settings.max_upload_mb}MB.",
            )

        filename = file.filename or "upload.csv"
        mapping_data = _parse_json_form(mapping, "mapping")
        options = {
            "tz": settings.app_timezone,
            "platform": platform,
            "report_date": report_date,
            "period_days": period_days or settings.default_period_days,
            "mapping": SalesColumnMapping(**mapping_data) if mapping_data else None,
            "resolutions": _parse_json_form(resolutions, "resolutions"),
        }
        with state.lock:
            if kind == AUTO:
                result = detect_and_ingest(
                    contents,
                    state.hub,
                    filename=filename,
                    max_size_mb=settings.max_upload_mb,
                    **options,
                )
            else:
                result = build_importer(kind, **options).ingest(
                    contents, state.hub, filename=filename, max_size_mb=settings.max_upload_mb
                )

            applied = None
            if apply:
                applied = apply_import(
                    state.hub, result, mode, platform, settings.app_timezone
                )
                state.persist()
                logger.info("Applied %s from %s: %s", result.importer_name, filename, applied)

        return ImportResponse(
            kind=kind,
            importer=result.importer_name,
            summary=result.summary,
            item_count=result.item_count,
            errors=result.errors,
            warnings=result.warnings,
            preview=result.model_dump(mode="json"),
            applied=applied,
        )

    return router
