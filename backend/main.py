from __future__ import annotations

import json
from concurrent.futures import TimeoutError as FutureTimeout
from contextlib import asynccontextmanager
from dataclasses import asdict
from functools import lru_cache
from typing import Any

from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from engine.config import get_settings
from engine.service import TileService
from errors import (
    FeatureNotFound,
    GenerationFailure,
    TileOutOfRange,
    TileQueueFull,
    ViewportTooLarge,
)
from geo.aoi import BBox
from geo.tiles import tile_zoom_for_view_zoom
from layers.sources import GeoJSONFeatureSource, GeoParquetFeatureSource, JSONElevationSource
from telemetry.log import configure_logging, get_logger

log = get_logger("api")


@lru_cache(maxsize=1)
def get_service() -> TileService:
    return TileService(get_settings())


def load_configured_dataset(service: TileService) -> None:
    """
    Load GEOTILER_DATASET from GEOTILER_DATA_DIR, if both are configured.

    `<dataset>.parquet` wins over `<dataset>.geojson`; `<dataset>.elevation.json`
    is optional.
    """
    s = service.settings
    if s.data_dir is None or not s.dataset:
        return
    if (s.data_dir / f"{s.dataset}.parquet").exists():
        source = GeoParquetFeatureSource(s.data_dir)
    else:
        source = GeoJSONFeatureSource(s.data_dir)
    result = service.pipeline.load(source, s.dataset)
    log.info("dataset_loaded", dataset=s.dataset, accepted=result.accepted_count)
    if (s.data_dir / f"{s.dataset}.elevation.json").exists():
        service.pipeline.load_elevation(JSONElevationSource(s.data_dir), s.dataset)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    configure_logging()
    load_configured_dataset(get_service())
    yield
    get_service().close()
    get_service.cache_clear()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class IngestBody(BaseModel):
    records: list[dict[str, Any]] = Field(default_factory=list)


class ElevationBody(BaseModel):
    rows: list[dict[str, Any]] = Field(default_factory=list)


class MapBBox(BaseModel):
    minLon: float
    minLat: float
    maxLon: float
    maxLat: float


class ViewportBody(BaseModel):
    bbox: MapBBox
    zoom: float


@app.get("/health")
def health():
    snapshot = get_service().store.snapshot()
    return {
        "status": "ok",
        "version": snapshot.version,
        "index": asdict(snapshot.index.stats()),
    }


@app.get("/tiles/{z}/{x}/{y}")
def get_tile(z: int, x: int, y: int):
    try:
        data = get_service().get_tile(z, x, y)
    except TileOutOfRange as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except TileQueueFull as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except FutureTimeout:
        raise HTTPException(status_code=504, detail="tile generation timed out")
    except GenerationFailure as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    if data is None:
        return Response(status_code=204)
    return Response(content=data, media_type="application/json")


@app.get("/features/{feature_id}/elevation")
def get_elevation(feature_id: str):
    rec = get_service().elevation(feature_id)
    if rec is None:
        raise HTTPException(status_code=404, detail=f"no elevation for {feature_id!r}")
    return {
        "featureId": rec.feature_id,
        "height": rec.height,
        "profile": list(rec.profile) if rec.profile is not None else None,
    }


@app.post("/ingest")
def ingest(body: IngestBody):
    return get_service().pipeline.ingest(body.records).to_dict()


@app.post("/elevation")
def ingest_elevation(body: ElevationBody):
    return get_service().pipeline.ingest_elevation(body.rows).to_dict()


@app.delete("/features/{feature_id}")
def remove_feature(feature_id: str):
    try:
        version = get_service().pipeline.remove(feature_id)
    except FeatureNotFound as exc:
        return JSONResponse(status_code=404, content={"detail": str(exc)})
    return {"version": version}


@app.post("/viewport")
def get_viewport(body: ViewportBody):
    """
    Every non-empty tile covering the viewport, keyed "z/x/y".

    The (fractional) map zoom is rounded to a tile zoom so panning reuses cached tiles.
    """
    service = get_service()
    zoom = tile_zoom_for_view_zoom(body.zoom, max_zoom=service.settings.max_zoom)
    aoi = BBox(
        min_lon=body.bbox.minLon,
        min_lat=body.bbox.minLat,
        max_lon=body.bbox.maxLon,
        max_lat=body.bbox.maxLat,
    ).normalized()
    try:
        tiles = service.get_tiles_for_bbox(aoi, zoom)
    except ViewportTooLarge as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except TileQueueFull as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except FutureTimeout:
        raise HTTPException(status_code=504, detail="tile generation timed out")
    except GenerationFailure as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return {
        "zoom": zoom,
        "version": service.version,
        "tiles": {str(key): json.loads(data) for key, data in tiles.items()},
    }
