"""HTTP route definitions for the line protocol listener."""

from __future__ import annotations

import zlib
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool

from app.config import HTTPListenerConfig
from app.schemas import HealthResponse
from listeners.base import PointsWriter
from models.points import ConsistencyLevel, Precision
from services.errors import GatewayError, LineProtocolError, WriteQueueFullError
from services.line_protocol import parse_points

router = APIRouter()


def get_writer(request: Request) -> PointsWriter:
    return request.app.state.writer


def get_listener_config(request: Request) -> HTTPListenerConfig:
    return request.app.state.listener_config


def _too_large(limit: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail=f"request body exceeds {limit} bytes",
    )


def _gunzip(body: bytes, limit: int) -> bytes:
    """Decompress a gzip body, stopping as soon as it grows past ``limit``."""
    decompressor = zlib.decompressobj(wbits=16 + zlib.MAX_WBITS)
    try:
        data = decompressor.decompress(body, limit + 1 if limit else 0)
        if not limit:
            data += decompressor.flush()
    except zlib.error as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"invalid gzip body: {exc}",
        ) from exc
    if limit and (len(data) > limit or decompressor.unconsumed_tail):
        raise _too_large(limit)
    if not decompressor.eof:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="invalid gzip body: truncated stream",
        )
    return data


async def _read_body(request: Request, limit: int) -> bytes:
    body = await request.body()
    if limit and len(body) > limit:
        raise _too_large(limit)
    if request.headers.get("content-encoding", "").lower() == "gzip":
        body = _gunzip(body, limit)
    return body


@router.post(
    "/write",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Accept a batch of points in line protocol.",
)
async def write_points(
    request: Request,
    db: Optional[str] = Query(None, description="Target database."),
    rp: str = Query("", description="Target retention policy."),
    precision: Precision = Query(Precision.ns, description="Timestamp unit of the body."),
    consistency: Optional[ConsistencyLevel] = Query(None, description="Write consistency."),
    writer: PointsWriter = Depends(get_writer),
    listener_config: HTTPListenerConfig = Depends(get_listener_config),
) -> Response:
    database = db or listener_config.database
    if not database:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="database is required",
        )

    body = await _read_body(request, listener_config.max_body_size)
    try:
        points = parse_points(body.decode("utf-8"), precision)
    except (UnicodeDecodeError, LineProtocolError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    if points:
        try:
            await run_in_threadpool(
                writer.write_points,
                database,
                rp or listener_config.retention_policy,
                consistency,
                points,
            )
        except WriteQueueFullError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=str(exc),
            ) from exc
        except GatewayError as exc:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=str(exc),
            ) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.api_route(
    "/ping",
    methods=["GET", "HEAD"],
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Cheap liveness probe.",
)
async def ping() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(request: Request) -> HealthResponse:
    listener_config: HTTPListenerConfig = request.app.state.listener_config
    return HealthResponse(
        status="ok",
        name=request.app.state.listener_name,
        default_database=listener_config.database,
    )
