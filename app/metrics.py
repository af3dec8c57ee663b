# app/metrics.py
from __future__ import annotations

import os

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    multiprocess,
)

# 业务指标
MOVES = Counter(
    "item_moves_total",
    "Item movements processed (per item)",
    ["direction", "result"],
)
MOVED_QTY = Counter(
    "item_moved_quantity_total",
    "Quantity moved between workflow positions",
    ["direction"],
)
BATCH_LAT = Histogram(
    "item_move_batch_seconds",
    "Latency of a movement batch (seconds)",
    ["direction"],
)

router = APIRouter()


@router.get("/metrics")
def metrics() -> Response:
    """
    在单进程模式下直接导出默认 REGISTRY；
    在多进程模式下，创建临时 CollectorRegistry，并让 MultiProcessCollector 合并各分片。
    """
    # 多进程需在进程启动前设置好 PROMETHEUS_MULTIPROC_DIR
    if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        payload = generate_latest(registry)
    else:
        payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
