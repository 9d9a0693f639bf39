import asyncio
import json
import os
import traceback
from collections import OrderedDict
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from scenechain.billing.cost import can_afford, estimate_collection_cost
from scenechain.config.config import PipelineConfig, load_config
from scenechain.generation.capabilities import FrameDecoder, GenerationCapability, StorageCollaborator
from scenechain.generation.continuity import ContinuityExtractor
from scenechain.generation.orchestrator import GenerationOrchestrator, RunReport, RunStatus
from scenechain.generation.storage import LocalClipStorage
from scenechain.segmentation.engine import SegmentationEngine, build_constraints
from scenechain.segmentation.llm import LLMCapability, resolve_llm_capability
from scenechain.segmentation.models import ExpansionConfig, ExpansionStyle, SegmentationOptions
from scenechain.segments.collection import SegmentCollection
from scenechain.segments.models import Segment
from scenechain.utils.base import ServiceResponse, setup_logger
from scenechain.utils.logging_setup import configure_logging

logger = setup_logger(__name__)

# Finished runs kept for status lookups; older ones are dropped first.
MAX_FINISHED_RUNS = 100

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class SegmentRequest(BaseModel):
    script: str
    mode: Optional[str] = None
    max_segments: Optional[int] = None
    max_tokens_per_segment: Optional[int] = None
    target_duration: Optional[float] = None
    min_duration: Optional[float] = None
    max_duration: Optional[float] = None
    enable_semantic_expansion: Optional[bool] = None
    expansion_style: Optional[str] = None
    enable_dialogue_implantation: Optional[bool] = None


class SegmentInput(BaseModel):
    text: str
    duration: float = 5.0
    is_enabled: bool = True


class CostRequest(BaseModel):
    segments: List[SegmentInput]
    features: Optional[List[str]] = None
    balance: Optional[int] = None


class RunRequest(BaseModel):
    segments: List[SegmentInput]
    continuity_enabled: Optional[bool] = None
    features: Optional[List[str]] = None
    balance: Optional[int] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: str


def _sse(payload: Dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def _to_segments(inputs: List[SegmentInput]) -> List[Segment]:
    return [Segment(text=s.text, duration=s.duration, is_enabled=s.is_enabled) for s in inputs]


async def stream_run(
    orchestrator: GenerationOrchestrator,
    action: Callable[[], Awaitable[RunReport]],
):
    """
    Stream run events as SSE until the action finishes, then send the run report.
    """
    queue: asyncio.Queue = asyncio.Queue()
    listener = queue.put_nowait
    orchestrator.add_listener(listener)
    task = asyncio.create_task(action())
    task.add_done_callback(lambda _: queue.put_nowait(None))
    try:
        while True:
            event = await queue.get()
            if event is None:
                break
            logger.info(f"Sending SSE event: {event.type}")
            yield _sse(event.model_dump(mode="json"))

        report = task.result()
        yield _sse({"type": "report", **report.model_dump(mode="json")})
    except Exception as e:
        logger.error(f"Error in run {orchestrator.run_id}: {e}")
        logger.error(traceback.format_exc())
        yield _sse({"type": "error", "run_id": orchestrator.run_id, "message": str(e)})
    finally:
        orchestrator.remove_listener(listener)


def create_app(
    generator: Optional[GenerationCapability] = None,
    storage: Optional[StorageCollaborator] = None,
    decoder: Optional[FrameDecoder] = None,
    llm: Optional[LLMCapability] = None,
    config: Optional[Dict[str, Any]] = None,
) -> FastAPI:
    config = config if config is not None else load_config()
    pipeline = PipelineConfig.from_config(config)

    app = FastAPI(title="scenechain API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    runs: Dict[str, GenerationOrchestrator] = {}
    finished: "OrderedDict[str, None]" = OrderedDict()
    app.state.runs = runs

    def _get_run(run_id: str) -> GenerationOrchestrator:
        orchestrator = runs.get(run_id)
        if orchestrator is None:
            raise HTTPException(status_code=404, detail=f"Unknown run: {run_id}")
        return orchestrator

    def _retire(orchestrator: GenerationOrchestrator) -> None:
        # A run still idle once its stream ends was rejected by start().
        if orchestrator.status not in (RunStatus.IDLE, RunStatus.COMPLETED, RunStatus.CANCELLED):
            return
        finished[orchestrator.run_id] = None
        while len(finished) > MAX_FINISHED_RUNS:
            run_id, _ = finished.popitem(last=False)
            runs.pop(run_id, None)
            logger.info(f"Dropped finished run {run_id}")

    async def _stream(orchestrator: GenerationOrchestrator, action: Callable[[], Awaitable[RunReport]]):
        try:
            async for chunk in stream_run(orchestrator, action):
                yield chunk
        finally:
            _retire(orchestrator)

    def _recovery_response(run_id: str, action: str) -> StreamingResponse:
        orchestrator = _get_run(run_id)
        if orchestrator.status is not RunStatus.HALTED_ON_ERROR:
            raise HTTPException(
                status_code=409,
                detail=f"Run {run_id} is not halted on an error ({orchestrator.status.value})",
            )
        return StreamingResponse(
            _stream(orchestrator, getattr(orchestrator, action)),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.post("/segment")
    async def segment(request: SegmentRequest):
        try:
            constraints = build_constraints(
                max_segments=request.max_segments or pipeline.max_segments,
                max_tokens_per_segment=request.max_tokens_per_segment or config.get("max_tokens_per_segment"),
                target_duration=request.target_duration or pipeline.target_duration,
                min_duration=request.min_duration or config.get("min_duration"),
                max_duration=request.max_duration or config.get("max_duration"),
            )
            options = SegmentationOptions(
                enable_semantic_expansion=(
                    pipeline.enable_semantic_expansion
                    if request.enable_semantic_expansion is None else request.enable_semantic_expansion
                ),
                enable_dialogue_implantation=(
                    pipeline.enable_dialogue_implantation
                    if request.enable_dialogue_implantation is None else request.enable_dialogue_implantation
                ),
                expansion=ExpansionConfig(style=ExpansionStyle(request.expansion_style or pipeline.expansion_style)),
                llm_timeout_sec=config.get("llm_timeout_sec", 60.0),
            )
            capability = llm if llm is not None else resolve_llm_capability(config)
            engine = SegmentationEngine(llm=capability, options=options)
            result = await engine.segment(request.script, request.mode or pipeline.mode, constraints)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        logger.info(f"POST /segment - {result.metadata.segment_count} segments via {result.metadata.mode_used.value}")
        return result.to_dict()

    @app.post("/cost")
    async def cost(request: CostRequest):
        try:
            breakdown = estimate_collection_cost(
                _to_segments(request.segments),
                request.features if request.features is not None else config.get("pipeline_features"),
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        payload = breakdown.model_dump(mode="json")
        if request.balance is not None:
            payload["affordable"] = can_afford(
                breakdown.total_tokens, request.balance, bool(config.get("unlimited_credits"))
            )
        return payload

    @app.post("/runs")
    async def start_run(request: RunRequest):
        if generator is None:
            raise HTTPException(status_code=503, detail="No generation backend configured")
        continuity = pipeline.continuity_enabled if request.continuity_enabled is None else request.continuity_enabled
        orchestrator = GenerationOrchestrator(
            SegmentCollection(_to_segments(request.segments)),
            generator,
            storage or LocalClipStorage(config["output_dir"]),
            extractor=ContinuityExtractor(decoder) if continuity else None,
            continuity_enabled=continuity,
            features=request.features if request.features is not None else config.get("pipeline_features"),
            generation_timeout=float(config.get("generation_timeout_sec", 600.0)),
            max_attempts=int(config.get("max_attempts_per_segment", 3)),
        )
        runs[orchestrator.run_id] = orchestrator
        logger.info(f"POST /runs - run {orchestrator.run_id} with {len(request.segments)} segments")
        return StreamingResponse(
            _stream(
                orchestrator,
                lambda: orchestrator.start(request.balance, bool(config.get("unlimited_credits"))),
            ),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.post("/runs/{run_id}/retry")
    async def retry_run(run_id: str):
        return _recovery_response(run_id, "retry")

    @app.post("/runs/{run_id}/skip")
    async def skip_run(run_id: str):
        return _recovery_response(run_id, "skip")

    @app.post("/runs/{run_id}/cancel")
    async def cancel_run(run_id: str):
        orchestrator = _get_run(run_id)
        orchestrator.cancel()
        if orchestrator.status is RunStatus.CANCELLED:
            _retire(orchestrator)
        return ServiceResponse(success=True, message=f"Cancellation requested for run {run_id}", content=orchestrator.report().model_dump(mode="json"))

    @app.get("/runs/{run_id}")
    async def get_run(run_id: str):
        orchestrator = _get_run(run_id)
        return {
            **orchestrator.report().model_dump(mode="json"),
            "segments": [s.to_dict() for s in orchestrator.collection.segments],
        }

    @app.get("/health")
    async def health():
        return HealthResponse(status="healthy", timestamp=datetime.now().isoformat())

    @app.get("/")
    async def root():
        return {"message": "scenechain API is running"}

    return app


def main(config: Optional[Dict[str, Any]] = None):
    import uvicorn

    config = config if config is not None else load_config()
    configure_logging(
        log_file=config["log_file"],
        level=config["log_level"],
        enable_console=True,
        force=True,
    )
    uvicorn.run(
        create_app(config=config),
        host=os.environ.get("SCENECHAIN_HOST", "0.0.0.0"),
        port=int(os.environ.get("SCENECHAIN_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
