import logging
import os
import threading
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from crossword.daily import DailyPuzzleCache
from crossword.errors import PuzzleError, StoreUnavailable
from crossword.llm_client import probe as llm_probe
from crossword.llm_client import status as llm_status
from crossword.store import get_store

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

_service: Optional[DailyPuzzleCache] = None
_service_lock = threading.Lock()


def get_service() -> DailyPuzzleCache:
    """Process-wide orchestrator, created on first use.

    A misconfigured backend (unknown PUZZLE_STORE, bad REDIS_URL) surfaces
    as StoreUnavailable; construction is retried on the next request.
    """
    global _service
    with _service_lock:
        if _service is None:
            try:
                store = get_store()
            except ValueError as exc:
                log.error("daily.store_config: %s", exc)
                raise StoreUnavailable("Puzzle store is misconfigured") from exc
            _service = DailyPuzzleCache(store=store)
        return _service


def _internal_error(exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": "Error generating crossword puzzle", "details": exc.__class__.__name__},
    )


def _prewarm_enabled() -> bool:
    # Never call the model from tests
    if os.getenv("PYTEST_CURRENT_TEST"):
        return False
    return os.getenv("PUZZLE_PREWARM", "0").lower() in {"1", "true", "yes", "on"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    if _prewarm_enabled():
        try:
            service = get_service()
            log.info("daily.lifespan: prewarming today's puzzle in background")
            threading.Thread(target=service.prewarm, daemon=True).start()
        except Exception:
            log.exception("daily.lifespan: failed to start prewarm")
    yield


app = FastAPI(title="Daily Crossword", lifespan=lifespan)


@app.middleware("http")
async def add_request_id_and_cors(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        try:
            response = await call_next(request)
        except Exception as e:
            log.exception("rid=%s unhandled error", rid)
            response = _internal_error(e)
        response.headers.update(CORS_HEADERS)
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid,
            request.method,
            request.url.path,
            getattr(response, "status_code", "?"),
            dur_ms,
        )


@app.exception_handler(PuzzleError)
async def puzzle_error_handler(request: Request, exc: PuzzleError) -> JSONResponse:
    # Reached when a dependency (get_service) fails before the endpoint body runs
    return JSONResponse(status_code=500, content=exc.to_payload())


@app.options("/api/puzzle")
def puzzle_preflight() -> Response:
    return Response(status_code=200)


@app.get("/api/puzzle")
def puzzle_endpoint(service: DailyPuzzleCache = Depends(get_service)):
    try:
        puzzle = service.get_todays_puzzle()
    except PuzzleError as e:
        return JSONResponse(status_code=500, content=e.to_payload())
    except Exception as e:
        log.exception("puzzle endpoint: unexpected error")
        return _internal_error(e)
    return JSONResponse(status_code=200, content=puzzle.to_payload())


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/llm/status")
def llm_status_endpoint() -> Dict[str, Any]:
    return llm_status()


@app.get("/llm/probe")
def llm_probe_endpoint() -> Dict[str, Any]:
    return llm_probe()


@app.get("/metrics/cache")
def metrics_cache(service: DailyPuzzleCache = Depends(get_service)) -> Dict[str, Any]:
    return service.stats()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "crossword.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
    )
