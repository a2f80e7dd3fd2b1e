"""
FastAPI server exposing the code execution engine
"""

import asyncio
import logging
import os
import threading
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from execution import (
    CodeExecutor,
    ErrorKind,
    ExecuteRequest,
    ExecutionConfig,
    ExecutionResult,
    Language,
    SlidingWindowRateLimiter,
    TestRunRequest,
    TestRunResult,
)
from execution.workspace import purge_stale_workspaces
from models import HealthResponse, RateLimitResponse

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"
DISCONNECT_POLL_SECONDS = 0.25

# Error kinds that are the caller's fault or ours; the rest are normal verdicts
STATUS_BY_ERROR_KIND = {
    ErrorKind.SECURITY_VIOLATION: 400,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.INTERNAL_ERROR: 500,
}

HIDDEN_PLACEHOLDER = "hidden"


class RateLimitExceeded(Exception):
    def __init__(self, retry_after: int):
        self.retry_after = retry_after


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = ExecutionConfig.from_env()
    purge_stale_workspaces(config.workspace_root)
    app.state.executor = CodeExecutor(config)
    app.state.rate_limiter = SlidingWindowRateLimiter(
        max_requests=config.rate_limit_requests,
        window_seconds=config.rate_limit_window_seconds
    )
    logger.info(f"Execution engine ready (isolation={app.state.executor.runner.isolation})")
    yield
    app.state.rate_limiter.close()
    logger.info("Execution engine stopped")


app = FastAPI(
    title="Code Execution Engine",
    description="Sandboxed multi-language code execution and test running",
    version=VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    body = RateLimitResponse(
        message="Too many requests, please try again later.",
        retryAfter=exc.retry_after
    )
    return JSONResponse(
        status_code=429,
        content=body.model_dump(),
        headers={"Retry-After": str(exc.retry_after)}
    )


def caller_key(request: Request) -> str:
    """
    Rate limit key: the user id an upstream auth middleware stored on
    request.state, else the client address. Request headers are never used.
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(request: Request) -> None:
    decision = request.app.state.rate_limiter.hit(caller_key(request))
    if not decision.allowed:
        raise RateLimitExceeded(decision.retryAfter)


def status_for(kind: Optional[ErrorKind]) -> int:
    if kind is None:
        return 200
    return STATUS_BY_ERROR_KIND.get(kind, 200)


async def run_cancellable(request: Request, func, *args):
    """
    Run a blocking engine call in the threadpool; if the client goes away
    the cancel event is set so the child process is killed.
    """
    cancel_event = threading.Event()

    async def watch_disconnect():
        while not cancel_event.is_set():
            if await request.is_disconnected():
                logger.info(f"Client disconnected, cancelling {request.url.path}")
                cancel_event.set()
                return
            await asyncio.sleep(DISCONNECT_POLL_SECONDS)

    watcher = asyncio.create_task(watch_disconnect())
    try:
        return await run_in_threadpool(func, *args, cancel_event=cancel_event)
    finally:
        watcher.cancel()


def redact_hidden(run: TestRunResult) -> dict:
    """Serialize a test run without revealing hidden test data"""
    payload = run.model_dump(mode="json")
    for entry in payload["results"]:
        if entry["hidden"]:
            entry["input"] = HIDDEN_PLACEHOLDER
            entry["expectedOutput"] = HIDDEN_PLACEHOLDER
            entry["actualOutput"] = HIDDEN_PLACEHOLDER
    return payload


@app.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Health check endpoint
    Returns the service status and supported languages
    """
    return HealthResponse(
        status="ok",
        version=VERSION,
        languages=[language.value for language in Language],
        isolation=request.app.state.executor.runner.isolation
    )


@app.post("/execute", response_model=ExecutionResult, dependencies=[Depends(enforce_rate_limit)])
async def execute(body: ExecuteRequest, request: Request):
    """
    Execute code once

    Example:
        POST /execute
        {"language": "python", "code": "print('Hello')", "input": ""}

        Response:
        {"success": true, "output": "Hello\\n", "error": null, "executionTime": 21, "errorKind": null}
    """
    executor: CodeExecutor = request.app.state.executor
    result: ExecutionResult = await run_cancellable(request, executor.execute, body)
    return JSONResponse(status_code=status_for(result.errorKind), content=result.model_dump(mode="json"))


@app.post("/execute/tests", response_model=TestRunResult, dependencies=[Depends(enforce_rate_limit)])
async def execute_tests(body: TestRunRequest, request: Request):
    """
    Run code against test cases
    """
    executor: CodeExecutor = request.app.state.executor
    run: TestRunResult = await run_cancellable(request, executor.run_tests, body)

    kinds = {r.errorKind for r in run.results}
    status_code = status_for(kinds.pop()) if len(kinds) == 1 else 200
    return JSONResponse(status_code=status_code, content=redact_hidden(run))


if __name__ == "__main__":
    import uvicorn

    # Get port from environment or default to 8001
    port = int(os.getenv("PORT", 8001))

    logger.info(f"Starting execution engine on port {port}")
    uvicorn.run(
        "main:app",  # Use string import path instead of app object
        host="0.0.0.0",
        port=port,
        log_level="info",
        access_log=True
    )
