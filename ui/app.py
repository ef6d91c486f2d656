from __future__ import annotations

import asyncio
import logging
import os
import secrets
import threading
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

from fastapi import Body, Depends, FastAPI, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from blockday import (
    BlockdayController,
    InvalidTransition,
    PersistenceError,
    TimerSession,
)

logging.basicConfig(
    level=os.environ.get("BLOCKDAY_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

TICK_SECONDS = float(os.environ.get("BLOCKDAY_TICK_SECONDS", "1"))


# ── Engine ────────────────────────────────────────────────────

_controller: BlockdayController | None = None
_lock = threading.Lock()


def get_controller() -> BlockdayController:
    global _controller
    if _controller is None:
        _controller = BlockdayController()
        _controller.startup()
    return _controller


def set_controller(controller: BlockdayController | None) -> None:
    """Swap the engine instance (tests)."""
    global _controller
    _controller = controller


def _run(intent: Callable[[BlockdayController], Any]) -> dict[str, Any]:
    """Apply one intent under the engine lock and return the published state."""
    with _lock:
        controller = get_controller()
        try:
            intent(controller)
        except InvalidTransition as e:
            raise HTTPException(status_code=409, detail=str(e))
        except PersistenceError as e:
            logger.warning("Persistence failure: %s", e)
            raise HTTPException(status_code=503, detail=str(e))
        return controller.state()


def _locked_tick() -> None:
    with _lock:
        get_controller().tick()


async def _tick_loop() -> None:
    """Tick the engine off the event loop; a failed tick is logged and the loop goes on."""
    while True:
        await asyncio.sleep(TICK_SECONDS)
        try:
            await asyncio.to_thread(_locked_tick)
        except Exception:
            logger.exception("Engine tick failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    with _lock:
        get_controller()
    task = asyncio.create_task(_tick_loop())
    try:
        yield
    finally:
        task.cancel()


# ── Auth ──────────────────────────────────────────────────────

app = FastAPI(title="blockday", version="0.1.0", lifespan=lifespan)

security = HTTPBasic(auto_error=False)


def get_current_user(credentials: HTTPBasicCredentials | None = Depends(security)) -> str:
    expected_username = os.environ.get("BLOCKDAY_USERNAME", "")
    expected_password = os.environ.get("BLOCKDAY_PASSWORD", "")

    if not expected_username or not expected_password:
        return "guest"

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Basic"},
        )

    correct_username = secrets.compare_digest(credentials.username.encode("utf-8"), expected_username.encode("utf-8"))
    correct_password = secrets.compare_digest(credentials.password.encode("utf-8"), expected_password.encode("utf-8"))

    if not (correct_username and correct_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username


# ── Endpoints ─────────────────────────────────────────────────

@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/state")
def api_state(username: str = Depends(get_current_user)) -> dict[str, Any]:
    """Timer session, countdowns and check-in state."""
    with _lock:
        return get_controller().state()


@app.get("/api/day")
def api_today(username: str = Depends(get_current_user)) -> dict[str, Any]:
    with _lock:
        return get_controller().day()


@app.get("/api/day/{day}")
def api_day(day: str, username: str = Depends(get_current_user)) -> dict[str, Any]:
    """All 72 blocks of a date (YYYY-MM-DD)."""
    with _lock:
        try:
            return get_controller().day(day)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))


@app.post("/api/day/{day}/reset")
def api_reset_day(day: str, username: str = Depends(get_current_user)) -> dict[str, Any]:
    """Clear recorded time on a date. Refused while a timer runs on it."""
    with _lock:
        controller = get_controller()
        try:
            controller.reset_day(day)
            return controller.day(day)
        except InvalidTransition as e:
            raise HTTPException(status_code=409, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except PersistenceError as e:
            logger.warning("Persistence failure: %s", e)
            raise HTTPException(status_code=503, detail=str(e))


@app.post("/api/timer/start")
def api_start(payload: dict[str, Any] = Body(default={}), username: str = Depends(get_current_user)) -> dict[str, Any]:
    """Start the timer on the current block (or ``blockIndex``, which must be current)."""
    def intent(c: BlockdayController) -> TimerSession:
        return c.start(
            block_index=payload.get("blockIndex"),
            category=payload.get("category"),
            label=payload.get("label"),
            break_mode=bool(payload.get("breakMode", False)),
        )
    return _run(intent)


@app.post("/api/timer/pause")
def api_pause(username: str = Depends(get_current_user)) -> dict[str, Any]:
    return _run(lambda c: c.pause())


@app.post("/api/timer/resume")
def api_resume(username: str = Depends(get_current_user)) -> dict[str, Any]:
    return _run(lambda c: c.resume())


@app.post("/api/timer/break")
def api_break(username: str = Depends(get_current_user)) -> dict[str, Any]:
    return _run(lambda c: c.switch_to_break())


@app.post("/api/timer/work")
def api_work(username: str = Depends(get_current_user)) -> dict[str, Any]:
    return _run(lambda c: c.switch_to_work())


@app.post("/api/timer/snooze")
def api_snooze(username: str = Depends(get_current_user)) -> dict[str, Any]:
    return _run(lambda c: c.snooze_break())


@app.post("/api/timer/category")
def api_category(payload: dict[str, Any] = Body(...), username: str = Depends(get_current_user)) -> dict[str, Any]:
    return _run(lambda c: c.update_category(payload.get("category"), payload.get("label")))


@app.post("/api/timer/stop")
def api_stop(payload: dict[str, Any] = Body(default={}), username: str = Depends(get_current_user)) -> dict[str, Any]:
    return _run(lambda c: c.stop(mark_complete=bool(payload.get("markComplete", False))))


@app.post("/api/timer/continue")
def api_continue(username: str = Depends(get_current_user)) -> dict[str, Any]:
    return _run(lambda c: c.continue_work())


@app.post("/api/timer/back-to-work")
def api_back_to_work(username: str = Depends(get_current_user)) -> dict[str, Any]:
    return _run(lambda c: c.back_to_work())


@app.post("/api/timer/dismiss")
def api_dismiss(username: str = Depends(get_current_user)) -> dict[str, Any]:
    return _run(lambda c: c.dismiss())


@app.post("/api/timer/skip")
def api_skip(payload: dict[str, Any] = Body(default={}), username: str = Depends(get_current_user)) -> dict[str, Any]:
    return _run(lambda c: c.skip(payload.get("blockIndex")))


@app.post("/api/checkin")
def api_checkin(username: str = Depends(get_current_user)) -> dict[str, Any]:
    """Answer the "still there?" check-in."""
    return _run(lambda c: c.check_in())


@app.post("/api/flush")
def api_flush(username: str = Depends(get_current_user)) -> dict[str, Any]:
    """Retry a block write that failed."""
    return _run(lambda c: c.flush())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ui.app:app",
        host=os.environ.get("BLOCKDAY_HOST", "127.0.0.1"),
        port=int(os.environ.get("BLOCKDAY_PORT", "8000")),
    )
