import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from livequiz.core import config
from livequiz.core.logging_config import configure_logging
from livequiz.database import init_db
from livequiz.errors import LiveQuizError
from livequiz.game_manager import game_manager
from livequiz.routers import game, quiz, session

configure_logging()
logger = logging.getLogger("livequiz.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    game_manager.start_janitor()
    logger.info("LiveQuiz started")
    yield
    await game_manager.shutdown()
    logger.info("LiveQuiz stopped")


app = FastAPI(
    title="LiveQuiz - Live Quiz Sessions",
    lifespan=lifespan,
)


@app.exception_handler(LiveQuizError)
async def livequiz_exception_handler(request: Request, exc: LiveQuizError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "error": type(exc).__name__},
    )


# Anything not mapped above is a bug; keep the trace in the logs
@app.exception_handler(Exception)
async def debug_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"message": "Internal Server Error", "detail": str(exc)},
    )


# Create DB tables
init_db()


@app.get("/version")
def get_version():
    return {"version": "1.0.0"}


# Uploaded question images
if not os.path.exists(config.UPLOAD_DIR):
    os.makedirs(config.UPLOAD_DIR)

app.mount(config.PUBLIC_UPLOAD_PREFIX, StaticFiles(directory=config.UPLOAD_DIR), name="uploads")

# Include Routers
app.include_router(quiz.router, prefix="/api", tags=["quiz"])
app.include_router(session.router, prefix="/api", tags=["session"])
app.include_router(game.router, tags=["game"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
