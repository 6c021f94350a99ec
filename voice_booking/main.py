from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from voice_booking.core.config import settings
from voice_booking.api import webhook, tools
from voice_booking.core.logger import setup_logging, logger
from contextlib import asynccontextmanager
from datetime import datetime

setup_logging()

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Starting voice booking backend")
    yield
    logger.info("🛑 Shutting down backend")

app = FastAPI(
    title=settings.PROJECT_NAME,
    version="0.1.0",
    lifespan=lifespan
)

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"🔥 UNHANDLED ERROR: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"message": "Internal Server Error", "detail": "An unexpected error occurred."}
    )

app.include_router(webhook.router, prefix=settings.API_V1_STR, tags=["Webhook"])
app.include_router(tools.router, tags=["Tools"])

@app.get("/")
async def root():
    return {'status': 'active', 'time': datetime.now().isoformat()}

@app.get("/health")
async def health_check():
    return {"status": "ok", "environment": settings.ENVIRONMENT, "timestamp": datetime.now().isoformat()}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("voice_booking.main:app", host="0.0.0.0", port=settings.PORT, reload=True)
