from fastapi import FastAPI

from saldin.config import get_settings
from saldin.logging_config import setup_logging
from saldin.routers import webhook

setup_logging(get_settings().log_level)

app = FastAPI(
    title="Saldin API",
    description="WhatsApp inbound pipeline for Saldin personal finance",
    version="0.1.0",
)

app.include_router(webhook.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
