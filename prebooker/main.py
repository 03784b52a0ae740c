import logging

from fastapi import FastAPI

from prebooker.api.cron import router as cron_router
from prebooker.api.v1.prebookings import router as prebookings_router
from prebooker.api.webhooks import router as webhooks_router
from prebooker.core.config import settings

class ContextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        extras = []
        for key in (
            "execution_id",
            "prebooking_id",
            "user_ref",
            "venue_ref",
            "session_kind",
            "status",
            "booking_id",
            "schedule_ref",
            "execute_at_ms",
            "available_at",
            "fire_latency_ms",
            "prep_ms",
            "elapsed_ms",
            "count",
            "reason",
            "error",
        ):
            value = getattr(record, key, None)
            if value not in (None, ""):
                extras.append(f"{key}={value}")
        base = super().format(record)
        if extras:
            return f"{base} | " + " ".join(extras)
        return base


handler = logging.StreamHandler()
handler.setFormatter(ContextFormatter("%(levelname)s:%(name)s:%(message)s"))

root = logging.getLogger()
root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
root.handlers.clear()
root.addHandler(handler)

app = FastAPI(title="Prebooker", version="1.0.0")

app.include_router(webhooks_router, tags=["execution"])
app.include_router(prebookings_router, prefix="/api/v1", tags=["prebookings"])
app.include_router(cron_router, tags=["cron"])


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
