import datetime
import logging

import telnyx
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request, status
from fastapi.responses import PlainTextResponse

import db
from app.runtime import build_services
from app.utils.log import configure_logging
from config import settings

_LOGGER = logging.getLogger(__name__)

# Configure telnyx public key
if settings.TELNYX_PUBLIC_KEY:
    telnyx.public_key = settings.TELNYX_PUBLIC_KEY

app = FastAPI()

# Services are built on startup and torn down on shutdown


@app.on_event("startup")
async def startup_event():
    configure_logging(settings.LOG_LEVEL)
    app.state.services = build_services(db.get_engine())
    # Tables are managed via Alembic migrations


@app.on_event("shutdown")
async def shutdown_event():
    await db.dispose_engine()


@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "service": "whispr",
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
    }


def _sender_and_text(payload) -> tuple:
    # TelnyxObject -> dict if needed
    if hasattr(payload, "to_dict"):
        payload = payload.to_dict()

    sender = payload.get("from") or payload.get("from_", {})
    if hasattr(sender, "to_dict"):
        sender = sender.to_dict()
    return sender.get("phone_number"), payload.get("text", "") or ""


# --------------------------------------------
# Endpoint
# --------------------------------------------
@app.post("/v1/sms/telnyx", response_class=PlainTextResponse)
async def telnyx_webhook(request: Request, background: BackgroundTasks):
    raw_body = await request.body()
    sig = request.headers.get("telnyx-signature-ed25519")
    ts = request.headers.get("telnyx-timestamp")

    try:
        if settings.TELNYX_PUBLIC_KEY:
            event = telnyx.Webhook.construct_event(raw_body.decode(), sig, ts)
            payload = event.data["payload"]
        else:  # dev mode: skip signature verification
            payload = (await request.json())["data"]["payload"]
    except Exception as exc:  # noqa: BLE001
        _LOGGER.warning("Rejected webhook: %s", exc)
        raise HTTPException(400, "Bad signature")

    if payload.get("type") == "ping":
        return PlainTextResponse("PONG")

    from_num, text = _sender_and_text(payload)
    if not from_num:
        return PlainTextResponse("IGNORED", status_code=status.HTTP_200_OK)

    _LOGGER.info("Message from %s: %s", from_num, text)
    background.add_task(request.app.state.services.pipeline.handle_inbound, from_num, text)
    return PlainTextResponse("OK")
