import logging
import os

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from pairnotes.config import DEV_SECRET_KEY, get_settings
from pairnotes.api import actions


app = FastAPI(title="PairNotes", version="0.1.0")
app.add_middleware(
    SessionMiddleware,
    secret_key=get_settings().secret_key,
    session_cookie="pairnotes_session",
    same_site="lax",
)


@app.on_event("startup")
def on_startup():
    logging.basicConfig(
        level=os.getenv("PAIRNOTES_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = get_settings()
    if settings.secret_key == DEV_SECRET_KEY:
        logging.getLogger(__name__).warning("PAIRNOTES_SECRET_KEY is not set; using the development secret")


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(actions.router)
