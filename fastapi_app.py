from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Optional
import hmac
import logging

import uvicorn

from batch_relay import relay
from imap_ingest import ImapSession
from relay_errors import ConfigError, TransportError
from relay_models import FetchRequest, FetchResponse
from relay_settings import Settings

logger = logging.getLogger(__name__)


def make_authenticator(secret: Optional[str]):
    """Dependency checking the x-proxy-secret header against `secret`.

    With no secret configured every request is let through with a warning.
    """
    def authenticate(x_proxy_secret: Optional[str] = Header(default=None)):
        if not secret:
            logger.warning("PROXY_SECRET is not set. The relay is open to anyone.")
            return
        if not x_proxy_secret or not hmac.compare_digest(x_proxy_secret.encode(), secret.encode()):
            raise HTTPException(status_code=403, detail="Unauthorized Proxy Access")
    return authenticate


def _failure(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def create_app(settings: Optional[Settings] = None, connect=ImapSession.connect) -> FastAPI:
    settings = settings or Settings.from_env()
    app = FastAPI(title="IMAP Relay", version="1.0.0")
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    authenticate = make_authenticator(settings.proxy_secret)

    @app.exception_handler(ConfigError)
    def _config_error(request: Request, exc: ConfigError):
        return _failure(400, str(exc))

    @app.exception_handler(TransportError)
    def _transport_error(request: Request, exc: TransportError):
        logger.error("IMAP error: %s", exc)
        return _failure(500, str(exc))

    @app.exception_handler(RequestValidationError)
    def _invalid_request(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        detail = "; ".join(
            f"{'.'.join(str(p) for p in e.get('loc', ()) if p != 'body')}: {e.get('msg')}" for e in errors
        )
        return _failure(400, f"Invalid request: {detail}" if detail else "Invalid request")

    @app.exception_handler(StarletteHTTPException)
    def _http_error(request: Request, exc: StarletteHTTPException):
        return _failure(exc.status_code, str(exc.detail))

    @app.get("/", response_class=PlainTextResponse)
    def index():
        return "IMAP relay is running. POST to /fetch to retrieve emails."

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/fetch", response_model=FetchResponse, dependencies=[Depends(authenticate)])
    def fetch(payload: FetchRequest):
        records, total_found = relay(payload, settings, connect=connect)
        return FetchResponse(messages=records, count=len(records), total_found=total_found)

    return app


app = create_app()


def main():
    """Serve the module-level `app`, the same object `uvicorn fastapi_app:app` loads."""
    settings = app.state.settings
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if not settings.proxy_secret:
        logger.warning("PROXY_SECRET is not set. The relay is open to anyone.")
    logger.info("IMAP relay listening on %s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
