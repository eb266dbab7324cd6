import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from foodlink.core.config import settings
from foodlink.core.db import Base, engine
from foodlink.core.errors import DomainError
from foodlink.domains.chat.router import router as chat_router
from foodlink.domains.identity.router import router as identity_router
from foodlink.domains.surplus.router import router as surplus_router

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)


@app.exception_handler(DomainError)
async def _domain_exception_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    # Helpful for debugging 422s in dev. Do not log full bodies in prod.
    if settings.env == "dev":
        logger.debug("[422] path=%s errors=%s", request.url.path, exc.errors())
    return JSONResponse(status_code=422, content={"detail": exc.errors()})


# Dev CORS so the mobile/web client can call the API from a browser.
origins = [o.strip() for o in settings.cors_allow_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins if origins else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def _startup() -> None:
    logging.basicConfig(level=settings.log_level.upper())
    # Import side effect registers every table on Base.metadata.
    Base.metadata.create_all(bind=engine)


@app.get("/health")
def health() -> dict:
    return {"ok": True, "service": settings.app_name, "env": settings.env}


app.include_router(identity_router, tags=["identity"])
app.include_router(surplus_router, tags=["surplus"])
app.include_router(chat_router, tags=["chat"])
