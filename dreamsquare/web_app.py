"""Application factory for the DreamSquare marketplace API.

Run with ``uvicorn dreamsquare.web_app:create_app --factory`` or
``python -m dreamsquare.web_app``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError

from .auth import IdentityDirectory, TokenVerifier, build_identity_directory, build_token_verifier
from .offers import router as offers_router
from .payments import PaymentGateway, StripeGateway, router as payments_router
from .properties import router as properties_router
from .reviews import router as reviews_router
from .store import Store
from .users import ensure_admin, router as users_router
from .wishlist import router as wishlist_router

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(
    store: Optional[Store] = None,
    *,
    token_verifier: Optional[TokenVerifier] = None,
    payment_gateway: Optional[PaymentGateway] = None,
    identity_directory: Optional[IdentityDirectory] = None,
) -> FastAPI:
    """Build the API with its collaborators.

    Anything not supplied is built from the environment.
    """

    app = FastAPI(title="DreamSquare")

    origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.store = store or Store.from_url()
    app.state.token_verifier = token_verifier or build_token_verifier()
    app.state.payment_gateway = payment_gateway or StripeGateway()
    app.state.identity_directory = identity_directory or build_identity_directory()

    bootstrap_admin = os.getenv("BOOTSTRAP_ADMIN_EMAIL")
    if bootstrap_admin:
        ensure_admin(app.state.store, bootstrap_admin)

    app.include_router(users_router)
    app.include_router(properties_router)
    app.include_router(wishlist_router)
    app.include_router(reviews_router)
    app.include_router(offers_router)
    app.include_router(payments_router)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Server error"})

    @app.get("/", response_class=PlainTextResponse)
    async def read_root() -> str:
        return "DreamSquare Real Estate Server is running..."

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=int(os.getenv("PORT", "5000")))
