"""HTTP surface for the cart UI."""

import base64
import binascii
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .errors import (
    AnalysisError,
    CartwiseError,
    ExtractionError,
    MissingCredentialError,
    TaxAnalysisError,
    TransportError,
    UnsupportedMediaError,
)
from .models import UsageCategory
from .service import AIService, open_service

logger = logging.getLogger("cartwise")


class TaxQuery(BaseModel):
    item_name: str
    location: str | None = None


class PriceTagQuery(BaseModel):
    image: str  # base64
    location: str | None = None
    media_type: str = "image/jpeg"


class PriceSearchQuery(BaseModel):
    item_name: str
    site: str
    spec: str | None = None
    location: str | None = None


class PriceGuessQuery(BaseModel):
    item_name: str
    location: str | None = None
    store: str | None = None
    brand: str | None = None
    details: str | None = None


class AdditiveQuery(BaseModel):
    product_name: str


def _status_for(exc: CartwiseError) -> int:
    if isinstance(exc, (MissingCredentialError, UnsupportedMediaError)):
        return 400
    if isinstance(exc, TransportError):
        return 502
    if isinstance(exc, (ExtractionError, AnalysisError)):
        return 422
    return 500


def create_app(service: AIService | None = None) -> FastAPI:
    """Build the app. Without a service, one is opened from the environment."""
    state = {"service": service}

    @asynccontextmanager
    async def lifespan(app):
        owned = state["service"] is None
        if owned:
            state["service"] = await open_service()
        logger.info("cartwise API started")
        yield
        if owned:
            await state["service"].close()
            state["service"] = None

    app = FastAPI(title="cartwise", lifespan=lifespan)

    def svc() -> AIService:
        return state["service"]

    @app.exception_handler(CartwiseError)
    async def cartwise_error(request: Request, exc: CartwiseError):
        body = {"error": type(exc).__name__, "detail": str(exc)}
        explanation = getattr(exc, "explanation", None)
        if explanation:
            body["explanation"] = explanation
        return JSONResponse(body, status_code=_status_for(exc))

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "cartwise"}

    @app.post("/tax")
    async def tax(query: TaxQuery):
        try:
            rate = await svc().infer_tax_rate(query.item_name, query.location)
        except TaxAnalysisError as exc:
            # Unknown tax is a normal outcome for the cart, not a failure
            return {"taxRate": None, "unknown": True, "explanation": str(exc)}
        return {"taxRate": rate, "unknown": False}

    @app.post("/price-tag")
    async def price_tag(query: PriceTagQuery):
        try:
            image = base64.b64decode(query.image, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=400, detail="image must be base64")
        record = await svc().analyze_price_tag(image, query.location, query.media_type)
        return record.model_dump(by_alias=True)

    @app.post("/price-search")
    async def price_search(query: PriceSearchQuery):
        result = await svc().search_price(query.item_name, query.site, query.spec, query.location)
        return result.model_dump(by_alias=True)

    @app.post("/price-guess")
    async def price_guess(query: PriceGuessQuery):
        guess = await svc().guess_price(
            query.item_name, query.location, query.store, query.brand, query.details
        )
        return guess.model_dump(by_alias=True)

    @app.post("/additives")
    async def additives(query: AdditiveQuery):
        report = await svc().analyze_additives(query.product_name)
        return report.model_dump(by_alias=True)

    @app.get("/ledger")
    async def ledger():
        snap = svc().ledger_snapshot()
        data = snap.model_dump(mode="json")
        data.update(
            total_spent=snap.total_spent,
            spent_since_baseline=snap.spent_since_baseline,
            remaining_credits=snap.remaining_credits,
            credits_used_fraction=snap.credits_used_fraction,
            estimated_calls_remaining={
                c.value: snap.estimated_calls_remaining(c) for c in UsageCategory
            },
        )
        return data

    return app
