"""HTTP surface for the relayer."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import RelaySettings, get_settings
from .logging_utils import setup_logging
from .reporter import RelayResponse
from .service import MintRelayService, MintRequest, build_service

logger = logging.getLogger(__name__)

router = APIRouter()


def get_service() -> MintRelayService:
    raise NotImplementedError("must be overridden")


def _respond(result: RelayResponse) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.post("/mint-gasless")
async def mint_gasless(
    payload: MintRequest,
    service: MintRelayService = Depends(get_service),
) -> JSONResponse:
    return _respond(await service.mint(payload))


@router.get("/relayer/status")
async def relayer_status(
    service: MintRelayService = Depends(get_service),
) -> JSONResponse:
    return _respond(await service.relayer_status())


@router.get("/whitelist/{address}")
async def whitelist_lookup(
    address: str,
    service: MintRelayService = Depends(get_service),
) -> JSONResponse:
    return _respond(service.lookup_proof(address))


def create_app(
    settings: Optional[RelaySettings] = None,
    service: Optional[MintRelayService] = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(level=settings.log_level, json_format=settings.log_json)
    service = service or build_service(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Starting mint relayer on {settings.network_name} (chain {settings.chain_id})"
        )
        await service.verify_chain(settings.chain_id)
        yield
        logger.info("Shutting down mint relayer...")
        await service.aclose()

    app = FastAPI(
        title="Mint Pass Relayer",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.dependency_overrides[get_service] = lambda: service
    app.include_router(router, prefix="/nft", tags=["nft"])

    @app.get("/health")
    async def health() -> dict:
        return {
            "status": "ok",
            "network": settings.network_name,
            "chainId": settings.chain_id,
            "relayerConfigured": service.executor is not None,
        }

    return app
