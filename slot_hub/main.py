from typing import Literal

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from slot_hub import models
from slot_hub.collect import confirm_collect, request_collect
from slot_hub.context import AppContext, close_context, get_context
from slot_hub.database import engine, get_db
from slot_hub.db import get_player, list_transfers
from slot_hub.errors import HubError, LedgerRPCError
from slot_hub.helpers import serialize_player, serialize_transfer, to_display_units, validate_wallet
from slot_hub.ledger import apply_spin, save_game
from slot_hub.logging_config import get_logger
from slot_hub.reconciliation import serialize_resolution, sweep_reservations
from slot_hub.reels import SYMBOL_NAMES
from slot_hub.schemas.app_schemas import (
    CollectRequest,
    CollectResponse,
    ConfirmCollectRequest,
    SaveGameRequest,
    SpinRequest,
    SpinResponse,
)
from slot_hub.security import require_bearer_token
from slot_hub.stats import game_stats, leaderboard


logger = get_logger(__name__)

models.Base.metadata.create_all(bind=engine)
app = FastAPI(title="Slot Hub")


@app.on_event("startup")
async def startup_event():
    ctx = get_context()
    logger.info(
        "Starting Slot Hub rpc=%s mint=%s treasury=%s collects_enabled=%s",
        ctx.settings.solana_rpc_url,
        ctx.settings.token_mint,
        ctx.settings.treasury_wallet,
        ctx.treasury is not None,
    )


@app.on_event("shutdown")
async def shutdown_event():
    await close_context()


# Hub errors go out flat as {"error": ..., **extra}, not nested under "detail".
@app.exception_handler(HubError)
async def hub_error_handler(request: Request, exc: HubError):
    return JSONResponse(status_code=exc.status_code, content=exc.detail)


@app.exception_handler(LedgerRPCError)
async def ledger_rpc_error_handler(request: Request, exc: LedgerRPCError):
    logger.error("Ledger RPC error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Ledger request failed", "message": str(exc)})


@app.post("/collect", response_model=CollectResponse)
async def collect(
    request: CollectRequest,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    return await request_collect(db, ctx, request)


@app.post("/confirm-collect")
async def confirm_collect_route(
    request: ConfirmCollectRequest,
    response: Response,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    status_code, body = await confirm_collect(db, ctx, request)
    response.status_code = status_code
    return body


@app.post("/save-game")
async def save_game_route(
    request: SaveGameRequest,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    player = save_game(db, ctx.settings, request)
    return {
        "success": True,
        "message": "Game data saved successfully",
        "player": serialize_player(player, player.wallet_address, ctx.settings.token_decimals),
    }


@app.post("/spin", response_model=SpinResponse)
async def spin(
    request: SpinRequest,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """
    Server-drawn spin: the reel engine picks the stops, so neither the symbols
    nor the win come from the client.
    """
    wallet_address = str(validate_wallet(request.walletAddress))
    positions, symbols = ctx.reel_engine.draw()
    record = apply_spin(db, ctx.settings, wallet_address, symbols)
    snapshot = serialize_player(record.player, wallet_address, ctx.settings.token_decimals)
    return {
        "positions": positions,
        "symbols": symbols,
        "symbolNames": [SYMBOL_NAMES[s] for s in symbols],
        "winAmount": to_display_units(record.payout, ctx.settings.token_decimals),
        "spinsRemaining": snapshot["spinsRemaining"],
        "unclaimedRewards": snapshot["unclaimedRewards"],
    }


@app.get("/load-player")
async def load_player(
    walletAddress: str | None = None,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    wallet_address = str(validate_wallet(walletAddress))
    player = get_player(db, wallet_address)
    return serialize_player(player, wallet_address, ctx.settings.token_decimals)


@app.get("/leaderboard")
async def leaderboard_route(
    sortBy: Literal["spins", "won", "winRate"] = "spins",
    limit: int = Query(100, ge=1),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    limit = min(limit, ctx.settings.leaderboard_max_limit)
    return leaderboard(db, sortBy, limit, ctx.settings.token_decimals)


@app.get("/game-stats")
async def game_stats_route(db: Session = Depends(get_db), ctx: AppContext = Depends(get_context)):
    return game_stats(db, ctx.settings.token_decimals)


@app.get("/admin/collects")
async def list_collects(
    status: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    records = list_transfers(db, status, limit)
    return [serialize_transfer(r, ctx.settings.token_decimals) for r in records]


@app.post("/admin/reconcile-collects")
async def reconcile_collects(
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """
    Settle reservations whose client never called /confirm-collect.
    """
    results = await sweep_reservations(db, ctx)
    return {"results": [serialize_resolution(r, ctx.settings.token_decimals) for r in results]}


@app.get("/swagger", include_in_schema=False)
async def swagger_ui():
    return get_swagger_ui_html(openapi_url=str(app.openapi_url), title="Slot Hub - Swagger UI")


@app.get("/health")
async def health():
    return {"status": "ok"}
