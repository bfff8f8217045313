"""
FastAPI web backend for the Coinflip Telegram Mini App.
Custodial wallets, provably fair house bets in the game token.
"""
import logging
import math
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

import config
from database import Database, User, GameHistory, ConcurrentModificationError
from game import (
    BetError,
    FeatureDisabledError,
    TokenLedger,
    get_user,
    get_user_and_wallet,
    create_user_wallet,
    mint_test_tokens,
    get_next_hash,
    settle_bet,
    verify_bet,
)
from security import audit_logger, AuditEventType, AuditSeverity
from utils import from_token_amount, format_win_rate

# Logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(title="Coinflip Mini App API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS if config.CORS_ORIGINS != ["*"] else ["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# ===== DEPENDENCIES =====

_db: Optional[Database] = None
_ledger: Optional[TokenLedger] = None


def get_db() -> Database:
    """Get or create the database instance."""
    global _db
    if _db is None:
        _db = Database(config.DB_PATH)
    return _db


def get_ledger() -> Optional[TokenLedger]:
    """Get or create the token ledger. None if the house wallet is not configured."""
    global _ledger
    if _ledger is None and config.ADMIN_WALLET_PRIVATE_KEY:
        _ledger = TokenLedger(
            config.RPC_URL,
            config.ADMIN_WALLET_PRIVATE_KEY,
            config.TOKEN_MINT,
            config.TOKEN_DECIMALS,
        )
    return _ledger


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed or missing fields are a 400, not FastAPI's default 422."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"detail": f"Invalid or missing field '{field}': {message}" if field else message},
    )


def _http_error(e: BetError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))


# ===== MODELS =====

class CamelModel(BaseModel):
    """Model serialized with camelCase keys on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(BaseModel):
    """Telegram WebApp user object, as sent by the Mini App."""
    id: int
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = "en"
    is_premium: bool = False


class WalletRequest(CamelModel):
    telegram_id: int


class MintRequest(CamelModel):
    telegram_id: int
    amount: float = Field(strict=True)


class BetRequest(CamelModel):
    telegram_id: int
    bet_amount: float = Field(strict=True)
    choice: str
    client_seed: str
    nonce: int = Field(strict=True)


class UserResponse(CamelModel):
    id: int
    telegram_id: int
    first_name: str
    last_name: Optional[str]
    username: Optional[str]
    language_code: Optional[str]
    is_premium: bool
    total_wins: int
    total_losses: int
    total_wagered: float
    net_profit: float
    win_rate: str


class WalletBalance(CamelModel):
    token_balance: float


class WalletResponse(CamelModel):
    public_key: str
    balance: WalletBalance


class NextHashResponse(CamelModel):
    server_seed_hash: str


class BetResponse(CamelModel):
    bet_id: str
    won: bool
    new_balance: float
    coin_result: str
    bet_amount: float
    payout_amount: float
    platform_fee: float
    server_seed: str
    server_seed_hash: str
    client_seed: str
    nonce: int
    result_hash: str
    precommitted: bool


class HistoryItem(CamelModel):
    bet_id: str
    game_type: str
    wager_amount: float
    choice: str
    outcome: str
    payout_amount: float
    platform_fee: float
    server_seed: str
    server_seed_hash: str
    client_seed: str
    nonce: int
    result_hash: str
    precommitted: bool
    timestamp: str


class HistoryResponse(CamelModel):
    history: List[HistoryItem]
    current_page: int
    total_pages: int
    total_records: int


class LeaderboardEntry(CamelModel):
    username: Optional[str]
    first_name: str
    total_wins: int
    total_losses: int
    total_wagered: float
    net_profit: float


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.user_id,
        telegram_id=user.telegram_id,
        first_name=user.first_name,
        last_name=user.last_name,
        username=user.username,
        language_code=user.language_code,
        is_premium=user.is_premium,
        total_wins=user.total_wins,
        total_losses=user.total_losses,
        total_wagered=from_token_amount(user.total_wagered),
        net_profit=from_token_amount(user.net_profit),
        win_rate=format_win_rate(user.total_wins, user.total_losses),
    )


def _history_item(entry: GameHistory) -> HistoryItem:
    return HistoryItem(
        bet_id=entry.bet_id,
        game_type=entry.game_type,
        wager_amount=from_token_amount(entry.wager_amount),
        choice=entry.choice.value,
        outcome=entry.outcome.value,
        payout_amount=from_token_amount(entry.payout_amount),
        platform_fee=from_token_amount(entry.platform_fee),
        server_seed=entry.server_seed,
        server_seed_hash=entry.server_seed_hash,
        client_seed=entry.client_seed,
        nonce=entry.nonce,
        result_hash=entry.resulting_hash,
        precommitted=entry.precommitted,
        timestamp=entry.timestamp.isoformat(),
    )


# ===== ENDPOINTS =====

@app.get("/")
async def root():
    """API root."""
    return {
        "name": "Coinflip Mini App API",
        "version": "1.0.0",
        "status": "online"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}


# === USER ENDPOINTS ===

@app.post("/api/register", status_code=201)
async def register(request: RegisterRequest, db: Database = Depends(get_db)):
    """Register a Telegram user on first launch of the Mini App."""
    if db.get_user_by_telegram_id(request.id):
        raise HTTPException(status_code=400, detail="User already exists")

    user = User(
        user_id=None,
        telegram_id=request.id,
        first_name=request.first_name,
        last_name=request.last_name,
        username=request.username,
        language_code=request.language_code or "en",
        is_premium=request.is_premium,
    )
    user.user_id = db.save_user(user)

    audit_logger.log(
        event_type=AuditEventType.USER_REGISTERED,
        user_id=user.user_id,
        details={"telegram_id": request.id},
    )
    logger.info(f"[REGISTER] New user {user.user_id} (telegram {request.id})")
    return {"message": "User registered successfully"}


@app.get("/api/register")
async def check_registration(
    telegram_id: int = Query(..., alias="telegramId"),
    db: Database = Depends(get_db),
):
    """Check whether a Telegram user is registered."""
    return {"exists": db.get_user_by_telegram_id(telegram_id) is not None}


@app.get("/api/user")
async def get_user_profile(
    telegram_id: int = Query(..., alias="telegramId"),
    db: Database = Depends(get_db),
) -> UserResponse:
    """Get user profile and statistics."""
    try:
        user = get_user(db, telegram_id)
    except BetError as e:
        raise _http_error(e)
    return _user_response(user)


# === WALLET ENDPOINTS ===

@app.post("/api/wallet")
async def create_wallet(request: WalletRequest, db: Database = Depends(get_db)) -> WalletResponse:
    """Create the user's custodial wallet (returns the existing one if present)."""
    try:
        wallet = await create_user_wallet(db, request.telegram_id, config.WALLET_ENCRYPTION_KEY)
    except BetError as e:
        raise _http_error(e)

    return WalletResponse(
        public_key=wallet.public_key,
        balance=WalletBalance(token_balance=from_token_amount(wallet.token_balance)),
    )


@app.get("/api/wallet")
async def get_wallet(
    telegram_id: int = Query(..., alias="telegramId"),
    db: Database = Depends(get_db),
) -> WalletResponse:
    """Get wallet address and game-token balance."""
    try:
        _, wallet = get_user_and_wallet(db, telegram_id)
    except BetError as e:
        raise _http_error(e)

    return WalletResponse(
        public_key=wallet.public_key,
        balance=WalletBalance(token_balance=from_token_amount(wallet.token_balance)),
    )


@app.post("/api/wallet/mint")
async def mint_tokens(
    request: MintRequest,
    db: Database = Depends(get_db),
    ledger: Optional[TokenLedger] = Depends(get_ledger),
) -> WalletBalance:
    """Mint test tokens to the user's wallet (devnet faucet)."""
    try:
        if not config.TEST_MINT_ENABLED:
            raise FeatureDisabledError("Test token minting is disabled")

        balance = await mint_test_tokens(
            db,
            ledger,
            request.telegram_id,
            request.amount,
            config.WALLET_ENCRYPTION_KEY,
            config.MAX_TEST_MINT_AMOUNT,
        )
    except BetError as e:
        raise _http_error(e)

    return WalletBalance(token_balance=from_token_amount(balance))


# === CASINO ENDPOINTS ===

@app.get("/api/casino/next-hash")
async def next_hash(
    telegram_id: int = Query(..., alias="telegramId"),
    client_seed: str = Query(..., alias="clientSeed"),
    nonce: int = Query(...),
    db: Database = Depends(get_db),
) -> NextHashResponse:
    """Commit to the server seed for (clientSeed, nonce) before the bet is placed."""
    try:
        server_seed_hash = await get_next_hash(db, telegram_id, client_seed, nonce)
    except BetError as e:
        raise _http_error(e)
    except ConcurrentModificationError as e:
        audit_logger.log(
            event_type=AuditEventType.CONCURRENT_MODIFICATION,
            severity=AuditSeverity.WARNING,
            details={"telegram_id": telegram_id, "error": str(e)},
        )
        raise HTTPException(status_code=409, detail="Wallet was modified concurrently, please retry")

    return NextHashResponse(server_seed_hash=server_seed_hash)


@app.post("/api/casino/bet")
async def place_bet(
    request: BetRequest,
    db: Database = Depends(get_db),
    ledger: Optional[TokenLedger] = Depends(get_ledger),
) -> BetResponse:
    """Place and settle a coinflip bet against the house."""
    try:
        result = await settle_bet(
            db,
            ledger,
            request.telegram_id,
            request.bet_amount,
            request.choice,
            request.client_seed,
            request.nonce,
            fee_percent=config.PLATFORM_FEE_PERCENT,
            encryption_key=config.WALLET_ENCRYPTION_KEY,
            require_precommit=config.REQUIRE_PRECOMMIT,
            transfer_timeout=config.TRANSFER_TIMEOUT_SECONDS,
        )
    except BetError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"[BET] Unexpected error for telegram user {request.telegram_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Bet could not be processed")

    return BetResponse(**asdict(result))


@app.get("/api/casino/verify/{bet_id}")
async def verify_settled_bet(bet_id: str, db: Database = Depends(get_db)):
    """Verify a settled bet against its revealed server seed."""
    entry = db.get_history(bet_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Bet not found")

    check = verify_bet(
        entry.server_seed,
        entry.server_seed_hash,
        entry.client_seed,
        entry.nonce,
        coin_result=_coin_result(entry),
        result_hash=entry.resulting_hash,
    )

    return {
        "betId": bet_id,
        "serverSeed": entry.server_seed,
        "serverSeedHash": entry.server_seed_hash,
        "clientSeed": entry.client_seed,
        "nonce": entry.nonce,
        "coinResult": _coin_result(entry),
        "resultHash": entry.resulting_hash,
        "precommitted": entry.precommitted,
        "hashMatches": check["hash_matches"],
        "resultMatches": check["result_matches"],
        "isFair": check["is_fair"],
        "message": "Bet result is provably fair!" if check["is_fair"] else "Bet result verification failed!",
    }


def _coin_result(entry: GameHistory) -> str:
    """Side the coin landed on, derived from the stored choice and outcome."""
    if entry.outcome.value == "win":
        return entry.choice.value
    return "tails" if entry.choice.value == "heads" else "heads"


# === HISTORY / LEADERBOARD ===

@app.get("/api/history")
async def get_history(
    telegram_id: int = Query(..., alias="telegramId"),
    page: int = Query(1, ge=1),
    limit: int = Query(config.HISTORY_PAGE_LIMIT, ge=1, le=100),
    db: Database = Depends(get_db),
) -> HistoryResponse:
    """Paginated bet history, most recent first."""
    try:
        user = get_user(db, telegram_id)
    except BetError as e:
        raise _http_error(e)

    total_records = db.count_user_history(user.user_id)
    entries = db.get_user_history(user.user_id, limit=limit, offset=(page - 1) * limit)

    return HistoryResponse(
        history=[_history_item(entry) for entry in entries],
        current_page=page,
        total_pages=math.ceil(total_records / limit),
        total_records=total_records,
    )


@app.get("/api/leaderboard")
async def get_leaderboard(
    sort_by: str = Query("netProfit", alias="sortBy"),
    limit: int = Query(config.LEADERBOARD_LIMIT, ge=1, le=100),
    db: Database = Depends(get_db),
) -> List[LeaderboardEntry]:
    """Top players by wins, amount wagered or net profit."""
    return [
        LeaderboardEntry(
            username=user.username,
            first_name=user.first_name,
            total_wins=user.total_wins,
            total_losses=user.total_losses,
            total_wagered=from_token_amount(user.total_wagered),
            net_profit=from_token_amount(user.net_profit),
        )
        for user in db.get_leaderboard(sort_by, limit)
    ]


# ===== MAIN =====

if __name__ == "__main__":
    import uvicorn

    logger.info("="*50)
    logger.info("Coinflip Mini App API Starting...")
    logger.info("="*50)

    uvicorn.run(app, host="0.0.0.0", port=8000)
