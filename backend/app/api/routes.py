"""REST API routes."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from app.services.engine_service import EngineService, InstrumentStatus
from app.storage import signal_cache
from core.models.signal import Signal

logger = logging.getLogger(__name__)

router = APIRouter()


# Response models
class SignalResponse(BaseModel):
    """Signal response model."""

    id: str
    instrument: str
    direction: str
    confidence: float
    strength: str
    entry_price: float
    entry_time: datetime
    expiration_seconds: int
    timeframe_seconds: int
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    amount: Optional[float] = None
    indicators: dict[str, float] = {}
    created_at: datetime

    @classmethod
    def from_signal(cls, signal: Signal) -> "SignalResponse":
        return cls(
            id=signal.id,
            instrument=signal.instrument,
            direction=signal.direction.value,
            confidence=signal.confidence,
            strength=signal.strength_label,
            entry_price=signal.entry_price,
            entry_time=signal.entry_time,
            expiration_seconds=signal.expiration_seconds,
            timeframe_seconds=signal.timeframe_seconds,
            stop_loss=signal.stop_loss,
            take_profit=signal.take_profit,
            amount=signal.amount,
            indicators=signal.indicators,
            created_at=signal.created_at,
        )


class SystemStatus(BaseModel):
    """System status response."""

    status: str
    version: str
    instruments: list[str]
    warmup_ticks: int
    min_confidence: float
    cache_entries: int
    pending_signals: int
    dispatched: int
    dispatch_failures: int
    unknown_ticks: int


class TickRequest(BaseModel):
    """One price observation pushed by a feed adapter."""

    instrument: str
    price: float
    timestamp: float = Field(description="Unix timestamp in seconds")
    bid: Optional[float] = None
    ask: Optional[float] = None


class TickResponse(BaseModel):
    queued: int
    ignored: int


class TradeOutcome(BaseModel):
    """Settled result of a trade taken on a signal."""

    signal_id: Optional[str] = None
    profit: float = Field(description="Realised profit, negative for a loss")


class OutcomeResponse(BaseModel):
    recorded: bool


# Dependency for the running engine
def get_engine(request: Request) -> EngineService:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not running")
    return engine


@router.get("/status", response_model=SystemStatus)
async def get_status(engine: EngineService = Depends(get_engine)):
    """Get system status."""
    cache = engine.engine.cache
    return SystemStatus(
        status="running",
        version="0.1.0",
        instruments=engine.instruments,
        warmup_ticks=engine.engine.min_ticks,
        min_confidence=engine.config.gate.min_confidence,
        cache_entries=cache.count() if cache is not None else 0,
        pending_signals=engine.dispatcher.pending,
        dispatched=engine.dispatcher.delivered,
        dispatch_failures=engine.dispatcher.failed,
        unknown_ticks=engine.unknown_ticks,
    )


@router.get("/status/instruments", response_model=list[InstrumentStatus])
async def get_all_instrument_status(engine: EngineService = Depends(get_engine)):
    """Per-instrument processing state."""
    return engine.status()


@router.get("/status/{instrument}", response_model=InstrumentStatus)
async def get_instrument_status(instrument: str, engine: EngineService = Depends(get_engine)):
    """Processing state of one instrument."""
    try:
        return engine.instrument_status(instrument)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown instrument: {instrument}")


@router.get("/signals", response_model=list[SignalResponse])
async def get_signals(
    instrument: Optional[str] = Query(None, description="Filter by instrument"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum signals to return"),
    engine: EngineService = Depends(get_engine),
):
    """Get recently emitted signals, newest first."""
    signals = engine.recent_signals(instrument=instrument, limit=limit)
    return [SignalResponse.from_signal(s) for s in signals]


@router.get("/signals/{signal_id}", response_model=SignalResponse)
async def get_signal(signal_id: str, engine: EngineService = Depends(get_engine)):
    """Get a specific signal by ID (recent ring first, then Redis)."""
    for signal in engine.recent_signals():
        if signal.id == signal_id:
            return SignalResponse.from_signal(signal)

    signal = await signal_cache.get_signal(signal_id)
    if signal is None:
        raise HTTPException(status_code=404, detail="Signal not found")
    return SignalResponse.from_signal(signal)


@router.post("/ticks", response_model=TickResponse)
async def post_ticks(ticks: list[TickRequest], engine: EngineService = Depends(get_engine)):
    """Queue ticks for processing. Unknown instruments are ignored."""
    queued = 0
    ignored = 0
    for tick in ticks:
        if tick.instrument not in engine.registry:
            ignored += 1
            engine.unknown_ticks += 1
            continue
        engine.on_tick(tick.instrument, tick.price, tick.timestamp, tick.bid, tick.ask)
        queued += 1
    return TickResponse(queued=queued, ignored=ignored)


@router.post("/outcomes", response_model=OutcomeResponse)
async def post_outcome(outcome: TradeOutcome, engine: EngineService = Depends(get_engine)):
    """Feed a settled trade back to the position sizer."""
    recorded = engine.record_outcome(outcome.profit)
    if recorded:
        logger.info(f"Recorded outcome {outcome.profit:+.2f} for signal {outcome.signal_id or '-'}")
    return OutcomeResponse(recorded=recorded)


@router.get("/instruments/{instrument}/signals", response_model=list[SignalResponse])
async def get_signal_history(
    instrument: str,
    limit: int = Query(100, ge=1, le=1000, description="Maximum signals to return"),
    engine: EngineService = Depends(get_engine),
):
    """Persisted signals for one instrument, newest first (empty without Redis)."""
    if instrument not in engine.registry:
        raise HTTPException(status_code=404, detail=f"Unknown instrument: {instrument}")
    signals = await signal_cache.get_instrument_signals(instrument, limit=limit)
    return [SignalResponse.from_signal(s) for s in signals]
