"""Business logic services."""

from app.services.dispatcher import SignalDispatcher
from app.services.engine_service import EngineService, InstrumentStatus
from app.services.instrument_worker import InstrumentWorker

__all__ = [
    "EngineService",
    "InstrumentStatus",
    "InstrumentWorker",
    "SignalDispatcher",
]
