from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from perpdesk.core.clock import TimeProvider
from perpdesk.core.config import Credentials, TelemetryParams
from perpdesk.core.logging import FieldLogger
from perpdesk.core.metrics import Metrics
from perpdesk.core.persistence import StateStore
from perpdesk.exchanges.base_gateway import OrderGateway
from perpdesk.notifications.base import CycleObserver
from perpdesk.utils.logging_utils import setup_app_logger


@dataclass
class EngineContext:
    """Everything a loop needs, built once and passed in explicitly."""

    gateway: OrderGateway
    clock: TimeProvider = field(default_factory=TimeProvider)
    logger: FieldLogger = field(default_factory=FieldLogger)
    metrics: Metrics = field(default_factory=Metrics)
    store: StateStore = field(default_factory=StateStore)
    observers: List[CycleObserver] = field(default_factory=list)

    def close(self) -> None:
        self.store.close()


def build_logger(telemetry: Optional[TelemetryParams] = None, name: str = "perpdesk") -> FieldLogger:
    tel = telemetry or TelemetryParams()
    level = getattr(logging, (tel.log_level or "INFO").upper(), logging.INFO)
    logger = FieldLogger(name=name, level=level)
    if tel.log_file is not None:
        meta = setup_app_logger(
            name,
            log_level=tel.log_level,
            log_file=tel.log_file,
            log_max_bytes=tel.log_max_bytes,
            log_backup_count=tel.log_backup_count,
            disable_console_logging=tel.disable_console_logging,
        )
        logger.info("log_init", **meta)
    return logger


def build_hyperliquid_context(credentials: Credentials,
                              telemetry: Optional[TelemetryParams] = None,
                              state_db: str = ":memory:",
                              observers: Optional[List[CycleObserver]] = None) -> EngineContext:
    """Connect to Hyperliquid and assemble a context. Raises AuthError on bad keys."""
    from perpdesk.exchanges.hyperliquid.hl_gateway import HyperliquidGateway

    clock = TimeProvider()
    logger = build_logger(telemetry)
    info, exchange, address = credentials.build_hl_clients()
    logger.info("wallet_init", address=address, base_url=credentials.base_url)
    return EngineContext(
        gateway=HyperliquidGateway(address, info, exchange, clock=clock),
        clock=clock,
        logger=logger,
        metrics=Metrics(enabled=(telemetry or TelemetryParams()).metrics),
        store=StateStore(state_db),
        observers=list(observers or []),
    )
