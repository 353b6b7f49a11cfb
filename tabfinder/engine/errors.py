"""Error types and per-source health tracking.

Provider failures are never fatal: the affected cache keeps its previous
records, the failure is recorded here, and the other sources keep working.
"""

import traceback
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from loguru import logger


class ProviderError(Exception):
    """A platform fetch call failed or reported a runtime error."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message


class MalformedRecord(ValueError):
    """Provider payload carries neither a title nor a url."""


class ActionError(Exception):
    """A platform action sink reported a failure."""


class SourceState(Enum):
    """Source health states."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ErrorEvent:
    """Represents a recorded fetch failure."""
    timestamp: datetime
    source: str
    error_type: str
    message: str
    traceback: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'source': self.source,
            'error_type': self.error_type,
            'message': self.message,
            'context': self.context
        }


@dataclass
class SourceHealth:
    """Tracks fetch health of one source."""
    name: str
    state: SourceState = SourceState.HEALTHY
    error_count: int = 0
    success_count: int = 0
    consecutive_failures: int = 0
    last_error: Optional[ErrorEvent] = None
    last_success: Optional[datetime] = None

    @property
    def error_rate(self) -> float:
        """Calculate error rate."""
        total = self.error_count + self.success_count
        if total == 0:
            return 0.0
        return self.error_count / total

    def record_success(self) -> None:
        self.success_count += 1
        self.consecutive_failures = 0
        self.last_success = datetime.now()

        if self.state != SourceState.HEALTHY and self.error_rate < 0.1:
            logger.info(f"Source {self.name} recovered")
            self.state = SourceState.HEALTHY
        elif self.state == SourceState.UNHEALTHY:
            self.state = SourceState.DEGRADED

    def record_failure(self, error: Exception) -> None:
        self.error_count += 1
        self.consecutive_failures += 1

        self.last_error = ErrorEvent(
            timestamp=datetime.now(),
            source=self.name,
            error_type=type(error).__name__,
            message=str(error),
            traceback=''.join(traceback.format_exception(type(error), error, error.__traceback__))
        )

        if self.error_rate > 0.5:
            self.state = SourceState.UNHEALTHY
        elif self.error_rate > 0.2:
            self.state = SourceState.DEGRADED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'error_count': self.error_count,
            'success_count': self.success_count,
            'consecutive_failures': self.consecutive_failures,
            'last_error': self.last_error.to_dict() if self.last_error else None,
            'last_success': self.last_success.isoformat() if self.last_success else None
        }
