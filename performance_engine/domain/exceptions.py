"""
Domain exceptions for the performance engine.

Missing baselines are not errors (the day's return is 0). Everything else the
engine can fail on is one of these.
"""

from datetime import date
from typing import Optional


class PerformanceEngineError(Exception):
    """Base class for engine errors"""


class RateLookupExhaustedError(PerformanceEngineError):
    """No exchange rate found after walking back the allowed number of days"""

    def __init__(self, currency: str, target_date: date, attempts: int):
        self.currency = currency
        self.target_date = target_date
        self.attempts = attempts
        super().__init__(
            f"No {currency} rate found on or before {target_date.isoformat()} "
            f"after {attempts} attempts"
        )


class CashFlowMismatchError(PerformanceEngineError):
    """Entity cash flow disagrees with the sum of its asset cash flows"""

    def __init__(self, scope_key: str, record_date: date, currency: str, stored: float, expected: float):
        self.scope_key = scope_key
        self.record_date = record_date
        self.currency = currency
        self.stored = stored
        self.expected = expected
        super().__init__(
            f"{scope_key} {record_date.isoformat()} {currency}: totalCashFlow {stored:.2f} "
            f"!= sum of asset cash flows {expected:.2f}"
        )


class MalformedRecordError(PerformanceEngineError):
    """A required numeric field is missing or not a number"""

    def __init__(self, scope_key: str, record_date: Optional[date], field: str, detail: str = ""):
        self.scope_key = scope_key
        self.record_date = record_date
        self.field = field
        when = record_date.isoformat() if record_date else "?"
        message = f"Malformed record {scope_key} {when}: field '{field}'"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
