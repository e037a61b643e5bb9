"""Prometheus metrics."""

from prometheus_client import Counter, Histogram

# Ledger metrics
ledger_appends = Counter(
    "hudledger_ledger_appends_total",
    "Ledger entries appended",
    ["transaction_type"],
)

ledger_append_conflicts = Counter(
    "hudledger_ledger_append_conflicts_total",
    "Appends that lost the race to extend a chain",
)

ledger_append_duration = Histogram(
    "hudledger_ledger_append_duration_seconds",
    "Ledger append duration, retries included",
)

chain_verifications = Counter(
    "hudledger_chain_verifications_total",
    "Chain verifications run",
    ["result"],
)

integrity_violations = Counter(
    "hudledger_integrity_violations_total",
    "Hash or chain-link mismatches found",
    ["failure"],
)

period_closes = Counter(
    "hudledger_period_closes_total",
    "Accounting periods closed",
)

# Access gate metrics
access_decisions = Counter(
    "hudledger_access_decisions_total",
    "Access gate decisions",
    ["outcome", "reason"],
)
