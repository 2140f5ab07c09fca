"""Signal acquisition: normalized records, the fetch gateway, providers and the per-quarter aggregator.

Modules
-------
models      Frozen signal records and SignalKind
normalize   Row → record parsers
gateway     SignalRequest, SignalRouter, provider construction by tag
static      In-memory / JSON dataset provider
http        httpx plumbing and status classification
edgar       SEC EDGAR provider
finra       FINRA Query API provider
flows       Quarter flow derivations and SignalBundle reduction
aggregator  Concurrent per-sub-range fetch
"""
