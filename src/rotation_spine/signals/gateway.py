"""
SignalFetchGateway: one interface over every external data source.

Manifesto:
    Orchestrators ask for a *kind* of signal and get back normalized
    records; they never know which upstream served it.  Routing is an
    explicit table from :class:`SignalKind` to a concrete provider, built
    once from configuration.  An unmapped kind, or a provider asked for a
    kind it does not implement, is a :class:`UnsupportedProviderError`
    rather than a silent fallback.

    Every fetch is side-effect free on pipeline state, so the substrate
    may retry it freely.

Architecture:
    ::

        SignalRouter.fetch(kind, request)
            │
            ├── routes[kind] ──► StaticProvider  (datasets, replays, tests)
            │                ──► EdgarProvider   (issuer map, filings, submissions)
            │                ──► FinraProvider   (short interest, ATS weekly)
            │
            └── errors tagged with signal=kind, source_name=provider.name

Tags:
    gateway, provider, tagged-dispatch, signals, rotation-spine
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from rotation_spine.core.errors import RotationError, UnsupportedProviderError
from rotation_spine.core.logging import get_logger
from rotation_spine.core.settings import RotationSettings
from rotation_spine.signals.models import SignalKind

logger = get_logger(__name__)


@dataclass(frozen=True)
class SignalRequest:
    """Parameters of one fetch.  Providers read only the fields their kind needs."""

    ticker: str | None = None
    cik: str | None = None
    cusips: tuple[str, ...] = ()
    start: date | None = None
    end: date | None = None
    forms: tuple[str, ...] = ()
    cursor: str | None = None
    window_end: str | None = None
    limit: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class SignalProvider(Protocol):
    name: str
    supported_kinds: frozenset[SignalKind]

    def fetch(self, kind: SignalKind, request: SignalRequest) -> Any: ...


class ProviderKind(str, Enum):
    STATIC = "static"
    EDGAR = "edgar"
    FINRA = "finra"


class SignalRouter:
    """Routes each :class:`SignalKind` to exactly one provider."""

    def __init__(self, routes: Mapping[SignalKind, SignalProvider]):
        for kind, provider in routes.items():
            if kind not in provider.supported_kinds:
                raise UnsupportedProviderError(
                    f"{provider.name}:{kind.value}", [k.value for k in provider.supported_kinds]
                )
        self._routes = dict(routes)

    @property
    def kinds(self) -> list[SignalKind]:
        return sorted(self._routes, key=lambda k: k.value)

    def provider_for(self, kind: SignalKind) -> SignalProvider:
        provider = self._routes.get(kind)
        if provider is None:
            raise UnsupportedProviderError(kind.value, [k.value for k in self._routes])
        return provider

    def fetch(self, kind: SignalKind, request: SignalRequest) -> Any:
        provider = self.provider_for(kind)
        logger.debug("signal.fetch", signal=kind.value, provider=provider.name, ticker=request.ticker)
        try:
            return provider.fetch(kind, request)
        except RotationError as exc:
            exc.with_context(signal=kind.value, source_name=provider.name)
            raise


def create_provider(kind: ProviderKind | str, settings: RotationSettings, **kwargs: Any) -> SignalProvider:
    """Construct a provider by tag."""
    try:
        provider_kind = ProviderKind(kind)
    except ValueError as exc:
        raise UnsupportedProviderError(str(kind), [k.value for k in ProviderKind]) from exc

    if provider_kind is ProviderKind.STATIC:
        from rotation_spine.signals.static import StaticProvider

        dataset = kwargs.get("dataset")
        if dataset is not None:
            return StaticProvider.from_mapping(dataset)
        if settings.static_dataset_path:
            return StaticProvider.from_json(settings.static_dataset_path)
        return StaticProvider.from_mapping({})
    if provider_kind is ProviderKind.EDGAR:
        from rotation_spine.signals.edgar import EdgarProvider

        return EdgarProvider.from_settings(settings, client=kwargs.get("client"))
    from rotation_spine.signals.finra import FinraProvider

    return FinraProvider.from_settings(settings, client=kwargs.get("client"))


def build_gateway(
    settings: RotationSettings,
    *,
    providers: Mapping[str, SignalProvider] | None = None,
) -> SignalRouter:
    """Build the router described by ``settings.signal_routes``.

    *providers* may pre-supply instances by provider tag (tests, replays);
    missing tags are constructed with :func:`create_provider`, once each.
    """
    known = {k.value for k in SignalKind}
    for name in settings.signal_routes:
        if name not in known:
            raise UnsupportedProviderError(name, sorted(known))

    instances: dict[str, SignalProvider] = dict(providers or {})
    routes: dict[SignalKind, SignalProvider] = {}
    for kind in SignalKind:
        tag = settings.signal_routes.get(kind.value, settings.default_provider)
        if tag not in instances:
            instances[tag] = create_provider(tag, settings)
        routes[kind] = instances[tag]
    logger.info("gateway.built", routes={k.value: p.name for k, p in routes.items()})
    return SignalRouter(routes)


__all__ = [
    "SignalRequest",
    "SignalProvider",
    "ProviderKind",
    "SignalRouter",
    "create_provider",
    "build_gateway",
]
