"""Ordered fallback across external data providers."""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, Iterable, List, Optional, Sequence, TypeVar

import structlog

from .metrics import MetricsCollector


logger = structlog.get_logger(__name__)

V = TypeVar("V")


@dataclass
class ProviderResult(Generic[V]):
    """Outcome of one provider call: success flag plus a value (or None) per key."""
    succeeded: bool
    values: Dict[str, Optional[V]] = field(default_factory=dict)

    @classmethod
    def failed(cls, keys: Iterable[str]) -> "ProviderResult[V]":
        return cls(succeeded=False, values={key: None for key in keys})


Provider = Callable[[List[str]], Awaitable[ProviderResult]]
SecondaryLookup = Callable[[], Awaitable[Optional[Any]]]


def provider_name(provider: Callable) -> str:
    return getattr(provider, "provider_name", None) or getattr(provider, "__name__", repr(provider))


class ProviderChain:
    """
    Try providers strictly in order; the first that reports success wins.

    The winning provider's map is returned verbatim, nulls included: later
    providers are never consulted to fill gaps. The one exception is an
    optional designated key with its own secondary lookup chain, consulted
    only after a provider succeeded and only when that key came back null.

    ``resolve`` never raises. When every provider fails the result has
    ``succeeded=False`` and None for each requested key.
    """

    def __init__(
        self,
        providers: Sequence[Provider],
        designated_key: Optional[str] = None,
        secondary_lookups: Sequence[SecondaryLookup] = (),
        metrics: Optional[MetricsCollector] = None,
        name: str = "provider-chain",
    ):
        self.providers = list(providers)
        self.designated_key = designated_key
        self.secondary_lookups = list(secondary_lookups)
        self.metrics = metrics
        self.logger = structlog.get_logger(name)

    async def resolve(self, keys: Sequence[str], providers: Optional[Sequence[Provider]] = None) -> ProviderResult:
        """Resolve ``keys`` against ``providers`` (defaults to the chain's own)."""
        unique_keys = list(dict.fromkeys(keys))
        chain = list(providers) if providers is not None else self.providers

        for provider in chain:
            name = provider_name(provider)
            try:
                result = await provider(unique_keys)
            except Exception as e:
                self.logger.warning("Provider raised", provider=name, error=str(e))
                self._record_failure(name)
                continue

            if not result.succeeded:
                self.logger.info("Provider reported failure", provider=name)
                self._record_failure(name)
                continue

            values = dict(result.values)
            await self._fill_designated(unique_keys, values)
            self.logger.debug("Provider succeeded", provider=name, keys=len(unique_keys))
            return ProviderResult(succeeded=True, values=values)

        self.logger.error("All providers failed", providers=[provider_name(p) for p in chain])
        return ProviderResult.failed(unique_keys)

    async def _fill_designated(self, keys: List[str], values: Dict[str, Any]) -> None:
        key = self.designated_key
        if key is None or key not in keys or values.get(key) is not None:
            return

        for lookup in self.secondary_lookups:
            name = provider_name(lookup)
            try:
                value = await lookup()
            except Exception as e:
                self.logger.warning("Secondary lookup raised", provider=name, key=key, error=str(e))
                self._record_failure(name)
                continue
            if value:
                values[key] = value
                return
            self._record_failure(name)

    def _record_failure(self, name: str) -> None:
        if self.metrics:
            self.metrics.record_provider_failure(name)
