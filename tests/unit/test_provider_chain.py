"""Unit tests for ProviderChain."""

import pytest

from cachecore.framework.provider_chain import ProviderChain, ProviderResult


def provider(name, result=None, error=None, calls=None):
    async def call(keys):
        if calls is not None:
            calls.append((name, list(keys)))
        if error is not None:
            raise error
        return result

    call.provider_name = name
    return call


def lookup(name, value=None, error=None, calls=None):
    async def call():
        if calls is not None:
            calls.append(name)
        if error is not None:
            raise error
        return value

    call.provider_name = name
    return call


class TestProviderChain:
    """Test ProviderChain resolution order and fallbacks."""

    @pytest.mark.asyncio
    async def test_first_failure_falls_through_to_second(self):
        calls = []
        second_map = {"a": 1.0, "b": None}
        chain = ProviderChain([
            provider("p1", ProviderResult.failed(["a", "b"]), calls=calls),
            provider("p2", ProviderResult(succeeded=True, values=second_map), calls=calls),
        ])

        result = await chain.resolve(["a", "b"])

        assert result.succeeded
        assert result.values == {"a": 1.0, "b": None}
        assert [name for name, _ in calls] == ["p1", "p2"]

    @pytest.mark.asyncio
    async def test_exception_counts_as_failure(self, metrics):
        chain = ProviderChain(
            [
                provider("broken", error=RuntimeError("boom")),
                provider("ok", ProviderResult(succeeded=True, values={"a": 2.0})),
            ],
            metrics=metrics,
        )

        result = await chain.resolve(["a"])

        assert result.values == {"a": 2.0}
        assert metrics.provider_failures.labels(provider="broken")._value.get() == 1

    @pytest.mark.asyncio
    async def test_success_with_nulls_is_authoritative(self):
        """Later providers are not consulted to fill gaps."""
        calls = []
        chain = ProviderChain([
            provider("p1", ProviderResult(succeeded=True, values={"a": None}), calls=calls),
            provider("p2", ProviderResult(succeeded=True, values={"a": 5.0}), calls=calls),
        ])

        result = await chain.resolve(["a"])

        assert result.values == {"a": None}
        assert [name for name, _ in calls] == ["p1"]

    @pytest.mark.asyncio
    async def test_all_fail_returns_nulls(self):
        chain = ProviderChain([
            provider("p1", error=ConnectionError("down")),
            provider("p2", ProviderResult.failed(["a", "b"])),
        ])

        result = await chain.resolve(["a", "b", "a"])

        assert not result.succeeded
        assert result.values == {"a": None, "b": None}

    @pytest.mark.asyncio
    async def test_keys_are_deduplicated_in_order(self):
        calls = []
        chain = ProviderChain([provider("p1", ProviderResult(succeeded=True, values={}), calls=calls)])

        await chain.resolve(["b", "a", "b"])

        assert calls == [("p1", ["b", "a"])]

    @pytest.mark.asyncio
    async def test_designated_key_secondary_lookup(self):
        lookups = []
        chain = ProviderChain(
            [provider("p1", ProviderResult(succeeded=True, values={"ao": None, "x": 1.0}))],
            designated_key="ao",
            secondary_lookups=[
                lookup("s1", error=RuntimeError("rate limited"), calls=lookups),
                lookup("s2", value=None, calls=lookups),
                lookup("s3", value=9.5, calls=lookups),
                lookup("s4", value=1.0, calls=lookups),
            ],
        )

        result = await chain.resolve(["ao", "x"])

        assert result.values == {"ao": 9.5, "x": 1.0}
        assert lookups == ["s1", "s2", "s3"]

    @pytest.mark.asyncio
    async def test_designated_key_skipped_when_present(self):
        lookups = []
        chain = ProviderChain(
            [provider("p1", ProviderResult(succeeded=True, values={"ao": 3.0}))],
            designated_key="ao",
            secondary_lookups=[lookup("s1", value=1.0, calls=lookups)],
        )

        result = await chain.resolve(["ao"])

        assert result.values == {"ao": 3.0}
        assert lookups == []

    @pytest.mark.asyncio
    async def test_designated_key_not_requested(self):
        lookups = []
        chain = ProviderChain(
            [provider("p1", ProviderResult(succeeded=True, values={"x": None}))],
            designated_key="ao",
            secondary_lookups=[lookup("s1", value=1.0, calls=lookups)],
        )

        result = await chain.resolve(["x"])

        assert result.values == {"x": None}
        assert lookups == []

    @pytest.mark.asyncio
    async def test_secondary_not_used_when_chain_fails(self):
        lookups = []
        chain = ProviderChain(
            [provider("p1", ProviderResult.failed(["ao"]))],
            designated_key="ao",
            secondary_lookups=[lookup("s1", value=1.0, calls=lookups)],
        )

        result = await chain.resolve(["ao"])

        assert not result.succeeded
        assert result.values == {"ao": None}
        assert lookups == []
