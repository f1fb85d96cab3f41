"""Unit tests for the currency cache."""

from src.core.currency_cache import CurrencyCache, CurrencyCacheConfig
from tests.conftest import FakeClock


class TestCurrencyCache:
    """Tests for CurrencyCache."""

    def test_miss_returns_none(self, currency_cache: CurrencyCache) -> None:
        """Test that an empty cache reports a miss."""
        assert currency_cache.get("shop_currency") is None
        assert currency_cache.get_fresh("shop_currency") is None

    def test_fresh_hit(self, currency_cache: CurrencyCache, clock: FakeClock) -> None:
        """Test that a value within the TTL is fresh."""
        currency_cache.set("shop_currency", "EUR")
        clock.advance(3599)

        lookup = currency_cache.get("shop_currency")
        assert lookup is not None
        assert lookup.value == "EUR"
        assert lookup.fresh is True
        assert currency_cache.get_fresh("shop_currency") == "EUR"

    def test_expired_entry_is_kept_as_stale(self, currency_cache: CurrencyCache, clock: FakeClock) -> None:
        """Test that an expired value is still returned, flagged stale."""
        currency_cache.set("shop_currency", "EUR")
        clock.advance(3600)

        lookup = currency_cache.get("shop_currency")
        assert lookup is not None
        assert lookup.value == "EUR"
        assert lookup.fresh is False
        assert lookup.age_seconds == 3600
        assert currency_cache.get_fresh("shop_currency") is None

    def test_keys_have_independent_timestamps(self, currency_cache: CurrencyCache, clock: FakeClock) -> None:
        """Test that each snapshot expires on its own clock."""
        currency_cache.set("shop_currency", "EUR")
        clock.advance(3000)
        currency_cache.set("enabled_currencies", ["EUR", "USD"])
        clock.advance(1000)

        assert currency_cache.get_fresh("shop_currency") is None
        assert currency_cache.get_fresh("enabled_currencies") == ["EUR", "USD"]

    def test_set_replaces_whole_entry(self, currency_cache: CurrencyCache, clock: FakeClock) -> None:
        """Test that the last write wins and resets the timestamp."""
        currency_cache.set("shop_currency", "EUR")
        clock.advance(4000)
        currency_cache.set("shop_currency", "USD")

        assert currency_cache.get_fresh("shop_currency") == "USD"

    def test_invalidate_single_key(self, currency_cache: CurrencyCache) -> None:
        """Test that invalidating one key leaves the other."""
        currency_cache.set("shop_currency", "EUR")
        currency_cache.set("enabled_currencies", ["EUR"])

        currency_cache.invalidate("shop_currency")

        assert currency_cache.get("shop_currency") is None
        assert currency_cache.get("enabled_currencies") is not None

    def test_invalidate_all(self, currency_cache: CurrencyCache) -> None:
        """Test that invalidating without a key clears everything."""
        currency_cache.set("shop_currency", "EUR")
        currency_cache.set("enabled_currencies", ["EUR"])

        currency_cache.invalidate()

        assert currency_cache.get("shop_currency") is None
        assert currency_cache.get("enabled_currencies") is None

    def test_stats(self, clock: FakeClock) -> None:
        """Test that stats report age and freshness per key."""
        cache = CurrencyCache(CurrencyCacheConfig(ttl_seconds=60), clock=clock)
        cache.set("shop_currency", "EUR")
        clock.advance(90)

        stats = cache.get_stats()

        assert stats["ttl_seconds"] == 60
        assert stats["shop_currency"] == {"age_seconds": 90.0, "fresh": False}
        assert stats["enabled_currencies"] is None
