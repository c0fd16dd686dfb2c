"""Revenue and status statistics over all subscriptions."""

from typing import Optional

from subscription_lifecycle.config import get_config
from subscription_lifecycle.logging_config import get_logger
from subscription_lifecycle.models import Currency, CurrencyConfig, SubscriptionStats, SubscriptionStatus
from subscription_lifecycle.repositories.subscription_store import SubscriptionStore, get_subscription_store

logger = get_logger(__name__)

# statuses whose amount was actually collected
REVENUE_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.EXPIRED,
    SubscriptionStatus.CANCELLED,
)


class StatsAggregator:
    """Computes SubscriptionStats from a full scan of the store.

    The unified total converts USD at a fixed configured rate and is for
    display only.
    """

    def __init__(
        self,
        subscription_store: Optional[SubscriptionStore] = None,
        currency_settings: Optional[CurrencyConfig] = None,
    ):
        self.store = subscription_store if subscription_store is not None else get_subscription_store()
        if currency_settings is None:
            currency_settings = get_config().currency_settings
        self.currency_settings = currency_settings

    def _to_unified(self, currency: Currency, amount: int) -> float:
        unified = self.currency_settings.unified_currency
        rate = self.currency_settings.usd_to_ksh_rate
        if currency == unified:
            return float(amount)
        if currency == Currency.USD and unified == Currency.KSH:
            return amount * rate
        return amount / rate

    def compute_stats(self) -> SubscriptionStats:
        subscriptions = self.store.scan()

        revenue = {currency: 0 for currency in Currency}
        counts = {status: 0 for status in SubscriptionStatus}
        for subscription in subscriptions:
            counts[subscription.status] += 1
            if subscription.status in REVENUE_STATUSES:
                revenue[subscription.currency] += subscription.amount

        unified_total = sum(self._to_unified(c, amount) for c, amount in revenue.items())

        stats = SubscriptionStats(
            total_revenue_by_currency=revenue,
            unified_total=unified_total,
            unified_currency=self.currency_settings.unified_currency,
            active_count=counts[SubscriptionStatus.ACTIVE],
            expired_count=counts[SubscriptionStatus.EXPIRED],
            pending_count=counts[SubscriptionStatus.PENDING],
            cancelled_count=counts[SubscriptionStatus.CANCELLED],
            failed_count=counts[SubscriptionStatus.FAILED],
            total_subscriptions=len(subscriptions),
        )
        logger.debug("subscription_stats_computed", total=stats.total_subscriptions, unified_total=unified_total)
        return stats
