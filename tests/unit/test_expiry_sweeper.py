import asyncio

from wanderpaws.domain.models import SubscriptionStatus
from wanderpaws.services.expiry_sweeper import ExpirySweeper


def test_run_once_expires_lapsed_subscriptions(ledger, basic_plan, paid, clock):
    subscription = ledger.purchase("user-1", None, basic_plan.id, paid)
    clock.advance(days=31)

    expired = asyncio.run(ExpirySweeper(ledger).run_once())

    assert expired == 1
    assert ledger.get_subscription(subscription.id).status is SubscriptionStatus.expired


def test_disabled_sweeper_never_starts(ledger):
    sweeper = ExpirySweeper(ledger, interval_seconds=0)

    async def scenario():
        await sweeper.start()
        running = sweeper._task is not None
        await sweeper.stop()
        return running

    assert asyncio.run(scenario()) is False


def test_start_sweeps_then_stops_cleanly(ledger, basic_plan, paid, clock):
    subscription = ledger.purchase("user-1", None, basic_plan.id, paid)
    clock.advance(days=31)
    sweeper = ExpirySweeper(ledger, interval_seconds=60)

    async def scenario():
        await sweeper.start()
        for _ in range(100):
            if ledger.get_subscription(subscription.id).status is SubscriptionStatus.expired:
                break
            await asyncio.sleep(0.01)
        await sweeper.stop()

    asyncio.run(scenario())

    assert sweeper._task is None
    assert ledger.get_subscription(subscription.id).status is SubscriptionStatus.expired
