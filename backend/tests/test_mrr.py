import random

from modules.analytics.mrr import compute_mrr_snapshots, mrr_by_customer
from modules.analytics.utils import add_months, normalized_mrr
from tests.factories import utc


def sub(customer_id, amount, start, end=None, interval="month", status="active", quantity=1):
    return {
        "stripe_customer_id": customer_id,
        "status": status,
        "plan_amount_cents": amount,
        "plan_interval": interval,
        "quantity": quantity,
        "started_at": start,
        "ended_at": end,
    }


def by_month(snapshots):
    return {s.snapshot_month: s for s in snapshots}


class TestScenarios:
    def test_new_customer_is_carried_not_recounted(self):
        snapshots = by_month(compute_mrr_snapshots("m1", [sub("cus_1", 2000, utc(2024, 1, 15))], now=utc(2024, 2, 10)))

        assert list(snapshots) == ["2024-01-01", "2024-02-01"]
        jan, feb = snapshots["2024-01-01"], snapshots["2024-02-01"]
        assert (jan.mrr_cents, jan.new_mrr_cents, jan.new_customers) == (2000, 2000, 1)
        assert (feb.mrr_cents, feb.new_mrr_cents, feb.new_customers) == (2000, 0, 0)
        assert jan.arr_cents == 24000

    def test_price_increase_is_expansion(self):
        subs = [
            sub("cus_1", 2000, utc(2024, 1, 15), end=utc(2024, 3, 1)),
            sub("cus_1", 3500, utc(2024, 3, 1)),
        ]
        march = by_month(compute_mrr_snapshots("m1", subs, now=utc(2024, 3, 20)))["2024-03-01"]

        assert march.mrr_cents == 3500
        assert march.expansion_mrr_cents == 1500
        assert march.new_mrr_cents == 0

    def test_cancellation_is_churn(self):
        subs = [
            sub("cus_1", 2000, utc(2024, 1, 15), end=utc(2024, 3, 1)),
            sub("cus_1", 3500, utc(2024, 3, 1), end=utc(2024, 4, 1), status="canceled"),
            sub("cus_2", 1000, utc(2024, 2, 1)),
        ]
        april = by_month(compute_mrr_snapshots("m1", subs, now=utc(2024, 4, 15)))["2024-04-01"]

        assert april.churned_mrr_cents == 3500
        assert april.churned_customers == 1
        assert april.active_customers == 1
        assert april.mrr_cents == 1000

    def test_yearly_plan_is_normalized(self):
        assert normalized_mrr({"plan_amount_cents": 12000, "plan_interval": "year"}) == 1000
        snapshots = compute_mrr_snapshots("m1", [sub("cus_1", 12000, utc(2024, 1, 1), interval="year")], now=utc(2024, 1, 5))
        assert snapshots[0].mrr_cents == 1000


class TestClassification:
    def test_contraction(self):
        subs = [
            sub("cus_1", 5000, utc(2024, 1, 1), end=utc(2024, 2, 1)),
            sub("cus_1", 3000, utc(2024, 2, 1)),
        ]
        feb = by_month(compute_mrr_snapshots("m1", subs, now=utc(2024, 2, 2)))["2024-02-01"]
        assert feb.contraction_mrr_cents == 2000
        assert feb.expansion_mrr_cents == 0

    def test_lapsed_customer_starting_again_is_new(self):
        subs = [
            sub("cus_1", 2000, utc(2024, 1, 1), end=utc(2024, 2, 1)),
            sub("cus_1", 2500, utc(2024, 4, 1)),
        ]
        snapshots = by_month(compute_mrr_snapshots("m1", subs, now=utc(2024, 4, 10)))

        assert snapshots["2024-02-01"].churned_mrr_cents == 2000
        assert snapshots["2024-03-01"].mrr_cents == 0
        april = snapshots["2024-04-01"]
        assert april.new_mrr_cents == 2500
        assert april.new_customers == 1
        assert april.reactivation_mrr_cents == 0

    def test_incomplete_subscriptions_do_not_count(self):
        subs = [
            sub("cus_1", 2000, utc(2024, 1, 1)),
            sub("cus_2", 9900, utc(2024, 1, 1), status="incomplete"),
            sub("cus_3", 9900, utc(2024, 1, 1), status="incomplete_expired"),
        ]
        jan = compute_mrr_snapshots("m1", subs, now=utc(2024, 1, 31))[0]
        assert jan.mrr_cents == 2000
        assert jan.active_customers == 1

    def test_multiple_subscriptions_per_customer_are_summed(self):
        subs = [
            sub("cus_1", 2000, utc(2024, 1, 1), quantity=2),
            sub("cus_1", 1200, utc(2024, 1, 1), interval="year"),
        ]
        jan = compute_mrr_snapshots("m1", subs, now=utc(2024, 1, 31))[0]
        assert jan.mrr_cents == 4100
        assert jan.active_customers == 1

    def test_no_started_subscriptions(self):
        assert compute_mrr_snapshots("m1", [], now=utc(2024, 1, 1)) == []
        assert compute_mrr_snapshots("m1", [sub("cus_1", 100, None)], now=utc(2024, 1, 1)) == []


class TestInvariants:
    def test_accounting_identity_holds_every_month(self):
        subs = [
            sub("a", 2000, utc(2023, 11, 3), end=utc(2024, 2, 10)),
            sub("a", 4000, utc(2024, 2, 10)),
            sub("b", 1500, utc(2023, 12, 1), end=utc(2024, 1, 20)),
            sub("b", 1500, utc(2024, 4, 2)),
            sub("c", 9900, utc(2024, 1, 5), interval="year"),
            sub("d", 3000, utc(2024, 2, 1), end=utc(2024, 5, 1)),
            sub("d", 1000, utc(2024, 5, 1)),
        ]
        snapshots = compute_mrr_snapshots("m1", subs, now=utc(2024, 6, 15))

        previous = 0
        for snap in snapshots:
            expected = (
                previous
                + snap.new_mrr_cents
                + snap.expansion_mrr_cents
                + snap.reactivation_mrr_cents
                - snap.contraction_mrr_cents
                - snap.churned_mrr_cents
            )
            assert snap.mrr_cents == expected, snap.snapshot_month
            assert snap.arr_cents == snap.mrr_cents * 12
            previous = snap.mrr_cents

    def test_months_are_contiguous_and_ordered(self):
        snapshots = compute_mrr_snapshots("m1", [sub("a", 100, utc(2023, 11, 20))], now=utc(2024, 2, 1))
        assert [s.snapshot_month for s in snapshots] == ["2023-11-01", "2023-12-01", "2024-01-01", "2024-02-01"]

    def test_churned_customers_were_active_the_month_before(self):
        rng = random.Random(7)
        subs = []
        for i in range(25):
            start = utc(2023, rng.randint(1, 12), rng.randint(1, 28))
            months = rng.randint(1, 14)
            end = add_months(start, months) if rng.random() < 0.7 else None
            subs.append(sub(f"cus_{i % 12}", rng.choice([900, 2000, 4900]), start, end=end,
                            interval=rng.choice(["month", "year"])))
        snapshots = compute_mrr_snapshots("m1", subs, now=utc(2024, 12, 1))

        previous = set()
        for snap in snapshots:
            month = utc(*map(int, snap.snapshot_month.split("-")))
            current = set(mrr_by_customer(subs, month, add_months(month, 1)))
            assert snap.churned_customers == len(previous - current), snap.snapshot_month
            assert snap.churned_customers <= len(previous)
            assert snap.active_customers == len(current)
            assert snap.new_customers <= len(current - previous)
            previous = current
