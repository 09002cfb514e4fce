from trend_sweep.aggregator import aggregate
from trend_sweep.dedup import AlertDeduplicator
from trend_sweep.models import AlertState, Condition, TimeframeResult
from trend_sweep.state_store import AlertStateStore


def analysis_for(trend: Condition, baseline: Condition, symbol: str = "BTCUSDT"):
    tf = TimeframeResult(100.0, 100.0, trend, baseline)
    return aggregate(symbol, 100.0, {"1h": tf, "4h": tf})


ABOVE = analysis_for(Condition.ABOVE, Condition.ABOVE)
BELOW = analysis_for(Condition.BELOW, Condition.BELOW)
NEUTRAL = analysis_for(Condition.NONE, Condition.NONE)


class TestAlertDeduplicator:
    def test_first_observation_always_alerts(self):
        for analysis in (ABOVE, BELOW, NEUTRAL):
            dedup = AlertDeduplicator(AlertStateStore())
            assert dedup.should_alert("BTCUSDT", analysis)

    def test_identical_state_does_not_repeat(self):
        dedup = AlertDeduplicator(AlertStateStore())

        assert dedup.should_alert("BTCUSDT", ABOVE)
        assert not dedup.should_alert("BTCUSDT", ABOVE)
        assert not dedup.should_alert("BTCUSDT", ABOVE)

    def test_flip_alerts_again(self):
        dedup = AlertDeduplicator(AlertStateStore())

        dedup.should_alert("BTCUSDT", ABOVE)
        assert dedup.should_alert("BTCUSDT", NEUTRAL)
        assert dedup.should_alert("BTCUSDT", BELOW)
        assert not dedup.should_alert("BTCUSDT", BELOW)

    def test_symbols_are_independent(self):
        dedup = AlertDeduplicator(AlertStateStore())

        dedup.should_alert("BTCUSDT", ABOVE)
        assert dedup.should_alert("ETHUSDT", ABOVE)

    def test_store_replaced_whole(self):
        store = AlertStateStore()
        dedup = AlertDeduplicator(store)

        dedup.should_alert("BTCUSDT", ABOVE)
        assert store.get("BTCUSDT") == AlertState(above_all_both=True, below_all_both=False)
        dedup.should_alert("BTCUSDT", BELOW)
        assert store.get("BTCUSDT") == AlertState(above_all_both=False, below_all_both=True)
        assert store.get_stats()["writes"] == 2


class TestAlertTransition:
    def test_neutral_first_observation_is_not_delivered(self):
        transition = AlertDeduplicator(AlertStateStore()).observe("BTCUSDT", NEUTRAL)

        assert transition.changed
        assert transition.previous is None
        assert not transition.notify

    def test_entering_aligned_state_is_delivered(self):
        dedup = AlertDeduplicator(AlertStateStore())
        dedup.observe("BTCUSDT", NEUTRAL)

        assert dedup.observe("BTCUSDT", ABOVE).notify

    def test_leaving_aligned_state_is_delivered(self):
        dedup = AlertDeduplicator(AlertStateStore())
        dedup.observe("BTCUSDT", BELOW)

        transition = dedup.observe("BTCUSDT", NEUTRAL)

        assert transition.notify
        assert transition.previous.below_all_both

    def test_unchanged_aligned_state_is_not_delivered(self):
        dedup = AlertDeduplicator(AlertStateStore())
        dedup.observe("BTCUSDT", ABOVE)

        assert not dedup.observe("BTCUSDT", ABOVE).notify
