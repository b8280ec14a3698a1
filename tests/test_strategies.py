"""
Strategy Test
=============
"""
import pytest

from tradebot.alpha import Signal, SignalDirection
from tradebot.config import MomentumConfig, MarketMakingConfig, DipBuyConfig
from tradebot.errors import ValidationError
from tradebot.risk import RiskManager, ExitReason
from tradebot.strategies import (
    StrategyFactory,
    StrategyType,
    StrategyState,
    IntentAction,
    MomentumStrategy,
    MarketMakingStrategy,
    DipBuyStrategy
)


class StubAggregator:
    """Returns a fixed signal regardless of the indicators."""

    def __init__(self, direction=SignalDirection.NEUTRAL, confidence=0.0):
        self.signal = Signal(overall_signal=direction, confidence=confidence)

    def set(self, direction, confidence=1.0):
        self.signal = Signal(overall_signal=direction, confidence=confidence)

    def evaluate(self, analysis):
        return self.signal


def feed(strategy, ticks):
    intents = []
    for tick in ticks:
        price, volume = tick if isinstance(tick, tuple) else (tick, 1000.0)
        intents.extend(strategy.process_tick(price, volume))
    return intents


@pytest.fixture
def rm():
    return RiskManager()


class TestMomentum:
    """Momentum: FLAT -> LONG -> FLAT"""

    @pytest.fixture
    def aggregator(self):
        return StubAggregator(SignalDirection.BUY, 1.0)

    @pytest.fixture
    def strategy(self, rm, aggregator):
        return MomentumStrategy("SOL", rm, MomentumConfig(lookback_period=3), aggregator=aggregator)

    def test_entry(self, strategy, rm):
        intents = feed(strategy, [(100, 1000), (101, 1000), (104, 3000)])

        assert len(intents) == 1
        intent = intents[0]
        assert intent.action is IntentAction.OPEN
        assert intent.reason == 'momentum_entry'
        assert intent.position_id in rm.positions
        assert strategy.state is StrategyState.LONG
        assert strategy.balance == pytest.approx(rm.current_balance)
        assert strategy.position == pytest.approx(intent.size)

    def test_no_entry_before_window_full(self, strategy):
        assert feed(strategy, [(100, 1000), (110, 5000)]) == []
        assert strategy.calculate_momentum() == 0

    def test_no_entry_without_volume_spike(self, strategy):
        assert feed(strategy, [(100, 1000), (101, 1000), (104, 1000)]) == []

    def test_no_entry_without_confident_buy(self, strategy, aggregator):
        aggregator.set(SignalDirection.BUY, 0.3)
        assert feed(strategy, [(100, 1000), (101, 1000), (104, 3000)]) == []

        aggregator.set(SignalDirection.NEUTRAL, 1.0)
        assert feed(strategy, [(108, 9000)]) == []

    def test_exit_on_sell_signal(self, strategy, aggregator, rm):
        opened = feed(strategy, [(100, 1000), (101, 1000), (104, 3000)])[0]
        aggregator.set(SignalDirection.SELL, 1.0)

        intents = feed(strategy, [105])
        assert len(intents) == 1
        assert intents[0].action is IntentAction.CLOSE
        assert intents[0].position_id == opened.position_id
        assert intents[0].reason == 'momentum_signal'
        assert strategy.state is StrategyState.FLAT
        assert strategy.position == 0
        assert strategy.balance == pytest.approx(rm.current_balance)

    def test_exit_on_reversal(self, strategy, aggregator):
        feed(strategy, [(100, 1000), (101, 1000), (104, 3000)])
        aggregator.set(SignalDirection.NEUTRAL, 0.0)

        # (100 - 104) / 104 < -2% while the stop at 98.8 holds
        intents = feed(strategy, [102, 100])
        assert [i.reason for i in intents] == ['momentum_signal']

    def test_stop_loss_is_reported(self, strategy, aggregator, rm):
        feed(strategy, [(100, 1000), (101, 1000), (104, 3000)])
        aggregator.set(SignalDirection.NEUTRAL, 0.0)

        intents = feed(strategy, [90])
        assert len(intents) == 1
        assert intents[0].action is IntentAction.CLOSE
        assert intents[0].reason == ExitReason.STOP_LOSS
        assert strategy.state is StrategyState.FLAT
        assert strategy.trades[-1].trade_type == 'sell'
        assert strategy.trades[-1].pnl < 0
        assert rm.positions == {}

    def test_external_close_is_reconciled(self, strategy, aggregator, rm):
        opened = feed(strategy, [(100, 1000), (101, 1000), (104, 3000)])[0]
        aggregator.set(SignalDirection.NEUTRAL, 0.0)
        rm.close_position(opened.position_id, 104)

        intents = feed(strategy, [104])
        assert [i.reason for i in intents] == [ExitReason.MANUAL]
        assert strategy.open_position_ids == []

    def test_refused_entry_records_reason(self, aggregator):
        rm = RiskManager()
        rm.portfolio.current_balance = 7000  # 30% drawdown
        strategy = MomentumStrategy("SOL", rm, MomentumConfig(lookback_period=3), aggregator=aggregator)

        assert feed(strategy, [(100, 1000), (101, 1000), (104, 3000)]) == []
        assert 'drawdown' in strategy.last_rejection
        assert strategy.state is StrategyState.FLAT

    def test_volume_ratio(self, rm):
        strategy = MomentumStrategy("SOL", rm, MomentumConfig(lookback_period=3))
        assert strategy.calculate_volume_ratio() == 1.0

        strategy.update(100, 0)
        strategy.update(100, 0)
        strategy.update(100, 50)
        assert strategy.calculate_volume_ratio() == 0.0

    def test_status(self, strategy):
        feed(strategy, [(100, 1000), (101, 1000), (104, 3000)])
        status = strategy.get_status()

        assert status['strategy'] == 'momentum'
        assert status['state'] == 'long'
        assert status['momentum'] == pytest.approx(0.04)
        assert status['signal']['overall_signal'] == 'buy'
        assert status['risk_metrics']['active_positions'] == 1


class TestDipBuy:
    """Dip-buy: FLAT -> HOLDING -> FLAT"""

    @pytest.fixture
    def strategy(self, rm):
        return DipBuyStrategy("SOL", rm, DipBuyConfig())

    def test_buys_dip(self, strategy, rm):
        intents = feed(strategy, [100, 100, 100, 100, 94])

        assert len(intents) == 1
        assert intents[0].action is IntentAction.OPEN
        assert intents[0].reason == 'dip'
        assert strategy.state is StrategyState.HOLDING
        assert strategy.dip_buys == 1
        assert strategy.trades[0].trade_type == 'dip_buy'
        # 20% of balance requested, capped at 10% by the risk manager
        assert rm.positions[intents[0].position_id].value == pytest.approx(1000)

    def test_shallow_dip_ignored(self, strategy):
        assert feed(strategy, [100, 100, 100, 100, 96]) == []
        assert strategy.current_dip() == pytest.approx(0.04)

    def test_needs_min_samples(self, strategy):
        assert feed(strategy, [100, 90]) == []

    def test_sells_on_recovery(self, strategy, rm):
        feed(strategy, [100, 100, 100, 100, 94])
        intents = feed(strategy, [95])

        assert len(intents) == 1
        assert intents[0].action is IntentAction.CLOSE
        assert intents[0].reason == 'recovery'
        assert strategy.state is StrategyState.FLAT
        assert strategy.recovery_sells == 1
        assert strategy.trades[-1].trade_type == 'recovery_sell'
        assert strategy.trades[-1].pnl == pytest.approx((95 - 94) * strategy.trades[0].size)
        assert strategy.balance == pytest.approx(rm.current_balance)

    def test_no_recovery_when_flat(self, strategy):
        feed(strategy, [100, 100, 100, 100, 100])
        assert strategy.should_sell_recovery() is False

    def test_stop_loss_then_rebuy(self, strategy, rm):
        feed(strategy, [100, 100, 100, 100, 94])
        intents = feed(strategy, [89])

        assert [i.action for i in intents] == [IntentAction.CLOSE, IntentAction.OPEN]
        assert intents[0].reason == ExitReason.STOP_LOSS
        assert strategy.dip_buys == 2
        assert len(rm.positions) == 1

    def test_status(self, strategy):
        feed(strategy, [100, 100, 100, 100, 94])
        status = strategy.get_status()
        assert status['state'] == 'holding'
        assert status['recent_high'] == 100
        assert status['current_dip'] == pytest.approx(6)


class TestMarketMaking:
    """Two-sided quoting"""

    @pytest.fixture
    def strategy(self, rm):
        config = MarketMakingConfig(spread_percentage=0.01, order_size=1.0, max_orders=2)
        return MarketMakingStrategy("SOL", rm, config)

    def test_quotes(self, strategy):
        feed(strategy, [100])
        assert strategy.buy_quote == pytest.approx(99)
        assert strategy.sell_quote == pytest.approx(101)
        assert len(strategy.buy_orders) == 1
        assert strategy.sell_orders == []
        assert strategy.state is StrategyState.QUOTING

    def test_round_trip_profit(self, strategy, rm):
        assert feed(strategy, [100]) == []

        buys = feed(strategy, [98])
        assert [(i.action, i.price) for i in buys] == [(IntentAction.OPEN, pytest.approx(99))]
        assert strategy.position == pytest.approx(1)
        assert strategy.balance == pytest.approx(10000 - 99)

        feed(strategy, [103])
        sells = feed(strategy, [105])
        sell_price = 103 * 1.01
        assert [(i.action, i.price) for i in sells] == [(IntentAction.CLOSE, pytest.approx(sell_price))]
        assert strategy.position == 0
        assert strategy.profits == pytest.approx(sell_price - 99)
        assert strategy.balance == pytest.approx(10000 - 99 + sell_price)

        # Quotes never touch the shared ledger
        assert rm.current_balance == rm.initial_balance
        assert rm.positions == {}

    def test_no_sell_quote_without_inventory(self, strategy):
        feed(strategy, [100, 101, 102])
        assert strategy.sell_orders == []
        assert strategy.position == 0

    def test_max_orders(self, strategy):
        feed(strategy, [100, 101, 102, 103])
        assert len(strategy.buy_orders) == 2

    def test_buy_quotes_gated_by_risk_manager(self, strategy, rm):
        rm.portfolio.current_balance = 7000
        feed(strategy, [100])
        assert strategy.buy_orders == []
        assert strategy.last_rejection == 'Maximum drawdown reached'

    def test_status(self, strategy):
        feed(strategy, [100])
        status = strategy.get_status()
        assert status['strategy'] == 'market_making'
        assert status['buy_orders'] == 1
        assert status['spread'] == 0.01


class TestFactory:
    """StrategyFactory"""

    @pytest.mark.parametrize("name,cls", [
        ('momentum', MomentumStrategy),
        ('market_making', MarketMakingStrategy),
        ('dip_buy', DipBuyStrategy),
        (StrategyType.DIP_BUY, DipBuyStrategy),
    ])
    def test_create(self, rm, name, cls):
        strategy = StrategyFactory.create_strategy(name, "SOL", rm)
        assert isinstance(strategy, cls)
        assert strategy.symbol == "SOL"
        assert strategy.risk_manager is rm

    def test_options_override_config(self, rm):
        base = DipBuyConfig(min_samples=3)
        strategy = StrategyFactory.create_strategy('dip_buy', "SOL", rm,
                                                   options={'dip_threshold': 0.1}, config=base)
        assert strategy.config.dip_threshold == 0.1
        assert strategy.config.min_samples == 3
        assert base.dip_threshold == 0.05

    def test_unknown_option(self, rm):
        with pytest.raises(ValidationError):
            StrategyFactory.create_strategy('momentum', "SOL", rm, options={'leverage': 5})

    def test_unknown_type(self, rm):
        with pytest.raises(ValidationError, match="Unknown strategy type"):
            StrategyFactory.create_strategy('arbitrage', "SOL", rm)

    def test_available(self):
        assert StrategyFactory.get_available_strategies() == ['momentum', 'market_making', 'dip_buy']


class TestIntents:
    """ExecutionIntent serialization"""

    def test_to_dict(self, rm):
        strategy = DipBuyStrategy("SOL", rm)
        intent = feed(strategy, [100, 100, 100, 100, 94])[0]

        data = intent.to_dict()
        assert data['action'] == 'open'
        assert data['symbol'] == 'SOL'
        assert data['strategy'] == 'dip_buy'
        assert data['position_id'] == intent.position_id

        trade = strategy.get_trades()[0]
        assert trade['type'] == 'dip_buy'
        assert trade['dip_percentage'] == pytest.approx(6)
