"""
Example: Running the Trading Decision Engine
============================================

This example feeds a synthetic price path through the engine and through
the individual components.
"""

import logging
import numpy as np

from tradebot import (
    TradingEngine,
    EngineConfig,
    TechnicalAnalysisEngine,
    SignalAggregator,
    RiskManager,
    setup_logging
)


def synthetic_ticks(n: int = 120, start_price: float = 100.0, seed: int = 7):
    """Random-walk prices with occasional volume spikes."""
    rng = np.random.default_rng(seed)
    prices = start_price * np.cumprod(1 + rng.normal(0.001, 0.02, n))
    volumes = rng.uniform(800, 1200, n)
    volumes[rng.random(n) < 0.1] *= 3
    return list(zip(prices.tolist(), volumes.tolist()))


def example_engine():
    """
    Example: Engine with all three strategies on one symbol
    """
    print("\n" + "="*60)
    print("ENGINE EXAMPLE")
    print("="*60 + "\n")

    config = EngineConfig()
    config.risk.initial_balance = 10000

    engine = TradingEngine(config)
    for strategy in ('momentum', 'market_making', 'dip_buy'):
        engine.register('SOL', strategy)
    engine.start()

    for i, (price, volume) in enumerate(synthetic_ticks()):
        result = engine.on_tick('SOL', price, volume)
        for intent in result.intents:
            print(f"Tick {i+1:3d}: {intent.strategy:13s} {intent.action.value:5s} "
                  f"{intent.size:.4f} @ {intent.price:.2f} ({intent.reason})")

    summary = engine.get_portfolio_summary()
    print(f"\nBalance: {summary['current_balance']:,.2f}")
    print(f"Exposure: {summary['total_exposure']:,.2f} ({summary['exposure_percentage']:.1f}%)")
    print(f"Realized P&L: {summary['realized_pnl']:,.2f}")
    print(f"Trades: {summary['total_trades']}  Win rate: {summary['win_rate']:.1f}%")

    for state in engine.states.values():
        status = state.strategy.get_status()
        print(f"{status['strategy']:13s} state={status['state']:8s} "
              f"balance={status['balance']:,.2f} position={status['position']:.4f} "
              f"trades={status['trades']}")


def example_components():
    """
    Example: Using Individual Components
    """
    print("\n" + "="*60)
    print("COMPONENTS EXAMPLE")
    print("="*60 + "\n")

    # 1. Technical analysis
    analysis = TechnicalAnalysisEngine('SOL')
    for price, volume in synthetic_ticks(60):
        analysis.add_sample(price, volume)

    snapshot = analysis.get_technical_analysis()
    print(f"1. {snapshot.sample_count} samples, last price {snapshot.current_price:.2f}")
    print(f"   SMA(20): {snapshot.sma_short:.2f}  RSI: {snapshot.rsi:.1f}")
    print(f"   MACD: {snapshot.macd.macd:.3f}  BB: {snapshot.bollinger_bands.lower:.2f} - "
          f"{snapshot.bollinger_bands.upper:.2f}")

    # 2. Signals
    signal = SignalAggregator().aggregate(snapshot)
    print(f"\n2. Signal: {signal.overall_signal.value} (confidence {signal.confidence:.2f})")
    print(f"   Buy reasons: {signal.buy_reasons}")
    print(f"   Sell reasons: {signal.sell_reasons}")

    # 3. Risk
    risk = RiskManager()
    sizing = risk.calculate_position_size(100, 95)
    print(f"\n3. Size for 100/95 stop: {sizing.position_size:.2f} "
          f"(value {sizing.position_value:,.2f}, limited={sizing.is_limited})")

    opened = risk.open_position('SOL', 100, 95, strategy_tag='example')
    closed = risk.close_position(opened.position.id, 110)
    print(f"   Round trip P&L: {closed.pnl:,.2f}, balance {closed.new_balance:,.2f}")


if __name__ == "__main__":
    setup_logging()
    logging.getLogger('tradebot').setLevel(logging.WARNING)

    example_components()
    example_engine()
