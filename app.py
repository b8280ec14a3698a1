"""
Trading Bot Control API
=======================

Thin HTTP adapter over the decision engine:
- Health and status reporting
- Start/stop the bot with a strategy
- Tick ingestion from an external price feed
- Portfolio, positions, trades and indicator snapshots

Execution intents produced by a tick are also pushed to Socket.IO clients
as ``intents`` events.
"""

import argparse
import logging
from datetime import datetime

import pandas as pd
from flask import Flask, jsonify, request
from flask_socketio import SocketIO, emit

from tradebot import TradingEngine, EngineConfig, StrategyFactory, setup_logging
from tradebot.errors import ERROR_TYPES, TradingError, ValidationError

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def _status_code(result) -> int:
    if result.success:
        return 200
    if getattr(result, 'failures', None):
        return 500
    error_cls = ERROR_TYPES.get(result.error or "")
    return error_cls("").status_code if error_cls else 409


def _parse_float(data: dict, key: str, default=None) -> float:
    value = data.get(key, default)
    if value is None:
        raise ValidationError(f"Missing {key}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {key}: {value!r}")


def create_app(engine: TradingEngine = None, config: EngineConfig = None) -> Flask:
    """Create the Flask app bound to one engine."""
    if engine is None:
        engine = TradingEngine(config or EngineConfig.from_env())

    app = Flask(__name__)
    app.config['ENGINE'] = engine
    socketio = SocketIO(app, cors_allowed_origins="*")
    started = datetime.now()

    @app.errorhandler(TradingError)
    def handle_trading_error(e):
        return jsonify({'error': e.message}), e.status_code

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({
            'error': 'Not found',
            'path': request.path,
            'method': request.method,
            'timestamp': datetime.now().isoformat()
        }), 404

    @app.route('/health')
    @app.route('/api/health')
    def health_check():
        """Health check endpoint."""
        status = engine.get_status()
        kill_switch = status['monitoring']['kill_switch_triggered']
        return jsonify({
            'status': 'degraded' if kill_switch else 'healthy',
            'version': VERSION,
            'uptime': int((datetime.now() - started).total_seconds()),
            'bot': {
                'is_running': status['running'],
                'strategies': [s['strategy'] for s in status['strategies']],
                'started_at': status['started_at']
            },
            'timestamp': datetime.now().isoformat()
        })

    @app.route('/api/status')
    def get_status():
        """Basic status endpoint."""
        return jsonify({
            'message': 'Backend is running',
            'version': VERSION,
            'timestamp': datetime.now().isoformat()
        })

    @app.route('/api/bot/status')
    def get_bot_status():
        """Engine, strategy and portfolio status."""
        status = engine.get_status()
        strategies = [
            engine.get_strategy_status(s['symbol'], s['strategy'])
            for s in status['strategies']
        ]
        return jsonify({
            'status': 'running' if status['running'] else 'ready',
            'engine': status,
            'strategy_status': strategies,
            'portfolio': engine.get_portfolio_summary(),
            'timestamp': datetime.now().isoformat()
        })

    @app.route('/api/bot/start', methods=['POST'])
    def start_bot():
        """Register a strategy (if given) and start ticking."""
        data = request.get_json(silent=True) or {}
        strategy = data.get('strategy')
        symbol = data.get('symbol') or engine.config.default_symbol
        options = data.get('options') or {}

        if strategy is None and not engine.states:
            return jsonify({'error': 'Missing strategy'}), 400

        if strategy is not None:
            if strategy not in StrategyFactory.get_available_strategies():
                return jsonify({
                    'error': 'Invalid strategy',
                    'available_strategies': StrategyFactory.get_available_strategies()
                }), 400
            if (symbol, StrategyFactory.resolve_type(strategy)) not in engine.states:
                engine.register(symbol, strategy, options)

        result = engine.start()
        if not result.success:
            return jsonify(result.to_dict()), _status_code(result)

        socketio.emit('status', {'running': True})
        return jsonify({
            'success': True,
            'message': f"Bot started with {strategy} strategy on {symbol}" if strategy else 'Bot started',
            'strategy': strategy,
            'symbol': symbol,
            'options': options,
            'timestamp': datetime.now().isoformat()
        })

    @app.route('/api/bot/stop', methods=['POST'])
    def stop_bot():
        """Stop before the next tick evaluation."""
        engine.stop()
        socketio.emit('status', {'running': False})
        return jsonify({
            'success': True,
            'message': 'Bot stopped successfully',
            'timestamp': datetime.now().isoformat()
        })

    @app.route('/api/tick', methods=['POST'])
    def post_tick():
        """Ingest one price/volume tick."""
        data = request.get_json(silent=True) or {}
        symbol = data.get('symbol') or engine.config.default_symbol
        price = _parse_float(data, 'price')
        volume = _parse_float(data, 'volume', 0.0)

        timestamp = data.get('timestamp')
        if timestamp is not None:
            try:
                timestamp = pd.Timestamp(timestamp)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid timestamp: {timestamp!r}")

        result = engine.on_tick(symbol, price, volume, timestamp)
        payload = result.to_dict()
        if result.intents:
            socketio.emit('intents', payload)
        return jsonify(payload), _status_code(result)

    @app.route('/api/portfolio')
    def get_portfolio():
        """Risk manager portfolio summary."""
        return jsonify({
            'portfolio': engine.get_portfolio_summary(),
            'open_positions': engine.get_active_positions(),
            'trade_history': engine.get_trade_history(20)
        })

    @app.route('/api/positions')
    def get_positions():
        return jsonify({'positions': engine.get_active_positions()})

    @app.route('/api/trades')
    def get_trades():
        limit = request.args.get('limit', type=int)
        return jsonify({'trades': engine.get_trade_history(limit)})

    @app.route('/api/analysis/<symbol>')
    def get_analysis(symbol):
        """Indicator snapshot and aggregated signal for a symbol."""
        analysis = engine.get_technical_analysis(symbol)
        if analysis is None:
            return jsonify({'symbol': symbol, 'analysis': None, 'message': 'No samples yet'})
        return jsonify({'symbol': symbol, 'analysis': analysis})

    # ═══════════════════════════════════════════════════════════════
    # SOCKET.IO EVENTS
    # ═══════════════════════════════════════════════════════════════

    @socketio.on('connect')
    def handle_connect():
        """Send the current engine status to a new client."""
        logger.info(f"Client connected at {datetime.now()}")
        emit('status', engine.get_status())

    @socketio.on('request_update')
    def handle_update_request():
        """Send portfolio and positions on request."""
        emit('portfolio', {
            'portfolio': engine.get_portfolio_summary(),
            'open_positions': engine.get_active_positions()
        })

    return app


def main():
    """Run the control API."""
    parser = argparse.ArgumentParser(description='Trading Bot Control API')
    parser.add_argument('--host', type=str, help='Bind address')
    parser.add_argument('--port', type=int, help='Port')
    parser.add_argument('--config', type=str, help='Path to config file')
    parser.add_argument('--debug', action='store_true', help='Flask debug mode')

    args = parser.parse_args()

    config = EngineConfig.load(args.config) if args.config else EngineConfig()
    config = EngineConfig.from_env(base=config)
    setup_logging(config.monitoring)

    host = args.host or config.api.host
    port = args.port or config.api.port

    app = create_app(config=config)
    socketio = app.extensions['socketio']

    logger.info(f"Starting trading bot API at http://{host}:{port}")
    socketio.run(app, host=host, port=port, debug=args.debug or config.api.debug,
                 allow_unsafe_werkzeug=True)


if __name__ == '__main__':
    main()
