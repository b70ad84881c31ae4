# main.py
"""Main entry point for the autotrader execution core."""
import asyncio
import os
import signal
import sys
import logging
from pathlib import Path

from dotenv import load_dotenv

from autotrader.agent import JsonlSignalSource, PriceRecordingSource, TradingAgent
from autotrader.config.settings import Settings
from autotrader.events import EventBus
from autotrader.exchange import ExchangeClient, PaperExchangeClient
from autotrader.exchange.alpaca_client import AlpacaCryptoClient
from autotrader.execution import OrderManager
from autotrader.journal import EventJournal
from autotrader.portfolio import PortfolioManager
from autotrader.risk import RiskManager, RiskState


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='[%(asctime)s] %(levelname)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

CONFIG_PATH = Path("config/settings.yaml")


def validate_env_vars() -> None:
    """Validate exchange credentials are set for live trading.

    Raises:
        SystemExit: If any required env var is missing.
    """
    required_vars = [
        "ALPACA_API_KEY",
        "ALPACA_SECRET_KEY",
    ]

    missing = [var for var in required_vars if not os.getenv(var)]

    if missing:
        logger.error(f"Missing required environment variables: {', '.join(missing)}")
        logger.error("Please check your .env file")
        sys.exit(1)


def create_data_dirs(settings: Settings) -> None:
    """Create required data directories if they don't exist."""
    dirs = [
        Path(settings.journal.data_dir),
        Path(settings.trading.signal_file).parent,
    ]

    for dir_path in dirs:
        dir_path.mkdir(parents=True, exist_ok=True)

    logger.info("Data directories verified")


def print_startup_banner(settings: Settings) -> None:
    """Print system startup banner."""
    logger.info("=" * 60)
    logger.info(f"Starting {settings.system.name}")
    logger.info(f"Mode: {settings.system.mode}")
    logger.info(f"Version: {settings.system.version}")
    logger.info(f"Pairs: {', '.join(settings.trading.pairs)}")
    logger.info("=" * 60)


def load_and_validate_config(config_path: Path = CONFIG_PATH) -> Settings:
    """Load and validate configuration.

    Returns:
        Settings object loaded from YAML.

    Raises:
        SystemExit: If config file missing, env vars invalid, or YAML parsing fails.
    """
    # Load environment variables
    load_dotenv()
    logger.info("✓ Loaded environment variables")

    if not config_path.exists():
        logger.error(f"{config_path} not found")
        sys.exit(1)

    try:
        settings = Settings.from_yaml(config_path)
        logger.info(f"✓ Settings loaded from {config_path}")
    except Exception as e:
        logger.error(f"Failed to parse {config_path}: {e}")
        sys.exit(1)

    if not settings.execution.paper_mode:
        validate_env_vars()
        logger.info("✓ Environment variables validated")

    create_data_dirs(settings)

    return settings


async def initialize_exchange(settings: Settings) -> ExchangeClient:
    """Initialize the exchange client (simulated in paper mode).

    Raises:
        SystemExit: If the live exchange connection fails.
    """
    if settings.execution.paper_mode:
        exchange = PaperExchangeClient(lot_rules=settings.execution.to_lot_rules())
        logger.info("✓ Paper exchange initialized")
        return exchange

    try:
        client = AlpacaCryptoClient(
            api_key=settings.alpaca.api_key,
            secret_key=settings.alpaca.secret_key,
            paper=settings.alpaca.paper,
        )
        await client.connect()

        account = await client.get_account()
        logger.info(
            f"✓ Alpaca connected (Paper mode: {settings.alpaca.paper}, "
            f"Cash: ${account['cash']:,.2f})"
        )
    except Exception as e:
        logger.error(f"Failed to connect to Alpaca: {e}")
        logger.error("Check ALPACA_API_KEY and ALPACA_SECRET_KEY in .env")
        sys.exit(1)

    return client


def initialize_components(settings: Settings, exchange: ExchangeClient) -> dict:
    """Wire risk, execution, portfolio, events and agent.

    Returns:
        Dict with: event_bus, risk_manager, order_manager, portfolio, journal, agent.
    """
    lot_rules = settings.execution.to_lot_rules()
    event_bus = EventBus()

    journal = EventJournal(settings=settings.journal, event_bus=event_bus) if settings.journal.enabled else None
    if journal:
        logger.info(f"✓ EventJournal initialized ({settings.journal.data_dir})")

    risk_state = RiskState(initial_capital=settings.trading.initial_capital)
    risk_manager = RiskManager(
        limits=settings.risk.to_limits(),
        state=risk_state,
        lot_rules=lot_rules,
        correlations=settings.risk.correlations,
        avg_win=settings.risk.default_avg_win,
        avg_loss=settings.risk.default_avg_loss,
        base_trade_size=settings.risk.base_trade_size,
        stop_loss_percent=settings.risk.stop_loss_percent,
        max_take_profit_percent=settings.risk.max_take_profit_percent,
    )
    logger.info("✓ RiskManager initialized")

    order_manager = OrderManager(
        exchange=exchange,
        risk_manager=risk_manager,
        event_bus=event_bus,
        lot_rules=lot_rules,
        order_timeout_seconds=settings.execution.order_timeout_seconds,
        stop_limit_offset=settings.execution.stop_limit_offset,
    )
    order_manager.set_trade_execution_enabled(settings.execution.enabled)
    logger.info("✓ OrderManager initialized")

    portfolio = PortfolioManager(
        exchange=exchange,
        initial_capital=settings.trading.initial_capital,
        lot_rules=lot_rules,
        metrics_interval_seconds=settings.execution.metrics_interval_seconds,
        order_timeout_seconds=settings.execution.order_timeout_seconds,
    )
    logger.info("✓ PortfolioManager initialized")

    signal_source = JsonlSignalSource(settings.trading.signal_file)
    if isinstance(exchange, PaperExchangeClient):
        signal_source = PriceRecordingSource(signal_source, exchange.set_price)

    agent = TradingAgent(
        risk_manager=risk_manager,
        order_manager=order_manager,
        portfolio=portfolio,
        settings=settings.agent,
        event_bus=event_bus,
        signal_source=signal_source,
    )
    logger.info(f"✓ TradingAgent initialized (signals from {settings.trading.signal_file})")

    return {
        "event_bus": event_bus,
        "risk_manager": risk_manager,
        "order_manager": order_manager,
        "portfolio": portfolio,
        "journal": journal,
        "agent": agent,
    }


async def main() -> None:
    settings = load_and_validate_config()
    print_startup_banner(settings)

    exchange = await initialize_exchange(settings)
    components = initialize_components(settings, exchange)
    agent: TradingAgent = components["agent"]
    journal: EventJournal | None = components["journal"]

    agent.log_configuration()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, agent.stop)
        except NotImplementedError:
            # Signal handlers are unavailable on some platforms
            pass

    journal_task = asyncio.create_task(journal.run()) if journal else None

    try:
        await agent.run()
    finally:
        if journal_task:
            await journal.drain()
            journal_task.cancel()
            try:
                await journal_task
            except asyncio.CancelledError:
                pass
        if isinstance(exchange, AlpacaCryptoClient):
            await exchange.disconnect()

        stats = components["order_manager"].get_trading_stats()
        logger.info(
            f"Shutdown complete: {stats.total_orders} orders, "
            f"{stats.filled_orders} filled, success rate {stats.success_rate}%"
        )


if __name__ == "__main__":
    asyncio.run(main())
