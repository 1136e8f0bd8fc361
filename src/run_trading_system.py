import asyncio
import signal
import sys
from core.position_tracker import PositionStateMachine, PositionStore
from core.trading_system import TradingSystem
from core.types import sol_to_lamports
from data.new_pool_feed import NewPoolFeed
from data.price_feed import PriceFeed
from data.risk_score_feed import RiskScoreFeed
from execution.bonding_curve import BondingCurveReader
from execution.dry_run_executor import DryRunExecutor, DryRunWallet
from execution.jito_relay import JitoRelay
from execution.jupiter_client import JupiterClient
from execution.trade_executor import TradeExecutor
from execution.wallet import Wallet, WalletError
from risk.position_sizer import PositionSizer
from risk.safety_validator import SafetyValidator
from utils.config import Config, ConfigError
from utils.connection_manager import ConnectionManager
from utils.logger import TradingLogger

DRY_RUN_CAPITAL_SOL = 1.0


def build_trading_system(config: Config, logger: TradingLogger) -> TradingSystem:
    """Wire collaborators from configuration; raises WalletError without a usable key"""
    connection = ConnectionManager(config.endpoints.rpc_urls, logger)
    timeout = config.execution.request_timeout

    if config.execution.dry_run:
        wallet = DryRunWallet(sol_to_lamports(config.risk.capital_sol or DRY_RUN_CAPITAL_SOL))
        executor = DryRunExecutor(logger, wallet)
    else:
        wallet = Wallet.from_secret(config.secret_key, connection, logger)
        executor = TradeExecutor(
            wallet=wallet,
            jupiter=JupiterClient(config.endpoints.jupiter_quote_api, logger, timeout=timeout),
            relay=JitoRelay(config.endpoints.relay_urls, logger, timeout=timeout),
            curve_reader=BondingCurveReader(connection, logger),
            params=config.execution,
            logger=logger,
            slippage_bps=config.risk.slippage_bps,
        )

    validator = SafetyValidator(
        safety_params=config.safety,
        connection=connection,
        score_feed=RiskScoreFeed(config.endpoints.rugcheck_api, logger, timeout=config.safety.risk_score_timeout),
        logger=logger,
    )
    state_machine = PositionStateMachine(config.risk, config.strategy, logger, PositionStore())

    return TradingSystem(
        config=config,
        state_machine=state_machine,
        validator=validator,
        sizer=PositionSizer(config.risk),
        executor=executor,
        wallet=wallet,
        pool_feed=NewPoolFeed(
            config.endpoints.new_pools_api,
            logger,
            max_pool_age_minutes=config.safety.max_pool_age_minutes,
            timeout=timeout,
        ),
        price_feed=PriceFeed(config.endpoints.jupiter_price_api, logger),
        logger=logger,
    )


class InitTradingSystem:
    def __init__(self, logger: TradingLogger = None):
        self.trading_bot = None
        self.logger = logger
        self._shutdown_event = asyncio.Event()

    def handle_shutdown(self, signum, frame):
        """Handle shutdown signals"""
        self.logger.info(f"Received signal {signum}. Starting graceful shutdown...")
        self._shutdown_event.set()

    def handle_loop_exception(self, loop, context):
        """Unhandled task errors are logged, never fatal"""
        exception = context.get('exception')
        self.logger.error(f"Unhandled error in event loop: {context.get('message')} {exception!r}")

    async def run_trading_system(self, config: Config) -> None:
        """Run trading system with graceful shutdown"""
        asyncio.get_running_loop().set_exception_handler(self.handle_loop_exception)
        self.trading_bot = build_trading_system(config, self.logger)

        try:
            await self.trading_bot.start()
            self.logger.info("Trading system started successfully")
            await self._shutdown_event.wait()
            self.logger.info("Shutdown requested, initiating shutdown sequence")
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Gracefully shutdown the trading system"""
        if self.trading_bot is None:
            return
        self.logger.info("Shutting down trading system...")
        shutdown_timeout = 5
        try:
            await asyncio.wait_for(self.trading_bot.stop(), timeout=shutdown_timeout)
        except asyncio.TimeoutError:
            self.logger.error(f"Shutdown timed out after {shutdown_timeout} seconds")
        finally:
            self.trading_bot = None


async def main():
    logger = TradingLogger("sniper", console_output=True)

    try:
        config = Config()
    except ConfigError as e:
        logger.critical(f"Invalid configuration: {e}")
        sys.exit(1)

    init_system = InitTradingSystem(logger)

    # Register signal handlers
    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, init_system.handle_shutdown)

    try:
        logger.info("Starting trading system...")
        await init_system.run_trading_system(config)
    except WalletError as e:
        logger.critical(f"Wallet unavailable: {e}")
        sys.exit(1)
    finally:
        logger.info("Trading system shutdown complete")


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
