from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional
from dotenv import load_dotenv
import yaml
import os


class ConfigError(Exception):
    """Raised when the configuration file or environment is invalid"""
    pass


@dataclass
class SafetyParameters:
    """Candidate validation thresholds"""
    min_liquidity_usd: float = 1000.0     # Pool reserve in USD
    min_market_cap_usd: float = 4000.0    # FDV in USD
    min_tx_count_m5: int = 2              # Buys + sells over the last 5 minutes
    min_momentum_ratio: float = 0.0       # volume_m5 / liquidity, 0 disables the gate
    max_risk_score: float = 1500.0        # External score above this is rejected
    risk_score_timeout: float = 3.0       # Seconds
    authority_retry_attempts: int = 3
    authority_retry_delay: float = 0.35   # Seconds between mint account reads
    max_pool_age_minutes: float = 60.0    # Older pools are ignored by the listener


@dataclass
class RiskParameters:
    """Sizing and exit parameters"""
    entry_size_pct: float = 0.10          # Fraction of balance per entry
    min_entry_sol: float = 0.001          # Floor to avoid dust trades
    capital_sol: Optional[float] = None   # Caps the balance used for sizing
    max_positions: int = 5                # Open + pending positions
    slippage_bps: int = 2000
    initial_stop_loss_pct: float = 0.25
    trailing_stop_pct: float = 0.20
    trailing_enabled: bool = True
    take_profit_mode: str = 'fixed'       # 'fixed' sells part at the threshold, 'dynamic' only trails
    partial_take_profit_pct: float = 1.00  # +100% from entry
    partial_exit_fraction: float = 0.5
    rebound_stop_loss_pct: float = 0.025
    max_hold_time_minutes: Optional[float] = 30.0


@dataclass
class StrategyConfig:
    """Re-entry after a stop-out"""
    rebound_enabled: bool = False
    candle_timeframe_seconds: int = 60
    max_candles: int = 50
    rsi_period: int = 14
    rsi_oversold: float = 30.0
    min_candles: int = 3


@dataclass
class ExecutionParameters:
    strategy: str = 'routed'              # 'routed' (aggregator) or 'bonding_curve'
    dry_run: bool = False
    tip_lamports: int = 100_000           # 0.0001 SOL
    priority_fee_microlamports: int = 350_000
    compute_unit_limit: int = 150_000
    curve_min_output_pct: int = 50
    curve_max_cost_pct: int = 120
    request_timeout: float = 10.0


@dataclass
class Endpoints:
    rpc_urls: List[str] = field(default_factory=lambda: ['https://api.mainnet-beta.solana.com'])
    relay_urls: List[str] = field(default_factory=lambda: [
        'https://amsterdam.mainnet.block-engine.jito.wtf/api/v1/bundles',
        'https://frankfurt.mainnet.block-engine.jito.wtf/api/v1/bundles',
        'https://ny.mainnet.block-engine.jito.wtf/api/v1/bundles',
        'https://tokyo.mainnet.block-engine.jito.wtf/api/v1/bundles',
    ])
    jupiter_quote_api: str = 'https://quote-api.jup.ag/v6'
    jupiter_price_api: str = 'https://price.jup.ag/v6/price'
    rugcheck_api: str = 'https://api.rugcheck.xyz/v1/tokens'
    new_pools_api: str = 'https://api.geckoterminal.com/api/v2/networks/solana/new_pools'


@dataclass
class Intervals:
    price_check_interval: float = 2.0     # Seconds
    signal_intake_interval: float = 3.0   # Seconds


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# env var -> (section attribute, field name, converter)
ENV_OVERRIDES = {
    'RPC_ENDPOINTS': ('endpoints', 'rpc_urls', _split_list),
    'JITO_BLOCK_ENGINE_URLS': ('endpoints', 'relay_urls', _split_list),
    'MIN_LIQUIDITY_USD': ('safety', 'min_liquidity_usd', float),
    'MIN_MARKET_CAP_USD': ('safety', 'min_market_cap_usd', float),
    'MIN_TX_COUNT_M5': ('safety', 'min_tx_count_m5', int),
    'MAX_RISK_SCORE': ('safety', 'max_risk_score', float),
    'ENTRY_SIZE_PCT': ('risk', 'entry_size_pct', float),
    'INITIAL_STOP_LOSS_PCT': ('risk', 'initial_stop_loss_pct', float),
    'TRAILING_STOP_PCT': ('risk', 'trailing_stop_pct', float),
    'PARTIAL_TAKE_PROFIT_PCT': ('risk', 'partial_take_profit_pct', float),
    'PRICE_CHECK_INTERVAL': ('intervals', 'price_check_interval', float),
    'SIGNAL_INTAKE_INTERVAL': ('intervals', 'signal_intake_interval', float),
    'DRY_RUN': ('execution', 'dry_run', _parse_bool),
    'EXECUTION_STRATEGY': ('execution', 'strategy', str),
    'REBOUND_ENABLED': ('strategy', 'rebound_enabled', _parse_bool),
}

SECTIONS = {
    'safety': SafetyParameters,
    'risk': RiskParameters,
    'strategy': StrategyConfig,
    'execution': ExecutionParameters,
    'endpoints': Endpoints,
    'intervals': Intervals,
}


class Config:
    def __init__(self, config_path: str = "config.yaml", env: Optional[Dict[str, str]] = None):
        self.safety = SafetyParameters()
        self.risk = RiskParameters()
        self.strategy = StrategyConfig()
        self.execution = ExecutionParameters()
        self.endpoints = Endpoints()
        self.intervals = Intervals()
        self.secret_key: Optional[str] = None

        if os.path.exists(config_path):
            self.load_config(config_path)

        if env is None:
            load_dotenv()
            env = dict(os.environ)
        self.apply_env(env)
        self.validate()

    def __repr__(self) -> str:
        # secret_key stays out of logs
        parts = ', '.join(f"{name}={getattr(self, name)!r}" for name in SECTIONS)
        return f"Config({parts})"

    def load_config(self, config_path: str):
        """Load configuration from YAML file"""
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

        if not isinstance(config_data, dict):
            raise ConfigError(f"{config_path} must contain a mapping of sections")
        unknown = set(config_data) - set(SECTIONS)
        if unknown:
            raise ConfigError(f"Unknown configuration sections: {sorted(unknown)}")

        for section, section_cls in SECTIONS.items():
            if section in config_data:
                setattr(self, section, self._build_section(section_cls, config_data[section]))

    @staticmethod
    def _build_section(section_cls, values: Dict[str, Any]):
        known = {f.name for f in fields(section_cls)}
        unknown = set(values or {}) - known
        if unknown:
            raise ConfigError(f"Unknown {section_cls.__name__} options: {sorted(unknown)}")
        return section_cls(**(values or {}))

    def apply_env(self, env: Dict[str, str]):
        """Environment variables take precedence over the YAML file"""
        if not env.get('RPC_ENDPOINTS') and env.get('RPC_URL'):
            self.endpoints.rpc_urls = _split_list(env['RPC_URL'])

        for key, (section, name, convert) in ENV_OVERRIDES.items():
            raw = env.get(key)
            if raw is None or raw.strip() == '':
                continue
            try:
                setattr(getattr(self, section), name, convert(raw))
            except ValueError as e:
                raise ConfigError(f"Invalid value for {key}: {raw!r}") from e

        self.secret_key = env.get('PRIVATE_KEY') or None

    def validate(self):
        if not self.endpoints.rpc_urls:
            raise ConfigError("At least one RPC endpoint is required")
        if not self.endpoints.relay_urls:
            raise ConfigError("At least one priority relay endpoint is required")
        if self.execution.strategy not in ('routed', 'bonding_curve'):
            raise ConfigError(f"Unknown execution strategy: {self.execution.strategy}")
        if self.risk.take_profit_mode not in ('fixed', 'dynamic'):
            raise ConfigError(f"Unknown take profit mode: {self.risk.take_profit_mode}")
        if not 0 < self.risk.entry_size_pct <= 1:
            raise ConfigError("entry_size_pct must be within (0, 1]")
        for name in ('initial_stop_loss_pct', 'trailing_stop_pct', 'rebound_stop_loss_pct'):
            if not 0 < getattr(self.risk, name) < 1:
                raise ConfigError(f"{name} must be within (0, 1)")
        if not 0 < self.risk.partial_exit_fraction <= 1:
            raise ConfigError("partial_exit_fraction must be within (0, 1]")
        if self.risk.partial_take_profit_pct <= 0:
            raise ConfigError("partial_take_profit_pct must be positive")
