from typing import Optional
import asyncio
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID
from construct import ConstructError
from core.types import MintAccount, SafetyReason, SafetyVerdict, TokenSignal
from data.risk_score_feed import RiskScoreFeed
from utils.config import SafetyParameters
from utils.connection_manager import ConnectionManager
from utils.logger import TradingLogger
from utils.retry import RetryPolicy


class AccountNotFoundError(Exception):
    """Raised when the RPC node has no data for an account"""
    pass


class SafetyValidator:
    """
    Fail-closed candidate validation.

    Runs the financial-metrics filter, the external risk score and the
    on-chain authority check in that order; the first failing check decides
    the verdict. Anything that cannot be positively confirmed is a rejection.
    """

    def __init__(self,
                 safety_params: SafetyParameters,
                 connection: ConnectionManager,
                 score_feed: Optional[RiskScoreFeed],
                 logger: TradingLogger,
                 retry_policy: Optional[RetryPolicy] = None):
        self.params = safety_params
        self.connection = connection
        self.score_feed = score_feed
        self.logger = logger
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=safety_params.authority_retry_attempts,
            delay=safety_params.authority_retry_delay,
        )

    async def validate(self, signal: TokenSignal) -> SafetyVerdict:
        verdict = self.check_market_metrics(signal)
        if not verdict.is_safe:
            return verdict

        verdict = await self.check_risk_score(signal.mint)
        if verdict is not None and not verdict.is_safe:
            return verdict

        verdict = await self.check_authorities(signal.mint)
        if verdict.is_safe:
            self.logger.info(f"Risk: {signal.name} ({signal.mint}) validated")
        return verdict

    def check_market_metrics(self, signal: TokenSignal) -> SafetyVerdict:
        params = self.params
        if signal.liquidity < params.min_liquidity_usd:
            return self._reject(signal, SafetyReason.FINANCIAL_METRICS_FAIL, f"liquidity too low (${signal.liquidity:.0f})")
        if signal.market_cap < params.min_market_cap_usd:
            return self._reject(signal, SafetyReason.FINANCIAL_METRICS_FAIL, f"market cap too low (${signal.market_cap:.0f})")
        if signal.tx_count_m5 < params.min_tx_count_m5:
            return self._reject(signal, SafetyReason.FINANCIAL_METRICS_FAIL, f"only {signal.tx_count_m5} tx in 5m")

        momentum_ratio = signal.volume_m5 / signal.liquidity if signal.liquidity > 0 else 0.0
        if params.min_momentum_ratio > 0 and momentum_ratio < params.min_momentum_ratio:
            return self._reject(signal, SafetyReason.FINANCIAL_METRICS_FAIL, f"momentum ratio {momentum_ratio:.2f}")

        self.logger.info(
            f"Risk: metrics ok for {signal.name} | MC ${signal.market_cap:.0f} | "
            f"Liq ${signal.liquidity:.0f} | momentum {momentum_ratio:.2f}"
        )
        return SafetyVerdict.accept()

    async def check_risk_score(self, mint: str) -> Optional[SafetyVerdict]:
        """Rejection on a bad score, None when the score is unavailable"""
        if self.score_feed is None:
            return None

        try:
            score = await asyncio.wait_for(self.score_feed.get_score(mint), timeout=self.params.risk_score_timeout)
        except asyncio.TimeoutError:
            score = None

        if score is None:
            self.logger.warning(f"Risk: score inconclusive for {mint}, relying on on-chain check")
            return None

        self.logger.info(f"Risk: score {score:.0f} for {mint}")
        if score > self.params.max_risk_score:
            self.logger.warning(f"Risk: {mint} rejected, score {score:.0f} > {self.params.max_risk_score:.0f}")
            return SafetyVerdict.reject(SafetyReason.EXTERNAL_SCORE_FAIL, f"score {score:.0f}")
        return SafetyVerdict.accept(f"score {score:.0f}")

    async def check_authorities(self, mint: str) -> SafetyVerdict:
        try:
            mint_pubkey = Pubkey.from_string(mint)
        except ValueError:
            return SafetyVerdict.reject(SafetyReason.INVALID_MINT, f"not a public key: {mint}")

        def on_retry(attempt: int, error: BaseException):
            self.logger.warning(f"Mint account read failed for {mint} (attempt {attempt}): {error}")
            self.connection.rotate()

        try:
            account = await self.retry_policy.run(self._fetch_mint_account, mint_pubkey, on_retry=on_retry)
        except Exception as e:
            self.logger.error(f"Risk: {mint} rejected, mint account unreadable: {e}")
            return SafetyVerdict.reject(SafetyReason.RPC_UNAVAILABLE, str(e))

        if account.owner not in (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID):
            return SafetyVerdict.reject(SafetyReason.INVALID_MINT, f"owned by {account.owner}")

        try:
            mint_info = MintAccount.from_buffer(account.data)
        except ConstructError as e:
            return SafetyVerdict.reject(SafetyReason.INVALID_MINT, f"unparseable mint data: {e}")

        if mint_info.mint_authority is not None or mint_info.freeze_authority is not None:
            self.logger.warning(
                f"Risk: {mint} rejected, mint authority={mint_info.mint_authority} "
                f"freeze authority={mint_info.freeze_authority}"
            )
            return SafetyVerdict.reject(SafetyReason.AUTHORITY_PRESENT, "mint or freeze authority set")

        return SafetyVerdict.accept("authorities revoked")

    async def _fetch_mint_account(self, mint_pubkey: Pubkey):
        response = await self.connection.client.get_account_info(mint_pubkey)
        if response.value is None or not response.value.data:
            raise AccountNotFoundError(f"account {mint_pubkey} not found")
        return response.value

    def _reject(self, signal: TokenSignal, reason: SafetyReason, detail: str) -> SafetyVerdict:
        self.logger.warning(f"Risk: {signal.name} ({signal.mint}) rejected, {detail}")
        return SafetyVerdict.reject(reason, detail)
