"""
market.py - Stateful lending market

The LendingMarket class is the central state manager of the lending system.
It is the only module that mutates state, ensuring controlled and auditable changes.

Key responsibilities:
    - Implements the MarketView protocol for read-only access by pure handlers
    - Commits transactions atomically (transfers and record updates together)
    - Serializes operations on the same pool and position with locks
    - Detects stale snapshots (optimistic concurrency on pool/position records)
    - Tracks time and provides temporal operations (clone, clone_at)
    - Always validates and always logs
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import ExitStack, contextmanager
from datetime import datetime
from decimal import Decimal
import logging
import threading
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from .core import (
    # Types
    Asset, Move, Operation, PendingTransaction, PoolUpdate, PositionUpdate,
    Transaction, TransactionOrigin, ExecuteResult,
    # Constants
    SYSTEM_WALLET, MAX_AMOUNT, DEFAULT_MAX_PRICE_AGE_SECONDS,
    # Exceptions
    LendingError, ArithmeticOverflow, InsufficientBalance, PoolNotInitialized,
    PositionNotFound, StaleState, TransferRuleViolation, WalletNotRegistered,
    # Helper functions
    build_transaction, treasury_wallet,
)
from .accounts import Pool, Position, open_position, to_state_dict
from .health import HealthReport, assess_position, assets_to_price, fetch_prices
from .operations import transact
from .operations.common import load_pools
from .pricing_source import PriceOracle, StaticPriceOracle

logger = logging.getLogger(__name__)


class LendingMarket:
    """
    Collateralized lending market with full validation and audit trail.

    Implements the MarketView protocol, allowing the market to be passed to
    pure handlers that access only read-only methods.

    Design Principles:
        - Always validates: every transaction is checked for registered
          wallets, transfer decimals, balances and stale records before
          anything is applied.
        - Always logs: every committed transaction is recorded in the audit
          trail, enabling clone_at() for historical state reconstruction.

    Thread Safety:
        Entry points (deposit, withdraw, borrow, repay, liquidate, submit)
        hold one lock per touched pool, acquired in asset order, plus one
        lock per touched position while computing and committing. Operations
        on disjoint pools and positions run independently. commit() itself
        is serialized.

    Example:
        market = LendingMarket("main", oracle=oracle)
        market.init_pool(Asset.USDC, decimals=6, liquidation_threshold="0.8",
                         liquidation_close_factor="0.5", liquidation_bonus="0.05",
                         interest_rate="0")
        market.register_wallet("alice")
        market.issue("alice", Asset.USDC, 1_000_000)
        market.deposit("alice", Asset.USDC, 500_000)
    """

    def __init__(
        self,
        name: str,
        oracle: Optional[PriceOracle] = None,
        initial_time: Optional[datetime] = None,
        max_price_age_seconds: int = DEFAULT_MAX_PRICE_AGE_SECONDS,
        test_mode: bool = False,
    ):
        """
        Create a market.

        Args:
            name: Market identifier
            oracle: Price source (default: an empty StaticPriceOracle)
            initial_time: Starting time for the market (default: 1970-01-01)
            max_price_age_seconds: Maximum age of an oracle quote
            test_mode: Allow set_balance(), store_pool() and store_position()
        """
        if max_price_age_seconds < 0:
            raise ValueError(f"max_price_age_seconds cannot be negative, got {max_price_age_seconds}")
        self.name = name
        self.oracle: PriceOracle = oracle if oracle is not None else StaticPriceOracle()
        self.max_price_age_seconds = max_price_age_seconds
        self.balances: Dict[str, Dict[Asset, int]] = {}
        self.pools: Dict[Asset, Pool] = {}
        self.positions: Dict[str, Position] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._test_mode = test_mode
        self._next_sequence: int = 0
        self._init_locks()

        # Auto-register the system wallet (used for issuance)
        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(int)

    def _init_locks(self) -> None:
        self._pool_locks: Dict[Asset, threading.Lock] = {asset: threading.Lock() for asset in Asset}
        self._position_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._commit_lock = threading.RLock()

    # ========================================================================
    # MarketView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the market."""
        return self._current_time

    def now(self) -> datetime:
        """Clock interface: the market's logical time."""
        return self._current_time

    def get_balance(self, wallet_id: str, asset: Asset) -> int:
        """
        Get a wallet's balance of an asset.

        Raises:
            WalletNotRegistered: If wallet is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return self.balances[wallet_id].get(Asset.parse(asset), 0)

    def load_pool(self, asset: Asset) -> Pool:
        """
        Get the pool snapshot for an asset.

        Raises:
            PoolNotInitialized: If the pool has not been created
        """
        asset = Asset.parse(asset)
        if asset not in self.pools:
            raise PoolNotInitialized(f"Pool {asset.value} not initialized")
        return self.pools[asset]

    def load_position(self, user_id: str) -> Position:
        """
        Get a user's position snapshot.

        Raises:
            PositionNotFound: If the user has no position
        """
        if user_id not in self.positions:
            raise PositionNotFound(f"No position for {user_id}")
        return self.positions[user_id]

    def find_position(self, user_id: str) -> Optional[Position]:
        return self.positions.get(user_id)

    @property
    def next_sequence(self) -> int:
        """Sequence number the next committed transaction will receive."""
        return self._next_sequence

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_positions(self) -> List[str]:
        """List the users that hold a position."""
        return sorted(self.positions.keys())

    def get_position_state(self, user_id: str) -> Dict[str, Any]:
        """A user's position flattened into a plain dict."""
        return to_state_dict(self.load_position(user_id))

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    # ========================================================================
    # QUERIES
    # ========================================================================

    def health(self, user_id: str, asset: Asset) -> HealthReport:
        """
        Evaluate a user's health factor at the current time.

        Args:
            user_id: Position owner
            asset: Pool whose liquidation threshold applies

        Raises:
            PositionNotFound: If the user has no position
            StalePrice: If a required quote is missing or too old
        """
        threshold_pool = self.load_pool(asset)
        position = self.load_position(user_id)
        assets = assets_to_price(position)
        pools = load_pools(self, assets)
        prices = fetch_prices(self.oracle, assets, self.max_price_age_seconds, self._current_time)
        return assess_position(
            position, pools, prices, threshold_pool.liquidation_threshold, self._current_time
        )

    def verify_solvency(self) -> Dict[str, Any]:
        """
        Verify that pool totals agree with positions and treasuries.

        For every pool:
        - the deposit and borrow shares held by positions sum to the pool totals
        - the deposited and borrowed amounts of positions sum to the pool totals
        - the treasury holds at least total_deposits - total_borrowed

        Returns:
            Dict with keys:
            - 'valid': bool - True if every check holds
            - 'pools': Dict[str, Dict[str, int]] - Totals per pool
            - 'discrepancies': List[Dict] - Details of any violation
              Each discrepancy contains: pool, check, expected, actual

        Example:
            result = market.verify_solvency()
            assert result['valid'], f"Solvency violated: {result['discrepancies']}"
        """
        totals: Dict[str, Dict[str, int]] = {}
        discrepancies = []

        for asset in sorted(self.pools, key=lambda a: a.value):
            pool = self.pools[asset]
            legs = [self.positions[user].leg(asset) for user in sorted(self.positions)]
            treasury_balance = self.balances[treasury_wallet(asset)].get(asset, 0)
            totals[asset.value] = {
                'total_deposits': pool.total_deposits,
                'total_deposit_shares': pool.total_deposit_shares,
                'total_borrowed': pool.total_borrowed,
                'total_borrowed_shares': pool.total_borrowed_shares,
                'treasury_balance': treasury_balance,
            }

            checks = [
                ('total_deposits', pool.total_deposits,
                 sum(leg.deposited_amount for leg in legs)),
                ('total_deposit_shares', pool.total_deposit_shares,
                 sum(leg.deposited_shares for leg in legs)),
                ('total_borrowed', pool.total_borrowed,
                 sum(leg.borrowed_amount for leg in legs)),
                ('total_borrowed_shares', pool.total_borrowed_shares,
                 sum(leg.borrowed_shares for leg in legs)),
            ]
            for check, expected, actual in checks:
                if expected != actual:
                    discrepancies.append({
                        'pool': asset.value,
                        'check': check,
                        'expected': expected,
                        'actual': actual,
                    })

            required = pool.total_deposits - pool.total_borrowed
            if treasury_balance < required:
                discrepancies.append({
                    'pool': asset.value,
                    'check': 'treasury_balance',
                    'expected': required,
                    'actual': treasury_balance,
                })

        return {
            'valid': len(discrepancies) == 0,
            'pools': totals,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the market's logical clock to a new time.

        Time can only move forward, never backward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # SETUP (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If wallet is already registered
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("Wallet ID cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(int)
        return wallet_id

    def init_pool(
        self,
        asset: Asset,
        decimals: int,
        liquidation_threshold: Decimal,
        liquidation_close_factor: Decimal,
        liquidation_bonus: Decimal,
        interest_rate: Decimal,
    ) -> Transaction:
        """
        Create the pool for an asset with zero totals.

        Registers the pool's treasury wallet on first use. Risk parameters are
        fixed for the lifetime of the pool.

        Raises:
            ValueError: If the pool exists or a parameter is out of range
        """
        asset = Asset.parse(asset)
        if asset in self.pools:
            raise ValueError(f"Pool {asset.value} already initialized")
        pool = Pool(
            asset=asset,
            decimals=decimals,
            liquidation_threshold=liquidation_threshold,
            liquidation_close_factor=liquidation_close_factor,
            liquidation_bonus=liquidation_bonus,
            interest_rate=interest_rate,
        )
        treasury = treasury_wallet(asset)
        if treasury not in self.registered_wallets:
            self.register_wallet(treasury)

        pending = build_transaction(
            self, [], [PoolUpdate(None, pool)],
            origin=TransactionOrigin(Operation.INIT_POOL, SYSTEM_WALLET),
        )
        tx = self.commit(pending)
        logger.info(
            "Initialized %s pool: decimals=%d threshold=%s close_factor=%s bonus=%s rate=%s",
            asset.value, pool.decimals, pool.liquidation_threshold,
            pool.liquidation_close_factor, pool.liquidation_bonus, pool.interest_rate,
        )
        return tx

    def open_position(self, user_id: str) -> Transaction:
        """
        Open an empty position for a user.

        Deposit opens the position implicitly; this is for callers that want
        the record to exist beforehand.

        Raises:
            ValueError: If the user already has a position
        """
        with self._locked((), (user_id,)):
            if user_id in self.positions:
                raise ValueError(f"Position for {user_id} already exists")
            pending = build_transaction(
                self, [], [], [PositionUpdate(None, open_position(user_id, self._current_time))],
                origin=TransactionOrigin(Operation.OPEN_POSITION, user_id),
            )
            return self.commit(pending)

    def set_balance(self, wallet_id: str, asset: Asset, amount: int) -> None:
        """
        Set a wallet's balance directly.

        WARNING: This bypasses the transaction log and is only available in
        test mode. Use issue() or transfer() instead.

        Raises:
            LendingError: If called when test_mode is False
        """
        self._require_test_mode("set_balance")
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if isinstance(amount, bool) or not isinstance(amount, int) or not 0 <= amount <= MAX_AMOUNT:
            raise ValueError(f"Balance must be an int in [0, {MAX_AMOUNT}], got {amount!r}")
        self.balances[wallet_id][Asset.parse(asset)] = amount

    def store_pool(self, pool: Pool) -> None:
        """Replace a pool record outside a transaction (test mode only)."""
        self._require_test_mode("store_pool")
        self.pools[pool.asset] = pool

    def store_position(self, position: Position) -> None:
        """Replace a position record outside a transaction (test mode only)."""
        self._require_test_mode("store_position")
        self.positions[position.user_id] = position

    def _require_test_mode(self, method: str) -> None:
        if not self._test_mode:
            raise LendingError(
                f"{method}() is disabled in production mode. "
                "Use the market's operations to modify state. "
                "Set test_mode=True when creating LendingMarket for testing."
            )

    # ========================================================================
    # TRANSFERS
    # ========================================================================

    def transfer(self, from_wallet: str, to_wallet: str, asset: Asset, amount: int) -> Transaction:
        """
        Transfer tokens between wallets.

        Raises:
            InsufficientBalance: If from_wallet holds less than amount
            WalletNotRegistered: If either wallet is not registered
            PoolNotInitialized: If the asset has no pool (decimals unknown)
        """
        asset = Asset.parse(asset)
        pool = self.load_pool(asset)
        move = Move(
            quantity=amount,
            asset=asset,
            decimals=pool.decimals,
            source=from_wallet,
            dest=to_wallet,
            contract_id=f"transfer_{from_wallet}_{to_wallet}_{asset.value}",
        )
        pending = build_transaction(
            self, [move], origin=TransactionOrigin(Operation.TRANSFER, from_wallet, subject=to_wallet)
        )
        return self.commit(pending)

    def issue(self, wallet_id: str, asset: Asset, amount: int) -> Transaction:
        """Mint tokens into a wallet from the system wallet."""
        return self.transfer(SYSTEM_WALLET, wallet_id, asset, amount)

    # ========================================================================
    # ENTRY POINTS
    # ========================================================================

    def deposit(self, user_id: str, asset: Asset, amount: int) -> Transaction:
        """Deposit collateral; opens the position on first deposit."""
        return self.submit(Operation.DEPOSIT, user_id=user_id, asset=asset, amount=amount)

    def withdraw(self, user_id: str, asset: Asset, amount: int) -> Transaction:
        """Withdraw collateral, subject to the health check when in debt."""
        return self.submit(Operation.WITHDRAW, user_id=user_id, asset=asset, amount=amount)

    def borrow(self, user_id: str, asset: Asset, amount: int) -> Transaction:
        """Borrow against collateral."""
        return self.submit(Operation.BORROW, user_id=user_id, asset=asset, amount=amount)

    def repay(self, user_id: str, asset: Asset, amount: int) -> Transaction:
        """Repay borrowed tokens."""
        return self.submit(Operation.REPAY, user_id=user_id, asset=asset, amount=amount)

    def liquidate(
        self,
        liquidator_id: str,
        user_id: str,
        collateral_asset: Asset,
        borrowed_asset: Asset,
    ) -> Transaction:
        """Liquidate part of an undercollateralized position."""
        return self.submit(
            Operation.LIQUIDATE,
            liquidator_id=liquidator_id,
            user_id=user_id,
            collateral_asset=collateral_asset,
            borrowed_asset=borrowed_asset,
        )

    def submit(self, operation: Operation, **kwargs: Any) -> Transaction:
        """
        Compute and commit a named operation under its pool and position locks.

        Args:
            operation: Operation (or its name) accepted by transact()
            **kwargs: Operation parameters, see transact()

        Returns:
            The committed Transaction

        Raises:
            LendingError: The typed error of the failed check; nothing is applied
        """
        assets = {
            Asset.parse(kwargs[key])
            for key in ('asset', 'collateral_asset', 'borrowed_asset')
            if kwargs.get(key) is not None
        }
        users = [kwargs['user_id']] if kwargs.get('user_id') else []
        kwargs.setdefault('max_age_seconds', self.max_price_age_seconds)

        with self._locked(assets, users):
            pending = transact(self, self.oracle, operation, **kwargs)
            return self.commit(pending)

    def _position_lock(self, user_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._position_locks.get(user_id)
            if lock is None:
                lock = self._position_locks[user_id] = threading.Lock()
            return lock

    @contextmanager
    def _locked(self, assets: Iterable[Asset], users: Iterable[str]) -> Iterator[None]:
        """Hold pool locks in asset order, then position locks in user order."""
        with ExitStack() as stack:
            for asset in sorted(set(assets), key=lambda a: a.value):
                stack.enter_context(self._pool_locks[asset])
            for user_id in sorted(set(users)):
                stack.enter_context(self._position_lock(user_id))
            yield

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{market_name}:{sequence:012d}:{timestamp_micros}
        """
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically, reporting the outcome.

        Execution is idempotent: a pending transaction with the same intent_id
        will not be applied twice.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if transaction was already executed
            ExecuteResult.REJECTED if validation failed
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        with self._commit_lock:
            if pending.intent_id in self.seen_intent_ids:
                logger.info("ALREADY_APPLIED: intent_id=%s", pending.intent_id)
                return ExecuteResult.ALREADY_APPLIED
            try:
                self.commit(pending)
            except LendingError:
                return ExecuteResult.REJECTED
        return ExecuteResult.APPLIED

    def commit(self, pending: PendingTransaction) -> Transaction:
        """
        Validate and apply a PendingTransaction atomically.

        Transfers and record updates are applied together after every check
        has passed; on failure nothing changes. Resubmitting an already
        committed intent returns the original Transaction.

        Raises:
            ValueError: If the pending transaction is empty
            StaleState: If a record changed since the transaction was computed,
                or the transaction is timestamped in the future
            WalletNotRegistered: If a move touches an unregistered wallet
            PoolNotInitialized: If a move's asset has no pool
            TransferRuleViolation: If a move's decimals differ from the pool's
            InsufficientBalance: If a wallet would go below zero
            ArithmeticOverflow: If a wallet would exceed MAX_AMOUNT
        """
        if pending.is_empty():
            raise ValueError("Cannot commit an empty transaction")

        with self._commit_lock:
            if pending.intent_id in self.seen_intent_ids:
                return next(
                    tx for tx in reversed(self.transaction_log)
                    if tx.intent_id == pending.intent_id
                )

            try:
                self._validate_pending(pending)
            except LendingError as exc:
                logger.warning(
                    "REJECTED %s (intent_id=%s): %s: %s",
                    pending.origin, pending.intent_id, type(exc).__name__, exc,
                )
                raise

            sequence = self._next_sequence
            self._next_sequence += 1
            tx = Transaction(
                moves=pending.moves,
                pool_updates=pending.pool_updates,
                position_updates=pending.position_updates,
                origin=pending.origin,
                timestamp=pending.timestamp,
                intent_id=pending.intent_id,
                exec_id=self._generate_exec_id(sequence),
                market_name=self.name,
                execution_time=self._current_time,
                sequence_number=sequence,
            )

            self._execute_moves(tx.moves)
            for pu in tx.pool_updates:
                self.pools[pu.asset] = pu.new
            for su in tx.position_updates:
                self.positions[su.user_id] = su.new

            # Log transaction (always - audit trail is mandatory)
            self.transaction_log.append(tx)
            self.seen_intent_ids.add(pending.intent_id)

        logger.debug("APPLIED\n%r", tx)
        return tx

    def _validate_pending(self, pending: PendingTransaction) -> None:
        """
        Validate a pending transaction against all constraints.

        Checks performed:
        1. Timestamp (transaction must not be from the future)
        2. Wallet registration and pool existence for every move
        3. Transfer decimals match the pool's declaration
        4. Balances stay within [0, MAX_AMOUNT] (system wallet exempt)
        5. Every record update was computed from the current record
        """
        if pending.timestamp > self._current_time:
            raise StaleState(
                f"Transaction timestamp {pending.timestamp} is after market time {self._current_time}"
            )

        for move in pending.moves:
            for wallet in (move.source, move.dest):
                if wallet not in self.registered_wallets:
                    raise WalletNotRegistered(f"Wallet {wallet} not registered")
            pool = self.pools.get(move.asset)
            if pool is None:
                raise PoolNotInitialized(f"Pool {move.asset.value} not initialized")
            if move.decimals != pool.decimals:
                raise TransferRuleViolation(
                    f"{move.asset.value} transfer declares {move.decimals} decimals, "
                    f"pool has {pool.decimals}"
                )

        net: Dict[Tuple[str, Asset], int] = {}
        for move in pending.moves:
            key_src = (move.source, move.asset)
            key_dst = (move.dest, move.asset)
            net[key_src] = net.get(key_src, 0) - move.quantity
            net[key_dst] = net.get(key_dst, 0) + move.quantity

        # SYSTEM_WALLET is exempt from balance validation (issuance)
        for (wallet, asset), delta in sorted(net.items(), key=lambda kv: (kv[0][0], kv[0][1].value)):
            if wallet == SYSTEM_WALLET:
                continue
            proposed = self.balances[wallet].get(asset, 0) + delta
            if proposed < 0:
                raise InsufficientBalance(
                    f"{wallet} holds {self.balances[wallet].get(asset, 0)} {asset.value}, "
                    f"needs {-delta}"
                )
            if proposed > MAX_AMOUNT:
                raise ArithmeticOverflow(f"{wallet} {asset.value} balance would exceed {MAX_AMOUNT}")

        seen_pools: Set[Asset] = set()
        for pu in pending.pool_updates:
            if pu.asset in seen_pools:
                raise StaleState(f"Pool {pu.asset.value} updated twice in one transaction")
            seen_pools.add(pu.asset)
            current = self.pools.get(pu.asset)
            if current != pu.old:
                raise StaleState(f"Pool {pu.asset.value} changed since the transaction was computed")

        seen_users: Set[str] = set()
        for su in pending.position_updates:
            if su.user_id in seen_users:
                raise StaleState(f"Position {su.user_id} updated twice in one transaction")
            seen_users.add(su.user_id)
            current = self.positions.get(su.user_id)
            if current != su.old:
                raise StaleState(f"Position {su.user_id} changed since the transaction was computed")

    def _execute_moves(self, moves) -> None:
        for move in moves:
            self.balances[move.source][move.asset] -= move.quantity
            self.balances[move.dest][move.asset] += move.quantity

    # ========================================================================
    # MARKET OPERATIONS
    # ========================================================================

    def clone(self) -> LendingMarket:
        """
        Create an independent copy of this market.

        Records are immutable and shared; balances, indexes and the
        transaction log are copied. The clone gets fresh locks and the same
        oracle object.
        """
        cloned = LendingMarket.__new__(LendingMarket)
        cloned.name = self.name
        cloned.oracle = self.oracle
        cloned.max_price_age_seconds = self.max_price_age_seconds
        cloned._current_time = self._current_time
        cloned._test_mode = self._test_mode
        cloned._init_locks()

        with self._commit_lock:
            cloned.pools = dict(self.pools)
            cloned.positions = dict(self.positions)
            cloned.registered_wallets = self.registered_wallets.copy()
            cloned.seen_intent_ids = self.seen_intent_ids.copy()
            cloned.transaction_log = list(self.transaction_log)
            cloned._next_sequence = self._next_sequence
            cloned.balances = {
                wallet: defaultdict(int, bals) for wallet, bals in self.balances.items()
            }
        return cloned

    def clone_at(self, target_time: datetime) -> LendingMarket:
        """
        Create a copy of this market as it existed at a past time.

        Walks backward through transactions executed after target_time,
        reversing their transfers and restoring the old snapshot of every
        record update (removing records that the transaction created).

        Raises:
            ValueError: If target_time is in the future
        """
        if target_time > self._current_time:
            raise ValueError(f"Target time {target_time} is in the future")

        cloned = self.clone()
        cloned._current_time = target_time
        cloned.transaction_log = [
            tx for tx in self.transaction_log
            if tx.execution_time <= target_time
        ]
        cloned.seen_intent_ids = {tx.intent_id for tx in cloned.transaction_log}
        cloned._next_sequence = len(cloned.transaction_log)

        for tx in reversed(self.transaction_log):
            if tx.execution_time <= target_time:
                break
            for move in tx.moves:
                cloned.balances[move.source][move.asset] += move.quantity
                cloned.balances[move.dest][move.asset] -= move.quantity
            for pu in tx.pool_updates:
                if pu.old is None:
                    cloned.pools.pop(pu.asset, None)
                else:
                    cloned.pools[pu.asset] = pu.old
            for su in tx.position_updates:
                if su.old is None:
                    cloned.positions.pop(su.user_id, None)
                else:
                    cloned.positions[su.user_id] = su.old

        return cloned

    def __repr__(self) -> str:
        return (
            f"LendingMarket({self.name!r}, {len(self.pools)} pools, "
            f"{len(self.positions)} positions, {len(self.transaction_log)} transactions)"
        )
