"""
Core types and pure functions for the lending ledger.

This module provides the foundational data structures and protocols:
1. Protocols: MarketView for read-only market access, Clock
2. Immutable data structures: Move, PoolUpdate, PositionUpdate,
   PendingTransaction, Transaction
3. Exceptions: LendingError and the typed error kinds of every operation
4. The closed Asset set and amount bounds

All functions in this module are pure and operate on read-only views.
No function can mutate market state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from datetime import datetime
from decimal import Decimal, DefaultContext, ROUND_HALF_EVEN, getcontext
from enum import Enum
import hashlib
from typing import (
    Dict, List, Optional, Any, Protocol, Tuple, FrozenSet, Set,
    TYPE_CHECKING, runtime_checkable,
)

if TYPE_CHECKING:
    from .accounts import Pool, Position


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Prices, values and risk fractions are Decimal. Amounts and shares are int.
# The context is configured once at import time: the importing thread's
# context and DefaultContext, which every thread that touches decimal
# afterwards copies its own context from.
#
# PRECONDITION: No other code should modify the global Decimal context.
# If thread-local contexts are needed, use decimal.localcontext().
#
DECIMAL_PRECISION = 50

for _context in (DefaultContext, getcontext()):
    _context.prec = DECIMAL_PRECISION
    _context.rounding = ROUND_HALF_EVEN
del _context


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance. Exempt from balance validation.
SYSTEM_WALLET = "system"

# Prefix of the wallet that holds a pool's tokens.
TREASURY_PREFIX = "treasury"

# Amounts and shares are unsigned 64-bit quantities.
MAX_AMOUNT = 2 ** 64 - 1

# Intermediate products (amount * shares) may use twice the width.
MAX_INTERMEDIATE = 2 ** 128 - 1

# Default maximum age of an oracle quote, in seconds.
DEFAULT_MAX_PRICE_AGE_SECONDS = 100


class Asset(Enum):
    """
    The closed set of assets the protocol lends and accepts as collateral.

    Every branch that depends on the asset matches on these members
    exhaustively rather than comparing account identifiers.
    """
    SOL = "SOL"
    USDC = "USDC"

    def other(self) -> 'Asset':
        """Return the opposite member of the pair."""
        if self is Asset.SOL:
            return Asset.USDC
        if self is Asset.USDC:
            return Asset.SOL
        raise ValueError(f"Unknown asset {self!r}")

    @classmethod
    def parse(cls, value: Any) -> 'Asset':
        """Accept an Asset or its (case-insensitive) symbol."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(f"Unknown asset {value!r}") from None


def treasury_wallet(asset: Asset) -> str:
    """Wallet ID of the pool treasury that holds an asset's tokens."""
    return f"{TREASURY_PREFIX}:{asset.value}"


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class MarketView(Protocol):
    """
    Read-only interface to market state.

    Operation handlers receive a MarketView and never mutate anything; they
    return a PendingTransaction describing the transfers and record updates.
    The LendingMarket class implements this protocol. For testing, FakeView
    provides a truly immutable implementation.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the market."""
        ...

    def get_balance(self, wallet_id: str, asset: Asset) -> int:
        """Return a wallet's balance of an asset, in minor units."""
        ...

    def load_pool(self, asset: Asset) -> 'Pool':
        """
        Return the pool for an asset.

        Raises PoolNotInitialized if the pool has not been created.
        """
        ...

    def load_position(self, user_id: str) -> 'Position':
        """
        Return a user's position.

        Raises PositionNotFound if the user has never opened one.
        """
        ...

    def find_position(self, user_id: str) -> Optional['Position']:
        """Return a user's position, or None if it does not exist."""
        ...

    @property
    def next_sequence(self) -> int:
        """Sequence number the next committed transaction will receive."""
        ...


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the market.
    ALREADY_APPLIED: Transaction intent was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation (balance shortfall, stale record,
              transfer rule violation, overflow).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class Operation(Enum):
    """The operations a user or liquidator can submit."""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    BORROW = "borrow"
    REPAY = "repay"
    LIQUIDATE = "liquidate"
    TRANSFER = "transfer"
    INIT_POOL = "init_pool"
    OPEN_POSITION = "open_position"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """Base exception for all lending-related errors."""
    pass


class InsufficientCollateral(LendingError):
    """Raised when a withdraw or borrow would leave the position below health factor 1."""
    pass


class OverBorrowableAmount(LendingError):
    """Raised when a borrow exceeds collateral value times the liquidation threshold."""
    pass


class OverRepay(LendingError):
    """Raised when a repayment exceeds the borrowed amount of that asset."""
    pass


class OverWithdraw(LendingError):
    """Raised when a withdrawal exceeds the deposited amount of that asset."""
    pass


class NotUndercollateralized(LendingError):
    """Raised when a liquidation is attempted on a healthy position."""
    pass


class NothingToLiquidate(LendingError):
    """Raised when the position has no debt or no collateral in the requested assets."""
    pass


class EmptyPool(LendingError):
    """Raised when a ratio is required against a pool whose totals are zero."""
    pass


class DivisionByZero(LendingError):
    """Raised when a share ratio would divide by a zero total."""
    pass


class StalePrice(LendingError):
    """Raised when an oracle quote is missing or older than the allowed age."""
    pass


class InvalidPrice(LendingError):
    """Raised when an oracle quote is not strictly positive."""
    pass


class ArithmeticOverflow(LendingError):
    """Raised when an amount or share computation leaves the unsigned 64-bit range."""
    pass


class InsufficientBalance(LendingError):
    """Raised when a transfer would take a wallet balance below zero."""
    pass


class TransferRuleViolation(LendingError):
    """Raised when a transfer does not match the asset's declared decimals."""
    pass


class StaleState(LendingError):
    """Raised when a record changed between computing and committing a transaction."""
    pass


class PoolNotInitialized(LendingError):
    """Raised when operating on an asset whose pool has not been created."""
    pass


class PositionNotFound(LendingError):
    """Raised when operating on a user who has no position."""
    pass


class WalletNotRegistered(LendingError):
    """Raised when a transfer touches a wallet that is not registered."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        operation: Which operation produced the transaction
        actor: Wallet that signed the operation (user or liquidator)
        subject: Position acted upon, when different from the actor
    """
    operation: Operation
    actor: str
    subject: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.operation.value}:{self.actor}"]
        if self.subject and self.subject != self.actor:
            parts.append(f"subject={self.subject}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# RECORD UPDATES
# ============================================================================

def _changed_fields(old: Any, new: Any) -> Dict[str, Tuple[Any, Any]]:
    """Compare two dataclass records field by field."""
    if old is None:
        return {f.name: (None, getattr(new, f.name)) for f in fields(new)}
    changes = {}
    for f in fields(new):
        old_val = getattr(old, f.name)
        new_val = getattr(new, f.name)
        if old_val != new_val:
            changes[f.name] = (old_val, new_val)
    return changes


@dataclass(frozen=True, slots=True)
class PoolUpdate:
    """
    Replacement of a pool record.

    old is the snapshot the update was computed from (None when the pool is
    being created). The market rejects the update if the stored pool no
    longer equals old.
    """
    old: Optional['Pool']
    new: 'Pool'

    @property
    def asset(self) -> Asset:
        return self.new.asset

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        return _changed_fields(self.old, self.new)


@dataclass(frozen=True, slots=True)
class PositionUpdate:
    """
    Replacement of a position record.

    old is the snapshot the update was computed from (None when the position
    is being opened).
    """
    old: Optional['Position']
    new: 'Position'

    @property
    def user_id(self) -> str:
        return self.new.user_id

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        return _changed_fields(self.old, self.new)


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of an asset between two wallets.

    Attributes:
        quantity: Amount in minor units (positive int).
        asset: Asset being transferred.
        decimals: Decimals the caller believes the asset has; the market
            rejects the move if they differ from the pool's declaration.
        source: Wallet debited.
        dest: Wallet credited.
        contract_id: Identifier of the operation generating this move.
    """
    quantity: int
    asset: Asset
    decimals: int
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.asset, Asset):
            raise ValueError(f"Move asset must be Asset, got {type(self.asset)}")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.quantity > MAX_AMOUNT:
            raise ArithmeticOverflow(f"Move quantity {self.quantity} exceeds {MAX_AMOUNT}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.asset.value}: {self.source}→{self.dest})"


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Records are dataclasses; they are serialized field by field in
    declaration order so equal records always hash identically.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if isinstance(value, Decimal):
        normalized = value.normalize()
        return f"D:{format(normalized, 'f')}"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if hasattr(value, "__dataclass_fields__"):
        parts = ",".join(
            f"{f.name}:{_canonicalize(getattr(value, f.name))}" for f in fields(value)
        )
        return f"{{{parts}}}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(item) for item in value) + "]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    pool_updates: Tuple[PoolUpdate, ...],
    position_updates: Tuple[PositionUpdate, ...],
    origin: TransactionOrigin,
    sequence: int,
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    The hash covers the market sequence the transaction was computed at, so
    the same request made again later (even after the records return to an
    identical state) is a new intent, while a resubmission of the same
    PendingTransaction is not.
    """
    content_parts = [
        f"origin:{origin.operation.value}:{origin.actor}:{origin.subject or ''}",
        f"sequence:{sequence}",
    ]
    for m in moves:
        content_parts.append(
            f"move:{m.quantity}|{m.asset.value}|{m.decimals}|{m.source}|{m.dest}|{m.contract_id}"
        )
    for pu in sorted(pool_updates, key=lambda u: u.asset.value):
        content_parts.append(f"pool:{_canonicalize(pu.old)}|{_canonicalize(pu.new)}")
    for su in sorted(position_updates, key=lambda u: u.user_id):
        content_parts.append(f"position:{_canonicalize(su.old)}|{_canonicalize(su.new)}")
    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Created by operation handlers and submitted to the market for commit.

    Lifecycle:
    1. A handler loads snapshots through a MarketView and computes new records
    2. intent_id is auto-computed from content (deterministic hash)
    3. LendingMarket.commit() validates and applies, creating a Transaction

    Attributes:
        moves: Transfers between wallets, applied in order
        pool_updates: Pool record replacements
        position_updates: Position record replacements
        origin: Who submitted this and which operation it is
        timestamp: Market time at which it was computed
        sequence: Market sequence number at which it was computed
        intent_id: Content-addressable hash of the intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    pool_updates: Tuple[PoolUpdate, ...]
    position_updates: Tuple[PositionUpdate, ...]
    origin: TransactionOrigin
    timestamp: datetime
    sequence: int = 0
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.pool_updates, self.position_updates, self.origin,
                self.sequence,
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if this pending transaction changes nothing."""
        return not self.moves and not self.pool_updates and not self.position_updates

    def __repr__(self) -> str:
        return (
            f"PendingTransaction({len(self.moves)} moves, {len(self.pool_updates)} pools, "
            f"{len(self.position_updates)} positions, {self.origin})"
        )


def build_transaction(
    view: MarketView,
    moves: List[Move],
    pool_updates: Optional[List[PoolUpdate]] = None,
    position_updates: Optional[List[PositionUpdate]] = None,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and record updates.

    This is the standard way for handlers to create transactions.

    Args:
        view: Read-only market view (provides current_time and next_sequence)
        moves: Transfers to include
        pool_updates: Pool record replacements
        position_updates: Position record replacements
        origin: Transaction origin (defaults to a system TRANSFER origin)

    Returns:
        A PendingTransaction ready for commit
    """
    if origin is None:
        origin = TransactionOrigin(Operation.TRANSFER, SYSTEM_WALLET)

    return PendingTransaction(
        moves=tuple(moves),
        pool_updates=tuple(pool_updates or ()),
        position_updates=tuple(position_updates or ()),
        origin=origin,
        timestamp=view.current_time,
        sequence=view.next_sequence,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    A committed, immutable record of market state changes - represents FACT.

    Attributes:
        moves: Transfers applied
        pool_updates: Pool record replacements applied
        position_updates: Position record replacements applied
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was computed
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (market + sequence + time)
        market_name: Name of the market that committed this
        execution_time: When this was committed
        sequence_number: Monotonic sequence within the market
        contract_ids: Contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    pool_updates: Tuple[PoolUpdate, ...]
    position_updates: Tuple[PositionUpdate, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    market_name: str
    execution_time: datetime
    sequence_number: int
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.pool_updates and not self.position_updates:
            raise ValueError("Transaction must have moves, pool_updates or position_updates")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def touched_assets(self) -> Set[Asset]:
        """Assets whose pools or balances this transaction changed."""
        assets = {m.asset for m in self.moves}
        assets.update(pu.asset for pu in self.pool_updates)
        return assets

    def __repr__(self) -> str:
        lines = [
            f"Transaction {self.exec_id}",
            f"  origin   : {self.origin}",
            f"  intent_id: {self.intent_id}",
            f"  time     : {self.execution_time}",
        ]
        for i, move in enumerate(self.moves):
            lines.append(f"  [{i}] {move.quantity} {move.asset.value}: {move.source} → {move.dest}")
        for pu in self.pool_updates:
            for name, (old_val, new_val) in pu.changed_fields().items():
                lines.append(f"  pool {pu.asset.value}.{name}: {old_val!r} → {new_val!r}")
        for su in self.position_updates:
            for name, (old_val, new_val) in su.changed_fields().items():
                lines.append(f"  position {su.user_id}.{name}: {old_val!r} → {new_val!r}")
        return "\n".join(lines)
