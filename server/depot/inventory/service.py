from dataclasses import dataclass, field
from datetime import datetime
import logging
import uuid
from typing import Optional, Union

from depot.auth import AuthContext
from depot.config import TRANSFER_LOCK_TIMEOUT_SECONDS
from depot.inventory.classifier import classify, classify_available
from depot.inventory.domain import (
    AdjustmentOutcome,
    AdjustmentRecord,
    Balance,
    Dimension,
    Quantities,
    StockStatus,
    TransferResult,
)
from depot.inventory.exceptions import (
    AuthorizationError,
    ConsistencyViolationError,
    InsufficientStockError,
    ValidationError,
)
from depot.inventory.locks import PairLockRegistry
from depot.inventory.store import BalanceStore
from depot.module_keys import ModuleKey


logger = logging.getLogger(__name__)

REASON_TRANSFER_OUT = "transfer-out"
REASON_TRANSFER_IN = "transfer-in"
REASON_TRANSFER_COMPENSATION = "transfer-compensation"

# InventoryAdjustment.reason column width.
MAX_REASON_LENGTH = 255

default_pair_locks = PairLockRegistry(TRANSFER_LOCK_TIMEOUT_SECONDS)


@dataclass(frozen=True)
class QuantityValidation:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class SetBalanceOutcome:
    balance: Balance
    previous: Optional[Balance]
    records: list[AdjustmentRecord]
    warnings: list[str]
    status: StockStatus


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_actor(ctx: Optional[AuthContext]) -> str:
    actor = (ctx.actor or "").strip() if ctx is not None else ""
    if not actor:
        raise AuthorizationError("An authenticated actor is required to change inventory")
    if not ctx.can(ModuleKey.INVENTORY.value):
        raise AuthorizationError(
            f"Actor '{actor}' is not authorized to change inventory",
            {"actor": actor, "module": ModuleKey.INVENTORY.value},
        )
    return actor


def _require_reason(reason: Optional[str]) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required for every inventory adjustment")
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(
            f"Reason must be at most {MAX_REASON_LENGTH} characters",
            {"reason_length": len(reason), "max_length": MAX_REASON_LENGTH},
        )
    return reason


def _parse_dimension(dimension: Union[Dimension, str]) -> Dimension:
    try:
        return Dimension(dimension)
    except ValueError:
        raise ValidationError(
            f"Unknown inventory dimension '{dimension}'",
            {"dimension": dimension, "allowed": [item.value for item in Dimension]},
        )


def _apply_delta(
    store: BalanceStore,
    actor: str,
    *,
    warehouse_id: int,
    product_id: int,
    dimension: Dimension,
    delta: int,
    reason: str,
    correlation_id: Optional[str],
    at: Optional[datetime] = None,
    require_available: bool = False,
) -> AdjustmentOutcome:
    applied: dict[str, int] = {}

    def compute(current: Balance) -> Quantities:
        quantities = current.quantities
        before = quantities.get(dimension)
        target = before + delta

        if require_available and -delta > current.available:
            raise InsufficientStockError(
                f"Insufficient stock: requested {-delta}, available {current.available}",
                bound="available",
                requested=-delta,
                available=current.available,
            )

        if dimension == Dimension.RESERVED:
            if target < 0:
                raise ValidationError(
                    f"Cannot release {-delta} reserved units; only {before} are reserved",
                    {"bound": "zero", "requested": -delta, "available": before, "shortfall": -target},
                )
            if target > quantities.full:
                raise InsufficientStockError(
                    f"Cannot reserve {delta} units; only {current.available} are available",
                    bound="full",
                    requested=delta,
                    available=current.available,
                )
            new_value = target
        else:
            new_value = max(target, 0)
            if dimension == Dimension.FULL and new_value < quantities.reserved:
                raise InsufficientStockError(
                    f"Cannot remove {-delta} full units; {quantities.reserved} are reserved "
                    f"and only {current.available} are available",
                    bound="reserved",
                    requested=-delta,
                    available=current.available,
                )

        applied["delta"] = new_value - before
        return quantities.with_value(dimension, new_value)

    with store.atomic():
        write = store.upsert(warehouse_id, product_id, compute, at=at)
        record = store.append_adjustment(
            AdjustmentRecord(
                warehouse_id=warehouse_id,
                product_id=product_id,
                dimension=dimension,
                requested_delta=delta,
                applied_delta=applied["delta"],
                reason=reason,
                actor=actor,
                correlation_id=correlation_id,
                created_at=write.after.updated_at,
            )
        )

    if record.clamped:
        logger.warning(
            "Adjustment clamped at zero: warehouse_id=%s product_id=%s dimension=%s requested=%s applied=%s",
            warehouse_id,
            product_id,
            dimension.value,
            record.requested_delta,
            record.applied_delta,
        )
    logger.info(
        "Inventory adjusted: warehouse_id=%s product_id=%s dimension=%s delta=%s reason=%s actor=%s",
        warehouse_id,
        product_id,
        dimension.value,
        record.applied_delta,
        reason,
        actor,
    )
    return AdjustmentOutcome(
        balance=write.after,
        previous=write.before or Balance.empty_for(warehouse_id, product_id),
        record=record,
        status=classify(write.after),
    )


def adjust(
    store: BalanceStore,
    ctx: AuthContext,
    *,
    warehouse_id: int,
    product_id: int,
    dimension: Union[Dimension, str],
    delta: int,
    reason: str,
    correlation_id: Optional[str] = None,
) -> AdjustmentOutcome:
    """Apply a signed delta to one dimension of a balance.

    Full and empty quantities floor at zero; the clamp is visible on the audit
    record as ``applied_delta != requested_delta``. A full decrement that would
    leave fewer full units than are reserved is rejected, as is a reservation
    beyond the full quantity or a release below zero. Rejections write nothing.
    """
    actor = _require_actor(ctx)
    dimension = _parse_dimension(dimension)
    if not _is_int(delta) or delta == 0:
        raise ValidationError("Adjustment delta must be a non-zero integer", {"delta": delta})
    reason = _require_reason(reason)

    return _apply_delta(
        store,
        actor,
        warehouse_id=warehouse_id,
        product_id=product_id,
        dimension=dimension,
        delta=delta,
        reason=reason,
        correlation_id=correlation_id,
    )


def validate_quantities(quantities: Quantities) -> QuantityValidation:
    errors = quantities.violations()
    warnings = []
    available = quantities.full - quantities.reserved
    status = classify_available(available)
    if status == StockStatus.LOW:
        warnings.append(f"Low stock warning: Only {available} units available")
    elif status == StockStatus.OUT:
        warnings.append("Product is out of stock")
    return QuantityValidation(errors=errors, warnings=warnings)


def set_balance(
    store: BalanceStore,
    ctx: AuthContext,
    *,
    warehouse_id: int,
    product_id: int,
    quantities: Quantities,
    reason: str,
) -> SetBalanceOutcome:
    actor = _require_actor(ctx)
    reason = _require_reason(reason)
    for name in ("full", "empty", "reserved"):
        if not _is_int(getattr(quantities, name)):
            raise ValidationError(f"{name.capitalize()} quantity must be an integer", {name: getattr(quantities, name)})

    validation = validate_quantities(quantities)
    if not validation.is_valid:
        raise ValidationError("; ".join(validation.errors), {"errors": validation.errors})

    records = []
    with store.atomic():
        write = store.upsert(warehouse_id, product_id, quantities)
        before = write.before.quantities if write.before else Quantities()
        for dimension in Dimension:
            delta = quantities.get(dimension) - before.get(dimension)
            if delta == 0:
                continue
            records.append(
                store.append_adjustment(
                    AdjustmentRecord(
                        warehouse_id=warehouse_id,
                        product_id=product_id,
                        dimension=dimension,
                        requested_delta=delta,
                        applied_delta=delta,
                        reason=reason,
                        actor=actor,
                        created_at=write.after.updated_at,
                    )
                )
            )

    logger.info(
        "Inventory balance set: warehouse_id=%s product_id=%s full=%s empty=%s reserved=%s changes=%s actor=%s",
        warehouse_id,
        product_id,
        quantities.full,
        quantities.empty,
        quantities.reserved,
        len(records),
        actor,
    )
    return SetBalanceOutcome(
        balance=write.after,
        previous=write.before,
        records=records,
        warnings=validation.warnings,
        status=classify(write.after),
    )


def _leg_reason(reason: str, notes: Optional[str]) -> str:
    notes = (notes or "").strip()
    return _require_reason(f"{reason}: {notes}" if notes else reason)


def transfer(
    store: BalanceStore,
    ctx: AuthContext,
    *,
    from_warehouse_id: int,
    to_warehouse_id: int,
    product_id: int,
    quantity: int,
    notes: Optional[str] = None,
    locks: Optional[PairLockRegistry] = None,
) -> TransferResult:
    """Move full units of a product from one warehouse to another.

    Either both legs are applied or, after a failed credit, none are: a
    transactional store rolls the debit back, any other store re-credits the
    source under the same correlation id. Both cases raise
    ConsistencyViolationError so the caller can retry.
    """
    actor = _require_actor(ctx)
    if from_warehouse_id == to_warehouse_id:
        raise ValidationError(
            "Source and destination warehouses must be different",
            {"warehouse_id": from_warehouse_id},
        )
    if not _is_int(quantity) or quantity < 1:
        raise ValidationError("Transfer quantity must be a positive integer", {"quantity": quantity})
    out_reason = _leg_reason(REASON_TRANSFER_OUT, notes)
    in_reason = _leg_reason(REASON_TRANSFER_IN, notes)

    locks = locks or default_pair_locks
    correlation_id = uuid.uuid4().hex
    at = datetime.utcnow()

    def leg(warehouse_id: int, delta: int, reason: str, *, require_available: bool = False) -> AdjustmentOutcome:
        return _apply_delta(
            store,
            actor,
            warehouse_id=warehouse_id,
            product_id=product_id,
            dimension=Dimension.FULL,
            delta=delta,
            reason=reason,
            correlation_id=correlation_id,
            at=at,
            require_available=require_available,
        )

    with locks.hold(from_warehouse_id, to_warehouse_id):
        source = store.get(from_warehouse_id, product_id) or Balance.empty_for(from_warehouse_id, product_id)
        if quantity > source.available:
            raise InsufficientStockError(
                f"Insufficient stock: requested {quantity}, available {source.available}",
                bound="available",
                requested=quantity,
                available=source.available,
            )

        if store.supports_transactions:
            debit = None
            try:
                with store.atomic():
                    debit = leg(from_warehouse_id, -quantity, out_reason, require_available=True)
                    credit = leg(to_warehouse_id, quantity, in_reason)
            except Exception as exc:
                if debit is None:
                    raise
                logger.error(
                    "Transfer credit failed and was rolled back: correlation_id=%s from=%s to=%s product_id=%s quantity=%s error=%s",
                    correlation_id,
                    from_warehouse_id,
                    to_warehouse_id,
                    product_id,
                    quantity,
                    exc,
                )
                raise ConsistencyViolationError(
                    "Transfer could not be completed and no stock was moved; retry the transfer.",
                    correlation_id=correlation_id,
                    compensated=True,
                    cause=getattr(exc, "code", type(exc).__name__),
                ) from exc
        else:
            # One unit: readers and subscribers only see the settled outcome.
            with store.atomic():
                debit = leg(from_warehouse_id, -quantity, out_reason, require_available=True)
                try:
                    credit = leg(to_warehouse_id, quantity, in_reason)
                except Exception as exc:
                    compensated = _compensate(leg, from_warehouse_id, quantity, correlation_id)
                    log = logger.error if compensated else logger.critical
                    log(
                        "Transfer credit failed: correlation_id=%s from=%s to=%s product_id=%s quantity=%s compensated=%s error=%s",
                        correlation_id,
                        from_warehouse_id,
                        to_warehouse_id,
                        product_id,
                        quantity,
                        compensated,
                        exc,
                    )
                    message = (
                        "Transfer could not be completed; the source stock was restored. Retry the transfer."
                        if compensated
                        else "Transfer could not be completed and the source stock could not be restored."
                    )
                    raise ConsistencyViolationError(
                        message,
                        correlation_id=correlation_id,
                        compensated=compensated,
                        cause=getattr(exc, "code", type(exc).__name__),
                    ) from exc

    logger.info(
        "Stock transferred: correlation_id=%s from=%s to=%s product_id=%s quantity=%s actor=%s",
        correlation_id,
        from_warehouse_id,
        to_warehouse_id,
        product_id,
        quantity,
        actor,
    )
    return TransferResult(
        correlation_id=correlation_id,
        quantity=quantity,
        source=debit.balance,
        destination=credit.balance,
        debit=debit.record,
        credit=credit.record,
    )


def _compensate(leg, warehouse_id: int, quantity: int, correlation_id: str) -> bool:
    try:
        leg(warehouse_id, quantity, REASON_TRANSFER_COMPENSATION)
    except Exception:
        logger.critical(
            "Transfer compensation failed: correlation_id=%s warehouse_id=%s quantity=%s",
            correlation_id,
            warehouse_id,
            quantity,
            exc_info=True,
        )
        return False
    return True
