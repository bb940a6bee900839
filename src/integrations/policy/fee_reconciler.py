"""
Shipping insurance fee reconciler.

Drives a checkout toward a desired fee state ("absent" or "present at the
4% amount") against an upstream API that has no reliable way to say so
directly: DELETE sometimes answers 404, writes are sometimes accepted and
ignored, and empty fee collections are rejected.

Removal runs an ordered list of strategies through a "first confirmed wins"
runner. Every strategy is re-verified against a fresh fetch of the checkout
before it counts. A removal is confirmed only when no matching fee remains;
a zero-cost leftover is not a removal. The last strategy lowers the cost
instead and reports ``minimized``.

Concurrent calls for the same checkout are not serialized here; the
upstream API is the only serialization point.
"""

from __future__ import annotations

import asyncio
import logging
import math
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from src.error_handler import (
    ReconciliationExhausted,
    ServiceError,
    StrategySkipped,
    UpstreamError,
    ValidationError,
    VerificationFailed,
)
from src.integrations.contracts.checkout import (
    AttemptStatus,
    CheckoutSnapshot,
    FeeRecord,
    ReconcileResult,
    ReconcileStatus,
    StrategyAttempt,
    UpstreamResponse,
    insurance_fee_amount,
    to_money,
)
from src.integrations.policy.response_wrappers import IntegrationResponseError, extract_fees, normalize_fee
from src.utils.config_loader import FeeConfig, RemovalConfig

logger = logging.getLogger(__name__)

RemovalStrategy = Callable[[str, CheckoutSnapshot], Awaitable[ReconcileResult]]

_RECOVERABLE = (ServiceError, IntegrationResponseError)


def coerce_subtotal(value: Any) -> Decimal:
    """Parse a caller-supplied subtotal; numbers and numeric strings only."""
    if value is None or isinstance(value, bool):
        raise ValidationError("A numeric subtotal is required")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError("A numeric subtotal is required")
    try:
        subtotal = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("A numeric subtotal is required") from None
    if not subtotal.is_finite():
        raise ValidationError("A numeric subtotal is required")
    return subtotal


async def run_strategies(
    strategies: Sequence[Tuple[str, RemovalStrategy]],
    checkout_id: str,
    snapshot: CheckoutSnapshot,
) -> ReconcileResult:
    """Run strategies in order; the first confirmed result wins."""
    attempts: List[StrategyAttempt] = []
    warnings: List[str] = []
    last_error: Optional[Exception] = None

    for name, strategy in strategies:
        logger.info("Removal strategy %s on checkout %s", name, checkout_id)
        try:
            result = await strategy(checkout_id, snapshot)
        except StrategySkipped as e:
            logger.info("Strategy %s skipped: %s", name, e)
            attempts.append(StrategyAttempt(strategy=name, status=AttemptStatus.SKIPPED, error=str(e)))
            continue
        except _RECOVERABLE as e:
            logger.warning("Strategy %s failed: %s", name, e)
            attempts.append(StrategyAttempt(strategy=name, status=AttemptStatus.FAILED, error=str(e)))
            last_error = e
            if isinstance(e, VerificationFailed):
                warnings.extend(e.warnings)
                if e.snapshot is not None:
                    snapshot = e.snapshot
            continue
        except Exception as e:
            logger.exception("Unexpected error in removal strategy %s", name)
            attempts.append(StrategyAttempt(strategy=name, status=AttemptStatus.FAILED, error=str(e)))
            last_error = e
            continue

        attempts.append(StrategyAttempt(strategy=name, status=AttemptStatus.CONFIRMED))
        logger.info("Strategy %s confirmed: %s", name, result.status.value)
        return result.model_copy(
            update={"method": name, "attempts": attempts, "warnings": warnings + list(result.warnings)}
        )

    if last_error is None:
        return ReconcileResult(
            status=ReconcileStatus.UNSUPPORTED,
            reason="No removal strategy applies to this checkout",
            attempts=attempts,
            warnings=warnings,
        )

    exhausted = ReconciliationExhausted(f"All removal strategies failed; last error: {last_error}")
    logger.error("Could not remove fee from checkout %s: %s", checkout_id, exhausted)
    return ReconcileResult(status=ReconcileStatus.FAILED, reason=str(exhausted), attempts=attempts, warnings=warnings)


class FeeReconciler:
    def __init__(
        self,
        client,
        fee: Optional[FeeConfig] = None,
        removal: Optional[RemovalConfig] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        self.client = client
        self.fee = fee or FeeConfig()
        self.removal = removal or RemovalConfig()
        self._sleep = sleep or asyncio.sleep

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def fetch_checkout(self, checkout_id: str) -> CheckoutSnapshot:
        return await self.client.fetch_snapshot(checkout_id)

    async def ensure_fee_present(self, checkout_id: str, subtotal: Any) -> ReconcileResult:
        """Create the fee, or update its cost; no mutation when already correct.

        Upstream errors propagate to the caller.
        """
        value = coerce_subtotal(subtotal)
        if value < 0:
            raise ValidationError("Subtotal must not be negative")
        amount = insurance_fee_amount(value, self.fee.rate)

        snapshot = await self.client.fetch_snapshot(checkout_id)
        existing = snapshot.find_fee(self.fee.name)

        if existing is None:
            fee = self._new_fee(amount)
            logger.info("Adding shipping insurance fee to %s: $%s", checkout_id, amount)
            response = await self.client.create_fees(checkout_id, [fee])
            self._raise_on_not_found(response, "Failed to add fee")
            return ReconcileResult(
                status=ReconcileStatus.CREATED,
                fee=self._fee_from_response(response) or fee,
                amount=amount,
            )

        if to_money(existing.cost) == amount:
            logger.info("Shipping insurance fee already exists on %s at $%s", checkout_id, amount)
            return ReconcileResult(status=ReconcileStatus.ALREADY_EXISTS, fee=existing, amount=amount)

        updated = existing.model_copy(update={"cost": amount})
        logger.info("Updating shipping insurance fee on %s: $%s -> $%s", checkout_id, existing.cost, amount)
        response = await self.client.update_fees(checkout_id, [updated])
        self._raise_on_not_found(response, "Failed to update fee")
        return ReconcileResult(status=ReconcileStatus.UPDATED, fee=updated, amount=amount)

    async def ensure_fee_absent(self, checkout_id: str) -> ReconcileResult:
        """Remove the fee with every available strategy. Never raises on upstream failure."""
        try:
            snapshot = await self.client.fetch_snapshot(checkout_id)
        except _RECOVERABLE as e:
            logger.error("Could not read checkout %s before fee removal: %s", checkout_id, e)
            return ReconcileResult(status=ReconcileStatus.FAILED, reason=str(e))

        matching = snapshot.matching_fees(self.fee.name)
        logger.info(
            "Checkout %s has %d fee(s), %d shipping insurance",
            checkout_id,
            len(snapshot.fees),
            len(matching),
        )
        if not matching:
            return ReconcileResult(status=ReconcileStatus.ALREADY_ABSENT)

        result = await run_strategies(self.removal_strategies(), checkout_id, snapshot)
        if result.fee is None:
            result = result.model_copy(update={"fee": matching[0]})
        return result

    async def toggle(self, checkout_id: str, enabled: bool, subtotal: Any = None) -> ReconcileResult:
        if not enabled:
            return await self.ensure_fee_absent(checkout_id)
        if subtotal is None or coerce_subtotal(subtotal) <= 0:
            raise ValidationError("A positive numeric subtotal is required to enable the fee")
        return await self.ensure_fee_present(checkout_id, subtotal)

    async def sync_from_checkout(self, checkout_id: str) -> Tuple[CheckoutSnapshot, ReconcileResult]:
        """Apply the fee using the checkout's own subtotal."""
        snapshot = await self.client.fetch_snapshot(checkout_id)
        result = await self.ensure_fee_present(checkout_id, snapshot.subtotal)
        return snapshot, result

    def removal_strategies(self) -> List[Tuple[str, RemovalStrategy]]:
        return [
            ("delete_by_id", self._delete_by_id),
            ("replace_collection", self._replace_collection),
            ("delete_all", self._delete_all),
            ("minimize_cost", self._minimize_cost),
        ]

    # ------------------------------------------------------------------
    # Removal strategies
    # ------------------------------------------------------------------

    async def _delete_by_id(self, checkout_id: str, snapshot: CheckoutSnapshot) -> ReconcileResult:
        targets = [fee for fee in snapshot.matching_fees(self.fee.name) if fee.id]
        if not targets:
            raise StrategySkipped("No matching fee carries an id")

        results = await asyncio.gather(
            *(self.client.delete_fee(checkout_id, fee.id) for fee in targets),
            return_exceptions=True,
        )
        errors: List[BaseException] = []
        warnings: List[str] = []
        for fee, outcome in zip(targets, results):
            if isinstance(outcome, BaseException):
                logger.error("DELETE fee %s failed: %s", fee.id, outcome)
                errors.append(outcome)
                warnings.append(f"Delete of fee {fee.id} failed: {outcome}")
            elif outcome.not_found:
                logger.warning("DELETE fee %s answered 404; verifying", fee.id)

        if len(errors) == len(targets):
            raise errors[-1]

        try:
            await self._confirm_absent(checkout_id)
        except VerificationFailed as e:
            e.warnings.extend(warnings)
            raise
        return ReconcileResult(status=ReconcileStatus.REMOVED, fee=targets[0], warnings=warnings)

    async def _replace_collection(self, checkout_id: str, snapshot: CheckoutSnapshot) -> ReconcileResult:
        remaining = snapshot.other_fees(self.fee.name)
        if not remaining and self.removal.reject_empty_fee_collection:
            raise StrategySkipped("Upstream rejects an empty fee collection")

        response = await self.client.replace_fees(checkout_id, remaining)
        self._log_not_found(response, "replace fee collection")
        await self._confirm_absent(checkout_id)
        return ReconcileResult(status=ReconcileStatus.REMOVED, fee=snapshot.find_fee(self.fee.name))

    async def _delete_all(self, checkout_id: str, snapshot: CheckoutSnapshot) -> ReconcileResult:
        others = snapshot.other_fees(self.fee.name)
        response = await self.client.delete_all_fees(checkout_id)
        self._log_not_found(response, "delete all fees")

        # The delete was accepted, so unrelated fees are restored whether or
        # not the removal itself can be confirmed.
        try:
            confirmed = await self._confirm_absent(checkout_id)
        except VerificationFailed as e:
            e.warnings.extend(await self._restore_fees(checkout_id, others, e.snapshot))
            raise

        warnings = await self._restore_fees(checkout_id, others, confirmed)
        return ReconcileResult(status=ReconcileStatus.REMOVED, fee=snapshot.find_fee(self.fee.name), warnings=warnings)

    async def _minimize_cost(self, checkout_id: str, snapshot: CheckoutSnapshot) -> ReconcileResult:
        targets = [fee for fee in snapshot.matching_fees(self.fee.name) if fee.id]
        if not targets:
            raise StrategySkipped("No matching fee carries an id")

        residual = to_money(self.removal.minimized_cost)
        response = await self.client.update_fees(
            checkout_id, [fee.model_copy(update={"cost": residual}) for fee in targets]
        )
        self._log_not_found(response, "minimize fee cost")

        fresh = await self._refetch(checkout_id)
        remaining = fresh.matching_fees(self.fee.name)
        if not remaining:
            return ReconcileResult(status=ReconcileStatus.REMOVED, fee=targets[0])
        if any(fee.cost > residual for fee in remaining):
            raise VerificationFailed(
                f"Fee cost still above {residual} after update",
                snapshot=fresh,
            )
        return ReconcileResult(
            status=ReconcileStatus.MINIMIZED,
            fee=remaining[0],
            residual_amount=max(fee.cost for fee in remaining),
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def _refetch(self, checkout_id: str) -> CheckoutSnapshot:
        await self._sleep(self.removal.settle_delay_seconds)

        attempts = self.removal.verify_attempts
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                return await self.client.fetch_snapshot(checkout_id)
            except UpstreamError as e:
                if not e.transient:
                    raise VerificationFailed(f"Verification fetch failed: {e}") from e
                last_error = e
                logger.warning("Verification fetch %d/%d for %s failed: %s", attempt, attempts, checkout_id, e)
                if attempt < attempts:
                    await self._sleep(self.removal.verify_backoff_seconds)

        raise VerificationFailed(f"Verification indeterminate after {attempts} attempts: {last_error}")

    async def _restore_fees(
        self,
        checkout_id: str,
        others: List[FeeRecord],
        current: Optional[CheckoutSnapshot],
    ) -> List[str]:
        """Re-create unrelated fees missing from ``current``; returns warnings.

        With no readable snapshot every unrelated fee is re-created.
        """
        warnings: List[str] = []
        if current is None:
            missing = list(others)
            if missing:
                warnings.append(
                    f"Re-created {len(missing)} unrelated fee(s) without a confirmed read of checkout {checkout_id}"
                )
        else:
            present = {_fee_key(fee) for fee in current.fees}
            missing = [fee for fee in others if _fee_key(fee) not in present]
        if not missing:
            return warnings

        logger.info("Restoring %d unrelated fee(s) on %s", len(missing), checkout_id)
        try:
            restored = await self.client.create_fees(checkout_id, missing)
            if restored.not_found:
                warnings.append("Could not restore unrelated fees: 404")
        except _RECOVERABLE as e:
            logger.error("Could not restore unrelated fees on %s: %s", checkout_id, e)
            warnings.append(f"Could not restore unrelated fees: {e}")
        return warnings

    async def _confirm_absent(self, checkout_id: str) -> CheckoutSnapshot:
        fresh = await self._refetch(checkout_id)
        remaining = fresh.matching_fees(self.fee.name)
        if remaining:
            raise VerificationFailed(
                f"Fee still exists after removal attempt ({len(remaining)} remaining)",
                snapshot=fresh,
            )
        return fresh

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_fee(self, amount: Decimal) -> FeeRecord:
        return FeeRecord(
            name=self.fee.name,
            display_name=self.fee.display_name,
            type=self.fee.type,
            cost=amount,
            source=self.fee.source,
            tax_class_id=self.fee.tax_class_id,
        )

    def _fee_from_response(self, response: UpstreamResponse) -> Optional[FeeRecord]:
        if not isinstance(response.body, dict):
            return None
        try:
            fees = [normalize_fee(item) for item in extract_fees(response.body)]
        except IntegrationResponseError:
            return None
        return next((fee for fee in fees if fee.matches(self.fee.name)), None)

    @staticmethod
    def _raise_on_not_found(response: UpstreamResponse, message: str) -> None:
        if response.not_found:
            raise UpstreamError(f"{message}: 404 - {response.body}", status=404, body=response.body)

    @staticmethod
    def _log_not_found(response: UpstreamResponse, action: str) -> None:
        if response.not_found:
            logger.warning("Upstream answered 404 to %s; verifying anyway", action)


def _fee_key(fee: FeeRecord) -> str:
    return (fee.name or fee.display_name or "").strip().lower()
