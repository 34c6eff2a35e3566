"""
ledger_services.stay_payment_service -- Guest cash payments and refunds.

Responsibility:
    Turns a guest cash payment or a cash refund for a stay into one balanced
    correlation group: the actor's cash register on one side, the
    apartment's revenue account on the other, split by fiscal month.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Composes AccountRegistry and LedgerService (kernel), PostingSelector
    (kernel, read side) and the pure allocation engine
    (ledger_engines.stay_allocation).

Invariants enforced:
    - Revenue is booked into the fiscal month the nights belong to, never
      into the month the cash arrived.
    - Refunds unwind the months recorded in the stay's posting history,
      latest first; the current stay dates do not move them.
    - Overpayment is never absorbed silently: it is rejected, booked to the
      guest overpayment liability, or handed back as change, by policy.
    - All-or-nothing: each call runs in a savepoint; a failure leaves no
      postings and no balance change behind.
    - The apartment's revenue account is locked FOR UPDATE before the
      stay's history is read, so history read, allocation and posting of
      one call see no concurrent payment or refund on that apartment.

Failure modes:
    - InvalidAmountError: non-positive amount, or RETURN_CHANGE on a stay
      that owes nothing.
    - CashRegisterNotFoundError: the actor has no active cash register.
    - AccountNotFoundError: the apartment has no revenue account.
    - UnresolvedOverpaymentError: REJECT policy and the payment exceeds
      what the stay still owes.
    - RefundExceedsPaidError: refund larger than the total paid.
    - BalanceWriteConflictError: concurrent balance write (retryable).

Audit relevance:
    - Every payment and refund group carries source_id = stay_id, so the
      full money trail of a stay is one postings_by_source query.
    - Revenue lines carry the fiscal period they were allocated to.

Usage:
    from ledger_services.stay_payment_service import StayPaymentService

    payments = StayPaymentService(session, clock, config)
    receipt = payments.record_cash_payment(stay, Decimal("300.00"), actor)
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig, OverpaymentPolicy
from ledger_engines.stay_allocation import (
    PaymentAllocation,
    PeriodAmounts,
    RefundAllocation,
    allocate_payment,
    allocate_refund,
)
from ledger_kernel.domain.balance_rules import quantize_money
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import Actor, PostedGroup, PostingLine, PostingRecord, Stay
from ledger_kernel.exceptions import InvalidAmountError, UnresolvedOverpaymentError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.posting import SourceType
from ledger_kernel.selectors.posting_selector import PostingSelector
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.ledger_service import LedgerService

logger = get_logger("services.stay_payment")

STAY_SOURCE_TYPES = (SourceType.ACCOMMODATION_PAYMENT, SourceType.ACCOMMODATION_REFUND)


@dataclass(frozen=True)
class PaymentReceipt:
    """Outcome of record_cash_payment."""

    correlation_id: UUID
    stay_id: UUID
    amount: Decimal
    cash_account_code: str
    revenue_account_code: str
    allocation: PaymentAllocation
    posted: PostedGroup
    overpayment_policy: OverpaymentPolicy
    overpayment_warning: str | None = None

    @property
    def overpayment(self) -> Decimal:
        return self.allocation.overpayment


@dataclass(frozen=True)
class RefundReceipt:
    """Outcome of record_refund."""

    correlation_id: UUID
    stay_id: UUID
    amount: Decimal
    cash_account_code: str
    revenue_account_code: str
    allocation: RefundAllocation
    posted: PostedGroup


def overpayment_warning(allocation: PaymentAllocation) -> str | None:
    """Operator-facing warning text for a payment that overshoots the stay."""
    if allocation.overpayment <= 0:
        return None
    return (
        f"Warning: This payment results in an overpayment of "
        f"{allocation.overpayment:.2f}. Total stay amount: {allocation.total_stay:.2f}. "
        f"Total paid (including this payment): {allocation.total_paid:.2f}."
    )


class StayPaymentService:
    """
    Records guest cash payments and refunds.

    Contract:
        Flushes within the caller's transaction and never commits.  The
        stay is a read-only input; the actor is the employee holding the
        cash register.

    Guarantees:
        - One correlation group per call, debits equal credits.
        - The cash line carries the payment date's period; revenue lines
          carry their allocated months.

    Non-goals:
        - No permission checks on who may take or hand back money.
        - Non-cash payment methods.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None,
        config: LedgerConfig,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config
        self._registry = AccountRegistry(session, config.account_policy)
        self._ledger = LedgerService(session, self._clock)
        self._postings = PostingSelector(session)

    def stay_revenue_postings(self, stay: Stay) -> tuple[PostingRecord, ...]:
        """Payment and refund postings of a stay on its apartment's revenue account."""
        revenue = self._registry.revenue_account_for(stay.apartment_id)
        return self._postings.postings_by_source(
            STAY_SOURCE_TYPES, stay.stay_id, account_code=revenue.code
        )

    def record_cash_payment(
        self,
        stay: Stay,
        amount: Decimal,
        actor: Actor,
        payment_date: date | None = None,
        *,
        note: str | None = None,
        document_number: str | None = None,
        overpayment_policy: OverpaymentPolicy | str | None = None,
    ) -> PaymentReceipt:
        """
        Book a guest's cash payment against the stay.

        Preconditions:
            - The actor has an active cash register.
            - The stay's apartment has a revenue account.

        Postconditions:
            - Cash register debited by the money kept.
            - Revenue credited per fiscal month, earliest unpaid month first.
            - Any surplus handled by ``overpayment_policy``.

        Args:
            stay: The stay being paid for.
            amount: Cash handed over by the guest.
            actor: Employee receiving the cash.
            payment_date: Defaults to the clock's today.
            note: Free text stored on every posting.
            document_number: Receipt number.
            overpayment_policy: Overrides the configured policy.

        Raises:
            InvalidAmountError, CashRegisterNotFoundError,
            AccountNotFoundError, UnresolvedOverpaymentError,
            BalanceWriteConflictError.
        """
        if amount is None or amount <= 0:
            raise InvalidAmountError(amount, "payment amount must be greater than 0")

        policy = OverpaymentPolicy(overpayment_policy or self._config.overpayment_policy)
        payment_date = payment_date or self._clock.today()

        with LogContext.bind(
            actor_id=actor.actor_id, operation="record_cash_payment", source_id=stay.stay_id
        ):
            savepoint = self._session.begin_nested()
            try:
                # Revenue row lock serializes allocation per apartment until commit.
                revenue = self._registry.revenue_account_for(stay.apartment_id, lock=True)
                cash = self._registry.cash_register_for(actor.actor_id, actor.role)
                prior = self._postings.postings_by_source(
                    STAY_SOURCE_TYPES, stay.stay_id, account_code=revenue.code
                )

                allocation = allocate_payment(stay, stay.nightly_rate, amount, prior)
                received = quantize_money(amount)

                lines = [
                    PostingLine.credit_line(
                        revenue.code,
                        month.amount,
                        fiscal_year=month.fiscal_year,
                        fiscal_month=month.fiscal_month,
                        description=f"Accommodation revenue - {stay.apartment_name}",
                    )
                    for month in allocation.allocations
                ]

                if allocation.overpayment > 0:
                    if policy is OverpaymentPolicy.REJECT:
                        logger.warning(
                            "payment_overpayment_rejected",
                            extra={
                                "overpayment": allocation.overpayment,
                                "total_stay": allocation.total_stay,
                                "total_paid": allocation.total_paid,
                            },
                        )
                        raise UnresolvedOverpaymentError(
                            str(stay.stay_id),
                            allocation.overpayment,
                            allocation.total_stay,
                            allocation.total_paid,
                        )
                    if policy is OverpaymentPolicy.ACCEPT_AS_CREDIT:
                        lines.append(
                            PostingLine.credit_line(
                                self._config.guest_overpayment_account,
                                allocation.overpayment,
                                description=f"Guest overpayment - {stay.apartment_name}",
                            )
                        )
                    else:
                        received = allocation.allocated_total
                        if received <= 0:
                            raise InvalidAmountError(amount, "stay already fully paid")

                lines.insert(
                    0,
                    PostingLine.debit_line(
                        cash.code,
                        received,
                        description=f"Cash payment received - {cash.name} ({stay.apartment_name})",
                    ),
                )

                posted = self._ledger.post_group(
                    lines,
                    source_type=SourceType.ACCOMMODATION_PAYMENT,
                    source_id=stay.stay_id,
                    created_by=actor.actor_id,
                    posting_date=payment_date,
                    note=note,
                    document_number=document_number,
                )
            except BaseException:
                savepoint.rollback()
                raise
            savepoint.commit()

            warning = overpayment_warning(allocation)
            logger.info(
                "stay_payment_recorded",
                extra={
                    "correlation_id": posted.correlation_id,
                    "amount": received,
                    "cash_account_code": cash.code,
                    "revenue_account_code": revenue.code,
                    "months": len(allocation.allocations),
                    "overpayment": allocation.overpayment,
                    "overpayment_policy": policy.value,
                },
            )

        return PaymentReceipt(
            correlation_id=posted.correlation_id,
            stay_id=stay.stay_id,
            amount=received,
            cash_account_code=cash.code,
            revenue_account_code=revenue.code,
            allocation=allocation,
            posted=posted,
            overpayment_policy=policy,
            overpayment_warning=warning,
        )

    def record_refund(
        self,
        stay: Stay,
        amount: Decimal,
        actor: Actor,
        refund_date: date | None = None,
        prior_postings: Iterable[PeriodAmounts] | None = None,
        *,
        note: str | None = None,
        document_number: str | None = None,
    ) -> RefundReceipt:
        """
        Hand cash back to a guest and take the revenue back out.

        The months debited are chosen from ``prior_postings`` (default: the
        stay's own revenue postings), latest month first.

        Raises:
            InvalidAmountError, CashRegisterNotFoundError,
            AccountNotFoundError, RefundExceedsPaidError,
            BalanceWriteConflictError.
        """
        if amount is None or amount <= 0:
            raise InvalidAmountError(amount, "refund amount must be greater than 0")

        refund_date = refund_date or self._clock.today()

        with LogContext.bind(
            actor_id=actor.actor_id, operation="record_refund", source_id=stay.stay_id
        ):
            savepoint = self._session.begin_nested()
            try:
                # Revenue row lock serializes allocation per apartment until commit.
                revenue = self._registry.revenue_account_for(stay.apartment_id, lock=True)
                cash = self._registry.cash_register_for(actor.actor_id, actor.role)
                if prior_postings is None:
                    prior_postings = self._postings.postings_by_source(
                        STAY_SOURCE_TYPES, stay.stay_id, account_code=revenue.code
                    )

                allocation = allocate_refund(stay, amount, tuple(prior_postings))

                lines = [
                    PostingLine.debit_line(
                        revenue.code,
                        month.amount,
                        fiscal_year=month.fiscal_year,
                        fiscal_month=month.fiscal_month,
                        description=f"Accommodation refund - {stay.apartment_name}",
                    )
                    for month in allocation.allocations
                ]
                lines.append(
                    PostingLine.credit_line(
                        cash.code,
                        allocation.refund_amount,
                        description=f"Cash refund paid - {cash.name} ({stay.apartment_name})",
                    )
                )

                posted = self._ledger.post_group(
                    lines,
                    source_type=SourceType.ACCOMMODATION_REFUND,
                    source_id=stay.stay_id,
                    created_by=actor.actor_id,
                    posting_date=refund_date,
                    note=note,
                    document_number=document_number,
                )
            except BaseException:
                savepoint.rollback()
                raise
            savepoint.commit()

            logger.info(
                "stay_refund_recorded",
                extra={
                    "correlation_id": posted.correlation_id,
                    "amount": allocation.refund_amount,
                    "cash_account_code": cash.code,
                    "revenue_account_code": revenue.code,
                    "months": len(allocation.allocations),
                    "total_after_refund": allocation.total_after_refund,
                },
            )

        return RefundReceipt(
            correlation_id=posted.correlation_id,
            stay_id=stay.stay_id,
            amount=allocation.refund_amount,
            cash_account_code=cash.code,
            revenue_account_code=revenue.code,
            allocation=allocation,
            posted=posted,
        )

