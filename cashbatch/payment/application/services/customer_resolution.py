"""Customer resolution from bank identity.

Three lookup tiers, first hit wins:

1. ``bank_number|account`` against BankRouteAcct
2. bare account against BankAcct
3. remit-address hash against AddrHash

The per-payment path and the set-based bulk path derive their keys from the
same hybrid properties on ``Payment``, so both give identical results.
"""

from sqlalchemy import Select, select, update
from sqlalchemy.orm import Session

from ....utils.logging import get_logger
from ...domain.enums import LookupKeyType
from ...domain.models import CustomerLookup, Payment
from ...infrastructure.repository import CustomerLookupRepository

logger = get_logger(__name__)


def candidate_keys(payment: Payment) -> list[tuple[LookupKeyType, str]]:
    """Lookup keys for a payment in resolution priority order, blanks skipped."""
    keys: list[tuple[LookupKeyType, str | None]] = [
        (LookupKeyType.BANK_ROUTE_ACCT, payment.route_account_key),
        (LookupKeyType.BANK_ACCT, payment.account_key),
        (LookupKeyType.ADDR_HASH, payment.address_key),
    ]
    return [(key_type, value) for key_type, value in keys if value]


class CustomerResolver:
    """Resolve the customer a payment belongs to via the lookup table."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.lookups = CustomerLookupRepository(session)

    def resolve(self, payment: Payment) -> str | None:
        """Return the customer id for ``payment``, or None when no key matches."""
        for key_type, key_value in candidate_keys(payment):
            customer_id = self.lookups.find_customer(key_type, key_value)
            if customer_id:
                logger.debug(
                    "customer_resolved",
                    payment_id=payment.id,
                    key_type=str(key_type),
                    customer_id=customer_id,
                )
                return customer_id
        return None

    def _lookup_subquery(self, key_type: LookupKeyType, key_expression) -> Select:
        return select(CustomerLookup.customer_id).where(
            CustomerLookup.key_type == key_type,
            CustomerLookup.key_value == key_expression,
        )

    def _expire_loaded_customers(self) -> None:
        # Loaded payments reload the customer written by the UPDATE on next access
        for obj in list(self.session.identity_map.values()):
            if isinstance(obj, Payment):
                self.session.expire(obj, ["customer_id"])

    def bulk_assign(self, batch_id: int) -> int:
        """Fill the customer of every unresolved payment of a batch in three UPDATEs.

        Tiers run in priority order; each one only touches payments the
        previous tiers left unresolved.

        Returns:
            Number of payments that received a customer
        """
        tiers = (
            (LookupKeyType.BANK_ROUTE_ACCT, Payment.route_account_key),
            (LookupKeyType.BANK_ACCT, Payment.account_key),
            (LookupKeyType.ADDR_HASH, Payment.address_key),
        )

        updated = 0
        for key_type, key_expression in tiers:
            lookup = self._lookup_subquery(key_type, key_expression)
            stmt = (
                update(Payment)
                .where(
                    Payment.batch_id == batch_id,
                    Payment.needs_customer,
                    lookup.exists(),
                )
                .values(customer_id=lookup.limit(1).scalar_subquery())
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(stmt)
            count = result.rowcount or 0
            if count:
                logger.debug("bulk_customer_tier", key_type=str(key_type), payments=count)
            updated += count

        if updated:
            self._expire_loaded_customers()
        logger.info("bulk_customer_assign", batch_id=batch_id, payments=updated)
        return updated
