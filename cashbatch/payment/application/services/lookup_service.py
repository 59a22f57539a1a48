"""Customer lookup maintenance."""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ....exceptions import ValidationError
from ....utils.logging import get_logger
from ...domain.enums import LookupKeyType
from ...domain.models import CustomerLookup
from ...infrastructure.repository import CustomerLookupRepository

logger = get_logger(__name__)


def parse_key_type(value: LookupKeyType | str) -> LookupKeyType:
    """Accept an enum member or its wire name (``BankRouteAcct`` ...)."""
    if isinstance(value, LookupKeyType):
        return value
    try:
        return LookupKeyType(value)
    except ValueError as e:
        allowed = ", ".join(member.value for member in LookupKeyType)
        raise ValidationError(
            f"Unknown lookup key type (expected one of {allowed})", field="key_type", value=value
        ) from e


class LookupService:
    """Upsert and list customer lookups.

    Upserts are atomic per key: the insert runs in a savepoint and a
    unique-constraint violation turns it into an update of the row that won.
    The caller commits.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self.repository = CustomerLookupRepository(session)

    def upsert(
        self,
        key_type: LookupKeyType | str,
        key_value: str,
        customer_id: str,
        confidence: float = 1.0,
    ) -> CustomerLookup:
        """Insert or update the lookup for ``(key_type, key_value)``.

        Raises:
            ValidationError: If the key or customer is blank, or the key type is unknown
        """
        kind = parse_key_type(key_type)
        key_value = (key_value or "").strip()
        customer_id = (customer_id or "").strip()
        if not key_value:
            raise ValidationError("Lookup key value is required", field="key_value")
        if not customer_id:
            raise ValidationError("Customer id is required", field="customer_id")
        if not 0.0 <= confidence <= 1.0:
            raise ValidationError(
                "Confidence must be between 0.0 and 1.0", field="confidence", value=confidence
            )

        existing = self.repository.find(kind, key_value)
        if existing is None:
            try:
                with self.session.begin_nested():
                    entry = CustomerLookup(
                        key_type=kind,
                        key_value=key_value,
                        customer_id=customer_id,
                        confidence=confidence,
                    )
                    self.session.add(entry)
                logger.info(
                    "customer_lookup_created",
                    key_type=str(kind),
                    key_value=key_value,
                    customer_id=customer_id,
                )
                return entry
            except IntegrityError:
                logger.debug("customer_lookup_insert_conflict", key_type=str(kind))
                existing = self.repository.find(kind, key_value)
                if existing is None:
                    raise

        existing.customer_id = customer_id
        existing.confidence = confidence
        self.session.flush()
        logger.info(
            "customer_lookup_updated",
            key_type=str(kind),
            key_value=key_value,
            customer_id=customer_id,
        )
        return existing

    def list_all(self) -> list[CustomerLookup]:
        return self.repository.find_all()
