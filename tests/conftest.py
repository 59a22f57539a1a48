"""
Pytest configuration and global fixtures.

This module provides shared fixtures used across all tests.
"""

import os
from collections.abc import Callable, Generator
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from cashbatch.payment.domain.enums import PaymentStatus
from cashbatch.payment.domain.models import Batch, Payment
from cashbatch.payment.infrastructure.invoice_source import OpenInvoiceProvider
from cashbatch.storage.database.base import Base, enable_sqlite_savepoints
from cashbatch.utils.config import Settings
from tests.factories import FakeInvoiceSource


@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine("sqlite:///:memory:", echo=False)
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()  # Properly close all database connections


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """
    Create a database session for testing.

    Each test gets a fresh session with automatic rollback.
    """
    SessionLocal = sessionmaker(bind=db_engine)
    session = SessionLocal()

    yield session

    session.rollback()
    session.close()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary directories."""
    settings = Settings(
        database_url="sqlite:///:memory:",
        data_dir=tmp_path / "data",
        export_directory=tmp_path / "exports",
        export_fiscal_year=2025,
        export_period=3,
        export_bank_number="021000021",
        export_gl_bank_account="1010-00",
        export_ar_account="1200-00",
        export_terms_account="4900-00",
        export_allowed_account="4910-00",
        company_id="01",
        _env_file=None,
    )
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


@pytest.fixture
def sample_batch(db_session: Session) -> Batch:
    """Create an open batch."""
    batch = Batch(
        name="DEP-0315",
        imported_by="tester",
        source_filename="lockbox_0315.csv",
        deposit_date=date(2025, 3, 15),
    )
    db_session.add(batch)
    db_session.commit()
    return batch


@pytest.fixture
def make_payment(db_session: Session, sample_batch: Batch) -> Callable[..., Payment]:
    """Factory creating committed payments in ``sample_batch``."""
    sequence = iter(range(1, 10_000))

    def _make(amount: str = "100.00", **fields: Any) -> Payment:
        number = next(sequence)
        fields.setdefault("check_number", f"CHK{number:04d}")
        fields.setdefault("status", PaymentStatus.IMPORTED)
        payment = Payment(
            batch_id=sample_batch.id, amount=Decimal(amount), sequence_number=number, **fields
        )
        db_session.add(payment)
        db_session.commit()
        return payment

    return _make


@pytest.fixture
def fake_source() -> FakeInvoiceSource:
    return FakeInvoiceSource()


@pytest.fixture
def invoice_provider(fake_source: FakeInvoiceSource) -> OpenInvoiceProvider:
    """Provider over ``fake_source`` with the timeout disabled."""
    return OpenInvoiceProvider(fake_source, timeout_seconds=None)


@pytest.fixture(autouse=True)
def reset_env():
    """Reset environment variables after each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
