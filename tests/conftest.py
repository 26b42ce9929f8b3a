"""Pytest fixtures for testing"""

import json
import pytest
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Generator, List, Optional

import httpx
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from merchant_credit.api.dependencies import get_explainer, get_gateway_client
from merchant_credit.api.main import create_app
from merchant_credit.domain.models import PaymentMethod, Transaction, TransactionStatus
from merchant_credit.domain.signing import Signer
from merchant_credit.infrastructure.clients.explainer import NullExplainer
from merchant_credit.infrastructure.clients.gateway import GatewayCredentials, PaymentGatewayClient
from merchant_credit.infrastructure.database.models import Base
from merchant_credit.infrastructure.database.repositories import LedgerStore
from merchant_credit.infrastructure.database.session import get_db


# Test database
TEST_DATABASE_URL = "sqlite://"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

MERCHANT_ID = "010001"


@dataclass
class KeyPair:
    private_pem: str
    public_pem: str

    @property
    def signer(self) -> Signer:
        return Signer(self.private_pem, self.public_pem)


def _generate_key_pair() -> KeyPair:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return KeyPair(private_pem=private_pem, public_pem=public_pem)


@pytest.fixture(scope="session")
def merchant_keys() -> KeyPair:
    """Key pair the merchant signs outbound requests with"""
    return _generate_key_pair()


@pytest.fixture(scope="session")
def gateway_keys() -> KeyPair:
    """Key pair the gateway signs callbacks with"""
    return _generate_key_pair()


@pytest.fixture
def credentials(merchant_keys: KeyPair, gateway_keys: KeyPair) -> GatewayCredentials:
    return GatewayCredentials(
        merchant_id=MERCHANT_ID,
        private_key=merchant_keys.private_pem,
        public_key=gateway_keys.public_pem,
        server="SIT",
    )


@dataclass
class FakeGateway:
    """Records outbound gateway calls and answers with a canned reply"""

    reply: Dict[str, Any] = field(default_factory=lambda: {"errCode": "0"})
    status_code: int = 200
    raw_reply: Optional[str] = None
    error: Optional[Exception] = None
    requests: List[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.raw_reply is not None:
            return httpx.Response(self.status_code, text=self.raw_reply)
        return httpx.Response(self.status_code, json=self.reply)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def last_body(self) -> Dict[str, Any]:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def gateway_client(credentials: GatewayCredentials, fake_gateway: FakeGateway) -> PaymentGatewayClient:
    return PaymentGatewayClient(credentials=credentials, timeout=5.0, transport=fake_gateway.transport)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db: Session) -> LedgerStore:
    return LedgerStore(db)


@pytest.fixture
def client(db: Session, gateway_client: PaymentGatewayClient) -> TestClient:
    """Create FastAPI test client with test database, fake gateway and canned explainer"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_client] = lambda: gateway_client
    app.dependency_overrides[get_explainer] = lambda: NullExplainer()
    return TestClient(app)


@pytest.fixture
def make_transaction() -> Callable[..., Transaction]:
    """Factory for ledger transactions with sensible defaults"""
    counter = {"n": 0}

    def _make(
        days_ago: float = 0,
        amount: str = "100000",
        status: TransactionStatus = TransactionStatus.SUCCESS,
        settlement_days: Optional[float] = 1,
        merchant_id: str = "M-001",
        method: PaymentMethod = PaymentMethod.QRIS,
        now: Optional[datetime] = None,
    ) -> Transaction:
        counter["n"] += 1
        now = now or datetime.now(timezone.utc)
        txn_date = now - timedelta(days=days_ago)
        return Transaction(
            transaction_id=f"TXN-{counter['n']:05d}",
            merchant_id=merchant_id,
            transaction_date=txn_date,
            amount=Decimal(amount),
            payment_method=method,
            status=status,
            settlement_date=txn_date + timedelta(days=settlement_days) if settlement_days is not None else None,
        )

    return _make
