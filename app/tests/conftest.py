import asyncio
import os
from datetime import datetime, timezone

# Settings are read once (lru_cache); point them at SQLite before any app import.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CSRF_SECRET", "test-csrf-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# FORCE model registration
import app.models  # noqa

from app.core.config import Settings, get_settings
from app.core.rate_limit import per_minute
from app.db.base import Base
from app.models.brand import Brand
from app.models.enums import ChainStatus
from app.models.product import Product
from app.models.tag import Tag
from app.services.ai_risk_cache import AIRiskCache
from app.services.ai_risk_client import AIRiskAssessment
from app.services.registry_client import OnChainTagRecord
from app.services.registry_reconciler import RegistryReconciler
from app.services.verification_service import VerificationService

CHAIN_CREATED_AT = datetime(2025, 1, 15, 8, 30, tzinfo=timezone.utc)


# ─────────────────────────────────────────────
# IN-PROCESS COLLABORATORS
# ─────────────────────────────────────────────


class FakeRegistry:
    """TagRegistryReader double: per-code records, optional failure or delay."""

    def __init__(self):
        self.records = {}
        self.by_hash = {}
        self.error = None
        self.delay = 0.0
        self.calls = 0

    def set_status(self, tag_code, status, *, is_valid=None, hash_hex="0x" + "ab" * 32):
        self.records[tag_code] = OnChainTagRecord(
            exists=True,
            is_valid=(status not in (ChainStatus.FLAGGED, ChainStatus.REVOKED)) if is_valid is None else is_valid,
            hash=hash_hex,
            metadata_uri=f"ipfs://meta/{tag_code}",
            status=status,
            created_at=CHAIN_CREATED_AT,
        )

    async def _maybe_fail(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    async def validate_tag(self, tag_code):
        await self._maybe_fail()
        return self.records.get(
            tag_code,
            OnChainTagRecord(
                exists=False, is_valid=False, hash=None, metadata_uri=None, status=None, created_at=None
            ),
        )

    async def validate_by_hash(self, hash_hex):
        await self._maybe_fail()
        return self.by_hash[hash_hex.lower()]

    async def tag_exists_by_hash(self, hash_hex):
        await self._maybe_fail()
        return hash_hex.lower() in self.by_hash


class FakeAssessor:
    """RiskAssessor double returning a fixed assessment."""

    def __init__(self, assessment=None):
        self.assessment = assessment or AIRiskAssessment(
            riskLevel="low",
            riskScore=10,
            reasons=[],
            recommendation="Looks fine.",
        )
        self.error = None
        self.delay = 0.0
        self.calls = []

    async def assess(self, distribution, observation, snapshot):
        self.calls.append((distribution, observation, snapshot))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.assessment


# ─────────────────────────────────────────────
# FIXTURES
# ─────────────────────────────────────────────


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        chain_timeout_seconds=0.2,
        chain_retries=0,
        chain_network="sepolia",
        chain_id=11155111,
        chain_contract_address="0x5FbDB2315678afecb367f032d93F642f64180aa3",
        ai_timeout_seconds=0.2,
        csrf_secret="test-csrf-secret",
        public_base_url="https://etag.example",
        scan_rate_limit_per_minute=30,
    )


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(eng)
        eng.dispose()


@pytest.fixture(scope="function")
def db(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def assessor():
    return FakeAssessor()


@pytest.fixture
def service(settings, registry, assessor):
    return VerificationService(
        settings,
        RegistryReconciler(registry, settings),
        AIRiskCache(assessor, settings),
    )


@pytest.fixture
def make_tag(db):
    def _make(code="T1", *, is_stamped=True, chain_status=None, metadata=None, with_product=True, **extra):
        product_ids = []
        if with_product:
            brand = Brand(name="Acme", logo_url="https://cdn.example/acme.png")
            db.add(brand)
            db.flush()
            product = Product(
                brand_id=brand.id,
                code=f"PRD-{code}",
                metadata_json={"name": "Acme Sneaker", "images": ["https://cdn.example/1.png"]},
            )
            db.add(product)
            db.flush()
            product_ids = [product.id]
        tag = Tag(
            code=code,
            product_ids=product_ids,
            is_stamped=is_stamped,
            chain_status=chain_status,
            metadata_json=metadata or {},
            **extra,
        )
        db.add(tag)
        db.commit()
        return tag

    return _make


@pytest.fixture
def scan_limiter(settings):
    return per_minute(settings.scan_rate_limit_per_minute)


@pytest.fixture
def client(db, settings, service, scan_limiter):
    from app.main import create_app
    from app.core.deps import get_scan_limiter, get_verification_service
    from app.db.session import get_db

    app = create_app()

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_verification_service] = lambda: service
    app.dependency_overrides[get_scan_limiter] = lambda: scan_limiter

    with TestClient(app) as c:
        yield c


@pytest.fixture
def csrf_headers(client, settings):
    """Fetch a token (sets the cookie on the client) and return the matching header."""
    r = client.get("/api/v1/csrf")
    assert r.status_code == 200
    return {settings.csrf_header_name: r.json()["csrfToken"]}
