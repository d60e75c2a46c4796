from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from cache import QueryCache
from repository import DiscountCodeRepository, ProductRepository
from schemas import DiscountCodeCreate, Product


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["store_test"]


@pytest.fixture
def query_cache():
    return QueryCache()


@pytest.fixture
def client(mongo_db, query_cache):
    main.app.dependency_overrides[main.get_db] = lambda: mongo_db
    main.app.dependency_overrides[main.get_cache] = lambda: query_cache
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def products(mongo_db):
    return ProductRepository(mongo_db)


@pytest.fixture
def codes(mongo_db):
    repo = DiscountCodeRepository(mongo_db)
    repo.ensure_indexes()
    return repo


@pytest.fixture
def make_product(products):
    def _make(name="Trail Runner", category="Running", price=10000, stock=50, discount=0):
        return products.create(Product(name=name, category=category, price=price, stock=stock, discount=discount))
    return _make


@pytest.fixture
def make_code(codes):
    def _make(code="SAVE20", discount_percentage=20, **kwargs):
        kwargs.setdefault("created_by", "admin@store.test")
        return codes.create(DiscountCodeCreate(code=code, discount_percentage=discount_percentage, **kwargs))
    return _make


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


@pytest.fixture
def tomorrow(now):
    return now + timedelta(days=1)


@pytest.fixture
def yesterday(now):
    return now - timedelta(days=1)
