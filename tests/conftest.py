"""
Pytest configuration and shared fixtures
"""
import pytest
from pathlib import Path
import tempfile
import shutil
import json
import sys
from unittest.mock import MagicMock

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from accessible_places.database import DatabaseManager, Location, Author


# =========================
# Pytest Configuration
# =========================
def pytest_configure(config):
    """Configure pytest markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no database)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (DuckDB store)"
    )
    config.addinivalue_line(
        "markers", "slow: Slow tests (many concurrent writers)"
    )


# =========================
# Directory Fixtures
# =========================
@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


# =========================
# Database Fixtures
# =========================
@pytest.fixture
def db():
    """In-memory database with schema, no backoff between retries"""
    manager = DatabaseManager(
        ":memory:",
        max_attempts=5,
        retry_min_wait=0,
        retry_max_wait=0,
    )
    manager.initialize_schema()
    yield manager
    manager.close()


@pytest.fixture
def sample_location():
    """Location with typed coordinates and two declared features"""
    return Location(
        location_id="loc-paulista",
        name="MASP",
        address="Av. Paulista, 1578 - São Paulo",
        place_type="theater",
        latitude=-23.5614,
        longitude=-46.6559,
        accessibility_features=["wheelchair", "elevator"],
    )


@pytest.fixture
def seeded_db(db, sample_location):
    """Database holding sample_location plus one legacy-encoded location"""
    db.upsert_location(sample_location)
    db.upsert_location(Location(
        location_id="loc-legacy",
        name="Biblioteca",
        location_raw="[23.5S, 46.6W]",
        accessibility_features=["Piso tátil"],
    ))
    return db


# =========================
# Review Fixtures
# =========================
@pytest.fixture
def author():
    return Author(user_id="user-1", display_name="Ana", photo_ref="photos/user-1.jpg")


@pytest.fixture
def other_author():
    return Author(user_id="user-2")


@pytest.fixture
def sample_payload():
    return {
        "rating": 4.0,
        "comment": "Rampa boa, elevador funcionando",
        "feature_ratings": {"wheelchair": 5.0, "elevator": 3.0},
    }


@pytest.fixture
def mock_experience_service():
    """Mock XP collaborator"""
    service = MagicMock()
    service.award.return_value = 10
    return service


# =========================
# Legacy Document Fixtures
# =========================
@pytest.fixture
def legacy_location_records():
    """One exported document per coordinate encoding"""
    return [
        {"id": "typed", "name": "Typed", "latitude": -23.5, "longitude": -46.6, "rating": 4, "reviewCount": 2},
        {"id": "nested", "name": "Nested", "location": {"latitude": -22.9, "longitude": -43.2}},
        {"id": "pair", "name": "Pair", "location": ["23.5S", "46.6W"]},
        {"id": "mixed", "name": "Mixed", "location": [-15.8, "47.9O"]},
        {"id": "string", "name": "String", "location": "[12.9 S, 38.5 W]"},
        {"id": "nowhere", "name": "No coordinates"},
        {"name": "No id"},
    ]


@pytest.fixture
def locations_export(temp_dir, legacy_location_records):
    """JSON array export of legacy location documents"""
    path = temp_dir / "locations.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(legacy_location_records, f)
    return path


@pytest.fixture
def reviews_export(temp_dir):
    """NDJSON export of legacy review documents"""
    records = [
        {"id": "r1", "locationId": "typed", "rating": 5, "featureRatings": {"wheelchair": 4},
         "userId": "u1", "userName": "Ana", "createdAt": {"seconds": 1700000000, "nanoseconds": 0}},
        {"id": "r2", "locationId": "typed", "rating": 3, "comment": "ok",
         "userId": "u2", "createdAt": "2024-01-15T10:00:00Z"},
        {"id": "r3", "locationId": "typed", "rating": 9, "userId": "u3"},
    ]
    path = temp_dir / "reviews.ndjson"
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")
        f.write("\n")
        f.write("{not json\n")
    return path
