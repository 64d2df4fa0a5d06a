"""
Pytest configuration and shared fixtures.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from cinerecon.core.config import Settings, reset_settings
from cinerecon.core.entities import Entity, EntityKind
from cinerecon.core.models import Base


@pytest.fixture(scope="function")
def clean_env(monkeypatch):
    """
    Clean environment for testing.

    Removes all app-related env vars to ensure clean state.
    """
    env_vars = [
        "DATABASE_URL",
        "LOG_LEVEL",
        "EXACT_TEMPORAL_WINDOW",
        "AUDIT_TEMPORAL_WINDOW",
        "SWEEP_MIN_SIMILARITY",
        "IDENTICAL_MIN_SIMILARITY",
        "SAME_ENTITY_MIN_SIMILARITY",
        "MATCH_FLOOR",
        "IDENTIFIER_MIN_SIMILARITY",
        "IDENTIFIER_MAX_TEMPORAL_DELTA",
        "IDENTIFIER_CONFIDENCE",
        "LARGE_TEMPORAL_GAP",
        "VARIANT_MIN_SIMILARITY",
        "AUTO_APPLY_MIN_CONFIDENCE",
        "SOURCE_TRUST_ORDER",
        "TABLES_PATH",
    ]
    for var in env_vars:
        monkeypatch.delenv(var, raising=False)

    # Reset settings singleton
    reset_settings()

    yield

    # Reset again after test
    reset_settings()


@pytest.fixture
def settings(clean_env):
    """Default settings, ignoring any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture(scope="function")
def test_db():
    """
    Create an in-memory SQLite database for testing.

    Fresh database for each test.
    """
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


def make_movie(id, title, year=None, **kwargs):
    """Build a movie Entity with sensible defaults."""
    return Entity(id=id, title=title, year=year, kind=EntityKind.MOVIE, **kwargs)


def make_person(id, name, birth_year=None, **kwargs):
    """Build a person Entity; the temporal anchor is the birth year."""
    return Entity(id=id, title=name, year=birth_year, kind=EntityKind.PERSON, **kwargs)


# =============================================================================
# Reconciliation Fixtures
# =============================================================================

@pytest.fixture
def vikram_pair():
    """Short title vs full title, same year, same catalog id."""
    short = make_movie(
        "m-vikram",
        "Vikram",
        2006,
        external_ids={"tmdb:81012"},
        source="tmdb",
    )
    full = make_movie(
        "m-vikramarkudu",
        "Vikramarkudu",
        2006,
        alt_title="విక్రమార్కుడు",
        external_ids={"tmdb:81012", "imdb:tt0471571"},
        attributes={"director": "S. S. Rajamouli", "language": "te"},
        source="tmdb",
    )
    return short, full


@pytest.fixture
def puli_pair():
    """Short word inside a longer compound title, 24 years apart."""
    return (
        make_movie("m-puli", "Puli", 1985, source="catalog"),
        make_movie("m-pulijoodam", "Pulijoodam", 2009, source="catalog"),
    )


@pytest.fixture
def devadasu_pair():
    """Same title, released 40 years apart."""
    return (
        make_movie("m-devadasu-1974", "Devadasu", 1974, source="wikipedia"),
        make_movie("m-devadasu-2014", "Devadasu", 2014, source="wikipedia"),
    )


@pytest.fixture
def namesake_persons():
    """Same name, birth years 40 years apart."""
    return (
        make_person("p-ramesh-1950", "Ramesh Babu", 1950, source="wikipedia"),
        make_person("p-ramesh-1990", "Ramesh Babu", 1990, source="wikipedia"),
    )
