"""
Shared fixtures: an in-memory SQLite catalog and small fakes for adapters and providers.
"""

from typing import List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.database.manager import CatalogStore
from src.database.models import Base, Category, Channel, User, Subscription
from src.ingestion.base import Candidate, SourceAdapter


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return CatalogStore(session_factory)


@pytest.fixture
def seed(session_factory):
    """Add rows directly and return them with ids assigned."""

    def _seed(*rows):
        session = session_factory()
        try:
            session.add_all(rows)
            session.commit()
            return rows[0] if len(rows) == 1 else rows
        finally:
            session.close()

    return _seed


@pytest.fixture
def categories(seed):
    return seed(
        Category(name="Partidos"),
        Category(name="Fichajes"),
        Category(name="Noticias"),
    )


@pytest.fixture
def channel_with_subscribers(seed):
    """A YouTube channel with two subscribers, one of them without email notifications."""
    channel = seed(Channel(platform="youtube", external_id="UC_atleti", title="Atleti Fans"))
    alice, bob = seed(
        User(username="alice", email="alice@example.com"),
        User(username="bob", email="bob@example.com"),
    )
    seed(
        Subscription(user_id=alice.id, channel_id=channel.id, notifications_enabled=True),
        Subscription(user_id=bob.id, channel_id=channel.id, notifications_enabled=False),
    )
    return channel, [alice, bob]


def make_candidate(external_id: str = "vid1", title: str = "Atletico de Madrid vs Sevilla highlights",
                   view_count: int = 5000, platform: str = "youtube",
                   channel_external_id: Optional[str] = "UC_atleti",
                   channel_title: Optional[str] = "Atleti Fans", description: str = "") -> Candidate:
    return Candidate(
        platform=platform,
        external_id=external_id,
        title=title,
        description=description,
        channel_external_id=channel_external_id,
        channel_title=channel_title,
        view_count=view_count,
        duration=120,
        thumbnail_url=f"https://i.ytimg.com/vi/{external_id}/hqdefault.jpg",
        video_url=f"https://www.youtube.com/watch?v={external_id}",
    )


class FakeAdapter(SourceAdapter):
    """Adapter returning fixed candidates; raise_error makes every fetch fail."""

    def __init__(self, platform: str = "youtube", candidates: Optional[List[Candidate]] = None,
                 channel_items: Optional[dict] = None, raise_error: Optional[Exception] = None,
                 relevance_keywords=None):
        super().__init__(relevance_keywords)
        self.platform = platform
        self.candidates = list(candidates or [])
        self.channel_items = channel_items or {}
        self.raise_error = raise_error
        self.search_calls = []

    async def fetch_candidates(self, query, max_results, order=None):
        self.search_calls.append((query, max_results, order))
        if self.raise_error:
            raise self.raise_error
        return self.candidates[:max_results]

    async def fetch_channel_items(self, channel_external_id, max_results):
        if self.raise_error:
            raise self.raise_error
        return self.channel_items.get(channel_external_id, [])[:max_results]


class FakeProvider:
    """Provider returning canned answers, or raising when the answer is an exception."""

    def __init__(self, name, classify_answer=None, summarize_answer=None):
        self.name = name
        self.classify_answer = classify_answer
        self.summarize_answer = summarize_answer
        self.classify_calls = 0
        self.summarize_calls = 0

    async def classify(self, title, description, categories):
        self.classify_calls += 1
        if isinstance(self.classify_answer, Exception):
            raise self.classify_answer
        return self.classify_answer

    async def summarize(self, title, description):
        self.summarize_calls += 1
        if isinstance(self.summarize_answer, Exception):
            raise self.summarize_answer
        return self.summarize_answer
