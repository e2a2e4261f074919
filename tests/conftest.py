"""Shared fixtures for the test suite."""

import copy

import pytest

from fakes import FakeFaceExtractor, FakePoseExtractor, InMemorySampler, StubFetcher
from vision_engine.database.operations import DatabaseOperations
from vision_engine.database.schema import get_session_factory, init_db
from vision_engine.pipeline.coordinator import PipelineConfig, PipelineCoordinator
from vision_engine.sampling.sampler import StreamKind

BASE_PAYLOAD = {
    "public_id": "sessions/ath42_bullpen",
    "secure_url": "https://cdn.example.com/video/upload/ath42_bullpen.mp4",
    "resource_type": "video",
    "format": "mp4",
    "duration": 2.0,
    "width": 1280,
    "height": 720,
    "frame_rate": 30,
    "tags": ["bullpen", "player_ath42"],
    "context": {
        "custom": {
            "player_id": "ath42",
            "sport": "baseball",
            "session_type": "training",
        },
    },
}


@pytest.fixture
def payload():
    return copy.deepcopy(BASE_PAYLOAD)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'vision_engine.db'}"


@pytest.fixture
def db_ops(database_url):
    engine = init_db(database_url)
    yield DatabaseOperations(get_session_factory(engine))
    engine.dispose()


@pytest.fixture
def make_coordinator(tmp_path, database_url):
    """Factory for coordinators wired to fakes; all are shut down afterwards."""
    created = []

    def factory(extractors=None, sampler=None, fetcher=None, **overrides):
        config = PipelineConfig(
            database_url=database_url,
            work_dir=str(tmp_path / "videos"),
            backoff_base=0.5,
            min_stream_timeout=30.0,
            safety_timeout=30.0,
        )
        for key, value in overrides.items():
            setattr(config, key, value)

        delays = []
        factories = {
            StreamKind.BIOMECHANICS: FakePoseExtractor,
            StreamKind.BEHAVIORAL: FakeFaceExtractor,
        }
        factories.update(extractors or {})

        coordinator = PipelineCoordinator(
            config,
            extractor_factories=factories,
            sampler=sampler or InMemorySampler(),
            fetcher=fetcher or StubFetcher(),
            sleep=delays.append,
        )
        coordinator.delays = delays
        created.append(coordinator)
        return coordinator

    yield factory

    for coordinator in created:
        coordinator.shutdown()
