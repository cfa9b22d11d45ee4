from __future__ import annotations

from sqlalchemy import select

from ingestion.db.models import IngestionLog, Source
from ingestion.db.session import session_scope
from ingestion.models.domain import BatchResult, IngestionStatus, SourceKind, SourceSeed
from ingestion.repositories import sources as source_repo
from ingestion.seeds import almaty_sources, seed_sources


def _seed(source_id: str = "feed-1", **overrides) -> SourceSeed:
    data = dict(id=source_id, name="City feed", kind=SourceKind.FEED, url="https://example.com/rss", polling_interval_seconds=300)
    data.update(overrides)
    return SourceSeed(**data)


def test_upsert_and_list_enabled_sources(db_settings):
    with session_scope() as session:
        source_repo.upsert_source(session, _seed("b-feed"))
        source_repo.upsert_source(session, _seed("a-feed"))
        source_repo.upsert_source(session, _seed("off-feed", enabled=False))

    with session_scope() as session:
        enabled = source_repo.list_enabled_sources(session)

    assert [source.id for source in enabled] == ["a-feed", "b-feed"]
    assert enabled[0].kind == SourceKind.FEED
    assert enabled[0].failure_count == 0


def test_upsert_refresh_keeps_poll_state(db_settings):
    with session_scope() as session:
        source_repo.upsert_source(session, _seed())
        source_repo.touch_poll(session, "feed-1", success=False)

    with session_scope() as session:
        source_repo.upsert_source(session, _seed(name="Renamed", polling_interval_seconds=600))

    with session_scope() as session:
        source = source_repo.get_source(session, "feed-1")

    assert source is not None
    assert source.name == "Renamed"
    assert source.polling_interval_seconds == 600
    assert source.failure_count == 1


def test_touch_poll_success_resets_counter(db_settings):
    with session_scope() as session:
        source_repo.upsert_source(session, _seed())
        source_repo.touch_poll(session, "feed-1", success=False)
        source_repo.touch_poll(session, "feed-1", success=False)
        refreshed = source_repo.touch_poll(session, "feed-1", success=True)

    assert refreshed is not None
    assert refreshed.failure_count == 0
    assert refreshed.last_success_at is not None
    assert refreshed.last_poll_at is not None


def test_touch_poll_disables_at_threshold(db_settings):
    with session_scope() as session:
        source_repo.upsert_source(session, _seed())
        states = [source_repo.touch_poll(session, "feed-1", success=False, failure_threshold=3) for _ in range(3)]

    assert [state.enabled for state in states] == [True, True, False]
    assert states[-1].failure_count == 3


def test_touch_poll_unknown_source_returns_none(db_settings):
    with session_scope() as session:
        assert source_repo.touch_poll(session, "missing", success=True) is None


def test_set_enabled_clears_counter(db_settings):
    with session_scope() as session:
        source_repo.upsert_source(session, _seed())
        source_repo.touch_poll(session, "feed-1", success=False, failure_threshold=1)

    with session_scope() as session:
        assert source_repo.set_enabled(session, "feed-1", True) is True
        assert source_repo.set_enabled(session, "missing", True) is False

    with session_scope() as session:
        source = source_repo.get_source(session, "feed-1")
    assert source.enabled is True
    assert source.failure_count == 0


def test_append_ingestion_log_truncates_message(db_settings):
    with session_scope() as session:
        source_repo.upsert_source(session, _seed())
        source_repo.append_ingestion_log(
            session,
            source_id="feed-1",
            status=IngestionStatus.PARTIAL,
            result=BatchResult(source_id="feed-1", found=3, created=2, errors=["boom"]),
            message="x" * 2000,
        )

    with session_scope() as session:
        row = session.scalars(select(IngestionLog)).one()

    assert row.status == IngestionStatus.PARTIAL
    assert len(row.message) == 1024
    assert (row.events_found, row.events_created, row.events_updated, row.error_count) == (3, 2, 0, 1)
    assert row.completed_at is not None


def test_seed_sources_upserts_almaty_registry(db_settings):
    ids = seed_sources(settings=db_settings)
    # Seeding twice must not duplicate rows.
    seed_sources(settings=db_settings)

    with session_scope() as session:
        rows = session.scalars(select(Source).order_by(Source.id)).all()

    assert ids == ["almaty-weather", "almaty-air-quality", "almaty-energy"]
    assert [row.id for row in rows] == sorted(ids)
    kinds = {row.id: row.kind for row in rows}
    assert kinds["almaty-energy"] == SourceKind.HTML
    assert kinds["almaty-weather"] == SourceKind.JSON


def test_almaty_sources_use_custom_point():
    weather = almaty_sources(lat="43.3", lng="76.9")[0]

    assert "latitude=43.3" in weather.url
    assert weather.config["latitude"] == 43.3
