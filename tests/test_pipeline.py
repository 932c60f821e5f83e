import asyncio
import threading

import pytest

from crawler import CrawlService
from errors import ConflictError, ExtractionError, HttpStatusError, InvalidStateError, NotFoundError
from fakes import FakeExtractor, FakeFetcher, make_candidate
from models import CrawlStatus
from pipeline import NO_CONTENT_MESSAGE, NOT_QUEUED_MESSAGE, CrawlPipeline, OpportunitiesExtracted, ParsingFailed


def _service(db, fetcher=None, extractor=None, **pipeline_kwargs):
    service = CrawlService(db, fetcher=fetcher or FakeFetcher(), extractor=extractor or FakeExtractor())
    if pipeline_kwargs:
        p = service.pipeline
        service.pipeline = CrawlPipeline(
            db, fetcher=p.fetcher, extractor=p.extractor, deduplicator=p.deduplicator,
            draft_store=p.draft_store, registry=service.registry, **pipeline_kwargs,
        )
    return service


def _crawl(service, source_id):
    async def go():
        async with service:
            log = await service.start_crawl(source_id)
            outcome = await service.wait_for_crawl(log.id, timeout=5)
            return log, outcome

    return asyncio.run(go())


def test_successful_crawl_stages_drafts(db, registry, source):
    candidates = [make_candidate(), make_candidate(title="Women in Robotics Fellowship", link="https://example.org/r")]
    fetcher = FakeFetcher()
    service = _service(db, fetcher=fetcher, extractor=FakeExtractor(candidates))
    events = []
    service.pipeline.subscribe(events.append)

    log, outcome = _crawl(service, source.id)

    assert log.status == CrawlStatus.RUNNING
    assert outcome == OpportunitiesExtracted(log_id=log.id, source_id=source.id, count=2)
    assert events == [outcome]
    assert fetcher.calls == [source.url]

    stored = db.get_crawl_log(log.id)
    assert stored.status == CrawlStatus.SUCCESS
    assert stored.items_found == 2
    assert stored.completed_at is not None

    refreshed = registry.get_source(source.id)
    assert refreshed.last_success is True
    assert refreshed.last_crawl is not None
    assert {d.title for d in service.drafts.list_drafts()} == {c.title for c in candidates}


def test_empty_content_fails_the_crawl(db, registry, source):
    service = _service(db, fetcher=FakeFetcher(content="   "))

    log, outcome = _crawl(service, source.id)

    assert outcome == ParsingFailed(log_id=log.id, source_id=source.id, error=NO_CONTENT_MESSAGE)
    stored = db.get_crawl_log(log.id)
    assert stored.status == CrawlStatus.FAILED
    assert stored.error_message == "No content provided for AI parsing"
    refreshed = registry.get_source(source.id)
    assert refreshed.last_success is False
    assert refreshed.error_message == NO_CONTENT_MESSAGE


def test_nothing_extracted_is_a_successful_crawl(db, registry, source):
    service = _service(db, extractor=FakeExtractor([]))

    log, outcome = _crawl(service, source.id)

    assert outcome == OpportunitiesExtracted(log_id=log.id, source_id=source.id, count=0)
    stored = db.get_crawl_log(log.id)
    assert stored.status == CrawlStatus.SUCCESS
    assert stored.items_found == 0
    assert registry.get_source(source.id).last_success is True


def test_fetch_error_is_recorded_on_the_log(db, registry, source):
    error = HttpStatusError(source.url, 503)
    service = _service(db, fetcher=FakeFetcher(error=error))

    log, outcome = _crawl(service, source.id)

    assert isinstance(outcome, ParsingFailed)
    assert db.get_crawl_log(log.id).error_message == error.message
    assert registry.get_source(source.id).error_message == error.message


def test_extraction_error_fails_the_crawl(db, source):
    service = _service(db, extractor=FakeExtractor(error=ExtractionError("model refused")))

    log, outcome = _crawl(service, source.id)

    assert outcome.error == "model refused"
    assert db.get_crawl_log(log.id).status == CrawlStatus.FAILED


def test_slow_extraction_times_out(db, source):
    service = _service(db, extractor=FakeExtractor([make_candidate()], delay=1), extraction_timeout=0.05)

    log, outcome = _crawl(service, source.id)

    assert isinstance(outcome, ParsingFailed)
    assert outcome.error == "AI extraction timed out after 0.05s"
    assert db.get_crawl_log(log.id).status == CrawlStatus.FAILED


def test_unexpected_stage_error_does_not_kill_the_worker(db, source):
    fetcher = FakeFetcher(error=RuntimeError("socket exploded"))
    service = _service(db, fetcher=fetcher, workers_per_stage=1)

    async def go():
        async with service:
            failed = await service.start_crawl(source.id)
            first = await service.wait_for_crawl(failed.id, timeout=5)
            fetcher.error = None
            retried = await service.start_crawl(source.id)
            second = await service.wait_for_crawl(retried.id, timeout=5)
            return first, retried, second

    first, retried, second = asyncio.run(go())

    assert first.error == "socket exploded"
    assert isinstance(second, OpportunitiesExtracted)
    assert db.get_crawl_log(retried.id).status == CrawlStatus.SUCCESS


def test_results_are_capped_at_max_results(db, registry):
    source = registry.create_source("Capped", "https://capped.example.org", max_results=2)
    candidates = [make_candidate(title=f"Scholarship number {i}", link=f"https://capped.example.org/{i}") for i in range(5)]
    service = _service(db, extractor=FakeExtractor(candidates))

    _, outcome = _crawl(service, source.id)

    assert outcome.count == 2


def test_duplicates_of_persisted_opportunities_are_not_counted(db, source):
    service = _service(db, extractor=FakeExtractor([make_candidate()]))
    service.drafts.create_draft(make_candidate(), "https://elsewhere.example.org")

    log, outcome = _crawl(service, source.id)

    assert outcome.count == 0
    assert db.get_crawl_log(log.id).items_found == 0
    assert len(service.drafts.list_drafts()) == 1


def test_second_start_while_running_conflicts(db, registry, source):
    service = _service(db, extractor=FakeExtractor(delay=0.2))

    async def go():
        async with service:
            first = await service.start_crawl(source.id)
            with pytest.raises(ConflictError):
                await service.start_crawl(source.id)
            # Still running: the source cannot be deleted either
            with pytest.raises(ConflictError):
                registry.delete_source(source.id)
            await service.wait_for_crawl(first.id, timeout=5)
            return first

    first = asyncio.run(go())

    assert [log.id for log in db.get_crawl_logs(source.id)] == [first.id]
    registry.delete_source(source.id)
    with pytest.raises(NotFoundError):
        registry.get_source(source.id)


def test_inactive_source_cannot_be_crawled(db, registry, source):
    registry.pause_source(source.id)
    service = _service(db)

    with pytest.raises(InvalidStateError):
        _crawl(service, source.id)
    assert db.get_crawl_logs(source.id) == []


def test_unknown_source_cannot_be_crawled(db):
    with pytest.raises(NotFoundError):
        _crawl(_service(db), "missing")


def test_waiting_for_unknown_crawl(db):
    async def go():
        await _service(db).wait_for_crawl("nope")

    with pytest.raises(NotFoundError):
        asyncio.run(go())


def test_crawl_due_sources_runs_every_due_source(db, registry, source):
    other = registry.create_source("Grants", "https://grants.example.org")
    registry.create_source("Paused", "https://paused.example.org", status="paused")
    service = _service(db, extractor=FakeExtractor([make_candidate()]))

    async def go():
        async with service:
            return await service.crawl_due_sources()

    result = asyncio.run(go())

    assert {s.id for s in result["due"]} == {source.id, other.id}
    assert len(result["started"]) == 2
    assert result["skipped"] == []
    assert all(isinstance(o, OpportunitiesExtracted) for o in result["outcomes"])

    # Both just crawled: nothing is due any more
    assert service.scheduler.get_due_sources() == []


def test_start_cancelled_while_queue_is_full_fails_its_log(db, registry):
    a = registry.create_source("A", "https://a.example.org")
    b = registry.create_source("B", "https://b.example.org")
    c = registry.create_source("C", "https://c.example.org")
    fetcher = FakeFetcher()
    service = _service(db, fetcher=fetcher, queue_size=1, workers_per_stage=1)

    async def go():
        fetcher.gate = asyncio.Event()
        async with service:
            # A is held by the only fetch worker, B fills the queue
            first = await service.start_crawl(a.id)
            second = await service.start_crawl(b.id)
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(service.start_crawl(c.id), 0.1)

            fetcher.gate.set()
            await service.wait_for_crawl(first.id, timeout=5)
            await service.wait_for_crawl(second.id, timeout=5)

            # C is free to crawl again
            retry = await service.start_crawl(c.id)
            return await service.wait_for_crawl(retry.id, timeout=5)

    outcome = asyncio.run(go())

    assert isinstance(outcome, OpportunitiesExtracted)
    statuses = [log.status for log in db.get_crawl_logs(c.id)]
    assert statuses == [CrawlStatus.SUCCESS, CrawlStatus.FAILED]
    assert db.get_crawl_logs(c.id)[1].error_message == NOT_QUEUED_MESSAGE
    assert not db.has_running_log(c.id)
    registry.delete_source(c.id)


def test_source_bookkeeping_error_fails_the_crawl_consistently(db, registry, source, monkeypatch):
    service = _service(db, extractor=FakeExtractor([]))
    real_record = service.registry.record_crawl_outcome

    def record(source_id, success, error_message=None):
        if success:
            raise RuntimeError("database is locked")
        real_record(source_id, success, error_message)

    monkeypatch.setattr(service.registry, "record_crawl_outcome", record)

    log, outcome = _crawl(service, source.id)

    assert outcome == ParsingFailed(log_id=log.id, source_id=source.id, error="database is locked")
    assert db.get_crawl_log(log.id).status == CrawlStatus.FAILED
    refreshed = registry.get_source(source.id)
    assert refreshed.last_success is False
    assert refreshed.error_message == "database is locked"


def test_late_failure_does_not_touch_a_finished_crawl(db, registry, source):
    service = _service(db, extractor=FakeExtractor([]))
    events = []
    service.pipeline.subscribe(events.append)
    log, outcome = _crawl(service, source.id)

    service.pipeline._fail(log.id, source.id, "too late")

    assert events == [outcome]
    assert db.get_crawl_log(log.id).status == CrawlStatus.SUCCESS
    refreshed = registry.get_source(source.id)
    assert refreshed.last_success is True
    assert refreshed.error_message is None


def test_dedup_and_draft_writes_run_off_the_event_loop(db, source):
    service = _service(db, extractor=FakeExtractor([make_candidate()]))
    threads = {}
    dedup = service.pipeline.deduplicator.filter_duplicate_opportunities
    save = service.pipeline.draft_store.save_candidates

    def tracked_dedup(candidates):
        threads["dedup"] = threading.get_ident()
        return dedup(candidates)

    def tracked_save(candidates, source_url):
        threads["save"] = threading.get_ident()
        return save(candidates, source_url)

    service.pipeline.deduplicator.filter_duplicate_opportunities = tracked_dedup
    service.pipeline.draft_store.save_candidates = tracked_save

    _, outcome = _crawl(service, source.id)

    assert outcome.count == 1
    assert threads["dedup"] != threading.get_ident()
    assert threads["save"] != threading.get_ident()


def test_draft_that_fails_to_persist_still_counts_toward_a_successful_crawl(db, registry, source, monkeypatch):
    candidates = [make_candidate(title="Good One", link="https://example.org/good"),
                  make_candidate(title="Bad One", link="https://example.org/bad")]
    service = _service(db, extractor=FakeExtractor(candidates))
    real_insert = db.insert_opportunity_with_draft

    def flaky_insert(opportunity, draft):
        if draft.title == "Bad One":
            raise RuntimeError("disk full")
        real_insert(opportunity, draft)

    monkeypatch.setattr(db, "insert_opportunity_with_draft", flaky_insert)

    log, outcome = _crawl(service, source.id)

    assert outcome == OpportunitiesExtracted(log_id=log.id, source_id=source.id, count=2)
    stored = db.get_crawl_log(log.id)
    assert stored.status == CrawlStatus.SUCCESS
    assert stored.items_found == 2
    assert registry.get_source(source.id).last_success is True
    assert [d.title for d in service.drafts.list_drafts()] == ["Good One"]
