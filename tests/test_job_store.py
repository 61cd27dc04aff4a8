from datetime import timedelta

from rn_job_pipeline.job_store import JsonlJobStore

from conftest import RN_DESCRIPTION, make_job


def _classified(store, slug="registered-nurse-icu-rochester-ny-r1", **updates):
    job = store.get_by_slug(slug)
    return store.apply_classification(job.id, is_staff_rn=True, updates=updates)


def test_new_jobs_are_inactive_and_unclassified(store):
    result = store.upsert_batch([make_job()], employer_slug="example-health")

    assert result.created == 1
    job = store.get_by_slug("registered-nurse-icu-rochester-ny-r1")
    assert job.id
    assert job.is_active is False
    assert job.classified_at is None
    assert job.calculated_expires_date == store.clock() + timedelta(days=60)


def test_store_round_trips_through_the_file(store, tmp_path, clock):
    store.upsert_batch([make_job()], employer_slug="example-health")
    _classified(store, specialty="Cardiac")

    reloaded = JsonlJobStore(tmp_path / "jobs.jsonl", clock=clock)

    job = reloaded.get_by_slug("registered-nurse-icu-rochester-ny-r1")
    assert job.is_active is True
    assert job.specialty == "Cardiac"
    assert job.classified_at == clock.now


def test_content_sections_survive_reload(store, tmp_path, clock):
    store.upsert_batch([make_job(requirements="Current NY RN license", responsibilities="Provide care",
                                 benefits="Tuition assistance", department="5 West Medical ICU")])

    reloaded = JsonlJobStore(tmp_path / "jobs.jsonl", clock=clock)

    job = reloaded.get_by_slug("registered-nurse-icu-rochester-ny-r1")
    assert job.requirements == "Current NY RN license"
    assert job.responsibilities == "Provide care"
    assert job.benefits == "Tuition assistance"
    assert job.department == "5 West Medical ICU"


def test_invalid_lines_are_skipped(tmp_path, clock):
    path = tmp_path / "jobs.jsonl"
    path.write_text('{"slug": "broken"}\nnot json\n\n')

    store = JsonlJobStore(path, clock=clock)

    assert store.all_jobs() == []


def test_rescrape_keeps_classifier_fields(store, clock):
    store.upsert_batch([make_job()], employer_slug="example-health")
    _classified(store, specialty="Cardiac", shift_type="nights")

    clock.now += timedelta(days=1)
    result = store.upsert_batch([make_job(title="Registered Nurse - ICU (Updated)")],
                                employer_slug="example-health")

    job = store.get_by_slug("registered-nurse-icu-rochester-ny-r1")
    assert result.updated == 1
    assert job.title == "Registered Nurse - ICU (Updated)"
    assert job.specialty == "Cardiac"
    assert job.shift_type == "nights"
    assert job.is_active is True
    assert job.scraped_at == clock.now


def test_changed_description_resets_classification(store):
    store.upsert_batch([make_job()], employer_slug="example-health")
    _classified(store, specialty="Cardiac")

    store.upsert_batch([make_job(description=RN_DESCRIPTION + " Sign-on bonus available.")],
                       employer_slug="example-health")

    job = store.get_by_slug("registered-nurse-icu-rochester-ny-r1")
    assert job.is_active is False
    assert job.classified_at is None
    assert job.specialty == "ICU"
    assert len(store.find_pending_classification()) == 1


def test_missing_jobs_are_deactivated_and_reactivated(store):
    other = "registered-nurse-er-rochester-ny-r2"
    store.upsert_batch([make_job(), make_job(other, source_url="https://example.org/job/R2")],
                       employer_slug="example-health")
    _classified(store)
    _classified(store, other)

    result = store.upsert_batch([make_job()], employer_slug="example-health")

    assert result.deactivated_slugs == [other]
    dropped = store.get_by_slug(other)
    assert dropped.is_active is False
    assert dropped.deactivated_reason == "not_found"

    result = store.upsert_batch([make_job(other, source_url="https://example.org/job/R2")],
                                employer_slug="example-health", verify_missing=False)

    assert result.reactivated == 1
    back = store.get_by_slug(other)
    assert back.is_active is False
    assert back.classified_at is None
    assert back.deactivated_reason is None


def test_verification_only_touches_the_same_employer(store):
    store.upsert_batch([make_job()], employer_slug="example-health")
    _classified(store)
    other = make_job("rn-buffalo-ny-x1", source_url="https://other.org/job/X1",
                     employer_name="Other Health", employer_slug="other-health")

    result = store.upsert_batch([other], employer_slug="other-health")

    assert result.deactivated == 0
    assert store.get_by_slug("registered-nurse-icu-rochester-ny-r1").is_active is True


def test_empty_run_skips_verification(store):
    store.upsert_batch([make_job()], employer_slug="example-health")
    _classified(store)

    result = store.upsert_batch([], employer_slug="example-health")

    assert result.deactivated == 0
    assert store.get_by_slug("registered-nurse-icu-rochester-ny-r1").is_active is True


def test_expired_jobs_are_deactivated(store, clock):
    store.upsert_batch([make_job()], employer_slug="example-health")
    _classified(store)

    clock.now += timedelta(days=61)
    expired = store.deactivate_expired_jobs()

    assert expired == ["registered-nurse-icu-rochester-ny-r1"]
    assert store.get_by_slug(expired[0]).deactivated_reason == "expired"


def test_not_rn_classification_keeps_job_inactive(store):
    store.upsert_batch([make_job()], employer_slug="example-health")
    job = store.get_by_slug("registered-nurse-icu-rochester-ny-r1")

    updated = store.apply_classification(job.id, is_staff_rn=False)

    assert updated.is_active is False
    assert updated.classified_at is not None
    assert updated.deactivated_reason == "not_staff_rn"
    assert store.find_pending_classification() == []


def test_apply_classification_ignores_unknown_ids(store):
    assert store.apply_classification("missing", is_staff_rn=True) is None


def test_find_candidates_by_active_and_submitted(store, clock):
    jobs = [make_job(f"rn-{i}", source_url=f"https://example.org/job/{i}") for i in range(3)]
    store.upsert_batch(jobs, employer_slug="example-health")
    for i in range(3):
        _classified(store, f"rn-{i}")
    submitted = store.get_by_slug("rn-0")

    store.mark_submitted([submitted.id], clock.now)

    pending = store.find_candidates(active=True, submitted=False)
    assert {job.slug for job in pending} == {"rn-1", "rn-2"}
    assert store.find_candidates(active=True, submitted=False, limit=1)[0].slug in {"rn-1", "rn-2"}
    assert [job.slug for job in store.find_candidates(active=True, submitted=True)] == ["rn-0"]

    store.clear_submitted([submitted.id])
    assert store.find_candidates(active=True, submitted=True) == []


def test_pending_classification_filters_by_employer(store):
    other = make_job("rn-buffalo-ny-x1", source_url="https://other.org/job/X1",
                     employer_name="Other Health", employer_slug="other-health")
    store.upsert_batch([make_job(), other])

    pending = store.find_pending_classification(employer_slug="other-health")

    assert [job.slug for job in pending] == ["rn-buffalo-ny-x1"]
    assert len(store.find_pending_classification(limit=1)) == 1
