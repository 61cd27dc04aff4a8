import pytest

from rn_job_pipeline.classifier import (
    ClassificationDecision,
    ClassifierError,
    JobClassifier,
    parse_decision,
)

from conftest import make_job

RN_REPLY = ('{"isStaffRN": true, "specialty": "Cardiac", "jobType": "Per Diem", '
            '"shiftType": "Nights", "experienceLevel": "New Grad", "confidence": 0.9}')
NOT_RN_REPLY = '{"isStaffRN": false, "specialty": "General Nursing", "confidence": "0.8"}'


# === Reply parsing ===

def test_parse_full_reply():
    decision = parse_decision(RN_REPLY)

    assert decision.is_staff_rn is True
    assert decision.specialty == "Cardiac"
    assert decision.job_type == "prn"
    assert decision.shift_type == "nights"
    assert decision.experience_level == "new-grad"
    assert decision.confidence == 0.9


def test_parse_fenced_reply_with_prose():
    text = "Here is the result:\n```json\n" + NOT_RN_REPLY + "\n```"

    decision = parse_decision(text)

    assert decision.is_staff_rn is False
    assert decision.confidence == 0.8


def test_parse_string_boolean_and_unknown_values():
    decision = parse_decision('{"isStaffRN": "True", "shiftType": "weekends", "experienceLevel": "guru"}')

    assert decision.is_staff_rn is True
    assert decision.shift_type is None
    assert decision.experience_level is None


@pytest.mark.parametrize("text", ["", "no json here", '{"specialty": "ICU"}', "{broken"])
def test_unparseable_replies(text):
    assert parse_decision(text) is None


def test_unknown_specialty_is_not_written():
    decision = ClassificationDecision(is_staff_rn=True, specialty="Space Nursing", job_type="prn")

    updates = decision.updates()

    assert updates["specialty"] is None
    assert updates["job_type"] == "prn"


# === Pending jobs ===

@pytest.fixture
def classifier(config, monkeypatch):
    monkeypatch.setattr(JobClassifier, "_check_ollama", lambda self: True)
    return JobClassifier(config)


def _pending(store):
    store.upsert_batch([
        make_job("rn-1", source_url="https://example.org/job/1"),
        make_job("rn-2", source_url="https://example.org/job/2", title="Nurse Practitioner"),
    ])


def _replies(classifier, monkeypatch, replies):
    prompts = []

    def generate(prompt):
        prompts.append(prompt)
        return replies[len(prompts) - 1]

    monkeypatch.setattr(classifier, "_generate", generate)
    return prompts


def test_classify_pending_activates_confirmed_jobs(classifier, store, monkeypatch):
    _pending(store)
    prompts = _replies(classifier, monkeypatch, [RN_REPLY, NOT_RN_REPLY])

    summary = classifier.classify_pending(store)

    assert summary.total == 2
    assert summary.activated == 1
    assert summary.rejected == 1
    assert summary.activated_slugs == ["rn-1"]
    assert summary.specialty_counts == {"Cardiac": 1}
    assert "Job Title: Registered Nurse - ICU" in prompts[0]

    activated = store.get_by_slug("rn-1")
    assert activated.is_active is True
    assert activated.specialty == "Cardiac"
    assert activated.job_type == "prn"
    rejected = store.get_by_slug("rn-2")
    assert rejected.is_active is False
    assert rejected.deactivated_reason == "not_staff_rn"
    assert store.find_pending_classification() == []


def test_dry_run_leaves_jobs_pending(classifier, store, monkeypatch):
    _pending(store)
    _replies(classifier, monkeypatch, [RN_REPLY, NOT_RN_REPLY])

    summary = classifier.classify_pending(store, dry_run=True)

    assert summary.activated == 1
    assert len(store.find_pending_classification()) == 2


def test_retries_then_gives_up(classifier, store, monkeypatch):
    store.upsert_batch([make_job("rn-1", source_url="https://example.org/job/1")])
    prompts = _replies(classifier, monkeypatch, ["not json", "still not json"])

    summary = classifier.classify_pending(store, limit=1)

    assert summary.failed == 1
    assert len(prompts) == 2
    assert store.get_by_slug("rn-1").classified_at is None


def test_backend_error_is_retried(classifier, store, monkeypatch):
    store.upsert_batch([make_job("rn-1", source_url="https://example.org/job/1")])
    calls = []

    def flaky(prompt):
        calls.append(prompt)
        if len(calls) == 1:
            raise ConnectionError("ollama restarting")
        return RN_REPLY

    monkeypatch.setattr(classifier, "_generate", flaky)

    summary = classifier.classify_pending(store)

    assert summary.activated == 1
    assert len(calls) == 2


def test_unavailable_backend_raises(config, store, monkeypatch):
    monkeypatch.setattr(JobClassifier, "_check_ollama", lambda self: False)
    classifier = JobClassifier(config)

    with pytest.raises(ClassifierError):
        classifier.classify_pending(store)
