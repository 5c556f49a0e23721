"""
End-to-end pipeline tests with stand-in oracles (no API calls).
"""

import json
import os
import tempfile

import pandas as pd

from scorecard.models.judgment import Judgment, Rejection
from scorecard.models.review import RESOLVED_CONFIDENT
from scorecard.orchestrator import PipelineOrchestrator
from scorecard.registry.review_registry import ReviewRegistry


class KeywordOracle:
    """Answers by keyword so every review gets a predictable judgment."""

    def __init__(self, name):
        self.name = name

    async def judge(self, text, context=""):
        if "press release" in text:
            return Rejection("not_a_review", "Announcement only.", oracle=self.name)
        if "hated" in text:
            return Judgment("Pan", 20, "high", oracle=self.name)
        return Judgment("Positive", 80, "high", oracle=self.name)


class AdjudicatorOracle:
    name = "adjudicator"

    def __init__(self):
        self.calls = []

    async def judge(self, text, context=""):
        self.calls.append(context)
        return Judgment("Positive", 76, "high", sided_with="thumbs", rationale="The closing verdict is warm.")


RECORDS = [
    {"review_id": "show/a--x", "show_id": "show", "outlet_id": "a", "text": "I loved it.", "original_rating": "4/5"},
    {"review_id": "show/b--x", "show_id": "show", "outlet_id": "b", "text": "I loved it too.", "original_rating": "80"},
    {"review_id": "show/c--x", "show_id": "show", "outlet_id": "c", "text": "Loved it, truly.", "original_rating": "4/5"},
    {
        "review_id": "show/d--x", "show_id": "show", "outlet_id": "d",
        "text": "I hated the first act, but it won me over.",
        "thumbs": {"dtli": "Up", "show-score": "Up"},
    },
    {"review_id": "show/e--x", "show_id": "show", "outlet_id": "e", "text": "A press release about casting."},
]


def _setup(tmpdir):
    reviews_path = os.path.join(tmpdir, "data", "reviews.json")
    os.makedirs(os.path.dirname(reviews_path))
    with open(reviews_path, "w") as f:
        json.dump({"version": "1.0.0", "reviews": RECORDS}, f)
    return reviews_path


def _orchestrator(tmpdir, reviews_path, dry_run, adjudicator=None):
    return PipelineOrchestrator(
        api_key="",
        data_root=os.path.join(tmpdir, "data"),
        output_root=os.path.join(tmpdir, "output"),
        reviews_path=reviews_path,
        dry_run=dry_run,
        oracles=[KeywordOracle("one"), KeywordOracle("two"), KeywordOracle("three")],
        adjudication_oracle=adjudicator or AdjudicatorOracle()
    )


def test_full_pipeline_apply():
    with tempfile.TemporaryDirectory() as tmpdir:
        reviews_path = _setup(tmpdir)
        adjudicator = AdjudicatorOracle()

        summaries = _orchestrator(tmpdir, reviews_path, dry_run=False, adjudicator=adjudicator).run("all")

        assert summaries["score"] == {"scored": 4, "rejected": 1, "unscored": 0}
        assert summaries["audit"]["queued"] == 1
        assert summaries["adjudicate"]["resolved"] == 1

        registry = ReviewRegistry(reviews_path)
        assert registry.get_review("show/a--x").score == 80
        assert registry.get_review("show/e--x").scoring_status == "rejected"
        assert registry.get_review("show/e--x").score is None

        flagged = registry.get_review("show/d--x")
        assert flagged.score == 20
        assert flagged.adjudication_state == RESOLVED_CONFIDENT
        assert flagged.resolution_score == 76
        assert flagged.adjudication_attempts == 1
        assert "dtli=Up" in adjudicator.calls[0]

        with open(os.path.join(tmpdir, "data", "audit", "needs-adjudication.json")) as f:
            queue = json.load(f)
        assert [entry["review_id"] for entry in queue["reviews"]] == ["show/d--x"]

        df = pd.read_csv(os.path.join(tmpdir, "output", "audit_reviews.csv"))
        assert len(df) == 5
        assert os.path.exists(os.path.join(tmpdir, "output", "adjudication_summary.json"))


def test_second_adjudication_run_skips_resolved():
    with tempfile.TemporaryDirectory() as tmpdir:
        reviews_path = _setup(tmpdir)
        _orchestrator(tmpdir, reviews_path, dry_run=False).run("all")

        adjudicator = AdjudicatorOracle()
        summaries = _orchestrator(tmpdir, reviews_path, dry_run=False, adjudicator=adjudicator).run("adjudicate")

        assert summaries["adjudicate"]["skipped"] == 1
        assert adjudicator.calls == []


def test_dry_run_writes_nothing():
    with tempfile.TemporaryDirectory() as tmpdir:
        reviews_path = _setup(tmpdir)
        with open(reviews_path) as f:
            before = f.read()

        summaries = _orchestrator(tmpdir, reviews_path, dry_run=True).run("all")

        with open(reviews_path) as f:
            assert f.read() == before
        assert summaries["score"]["scored"] == 4
        assert not os.path.exists(os.path.join(tmpdir, "data", "audit"))
        assert not os.path.exists(os.path.join(tmpdir, "output"))


def test_dry_run_computes_what_apply_commits():
    with tempfile.TemporaryDirectory() as dry_dir, tempfile.TemporaryDirectory() as apply_dir:
        dry = _orchestrator(dry_dir, _setup(dry_dir), dry_run=True).run("all")
        applied = _orchestrator(apply_dir, _setup(apply_dir), dry_run=False).run("all")

        assert dry == applied
        assert dry["audit"]["queued"] == 1
        assert dry["adjudicate"]["resolved"] == 1


def test_repeated_dry_runs_on_one_orchestrator_agree():
    with tempfile.TemporaryDirectory() as tmpdir:
        orchestrator = _orchestrator(tmpdir, _setup(tmpdir), dry_run=True)

        first = orchestrator.run("all")
        second = orchestrator.run("all")

        assert first == second
        assert second["score"] == {"scored": 4, "rejected": 1, "unscored": 0}
        assert orchestrator.registry.get_review("show/a--x").score is None


def test_dry_run_import_is_scored_but_not_saved():
    with tempfile.TemporaryDirectory() as tmpdir:
        reviews_path = os.path.join(tmpdir, "data", "reviews.json")
        incoming = os.path.join(tmpdir, "incoming.json")
        with open(incoming, "w") as f:
            json.dump(RECORDS[:3], f)

        summaries = _orchestrator(tmpdir, reviews_path, dry_run=True).run("score", import_path=incoming)

        assert summaries["import"] == {"added": 3, "skipped": 0}
        assert summaries["score"]["scored"] == 3
        assert not os.path.exists(reviews_path)
