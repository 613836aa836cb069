"""Tests for scan planning."""

from linkwise.cache.freshness import ArtifactKind, FreshnessCache
from linkwise.cache.stores import EmbeddingStore
from linkwise.models import FileDescriptor
from linkwise.planner import count_files_needing_embedding, plan_scan


def _fresh(cache: FreshnessCache, path: str, mtime: float, *kinds: ArtifactKind) -> None:
    for kind in kinds or tuple(ArtifactKind):
        cache.mark_processed(kind, path, mtime)


class TestPlanScan:
    def test_empty_cache_processes_everything(self):
        files = [FileDescriptor(path="a.md", mtime=1), FileDescriptor(path="b.md", mtime=2)]

        plan = plan_scan(FreshnessCache(), files)

        assert [item.path for item in plan.to_process] == ["b.md", "a.md"]
        assert all(item.needs_embedding and item.needs_keywords and item.needs_suggestions for item in plan.to_process)
        assert plan.to_skip == []
        assert plan.current_file_index is None

    def test_mixed_freshness_scenario(self):
        """Stale embedding, fully fresh, and stale-suggestions-only notes."""
        cache = FreshnessCache()
        _fresh(cache, "B.md", 10)
        _fresh(cache, "C.md", 30, ArtifactKind.EMBEDDING, ArtifactKind.KEYWORD)
        files = [
            FileDescriptor(path="A.md", mtime=20),
            FileDescriptor(path="B.md", mtime=10),
            FileDescriptor(path="C.md", mtime=30),
        ]

        plan = plan_scan(cache, files, current_file="A.md")

        assert [item.path for item in plan.to_process] == ["A.md", "C.md"]
        assert plan.to_skip == ["B.md"]
        assert plan.current_file_index == 0

        a, c = plan.to_process
        assert (a.needs_embedding, a.needs_keywords, a.needs_suggestions) == (True, True, True)
        assert (c.needs_embedding, c.needs_keywords, c.needs_suggestions) == (False, False, True)

    def test_check_suggestions_false_skips_suggestion_only_work(self):
        cache = FreshnessCache()
        _fresh(cache, "C.md", 30, ArtifactKind.EMBEDDING, ArtifactKind.KEYWORD)

        plan = plan_scan(cache, [FileDescriptor(path="C.md", mtime=30)], check_suggestions=False)

        assert plan.to_process == []
        assert plan.to_skip == ["C.md"]

    def test_stale_embedding_forces_keywords_and_suggestions(self):
        cache = FreshnessCache()
        _fresh(cache, "a.md", 1)

        plan = plan_scan(cache, [FileDescriptor(path="a.md", mtime=2)])

        item = plan.to_process[0]
        assert item.needs_embedding and item.needs_keywords and item.needs_suggestions

    def test_stale_keywords_alone(self):
        cache = FreshnessCache()
        _fresh(cache, "a.md", 5, ArtifactKind.EMBEDDING, ArtifactKind.SUGGESTION)

        item = plan_scan(cache, [FileDescriptor(path="a.md", mtime=5)]).to_process[0]

        assert (item.needs_embedding, item.needs_keywords, item.needs_suggestions) == (False, True, False)

    def test_orders_by_descending_mtime_after_current(self):
        files = [FileDescriptor(path=f"{n}.md", mtime=m) for n, m in [("x", 5), ("y", 50), ("z", 20), ("cur", 1)]]

        plan = plan_scan(FreshnessCache(), files, current_file="cur.md")

        assert [item.path for item in plan.to_process] == ["cur.md", "y.md", "z.md", "x.md"]
        assert plan.current_file_index == 0

    def test_current_file_up_to_date_has_no_index(self):
        cache = FreshnessCache()
        _fresh(cache, "cur.md", 1)
        files = [FileDescriptor(path="cur.md", mtime=1), FileDescriptor(path="other.md", mtime=2)]

        plan = plan_scan(cache, files, current_file="cur.md")

        assert [item.path for item in plan.to_process] == ["other.md"]
        assert plan.current_file_index is None

    def test_missing_vector_needs_embedding(self):
        cache = FreshnessCache()
        _fresh(cache, "a.md", 1)
        _fresh(cache, "b.md", 1)
        store = EmbeddingStore({"a.md": [1.0]})
        files = [FileDescriptor(path="a.md", mtime=1), FileDescriptor(path="b.md", mtime=1)]

        plan = plan_scan(cache, files, embeddings=store)

        assert [item.path for item in plan.to_process] == ["b.md"]
        assert plan.to_process[0].needs_embedding

    def test_does_not_modify_cache(self):
        cache = FreshnessCache()
        plan_scan(cache, [FileDescriptor(path="a.md", mtime=1)])
        assert cache == FreshnessCache()

    def test_every_file_lands_in_exactly_one_list(self):
        cache = FreshnessCache()
        _fresh(cache, "a.md", 1)
        files = [FileDescriptor(path=f"{i}.md", mtime=i) for i in range(5)] + [FileDescriptor(path="a.md", mtime=1)]

        plan = plan_scan(cache, files)

        processed = {item.path for item in plan.to_process}
        assert processed.isdisjoint(plan.to_skip)
        assert processed | set(plan.to_skip) == {f.path for f in files}


class TestCountFilesNeedingEmbedding:
    def test_counts_stale_and_missing(self):
        cache = FreshnessCache()
        _fresh(cache, "a.md", 1)
        _fresh(cache, "b.md", 1)
        files = [
            FileDescriptor(path="a.md", mtime=1),
            FileDescriptor(path="b.md", mtime=1),
            FileDescriptor(path="c.md", mtime=1),
        ]

        assert count_files_needing_embedding(cache, files) == 1
        assert count_files_needing_embedding(cache, files, EmbeddingStore({"a.md": [1.0]})) == 2
