"""Tests for RetainedChunks."""

import pytest

from conversational_pipeline.retention import RetainedChunks


class TestRetainedChunks:
    def test_evicts_oldest_and_revokes_once(self, make_emitted):
        revoked = []
        retained = RetainedChunks(ceiling=2, revoke=revoked.append)
        for i in range(3):
            retained.append(make_emitted(f"c{i}"))

        assert [c.id for c in retained.list()] == ["c1", "c2"]
        assert revoked == ["blob:c0"]
        assert retained.evicted_count == 1

        # Release after eviction never revokes c0 again
        retained.release_all()
        assert sorted(revoked) == ["blob:c0", "blob:c1", "blob:c2"]

    def test_release_all_keeps_chunks(self, make_emitted):
        revoked = []
        retained = RetainedChunks(ceiling=5, revoke=revoked.append)
        retained.append(make_emitted("c1"))
        retained.append(make_emitted("c2"))

        assert retained.release_all() == 2
        assert retained.release_all() == 0
        assert len(retained) == 2
        assert retained.get("c1").audio_url == "blob:c1"
        assert retained.is_revoked("blob:c1")
        assert revoked == ["blob:c1", "blob:c2"]

    def test_clear_revokes_and_empties(self, make_emitted):
        revoked = []
        retained = RetainedChunks(revoke=revoked.append)
        retained.append(make_emitted("c1"))
        retained.clear()
        assert len(retained) == 0
        assert revoked == ["blob:c1"]

    def test_chunk_without_audio(self, make_emitted):
        revoked = []
        retained = RetainedChunks(ceiling=1, revoke=revoked.append)
        chunk = make_emitted("c1")
        chunk.audio_url = None
        retained.append(chunk)
        retained.append(make_emitted("c2"))
        assert revoked == []

    def test_revoker_failure_is_logged(self, make_emitted):
        def broken(ref):
            raise OSError("already gone")

        retained = RetainedChunks(ceiling=1, revoke=broken)
        retained.append(make_emitted("c1"))
        retained.append(make_emitted("c2"))
        assert "c2" in retained
        assert retained.is_revoked("blob:c1")

    def test_same_id_replaced_in_place(self, make_emitted):
        retained = RetainedChunks(ceiling=3)
        retained.append(make_emitted("c1", transcript="a"))
        retained.append(make_emitted("c2"))
        retained.append(make_emitted("c1", transcript="b"))
        assert [c.id for c in retained] == ["c1", "c2"]
        assert retained.get("c1").transcript == "b"

    def test_invalid_ceiling(self):
        with pytest.raises(ValueError):
            RetainedChunks(ceiling=0)
