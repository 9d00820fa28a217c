# backend/tests/test_uploads.py
import pytest
from errors import NotFound, ValidationError, IncompleteUpload
from uploads import UploadAssembler, InMemoryUploadStore


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def store(clock):
    return InMemoryUploadStore(ttl=60, clock=clock)

@pytest.fixture
def asm(store, clock):
    return UploadAssembler(store, clock=clock)


def test_upload_id_embeds_resource_and_time(asm):
    upload_id = asm.init_upload(42, 3)
    assert upload_id.startswith("42-1000000-")
    assert asm.init_upload(42, 3) != upload_id

def test_init_rejects_bad_total(asm):
    with pytest.raises(ValidationError):
        asm.init_upload(1, 0)

def test_chunks_join_by_index(asm):
    upload_id = asm.init_upload(1, 3)
    assert asm.receive_chunk(upload_id, 2, "c") == (1, 3)
    assert asm.receive_chunk(upload_id, 0, "a") == (2, 3)
    assert asm.receive_chunk(upload_id, 1, "b") == (3, 3)

    applied = []
    assert asm.finalize(upload_id, applied.append) == "abc"
    assert applied == ["abc"]

def test_empty_chunk_still_counts(asm):
    upload_id = asm.init_upload(1, 2)
    asm.receive_chunk(upload_id, 0, "")
    asm.receive_chunk(upload_id, 1, "x")
    assert asm.finalize(upload_id, lambda svg: None) == "x"

def test_resend_overwrites_without_counting_twice(asm):
    upload_id = asm.init_upload(1, 2)
    asm.receive_chunk(upload_id, 0, "old")
    assert asm.receive_chunk(upload_id, 0, "new") == (1, 2)
    with pytest.raises(IncompleteUpload) as excinfo:
        asm.finalize(upload_id, lambda svg: None)
    assert (excinfo.value.received, excinfo.value.expected) == (1, 2)

    asm.receive_chunk(upload_id, 1, "!")
    assert asm.finalize(upload_id, lambda svg: None) == "new!"

def test_incomplete_finalize_keeps_session(asm, store):
    upload_id = asm.init_upload(1, 2)
    with pytest.raises(IncompleteUpload):
        asm.finalize(upload_id, lambda svg: None)
    assert store.get(upload_id) is not None

def test_unknown_session(asm):
    with pytest.raises(NotFound):
        asm.receive_chunk("missing", 0, "x")
    with pytest.raises(NotFound):
        asm.finalize("missing", lambda svg: None)

def test_index_out_of_range(asm):
    upload_id = asm.init_upload(1, 2)
    for index in (-1, 2):
        with pytest.raises(ValidationError):
            asm.receive_chunk(upload_id, index, "x")

def test_session_removed_even_when_apply_fails(asm, store):
    upload_id = asm.init_upload(1, 1)
    asm.receive_chunk(upload_id, 0, "x")

    def gone(svg):
        raise NotFound("Visualization not found")

    with pytest.raises(NotFound):
        asm.finalize(upload_id, gone)
    assert store.get(upload_id) is None

def test_store_evicts_stale_sessions(asm, store, clock):
    old = asm.init_upload(1, 1)
    clock.now += 30
    fresh = asm.init_upload(2, 1)
    clock.now += 45

    assert store.get(old) is None
    assert store.get(fresh) is not None
    assert len(store) == 1
    with pytest.raises(NotFound):
        asm.receive_chunk(old, 0, "x")

def test_init_rejects_too_many_chunks(store, clock):
    asm = UploadAssembler(store, clock=clock, max_chunks=5)
    with pytest.raises(ValidationError):
        asm.init_upload(1, 6)
    assert len(store) == 0
    assert asm.init_upload(1, 5)

def test_session_is_bound_to_its_resource(asm):
    upload_id = asm.init_upload(1, 1)
    with pytest.raises(NotFound):
        asm.receive_chunk(upload_id, 0, "x", resource_id=2)
    asm.receive_chunk(upload_id, 0, "x", resource_id=1)

    applied = []
    with pytest.raises(NotFound):
        asm.finalize(upload_id, applied.append, resource_id="2")
    assert applied == []
    assert asm.finalize(upload_id, applied.append, resource_id="1") == "x"
