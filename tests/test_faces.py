import pytest

from smartsafe.services.faces import EmbeddingLengthError, FaceMatcher


@pytest.mark.asyncio
async def test_threshold_boundary(store, vector):
    await store.upsert_face_template("alice", vector(0.0))
    matcher = FaceMatcher(store, threshold=0.6)

    hit = await matcher.match(vector(0.59))
    assert hit is not None
    assert hit.user_id == "alice"
    assert hit.distance == pytest.approx(0.59)

    assert await matcher.match(vector(0.61)) is None


@pytest.mark.asyncio
async def test_nearest_template_wins(store, vector):
    await store.upsert_face_template("alice", vector(0.0))
    await store.upsert_face_template("bob", vector(0.5))
    match = await FaceMatcher(store).match(vector(0.4))
    assert match.user_id == "bob"


@pytest.mark.asyncio
async def test_ties_go_to_first_enrolled(store, vector):
    await store.upsert_face_template("alice", vector(0.0))
    await store.upsert_face_template("bob", vector(0.4))
    match = await FaceMatcher(store).match(vector(0.2))
    assert match.user_id == "alice"


@pytest.mark.asyncio
async def test_reregistration_overwrites_in_place(store, vector):
    await store.upsert_face_template("alice", vector(5.0))
    await store.upsert_face_template("bob", vector(0.5))
    await store.upsert_face_template("alice", vector(0.0))

    templates = await store.list_face_templates()
    assert [t.user_id for t in templates] == ["alice", "bob"]
    assert templates[0].embedding[0] == 0.0
    assert (await FaceMatcher(store).match(vector(0.1))).user_id == "alice"


@pytest.mark.asyncio
async def test_no_templates_no_match(store, vector):
    assert await FaceMatcher(store).match(vector(0.0)) is None


@pytest.mark.asyncio
async def test_length_mismatch_raises(store, vector):
    await store.upsert_face_template("alice", [0.0, 0.0, 0.0])
    with pytest.raises(EmbeddingLengthError):
        await FaceMatcher(store).match(vector(0.0))
