import pytest


@pytest.mark.asyncio
async def test_upsert_credentials_creates_placeholder(store, vector):
    user = await store.upsert_credentials("kiosk-7", voice_phrase="hello")
    assert user.name == "User kiosk-7"
    assert user.email == "kiosk-7@safe.local"
    assert user.password_hash is None
    assert not user.is_admin

    await store.upsert_credentials("kiosk-7", pin_hash="hash", embedding=vector(0.2))
    again = await store.get_user("kiosk-7")
    assert again.voice_phrase == "hello"
    assert again.pin_hash == "hash"
    assert len(await store.list_face_templates()) == 1
    assert len(await store.list_users()) == 1


@pytest.mark.asyncio
async def test_delete_user_removes_face_template(store, vector):
    user = await store.create_user("Carol", "carol@example.com", None)
    await store.upsert_face_template(user.id, vector(0.1))

    assert await store.delete_user(user.id)
    assert await store.get_user(user.id) is None
    assert await store.list_face_templates() == []
    assert not await store.delete_user(user.id)


@pytest.mark.asyncio
async def test_update_user_ignores_unknown_fields(store):
    user = await store.create_user("Dan", "dan@example.com", None)
    updated = await store.update_user(user.id, {"name": "Daniel", "id": "hijack"})
    assert updated.id == user.id
    assert updated.name == "Daniel"
    assert await store.update_user("missing", {"name": "x"}) is None


@pytest.mark.asyncio
async def test_events_newest_first_with_limit(store):
    for kind in ("lock", "unlock", "setup"):
        await store.append_event(kind, metadata={"n": kind})
    events = await store.list_events()
    assert [e.type for e in events] == ["setup", "unlock", "lock"]
    assert [e.type for e in await store.list_events(limit=2)] == ["setup", "unlock"]


@pytest.mark.asyncio
async def test_any_admin(store):
    assert not await store.any_admin()
    await store.create_user("Plain", "plain@example.com", None)
    assert not await store.any_admin()
    await store.create_user("Root", "root@example.com", None, is_admin=True)
    assert await store.any_admin()
