import asyncio

import pytest
from datetime import timedelta
from jose import jwt
from sqlmodel import select

from tasknest import auth, users
from tasknest.db import async_session
from tasknest.errors import Conflict, InvalidInput, Unauthenticated
from tasknest.models import Identity, Session, User


@pytest.mark.asyncio
async def test_register_endpoint_creates_user(client):
    r = await client.post('/register', json={'name': 'Alice', 'email': 'alice@example.com', 'password': 'alicepass'})
    assert r.status_code == 201
    assert r.json() == {'message': 'User created'}

    u = await users.find_by_email('alice@example.com')
    assert u is not None
    assert u.name == 'Alice'
    assert len(u.id) == 32
    # raw password is never stored
    assert u.password_hash != 'alicepass'
    assert auth.verify_password('alicepass', u.password_hash)


@pytest.mark.asyncio
async def test_duplicate_registration_conflicts_and_keeps_one_user(client):
    body = {'name': 'Bob', 'email': 'bob@example.com', 'password': 'b1'}
    r1 = await client.post('/register', json=body)
    r2 = await client.post('/register', json={**body, 'name': 'Other Bob', 'password': 'b2'})
    assert r1.status_code == 201
    assert r2.status_code == 409
    assert r2.json() == {'error': 'User already exists'}

    async with async_session() as sess:
        q = await sess.exec(select(User).where(User.email == 'bob@example.com'))
        rows = q.all()
    assert len(rows) == 1
    assert rows[0].name == 'Bob'


@pytest.mark.asyncio
async def test_concurrent_registrations_for_one_email_create_one_user(ensure_db):
    results = await asyncio.gather(
        *(auth.register(f'Racer {i}', 'race@example.com', f'pw{i}') for i in range(5)),
        return_exceptions=True,
    )
    winners = [r for r in results if isinstance(r, User)]
    assert len(winners) == 1
    assert all(isinstance(r, Conflict) for r in results if r is not winners[0])

    async with async_session() as sess:
        q = await sess.exec(select(User).where(User.email == 'race@example.com'))
        rows = q.all()
    assert [r.id for r in rows] == [winners[0].id]


@pytest.mark.asyncio
@pytest.mark.parametrize('body', [
    {'email': 'x@example.com', 'password': 'p'},
    {'name': 'X', 'password': 'p'},
    {'name': 'X', 'email': 'x@example.com'},
    {'name': '', 'email': 'x@example.com', 'password': 'p'},
    {'name': 'X', 'email': '   ', 'password': 'p'},
    {'name': 'X', 'email': 'x@example.com', 'password': 123},
])
async def test_register_missing_fields(client, body):
    r = await client.post('/register', json=body)
    assert r.status_code == 400
    assert r.json() == {'error': 'Missing fields'}
    assert await users.load_all() == []


@pytest.mark.asyncio
async def test_register_rejects_non_object_body(client):
    r = await client.post('/register', content=b'not json', headers={'Content-Type': 'application/json'})
    assert r.status_code == 400
    r = await client.post('/register', json=['a', 'b'])
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_register_errors_from_authenticator(ensure_db):
    await auth.register('Cara', 'cara@example.com', 'pw')
    with pytest.raises(Conflict):
        await auth.register('Cara 2', 'cara@example.com', 'pw2')
    with pytest.raises(InvalidInput):
        await auth.register('Cara', None, 'pw')


@pytest.mark.asyncio
async def test_email_is_case_sensitive(create_user):
    await create_user('Dee', 'Dee@example.com', 'pw')
    # a differently-cased email is a different account
    await create_user('dee', 'dee@example.com', 'pw')
    assert len(await users.load_all()) == 2
    assert await auth.authenticate('DEE@example.com', 'pw') is None


@pytest.mark.asyncio
async def test_authenticate_returns_identity_or_none(create_user):
    u = await create_user('Erin', 'erin@example.com', 'secret')

    ident = await auth.authenticate('erin@example.com', 'secret')
    assert ident == Identity(user_id=u.id, name='Erin', email='erin@example.com')

    # wrong password and unknown email are indistinguishable
    assert await auth.authenticate('erin@example.com', 'wrong') is None
    assert await auth.authenticate('nobody@example.com', 'secret') is None
    assert await auth.authenticate(None, 'secret') is None


@pytest.mark.asyncio
async def test_token_endpoint_and_invalid_credentials(client, create_user):
    await create_user('Fay', 'fay@example.com', 'faypass')

    r = await client.post('/auth/token', json={'email': 'fay@example.com', 'password': 'faypass'})
    assert r.status_code == 200
    assert r.json()['token_type'] == 'bearer'
    assert r.json()['access_token']

    bad_pw = await client.post('/auth/token', json={'email': 'fay@example.com', 'password': 'nope'})
    unknown = await client.post('/auth/token', json={'email': 'ghost@example.com', 'password': 'faypass'})
    assert bad_pw.status_code == 401
    assert unknown.status_code == 401
    assert bad_pw.json() == unknown.json()

    missing = await client.post('/auth/token', json={'email': 'fay@example.com'})
    assert missing.status_code == 400
    assert 'password' in missing.json()['error']


@pytest.mark.asyncio
async def test_token_payload_contains_sub_and_exp(client, create_user):
    u = await create_user('Gus', 'gus@example.com', 'guspass')
    r = await client.post('/auth/token', json={'email': 'gus@example.com', 'password': 'guspass'})
    token = r.json()['access_token']
    payload = jwt.decode(token, auth.SECRET_KEY, algorithms=[auth.ALGORITHM])
    assert payload['sub'] == u.id
    assert payload['type'] == 'access'
    assert payload['exp'] is not None


@pytest.mark.asyncio
async def test_me_requires_identity(client, create_user, login):
    u = await create_user('Hank', 'hank@example.com', 'hankpass')
    r = await client.get('/auth/me')
    assert r.status_code == 401
    assert r.headers['WWW-Authenticate'] == 'Bearer'

    headers = await login('hank@example.com', 'hankpass')
    r = await client.get('/auth/me', headers=headers)
    assert r.status_code == 200
    assert r.json() == {'id': u.id, 'name': 'Hank', 'email': 'hank@example.com'}


@pytest.mark.asyncio
async def test_expired_token_is_rejected(client, create_user):
    u = await create_user('Ivy', 'ivy@example.com', 'ivypass')
    expired = auth.create_access_token(Identity.from_user(u), expires_delta=timedelta(seconds=-10))
    r = await client.get('/todos', headers={'Authorization': f'Bearer {expired}'})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_tampered_token_is_rejected(client, create_user):
    u = await create_user('Jack', 'jack@example.com', 'jackpass')
    valid = auth.create_access_token(Identity.from_user(u))
    tampered = valid + 'x'
    r = await client.get('/todos', headers={'Authorization': f'Bearer {tampered}'})
    assert r.status_code == 401

    forged = jwt.encode({'sub': u.id, 'type': 'access'}, 'some-other-secret', algorithm=auth.ALGORITHM)
    r = await client.get('/todos', headers={'Authorization': f'Bearer {forged}'})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_wrong_type_and_ghost_user_tokens_are_rejected(ensure_db):
    ghost = Identity(user_id='0' * 32, name='Ghost', email='ghost@example.com')
    with pytest.raises(Unauthenticated):
        await auth.resolve_token(auth.create_access_token(ghost))

    u = await auth.register('Kim', 'kim@example.com', 'kimpass')
    csrf_like = jwt.encode({'sub': u.id, 'type': 'csrf'}, auth.SECRET_KEY, algorithm=auth.ALGORITHM)
    with pytest.raises(Unauthenticated):
        await auth.resolve_token(csrf_like)

    ident = await auth.resolve_token(auth.create_access_token(Identity.from_user(u)))
    assert ident.user_id == u.id


@pytest.mark.asyncio
async def test_session_login_create_and_logout(client, create_user):
    await create_user('Lou', 'lou@example.com', 'loupass')

    bad = await client.post('/auth/login', json={'email': 'lou@example.com', 'password': 'nope'})
    assert bad.status_code == 401
    assert client.cookies.get('session_token') is None

    r = await client.post('/auth/login', json={'email': 'lou@example.com', 'password': 'loupass'})
    assert r.status_code == 200
    assert r.json()['email'] == 'lou@example.com'
    session_token = client.cookies.get('session_token')
    assert session_token is not None

    # the cookie alone authenticates todo requests
    rc = await client.post('/todos', json={'text': 'via cookie'})
    assert rc.status_code == 201

    rlog = await client.post('/auth/logout')
    assert rlog.status_code == 200
    assert client.cookies.get('session_token') is None
    assert await auth.resolve_session(session_token) is None

    # replaying the old cookie after logout fails
    client.cookies.set('session_token', session_token)
    r = await client.get('/todos')
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_bearer_header_is_authoritative_over_cookie(client, create_user):
    await create_user('Max', 'max@example.com', 'maxpass')
    r = await client.post('/auth/login', json={'email': 'max@example.com', 'password': 'maxpass'})
    assert r.status_code == 200
    # a valid cookie does not rescue a tampered Authorization header
    r = await client.get('/todos', headers={'Authorization': 'Bearer not-a-token'})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_expired_session_is_removed(ensure_db):
    u = await auth.register('Ned', 'ned@example.com', 'nedpass')
    token = await auth.create_session(Identity.from_user(u), expires_delta=timedelta(seconds=-5))
    assert await auth.resolve_session(token) is None
    async with async_session() as sess:
        q = await sess.exec(select(Session).where(Session.session_token == token))
        assert q.first() is None

    live = await auth.create_session(Identity.from_user(u))
    ident = await auth.resolve_session(live)
    assert ident is not None and ident.user_id == u.id
