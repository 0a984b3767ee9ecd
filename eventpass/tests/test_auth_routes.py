import pytest
from prometheus_client import REGISTRY

from eventpass import auth, crud

GENERIC_401 = {'message': 'Invalid or expired token'}


def bearer(token: str) -> dict:
    return {'Authorization': f'Bearer {token}'}


def rejections(kind: str) -> float:
    return REGISTRY.get_sample_value('eventpass_auth_rejections_total', {'kind': kind}) or 0.0


async def register(ac, email='mulder@example.com', password='trustno1', **extra):
    res = await ac.post('/api/auth/register', json={
        'email': email,
        'password': password,
        'first_name': 'Fox',
        'last_name': 'Mulder',
        **extra,
    })
    assert res.status_code == 201, res.text
    return res.json()


async def login(ac, email='mulder@example.com', password='trustno1'):
    res = await ac.post('/api/auth/login', json={'email': email, 'password': password})
    assert res.status_code == 200, res.text
    return res.json()


@pytest.mark.asyncio
async def test_register_returns_token_and_public_profile(client, clock):
    body = await register(client)

    assert body['token']
    user = body['user']
    assert user['email'] == 'mulder@example.com'
    assert user['name'] == 'Fox Mulder'
    assert user['role'] == 'attendee'
    assert user['auth_status']['session_count'] == 1
    assert user['auth_status']['is_online'] is True
    assert 'hashed_password' not in user


@pytest.mark.asyncio
async def test_register_organizer_and_duplicate_email(client, clock):
    body = await register(client, is_organizer=True)
    assert body['user']['role'] == 'organizer'

    res = await client.post('/api/auth/register', json={
        'email': 'MULDER@example.com', 'password': 'x' * 8, 'first_name': 'F', 'last_name': 'M',
    })
    assert res.status_code == 409
    assert res.json() == {'message': 'An account with this email already exists'}


@pytest.mark.asyncio
async def test_two_devices_then_logout_one(client, clock):
    token_a = (await register(client))['token']
    token_b = (await login(client))['token']
    assert token_a != token_b

    for token in (token_a, token_b):
        res = await client.get('/api/auth/sessions', headers=bearer(token))
        assert res.status_code == 200, res.text
        sessions = res.json()
        assert len(sessions) == 2
        assert set(sessions[0]) == {'created_at', 'last_used', 'user_agent', 'ip_address'}

    res = await client.post('/api/auth/logout', headers=bearer(token_a))
    assert res.status_code == 200
    assert res.json() == {'message': 'Logged out successfully'}

    res = await client.get('/api/auth/sessions', headers=bearer(token_b))
    assert len(res.json()) == 1

    before = rejections('SessionRevoked')
    res = await client.get('/api/auth/profile', headers=bearer(token_a))
    assert res.status_code == 401
    assert res.json() == GENERIC_401
    assert rejections('SessionRevoked') == before + 1


@pytest.mark.asyncio
async def test_login_failures_are_uniform(client, clock):
    await register(client)

    unknown = await client.post('/api/auth/login', json={'email': 'scully@example.com', 'password': 'trustno1'})
    wrong = await client.post('/api/auth/login', json={'email': 'mulder@example.com', 'password': 'nope'})

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json() == {'message': 'Invalid email or password'}


@pytest.mark.asyncio
async def test_token_rejections(client, clock):
    res = await client.get('/api/auth/profile')
    assert res.status_code == 401
    assert res.json() == {'message': 'Access token required'}

    before = rejections('InvalidToken')
    res = await client.get('/api/auth/profile', headers=bearer('not-a-token'))
    assert res.status_code == 401
    assert res.json() == GENERIC_401
    assert rejections('InvalidToken') == before + 1

    orphan = auth.create_access_token(4242)
    res = await client.get('/api/auth/profile', headers=bearer(orphan))
    assert res.status_code == 401
    assert res.json() == GENERIC_401


@pytest.mark.asyncio
async def test_revoke_all_invalidates_calling_token(client, clock):
    token_a = (await register(client))['token']
    token_b = (await login(client))['token']

    res = await client.post('/api/auth/revoke-all-sessions', headers=bearer(token_b))
    assert res.status_code == 200
    assert res.json() == {'message': 'All sessions revoked successfully'}

    before = rejections('SessionRevoked')
    for token in (token_a, token_b):
        res = await client.get('/api/auth/sessions', headers=bearer(token))
        assert res.status_code == 401
    assert rejections('SessionRevoked') == before + 2


@pytest.mark.asyncio
async def test_logout_always_succeeds(client, clock):
    token = (await register(client))['token']

    for headers in ({}, bearer('garbage'), bearer(token), bearer(token)):
        res = await client.post('/api/auth/logout', headers=headers)
        assert res.status_code == 200
        assert res.json() == {'message': 'Logged out successfully'}


@pytest.mark.asyncio
async def test_logout_with_expired_token_clears_its_session(client, clock):
    token = (await register(client))['token']
    clock.advance(seconds=auth.TOKEN_LIFETIME_SECONDS + 5)

    res = await client.post('/api/auth/logout', headers=bearer(token))
    assert res.status_code == 200

    user = (await crud.list_users_status())[0][0]
    assert user.session_count == 0


@pytest.mark.asyncio
async def test_expired_token_rejected_and_pruned(client, clock):
    old_token = (await register(client))['token']
    clock.advance(hours=12)
    new_token = (await login(client))['token']
    clock.advance(hours=13)

    before = rejections('TokenExpired')
    res = await client.get('/api/auth/profile', headers=bearer(old_token))
    assert res.status_code == 401
    assert res.json() == GENERIC_401
    assert rejections('TokenExpired') == before + 1

    res = await client.get('/api/auth/sessions', headers=bearer(new_token))
    assert res.status_code == 200
    assert len(res.json()) == 1


@pytest.mark.asyncio
async def test_check_is_anonymous_on_bad_tokens(client, clock):
    token = (await register(client))['token']

    res = await client.get('/api/auth/check')
    assert res.json() == {'is_authenticated': False, 'user': None}

    res = await client.get('/api/auth/check', headers=bearer(token))
    assert res.json()['is_authenticated'] is True
    assert res.json()['user']['email'] == 'mulder@example.com'

    await client.post('/api/auth/logout', headers=bearer(token))
    res = await client.get('/api/auth/check', headers=bearer(token))
    assert res.status_code == 200
    assert res.json() == {'is_authenticated': False, 'user': None}


@pytest.mark.asyncio
async def test_auth_status_includes_login_history(client, clock):
    token = (await register(client))['token']
    clock.advance(minutes=1)
    await login(client)

    res = await client.get('/api/auth/auth-status', headers=bearer(token))
    assert res.status_code == 200
    body = res.json()
    assert body['auth_status']['session_count'] == 2
    assert len(body['login_history']) == 2
    assert body['login_history'][0]['logout_at'] is None


@pytest.mark.asyncio
async def test_role_gate_is_forbidden_not_unauthorized(client, clock):
    body = await register(client)
    token = body['token']

    res = await client.get('/api/auth/stats', headers=bearer(token))
    assert res.status_code == 403
    assert res.json() == {'message': 'Access denied'}

    await crud.set_user_role(body['user']['id'], 'admin')
    res = await client.get('/api/auth/stats', headers=bearer(token))
    assert res.status_code == 200
    assert res.json() == {'total_users': 1, 'online_users': 1, 'recent_logins': 1, 'total_active_sessions': 1}


@pytest.mark.asyncio
async def test_admin_users_status_pagination(client, clock):
    admin = await register(client)
    await crud.set_user_role(admin['user']['id'], 'admin')
    for name in ('scully', 'skinner'):
        await register(client, email=f'{name}@example.com')

    res = await client.get('/api/auth/admin/users-status?page=2&limit=2', headers=bearer(admin['token']))
    assert res.status_code == 200, res.text
    body = res.json()
    assert len(body['users']) == 1
    assert body['pagination'] == {
        'current_page': 2,
        'total_pages': 2,
        'total_users': 3,
        'has_next_page': False,
        'has_prev_page': True,
    }


@pytest.mark.asyncio
async def test_change_password_flow(client, clock):
    token = (await register(client))['token']

    res = await client.put('/api/auth/change-password', headers=bearer(token),
                           json={'current_password': 'trustno1', 'new_password': 'abc'})
    assert res.status_code == 400

    res = await client.put('/api/auth/change-password', headers=bearer(token),
                           json={'current_password': 'wrong', 'new_password': 'the-truth'})
    assert res.status_code == 401
    assert res.json() == {'message': 'Current password is incorrect'}

    res = await client.put('/api/auth/change-password', headers=bearer(token),
                           json={'current_password': 'trustno1', 'new_password': 'the-truth'})
    assert res.status_code == 200
    await login(client, password='the-truth')


@pytest.mark.asyncio
async def test_deleted_account_is_deactivated(client, clock):
    token = (await register(client))['token']

    res = await client.delete('/api/auth/account', headers=bearer(token))
    assert res.status_code == 200

    res = await client.get('/api/auth/profile', headers=bearer(token))
    assert res.status_code == 401
    res = await client.post('/api/auth/login', json={'email': 'mulder@example.com', 'password': 'trustno1'})
    assert res.status_code == 401
    assert res.json() == {'message': 'Invalid email or password'}


@pytest.mark.asyncio
async def test_deleted_account_email_can_register_again(client, clock):
    token = (await register(client))['token']
    res = await client.delete('/api/auth/account', headers=bearer(token))
    assert res.status_code == 200

    body = await register(client)
    assert body['user']['email'] == 'mulder@example.com'
    assert await login(client)


@pytest.mark.asyncio
async def test_malformed_login_body_is_a_uniform_401(client, clock):
    await register(client)

    for payload in (
        {'email': 'not-an-email', 'password': 'trustno1'},
        {'mail': 'mulder@example.com', 'password': 'trustno1'},
    ):
        res = await client.post('/api/auth/login', json=payload)
        assert res.status_code == 401
        assert res.json() == {'message': 'Invalid email or password'}
        assert 'trustno1' not in res.text


@pytest.mark.asyncio
async def test_malformed_register_body_is_a_400_message(client, clock):
    res = await client.post('/api/auth/register', json={
        'password': 'trustno1', 'first_name': 'Fox', 'last_name': 'Mulder',
    })
    assert res.status_code == 400
    body = res.json()
    assert body['message'] == 'Validation error'
    assert [d['field'] for d in body['details']] == ['email']
    assert 'trustno1' not in res.text


@pytest.mark.asyncio
async def test_login_with_very_long_user_agent(client, clock):
    await register(client)
    token = (await client.post(
        '/api/auth/login',
        json={'email': 'mulder@example.com', 'password': 'trustno1'},
        headers={'User-Agent': 'Mozilla/5.0 ' + 'z' * 1000},
    )).json()['token']

    res = await client.get('/api/auth/sessions', headers=bearer(token))
    assert res.status_code == 200
    assert max(len(s['user_agent']) for s in res.json()) == 255
