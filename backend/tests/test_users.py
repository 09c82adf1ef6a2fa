"""
Store membership tests.

Verifies:
- Owners and admins add members (new accounts or existing ones by email)
- Only owners grant or take away the owner role
- A store always keeps one active owner; nobody removes themself
- Removing a member cuts their access at once, existing tokens included
"""

import pytest

from conftest import TEST_PASSWORD, auth_headers, login


def _add(client, headers, email, role='staff', **extra):
    payload = {'email': email, 'role': role}
    if 'username' not in extra and '@' in email:
        extra.setdefault('username', email.split('@')[0])
        extra.setdefault('password', TEST_PASSWORD)
    payload.update(extra)
    return client.post('/api/users', json=payload, headers=headers)


@pytest.fixture
def admin_headers(client, owner_headers):
    assert _add(client, owner_headers, 'erin@x.com', role='admin').status_code == 201
    return auth_headers(login(client, 'erin@x.com'))


def _user_id(client, headers, email):
    members = client.get('/api/users', headers=headers).get_json()['data']
    return next(m['id'] for m in members if m['email'] == email)


class TestMembers:

    def test_add_new_account(self, client, owner_headers):
        resp = _add(client, owner_headers, 'bob@x.com', role='manager', display_name='Bob')
        assert resp.status_code == 201
        data = resp.get_json()['data']
        assert data['username'] == 'bob'
        assert data['store_role'] == 'manager'
        assert data['global_role'] == 'staff'
        assert data['display_name'] == 'Bob'

        members = client.get('/api/users', headers=owner_headers).get_json()['data']
        assert sorted(m['email'] for m in members) == ['alice@x.com', 'bob@x.com']

    def test_add_existing_account_by_email(self, client, owner_headers, other_owner):
        resp = client.post('/api/users', json={'email': 'carol@x.com'}, headers=owner_headers)
        assert resp.status_code == 201
        assert resp.get_json()['data']['store_role'] == 'staff'

    def test_add_unknown_email_needs_credentials(self, client, owner_headers):
        resp = client.post('/api/users', json={'email': 'new@x.com'}, headers=owner_headers)
        assert resp.status_code == 400

    def test_add_twice_conflicts(self, client, owner_headers):
        _add(client, owner_headers, 'bob@x.com')
        resp = client.post('/api/users', json={'email': 'bob@x.com'}, headers=owner_headers)
        assert resp.status_code == 409

    def test_invalid_role(self, client, owner_headers):
        assert _add(client, owner_headers, 'bob@x.com', role='king').status_code == 400

    def test_get_member_and_404(self, client, owner_headers, other_owner):
        bob = _add(client, owner_headers, 'bob@x.com').get_json()['data']
        assert client.get(f"/api/users/{bob['id']}", headers=owner_headers).status_code == 200
        assert client.get(f"/api/users/{other_owner['user']['id']}", headers=owner_headers).status_code == 404

    def test_staff_cannot_manage_members(self, client, staff_headers):
        assert _add(client, staff_headers, 'zed@x.com').status_code == 403
        assert client.get('/api/users', headers=staff_headers).status_code == 200


class TestOwnerRules:

    def test_admin_cannot_grant_owner(self, client, admin_headers):
        assert _add(client, admin_headers, 'bob@x.com', role='owner').status_code == 403

    def test_admin_cannot_demote_owner(self, client, owner, admin_headers):
        resp = client.put(f"/api/users/{owner['user']['id']}/role", json={'role': 'staff'}, headers=admin_headers)
        assert resp.status_code == 403

    def test_last_owner_cannot_step_down(self, client, owner):
        resp = client.put(f"/api/users/{owner['user']['id']}/role", json={'role': 'admin'},
                          headers=owner['headers'])
        assert resp.status_code == 409
        assert resp.get_json()['error'] == 'A store must keep at least one owner'

    def test_owner_can_hand_over(self, client, owner):
        bob = _add(client, owner['headers'], 'bob@x.com', role='owner').get_json()['data']
        assert bob['store_role'] == 'owner'

        resp = client.put(f"/api/users/{owner['user']['id']}/role", json={'role': 'admin'},
                          headers=owner['headers'])
        assert resp.status_code == 200
        assert resp.get_json()['data']['store_role'] == 'admin'

        me = client.get('/api/auth/me', headers=owner['headers']).get_json()['data']
        assert me['store_role'] == 'admin'

    def test_cannot_remove_self(self, client, owner):
        resp = client.delete(f"/api/users/{owner['user']['id']}", headers=owner['headers'])
        assert resp.status_code == 400
        assert resp.get_json()['error'] == 'Cannot remove yourself from store'


class TestRemoval:

    def test_removed_member_loses_access(self, client, owner_headers):
        _add(client, owner_headers, 'bob@x.com')
        bob_headers = auth_headers(login(client, 'bob@x.com'))
        bob_id = _user_id(client, owner_headers, 'bob@x.com')
        assert client.get('/api/products', headers=bob_headers).status_code == 200

        resp = client.delete(f'/api/users/{bob_id}', headers=owner_headers)
        assert resp.status_code == 200

        resp = client.get('/api/products', headers=bob_headers)
        assert resp.status_code == 403
        assert resp.get_json()['error'] == 'No active membership in this store'

        members = client.get('/api/users', headers=owner_headers).get_json()['data']
        assert 'bob@x.com' not in [m['email'] for m in members]

    def test_removed_member_can_be_added_back(self, client, owner_headers):
        _add(client, owner_headers, 'bob@x.com')
        bob_id = _user_id(client, owner_headers, 'bob@x.com')
        client.delete(f'/api/users/{bob_id}', headers=owner_headers)

        resp = client.post('/api/users', json={'email': 'bob@x.com', 'role': 'manager'}, headers=owner_headers)
        assert resp.status_code == 201
        assert resp.get_json()['data']['store_role'] == 'manager'

    def test_update_member(self, client, owner_headers):
        _add(client, owner_headers, 'bob@x.com')
        bob_id = _user_id(client, owner_headers, 'bob@x.com')

        resp = client.put(f'/api/users/{bob_id}', json={'display_name': 'Bobby', 'role': 'manager'},
                          headers=owner_headers)
        assert resp.status_code == 200
        data = resp.get_json()['data']
        assert (data['display_name'], data['store_role']) == ('Bobby', 'manager')

        resp = client.put(f'/api/users/{bob_id}', json={'is_active': False}, headers=owner_headers)
        assert resp.status_code == 200
        assert resp.get_json()['data']['membership_active'] is False

    def test_update_rejects_unknown_fields(self, client, owner_headers):
        _add(client, owner_headers, 'bob@x.com')
        bob_id = _user_id(client, owner_headers, 'bob@x.com')
        resp = client.put(f'/api/users/{bob_id}', json={'password_hash': 'x'}, headers=owner_headers)
        assert resp.status_code == 400

    @pytest.mark.parametrize(
        "payload",
        [
            {'role': 'staff', 'display_name': 123},
            {'role': 'staff', 'display_name': 'x' * 129},
            {'role': 'staff', 'is_active': 'yes'},
        ],
    )
    def test_rejected_update_changes_nothing(self, client, owner_headers, payload):
        _add(client, owner_headers, 'bob@x.com', role='manager', display_name='Bob')
        bob_id = _user_id(client, owner_headers, 'bob@x.com')

        resp = client.put(f'/api/users/{bob_id}', json=payload, headers=owner_headers)
        assert resp.status_code == 400

        data = client.get(f'/api/users/{bob_id}', headers=owner_headers).get_json()['data']
        assert (data['store_role'], data['display_name']) == ('manager', 'Bob')

    def test_owner_guard_rolls_back_role_and_name(self, client, owner, admin_headers):
        owner_id = owner['user']['id']
        resp = client.put(f'/api/users/{owner_id}', json={'display_name': 'Boss', 'role': 'admin'},
                          headers=admin_headers)
        assert resp.status_code == 403

        data = client.get(f'/api/users/{owner_id}', headers=owner['headers']).get_json()['data']
        assert data['store_role'] == 'owner'
        assert data['display_name'] != 'Boss'

    def test_deactivate_cannot_carry_other_fields(self, client, owner_headers):
        _add(client, owner_headers, 'bob@x.com', role='manager')
        bob_id = _user_id(client, owner_headers, 'bob@x.com')

        resp = client.put(f'/api/users/{bob_id}', json={'is_active': False, 'role': 'staff'},
                          headers=owner_headers)
        assert resp.status_code == 400

        data = client.get(f'/api/users/{bob_id}', headers=owner_headers).get_json()['data']
        assert data['membership_active'] is True
        assert data['store_role'] == 'manager'
