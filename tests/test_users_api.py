"""
API Tests for user administration endpoints

Test coverage for:
- GET /api/users (admin only)
- PUT /api/users/{id}/role
- DELETE /api/users/{id} and the cleanup it triggers
"""
import pytest
from bson import ObjectId


class TestListUsers:
    def test_admin_lists_users(self, client, api, admin, user):
        res = client.get("/api/users", headers=api.auth(admin["token"]))
        assert res.status_code == 200
        listed = res.json()["users"]
        assert {u["email"] for u in listed} == {"admin@example.com", "user@example.com"}
        assert all(set(u) == {"id", "email", "role"} for u in listed)

    def test_non_admin_forbidden(self, client, api, user):
        res = client.get("/api/users", headers=api.auth(user["token"]))
        assert res.status_code == 403
        assert isinstance(res.json()["error"], str)

    @pytest.mark.parametrize("token", [None, "invalidtoken"])
    def test_unauthenticated(self, client, api, token):
        assert client.get("/api/users", headers=api.auth(token)).status_code == 401


class TestChangeRole:
    def put_role(self, client, api, token, user_id, role):
        return client.put(f"/api/users/{user_id}/role", json={"role": role}, headers=api.auth(token))

    def test_promote(self, client, api, admin, user):
        res = self.put_role(client, api, admin["token"], user["id"], "admin")
        assert res.status_code == 200
        body = res.json()
        assert body["success"] is True
        assert body["role"] == "admin"

    def test_promoted_user_gains_admin_access(self, client, api, admin, user):
        self.put_role(client, api, admin["token"], user["id"], "admin")
        fresh = api.login("user@example.com").json()["token"]
        assert client.get("/api/users", headers=api.auth(fresh)).status_code == 200

    def test_role_change_revokes_existing_tokens(self, client, api, admin, user):
        self.put_role(client, api, admin["token"], user["id"], "admin")
        res = client.get("/api/auth/me", headers=api.auth(user["token"]))
        assert res.status_code == 401

    def test_same_role_keeps_tokens(self, client, api, admin, user):
        res = self.put_role(client, api, admin["token"], user["id"], "user")
        assert res.status_code == 200
        assert client.get("/api/auth/me", headers=api.auth(user["token"])).status_code == 200

    @pytest.mark.parametrize("role", ["superuser", "", None, "Admin"])
    def test_invalid_role(self, client, api, admin, user, role):
        res = self.put_role(client, api, admin["token"], user["id"], role)
        assert res.status_code == 400
        assert res.json() == {"error": "Invalid role value."}

    @pytest.mark.parametrize("user_id", ["nonexistentid", str(ObjectId())])
    def test_unknown_user(self, client, api, admin, user_id):
        res = self.put_role(client, api, admin["token"], user_id, "admin")
        assert res.status_code == 404

    def test_non_admin_forbidden(self, client, api, user, other):
        res = self.put_role(client, api, user["token"], other["id"], "admin")
        assert res.status_code == 403

    def test_unauthenticated(self, client, api, user):
        assert self.put_role(client, api, None, user["id"], "admin").status_code == 401


class TestDeleteUser:
    def delete_user(self, client, api, token, user_id):
        return client.delete(f"/api/users/{user_id}", headers=api.auth(token))

    def test_admin_deletes_user(self, client, api, admin, user, users):
        res = self.delete_user(client, api, admin["token"], user["id"])
        assert res.status_code == 200
        assert res.json() == {"success": True}
        assert users.find_by_id(user["id"]) is None

    @pytest.mark.parametrize("user_id", ["nonexistentid", str(ObjectId())])
    def test_unknown_user(self, client, api, admin, user_id):
        res = self.delete_user(client, api, admin["token"], user_id)
        assert res.status_code == 404
        assert isinstance(res.json()["error"], str)

    def test_admin_cannot_be_deleted(self, client, api, admin):
        res = self.delete_user(client, api, admin["token"], admin["id"])
        assert res.status_code == 403

    def test_non_admin_forbidden(self, client, api, user, other):
        assert self.delete_user(client, api, user["token"], other["id"]).status_code == 403

    def test_non_admin_forbidden_for_missing_user(self, client, api, user):
        assert self.delete_user(client, api, user["token"], str(ObjectId())).status_code == 403

    def test_unauthenticated(self, client, api, user):
        assert self.delete_user(client, api, None, user["id"]).status_code == 401

    def test_cleanup(self, client, api, admin, user, other, tasks):
        owned = api.create_task(user["token"], title="Owned by user").json()
        assigned = api.create_task(admin["token"], title="Assigned to user", assigneeId=user["id"]).json()
        kept = api.create_task(other["token"], title="Unrelated").json()

        self.delete_user(client, api, admin["token"], user["id"])

        assert tasks.find_by_id(owned["id"]) is None
        fetched = api.get_task(admin["token"], assigned["id"]).json()
        assert fetched["assignee"] is None
        assert tasks.find_by_id(kept["id"]) is not None
        assert client.get("/api/auth/me", headers=api.auth(user["token"])).status_code == 401
        assert api.login("user@example.com").status_code == 401
