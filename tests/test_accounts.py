from conftest import add_property, auth_headers


def test_admin_lists_and_searches_accounts(client, db, people):
  db.set("accounts/lord/passwordHash", "$2b$12$secret")
  accounts = client.get("/api/accounts", headers=people["admin"]).json()
  assert {"admin", "lord", "other_lord", "tina", "council"} <= {a["id"] for a in accounts}
  assert all("passwordHash" not in a for a in accounts)

  landlords = client.get("/api/accounts?q=LANDLORD", headers=people["admin"]).json()
  assert sorted(a["id"] for a in landlords) == ["lord", "other_lord"]
  by_email = client.get("/api/accounts?q=tina@", headers=people["admin"]).json()
  assert [a["id"] for a in by_email] == ["tina"]


def test_only_admins_manage_accounts(client, people):
  assert client.get("/api/accounts", headers=people["lord"]).status_code == 403
  assert client.patch("/api/accounts/tina", json={"accountType": "admin"}, headers=people["tina"]).status_code == 403
  assert client.delete("/api/accounts/tina", headers=people["council"]).status_code == 403


def test_changing_account_type_changes_the_resolved_role(client, db, people):
  headers = auth_headers("tina", "tenant")
  assert client.post("/api/properties", json={"name": "x", "city": "y", "price": 1}, headers=headers).status_code == 403
  resp = client.patch("/api/accounts/tina", json={"accountType": "landlord"}, headers=people["admin"])
  assert resp.status_code == 200
  assert resp.json()["accountType"] == "landlord"
  assert db.get("accounts/tina")["accountType"] == "landlord"
  assert client.get("/api/auth/me", headers=headers).json()["user"]["accountType"] == "landlord"


def test_email_changes_stay_unique(client, db, people):
  resp = client.patch("/api/accounts/tina", json={"email": "lord@example.cm"}, headers=people["admin"])
  assert resp.status_code == 400
  resp = client.patch("/api/accounts/tina", json={"email": "Tina.N@Example.cm"}, headers=people["admin"])
  assert resp.json()["email"] == "tina.n@example.cm"
  assert client.patch("/api/accounts/tina", json={}, headers=people["admin"]).status_code == 400
  assert client.patch("/api/accounts/ghost", json={"username": "G"}, headers=people["admin"]).status_code == 404


def test_delete_account(client, db, people):
  assert client.delete("/api/accounts/other_lord", headers=people["admin"]).status_code == 204
  assert db.get("accounts/other_lord") is None
  assert client.get("/api/auth/me", headers=people["other_lord"]).status_code == 401
  assert client.delete("/api/accounts/other_lord", headers=people["admin"]).status_code == 404


def test_deleted_accounts_lose_access(client, db, people):
  add_property(db, "p9", landlord_id="lord")
  assert client.delete("/api/accounts/lord", headers=people["admin"]).status_code == 204
  assert client.get("/api/auth/me", headers=people["lord"]).status_code == 401
  assert client.patch("/api/properties/p9", json={"price": 1}, headers=people["lord"]).status_code == 401
  assert db.get("properties/p9")["price"] == 50000000

  db.set("accounts/admin", None)
  assert client.get("/api/accounts", headers=people["admin"]).status_code == 401
