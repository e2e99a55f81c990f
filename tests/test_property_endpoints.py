LISTING = {
    "agentEmail": "agent@example.com",
    "agentName": "Agent Smith",
    "title": "Hill Cottage",
    "location": "Denver, CO",
    "image": "https://img.example.com/hill.jpg",
    "minPrice": 200000,
    "maxPrice": 250000,
    "bedrooms": 2,
}


def test_agent_adds_pending_property(client, login):
    login("agent@example.com")
    resp = client.post("/properties", json={**LISTING, "status": "verified"})
    assert resp.status_code == 200
    prop = resp.json()
    assert prop["status"] == "pending"
    assert prop["bedrooms"] == 2
    assert prop["advertised"] is False


def test_add_property_validation(client, login, store):
    login("agent@example.com")
    assert client.post("/properties", json={}).status_code == 400
    resp = client.post("/properties", json={**LISTING, "minPrice": 300000})
    assert resp.status_code == 400

    store.insert_user({"email": "crook@example.com", "role": "fraud"})
    resp = client.post("/properties", json={**LISTING, "agentEmail": "crook@example.com"})
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Fraud agents cannot add properties"


def test_add_property_requires_token(client):
    assert client.post("/properties", json=LISTING).status_code == 401


def test_public_listing_shows_only_verified(client, store, make_property):
    pending = make_property()
    verified = make_property()
    store.set_property_fields(verified["id"], status="verified")
    make_property(agent_email="other@example.com")

    public = client.get("/properties").json()
    assert [p["id"] for p in public] == [verified["id"]]

    mine = client.get("/properties", params={"email": "agent@example.com"}).json()
    assert {p["id"] for p in mine} == {pending["id"], verified["id"]}


def test_admin_verifies_and_rejects(client, admin, store, make_property):
    prop = make_property()
    resp = client.patch(f"/properties/{prop['id']}/status", json={"status": "verified"})
    assert resp.status_code == 200
    assert resp.json() == {"status": "verified"}
    assert store.get_property(prop["id"])["status"] == "verified"

    resp = client.patch(f"/properties/{prop['id']}/status", json={"status": "rejected"})
    assert resp.status_code == 200
    assert store.get_property(prop["id"])["status"] == "rejected"


def test_status_update_rejects_bad_input(client, admin, store, make_property):
    prop = make_property()
    for body in ({"status": "pending"}, {"status": "sold"}, {}):
        resp = client.patch(f"/properties/{prop['id']}/status", json=body)
        assert resp.status_code == 400
    assert store.get_property(prop["id"])["status"] == "pending"

    resp = client.patch("/properties/missing/status", json={"status": "verified"})
    assert resp.status_code == 404


def test_status_update_requires_admin(client, login, store, make_property):
    prop = make_property()
    store.insert_user({"email": "agent@example.com", "role": "agent"})
    login("agent@example.com")
    resp = client.patch(f"/properties/{prop['id']}/status", json={"status": "verified"})
    assert resp.status_code == 403
    assert store.get_property(prop["id"])["status"] == "pending"


def test_admin_lists_every_property(client, admin, make_property):
    first = make_property()
    second = make_property(agent_email="other@example.com")
    ids = [p["id"] for p in client.get("/admin/properties").json()]
    assert ids == [second["id"], first["id"]]


def test_advertised_properties(client, admin, store, make_property):
    shown = make_property()
    unverified = make_property()
    store.set_property_fields(shown["id"], status="verified")

    for prop in (shown, unverified):
        resp = client.patch(f"/properties/{prop['id']}/advertise", json={})
        assert resp.status_code == 200
        assert resp.json() == {"advertised": True}

    assert [p["id"] for p in client.get("/advertised-properties").json()] == [shown["id"]]
    assert client.patch("/properties/missing/advertise", json={}).status_code == 404


def test_property_details_include_reviews(client, login, make_property):
    login("buyer@example.com")
    prop = make_property()
    review = {"userId": "buyer@example.com", "name": "Buyer", "text": "Great view"}

    assert client.post(f"/properties/{prop['id']}/reviews", json={"text": "x"}).status_code == 400
    assert client.post("/properties/missing/reviews", json=review).status_code == 404
    assert client.post(f"/properties/{prop['id']}/reviews", json=review).status_code == 200

    details = client.get(f"/properties/{prop['id']}").json()
    assert details["title"] == "Lake House"
    assert [r["text"] for r in details["reviews"]] == ["Great view"]
    assert client.get("/properties/missing").status_code == 404


def test_update_property(client, login, store, make_property):
    login("agent@example.com")
    prop = make_property()

    resp = client.put(f"/properties/{prop['id']}", json={"title": "Lake Villa", "status": "verified"})
    assert resp.status_code == 200
    updated = resp.json()["property"]
    assert updated["title"] == "Lake Villa"
    assert updated["status"] == "pending"

    resp = client.put(f"/properties/{prop['id']}", json={"minPrice": 500000})
    assert resp.status_code == 400
    assert store.get_property(prop["id"])["minPrice"] == 100000

    assert client.put("/properties/missing", json={"title": "x"}).status_code == 404


def test_delete_property(client, login, make_property):
    login("agent@example.com")
    prop = make_property()
    assert client.delete(f"/properties/{prop['id']}").json() == {"deletedCount": 1}
    assert client.delete(f"/properties/{prop['id']}").json() == {"deletedCount": 0}
