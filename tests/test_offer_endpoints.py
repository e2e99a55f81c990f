def _offer_body(prop, amount=120000):
    return {
        "propertyId": prop["id"],
        "offerAmount": amount,
        "buyerEmail": "buyer@example.com",
        "buyerName": "Buyer",
        "buyingDate": "2026-12-01",
    }


def test_submit_offer(client, login, make_property):
    login("buyer@example.com")
    prop = make_property()
    resp = client.post("/offers", json=_offer_body(prop))
    assert resp.status_code == 200
    offer = resp.json()["offer"]
    assert offer["status"] == "pending"
    assert offer["agentEmail"] == "agent@example.com"
    assert offer["agentName"] == "Agent Smith"


def test_submit_offer_out_of_range(client, login, make_property):
    login("buyer@example.com")
    prop = make_property()
    resp = client.post("/offers", json=_offer_body(prop, 90000))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Offer must be between 100000 and 150000"


def test_submit_offer_missing_fields_and_property(client, login, make_property):
    login("buyer@example.com")
    prop = make_property()
    body = _offer_body(prop)
    del body["buyerName"]
    assert client.post("/offers", json=body).status_code == 400

    body = _offer_body({"id": "missing"})
    assert client.post("/offers", json=body).status_code == 404

    body = _offer_body(prop, "a lot")
    assert client.post("/offers", json=body).status_code == 400


def test_submit_offer_requires_token(client, make_property):
    prop = make_property()
    assert client.post("/offers", json=_offer_body(prop)).status_code == 401


def test_accept_endpoint_rejects_siblings(client, login, make_property, make_offer, store):
    login("agent@example.com")
    prop = make_property()
    chosen = make_offer(prop)
    sibling = make_offer(prop, buyer="other@example.com")

    resp = client.patch(f"/offers/{chosen['id']}/accept")
    assert resp.status_code == 200
    assert resp.json()["rejected"] == 1
    assert store.get_offer(sibling["id"])["status"] == "rejected"

    assert client.patch("/offers/missing/accept").status_code == 404
    assert client.patch(f"/offers/{sibling['id']}/accept").status_code == 400


def test_reject_endpoint(client, login, make_property, make_offer, store):
    login("agent@example.com")
    offer = make_offer(make_property())
    assert client.patch(f"/offers/{offer['id']}/reject").status_code == 200
    assert store.get_offer(offer["id"])["status"] == "rejected"
    assert client.patch("/offers/missing/reject").status_code == 404


def test_list_offers_by_buyer_includes_image(client, make_property, make_offer):
    prop = make_property(image="https://img.example.com/a.jpg")
    make_offer(prop)
    make_offer(prop, buyer="someone@example.com")

    assert client.get("/offers").status_code == 400

    resp = client.get("/offers", params={"buyerEmail": "buyer@example.com"})
    assert resp.status_code == 200
    offers = resp.json()
    assert len(offers) == 1
    assert offers[0]["image"] == "https://img.example.com/a.jpg"


def test_list_offers_by_agent_and_get_one(client, make_property, make_offer):
    mine = make_offer(make_property(agent_email="me@example.com"))
    make_offer(make_property(agent_email="them@example.com"))

    resp = client.get("/offers/agent/me@example.com")
    assert [o["id"] for o in resp.json()] == [mine["id"]]

    assert client.get(f"/offers/{mine['id']}").json()["buyerEmail"] == "buyer@example.com"
    assert client.get("/offers/missing").status_code == 404


def test_project_status_marks_offer_bought(client, login, make_property, make_offer, store):
    login("buyer@example.com")
    offer = make_offer(make_property(), status="accepted")

    assert client.patch(f"/project-status/{offer['id']}", json={}).status_code == 400

    resp = client.patch(f"/project-status/{offer['id']}", json={"transactionId": "pi_1"})
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    stored = store.get_offer(offer["id"])
    assert stored["status"] == "bought"
    assert stored["transactionId"] == "pi_1"

    again = client.patch(f"/project-status/{offer['id']}", json={"transactionId": "pi_1"})
    assert again.status_code == 404
