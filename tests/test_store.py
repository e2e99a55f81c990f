import pytest

from dreamsquare.store import IntegrityError, Store


def test_property_extra_fields_round_trip_through_metadata(store):
    prop = store.insert_property(
        {
            "agentEmail": "agent@example.com",
            "minPrice": "100000",
            "maxPrice": 150000,
            "bedrooms": 3,
            "description": "Quiet street",
            "status": "verified",
            "id": "client-chosen",
        }
    )
    assert prop["status"] == "pending"
    assert prop["id"] != "client-chosen"
    assert prop["minPrice"] == 100000.0
    assert prop["bedrooms"] == 3
    assert prop["description"] == "Quiet street"
    assert prop["advertised"] is False

    updated = store.update_property(prop["id"], {"description": "Busy street", "garage": True})
    assert updated["description"] == "Busy street"
    assert updated["bedrooms"] == 3
    assert updated["garage"] is True
    assert updated["status"] == "pending"


def test_property_requires_agent_and_range(store):
    with pytest.raises(ValueError):
        store.insert_property({"minPrice": 1, "maxPrice": 2})
    with pytest.raises(ValueError):
        store.insert_property({"agentEmail": "a@example.com", "minPrice": 1})


def test_update_missing_property_returns_none(store):
    assert store.update_property("missing", {"title": "x"}) is None


def test_list_properties_filters(store):
    a = store.insert_property({"agentEmail": "a@example.com", "minPrice": 1, "maxPrice": 2})
    b = store.insert_property({"agentEmail": "b@example.com", "minPrice": 1, "maxPrice": 2})
    store.set_property_fields(b["id"], status="verified", advertised=True)

    assert [p["id"] for p in store.list_properties(agent_email="a@example.com")] == [a["id"]]
    assert [p["id"] for p in store.list_properties(status="verified")] == [b["id"]]
    assert [p["id"] for p in store.list_properties(advertised=True)] == [b["id"]]
    assert [p["id"] for p in store.list_properties(newest_first=True)] == [b["id"], a["id"]]
    assert store.list_properties(ids=[]) == []


def test_transaction_rolls_back_all_writes(store):
    user = store.insert_user({"email": "u@example.com"})
    with pytest.raises(RuntimeError):
        with store.transaction() as tx:
            tx.set_user_role(user["id"], "agent")
            raise RuntimeError("abort")
    assert store.get_user(user["id"])["role"] == "user"


def test_users_are_unique_by_email(store):
    store.insert_user({"email": "u@example.com"})
    with pytest.raises(IntegrityError):
        store.insert_user({"email": "u@example.com"})


def test_wishlist_pairs_are_unique(store):
    store.add_wishlist_item("u@example.com", "p1")
    with pytest.raises(IntegrityError):
        store.add_wishlist_item("u@example.com", "p1")
    assert store.wishlist_property_ids("u@example.com") == ["p1"]
    assert store.remove_wishlist_item("u@example.com", "p1") == 1
    assert store.remove_wishlist_item("u@example.com", "p1") == 0


def test_paid_payments_for_agent(store):
    mine = store.insert_property({"agentEmail": "me@example.com", "minPrice": 1, "maxPrice": 2})
    theirs = store.insert_property({"agentEmail": "them@example.com", "minPrice": 1, "maxPrice": 2})
    base = {"offer_id": "o", "email": "b@example.com", "amount": 10.0, "transaction_id": "t", "payment_method": "card"}
    paid = store.insert_payment({**base, "property_id": mine["id"]})
    store.insert_payment({**base, "property_id": theirs["id"]})

    sold = store.list_paid_payments_for_agent("me@example.com")
    assert [p["id"] for p in sold] == [paid["id"]]
    assert sold[0]["status"] == "paid"


def test_reviews_moderation_by_either_id(store):
    review = store.insert_review("p1", "u@example.com", "U", "Lovely")
    assert store.set_review_status(review["reviewId"], "approved") == 1
    assert store.set_review_status(review["id"], "rejected") == 1
    assert store.list_reviews(property_id="p1")[0]["status"] == "rejected"
    assert store.delete_review(review["reviewId"]) == 1
    assert store.list_reviews() == []


def test_from_url_uses_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path}/env.db")
    Store.from_url()
    assert (tmp_path / "env.db").exists()
