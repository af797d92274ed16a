"""
Unit tests for the composable aggregation stages.
"""
import pytest
from bson import ObjectId

from db.pipeline import ArrangeBy, Contains, Count, First, Lookup, Match, Pipeline, Project, matches


@pytest.fixture
def ids():
    return [ObjectId() for _ in range(4)]


class TestMatches:
    def test_equality_and_or(self):
        doc = {"username": "alice", "email": "alice@example.com"}
        assert matches(doc, {"username": "alice"})
        assert not matches(doc, {"username": "bob"})
        assert matches(doc, {"$or": [{"username": "bob"}, {"email": "alice@example.com"}]})
        assert not matches(doc, {"$or": [{"username": "bob"}, {"email": "bob@example.com"}]})

    def test_in_and_array_fields(self):
        doc = {"tags": ["a", "b"], "kind": "x"}
        assert matches(doc, {"tags": "a"})
        assert matches(doc, {"kind": {"$in": ["x", "y"]}})
        assert matches(doc, {"tags": {"$in": ["b", "z"]}})
        assert not matches(doc, {"tags": {"$in": ["z"]}})


class TestCompile:
    def test_lookup_with_sub_pipeline(self):
        stage = Lookup("users", "owner", "_id", "owner", pipeline=[Project(["username"], include_id=False)])
        assert stage.to_mongo() == {
            "$lookup": {
                "from": "users",
                "localField": "owner",
                "foreignField": "_id",
                "as": "owner",
                "pipeline": [{"$project": {"username": 1, "_id": 0}}],
            }
        }

    def test_lookup_without_sub_pipeline_has_no_pipeline_key(self):
        assert "pipeline" not in Lookup("subscriptions", "_id", "channel", "subscribers").to_mongo()["$lookup"]

    def test_count_and_first(self):
        assert Count("n", "items").to_mongo() == {"$addFields": {"n": {"$size": "$items"}}}
        assert First("owner").to_mongo() == {"$addFields": {"owner": {"$first": "$owner"}}}

    def test_contains_without_value_is_literal_false(self):
        assert Contains("is_subscribed", "subscribers", "subscriber", None).to_mongo() == {
            "$addFields": {"is_subscribed": {"$literal": False}}
        }

    def test_contains_with_value(self, ids):
        compiled = Contains("is_subscribed", "subscribers", "subscriber", ids[0]).to_mongo()
        cond = compiled["$addFields"]["is_subscribed"]["$cond"]
        assert cond["if"] == {"$in": [ids[0], "$subscribers.subscriber"]}
        assert cond["then"] is True and cond["else"] is False

    def test_arrange_by_maps_over_reference_list(self):
        compiled = ArrangeBy("history", "watch_history").to_mongo()
        outer = compiled["$addFields"]["history"]["$filter"]
        assert outer["input"]["$map"]["input"] == {"$ifNull": ["$watch_history", []]}
        assert outer["cond"] == {"$ne": ["$$item", None]}

    def test_pipeline_compiles_in_order(self):
        pipeline = Pipeline([Match({"username": "alice"}), Project(["username"])])
        assert pipeline.to_mongo() == [{"$match": {"username": "alice"}}, {"$project": {"username": 1}}]


class TestApply:
    def test_lookup_is_a_left_join(self, ids):
        users = [{"_id": ids[0]}, {"_id": ids[1]}]
        collections = {"subs": [{"_id": ids[2], "channel": ids[0]}]}
        out = Lookup("subs", "_id", "channel", "subscribers").apply(users, collections)
        assert [len(d["subscribers"]) for d in out] == [1, 0]

    def test_lookup_over_array_and_missing_collection(self, ids):
        docs = [{"_id": ids[0], "refs": [ids[1], ids[2]]}]
        collections = {"videos": [{"_id": ids[2]}, {"_id": ids[1]}, {"_id": ids[3]}]}
        out = Lookup("videos", "refs", "_id", "joined").apply(docs, collections)
        # foreign collection order, not reference order
        assert [d["_id"] for d in out[0]["joined"]] == [ids[2], ids[1]]
        assert Lookup("nowhere", "refs", "_id", "joined").apply(docs, {})[0]["joined"] == []

    def test_first_collapses_or_removes(self):
        out = First("owner").apply([{"owner": [{"u": 1}]}, {"owner": []}], {})
        assert out[0]["owner"] == {"u": 1}
        assert "owner" not in out[1]

    def test_contains(self, ids):
        doc = {"subscribers": [{"subscriber": ids[1]}, {"subscriber": ids[2]}]}
        assert Contains("s", "subscribers", "subscriber", ids[1]).apply([doc], {})[0]["s"] is True
        assert Contains("s", "subscribers", "subscriber", ids[3]).apply([doc], {})[0]["s"] is False
        assert Contains("s", "subscribers", "subscriber", None).apply([doc], {})[0]["s"] is False

    def test_arrange_by_follows_reference_order(self, ids):
        doc = {
            "refs": [ids[3], ids[1], ids[2], ids[3]],
            "items": [{"_id": ids[1]}, {"_id": ids[3]}],
        }
        out = ArrangeBy("items", "refs").apply([doc], {})
        # ids[2] has no joined doc; ids[3] is referenced twice
        assert [d["_id"] for d in out[0]["items"]] == [ids[3], ids[1], ids[3]]

    def test_project_whitelist(self, ids):
        doc = {"_id": ids[0], "username": "alice", "hashed_password": "x"}
        assert Project(["username"]).apply([doc], {}) == [{"_id": ids[0], "username": "alice"}]
        assert Project(["username"], include_id=False).apply([doc], {}) == [{"username": "alice"}]
