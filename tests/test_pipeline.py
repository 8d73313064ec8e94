import mongomock
import pytest

from pipeline import (Compute, Join, Match, Paginate, Pipeline, PipelineError, Project, Sort,
                      TextSearch, Unwind, contains, size)


def test_then_appends_stages_and_skips_none():
    base = Pipeline("videos")
    plan = base.then(Match({"isPublished": True}), None, Sort("views"))

    assert base.stages == ()
    assert [type(s) for s in plan.stages] == [Match, Sort]


def test_compile_keeps_stage_order():
    plan = Pipeline("videos").then(
        Match({"isPublished": True}),
        Join("users", "owner", "_id", "ownerDetails"),
        Unwind("ownerDetails"),
        Compute({"likesCount": size("likes")}),
        Project(("title", "ownerDetails.username")),
        Sort("createdAt", descending=True),
        Paginate(page=2, limit=5),
    )

    stages = plan.compile()

    assert [next(iter(s)) for s in stages] == [
        "$match", "$lookup", "$unwind", "$addFields", "$project", "$sort", "$facet",
    ]
    assert stages[1]["$lookup"] == {
        "from": "users", "localField": "owner", "foreignField": "_id", "as": "ownerDetails",
    }
    assert stages[2] == {"$unwind": "$ownerDetails"}
    assert stages[3] == {"$addFields": {"likesCount": {"$size": "$likes"}}}
    assert stages[6]["$facet"]["data"] == [{"$skip": 5}, {"$limit": 5}]
    assert stages[6]["$facet"]["metadata"] == [{"$count": "total"}]


def test_project_drops_id_unless_named():
    assert Project(("title",)).compile() == [{"$project": {"title": 1, "_id": 0}}]
    assert Project(("_id", "title")).compile() == [{"$project": {"_id": 1, "title": 1}}]


def test_sort_adds_id_tiebreak():
    assert Sort("views", descending=False).compile() == [{"$sort": {"views": 1, "_id": 1}}]
    assert Sort("_id").compile() == [{"$sort": {"_id": -1}}]


def test_unwind_can_preserve_empty():
    assert Unwind("owner", preserve_empty=True).compile() == [
        {"$unwind": {"path": "$owner", "preserveNullAndEmptyArrays": True}}
    ]


def test_contains_builds_membership_expression():
    assert contains("u1", "likes.likedBy") == {"$in": ["u1", "$likes.likedBy"]}


def test_text_search_without_index_escapes_regex():
    stages = TextSearch("c++ (intro)", ("title", "description")).compile()

    clauses = stages[0]["$match"]["$or"]
    assert clauses[0] == {"title": {"$regex": r"c\+\+\ \(intro\)", "$options": "i"}}
    assert clauses[1]["description"]["$options"] == "i"


def test_text_search_with_index_uses_atlas_search():
    stages = TextSearch("cats", ("title",), index="videos-search").compile()
    assert stages == [{"$search": {"index": "videos-search", "text": {"query": "cats", "path": ["title"]}}}]


@pytest.mark.parametrize("plan", [
    Pipeline("videos").then(Paginate(1, 10), Match({})),
    Pipeline("videos").then(Paginate(0, 10)),
    Pipeline("videos").then(Paginate(1, 0)),
    Pipeline("videos").then(Match({}), TextSearch("x", ("title",), index="idx")),
    Pipeline("videos").then(TextSearch("  ", ("title",))),
    Pipeline("videos").then(Join("users", "owner", "_id", "owner.details")),
    Pipeline("videos").then(Project(())),
    Pipeline(""),
])
def test_validate_rejects_malformed_plans(plan):
    with pytest.raises(PipelineError):
        plan.compile()


def test_execute_page_returns_items_and_total():
    db = mongomock.MongoClient()["pipeline_test"]
    db.items.insert_many([{"n": i} for i in range(7)])

    plan = Pipeline("items").then(Project(("n",)), Sort("n", descending=False), Paginate(2, 3))
    items, total = plan.execute_page(db)

    assert items == [{"n": 3}, {"n": 4}, {"n": 5}]
    assert total == 7


def test_execute_page_on_empty_collection():
    db = mongomock.MongoClient()["pipeline_test"]
    items, total = Pipeline("items").then(Paginate(1, 10)).execute_page(db)
    assert items == []
    assert total == 0


def test_execute_page_requires_paginate():
    with pytest.raises(PipelineError):
        Pipeline("items").then(Match({})).execute_page(mongomock.MongoClient()["pipeline_test"])
