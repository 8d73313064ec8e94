"""
Aggregation query plans.

A read model is described as an immutable Pipeline: the collection it starts
from plus an ordered tuple of typed stages. The plan is validated as a whole
and compiled to MongoDB aggregation stages only when it runs, so builders
can compose plans without touching the database.

    plan = (Pipeline("videos")
            .then(Match({"isPublished": True}))
            .then(Join("users", "owner", "_id", "ownerDetails"))
            .then(Unwind("ownerDetails"))
            .then(Sort("createdAt", descending=True))
            .then(Paginate(page=2, limit=10)))
    items, total = plan.execute_page(db)

Nested joins are written flat (join, unwind, then join on the dotted key of
the unwound document) so the same plan runs on any engine that implements
the basic $lookup form.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pymongo.database import Database


class PipelineError(ValueError):
    """Raised when a plan is malformed."""


def size(path: str) -> dict:
    return {"$size": _ref(path)}


def contains(value: Any, path: str) -> dict:
    """True when value is among the values found at path (an array field)."""
    return {"$in": [value, _ref(path)]}


def _ref(path: str) -> str:
    return path if path.startswith("$") else f"${path}"


@dataclass(frozen=True)
class Match:
    filter: Dict[str, Any]

    def compile(self) -> List[dict]:
        return [{"$match": self.filter}]


@dataclass(frozen=True)
class TextSearch:
    """Free-text search; Atlas Search when an index is named, regex otherwise."""
    query: str
    paths: Tuple[str, ...]
    index: Optional[str] = None

    def compile(self) -> List[dict]:
        if self.index:
            return [{
                "$search": {
                    "index": self.index,
                    "text": {"query": self.query, "path": list(self.paths)},
                }
            }]
        pattern = re.escape(self.query.strip())
        return [{"$match": {"$or": [
            {path: {"$regex": pattern, "$options": "i"}} for path in self.paths
        ]}}]


@dataclass(frozen=True)
class Join:
    source: str
    local_field: str
    foreign_field: str
    as_: str

    def compile(self) -> List[dict]:
        return [{
            "$lookup": {
                "from": self.source,
                "localField": self.local_field,
                "foreignField": self.foreign_field,
                "as": self.as_,
            }
        }]


@dataclass(frozen=True)
class Unwind:
    path: str
    preserve_empty: bool = False

    def compile(self) -> List[dict]:
        if self.preserve_empty:
            return [{"$unwind": {"path": _ref(self.path), "preserveNullAndEmptyArrays": True}}]
        return [{"$unwind": _ref(self.path)}]


@dataclass(frozen=True)
class Compute:
    fields: Dict[str, Any]

    def compile(self) -> List[dict]:
        return [{"$addFields": self.fields}]


@dataclass(frozen=True)
class Project:
    """Allow-list projection. Anything not named here is dropped."""
    include: Tuple[str, ...]
    computed: Dict[str, Any] = field(default_factory=dict)

    def compile(self) -> List[dict]:
        spec: Dict[str, Any] = {path: 1 for path in self.include}
        spec.update(self.computed)
        if "_id" not in spec:
            spec["_id"] = 0
        return [{"$project": spec}]


@dataclass(frozen=True)
class Sort:
    path: str
    descending: bool = True

    def compile(self) -> List[dict]:
        direction = -1 if self.descending else 1
        spec = {self.path: direction}
        if self.path != "_id":
            # stable order between pages
            spec["_id"] = direction
        return [{"$sort": spec}]


@dataclass(frozen=True)
class Paginate:
    """Page of results plus the total count, computed in one $facet."""
    page: int = 1
    limit: int = 10

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def compile(self) -> List[dict]:
        return [{
            "$facet": {
                "metadata": [{"$count": "total"}],
                "data": [{"$skip": self.skip}, {"$limit": self.limit}],
            }
        }]


Stage = Union[Match, TextSearch, Join, Unwind, Compute, Project, Sort, Paginate]


@dataclass(frozen=True)
class Pipeline:
    collection: str
    stages: Tuple[Stage, ...] = ()

    def then(self, *stages: Optional[Stage]) -> "Pipeline":
        """Return a new plan with the given stages appended; None entries are skipped."""
        return Pipeline(self.collection, self.stages + tuple(s for s in stages if s is not None))

    @property
    def paginate(self) -> Optional[Paginate]:
        last = self.stages[-1] if self.stages else None
        return last if isinstance(last, Paginate) else None

    def validate(self) -> "Pipeline":
        if not self.collection:
            raise PipelineError("pipeline needs a source collection")
        for position, stage in enumerate(self.stages):
            if isinstance(stage, Paginate):
                if position != len(self.stages) - 1:
                    raise PipelineError("Paginate must be the last stage")
                if stage.page < 1 or stage.limit < 1:
                    raise PipelineError("page and limit must be positive")
            elif isinstance(stage, TextSearch):
                if not stage.query.strip():
                    raise PipelineError("TextSearch needs a query")
                if stage.index and position != 0:
                    raise PipelineError("Atlas $search must be the first stage")
            elif isinstance(stage, Join):
                if "." in stage.as_:
                    raise PipelineError(f"Join target must be a top-level field: {stage.as_}")
            elif isinstance(stage, Project):
                if not stage.include and not stage.computed:
                    raise PipelineError("Project needs at least one field")
        return self

    def compile(self) -> List[dict]:
        self.validate()
        compiled: List[dict] = []
        for stage in self.stages:
            compiled.extend(stage.compile())
        return compiled

    def execute(self, db: Database) -> List[dict]:
        return list(db[self.collection].aggregate(self.compile()))

    def execute_one(self, db: Database) -> Optional[dict]:
        results = self.execute(db)
        return results[0] if results else None

    def execute_page(self, db: Database) -> Tuple[List[dict], int]:
        if self.paginate is None:
            raise PipelineError("execute_page needs a plan ending in Paginate")
        facet = self.execute_one(db) or {}
        metadata: Sequence[dict] = facet.get("metadata") or []
        total = metadata[0].get("total", 0) if metadata else 0
        return list(facet.get("data") or []), total
