"""Composable aggregation stages.

A ``Pipeline`` is an ordered list of stages. Each stage compiles to the
equivalent MongoDB aggregation stage (``to_mongo``) for the motor backend and
can also evaluate itself over plain dicts (``apply``) for the in-memory
backend. Both paths share the same semantics:

- a ``Lookup`` that matches nothing yields an empty list, never an error;
- ``First`` over an empty list leaves the target field absent;
- ``Contains`` with no value to look for is always false.
"""
import copy
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

Collections = Mapping[str, List[dict]]


def _get(doc: dict, path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def matches(doc: dict, query: dict) -> bool:
    """Evaluate a find-style filter (equality, ``$in``, ``$or``) against a doc"""
    for key, expected in query.items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in expected):
                return False
            continue
        actual = _get(doc, key)
        if isinstance(expected, dict) and "$in" in expected:
            candidates = expected["$in"]
            if isinstance(actual, list):
                if not any(item in candidates for item in actual):
                    return False
            elif actual not in candidates:
                return False
        elif isinstance(actual, list) and not isinstance(expected, list):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


class Stage:
    def to_mongo(self) -> dict:
        raise NotImplementedError

    def apply(self, docs: List[dict], collections: Collections) -> List[dict]:
        raise NotImplementedError


class Match(Stage):
    """Filter stage"""

    def __init__(self, query: dict):
        self.query = query

    def to_mongo(self) -> dict:
        return {"$match": self.query}

    def apply(self, docs, collections):
        return [d for d in docs if matches(d, self.query)]


class Lookup(Stage):
    """Left join ``local_field`` against ``foreign_field`` of another collection.

    When ``local_field`` holds a list, any foreign doc whose key is in the list
    joins. Joined docs come back in the foreign collection's order and run
    through ``pipeline`` (if given) before being stored under ``as_``.
    """

    def __init__(self, from_: str, local_field: str, foreign_field: str, as_: str, pipeline: Optional[Sequence[Stage]] = None):
        self.from_ = from_
        self.local_field = local_field
        self.foreign_field = foreign_field
        self.as_ = as_
        self.pipeline = Pipeline(pipeline or [])

    def to_mongo(self) -> dict:
        spec = {
            "from": self.from_,
            "localField": self.local_field,
            "foreignField": self.foreign_field,
            "as": self.as_,
        }
        if self.pipeline.stages:
            spec["pipeline"] = self.pipeline.to_mongo()
        return {"$lookup": spec}

    def apply(self, docs, collections):
        foreign = collections.get(self.from_, [])
        out = []
        for doc in docs:
            local = _get(doc, self.local_field)
            keys = local if isinstance(local, list) else [local]
            joined = [copy.deepcopy(f) for f in foreign if _get(f, self.foreign_field) in keys]
            doc = dict(doc)
            doc[self.as_] = self.pipeline.apply(joined, collections)
            out.append(doc)
        return out


class Count(Stage):
    """Derive ``field`` as the size of the list in ``source``"""

    def __init__(self, field: str, source: str):
        self.field = field
        self.source = source

    def to_mongo(self) -> dict:
        return {"$addFields": {self.field: {"$size": f"${self.source}"}}}

    def apply(self, docs, collections):
        return [{**d, self.field: len(_get(d, self.source) or [])} for d in docs]


class Contains(Stage):
    """Derive ``field`` as whether ``value`` appears at ``path`` inside ``source``"""

    def __init__(self, field: str, source: str, path: str, value: Any = None):
        self.field = field
        self.source = source
        self.path = path
        self.value = value

    def to_mongo(self) -> dict:
        if self.value is None:
            return {"$addFields": {self.field: {"$literal": False}}}
        return {
            "$addFields": {
                self.field: {
                    "$cond": {
                        "if": {"$in": [self.value, f"${self.source}.{self.path}"]},
                        "then": True,
                        "else": False,
                    }
                }
            }
        }

    def apply(self, docs, collections):
        out = []
        for d in docs:
            found = self.value is not None and any(
                _get(item, self.path) == self.value for item in (_get(d, self.source) or [])
            )
            out.append({**d, self.field: found})
        return out


class First(Stage):
    """Collapse the list in ``source`` to its first element, stored in ``field``"""

    def __init__(self, field: str, source: Optional[str] = None):
        self.field = field
        self.source = source or field

    def to_mongo(self) -> dict:
        return {"$addFields": {self.field: {"$first": f"${self.source}"}}}

    def apply(self, docs, collections):
        out = []
        for d in docs:
            items = _get(d, self.source) or []
            d = dict(d)
            if items:
                d[self.field] = items[0]
            else:
                d.pop(self.field, None)
            out.append(d)
        return out


class ArrangeBy(Stage):
    """Reorder the joined list ``field`` to follow the reference list ``order_field``.

    References with no joined doc are dropped; a reference listed twice yields
    the doc twice.
    """

    def __init__(self, field: str, order_field: str, key: str = "_id"):
        self.field = field
        self.order_field = order_field
        self.key = key

    def to_mongo(self) -> dict:
        pick = {
            "$first": {
                "$filter": {
                    "input": f"${self.field}",
                    "as": "item",
                    "cond": {"$eq": [f"$$item.{self.key}", "$$ref"]},
                }
            }
        }
        return {
            "$addFields": {
                self.field: {
                    "$filter": {
                        "input": {"$map": {"input": {"$ifNull": [f"${self.order_field}", []]}, "as": "ref", "in": pick}},
                        "as": "item",
                        "cond": {"$ne": ["$$item", None]},
                    }
                }
            }
        }

    def apply(self, docs, collections):
        out = []
        for d in docs:
            by_key = {}
            for item in _get(d, self.field) or []:
                by_key.setdefault(_get(item, self.key), item)
            refs = _get(d, self.order_field) or []
            d = dict(d)
            d[self.field] = [copy.deepcopy(by_key[r]) for r in refs if r in by_key]
            out.append(d)
        return out


class Project(Stage):
    """Keep only the whitelisted fields (and ``_id`` unless ``include_id`` is off)"""

    def __init__(self, fields: Iterable[str], include_id: bool = True):
        self.fields = list(fields)
        self.include_id = include_id

    def to_mongo(self) -> dict:
        spec: Dict[str, int] = {f: 1 for f in self.fields}
        if not self.include_id:
            spec["_id"] = 0
        return {"$project": spec}

    def apply(self, docs, collections):
        keep = (["_id"] if self.include_id else []) + self.fields
        return [{k: d[k] for k in keep if k in d} for d in docs]


class Pipeline:
    def __init__(self, stages: Sequence[Stage]):
        self.stages = list(stages)

    def to_mongo(self) -> List[dict]:
        return [stage.to_mongo() for stage in self.stages]

    def apply(self, docs: List[dict], collections: Collections) -> List[dict]:
        for stage in self.stages:
            docs = stage.apply(docs, collections)
        return docs
