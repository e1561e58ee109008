"""Shared fixtures for the case generation test suite."""

import json
import random

import pytest

from casegen.pipeline.case_store import FileCaseStore
from casegen.pipeline.errors import UpstreamCallFailure
from casegen.pipeline.models import CatalogRecord, GenerationRequest


# ═══════════════════════════════════════════════════
# Fake collaborators
# ═══════════════════════════════════════════════════

class ScriptedGenerator:
    """TextGenerator that replays canned responses in call order.

    A response may be a string, a dict (dumped to JSON) or an exception
    instance (raised).  Every call is recorded for assertions.
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    async def generate(self, prompt, system_prompt="", max_tokens=None, task_label="", schema=None, on_progress=None):
        self.calls.append({
            "prompt": prompt,
            "system_prompt": system_prompt,
            "max_tokens": max_tokens,
            "task_label": task_label,
            "schema": schema,
        })
        if not self.responses:
            raise UpstreamCallFailure(f"No scripted response left for '{task_label}'")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json.dumps(response, ensure_ascii=False)
        return response


class FakeCatalog:
    def __init__(self, records, weapon=None):
        self.records = list(records)
        self.weapon = weapon
        self.suspect_queries = []
        self.weapon_queries = []

    async def query_suspects(self, count, scene=None, style=None, preferred_genders=None):
        self.suspect_queries.append({
            "count": count, "scene": scene, "style": style, "preferred_genders": preferred_genders,
        })
        return self.records[:count]

    async def select_weapon(self, scene=None, style=None, prefer_specific=True):
        self.weapon_queries.append({"scene": scene, "style": style})
        return self.weapon


# ═══════════════════════════════════════════════════
# Canned stage responses
# ═══════════════════════════════════════════════════

def make_core(with_weapon=True, discovered_by="The butler at 11:00pm"):
    core = {
        "caseTitle": "Death at Blackwood Manor",
        "caseDescription": "The host is found dead during the annual gala.",
        "victim": {
            "name": "Edmund Blackwood",
            "age": 62,
            "role": "Industrialist",
            "description": "Proud and secretive.",
            "causeOfDeath": "Blunt force trauma",
            "timeOfDeath": "Between 9:45pm and 10:15pm",
            "discoveredBy": discovered_by,
            "location": "The library",
        },
    }
    if with_weapon:
        core["weapon"] = {
            "id": "weapon-1",
            "name": "Brass candlestick",
            "description": "Heavy, dented at the base.",
            "location": "Under the desk",
        }
    return core


def make_entity(entity_id, name, role, is_culprit=False, age=40, gender="female"):
    return {
        "id": entity_id,
        "name": name,
        "age": age,
        "role": role,
        "description": f"{name} keeps to themselves.",
        "motive": f"{name} resented the victim.",
        "alibi": "Was in the garden.",
        "isCulprit": is_culprit,
        "traits": ["calm", "observant"],
        "gender": gender,
    }


def make_batch(ids, culprit_id, array_key="suspects", roles=None):
    roles = roles or {}
    return {
        array_key: [
            make_entity(eid, f"Person {eid.split('-')[-1]}", roles.get(eid, "Chef"), eid == culprit_id)
            for eid in ids
        ]
    }


def make_hidden(culprit_id):
    return {
        "hiddenContext": {
            "culpritId": culprit_id,
            "culpritReason": "Debts the victim threatened to expose.",
            "keyClues": ["Mud on the shoes", "Torn invitation", "Missing key"],
            "culpritTraits": ["nervous"],
        }
    }


# ═══════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════

@pytest.fixture
def catalog_records():
    """Three catalog portraits with distinct occupations."""
    return [
        CatalogRecord(id="s-1", image_url="https://img/s1.png", gender="female", approx_age=40,
                      occupation={"en": "chef", "es": "cocinera"}, tags=["mansion"]),
        CatalogRecord(id="s-2", image_url="https://img/s2.png", gender="male", approx_age=55,
                      occupation={"en": "butler", "es": "mayordomo"}, tags=["mansion"]),
        CatalogRecord(id="s-3", image_url="https://img/s3.png", gender="female", approx_age=30,
                      occupation={"en": "gardener", "es": "jardinera"}, tags=["extra"]),
    ]


@pytest.fixture
def weapon_record():
    return CatalogRecord(id="w-1", image_url="https://img/candlestick.png",
                         name={"en": "Candlestick", "es": "Candelabro"}, tags=["mansion"])


@pytest.fixture
def murder_request():
    return GenerationRequest(
        case_type="asesinato",
        entity_count=3,
        clue_count=5,
        difficulty="normal",
        scenario="mansion",
        language="en",
    )


@pytest.fixture
def case_store(tmp_path):
    return FileCaseStore(tmp_path / "cases")


@pytest.fixture
def rng():
    return random.Random(1234)
