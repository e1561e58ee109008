"""JSON Schema definitions for each generation stage.

Sent to the generation service as the structured-output hint (Ollama's
``format: { JSON Schema }``).  The service is not trusted to honour them:
every stage result is still repaired and validated after parsing.
"""

# ═══════════════════════════════════════════════════
# STAGE 1: CASE CORE
# ═══════════════════════════════════════════════════

VICTIM_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "age": {"type": "integer"},
        "role": {"type": "string"},
        "description": {"type": "string"},
        "causeOfDeath": {"type": "string"},
        "timeOfDeath": {"type": "string"},
        "timeOfDiscovery": {"type": "string"},
        "discoveredBy": {"type": "string"},
        "location": {"type": "string"},
        "bodyPosition": {"type": "string"},
        "visibleInjuries": {"type": "string"},
        "objectsAtScene": {"type": "string"},
        "signsOfStruggle": {"type": "string"},
    },
    "required": ["name", "age", "role", "description"],
}

WEAPON_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "name": {"type": "string"},
        "description": {"type": "string"},
        "location": {"type": "string"},
        "importance": {"type": "string", "enum": ["high"]},
    },
    "required": ["name", "description"],
}


def core_schema(with_weapon: bool) -> dict:
    """Schema for the case core; the weapon is required only for murder cases."""
    properties = {
        "caseTitle": {"type": "string"},
        "caseDescription": {"type": "string"},
        "victim": VICTIM_SCHEMA,
    }
    required = ["caseTitle", "caseDescription", "victim"]
    if with_weapon:
        properties["weapon"] = WEAPON_SCHEMA
        required.append("weapon")
    return {"type": "object", "properties": properties, "required": required}


# ═══════════════════════════════════════════════════
# STAGE 2: ENTITY BATCHES
# ═══════════════════════════════════════════════════

ENTITY_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "name": {"type": "string"},
        "age": {"type": "integer"},
        "role": {"type": "string"},
        "description": {"type": "string"},
        "motive": {"type": "string"},
        "alibi": {"type": "string"},
        "isCulprit": {"type": "boolean"},
        "traits": {"type": "array", "items": {"type": "string"}, "maxItems": 6},
        "gender": {"type": "string"},
        "timeGap": {"type": "string"},
        "lastSeen": {"type": "string"},
        "relationshipWithVictim": {"type": "string"},
        "observations": {"type": "array", "items": {"type": "string"}, "maxItems": 4},
    },
    "required": ["id", "name", "age", "role", "description", "motive", "alibi", "isCulprit"],
}


def batch_schema(array_key: str, batch_size: int) -> dict:
    """Schema for one entity batch of exactly *batch_size* items."""
    return {
        "type": "object",
        "properties": {
            array_key: {
                "type": "array",
                "items": ENTITY_SCHEMA,
                "minItems": batch_size,
                "maxItems": batch_size,
            },
        },
        "required": [array_key],
    }


# ═══════════════════════════════════════════════════
# STAGE 3: HIDDEN CONTEXT
# ═══════════════════════════════════════════════════

HIDDEN_CONTEXT_SCHEMA = {
    "type": "object",
    "properties": {
        "hiddenContext": {
            "type": "object",
            "properties": {
                "culpritId": {"type": "string"},
                "culpritReason": {"type": "string"},
                "keyClues": {"type": "array", "items": {"type": "string"}, "maxItems": 6},
                "culpritTraits": {"type": "array", "items": {"type": "string"}, "maxItems": 6},
            },
            "required": ["culpritId", "culpritReason", "keyClues", "culpritTraits"],
        },
    },
    "required": ["hiddenContext"],
}
