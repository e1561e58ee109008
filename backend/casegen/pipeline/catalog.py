"""Entity Catalog client: Supabase tables read over PostgREST.

Suspect portraits and weapon images are pre-existing, read-only records.
Selection is randomized but never fatal for a short result: the pipeline
tolerates fewer records than entities (the reconciler leaves imagery empty).
"""

from __future__ import annotations

import logging
import math
import random
from typing import Protocol

import httpx

from casegen.config import (
    CATALOG_TIMEOUT, SCENARIO_TAG_MAP, SCENARIO_TAGS, SUPABASE_KEY,
    SUPABASE_URL, SUSPECTS_TABLE, WEAPONS_TABLE,
)
from casegen.pipeline.errors import UpstreamCallFailure
from casegen.pipeline.models import CatalogRecord

logger = logging.getLogger(__name__)

GENDER_QUERY_LIMIT = 20
SCENE_WEAPON_LIMIT = 5
ANY_WEAPON_LIMIT = 20
FALLBACK_WEAPON_LIMIT = 10
SCENE_WEAPON_CHANCE = 0.5


class EntityCatalog(Protocol):
    async def query_suspects(
        self,
        count: int,
        scene: str | None = None,
        style: str | None = None,
        preferred_genders: list[str] | None = None,
    ) -> list[CatalogRecord]: ...

    async def select_weapon(
        self,
        scene: str | None = None,
        style: str | None = None,
        prefer_specific: bool = True,
    ) -> CatalogRecord | None: ...


def scene_tag(scene: str | None) -> str | None:
    """Map a frontend scenario name to its catalog tag (unknown names pass through)."""
    if not scene:
        return None
    return SCENARIO_TAG_MAP.get(scene.lower(), scene.lower())


def extras_count(total: int) -> int:
    """How many generic "extra" records to mix into a scene-specific cast."""
    if total <= 3:
        return 0
    if total <= 5:
        return 1
    if total <= 7:
        return 2
    return math.floor(total * 0.3)


def dedupe(records: list[CatalogRecord]) -> list[CatalogRecord]:
    seen: set[str] = set()
    unique = []
    for r in records:
        if r.id not in seen:
            seen.add(r.id)
            unique.append(r)
    return unique


class SupabaseCatalog:
    """PostgREST client for the ``suspects`` and ``weapons`` tables."""

    def __init__(
        self,
        url: str = SUPABASE_URL,
        key: str = SUPABASE_KEY,
        timeout: float = CATALOG_TIMEOUT,
        rng: random.Random | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url.rstrip("/")
        self.key = key
        self.timeout = timeout
        self.rng = rng or random.Random()
        self._transport = transport

    # ── Low-level query ──

    async def _select(self, table: str, filters: dict | None = None, limit: int | None = None) -> list[CatalogRecord]:
        """``select=*`` with PostgREST filters, e.g. {"tags": "cs.{office}"}."""
        if not self.url:
            raise UpstreamCallFailure("SUPABASE_URL is not configured")
        params = {"select": "*"}
        params.update(filters or {})
        if limit:
            params["limit"] = str(limit)
        headers = {"apikey": self.key, "Authorization": f"Bearer {self.key}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(f"{self.url}/rest/v1/{table}", params=params, headers=headers)
                resp.raise_for_status()
                rows = resp.json()
        except httpx.HTTPError as e:
            raise UpstreamCallFailure(f"Catalog query on '{table}' failed: {e}") from e
        except ValueError as e:
            raise UpstreamCallFailure(f"Catalog returned a non-JSON body for '{table}': {e}") from e

        if not isinstance(rows, list):
            raise UpstreamCallFailure(f"Catalog returned {type(rows).__name__} for '{table}', expected a list")
        return [CatalogRecord.from_row(row) for row in rows if isinstance(row, dict)]

    def _shuffled(self, records: list[CatalogRecord]) -> list[CatalogRecord]:
        records = list(records)
        self.rng.shuffle(records)
        return records

    @staticmethod
    def _style_filter(style: str | None) -> dict:
        return {"style": f"eq.{style}"} if style else {}

    # ═══════════════════════════════════════════════════
    # Suspects
    # ═══════════════════════════════════════════════════

    async def query_suspects(
        self,
        count: int,
        scene: str | None = None,
        style: str | None = None,
        preferred_genders: list[str] | None = None,
    ) -> list[CatalogRecord]:
        """Pick up to *count* suspect records for a scene.

        Modes: gender preferences (one record per position), a specific
        scene (scene records mixed with extras), or random (every scene tag
        plus extra/random).  Short results are filled from an unfiltered
        query.  Duplicates are removed by id.
        """
        tag = scene_tag(scene)
        logger.info(
            f"[catalog] Getting {count} suspects for scene '{tag or 'random'}' "
            f"(style={style or 'any'}, genders={preferred_genders or '-'})"
        )

        if preferred_genders:
            result = await self._suspects_by_gender(count, tag, style, preferred_genders)
        elif tag and tag != "random":
            result = await self._suspects_for_scene(count, tag, style)
        else:
            result = await self._suspects_random(count, style)

        if len(result) < count:
            logger.warning(f"[catalog] Only got {len(result)}/{count} suspects, filling from unfiltered query")
            fill = await self._select(SUSPECTS_TABLE, self._style_filter(style), limit=(count - len(result)) * 3)
            used = {r.id for r in result}
            result += [r for r in self._shuffled(fill) if r.id not in used][: count - len(result)]

        unique = dedupe(result)
        if len(unique) < len(result):
            logger.warning(f"[catalog] Removed {len(result) - len(unique)} duplicate suspects")
        logger.info(f"[catalog] Returning {len(unique)} suspects")
        return unique[:count]

    async def _suspects_for_scene(self, count: int, tag: str, style: str | None) -> list[CatalogRecord]:
        n_extras = extras_count(count)
        n_scene = count - n_extras
        logger.info(f"[catalog] Distribution: {n_scene} from scene, {n_extras} extras")

        scene_rows = await self._select(
            SUSPECTS_TABLE, {"tags": f"cs.{{{tag}}}", **self._style_filter(style)}, limit=n_scene * 3,
        )
        result = self._shuffled(scene_rows)[:n_scene]

        if n_extras > 0:
            try:
                extra_rows = await self._select(
                    SUSPECTS_TABLE, {"tags": "cs.{extra}", **self._style_filter(style)}, limit=n_extras * 3,
                )
            except UpstreamCallFailure as e:
                logger.warning(f"[catalog] Error fetching extras, continuing without them: {e}")
                extra_rows = []
            used = {r.id for r in result}
            result += [r for r in self._shuffled(extra_rows) if r.id not in used][:n_extras]
        return result

    async def _suspects_random(self, count: int, style: str | None) -> list[CatalogRecord]:
        per_tag = math.ceil((count * 3) / len(SCENARIO_TAGS))
        pool: list[CatalogRecord] = []
        for tag in SCENARIO_TAGS:
            try:
                pool += await self._select(
                    SUSPECTS_TABLE, {"tags": f"cs.{{{tag}}}", **self._style_filter(style)}, limit=per_tag,
                )
            except UpstreamCallFailure as e:
                logger.warning(f"[catalog] Error fetching suspects with tag '{tag}': {e}")

        pool += await self._select(
            SUSPECTS_TABLE,
            {"or": "(tags.cs.{random},tags.cs.{extra})", **self._style_filter(style)},
            limit=max(per_tag * 2, count * 2),
        )
        pool = dedupe(pool)
        logger.info(f"[catalog] Random mode pool: {len(pool)} suspects across {len(SCENARIO_TAGS)} scenes")
        return self._shuffled(pool)[:count]

    async def _suspects_by_gender(
        self, count: int, tag: str | None, style: str | None, genders: list[str],
    ) -> list[CatalogRecord]:
        result: list[CatalogRecord] = []
        used: set[str] = set()

        for position, gender in enumerate(genders[:count], start=1):
            gender = gender.lower()
            filters = {"gender": f"eq.{gender}", **self._style_filter(style)}
            if tag and tag != "random":
                filters["tags"] = f"cs.{{{tag}}}"
            else:
                filters["or"] = "(" + ",".join(f"tags.cs.{{{t}}}" for t in SCENARIO_TAGS) + ")"

            available = [r for r in await self._select(SUSPECTS_TABLE, filters, GENDER_QUERY_LIMIT) if r.id not in used]
            if not available:
                logger.warning(f"[catalog] No '{gender}' suspect for position {position} in scene, dropping scene filter")
                filters = {"gender": f"eq.{gender}", **self._style_filter(style)}
                available = [r for r in await self._select(SUSPECTS_TABLE, filters, GENDER_QUERY_LIMIT) if r.id not in used]
            if not available:
                logger.warning(f"[catalog] No '{gender}' suspect at all for position {position}, accepting any gender")
                filters = self._style_filter(style)
                available = [r for r in await self._select(SUSPECTS_TABLE, filters, GENDER_QUERY_LIMIT) if r.id not in used]
            if not available:
                logger.warning(f"[catalog] Catalog has no unused suspect for position {position}")
                break

            picked = self._shuffled(available)[0]
            result.append(picked)
            used.add(picked.id)

        if len(result) < count:
            filters = self._style_filter(style)
            if tag and tag != "random":
                filters["tags"] = f"cs.{{{tag}}}"
            rest = await self._select(SUSPECTS_TABLE, filters, limit=(count - len(result)) * 3)
            result += [r for r in self._shuffled(rest) if r.id not in used][: count - len(result)]
        return result

    # ═══════════════════════════════════════════════════
    # Weapons
    # ═══════════════════════════════════════════════════

    async def select_weapon(
        self,
        scene: str | None = None,
        style: str | None = None,
        prefer_specific: bool = True,
    ) -> CatalogRecord | None:
        """Pick one weapon: 50% scene-specific, else any (style-filtered), else any."""
        tag = scene_tag(scene)

        if tag and tag != "random" and prefer_specific and self.rng.random() < SCENE_WEAPON_CHANCE:
            try:
                rows = await self._select(
                    WEAPONS_TABLE, {"tags": f"cs.{{{tag}}}", **self._style_filter(style)}, SCENE_WEAPON_LIMIT,
                )
            except UpstreamCallFailure as e:
                logger.warning(f"[catalog] Error fetching scene-specific weapons: {e}")
                rows = []
            if rows:
                return self.rng.choice(rows)

        rows = await self._select(WEAPONS_TABLE, self._style_filter(style), ANY_WEAPON_LIMIT)
        if rows:
            return self.rng.choice(rows)

        logger.warning("[catalog] No weapon found, trying fallback without style filter")
        rows = await self._select(WEAPONS_TABLE, None, FALLBACK_WEAPON_LIMIT)
        if rows:
            return self.rng.choice(rows)

        logger.error("[catalog] No weapon could be selected")
        return None
