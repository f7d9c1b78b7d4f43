"""MatchStore over a PostgREST HTTP API."""

from __future__ import annotations

from datetime import UTC, datetime
from http import HTTPStatus
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from darts.logic.types import LegRecord, MatchRecord, Player, ThrowRecord, TurnRecord, TurnWithThrows
from darts.store.exceptions import DuplicateRowError, RecordNotFoundError, StoreError
from darts.store.repository import MatchStore

logger = structlog.get_logger()

UNIQUE_VIOLATION_CODE = "23505"


def is_unique_violation(status_code: int, body: Any) -> bool:
    if status_code == HTTPStatus.CONFLICT:
        return True
    if isinstance(body, dict):
        if body.get("code") == UNIQUE_VIOLATION_CODE:
            return True
        return "duplicate key" in str(body.get("message", ""))
    return False


def _eq(value: str) -> str:
    return f"eq.{value}"


def _match_from_row(row: dict[str, Any]) -> MatchRecord:
    data = dict(row)
    if "finish_rule" not in data and "finish" in data:
        data["finish_rule"] = data.pop("finish")
    data["start_score"] = int(data["start_score"])
    return MatchRecord.model_validate(data)


def _turn_from_row(row: dict[str, Any]) -> TurnWithThrows:
    data = dict(row)
    throws = sorted((ThrowRecord.model_validate(t) for t in data.pop("throws", None) or []), key=lambda t: t.dart_index)
    data["total_scored"] = data.get("total_scored") or 0
    return TurnWithThrows.model_validate({**data, "throws": tuple(throws)})


class RestMatchStore(MatchStore):
    """Reads and writes rows through PostgREST.

    Unique violations (HTTP 409 or Postgres code 23505) become
    DuplicateRowError; transport failures and other error responses become
    StoreError.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        if client is None:
            if base_url is None:
                raise ValueError("base_url is required when no client is given")
            headers = {"Accept": "application/json"}
            if api_key:
                headers["apikey"] = api_key
                headers["Authorization"] = f"Bearer {api_key}"
            client = httpx.AsyncClient(base_url=f"{base_url.rstrip('/')}/rest/v1", headers=headers, timeout=timeout)
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        returning: bool = False,
    ) -> list[dict[str, Any]]:
        headers = {"Prefer": "return=representation"} if returning else None
        try:
            response = await self._client.request(method, path, params=params, json=json, headers=headers)
        except httpx.RequestError as e:
            logger.warning("store request failed", method=method, path=path, error=str(e))
            raise StoreError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = response.text
            if is_unique_violation(response.status_code, body):
                raise DuplicateRowError(f"{method} {path}: {body}")
            raise StoreError(f"{method} {path} returned {response.status_code}: {body}")

        if not response.content:
            return []
        data = response.json()
        return data if isinstance(data, list) else [data]

    async def _one(self, method: str, path: str, kind: str, row_id: str, **kwargs: Any) -> dict[str, Any]:
        rows = await self._request(method, path, returning=True, **kwargs)
        if not rows:
            raise RecordNotFoundError(f"{kind} {row_id} not found")
        return rows[0]

    @staticmethod
    def _parse(parse: Any, row: dict[str, Any]) -> Any:
        try:
            return parse(row)
        except (ValidationError, KeyError, ValueError) as e:
            raise StoreError(f"malformed row: {e}") from e

    # -- reads --------------------------------------------------------------

    async def get_match(self, match_id: str) -> MatchRecord | None:
        rows = await self._request("GET", "/matches", params={"id": _eq(match_id), "select": "*"})
        return self._parse(_match_from_row, rows[0]) if rows else None

    async def list_players(self, match_id: str) -> list[Player]:
        rows = await self._request(
            "GET",
            "/match_players",
            params={
                "match_id": _eq(match_id),
                "select": "play_order,players(id,display_name)",
                "order": "play_order.asc",
            },
        )
        return [self._parse(Player.model_validate, row["players"]) for row in rows if row.get("players")]

    async def list_legs(self, match_id: str) -> list[LegRecord]:
        rows = await self._request(
            "GET",
            "/legs",
            params={"match_id": _eq(match_id), "select": "*", "order": "leg_number.asc"},
        )
        return [self._parse(LegRecord.model_validate, row) for row in rows]

    async def list_turns(self, leg_id: str) -> list[TurnWithThrows]:
        rows = await self._request(
            "GET",
            "/turns",
            params={"leg_id": _eq(leg_id), "select": "*,throws(*)", "order": "turn_number.asc"},
        )
        return [self._parse(_turn_from_row, row) for row in rows]

    async def get_turn(self, turn_id: str) -> TurnWithThrows | None:
        rows = await self._request("GET", "/turns", params={"id": _eq(turn_id), "select": "*,throws(*)"})
        return self._parse(_turn_from_row, rows[0]) if rows else None

    async def get_throw(self, throw_id: str) -> ThrowRecord | None:
        rows = await self._request("GET", "/throws", params={"id": _eq(throw_id), "select": "*"})
        return self._parse(ThrowRecord.model_validate, rows[0]) if rows else None

    # -- writes -------------------------------------------------------------

    async def insert_turn(
        self,
        *,
        match_id: str,
        leg_id: str,
        player_id: str,
        turn_number: int,
        tiebreak_round: int | None = None,
    ) -> TurnRecord:
        row = await self._one(
            "POST",
            "/turns",
            "turn",
            leg_id,
            json={
                "match_id": match_id,
                "leg_id": leg_id,
                "player_id": player_id,
                "turn_number": turn_number,
                "total_scored": 0,
                "busted": False,
                "tiebreak_round": tiebreak_round,
            },
        )
        return self._parse(lambda r: _turn_from_row(r).as_turn(), row)

    async def update_turn(self, turn_id: str, *, total_scored: int, busted: bool) -> TurnRecord:
        row = await self._one(
            "PATCH",
            "/turns",
            "turn",
            turn_id,
            params={"id": _eq(turn_id)},
            json={"total_scored": total_scored, "busted": busted},
        )
        return self._parse(lambda r: _turn_from_row(r).as_turn(), row)

    async def delete_turn(self, turn_id: str) -> None:
        await self._request("DELETE", "/turns", params={"id": _eq(turn_id)})

    async def insert_throw(
        self,
        *,
        match_id: str,
        turn_id: str,
        dart_index: int,
        segment: str,
        scored: int,
    ) -> ThrowRecord:
        row = await self._one(
            "POST",
            "/throws",
            "throw",
            turn_id,
            json={
                "match_id": match_id,
                "turn_id": turn_id,
                "dart_index": dart_index,
                "segment": segment,
                "scored": scored,
            },
        )
        return self._parse(ThrowRecord.model_validate, row)

    async def update_throw(self, throw_id: str, *, segment: str, scored: int) -> ThrowRecord:
        row = await self._one(
            "PATCH",
            "/throws",
            "throw",
            throw_id,
            params={"id": _eq(throw_id)},
            json={"segment": segment, "scored": scored},
        )
        return self._parse(ThrowRecord.model_validate, row)

    async def delete_throw(self, throw_id: str) -> None:
        await self._request("DELETE", "/throws", params={"id": _eq(throw_id)})

    async def insert_leg(self, *, match_id: str, leg_number: int, starting_player_id: str) -> LegRecord:
        row = await self._one(
            "POST",
            "/legs",
            "leg",
            match_id,
            json={"match_id": match_id, "leg_number": leg_number, "starting_player_id": starting_player_id},
        )
        return self._parse(LegRecord.model_validate, row)

    async def set_leg_winner(self, leg_id: str, winner_player_id: str | None) -> LegRecord:
        row = await self._one(
            "PATCH",
            "/legs",
            "leg",
            leg_id,
            params={"id": _eq(leg_id)},
            json={"winner_player_id": winner_player_id},
        )
        return self._parse(LegRecord.model_validate, row)

    async def set_match_winner(self, match_id: str, winner_player_id: str | None) -> MatchRecord:
        completed_at = datetime.now(tz=UTC).isoformat() if winner_player_id is not None else None
        row = await self._one(
            "PATCH",
            "/matches",
            "match",
            match_id,
            params={"id": _eq(match_id)},
            json={"winner_player_id": winner_player_id, "completed_at": completed_at},
        )
        return self._parse(_match_from_row, row)
