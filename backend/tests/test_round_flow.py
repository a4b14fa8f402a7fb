import asyncio

import pytest

from contest.runtime_errors import ProtocolError
from contest.runtime_round_flow import close_round, open_round


def ids_by_name(room):
    return {player.name: player.player_id for player in room.players}


@pytest.mark.asyncio
async def test_joins_send_player_info_and_roster(game_runtime, connect):
    first, second = connect(), connect()
    assert await game_runtime.join(first, "ROOM1", "Ann")
    assert await game_runtime.join(second, "ROOM1", "Bob")

    info = first.websocket.of_type("playerInfo")
    assert info == [{"type": "playerInfo", "playerId": first.player_id, "playerNumber": 1}]
    assert second.websocket.of_type("playerInfo")[0]["playerNumber"] == 2

    joined = first.websocket.of_type("playerJoined")[-1]
    assert joined["count"] == 2
    assert joined["players"] == ["Ann", "Bob"]
    assert joined["playerNumbers"] == [{"name": "Ann", "number": 1}, {"name": "Bob", "number": 2}]
    assert second.websocket.of_type("playerJoined")[-1] == joined


@pytest.mark.asyncio
async def test_full_room_starts_after_countdown(game_runtime, connect, wait_for):
    contexts = [connect() for _ in range(4)]
    for name, ctx in zip("ABCD", contexts):
        await game_runtime.join(ctx, "ROOM1", name)

    room = game_runtime.directory.get("ROOM1")
    assert room.state == "waiting"
    await wait_for(lambda: room.current_round.phase == "open")

    assert room.state == "playing"
    for ctx in contexts:
        types = ctx.websocket.types()
        assert types.index("gameStart") < types.index("roundStart")
    round_start = contexts[0].websocket.of_type("roundStart")[0]
    assert round_start["round"] == 1
    assert round_start["endsAt"] == room.current_round.ends_at


@pytest.mark.asyncio
async def test_end_to_end_round_scoring(game_runtime, full_room, wait_for):
    room, contexts = full_room
    for ctx, number in zip(contexts, [10, 20, 30, 40]):
        assert await game_runtime.submit(ctx, number)

    ws = contexts[0].websocket
    result = ws.of_type("roundResult")[0]
    players = ids_by_name(room)
    assert result["average"] == 25
    assert result["target"] == pytest.approx(20)
    assert result["winner"] == players["B"]
    assert result["numbers"] == {players[name]: n for name, n in zip("ABCD", [10, 20, 30, 40])}
    assert result["noChoicePlayers"] == []
    assert {p["name"]: p["points"] for p in result["players"]} == {"A": 1, "B": 0, "C": 1, "D": 1}

    await wait_for(lambda: len(ws.of_type("roundStart")) == 2)
    assert room.current_round.number == 2
    assert room.current_round.numbers == {}


@pytest.mark.asyncio
async def test_timeout_scores_missing_players(game_runtime, full_room, wait_for):
    room, contexts = full_room
    await game_runtime.submit(contexts[0], 50)
    await game_runtime.submit(contexts[1], 50)

    ws = contexts[0].websocket
    await wait_for(lambda: ws.of_type("roundResult"))
    result = ws.of_type("roundResult")[0]
    assert result["noChoicePlayers"] == ["C", "D"]
    assert {p["name"]: p["points"] for p in result["players"]} == {"A": 0, "B": 1, "C": 2, "D": 2}


@pytest.mark.asyncio
@pytest.mark.parametrize("first", ["timeout", "complete"])
async def test_round_closes_exactly_once(game_runtime, full_room, first):
    room, contexts = full_room
    round_number = room.current_round.number
    for ctx in contexts[:3]:
        await game_runtime.submit(ctx, 30)

    if first == "timeout":
        async with room.lock:
            assert await close_round(game_runtime, room, round_number, reason="timeout")
        await game_runtime.submit(contexts[3], 30)
    else:
        await game_runtime.submit(contexts[3], 30)
        async with room.lock:
            assert not await close_round(game_runtime, room, round_number, reason="timeout")

    # let any armed deadline fire
    await asyncio.sleep(room.rules.round_duration_ms / 1000 + 0.05)
    for ctx in contexts:
        assert len([m for m in ctx.websocket.of_type("roundResult") if m["round"] == round_number]) == 1


@pytest.mark.asyncio
async def test_resubmission_overwrites(game_runtime, full_room):
    room, contexts = full_room
    await game_runtime.submit(contexts[0], 90)
    await game_runtime.submit(contexts[0], 10)
    assert room.current_round.numbers[contexts[0].player_id] == 10


@pytest.mark.asyncio
async def test_invalid_numbers_are_protocol_errors(game_runtime, full_room):
    room, contexts = full_room
    for bad in ["12", 3.5, True, None, -1, 101]:
        with pytest.raises(ProtocolError):
            await game_runtime.submit(contexts[0], bad)
    assert room.current_round.numbers == {}


@pytest.mark.asyncio
async def test_submission_outside_open_round_is_ignored(game_runtime, connect):
    ctx = connect()
    await game_runtime.join(ctx, "ROOM1", "Ann")
    assert not await game_runtime.submit(ctx, 42)
    assert not await game_runtime.submit(connect(), 42)
    assert ctx.websocket.of_type("error") == []


@pytest.mark.asyncio
async def test_last_survivor_wins_and_rounds_stop(game_runtime, full_room):
    room, contexts = full_room
    for player in room.players:
        if player.name != "A":
            player.points = 9

    for ctx, number in zip(contexts, [40, 100, 100, 100]):
        await game_runtime.submit(ctx, number)

    ws = contexts[0].websocket
    assert ws.of_type("gameOver") == [{"type": "gameOver", "winner": "A"}]
    assert room.state == "finished"
    assert ws.types()[-2:] == ["roundResult", "gameOver"]

    await asyncio.sleep(room.rules.next_round_delay_ms / 1000 + 0.1)
    assert len(ws.of_type("roundStart")) == 1
    assert all(task is None or task.done() for task in room.timers.values())


@pytest.mark.asyncio
async def test_scores_never_decrease(game_runtime, full_room, wait_for):
    room, contexts = full_room
    ws = contexts[0].websocket
    previous = {player.player_id: 0 for player in room.players}
    for round_number in (1, 2, 3):
        await wait_for(lambda: room.current_round.number == round_number and room.current_round.phase == "open")
        for ctx, number in zip(contexts, [5, 25, 45, 65]):
            await game_runtime.submit(ctx, number)
        result = ws.of_type("roundResult")[-1]
        for summary in result["players"]:
            assert summary["points"] >= previous[summary["id"]]
            previous[summary["id"]] = summary["points"]


@pytest.mark.asyncio
async def test_admission_refused_while_playing(game_runtime, full_room, connect):
    room, contexts = full_room
    late = connect()
    assert not await game_runtime.join(late, "ROOM1", "Late")

    assert late.websocket.of_type("error")[0]["code"] == "ROOM_NOT_WAITING"
    assert len(room.players) == 4
    assert all(not ctx.websocket.of_type("error") for ctx in contexts)


@pytest.mark.asyncio
async def test_room_full_error_only_reaches_joiner(game_runtime, connect, rules):
    contexts = [connect() for _ in range(4)]
    for name, ctx in zip("ABCD", contexts):
        await game_runtime.join(ctx, "ROOM1", name)
    room = game_runtime.directory.get("ROOM1")
    # hold the room in waiting so the fifth join sees a full room
    game_runtime._cancel_timer(room, "gameStart")

    extra = connect()
    assert not await game_runtime.join(extra, "ROOM1", "E")
    assert extra.websocket.of_type("error")[0]["code"] == "ROOM_FULL"
    assert extra.websocket.of_type("playerInfo") == []
    assert len(room.players) == rules.capacity
    assert len(contexts[0].websocket.of_type("playerJoined")) == 4
    stats = (await game_runtime.get_ws_stats())["stats"]
    assert stats["rejectRoomFull"] == 1
    assert stats["rejectRoomNotWaiting"] == 0


@pytest.mark.asyncio
async def test_disconnect_while_waiting_frees_seat(game_runtime, connect):
    ann, bob, cat = connect(), connect(), connect()
    for name, ctx in zip(["Ann", "Bob", "Cat"], [ann, bob, cat]):
        await game_runtime.join(ctx, "ROOM1", name)

    await game_runtime.disconnect(bob)
    room = game_runtime.directory.get("ROOM1")
    left = ann.websocket.of_type("playerLeft")[-1]
    assert left["count"] == 2
    assert left["players"] == ["Ann", "Cat"]
    assert left["playerNumbers"] == [{"name": "Ann", "number": 1}, {"name": "Cat", "number": 3}]

    dan = connect()
    await game_runtime.join(dan, "ROOM1", "Dan")
    assert dan.websocket.of_type("playerInfo")[0]["playerNumber"] == 2
    assert room.state == "waiting"


@pytest.mark.asyncio
async def test_disconnect_during_countdown_cancels_start(game_runtime, connect, rules):
    contexts = [connect() for _ in range(4)]
    for name, ctx in zip("ABCD", contexts):
        await game_runtime.join(ctx, "ROOM1", name)
    await game_runtime.disconnect(contexts[3])

    await asyncio.sleep(rules.game_start_delay_ms / 1000 + 0.05)
    room = game_runtime.directory.get("ROOM1")
    assert room.state == "waiting"
    assert contexts[0].websocket.of_type("gameStart") == []


@pytest.mark.asyncio
async def test_disconnect_while_playing_eliminates(game_runtime, full_room):
    room, contexts = full_room
    leaver = contexts[3]
    await game_runtime.submit(leaver, 99)
    await game_runtime.disconnect(leaver)

    player = room.players.get(leaver.player_id)
    assert player is not None
    assert player.eliminated
    assert player.points == room.rules.elimination_score
    assert leaver.player_id not in room.current_round.numbers

    left = contexts[0].websocket.of_type("playerLeft")[-1]
    assert left["count"] == 4
    assert left["players"] == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_disconnect_can_complete_round(game_runtime, full_room):
    room, contexts = full_room
    for ctx in contexts[:3]:
        await game_runtime.submit(ctx, 30)
    await game_runtime.disconnect(contexts[3])

    result = contexts[0].websocket.of_type("roundResult")[0]
    assert contexts[3].player_id not in result["numbers"]
    assert result["noChoicePlayers"] == []


@pytest.mark.asyncio
async def test_rejoin_of_finished_room_creates_fresh_room(game_runtime, full_room, connect):
    room, contexts = full_room
    for player in room.players:
        if player.name != "A":
            player.points = 9
    for ctx, number in zip(contexts, [40, 100, 100, 100]):
        await game_runtime.submit(ctx, number)
    assert room.state == "finished"

    newcomer = connect()
    assert await game_runtime.join(newcomer, "ROOM1", "New")
    fresh = game_runtime.directory.get("ROOM1")
    assert fresh is not room
    assert fresh.state == "waiting"
    assert len(fresh.players) == 1
    assert newcomer.websocket.of_type("playerInfo")[0]["playerNumber"] == 1


@pytest.mark.asyncio
async def test_empty_room_is_dropped(game_runtime, connect):
    ann = connect()
    await game_runtime.join(ann, "ROOM1", "Ann")
    await game_runtime.disconnect(ann)
    assert "ROOM1" not in game_runtime.directory


@pytest.mark.asyncio
async def test_second_join_on_same_connection_is_refused(game_runtime, connect):
    ann = connect()
    await game_runtime.join(ann, "ROOM1", "Ann")
    assert not await game_runtime.join(ann, "ROOM2", "Ann")
    assert ann.websocket.of_type("error")[0]["code"] == "ALREADY_JOINED"
    assert "ROOM2" not in game_runtime.directory


@pytest.mark.asyncio
async def test_blank_room_id_is_refused(game_runtime, connect):
    ann = connect()
    assert not await game_runtime.join(ann, "   ", "Ann")
    assert ann.websocket.of_type("error")[0]["code"] == "INVALID_ROOM_ID"
    assert len(game_runtime.directory) == 0


async def score_first_round(game_runtime, room, contexts):
    for ctx, number in zip(contexts, [10, 20, 30, 40]):
        await game_runtime.submit(ctx, number)
    assert room.current_round.phase == "idle"


@pytest.mark.asyncio
async def test_disconnects_between_rounds_leave_last_survivor(game_runtime, full_room):
    room, contexts = full_room
    await score_first_round(game_runtime, room, contexts)
    for ctx in contexts[1:]:
        await game_runtime.disconnect(ctx)

    ws = contexts[0].websocket
    assert ws.of_type("gameOver") == [{"type": "gameOver", "winner": "A"}]
    assert room.state == "finished"
    await asyncio.sleep(room.rules.next_round_delay_ms / 1000 + 0.05)
    assert len(ws.of_type("roundStart")) == 1


@pytest.mark.asyncio
async def test_disconnects_between_rounds_with_no_active_player(game_runtime, full_room):
    room, contexts = full_room
    await score_first_round(game_runtime, room, contexts)
    room.players.mark_eliminated(contexts[0].player_id)
    for ctx in contexts[1:]:
        await game_runtime.disconnect(ctx)

    ws = contexts[0].websocket
    assert ws.of_type("gameOver") == [{"type": "gameOver", "winner": "No one"}]
    await asyncio.sleep(room.rules.next_round_delay_ms / 1000 + 0.05)
    assert len(ws.of_type("roundStart")) == 1


@pytest.mark.asyncio
async def test_next_round_not_opened_for_single_player(game_runtime, full_room):
    room, contexts = full_room
    await score_first_round(game_runtime, room, contexts)
    game_runtime._cancel_timer(room, "nextRound")
    for ctx in contexts[1:]:
        room.players.mark_eliminated(ctx.player_id)

    async with room.lock:
        assert not await open_round(game_runtime, room)

    ws = contexts[0].websocket
    assert len(ws.of_type("roundStart")) == 1
    assert ws.of_type("gameOver") == [{"type": "gameOver", "winner": "A"}]


@pytest.mark.asyncio
async def test_everyone_eliminated_in_one_pass_means_no_winner(game_runtime, full_room, wait_for):
    room, contexts = full_room
    for player in room.players:
        player.points = 8

    ws = contexts[0].websocket
    await wait_for(lambda: ws.of_type("gameOver"))
    assert ws.of_type("gameOver") == [{"type": "gameOver", "winner": "No one"}]
    assert ws.types()[-2:] == ["roundResult", "gameOver"]
    assert sorted(ws.of_type("roundResult")[0]["noChoicePlayers"]) == ["A", "B", "C", "D"]

    await asyncio.sleep(room.rules.next_round_delay_ms / 1000 + 0.05)
    assert len(ws.of_type("roundStart")) == 1


@pytest.mark.asyncio
async def test_close_with_no_active_players_skips_result(game_runtime, full_room):
    room, contexts = full_room
    for ctx in contexts:
        room.players.mark_eliminated(ctx.player_id)

    async with room.lock:
        assert await close_round(game_runtime, room, room.current_round.number, reason="timeout")

    ws = contexts[0].websocket
    assert ws.of_type("roundResult") == []
    assert ws.of_type("gameOver") == [{"type": "gameOver", "winner": "No one"}]
    assert room.state == "finished"


@pytest.mark.asyncio
async def test_malformed_number_without_room_is_protocol_error(game_runtime, connect):
    with pytest.raises(ProtocolError):
        await game_runtime.submit(connect(), "abc")
    stats = await game_runtime.get_ws_stats()
    assert stats["stats"]["staleSubmissions"] == 0
