from trivia.models import RoomState


def _room_with_two(orchestrator):
    created = orchestrator.create_room('Host')
    assert created['success'] is True
    code = created['roomCode']
    joined = orchestrator.join_room(code, 'Guest')
    assert joined['success'] is True
    return code, created['participantId'], joined['participantId']


def _open_first_question(orchestrator, scheduler):
    code, host, guest = _room_with_two(orchestrator)
    assert orchestrator.start_game(host) == {'success': True}
    scheduler.advance(3)
    return code, host, guest


def _correct(orchestrator, code):
    return orchestrator.registry.get_room(code).current_question.correct_option_index


def test_create_and_join_broadcasts(orchestrator, broadcaster):
    code, host, guest = _room_with_two(orchestrator)
    assert broadcaster.attached == {host: code, guest: code}
    assert broadcaster.named('room-created') == [{'roomCode': code, 'participantId': host}]
    assert broadcaster.last('room-joined') == {'roomCode': code, 'participantId': guest, 'displayName': 'Guest'}
    joined = [e for e in broadcaster.events if e['event'] == 'player-joined'][0]
    # the newcomer is not told about itself
    assert joined['skip'] == guest
    assert joined['payload']['participant']['displayName'] == 'Guest'
    players = broadcaster.last('players-update')['participants']
    assert [p['displayName'] for p in players] == ['Host', 'Guest']


def test_invalid_inbound_payloads_fail_without_raising(orchestrator):
    assert orchestrator.create_room('   ')['code'] == 'INVALID_REQUEST'
    assert orchestrator.join_room(None, 'Guest')['code'] == 'INVALID_REQUEST'
    assert orchestrator.join_room('ZZZZZZ', 'Guest') == {
        'success': False, 'error': 'Room not found', 'code': 'ROOM_NOT_FOUND',
    }
    assert orchestrator.start_game('ghost')['code'] == 'PLAYER_NOT_IN_ROOM'
    assert orchestrator.submit_answer('ghost', 0)['code'] == 'PLAYER_NOT_IN_ROOM'


def test_join_conflicts(orchestrator):
    code, host, _ = _room_with_two(orchestrator)
    assert orchestrator.join_room(code, 'Guest')['code'] == 'NAME_TAKEN'
    orchestrator.join_room(code, 'Third')
    orchestrator.join_room(code, 'Fourth')
    assert orchestrator.join_room(code, 'Fifth')['code'] == 'ROOM_FULL'


def test_start_game_rules(orchestrator, broadcaster):
    created = orchestrator.create_room('Host')
    host, code = created['participantId'], created['roomCode']
    assert orchestrator.start_game(host)['code'] == 'NOT_ENOUGH_PLAYERS'
    guest = orchestrator.join_room(code, 'Guest')['participantId']
    assert orchestrator.start_game(guest)['code'] == 'NOT_HOST'
    assert orchestrator.start_game(host)['success'] is True
    assert orchestrator.start_game(host)['code'] == 'ALREADY_STARTED'
    assert broadcaster.named('game-started') == [{'totalQuestions': 3, 'timeLimit': 30}]
    assert orchestrator.join_room(code, 'Late')['code'] == 'GAME_ALREADY_STARTED'


def test_lead_in_opens_first_question_and_counts_down(orchestrator, scheduler, broadcaster):
    code, host, guest = _room_with_two(orchestrator)
    orchestrator.start_game(host)
    scheduler.advance(2.5)
    assert broadcaster.named('question-start') == []

    scheduler.advance(0.5)
    started = broadcaster.named('question-start')
    assert len(started) == 1
    assert started[0]['questionNumber'] == 1
    assert started[0]['totalQuestions'] == 3
    assert started[0]['timeLimit'] == 30
    assert 'correctOptionIndex' not in started[0]['question']

    scheduler.advance(3)
    assert [u['remainingSeconds'] for u in broadcaster.named('time-update')] == [29, 28, 27]


def test_full_game_flow(orchestrator, scheduler, broadcaster, registry):
    code, host, guest = _open_first_question(orchestrator, scheduler)
    correct = _correct(orchestrator, code)

    # Q1: both answer, the question ends without waiting for the deadline
    scheduler.advance(2)
    assert orchestrator.submit_answer(host, correct) == {'success': True}
    assert orchestrator.submit_answer(guest, (correct + 1) % 4) == {'success': True}
    ended = broadcaster.named('question-end')
    assert len(ended) == 1
    results = {r['participantId']: r for r in ended[0]['results']['playerResults']}
    # 100 + floor(100 * 0.5 * 28/30)
    assert results[host]['pointsEarned'] == 146
    assert results[guest]['pointsEarned'] == 0
    assert ended[0]['leaderboard'][0]['participantId'] == host
    ticks_before = len(broadcaster.named('time-update'))
    scheduler.advance(4)
    assert len(broadcaster.named('time-update')) == ticks_before

    # Q2 opens after the reveal and ends on its deadline
    scheduler.advance(1)
    assert broadcaster.last('question-start')['questionNumber'] == 2
    scheduler.advance(30)
    assert len(broadcaster.named('question-end')) == 2
    assert broadcaster.last('question-end')['results']['totalAnswers'] == 0

    # Q3 force-ended by the host, then the game ends after the reveal
    scheduler.advance(5)
    assert broadcaster.last('question-start')['questionNumber'] == 3
    assert orchestrator.next_question(host) == {'success': True}
    assert len(broadcaster.named('question-end')) == 3
    scheduler.advance(5)

    over = broadcaster.named('game-over')
    assert len(over) == 1
    assert over[0]['stats']['questionsPlayed'] == 3
    assert over[0]['finalScores'][0] == {'participantId': host, 'displayName': 'Host', 'score': 146, 'rank': 1}
    assert registry.get_room(code).state == RoomState.FINISHED
    assert scheduler.pending() == []
    assert orchestrator.next_question(host)['code'] == 'GAME_FINISHED'


def test_host_force_end_and_deadline_end_question_once(orchestrator, scheduler, broadcaster):
    code, host, _ = _open_first_question(orchestrator, scheduler)
    scheduler.advance(10)
    assert orchestrator.next_question(host)['success'] is True
    assert len(broadcaster.named('question-end')) == 1
    # Q2 opens at +5; the old Q1 deadline (+20 from here) must not end Q2
    scheduler.advance(20)
    assert len(broadcaster.named('question-end')) == 1
    assert broadcaster.last('question-start')['questionNumber'] == 2


def test_stale_timer_callback_is_ignored(orchestrator, scheduler, broadcaster, registry):
    code, host, _ = _open_first_question(orchestrator, scheduler)
    room = registry.get_room(code)
    stale_epoch = orchestrator._timers_for(code).epoch
    cursor = room.question_cursor
    orchestrator.next_question(host)
    # a deadline that had already woken up when it was cancelled
    orchestrator._on_deadline(code, stale_epoch, cursor)
    assert len(broadcaster.named('question-end')) == 1
    assert room.state == RoomState.RESULTS


def test_next_question_skips_lead_in(orchestrator, scheduler, broadcaster):
    code, host, guest = _room_with_two(orchestrator)
    assert orchestrator.next_question(host)['code'] == 'GAME_NOT_STARTED'
    orchestrator.start_game(host)
    assert orchestrator.next_question(guest)['code'] == 'NOT_HOST'
    assert orchestrator.next_question(host)['success'] is True
    assert len(broadcaster.named('question-start')) == 1
    scheduler.advance(3)
    assert len(broadcaster.named('question-start')) == 1


def test_next_question_skips_reveal(orchestrator, scheduler, broadcaster):
    code, host, _ = _open_first_question(orchestrator, scheduler)
    orchestrator.next_question(host)
    orchestrator.next_question(host)
    assert broadcaster.last('question-start')['questionNumber'] == 2
    scheduler.advance(5)
    assert len(broadcaster.named('question-start')) == 2


def test_answer_errors(orchestrator, scheduler):
    code, host, guest = _room_with_two(orchestrator)
    assert orchestrator.submit_answer(host, 0)['code'] == 'NO_ACTIVE_QUESTION'
    orchestrator.start_game(host)
    scheduler.advance(3)
    assert orchestrator.submit_answer(host, 'b')['code'] == 'INVALID_REQUEST'
    assert orchestrator.submit_answer(host, True)['code'] == 'INVALID_REQUEST'
    assert orchestrator.submit_answer(host, 1)['success'] is True
    assert orchestrator.submit_answer(host, 2)['code'] == 'ALREADY_ANSWERED'


def test_answer_after_deadline_is_rejected(orchestrator, scheduler):
    code, host, guest = _open_first_question(orchestrator, scheduler)
    scheduler.advance(30)
    assert orchestrator.submit_answer(guest, 0)['code'] == 'NO_ACTIVE_QUESTION'


def test_disconnect_of_last_unanswered_player_ends_question(orchestrator, scheduler, broadcaster):
    code, host, guest = _open_first_question(orchestrator, scheduler)
    orchestrator.submit_answer(host, 0)
    assert broadcaster.named('question-end') == []
    removal = orchestrator.disconnect(guest)
    assert removal.remaining == 1
    assert broadcaster.last('player-left') == {'participantId': guest, 'displayName': 'Guest', 'newHostId': None}
    assert len(broadcaster.named('question-end')) == 1
    assert guest not in broadcaster.attached


def test_host_disconnect_promotes_next_participant(orchestrator, broadcaster, registry):
    code, host, guest = _room_with_two(orchestrator)
    orchestrator.disconnect(host)
    assert broadcaster.last('player-left')['newHostId'] == guest
    assert registry.get_room(code).host_id == guest
    assert orchestrator.start_game(guest)['code'] == 'NOT_ENOUGH_PLAYERS'


def test_room_emptied_mid_game_cancels_timers(orchestrator, scheduler, broadcaster, registry):
    code, host, guest = _open_first_question(orchestrator, scheduler)
    orchestrator.disconnect(guest)
    orchestrator.disconnect(host)
    assert registry.get_room(code).state == RoomState.ABANDONED
    assert scheduler.pending() == []
    assert not orchestrator.has_live_timers(code)
    scheduler.advance(60)
    assert broadcaster.named('question-end') == []
    assert orchestrator.disconnect(host).code is None


def test_reclaim_skips_rooms_with_live_timers(orchestrator, scheduler, registry):
    code, host, guest = _room_with_two(orchestrator)
    orchestrator.start_game(host)
    registry.get_room(code).created_at -= 7200
    assert orchestrator.reclaim() == []

    orchestrator.disconnect(guest)
    orchestrator.disconnect(host)
    assert orchestrator.reclaim() == [code]
    assert code not in registry


def test_finished_rooms_are_reclaimed(orchestrator, scheduler, registry):
    code, host, _ = _open_first_question(orchestrator, scheduler)
    for _ in range(3):
        orchestrator.next_question(host)
        orchestrator.next_question(host)
    assert registry.get_room(code).state == RoomState.FINISHED
    assert orchestrator.reclaim() == [code]
    assert registry.get_participant_room(host) is None


def test_reclaimer_runs_periodically(orchestrator, scheduler, registry):
    created = orchestrator.create_room('Solo')
    orchestrator.disconnect(created['participantId'])
    orchestrator.start_reclaimer(60)
    scheduler.advance(60)
    assert created['roomCode'] not in registry


def test_shutdown_cancels_everything_and_is_idempotent(orchestrator, scheduler, broadcaster):
    code, host, _ = _open_first_question(orchestrator, scheduler)
    orchestrator.start_reclaimer(60)
    orchestrator.shutdown()
    orchestrator.shutdown()
    assert scheduler.pending() == []
    scheduler.advance(120)
    assert broadcaster.named('question-end') == []


def test_option_index_outside_the_question_is_rejected(orchestrator, scheduler, broadcaster):
    code, host, guest = _open_first_question(orchestrator, scheduler)
    assert orchestrator.submit_answer(guest, 99)['code'] == 'INVALID_REQUEST'
    assert orchestrator.submit_answer(guest, 4)['code'] == 'INVALID_REQUEST'
    # the rejected attempts did not use up the answer slot
    assert orchestrator.submit_answer(guest, 3) == {'success': True}
    orchestrator.submit_answer(host, 0)
    results = broadcaster.last('question-end')['results']['playerResults']
    assert {r['participantId']: r['optionIndex'] for r in results} == {host: 0, guest: 3}


def test_reclaim_detaches_participants_of_finished_rooms(orchestrator, scheduler, broadcaster):
    code, host, guest = _open_first_question(orchestrator, scheduler)
    for _ in range(3):
        orchestrator.next_question(host)
        orchestrator.next_question(host)
    assert broadcaster.attached == {host: code, guest: code}
    assert orchestrator.reclaim() == [code]
    assert broadcaster.attached == {}
