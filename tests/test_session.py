import asyncio

import pytest

from ielts_examiner.errors import InvalidStateError, ScoringFailure, ScoringParseError, TranscriptionFailure
from ielts_examiner.state_machine import FALLBACK_ACKNOWLEDGEMENT, EndReason, EvaluationStatus, SessionPhase

from conftest import FakeDialogue, FakeScoring, FakeSpeech, FakeTranscription


async def _wait_for(predicate):
	for _ in range(100):
		if predicate():
			return
		await asyncio.sleep(0)
	raise AssertionError("condition not reached")


@pytest.mark.anyio
async def test_part2_answer_scores_once(make_session, scoring):
	session = make_session()
	await session.start(2)

	examiner = await session.record_candidate_utterance("I want to talk about my grandmother.")

	assert examiner is None
	assert session.phase is SessionPhase.COMPLETED
	assert len(scoring.requests) == 1
	assert scoring.requests[0].transcript_text == "I want to talk about my grandmother."
	assert session.machine.state.evaluation_status is EvaluationStatus.SCORED

	again = await session.finalize()
	assert again is session.evaluation
	assert len(scoring.requests) == 1


@pytest.mark.anyio
async def test_conversation_turns(make_session, dialogue):
	session = make_session()
	await session.start(1)

	first = await session.record_candidate_utterance("I live in Bristol.")
	second = await session.record_candidate_utterance("I study chemistry.")

	assert first.text == "Follow-up 1?"
	assert second.text == "Follow-up 2?"
	assert [r.questions_asked for r in dialogue.requests] == [1, 2]
	assert session.phase is SessionPhase.AWAITING_CANDIDATE


@pytest.mark.anyio
async def test_concurrent_finalize_returns_same_evaluation(make_session, scoring):
	session = make_session()
	await session.start(3)
	await session.record_candidate_utterance("Education is changing.")

	results = await asyncio.gather(session.finalize(), session.finalize(), session.finalize())

	assert len(scoring.requests) == 1
	assert results[0] is not None
	assert all(r is results[0] for r in results)
	assert session.machine.state.end_reason is EndReason.FINISHED


@pytest.mark.anyio
async def test_finalize_without_speech_skips_scoring(make_session, scoring):
	session = make_session()
	await session.start(1)

	assert await session.finalize() is None
	assert session.machine.state.evaluation_status is EvaluationStatus.SKIPPED
	assert scoring.requests == []


@pytest.mark.anyio
@pytest.mark.parametrize("error", [ScoringFailure("quota exceeded", code="api_error"), ScoringParseError("not json", raw="oops"), RuntimeError("boom")])
async def test_scoring_failure_marks_failed(make_session, error):
	session = make_session(scoring=FakeScoring(error=error))
	await session.start(2)

	await session.record_candidate_utterance("Monologue")

	state = session.machine.state
	assert state.evaluation_status is EvaluationStatus.FAILED
	assert state.scoring_error
	assert session.evaluation is None
	assert await session.finalize() is None


@pytest.mark.anyio
async def test_dialogue_failure_uses_fallback(make_session):
	session = make_session(dialogue=FakeDialogue(fail_on={1}))
	await session.start(1)

	examiner = await session.record_candidate_utterance("My hometown is small.")

	assert examiner.text == FALLBACK_ACKNOWLEDGEMENT
	assert session.machine.state.questions_asked == 1
	assert session.phase is SessionPhase.AWAITING_CANDIDATE


@pytest.mark.anyio
async def test_part3_continues_after_dialogue_failure(make_session):
	dialogue = FakeDialogue(fail_on={2})
	session = make_session(dialogue=dialogue)
	await session.start(3)

	await session.record_candidate_utterance("Technology makes lessons interactive.")
	fallback = await session.record_candidate_utterance("Teachers still matter most.")
	third = await session.record_candidate_utterance("Online courses widen access.")

	assert fallback.text == FALLBACK_ACKNOWLEDGEMENT
	assert third.text == "Follow-up 3?"
	assert session.machine.state.questions_asked == 3
	assert [r.questions_asked for r in dialogue.requests] == [1, 2, 3]


@pytest.mark.anyio
async def test_examiner_completion_triggers_scoring(make_session, scoring):
	session = make_session(dialogue=FakeDialogue(complete_on={1}))
	await session.start(3)

	examiner = await session.record_candidate_utterance("Cities are noisy.")

	assert examiner.text == "Follow-up 1?"
	assert session.machine.state.end_reason is EndReason.EXAMINER
	assert len(scoring.requests) == 1


@pytest.mark.anyio
async def test_second_answer_while_awaiting_examiner_is_rejected(make_session, dialogue):
	dialogue.gate = asyncio.Event()
	session = make_session()
	await session.start(1)

	pending = asyncio.ensure_future(session.record_candidate_utterance("First answer"))
	await _wait_for(lambda: dialogue.requests)
	transcript = list(session.machine.state.transcript)

	with pytest.raises(InvalidStateError):
		await session.record_candidate_utterance("Second answer")
	assert session.machine.state.transcript == transcript

	dialogue.gate.set()
	examiner = await pending
	assert examiner.text == "Follow-up 1?"


@pytest.mark.anyio
async def test_abort_discards_in_flight_reply(make_session, dialogue, scoring):
	dialogue.gate = asyncio.Event()
	finished = []

	async def on_finished(s):
		finished.append(s.session_id)

	session = make_session(on_finished=on_finished)
	await session.start(1)
	pending = asyncio.ensure_future(session.record_candidate_utterance("First answer"))
	await _wait_for(lambda: dialogue.requests)

	await session.abort()
	dialogue.gate.set()

	assert await pending is None
	state = session.machine.state
	assert state.end_reason is EndReason.ABORTED
	assert state.transcript[-1].text == "First answer"
	assert state.evaluation_status is EvaluationStatus.NONE
	assert scoring.requests == []
	assert finished == [session.session_id]


@pytest.mark.anyio
async def test_on_finished_called_once_after_scoring(make_session):
	finished = []

	async def on_finished(s):
		finished.append(s.machine.state.evaluation_status)

	session = make_session(on_finished=on_finished)
	await session.start(2)
	await session.record_candidate_utterance("Monologue")
	await session.finalize()

	assert finished == [EvaluationStatus.SCORED]


@pytest.mark.anyio
async def test_failing_on_finished_does_not_break_session(make_session):
	async def on_finished(s):
		raise RuntimeError("archive down")

	session = make_session(on_finished=on_finished)
	await session.start(2)
	await session.record_candidate_utterance("Monologue")

	assert session.machine.state.evaluation_status is EvaluationStatus.SCORED


@pytest.mark.anyio
async def test_submit_audio_records_transcript(make_session, transcription):
	session = make_session()
	await session.start(1)

	result, examiner = await session.submit_audio(b"RIFF....", "audio/wav")

	assert result.text == transcription.text
	assert examiner.text == "Follow-up 1?"
	assert session.machine.state.transcript[1].text == transcription.text


@pytest.mark.anyio
async def test_transcription_failure_leaves_session_untouched(make_session):
	session = make_session(transcription=FakeTranscription(fail=True))
	await session.start(1)

	with pytest.raises(TranscriptionFailure):
		await session.submit_audio(b"RIFF....", "audio/wav")

	assert session.phase is SessionPhase.AWAITING_CANDIDATE
	assert len(session.machine.state.transcript) == 1


@pytest.mark.anyio
async def test_unsupported_audio_format_is_rejected_before_transcribing(make_session, transcription):
	session = make_session()
	await session.start(1)

	with pytest.raises(TranscriptionFailure) as excinfo:
		await session.submit_audio(b"%PDF-1.4", "application/pdf")

	assert excinfo.value.code == "unsupported_format"
	assert transcription.calls == []
	assert session.phase is SessionPhase.AWAITING_CANDIDATE


@pytest.mark.anyio
async def test_submit_audio_in_wrong_phase_skips_transcription(make_session, transcription):
	session = make_session()
	await session.start(2)
	await session.record_candidate_utterance("Monologue")

	with pytest.raises(InvalidStateError):
		await session.submit_audio(b"RIFF....", "audio/wav")
	assert transcription.calls == []


@pytest.mark.anyio
async def test_speech_failure_returns_none(make_session):
	session = make_session(speech=FakeSpeech(fail=True))
	assert await session.synthesize("Hello") is None

	working = make_session()
	assert await working.synthesize("Hello") == b"ID3-mp3-bytes"


@pytest.mark.anyio
async def test_clock_task_expires_session(make_session, scoring):
	session = make_session(clock_enabled=True, tick_seconds=0)
	await session.start(2)
	session.machine.state.time_remaining = 3

	await _wait_for(lambda: session.phase is SessionPhase.COMPLETED)

	state = session.machine.state
	assert state.end_reason is EndReason.TIME
	assert state.time_remaining == 0
	assert state.evaluation_status is EvaluationStatus.SKIPPED
	assert scoring.requests == []
	await session.close()


def test_snapshot_requires_start(make_session):
	with pytest.raises(InvalidStateError):
		make_session().snapshot()
