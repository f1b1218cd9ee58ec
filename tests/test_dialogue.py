import httpx
import pytest

from ielts_examiner import dialogue as dialogue_module
from ielts_examiner.dialogue import CLOSING_LINE, EMPTY_REPLY_LINE, GeminiDialogue, build_dialogue_prompt
from ielts_examiner.errors import DialogueFailure
from ielts_examiner.parts import TestPart
from ielts_examiner.schemas import DialogueRequest, SpeakerRole, Utterance
from ielts_examiner.settings import settings


class FakeGeminiClient:
	reply = ""
	error = None
	calls = []

	def __init__(self, *args, **kwargs):
		pass

	async def generate(self, prompt, **kwargs):
		FakeGeminiClient.calls.append((prompt, kwargs))
		if FakeGeminiClient.error is not None:
			raise FakeGeminiClient.error
		return FakeGeminiClient.reply

	async def aclose(self):
		pass


@pytest.fixture
def fake_client(monkeypatch):
	FakeGeminiClient.reply = ""
	FakeGeminiClient.error = None
	FakeGeminiClient.calls = []
	monkeypatch.setattr(dialogue_module, "GeminiClient", FakeGeminiClient)
	return FakeGeminiClient


def _request(part=TestPart.PART1, asked=1, total=3, remaining=200):
	transcript = (
		Utterance(role=SpeakerRole.EXAMINER, text="Tell me about your hometown."),
		Utterance(role=SpeakerRole.CANDIDATE, text="It is a port city."),
	)
	return DialogueRequest(
		session_id="s-1",
		generation=1,
		part=part,
		latest_candidate_text="It is a port city.",
		transcript=transcript,
		questions_asked=asked,
		total_questions=total,
		time_remaining=remaining,
	)


def test_interview_prompt_includes_progress_and_transcript():
	system, user = build_dialogue_prompt(_request(remaining=125))

	assert "Part 1" in system
	assert "answered 1 of 3 questions" in system
	assert "2 minute(s) and 5 second(s)" in system
	assert "Examiner: Tell me about your hometown." in user
	assert "Candidate: It is a port city." in user
	assert "final question" not in user


def test_prompt_flags_last_question():
	_, user = build_dialogue_prompt(_request(part=TestPart.PART3, asked=4, total=5))
	assert "final question" in user


def test_discussion_prompt_style():
	system, _ = build_dialogue_prompt(_request(part=TestPart.PART3, total=5))
	assert "Part 3" in system


@pytest.mark.anyio
@pytest.mark.parametrize("asked, remaining", [(3, 100), (1, 0)])
async def test_closing_line_without_model_call(fake_client, asked, remaining):
	reply = await GeminiDialogue().next_turn(_request(asked=asked, remaining=remaining))

	assert reply.examiner_text == CLOSING_LINE
	assert reply.test_complete is True
	assert fake_client.calls == []


@pytest.mark.anyio
async def test_reply_is_cleaned(fake_client):
	fake_client.reply = '  "What do you like most about living there?"  '

	reply = await GeminiDialogue().next_turn(_request())

	assert reply.examiner_text == "What do you like most about living there?"
	assert reply.test_complete is False
	_, kwargs = fake_client.calls[0]
	assert kwargs["max_output_tokens"] == 150


@pytest.mark.anyio
async def test_empty_reply_gets_default_line(fake_client):
	fake_client.reply = "   "
	reply = await GeminiDialogue().next_turn(_request())
	assert reply.examiner_text == EMPTY_REPLY_LINE


@pytest.mark.anyio
@pytest.mark.parametrize("error", [httpx.ReadTimeout("slow"), RuntimeError("Unexpected Gemini response")])
async def test_model_errors_become_dialogue_failure(fake_client, error):
	fake_client.error = error
	with pytest.raises(DialogueFailure) as excinfo:
		await GeminiDialogue().next_turn(_request())
	assert excinfo.value.code == "api_error"


@pytest.mark.anyio
async def test_missing_api_key(monkeypatch):
	monkeypatch.setattr(settings, "gemini_api_key", None)
	with pytest.raises(DialogueFailure) as excinfo:
		await GeminiDialogue().next_turn(_request())
	assert excinfo.value.code == "not_configured"
