from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import FakeTranscoder, FakeTranscriber, add_attempt
from pronunciation_coach.db import get_db
from pronunciation_coach.main import create_app
from pronunciation_coach.models import User
from pronunciation_coach.routers.auth import create_access_token
from pronunciation_coach.settings import Settings


@pytest.fixture
def transcriber():
	return FakeTranscriber("I happy")


@pytest.fixture
def transcoder():
	return FakeTranscoder()


@pytest.fixture
def client(db, settings, transcriber, transcoder):
	app = create_app(settings, transcriber=transcriber, transcoder=transcoder)

	def override_get_db():
		yield db

	app.dependency_overrides[get_db] = override_get_db
	return TestClient(app)


@pytest.fixture
def auth(user, settings):
	return {"Authorization": f"Bearer {create_access_token(user.id, settings)}"}


def upload(data=b"RIFFupload"):
	return {"audio": ("clip.webm", data, "audio/webm")}


class TestAuth:
	def test_health_is_public(self, client):
		assert client.get("/health").json() == {"status": "ok"}

	def test_missing_token(self, client):
		res = client.get("/voice/history")
		assert res.status_code == 401
		assert res.json()["error"] == "unauthorized"
		assert res.headers["www-authenticate"] == "Bearer"

	def test_bad_signature(self, client, user, settings):
		token = create_access_token(user.id, settings.model_copy(update={"jwt_secret_key": "other"}))
		res = client.get("/voice/history", headers={"Authorization": f"Bearer {token}"})
		assert res.status_code == 401

	def test_expired_token(self, client, user, settings):
		token = create_access_token(user.id, settings, expires_delta=timedelta(minutes=-5))
		res = client.get("/voice/history", headers={"Authorization": f"Bearer {token}"})
		assert res.status_code == 401

	def test_inactive_user(self, client, db, user, auth):
		user.is_active = False
		db.commit()
		assert client.get("/voice/history", headers=auth).status_code == 401


class TestAnalyze:
	def test_analyze(self, client, auth, sentence):
		res = client.post(
			"/voice/pronunciation/analyze",
			data={"sentence_id": sentence.id, "locale": "en"},
			files=upload(),
			headers=auth,
		)

		assert res.status_code == 200
		body = res.json()
		assert body["success"] is True
		result = body["result"]
		assert result["attempt_number"] == 1
		assert result["overall_score"] == 36
		assert result["transcription"] == "I happy"
		assert result["analysis"]["timing"]["speed_ratio"] == 0.5
		assert "am, happy, today" in result["feedback"]

	def test_unknown_sentence(self, client, auth, user):
		res = client.post("/voice/pronunciation/analyze", data={"sentence_id": "nope"}, files=upload(), headers=auth)
		assert res.status_code == 404
		assert res.json()["error"] == "not_found"

	def test_missing_audio_part(self, client, auth, sentence):
		res = client.post("/voice/pronunciation/analyze", data={"sentence_id": sentence.id}, headers=auth)
		assert res.status_code == 400
		body = res.json()
		assert body["error"] == "validation_error"
		assert "audio" in body["message"]

	def test_empty_upload(self, client, auth, sentence):
		res = client.post("/voice/pronunciation/analyze", data={"sentence_id": sentence.id}, files=upload(b""), headers=auth)
		assert res.status_code == 400
		assert res.json()["error"] == "validation_error"

	def test_transcription_unavailable(self, client, auth, sentence, transcriber):
		transcriber.failures = 5
		res = client.post("/voice/pronunciation/analyze", data={"sentence_id": sentence.id}, files=upload(), headers=auth)
		assert res.status_code == 503
		assert res.json()["error"] == "transcription_unavailable"
		assert client.get("/voice/history", headers=auth).json()["count"] == 0

	def test_codec_failure_hides_details(self, client, auth, sentence, transcoder):
		transcoder.fail_on = "transcode"
		res = client.post("/voice/pronunciation/analyze", data={"sentence_id": sentence.id}, files=upload(), headers=auth)
		assert res.status_code == 422
		body = res.json()
		assert body["error"] == "audio_processing_error"
		assert "corrupt input" not in body["message"]


class TestReports:
	def test_history_and_detail(self, client, auth, sentence):
		client.post("/voice/pronunciation/analyze", data={"sentence_id": sentence.id}, files=upload(), headers=auth)

		history = client.get("/voice/history?limit=5", headers=auth).json()
		assert history["count"] == 1
		entry = history["history"][0]
		assert entry["sentence"] == sentence.english_text

		detail = client.get(f"/voice/attempts/{entry['id']}", headers=auth).json()
		assert detail["feedback"]["overall_score"] == 36
		assert detail["feedback"]["error_analysis"]["severity"] == "medium"

	def test_history_limit_bounds(self, client, auth):
		res = client.get("/voice/history?limit=0", headers=auth)
		assert res.status_code == 400
		assert res.json()["error"] == "validation_error"
		assert "limit" in res.json()["message"]

	def test_other_users_attempt(self, client, auth, db, other_user, sentence):
		attempt = add_attempt(db, other_user.id, sentence.id, 1, 70)
		res = client.get(f"/voice/attempts/{attempt.id}", headers=auth)
		assert res.status_code == 404

	def test_progress_and_statistics(self, client, auth, db, user, sentence):
		for number, score in enumerate([55, 65, 75], start=1):
			add_attempt(db, user.id, sentence.id, number, score)

		report = client.get("/voice/progress", headers=auth).json()["report"]
		assert report["total_attempts"] == 3
		assert report["average_score"] == 65
		assert report["best_score"] == 75

		stats = client.get("/voice/statistics", headers=auth).json()["statistics"]
		assert stats["total_attempts"] == 3
		assert stats["practice_days"] == 1

	def test_practice_session(self, client, auth, sentence):
		res = client.post("/voice/practice/session", json={"difficulty": "easy"}, headers=auth)
		session = res.json()["session"]
		assert [s["id"] for s in session["sentences"]] == [sentence.id]
		assert session["sentences"][0]["audio_url"] == sentence.audio_url_us


class TestSamplesAndMedia:
	def test_samples(self, client, auth):
		res = client.post("/voice/samples", data={"sample_type": "speaking"}, files=upload(), headers=auth)
		assert res.status_code == 200
		sample = res.json()["voice_sample"]
		assert sample["sample_type"] == "speaking"

		listed = client.get("/voice/samples?sample_type=speaking", headers=auth).json()
		assert listed["count"] == 1
		assert listed["samples"][0]["id"] == sample["id"]

		stored = client.get(sample["audio_file_url"])
		assert stored.status_code == 200
		assert stored.content == b"PCM:RIFFupload"

	def test_sentence_audio(self, client, auth, sentence, transcriber):
		res = client.get(f"/voice/sentences/{sentence.id}/audio?voice=en-US-Wavenet-F", headers=auth)
		assert res.status_code == 200
		assert res.headers["content-type"] == "audio/mpeg"
		assert transcriber.synthesized == [(sentence.english_text, "en-US", "en-US-Wavenet-F")]

	def test_waveform(self, client, auth):
		res = client.post("/voice/waveform?width=400&height=100", files=upload(), headers=auth)
		assert res.status_code == 200
		assert res.headers["content-type"] == "image/png"
		assert res.content.startswith(b"\x89PNG")


class TestAppSettings:
	"""create_app wires its own Settings through; nothing is overridden here."""

	@pytest.fixture
	def own_client(self, settings, transcriber, transcoder):
		app = create_app(settings, transcriber=transcriber, transcoder=transcoder)
		with TestClient(app) as client:
			with app.state.session_factory() as session:
				session.add(User(id="user-9", username="noor"))
				session.commit()
			yield client

	def test_token_signed_with_app_secret(self, own_client, settings):
		token = create_access_token("user-9", settings)
		res = own_client.get("/voice/statistics", headers={"Authorization": f"Bearer {token}"})
		assert res.status_code == 200
		assert res.json()["statistics"]["total_attempts"] == 0

	def test_token_signed_with_default_secret(self, own_client):
		token = create_access_token("user-9", Settings(jwt_secret_key="change-me"))
		res = own_client.get("/voice/statistics", headers={"Authorization": f"Bearer {token}"})
		assert res.status_code == 401

	def test_unknown_route_uses_error_envelope(self, own_client):
		res = own_client.get("/voice/nowhere")
		assert res.status_code == 404
		assert res.json()["error"] == "not_found"
