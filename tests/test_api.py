"""HTTP endpoint tests through the Flask test client."""

import io
import threading

import pytest

from app import create_app
from polish.errors import CompletionError
from polish.revision import RevisionService


@pytest.fixture
def app(polish_session, tmp_path, monkeypatch):
    monkeypatch.delenv("ACCESS_PASSWORD", raising=False)
    monkeypatch.setenv("POLISH_DATA_DIR", str(tmp_path))
    app = create_app(
        polish_session=polish_session,
        revision_service=RevisionService(polish_session, sleep=lambda _: None),
    )
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def _run_to_completion(client, polish_session, payload):
    response = client.post("/api/polish/revisions", json=payload)
    assert response.status_code == 202
    polish_session.worker_pool.get_future(polish_session.document_id).result(timeout=10)
    return client.get("/api/polish/revisions/current").get_json()


class TestRevisionEndpoints:
    def test_revision_runs_in_background(self, client, polish_session, fake_client) -> None:
        # Given
        fake_client.replies = ["The big cat sat."]

        # When
        state = _run_to_completion(client, polish_session, {"text": "The cat sat.", "mode": "standard"})

        # Then
        assert state["status"] == "DONE"
        assert state["polished"] == "The big cat sat."
        assert state["busy"] is False
        assert state["word_count"] == 4

    def test_empty_text_is_rejected_synchronously(self, client, fake_client) -> None:
        response = client.post("/api/polish/revisions", json={"text": "  "})

        assert response.status_code == 400
        assert "enter some text" in response.get_json()["error"]
        assert fake_client.calls == []

    def test_failed_revision_reports_error(self, client, polish_session, fake_client) -> None:
        # Given
        fake_client.replies = [CompletionError("quota exceeded")] * 3

        # When
        state = _run_to_completion(client, polish_session, {"text": "Draft."})

        # Then
        assert state["status"] == "ERROR"
        assert "quota exceeded" in state["error"]
        assert state["attempt"] == 3
        assert client.get("/api/polish/draft").get_json()["data"]["text"] == "Draft."

    def test_diff_marks_inserted_words(self, client, polish_session, fake_client) -> None:
        # Given
        fake_client.replies = ["The big cat sat."]
        _run_to_completion(client, polish_session, {"text": "The cat sat."})

        # When
        data = client.get("/api/polish/revisions/current/diff").get_json()

        # Then
        assert data["mode"] == "aligned"
        assert data["html"] == 'The <span class="diff-added">big </span>cat sat.'

    def test_diff_can_be_turned_off(self, client, polish_session) -> None:
        # Given
        polish_session.update_settings(diff_highlight=False)
        polish_session.polished = "A < B"

        # When
        data = client.get("/api/polish/revisions/current/diff").get_json()

        # Then
        assert data == {"html": "A &lt; B", "mode": "plain"}

    def test_busy_document_keeps_its_polled_state(self, client, polish_session) -> None:
        """A rejected second start leaves the running revision's state alone."""
        # Given
        release = threading.Event()
        running_state = {"status": "POLISHING", "progress": "Polishing section 2 of 3..."}
        polish_session.worker_pool.submit_revision(
            polish_session.document_id,
            release.wait,
            5,
            on_accept=lambda: polish_session.storage.create_revision(polish_session.document_id, running_state),
        )

        try:
            # When
            response = client.post("/api/polish/revisions", json={"text": "Another draft."})

            # Then
            assert response.status_code == 409
            state = client.get("/api/polish/revisions/current").get_json()
            assert state["status"] == "POLISHING"
            assert state["progress"] == "Polishing section 2 of 3..."
            assert state["busy"] is True
        finally:
            release.set()

    def test_history_restore_and_accept(self, client, polish_session, fake_client) -> None:
        # Given
        fake_client.replies = ["Polished draft."]
        _run_to_completion(client, polish_session, {"text": "Rough draft."})

        # When
        missing = client.post("/api/polish/history/3/restore").get_json()
        restored = client.post("/api/polish/history/0/restore").get_json()
        accepted = client.post("/api/polish/accept").get_json()

        # Then
        assert missing["success"] is False
        assert restored["polished"] == "Polished draft."
        assert accepted["text"] == "Polished draft."
        assert len(client.get("/api/polish/history").get_json()["versions"]) == 1


class TestSettingsEndpoints:
    def test_update_settings_filters_values(self, client, polish_session) -> None:
        # When
        response = client.put(
            "/api/polish/settings",
            json={"dark_mode": True, "selected_model": "not-a-model", "total_polishes": 99},
        )

        # Then
        settings = response.get_json()["settings"]
        assert settings["dark_mode"] is True
        assert settings["selected_model"] == "gpt-4o-mini"
        assert settings["total_polishes"] == 0

    def test_unknown_mode_is_rejected(self, client) -> None:
        response = client.put("/api/polish/settings", json={"selected_mode": "astrology"})

        assert response.status_code == 400

    def test_custom_modes_are_listed(self, client) -> None:
        # When
        client.post("/api/polish/modes", json={"id": "grant", "label": "Grant", "system_instruction": "Persuade."})
        modes = client.get("/api/polish/modes").get_json()["modes"]

        # Then
        assert modes[-1]["id"] == "grant"
        assert modes[-1]["custom"] is True
        assert client.delete("/api/polish/modes/grant").status_code == 200
        assert client.delete("/api/polish/modes/grant").status_code == 404

    def test_dictionary_endpoints(self, client) -> None:
        # When
        client.post("/api/polish/dictionary", json={"term": "CRISPR"})
        duplicate = client.post("/api/polish/dictionary", json={"term": "CRISPR"})

        # Then
        assert duplicate.status_code == 400
        assert client.get("/api/polish/dictionary").get_json()["entries"] == [
            {"term": "CRISPR", "replacement": None}
        ]
        assert client.delete("/api/polish/dictionary?term=CRISPR").status_code == 200
        assert client.delete("/api/polish/dictionary?term=CRISPR").status_code == 404

    def test_api_key_status_never_returns_the_key(self, client) -> None:
        data = client.get("/api/polish/api-key").get_json()

        assert data == {"configured": True, "encrypted": True, "encryption_available": True}

    def test_bad_api_key_is_rejected(self, client) -> None:
        response = client.put("/api/polish/api-key", json={"key": "abc"})

        assert response.status_code == 400

    def test_estimate(self, client) -> None:
        data = client.post("/api/polish/estimate", json={"text": "a" * 4000, "model": "gpt-4o-mini"}).get_json()

        assert data["tokens"] == 1000
        assert data["estimate"] == pytest.approx(0.0015)


class TestFileEndpoints:
    def test_open_text_file(self, client) -> None:
        response = client.post(
            "/api/polish/files/open",
            data={"file": (io.BytesIO(b"Loaded draft."), "chapter.md")},
            content_type="multipart/form-data",
        )

        assert response.get_json() == {"success": True, "content": "Loaded draft.", "path": "chapter.md"}

    def test_opening_a_file_starts_a_new_document(self, client, polish_session) -> None:
        # Given
        polish_session.history.push("Old polished.", "Old draft.")

        # When
        client.post(
            "/api/polish/files/open",
            data={"file": (io.BytesIO(b"New chapter."), "chapter.txt")},
            content_type="multipart/form-data",
        )

        # Then
        assert client.get("/api/polish/history").get_json()["versions"] == []
        assert polish_session.original_input == "New chapter."

    def test_open_rejects_other_formats(self, client) -> None:
        response = client.post(
            "/api/polish/files/open",
            data={"file": (io.BytesIO(b"%PDF"), "chapter.pdf")},
            content_type="multipart/form-data",
        )

        assert response.status_code == 400

    def test_export_txt_download(self, client) -> None:
        response = client.post("/api/polish/export/txt", json={"text": "Final text."})

        assert response.status_code == 200
        assert response.data == b"Final text."
        assert "polished-text.txt" in response.headers["Content-Disposition"]

    def test_export_saves_to_data_dir(self, client, tmp_path) -> None:
        # When
        data = client.post(
            "/api/polish/export/json",
            json={"text": "Final text.", "save": True, "filename": "out.json"},
        ).get_json()

        # Then
        assert data["success"] is True
        assert (tmp_path / "exports" / "out.json").exists()

    def test_export_without_text_is_rejected(self, client) -> None:
        assert client.post("/api/polish/export/docx", json={}).status_code == 400


class TestAccessPassword:
    def test_password_gate(self, polish_session, monkeypatch) -> None:
        # Given
        monkeypatch.setenv("ACCESS_PASSWORD", "letmein")
        client = create_app(polish_session=polish_session).test_client()

        # Then
        assert client.get("/api/polish/health").status_code == 200
        assert client.get("/api/polish/settings").status_code == 401
        assert client.post("/auth", json={"password": "nope"}).status_code == 401
        assert client.post("/auth", json={"password": "letmein"}).status_code == 200
        assert client.get("/api/polish/settings").status_code == 200
