import io
import sys
from pathlib import Path

import docx
import pytest
from sqlalchemy.exc import SQLAlchemyError

sys.path.append(str(Path(__file__).resolve().parents[1]))

from thudarkatha import create_app
from thudarkatha.config import TestConfig
from thudarkatha.extensions import db
from thudarkatha.models import Book, Character, StoryPart, User
from thudarkatha.services import parts as parts_service
from thudarkatha.services.text_client import CLIENT_INSTANCE_KEY

FOUR_WORDS = "one two three four"


class FakeClient:
    def __init__(self, reply=FOUR_WORDS):
        self.reply = reply
        self.calls = 0

    def generate(self, prompt, **_):
        self.calls += 1
        return self.reply


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    app.config.update(PART_TARGET_WORDS=10, PART_CHUNK_WORDS=4)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture
def user(app_instance):
    user = User(email="user@example.com", display_name="Test User")
    user.set_password("password123")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def book(app_instance, user):
    book = Book(name="Kadal", premise="A fisherman finds a letter.", owner=user)
    db.session.add(book)
    db.session.commit()
    return book


def _login(client, user):
    response = client.post("/login", data={"email": user.email, "password": "password123"})
    assert response.status_code == 200


def test_register_and_login_flow(client, app_instance):
    response = client.post(
        "/register",
        data={
            "display_name": "New Writer",
            "email": "New@Example.com",
            "password": "password123",
            "confirm_password": "password123",
        },
    )
    assert response.status_code == 201
    assert User.query.filter_by(email="new@example.com").count() == 1

    bad = client.post("/login", data={"email": "new@example.com", "password": "wrong-password"})
    assert bad.status_code == 401

    good = client.post("/login", data={"email": "new@example.com", "password": "password123"})
    assert good.status_code == 200
    assert good.get_json()["user"]["display_name"] == "New Writer"


def test_book_routes_require_login(client, book):
    response = client.get(f"/books/{book.id}")

    assert response.status_code == 401
    assert response.get_json() == {"error": "Sign in to continue."}


def test_dashboard_creates_and_lists_books(client, user):
    _login(client, user)

    created = client.post("/dashboard", json={"name": "Mazha", "genres": ["Drama", "Romance"]})
    assert created.status_code == 201
    assert created.get_json()["book"]["genres"] == ["Drama", "Romance"]

    missing_name = client.post("/dashboard", json={"premise": "No name"})
    assert missing_name.status_code == 400

    listing = client.get("/dashboard").get_json()
    assert [entry["name"] for entry in listing["books"]] == ["Mazha"]


def test_other_users_cannot_open_a_book(client, book):
    stranger = User(email="stranger@example.com", display_name="Stranger")
    stranger.set_password("password123")
    db.session.add(stranger)
    db.session.commit()
    _login(client, stranger)

    response = client.get(f"/books/{book.id}")

    assert response.status_code == 403


def test_update_metadata_only_changes_sent_fields(client, user, book):
    _login(client, user)

    response = client.patch(
        f"/books/{book.id}",
        json={"theme": "Loss", "pov": "Omniscient", "genres": ["Mystery"]},
    )

    assert response.status_code == 200
    data = response.get_json()["book"]
    assert data["theme"] == "Loss"
    assert data["pov"] == "Omniscient"
    assert data["genres"] == ["Mystery"]
    assert data["premise"] == "A fisherman finds a letter."

    invalid = client.patch(f"/books/{book.id}", json={"pov": "Second Person"})
    assert invalid.status_code == 400


def test_story_arc_and_part_save(client, user, book):
    _login(client, user)

    arc = client.post(f"/books/{book.id}/arc", json={"total_parts": 3})
    assert [part["part_number"] for part in arc.get_json()["parts"]] == [1, 2, 3]

    saved = client.put(
        f"/books/{book.id}/parts/2",
        json={"summary": "The letter is opened.", "writing_style": "poetic"},
    )
    assert saved.status_code == 200
    assert saved.get_json()["part"]["writing_style"] == "poetic"

    bad_style = client.put(f"/books/{book.id}/parts/2", json={"writing_style": "shouty"})
    assert bad_style.status_code == 400

    listing = client.get(f"/books/{book.id}/parts").get_json()["parts"]
    assert listing[1]["summary"] == "The letter is opened."
    assert listing[1]["status"] == {"state": "idle"}


def test_develop_route_returns_text_and_status(client, user, book, monkeypatch):
    fake = FakeClient()
    monkeypatch.setattr(parts_service, "get_text_client", lambda: fake)
    _login(client, user)
    client.put(f"/books/{book.id}/parts/1", json={"summary": "The letter is opened."})

    response = client.post(f"/books/{book.id}/parts/1/develop")

    assert response.status_code == 200
    data = response.get_json()
    assert data["generation"]["reached_target"] is True
    assert data["generation"]["word_count"] == 12
    assert data["part"]["word_count"] == 12
    assert fake.calls == 3

    status = client.get(f"/books/{book.id}/parts/status").get_json()["statuses"]
    assert status["1"]["state"] == "done"
    assert status["1"]["progress"]["percent"] == 100


def test_develop_without_summary_is_a_bad_request(client, user, book, monkeypatch):
    monkeypatch.setattr(parts_service, "get_text_client", lambda: FakeClient())
    _login(client, user)
    client.put(f"/books/{book.id}/parts/1", json={"title": "Opening"})

    response = client.post(f"/books/{book.id}/parts/1/develop")

    assert response.status_code == 400


def test_batch_develop_route(client, user, book, monkeypatch):
    monkeypatch.setattr(parts_service, "get_text_client", lambda: FakeClient())
    _login(client, user)
    for number in (1, 2):
        client.put(f"/books/{book.id}/parts/{number}", json={"summary": f"Summary {number}"})

    response = client.post(f"/books/{book.id}/parts/develop", json={"part_numbers": [1, 2]})

    assert response.status_code == 200
    results = response.get_json()["results"]
    assert set(results) == {"1", "2"}
    assert all(entry["generation"]["reached_target"] for entry in results.values())

    empty = client.post(f"/books/{book.id}/parts/develop", json={"part_numbers": []})
    assert empty.status_code == 400


def test_cancel_without_running_generation_conflicts(client, user, book):
    _login(client, user)

    response = client.post(f"/books/{book.id}/parts/1/cancel")

    assert response.status_code == 409


def test_missing_api_key_is_reported_as_unavailable(client, user, book, app_instance):
    app_instance.config["GEMINI_API_KEY"] = ""
    app_instance.config.pop(CLIENT_INSTANCE_KEY, None)
    _login(client, user)
    client.put(f"/books/{book.id}/parts/1", json={"summary": "The letter is opened."})

    response = client.post(f"/books/{book.id}/parts/1/develop")

    assert response.status_code == 503
    assert StoryPart.query.filter_by(book_id=book.id, part_number=1).one().content is None


def test_export_docx_and_txt(client, user, book):
    _login(client, user)
    client.put(f"/books/{book.id}/parts/1", json={"summary": "Opening", "content": "Ravi waited.\n\nThe sea was calm."})

    docx_response = client.get(f"/books/{book.id}/export?format=docx")
    assert docx_response.status_code == 200
    assert "Kadal.docx" in docx_response.headers["Content-Disposition"]
    document = docx.Document(io.BytesIO(docx_response.data))
    assert "Ravi waited." in [paragraph.text for paragraph in document.paragraphs]

    txt_response = client.get(f"/books/{book.id}/export?format=txt")
    assert txt_response.status_code == 200
    assert "The sea was calm." in txt_response.get_data(as_text=True)

    unknown = client.get(f"/books/{book.id}/export?format=pdf")
    assert unknown.status_code == 400


def test_delete_book_cascades(client, user, book):
    _login(client, user)
    client.post(f"/books/{book.id}/arc", json={"total_parts": 2})

    response = client.delete(f"/books/{book.id}")

    assert response.status_code == 200
    assert Book.query.count() == 0
    assert StoryPart.query.count() == 0


def test_login_remember_flag_sets_remember_cookie(client, user):
    forgetful = client.post("/login", json={"email": "USER@example.com ", "password": "password123", "remember": False})
    assert forgetful.status_code == 200
    assert not any("remember_token" in cookie for cookie in forgetful.headers.getlist("Set-Cookie"))

    client.post("/logout")
    remembered = client.post("/login", json={"email": user.email, "password": "password123", "remember": True})
    assert any("remember_token" in cookie for cookie in remembered.headers.getlist("Set-Cookie"))


def test_character_crud_accepts_connection_lists(client, user, book):
    _login(client, user)

    created = client.post(
        f"/books/{book.id}/characters",
        json={"name": "Ravi", "role": "Fisherman", "connections": ["Meera", " ", "Anu"]},
    )
    assert created.status_code == 201
    character_id = created.get_json()["character"]["id"]
    assert created.get_json()["character"]["connections"] == ["Meera", "Anu"]

    updated = client.patch(f"/books/{book.id}/characters/{character_id}", json={"connections": "Meera"})
    assert updated.get_json()["character"]["connections"] == ["Meera"]
    assert updated.get_json()["character"]["role"] == "Fisherman"

    nameless = client.patch(f"/books/{book.id}/characters/{character_id}", json={"name": ""})
    assert nameless.status_code == 400
    assert db.session.get(Character, character_id).name == "Ravi"


def test_character_roster_count_is_validated(client, user, book):
    _login(client, user)

    response = client.post(f"/books/{book.id}/characters/generate", json={"count": 0})

    assert response.status_code == 400


def test_batch_develop_rejects_non_integer_parts(client, user, book):
    _login(client, user)

    response = client.post(f"/books/{book.id}/parts/develop", json={"part_numbers": ["first"]})

    assert response.status_code == 400
    assert "part_numbers" in response.get_json()["fields"]


def _fail_commits(monkeypatch):
    def _commit():
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(db.session, "commit", _commit)


def test_develop_route_returns_text_when_save_fails(client, user, book, monkeypatch):
    monkeypatch.setattr(parts_service, "get_text_client", lambda: FakeClient())
    _login(client, user)
    client.put(f"/books/{book.id}/parts/1", json={"summary": "The letter is opened."})
    _fail_commits(monkeypatch)

    response = client.post(f"/books/{book.id}/parts/1/develop")

    assert response.status_code == 200
    data = response.get_json()
    assert data["text"] == "\n\n".join([FOUR_WORDS] * 3)
    assert data["error"] == "Part 1 could not be saved."
    assert data["part"]["content"] == ""


def test_summary_route_returns_unsaved_summaries(client, user, book, monkeypatch):
    monkeypatch.setattr(parts_service, "get_text_client", lambda: FakeClient("A short summary."))
    _login(client, user)
    _fail_commits(monkeypatch)

    response = client.post(f"/books/{book.id}/parts/summaries", json={"start": 0, "end": 2})

    assert response.status_code == 200
    data = response.get_json()
    assert data["unsaved"] == {"1": "A short summary."}
    assert data["failed_part"] == 1
    assert data["generated"] == []
