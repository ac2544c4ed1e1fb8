def _notes(client):
    r = client.get("/api/notes")
    assert r.status_code == 200
    return r.json()


def test_empty_page_shows_create_mode(client):
    r = client.get("/")
    assert r.status_code == 200
    assert "No notes yet." in r.text
    assert "Create Note" in r.text
    assert "Cancel" not in r.text


def test_create_note_from_form(client):
    r = client.post("/submit", data={"title": "Groceries", "content": "milk, eggs"})
    assert r.status_code == 200
    assert "Groceries" in r.text
    assert "milk, eggs" in r.text
    assert "No notes yet." not in r.text

    notes = _notes(client)
    assert [n["title"] for n in notes] == ["Groceries"]


def test_blank_title_opens_alert_and_creates_nothing(client):
    r = client.post("/submit", data={"title": "   ", "content": "body"})
    assert "Title required" in r.text
    assert 'value="ok"' in r.text
    assert _notes(client) == []

    r = client.post("/dialog", data={"answer": "ok"})
    assert "Title required" not in r.text


def test_edit_save_and_cancel(client):
    client.post("/submit", data={"title": "draft", "content": "v1"})
    note_id = _notes(client)[0]["id"]

    r = client.post(f"/notes/{note_id}/edit")
    assert ">Save<" in r.text
    assert ">Cancel<" in r.text
    assert 'value="draft"' in r.text

    r = client.post("/cancel")
    assert "Create Note" in r.text
    assert 'value="draft"' not in r.text

    client.post(f"/notes/{note_id}/edit")
    r = client.post("/submit", data={"title": "final", "content": "v2"})
    assert "Create Note" in r.text

    note = _notes(client)[0]
    assert (note["title"], note["content"]) == ("final", "v2")
    assert note["updated_at"] is not None


def test_edit_unknown_note_is_404(client):
    client.get("/")
    r = client.post("/notes/does-not-exist/edit")
    assert r.status_code == 404
    assert r.json()["error"] == "note_not_found"


def test_delete_requires_confirmation(client):
    client.post("/submit", data={"title": "temp", "content": ""})
    note_id = _notes(client)[0]["id"]

    r = client.post(f"/notes/{note_id}/delete")
    assert "Delete this note?" in r.text

    r = client.post("/dialog", data={"answer": "no"})
    assert "Delete this note?" not in r.text
    assert len(_notes(client)) == 1

    client.post(f"/notes/{note_id}/delete")
    r = client.post("/dialog", data={"answer": "yes"})
    assert "No notes yet." in r.text
    assert _notes(client) == []


def test_form_actions_are_ignored_while_dialog_open(client):
    client.post("/submit", data={"title": "keep", "content": ""})
    note_id = _notes(client)[0]["id"]

    client.post(f"/notes/{note_id}/delete")
    r = client.post("/submit", data={"title": "sneaky", "content": ""})
    assert "Delete this note?" in r.text
    assert [n["title"] for n in _notes(client)] == ["keep"]

    client.post("/dialog", data={"answer": "no"})


def test_change_from_api_shows_up_on_page(client):
    client.get("/")
    client.post("/api/notes", json={"title": "from another client", "content": ""})

    r = client.get("/")
    assert "from another client" in r.text

    r = client.get("/fragments/notes")
    assert "from another client" in r.text
    assert "<h1>" not in r.text


def test_newest_note_is_listed_first(client):
    for t in ("first", "second", "third"):
        client.post("/submit", data={"title": t, "content": ""})

    r = client.get("/")
    assert r.text.index("third") < r.text.index("second") < r.text.index("first")


def test_health_and_request_id(client):
    r = client.get("/health", headers={"X-Request-ID": "abc"})
    assert r.json() == {"status": "healthy"}
    assert r.headers["X-Request-ID"] == "abc"
