from conftest import auth_header


def send(client, token, **payload):
    body = {"sender": "u1", "receiver": "u2", "text": "hello"}
    body.update(payload)
    return client.post("/messages", json=body, headers=auth_header(token))


def test_send_and_read_history(client, tokens):
    first = send(client, tokens["u1"], text="hi bob", client_temp_id="tmp_a")
    assert first.status_code == 201
    second = send(client, tokens["u2"], sender="u2", receiver="u1", text="hi alice")
    assert second.status_code == 201

    for reader, path in (("u1", "/messages/u1/u2"), ("u2", "/messages/u2/u1")):
        response = client.get(path, headers=auth_header(tokens[reader]))
        assert response.status_code == 200
        texts = [m["text"] for m in response.json()["messages"]]
        assert texts == ["hi bob", "hi alice"]

    body = client.get("/messages/u1/u2", headers=auth_header(tokens["u1"])).json()
    assert body["receiver"] == {"id": "u2", "username": "bob", "profile_picture": ""}
    assert body["messages"][0]["client_temp_id"] == "tmp_a"


def test_history_with_unknown_peer_is_empty(client, tokens):
    body = client.get("/messages/u1/ghost", headers=auth_header(tokens["u1"])).json()
    assert body == {"receiver": None, "messages": []}


def test_history_requires_participant(client, tokens):
    send(client, tokens["u1"])
    response = client.get("/messages/u1/u2", headers=auth_header(tokens["u3"]))
    assert response.status_code == 403


def test_send_requires_token(client):
    response = client.post("/messages", json={"sender": "u1", "receiver": "u2", "text": "x"})
    assert response.status_code == 401


def test_cannot_send_as_someone_else(client, tokens):
    assert send(client, tokens["u3"]).status_code == 403


def test_send_validation(client, tokens):
    assert send(client, tokens["u1"], text="  ").status_code == 400
    assert send(client, tokens["u1"], receiver="bad id").status_code == 400
    assert send(client, tokens["u1"], receiver="ghost").status_code == 404


def test_repeated_temp_id_returns_first_record(client, tokens, app):
    first = send(client, tokens["u1"], client_temp_id="tmp_same").json()
    again = send(client, tokens["u1"], client_temp_id="tmp_same", text="changed").json()
    assert again["id"] == first["id"]
    assert again["text"] == "hello"
    assert len(app.state.message_store.list_between("u1", "u2")) == 1


def test_store_failure_is_reported(client, tokens, app, monkeypatch):
    def broken_create(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(app.state.message_store, "create", broken_create)
    response = send(client, tokens["u1"])
    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to save message"


def test_delete_by_sender(client, tokens, app):
    message = send(client, tokens["u1"], client_temp_id="tmp_del").json()
    response = client.delete(f"/messages/{message['id']}", headers=auth_header(tokens["u1"]))
    assert response.status_code == 200
    assert response.json() == {"id": message["id"], "client_temp_id": "tmp_del"}
    assert app.state.message_store.find_by_id(message["id"]) is None

    again = client.delete(f"/messages/{message['id']}", headers=auth_header(tokens["u1"]))
    assert again.status_code == 404


def test_delete_rules(client, tokens):
    message = send(client, tokens["u1"]).json()
    assert client.delete(f"/messages/{message['id']}", headers=auth_header(tokens["u2"])).status_code == 403
    assert client.delete("/messages/no.such.id", headers=auth_header(tokens["u1"])).status_code == 400
    assert client.delete("/messages/missing", headers=auth_header(tokens["u1"])).status_code == 404


def test_upload_image_and_serve_it(client, tokens, upload_dir):
    response = client.post(
        "/messages/upload",
        data={"receiver": "u2", "text": "look", "client_temp_id": "tmp_img"},
        files={"image": ("cat.png", b"\x89PNG fake", "image/png")},
        headers=auth_header(tokens["u1"]),
    )
    assert response.status_code == 201
    record = response.json()
    assert record["image"].startswith("/uploads/image-")
    assert record["image"].endswith(".png")
    assert record["voice"] is None

    served = client.get(record["image"])
    assert served.status_code == 200
    assert served.content == b"\x89PNG fake"

    client.delete(f"/messages/{record['id']}", headers=auth_header(tokens["u1"]))
    assert list(upload_dir.iterdir()) == []
    assert client.get(record["image"]).status_code == 404


def test_upload_voice_without_text(client, tokens):
    response = client.post(
        "/messages/upload",
        data={"receiver": "u2"},
        files={"voice": ("note.webm", b"voice-bytes", "audio/webm")},
        headers=auth_header(tokens["u1"]),
    )
    assert response.status_code == 201
    assert response.json()["voice"].startswith("/uploads/voice-")


def test_upload_rejections(client, tokens, upload_dir):
    headers = auth_header(tokens["u1"])
    empty = client.post("/messages/upload", data={"receiver": "u2"}, headers=headers)
    assert empty.status_code == 400

    not_image = client.post(
        "/messages/upload",
        data={"receiver": "u2"},
        files={"image": ("notes.txt", b"text", "text/plain")},
        headers=headers,
    )
    assert not_image.status_code == 400

    too_big = client.post(
        "/messages/upload",
        data={"receiver": "u2"},
        files={"image": ("big.png", b"x" * 2048, "image/png")},
        headers=headers,
    )
    assert too_big.status_code == 413

    unknown = client.post(
        "/messages/upload",
        data={"receiver": "ghost"},
        files={"image": ("cat.png", b"png", "image/png")},
        headers=headers,
    )
    assert unknown.status_code == 404
    assert not upload_dir.exists() or list(upload_dir.iterdir()) == []


def test_upload_path_traversal_is_not_served(client):
    assert client.get("/uploads/..%2Fchat.db").status_code == 404
