from conftest import headers
from models import Role


def test_student_writes_to_staff(client, make_user):
    student = make_user()
    staff = make_user(role=Role.STAFF)

    r = client.post("/v1/messages", json={"receiver_id": staff.id, "content": "  washer 2 is leaking  "},
                    headers=headers(student))
    assert r.status_code == 201
    assert r.json()["content"] == "washer 2 is leaking"

    client.post("/v1/messages", json={"receiver_id": student.id, "content": "on it"}, headers=headers(staff))

    convo = client.get(f"/v1/messages/with/{staff.id}", headers=headers(student)).json()
    assert [m["content"] for m in convo] == ["washer 2 is leaking", "on it"]


def test_students_cannot_write_to_students(client, make_user):
    a, b = make_user(), make_user()
    r = client.post("/v1/messages", json={"receiver_id": b.id, "content": "hi"}, headers=headers(a))
    assert r.status_code == 403


def test_message_validation(client, make_user):
    student = make_user()
    staff = make_user(role=Role.STAFF)
    me = headers(student)
    assert client.post("/v1/messages", json={"receiver_id": staff.id, "content": "   "}, headers=me).status_code == 400
    assert client.post("/v1/messages", json={"receiver_id": staff.id, "content": "x" * 2001},
                       headers=me).status_code == 400
    assert client.post("/v1/messages", json={"receiver_id": 4242, "content": "hi"}, headers=me).status_code == 404


def test_unread_count_and_mark_read(client, make_user):
    student = make_user()
    staff = make_user(role=Role.STAFF)
    admin = make_user(role=Role.ADMIN)
    for sender, text in ((staff, "slot moved"), (staff, "sorry"), (admin, "new rules")):
        client.post("/v1/messages", json={"receiver_id": student.id, "content": text}, headers=headers(sender))

    me = headers(student)
    assert client.get("/v1/messages/unread/count", headers=me).json() == {"count": 3}
    assert client.post(f"/v1/messages/read/{staff.id}", headers=me).json() == {"marked": 2}
    assert client.get("/v1/messages/unread/count", headers=me).json() == {"count": 1}

    inbox = client.get("/v1/messages", headers=me).json()
    assert len(inbox) == 3
    assert {m["content"]: m["read"] for m in inbox} == {"slot moved": True, "sorry": True, "new rules": False}


def test_contacts_by_role(client, make_user):
    student = make_user()
    make_user(role=Role.STAFF)
    make_user(role=Role.STAFF)
    contacts = client.get("/v1/users", params={"role": "staff"}, headers=headers(student)).json()
    assert len(contacts) == 2
    assert all(c["role"] == "staff" for c in contacts)
    assert all("email" not in c for c in contacts)
