"""
HTTP surface: OTP signup, the handoff flow over the API and the error body shape.
"""
from conftest import auth_headers

from foodlink.utils.qr import build_handoff_qr_payload


def _signup(client, phone, name, user_type):
    r = client.post("/auth/otp/request", json={"phone": phone})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["dev_otp"]
    r = client.post(
        "/auth/otp/verify",
        json={"request_id": body["request_id"], "otp": body["dev_otp"], "name": name, "user_type": user_type},
    )
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}, r.json()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_otp_signup_and_me(client):
    headers, body = _signup(client, "9876500001", "Ravi", "Volunteer")
    assert body["role"] == "driver"

    r = client.get("/me", headers=headers)
    assert r.status_code == 200
    assert r.json() == {"id": body["user_id"], "name": "Ravi", "organization_name": None, "role": "driver"}


def test_otp_wrong_code_and_incomplete_signup(client):
    req = client.post("/auth/otp/request", json={"phone": "9876500002"}).json()
    # Dev OTPs are six digits with no leading zero.
    r = client.post("/auth/otp/verify", json={"request_id": req["request_id"], "otp": "000000"})
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "INVALID_OTP"

    req = client.post("/auth/otp/request", json={"phone": "9876500003"}).json()
    r = client.post("/auth/otp/verify", json={"request_id": req["request_id"], "otp": req["dev_otp"]})
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "SIGNUP_INCOMPLETE"


def test_requires_bearer_token(client):
    assert client.get("/me").status_code == 401
    assert client.get("/me", headers={"Authorization": "Bearer nonsense"}).status_code == 401


def test_directory_lists_everyone_but_me(client, make_user):
    canteen = make_user("Main Canteen", "canteen")
    make_user("City Food Bank", "ngo")
    make_user("Ravi", "volunteer")
    make_user("Asha", "driver")

    r = client.get("/directory", headers=auth_headers(canteen))
    assert sorted(u["name"] for u in r.json()["users"]) == ["Asha", "City Food Bank", "Ravi"]

    r = client.get("/directory", params={"role": "driver"}, headers=auth_headers(canteen))
    assert sorted(u["name"] for u in r.json()["users"]) == ["Asha", "Ravi"]
    assert {u["role"] for u in r.json()["users"]} == {"driver"}


def test_handoff_over_http(client, make_user):
    canteen = make_user("Main Canteen", "canteen")
    ngo = make_user("City Food Bank", "ngo")
    driver = make_user("Ravi", "driver")

    r = client.post(
        "/surplus",
        json={
            "food_name": "Veg pulao",
            "category": "vegetarian",
            "quantity": 12.5,
            "unit": "kg",
            "pickup_location": "Block A kitchen",
        },
        headers=auth_headers(canteen),
    )
    assert r.status_code == 201, r.text
    item = r.json()
    sid = item["id"]
    assert item["quantity"] == 12.5
    assert item["status"] == item["effective_status"] == "available"

    # Only NGOs claim.
    assert client.post(f"/surplus/{sid}/claim", headers=auth_headers(driver)).status_code == 403

    available = client.get("/surplus/available", headers=auth_headers(ngo)).json()["items"]
    assert [i["id"] for i in available] == [sid]

    r = client.post(f"/surplus/{sid}/claim", headers=auth_headers(ngo))
    assert r.status_code == 200
    assert r.json()["claimer_name"] == "City Food Bank"

    r = client.post(f"/surplus/{sid}/claim", headers=auth_headers(ngo))
    assert r.status_code == 409
    assert r.json()["detail"] == {"code": "ALREADY_CLAIMED", "message": "already claimed"}

    r = client.post(f"/surplus/{sid}/assign-driver", headers=auth_headers(driver))
    assert r.status_code == 200
    code = r.json()["delivery_code"]
    assert len(code) == 4 and code.isdigit()
    assert r.json()["handoff_qr_png_base64"]

    # Canteen and NGO never see the code.
    assert client.get(f"/surplus/{sid}", headers=auth_headers(canteen)).json()["delivery_code"] is None
    assert client.get(f"/surplus/{sid}", headers=auth_headers(ngo)).json()["delivery_code"] is None

    wrong = "0000" if code != "0000" else "1111"
    r = client.post(f"/surplus/{sid}/verify-pickup", json={"code": wrong}, headers=auth_headers(canteen))
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "INCORRECT_CODE"

    r = client.post(f"/surplus/{sid}/verify-delivery", json={"code": code}, headers=auth_headers(ngo))
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "PICKUP_NOT_CONFIRMED"

    qr_payload = build_handoff_qr_payload(surplus_id=sid, code=code)
    r = client.post(f"/surplus/{sid}/verify-pickup", json={"qr_payload": qr_payload}, headers=auth_headers(canteen))
    assert r.status_code == 200, r.text
    assert r.json()["driver_pickup_verified_at"]

    r = client.post(f"/surplus/{sid}/verify-delivery", json={"code": f" {code} "}, headers=auth_headers(ngo))
    assert r.status_code == 200
    assert r.json()["status"] == "collected"

    stats = client.get("/surplus/stats/today", headers=auth_headers(driver)).json()
    assert stats["completed_today"] == 1


def test_empty_code_is_400(client, make_user):
    canteen = make_user("Main Canteen", "canteen")
    r = client.post("/surplus/whatever/verify-pickup", json={"code": ""}, headers=auth_headers(canteen))
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "CODE_REQUIRED"


def test_delete_and_not_found(client, make_user):
    canteen = make_user("Main Canteen", "canteen")
    r = client.post(
        "/surplus",
        json={"food_name": "Idli", "category": "vegan", "quantity": 30, "unit": "pcs", "pickup_location": "Hall"},
        headers=auth_headers(canteen),
    )
    sid = r.json()["id"]
    assert client.delete(f"/surplus/{sid}", headers=auth_headers(canteen)).status_code == 204
    r = client.get(f"/surplus/{sid}", headers=auth_headers(canteen))
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "SURPLUS_NOT_FOUND"


def test_create_rejects_zero_quantity(client, make_user):
    canteen = make_user("Main Canteen", "canteen")
    r = client.post(
        "/surplus",
        json={"food_name": "Rice", "category": "vegan", "quantity": 0, "unit": "kg", "pickup_location": "Hall"},
        headers=auth_headers(canteen),
    )
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "INVALID_QUANTITY"


def test_chat_over_http(client, make_user):
    canteen = make_user("Main Canteen", "canteen")
    ngo = make_user("City Food Bank", "ngo")

    r = client.post("/chats", json={"other_user_id": ngo.id}, headers=auth_headers(canteen))
    assert r.status_code == 200, r.text
    chat = r.json()
    assert chat["other_user_role"] == "ngo"
    assert chat["can_send"] is False

    r = client.post(f"/chats/{chat['id']}/messages", json={"text": "hello"}, headers=auth_headers(canteen))
    assert r.status_code == 403
    assert r.json()["detail"]["message"] == "Chat restricted to active deliveries."

    r = client.post(
        "/surplus",
        json={"food_name": "Chapati", "category": "vegetarian", "quantity": 50, "unit": "pcs", "pickup_location": "Hall"},
        headers=auth_headers(canteen),
    )
    client.post(f"/surplus/{r.json()['id']}/claim", headers=auth_headers(ngo))

    r = client.post(f"/chats/{chat['id']}/messages", json={"text": "Pickup at 5?"}, headers=auth_headers(canteen))
    assert r.status_code == 201
    assert r.json()["sender_role"] == "canteen"

    msgs = client.get(f"/chats/{chat['id']}/messages", headers=auth_headers(ngo)).json()["messages"]
    assert [m["text"] for m in msgs] == ["Pickup at 5?"]

    listed = client.get("/chats", headers=auth_headers(ngo)).json()["chats"]
    assert listed[0]["last_message"] == "Pickup at 5?"
    assert listed[0]["can_send"] is True


def test_create_rejects_non_finite_quantity(client, make_user):
    canteen = make_user("Main Canteen", "canteen")
    body = '{"food_name": "Rice", "category": "vegan", "quantity": NaN, "unit": "kg", "pickup_location": "Hall"}'
    headers = {**auth_headers(canteen), "Content-Type": "application/json"}
    r = client.post("/surplus", content=body, headers=headers)
    assert r.status_code == 422
    assert client.get("/surplus/mine", headers=auth_headers(canteen)).json()["items"] == []
