from datetime import date, timedelta

import pytest

from accounts import set_blocked
from billing import generate_bill
from models import db, Bill, Payment, StudentWarning, Token, User
from conftest import PASSWORD, add_menu_item, login, make_token


@pytest.fixture
def tomorrow():
    return date.today() + timedelta(days=1)


def test_anonymous_access(client, hall):
    assert client.get("/").status_code == 200

    resp = client.get("/student/dashboard")
    assert resp.status_code == 302
    assert "/login" in resp.headers["Location"]

    resp = client.get("/api/tokens?date=2025-03-01&meal_type=lunch")
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "login required"}


def test_login_and_roles(client, student, manager):
    resp = login(client, student, "wrong-password")
    assert resp.status_code == 401
    assert b"Invalid email" in resp.data

    resp = login(client, student)
    assert resp.headers["Location"].endswith("/student/dashboard")
    assert b"Karim Student" in client.get("/student/dashboard").data
    assert client.get("/manager/dashboard").status_code == 403
    assert client.get("/").status_code == 302

    client.get("/logout")
    resp = login(client, manager)
    assert resp.headers["Location"].endswith("/manager/dashboard")
    assert client.get("/manager/dashboard").status_code == 200
    assert client.get("/student/bills").status_code == 403


def test_register_page(client, hall):
    form = {
        "name": "Nadia", "email": "nadia@mess.local", "password": PASSWORD, "confirm_password": PASSWORD,
        "registration_no": "2021-010", "hall_card_no": "HC-010", "hall_id": str(hall.hall_id),
    }
    resp = client.post("/register", data=dict(form, confirm_password="other1"))
    assert resp.status_code == 400
    assert b"Passwords do not match" in resp.data

    resp = client.post("/register", data=form)
    assert resp.status_code == 302
    assert User.query.filter_by(email="nadia@mess.local").count() == 1


def test_password_reset_pages(client, student, monkeypatch):
    import otp

    codes = []
    monkeypatch.setattr(otp, "send_mail", lambda to, subject, body: codes.append(body.split("OTP is: ")[1][:6]))

    resp = client.post("/password/forgot", data={"email": student.email})
    assert resp.status_code == 302
    resp = client.post("/password/reset", data={"email": student.email, "otp": "bad", "new_password": "fresh-pass"})
    assert resp.status_code == 400
    resp = client.post("/password/reset", data={"email": student.email, "otp": codes[0], "new_password": "fresh-pass"})
    assert resp.status_code == 302
    assert login(client, student, "fresh-pass").status_code == 302


def test_api_token_to_payment_flow(client, hall, manager, student, tomorrow):
    day, month = tomorrow.isoformat(), tomorrow.strftime("%Y-%m")

    login(client, manager)
    resp = client.post("/manager/menu", data={
        "meal_type": "lunch", "date": day,
        "item_name": ["Rice", "Chicken Curry", ""], "price": ["20", "70", ""], "menu_id": ["", "", ""],
        "available_0": "on", "available_1": "on",
    })
    assert resp.status_code == 302
    client.get("/logout")

    login(client, student)
    items = client.get(f"/api/menu?date={day}&meal_type=lunch").get_json()["items"]
    assert [i["item_name"] for i in items] == ["Rice", "Chicken Curry"]
    resp = client.post("/api/tokens", json={
        "date": day, "meal_type": "lunch",
        "items": [{"menu_id": items[0]["menu_id"], "quantity": 2}, {"menu_id": items[1]["menu_id"]}],
    })
    assert resp.status_code == 201
    token = resp.get_json()
    assert token["status"] == "pending"
    assert resp.get_json()["total"] == 110.0
    assert client.post("/api/tokens", json={"date": day, "meal_type": "lunch", "items": []}).status_code == 400
    client.get("/logout")

    login(client, manager)
    listed = client.get(f"/api/tokens?date={day}&meal_type=lunch").get_json()["tokens"]
    assert [(t["token"], t["user"]["name"]) for t in listed] == [(token["token"], "Karim Student")]
    resp = client.patch(f"/api/tokens/{token['token_id']}", json={"status": "approved"})
    assert resp.get_json()["status"] == "approved"
    client.get("/logout")

    login(client, student)
    summary = client.get(f"/api/bills/{month}").get_json()
    assert summary["total_amount"] == 110.0
    assert summary["bill"] is None
    bill = client.post(f"/api/bills/{month}/generate").get_json()
    assert bill["total_amount"] == 110.0 and bill["status"] == "unpaid"

    resp = client.post(f"/api/bills/{bill['bill_id']}/pay", json={"method": "bkash", "amount": 100})
    assert resp.status_code == 400
    resp = client.post(f"/api/bills/{bill['bill_id']}/pay", json={"method": "bkash", "amount": 110})
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["bill"]["status"] == "paid"
    assert body["payment"]["transaction_id"].startswith("TXN")

    resp = client.post(f"/api/bills/{bill['bill_id']}/pay", json={"method": "bkash"})
    assert resp.status_code == 400
    assert "already paid" in resp.get_json()["error"]
    assert Payment.query.count() == 1


def test_manager_cannot_approve_other_hall_token(client, manager, outsider, tomorrow):
    token = make_token(outsider, tomorrow, status="pending")
    login(client, manager)

    assert client.patch(f"/api/tokens/{token.token_id}", json={"status": "approved"}).status_code == 403
    db.session.expire_all()
    assert db.session.get(Token, token.token_id).status == "pending"


def test_student_menu_form(client, hall, student, tomorrow):
    rice = add_menu_item(hall, tomorrow, "lunch", "Rice", 20)
    login(client, student)

    page = client.get(f"/student/menu?meal_type=lunch&date={tomorrow.isoformat()}")
    assert f'name="qty_{rice.menu_id}"'.encode() in page.data

    resp = client.post("/student/menu", data={
        "meal_type": "lunch", "date": tomorrow.isoformat(), f"qty_{rice.menu_id}": "3",
    })
    assert resp.status_code == 200
    token = Token.query.filter_by(user_id=student.user_id).one()
    assert token.token.encode() in resp.data
    assert token.total == 60

    resp = client.post("/student/menu", data={"meal_type": "lunch", "date": tomorrow.isoformat()})
    assert resp.status_code == 302
    assert Token.query.count() == 1


def test_manager_token_status_form(client, manager, student, tomorrow):
    token = make_token(student, tomorrow, status="cancelled")
    login(client, manager)

    resp = client.post("/manager/tokens", data={"token_id": token.token_id, "new_status": "approved"})
    assert resp.status_code == 302
    db.session.expire_all()
    assert db.session.get(Token, token.token_id).status == "cancelled"

    page = client.get(f"/manager/tokens?meal_type=lunch&date={tomorrow.isoformat()}&code=9999")
    assert b"No active token 9999" in page.data


def test_student_pays_from_bills_page(client, student):
    make_token(student, date(2025, 3, 2), items=[("Rice", 20, 2)])
    bill = generate_bill(student, "2025-03")
    login(client, student)

    page = client.get("/student/bills?month=March%202025")
    assert b"Bill #" in page.data and b"40.00" in page.data
    assert client.get(f"/student/bills/{bill.bill_id}/pay").status_code == 200

    resp = client.post(f"/student/bills/{bill.bill_id}/pay", data={"method": "paypal"})
    assert resp.headers["Location"].endswith(f"/student/bills/{bill.bill_id}/pay")

    resp = client.post(f"/student/bills/{bill.bill_id}/pay", data={"method": "rocket", "amount": "40"})
    payment = Payment.query.one()
    assert resp.headers["Location"].endswith(f"/student/payments/{payment.payment_id}")
    assert payment.transaction_id.encode() in client.get(f"/student/payments/{payment.payment_id}").data
    db.session.expire_all()
    assert db.session.get(Bill, bill.bill_id).status == "paid"


def test_other_students_bill_is_hidden(client, student, other_student):
    make_token(student, date(2025, 3, 2))
    bill = generate_bill(student, "2025-03")
    login(client, other_student)

    assert client.get(f"/student/bills/{bill.bill_id}/pay").status_code == 404
    assert client.post(f"/api/bills/{bill.bill_id}/pay", json={"method": "bkash"}).status_code == 403


def test_manager_bills_generate_and_warn(client, manager, student):
    make_token(student, date(2025, 3, 2), items=[("Rice", 20, 2)])
    login(client, manager)

    resp = client.post("/manager/bills", data={"month": "2025-03", "action": "generate"})
    assert resp.status_code == 302
    page = client.get("/manager/bills?month=2025-03&status=unpaid")
    assert b"Karim Student" in page.data and b"40.00" in page.data

    client.post("/manager/bills", data={"month": "2025-03", "action": "warn_all"})
    warning = StudentWarning.query.one()
    assert warning.student_id == student.user_id
    assert warning.bill.bill_month == "2025-03"

    client.get("/logout")
    login(client, student)
    assert b"Pay within 10 days" in client.get("/student/warnings").data


def test_api_token_adds_up_repeated_items(client, hall, student, tomorrow):
    rice = add_menu_item(hall, tomorrow, "lunch", "Rice", 20)
    login(client, student)

    resp = client.post("/api/tokens", json={
        "date": tomorrow.isoformat(), "meal_type": "lunch",
        "items": [{"menu_id": rice.menu_id, "quantity": 1}, {"menu_id": rice.menu_id, "quantity": 2}],
    })

    assert resp.status_code == 201
    body = resp.get_json()
    assert [(i["item_name"], i["quantity"]) for i in body["token_items"]] == [("Rice", 3)]
    assert body["total"] == 60.0


@pytest.mark.parametrize("items, status", [
    ("mapping", 201),
    ("rice", 400),
    (["rice"], 400),
    ([{"menu_id": "x", "quantity": 1}], 400),
    (42, 400),
])
def test_api_token_item_shapes(client, hall, student, tomorrow, items, status):
    rice = add_menu_item(hall, tomorrow, "lunch", "Rice", 20)
    if items == "mapping":
        items = {str(rice.menu_id): 2}
    login(client, student)

    resp = client.post("/api/tokens", json={"date": tomorrow.isoformat(), "meal_type": "lunch", "items": items})

    assert resp.status_code == status
    if status == 400:
        assert "error" in resp.get_json()
    else:
        assert resp.get_json()["total"] == 40.0


def test_api_token_rejects_non_object_body(client, student):
    login(client, student)
    resp = client.post("/api/tokens", json=["lunch"])
    assert resp.status_code == 400
    assert "error" in resp.get_json()


def test_blocked_student_can_log_in_and_pay(client, manager, student):
    make_token(student, date(2025, 3, 2), items=[("Rice", 20, 2)])
    bill = generate_bill(student, "2025-03")
    set_blocked(manager, student, True)

    resp = login(client, student)
    assert resp.headers["Location"].endswith("/student/dashboard")
    assert b"Your account is blocked" in client.get("/student/dashboard").data

    resp = client.post(f"/student/bills/{bill.bill_id}/pay", data={"method": "bkash", "amount": "40"})
    payment = Payment.query.one()
    assert resp.headers["Location"].endswith(f"/student/payments/{payment.payment_id}")
    db.session.expire_all()
    assert db.session.get(Bill, bill.bill_id).status == "paid"


@pytest.mark.parametrize("url, field", [
    ("/manager/tokens", "token_id"),
    ("/manager/warnings", "student_id"),
])
def test_manager_forms_reject_junk_ids(client, manager, url, field):
    login(client, manager)
    assert client.post(url, data={field: "abc"}).status_code == 400


def test_manager_warn_rejects_junk_bill_id(client, manager):
    login(client, manager)
    resp = client.post("/manager/bills", data={"month": "2025-03", "action": "warn", "bill_id": "x"})
    assert resp.status_code == 400
