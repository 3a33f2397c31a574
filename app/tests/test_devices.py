"""
Tests for biometric device endpoints (registry, secret capability, connect, remote enroll)
"""
import pytest
from fastapi import status

from app.core.config import settings
from app.core.security import decrypt_device_secret
from app.models.audit_log import AuditLog
from app.models.biometric_device import BiometricDevice
from app.services.device_transport import DeviceUser


def _payload(**overrides):
    data = {
        "code": "GATE-01",
        "name": "Gate Terminal",
        "device_model": "ZK-K40",
        "ip_address": "10.0.0.15",
        "port": 4370,
        "timeout_ms": 8000,
        "location_name": "Warehouse gate",
    }
    data.update(overrides)
    return data


def test_create_device_hides_secret(client, db, hr_headers):
    """Comm key is stored encrypted and never returned"""
    response = client.post(
        "/api/v1/biometric-devices",
        json=_payload(comm_key="778899"),
        headers=hr_headers
    )

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["code"] == "GATE-01"
    assert data["has_secret"] is True
    assert data["is_online"] is False
    assert "comm_key" not in data
    assert "secret_encrypted" not in data

    device = db.query(BiometricDevice).filter(BiometricDevice.id == data["id"]).first()
    assert device.secret_encrypted != "778899"
    assert decrypt_device_secret(device.secret_encrypted) == "778899"

    audit = db.query(AuditLog).filter(AuditLog.action == "DEVICE_CREATE").first()
    assert audit is not None
    assert "778899" not in str(audit.meta_json)


def test_create_device_defaults(client, hr_headers):
    response = client.post(
        "/api/v1/biometric-devices",
        json=_payload(port=None, timeout_ms=None),
        headers=hr_headers
    )

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["port"] == 4370
    assert data["timeout_ms"] == 15000
    assert data["has_secret"] is False


def test_duplicate_code_rejected_within_company(client, hr_headers, other_company_headers):
    """Device code is unique per company, not globally"""
    first = client.post("/api/v1/biometric-devices", json=_payload(), headers=hr_headers)
    assert first.status_code == status.HTTP_201_CREATED

    duplicate = client.post("/api/v1/biometric-devices", json=_payload(name="Other"), headers=hr_headers)
    assert duplicate.status_code == status.HTTP_400_BAD_REQUEST
    body = duplicate.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["detail"] == "Device code already exists in this company."

    other_company = client.post("/api/v1/biometric-devices", json=_payload(), headers=other_company_headers)
    assert other_company.status_code == status.HTTP_201_CREATED


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"port": 0}, "Port must be between 1 and 65535."),
        ({"port": 70000}, "Port must be between 1 and 65535."),
        ({"inport": 65536}, "Inbound port must be between 1 and 65535."),
        ({"timeout_ms": 999}, "Timeout must be at least 1000 ms."),
        ({"timeout_ms": 60001}, "Timeout must be at most 60000 ms."),
    ],
)
def test_bad_network_parameters_rejected(client, db, hr_headers, overrides, message):
    response = client.post("/api/v1/biometric-devices", json=_payload(**overrides), headers=hr_headers)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == message
    assert db.query(BiometricDevice).count() == 0


def test_update_keeps_secret_when_blank(client, db, hr_headers, device):
    response = client.put(
        f"/api/v1/biometric-devices/{device.id}",
        json=_payload(code=device.code, name="Renamed", comm_key="   "),
        headers=hr_headers
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["name"] == "Renamed"
    assert response.json()["has_secret"] is True
    db.refresh(device)
    assert decrypt_device_secret(device.secret_encrypted) == "123456"


def test_update_rotates_secret(client, db, hr_headers, device):
    response = client.put(
        f"/api/v1/biometric-devices/{device.id}",
        json=_payload(code=device.code, comm_key="4242"),
        headers=hr_headers
    )

    assert response.status_code == status.HTTP_200_OK
    db.refresh(device)
    assert decrypt_device_secret(device.secret_encrypted) == "4242"


def test_clear_flag_wins_over_new_secret(client, db, hr_headers, device):
    response = client.put(
        f"/api/v1/biometric-devices/{device.id}",
        json=_payload(code=device.code, comm_key="4242", clear_comm_key=True),
        headers=hr_headers
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["has_secret"] is False
    db.refresh(device)
    assert device.secret_encrypted is None


def test_update_to_existing_code_rejected(client, hr_headers, device):
    other = client.post("/api/v1/biometric-devices", json=_payload(), headers=hr_headers).json()

    response = client.put(
        f"/api/v1/biometric-devices/{other['id']}",
        json=_payload(code=device.code),
        headers=hr_headers
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_update_unknown_device_not_found(client, hr_headers):
    response = client.put("/api/v1/biometric-devices/999", json=_payload(), headers=hr_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["code"] == "NOT_FOUND"


def test_secret_capability_endpoints(client, db, hr_headers, device):
    response = client.delete(f"/api/v1/biometric-devices/{device.id}/secret", headers=hr_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["has_secret"] is False

    response = client.put(
        f"/api/v1/biometric-devices/{device.id}/secret",
        json={"comm_key": "9090"},
        headers=hr_headers
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["has_secret"] is True
    db.refresh(device)
    assert decrypt_device_secret(device.secret_encrypted) == "9090"


def test_list_and_get_are_company_scoped(client, hr_headers, other_company_headers, device):
    listed = client.get("/api/v1/biometric-devices", headers=hr_headers)
    assert listed.status_code == status.HTTP_200_OK
    assert [d["code"] for d in listed.json()] == ["MAIN-01"]

    assert client.get("/api/v1/biometric-devices", headers=other_company_headers).json() == []
    response = client.get(f"/api/v1/biometric-devices/{device.id}", headers=other_company_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_employee_role_forbidden(client, employee_headers):
    response = client.get("/api/v1/biometric-devices", headers=employee_headers)
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_missing_token_rejected(client):
    response = client.get("/api/v1/biometric-devices")
    assert response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN)


def test_connect_success_marks_online(client, db, hr_headers, device, transport):
    response = client.post(f"/api/v1/biometric-devices/{device.id}/connect", headers=hr_headers)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["is_online"] is True
    assert data["last_online_at"] is not None
    assert transport.calls == ["health_check"]
    # Transport receives the decrypted key and the default inbound port
    assert transport.last_params.comm_key == "123456"
    assert transport.last_params.inport == 5200


@pytest.mark.parametrize(
    "kind, http_status",
    [
        ("UNREACHABLE", status.HTTP_502_BAD_GATEWAY),
        ("AUTH_REJECTED", status.HTTP_502_BAD_GATEWAY),
        ("TIMEOUT", status.HTTP_504_GATEWAY_TIMEOUT),
    ],
)
def test_connect_failure_marks_offline(client, db, hr_headers, device, transport, kind, http_status):
    device.is_online = True
    db.commit()
    transport.fail(kind, f"{kind} reason")

    response = client.post(f"/api/v1/biometric-devices/{device.id}/connect", headers=hr_headers)

    assert response.status_code == http_status
    body = response.json()
    assert body["code"] == f"DEVICE_{kind}"
    assert body["detail"] == f"{kind} reason"
    db.refresh(device)
    assert device.is_online is False
    assert device.last_online_at is None
    # Single attempt, no retry
    assert transport.calls == ["health_check"]


def test_lookup_device_user(client, hr_headers, device, transport):
    transport.users = [
        DeviceUser(uid=1, user_id="0001001", name="Ana"),
        DeviceUser(uid=2, user_id="1002", name="Ben"),
    ]

    found = client.get(f"/api/v1/biometric-devices/{device.id}/users/1001", headers=hr_headers)
    assert found.status_code == status.HTTP_200_OK
    data = found.json()
    assert data["found"] is True
    assert data["uid"] == 1
    assert data["total_device_users"] == 2

    missing = client.get(f"/api/v1/biometric-devices/{device.id}/users/7777", headers=hr_headers)
    assert missing.json()["found"] is False


def test_remote_enroll_for_listed_user(client, db, hr_headers, device, transport):
    transport.users = [DeviceUser(uid=5, user_id="0001001", name="Ana")]

    response = client.post(
        f"/api/v1/biometric-devices/{device.id}/users/1001/enroll",
        json={"finger_index": 6},
        headers=hr_headers
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {
        "device_id": device.id,
        "employee_number": "1001",
        "uid": 5,
        "user_id": "0001001",
        "finger_index": 6,
        "enrolled": True,
    }
    assert transport.calls == ["fetch_users", "start_enroll"]
    assert transport.enroll_requests == [{
        "uid": 5,
        "user_id": "0001001",
        "finger_index": 6,
        "deadline_ms": settings.DEVICE_ENROLL_TIMEOUT_MS,
    }]
    assert transport.last_params.comm_key == "123456"
    audit = db.query(AuditLog).filter(AuditLog.action == "DEVICE_ENROLL_START").one()
    assert audit.meta_json["success"] is True


def test_remote_enroll_defaults_to_first_finger(client, hr_headers, device, transport):
    transport.users = [DeviceUser(uid=5, user_id="1001")]
    transport.enroll_result = False

    response = client.post(f"/api/v1/biometric-devices/{device.id}/users/1001/enroll", headers=hr_headers)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["enrolled"] is False
    assert transport.enroll_requests[0]["finger_index"] == 0


def test_remote_enroll_unknown_user_never_starts_capture(client, hr_headers, device, transport):
    transport.users = [DeviceUser(uid=5, user_id="1002")]

    response = client.post(f"/api/v1/biometric-devices/{device.id}/users/1001/enroll", headers=hr_headers)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Employee number 1001 was not found on the device user list."
    assert transport.calls == ["fetch_users"]


def test_remote_enroll_rejects_bad_finger(client, hr_headers, device, transport):
    response = client.post(
        f"/api/v1/biometric-devices/{device.id}/users/1001/enroll",
        json={"finger_index": 10},
        headers=hr_headers
    )

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert transport.calls == []


def test_remote_enroll_unreachable_device(client, hr_headers, device, transport):
    transport.fail("TIMEOUT", "Device did not respond in time: timed out")

    response = client.post(f"/api/v1/biometric-devices/{device.id}/users/1001/enroll", headers=hr_headers)

    assert response.status_code == status.HTTP_504_GATEWAY_TIMEOUT
    assert response.json()["code"] == "DEVICE_TIMEOUT"
