"""
Tests for audit and period lock API endpoints.
"""

import json
from decimal import Decimal

from sqlalchemy import text

from tests.factories import ACCOUNTANT_HEADERS, ADMIN_HEADERS, CHIEF_HEADERS


def create_fund(client, code):
    response = client.post("/budget/fund-sources", json={
        "code": code,
        "name": f"Nguon {code}",
        "fiscal_year": 2025,
    }, headers=ACCOUNTANT_HEADERS)
    assert response.status_code == 201, response.text
    return response.json()


def fund_audit_record(client, fund_id):
    page = client.get(
        "/audit/trail",
        params={"entity_type": "FUND_SOURCE", "entity_id": str(fund_id)},
    ).json()
    return page["items"][0]


def post_cash_payment(client):
    response = client.post("/vouchers", json={
        "doc_no": "PC202500001",
        "doc_date": "2025-03-15",
        "posting_date": "2025-03-15",
        "voucher_type": "CASH_OUT",
        "lines": [{"debit_account": "6422", "credit_account": "1111", "amount": 100000}],
    }, headers=ACCOUNTANT_HEADERS)
    assert response.status_code == 200, response.text
    return response.json()


class TestAuditTrail:

    def test_paging_newest_first(self, client):
        for code in ("NS-01", "NS-02", "NS-03"):
            create_fund(client, code)

        page = client.get("/audit/trail", params={
            "entity_type": "FUND_SOURCE", "limit": 2, "offset": 0,
        }).json()
        assert page["total"] == 3
        assert page["limit"] == 2
        assert [r["new_values"]["code"] for r in page["items"]] == ["NS-03", "NS-02"]

    def test_filter_by_actor(self, client):
        create_fund(client, "NS-01")
        page = client.get("/audit/trail", params={"actor_username": "ktt"}).json()
        assert page["total"] == 0

        page = client.get("/audit/trail", params={"actor_username": "ketoan01"}).json()
        assert page["items"][0]["actor_role"] == "ACCOUNTANT"
        assert len(page["items"][0]["checksum"]) == 64

    def test_verify_untouched_record(self, client):
        fund = create_fund(client, "NS-01")
        record = fund_audit_record(client, fund["id"])

        response = client.post(
            f"/audit/trail/{record['id']}/verify", headers=CHIEF_HEADERS
        )
        assert response.status_code == 200
        assert response.json()["is_valid"] is True

    def test_verify_tampered_record_returns_409(self, client, db_session):
        fund = create_fund(client, "NS-01")
        record = fund_audit_record(client, fund["id"])

        db_session.execute(
            text("UPDATE audit_trail SET new_values = :v WHERE id = :id"),
            {"v": json.dumps({"code": "NS-99"}), "id": record["id"]},
        )
        db_session.commit()
        db_session.expire_all()

        response = client.post(
            f"/audit/trail/{record['id']}/verify", headers=ADMIN_HEADERS
        )
        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["error"] == "INTEGRITY_MISMATCH"
        assert detail["stored_checksum"] == record["checksum"]
        assert detail["computed_checksum"] != record["checksum"]

        # The failed verification is still on the trail
        verifications = client.get(
            "/audit/trail", params={"action": "VERIFY"}
        ).json()
        assert verifications["items"][0]["new_values"] == {"is_valid": False}

    def test_verify_needs_elevated_role(self, client):
        fund = create_fund(client, "NS-01")
        record = fund_audit_record(client, fund["id"])
        response = client.post(
            f"/audit/trail/{record['id']}/verify", headers=ACCOUNTANT_HEADERS
        )
        assert response.status_code == 403

    def test_verify_missing_record(self, client):
        response = client.post("/audit/trail/999/verify", headers=CHIEF_HEADERS)
        assert response.status_code == 404


class TestAnomalies:

    def test_detect_and_work_through(self, client):
        post_cash_payment(client)

        run = client.post(
            "/audit/anomalies/detect", json={"fiscal_year": 2025}, headers=CHIEF_HEADERS
        ).json()
        assert run["found"] == 1
        assert run["created"] == 1
        anomaly = run["anomalies"][0]
        assert anomaly["anomaly_type"] == "NEGATIVE_CASH_BALANCE"
        assert Decimal(anomaly["amount_impact"]) == Decimal("100000")

        rerun = client.post(
            "/audit/anomalies/detect", json={"fiscal_year": 2025}, headers=CHIEF_HEADERS
        ).json()
        assert rerun["created"] == 0
        assert rerun["skipped"] == 1

        ack = client.post(
            f"/audit/anomalies/{anomaly['id']}/acknowledge", json={}, headers=CHIEF_HEADERS
        )
        assert ack.json()["status"] == "ACKNOWLEDGED"

        resolved = client.post(
            f"/audit/anomalies/{anomaly['id']}/resolve",
            json={"notes": "Da bo sung phieu thu"},
            headers=CHIEF_HEADERS,
        )
        assert resolved.json()["status"] == "RESOLVED"

        open_items = client.get("/audit/anomalies", params={"status": "OPEN"}).json()
        assert open_items == []

    def test_accountant_cannot_detect(self, client):
        response = client.post(
            "/audit/anomalies/detect", json={"fiscal_year": 2025}, headers=ACCOUNTANT_HEADERS
        )
        assert response.status_code == 403


class TestExportAndStatistics:

    def test_json_export(self, client):
        create_fund(client, "NS-01")
        response = client.get(
            "/audit/export", params={"format": "json"}, headers=CHIEF_HEADERS
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        rows = response.json()
        assert rows[0]["entity_type"] == "FUND_SOURCE"
        assert rows[0]["new_values"]["code"] == "NS-01"

    def test_csv_export(self, client):
        create_fund(client, "NS-01")
        response = client.get(
            "/audit/export", params={"format": "csv"}, headers=CHIEF_HEADERS
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        header = response.text.splitlines()[0]
        assert header.startswith("id,created_at,entity_type")

    def test_unknown_format(self, client):
        response = client.get(
            "/audit/export", params={"format": "xml"}, headers=CHIEF_HEADERS
        )
        assert response.status_code == 400

    def test_accountant_cannot_export(self, client):
        response = client.get("/audit/export", headers=ACCOUNTANT_HEADERS)
        assert response.status_code == 403

    def test_statistics(self, client):
        create_fund(client, "NS-01")
        create_fund(client, "NS-02")
        stats = client.get("/audit/statistics", params={"fiscal_year": 2025}).json()
        assert stats["total_records"] == 2
        assert stats["by_action"] == {"CREATE": 2}
        assert stats["top_users"] == [{"username": "ketoan01", "count": 2}]
        assert stats["open_anomalies"] == 0


class TestReconciliations:

    def create(self, client):
        response = client.post("/audit/reconciliations", json={
            "recon_type": "BANK",
            "fiscal_year": 2025,
            "fiscal_period": 3,
            "account_code": "1121",
            "book_balance": 15000000,
            "external_balance": 14500000,
            "outstanding_items": [
                {"description": "Uy nhiem chi chua bao no", "amount": 500000},
            ],
        }, headers=ACCOUNTANT_HEADERS)
        assert response.status_code == 201, response.text
        return response.json()

    def test_create(self, client):
        record = self.create(client)
        assert record["status"] == "DRAFT"
        assert Decimal(record["difference"]) == Decimal("500000")
        assert record["outstanding_items"][0]["description"] == "Uy nhiem chi chua bao no"

        listed = client.get("/audit/reconciliations", params={"fiscal_year": 2025}).json()
        assert [r["id"] for r in listed] == [record["id"]]

    def test_approve_once(self, client):
        record = self.create(client)
        url = f"/audit/reconciliations/{record['id']}/approve"

        assert client.post(url, json={}, headers=ACCOUNTANT_HEADERS).status_code == 403

        approved = client.post(url, json={"notes": "Khop"}, headers=CHIEF_HEADERS)
        assert approved.status_code == 200
        assert approved.json()["status"] == "APPROVED"
        assert approved.json()["approved_by"] == "ktt"

        again = client.post(url, json={}, headers=CHIEF_HEADERS)
        assert again.status_code == 409


class TestLockedUntil:

    def test_default(self, client):
        response = client.get("/periods/locked-until")
        assert response.json() == {"locked_until": "1900-01-01"}

    def test_admin_moves_lock(self, client):
        response = client.put(
            "/periods/locked-until",
            json={"locked_until": "2025-02-28"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 200
        assert client.get("/periods/locked-until").json() == {
            "locked_until": "2025-02-28",
        }

        history = client.get(
            "/audit/trail", params={"entity_type": "SYSTEM_SETTING"}
        ).json()
        assert history["total"] == 1

    def test_non_admin_refused(self, client):
        response = client.put(
            "/periods/locked-until",
            json={"locked_until": "2025-02-28"},
            headers=CHIEF_HEADERS,
        )
        assert response.status_code == 403
        assert client.get("/periods/locked-until").json()["locked_until"] == "1900-01-01"
