import csv
import io
import unittest

from app import create_app
from config import TestingConfig
from db import db
from realtime import NS, socketio
from services.importer import CSV_COLUMNS

MONDAY = "2024-03-04"
SATURDAY = "2024-03-09"


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.app = create_app(TestingConfig)
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.create_all()
        self.client = self.app.test_client()

        # first account on an empty database becomes admin
        self.admin = self._register("root", "secret123")
        self.operator = self._register("ops", "secret123", role="operator", token=self.admin)
        self.viewer = self._register("watcher", "secret123")

        self.ndls = self._post("/api/locations", {"name": "New Delhi", "code": "ndls"}, self.admin).get_json()["location"]["id"]
        self.bct = self._post("/api/locations", {"name": "Mumbai Central", "code": "BCT"}, self.admin).get_json()["location"]["id"]
        self.kota = self._post("/api/locations", {"name": "Kota", "code": "KOTA"}, self.admin).get_json()["location"]["id"]
        self.express = self._post("/api/trains", {"train_number": "12951", "type": "express"}, self.admin).get_json()["id"]
        self.ftr = self._post("/api/trains", {"train_number": "FTR01", "type": "ftr"}, self.admin).get_json()["id"]

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()

    # ── helpers ──────────────────────────────────────────────────────────────
    def _register(self, username, password, role=None, token=None):
        body = {"username": username, "password": password}
        if role:
            body["role"] = role
        resp = self._post("/api/auth/register", body, token)
        self.assertEqual(resp.status_code, 201, resp.get_json())
        return resp.get_json()["token"]

    @staticmethod
    def _auth(token):
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _get(self, url, token=None):
        return self.client.get(url, headers=self._auth(token))

    def _post(self, url, body, token=None):
        return self.client.post(url, json=body, headers=self._auth(token))

    def _schedule_body(self, **overrides):
        body = {
            "train_id": self.express,
            "departure_location_id": self.ndls,
            "arrival_location_id": self.bct,
            "scheduled_departure": "2024-03-04T08:00:00",
            "scheduled_arrival": "2024-03-04T20:00:00",
            "running_days": [True, True, True, True, True, False, False],
            "effective_start_date": "2024-03-01",
        }
        body.update(overrides)
        return body

    def _create_schedule(self, **overrides):
        resp = self._post("/api/schedules", self._schedule_body(**overrides), self.operator)
        self.assertEqual(resp.status_code, 201, resp.get_json())
        return resp.get_json()


class TestAuth(ApiTestCase):
    def test_roles_assigned_on_register(self):
        me = self._get("/api/auth/me", self.admin).get_json()
        self.assertEqual(me["role"], "admin")
        self.assertEqual(self._get("/api/auth/me", self.operator).get_json()["role"], "operator")
        self.assertEqual(self._get("/api/auth/me", self.viewer).get_json()["role"], "viewer")

    def test_self_registration_cannot_claim_admin(self):
        resp = self._post("/api/auth/register", {"username": "eve", "password": "secret123", "role": "admin"})
        self.assertEqual(resp.status_code, 403)

    def test_duplicate_username(self):
        resp = self._post("/api/auth/register", {"username": "ops", "password": "secret123"})
        self.assertEqual(resp.status_code, 409)

    def test_login(self):
        ok = self._post("/api/auth/login", {"username": "ops", "password": "secret123"})
        self.assertEqual(ok.status_code, 200)
        self.assertTrue(ok.get_json()["token"])
        bad = self._post("/api/auth/login", {"username": "ops", "password": "wrong-one"})
        self.assertEqual(bad.status_code, 401)

    def test_missing_and_invalid_token(self):
        self.assertEqual(self._get("/api/schedules").status_code, 401)
        resp = self._get("/api/schedules", "not-a-jwt")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.get_json()["error"], "Invalid token")

    def test_viewer_cannot_write(self):
        resp = self._post("/api/schedules", self._schedule_body(), self.viewer)
        self.assertEqual(resp.status_code, 403)

    def test_operator_cannot_manage_trains(self):
        resp = self._post("/api/trains", {"train_number": "X1", "type": "local"}, self.operator)
        self.assertEqual(resp.status_code, 403)


class TestSchedules(ApiTestCase):
    def test_health(self):
        resp = self.client.get("/api/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["database"], "connected")

    def test_create_and_list(self):
        created = self._create_schedule()
        self.assertEqual(created["status"], "scheduled")
        self.assertEqual(created["train"]["train_number"], "12951")
        self.assertEqual(created["departure_location"]["code"], "NDLS")

        listed = self._get("/api/schedules", self.viewer).get_json()
        self.assertEqual([s["id"] for s in listed], [created["id"]])

        filtered = self._get(f"/api/schedules?train_id={self.ftr}", self.viewer).get_json()
        self.assertEqual(filtered, [])

    def test_camel_case_body(self):
        body = {
            "trainId": self.express,
            "departureLocationId": self.ndls,
            "arrivalLocationId": self.bct,
            "scheduledDeparture": "2024-03-04T08:00:00",
            "scheduledArrival": "2024-03-04T20:00:00",
            "effectiveStartDate": "2024-03-01",
        }
        resp = self._post("/api/schedules", body, self.operator)
        self.assertEqual(resp.status_code, 201, resp.get_json())
        self.assertEqual(resp.get_json()["running_days"], [True] * 7)

    def test_arrival_before_departure_rejected(self):
        resp = self._post(
            "/api/schedules",
            self._schedule_body(scheduled_arrival="2024-03-04T07:00:00"),
            self.operator,
        )
        self.assertEqual(resp.status_code, 400)
        body = resp.get_json()
        self.assertFalse(body["valid"])
        self.assertEqual([v["field"] for v in body["violations"]], ["scheduled_arrival"])

    def test_unknown_train(self):
        resp = self._post("/api/schedules", self._schedule_body(train_id=999), self.operator)
        self.assertEqual(resp.status_code, 404)

    def test_unknown_location(self):
        resp = self._post("/api/schedules", self._schedule_body(arrival_location_id=999), self.operator)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["violations"][0]["message"], "arrival location does not exist")

    def test_attach_rejected_for_express(self):
        resp = self._post(
            "/api/schedules",
            self._schedule_body(attach_location_id=self.kota, attach_train_number="12345",
                                attach_time="2024-03-04T12:00:00"),
            self.operator,
        )
        self.assertEqual(resp.status_code, 400)
        fields = [v["field"] for v in resp.get_json()["violations"]]
        self.assertEqual(fields, ["attach_location_id", "attach_train_number", "attach_time"])

    def test_partial_attach_for_ftr(self):
        resp = self._post(
            "/api/schedules",
            self._schedule_body(train_id=self.ftr, attach_location_id=self.kota,
                                attach_time="2024-03-04T12:00:00"),
            self.operator,
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual([v["field"] for v in resp.get_json()["violations"]], ["attach_train_number"])

    def test_full_attach_for_ftr_defaults_status(self):
        created = self._create_schedule(
            train_id=self.ftr, attach_location_id=self.kota,
            attach_train_number="12345", attach_time="2024-03-04T12:00:00",
        )
        self.assertEqual(created["attach_status"], "pending")

    def test_update_revalidates_merged_record(self):
        created = self._create_schedule()
        resp = self.client.put(
            f"/api/schedules/{created['id']}",
            json={"scheduled_arrival": "2024-03-04T06:00:00"},
            headers=self._auth(self.operator),
        )
        self.assertEqual(resp.status_code, 400)

        resp = self.client.put(
            f"/api/schedules/{created['id']}",
            json={"remarks": "platform change"},
            headers=self._auth(self.operator),
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["remarks"], "platform change")

    def test_update_rejects_illegal_status(self):
        created = self._create_schedule()
        resp = self.client.put(
            f"/api/schedules/{created['id']}",
            json={"status": "completed"},
            headers=self._auth(self.operator),
        )
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()["from"], "scheduled")

    def test_status_transitions(self):
        sid = self._create_schedule()["id"]
        url = f"/api/schedules/{sid}/status"

        running = self.client.patch(url, json={"status": "running"}, headers=self._auth(self.operator))
        self.assertEqual(running.status_code, 200)
        self.assertIsNotNone(running.get_json()["actual_departure"])

        back = self.client.patch(url, json={"status": "scheduled"}, headers=self._auth(self.operator))
        self.assertEqual(back.status_code, 409)
        self.assertEqual(back.get_json()["allowed"], ["cancelled", "completed", "delayed"])

        done = self.client.patch(url, json={"status": "completed"}, headers=self._auth(self.operator))
        self.assertEqual(done.status_code, 200)
        self.assertIsNotNone(done.get_json()["actual_arrival"])

    def test_active_on_date(self):
        sid = self._create_schedule()["id"]
        monday = self._get(f"/api/schedules/{sid}/active?date={MONDAY}", self.viewer).get_json()
        saturday = self._get(f"/api/schedules/{sid}/active?date={SATURDAY}", self.viewer).get_json()
        self.assertTrue(monday["active"])
        self.assertFalse(saturday["active"])

        running_today = self._get(f"/api/schedules/active?date={MONDAY}", self.viewer).get_json()
        self.assertEqual(running_today["count"], 1)

    def test_calendar(self):
        sid = self._create_schedule()["id"]
        resp = self._get(f"/api/schedules/{sid}/calendar?start={MONDAY}&end=2024-03-10", self.viewer)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(
            resp.get_json()["dates"],
            ["2024-03-04", "2024-03-05", "2024-03-06", "2024-03-07", "2024-03-08"],
        )

    def test_calendar_window_capped(self):
        sid = self._create_schedule()["id"]
        resp = self._get(f"/api/schedules/{sid}/calendar?start=2024-01-01&end=2026-01-01", self.viewer)
        self.assertEqual(resp.status_code, 400)

    def test_cancel_makes_inactive(self):
        sid = self._create_schedule()["id"]
        resp = self._post(f"/api/schedules/{sid}/cancel", {}, self.operator)
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.get_json()["is_cancelled"])
        self.assertEqual(resp.get_json()["status"], "cancelled")

        active = self._get(f"/api/schedules/{sid}/active?date={MONDAY}", self.viewer).get_json()
        self.assertFalse(active["active"])

    def test_cancellation_cannot_be_undone(self):
        sid = self._create_schedule()["id"]
        self._post(f"/api/schedules/{sid}/cancel", {}, self.operator)

        resp = self.client.put(
            f"/api/schedules/{sid}",
            json={"is_cancelled": False},
            headers=self._auth(self.operator),
        )
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()["error"], "invalid transition")
        self.assertEqual(resp.get_json()["from"], "cancelled")

        current = self._get(f"/api/schedules/{sid}", self.viewer).get_json()
        self.assertTrue(current["is_cancelled"])
        active = self._get(f"/api/schedules/{sid}/active?date={MONDAY}", self.viewer).get_json()
        self.assertFalse(active["active"])

    def test_status_must_be_a_string(self):
        sid = self._create_schedule()["id"]
        url = f"/api/schedules/{sid}/status"
        numeric = self.client.patch(url, json={"status": 5}, headers=self._auth(self.operator))
        self.assertEqual(numeric.status_code, 400)
        as_list = self.client.patch(url, json=["running"], headers=self._auth(self.operator))
        self.assertEqual(as_list.status_code, 400)
        self.assertEqual(self._get(f"/api/schedules/{sid}", self.viewer).get_json()["status"], "scheduled")

    def test_missing_schedule(self):
        self.assertEqual(self._get("/api/schedules/4242", self.viewer).status_code, 404)


class TestImportExport(ApiTestCase):
    def test_import_reports_each_row(self):
        rows = [
            self._schedule_body(),
            self._schedule_body(scheduled_arrival="2024-03-04T01:00:00"),
            self._schedule_body(train_id=999),
        ]
        resp = self._post("/api/schedules/import", rows, self.admin)
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertEqual(body["summary"], {"total": 3, "successful": 1, "failed": 2})
        self.assertEqual([f["row"] for f in body["results"]["failures"]], [1, 2])

    def test_import_csv_with_codes(self):
        text = (
            "train_number,departure_code,arrival_code,scheduled_departure,scheduled_arrival,running_days\n"
            "12951,NDLS,BCT,2024-03-04T08:00:00,2024-03-04T20:00:00,1111100\n"
        )
        resp = self.client.post(
            "/api/schedules/import",
            data=text,
            content_type="text/csv",
            headers=self._auth(self.admin),
        )
        self.assertEqual(resp.status_code, 200, resp.get_json())
        self.assertEqual(resp.get_json()["summary"]["successful"], 1)

    def test_import_requires_admin(self):
        resp = self._post("/api/schedules/import", [], self.operator)
        self.assertEqual(resp.status_code, 403)

    def test_export_csv(self):
        self._create_schedule()
        resp = self._get("/api/schedules/export?format=csv", self.admin)
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.mimetype.startswith("text/csv"))
        rows = list(csv.reader(io.StringIO(resp.get_data(as_text=True))))
        self.assertEqual(rows[0], list(CSV_COLUMNS))
        self.assertEqual(rows[1][1:5], ["12951", "express", "NDLS", "BCT"])
        self.assertEqual(rows[1][CSV_COLUMNS.index("running_days")], "1111100")

    def test_export_csv_empty_still_has_header(self):
        resp = self._get("/api/schedules/export?format=csv", self.admin)
        rows = list(csv.reader(io.StringIO(resp.get_data(as_text=True))))
        self.assertEqual(rows, [list(CSV_COLUMNS)])


    def test_csv_export_reimports_attach_schedule(self):
        self._create_schedule(
            train_id=self.ftr,
            attach_location_id=self.kota,
            attach_train_number="12345",
            attach_time="2024-03-04T12:00:00",
            detach_location_id=self.kota,
            detach_time="2024-03-04T16:00:00",
            remarks="coupled at Kota",
            important_stations=[{"location_id": self.kota, "arrival_time": "12:00"}],
        )
        exported = self._get("/api/schedules/export?format=csv", self.admin).get_data(as_text=True)
        rows = list(csv.DictReader(io.StringIO(exported)))
        self.assertEqual(rows[0]["attach_code"], "KOTA")
        self.assertEqual(rows[0]["detach_code"], "KOTA")

        resp = self.client.post(
            "/api/schedules/import",
            data=exported,
            content_type="text/csv",
            headers=self._auth(self.admin),
        )
        body = resp.get_json()
        self.assertEqual(body["summary"], {"total": 1, "successful": 1, "failed": 0}, body)
        copy = body["results"]["success"][0]
        self.assertEqual(copy["attach_location_id"], self.kota)
        self.assertEqual(copy["detach_location_id"], self.kota)
        self.assertEqual(copy["attach_train_number"], "12345")
        self.assertEqual(copy["remarks"], "coupled at Kota")
        self.assertEqual(copy["important_stations"][0]["location_id"], self.kota)


class TestTrainsLocationsAdmin(ApiTestCase):
    def test_duplicate_location_code(self):
        resp = self._post("/api/locations", {"name": "Delhi again", "code": "NDLS"}, self.admin)
        self.assertEqual(resp.status_code, 409)

    def test_locations_sorted_by_name(self):
        names = [loc["name"] for loc in self._get("/api/locations", self.viewer).get_json()]
        self.assertEqual(names, ["Kota", "Mumbai Central", "New Delhi"])

    def test_train_type_locked_once_scheduled(self):
        self._create_schedule()
        resp = self.client.patch(
            f"/api/trains/{self.express}", json={"type": "local"}, headers=self._auth(self.admin)
        )
        self.assertEqual(resp.status_code, 409)

        resp = self.client.patch(
            f"/api/trains/{self.express}", json={"priority_level": 3}, headers=self._auth(self.admin)
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["priority_level"], 3)

    def test_import_train_types(self):
        resp = self._post("/api/trains/import-types", {"train_types": [
            {"type": "SF", "description": "Rajdhani rake"},
            {"type": "zeppelin", "description": "nope"},
        ]}, self.admin)
        body = resp.get_json()
        self.assertEqual(body["summary"]["successful"], 1)
        self.assertEqual(body["successful_imports"][0]["mapped_type"], "superfast")
        self.assertTrue(body["successful_imports"][0]["train_number"].startswith("SUP"))

    def test_clean_tables_keeps_references(self):
        self._create_schedule()
        refused = self._post("/api/admin/clean-tables", {"tables": ["trains"]}, self.admin)
        self.assertEqual(refused.status_code, 409)

        ok = self._post("/api/admin/clean-tables", {"tables": ["trains", "schedules", "users"]}, self.admin)
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.get_json()["cleaned_tables"], ["schedules", "trains", "users"])
        # the admin account survives
        self.assertEqual(self._get("/api/auth/me", self.admin).status_code, 200)

    def test_metrics(self):
        self._create_schedule()
        body = self._get("/api/analytics/schedule-metrics", self.viewer).get_json()
        self.assertEqual(body["overview"]["total"], 1)
        self.assertEqual(body["route_performance"][0]["departure_name"], "New Delhi")
        self.assertEqual(body["route_performance"][0]["peak_hour_trips"], 1)


class TestRealtime(ApiTestCase):
    def test_operator_update_is_broadcast(self):
        sid = self._create_schedule()["id"]
        client = socketio.test_client(self.app, namespace=NS, auth={"token": self.operator})
        self.assertTrue(client.is_connected(NS))
        connected = client.get_received(NS)
        self.assertTrue(connected[0]["args"][0]["authenticated"])

        client.emit("schedule:update", {"id": sid, "status": "running"}, namespace=NS)
        updates = [m for m in client.get_received(NS) if m["name"] == "schedule:updated"]
        self.assertTrue(updates)
        self.assertEqual(updates[0]["args"][0]["status"], "running")
        client.disconnect(namespace=NS)

    def test_attach_status_needs_attach_operation(self):
        plain = self._create_schedule()["id"]
        coupled = self._create_schedule(
            train_id=self.ftr, attach_location_id=self.kota,
            attach_train_number="12345", attach_time="2024-03-04T12:00:00",
        )["id"]
        client = socketio.test_client(self.app, namespace=NS, auth={"token": self.operator})
        client.get_received(NS)

        client.emit("schedule:update", {"id": plain, "attach_status": "completed"}, namespace=NS)
        received = client.get_received(NS)
        self.assertEqual([m["name"] for m in received], ["schedule:error"])
        self.assertEqual(self._get(f"/api/schedules/{plain}", self.viewer).get_json()["attach_status"], None)

        client.emit("schedule:update", {"id": coupled, "attach_status": "completed"}, namespace=NS)
        updates = [m for m in client.get_received(NS) if m["name"] == "schedule:updated"]
        self.assertEqual(updates[0]["args"][0]["attach_status"], "completed")
        client.disconnect(namespace=NS)

    def test_anonymous_socket_cannot_write(self):
        sid = self._create_schedule()["id"]
        client = socketio.test_client(self.app, namespace=NS)
        client.get_received(NS)
        client.emit("schedule:update", {"id": sid, "status": "running"}, namespace=NS)
        names = [m["name"] for m in client.get_received(NS)]
        self.assertEqual(names, ["schedule:error"])
        client.disconnect(namespace=NS)


if __name__ == "__main__":
    unittest.main()
