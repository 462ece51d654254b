import asyncio
import json
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

from fastapi import HTTPException

from taskdash.backend import data_reader, server


def _read_body(response) -> str:
    async def _collect():
        chunks = [c async for c in response.body_iterator]
        return "".join(c if isinstance(c, str) else c.decode("utf-8") for c in chunks)
    return asyncio.run(_collect())


class DashboardEndpointTests(unittest.TestCase):
    def setUp(self):
        base = Path(tempfile.mkdtemp(prefix="taskdash_api_"))
        self.addCleanup(lambda: shutil.rmtree(base, ignore_errors=True))
        self.addCleanup(data_reader.clear_cache)
        self.base = base

        now = datetime.now()
        recent = (now - timedelta(hours=1)).strftime("%Y-%m-%d %H:%M:%S")
        old = (now - timedelta(days=400)).strftime("%Y-%m-%d %H:%M:%S")
        self.tasks = [
            {"id": 1, "name": "Replace pump", "status": "pending", "priority": "high",
             "assigned_user_id": 1, "created_at": recent,
             "products": [{"project": {"name": "Acme"}}]},
            {"id": 2, "name": "Paint hall", "status": "completed", "assigned_user_id": 2,
             "created_at": recent, "products": [{"project": {"name": "Beta"}}]},
            {"id": 3, "name": "Archive", "status": "completed", "assigned_user_id": 1,
             "created_at": old, "products": []},
            {"id": 4, "name": "Broken", "status": "lost"},
        ]
        self.tasks_json = base / "tasks.json"
        self.tasks_json.write_text(json.dumps({"data": self.tasks}), encoding="utf-8")
        self.interventions_csv = base / "interventions.csv"
        self.interventions_csv.write_text(
            "project,status,created_at\n"
            f"Acme,approved,{recent}\n"
            f"Acme,pending,{recent}\n"
            f"Beta,refused,{recent}\n",
            encoding="utf-8",
        )

        for name, value in (
            ("TASKS_JSON", self.tasks_json),
            ("INTERVENTIONS_CSV", self.interventions_csv),
            ("INTERVENTIONS_SUMMARY_JSON", base / "interventions_per_project.json"),
        ):
            p = patch.object(server.config, name, value)
            p.start()
            self.addCleanup(p.stop)

    def _dashboard(self, **kwargs):
        params = {"x_user_id": "1", "x_user_role": "admin"}
        params.update(kwargs)
        return asyncio.run(server.dashboard_endpoint(**params))

    def test_dashboard_payload(self):
        payload = self._dashboard()

        self.assertNotIn("warning", payload)
        self.assertEqual(payload["user"], {"id": 1, "role": "admin"})
        self.assertEqual(payload["projects"], ["Acme", "Beta"])
        self.assertEqual(payload["metrics"]["total_tasks"], 3)
        self.assertEqual(payload["metrics"]["my_completed_tasks"], 1)
        self.assertEqual([t["id"] for t in payload["table_tasks"]], [1, 2])
        self.assertEqual([s["project"] for s in payload["interventions"]], ["Acme", "Beta"])
        self.assertEqual(payload["tasks_per_project"][0]["project"], "Acme")

    def test_filters_are_applied_and_echoed(self):
        payload = self._dashboard(search="PUMP", intervention_status="rejected", table_time="all")

        self.assertEqual([t["id"] for t in payload["filtered_tasks"]], [1])
        self.assertEqual(payload["interventions"], [])
        self.assertEqual(payload["filters"]["search_term"], "PUMP")
        self.assertEqual(payload["filters"]["table_time_filter"], "all")

    def test_time_range_narrows_tasks_and_interventions(self):
        payload = self._dashboard(time_range="this-year")
        self.assertNotIn(3, [t["id"] for t in payload["filtered_tasks"]])
        self.assertEqual(payload["projects"], ["Acme", "Beta"])

    def test_today_range_over_zoned_and_mixed_intervention_log(self):
        log = self.base / "interventions_mixed.csv"
        log.write_text(
            "project,status,created_at\n"
            f"Acme,approved,{datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')}\n"
            f"Acme,pending,{datetime.now().strftime('%Y-%m-%d')}\n"
            "Beta,refused,2020-01-01T08:00:00+02:00\n",
            encoding="utf-8",
        )
        with patch.object(server.config, "INTERVENTIONS_CSV", log):
            payload = self._dashboard(time_range="today")

        self.assertNotIn("warning", payload)
        self.assertEqual(payload["interventions"], [
            {"project": "Acme", "interventions": 2, "pending": 1, "approved": 1, "refused": 0},
        ])

    def test_precomputed_summaries_take_priority(self):
        summary = self.base / "interventions_per_project.json"
        summary.write_text(json.dumps([
            {"project": "Gamma", "interventions": "2", "pending": "0", "approved": "2", "refused": "0"},
        ]), encoding="utf-8")
        payload = self._dashboard(intervention_status="approved")
        self.assertEqual(payload["interventions"], [
            {"project": "Gamma", "interventions": 2, "pending": 0, "approved": 2, "refused": 0},
        ])

    def test_missing_sources_become_warnings(self):
        self.tasks_json.unlink()
        self.interventions_csv.unlink()
        payload = self._dashboard()
        self.assertIn("tasks.json", payload["warning"])
        self.assertIn("interventions.csv", payload["warning"])
        self.assertEqual(payload["metrics"]["total_tasks"], 0)
        self.assertEqual(payload["interventions"], [])

    def test_status_query_is_case_insensitive(self):
        payload = self._dashboard(status="Completed", table_time="all")
        self.assertEqual([t["id"] for t in payload["filtered_tasks"]], [2, 3])
        self.assertEqual(payload["filters"]["status_filter"], "completed")

    def test_invalid_parameters_are_rejected(self):
        for kwargs in ({"status": "done"}, {"time_range": "next-decade"},
                       {"table_time": "week"}, {"x_user_role": "root"}):
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(HTTPException) as ctx:
                    self._dashboard(**kwargs)
                self.assertEqual(ctx.exception.status_code, 400)

    def test_identity_defaults_when_headers_absent(self):
        payload = self._dashboard(x_user_id=None, x_user_role=None)
        self.assertEqual(payload["user"], {
            "id": server.config.DEFAULT_USER_ID, "role": server.config.DEFAULT_USER_ROLE,
        })

    def test_user_dashboard_is_paginated(self):
        payload = asyncio.run(server.user_dashboard_endpoint(
            search=None, status=None, page=1, per_page=1, x_user_id="1", x_user_role="user",
        ))
        self.assertEqual(payload["user"]["role"], "user")
        self.assertEqual(payload["my_pending_tasks"], 1)
        self.assertEqual(payload["my_completed_tasks"], 1)
        self.assertEqual(payload["active_tasks"]["total"], 2)
        self.assertEqual(payload["active_tasks"]["last_page"], 2)
        self.assertEqual(len(payload["active_tasks"]["data"]), 1)

    def test_csv_export_download(self):
        response = asyncio.run(server.dashboard_export(format="csv", project="Acme"))
        self.assertEqual(response.media_type, "text/csv")
        disposition = response.headers["content-disposition"]
        self.assertIn('filename="dashboard-export-', disposition)
        self.assertTrue(disposition.endswith('.csv"'))

        lines = _read_body(response).split("\n")
        self.assertEqual(lines[0], "Task Title,Project,Status,Priority,Created Date")
        self.assertEqual(len(lines), 2)
        self.assertTrue(lines[1].startswith("Replace pump,Acme,pending,high,"))

    def test_json_export_download(self):
        response = asyncio.run(server.dashboard_export(format="JSON"))
        self.assertEqual(response.media_type, "application/json")
        data = json.loads(_read_body(response))
        self.assertEqual(data["stats"]["totalTasks"], 3)
        self.assertEqual(data["stats"]["completionRate"], 67)

    def test_export_rejects_unknown_format(self):
        with self.assertRaises(HTTPException) as ctx:
            asyncio.run(server.dashboard_export(format="xlsx"))
        self.assertEqual(ctx.exception.status_code, 400)

    def test_export_without_data_is_404(self):
        self.tasks_json.unlink()
        with self.assertRaises(HTTPException) as ctx:
            asyncio.run(server.dashboard_export(format="csv"))
        self.assertEqual(ctx.exception.status_code, 404)

    def test_projects_and_health(self):
        self.assertEqual(asyncio.run(server.get_projects()), {"projects": ["Acme", "Beta"]})
        health = asyncio.run(server.health())
        self.assertEqual(health["status"], "ok")
        self.assertTrue(health["tasks_json"]["exists"])
        self.assertFalse(health["interventions_summary_json"]["exists"])


if __name__ == "__main__":
    unittest.main()
