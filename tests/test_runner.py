"""End-to-end tests for the runner with a mocked HTTP transport."""

import asyncio
import json

import httpx
import pytest

from pathspray.core.checkpoint import Checkpointer, JsonStatistorStore
from pathspray.core.config import ConfigurationError, Settings
from pathspray.core.runner import load_targets, run_spray
from pathspray.models.task import Statistor, TaskState

PAGES = {
    "/admin": (301, {"location": "/admin/"}, ""),
    "/login": (200, {}, "<html><title>Login</title><body>sign in with your account credentials</body></html>"),
    "/backup": (500, {}, "internal server error while reading the backup store"),
    "/admin/backup": (200, {}, "archive listing of quarterly backup files from 2019 2020 2021"),
}


def site(request: httpx.Request) -> httpx.Response:
    status, headers, body = PAGES.get(request.url.path, (404, {}, "not found"))
    return httpx.Response(status, headers=headers, text=body)


def make_settings(tmp_path, words=("admin", "login", "backup"), **sections):
    dictionary = tmp_path / "words.txt"
    dictionary.write_text("\n".join(words) + "\n")

    data = {
        "word": {"dictionaries": [dictionary]},
        "run": {
            "stat_file": tmp_path / "stat.json",
            "output_file": tmp_path / "out.jsonl",
            "pool_size": 2,
            "threads": 2,
        },
    }
    for name, values in sections.items():
        data[name] = {**data.get(name, {}), **values}
    return Settings(**data)


def read_lines(path):
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


def spray(settings, urls, handler=site, cancel=None):
    transport = httpx.MockTransport(handler)
    return asyncio.run(run_spray(settings, urls, transport=transport, cancel=cancel))


HOMES = {
    "a.local": "alpha welcome page",
    "b.local": "bravo storefront with products and prices",
}


class TestTargets:
    """Tests for base URL input."""

    def test_comma_separated(self):
        """Test comma separated URLs are split and deduplicated."""
        assert load_targets("http://a.local, http://b.local,http://a.local") == [
            "http://a.local",
            "http://b.local",
        ]

    def test_url_file(self, tmp_path):
        """Test URL list files."""
        path = tmp_path / "urls.txt"
        path.write_text("http://a.local\n\nhttp://b.local\n")
        assert load_targets(url_file=path) == ["http://a.local", "http://b.local"]

    def test_no_targets(self):
        """Test a run without targets is rejected."""
        with pytest.raises(ConfigurationError):
            load_targets()


class TestRunner:
    """Tests for scheduling, routing and recursion."""

    def test_basic_run(self, tmp_path):
        """Test emit, fuzzy and discard routing on a single task."""
        settings = make_settings(tmp_path, run={"fuzzy": True, "fuzzy_file": tmp_path / "fuzzy.jsonl"})
        summary = spray(settings, ["http://target.local"])

        assert summary.outcome == "success"
        assert summary.requests == 3
        assert summary.errors == 0
        assert summary.emitted == 2
        assert summary.fuzzy == 1
        assert summary.recursed == 0

        emitted = {line["url"] for line in read_lines(tmp_path / "out.jsonl")}
        assert emitted == {"http://target.local/admin", "http://target.local/login"}
        fuzzy = read_lines(tmp_path / "fuzzy.jsonl")
        assert [line["status"] for line in fuzzy] == [500]

    def test_baseline_fields(self, tmp_path):
        """Test emitted baselines carry title and directory detection."""
        settings = make_settings(tmp_path)
        spray(settings, ["http://target.local"])

        lines = {line["url"]: line for line in read_lines(tmp_path / "out.jsonl")}
        admin = lines["http://target.local/admin"]
        assert admin["status"] == 301
        assert admin["is_directory"] is True
        assert admin["redirect_url"] == "http://target.local/admin/"
        assert lines["http://target.local/login"]["title"] == "Login"

    def test_recursion(self, tmp_path):
        """Test a directory spawns one child task at depth + 1."""
        settings = make_settings(tmp_path, classifier={"depth": 1})
        summary = spray(settings, ["http://target.local"])

        assert summary.recursed == 1
        assert summary.tasks_completed == 2
        assert summary.requests == 6
        assert sorted(t.depth for t in summary.tasks) == [0, 1]

        emitted = {line["url"] for line in read_lines(tmp_path / "out.jsonl")}
        assert "http://target.local/admin/backup" in emitted

    def test_no_recursion_at_depth_zero(self, tmp_path):
        """Test recursion is off by default."""
        summary = spray(make_settings(tmp_path), ["http://target.local"])
        assert summary.recursed == 0
        assert len(summary.tasks) == 1

    def test_duplicates_suppressed(self, tmp_path):
        """Test catch-all pages reach the normal sink once."""

        def catch_all(request):
            return httpx.Response(200, text="<html><title>Welcome</title>generic landing page</html>")

        settings = make_settings(
            tmp_path,
            words=("a", "b", "c", "d"),
            request={"random_baseline": False},
        )
        summary = spray(settings, ["http://target.local"], catch_all)
        assert summary.emitted == 1
        assert summary.duplicates == 3
        assert len(read_lines(tmp_path / "out.jsonl")) == 1

    def test_distinct_redirects_emitted(self, tmp_path):
        """Test directories sharing a server redirect page are all emitted."""
        body = "<html><head><title>301 Moved Permanently</title></head><center>nginx</center></html>"

        def redirects(request):
            return httpx.Response(301, headers={"location": request.url.path + "/"}, text=body)

        settings = make_settings(
            tmp_path,
            words=("admin", "images", "backup"),
            request={"random_baseline": False},
        )
        summary = spray(settings, ["http://target.local"], redirects)
        assert summary.emitted == 3
        assert summary.duplicates == 0
        assert {line["redirect_url"] for line in read_lines(tmp_path / "out.jsonl")} == {
            "http://target.local/admin/",
            "http://target.local/images/",
            "http://target.local/backup/",
        }

    def test_soft_404_seed(self, tmp_path):
        """Test a catch-all page matching the random baseline is never emitted."""

        def catch_all(request):
            return httpx.Response(200, text="<html><title>Welcome</title>generic landing page</html>")

        settings = make_settings(tmp_path, words=("a", "b"))
        summary = spray(settings, ["http://target.local"], catch_all)
        assert summary.emitted == 0
        assert summary.duplicates == 2

    def test_limit_and_offset(self, tmp_path):
        """Test only the configured candidate range is requested."""
        requested = []

        def record(request):
            requested.append(request.url.path)
            return httpx.Response(404)

        settings = make_settings(
            tmp_path,
            word={"word": "p{?d#2}", "offset": 10, "limit": 5},
            request={"random_baseline": False},
            run={"threads": 3},
        )
        summary = spray(settings, ["http://target.local"], record)
        assert sorted(requested) == ["/p10", "/p11", "/p12", "/p13", "/p14"]
        assert summary.requests == 5

    def test_host_mode(self, tmp_path):
        """Test candidates sent as the Host header."""

        def vhosts(request):
            if request.headers["host"] == "admin":
                return httpx.Response(200, text="internal admin virtual host")
            return httpx.Response(404)

        settings = make_settings(
            tmp_path,
            words=("admin", "www", "dev"),
            request={"mode": "host", "random_baseline": False},
        )
        summary = spray(settings, ["http://10.0.0.1"], vhosts)
        assert summary.emitted == 1
        assert read_lines(tmp_path / "out.jsonl")[0]["host"] == "admin"

    def test_check_only(self, tmp_path):
        """Test each base URL is requested once."""
        requested = []

        def record(request):
            requested.append(str(request.url))
            return httpx.Response(200, text=HOMES[request.url.host])

        settings = make_settings(tmp_path, run={"check_only": True}, classifier={"depth": 3})
        summary = spray(settings, ["http://a.local", "http://b.local"], record)
        assert sorted(requested) == ["http://a.local/", "http://b.local/"]
        assert summary.requests == 2
        assert summary.emitted == 2
        assert summary.recursed == 0

    def test_configuration_error_before_requests(self, tmp_path):
        """Test malformed configuration fails before anything is requested."""
        requested = []

        def record(request):
            requested.append(request)
            return httpx.Response(200)

        settings = make_settings(tmp_path, word={"word": "{?x}"})
        with pytest.raises(ConfigurationError):
            spray(settings, ["http://target.local"], record)

        settings = make_settings(tmp_path, classifier={"match": "current.nope"})
        with pytest.raises(ConfigurationError):
            spray(settings, ["http://target.local"], record)
        assert requested == []


class TestBreakerIntegration:
    """Tests for circuit breaker trips inside a run."""

    @staticmethod
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    def settings(self, tmp_path, **breaker):
        return make_settings(
            tmp_path,
            word={"word": "p{?d#2}"},
            breaker=breaker,
            run={"threads": 1, "pool_size": 1},
        )

    def test_trip_after_twenty_errors(self, tmp_path):
        """Test 20 consecutive errors abort the task."""
        summary = spray(self.settings(tmp_path), ["http://target.local"], self.refuse)

        report = summary.tasks[0]
        assert report.state == TaskState.TRIPPED
        assert report.reason == "20 consecutive errors"
        assert report.errors == 20
        assert report.checkpoint_offset == 20
        assert summary.outcome == "failure"

        stats = read_lines(tmp_path / "stat.json")
        assert stats[-1]["state"] == "tripped"
        assert stats[-1]["req_number"] == 20

    def test_force_never_trips(self, tmp_path):
        """Test force mode attempts every candidate."""
        summary = spray(self.settings(tmp_path, force=True), ["http://target.local"], self.refuse)

        report = summary.tasks[0]
        assert report.state == TaskState.COMPLETED
        assert report.errors == 100
        assert summary.errors == 100

    def test_failing_task_checkpoints_periodically(self, tmp_path):
        """Test snapshots follow the checkpoint period when every request fails."""
        settings = make_settings(
            tmp_path,
            word={"word": "p{?d#2}"},
            breaker={"force": True},
            run={"threads": 1, "pool_size": 1, "checkpoint_period": 10},
        )
        spray(settings, ["http://target.local"], self.refuse)

        stats = read_lines(tmp_path / "stat.json")
        running = [s["req_number"] for s in stats if s["state"] == "running"]
        assert running == list(range(10, 101, 10))
        assert stats[-1]["state"] == "completed"

    def test_siblings_continue(self, tmp_path):
        """Test a trip cancels only its own task."""

        def handler(request):
            if request.url.host == "down.local":
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(404)

        settings = make_settings(
            tmp_path,
            word={"word": "p{?d#2}"},
            run={"threads": 1, "pool_size": 2},
        )
        summary = spray(settings, ["http://down.local", "http://up.local"], handler)

        states = {t.base_url: t.state for t in summary.tasks}
        assert states == {
            "http://down.local": TaskState.TRIPPED,
            "http://up.local": TaskState.COMPLETED,
        }
        assert summary.outcome == "partial"


class TestShutdown:
    """Tests for deadline, cancellation and resume."""

    @staticmethod
    async def slow(request):
        await asyncio.sleep(0.02)
        return httpx.Response(404)

    def settings(self, tmp_path, **run):
        return make_settings(
            tmp_path,
            word={"word": "p{?d#3}"},
            request={"random_baseline": False},
            run={"threads": 2, "pool_size": 1, "drain_timeout": 2, **run},
        )

    def test_deadline_partial_summary(self, tmp_path):
        """Test the deadline finalizes the run with a partial summary."""
        summary = spray(self.settings(tmp_path, deadline=0.3), ["http://target.local"], self.slow)

        assert summary.incomplete
        assert summary.outcome == "partial"
        report = summary.tasks[0]
        assert report.state == TaskState.CANCELLED
        assert 0 < report.req_number < 1000

        stats = read_lines(tmp_path / "stat.json")
        assert stats[-1]["state"] == "cancelled"
        assert stats[-1]["req_number"] == report.req_number

    def test_cancel_and_resume(self, tmp_path):
        """Test a cancelled run resumes where its snapshot left off."""
        settings = self.settings(tmp_path)

        async def cancelled_run():
            cancel = asyncio.Event()
            asyncio.get_running_loop().call_later(0.2, cancel.set)
            return await run_spray(
                settings,
                ["http://target.local"],
                transport=httpx.MockTransport(self.slow),
                cancel=cancel,
            )

        summary = asyncio.run(cancelled_run())
        done = summary.tasks[0].req_number
        assert summary.incomplete
        assert summary.tasks[0].state == TaskState.CANCELLED

        tasks = asyncio.run(Checkpointer(JsonStatistorStore(tmp_path / "stat.json")).resume_tasks())
        assert len(tasks) == 1
        assert tasks[0].offset == done
        assert tasks[0].total == 1000

    def test_queued_tasks_snapshotted(self, tmp_path):
        """Test tasks that never started are snapshotted as pending."""
        settings = self.settings(tmp_path, deadline=0.2)
        summary = spray(settings, ["http://a.local", "http://b.local"], self.slow)

        assert [t.base_url for t in summary.tasks] == ["http://a.local"]
        stats = read_lines(tmp_path / "stat.json")
        pending = [s for s in stats if s["state"] == "pending"]
        assert [s["base_url"] for s in pending] == ["http://b.local"]
        assert pending[0]["req_number"] == 0

    def test_directory_found_while_stopping(self, tmp_path):
        """Test a directory found during the drain is snapshotted for resume."""

        async def slow_admin(request):
            if request.url.path == "/admin":
                await asyncio.sleep(0.3)
                return httpx.Response(301, headers={"location": "/admin/"})
            return httpx.Response(404)

        settings = make_settings(
            tmp_path,
            classifier={"depth": 2},
            request={"random_baseline": False},
            run={"deadline": 0.1, "drain_timeout": 2},
        )
        summary = spray(settings, ["http://target.local"], slow_admin)
        assert summary.incomplete
        assert summary.recursed == 1

        stats = read_lines(tmp_path / "stat.json")
        pending = [s for s in stats if s["state"] == "pending"]
        assert [s["base_url"] for s in pending] == ["http://target.local/admin/"]

        tasks = asyncio.run(Checkpointer(JsonStatistorStore(tmp_path / "stat.json")).resume_tasks())
        assert [t.base_url for t in tasks] == ["http://target.local/admin/"]
        assert tasks[0].depth == 1
        assert tasks[0].offset == 0

    def test_resume_run(self, tmp_path):
        """Test resuming runs only the remaining candidates."""
        requested = []

        def record(request):
            requested.append(request.url.path)
            return httpx.Response(404)

        settings = make_settings(
            tmp_path,
            word={"word": "p{?d}"},
            request={"random_baseline": False},
            run={"threads": 1, "pool_size": 1},
        )
        store = JsonStatistorStore(tmp_path / "previous.json")
        asyncio.run(store.save(Statistor(base_url="http://target.local", req_number=7, total=10)))

        transport = httpx.MockTransport(record)
        summary = asyncio.run(run_spray(settings, resume_store=store, transport=transport))
        assert sorted(requested) == ["/p7", "/p8", "/p9"]
        assert summary.tasks[0].offset == 7
        assert summary.outcome == "success"
