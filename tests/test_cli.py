import json

import cli


class _Resp:
    def __init__(self, payload, ok=True):
        self._payload = payload
        self.ok = ok

    def json(self):
        return self._payload


def test_reconcile_posts_member_event(monkeypatch, capsys):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append((url, json))
        return _Resp({"member": "designate-mdns-0", "outcome": "annotated"})

    monkeypatch.setattr(cli.requests, "post", fake_post)

    rc = cli.main(["--api", "http://api:8000/", "reconcile", "--namespace", "openstack", "--name", "designate-mdns-0"])

    assert rc == 0
    assert calls == [("http://api:8000/members/events", {"namespace": "openstack", "name": "designate-mdns-0"})]
    assert json.loads(capsys.readouterr().out)["outcome"] == "annotated"


def test_release_reports_failure(monkeypatch, capsys):
    monkeypatch.setattr(cli.requests, "delete", lambda url, timeout=None: _Resp({"detail": "conflict"}, ok=False))
    assert cli.main(["release", "designate-designate", "10.0.0.1"]) == 1


def test_events_passes_filters(monkeypatch, capsys):
    seen = {}

    def fake_get(url, params=None, timeout=None):
        seen.update(url=url, params=params)
        return _Resp([])

    monkeypatch.setattr(cli.requests, "get", fake_get)
    assert cli.main(["events", "--limit", "5", "--member", "designate-mdns-0"]) == 0
    assert seen == {"url": "http://localhost:8000/events", "params": {"limit": 5, "member": "designate-mdns-0"}}
