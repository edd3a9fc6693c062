"""Tests for concurrent operations and create race prevention."""

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest.mock import patch

import pytest

from card_store import fsutil
from card_store.errors import AlreadyExistsError, NotFoundError
from card_store.models import CardSpec
from card_store.store import CardStore


def _spec(html, **extra):
    return CardSpec.model_validate({"html": html, **extra})


class TestCreateRace:

    def test_two_creates_exactly_one_wins(self, store):
        barrier = threading.Barrier(2)

        def attempt(label):
            barrier.wait()
            try:
                store.create("acme-corp", _spec(label))
                return "ok"
            except AlreadyExistsError:
                return "exists"

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(attempt, ["<p>a</p>", "<p>b</p>"]))

        assert sorted(results) == ["exists", "ok"]
        assert (store.root / "acme-corp" / "index.html").read_text() in ("<p>a</p>", "<p>b</p>")

    def test_many_creates_exactly_one_wins(self, store):
        barrier = threading.Barrier(8)

        def attempt(i):
            barrier.wait()
            try:
                store.create("acme-corp", _spec(f"<p>{i}</p>"))
                return True
            except AlreadyExistsError:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            wins = list(pool.map(attempt, range(8)))

        assert wins.count(True) == 1

    def test_exclusive_mkdir_closes_check_then_act_window(self, store):
        """Even if the existence check lies, the directory create refuses."""
        store.create("acme-corp", _spec("first"))
        with patch.object(Path, "exists", return_value=False):
            with pytest.raises(AlreadyExistsError):
                store.create("acme-corp", _spec("second"))
        assert (store.root / "acme-corp" / "index.html").read_text() == "first"

    def test_separate_store_instances_share_root(self, tmp_path):
        """Two stores on one root (e.g. two workers) still race safely."""
        root = tmp_path / "vcards"
        stores = [CardStore(root), CardStore(root)]
        barrier = threading.Barrier(2)

        def attempt(s):
            barrier.wait()
            try:
                s.create("acme-corp", _spec("x"))
                return "ok"
            except AlreadyExistsError:
                return "exists"

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(attempt, stores))
        assert sorted(results) == ["exists", "ok"]


class TestPerIdentifierSerialization:

    def test_updates_do_not_interleave(self, store):
        """Each update's files all come from the same call."""
        store.create("acme-corp", _spec("init"))
        real_write = fsutil.atomic_write_bytes

        def slow_write(path, data):
            real_write(path, data)
            threading.Event().wait(0.01)

        def update(tag):
            store.update("acme-corp", CardSpec(html=tag, css=tag, vcard=tag, qr_script=tag))

        with patch("card_store.store.atomic_write_bytes", side_effect=slow_write):
            with ThreadPoolExecutor(max_workers=4) as pool:
                list(pool.map(update, ["a", "b", "c", "d"]))

        bundle = store.root / "acme-corp"
        contents = {
            (bundle / name).read_text()
            for name in ("index.html", "style.min.css", "acme-corp.vcf", "qrcode.min.js")
        }
        assert len(contents) == 1

    def test_delete_racing_update(self, store):
        """Update either lands fully before delete or sees NotFound after it."""
        store.create("acme-corp", _spec("init"))
        barrier = threading.Barrier(2)

        def do_update():
            barrier.wait()
            try:
                store.update("acme-corp", CardSpec(css="body{}"))
                return "updated"
            except NotFoundError:
                return "not-found"

        def do_delete():
            barrier.wait()
            store.delete("acme-corp")
            return "deleted"

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [pool.submit(do_update), pool.submit(do_delete)]
            results = [f.result() for f in futures]

        assert results[1] == "deleted"
        assert results[0] in ("updated", "not-found")
        assert not (store.root / "acme-corp").exists()

    def test_different_identifiers_proceed_in_parallel(self, store):
        """A slow write on one identifier does not hold up another."""
        real_write = fsutil.atomic_write_bytes
        slow_started = threading.Event()
        release = threading.Event()

        def gated_write(path, data):
            if path.parent.name == "slow-one":
                slow_started.set()
                release.wait(timeout=5)
            real_write(path, data)

        with patch("card_store.store.atomic_write_bytes", side_effect=gated_write):
            with ThreadPoolExecutor(max_workers=2) as pool:
                slow = pool.submit(store.create, "slow-one", _spec("x"))
                assert slow_started.wait(timeout=5)
                fast = pool.submit(store.create, "fast-one", _spec("y"))
                fast.result(timeout=5)
                assert not slow.done()
                release.set()
                slow.result(timeout=5)

        assert store.list_bundles() == ["fast-one", "slow-one"]
