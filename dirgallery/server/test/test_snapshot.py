"""
Snapshot cache: freshness, single-flight rebuilds, invalidation, ordering.
"""

import asyncio
import os
import shutil
import tempfile
from pathlib import Path

from PIL import Image

from dirgallery.server.src.core.keys import ThumbnailVariant
from dirgallery.server.src.core.filesystem import MediaDescriptor
from dirgallery.server.src.services.progress import EventType, ProgressBroadcaster
from dirgallery.server.src.services.scan import Scanner
from dirgallery.server.src.services.snapshot import SnapshotCache
from dirgallery.server.src.services.thumbnails import ThumbnailStore


class CountingScanner(Scanner):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def scan(self, path):
        self.calls += 1
        return super().scan(path)


class RecordingScheduler:
    """Stands in for the generation scheduler; only records hand-offs."""

    def __init__(self):
        self.enqueued = []
        self.resets = 0

    def reset(self):
        self.resets += 1

    def enqueue(self, descriptors):
        self.enqueued.append([d.relative_path for d in descriptors])
        return len(self.enqueued[-1])


def create_gallery():
    root = Path(tempfile.mkdtemp(prefix="snapshot_")).resolve()
    for relative_path in ["zeta.jpg", "alpha.png", "b/two.jpg", "b/one.jpg", "a/only.gif"]:
        path = root / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new('RGB', (32, 32), (90, 90, 90)).save(path)
    return root


def make_cache(root: Path, cache_duration: float = 30):
    scanner = CountingScanner()
    store = ThumbnailStore(root / ".gallery-cache" / "thumbnails")
    scheduler = RecordingScheduler()
    broadcaster = ProgressBroadcaster()
    cache = SnapshotCache(root, scanner, store, scheduler, broadcaster, cache_duration=cache_duration)
    return cache, scanner, store, scheduler, broadcaster


def drain(subscription):
    events = []
    while (event := subscription.get_nowait()) is not None:
        events.append(event)
    return events


def test_snapshot_ordering_and_handoff():
    root = create_gallery()

    try:
        cache, _, _, scheduler, _ = make_cache(root)
        snapshot = asyncio.run(cache.get_snapshot())

        assert snapshot.total_count == 5
        assert list(snapshot.by_directory) == ['.', 'a', 'b']
        assert [i.descriptor.name for i in snapshot.by_directory['.']] == ["alpha.png", "zeta.jpg"]
        assert [i.descriptor.name for i in snapshot.by_directory['b']] == ["one.jpg", "two.jpg"]

        # Handed to the scheduler in display order
        assert scheduler.enqueued == [["alpha.png", "zeta.jpg", "a/only.gif", "b/one.jpg", "b/two.jpg"]]

        payload = snapshot.to_dict()
        assert payload['totalImages'] == 5
        assert payload['scanDirectory'] == str(root)
        item = payload['galleries']['b'][0]
        assert item['relativePath'] == "b/one.jpg"
        assert item['thumbnailReady'] is False
        assert item['url'] == "/image/b/one.jpg"

    finally:
        shutil.rmtree(root)


def test_idempotent_within_window():
    """Test: A second call inside the freshness window does not rescan"""
    root = create_gallery()

    try:
        cache, scanner, _, scheduler, _ = make_cache(root)

        async def scenario():
            first = await cache.get_snapshot()
            second = await cache.get_snapshot()
            return first, second

        first, second = asyncio.run(scenario())

        assert first is second
        assert first.to_dict() == second.to_dict()
        assert scanner.calls == 1
        assert len(scheduler.enqueued) == 1

    finally:
        shutil.rmtree(root)


def test_concurrent_callers_share_one_build():
    root = create_gallery()

    try:
        cache, scanner, _, _, _ = make_cache(root)

        async def scenario():
            return await asyncio.gather(*(cache.get_snapshot() for _ in range(5)))

        snapshots = asyncio.run(scenario())

        assert scanner.calls == 1
        assert all(s is snapshots[0] for s in snapshots)
        assert cache.rebuild_count == 1

    finally:
        shutil.rmtree(root)


def test_expired_snapshot_rebuilt():
    root = create_gallery()

    try:
        cache, scanner, _, _, _ = make_cache(root, cache_duration=0)

        async def scenario():
            await cache.get_snapshot()
            await cache.get_snapshot()

        asyncio.run(scenario())
        assert scanner.calls == 2

    finally:
        shutil.rmtree(root)


def test_invalidate_is_lazy():
    root = create_gallery()

    try:
        cache, scanner, _, _, broadcaster = make_cache(root)

        async def scenario():
            subscription = broadcaster.subscribe()
            first = await cache.get_snapshot()

            (root / "new.jpg").write_bytes((root / "zeta.jpg").read_bytes())
            cache.invalidate("File added: new.jpg")
            calls_after_invalidate = scanner.calls

            second = await cache.get_snapshot()
            return first, second, calls_after_invalidate, drain(subscription)

        first, second, calls_after_invalidate, events = asyncio.run(scenario())

        assert calls_after_invalidate == 1, "invalidate alone never rescans"
        assert first.stale
        assert scanner.calls == 2
        assert second.total_count == 6
        assert not second.stale

        invalidated = [e for e in events if e.type is EventType.CACHE_INVALIDATED]
        assert invalidated[0].data == {'reason': "File added: new.jpg"}

    finally:
        shutil.rmtree(root)


def test_force_rescan():
    root = create_gallery()

    try:
        cache, scanner, _, _, _ = make_cache(root)

        async def scenario():
            await cache.get_snapshot()
            os.remove(root / "zeta.jpg")
            return await cache.force_rescan()

        snapshot = asyncio.run(scenario())
        assert scanner.calls == 2
        assert snapshot.total_count == 4

    finally:
        shutil.rmtree(root)


def test_existing_thumbnails_and_orphans():
    """Test: Existing thumbnails are reused; orphans are cleaned before the scan"""
    root = create_gallery()

    try:
        cache, _, store, scheduler, _ = make_cache(root)

        alpha = MediaDescriptor.from_path(root, root / "alpha.png")
        store.generate(alpha, ThumbnailVariant.FULL)
        store.generate(alpha, ThumbnailVariant.TINY)

        (root / "deleted.jpg").write_bytes((root / "zeta.jpg").read_bytes())
        deleted = MediaDescriptor.from_path(root, root / "deleted.jpg")
        store.generate(deleted, ThumbnailVariant.FULL)
        os.remove(root / "deleted.jpg")

        snapshot = asyncio.run(cache.get_snapshot())

        item = snapshot.find("alpha.png")
        assert item.thumbnail_ready
        assert item.thumbnail == store.url_for("alpha.png", ThumbnailVariant.FULL)
        assert item.tiny_thumbnail == store.url_for("alpha.png", ThumbnailVariant.TINY)
        assert "alpha.png" not in scheduler.enqueued[0]

        assert not store.exists(deleted, ThumbnailVariant.FULL), "Orphan removed"

    finally:
        shutil.rmtree(root)


def test_watcher_entry_points():
    root = create_gallery()

    try:
        cache, scanner, store, _, _ = make_cache(root)

        async def scenario():
            snapshot = await cache.get_snapshot()

            zeta = snapshot.find("zeta.jpg").descriptor
            store.generate(zeta, ThumbnailVariant.FULL)
            os.remove(root / "zeta.jpg")
            cache.handle_removed(root / "zeta.jpg")
            removed_thumbnail = store.exists(zeta, ThumbnailVariant.FULL)
            stale_after_remove = snapshot.stale

            # Outside the root: ignored
            cache.handle_added("/somewhere/else.jpg")

            rebuilt = await cache.get_snapshot()
            cache.handle_added(root / "b" / "three.jpg")
            return removed_thumbnail, stale_after_remove, rebuilt

        removed_thumbnail, stale_after_remove, rebuilt = asyncio.run(scenario())

        assert removed_thumbnail is False
        assert stale_after_remove is True
        assert rebuilt.total_count == 4
        assert rebuilt.stale, "handle_added invalidates"

    finally:
        shutil.rmtree(root)


def test_thumbnail_ready_patches_snapshot():
    root = create_gallery()

    try:
        cache, _, store, _, _ = make_cache(root)
        snapshot = asyncio.run(cache.get_snapshot())

        descriptor = snapshot.find("b/one.jpg").descriptor
        cache.on_thumbnail_ready(descriptor)

        item = snapshot.find("b/one.jpg")
        assert item.thumbnail_ready
        assert item.thumbnail == store.url_for("b/one.jpg", ThumbnailVariant.FULL)
        assert "b/one.jpg" not in [d.relative_path for d in snapshot.pending()]

    finally:
        shutil.rmtree(root)


def test_find_by_relative_path():
    root = create_gallery()

    try:
        cache, _, store, _, _ = make_cache(root)
        snapshot = asyncio.run(cache.get_snapshot())

        for item in snapshot.items():
            assert snapshot.find(item.descriptor.relative_path) is item
        assert snapshot.find("missing.jpg") is None

        url = store.url_for("a/only.gif", ThumbnailVariant.FULL)
        assert snapshot.mark_ready("a/only.gif", url)
        assert snapshot.by_directory['a'][0].thumbnail == url
        assert not snapshot.mark_ready("missing.jpg", url)

    finally:
        shutil.rmtree(root)


def test_cache_status():
    root = create_gallery()

    try:
        cache, _, _, _, _ = make_cache(root)
        before = cache.cache_status()
        assert before == {'cached': False, 'lastScan': None, 'isStale': True, 'cacheDuration': 30, 'age': None}

        snapshot = asyncio.run(cache.get_snapshot())
        after = cache.cache_status()
        assert after['cached'] is True
        assert after['isStale'] is False
        assert after['lastScan'] == snapshot.captured_at
        assert 0 <= after['age'] < 30

        cache.invalidate("Manual rescan")
        assert cache.cache_status()['isStale'] is True

    finally:
        shutil.rmtree(root)
