"""
HTTP adapter tests with FastAPI's TestClient.
"""

import shutil
import tempfile
import time
from pathlib import Path

from fastapi.testclient import TestClient
from PIL import Image

from dirgallery.server.src.api.api import create_app
from dirgallery.server.src.core.keys import ThumbnailVariant
from dirgallery.server.src.services.gallery import GalleryService


def create_gallery():
    root = Path(tempfile.mkdtemp(prefix="api_")).resolve()
    Image.new('RGB', (640, 480), (255, 128, 0)).save(root / "cat.jpg")
    (root / "album").mkdir()
    Image.new('RGB', (320, 240), (0, 128, 255)).save(root / "album" / "dog.png")
    return root


def wait_for_generation(client, timeout=10):
    deadline = time.time() + timeout
    while time.time() < deadline:
        status = client.get("/api/generation-status").json()
        if not status['isGenerating'] and status['completed'] == status['total']:
            return status
        time.sleep(0.05)
    raise AssertionError("thumbnail generation did not finish")


def test_gallery_endpoints():
    root = create_gallery()

    try:
        app = create_app(GalleryService(root), watch=False)
        with TestClient(app) as client:
            assert client.get("/health").json() == {"status": "healthy"}
            assert client.get("/").json()['scanDirectory'] == str(root)

            response = client.get("/api/gallery")
            assert response.status_code == 200
            data = response.json()
            print(f"  Gallery: {data['totalImages']} items in {list(data['galleries'])}")

            assert data['totalImages'] == 2
            assert list(data['galleries']) == ['.', 'album']
            assert data['cached'] is False
            assert data['galleries']['album'][0]['relativePath'] == "album/dog.png"

            assert client.get("/api/gallery").json()['cached'] is True

            status = client.get("/api/cache-status").json()
            assert status['cached'] is True
            assert status['isStale'] is False

            # Thumbnails become available through the static mount
            wait_for_generation(client)
            data = client.get("/api/gallery").json()
            item = data['galleries']['.'][0]
            assert item['thumbnailReady'] is True
            thumb = client.get(item['thumbnail'])
            assert thumb.status_code == 200
            assert thumb.headers['content-type'] == "image/jpeg"

            rescan = client.post("/api/rescan").json()
            assert rescan['success'] is True
            assert rescan['totalImages'] == 2

            assert client.post("/api/cleanup").json() == {"success": True, "removed": 0}

    finally:
        shutil.rmtree(root)


def test_image_serving_and_traversal_guard():
    root = create_gallery()
    outside = Path(tempfile.mkdtemp(prefix="outside_")).resolve()
    Image.new('RGB', (10, 10)).save(outside / "secret.jpg")
    (root / "escape.jpg").symlink_to(outside / "secret.jpg")

    try:
        app = create_app(GalleryService(root), watch=False)
        with TestClient(app) as client:
            response = client.get("/image/album/dog.png")
            assert response.status_code == 200
            assert response.content == (root / "album" / "dog.png").read_bytes()

            assert client.get("/image/missing.jpg").status_code == 404
            assert client.get("/image/escape.jpg").status_code == 403

    finally:
        shutil.rmtree(root)
        shutil.rmtree(outside)


def test_thumbnail_on_demand():
    root = create_gallery()
    outside = Path(tempfile.mkdtemp(prefix="outside_")).resolve()
    Image.new('RGB', (10, 10)).save(outside / "secret.jpg")
    (root / "escape.jpg").symlink_to(outside / "secret.jpg")
    (root / "broken.jpg").write_bytes(b"not a jpeg")

    try:
        gallery = GalleryService(root)
        app = create_app(gallery, watch=False)
        with TestClient(app) as client:
            response = client.get("/api/thumbnail/album/dog.png")
            assert response.status_code == 200
            url = response.json()['thumbnail']
            assert url.startswith("/static/thumbnails/")
            print(f"  album/dog.png → {url}")

            with Image.open(gallery.store.path_for("album/dog.png", ThumbnailVariant.FULL)) as img:
                assert img.size == (300, 225)
            assert client.get(url).status_code == 200

            # Already present: same URL, no regeneration needed
            assert client.get("/api/thumbnail/album/dog.png").json() == {"thumbnail": url}

            assert client.get("/api/thumbnail/notes.txt").status_code == 400
            assert client.get("/api/thumbnail/escape.jpg").status_code == 403
            assert client.get("/api/thumbnail/missing.jpg").status_code == 404
            assert client.get("/api/thumbnail/broken.jpg").status_code == 500

    finally:
        shutil.rmtree(root)
        shutil.rmtree(outside)


def test_pause_and_viewport():
    root = create_gallery()

    try:
        app = create_app(GalleryService(root), watch=False)
        with TestClient(app) as client:
            assert client.post("/api/pause").json() == {"isPaused": True}

            client.get("/api/gallery")
            response = client.post("/api/viewport", json={"paths": ["album/dog.png", "nope.jpg"]})
            assert response.status_code == 200
            assert response.json() == {"success": True, "prioritized": 1}

            assert client.get("/api/generation-status").json()['isPaused'] is True
            assert client.post("/api/pause").json() == {"isPaused": False}

            assert client.post("/api/viewport", json={"paths": "not-a-list"}).status_code == 422

    finally:
        shutil.rmtree(root)


def test_metadata_endpoints():
    root = create_gallery()

    try:
        app = create_app(GalleryService(root), watch=False)
        with TestClient(app) as client:
            empty = client.get("/api/metadata/cat.jpg").json()
            assert empty['tags'] == [] and empty['rating'] == 0

            response = client.put("/api/metadata/cat.jpg", json={"tags": ["Pet"], "rating": 4})
            assert response.status_code == 200
            assert response.json()['tags'] == ["Pet"]

            response = client.put("/api/metadata/album/dog.png", json={"description": "Good boy"})
            assert response.json()['description'] == "Good boy"

            assert client.get("/api/metadata/cat.jpg").json()['rating'] == 4
            assert client.put("/api/metadata/cat.jpg", json={"rating": 9}).status_code == 422
            assert client.get("/api/metadata/notes.txt").status_code == 400

            results = client.get("/api/search", params={"q": "pet"}).json()
            assert [r['imagePath'] for r in results] == ["cat.jpg"]
            assert results[0]['metadata']['rating'] == 4

            assert client.delete("/api/metadata/cat.jpg").json() == {"success": True}
            assert client.delete("/api/metadata/cat.jpg").status_code == 404

    finally:
        shutil.rmtree(root)
