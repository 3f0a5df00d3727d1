"""
Pytest configuration and fixtures for photoindex tests.

The ``image_tree`` fixture builds a small photo library under tmp_path:

    photos/
        beach.jpg      English description, people/objects/scenes, EXIF with GPS
        forest.png     flat description, EXIF with GPS ~3.6 km from beach
        portrait.jpg   has_nudity, low-confidence person
        bare.jpg       no sidecars at all
        notes.txt      not an image
        nested/
            mountain.jpg   Dutch + English description, latitude without longitude
            broken.jpg     malformed description.json, valid objects.json
"""
import json
from pathlib import Path

import pytest
from PIL import Image

from photoindex.utils.settings import IndexSettings

BEACH_LAT, BEACH_LON = 52.3676, 4.9041


def make_image(path: Path, size=(32, 24), color=(200, 120, 40)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    fmt = "PNG" if path.suffix.lower() == ".png" else "JPEG"
    Image.new("RGB", size, color).save(path, fmt)
    return path


def write_sidecar(image_path: Path, stream: str, data, separator: str = ":") -> Path:
    target = Path(f"{image_path}{separator}{stream}")
    text = data if isinstance(data, str) else json.dumps(data)
    target.write_text(text, encoding="utf-8")
    return target


@pytest.fixture
def image_tree(tmp_path):
    root = tmp_path / "photos"

    beach = make_image(root / "beach.jpg", size=(64, 48))
    write_sidecar(beach, "description.json", {
        "English": {
            "short_description": "Sunset at the beach",
            "long_description": "A wide sandy beach at sunset with waves.",
            "keywords": ["beach", "sunset"],
            "has_nudity": False,
            "has_explicit_content": False,
            "picture_type": "landscape",
            "style_type": "photograph",
            "overall_mood_of_image": "calm",
        }
    })
    write_sidecar(beach, "people.json", {
        "success": True,
        "predictions": [
            {"userid": "Alice", "confidence": 0.92, "x_min": 1, "y_min": 2, "x_max": 10, "y_max": 20}
        ],
    })
    write_sidecar(beach, "objects.json", [
        {"label": "umbrella", "confidence": 0.8},
        {"label": "100%_cotton towel", "confidence": 0.6},
    ])
    write_sidecar(beach, "scenes.json", {"scene": "beach", "confidence": 0.95})
    write_sidecar(beach, "exif.json", {
        "Make": "Canon",
        "Model": "EOS R5",
        "ISO": 100,
        "ExposureTime": "1/250",
        "FNumber": "f/2.8",
        "FocalLength": "35 mm",
        "DateTimeOriginal": "2023:07:14 19:45:00",
        "GPSLatitude": BEACH_LAT,
        "GPSLongitude": BEACH_LON,
        "GPSAltitude": 2.0,
    })

    forest = make_image(root / "forest.png", size=(40, 30), color=(20, 120, 30))
    write_sidecar(forest, "description.json", {
        "short": "Forest path",
        "long": "A path through a pine forest",
        "keywords": "forest, trees, path",
        "has_nudity": False,
        "picture_type": "landscape",
        "overall_mood": "mysterious",
    })
    write_sidecar(forest, "exif.json", {
        "camera_make": "Nikon",
        "camera_model": "Z6",
        "iso": 800,
        "exposure_time": 0.01,
        "f_number": 4.0,
        "focal_length": 50,
        "date_taken": "2022-03-01 10:00:00",
        "gps_latitude": 52.4000,
        "gps_longitude": 4.9000,
    })

    portrait = make_image(root / "portrait.jpg", size=(20, 40))
    write_sidecar(portrait, "description.json", {
        "English": {
            "short_description": "Studio portrait",
            "keywords": ["portrait", "studio"],
            "has_nudity": True,
            "has_explicit_content": False,
            "picture_type": "portrait",
        }
    })
    write_sidecar(portrait, "people.json", [{"label": "Bob", "confidence": 0.4}])

    make_image(root / "bare.jpg")
    (root / "notes.txt").write_text("not an image", encoding="utf-8")

    mountain = make_image(root / "nested" / "mountain.jpg", size=(50, 50))
    write_sidecar(mountain, "description.json", {
        "Dutch": {"short_description": "Berg bij zonsopgang", "keywords": ["berg", "zonsopgang"]},
        "English": {"short_description": "Mountain at sunrise", "keywords": ["mountain", "sunrise"]},
    })
    write_sidecar(mountain, "exif.json", {"GPSLatitude": 45.8326, "ISO": 400})

    broken = make_image(root / "nested" / "broken.jpg")
    write_sidecar(broken, "description.json", "{not json")
    write_sidecar(broken, "objects.json", [{"label": "car", "confidence": 0.7}])

    return root


@pytest.fixture
def make_settings(tmp_path, image_tree):
    """Factory for IndexSettings pointing at image_tree and a temp database."""
    def _make(**overrides) -> IndexSettings:
        values = {
            "database_path": tmp_path / "db" / "index.sqlite3",
            "image_directories": [str(image_tree)],
            "max_workers": 2,
            "read_embedded_exif": False,
        }
        values.update(overrides)
        return IndexSettings(**values)
    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()
