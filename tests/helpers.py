"""Payload builders for catalog API fakes."""

from __future__ import annotations

from typing import Any


def track_payload(
    name: str,
    artists: list[str],
    *,
    track_id: str | None = None,
    album: str = "Album",
) -> dict[str, Any]:
    identifier = track_id or name.lower().replace(" ", "-")
    return {
        "id": identifier,
        "uri": f"spotify:track:{identifier}",
        "name": name,
        "artists": [
            {"id": f"artist-{index}", "name": artist} for index, artist in enumerate(artists)
        ],
        "album": {
            "id": f"album-{identifier}",
            "name": album,
            "images": [{"url": f"https://img.test/{identifier}.jpg", "width": 640, "height": 640}],
        },
        "duration_ms": 200_000,
    }


def search_body(*tracks: dict[str, Any]) -> dict[str, Any]:
    return {"tracks": {"items": list(tracks)}}
