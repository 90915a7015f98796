"""Display client message handling, without a live relay"""
import base64
import json
import os

from aquarium_relay.clients.display import DirectorySurface, DisplayClient
from aquarium_relay.services.image_replacer import ImageReplacer


def make_client(tmp_path, **kwargs):
    surface = DirectorySurface(tmp_path / "out")
    return DisplayClient(ImageReplacer(surface), url="ws://unused/ws", **kwargs), surface


def binary_metadata(filename="character1.png", size=0):
    return {
        "type": "image_replace_binary",
        "filename": filename,
        "mimeType": "image/png",
        "size": size,
        "timestamp": 0,
        "uploadMethod": "binary-chunked",
    }


def test_directory_surface_writes_target_files(tmp_path):
    client, surface = make_client(tmp_path)
    data = os.urandom(128)

    client.handle_event("image-replace-binary-metadata", binary_metadata(size=len(data)))
    resource = client.handle_bytes(data)

    assert resource.data == data
    path = surface.applied[".character1"]
    assert path.name == "character1.png"
    assert path.read_bytes() == data


def test_binary_frame_without_metadata_dropped(tmp_path):
    client, surface = make_client(tmp_path)
    assert client.handle_bytes(b"orphan") is None
    assert surface.applied == {}


def test_metadata_pairs_with_next_frame_only(tmp_path):
    client, surface = make_client(tmp_path)
    client.handle_event("image-replace-binary-metadata", binary_metadata())
    client.handle_bytes(b"first")

    assert client.handle_bytes(b"second") is None
    assert surface.applied[".character1"].read_bytes() == b"first"


def test_base64_copy_of_binary_upload_skipped(tmp_path):
    client, surface = make_client(tmp_path)
    data = os.urandom(64)
    compat = {
        "type": "image_replace",
        "filename": "character1.png",
        "mimeType": "image/png",
        "data": base64.b64encode(b"other").decode(),
        "uploadMethod": "binary-chunked",
    }

    client.handle_event("image-replace-binary-metadata", binary_metadata(size=len(data)))
    client.handle_bytes(data)
    assert client.handle_event("image-replace", compat) is None
    assert surface.applied[".character1"].read_bytes() == data

    # a later Base64 replacement is applied normally
    compat["uploadMethod"] = None
    assert client.handle_event("image-replace", compat).data == b"other"


def test_image_replace_text_message(tmp_path):
    client, surface = make_client(tmp_path)
    message = {
        "filename": "walking-right-2.png",
        "mimeType": "image/png",
        "data": base64.b64encode(b"ghost").decode(),
    }
    client.handle_text(json.dumps({"event": "image-simple", "data": message}))

    assert surface.applied[".walking-right-2"].read_bytes() == b"ghost"


def test_legacy_chunk_events(tmp_path):
    client, surface = make_client(tmp_path)
    fragments = [base64.b64encode(part).decode() for part in (b"boo", b"!!!")]

    client.handle_event("image-start", {"filename": "character4.png", "totalChunks": 2})
    for index, fragment in enumerate(fragments):
        client.handle_event("image-chunk", {"filename": "character4.png", "chunkIndex": index, "data": fragment})
    resource = client.handle_event("image-complete", {"filename": "character4.png"})

    assert resource.data == b"boo!!!"
    assert surface.applied[".character4"].read_bytes() == b"boo!!!"


def test_control_events_reach_callback(tmp_path):
    received = []
    client, _ = make_client(tmp_path, on_control=lambda event, data: received.append((event, data)))

    client.handle_text(json.dumps({"event": "character-shake", "data": {"character": "character1"}}))
    client.handle_text(json.dumps({"event": "client-count", "data": {"displays": 1, "controllers": 2}}))
    client.handle_text("not json")

    assert received == [("character-shake", {"character": "character1"})]
    assert client.client_count == {"displays": 1, "controllers": 2}


def test_configured_targets_include_data_image_name(tmp_path):
    surface = DirectorySurface(tmp_path / "out", targets=['[data-image-name="moon.png"]'])
    replacer = ImageReplacer(surface)

    resource = replacer.handle_binary({"filename": "moon.png", "mimeType": "image/png"}, b"moon")

    assert resource is not None
    assert surface.list_available_targets() == ['[data-image-name="moon.png"]']
    assert surface.applied['[data-image-name="moon.png"]'].name == "data-image-name_moon_png.png"


def test_oversized_legacy_start_does_not_stop_display(tmp_path):
    client, surface = make_client(tmp_path)

    assert client.handle_event("image-start", {"filename": "character1.png", "totalChunks": 10 ** 19}) is None

    data = os.urandom(16)
    client.handle_event("image-replace-binary-metadata", binary_metadata(size=len(data)))
    assert client.handle_bytes(data).data == data
