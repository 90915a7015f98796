"""Display-side decoding and filename targeting"""
import base64
import os

import pytest

from aquarium_relay.core.errors import DecodeError
from aquarium_relay.services.image_replacer import (
    DisplaySurface,
    ImageReplacer,
    clean_base64,
    decode_base64,
    decode_fragments,
    resolve_targets,
)


class RecordingSurface(DisplaySurface):
    def __init__(self):
        self.applied = []

    def apply(self, target, resource):
        self.applied.append((target, resource))


@pytest.fixture
def surface():
    return RecordingSurface()


@pytest.fixture
def replacer(surface):
    return ImageReplacer(surface)


@pytest.mark.parametrize("filename, expected", [
    ("character3.png", [".character3"]),
    ("Character12.WEBP", [".character12"]),
    ("walking-left-1.gif", [".walking-left"]),
    ("walking-right-2.webp", [".walking-right-2"]),
    ("background.jpg", []),
])
def test_resolve_targets(filename, expected):
    assert resolve_targets(filename) == expected + [f'[data-image-name="{filename}"]']


def test_clean_base64_repairs_payload():
    assert clean_base64("aGVs\nbG8") == "aGVsbG8="
    assert clean_base64("data:image/png;base64,aGVsbG8=") == "aGVsbG8="
    assert clean_base64("aGVsbG8h!") == "aGVsbG8h"
    # a single dangling character cannot encode anything
    assert clean_base64("aGVsb") == "aGVs"


def test_decode_base64_errors():
    with pytest.raises(DecodeError):
        decode_base64("")
    with pytest.raises(DecodeError):
        decode_base64("data:image/png,rawbytes")
    with pytest.raises(DecodeError):
        decode_base64("!!!!")


def test_decode_fragments_joined_text():
    data = os.urandom(1000)
    text = base64.b64encode(data).decode()
    fragments = [text[i:i + 101] for i in range(0, len(text), 101)]
    assert decode_fragments(fragments) == data


def test_decode_fragments_separately_padded():
    data = os.urandom(1000)
    fragments = [base64.b64encode(data[i:i + 301]).decode() for i in range(0, len(data), 301)]
    assert decode_fragments(fragments) == data


def test_binary_image_applied_to_character(replacer, surface):
    data = os.urandom(64)
    resource = replacer.handle_binary({"filename": "character2.png", "mimeType": "image/png"}, data)

    assert resource.data == data
    assert resource.upload_method == "binary"
    assert [target for target, _ in surface.applied] == [".character2"]
    assert replacer.images["character2.png"] is resource


def test_unsupported_type_not_applied(replacer, surface):
    resource = replacer.handle_binary({"filename": "character2.bmp", "mimeType": "image/bmp"}, b"BM")
    assert resource is None
    assert surface.applied == []


def test_unmatched_filename_not_applied(replacer, surface):
    assert replacer.handle_binary({"filename": "sunset.png", "mimeType": "image/png"}, b"x") is None
    assert surface.applied == []


def test_image_message_with_data_url(replacer):
    data = os.urandom(50)
    message = {
        "filename": "walking-left-1.png",
        "mimeType": "image/png",
        "data": "data:image/png;base64," + base64.b64encode(data).decode(),
    }
    resource = replacer.handle_image_message(message)

    assert resource.data == data
    assert resource.upload_method == "base64"


def test_undecodable_image_message_is_logged(replacer, surface):
    message = {"filename": "character1.png", "mimeType": "image/png", "data": ""}
    assert replacer.handle_image_message(message) is None
    assert surface.applied == []


def test_legacy_fragments_out_of_order(replacer):
    data = os.urandom(900)
    text = base64.b64encode(data).decode()
    fragments = [text[i:i + 400] for i in range(0, len(text), 400)]

    replacer.start_chunked_receive({"filename": "character1.gif", "totalChunks": len(fragments), "mimeType": "image/gif"})
    for index in reversed(range(len(fragments))):
        assert replacer.receive_chunk({"filename": "character1.gif", "chunkIndex": index, "data": fragments[index]})
    resource = replacer.complete_chunked_receive({"filename": "character1.gif"})

    assert resource.data == data
    assert resource.mime_type == "image/gif"
    assert resource.upload_method == "base64-chunked"
    assert "character1.gif" not in replacer.assemblies


def test_legacy_fragments_implicit_index(replacer):
    data = os.urandom(300)
    fragments = [base64.b64encode(data[i:i + 100]).decode() for i in range(0, 300, 100)]

    replacer.start_chunked_receive({"filename": "character1.png", "totalChunks": 3})
    for fragment in fragments:
        replacer.receive_chunk({"filename": "character1.png", "data": fragment})

    assert replacer.complete_chunked_receive({"filename": "character1.png"}).data == data


def test_legacy_missing_fragment_not_applied(replacer, surface):
    replacer.start_chunked_receive({"filename": "character1.png", "totalChunks": 3})
    replacer.receive_chunk({"filename": "character1.png", "chunkIndex": 0, "data": "aGVs"})
    replacer.receive_chunk({"filename": "character1.png", "chunkIndex": 2, "data": "bG8="})

    assert replacer.complete_chunked_receive({"filename": "character1.png"}) is None
    assert surface.applied == []


def test_legacy_chunk_without_start(replacer):
    assert replacer.receive_chunk({"filename": "character1.png", "chunkIndex": 0, "data": "aGVs"}) is False
    assert replacer.receive_chunk({"filename": "character1.png", "chunkIndex": 0}) is False


def test_legacy_start_with_huge_chunk_count_is_skipped(replacer):
    replacer.start_chunked_receive({"filename": "character1.png", "totalChunks": 10 ** 19})

    assert replacer.assemblies == {}
    assert replacer.receive_chunk({"filename": "character1.png", "chunkIndex": 0, "data": "aGVs"}) is False
