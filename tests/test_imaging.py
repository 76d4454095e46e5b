import asyncio
import base64
import os

import pytest

from tasknest.imaging import (
    MAX_ATTEMPTS,
    MIN_DIMENSION,
    MIN_QUALITY,
    EncodedImage,
    EncodingFailure,
    ImageAsset,
    InvalidAssetError,
    PillowEncoder,
    base64_size,
    compress_image,
    decode_data_uri,
    format_file_size,
    next_quality,
    process_image,
    target_box,
    to_data_uri,
    validate_image_size,
)

from .helpers import data_uri, image_bytes


class FakeEncoder:
    """Returns payloads of scripted sizes; the last size repeats once the script runs out."""

    def __init__(self, sizes, default_box=(1000, 1000)):
        self.sizes = list(sizes)
        self.default_box = default_box
        self.calls = []

    async def encode(self, source, box, quality):
        self.calls.append((source, box, quality))
        size = self.sizes[min(len(self.calls), len(self.sizes)) - 1]
        width, height = box or self.default_box
        return EncodedImage(
            base64=base64.b64encode(b"\0" * size).decode("ascii"),
            width=width,
            height=height,
            quality=quality,
        )


class BrokenEncoder:
    async def encode(self, source, box, quality):
        raise RuntimeError("native bridge crashed")


def run(coro):
    return asyncio.run(coro)


# --- size measurement -------------------------------------------------------

@pytest.mark.parametrize("length", [0, 1, 2, 3, 4, 5, 17, 1000, 4097])
def test_base64_size_matches_buffer_length(length):
    encoded = base64.b64encode(os.urandom(length)).decode("ascii")
    assert base64_size(encoded) == length


def test_base64_size_ignores_data_uri_prefix():
    encoded = base64.b64encode(os.urandom(101)).decode("ascii")
    assert base64_size("data:image/jpeg;base64," + encoded) == 101
    assert base64_size("data:image/png;base64," + encoded) == base64_size(encoded)


def test_base64_size_empty():
    assert base64_size("") == 0
    assert base64_size(None) == 0


# --- formatting -------------------------------------------------------------

def test_format_file_size():
    assert format_file_size(0) == "0 Bytes"
    assert format_file_size(-12) == "0 Bytes"
    assert format_file_size(500) == "500 Bytes"
    assert format_file_size(1024) == "1.00 KB"
    assert format_file_size(1536) == "1.50 KB"
    assert format_file_size(1048576) == "1.00 MB"
    assert format_file_size(3 * 1024 ** 3) == "3.00 GB"


def test_format_file_size_clamps_to_largest_unit():
    assert format_file_size(5 * 1024 ** 4) == "5120.00 GB"


# --- data uri helpers -------------------------------------------------------

def test_decode_data_uri_round_trip():
    raw = image_bytes()
    assert decode_data_uri(data_uri(raw)) == raw
    assert to_data_uri("abcd").startswith("data:image/jpeg;base64,")
    assert to_data_uri("data:image/png;base64,abcd") == "data:image/png;base64,abcd"


def test_decode_data_uri_rejects_garbage():
    with pytest.raises(InvalidAssetError):
        decode_data_uri("data:image/jpeg;base64,@@not base64@@")


def test_validate_image_size():
    payload = base64.b64encode(b"\0" * 2000).decode("ascii")
    assert validate_image_size(None, 10)
    assert validate_image_size(payload, 2000)
    assert not validate_image_size(payload, 1999)


# --- compression loop -------------------------------------------------------

def test_step_functions_respect_floors():
    assert next_quality(0.8) == 0.7
    assert next_quality(0.15) == MIN_QUALITY
    assert next_quality(MIN_QUALITY) == MIN_QUALITY
    assert target_box(0) == (800, 800)
    assert target_box(3) == (500, 500)
    assert target_box(7) == (MIN_DIMENSION, MIN_DIMENSION)


def test_compress_returns_first_fitting_pass():
    encoder = FakeEncoder([3000, 1500, 900, 100])
    result = run(compress_image("photo.jpg", 1000, encoder=encoder))

    assert result.size == 900
    assert [c[1] for c in encoder.calls] == [(800, 800), (700, 700), (600, 600)]
    assert [c[2] for c in encoder.calls] == [0.8, 0.7, 0.6]


def test_compress_always_reencodes_original_source():
    encoder = FakeEncoder([5000, 4000, 3000, 10])
    run(compress_image(b"original", 1000, encoder=encoder))
    assert all(call[0] == b"original" for call in encoder.calls)


def test_compress_gives_best_effort_on_unmeetable_budget():
    encoder = FakeEncoder([5000, 4000, 3000, 2500])
    result = run(compress_image("photo.jpg", 1, encoder=encoder))

    assert len(encoder.calls) == MAX_ATTEMPTS + 1
    assert result is not None
    assert result.size == 2500
    assert [c[2] for c in encoder.calls] == [0.8, 0.7, 0.6, 0.5, 0.4, 0.3, 0.2, 0.1, 0.1]
    assert [c[1][0] for c in encoder.calls] == [800, 700, 600, 500, 400, 400, 400, 400, 400]


def test_compress_never_goes_below_floors():
    encoder = FakeEncoder([5000])
    run(compress_image("photo.jpg", 0, initial_quality=0.15, encoder=encoder))

    assert min(c[2] for c in encoder.calls) >= MIN_QUALITY
    assert min(min(c[1]) for c in encoder.calls) >= MIN_DIMENSION


def test_compress_rejects_bad_quality():
    with pytest.raises(ValueError):
        run(compress_image("photo.jpg", 1000, initial_quality=0, encoder=FakeEncoder([1])))


def test_encoder_errors_become_encoding_failure():
    with pytest.raises(EncodingFailure):
        run(compress_image("photo.jpg", 1000, encoder=BrokenEncoder()))


# --- intake orchestration ---------------------------------------------------

def test_process_image_skips_compression_when_within_budget():
    encoder = FakeEncoder([500])
    advisories = []
    result = run(
        process_image(ImageAsset(uri="photo.jpg"), 1000, encoder=encoder, on_advisory=advisories.append)
    )

    assert result.compressed is False
    assert result.size == 500
    assert result.original_size is None
    assert result.budget_met
    assert len(encoder.calls) == 1
    assert encoder.calls[0][1:] == (None, 1.0)
    assert advisories == []


def test_process_image_compresses_oversized_photo():
    encoder = FakeEncoder([5000, 3000, 900])
    advisories = []
    result = run(
        process_image(ImageAsset(uri="photo.jpg"), 1000, encoder=encoder, on_advisory=advisories.append)
    )

    assert result.compressed is True
    assert result.original_size == 5000
    assert result.size == 900
    assert result.quality == 0.7
    assert len(encoder.calls) == 3
    assert len(advisories) == 1
    assert "4.88 KB" in advisories[0]


def test_process_three_megabyte_photo():
    original = 3 * 1024 * 1024
    encoder = FakeEncoder([original, 2_000_000, 1_000_000])
    result = run(process_image(ImageAsset(uri="big.jpg"), 1048576, encoder=encoder))

    assert result.original_size == original
    assert result.compressed is True
    assert result.size <= result.original_size
    assert result.budget_met
    assert format_file_size(result.size) == "976.56 KB"


def test_process_image_reports_unmet_budget():
    encoder = FakeEncoder([5000])
    result = run(process_image(ImageAsset(uri="photo.jpg"), 1, encoder=encoder))

    assert result.compressed is True
    assert result.size == 5000
    assert not result.budget_met


@pytest.mark.parametrize("asset", [None, ImageAsset(), ImageAsset(width=10, height=10, data=b"")])
def test_process_image_rejects_assets_without_source(asset):
    encoder = FakeEncoder([1])
    with pytest.raises(InvalidAssetError):
        run(process_image(asset, 1000, encoder=encoder))
    assert encoder.calls == []


def test_asset_falls_back_to_base64_field():
    raw = image_bytes()
    assert ImageAsset(base64=data_uri(raw)).source == raw


# --- Pillow encoder ---------------------------------------------------------

def test_pillow_encoder_fits_within_box_keeping_aspect():
    encoded = run(PillowEncoder().encode(image_bytes((1600, 800)), (800, 800), 0.8))

    assert (encoded.width, encoded.height) == (800, 400)
    assert encoded.size == len(encoded.to_bytes())
    assert encoded.to_bytes()[:3] == b"\xff\xd8\xff"


def test_pillow_encoder_reads_paths(tmp_path):
    path = tmp_path / "photo.png"
    path.write_bytes(image_bytes((120, 90)))

    encoded = run(PillowEncoder().encode(str(path), None, 1.0))
    assert (encoded.width, encoded.height) == (120, 90)


def test_pillow_encoder_rejects_non_images():
    with pytest.raises(EncodingFailure):
        run(PillowEncoder().encode(b"definitely not an image", None, 1.0))


def test_process_small_real_photo_is_untouched():
    result = run(process_image(ImageAsset(data=image_bytes((50, 40))), 1024 * 1024))

    assert result.compressed is False
    assert (result.width, result.height) == (50, 40)


def test_process_large_real_photo_is_compressed(tmp_path):
    path = tmp_path / "noise.png"
    path.write_bytes(image_bytes((1200, 1000), noise=True))
    budget = 200 * 1024

    result = run(process_image(ImageAsset(uri=str(path)), budget))

    assert result.compressed is True
    assert result.original_size > budget
    assert result.size <= result.original_size
    assert max(result.width, result.height) <= 800
    assert result.size == len(result.to_bytes())


def test_format_file_size_fractional_bytes():
    assert format_file_size(0.5) == "0 Bytes"
    assert format_file_size(1.5) == "1 Bytes"


def test_decode_data_uri_accepts_wrapped_base64():
    raw = image_bytes((32, 32))
    encoded = base64.encodebytes(raw).decode("ascii")
    assert "\n" in encoded
    assert decode_data_uri("data:image/png;base64," + encoded) == raw
