"""Tests for snapshot values, PNG codec, golden asset layout, comparison and report."""

import pytest
from PIL import Image

from conftest import frame


def _save(snapshot, path):
    from emutest.lib.frame_codec import save_png

    path.parent.mkdir(parents=True, exist_ok=True)
    return save_png(snapshot, path)


def _snap(*lit):
    from emutest.lib.snapshot import Snapshot

    return Snapshot(128, 32, frame(*lit))


# ═══════════════════════════════════════════════════════════════════
# Snapshot + frame codec
# ═══════════════════════════════════════════════════════════════════


class TestSnapshot:
    """Snapshot value type."""

    def test_wrong_buffer_size_rejected(self):
        """The buffer must be exactly width * height * 4 bytes."""
        from emutest.lib.snapshot import Snapshot

        with pytest.raises(ValueError, match="expected 16384"):
            Snapshot(128, 32, b"\x00" * 100)

    def test_bytearray_stored_as_bytes(self):
        """Mutable buffers are frozen into bytes."""
        from emutest.lib.snapshot import Snapshot

        snap = Snapshot(1, 1, bytearray(b"\x01\x02\x03\x04"))
        assert isinstance(snap.data, bytes)
        assert snap.hex() == "01020304"

    def test_from_image_converts_to_rgba(self):
        """RGB images gain an opaque alpha channel."""
        from emutest.lib.snapshot import Snapshot

        snap = Snapshot.from_image(Image.new("RGB", (2, 1), (10, 20, 30)))
        assert snap.data == bytes([10, 20, 30, 255] * 2)

    def test_same_pixels_ignores_path(self):
        """Pixel equality does not depend on where a snapshot was saved."""
        assert _snap((1, 1)).same_pixels(_snap((1, 1)).with_path("/tmp/x.png"))
        assert not _snap((1, 1)).same_pixels(_snap((2, 2)))

    def test_png_preserves_pixels(self, tmp_path):
        """Saving and loading a PNG keeps every RGBA value."""
        from emutest.lib.frame_codec import load_png

        original = _snap((0, 0), (127, 31))
        path = _save(original, tmp_path / "a.png")
        loaded = load_png(path)
        assert loaded.same_pixels(original)
        assert loaded.path == path

    def test_load_converts_palette_png(self, tmp_path):
        """Non-RGBA PNGs are converted on load."""
        from emutest.lib.frame_codec import load_png

        Image.new("L", (4, 2), 255).save(tmp_path / "grey.png")
        snap = load_png(tmp_path / "grey.png")
        assert (snap.width, snap.height) == (4, 2)
        assert snap.data == b"\xff" * 32


# ═══════════════════════════════════════════════════════════════════
# AssetStore
# ═══════════════════════════════════════════════════════════════════


class TestAssetStore:
    """Golden and candidate directory layout."""

    def test_index_name_zero_padded(self):
        """Ordinals are five-digit, zero-padded PNG names."""
        from emutest.lib.asset_store import index_name

        assert index_name(0) == "00000.png"
        assert index_name(42) == "00042.png"

    def test_negative_index_rejected(self):
        """Negative ordinals are invalid."""
        from emutest.lib.asset_store import index_name

        with pytest.raises(ValueError):
            index_name(-1)

    def test_layout(self, tmp_path):
        """Golden lives under snapshots/, candidates under snapshots-tmp/."""
        from emutest.lib.asset_store import AssetStore

        store = AssetStore(tmp_path, "settings")
        assert store.golden_path(3) == tmp_path / "snapshots" / "settings" / "00003.png"
        assert store.tmp_path(3) == tmp_path / "snapshots-tmp" / "settings" / "00003.png"
        assert [i for i, _, _ in store.pairs(3)] == [0, 1, 2]

    def test_accept_replaces_golden(self, tmp_path):
        """accept() copies the candidates and drops old golden files."""
        from emutest.lib.asset_store import AssetStore

        store = AssetStore(tmp_path, "case")
        store.ensure_dirs()
        _save(_snap(), store.golden_path(5))
        _save(_snap((1, 1)), store.tmp_path(0))
        _save(_snap((2, 2)), store.tmp_path(1))

        accepted = store.accept()
        assert [p.name for p in accepted] == ["00000.png", "00001.png"]
        assert sorted(p.name for p in store.golden_dir.iterdir()) == ["00000.png", "00001.png"]
        assert store.tmp_path(0).exists()

    def test_accept_without_candidates(self, tmp_path):
        """Nothing to accept is an error, and golden is left untouched."""
        from emutest.lib.asset_store import AssetStore

        store = AssetStore(tmp_path, "case")
        store.ensure_dirs()
        _save(_snap(), store.golden_path(0))
        with pytest.raises(FileNotFoundError, match="No candidate"):
            store.accept()
        assert store.golden_path(0).exists()

    def test_clear_tmp_missing_dir(self, tmp_path):
        """Clearing a tmp directory that does not exist is a no-op."""
        from emutest.lib.asset_store import AssetStore

        AssetStore(tmp_path, "nothing").clear_tmp()


# ═══════════════════════════════════════════════════════════════════
# Comparison
# ═══════════════════════════════════════════════════════════════════


class TestComparison:
    """Pixel-exact comparison results."""

    def test_identical(self):
        """Equal buffers compare equal with no locations."""
        from emutest.lib.comparison import compare_snapshots

        result = compare_snapshots(_snap((3, 3)), _snap((3, 3)), index=2)
        assert result.equal
        assert bool(result) is True
        assert result.message == "#00002: identical"
        assert result.total_pixels == 128 * 32

    def test_single_pixel(self):
        """One differing pixel is reported with its location and bbox."""
        from emutest.lib.comparison import compare_snapshots

        result = compare_snapshots(_snap((10, 5)), _snap())
        assert not result
        assert result.diff_pixels == 1
        assert result.diff_locations == [(10, 5)]
        assert result.bbox == (10, 5, 11, 6)
        assert "1/4096 pixels differ" in result.message

    def test_alpha_difference_counts(self):
        """Only-alpha differences are still differences."""
        from emutest.lib.comparison import compare_snapshots
        from emutest.lib.snapshot import Snapshot

        a = Snapshot(1, 1, b"\x00\x00\x00\xff")
        b = Snapshot(1, 1, b"\x00\x00\x00\xfe")
        assert not compare_snapshots(a, b).equal

    def test_size_mismatch(self):
        """Different dimensions never compare equal."""
        from emutest.lib.comparison import compare_snapshots
        from emutest.lib.snapshot import Snapshot

        result = compare_snapshots(Snapshot(1, 1, b"\x00" * 4), _snap())
        assert not result.equal
        assert "size 1x1 != golden 128x32" in result.message

    def test_compare_files_missing_candidate(self, tmp_path):
        """A missing candidate file is reported, not raised."""
        from emutest.lib.comparison import compare_files

        golden = _save(_snap(), tmp_path / "golden.png")
        result = compare_files(tmp_path / "none.png", golden, 4)
        assert not result.equal
        assert "missing candidate" in result.message
        assert result.golden_path == golden

    def test_compare_files_records_paths(self, tmp_path):
        """File comparisons keep both paths for reporting."""
        from emutest.lib.comparison import compare_files

        tmp = _save(_snap(), tmp_path / "tmp.png")
        golden = _save(_snap(), tmp_path / "golden.png")
        result = compare_files(tmp, golden)
        assert result.equal
        assert (result.tmp_path, result.golden_path) == (tmp, golden)

    def test_write_diff_image(self, tmp_path):
        """A failing pair renders a diff PNG of the same size."""
        from emutest.lib.comparison import compare_files, write_diff_image

        tmp = _save(_snap((1, 1)), tmp_path / "tmp.png")
        golden = _save(_snap(), tmp_path / "golden.png")
        result = compare_files(tmp, golden)
        path = write_diff_image(result, tmp_path / "out" / "diff.png")
        assert path == str(tmp_path / "out" / "diff.png")
        assert result.diff_path == path
        with Image.open(path) as img:
            assert img.size == (128, 32)

    def test_write_diff_image_skips_equal(self, tmp_path):
        """Nothing is drawn for an equal pair."""
        from emutest.lib.comparison import compare_files, write_diff_image

        tmp = _save(_snap(), tmp_path / "tmp.png")
        golden = _save(_snap(), tmp_path / "golden.png")
        assert write_diff_image(compare_files(tmp, golden), tmp_path / "diff.png") is None
        assert not (tmp_path / "diff.png").exists()


class TestComparisonFailure:
    """The raising wrapper around comparison results."""

    def test_failures_filters_results(self):
        """failures lists only the non-equal results."""
        from emutest.lib.comparison import ComparisonResult
        from emutest.lib.errors import ComparisonFailure, EmuTestError

        results = [ComparisonResult(equal=True, index=0), ComparisonResult(equal=False, index=1)]
        error = ComparisonFailure("1 differs", results)
        assert isinstance(error, EmuTestError)
        assert [r.index for r in error.failures] == [1]


# ═══════════════════════════════════════════════════════════════════
# HTML report
# ═══════════════════════════════════════════════════════════════════


class TestReport:
    """Golden vs. candidate HTML report."""

    def _results(self, tmp_path):
        from emutest.lib.asset_store import AssetStore
        from emutest.lib.session import Session

        store = AssetStore(tmp_path / "base", "case")
        _save(_snap(), store.tmp_path(0))
        _save(_snap(), store.golden_path(0))
        _save(_snap((2, 2)), store.tmp_path(1))
        _save(_snap(), store.golden_path(1))
        _save(_snap(), store.tmp_path(2))
        return Session.compare_snapshots(tmp_path / "base", "case", 3)

    def test_report_written(self, tmp_path):
        """index.html summarizes identical, differing and missing pairs."""
        from emutest.lib.report_generator import generate_report

        results = self._results(tmp_path)
        path = generate_report(tmp_path / "report", results, title="Menu <check>")
        content = (tmp_path / "report" / "index.html").read_text()
        assert path == str(tmp_path / "report" / "index.html")
        assert "Menu &lt;check&gt;" in content
        assert "1 identical" in content
        assert "1 differing" in content
        assert "1 missing" in content

    def test_report_renders_diff_images(self, tmp_path):
        """Differing pairs get a diff image linked from the report."""
        from emutest.lib.report_generator import generate_report

        results = self._results(tmp_path)
        generate_report(tmp_path / "report", results)
        assert (tmp_path / "report" / "diff" / "00001.png").exists()
        assert not (tmp_path / "report" / "diff" / "00000.png").exists()
        assert "diff/00001.png" in (tmp_path / "report" / "index.html").read_text()
