"""Tests for the site exporter and the bundle reader/host."""

import json

import pytest

from dishcovery.ar import placement as package_placement
from dishcovery.ar.bundle import BundleError, SiteBundle
from dishcovery.ar.errors import ConfigurationError
from dishcovery.ar.hosts import BundleHost, describe_item
from dishcovery.ar.session import SessionStatus
from dishcovery.export.site_exporter import (
    MANIFEST_NAME,
    ExportStatus,
    MenuItem,
    SiteConfig,
    SiteExporter,
    load_menu,
)
from dishcovery.utils import file_hash

from conftest import MARKER_B64, MARKER_BYTES, settle


@pytest.fixture
def source(tmp_path):
    """Dashboard export with one model and one photo."""
    root = tmp_path / "source"
    (root / "models").mkdir(parents=True)
    (root / "photos").mkdir()
    (root / "models" / "burger.glb").write_bytes(b"glb-bytes")
    (root / "photos" / "burger.jpg").write_bytes(b"jpg-bytes")
    return root


@pytest.fixture
def items():
    return [
        MenuItem.from_dict({
            "id": "burger",
            "name": "Burger",
            "price": 12.5,
            "target_image": "photos/burger.jpg",
            "model": "models/burger.glb",
            "compiled_target": MARKER_B64,
            "model_config": {"scale": 1.5, "position": {"x": 0, "y": 0.05, "z": 0}},
        }),
        MenuItem.from_dict({
            "id": "salad",
            "name": "Salad <Green>",
            "price": 8,
            "targetImageUrl": "photos/burger.jpg",
        }),
    ]


async def export_bundle(items, tmp_path, source, site=None):
    out = tmp_path / "bundle"
    result = await SiteExporter(site).export(items, out, source)
    assert result.status == ExportStatus.COMPLETED, result.error_message
    return out, result


class TestMenuItem:
    """Tests for MenuItem decoding."""

    def test_camel_case_fields(self):
        """The dashboard's camelCase keys are accepted."""
        item = MenuItem.from_dict({
            "id": 7,
            "name": "Soup",
            "modelUrl": "https://cdn.example.com/soup.glb",
            "compiledTarget": MARKER_B64,
            "modelConfig": {"scale": 2},
        })
        assert item.id == "7"
        assert item.model == "https://cdn.example.com/soup.glb"
        assert item.compiled_target == MARKER_B64
        assert item.model_config.scale == 2.0

    def test_name_defaults_to_id(self):
        assert MenuItem.from_dict({"id": "x1"}).name == "x1"


class TestSiteConfig:
    """Tests for SiteConfig."""

    def test_unknown_theme_and_font(self):
        """Unknown choices fall back to the defaults."""
        site = SiteConfig(theme="neon", font="comic")
        assert site.theme == "midnight"
        assert site.font == "sans"

    def test_from_dict_ignores_unknown_keys(self):
        site = SiteConfig.from_dict({"title": "Chez Nous", "theme": "paper", "unknown": 1, "phone": None})
        assert site.title == "Chez Nous"
        assert site.theme == "paper"
        assert site.phone is None


class TestLoadMenu:
    """Tests for load_menu."""

    def test_plain_list(self, tmp_path):
        path = tmp_path / "menu.json"
        path.write_text(json.dumps([{"id": "a", "name": "A"}]))
        site, items = load_menu(path)
        assert site.title == "Dishcovery"
        assert [item.id for item in items] == ["a"]

    def test_site_and_items(self, tmp_path):
        path = tmp_path / "menu.json"
        path.write_text(json.dumps({"site": {"title": "Bistro", "font": "serif"}, "items": [{"id": "a"}]}))
        site, items = load_menu(path)
        assert (site.title, site.font) == ("Bistro", "serif")
        assert len(items) == 1

    @pytest.mark.parametrize("content, match", [
        ("{not json", "Expecting"),
        ('[{"name": "No id"}]', "missing 'id'"),
        ('[{"id": "a", "modelConfig": {"scale": -1}}]', "scale"),
        ('["burger"]', "Malformed"),
        ("42", "list of items"),
    ])
    def test_malformed_menu(self, tmp_path, content, match):
        """Every broken menu surfaces as a ValueError."""
        path = tmp_path / "menu.json"
        path.write_text(content)
        with pytest.raises(ValueError, match=match):
            load_menu(path)


class TestSiteExporter:
    """Tests for SiteExporter."""

    @pytest.mark.asyncio
    async def test_export_writes_bundle(self, items, tmp_path, source):
        """Manifest, assets, marker and runtime land in the bundle."""
        out, result = await export_bundle(items, tmp_path, source)

        assert result.item_count == 2
        assert result.ar_ready_count == 1
        assert result.exported_at is not None

        manifest = json.loads((out / MANIFEST_NAME).read_text())
        burger, salad = manifest["items"]
        assert burger["ar_ready"] is True
        assert burger["model"] == "assets/burger/burger.glb"
        assert burger["marker"] == "assets/burger/targets.mind"
        assert burger["model_config"]["scale"] == 1.5
        assert (out / burger["marker"]).read_bytes() == MARKER_BYTES
        assert (out / burger["model"]).read_bytes() == b"glb-bytes"

        assert salad["ar_ready"] is False
        assert salad["marker"] is None
        assert salad["target_image"] == "assets/salad/burger.jpg"

    @pytest.mark.asyncio
    async def test_runtime_is_embedded_with_hashes(self, items, tmp_path, source):
        """The runtime copies match the package modules byte for byte."""
        out, _ = await export_bundle(items, tmp_path, source)
        manifest = json.loads((out / MANIFEST_NAME).read_text())

        assert set(manifest["runtime"]) == {"placement.py", "gestures.py"}
        for name, digest in manifest["runtime"].items():
            assert file_hash(out / "runtime" / name) == digest
        assert (out / "runtime" / "placement.py").read_bytes() == open(package_placement.__file__, "rb").read()
        assert (out / "runtime" / "__init__.py").exists()

    @pytest.mark.asyncio
    async def test_html(self, items, tmp_path, source):
        """The page escapes text and disables AR for incomplete items."""
        site = SiteConfig(title="Bistro & Bar", theme="paper", instagram="@bistro", phone="555-0100")
        out, _ = await export_bundle(items, tmp_path, source, site)
        page = (out / "index.html").read_text()

        assert "Bistro &amp; Bar" in page
        assert "Salad &lt;Green&gt;" in page
        assert "View in AR" in page
        assert "AR unavailable" in page
        assert " disabled>" in page
        assert "https://instagram.com/bistro" in page
        assert "#f8fafc" in page
        assert "$12.50" in page

    @pytest.mark.asyncio
    async def test_missing_asset_disables_ar(self, tmp_path, source):
        """An item whose model file is missing is exported without AR."""
        item = MenuItem(id="ghost", name="Ghost", model="models/missing.glb", compiled_target=MARKER_B64)
        _, result = await export_bundle([item], tmp_path, source)
        assert result.ar_ready_count == 0
        assert any("missing.glb" in warning for warning in result.warnings)

    @pytest.mark.asyncio
    async def test_invalid_marker_is_a_warning(self, tmp_path, source):
        item = MenuItem(id="bad", name="Bad", model="models/burger.glb", compiled_target="%%%")
        _, result = await export_bundle([item], tmp_path, source)
        assert result.ar_ready_count == 0
        assert result.warnings and result.warnings[0].startswith("bad:")

    @pytest.mark.asyncio
    async def test_remote_model_kept_as_url(self, tmp_path, source):
        """Remote assets are referenced, not downloaded."""
        url = "https://cdn.example.com/soup.glb"
        item = MenuItem(id="soup", name="Soup", model=url, compiled_target=MARKER_B64)
        out, result = await export_bundle([item], tmp_path, source)
        manifest = json.loads((out / MANIFEST_NAME).read_text())
        assert manifest["items"][0]["model"] == url
        assert result.ar_ready_count == 1

    @pytest.mark.asyncio
    async def test_same_file_name_from_two_folders(self, tmp_path, source):
        """A photo and a model sharing a file name are both kept."""
        (source / "photos" / "dish.bin").write_bytes(b"photo")
        (source / "models" / "dish.bin").write_bytes(b"model")
        item = MenuItem(
            id="dish", name="Dish", target_image="photos/dish.bin", model="models/dish.bin", compiled_target=MARKER_B64
        )
        out, result = await export_bundle([item], tmp_path, source)
        entry = json.loads((out / MANIFEST_NAME).read_text())["items"][0]

        assert entry["target_image"] == "assets/dish/dish.bin"
        assert entry["model"] == "assets/dish/model-dish.bin"
        assert (out / entry["target_image"]).read_bytes() == b"photo"
        assert (out / entry["model"]).read_bytes() == b"model"
        assert any("used twice" in warning for warning in result.warnings)

    @pytest.mark.asyncio
    async def test_model_named_like_the_marker(self, tmp_path, source):
        """A model file called targets.mind does not clobber the marker."""
        (source / "models" / "targets.mind").write_bytes(b"model")
        item = MenuItem(id="odd", name="Odd", model="models/targets.mind", compiled_target=MARKER_B64)
        out, _ = await export_bundle([item], tmp_path, source)
        entry = json.loads((out / MANIFEST_NAME).read_text())["items"][0]

        assert (out / entry["marker"]).read_bytes() == MARKER_BYTES
        assert (out / entry["model"]).read_bytes() == b"model"

    @pytest.mark.asyncio
    async def test_site_assets(self, tmp_path, source):
        """Logo and hero images are copied under fixed names."""
        site = SiteConfig(logo_path="photos/burger.jpg", hero_path="photos/burger.jpg")
        out, _ = await export_bundle([], tmp_path, source, site)
        manifest = json.loads((out / MANIFEST_NAME).read_text())
        assert manifest["site_assets"] == {"logo": "assets/site/logo.jpg", "hero": "assets/site/hero.jpg"}
        assert (out / "assets" / "site" / "hero.jpg").exists()

    @pytest.mark.asyncio
    async def test_refuses_foreign_directory(self, items, tmp_path, source):
        """A non-empty directory that is not a bundle is left alone."""
        out = tmp_path / "documents"
        out.mkdir()
        (out / "thesis.docx").write_bytes(b"important")

        result = await SiteExporter().export(items, out, source)

        assert result.status == ExportStatus.FAILED
        assert "non-empty" in result.error_message
        assert not (out / MANIFEST_NAME).exists()

    @pytest.mark.asyncio
    async def test_reexport_over_bundle(self, items, tmp_path, source):
        """Exporting again into an existing bundle replaces it."""
        await export_bundle(items, tmp_path, source)
        _, result = await export_bundle(items[:1], tmp_path, source)
        assert result.item_count == 1

    @pytest.mark.asyncio
    async def test_default_output_dir(self, items, source, settings):
        """Without an output directory the bundle goes under settings.output_dir."""
        result = await SiteExporter().export(items, source_dir=source)
        assert result.output_dir == str(settings.output_dir / "site")
        assert (settings.output_dir / "site" / MANIFEST_NAME).exists()


class TestSiteBundle:
    """Tests for reading bundles back."""

    @pytest.mark.asyncio
    async def test_open(self, items, tmp_path, source):
        out, _ = await export_bundle(items, tmp_path, source, SiteConfig(title="Bistro"))
        bundle = SiteBundle.open(out)

        assert bundle.title == "Bistro"
        assert [item.id for item in bundle.items] == ["burger", "salad"]
        assert bundle.get_item("nope") is None
        assert bundle.resolve("assets/x.glb") == str(out / "assets/x.glb")
        assert bundle.resolve("https://cdn/x.glb") == "https://cdn/x.glb"
        assert bundle.resolve(None) is None

    def test_open_non_bundle(self, tmp_path):
        with pytest.raises(BundleError):
            SiteBundle.open(tmp_path)

    def test_open_corrupt_manifest(self, tmp_path):
        (tmp_path / MANIFEST_NAME).write_text("{not json")
        with pytest.raises(BundleError, match="Invalid manifest"):
            SiteBundle.open(tmp_path)

    @pytest.mark.asyncio
    async def test_load_runtime(self, items, tmp_path, source):
        """The embedded modules are imported separately from this package."""
        out, _ = await export_bundle(items, tmp_path, source)
        bundle = SiteBundle.open(out)

        assert all(bundle.verify_runtime().values())
        kit = bundle.load_runtime()
        assert kit.placement is not package_placement
        assert kit.placement.__file__ == str(out / "runtime" / "placement.py")
        assert bundle.load_runtime() is kit

        volume = kit.placement.BoundingVolume.from_bounds((-1, -0.5, -0.5), (1, 0.5, 0.5))
        assert kit.placement.compute_base_transform(volume).scale == pytest.approx(0.25)
        assert kit.interpreter().state.scale == 1.0

    @pytest.mark.asyncio
    async def test_tampered_runtime_is_refused(self, items, tmp_path, source):
        out, _ = await export_bundle(items, tmp_path, source)
        (out / "runtime" / "gestures.py").write_text("raise SystemExit\n")
        bundle = SiteBundle.open(out)

        assert bundle.verify_runtime() == {"placement.py": True, "gestures.py": False}
        with pytest.raises(BundleError, match="gestures.py"):
            bundle.load_runtime()

    @pytest.mark.asyncio
    async def test_target_for(self, items, tmp_path, source):
        out, _ = await export_bundle(items, tmp_path, source)
        target = SiteBundle.open(out).target_for("burger")

        assert target.name == "Burger"
        assert target.marker.data == MARKER_BYTES
        assert target.asset_ref == str(out / "assets/burger/burger.glb")
        assert target.config["scale"] == 1.5
        assert target.is_complete

    @pytest.mark.asyncio
    async def test_target_without_ar_data(self, items, tmp_path, source):
        out, _ = await export_bundle(items, tmp_path, source)
        bundle = SiteBundle.open(out)
        assert not bundle.target_for("salad").is_complete
        with pytest.raises(KeyError):
            bundle.target_for("nope")


class TestBundleHost:
    """Tests for running AR views from a bundle."""

    @pytest.mark.asyncio
    async def test_open_item(self, engine, tracker, box_asset, surface, items, tmp_path, source):
        """Sessions use the bundle's runtime and its marker file."""
        out, _ = await export_bundle(items, tmp_path, source)
        host = BundleHost(engine, out)

        session = await host.open_item("burger", surface)
        await settle()

        assert session.status == SessionStatus.READY
        assert session.assembler.kit is host.kit
        assert tracker.last.marker.path.read_bytes() == MARKER_BYTES
        # base 0.25 from the 2x1x1 box times the authored 1.5
        assert session.assembler.placement.scale == pytest.approx(0.375)
        assert type(session.assembler.placement).__module__ == host.kit.placement.__name__
        assert [item.id for item in host.ar_items()] == ["burger"]

        await host.close_item()
        assert session.destroyed
        assert host.session is None

    @pytest.mark.asyncio
    async def test_open_item_without_ar(self, engine, surface, items, tmp_path, source):
        """Items without a marker end in the error state with a message."""
        out, _ = await export_bundle(items, tmp_path, source)
        host = BundleHost(engine, out)
        session = await host.open_item("salad", surface)
        assert session.status == SessionStatus.ERROR
        assert session.message
        await host.close_item()

    @pytest.mark.asyncio
    async def test_open_item_with_missing_marker_file(self, engine, surface, items, tmp_path, source):
        """A deleted marker file is missing AR data, not an exception."""
        out, _ = await export_bundle(items, tmp_path, source)
        (out / "assets" / "burger" / "targets.mind").unlink()
        host = BundleHost(engine, out)

        assert host.bundle.target_for("burger").marker is None
        session = await host.open_item("burger", surface)

        assert session.status == SessionStatus.ERROR
        assert session.message == ConfigurationError.user_message
        assert engine.tracker_factory.contexts == []
        await host.close_item()

    @pytest.mark.asyncio
    async def test_switching_items_closes_previous(self, engine, surface, items, tmp_path, source):
        out, _ = await export_bundle(items, tmp_path, source)
        host = BundleHost(engine, out)
        first = await host.open_item("burger", surface)
        second = await host.open_item("burger", surface)
        assert first.destroyed
        assert not second.destroyed
        await host.close_item()

    @pytest.mark.asyncio
    async def test_describe_item(self, items, tmp_path, source):
        out, _ = await export_bundle(items, tmp_path, source)
        row = describe_item(SiteBundle.open(out).get_item("burger"))
        assert row == {"id": "burger", "name": "Burger", "price": 12.5, "ar_ready": True}
