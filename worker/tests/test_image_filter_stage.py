import pytest

from venue_pipeline.core.pipeline import PipelineContext
from venue_pipeline.core.remote import RemoteCallError
from venue_pipeline.stages import image_filter


@pytest.mark.parametrize(
    "logo,photo,expected",
    [
        (0.9, 0.4, True),
        (0.9, 0.95, False),
        (0.85, 0.1, False),
        (0.5, 0.2, False),
    ],
)
def test_is_logo_needs_threshold_and_comparison(logo, photo, expected):
    assert image_filter.is_logo(logo, photo) is expected


def make_images(tmp_path, *names):
    paths = []
    for name in names:
        path = tmp_path / name
        path.write_bytes(b"image")
        paths.append(str(path))
    return paths


def test_filter_prunes_logos_and_missing_files(monkeypatch, settings, store, tmp_path):
    logo, photo, flaky = make_images(tmp_path, "logo.png", "photo.jpg", "flaky.jpg")
    missing = str(tmp_path / "gone.jpg")
    scores = {logo: (0.9, 0.4), photo: (0.9, 0.95)}

    def fake_rank(service_url, path, timeout):
        if path == flaky:
            raise RemoteCallError("clip down")
        return scores[path]

    monkeypatch.setattr(image_filter.clip, "rank_logo_vs_photo", fake_rank)
    venue_id = store.add_venue(
        "node/1",
        image_data={"local_paths": [logo, photo, missing, flaky], "processed_at": "t0"},
    )

    result = image_filter.run(PipelineContext(settings=settings, store=store))

    manifest = store.row(venue_id)["image_data"]
    assert manifest["local_paths"] == [photo, flaky]
    assert manifest["clip_logo_verified"] is True
    assert manifest["last_verified_at"]
    assert manifest["processed_at"] == "t0"
    assert not (tmp_path / "logo.png").exists()
    assert (tmp_path / "photo.jpg").exists()
    assert result.stats == {"verified": 1, "deleted": 1, "errors": 0}
    assert store.fetch_filter_candidates() == []


def test_verified_or_empty_manifests_are_not_candidates(settings, store):
    store.add_venue("node/1", image_data={"local_paths": [], "processed_at": "t0"})
    store.add_venue("node/2", image_data={"local_paths": ["a.jpg"], "processed_at": "t0", "clip_logo_verified": True})

    result = image_filter.run(PipelineContext(settings=settings, store=store))

    assert result.stats == {"verified": 0}


def test_failed_delete_keeps_file_and_records_error(monkeypatch, settings, store, tmp_path):
    (path,) = make_images(tmp_path, "logo.png")
    monkeypatch.setattr(image_filter.clip, "rank_logo_vs_photo", lambda service_url, path, timeout: (0.99, 0.01))

    def failing_remove(path):
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr(image_filter.os, "remove", failing_remove)
    venue_id = store.add_venue("node/1", image_data={"local_paths": [path], "processed_at": "t0"})

    result = image_filter.run(PipelineContext(settings=settings, store=store))

    assert result.success is True
    assert result.stats == {"verified": 1, "deleted": 0, "errors": 1}
    manifest = store.row(venue_id)["image_data"]
    assert manifest["local_paths"] == [path]
    assert manifest["clip_logo_verified"] is True
    with open(settings.image_error_log, encoding="utf-8") as fh:
        logged = fh.read()
    assert f"Venue {venue_id}" in logged
    assert "read-only filesystem" in logged


def test_one_failed_delete_does_not_undo_the_others(monkeypatch, settings, store, tmp_path):
    first, second = make_images(tmp_path, "a.png", "b.png")
    monkeypatch.setattr(image_filter.clip, "rank_logo_vs_photo", lambda service_url, path, timeout: (0.99, 0.01))
    real_remove = image_filter.os.remove

    def remove(path):
        if path == second:
            raise PermissionError("locked")
        real_remove(path)

    monkeypatch.setattr(image_filter.os, "remove", remove)
    venue_id = store.add_venue("node/1", image_data={"local_paths": [first, second], "processed_at": "t0"})

    result = image_filter.run(PipelineContext(settings=settings, store=store))

    assert not (tmp_path / "a.png").exists()
    assert store.row(venue_id)["image_data"]["local_paths"] == [second]
    assert result.stats == {"verified": 1, "deleted": 1, "errors": 1}


def test_delete_failure_for_vanished_file_drops_the_path(monkeypatch, settings, store, tmp_path):
    (path,) = make_images(tmp_path, "logo.png")
    monkeypatch.setattr(image_filter.clip, "rank_logo_vs_photo", lambda service_url, path, timeout: (0.99, 0.01))
    real_remove = image_filter.os.remove

    def remove_then_fail(path):
        real_remove(path)
        raise FileNotFoundError(path)

    monkeypatch.setattr(image_filter.os, "remove", remove_then_fail)
    venue_id = store.add_venue("node/1", image_data={"local_paths": [path], "processed_at": "t0"})

    result = image_filter.run(PipelineContext(settings=settings, store=store))

    assert store.row(venue_id)["image_data"]["local_paths"] == []
    assert result.stats["errors"] == 1


def test_file_removed_during_scoring_counts_as_missing(monkeypatch, settings, tmp_path):
    (path,) = make_images(tmp_path, "photo.jpg")

    def vanish_then_read(service_url, image_path, timeout):
        (tmp_path / "photo.jpg").unlink()
        return image_filter.clip.to_image_uri(image_path)

    monkeypatch.setattr(image_filter.clip, "rank_logo_vs_photo", vanish_then_read)

    assert image_filter.check_image(path, settings) is None

    (tmp_path / "photo.jpg").write_bytes(b"image")
    summary = image_filter.filter_manifest(image_filter.ImageManifest(local_paths=[path]), settings)
    assert summary.kept == []
    assert summary.missing == 1
    assert summary.unscored == 0
