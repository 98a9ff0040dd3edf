"""One tile, one element, carried from collection through the crawl."""

from venue_pipeline.core.pipeline import PipelineContext, run_pipeline
from venue_pipeline.models import BBox
from venue_pipeline.stages import collect, crawl, pre_vetting
from venue_pipeline.vendors.crawler import RenderedPage

ELEMENT = {
    "type": "node",
    "id": 4242,
    "lat": 51.501,
    "lon": -0.142,
    "tags": {"name": "X", "website": "http://example.com"},
}

HOMEPAGE = "<html><head><title>X - a wedding venue</title></head><body><h1>Welcome</h1></body></html>"


def test_collect_prevet_crawl(monkeypatch, settings, store):
    monkeypatch.setattr(collect.overpass, "fetch_elements", lambda endpoints, query, timeout: [ELEMENT])
    monkeypatch.setattr(pre_vetting, "fetch_homepage", lambda url: HOMEPAGE)
    rendered = []

    def fake_render(service_url, url, timeout):
        rendered.append(url)
        return RenderedPage(success=True, markdown="wedding venue info", links=[])

    monkeypatch.setattr(crawl.crawler, "render_page", fake_render)

    ctx = PipelineContext(
        settings=settings,
        store=store,
        bbox=BBox(min_lon=-0.15, min_lat=51.5, max_lon=-0.14, max_lat=51.51),
        tile_size=0.05,
    )

    run_pipeline(ctx, [collect.STAGE])
    assert list(store.rows) == ["node/4242"]
    row = store.rows["node/4242"]
    assert row["name"] == "X"
    assert (row["lat"], row["lon"]) == (51.501, -0.142)

    run_pipeline(ctx, [pre_vetting.STAGE])
    assert row["pre_vetting_status"] == "yes"
    assert set(row["pre_vetting_keywords"]) == {"wedding", "venue"}

    run_pipeline(ctx, [crawl.STAGE])
    assert rendered == ["http://example.com/"]
    assert "<!-- source: http://example.com/ | depth: 1 -->" in row["raw_markdown"]
    assert "wedding venue info" in row["raw_markdown"]
