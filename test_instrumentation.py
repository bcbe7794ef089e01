"""Tests for the injected capture log and its Python reader."""

from exporter.instrumentation import InPageLog, decode_data_url


def test_decode_data_url():
    assert decode_data_url("data:text/csv;base64,YSxiCjEsMgo=") == b"a,b\n1,2\n"
    assert decode_data_url("data:text/csv;charset=utf-8,a%2Cb%0A1%2C2") == b"a,b\n1,2"
    assert decode_data_url("data:text/csv;base64,YSx") is None
    assert decode_data_url("blob:https://x/1") is None
    assert decode_data_url("data:nocomma") is None


def test_log_records_object_urls_and_download_anchors(in_browser):
    html = """
    <button id="go" onclick="
      const blob = new Blob(['sku,qty\\nA,1\\n'], {type: 'text/csv'});
      const a = document.createElement('a');
      a.href = URL.createObjectURL(blob);
      a.download = 'stock.csv';
    ">Go</button>
    """

    async def check(page):
        reader = InPageLog(page)
        before = await reader.size()
        await page.click("#go")
        await page.wait_for_timeout(200)
        entries = await reader.entries(before)
        latest = await reader.latest(before)
        return before, [e["kind"] for e in entries], latest["filename"], await reader.resolve(latest)

    before, kinds, filename, data = in_browser(html, check)
    assert before == 0
    assert kinds[0] == "object-url"
    assert "anchor" in kinds
    assert filename == "stock.csv"
    assert data == b"sku,qty\nA,1\n"


def test_log_records_window_open(in_browser):
    html = """<button id="go" onclick="window.__opened = window.open('report.csv')">Go</button>"""

    async def check(page):
        await page.click("#go")
        entry = await InPageLog(page).latest()
        for popup in page.context.pages[1:]:
            await popup.close()
        return entry["kind"], entry["url"]

    assert in_browser(html, check) == ("open", "https://backoffice.test/report.csv")
