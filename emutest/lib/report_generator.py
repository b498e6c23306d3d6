"""HTML report of golden vs. candidate snapshot comparisons.

Generates an index.html next to the candidate sequence with:
- Summary of identical / differing / missing pairs
- One row per ordinal: golden, candidate and pixelmatch diff side by side
- Click-to-enlarge inline image viewer
"""

from __future__ import annotations

import html
import os
from pathlib import Path

from emutest.lib.comparison import ComparisonResult, write_diff_image

DIFF_DIR = "diff"


def _img_cell(path: str | None, report_dir: Path) -> str:
    if not path or not os.path.isfile(path):
        return '<td class="missing">missing</td>'
    rel = html.escape(os.path.relpath(path, report_dir))
    return f'<td><img src="{rel}" onclick="show(\'{rel}\')" alt="{rel}"></td>'


def generate_report(
    report_dir: str | os.PathLike[str],
    results: list[ComparisonResult],
    title: str = "emutest snapshot report",
) -> str:
    """Write index.html into `report_dir` and return its path.

    Diff images are rendered into `report_dir/diff/` for every pair that
    differs pixel-wise.
    """
    report_dir = Path(report_dir)
    report_dir.mkdir(parents=True, exist_ok=True)

    for result in results:
        write_diff_image(result, report_dir / DIFF_DIR / f"{result.index:05d}.png")

    identical = sum(1 for r in results if r.equal)
    missing = sum(1 for r in results if not r.equal and not r.total_pixels)
    differing = len(results) - identical - missing

    rows_html = "\n".join(
        f'<tr class="{"pass" if r.equal else "fail"}">'
        f"<td>{r.index:05d}</td>"
        f"{_img_cell(r.golden_path, report_dir)}"
        f"{_img_cell(r.tmp_path, report_dir)}"
        f"{_img_cell(r.diff_path, report_dir) if r.diff_path else '<td></td>'}"
        f"<td>{html.escape(r.message)}</td></tr>"
        for r in results
    )

    report_html = f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{html.escape(title)}</title>
<style>
body {{ background: #1a1a2e; color: #e0e0e0; font-family: monospace; margin: 20px; }}
h1 {{ color: #00d4ff; }}
.summary {{ display: flex; gap: 20px; margin: 15px 0; font-size: 1.2em; }}
.summary span {{ padding: 4px 12px; border-radius: 4px; }}
.ok {{ background: #22c55e20; color: #22c55e; }}
.ko {{ background: #ef444420; color: #ef4444; }}
.skip {{ background: #a1a1aa20; color: #a1a1aa; }}
table {{ border-collapse: collapse; margin: 20px 0; }}
th, td {{ padding: 6px 12px; text-align: left; border-bottom: 1px solid #333; }}
th {{ color: #00d4ff; }}
tr.fail td:first-child {{ color: #ef4444; }}
tr.pass td:first-child {{ color: #22c55e; }}
td img {{ width: 256px; image-rendering: pixelated; cursor: pointer; border: 2px solid #333; }}
td img:hover {{ border-color: #00d4ff; }}
td.missing {{ color: #a1a1aa; }}
#viewer {{ display: none; position: fixed; top: 0; left: 0; width: 100%; height: 100%;
  background: rgba(0,0,0,0.9); z-index: 100; cursor: pointer;
  justify-content: center; align-items: center; }}
#viewer img {{ width: 90vw; image-rendering: pixelated; }}
</style>
</head>
<body>
<h1>{html.escape(title)}</h1>
<div class="summary">
  <span class="ok">{identical} identical</span>
  <span class="ko">{differing} differing</span>
  <span class="skip">{missing} missing</span>
</div>

<table>
<tr><th>#</th><th>Golden</th><th>Candidate</th><th>Diff</th><th>Detail</th></tr>
{rows_html}
</table>

<div id="viewer" onclick="this.style.display='none'">
  <img id="viewer-img" src="" alt="enlarged">
</div>

<script>
function show(src) {{
  document.getElementById('viewer-img').src = src;
  document.getElementById('viewer').style.display = 'flex';
}}
document.addEventListener('keydown', e => {{
  if (e.key === 'Escape') document.getElementById('viewer').style.display = 'none';
}});
</script>
</body>
</html>"""

    output_path = report_dir / "index.html"
    output_path.write_text(report_html)
    return str(output_path)
