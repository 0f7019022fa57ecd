"""Standalone HTML reports: prose, maps and tables in one file."""

import base64
import html
import io
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence, Union

import pandas as pd
from matplotlib.figure import Figure

logger = logging.getLogger(__name__)

STYLE = """
body { font-family: Helvetica, Arial, sans-serif; max-width: 60em; margin: 2em auto;
       line-height: 1.5; color: #222; }
h1 { border-bottom: 2px solid #444; padding-bottom: .2em; }
h2 { margin-top: 2em; }
figure { margin: 1em 0; text-align: center; }
figure img { max-width: 100%; }
table.dataframe { border-collapse: collapse; font-size: .9em; margin: 1em 0; }
table.dataframe th, table.dataframe td { border: 1px solid #ccc; padding: .25em .6em; }
table.dataframe th { background: #f2f2f2; }
pre { background: #f7f7f7; padding: .8em; overflow-x: auto; }
.subtitle { color: #666; }
"""


@dataclass
class ReportSection:
    """One heading of a report and what goes under it.

    ``text`` is plain text; blank lines separate paragraphs and lines
    indented by four spaces are shown as preformatted blocks.
    """

    heading: str
    text: str = ""
    figure: Optional[Figure] = None
    table: Optional[pd.DataFrame] = None
    caption: Optional[str] = None


def figure_to_base64(fig: Figure, dpi: int = 110) -> str:
    buffer = io.BytesIO()
    fig.savefig(buffer, format="png", dpi=dpi, bbox_inches="tight")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def _paragraphs(text: str) -> list[str]:
    blocks = []
    for chunk in text.strip("\n").split("\n\n"):
        if not chunk.strip():
            continue
        lines = chunk.split("\n")
        if all(line.startswith("    ") for line in lines):
            code = "\n".join(line[4:] for line in lines)
            blocks.append(f"<pre>{html.escape(code)}</pre>")
        else:
            blocks.append(f"<p>{html.escape(' '.join(l.strip() for l in lines))}</p>")
    return blocks


def _render_section(section: ReportSection) -> str:
    parts = [f"<h2>{html.escape(section.heading)}</h2>"]
    parts.extend(_paragraphs(section.text))
    if section.figure is not None:
        caption = html.escape(section.caption or section.heading)
        parts.append(
            f'<figure><img alt="{caption}" '
            f'src="data:image/png;base64,{figure_to_base64(section.figure)}"/>'
            f"<figcaption>{caption}</figcaption></figure>"
        )
    if section.table is not None:
        parts.append(section.table.to_html(index=False, float_format=lambda v: f"{v:,.2f}"))
    return "\n".join(parts)


def render_report(
    title: str,
    sections: Sequence[ReportSection],
    path: Optional[Union[str, Path]] = None,
    subtitle: Optional[str] = None,
) -> str:
    """Render sections into a self-contained HTML document.

    Figures are embedded as base64 PNG, so the file can be shared on its own.
    If ``path`` is given the document is also written there.
    """
    generated = datetime.now().strftime("%Y-%m-%d %H:%M")
    header = [f"<h1>{html.escape(title)}</h1>"]
    if subtitle:
        header.append(f'<p class="subtitle">{html.escape(subtitle)}</p>')
    header.append(f'<p class="subtitle">Generated {generated}</p>')

    body = "\n".join(header + [_render_section(s) for s in sections])
    document = (
        "<!DOCTYPE html>\n<html lang=\"en\">\n<head>\n<meta charset=\"utf-8\">\n"
        f"<title>{html.escape(title)}</title>\n<style>{STYLE}</style>\n</head>\n"
        f"<body>\n{body}\n</body>\n</html>\n"
    )

    if path is not None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(document, encoding="utf-8")
        logger.info("Report written to %s", path)
    return document
