#!/usr/bin/env python3
from __future__ import annotations
from pathlib import Path

from dataclasses import dataclass, field
from urllib.parse import quote
import html as _html

import yaml

from flask import Flask, abort, render_template_string, send_from_directory

from config_loader import DEFAULT_CONFIG, load_config
from org_nodes import load_document
from org_tufte import make_exporter

BASE_DIR = Path.cwd()
CONFIG_PATH = BASE_DIR / "config.yml"
DOCS_DIR = BASE_DIR / "docs"
DOC_SUFFIXES = {".yml", ".yaml"}

app = Flask(__name__, static_folder="static", static_url_path="/static")
cfg = load_config(CONFIG_PATH) if CONFIG_PATH.exists() else DEFAULT_CONFIG


INDEX_TEMPLATE = """
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>{{ page_title }}</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <link rel="stylesheet" href="/static/{{ stylesheet }}">
</head>
<body>
  <article>
    <h1>{{ page_title }}</h1>
    <section>
    {{ file_tree|safe }}
    </section>
  </article>
</body>
</html>
"""

@dataclass
class FileTreeNode:
    dirs: dict[str, "FileTreeNode"] = field(default_factory=dict)
    files: list[str] = field(default_factory=list)

def _insert_path(root: FileTreeNode, rel_parts: tuple[str, ...]) -> None:
    node = root
    for part in rel_parts[:-1]:
        node = node.dirs.setdefault(part, FileTreeNode())
    node.files.append(rel_parts[-1])

def build_doc_tree(docs_dir: Path) -> FileTreeNode:
    root = FileTreeNode()
    if not docs_dir.exists():
        return root

    for p in sorted(docs_dir.glob("**/*")):
        if not p.is_file() or p.suffix.lower() not in DOC_SUFFIXES:
            continue
        # skip hidden dirs
        if any(seg.startswith(".") for seg in p.relative_to(docs_dir).parts):
            continue
        _insert_path(root, p.relative_to(docs_dir).parts)
    return root

def render_tree_html(node: FileTreeNode, *, prefix: str = "") -> str:
    """
    prefix: path inside docs/ (e.g. '' or '2025')
    """
    out: list[str] = ["<ul>"]

    for dirname in sorted(node.dirs.keys()):
        child = node.dirs[dirname]
        child_prefix = f"{prefix}/{dirname}".strip("/")
        out.append(f"<li>{_html.escape(dirname)}/")
        out.append(render_tree_html(child, prefix=child_prefix))
        out.append("</li>")

    for fname in sorted(node.files):
        rel = f"{prefix}/{fname}".strip("/")
        href = "/view/" + quote(rel)
        out.append(f'<li><a href="{href}">{_html.escape(fname)}</a></li>')

    out.append("</ul>")
    return "".join(out)


def resolve_doc_path(filename: str) -> Path:
    """
    Map a URL path to a document under DOCS_DIR, or abort with 404.
    """
    docs_root = DOCS_DIR.resolve()
    doc_path = (docs_root / filename).resolve()
    try:
        doc_path.relative_to(docs_root)
    except ValueError:
        abort(404)

    if not doc_path.is_file() or doc_path.suffix.lower() not in DOC_SUFFIXES:
        abort(404)
    return doc_path


def asset_prefix_for(doc_path: Path) -> str:
    """
    URL prefix under /assets/ for images linked relative to a document.
    """
    rel_dir = doc_path.parent.relative_to(DOCS_DIR.resolve()).as_posix()
    if rel_dir == ".":
        return "/assets/"
    return f"/assets/{quote(rel_dir)}/"


@app.route("/")
def index():
    return render_template_string(
        INDEX_TEMPLATE,
        page_title="Tufte Viewer",
        stylesheet=cfg.stylesheet,
        file_tree=render_tree_html(build_doc_tree(DOCS_DIR)),
    )


@app.route("/view/<path:filename>")
def view_file(filename: str):
    doc_path = resolve_doc_path(filename)
    try:
        doc = load_document(doc_path)
    except (TypeError, ValueError, yaml.YAMLError) as e:
        app.logger.warning("Invalid document %s: %s", doc_path, e)
        abort(422)

    preview_cfg = cfg.with_overrides(stylesheet=f"/static/{cfg.stylesheet}")
    exporter = make_exporter(preview_cfg, asset_prefix=asset_prefix_for(doc_path))
    try:
        return exporter.render_document(doc)
    except ValueError as e:
        # undefined macro, missing or self-referencing footnote
        app.logger.warning("Cannot export %s: %s", doc_path, e)
        abort(422)


@app.route("/assets/<path:subpath>")
def assets(subpath: str):
    # Prevent directory traversal
    docs_root = DOCS_DIR.resolve()
    asset_path = (docs_root / subpath).resolve()
    try:
        asset_path.relative_to(docs_root)
    except ValueError:
        abort(404)

    if not asset_path.is_file():
        abort(404)

    return send_from_directory(docs_root, subpath)


if __name__ == "__main__":
    # Run in dev mode
    app.run(debug=False)
