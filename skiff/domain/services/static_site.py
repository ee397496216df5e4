"""
Static Site Preparation Service

Architectural Intent:
- Rewrites a single-page-app build so it is servable from a content-addressed
  gateway (no server rewrites, arbitrary path prefix)
- Operates only on the output directory of the build

Domain Logic:
- Only react and nextjs outputs are rewritten; static sites are left untouched
- A nested index.html is hoisted to the root with asset paths re-prefixed
- Without any index.html a redirect wrapper is generated
- Absolute asset paths become relative so the gateway prefix is preserved
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import os
import re
import shutil

_RELATIVE_ASSET_RE = re.compile(r'(src|href)="(?!http|//|#)')
# Root-absolute asset paths; the bare base href="/" and protocol-relative URLs are kept.
_ABSOLUTE_ASSET_RE = re.compile(r'(src|href)="/(?![/"])')

_REDIRECT_TEMPLATE = """\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Redirecting</title>
  <script>window.onload = function () {{ window.location.href = "{target}"; }}</script>
</head>
<body>
  <p>If you are not redirected automatically, <a href="{target}">open the app</a>.</p>
</body>
</html>
"""


def directory_size_mb(path: Path) -> float:
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            file_path = os.path.join(dirpath, name)
            if not os.path.islink(file_path):
                total += os.path.getsize(file_path)
    return total / (1024 * 1024)


@dataclass
class StaticSitePreparer:
    output_path: Path
    project_type: str

    def remove_node_modules(self) -> bool:
        node_modules = self.output_path / "node_modules"
        if node_modules.exists():
            shutil.rmtree(node_modules, ignore_errors=True)
            return True
        return False

    def prepare(self) -> list[str]:
        """Apply static-hosting fixes. Returns notes describing what changed."""
        if self.project_type not in ("react", "nextjs"):
            return []

        notes: list[str] = []
        index_path = self.output_path / "index.html"
        if index_path.exists():
            notes.extend(self._fix_root_index(index_path))
        else:
            notes.append(self._hoist_or_wrap(index_path))

        (self.output_path / ".dnslink").write_text(
            "This site is best viewed through a gateway with DNSLink support.",
            encoding="utf-8",
        )
        (self.output_path / "_redirects").write_text("/* /index.html 200", encoding="utf-8")
        notes.append("Added _redirects file for SPA routing support")
        return notes

    def _fix_root_index(self, index_path: Path) -> list[str]:
        notes = []
        content = index_path.read_text(encoding="utf-8")
        if '<base href="/">' not in content:
            content = re.sub(r"<head>", '<head>\n  <base href="/">', content, count=1, flags=re.I)
            notes.append("Added base href tag to index.html")
        if _ABSOLUTE_ASSET_RE.search(content):
            content = _ABSOLUTE_ASSET_RE.sub(r'\1="', content)
            notes.append("Fixed absolute paths in index.html")
        index_path.write_text(content, encoding="utf-8")
        return notes

    def _hoist_or_wrap(self, index_path: Path) -> str:
        for child in sorted(self.output_path.iterdir()):
            nested = child / "index.html"
            if child.is_dir() and nested.exists():
                content = nested.read_text(encoding="utf-8")
                fixed = _RELATIVE_ASSET_RE.sub(rf'\1="{child.name}/', content)
                index_path.write_text(fixed, encoding="utf-8")
                return f"Created root index.html with fixed paths to {child.name}/ directory"

        app_dir = next(
            (d for d in ("build", "dist", "out") if (self.output_path / d).is_dir()),
            "",
        )
        target = f"{app_dir}/index.html" if app_dir else "index.html"
        index_path.write_text(_REDIRECT_TEMPLATE.format(target=target), encoding="utf-8")
        return f"Created root index.html with auto-redirect to {app_dir or 'root'} directory"
