"""
Project Detection Service

Architectural Intent:
- Domain service deciding how a checked-out repository is built
- Determines project type, package manager, build command and output directory
- Reports human-readable notes so the orchestrator can surface them as log events

Domain Logic:
- package.json with "next" -> nextjs, with "react" -> react, otherwise static
- No package.json -> static (served as-is)
- Static hosting cannot run API routes or server rendering; those are warned about
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
import json
import re

_SERVER_COMPONENT_MARKERS = ("<Html>", "next/document")


@dataclass(frozen=True)
class Detection:
    project_type: str
    notes: tuple[str, ...] = ()
    problems: tuple[str, ...] = ()


@dataclass
class ProjectInspector:
    """
    Inspects a repository checkout rooted at `root`.
    """

    root: Path
    _package_json: Optional[dict[str, Any]] = field(default=None, init=False, repr=False)

    def package_json(self) -> Optional[dict[str, Any]]:
        """Parsed package.json, or None when absent. Raises ValueError if unparsable."""
        if self._package_json is None:
            path = self.root / "package.json"
            if not path.exists():
                return None
            try:
                self._package_json = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise ValueError(f"Error parsing package.json: {e}") from e
        return self._package_json

    def detect(self, requested: Optional[str] = None) -> Detection:
        notes: list[str] = []
        problems: list[str] = []

        if requested:
            notes.append(f"Project type specified: {requested}")
            project_type = requested
        else:
            try:
                package = self.package_json()
            except ValueError as e:
                package = None
                problems.append(str(e))

            if package is None:
                project_type = "static"
                notes.append("Static website detected")
            else:
                deps = {
                    **(package.get("devDependencies") or {}),
                    **(package.get("dependencies") or {}),
                }
                if "next" in deps:
                    project_type = "nextjs"
                    notes.append(
                        "Next.js project detected. Only static exports are supported."
                    )
                    notes.append(
                        "Server components, API routes, and server-side rendering will not work."
                    )
                elif "react" in deps:
                    project_type = "react"
                    notes.append("React project detected")
                else:
                    project_type = "static"
                    notes.append(
                        "Node.js project detected. Only static content will be served."
                    )

        if self.has_api_routes():
            notes.append(
                "WARNING: API routes detected. These will not function on static hosting."
            )
        return Detection(project_type, tuple(notes), tuple(problems))

    def has_api_routes(self) -> bool:
        return (self.root / "app" / "api").is_dir() or (self.root / "pages" / "api").is_dir()

    def install_command(self) -> str:
        if (self.root / "yarn.lock").exists():
            return "yarn install"
        if (self.root / "pnpm-lock.yaml").exists():
            return "pnpm install"
        return "npm install"

    def resolve_build_command(
        self, project_type: str, provided: Optional[str] = None
    ) -> Optional[str]:
        if provided:
            return provided
        if project_type == "static":
            return None
        package = self.package_json() or {}
        scripts = package.get("scripts") or {}
        if "build" in scripts:
            return "npm run build"
        if "export" in scripts and project_type == "nextjs":
            return "npm run export"
        return None

    def enable_next_static_export(self) -> Optional[str]:
        """Patch next.config.js for `output: 'export'`. Returns a note, or None if untouched."""
        config_path = self.root / "next.config.js"
        if not config_path.exists():
            return None
        content = config_path.read_text(encoding="utf-8")
        if "output: 'export'" in content or 'output: "export"' in content:
            return "Static export already enabled in next.config.js"
        if re.search(r"module\.exports\s*=\s*{", content):
            content = re.sub(
                r"module\.exports\s*=\s*{",
                "module.exports = {\n  output: 'export',",
                content,
                count=1,
            )
            config_path.write_text(content, encoding="utf-8")
            return "Modified next.config.js to enable static export"
        config_path.write_text(
            "/** @type {import('next').NextConfig} */\n"
            "const nextConfig = {\n  output: 'export',\n};\n\n"
            "module.exports = nextConfig;\n",
            encoding="utf-8",
        )
        return "Created new next.config.js with static export enabled"

    def resolve_output_directory(
        self, project_type: str, provided: Optional[str] = None
    ) -> tuple[str, list[str]]:
        """Returns (relative output directory, notes)."""
        notes: list[str] = []
        if provided:
            notes.append(f"Using specified output directory: {provided}")
            if (self.root / provided).exists():
                return provided, notes
            notes.append(
                f"Specified output directory '{provided}' not found. Attempting to auto-detect..."
            )
            detected = self._detect_output(project_type, fallback=None)
            if detected is None:
                return provided, notes
            notes.append(f"Using '{detected}' directory")
            return detected, notes

        detected = self._detect_output(project_type, fallback=".")
        if detected == ".":
            notes.append("Using root directory of the repository")
        else:
            notes.append(f"Using '{detected}' directory for {project_type} output")
        return detected, notes

    def _detect_output(self, project_type: str, fallback: Optional[str]) -> Optional[str]:
        if project_type == "nextjs":
            if (self.root / "out").is_dir():
                return "out"
            return ".next" if fallback is not None else None
        if project_type == "react":
            for candidate in ("dist", "build"):
                if (self.root / candidate).is_dir():
                    return candidate
        return fallback

    @staticmethod
    def is_server_component_failure(output: str) -> bool:
        return any(marker in output for marker in _SERVER_COMPONENT_MARKERS)
