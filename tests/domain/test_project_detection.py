"""
Domain Layer Tests: ProjectInspector
"""

import json

import pytest

from skiff.domain.services.project_detection import ProjectInspector


def write_package(root, dependencies=None, scripts=None, dev=None):
    (root / "package.json").write_text(
        json.dumps(
            {
                "dependencies": dependencies or {},
                "devDependencies": dev or {},
                "scripts": scripts or {},
            }
        )
    )


class TestDetect:
    def test_no_package_json_is_static(self, tmp_path):
        detection = ProjectInspector(tmp_path).detect()
        assert detection.project_type == "static"
        assert "Static website detected" in detection.notes

    def test_next_dependency_wins(self, tmp_path):
        write_package(tmp_path, {"next": "14", "react": "18"})
        detection = ProjectInspector(tmp_path).detect()
        assert detection.project_type == "nextjs"
        assert any("static exports" in n for n in detection.notes)

    def test_react_in_dev_dependencies(self, tmp_path):
        write_package(tmp_path, dev={"react": "18"})
        assert ProjectInspector(tmp_path).detect().project_type == "react"

    def test_plain_node_project_is_static(self, tmp_path):
        write_package(tmp_path, {"lodash": "4"})
        detection = ProjectInspector(tmp_path).detect()
        assert detection.project_type == "static"
        assert any("Node.js project" in n for n in detection.notes)

    def test_requested_type_overrides_detection(self, tmp_path):
        write_package(tmp_path, {"react": "18"})
        detection = ProjectInspector(tmp_path).detect("static")
        assert detection.project_type == "static"
        assert detection.notes[0] == "Project type specified: static"

    def test_unparsable_package_json_is_reported(self, tmp_path):
        (tmp_path / "package.json").write_text("{not json")
        detection = ProjectInspector(tmp_path).detect()
        assert detection.project_type == "static"
        assert detection.problems and "Error parsing package.json" in detection.problems[0]

    def test_api_routes_warned(self, tmp_path):
        (tmp_path / "pages" / "api").mkdir(parents=True)
        detection = ProjectInspector(tmp_path).detect()
        assert any(n.startswith("WARNING: API routes") for n in detection.notes)


class TestCommands:
    @pytest.mark.parametrize(
        "lockfile, expected",
        [(None, "npm install"), ("yarn.lock", "yarn install"), ("pnpm-lock.yaml", "pnpm install")],
    )
    def test_install_command_follows_lockfile(self, tmp_path, lockfile, expected):
        if lockfile:
            (tmp_path / lockfile).write_text("")
        assert ProjectInspector(tmp_path).install_command() == expected

    def test_provided_build_command_wins(self, tmp_path):
        inspector = ProjectInspector(tmp_path)
        assert inspector.resolve_build_command("react", "make site") == "make site"

    def test_build_script_used(self, tmp_path):
        write_package(tmp_path, {"react": "18"}, scripts={"build": "vite build"})
        assert ProjectInspector(tmp_path).resolve_build_command("react") == "npm run build"

    def test_next_export_script(self, tmp_path):
        write_package(tmp_path, {"next": "13"}, scripts={"export": "next export"})
        assert ProjectInspector(tmp_path).resolve_build_command("nextjs") == "npm run export"

    def test_static_has_no_build(self, tmp_path):
        assert ProjectInspector(tmp_path).resolve_build_command("static") is None


class TestNextStaticExport:
    def test_missing_config_untouched(self, tmp_path):
        assert ProjectInspector(tmp_path).enable_next_static_export() is None

    def test_existing_exports_patched(self, tmp_path):
        config = tmp_path / "next.config.js"
        config.write_text("module.exports = {\n  reactStrictMode: true,\n};\n")
        note = ProjectInspector(tmp_path).enable_next_static_export()
        assert note == "Modified next.config.js to enable static export"
        assert "output: 'export'" in config.read_text()

    def test_already_enabled(self, tmp_path):
        (tmp_path / "next.config.js").write_text("module.exports = { output: 'export' }")
        note = ProjectInspector(tmp_path).enable_next_static_export()
        assert note == "Static export already enabled in next.config.js"

    def test_unrecognised_config_replaced(self, tmp_path):
        config = tmp_path / "next.config.js"
        config.write_text("export default {}")
        note = ProjectInspector(tmp_path).enable_next_static_export()
        assert note.startswith("Created new next.config.js")
        assert "module.exports = nextConfig" in config.read_text()


class TestOutputDirectory:
    def test_static_defaults_to_root(self, tmp_path):
        directory, notes = ProjectInspector(tmp_path).resolve_output_directory("static")
        assert directory == "."
        assert notes == ["Using root directory of the repository"]

    def test_react_prefers_dist(self, tmp_path):
        (tmp_path / "dist").mkdir()
        (tmp_path / "build").mkdir()
        directory, _ = ProjectInspector(tmp_path).resolve_output_directory("react")
        assert directory == "dist"

    def test_next_without_out_uses_dot_next(self, tmp_path):
        directory, _ = ProjectInspector(tmp_path).resolve_output_directory("nextjs")
        assert directory == ".next"

    def test_missing_provided_directory_falls_back(self, tmp_path):
        (tmp_path / "build").mkdir()
        directory, notes = ProjectInspector(tmp_path).resolve_output_directory("react", "public")
        assert directory == "build"
        assert any("not found" in n for n in notes)

    def test_missing_provided_directory_without_fallback(self, tmp_path):
        directory, _ = ProjectInspector(tmp_path).resolve_output_directory("static", "public")
        assert directory == "public"


def test_server_component_failure_markers():
    assert ProjectInspector.is_server_component_failure("Error: <Html> should not be imported")
    assert not ProjectInspector.is_server_component_failure("SyntaxError: unexpected token")
