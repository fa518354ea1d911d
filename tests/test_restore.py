"""Tests for the startup restore decision and local restore."""

import json

import pytest

from clawkeeper.gateway.restore import parse_marker, restore_on_startup, should_restore


class TestShouldRestore:
    def test_durable_newer(self):
        assert should_restore("2026-02-01T00:00:00Z", "2026-01-01T00:00:00Z") is True

    def test_local_newer(self):
        assert should_restore("2026-01-01T00:00:00Z", "2026-02-01T00:00:00Z") is False

    def test_equal_markers(self):
        assert should_restore("2026-01-01T00:00:00+00:00", "2026-01-01T00:00:00Z") is False

    @pytest.mark.parametrize("local", [None, "2020-01-01T00:00:00Z", "garbage"])
    def test_no_durable_marker_never_restores(self, local):
        assert should_restore(None, local) is False

    def test_no_local_marker_always_restores(self):
        assert should_restore("2026-01-01T00:00:00Z", None) is True

    def test_malformed_local_counts_as_epoch(self):
        assert should_restore("2026-01-01T00:00:00Z", "not a date") is True

    def test_malformed_durable_counts_as_epoch(self):
        assert should_restore("not a date", "2026-01-01T00:00:00Z") is False

    def test_offsets_are_compared_as_instants(self):
        assert should_restore("2026-01-01T02:00:00+01:00", "2026-01-01T00:30:00Z") is True

    def test_parse_naive_as_utc(self):
        assert parse_marker("2026-01-01T00:00:00").tzinfo is not None


class TestRestoreOnStartup:
    """Tests against a temporary durable root and state directory."""

    def write_durable(self, state_paths, marker="2026-02-01T00:00:00+00:00"):
        current = state_paths.mount_path / "openclaw"
        current.mkdir(parents=True)
        (current / "openclaw.json").write_text('{"restored": true}')
        (current / "workspace").mkdir()
        (current / "workspace" / "notes.md").write_text("notes")
        state_paths.durable_marker.write_text(marker + "\n")

    def test_fresh_container_restores_current_layout(self, state_paths):
        self.write_durable(state_paths)

        outcome = restore_on_startup(state_paths)

        assert outcome.restored is True
        assert outcome.layout == "current"
        assert json.loads(state_paths.config_file.read_text()) == {"restored": True}
        assert (state_paths.workspace_dir / "notes.md").read_text() == "notes"
        assert state_paths.local_marker.read_text().strip() == "2026-02-01T00:00:00+00:00"

    def test_newer_local_state_is_kept(self, state_paths):
        self.write_durable(state_paths, marker="2026-01-01T00:00:00+00:00")
        state_paths.state_dir.mkdir(parents=True)
        state_paths.config_file.write_text('{"local": true}')
        state_paths.local_marker.write_text("2026-02-01T00:00:00+00:00")

        outcome = restore_on_startup(state_paths)

        assert outcome.restored is False
        assert json.loads(state_paths.config_file.read_text()) == {"local": True}

    def test_legacy_layout_is_renamed(self, state_paths):
        legacy = state_paths.mount_path / "clawdbot"
        legacy.mkdir(parents=True)
        (legacy / "clawdbot.json").write_text('{"legacy": true}')
        state_paths.durable_marker.write_text("2026-02-01T00:00:00Z")

        outcome = restore_on_startup(state_paths)

        assert outcome.layout == "legacy"
        assert json.loads(state_paths.config_file.read_text()) == {"legacy": True}
        assert not (state_paths.state_dir / "clawdbot.json").exists()

    def test_legacy_config_replaces_earlier_template(self, state_paths):
        """A config written by an earlier boot without the volume must not shadow the restore."""
        legacy = state_paths.mount_path / "clawdbot"
        legacy.mkdir(parents=True)
        (legacy / "clawdbot.json").write_text('{"legacy": true}')
        state_paths.durable_marker.write_text("2026-02-01T00:00:00Z")
        state_paths.state_dir.mkdir(parents=True)
        state_paths.config_file.write_text('{"template": true}')

        outcome = restore_on_startup(state_paths)

        assert outcome.restored is True
        assert json.loads(state_paths.config_file.read_text()) == {"legacy": True}
        assert not (state_paths.state_dir / "clawdbot.json").exists()

    def test_legacy_flat_layout_skips_namespaces(self, state_paths):
        root = state_paths.mount_path
        (root / "backups" / "b-1").mkdir(parents=True)
        (root / "clawdbot.json").write_text('{"flat": true}')
        (root / "devices").mkdir()
        (root / "devices" / "paired.json").write_text("[]")
        state_paths.durable_marker.write_text("2026-02-01T00:00:00Z")

        outcome = restore_on_startup(state_paths)

        assert outcome.layout == "legacy_flat"
        assert json.loads(state_paths.config_file.read_text()) == {"flat": True}
        assert (state_paths.state_dir / "devices" / "paired.json").is_file()
        assert not (state_paths.state_dir / "backups").exists()

    def test_current_layout_wins_over_legacy(self, state_paths):
        self.write_durable(state_paths)
        legacy = state_paths.mount_path / "clawdbot"
        legacy.mkdir()
        (legacy / "clawdbot.json").write_text('{"legacy": true}')

        outcome = restore_on_startup(state_paths)

        assert outcome.layout == "current"
        assert json.loads(state_paths.config_file.read_text()) == {"restored": True}

    def test_skills_are_restored(self, state_paths):
        self.write_durable(state_paths)
        skills = state_paths.mount_path / "skills"
        skills.mkdir()
        (skills / "IDENTITY.md").write_text("# Me\n")

        outcome = restore_on_startup(state_paths)

        assert outcome.skills_restored is True
        assert state_paths.identity_file.read_text() == "# Me\n"

    def test_unmounted_volume_initializes_minimal_config(self, state_paths):
        outcome = restore_on_startup(state_paths)

        assert outcome.restored is False
        assert outcome.config_initialized is True
        config = json.loads(state_paths.config_file.read_text())
        assert config["gateway"]["port"] == 18789
        assert config["agents"]["defaults"]["workspace"] == str(state_paths.workspace_dir)
        assert state_paths.skills_dir.is_dir()

    def test_template_is_preferred(self, state_paths):
        state_paths.template_file.parent.mkdir(parents=True)
        state_paths.template_file.write_text('{"template": true}')

        outcome = restore_on_startup(state_paths)

        assert outcome.config_initialized is True
        assert json.loads(state_paths.config_file.read_text()) == {"template": True}

    def test_existing_config_is_not_replaced(self, state_paths):
        state_paths.state_dir.mkdir(parents=True)
        state_paths.config_file.write_text('{"mine": true}')

        outcome = restore_on_startup(state_paths)

        assert outcome.config_initialized is False
        assert json.loads(state_paths.config_file.read_text()) == {"mine": True}

    def test_skills_without_layout_record_the_marker(self, state_paths):
        skills = state_paths.mount_path / "skills"
        skills.mkdir(parents=True)
        (skills / "IDENTITY.md").write_text("# Me\n")
        state_paths.durable_marker.write_text("2026-02-01T00:00:00+00:00")

        first = restore_on_startup(state_paths)
        state_paths.identity_file.write_text("# Edited locally\n")
        second = restore_on_startup(state_paths)

        assert first.layout is None
        assert first.skills_restored is True
        assert state_paths.local_marker.read_text() == "2026-02-01T00:00:00+00:00"
        assert second.skills_restored is False
        assert state_paths.identity_file.read_text() == "# Edited locally\n"
