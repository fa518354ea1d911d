"""Tests for the state directory health gate."""

import pytest

from clawkeeper.gateway.health import HealthGate, classify_identity_document
from clawkeeper.gateway.types import IdentityState
from clawkeeper.sandbox.executor import LocalCommandExecutor

from .conftest import HEALTHY_IDENTITY, FakeExecutor, identity_output


def identity_document(size: int, heading: bool = True) -> bytes:
    prefix = b"# Identity\n" if heading else b"Identity\n"
    return prefix + b"x" * (size - len(prefix))


class TestClassifyIdentityDocument:
    """Tests for the pure identity classifier."""

    def test_absent(self):
        assert classify_identity_document(None) is IdentityState.MISSING

    def test_zero_bytes_is_empty(self):
        assert classify_identity_document(b"") is IdentityState.EMPTY

    def test_150_bytes_with_heading_is_healthy(self):
        assert classify_identity_document(identity_document(150)) is IdentityState.HEALTHY

    def test_50_bytes_with_heading_is_minimal(self):
        assert classify_identity_document(identity_document(50)) is IdentityState.MINIMAL

    def test_large_without_heading_is_minimal(self):
        assert classify_identity_document(identity_document(500, heading=False)) is IdentityState.MINIMAL

    def test_heading_on_later_line(self):
        content = b"intro\n" + identity_document(150)
        assert classify_identity_document(content) is IdentityState.HEALTHY


class TestHealthGateCommands:
    """Tests against canned command output."""

    @pytest.mark.asyncio
    async def test_missing_config(self, state_paths):
        executor = FakeExecutor(outputs=[""])
        status = await HealthGate(executor, state_paths).check()

        assert status.healthy is False
        assert status.reason == "Missing openclaw.json"
        assert len(executor.commands) == 1

    @pytest.mark.asyncio
    async def test_missing_identity(self, state_paths):
        status = await HealthGate(FakeExecutor(outputs=["ok", "missing"]), state_paths).check()

        assert status.healthy is False
        assert "IDENTITY.md does not exist" in status.reason

    @pytest.mark.asyncio
    async def test_healthy(self, state_paths):
        status = await HealthGate(FakeExecutor(outputs=["ok\n", HEALTHY_IDENTITY]), state_paths).check()

        assert status.healthy is True
        assert status.reason is None

    @pytest.mark.asyncio
    async def test_document_is_classified_from_its_bytes(self, state_paths):
        executor = FakeExecutor(outputs=["ok", identity_output(identity_document(50))])
        status = await HealthGate(executor, state_paths).check()

        assert status.healthy is False
        assert "minimal content" in status.reason

    @pytest.mark.asyncio
    async def test_undecodable_document_is_unhealthy(self, state_paths):
        status = await HealthGate(FakeExecutor(outputs=["ok", "present %%%"]), state_paths).check()

        assert status.healthy is False
        assert status.reason.startswith("Health check error:")

    @pytest.mark.asyncio
    async def test_unexpected_output_is_unhealthy(self, state_paths):
        status = await HealthGate(FakeExecutor(outputs=["ok", "garbage"]), state_paths).check()

        assert status.healthy is False
        assert status.reason.startswith("Health check error:")


class TestHealthGateShell:
    """Tests running the real check scripts through bash."""

    @pytest.fixture
    def executor(self) -> LocalCommandExecutor:
        return LocalCommandExecutor(discover_system_processes=False)

    async def check(self, executor, state_paths, identity: bytes | None):
        state_paths.skills_dir.mkdir(parents=True)
        state_paths.config_file.write_text("{}")
        if identity is not None:
            state_paths.identity_file.write_bytes(identity)
        return await HealthGate(executor, state_paths).check()

    @pytest.mark.asyncio
    async def test_empty_identity(self, executor, state_paths):
        status = await self.check(executor, state_paths, b"")
        assert status.healthy is False
        assert "IDENTITY.md is empty" in status.reason

    @pytest.mark.asyncio
    async def test_healthy_identity(self, executor, state_paths):
        status = await self.check(executor, state_paths, identity_document(150))
        assert status.healthy is True

    @pytest.mark.asyncio
    async def test_minimal_identity(self, executor, state_paths):
        status = await self.check(executor, state_paths, identity_document(50))
        assert status.healthy is False
        assert "minimal content" in status.reason

    @pytest.mark.asyncio
    async def test_missing_identity(self, executor, state_paths):
        status = await self.check(executor, state_paths, None)
        assert status.healthy is False
        assert "does not exist" in status.reason

    @pytest.mark.asyncio
    async def test_legacy_config_counts(self, executor, state_paths):
        state_paths.skills_dir.mkdir(parents=True)
        (state_paths.state_dir / "clawdbot.json").write_text("{}")
        state_paths.identity_file.write_bytes(identity_document(150))

        status = await HealthGate(executor, state_paths).check()

        assert status.healthy is True
