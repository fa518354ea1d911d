"""Tests for R2 bucket mounting."""

from unittest.mock import AsyncMock

import pytest

from clawkeeper.gateway.errors import MountError
from clawkeeper.gateway.r2 import R2Storage, S3fsBucketMounter

from .conftest import MOUNT_LINE, FakeExecutor


class TestR2Storage:
    @pytest.mark.asyncio
    async def test_missing_credentials(self, bare_env):
        executor = FakeExecutor()
        mounter = AsyncMock()

        assert await R2Storage(executor, mounter=mounter).mount(bare_env) is False
        assert executor.commands == []
        mounter.mount.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_already_mounted(self, r2_env):
        mounter = AsyncMock()
        storage = R2Storage(FakeExecutor(outputs=[MOUNT_LINE]), mounter=mounter)

        assert await storage.mount(r2_env) is True
        mounter.mount.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mounts_with_credentials_in_environment(self, r2_env):
        mounter = AsyncMock()
        storage = R2Storage(FakeExecutor(outputs=[""]), mounter=mounter)

        assert await storage.mount(r2_env) is True
        mounter.mount.assert_awaited_once_with(
            "openclaw-data",
            "/data/openclaw",
            "https://test-account.r2.cloudflarestorage.com",
            {"AWSACCESSKEYID": "test-key-id", "AWSSECRETACCESSKEY": "test-secret"},
        )

    @pytest.mark.asyncio
    async def test_mount_error_returns_false(self, r2_env):
        mounter = AsyncMock()
        mounter.mount.side_effect = MountError("s3fs failed")
        storage = R2Storage(FakeExecutor(outputs=[""]), mounter=mounter)

        assert await storage.mount(r2_env) is False

    @pytest.mark.asyncio
    async def test_mount_table_must_match_exact_path(self):
        executor = FakeExecutor(outputs=["s3fs on /data/openclaw-old type fuse.s3fs\n"])
        assert await R2Storage(executor).is_mounted() is False


class TestS3fsBucketMounter:
    @pytest.mark.asyncio
    async def test_secrets_stay_off_the_command_line(self):
        executor = FakeExecutor(outputs=["mounted\n"])
        env = {"AWSACCESSKEYID": "key", "AWSSECRETACCESSKEY": "secret"}

        await S3fsBucketMounter(executor).mount("bucket", "/data/openclaw", "https://r2", env)

        assert "s3fs bucket /data/openclaw" in executor.commands[0]
        assert "secret" not in executor.commands[0]
        assert executor.envs[0] == env

    @pytest.mark.asyncio
    async def test_unverified_mount_raises(self):
        executor = FakeExecutor(outputs=[""])
        with pytest.raises(MountError):
            await S3fsBucketMounter(executor).mount("bucket", "/data/openclaw", "https://r2", {})
