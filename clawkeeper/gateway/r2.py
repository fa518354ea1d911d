"""
R2 bucket mounting for persistent storage.

The bucket is attached with s3fs at ``R2_MOUNT_PATH``. Mounting fails soft:
the gateway runs fine without durability, so callers get ``False`` instead of
an exception and re-invoke ``mount`` on every operation that needs storage.
"""

import shlex
from typing import Protocol

from ..config import COPY_TIMEOUT_MS, QUICK_CHECK_TIMEOUT_MS, R2_MOUNT_PATH, GatewayEnv
from ..log_config import get_logger
from ..sandbox.executor import run_command
from ..sandbox.types import CommandExecutor
from .errors import MountError

log = get_logger("r2", service="gateway")


def r2_endpoint(account_id: str) -> str:
    return f"https://{account_id}.r2.cloudflarestorage.com"


class BucketMounter(Protocol):
    """Mount primitive. Raises on failure."""

    async def mount(self, bucket: str, path: str, endpoint: str, env: dict[str, str]) -> None: ...


class S3fsBucketMounter:
    """Mounts a bucket with s3fs through the command executor.

    Credentials travel in the s3fs process environment, never on its command line.
    """

    def __init__(self, executor: CommandExecutor):
        self.executor = executor

    async def mount(self, bucket: str, path: str, endpoint: str, env: dict[str, str]) -> None:
        quoted_path = shlex.quote(path)
        command = (
            f"mkdir -p {quoted_path} && "
            f"s3fs {shlex.quote(bucket)} {quoted_path} "
            f"-o url={shlex.quote(endpoint)} -o use_path_request_style -o nonempty && "
            f"mount | grep -F ' {path} ' > /dev/null && echo mounted"
        )
        _proc, logs = await run_command(self.executor, command, COPY_TIMEOUT_MS, env=env)
        if "mounted" not in logs.stdout:
            raise MountError(f"s3fs could not mount {bucket} at {path}", details=logs.stderr)


class R2Storage:
    """Idempotent attachment of the durable bucket."""

    def __init__(
        self,
        executor: CommandExecutor,
        mounter: BucketMounter | None = None,
        mount_path: str = R2_MOUNT_PATH,
    ):
        self.executor = executor
        self.mounter = mounter or S3fsBucketMounter(executor)
        self.mount_path = mount_path

    async def is_mounted(self) -> bool:
        _proc, logs = await run_command(
            self.executor,
            f"mount | grep -F ' {self.mount_path} '",
            QUICK_CHECK_TIMEOUT_MS,
        )
        return f" {self.mount_path} " in logs.stdout

    async def mount(self, env: GatewayEnv) -> bool:
        """
        Mount the bucket if it is not mounted already.

        Returns:
            True if the bucket is available at the mount path, False otherwise
        """
        if not env.has_r2_credentials:
            log.info(
                "r2.not_configured",
                reason="missing R2_ACCESS_KEY_ID, R2_SECRET_ACCESS_KEY, or CF_ACCOUNT_ID",
            )
            return False

        try:
            if await self.is_mounted():
                log.debug("r2.already_mounted", mount_path=self.mount_path)
                return True

            log.info("r2.mount_start", mount_path=self.mount_path, bucket=env.r2_bucket_name)
            await self.mounter.mount(
                env.r2_bucket_name,
                self.mount_path,
                r2_endpoint(env.cf_account_id or ""),
                {
                    "AWSACCESSKEYID": env.r2_access_key_id or "",
                    "AWSSECRETACCESSKEY": env.r2_secret_access_key or "",
                },
            )
            log.info("r2.mounted", mount_path=self.mount_path)
            return True
        except Exception as e:
            log.error("r2.mount_error", exc=e, mount_path=self.mount_path)
            return False
