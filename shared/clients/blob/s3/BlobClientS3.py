import asyncio

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from shared.clients.blob.BlobClientInterface import BlobClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.errors import StoreUnavailableError


class BlobClientS3(BlobClientInterface):
    """S3 (or S3-compatible) blob store. boto3 is synchronous, calls run in a worker thread."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._bucket = self.get_config_val("BUCKET", default=None, val_type="string")
        self._region = self.get_config_val("REGION", default="us-east-1", val_type="string")
        self._access_key_id = self.get_config_val("ACCESS_KEY_ID", default="", val_type="string")
        self._secret_access_key = self.get_config_val("SECRET_ACCESS_KEY", default="", val_type="string")
        self._endpoint_url = self.get_config_val("ENDPOINT_URL", default="", val_type="string")
        self._s3 = None

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "S3"

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BUCKET", val_type="string", default=None),
            EnvConfig(env_key="REGION", val_type="string", default="us-east-1"),
            EnvConfig(env_key="ACCESS_KEY_ID", val_type="string", default=""),
            EnvConfig(env_key="SECRET_ACCESS_KEY", val_type="string", default=""),
            EnvConfig(env_key="ENDPOINT_URL", val_type="string", default=""),
        ]

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport=None) -> None:
        kwargs: dict = {
            "region_name": self._region,
            "config": Config(connect_timeout=self.timeout, read_timeout=self.timeout, retries={"max_attempts": 3}),
        }
        # without explicit keys boto3 falls back to its default credential chain
        if self._access_key_id and self._secret_access_key:
            kwargs["aws_access_key_id"] = self._access_key_id
            kwargs["aws_secret_access_key"] = self._secret_access_key
        if self._endpoint_url:
            kwargs["endpoint_url"] = self._endpoint_url
        self._s3 = boto3.client("s3", **kwargs)

    async def close(self) -> None:
        if self._s3 is not None:
            self._s3.close()
            self._s3 = None

    async def _call(self, method: str, **kwargs):
        """Run a boto3 call in a worker thread, mapping connection failures to StoreUnavailableError."""
        if self._s3 is None:
            raise RuntimeError("S3 client not initialised. Call boot() before making requests.")
        try:
            return await asyncio.to_thread(getattr(self._s3, method), **kwargs)
        except BotoCoreError as e:
            self.logging.error("S3 %s failed: %s", method, e)
            raise StoreUnavailableError(f"S3 {method} failed: {e}") from e

    async def do_healthcheck(self) -> bool:
        try:
            await self._call("head_bucket", Bucket=self._bucket)
        except (StoreUnavailableError, ClientError) as e:
            self.logging.warning("S3 healthcheck failed: %s", e)
            return False
        return True

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_put(self, key: str, data: bytes, content_type: str) -> str:
        await self._call("put_object", Bucket=self._bucket, Key=key, Body=data, ContentType=content_type)
        return f"s3://{self._bucket}/{key}"

    async def do_get(self, key: str) -> bytes:
        try:
            response = await self._call("get_object", Bucket=self._bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise FileNotFoundError(key) from e
            raise
        return await asyncio.to_thread(response["Body"].read)

    async def do_delete(self, key: str) -> None:
        await self._call("delete_object", Bucket=self._bucket, Key=key)

    async def do_presigned_url(self, key: str, ttl: int | None = None) -> str:
        return await self._call(
            "generate_presigned_url",
            ClientMethod="get_object",
            Params={"Bucket": self._bucket, "Key": key, "ResponseContentDisposition": "inline"},
            ExpiresIn=ttl or self.presign_ttl,
        )
