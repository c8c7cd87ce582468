import asyncio
from pathlib import Path

from shared.clients.blob.BlobClientInterface import BlobClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class BlobClientLocal(BlobClientInterface):
    """Blob store on the local filesystem, rooted at BLOB_LOCAL_ROOT."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._root = Path(self.get_config_val("ROOT", default="./data/blobs", val_type="string")).resolve()

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Local"

    def _get_required_config(self) -> list[EnvConfig]:
        return [EnvConfig(env_key="ROOT", val_type="string", default="./data/blobs")]

    def _path_for(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if not path.is_relative_to(self._root):
            raise ValueError(f"Blob key '{key}' escapes the storage root.")
        return path

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport=None) -> None:
        self._root.mkdir(parents=True, exist_ok=True)

    async def close(self) -> None:
        return None

    async def do_healthcheck(self) -> bool:
        return self._root.is_dir()

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_put(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, data)
        return path.as_uri()

    async def do_get(self, key: str) -> bytes:
        path = self._path_for(key)
        if not path.is_file():
            raise FileNotFoundError(key)
        return await asyncio.to_thread(path.read_bytes)

    async def do_delete(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)

    async def do_presigned_url(self, key: str, ttl: int | None = None) -> str:
        # local files do not expire
        return self._path_for(key).as_uri()
