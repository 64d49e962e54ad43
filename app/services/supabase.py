"""Supabase admin client for server-side storage operations."""

import asyncio
import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field

from supabase import Client, create_client

from app.config.settings import settings

logger = logging.getLogger(__name__)

# https://<project>.supabase.co/storage/v1/object/public/<bucket>/<path>
PUBLIC_OBJECT_URL = re.compile(r"/storage/v1/object/public/([^/]+)/(.+)$")


def get_supabase_admin_client() -> Client:
    """
    Get Supabase client with service role key for admin operations.

    This client has elevated privileges and should only be used for:
    - Deleting song assets from storage
    - Other admin-only operations

    IMPORTANT: Never expose this client to frontend or use anon key here.
    """
    if not settings.supabase_service_role_key:
        raise ValueError(
            "SUPABASE_SERVICE_ROLE_KEY not configured. "
            "Set it in .env for song asset deletion."
        )

    return create_client(
        settings.supabase_url,
        settings.supabase_service_role_key,
    )


def parse_public_object_url(url: str | None) -> tuple[str, str] | None:
    """Split a public storage URL into (bucket, path). None for external URLs."""
    if not url:
        return None
    match = PUBLIC_OBJECT_URL.search(url.split("?", 1)[0])
    if match is None:
        return None
    return match.group(1), match.group(2)


@dataclass
class AssetDeletion:
    """Result of removing a song's stored files."""

    deleted: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class SongAssetStorage:
    """Removes rendered audio and cover files from Supabase storage."""

    def __init__(self, client: Client | None = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_admin_client()
        return self._client

    def _remove(self, bucket: str, paths: list[str]) -> None:
        self.client.storage.from_(bucket).remove(paths)

    async def delete_assets(self, *urls: str | None) -> AssetDeletion:
        """Delete every stored object among `urls`; external URLs are ignored.

        Storage errors are collected, not raised, so the song row can still
        be removed.
        """
        result = AssetDeletion()
        by_bucket: dict[str, list[str]] = defaultdict(list)
        for url in urls:
            parsed = parse_public_object_url(url)
            if parsed:
                by_bucket[parsed[0]].append(parsed[1])

        if not by_bucket:
            return result
        if not settings.storage_enabled and self._client is None:
            result.errors.append("Supabase storage not configured")
            return result

        for bucket, paths in by_bucket.items():
            try:
                # supabase-py storage calls are blocking
                await asyncio.to_thread(self._remove, bucket, paths)
            except Exception as e:
                logger.error(f"[storage] Failed to delete {paths} from {bucket}: {e}")
                result.errors.append(f"{bucket}: {e}")
                continue
            result.deleted.extend(f"{bucket}/{path}" for path in paths)

        return result


song_asset_storage = SongAssetStorage()
