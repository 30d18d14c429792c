"""
Twitch source adapter (Helix API).

Search works the way Twitch exposes it: channels matching the query are found
first, then recent archived videos are listed for the first few of them.
"""
import asyncio
import re
from typing import Dict, List, Optional, Any

import aiohttp

from .base import SourceAdapter, Candidate, ChannelInfo
from .youtube_indexer import parse_published_at
from ..utils.config import get_credential
from ..utils.error_codes import ProviderUnavailable
from ..utils.logger import setup_indexer_logger

logger = setup_indexer_logger('twitch')

HELIX_BASE_URL = 'https://api.twitch.tv/helix'
TOKEN_URL = 'https://id.twitch.tv/oauth2/token'

THUMBNAIL_WIDTH = 640
THUMBNAIL_HEIGHT = 360


def parse_twitch_duration(duration: Optional[str]) -> int:
    """Convert Twitch durations like '1h2m3s' to seconds"""
    if not duration:
        return 0
    total = 0
    for amount, unit in re.findall(r'(\d+)([hms])', duration):
        total += int(amount) * {'h': 3600, 'm': 60, 's': 1}[unit]
    return total


def size_thumbnail(url: Optional[str]) -> Optional[str]:
    """Fill the %{width}x%{height} (or {width}x{height}) template in Twitch thumbnail URLs"""
    if not url:
        return None
    return (url.replace('%{width}', str(THUMBNAIL_WIDTH))
               .replace('%{height}', str(THUMBNAIL_HEIGHT))
               .replace('{width}', str(THUMBNAIL_WIDTH))
               .replace('{height}', str(THUMBNAIL_HEIGHT)))


class TwitchAdapter(SourceAdapter):
    """Source adapter for Twitch archived videos."""

    platform = 'twitch'

    def __init__(self, client_id: Optional[str] = None, client_secret: Optional[str] = None,
                 relevance_keywords: Optional[List[str]] = None, max_users: int = 5,
                 timeout: int = 15):
        super().__init__(relevance_keywords)
        self.logger = logger
        self.client_id = client_id or get_credential('TWITCH_CLIENT_ID')
        self.client_secret = client_secret or get_credential('TWITCH_CLIENT_SECRET')
        if not self.client_id or not self.client_secret:
            raise ValueError("TWITCH_CLIENT_ID and TWITCH_CLIENT_SECRET are required")

        self.max_users = max_users
        self.timeout = timeout
        self._access_token: Optional[str] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, platform_config: Dict[str, Any]) -> 'TwitchAdapter':
        return cls(
            client_id=platform_config.get('client_id') or None,
            client_secret=platform_config.get('client_secret') or None,
            relevance_keywords=platform_config.get('relevance_keywords') or [],
            max_users=platform_config.get('max_users', 5),
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                )
            return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _get_access_token(self) -> str:
        """App access token via the client-credentials grant; cached until a 401."""
        if self._access_token:
            return self._access_token

        session = await self._get_session()
        try:
            async with session.post(TOKEN_URL, params={
                'client_id': self.client_id,
                'client_secret': self.client_secret,
                'grant_type': 'client_credentials',
            }) as resp:
                if resp.status != 200:
                    error_text = await resp.text()
                    raise ProviderUnavailable(
                        f"Twitch token request failed ({resp.status}): {error_text}",
                        {'platform': self.platform}
                    )
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderUnavailable(f"Twitch token request failed: {e}", {'platform': self.platform}) from e

        self._access_token = data['access_token']
        return self._access_token

    async def _helix_get(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """GET a Helix endpoint and return its 'data' list, refreshing the token once on 401."""
        for attempt in range(2):
            token = await self._get_access_token()
            session = await self._get_session()
            headers = {'Client-ID': self.client_id, 'Authorization': f'Bearer {token}'}
            try:
                async with session.get(f"{HELIX_BASE_URL}/{path}", params=params, headers=headers) as resp:
                    if resp.status == 401 and attempt == 0:
                        self.logger.info("Twitch token rejected, requesting a new one")
                        self._access_token = None
                        continue
                    if resp.status != 200:
                        error_text = await resp.text()
                        raise ProviderUnavailable(
                            f"Twitch {path} failed ({resp.status}): {error_text}",
                            {'platform': self.platform, 'operation': path}
                        )
                    payload = await resp.json()
                    return payload.get('data') or []
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise ProviderUnavailable(
                    f"Twitch {path} failed: {e}", {'platform': self.platform, 'operation': path}
                ) from e

        raise ProviderUnavailable(f"Twitch {path} unauthorized", {'platform': self.platform, 'operation': path})

    def _video_to_candidate(self, video: Dict[str, Any]) -> Candidate:
        return Candidate(
            platform=self.platform,
            external_id=str(video['id']),
            title=video.get('title', ''),
            description=video.get('description') or '',
            channel_external_id=str(video.get('user_id')) if video.get('user_id') else None,
            channel_title=video.get('user_name') or video.get('user_login'),
            view_count=int(video.get('view_count') or 0),
            duration=parse_twitch_duration(video.get('duration')),
            published_at=parse_published_at(video.get('published_at') or video.get('created_at')),
            thumbnail_url=size_thumbnail(video.get('thumbnail_url')),
            video_url=video.get('url') or f"https://www.twitch.tv/videos/{video['id']}",
            embed_url=f"https://player.twitch.tv/?video={video['id']}&parent=localhost",
        )

    async def fetch_candidates(self, query: str, max_results: int, order: Optional[str] = None) -> List[Candidate]:
        channels = await self._helix_get('search/channels', {'query': query, 'first': min(max_results, 100)})
        user_ids = [c['id'] for c in channels[:self.max_users] if c.get('id')]
        if not user_ids:
            self.logger.info(f"No Twitch channels found for '{query}'")
            return []

        per_user = max(1, -(-max_results // len(user_ids)))
        candidates: List[Candidate] = []
        for user_id in user_ids:
            videos = await self._helix_get('videos', {'user_id': user_id, 'first': min(per_user, 100)})
            candidates.extend(self._video_to_candidate(v) for v in videos)
            if len(candidates) >= max_results:
                break

        self.logger.info(f"Twitch search '{query}' returned {len(candidates[:max_results])} candidates")
        return candidates[:max_results]

    async def fetch_channel_items(self, channel_external_id: str, max_results: int) -> List[Candidate]:
        videos = await self._helix_get('videos', {'user_id': channel_external_id, 'first': min(max_results, 100)})
        return [self._video_to_candidate(v) for v in videos][:max_results]

    async def fetch_channel(self, channel_external_id: str) -> Optional[ChannelInfo]:
        users = await self._helix_get('users', {'id': channel_external_id})
        if not users:
            return None
        user = users[0]
        return ChannelInfo(
            platform=self.platform,
            external_id=str(user['id']),
            title=user.get('display_name') or user.get('login') or str(user['id']),
            description=user.get('description') or '',
            thumbnail_url=user.get('profile_image_url'),
            banner_url=user.get('offline_image_url'),
        )
