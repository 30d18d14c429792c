from googleapiclient.discovery import build
from datetime import datetime
from typing import List, Dict, Optional, Any
import asyncio
import re
from urllib.parse import unquote

from dateutil.parser import parse
import isodate
import pytz

from .base import SourceAdapter, Candidate, ChannelInfo
from ..utils.config import get_credential, split_csv
from ..utils.error_codes import ProviderUnavailable
from ..utils.logger import setup_indexer_logger

logger = setup_indexer_logger('youtube')

# videos.list accepts at most 50 ids per request
VIDEO_BATCH_SIZE = 50
SEARCH_PAGE_SIZE = 50


def parse_duration(duration_str: str) -> int:
    """Convert ISO 8601 duration to seconds"""
    try:
        duration = isodate.parse_duration(duration_str)
        return int(duration.total_seconds())
    except (isodate.ISO8601Error, TypeError, ValueError) as e:
        logger.warning(f"Could not parse duration {duration_str}: {str(e)}")
        return 0


def parse_published_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        published = parse(value)
    except (ValueError, OverflowError):
        logger.warning(f"Could not parse publish date {value}")
        return None
    if published.tzinfo is None:
        return pytz.UTC.localize(published)
    return published.astimezone(pytz.UTC)


def best_thumbnail(thumbnails: Dict[str, Any]) -> Optional[str]:
    for size in ('maxres', 'high', 'medium', 'default'):
        if thumbnails.get(size, {}).get('url'):
            return thumbnails[size]['url']
    return None


def normalize_channel_reference(channel_ref: str) -> Dict[str, str]:
    """Split a channel URL, handle or id into {'id': ...} or {'query': ...}.

    'UC...' ids (bare or in /channel/ URLs) are used as-is; handles, custom
    URLs and legacy usernames need a search to resolve.
    """
    decoded = unquote(unquote(channel_ref.strip()))
    url_patterns = [
        r'youtube\.com/channel/([^/?&]+)',  # Direct channel ID
        r'youtube\.com/@([^/?&]+)',         # Handle
        r'youtube\.com/c/([^/?&]+)',        # Custom URL
        r'youtube\.com/user/([^/?&]+)'      # Legacy username
    ]
    identifier = decoded
    for pattern in url_patterns:
        match = re.search(pattern, decoded)
        if match:
            identifier = match.group(1)
            break
    identifier = identifier.lstrip('@')
    if re.fullmatch(r'UC[\w-]{22}', identifier):
        return {'id': identifier}
    return {'query': identifier.replace('-', ' ')}


class YouTubeAdapter(SourceAdapter):
    """Source adapter for the YouTube Data API v3 with API-key rotation."""

    platform = 'youtube'

    # Quota costs for different operations
    QUOTA_COSTS = {
        'channels.list': 1,
        'videos.list': 1,
        'search.list': 100,
    }

    DAILY_QUOTA_LIMIT = 10000

    def __init__(self, api_keys: Optional[List[str]] = None, relevance_keywords: Optional[List[str]] = None,
                 relevance_language: Optional[str] = 'es', region_code: Optional[str] = None,
                 timeout: float = 30):
        super().__init__(relevance_keywords)
        self.logger = logger
        self.relevance_language = relevance_language
        self.region_code = region_code
        self.timeout = timeout

        self.api_keys = list(api_keys) if api_keys else split_csv(get_credential('YOUTUBE_API_KEYS'))
        if not self.api_keys:
            raise ValueError("No YouTube API keys found in environment")

        self.current_key_index = 0
        self.quota_usage = {key: 0 for key in self.api_keys}
        self._init_youtube_client()

    @classmethod
    def from_config(cls, platform_config: Dict[str, Any]) -> 'YouTubeAdapter':
        return cls(
            api_keys=split_csv(platform_config.get('api_keys')) or None,
            relevance_keywords=platform_config.get('relevance_keywords') or [],
            relevance_language=platform_config.get('relevance_language', 'es'),
            region_code=platform_config.get('region_code'),
            timeout=float(platform_config.get('timeout', 30)),
        )

    def _init_youtube_client(self):
        """Initialize YouTube API client with current key"""
        self.youtube = build('youtube', 'v3', developerKey=self.api_keys[self.current_key_index],
                             cache_discovery=False)

    def _rotate_api_key(self):
        """Rotate to the next API key"""
        self.current_key_index = (self.current_key_index + 1) % len(self.api_keys)
        self._init_youtube_client()
        self.logger.info(f"Rotated to next YouTube API key (index: {self.current_key_index})")

    async def _execute_with_retry(self, build_request, operation_name: str):
        """Execute a request with API key rotation on quota errors.

        Args:
            build_request: Callable taking the current client and returning a request,
                so a rotated key is picked up by the retry.
            operation_name: API method name, for quota accounting

        Raises:
            ProviderUnavailable: quota exhausted on every key, or any transport/API error
        """
        loop = asyncio.get_running_loop()

        for _ in range(len(self.api_keys)):
            request = build_request(self.youtube)
            try:
                # Run the synchronous execute() in a thread pool
                result = await asyncio.wait_for(loop.run_in_executor(None, request.execute), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                raise ProviderUnavailable(
                    f"YouTube {operation_name} timed out after {self.timeout}s",
                    {'platform': self.platform, 'operation': operation_name}
                ) from e
            except Exception as e:
                if 'quota' in str(e).lower():
                    current_key = self.api_keys[self.current_key_index]
                    self.logger.warning(
                        f"API key {self.current_key_index} quota exceeded "
                        f"({self.quota_usage[current_key]}/{self.DAILY_QUOTA_LIMIT} units used). "
                        "Rotating to next key."
                    )
                    self._rotate_api_key()
                    continue
                raise ProviderUnavailable(
                    f"YouTube {operation_name} failed: {e}",
                    {'platform': self.platform, 'operation': operation_name}
                ) from e

            current_key = self.api_keys[self.current_key_index]
            self.quota_usage[current_key] += self.QUOTA_COSTS.get(operation_name, 1)
            return result

        raise ProviderUnavailable(
            "All YouTube API keys exhausted",
            {'platform': self.platform, 'operation': operation_name}
        )

    async def _search_video_ids(self, max_results: int, **params) -> List[str]:
        video_ids: List[str] = []
        page_token = None

        while len(video_ids) < max_results:
            page_size = min(SEARCH_PAGE_SIZE, max_results - len(video_ids))
            request_params = dict(params, part='snippet', type='video', maxResults=page_size)
            if page_token:
                request_params['pageToken'] = page_token
            response = await self._execute_with_retry(
                lambda yt: yt.search().list(**request_params), 'search.list'
            )

            for item in response.get('items', []):
                video_id = item.get('id', {}).get('videoId')
                if video_id and video_id not in video_ids:
                    video_ids.append(video_id)

            page_token = response.get('nextPageToken')
            if not page_token or not response.get('items'):
                break

        return video_ids[:max_results]

    async def _get_video_details(self, video_ids: List[str]) -> List[Dict]:
        """Get detailed information for videos, in batches of 50"""
        videos = []
        for start in range(0, len(video_ids), VIDEO_BATCH_SIZE):
            batch = video_ids[start:start + VIDEO_BATCH_SIZE]
            response = await self._execute_with_retry(
                lambda yt: yt.videos().list(part='snippet,contentDetails,statistics', id=','.join(batch)),
                'videos.list'
            )
            videos.extend(response.get('items', []))
        return videos

    def _video_to_candidate(self, video: Dict[str, Any]) -> Candidate:
        snippet = video.get('snippet', {})
        statistics = video.get('statistics', {})
        video_id = video['id']
        return Candidate(
            platform=self.platform,
            external_id=video_id,
            title=snippet.get('title', ''),
            description=snippet.get('description', '') or '',
            channel_external_id=snippet.get('channelId'),
            channel_title=snippet.get('channelTitle'),
            view_count=int(statistics.get('viewCount', 0) or 0),
            duration=parse_duration(video.get('contentDetails', {}).get('duration')),
            published_at=parse_published_at(snippet.get('publishedAt')),
            thumbnail_url=best_thumbnail(snippet.get('thumbnails', {})),
            video_url=f"https://www.youtube.com/watch?v={video_id}",
            embed_url=f"https://www.youtube.com/embed/{video_id}",
        )

    async def fetch_candidates(self, query: str, max_results: int, order: Optional[str] = None) -> List[Candidate]:
        params = {'q': query, 'order': order or 'relevance'}
        if self.relevance_language:
            params['relevanceLanguage'] = self.relevance_language
        if self.region_code:
            params['regionCode'] = self.region_code

        self.logger.info(f"Searching YouTube for '{query}' (order={params['order']}, max={max_results})")
        video_ids = await self._search_video_ids(max_results, **params)
        if not video_ids:
            self.logger.info(f"No YouTube results for '{query}'")
            return []

        videos = await self._get_video_details(video_ids)
        candidates = [self._video_to_candidate(v) for v in videos]
        self.logger.info(f"YouTube search '{query}' returned {len(candidates)} candidates")
        return candidates

    async def _resolve_channel_id(self, channel_ref: str) -> Optional[str]:
        reference = normalize_channel_reference(channel_ref)
        if 'id' in reference:
            return reference['id']

        response = await self._execute_with_retry(
            lambda yt: yt.search().list(part='snippet', q=reference['query'], type='channel', maxResults=1),
            'search.list'
        )
        items = response.get('items', [])
        if not items:
            self.logger.warning(f"Could not resolve YouTube channel {channel_ref}")
            return None
        channel_id = items[0]['id']['channelId']
        self.logger.debug(f"Resolved {channel_ref} to channel ID: {channel_id}")
        return channel_id

    async def fetch_channel_items(self, channel_external_id: str, max_results: int) -> List[Candidate]:
        channel_id = await self._resolve_channel_id(channel_external_id)
        if not channel_id:
            return []

        video_ids = await self._search_video_ids(max_results, channelId=channel_id, order='date')
        if not video_ids:
            return []

        videos = await self._get_video_details(video_ids)
        candidates = [self._video_to_candidate(v) for v in videos]
        self.logger.info(f"Listed {len(candidates)} videos for YouTube channel {channel_id}")
        return candidates

    async def fetch_channel(self, channel_external_id: str) -> Optional[ChannelInfo]:
        channel_id = await self._resolve_channel_id(channel_external_id)
        if not channel_id:
            return None

        response = await self._execute_with_retry(
            lambda yt: yt.channels().list(part='snippet,statistics,brandingSettings', id=channel_id),
            'channels.list'
        )
        items = response.get('items', [])
        if not items:
            return None

        channel = items[0]
        snippet = channel.get('snippet', {})
        statistics = channel.get('statistics', {})
        return ChannelInfo(
            platform=self.platform,
            external_id=channel['id'],
            title=snippet.get('title', channel['id']),
            description=snippet.get('description', '') or '',
            thumbnail_url=best_thumbnail(snippet.get('thumbnails', {})),
            banner_url=channel.get('brandingSettings', {}).get('image', {}).get('bannerExternalUrl'),
            subscriber_count=int(statistics.get('subscriberCount', 0) or 0),
            video_count=int(statistics.get('videoCount', 0) or 0),
        )
