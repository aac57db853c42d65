from typing import Dict, Any, List, Optional
import asyncio
import re
import time

import structlog

from meeting_agent.domain.cache.validation_cache import ValidationCache
from meeting_agent.domain.collaborators.interfaces import AttendeeValidator, DirectoryLookup
from meeting_agent.domain.models.calendar import EmailValidationResult, PersonInfo, User
from meeting_agent.domain.models.errors import classify_error

logger = structlog.get_logger(__name__)


STRICT_EMAIL_REGEX = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)

BATCH_SIZE = 5
WARM_UP_BATCH_SIZE = 3


def is_valid_email_format(email: str) -> bool:
    if not email or ".." in email or email.startswith(".") or email.endswith("."):
        return False
    return bool(STRICT_EMAIL_REGEX.match(email))


def dedupe_emails(emails: List[str]) -> List[str]:
    """Drop case-insensitive duplicates, keeping first occurrences in order"""

    seen = set()
    unique: List[str] = []
    for email in emails:
        normalized = email.strip().lower()
        if normalized in seen:
            continue
        seen.add(normalized)
        unique.append(email.strip())
    return unique


class CachedAttendeeValidator(AttendeeValidator):
    """Attendee validation backed by a directory lookup and a shared TTL cache"""

    def __init__(
        self,
        directory: DirectoryLookup,
        cache: Optional[ValidationCache[EmailValidationResult]] = None,
        lookup_timeout: float = 5.0,
        batch_size: int = BATCH_SIZE
    ):
        self.directory = directory
        self.cache = cache if cache is not None else ValidationCache()
        self.lookup_timeout = lookup_timeout
        self.batch_size = batch_size

    @staticmethod
    def _cache_key(email: str) -> str:
        return email.strip().lower()

    async def validate_email(self, email: str, user: User) -> EmailValidationResult:
        """Validate one address: format, then cache, then directory"""

        started = time.perf_counter()
        email = email.strip()
        key = self._cache_key(email)

        try:
            cached = await self.cache.get(key)
            if cached is not None:
                return cached.model_copy(update={"email": email})

            if not is_valid_email_format(email):
                result = EmailValidationResult(email=email, is_valid=False, exists=False)
                await self.cache.set(key, result)
                return result

            try:
                person = await asyncio.wait_for(
                    self.directory.lookup_person(email, user),
                    timeout=self.lookup_timeout
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Lookup failures are reported but never cached
                logger.warning(
                    "Directory lookup failed",
                    email=email,
                    error=str(e) or type(e).__name__,
                    error_kind=classify_error(e).value
                )
                return EmailValidationResult(
                    email=email,
                    is_valid=True,
                    exists=False,
                    error=str(e) or type(e).__name__
                )

            if person is None:
                result = EmailValidationResult(email=email, is_valid=True, exists=False)
            else:
                result = EmailValidationResult(
                    email=email,
                    is_valid=True,
                    exists=True,
                    first_name=person.first_name,
                    last_name=person.last_name,
                    profile_picture=person.profile_picture,
                    is_google_user=person.is_google_user
                )
            await self.cache.set(key, result)
            return result
        finally:
            self.cache.record_validation_time((time.perf_counter() - started) * 1000)

    async def validate_batch(self, emails: List[str], user: User) -> List[EmailValidationResult]:
        """Validate unique emails in concurrent groups, preserving input order"""

        unique = dedupe_emails(emails)
        results: List[EmailValidationResult] = []
        for index in range(0, len(unique), self.batch_size):
            group = unique[index:index + self.batch_size]
            results.extend(await asyncio.gather(*(self.validate_email(email, user) for email in group)))
        return results

    async def preload_validation(self, emails: List[str], user: User) -> int:
        """Validate emails that are not cached yet, returning how many were looked up"""

        uncached = [email for email in dedupe_emails(emails) if not await self.cache.has(self._cache_key(email))]
        if uncached:
            await self.validate_batch(uncached, user)
        return len(uncached)

    async def warm_up_cache(self, emails: List[str], user: User, pause_seconds: float = 0.1) -> int:
        """Like preload, in smaller groups with a pause between them"""

        uncached = [email for email in dedupe_emails(emails) if not await self.cache.has(self._cache_key(email))]
        for index in range(0, len(uncached), WARM_UP_BATCH_SIZE):
            group = uncached[index:index + WARM_UP_BATCH_SIZE]
            await asyncio.gather(*(self.validate_email(email, user) for email in group))
            if index + WARM_UP_BATCH_SIZE < len(uncached) and pause_seconds > 0:
                await asyncio.sleep(pause_seconds)
        return len(uncached)

    async def get_cached_validations(self, emails: List[str]) -> List[Optional[EmailValidationResult]]:
        return [await self.cache.get(self._cache_key(email)) for email in emails]

    async def get_person_info(self, email: str, user: User) -> Optional[PersonInfo]:
        result = await self.validate_email(email, user)
        if not result.exists or not result.is_google_user:
            return None
        return PersonInfo(
            email=result.email,
            first_name=result.first_name or "",
            last_name=result.last_name,
            profile_picture=result.profile_picture,
            is_google_user=result.is_google_user
        )

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_stats()

    def get_performance_metrics(self) -> Dict[str, Any]:
        times = self.cache.validation_times
        return {
            "cache_stats": self.cache.get_stats(),
            "recent_validation_times": times[-50:],
            "slow_validations": sum(1 for duration in times if duration > 2000),
            "fast_validations": sum(1 for duration in times if duration <= 500)
        }

    async def clear_cache(self):
        await self.cache.clear()
