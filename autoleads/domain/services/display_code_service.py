"""
Display code allocation.

A display code is "#" + one prefix letter + a sequence number of at least two digits
("#A01"), unique within a tenant and never reused, soft-deleted vehicles included.
There is no counter table: the next number is derived from the highest existing code,
so allocation retries on collision with fresh reads and gives up after a fixed budget.
"""
import re
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

from autoleads.core.config import settings
from autoleads.core.exceptions import DisplayCodeConflictError, DisplayCodeExhaustedError
from autoleads.core.locks import KeyedLock
from autoleads.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

OTHER_PREFIX = "O"

# brand -> (model substring rules in order, fallback letter)
PREFIX_RULES: dict[str, tuple[list[tuple[tuple[str, ...], str]], str]] = {
    "toyota": ([
        (("veloz",), "V"),
        (("avanza",), "A"),
        (("rush",), "R"),
        (("innova",), "I"),
        (("fortuner",), "F"),
    ], "T"),
    "daihatsu": ([
        (("xenia",), "X"),
        (("terios",), "T"),
    ], "D"),
    "honda": ([
        (("hr-v", "hrv"), "H"),
        (("br-v", "brv"), "B"),
        (("cr-v", "crv"), "C"),
    ], "H"),
    "mitsubishi": ([
        (("xpander",), "X"),
        (("pajero",), "P"),
    ], "M"),
    "suzuki": ([
        (("ertiga",), "E"),
    ], "S"),
    "nissan": ([], "N"),
    "bmw": ([], "B"),
    "mercedes": ([], "M"),
    "mercedes-benz": ([], "M"),
    "mercy": ([], "M"),
}

CODE_PATTERN = re.compile(r"^#([A-Z])(\d{2,})$")


def determine_prefix(brand: Optional[str], model: Optional[str]) -> str:
    brand_lower = (brand or "").strip().lower()
    model_lower = (model or "").strip().lower()

    rules = PREFIX_RULES.get(brand_lower)
    if rules is None:
        return OTHER_PREFIX
    model_rules, fallback = rules
    for needles, letter in model_rules:
        if any(needle in model_lower for needle in needles):
            return letter
    return fallback


def format_code(prefix: str, number: int) -> str:
    return f"#{prefix}{number:02d}"


def parse_code_number(code: Optional[str]) -> Optional[int]:
    match = CODE_PATTERN.match(code or "")
    return int(match.group(2)) if match else None


def is_valid_code(code: str) -> bool:
    return CODE_PATTERN.match(code or "") is not None


class DisplayCodeRepository(Protocol):
    async def find_highest_code(self, tenant_id: int, prefix: str) -> Optional[str]: ...

    async def exists_code(self, tenant_id: int, code: str) -> bool: ...


class DisplayCodeGenerator:
    """
    Allocates display codes for one tenant-scoped repository.

    ``locks`` should be shared by every generator in the process so that two requests
    allocating the same (tenant, prefix) queue up instead of colliding.
    """

    def __init__(
        self,
        repository: DisplayCodeRepository,
        *,
        locks: Optional[KeyedLock] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        self._repository = repository
        self._locks = locks or KeyedLock()
        self._max_attempts = max_attempts or settings.DISPLAY_CODE_MAX_ATTEMPTS

    async def _candidate(self, tenant_id: int, prefix: str, floor: int) -> str:
        highest = parse_code_number(await self._repository.find_highest_code(tenant_id, prefix)) or 0
        return format_code(prefix, max(highest + 1, floor))

    async def generate_code(self, tenant_id: int, brand: Optional[str], model: Optional[str]) -> str:
        """
        Next free code for the brand/model prefix.

        The code is free at the time of the check only; use allocate() to also persist it.
        """
        prefix = determine_prefix(brand, model)
        floor = 1
        for attempt in range(self._max_attempts):
            candidate = await self._candidate(tenant_id, prefix, floor)
            if not await self._repository.exists_code(tenant_id, candidate):
                return candidate
            logger.warning(
                "Display code collision, retrying",
                extra_data={"tenant_id": tenant_id, "code": candidate, "attempt": attempt + 1},
            )
            floor = parse_code_number(candidate) + 1
        raise DisplayCodeExhaustedError(tenant_id, prefix, self._max_attempts)

    async def allocate(
        self,
        tenant_id: int,
        brand: Optional[str],
        model: Optional[str],
        persist: Callable[[str], Awaitable[T]],
    ) -> T:
        """
        Pick a code and hand it to ``persist``, retrying with a fresh code when the
        write hits the unique constraint (another worker got there first).
        """
        prefix = determine_prefix(brand, model)
        async with self._locks.hold((tenant_id, prefix)):
            floor = 1
            for attempt in range(self._max_attempts):
                candidate = await self._candidate(tenant_id, prefix, floor)
                floor = parse_code_number(candidate) + 1
                if await self._repository.exists_code(tenant_id, candidate):
                    logger.warning(
                        "Display code collision, retrying",
                        extra_data={"tenant_id": tenant_id, "code": candidate, "attempt": attempt + 1},
                    )
                    continue
                try:
                    return await persist(candidate)
                except DisplayCodeConflictError:
                    logger.warning(
                        "Display code taken during insert, retrying",
                        extra_data={"tenant_id": tenant_id, "code": candidate, "attempt": attempt + 1},
                    )
        raise DisplayCodeExhaustedError(tenant_id, prefix, self._max_attempts)
