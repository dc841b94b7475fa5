import logging
import re
import secrets
from collections.abc import Callable
from datetime import UTC, datetime

from app.certificates.config import CertificateConfig
from app.certificates.exceptions import CodeGenerationError
from app.certificates.services.certificate_repository import normalize_code
from app.core.constants import VERIFICATION_CODE_RANDOM_LENGTH

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"^[A-Z]+-\d{4}-[A-Z0-9]{%d}$" % VERIFICATION_CODE_RANDOM_LENGTH)


def is_well_formed(code: str) -> bool:
    return bool(CODE_PATTERN.match(normalize_code(code)))


class VerificationCodeGenerator:
    """Mints ``<PREFIX>-<YEAR>-<8 hex chars>`` codes unique across all certificates."""

    def __init__(
        self,
        config: CertificateConfig,
        code_exists: Callable[[str], bool],
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        token_hex: Callable[[int], str] = secrets.token_hex,
    ):
        self.config = config
        self._code_exists = code_exists
        self._clock = clock
        self._token_hex = token_hex

    def _draw(self) -> str:
        random_part = self._token_hex(VERIFICATION_CODE_RANDOM_LENGTH // 2).upper()
        return f"{self.config.code_prefix}-{self._clock().year}-{random_part}"

    def generate(self) -> str:
        for attempt in range(1, self.config.code_max_attempts + 1):
            code = self._draw()
            if not self._code_exists(code):
                return code
            logger.warning("Verification code collision on attempt %d", attempt)
        raise CodeGenerationError(self.config.code_max_attempts)
