# tests/support.py
"""
Test doubles shared by the OTP test modules.
"""
import re
from datetime import datetime, timedelta, timezone as dt_timezone

from accounts.utils.security import OTPSecurity

CODE_RE = re.compile(r"code is: (\d+)")


class FakeClock:
    """Controllable replacement for timezone.now."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=dt_timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class FakeChannel:
    """Records every message instead of delivering it."""

    def __init__(self, succeed=True):
        self.succeed = succeed
        self.sent = []

    def send(self, identifier, message):
        self.sent.append((identifier, message))
        return self.succeed

    @property
    def last_code(self):
        return extract_code(self.sent[-1][1])


class SequentialSecurity(OTPSecurity):
    """Hands out predetermined codes, hashes like the real thing."""

    def __init__(self, codes):
        super().__init__()
        self.codes = list(codes)

    def generate_code(self, length=6):
        return self.codes.pop(0)


def extract_code(message):
    return CODE_RE.search(message).group(1)
