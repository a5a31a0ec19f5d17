import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from quota_library.error_handler import RefreshError
from quota_library.types import Credential, QuotaResult


class FakeSecretStore:
    """Secret store returning a scripted sequence of tokens."""

    def __init__(self, *tokens: Optional[str]):
        self._tokens = list(tokens)
        self.lookups: List[str] = []

    async def lookup(self, service_id: str) -> Optional[str]:
        self.lookups.append(service_id)
        if not self._tokens:
            return None
        if len(self._tokens) == 1:
            return self._tokens[0]
        return self._tokens.pop(0)


class FakeRequester:
    """Requester answering from a per-token table, recording each call."""

    def __init__(self, results: Dict[str, List[QuotaResult]]):
        self._results = {token: list(seq) for token, seq in results.items()}
        self.calls: List[Credential] = []

    async def request(self, credential: Credential) -> QuotaResult:
        self.calls.append(credential)
        seq = self._results[credential.token]
        return seq.pop(0) if len(seq) > 1 else seq[0]


class FakeRefresher:
    def __init__(self, error: Optional[str] = None, on_refresh=None):
        self.error = error
        self.on_refresh = on_refresh
        self.calls = 0

    async def refresh(self) -> None:
        self.calls += 1
        if self.on_refresh is not None:
            self.on_refresh()
        if self.error:
            raise RefreshError(self.error)


@pytest.fixture(autouse=True)
def clean_token_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CLAUDE_CODE_OAUTH_TOKEN", raising=False)
    monkeypatch.delenv("CLAUDE_OAUTH_TOKEN", raising=False)
