from datetime import datetime, timezone

import pytest

from conftest import FakeRefresher, FakeRequester, FakeSecretStore
from quota_library.credentials import CredentialResolver
from quota_library.error_handler import QuotaFetchError
from quota_library.orchestrator import (
    Phase,
    QuotaOrchestrator,
    after_refresh,
    after_request,
    after_resolve,
)
from quota_library.types import (
    AttemptState,
    Credential,
    CredentialSource,
    FailureKind,
    FatalReason,
    QuotaLimit,
    QuotaResult,
    QuotaSnapshot,
)


SNAPSHOT = QuotaSnapshot(
    limits={
        "five_hour": QuotaLimit(
            utilization=0.25,
            resets_at=datetime(2026, 10, 18, 15, 0, tzinfo=timezone.utc),
        )
    },
    raw={"five_hour": {"utilization": 0.25, "resets_at": "2026-10-18T15:00:00Z"}},
)
OK = QuotaResult.ok(SNAPSHOT)
EXPIRED = QuotaResult.failed(FailureKind.EXPIRED, status=401, message="token expired")
SCOPE = QuotaResult.failed(FailureKind.SCOPE_MISMATCH, status=403, message="scope")


async def _no_sleep(seconds: float) -> None:
    return None


def make_orchestrator(requester, store, refresher, environ=None):
    resolver = CredentialResolver(secret_store=store, environ=environ or {})
    return QuotaOrchestrator(
        resolver=resolver,
        requester=requester,
        refresher=refresher,
        settle_seconds=0,
        sleep=_no_sleep,
    )


# =============================================================================
# TRANSITIONS
# =============================================================================


def test_after_resolve_without_credential_is_fatal() -> None:
    step = after_resolve(AttemptState(), None)

    assert step.phase == Phase.FATAL
    assert step.fatal_reason == FatalReason.NO_CREDENTIAL


def test_after_resolve_with_credential_requests() -> None:
    credential = Credential(token="tok", source=CredentialSource.SECRET_STORE)

    assert after_resolve(AttemptState(), credential).phase == Phase.REQUESTING


def test_first_retryable_failure_switches_source() -> None:
    step = after_request(AttemptState(), EXPIRED, manual_override=False)

    assert step.phase == Phase.RESOLVING
    assert step.state.attempts_used == 1
    assert step.state.force_alternate_source is True


def test_second_retryable_failure_refreshes() -> None:
    state = AttemptState(attempts_used=1, force_alternate_source=True)

    step = after_request(state, SCOPE, manual_override=False)

    assert step.phase == Phase.REFRESHING
    assert step.state.attempts_used == 2


def test_exhausted_budget_is_auth_expired() -> None:
    state = AttemptState(attempts_used=2, force_alternate_source=True, refreshed=True)

    step = after_request(state, EXPIRED, manual_override=False)

    assert step.phase == Phase.FATAL
    assert step.fatal_reason == FatalReason.AUTH_EXPIRED
    assert step.state.attempts_used == 2


def test_manual_override_never_escalates() -> None:
    step = after_request(AttemptState(), SCOPE, manual_override=True)

    assert step.phase == Phase.FATAL
    assert step.fatal_reason == FatalReason.AUTH_EXPIRED
    assert step.state.attempts_used == 0


def test_refresh_is_never_repeated() -> None:
    state = AttemptState(attempts_used=1, force_alternate_source=True, refreshed=True)

    step = after_request(state, EXPIRED, manual_override=False, max_retries=5)

    assert step.phase == Phase.FATAL
    assert step.fatal_reason == FatalReason.AUTH_EXPIRED


@pytest.mark.parametrize(
    "result, reason",
    [
        (QuotaResult.failed(FailureKind.HTTP_ERROR, status=500), FatalReason.HTTP_ERROR),
        (QuotaResult.failed(FailureKind.NETWORK_FAILURE), FatalReason.NETWORK_FAILURE),
        (
            QuotaResult.failed(FailureKind.OTHER_AUTH_FAILURE, status=401),
            FatalReason.OTHER_AUTH_FAILURE,
        ),
    ],
)
def test_non_retryable_failures_are_fatal_on_first_attempt(result, reason) -> None:
    step = after_request(AttemptState(), result, manual_override=False)

    assert step.phase == Phase.FATAL
    assert step.fatal_reason == reason
    assert step.state.attempts_used == 0


def test_after_refresh() -> None:
    state = AttemptState(attempts_used=2, force_alternate_source=True)

    ok = after_refresh(state, succeeded=True)
    failed = after_refresh(state, succeeded=False)

    assert ok.phase == Phase.RESOLVING
    assert ok.state.refreshed is True
    assert failed.phase == Phase.FATAL
    assert failed.fatal_reason == FatalReason.REFRESH_FAILED


# =============================================================================
# RUNS
# =============================================================================


@pytest.mark.asyncio
async def test_success_on_first_attempt() -> None:
    requester = FakeRequester({"env-token": [OK]})
    refresher = FakeRefresher()
    orchestrator = make_orchestrator(
        requester,
        FakeSecretStore("store-token"),
        refresher,
        environ={"CLAUDE_CODE_OAUTH_TOKEN": "env-token"},
    )

    report = await orchestrator.run()

    assert report.snapshot is SNAPSHOT
    assert report.source == CredentialSource.ENVIRONMENT_VARIABLE
    assert report.attempts_used == 0
    assert refresher.calls == 0
    assert len(requester.calls) == 1


@pytest.mark.asyncio
async def test_scope_mismatch_on_env_token_falls_back_to_secret_store() -> None:
    requester = FakeRequester({"env-token": [SCOPE], "store-token": [OK]})
    refresher = FakeRefresher()
    orchestrator = make_orchestrator(
        requester,
        FakeSecretStore("store-token"),
        refresher,
        environ={"CLAUDE_CODE_OAUTH_TOKEN": "env-token"},
    )

    report = await orchestrator.run()

    assert report.source == CredentialSource.SECRET_STORE
    assert report.attempts_used == 1
    assert refresher.calls == 0
    assert [c.source for c in requester.calls] == [
        CredentialSource.ENVIRONMENT_VARIABLE,
        CredentialSource.SECRET_STORE,
    ]


@pytest.mark.asyncio
async def test_refreshed_secret_store_token_is_used() -> None:
    store = FakeSecretStore("stale-token")
    requester = FakeRequester(
        {"env-token": [EXPIRED], "stale-token": [EXPIRED], "fresh-token": [OK]}
    )

    def swap_token() -> None:
        store._tokens = ["fresh-token"]

    refresher = FakeRefresher(on_refresh=swap_token)
    orchestrator = make_orchestrator(
        requester, store, refresher, environ={"CLAUDE_CODE_OAUTH_TOKEN": "env-token"}
    )

    report = await orchestrator.run()

    assert report.source == CredentialSource.SECRET_STORE
    assert report.attempts_used == 2
    assert report.refresh_count == 1
    assert refresher.calls == 1
    assert [c.token for c in requester.calls] == [
        "env-token",
        "stale-token",
        "fresh-token",
    ]


@pytest.mark.asyncio
async def test_all_sources_expired_switches_once_refreshes_once_then_fails() -> None:
    requester = FakeRequester({"env-token": [EXPIRED], "store-token": [EXPIRED]})
    refresher = FakeRefresher()
    orchestrator = make_orchestrator(
        requester,
        FakeSecretStore("store-token"),
        refresher,
        environ={"CLAUDE_CODE_OAUTH_TOKEN": "env-token"},
    )

    with pytest.raises(QuotaFetchError) as exc_info:
        await orchestrator.run()

    assert exc_info.value.reason == FatalReason.AUTH_EXPIRED
    assert exc_info.value.attempts_used == 2
    assert refresher.calls == 1
    sources = [c.source for c in requester.calls]
    assert sources == [
        CredentialSource.ENVIRONMENT_VARIABLE,
        CredentialSource.SECRET_STORE,
        CredentialSource.SECRET_STORE,
    ]
    assert "claude --version" in exc_info.value.remediation


@pytest.mark.asyncio
async def test_manual_override_fails_fast() -> None:
    requester = FakeRequester({"manual-token": [SCOPE]})
    store = FakeSecretStore("store-token")
    refresher = FakeRefresher()
    orchestrator = make_orchestrator(
        requester, store, refresher, environ={"CLAUDE_CODE_OAUTH_TOKEN": "env-token"}
    )

    with pytest.raises(QuotaFetchError) as exc_info:
        await orchestrator.run(manual_override="manual-token")

    assert exc_info.value.reason == FatalReason.AUTH_EXPIRED
    assert exc_info.value.attempts_used == 0
    assert refresher.calls == 0
    assert len(requester.calls) == 1
    assert store.lookups == []


@pytest.mark.asyncio
async def test_server_error_is_never_retried() -> None:
    requester = FakeRequester(
        {"env-token": [QuotaResult.failed(FailureKind.HTTP_ERROR, status=500)]}
    )
    refresher = FakeRefresher()
    orchestrator = make_orchestrator(
        requester,
        FakeSecretStore("store-token"),
        refresher,
        environ={"CLAUDE_CODE_OAUTH_TOKEN": "env-token"},
    )

    with pytest.raises(QuotaFetchError) as exc_info:
        await orchestrator.run()

    assert exc_info.value.reason == FatalReason.HTTP_ERROR
    assert exc_info.value.status == 500
    assert len(requester.calls) == 1
    assert refresher.calls == 0


@pytest.mark.asyncio
async def test_no_credential_anywhere() -> None:
    requester = FakeRequester({})
    orchestrator = make_orchestrator(requester, FakeSecretStore(), FakeRefresher())

    with pytest.raises(QuotaFetchError) as exc_info:
        await orchestrator.run()

    assert exc_info.value.reason == FatalReason.NO_CREDENTIAL
    assert requester.calls == []
    assert "--token" in exc_info.value.remediation


@pytest.mark.asyncio
async def test_refresh_failure_is_fatal() -> None:
    requester = FakeRequester({"store-token": [EXPIRED]})
    refresher = FakeRefresher(error="`claude --version` exited with status 1")
    orchestrator = make_orchestrator(
        requester, FakeSecretStore("store-token"), refresher
    )

    with pytest.raises(QuotaFetchError) as exc_info:
        await orchestrator.run()

    assert exc_info.value.reason == FatalReason.REFRESH_FAILED
    assert refresher.calls == 1
    assert len(requester.calls) == 2
    assert "exited with status 1" in str(exc_info.value)


@pytest.mark.asyncio
async def test_settle_delay_follows_successful_refresh() -> None:
    delays = []

    async def record_sleep(seconds: float) -> None:
        delays.append(seconds)

    requester = FakeRequester({"store-token": [EXPIRED, EXPIRED, OK]})
    orchestrator = QuotaOrchestrator(
        resolver=CredentialResolver(
            secret_store=FakeSecretStore("store-token"), environ={}
        ),
        requester=requester,
        refresher=FakeRefresher(),
        settle_seconds=1.0,
        sleep=record_sleep,
    )

    report = await orchestrator.run()

    assert delays == [1.0]
    assert report.attempts_used == 2


@pytest.mark.asyncio
async def test_from_settings_wires_http_requester() -> None:
    import httpx

    from quota_library.config import QuotaSettings

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url == "https://quota.test/usage"
        assert request.headers["authorization"] == "Bearer store-token"
        return httpx.Response(
            200, json={"seven_day": {"utilization": 0.5, "resets_at": None}}
        )

    settings = QuotaSettings(quota_url="https://quota.test/usage")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        orchestrator = QuotaOrchestrator.from_settings(
            settings, client=client, secret_store=FakeSecretStore("store-token")
        )
        report = await orchestrator.run()

    assert report.source == CredentialSource.SECRET_STORE
    assert report.snapshot.limits["seven_day"].utilization == 0.5


@pytest.mark.asyncio
async def test_token_with_invalid_characters_is_a_fatal_auth_failure() -> None:
    import httpx

    from quota_library.config import QuotaSettings

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    settings = QuotaSettings(quota_url="https://quota.test/usage")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        orchestrator = QuotaOrchestrator.from_settings(
            settings, client=client, secret_store=FakeSecretStore()
        )
        with pytest.raises(QuotaFetchError) as exc_info:
            await orchestrator.run(manual_override="sk-ant-töken–x")

    assert exc_info.value.reason == FatalReason.OTHER_AUTH_FAILURE
    assert str(exc_info.value).startswith("Authentication failed (")
    assert "invalid characters" in str(exc_info.value)
    assert exc_info.value.remediation
