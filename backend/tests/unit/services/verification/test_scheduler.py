"""
Tests for the verification scheduler.

The backend is the in-process fake, the store is SQLite, and rofl.yaml
downloads are mocked.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from app.models.deployment import VerificationStatus
from app.services.rofl.fetcher import ManifestFetcher
from app.services.verification.exceptions import ManifestFetchError
from app.services.verification.poller import ResultPoller
from app.services.verification.scheduler import VerificationScheduler
from app.services.verification.session import SessionManager
from app.services.verification.submitter import TaskSubmitter

from fake_backend import IN_PROGRESS, NOT_FOUND, failed_result, verified_result, wait_until

REPO = "https://github.com/oasisprotocol/wt3"

ROFL_YAML = """
name: wt3
version: 0.1.0
tee: tdx
kind: container
deployments:
  mainnet:
    network: mainnet
    app_id: rofl1qrtetspnld9efpeasxmryl6nw9mgllr0euls3dwn
    policy:
      enclaves:
        - id: rofl1qpjsc3qplf2szw7w3rpzrpq5rqvzv4q5x5j23msu
"""

TWO_DEPLOYMENTS_YAML = """
name: wt3
deployments:
  mainnet:
    network: mainnet
  testnet:
    network: testnet
"""


def mock_fetcher(rofl_yaml: str = ROFL_YAML) -> AsyncMock:
    fetcher = AsyncMock(spec=ManifestFetcher)
    fetcher.fetch_manifest.return_value = rofl_yaml
    return fetcher


@pytest_asyncio.fixture
async def clients(fake_backend, private_key):
    session_manager = SessionManager(fake_backend.url, private_key)
    submitter = TaskSubmitter(fake_backend.url, session_manager=session_manager)
    poller = ResultPoller(fake_backend.url, session_manager=session_manager)
    yield submitter, poller
    await submitter.cleanup()
    await poller.cleanup()
    await session_manager.cleanup()


@pytest_asyncio.fixture
async def app_record(store):
    await store.upsert_application(REPO, "master")
    return await store.get_application_by_url(REPO)


def make_scheduler(store, clients, fetcher=None, **kwargs) -> VerificationScheduler:
    submitter, poller = clients
    options = {
        "app_interval": 0.01,
        "cycle_interval": 0.01,
        "poll_interval": 0.01,
        "poll_timeout": 5,
    }
    options.update(kwargs)
    return VerificationScheduler(
        store=store,
        submitter=submitter,
        poller=poller,
        fetcher=fetcher or mock_fetcher(),
        **options,
    )


class TestVerifyApp:
    @pytest.mark.asyncio
    async def test_verified_deployment(self, store, clients, fake_backend, app_record):
        fake_backend.script_results(IN_PROGRESS, verified_result("c0ffee"))
        scheduler = make_scheduler(store, clients)

        outcomes = await scheduler.verify_app(app_record)

        assert outcomes == {"mainnet": VerificationStatus.VERIFIED}
        deployments = await store.get_deployments(app_record.id)
        assert len(deployments) == 1
        assert deployments[0].status == "verified"
        assert deployments[0].commit_sha == "c0ffee"
        assert "MATCH" in deployments[0].verification_msg
        assert deployments[0].last_verified is not None
        assert fake_backend.submissions == [
            {"repository_url": REPO, "ref": "master", "deployment_name": "mainnet"}
        ]

    @pytest.mark.asyncio
    async def test_manifest_persisted(self, store, clients, fake_backend, app_record):
        fetcher = mock_fetcher()
        scheduler = make_scheduler(store, clients, fetcher=fetcher)

        await scheduler.verify_app(app_record)

        fetcher.fetch_manifest.assert_awaited_once_with(REPO, "master")
        stored = await store.get_application_by_id(app_record.id)
        assert stored.rofl_yaml == ROFL_YAML

    @pytest.mark.asyncio
    async def test_task_not_found(self, store, clients, fake_backend, app_record):
        fake_backend.script_results(NOT_FOUND)
        scheduler = make_scheduler(store, clients)

        outcomes = await scheduler.verify_app(app_record)

        assert outcomes == {"mainnet": VerificationStatus.FAILED}
        deployment = (await store.get_deployments(app_record.id))[0]
        assert deployment.status == "failed"
        assert deployment.verification_msg.startswith("Failed to poll results:")
        assert "not found" in deployment.verification_msg

    @pytest.mark.asyncio
    async def test_poll_timeout(self, store, clients, fake_backend, app_record):
        fake_backend.script_results(IN_PROGRESS)
        scheduler = make_scheduler(store, clients, poll_timeout=0.05)

        await scheduler.verify_app(app_record)

        deployment = (await store.get_deployments(app_record.id))[0]
        assert deployment.status == "failed"
        assert deployment.verification_msg == "Failed to poll results: polling timeout after 0.05s"

    @pytest.mark.asyncio
    async def test_measurement_mismatch(self, store, clients, fake_backend, app_record):
        fake_backend.script_results(
            failed_result(
                commit_sha="bad5ha",
                err="exit status 1",
                stderr=(
                    "enclave identity rofl1qpjsc3qplf2szw7w3rpzrpq5rqvzv4q5x5j23msu, "
                    "expected rofl1qrtetspnld9efpeasxmryl6nw9mgllr0euls3dwn."
                ),
            )
        )
        scheduler = make_scheduler(store, clients)

        outcomes = await scheduler.verify_app(app_record)

        assert outcomes == {"mainnet": VerificationStatus.FAILED}
        deployment = (await store.get_deployments(app_record.id))[0]
        assert deployment.commit_sha == "bad5ha"
        assert "Mismatched Enclave IDs:" in deployment.verification_msg
        assert "  - rofl1qpjsc3qplf2szw7w3rpzrpq5rqvzv4q5x5j23msu\n" in deployment.verification_msg
        assert "  - rofl1qrtetspnld9efpeasxmryl6nw9mgllr0euls3dwn\n" in deployment.verification_msg

    @pytest.mark.asyncio
    async def test_submission_failure(self, store, clients, fake_backend, app_record):
        fake_backend.submit_status = 500
        scheduler = make_scheduler(store, clients)

        outcomes = await scheduler.verify_app(app_record)

        assert outcomes == {"mainnet": VerificationStatus.FAILED}
        deployment = (await store.get_deployments(app_record.id))[0]
        assert deployment.commit_sha == ""
        assert deployment.verification_msg == (
            "Failed to submit verification: unexpected status code: 500"
        )

    @pytest.mark.asyncio
    async def test_auth_failure_recorded_as_submission_failure(
        self, store, clients, fake_backend, app_record
    ):
        fake_backend.nonce_status = 503
        scheduler = make_scheduler(store, clients)

        await scheduler.verify_app(app_record)

        deployment = (await store.get_deployments(app_record.id))[0]
        assert deployment.status == "failed"
        assert deployment.verification_msg.startswith("Failed to submit verification:")

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_others(self, store, clients, fake_backend, app_record):
        fake_backend.script_results(NOT_FOUND, deployment="mainnet")
        fake_backend.script_results(verified_result("t3st"), deployment="testnet")
        scheduler = make_scheduler(store, clients, fetcher=mock_fetcher(TWO_DEPLOYMENTS_YAML))

        outcomes = await scheduler.verify_app(app_record)

        assert outcomes == {
            "mainnet": VerificationStatus.FAILED,
            "testnet": VerificationStatus.VERIFIED,
        }
        deployments = await store.get_deployments(app_record.id)
        assert [(d.deployment_name, d.status) for d in deployments] == [
            ("mainnet", "failed"),
            ("testnet", "verified"),
        ]

    @pytest.mark.asyncio
    async def test_reverification_updates_existing_record(
        self, store, clients, fake_backend, app_record
    ):
        scheduler = make_scheduler(store, clients)
        fake_backend.script_results(NOT_FOUND)
        await scheduler.verify_app(app_record)

        fake_backend.script_results(verified_result("n3w"))
        await scheduler.verify_app(app_record)

        deployments = await store.get_deployments(app_record.id)
        assert len(deployments) == 1
        assert deployments[0].status == "verified"
        assert deployments[0].commit_sha == "n3w"

    @pytest.mark.asyncio
    async def test_fetch_failure_skips_app(self, store, clients, fake_backend, app_record):
        fetcher = mock_fetcher()
        fetcher.fetch_manifest.side_effect = ManifestFetchError("HTTP 404")
        scheduler = make_scheduler(store, clients, fetcher=fetcher)

        assert await scheduler.verify_app(app_record) == {}
        assert fake_backend.submissions == []
        assert await store.get_deployments(app_record.id) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rofl_yaml", ["", "   \n", "name: wt3\n", "deployments:\n"])
    async def test_nothing_to_verify(self, store, clients, fake_backend, app_record, rofl_yaml):
        scheduler = make_scheduler(store, clients, fetcher=mock_fetcher(rofl_yaml))

        assert await scheduler.verify_app(app_record) == {}
        assert fake_backend.submissions == []

    @pytest.mark.asyncio
    async def test_invalid_manifest_skips_app(self, store, clients, fake_backend, app_record):
        scheduler = make_scheduler(store, clients, fetcher=mock_fetcher("- just\n- a list\n"))

        assert await scheduler.verify_app(app_record) == {}
        assert fake_backend.submissions == []

    @pytest.mark.asyncio
    async def test_store_errors_are_not_raised(self, clients, fake_backend, app_record):
        store = MagicMock()
        store.update_manifest = AsyncMock(side_effect=OperationalError("UPDATE", {}, Exception("locked")))
        store.upsert_deployment = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("locked")))
        scheduler = make_scheduler(store, clients)

        outcomes = await scheduler.verify_app(app_record)

        assert outcomes == {"mainnet": VerificationStatus.VERIFIED}
        store.upsert_deployment.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connection_errors_from_store_are_not_raised(self, clients, fake_backend, app_record):
        store = MagicMock()
        store.update_manifest = AsyncMock(side_effect=ConnectionRefusedError("db down"))
        store.upsert_deployment = AsyncMock(side_effect=ConnectionRefusedError("db down"))
        scheduler = make_scheduler(store, clients, fetcher=mock_fetcher(TWO_DEPLOYMENTS_YAML))

        outcomes = await scheduler.verify_app(app_record)

        assert outcomes == {
            "mainnet": VerificationStatus.VERIFIED,
            "testnet": VerificationStatus.VERIFIED,
        }
        assert store.upsert_deployment.await_count == 2


class TestVerifyNow:
    @pytest.mark.asyncio
    async def test_unknown_app(self, store, clients):
        scheduler = make_scheduler(store, clients)

        with pytest.raises(ValueError, match="Unknown app: 999"):
            await scheduler.verify_now(999)

    @pytest.mark.asyncio
    async def test_known_app(self, store, clients, fake_backend, app_record):
        scheduler = make_scheduler(store, clients)

        outcomes = await scheduler.verify_now(app_record.id)

        assert outcomes == {"mainnet": VerificationStatus.VERIFIED}


class TestLoop:
    @pytest.mark.asyncio
    async def test_disabled_scheduler_does_not_start(self, store, clients):
        scheduler = make_scheduler(store, clients, enabled=False)

        await scheduler.start()

        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_cycle_verifies_every_app(self, store, clients, fake_backend):
        await store.upsert_application(REPO, "master")
        await store.upsert_application("https://github.com/oasisprotocol/talos", "main")
        scheduler = make_scheduler(store, clients)

        await scheduler.start()
        try:
            await wait_until(lambda: scheduler.cycles_completed >= 1)
        finally:
            await scheduler.stop()

        assert scheduler.is_running is False
        refs = [(s["repository_url"], s["ref"]) for s in fake_backend.submissions[:2]]
        assert refs == [(REPO, "master"), ("https://github.com/oasisprotocol/talos", "main")]

    @pytest.mark.asyncio
    async def test_empty_store_keeps_looping(self, clients):
        store = MagicMock()
        store.list_applications = AsyncMock(return_value=[])
        scheduler = make_scheduler(store, clients)

        await scheduler.start()
        try:
            await wait_until(lambda: store.list_applications.await_count >= 3)
        finally:
            await scheduler.stop()

        assert scheduler.cycles_completed == 0

    @pytest.mark.asyncio
    async def test_list_failure_is_retried(self, clients, fake_backend, app_record):
        store = MagicMock()
        store.list_applications = AsyncMock(
            side_effect=[OperationalError("SELECT", {}, Exception("down")), [app_record]]
        )
        store.update_manifest = AsyncMock()
        store.upsert_deployment = AsyncMock()
        scheduler = make_scheduler(store, clients, cycle_interval=60)

        await scheduler.start()
        try:
            await wait_until(lambda: scheduler.cycles_completed >= 1)
        finally:
            await scheduler.stop()

        assert store.list_applications.await_count == 2
        store.upsert_deployment.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connection_refused_listing_apps_is_retried(self, clients, fake_backend, app_record):
        store = MagicMock()
        store.list_applications = AsyncMock(
            side_effect=[ConnectionRefusedError("db down"), [], [app_record]]
        )
        store.update_manifest = AsyncMock()
        store.upsert_deployment = AsyncMock()
        scheduler = make_scheduler(store, clients, cycle_interval=60)

        await scheduler.start()
        try:
            await wait_until(lambda: scheduler.cycles_completed >= 1)
            assert scheduler.is_running is True
            assert not scheduler._task.done()
        finally:
            await scheduler.stop()

        assert store.list_applications.await_count == 3
        store.upsert_deployment.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_stop_loop(self, store, clients, fake_backend, app_record):
        fetcher = mock_fetcher()
        fetcher.fetch_manifest.side_effect = [RuntimeError("boom"), ROFL_YAML, ROFL_YAML]
        scheduler = make_scheduler(store, clients, fetcher=fetcher)

        await scheduler.start()
        try:
            await wait_until(lambda: scheduler.cycles_completed >= 2)
        finally:
            await scheduler.stop()

        deployment = (await store.get_deployments(app_record.id))[0]
        assert deployment.status == "verified"

    @pytest.mark.asyncio
    async def test_stop_cancels_in_flight_poll(self, store, clients, fake_backend, app_record):
        fake_backend.script_results(IN_PROGRESS)
        scheduler = make_scheduler(store, clients, poll_timeout=60)

        await scheduler.start()
        await wait_until(lambda: fake_backend.result_requests >= 1)
        await scheduler.stop()

        assert scheduler.is_running is False
        # A cancelled poll is neither a timeout nor a failure
        assert await store.get_deployments(app_record.id) == []

    @pytest.mark.asyncio
    async def test_run_raises_cancelled_error(self, store, clients):
        scheduler = make_scheduler(store, clients, app_interval=10)
        task = asyncio.create_task(scheduler.run())
        await asyncio.sleep(0.05)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
