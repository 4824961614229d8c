"""Component tests for shuffler support modules.

Tests the locks, scheduler, configuration, signer, client factory and CLI.
"""

import asyncio
import json

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from shuffler.__main__ import main
from shuffler.config import Settings, get_settings
from shuffler.errors import SigningRejected
from shuffler.hdwallet.eth import derive_escape_hatch
from shuffler.providers import Network, create_network_clients
from shuffler.providers.dryrun import SimulatedNetworkClient
from shuffler.providers.rpc import JsonRpcNetworkClient
from shuffler.signing.local import LocalWalletSigner
from shuffler.utils import locks
from shuffler.utils.locks import (
    ForwardingLock,
    LockTimeoutError,
    clear_address_locks,
    get_address_lock,
    release_address_lock,
)
from shuffler.utils.scheduler import AsyncioClock, RepeatingTask


class TestForwardingLocks:
    """Tests for the per-address forwarding lock."""

    @pytest.fixture(autouse=True)
    def setup(self):
        """Clear locks before each test."""
        clear_address_locks()

    def test_lock_is_shared_case_insensitively(self):
        assert get_address_lock("0xAbC") is get_address_lock("0xabc")
        assert get_address_lock("0xabc") is not get_address_lock("0xdef")

    @pytest.mark.asyncio
    async def test_lock_held_inside_context(self):
        async with ForwardingLock("0xabc", operation="test"):
            lock = get_address_lock("0xabc")
            assert lock.locked()

        assert not lock.locked()

    @pytest.mark.asyncio
    async def test_disabled_lock_is_noop(self):
        async with ForwardingLock("0xabc", enabled=False):
            assert not get_address_lock("0xabc").locked()

    @pytest.mark.asyncio
    async def test_lock_serializes_forwards(self):
        results = []

        async def task(name):
            async with ForwardingLock("0xabc", timeout=5.0, operation=name):
                results.append(f"{name}_start")
                await asyncio.sleep(0.01)
                results.append(f"{name}_end")

        await asyncio.gather(task("auto"), task("manual"))

        assert results in [
            ["auto_start", "auto_end", "manual_start", "manual_end"],
            ["manual_start", "manual_end", "auto_start", "auto_end"],
        ]

    @pytest.mark.asyncio
    async def test_lock_timeout(self):
        async with ForwardingLock("0xabc"):
            with pytest.raises(LockTimeoutError):
                async with ForwardingLock("0xabc", timeout=0.01):
                    pass

    def test_release_drops_entry(self):
        lock = get_address_lock("0xAbC")

        release_address_lock("0xabc")

        assert "0xabc" not in locks._address_locks
        assert get_address_lock("0xabc") is not lock

    @pytest.mark.asyncio
    async def test_release_keeps_held_lock(self):
        async with ForwardingLock("0xabc"):
            release_address_lock("0xabc")
            assert "0xabc" in locks._address_locks


class TestRepeatingTask:
    """Tests for RepeatingTask driven by the manual clock."""

    @pytest.mark.asyncio
    async def test_runs_every_interval(self, clock):
        runs = []

        async def func():
            runs.append(clock.time())

        task = RepeatingTask(func, 5.0, clock).start()
        await clock.advance(16)

        assert runs == [5.0, 10.0, 15.0]
        task.cancel()
        await task.wait()
        assert not task.running

    @pytest.mark.asyncio
    async def test_cancel_from_inside_func(self, clock):
        async def func():
            task.cancel()

        task = RepeatingTask(func, 1.0, clock).start()
        await clock.advance(10)

        assert task.runs == 1
        assert task.cancelled
        assert not task.running

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_loop(self, clock):
        async def func():
            raise RuntimeError("boom")

        task = RepeatingTask(func, 1.0, clock).start()
        await clock.advance(3)

        assert task.runs == 3
        task.cancel()
        task.cancel()
        await task.wait()

    def test_interval_must_be_positive(self, clock):
        with pytest.raises(ValueError):
            RepeatingTask(lambda: None, 0, clock)

    @pytest.mark.asyncio
    async def test_asyncio_clock(self):
        clock = AsyncioClock()
        start = clock.time()
        await clock.sleep(0.01)
        assert clock.time() >= start
        assert clock.now_ms() > 1_600_000_000_000


class TestSettings:
    """Tests for configuration defaults."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.testnet_chain_id == 84532
        assert settings.mainnet_chain_id == 8453
        assert settings.poll_interval == 5.0
        assert settings.forward_delay == 30.0
        assert settings.confirmation_timeout == 60.0
        assert settings.gas_limit == 25000
        assert settings.get_gas_buffer_pct("testnet") == 25
        assert settings.get_gas_buffer_pct("mainnet") == 20
        assert settings.gas_safety_margin_pct == 10

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("FORWARD_DELAY", "12")
        monkeypatch.setenv("MAINNET_RPC_URL", "https://rpc.example")

        settings = Settings(_env_file=None)

        assert settings.forward_delay == 12.0
        assert settings.mainnet_rpc_url == "https://rpc.example"

    def test_safe_dict_hides_wallet_key(self):
        settings = Settings(_env_file=None, wallet_private_key="0xsecret")
        data = settings.get_safe_dict()

        assert "0xsecret" not in json.dumps(data)
        assert data["wallet_configured"] is True
        assert data["networks"]["testnet"]["chain_id"] == 84532


class TestClientFactory:
    def test_dry_run_uses_simulated_networks(self, settings):
        clients = create_network_clients(settings)

        assert set(clients) == {Network.TESTNET, Network.MAINNET}
        assert all(isinstance(c, SimulatedNetworkClient) for c in clients.values())
        assert clients[Network.MAINNET].name == "Base"

    def test_rpc_clients(self, settings):
        settings.dry_run = False
        clients = create_network_clients(settings)

        assert isinstance(clients[Network.TESTNET], JsonRpcNetworkClient)
        assert clients[Network.TESTNET].config.rpc_url == "https://sepolia.base.org"


class TestLocalWalletSigner:
    """Tests for LocalWalletSigner."""

    @pytest.mark.asyncio
    async def test_signature_recovers_to_address(self, signer):
        signature = await signer.sign_message("hello")

        assert signature.startswith("0x")
        assert len(signature) == 2 + 130
        recovered = Account.recover_message(encode_defunct(text="hello"), signature=signature)
        assert recovered == signer.address

    @pytest.mark.asyncio
    async def test_signing_is_deterministic(self, signer):
        assert await signer.sign_message("m") == await signer.sign_message("m")

    @pytest.mark.asyncio
    async def test_disconnected_wallet_rejects(self, signer):
        signer.disconnect()

        assert not await signer.health_check()
        with pytest.raises(SigningRejected):
            await signer.sign_message("hello")

    def test_ephemeral_wallet(self):
        assert LocalWalletSigner().address != LocalWalletSigner().address


class TestCli:
    """Tests for the command line entry point."""

    @pytest.fixture(autouse=True)
    def fresh_settings(self, monkeypatch):
        monkeypatch.setenv("DRY_RUN", "true")
        monkeypatch.setenv("ENTROPY_STORE_PATH", "")
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_escape_hatch(self, capsys):
        assert main(["escape-hatch", "--nonce", "my-secret"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["address"].startswith("0x")
        assert len(output["mnemonic"].split()) == 12

    def test_recover_with_entropy(self, capsys):
        assert main(["recover", "--nonce", "my-secret", "--entropy", "00" * 16]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["address"] == derive_escape_hatch("my-secret", bytes(16)).address

    def test_recover_unknown_nonce_fails(self):
        assert main(["recover", "--nonce", "never-saved"]) == 1

    def test_recover_needs_nonce_or_file(self):
        assert main(["recover"]) == 2

    def test_recover_missing_file_fails(self, tmp_path):
        assert main(["recover", "--file", str(tmp_path / "missing.json")]) == 1

    def test_recover_malformed_file_fails(self, tmp_path):
        path = tmp_path / "recovery.json"
        path.write_text('{"nonce": "my-secret", "entropy": "zz"}')

        assert main(["recover", "--file", str(path)]) == 1

    def test_verify(self, capsys):
        assert main(["verify", "--count", "3"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert [a["index"] for a in output["addresses"]] == [0, 1, 2]

    def test_run_dry(self, capsys, monkeypatch):
        monkeypatch.setenv("POLL_INTERVAL", "0.05")
        monkeypatch.setenv("FORWARD_DELAY", "0.05")
        get_settings.cache_clear()

        assert main(["run", "--nonce", "my-secret", "--fund", "0.001", "--timeout", "30"]) == 0

        out = capsys.readouterr().out
        assert '"status": "completed"' in out
        assert "0.000965625 ETH" in out
        assert '"explorer": "https://sepolia.basescan.org/tx/0x' in out
