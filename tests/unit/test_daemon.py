"""Unit tests for the command surface with lifecycle modules mocked.

These tests don't require root or actual devices, they test logic with mocks.
"""

from __future__ import annotations

import dataclasses
import signal
from unittest.mock import Mock, patch

import pytest

from luks_bootstrap import daemon
from luks_bootstrap.errors import ConfigurationError, HardwareUnavailableError, ProvisioningError
from luks_bootstrap.secret_provider import SecretHandle, SecretSource
from luks_bootstrap.teardown import TeardownResult

SECRET = SecretHandle(b"g" * 20, SecretSource.SOFTWARE)


@pytest.fixture
def d(mock_config_file, monkeypatch):
    monkeypatch.delenv("LUKS_BOOTSTRAP_TOKEN", raising=False)
    return daemon.Daemon(config_path=mock_config_file)


class TestDaemonInitialization:
    def test_daemon_loads_config(self, d):
        assert d.descriptor.mapper_name == "bootstrap-test"
        assert d.registrar.fstab_path == d.config.fstab_path
        assert d.registrar.crypttab_path == d.config.crypttab_path

    def test_missing_config_raises(self, temp_dir):
        with pytest.raises(ConfigurationError):
            daemon.Daemon(config_path=temp_dir / "missing.toml")


class TestAuthorize:
    @patch('luks_bootstrap.daemon.VolumeSession')
    @patch('luks_bootstrap.daemon.provisioner.create')
    @patch('luks_bootstrap.daemon.secret_provider.generate', return_value=SECRET)
    def test_file_mode_writes_keyfile_then_provisions(
        self, mock_generate, mock_create, mock_session_cls, d, mock_bootstrap_file, temp_dir
    ):
        keyfile = temp_dir / "keys" / "v.key"
        session = mock_session_cls.return_value
        session.mount.return_value = Mock(mount_point="/mnt/x")

        d.authorize(mock_bootstrap_file, keyfile)

        mock_generate.assert_called_once_with(20)
        assert keyfile.read_bytes() == SECRET.value
        mock_create.assert_called_once_with(d.descriptor, SECRET, 32)
        session.open.assert_called_once_with(SECRET)
        session.format.assert_called_once_with()
        session.mount.assert_called_once_with()

    @patch('luks_bootstrap.daemon.provisioner.create')
    def test_invalid_credential_blocks_provisioning(self, mock_create, d, temp_dir):
        bad = temp_dir / "bootstrap.toml"
        bad.write_text('[bootstrap]\ntoken_id = "t"\n')

        with pytest.raises(ConfigurationError):
            d.authorize(bad, temp_dir / "v.key")
        mock_create.assert_not_called()

    @patch('luks_bootstrap.daemon.provisioner.create')
    def test_file_mode_requires_keyfile(self, mock_create, d, mock_bootstrap_file):
        with pytest.raises(ConfigurationError, match="--keyfile"):
            d.authorize(mock_bootstrap_file, None)
        mock_create.assert_not_called()

    @patch('luks_bootstrap.daemon.provisioner.create')
    @patch('luks_bootstrap.daemon.secret_provider.generate')
    def test_tpm_requested_but_absent(self, mock_generate, mock_create, d, mock_bootstrap_file):
        d.descriptor = dataclasses.replace(d.descriptor, use_tpm=True)
        with patch('luks_bootstrap.secret_provider.tpm.tpm_available', return_value=False):
            with pytest.raises(HardwareUnavailableError):
                d.authorize(mock_bootstrap_file, None)
        mock_generate.assert_not_called()
        mock_create.assert_not_called()


class TestOtherCommands:
    def test_mount_reads_keyfile(self, d, temp_dir):
        keyfile = temp_dir / "v.key"
        keyfile.write_bytes(b"k" * 20)
        with patch('luks_bootstrap.daemon.VolumeSession') as mock_session_cls:
            d.mount(keyfile)

        opened_with = mock_session_cls.return_value.open.call_args[0][0]
        assert opened_with.value == b"k" * 20
        mock_session_cls.return_value.format.assert_not_called()
        mock_session_cls.return_value.mount.assert_called_once_with()

    def test_mount_file_mode_requires_keyfile(self, d):
        with pytest.raises(ConfigurationError):
            d.mount(None)

    def test_deauthorize_runs_full_removal(self, d):
        with patch.object(d.teardown, 'remove', return_value=TeardownResult()) as mock_remove:
            d.deauthorize()
        mock_remove.assert_called_once_with()

    def test_unmount_runs_unmount_and_close(self, d):
        with patch.object(d.teardown, 'unmount_and_close', return_value=TeardownResult()) as mock_uc:
            d.unmount()
        mock_uc.assert_called_once_with()

    def test_persistent_mount_commands(self, d):
        with patch.object(d.registrar, 'add') as mock_add, patch.object(d.registrar, 'remove') as mock_remove:
            d.add_persistent_mount("/k")
            d.remove_persistent_mount()
        mock_add.assert_called_once_with(d.descriptor, "/k")
        mock_remove.assert_called_once_with(d.descriptor)


class TestShutdown:
    def test_shutdown_teardown_runs_once(self, d):
        with patch.object(d.teardown, 'remove', return_value=TeardownResult()) as mock_remove:
            assert d.shutdown() is True
            assert d.shutdown() is False
        # remove_on_shutdown = true in the test config
        mock_remove.assert_called_once_with()

    def test_shutdown_defaults_to_unmount_and_close(self, d):
        d.config = dataclasses.replace(d.config, remove_on_shutdown=False)
        with patch.object(d.teardown, 'unmount_and_close', return_value=TeardownResult()) as mock_uc, \
             patch.object(d.teardown, 'remove') as mock_remove:
            d.shutdown()
        mock_uc.assert_called_once_with()
        mock_remove.assert_not_called()

    @patch('luks_bootstrap.daemon.signal.signal')
    def test_run_installs_handlers_and_tears_down_after_signal(self, mock_signal, d):
        handlers = {}

        def record(signum, handler):
            handlers.setdefault(signum, handler)

        mock_signal.side_effect = record
        with patch.object(d, 'shutdown') as mock_shutdown:
            d._stop_event.wait = lambda timeout: handlers[signal.SIGTERM](signal.SIGTERM, None)
            d.run()

        assert signal.SIGINT in handlers and signal.SIGTERM in handlers
        mock_shutdown.assert_called_once_with()


class TestMain:
    def test_requires_command(self):
        with pytest.raises(SystemExit):
            daemon.main([])

    def test_dispatches_unmount(self, mock_config_file):
        with patch.object(daemon.Daemon, 'unmount') as mock_unmount:
            rc = daemon.main(["--config", str(mock_config_file), "unmount"])
        assert rc == 0
        mock_unmount.assert_called_once_with()

    def test_detached_authorize_does_not_wait(self, mock_config_file, mock_bootstrap_file):
        with patch.object(daemon.Daemon, 'authorize') as mock_authorize, \
             patch.object(daemon.Daemon, 'run') as mock_run:
            rc = daemon.main([
                "--config", str(mock_config_file),
                "authorize", "--bootstrap", str(mock_bootstrap_file), "--keyfile", "/tmp/k", "--detach",
            ])
        assert rc == 0
        mock_authorize.assert_called_once()
        mock_run.assert_not_called()

    def test_domain_errors_map_to_exit_code_1(self, mock_config_file):
        with patch.object(daemon.Daemon, 'mount', side_effect=ProvisioningError("boom", step="open")):
            rc = daemon.main(["--config", str(mock_config_file), "mount", "--keyfile", "/k"])
        assert rc == 1

    def test_config_errors_map_to_exit_code_1(self, temp_dir):
        rc = daemon.main(["--config", str(temp_dir / "missing.toml"), "unmount"])
        assert rc == 1
