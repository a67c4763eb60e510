from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from . import config as config_module, constants, logging_utils, provisioner, secret_provider
from .errors import ConfigurationError, LuksBootstrapError
from .persistent_mount import PersistentMountRegistrar
from .session import MountRecord, VolumeSession
from .teardown import ShutdownLatch, TeardownCoordinator, TeardownResult


class Daemon:
    def __init__(self, config_path=None, verbose: bool = False):
        self.config = config_module.Config.load(config_path)
        self.logger = logging_utils.setup_logging(logging.DEBUG if verbose else logging.INFO)
        self.descriptor = self.config.volume
        self.teardown = TeardownCoordinator(self.descriptor)
        self.registrar = PersistentMountRegistrar(
            fstab_path=self.config.fstab_path,
            crypttab_path=self.config.crypttab_path,
            keyscript_path=self.config.keyscript_path,
        )
        self._stop_event = threading.Event()
        self._latch = ShutdownLatch(self._shutdown_teardown)

    def _log_event(self, message: str, event: str, result: str) -> None:
        logging_utils.log_structured(
            self.logger,
            message,
            {
                constants.LOG_KEY_EVENT: event,
                constants.LOG_KEY_MAPPER: self.descriptor.mapper_name,
                constants.LOG_KEY_VOLUME: str(self.descriptor.volume_path),
                constants.LOG_KEY_RESULT: result,
            },
        )

    def authorize(self, bootstrap_path: Optional[Path], keyfile: Optional[Path]) -> MountRecord:
        credential = config_module.BootstrapCredential.load(bootstrap_path)
        self.logger.info("authorizing with bootstrap token %s (version %s)", credential.token_id, credential.version)

        descriptor = self.descriptor
        if not descriptor.use_tpm and not keyfile:
            raise ConfigurationError("--keyfile is required when the secret is not escrowed in the TPM")
        provisioner.validate_size(descriptor.size_mb, self.config.max_size_mb)
        if descriptor.use_tpm:
            secret_provider.require_hardware()

        secret = secret_provider.generate(descriptor.secret_length)
        if not descriptor.use_tpm:
            secret_provider.write_keyfile(keyfile, secret)

        provisioner.create(descriptor, secret, self.config.max_size_mb)
        session = VolumeSession(descriptor)
        session.open(secret)
        session.format()
        record = session.mount()
        self._log_event(f"volume mounted at {record.mount_point}", constants.EVENT_PROVISION, "ok")
        return record

    def deauthorize(self) -> TeardownResult:
        self.logger.info("deauthorizing: removing volume %s", self.descriptor.volume_path)
        return self.teardown.remove()

    def mount(self, keyfile: Optional[Path] = None) -> MountRecord:
        secret = None
        if not self.descriptor.use_tpm:
            if not keyfile:
                raise ConfigurationError("--keyfile is required to mount a file-mode volume")
            secret = secret_provider.read_keyfile(keyfile)
        session = VolumeSession(self.descriptor)
        session.open(secret)
        return session.mount()

    def unmount(self) -> TeardownResult:
        return self.teardown.unmount_and_close()

    def add_persistent_mount(self, keyfile: Optional[Path] = None) -> MountRecord:
        return self.registrar.add(self.descriptor, keyfile)

    def remove_persistent_mount(self) -> None:
        self.registrar.remove(self.descriptor)

    def _shutdown_teardown(self) -> TeardownResult:
        if self.config.remove_on_shutdown:
            return self.teardown.remove()
        return self.teardown.unmount_and_close()

    def shutdown(self) -> bool:
        """Run shutdown teardown; only the first call does any work."""
        fired = self._latch.fire()
        self._stop_event.set()
        return fired

    def run(self) -> None:
        self.logger.info("volume %s held at %s, waiting for SIGINT/SIGTERM", self.descriptor.mapper_name, self.descriptor.mount_point)

        def stop(*_args):
            # Teardown runs on the main loop below, not inside the handler.
            self._stop_event.set()

        signal.signal(signal.SIGINT, stop)
        signal.signal(signal.SIGTERM, stop)

        while not self._stop_event.is_set():
            self._stop_event.wait(0.5)

        signal.signal(signal.SIGINT, signal.SIG_IGN)
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        self.logger.info("received termination signal, cleaning up")
        self.shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Provision and manage an encrypted LUKS bootstrap volume.")
    parser.add_argument("--config", type=str, help="Path to config.toml")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    authorize = sub.add_parser("authorize", help="Provision, escrow and mount the volume")
    authorize.add_argument("--bootstrap", type=Path, help="Path to the bootstrap credential file")
    authorize.add_argument("--keyfile", type=Path, help="Keyfile output path (required without TPM)")
    authorize.add_argument("--detach", action="store_true", help="Exit after mounting instead of waiting for a signal")

    sub.add_parser("deauthorize", help="Unmount, close and remove the volume and its secret")

    mount = sub.add_parser("mount", help="Open and mount an existing volume")
    mount.add_argument("--keyfile", type=Path, help="Keyfile holding the secret (required without TPM)")

    sub.add_parser("unmount", help="Unmount and close the volume")

    add = sub.add_parser("add-persistent-mount", help="Add crypttab/fstab entries for the mounted volume")
    add.add_argument("--keyfile", type=Path, help="Keyfile referenced by crypttab (required without TPM)")

    sub.add_parser("remove-persistent-mount", help="Remove crypttab/fstab entries for the unmounted volume")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logger = logging_utils.setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        daemon = Daemon(config_path=args.config, verbose=args.verbose)
        if args.command == "authorize":
            daemon.authorize(args.bootstrap, args.keyfile)
            if not args.detach:
                daemon.run()
        elif args.command == "deauthorize":
            daemon.deauthorize()
        elif args.command == "mount":
            daemon.mount(args.keyfile)
        elif args.command == "unmount":
            daemon.unmount()
        elif args.command == "add-persistent-mount":
            daemon.add_persistent_mount(args.keyfile)
        elif args.command == "remove-persistent-mount":
            daemon.remove_persistent_mount()
    except LuksBootstrapError as exc:
        logging_utils.log_structured(
            logger,
            f"{args.command} failed: {exc}",
            {constants.LOG_KEY_EVENT: constants.EVENT_ERROR, constants.LOG_KEY_STEP: getattr(exc, "step", None) or args.command},
            level=logging.ERROR,
        )
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
